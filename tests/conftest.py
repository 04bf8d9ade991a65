import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import numpy as np
import pandas as pd
import pytest

from lartpc_reco.clusters import Cluster


# Truth event: nu_mu -> mu (-> e- -> gamma, pi+), proton, neutron (-> gamma)
PARTICLES = [
    # particle_id, parent_id, pdg, energy, n_hits
    (1, -1, 14, 2.0, 0),
    (2, 1, 13, 1.5, 20),
    (3, 1, 2212, 0.8, 16),
    (4, 2, 11, 0.1, 6),
    (5, 4, 22, 0.05, 4),
    (6, 1, 2112, 0.2, 0),
    (7, 2, 211, 0.3, 12),
    (8, 6, 22, 0.01, 3),
]


@pytest.fixture
def particles_df():
    return pd.DataFrame(
        [row[:4] for row in PARTICLES],
        columns=["particle_id", "parent_id", "pdg", "energy"],
    )


@pytest.fixture
def hits_df():
    rows = []
    hit_id = 0
    for particle_id, _, _, _, n_hits in PARTICLES:
        for _ in range(n_hits):
            rows.append((hit_id, hit_id % 3, particle_id))
            hit_id += 1
    # one hit without a resolvable owner
    rows.append((hit_id, 0, -1))
    return pd.DataFrame(rows, columns=["hit_id", "view", "particle_id"])


@pytest.fixture
def pfos_df():
    return pd.DataFrame(
        [
            (100, -1, 14),
            (101, 100, 13),
            (102, 100, 2212),
            (103, 101, 11),
            (104, 100, 211),
        ],
        columns=["particle_id", "parent_id", "pdg"],
    )


@pytest.fixture
def pfo_hits_df():
    # truth hit ids: mu 0-19, proton 20-35, e- 36-41, gamma 42-45, pi+ 46-57
    owned = {
        101: list(range(0, 18)),
        102: list(range(20, 36)) + list(range(46, 50)),
        103: list(range(36, 46)),
        104: list(range(50, 58)) + [18, 19],
    }
    rows = [(pid, h, False) for pid, hits in owned.items() for h in hits]
    return pd.DataFrame(rows, columns=["particle_id", "hit_id", "isolated"])


def make_cluster(cluster_id, xs, zs, layers=None):
    return Cluster(cluster_id, np.column_stack([xs, zs]).astype(float), layers)


@pytest.fixture
def transverse_chain():
    """Three short clusters side by side along x at constant z."""
    x = make_cluster(1, [0.0, 1.0], [5.0, 5.0])
    y = make_cluster(2, [2.0, 3.0], [5.0, 5.0])
    z = make_cluster(3, [4.0, 5.0], [5.0, 5.0])
    return x, y, z


@pytest.fixture
def longitudinal_wall():
    """A long cluster running along z at x = 3.5."""
    zs = np.arange(0.0, 11.0)
    return make_cluster(10, np.full(zs.size, 3.5), zs)
