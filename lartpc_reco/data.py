from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from lartpc_reco.errors import HierarchyError

logger = logging.getLogger(__name__)

ELECTRON = 11
PHOTON = 22
NEUTRON = 2112
NEUTRINOS = frozenset((12, 14, 16))

EVENT_TABLES = ("particles", "hits", "pfos", "pfo_hits", "clusters")


class View(IntEnum):
    """The three orthogonal wire-plane projections of a LArTPC."""
    U = 0
    V = 1
    W = 2


@dataclass(eq=False)
class Particle:
    r"""
    A truth particle or reconstructed particle-flow object (a *candidate*).

    Candidates compare and hash by identity; ``particle_id`` gives the
    canonical ordering used inside hierarchy nodes.

    Attributes
    ----------
    particle_id : int
        Unique identifier within its table.
    pdg : int
        Particle type code (PDG convention).
    energy : float
        Energy of the particle (truth tables only; ``0.0`` otherwise).
    parent : Particle or None
        Direct parent in the decay/daughter graph.
    daughters : list of Particle
        Direct daughters in table order.
    """
    particle_id: int
    pdg: int
    energy: float = 0.0
    parent: Optional["Particle"] = field(default=None, repr=False)
    daughters: List["Particle"] = field(default_factory=list, repr=False)

    @property
    def abs_pdg(self) -> int:
        return abs(self.pdg)

    @property
    def is_neutrino(self) -> bool:
        return self.abs_pdg in NEUTRINOS

    @property
    def is_neutron(self) -> bool:
        return self.abs_pdg == NEUTRON

    def top_ancestor(self) -> "Particle":
        """Walk parent links to the top of the chain (cycle-safe)."""
        seen = {id(self)}
        current = self
        while current.parent is not None:
            current = current.parent
            if id(current) in seen:
                raise HierarchyError(f"Parent cycle through particle {current.particle_id}")
            seen.add(id(current))
        return current

    def ancestry(self) -> List["Particle"]:
        """Return ``[self, parent, grandparent, ...]`` up to the top of the chain."""
        chain = [self]
        seen = {id(self)}
        while chain[-1].parent is not None:
            parent = chain[-1].parent
            if id(parent) in seen:
                raise HierarchyError(f"Parent cycle through particle {parent.particle_id}")
            seen.add(id(parent))
            chain.append(parent)
        return chain


def _require_columns(frame: pd.DataFrame, columns: Tuple[str, ...], what: str) -> None:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise KeyError(f"{what} table is missing required column(s): {', '.join(missing)}")


def build_particles(particles: pd.DataFrame) -> List[Particle]:
    r"""
    Turn a flat particle table into linked :class:`Particle` objects.

    Parameters
    ----------
    particles : pandas.DataFrame
        Columns ``particle_id``, ``parent_id`` (negative or NaN for "no
        parent"), ``pdg`` and optionally ``energy``.

    Returns
    -------
    list of Particle
        One object per row, in table order. Daughter lists follow table order.

    Raises
    ------
    KeyError
        If a required column is missing.
    HierarchyError
        On duplicate ids, unknown parents, self-parenting or parent cycles.
    """
    _require_columns(particles, ("particle_id", "parent_id", "pdg"), "Particle")
    if particles.empty:
        return []

    ids = particles["particle_id"].to_numpy(dtype=np.int64)
    parent_col = pd.to_numeric(particles["parent_id"], errors="coerce").fillna(-1)
    parents = parent_col.to_numpy(dtype=np.int64)
    pdgs = particles["pdg"].to_numpy(dtype=np.int64)
    if "energy" in particles.columns:
        energies = particles["energy"].to_numpy(dtype=np.float64)
    else:
        energies = np.zeros(ids.size, dtype=np.float64)

    unique, counts = np.unique(ids, return_counts=True)
    if np.any(counts > 1):
        raise HierarchyError(f"Duplicate particle ids: {unique[counts > 1].tolist()}")

    out = [Particle(int(i), int(p), float(e)) for i, p, e in zip(ids, pdgs, energies)]
    by_id: Dict[int, Particle] = {p.particle_id: p for p in out}
    for particle, parent_id in zip(out, parents):
        if parent_id < 0:
            continue
        parent = by_id.get(int(parent_id))
        if parent is None:
            raise HierarchyError(f"Particle {particle.particle_id} has unknown parent {int(parent_id)}")
        if parent is particle:
            raise HierarchyError(f"Particle {particle.particle_id} is its own parent")
        particle.parent = parent
        parent.daughters.append(particle)

    for particle in out:
        particle.top_ancestor()
    return out


def hits_by_owner(
    ownership: pd.DataFrame,
    particles: List[Particle],
) -> Tuple[Dict[Particle, np.ndarray], int]:
    r"""
    Build the candidate → hit-id map from a hit ownership table.

    Parameters
    ----------
    ownership : pandas.DataFrame
        Columns ``hit_id`` and ``particle_id``. A truth hit table has one row
        per hit (its main contributing particle); a reconstructed ownership
        table may list a hit under several candidates.
    particles : list of Particle
        Candidates the owners are resolved against.

    Returns
    -------
    mapping : dict[Particle -> ndarray of int64]
        Hit ids per owning candidate, in table order.
    n_dropped : int
        Rows whose owner is missing, negative or not in ``particles``.

    Notes
    -----
    Dropped rows are a partial-data condition: they are counted and logged,
    never raised.
    """
    _require_columns(ownership, ("hit_id", "particle_id"), "Hit ownership")
    if ownership.empty:
        return {}, 0

    by_id = {p.particle_id: p for p in particles}
    owners = pd.to_numeric(ownership["particle_id"], errors="coerce").fillna(-1).to_numpy(dtype=np.int64)
    hit_ids = ownership["hit_id"].to_numpy(dtype=np.int64)

    known = np.fromiter((int(o) in by_id for o in owners), dtype=bool, count=owners.size)
    n_dropped = int((~known).sum())
    if n_dropped:
        logger.warning("Found %d hit(s) with no owning particle; dropping them.", n_dropped)

    mapping: Dict[Particle, np.ndarray] = {}
    owners_k = owners[known]
    hits_k = hit_ids[known]
    if owners_k.size:
        # stable sort keeps table order within each owner
        order = np.argsort(owners_k, kind="stable")
        owners_s = owners_k[order]
        hits_s = hits_k[order]
        starts = np.flatnonzero(np.r_[True, owners_s[1:] != owners_s[:-1]])
        ends = np.r_[starts[1:], owners_s.size]
        for a, b in zip(starts, ends):
            mapping[by_id[int(owners_s[a])]] = hits_s[a:b].copy()
    return mapping, n_dropped


def read_event_tables(directory: Union[str, Path]) -> Dict[str, pd.DataFrame]:
    r"""
    Read the CSV tables of one event directory.

    Parameters
    ----------
    directory : str or pathlib.Path
        Folder holding any of ``particles.csv``, ``hits.csv``, ``pfos.csv``,
        ``pfo_hits.csv`` and ``clusters.csv``.

    Returns
    -------
    dict[str -> pandas.DataFrame]
        Tables keyed by file stem; absent files are omitted.

    Raises
    ------
    FileNotFoundError
        If ``directory`` does not exist.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Event directory not found: {directory}")
    tables: Dict[str, pd.DataFrame] = {}
    for name in EVENT_TABLES:
        path = directory / f"{name}.csv"
        if path.exists():
            tables[name] = pd.read_csv(path)
            logger.debug("Read %s: %d rows", path.name, len(tables[name]))
    return tables
