import logging

import numpy as np
import pandas as pd
import pytest

from lartpc_reco.hierarchy import fill_mc_hierarchy, fill_reco_hierarchy
from lartpc_reco.metrics import MatchRecord, log_matches, match_hierarchies, matches_to_frame


@pytest.fixture
def records(particles_df, hits_df, pfos_df, pfo_hits_df):
    mc = fill_mc_hierarchy(particles_df, hits_df)
    reco = fill_reco_hierarchy(pfos_df, pfo_hits_df)
    return match_hierarchies(mc, reco)


def test_one_record_per_truth_node_sorted_by_hits(records):
    assert [r.mc_node.pdg for r in records] == [13, 2212, 211, 11, 22]
    hits = [r.mc_node.n_hits for r in records]
    assert hits == sorted(hits, reverse=True)


def test_greedy_matching(records):
    muon, proton, pion, electron, photon = records
    assert [n.pdg for n in muon.reco_nodes] == [13, 211]
    assert muon.shared_hits == [18, 2]
    assert [n.pdg for n in proton.reco_nodes] == [2212]
    assert proton.shared_hits == [16]
    # pion and shower nodes are below min_hits and never candidates
    assert not pion.is_matched
    assert not electron.is_matched
    assert not photon.is_matched


def test_purity_and_completeness(records):
    muon, proton = records[0], records[1]
    reco_muon = muon.reco_nodes[0]
    assert muon.get_purity(reco_muon) == pytest.approx(1.0)
    assert muon.get_completeness(reco_muon) == pytest.approx(0.9)

    reco_proton = proton.reco_nodes[0]
    assert proton.get_purity(reco_proton) == pytest.approx(0.8)
    assert proton.get_completeness(reco_proton) == pytest.approx(1.0)

    for record in records:
        for reco in record.reco_nodes:
            assert 0.0 <= record.get_purity(reco) <= 1.0
            assert 0.0 <= record.get_completeness(reco) <= 1.0


def test_lookup_of_unmatched_node_returns_none(records):
    muon, proton = records[0], records[1]
    other = proton.reco_nodes[0]
    assert muon.get_shared_hits(other) is None
    assert muon.get_purity(other) is None
    assert muon.get_completeness(other) is None


def test_unreconstructable_truth_node_stays_unmatched():
    particles = pd.DataFrame({"particle_id": [1, 2], "parent_id": [-1, 1], "pdg": [14, 13]})
    hits = pd.DataFrame({"hit_id": np.arange(12), "view": np.arange(12) % 3, "particle_id": [2] * 12})
    pfos = pd.DataFrame({"particle_id": [10, 11], "parent_id": [-1, 10], "pdg": [14, 13]})
    pfo_hits = pd.DataFrame({"particle_id": [11] * 12, "hit_id": np.arange(12)})

    mc = fill_mc_hierarchy(particles, hits)
    reco = fill_reco_hierarchy(pfos, pfo_hits)
    records = match_hierarchies(mc, reco)

    assert len(records) == 1
    assert records[0].mc_node.n_hits == 12
    assert not records[0].is_matched


def test_matching_is_deterministic(particles_df, hits_df, pfos_df, pfo_hits_df):
    def run():
        mc = fill_mc_hierarchy(particles_df, hits_df)
        reco = fill_reco_hierarchy(pfos_df, pfo_hits_df)
        return matches_to_frame(match_hierarchies(mc, reco))

    pd.testing.assert_frame_equal(run(), run())


def test_tie_goes_to_first_truth_node():
    particles = pd.DataFrame({"particle_id": [1, 2, 3], "parent_id": [-1, 1, 1], "pdg": [14, 13, 2212]})
    hits = pd.DataFrame({
        "hit_id": np.arange(40),
        "view": np.arange(40) % 3,
        "particle_id": [2] * 20 + [3] * 20,
    })
    pfos = pd.DataFrame({"particle_id": [10, 11], "parent_id": [-1, 10], "pdg": [14, 13]})
    pfo_hits = pd.DataFrame({"particle_id": [11] * 10, "hit_id": list(range(15, 25))})

    records = match_hierarchies(fill_mc_hierarchy(particles, hits), fill_reco_hierarchy(pfos, pfo_hits))
    assert records[0].mc_node.pdg == 13
    assert records[0].shared_hits == [5]
    assert not records[1].is_matched


def test_add_reco_match_rejects_impossible_overlap(particles_df, hits_df):
    mc = fill_mc_hierarchy(particles_df, hits_df)
    muon, proton = mc.root_nodes
    record = MatchRecord(muon)
    with pytest.raises(ValueError):
        record.add_reco_match(proton, 17)


def test_matches_to_frame(records):
    frame = matches_to_frame(records)
    assert list(frame.columns) == [
        "mc_index", "mc_pdg", "mc_hits", "reco_pdg", "reco_hits",
        "shared_hits", "purity", "completeness",
    ]
    # two rows for the muon, one for the proton, one per unmatched node
    assert len(frame) == 6
    unmatched = frame[frame["reco_pdg"].isna()]
    assert unmatched["mc_pdg"].tolist() == [211, 11, 22]
    assert frame.loc[0, "purity"] == pytest.approx(1.0)


def test_log_matches(records, caplog):
    with caplog.at_level(logging.INFO, logger="lartpc_reco.metrics"):
        log_matches(records)
    text = caplog.text
    assert "MC 13 hits 20" in text
    assert "Matched 18 out of 18 with purity 1.000 and completeness 0.900" in text
    assert "Unmatched" in text
