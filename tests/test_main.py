import pandas as pd
import pytest

from lartpc_reco.main import build_parser, main


@pytest.fixture
def event_dir(tmp_path, particles_df, hits_df, pfos_df, pfo_hits_df):
    particles_df.to_csv(tmp_path / "particles.csv", index=False)
    hits_df.to_csv(tmp_path / "hits.csv", index=False)
    pfos_df.to_csv(tmp_path / "pfos.csv", index=False)
    pfo_hits_df.to_csv(tmp_path / "pfo_hits.csv", index=False)
    pd.DataFrame({
        "cluster_id": [1, 1, 2, 2, 3, 3],
        "view": [2] * 6,
        "x": [0.0, 1.0, 2.0, 3.0, 4.0, 5.0],
        "z": [5.0] * 6,
    }).to_csv(tmp_path / "clusters.csv", index=False)
    return tmp_path


def test_parser_fold_flags():
    args = build_parser().parse_args(["match", "ev", "--fold-to-primaries"])
    assert args.command == "match"
    assert args.fold_to_primaries is True
    assert args.fold_to_leading_showers is None


def test_match_command(event_dir, tmp_path):
    out = tmp_path / "matches.csv"
    assert main(["match", str(event_dir), "--dump", "--out", str(out)]) == 0
    frame = pd.read_csv(out)
    assert frame["mc_pdg"].tolist() == [13, 13, 2212, 211, 11, 22]


def test_match_command_with_folding(event_dir, tmp_path):
    out = tmp_path / "matches.csv"
    assert main(["match", str(event_dir), "--fold-to-primaries", "--out", str(out)]) == 0
    frame = pd.read_csv(out)
    assert frame["mc_hits"].tolist()[0] == 42


def test_associate_command(event_dir, tmp_path):
    out = tmp_path / "associations.csv"
    assert main(["associate", str(event_dir), "--out", str(out)]) == 0
    frame = pd.read_csv(out)
    assert frame.values.tolist() == [[2, 1, 2], [2, 2, 3]]


def test_associate_command_without_clusters(tmp_path):
    pd.DataFrame(columns=["cluster_id", "view", "x", "z"]).to_csv(tmp_path / "clusters.csv", index=False)
    out = tmp_path / "associations.csv"
    assert main(["associate", str(tmp_path), "--out", str(out)]) == 0
    frame = pd.read_csv(out)
    assert list(frame.columns) == ["view", "inner_cluster_id", "outer_cluster_id"]
    assert frame.empty


def test_missing_tables_fail(tmp_path):
    assert main(["associate", str(tmp_path)]) == 1
    assert main(["match", str(tmp_path / "absent")]) == 1


def test_bad_config_fails(event_dir, tmp_path):
    cfg = tmp_path / "bad.json"
    cfg.write_text('{"unknown": {}}')
    assert main(["associate", str(event_dir), "--config", str(cfg)]) == 1
