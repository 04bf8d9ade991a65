#!/usr/bin/env python3
r"""
LArTPC reconstruction runner (hierarchy matching and transverse association).

Two sub-commands drive the engines on one event directory of CSV tables
(see :func:`lartpc_reco.data.read_event_tables`):

- ``match``: build the truth hierarchy from ``particles.csv``/``hits.csv``
  and the reconstructed hierarchy from ``pfos.csv``/``pfo_hits.csv``, match
  them greedily by shared hits, log the summary and optionally write it as
  CSV. Purity and completeness of a matched pair are

  .. math::
      p = \frac{|r\cap t|}{|r|},\qquad c = \frac{|r\cap t|}{|t|}.

- ``associate``: run the transverse association on ``clusters.csv`` (one
  pass per view when a ``view`` column is present) and optionally write the
  forward association edges as CSV.

CLI overview
------------
.. code-block:: bash

   lartpc-reco match events/0001 --fold-to-leading-showers --dump --out matches.csv
   lartpc-reco associate events/0001 --config reco.json --out associations.csv
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from lartpc_reco.association import TransverseAssociation, associations_to_frame
from lartpc_reco.clusters import clusters_from_frame
from lartpc_reco.config import HierarchyConfig, RecoConfig, load_config
from lartpc_reco.data import read_event_tables
from lartpc_reco.errors import LArRecoError
from lartpc_reco.hierarchy import MCHierarchy, RecoHierarchy
from lartpc_reco.metrics import log_matches, match_hierarchies, matches_to_frame


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface.

    Returns
    -------
    argparse.ArgumentParser
        Parser with the ``match`` and ``associate`` sub-commands.

    Notes
    -----
    The folding flags override the ``"hierarchy"`` section of ``--config``
    when given; both together fold to primaries while keeping every leading
    shower as its own node.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("event_dir", type=str,
                        help="Directory holding the event CSV tables.")
    common.add_argument("--config", type=str, default=None,
                        help="Path to a JSON config (default: built-in thresholds).")
    common.add_argument("--out", type=str, default=None,
                        help="If set, write the result table as CSV to this path.")
    common.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose logging.")

    p = argparse.ArgumentParser(description="Match particle hierarchies and associate transverse clusters.")
    sub = p.add_subparsers(dest="command", required=True)

    m = sub.add_parser("match", parents=[common],
                       help="Match reconstructed to truth particle hierarchies.")
    m.add_argument("--fold-to-primaries", action="store_true", default=None,
                   help="Fold every descendant into its primary.")
    m.add_argument("--fold-to-leading-showers", action="store_true", default=None,
                   help="Fold every shower sub-tree into its leading shower.")
    m.add_argument("--dump", action="store_true", default=False,
                   help="Log both hierarchies as indented trees.")

    sub.add_parser("associate", parents=[common],
                   help="Associate transverse clusters into chains of neighbours.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG``; otherwise ``INFO``.

    Notes
    -----
    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with ``%H:%M:%S`` timestamps.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def _require_tables(tables: dict, names: Sequence[str], event_dir: Path) -> None:
    missing = [n for n in names if n not in tables]
    if missing:
        raise FileNotFoundError(
            f"Missing table(s) in {event_dir}: {', '.join(f'{n}.csv' for n in missing)}"
        )


def _write_csv(frame: pd.DataFrame, out: Optional[str]) -> None:
    if out is None:
        return
    frame.to_csv(out, index=False)
    logging.info("Wrote %d row(s) to %s", len(frame), out)


def run_match(args: argparse.Namespace, config: RecoConfig) -> pd.DataFrame:
    """Build both hierarchies for one event and match them."""
    event_dir = Path(args.event_dir)
    tables = read_event_tables(event_dir)
    _require_tables(tables, ("particles", "hits", "pfos", "pfo_hits"), event_dir)

    hierarchy_cfg = config.hierarchy
    if args.fold_to_primaries is not None or args.fold_to_leading_showers is not None:
        hierarchy_cfg = HierarchyConfig(
            fold_to_primaries=bool(args.fold_to_primaries),
            fold_to_leading_showers=bool(args.fold_to_leading_showers),
        )
    mode = hierarchy_cfg.fold_mode
    logging.info("Building hierarchies with fold mode %s", mode.name)

    mc = MCHierarchy(config.reconstructability).fill(tables["particles"], tables["hits"], mode)
    reco = RecoHierarchy().fill(tables["pfos"], tables["pfo_hits"], mode)
    logging.info(
        "Truth: %d node(s), Reco: %d node(s)",
        len(mc.flattened_nodes()), len(reco.flattened_nodes()),
    )
    if args.dump:
        logging.info("MC hierarchy\n%s", mc.to_string())
        logging.info("Reco hierarchy\n%s", reco.to_string())

    records = match_hierarchies(mc, reco)
    log_matches(records)
    n_matched = sum(1 for r in records if r.is_matched)
    logging.info("Matched %d of %d truth node(s)", n_matched, len(records))
    return matches_to_frame(records)


def run_associate(args: argparse.Namespace, config: RecoConfig) -> pd.DataFrame:
    """Run the transverse association on every view of ``clusters.csv``."""
    event_dir = Path(args.event_dir)
    tables = read_event_tables(event_dir)
    _require_tables(tables, ("clusters",), event_dir)
    clusters_df = tables["clusters"]

    engine = TransverseAssociation(config.transverse_association)
    if "view" in clusters_df.columns:
        groups = list(clusters_df.groupby("view", sort=True))
    else:
        groups = [(None, clusters_df)]

    frames: List[pd.DataFrame] = []
    for view, df in groups:
        clusters = clusters_from_frame(df)
        association_map = engine.populate_cluster_association_map(clusters)
        frame = associations_to_frame(association_map)
        logging.info(
            "View %s: %d cluster(s), %d associated, %d edge(s)",
            "-" if view is None else int(view), len(clusters), len(association_map), len(frame),
        )
        if view is not None:
            frame.insert(0, "view", int(view))
        frames.append(frame)
    if not frames:
        logging.info("No clusters in %s", event_dir)
        return pd.DataFrame(columns=["view", "inner_cluster_id", "outer_cluster_id"], dtype="int64")
    return pd.concat(frames, ignore_index=True)


def main(argv: Optional[Sequence[str]] = None) -> int:
    r"""
    CLI entry point.

    Workflow
    --------
    1. Parse arguments and configure logging (:func:`setup_logging`).
    2. Load the config (:func:`lartpc_reco.config.load_config`) or use defaults.
    3. Dispatch to :func:`run_match` or :func:`run_associate`.
    4. Write the result table when ``--out`` is given.

    Returns
    -------
    int
        ``0`` on success, ``1`` when the event cannot be processed.
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.config is not None:
            logging.info("Reading config from %s", args.config)
            config = load_config(args.config)
        else:
            config = RecoConfig()

        if args.command == "match":
            frame = run_match(args, config)
        else:
            frame = run_associate(args, config)
        _write_csv(frame, args.out)
    except (LArRecoError, FileNotFoundError, KeyError) as e:
        logging.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
