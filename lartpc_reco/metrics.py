from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from lartpc_reco.hierarchy import MCHierarchy, Node, RecoHierarchy
from lartpc_reco.utils import count_shared_hits

logger = logging.getLogger(__name__)


class MatchRecord:
    r"""
    One truth node together with the reconstructed nodes matched to it.

    For a matched reconstructed node :math:`r` sharing :math:`s` hits with the
    truth node :math:`t`:

    .. math::
        \text{purity}(r) = \frac{s}{|r|},\qquad
        \text{completeness}(r) = \frac{s}{|t|}.

    Both lie in :math:`[0, 1]` because :math:`s \le \min(|r|, |t|)`.

    Attributes
    ----------
    mc_node : Node
        The truth node.
    reco_nodes : list of Node
        Matched reconstructed nodes in matching order.
    shared_hits : list of int
        Shared-hit counts aligned with ``reco_nodes``.
    """

    __slots__ = ("mc_node", "reco_nodes", "shared_hits")

    def __init__(self, mc_node: Node) -> None:
        self.mc_node = mc_node
        self.reco_nodes: List[Node] = []
        self.shared_hits: List[int] = []

    def add_reco_match(self, reco_node: Node, n_shared_hits: int) -> None:
        if n_shared_hits > min(reco_node.n_hits, self.mc_node.n_hits):
            raise ValueError(
                f"Shared hits ({n_shared_hits}) exceed the hits of the matched nodes "
                f"({reco_node.n_hits}, {self.mc_node.n_hits})"
            )
        self.reco_nodes.append(reco_node)
        self.shared_hits.append(int(n_shared_hits))

    @property
    def is_matched(self) -> bool:
        return bool(self.reco_nodes)

    def _index(self, reco_node: Node) -> Optional[int]:
        for i, node in enumerate(self.reco_nodes):
            if node is reco_node:
                return i
        return None

    def get_shared_hits(self, reco_node: Node) -> Optional[int]:
        """Shared-hit count with ``reco_node``, or ``None`` if it is not matched here."""
        i = self._index(reco_node)
        return None if i is None else self.shared_hits[i]

    def get_purity(self, reco_node: Node) -> Optional[float]:
        """Fraction of ``reco_node``'s hits shared with the truth node; ``None`` if unmatched."""
        i = self._index(reco_node)
        if i is None:
            return None
        return self.shared_hits[i] / float(reco_node.n_hits)

    def get_completeness(self, reco_node: Node) -> Optional[float]:
        """Fraction of the truth node's hits shared with ``reco_node``; ``None`` if unmatched."""
        i = self._index(reco_node)
        if i is None:
            return None
        return self.shared_hits[i] / float(self.mc_node.n_hits)

    def __repr__(self) -> str:
        return f"MatchRecord(mc={self.mc_node!r}, n_reco={len(self.reco_nodes)})"


def _sorted_by_hits(nodes: Sequence[Node]) -> List[Node]:
    # stable: equal hit counts keep breadth-first order
    return sorted(nodes, key=lambda n: n.n_hits, reverse=True)


def match_hierarchies(mc_hierarchy: MCHierarchy, reco_hierarchy: RecoHierarchy) -> List[MatchRecord]:
    r"""
    Greedily match reconstructed nodes to truth nodes by hit overlap.

    Algorithm
    ---------
    1. Flatten both forests and sort each by descending hit count (stable).
    2. For every reconstructed node in that order, scan the *reconstructable*
       truth nodes and pick the one with the strictly largest intersection
       :math:`|r \cap t|` (the first one found wins ties). Reconstructed nodes
       sharing no hit with any candidate stay unmatched.
    3. Group reconstructed nodes by their chosen truth node, then add an
       empty record for every truth node left without a match.
    4. Stable-sort all records by descending truth hit count.

    The choice is made independently for each reconstructed node, so several
    reconstructed nodes may share one truth node. The result is not a global
    optimum; it depends only on input order and is therefore reproducible.

    Parameters
    ----------
    mc_hierarchy : MCHierarchy
        Filled truth hierarchy.
    reco_hierarchy : RecoHierarchy
        Filled reconstructed hierarchy.

    Returns
    -------
    list of MatchRecord
        One record per truth node.
    """
    mc_nodes = _sorted_by_hits(mc_hierarchy.flattened_nodes())
    reco_nodes = _sorted_by_hits(reco_hierarchy.flattened_nodes())
    candidates = [n for n in mc_nodes if mc_hierarchy.is_reconstructable(n)]
    logger.debug(
        "Matching %d reco node(s) against %d reconstructable of %d truth node(s)",
        len(reco_nodes), len(candidates), len(mc_nodes),
    )

    matches: Dict[int, MatchRecord] = {}
    for reco_node in reco_nodes:
        best_node: Optional[Node] = None
        best_shared = 0
        for mc_node in candidates:
            shared = count_shared_hits(mc_node.hit_ids, reco_node.hit_ids)
            if shared > best_shared:
                best_shared = shared
                best_node = mc_node
        if best_node is None:
            continue
        record = matches.get(id(best_node))
        if record is None:
            record = matches[id(best_node)] = MatchRecord(best_node)
        record.add_reco_match(reco_node, best_shared)

    records = list(matches.values())
    records.extend(MatchRecord(n) for n in mc_nodes if id(n) not in matches)
    records.sort(key=lambda r: r.mc_node.n_hits, reverse=True)
    return records


def matches_to_frame(records: Sequence[MatchRecord]) -> pd.DataFrame:
    r"""
    Flatten match records into one row per (truth node, reco node) pair.

    Unmatched truth nodes contribute a single row with missing reco fields.

    Returns
    -------
    pandas.DataFrame
        Columns ``mc_index, mc_pdg, mc_hits, reco_pdg, reco_hits, shared_hits,
        purity, completeness``; ``mc_index`` is the record's position.
    """
    rows: List[Tuple] = []
    for i, record in enumerate(records):
        mc = record.mc_node
        if not record.is_matched:
            rows.append((i, mc.pdg, mc.n_hits, None, None, None, None, None))
            continue
        for reco, shared in zip(record.reco_nodes, record.shared_hits):
            rows.append((
                i, mc.pdg, mc.n_hits, reco.pdg, reco.n_hits, shared,
                record.get_purity(reco), record.get_completeness(reco),
            ))
    frame = pd.DataFrame(
        rows,
        columns=["mc_index", "mc_pdg", "mc_hits", "reco_pdg", "reco_hits",
                 "shared_hits", "purity", "completeness"],
    )
    for col in ("reco_pdg", "reco_hits", "shared_hits"):
        frame[col] = frame[col].astype("Int64")
    for col in ("purity", "completeness"):
        frame[col] = frame[col].astype("float64")
    return frame


def log_matches(records: Sequence[MatchRecord], level: int = logging.INFO) -> None:
    """Log every truth node with its matches, or ``Unmatched``."""
    for record in records:
        mc = record.mc_node
        logger.log(level, "MC %d hits %d", mc.pdg, mc.n_hits)
        for reco, shared in zip(record.reco_nodes, record.shared_hits):
            logger.log(
                level, "   Matched %d out of %d with purity %.3f and completeness %.3f",
                shared, reco.n_hits, record.get_purity(reco), record.get_completeness(reco),
            )
        if not record.is_matched:
            logger.log(level, "   Unmatched")
