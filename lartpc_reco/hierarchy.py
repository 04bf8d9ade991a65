from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from lartpc_reco.config import FoldMode, ReconstructabilityCriteria
from lartpc_reco.data import (
    ELECTRON,
    NEUTRON,
    PHOTON,
    View,
    Particle,
    build_particles,
    hits_by_owner,
)
from lartpc_reco.errors import HierarchyError, NoRootFoundError
from lartpc_reco.utils import canonical_hit_ids

logger = logging.getLogger(__name__)

ParticleInput = Union[pd.DataFrame, Sequence[Particle]]


class Node:
    r"""
    One collapsed subtree of a :class:`Hierarchy`.

    Attributes
    ----------
    pdg : int
        Type code of the first constituent (the particle that seeded the node).
    energy : float
        Energy of that constituent.
    particles : tuple of Particle
        Constituent candidates, ordered by ``particle_id``.
    hit_ids : ndarray of int64
        Union of the constituents' hits, sorted and unique.
    children : list of Node
        Child nodes, exclusively owned by this node.
    """

    __slots__ = ("_hierarchy", "pdg", "energy", "particles", "hit_ids", "children")

    def __init__(self, hierarchy: "Hierarchy", particles: Sequence[Particle], hit_ids: np.ndarray) -> None:
        self._hierarchy = hierarchy
        self.pdg = particles[0].pdg if particles else 0
        self.energy = particles[0].energy if particles else 0.0
        self.particles: Tuple[Particle, ...] = tuple(sorted(particles, key=lambda p: p.particle_id))
        self.hit_ids = canonical_hit_ids(hit_ids)
        self.children: List[Node] = []

    @property
    def n_hits(self) -> int:
        return int(self.hit_ids.size)

    @property
    def is_reconstructable(self) -> bool:
        return self._hierarchy.is_reconstructable(self)

    def iter_subtree(self) -> Iterator[Tuple["Node", int]]:
        """Pre-order walk yielding ``(node, depth)``, without recursion."""
        stack: List[Tuple[Node, int]] = [(self, 0)]
        while stack:
            node, depth = stack.pop()
            yield node, depth
            for child in reversed(node.children):
                stack.append((child, depth + 1))

    def to_string(self, prefix: str = "") -> str:
        r"""
        Render this node and its subtree, one line per node.

        Each depth level adds two spaces of indentation after ``prefix``.
        """
        lines = []
        for node, depth in self.iter_subtree():
            lines.append(prefix + "  " * depth + self._hierarchy.describe(node) + "\n")
        return "".join(lines)

    def __repr__(self) -> str:
        return f"Node(pdg={self.pdg}, n_particles={len(self.particles)}, n_hits={self.n_hits}, n_children={len(self.children)})"


class Hierarchy:
    r"""
    A forest of :class:`Node` objects built from a flat candidate list.

    Construction follows one routine parameterised by :class:`FoldMode`. For
    each candidate the per-node decision :meth:`_fold` returns the node's
    constituents, any flat child subtrees and the daughters still to expand:

    ===================  =====================================================
    mode                 node seeded by candidate ``p``
    ===================  =====================================================
    ``NONE``             ``{p}``; every kept daughter expands into a child
    ``PRIMARIES``        ``p`` plus all descendants; no children
    ``LEADING_SHOWERS``  showers/neutrons: ``p`` plus all descendants;
                         otherwise ``{p}`` with daughters expanded
    ``BOTH``             showers/neutrons: ``p`` plus all descendants;
                         otherwise ``p`` plus its track-like chain, with one
                         flat child per leading shower/neutron
    ===================  =====================================================

    Neutron sub-trees are dropped entirely when ``remove_neutrons`` is set.
    Expansion is breadth-first over an explicit queue, so arbitrarily deep
    daughter chains never hit the interpreter's recursion limit.

    Attributes
    ----------
    fold_mode : FoldMode
        Folding policy used by the last :meth:`fill`.
    root_particle : Particle or None
        The distinguished interaction candidate (neutrino), if any.
    root_nodes : list of Node
        One node per primary, ordered by the primary's ``particle_id``.
    n_dropped_hits : int
        Hits whose owner could not be resolved.
    """

    shower_pdgs: FrozenSet[int] = frozenset()
    neutron_pdgs: FrozenSet[int] = frozenset()

    def __init__(self, remove_neutrons: bool = False) -> None:
        self.remove_neutrons = bool(remove_neutrons)
        self.fold_mode = FoldMode.NONE
        self.root_particle: Optional[Particle] = None
        self.root_nodes: List[Node] = []
        self.n_dropped_hits = 0
        self._hits: Dict[Particle, np.ndarray] = {}
        self._filled = False
        self.log = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # classification
    # ------------------------------------------------------------------
    def is_shower(self, particle: Particle) -> bool:
        return particle.abs_pdg in self.shower_pdgs

    def is_neutron(self, particle: Particle) -> bool:
        return particle.abs_pdg in self.neutron_pdgs

    def _is_excluded(self, particle: Particle) -> bool:
        return self.remove_neutrons and self.is_neutron(particle)

    def _is_folded_subtree(self, particle: Particle) -> bool:
        return self.is_shower(particle) or (self.is_neutron(particle) and not self.remove_neutrons)

    # ------------------------------------------------------------------
    # traversal helpers
    # ------------------------------------------------------------------
    def _descendants(self, particle: Particle) -> List[Particle]:
        """All descendants in pre-order, skipping excluded (neutron) sub-trees."""
        out: List[Particle] = []
        stack = [d for d in reversed(particle.daughters)]
        while stack:
            current = stack.pop()
            if self._is_excluded(current):
                continue
            out.append(current)
            stack.extend(reversed(current.daughters))
        return out

    def _split_descendants(self, particle: Particle) -> Tuple[List[Particle], List[Particle]]:
        """
        Separate the track-like chain below ``particle`` from its leading showers/neutrons.

        Descent stops at the first shower or neutron on each branch.
        """
        tracks: List[Particle] = []
        leading: List[Particle] = []
        stack = [d for d in reversed(particle.daughters)]
        while stack:
            current = stack.pop()
            if self.is_shower(current) or self.is_neutron(current):
                if not self._is_excluded(current):
                    leading.append(current)
                continue
            tracks.append(current)
            stack.extend(reversed(current.daughters))
        return tracks, leading

    def _hits_of(self, particles: Sequence[Particle]) -> np.ndarray:
        # not every candidate owns hits
        chunks = [self._hits[p] for p in particles if p in self._hits]
        if not chunks:
            return np.empty((0,), dtype=np.int64)
        return np.concatenate(chunks)

    def _make_node(self, particles: Sequence[Particle]) -> Node:
        return Node(self, particles, self._hits_of(particles))

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    def _fold(self, particle: Particle, is_primary: bool) -> Tuple[List[Particle], List[Particle], List[Particle]]:
        r"""
        Per-node folding decision.

        Returns
        -------
        constituents : list of Particle
            Candidates merged into the node seeded by ``particle`` (seed first).
        flat_children : list of Particle
            Seeds of child nodes that swallow their whole sub-tree.
        expand : list of Particle
            Daughters that become child nodes through the same decision.
        """
        mode = self.fold_mode
        if mode is FoldMode.PRIMARIES:
            return [particle, *self._descendants(particle)], [], []
        if self._is_folded_subtree(particle) and mode in (FoldMode.BOTH, FoldMode.LEADING_SHOWERS):
            return [particle, *self._descendants(particle)], [], []
        if mode is FoldMode.BOTH and is_primary:
            tracks, leading = self._split_descendants(particle)
            return [particle, *tracks], leading, []
        return [particle], [], [d for d in particle.daughters if not self._is_excluded(d)]

    def _expand(self, particle: Particle, is_primary: bool, queue: Deque[Tuple[Particle, Node]]) -> Node:
        constituents, flat_children, expand = self._fold(particle, is_primary)
        node = self._make_node(constituents)
        for seed in flat_children:
            node.children.append(self._make_node([seed, *self._descendants(seed)]))
        for daughter in expand:
            queue.append((daughter, node))
        return node

    def _build(self, primaries: Sequence[Particle]) -> None:
        queue: Deque[Tuple[Particle, Node]] = deque()
        for primary in primaries:
            self.root_nodes.append(self._expand(primary, True, queue))
        while queue:
            particle, parent = queue.popleft()
            parent.children.append(self._expand(particle, False, queue))
        self.log.debug(
            "Built %d root node(s), %d node(s) in total (fold mode: %s)",
            len(self.root_nodes), len(self.flattened_nodes()), self.fold_mode.value,
        )

    def _start_fill(self, fold_mode: FoldMode) -> None:
        if self._filled:
            raise HierarchyError(f"{self.__class__.__name__} has already been filled")
        self._filled = True
        self.fold_mode = fold_mode

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def flattened_nodes(self) -> List[Node]:
        r"""
        All nodes in breadth-first order, roots first.

        Every node appears exactly once and after its parent.
        """
        out: List[Node] = list(self.root_nodes)
        queue: Deque[Node] = deque(self.root_nodes)
        while queue:
            for child in queue.popleft().children:
                out.append(child)
                queue.append(child)
        return out

    def is_reconstructable(self, node: Node) -> bool:
        raise TypeError(f"Reconstructability is only defined for truth hierarchies, not {self.__class__.__name__}")

    def describe(self, node: Node) -> str:
        return f"PDG: {node.pdg} Hits: {node.n_hits}"

    def to_string(self) -> str:
        """Human-readable dump; each root's block is followed by a blank line."""
        return "".join(node.to_string("") + "\n" for node in self.root_nodes)

    def __len__(self) -> int:
        return len(self.flattened_nodes())

    def __iter__(self) -> Iterator[Node]:
        return iter(self.root_nodes)


class MCHierarchy(Hierarchy):
    r"""
    Hierarchy of truth particles.

    Parameters
    ----------
    criteria : ReconstructabilityCriteria, optional
        Governs which nodes are matchable and whether neutron sub-trees are
        discarded. Defaults to :class:`ReconstructabilityCriteria()`.
    """

    shower_pdgs = frozenset((ELECTRON, PHOTON))
    neutron_pdgs = frozenset((NEUTRON,))

    def __init__(self, criteria: Optional[ReconstructabilityCriteria] = None) -> None:
        self.criteria = criteria if criteria is not None else ReconstructabilityCriteria()
        super().__init__(remove_neutrons=self.criteria.remove_neutrons)
        self._view_ids = np.empty((0,), dtype=np.int64)
        self._view_codes = np.empty((0,), dtype=np.int64)

    def fill(
        self,
        particles: ParticleInput,
        hits: pd.DataFrame,
        fold_mode: FoldMode = FoldMode.NONE,
    ) -> "MCHierarchy":
        r"""
        Build the forest from truth particles and their hits.

        Parameters
        ----------
        particles : pandas.DataFrame or sequence of Particle
            Truth particle table (see :func:`lartpc_reco.data.build_particles`)
            or already-linked particles.
        hits : pandas.DataFrame
            Columns ``hit_id``, ``view`` and ``particle_id`` (main contributing
            truth particle; negative or missing when unknown).
        fold_mode : FoldMode, optional
            Folding policy.

        Returns
        -------
        MCHierarchy
            ``self``, for chaining.

        Raises
        ------
        HierarchyError
            On malformed particle tables or a second call to ``fill``.
        """
        self._start_fill(fold_mode)
        if isinstance(particles, pd.DataFrame):
            particles = build_particles(particles)
        particles = list(particles)

        self._hits, self.n_dropped_hits = hits_by_owner(hits, particles)
        if "view" not in hits.columns:
            raise KeyError("Hit table is missing required column(s): view")
        ids = hits["hit_id"].to_numpy(dtype=np.int64)
        codes = hits["view"].to_numpy(dtype=np.int64)
        order = np.argsort(ids, kind="stable")
        self._view_ids, self._view_codes = ids[order], codes[order]

        self.root_particle, primaries = get_mc_primaries(particles)
        if self.remove_neutrons:
            primaries = [p for p in primaries if not self.is_neutron(p)]
        self.log.debug("Found %d truth primaries", len(primaries))
        self._build(primaries)
        return self

    def view_counts(self, node: Node) -> np.ndarray:
        """Hits per view ``[U, V, W]`` for ``node``."""
        if node.n_hits == 0 or self._view_ids.size == 0:
            return np.zeros(len(View), dtype=np.int64)
        idx = np.searchsorted(self._view_ids, node.hit_ids)
        idx_c = np.minimum(idx, self._view_ids.size - 1)
        found = self._view_ids[idx_c] == node.hit_ids
        codes = self._view_codes[idx_c[found]]
        codes = codes[(codes >= 0) & (codes < len(View))]
        return np.bincount(codes, minlength=len(View))

    def is_reconstructable(self, node: Node) -> bool:
        r"""
        Apply the :class:`ReconstructabilityCriteria` to ``node``.

        A node with no hits is never reconstructable; otherwise it needs
        ``min_hits`` hits and at least ``min_good_views`` views holding
        ``min_hits_for_good_view`` hits each.
        """
        c = self.criteria
        if node.n_hits == 0 or node.n_hits < c.min_hits:
            return False
        counts = self.view_counts(node)
        n_good = int(np.count_nonzero(counts >= c.min_hits_for_good_view))
        return n_good >= c.min_good_views

    def describe(self, node: Node) -> str:
        return f"PDG: {node.pdg} Energy: {node.energy:.6f} Hits: {node.n_hits}"


class RecoHierarchy(Hierarchy):
    """Hierarchy of reconstructed particle-flow objects under a neutrino root."""

    shower_pdgs = frozenset((ELECTRON,))

    def __init__(self) -> None:
        super().__init__(remove_neutrons=False)

    def fill(
        self,
        pfos: ParticleInput,
        pfo_hits: pd.DataFrame,
        fold_mode: FoldMode = FoldMode.NONE,
    ) -> "RecoHierarchy":
        r"""
        Build the forest from reconstructed particles.

        Parameters
        ----------
        pfos : pandas.DataFrame or sequence of Particle
            Reconstructed particle table or already-linked particles.
        pfo_hits : pandas.DataFrame
            Columns ``particle_id`` and ``hit_id`` (optionally ``isolated``);
            explicit and isolated hits are merged.
        fold_mode : FoldMode, optional
            Folding policy.

        Raises
        ------
        NoRootFoundError
            If ``pfos`` is non-empty but holds no neutrino root.
        """
        self._start_fill(fold_mode)
        if isinstance(pfos, pd.DataFrame):
            pfos = build_particles(pfos)
        pfos = list(pfos)

        self._hits, self.n_dropped_hits = hits_by_owner(pfo_hits, pfos)
        self.root_particle, primaries = get_reco_primaries(pfos)
        self.log.debug("Found %d reconstructed primaries", len(primaries))
        self._build(primaries)
        return self


def get_mc_primaries(particles: Sequence[Particle]) -> Tuple[Optional[Particle], List[Particle]]:
    r"""
    Identify the neutrino root and the primaries of a truth particle list.

    The primary of a particle is the top-most non-neutrino particle of its
    ancestry; a neutrino whose ancestry holds nothing else is the root. When
    no primary exists but a root does, the root itself is returned as the
    only primary.

    Returns
    -------
    root : Particle or None
    primaries : list of Particle
        Unique primaries ordered by ``particle_id``.
    """
    root: Optional[Particle] = None
    primaries: Dict[int, Particle] = {}
    for particle in particles:
        chain = particle.ancestry()
        primary = next((p for p in reversed(chain) if not p.is_neutrino), None)
        if primary is None:
            if root is None:
                root = particle
            continue
        primaries.setdefault(id(primary), primary)
    ordered = sorted(primaries.values(), key=lambda p: p.particle_id)
    if not ordered and root is not None:
        ordered = [root]
    return root, ordered


def get_reco_primaries(pfos: Sequence[Particle]) -> Tuple[Optional[Particle], List[Particle]]:
    r"""
    Find the reconstructed neutrino and its direct daughters.

    The root is the first pfo that is a neutrino or whose top-level ancestor
    is one. An empty list yields ``(None, [])``.

    Raises
    ------
    NoRootFoundError
        If ``pfos`` is non-empty and no neutrino root exists.
    """
    root: Optional[Particle] = None
    for pfo in pfos:
        if pfo.is_neutrino:
            root = pfo
            break
        top = pfo.top_ancestor()
        if top.is_neutrino:
            root = top
            break
        logger.debug("Pfo %d is not part of a neutrino hierarchy", pfo.particle_id)
    if root is None:
        if pfos:
            raise NoRootFoundError(f"No neutrino root among {len(pfos)} reconstructed particle(s)")
        return None, []
    return root, sorted(root.daughters, key=lambda p: p.particle_id)


def fill_mc_hierarchy(
    particles: ParticleInput,
    hits: pd.DataFrame,
    fold_to_primaries: bool = False,
    fold_to_leading_showers: bool = False,
    criteria: Optional[ReconstructabilityCriteria] = None,
) -> MCHierarchy:
    """Build an :class:`MCHierarchy` from the two boolean folding switches."""
    mode = FoldMode.from_flags(fold_to_primaries, fold_to_leading_showers)
    return MCHierarchy(criteria).fill(particles, hits, mode)


def fill_reco_hierarchy(
    pfos: ParticleInput,
    pfo_hits: pd.DataFrame,
    fold_to_primaries: bool = False,
    fold_to_leading_showers: bool = False,
) -> RecoHierarchy:
    """Build a :class:`RecoHierarchy` from the two boolean folding switches."""
    mode = FoldMode.from_flags(fold_to_primaries, fold_to_leading_showers)
    return RecoHierarchy().fill(pfos, pfo_hits, mode)
