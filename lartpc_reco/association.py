from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

import networkx as nx
import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from lartpc_reco.clusters import Cluster, sort_by_occupied_layers
from lartpc_reco.config import TransverseAssociationConfig
from lartpc_reco.errors import SelfAssociationError
from lartpc_reco.transverse import (
    TransverseCluster,
    are_transverse_associated,
    average_centroid,
    is_extremal_cluster,
    is_point_associated,
    projected_coordinate_x,
    transverse_length,
)

LONGITUDINAL_DIRECTION = np.array([0.0, 1.0])


@dataclass(eq=False)
class ClusterAssociation:
    """Forward (``+x``) and backward (``-x``) neighbours of one cluster."""
    forward_associations: Set[Cluster] = field(default_factory=set)
    backward_associations: Set[Cluster] = field(default_factory=set)


AssociationMap = Dict[Cluster, ClusterAssociation]


def prune_merge_map(merge_map: nx.DiGraph) -> nx.DiGraph:
    r"""
    Keep only immediate-neighbour edges of a directed merge map.

    An edge :math:`a\to b` survives iff no other direct successor :math:`m`
    of :math:`a` (:math:`m \ne b`) also has an edge :math:`m\to b`:

    .. math::
        a\to b \text{ kept} \iff \nexists\, m\in\operatorname{succ}(a)\setminus\{b\}
        : m\to b.

    Applying the function to its own output changes nothing, since every
    surviving edge already has no such intermediate in the (larger) input.

    Parameters
    ----------
    merge_map : networkx.DiGraph
        Dense candidate merges.

    Returns
    -------
    networkx.DiGraph
        The pruned edges (nodes without surviving edges are omitted).

    Raises
    ------
    SelfAssociationError
        If ``merge_map`` holds a self-loop.
    """
    pruned = nx.DiGraph()
    for source, targets in merge_map.adjacency():
        for target in targets:
            if target is source:
                raise SelfAssociationError(source)
            if any(merge_map.has_edge(middle, target) for middle in targets if middle is not target):
                continue
            pruned.add_edge(source, target)
    return pruned


class TransverseAssociation:
    r"""
    Associate short transverse clusters into chains of immediate neighbours.

    Pipeline (:meth:`populate_cluster_association_map`)
    ---------------------------------------------------
    1. Order the input by occupied layers (:func:`sort_by_occupied_layers`).
    2. Split it into transverse and longitudinal candidates
       (:meth:`separate_input_clusters`).
    3. Build one :class:`TransverseCluster` per transverse seed from the seed
       and its point-associated neighbours inside the window bounded by the
       longitudinal clusters (:meth:`fill_transverse_cluster_list`).
    4. Build the dense forward merge map and prune it, forwards and backwards,
       to immediate neighbours (:meth:`fill_cluster_merge_maps`).
    5. Convert the pruned maps into an :data:`AssociationMap`
       (:meth:`fill_cluster_association_map`).

    Parameters
    ----------
    config : TransverseAssociationConfig, optional
        Geometric thresholds.
    """

    def __init__(self, config: Optional[TransverseAssociationConfig] = None) -> None:
        self.config = config if config is not None else TransverseAssociationConfig()
        self.log = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # classification
    # ------------------------------------------------------------------
    def separate_input_clusters(self, clusters: Sequence[Cluster]) -> Tuple[List[Cluster], List[Cluster]]:
        r"""
        Split clusters into transverse and longitudinal candidates.

        - At most ``transverse_cluster_max_calo_hits`` hits: transverse.
        - Otherwise, with a successful fit direction :math:`\hat d`:
          if :math:`|\hat d\cdot\hat z| < \cos\theta` the cluster is transverse
          when shorter than ``transverse_cluster_max_length``; else it is
          longitudinal when longer than ``longitudinal_cluster_min_length``.
        - Anything else (failed fit, wrong length) belongs to neither set.
        """
        c = self.config
        max_len2 = c.transverse_cluster_max_length ** 2
        min_len2 = c.longitudinal_cluster_min_length ** 2
        cos_angle = c.cluster_cos_angle

        transverse: List[Cluster] = []
        longitudinal: List[Cluster] = []
        for cluster in clusters:
            if cluster.n_hits <= c.transverse_cluster_max_calo_hits:
                transverse.append(cluster)
                continue
            fit = cluster.fit
            if not fit.success:
                continue
            length2 = cluster.length_squared
            if abs(float(fit.direction @ LONGITUDINAL_DIRECTION)) < cos_angle:
                if length2 < max_len2:
                    transverse.append(cluster)
            elif length2 > min_len2:
                longitudinal.append(cluster)
        self.log.debug(
            "Separated %d cluster(s): %d transverse, %d longitudinal",
            len(clusters), len(transverse), len(longitudinal),
        )
        return transverse, longitudinal

    # ------------------------------------------------------------------
    # transverse clusters
    # ------------------------------------------------------------------
    def _projection_window(self, cluster: Cluster, longitudinal: Sequence[Cluster]) -> Tuple[float, float]:
        c = self.config
        window_min, window_max = -np.inf, np.inf
        cluster_min_x, cluster_max_x = cluster.extremal_x()
        cluster_min_z, cluster_max_z = cluster.extremal_z()
        for other in longitudinal:
            if other is cluster:
                continue
            for target_z in (cluster_min_z, cluster_max_z):
                projected_x = projected_coordinate_x(other, target_z, c.max_longitudinal_displacement)
                if projected_x is None:
                    continue
                if projected_x < cluster_min_x:
                    window_min = max(window_min, projected_x)
                elif projected_x > cluster_max_x:
                    window_max = min(window_max, projected_x)
        return window_min, window_max

    def get_associated_clusters(
        self,
        cluster: Cluster,
        transverse: Sequence[Cluster],
        longitudinal: Sequence[Cluster],
        tree: Optional[cKDTree] = None,
    ) -> List[Cluster]:
        r"""
        Transverse clusters point-associated with ``cluster`` inside its window.

        Longitudinal clusters projected to the seed's extremal depths bound the
        permissible ``x`` range on either side; a failed projection leaves that
        side unconstrained.

        Parameters
        ----------
        cluster : Cluster
            The seed.
        transverse, longitudinal : sequence of Cluster
            Output of :meth:`separate_input_clusters`.
        tree : scipy.spatial.cKDTree, optional
            KD-tree over the average centroids of ``transverse`` (same order),
            used to shortlist candidates within the association window.

        Returns
        -------
        list of Cluster
            Associated clusters, in ``transverse`` order.
        """
        c = self.config
        window_min, window_max = self._projection_window(cluster, longitudinal)

        if tree is not None:
            # Chebyshev ball is a superset of the strict window test
            idx = tree.query_ball_point(average_centroid(cluster), r=c.cluster_window, p=np.inf)
            candidates = [transverse[i] for i in sorted(idx)]
        else:
            candidates = list(transverse)

        associated: List[Cluster] = []
        for other in candidates:
            if other is cluster:
                continue
            other_min_x, other_max_x = other.extremal_x()
            if other_min_x > window_max or other_max_x < window_min:
                continue
            if is_point_associated(cluster, other, c.cluster_window, c.cluster_tan_angle):
                associated.append(other)
        return associated

    def fill_transverse_cluster_list(
        self,
        transverse: Sequence[Cluster],
        longitudinal: Sequence[Cluster],
    ) -> List[TransverseCluster]:
        """One fitted super-cluster per transverse seed wide enough in ``x``."""
        c = self.config
        tree = None
        if transverse:
            centroids = np.array([average_centroid(t) for t in transverse], dtype=np.float64)
            tree = cKDTree(centroids, balanced_tree=True, compact_nodes=True)

        out: List[TransverseCluster] = []
        for seed in transverse:
            associated = self.get_associated_clusters(seed, transverse, longitudinal, tree=tree)
            if transverse_length(seed, associated) < c.min_transverse_displacement:
                continue
            out.append(TransverseCluster(seed, associated))
        self.log.debug("Built %d transverse cluster(s) from %d seed(s)", len(out), len(transverse))
        return out

    # ------------------------------------------------------------------
    # merge maps
    # ------------------------------------------------------------------
    def build_full_merge_map(self, transverse_clusters: Sequence[TransverseCluster]) -> nx.DiGraph:
        r"""
        Dense forward merge map over the super-clusters' seeds.

        Edge ``inner -> outer`` exists when ``outer`` reaches further in
        ``+x``, ``inner`` reaches further in ``-x``, and the two
        super-clusters are transverse-associated.
        """
        c = self.config
        full = nx.DiGraph()
        for inner_tc in transverse_clusters:
            inner = inner_tc.seed
            for outer_tc in transverse_clusters:
                outer = outer_tc.seed
                if inner is outer:
                    continue
                if not (is_extremal_cluster(True, inner, outer) and is_extremal_cluster(False, outer, inner)):
                    continue
                if are_transverse_associated(
                    inner_tc, outer_tc,
                    c.min_cos_relative_angle, c.cluster_window, c.max_transverse_separation,
                ):
                    full.add_edge(inner, outer)
        return full

    def fill_cluster_merge_maps(
        self,
        transverse_clusters: Sequence[TransverseCluster],
    ) -> Tuple[nx.DiGraph, nx.DiGraph]:
        r"""
        Pruned forward and backward merge maps.

        The dense map is pruned as a forward graph and, reversed, as a
        backward graph; the surviving edges of both are unioned.

        Returns
        -------
        forward : networkx.DiGraph
            Edges ``inner -> outer``.
        backward : networkx.DiGraph
            The same edges reversed, ``outer -> inner``.
        """
        full_forward = self.build_full_merge_map(transverse_clusters)
        full_backward = full_forward.reverse(copy=True)

        forward = nx.DiGraph()
        forward.add_edges_from(prune_merge_map(full_forward).edges)
        forward.add_edges_from((inner, outer) for outer, inner in prune_merge_map(full_backward).edges)
        backward = forward.reverse(copy=True)
        self.log.debug(
            "Merge maps: %d dense edge(s), %d immediate-neighbour edge(s)",
            full_forward.number_of_edges(), forward.number_of_edges(),
        )
        return forward, backward

    def fill_cluster_association_map(self, forward: nx.DiGraph, backward: nx.DiGraph) -> AssociationMap:
        """Union the pruned maps into per-cluster forward/backward associations."""
        association_map: AssociationMap = {}

        def _add(inner: Cluster, outer: Cluster) -> None:
            if inner is outer:
                raise SelfAssociationError(inner)
            association_map.setdefault(inner, ClusterAssociation()).forward_associations.add(outer)
            association_map.setdefault(outer, ClusterAssociation()).backward_associations.add(inner)

        for inner, outer in forward.edges:
            _add(inner, outer)
        for outer, inner in backward.edges:
            _add(inner, outer)
        return association_map

    # ------------------------------------------------------------------
    # driver
    # ------------------------------------------------------------------
    def populate_cluster_association_map(self, clusters: Sequence[Cluster]) -> AssociationMap:
        r"""
        Run the whole association on one view's clusters.

        Returns
        -------
        AssociationMap
            Forward/backward neighbours keyed by cluster; clusters without any
            association are absent.

        Raises
        ------
        AssociationError
            On a self-association or an unfittable super-cluster.
        """
        ordered = sort_by_occupied_layers(clusters)
        transverse, longitudinal = self.separate_input_clusters(ordered)
        transverse_clusters = self.fill_transverse_cluster_list(transverse, longitudinal)
        forward, backward = self.fill_cluster_merge_maps(transverse_clusters)
        return self.fill_cluster_association_map(forward, backward)


def associations_to_frame(association_map: AssociationMap) -> pd.DataFrame:
    """Forward association edges as a DataFrame ``(inner_cluster_id, outer_cluster_id)``, sorted."""
    rows = sorted(
        (inner.cluster_id, outer.cluster_id)
        for inner, assoc in association_map.items()
        for outer in assoc.forward_associations
    )
    return pd.DataFrame(rows, columns=["inner_cluster_id", "outer_cluster_id"], dtype=np.int64)
