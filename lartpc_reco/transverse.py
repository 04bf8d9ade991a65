r"""
Transverse super-clusters and the geometric predicates relating clusters.

Coordinates are ``(x, z)`` with ``z`` the longitudinal (wire) axis. A
*transverse* cluster runs mostly along ``x``; transverse super-clusters are
therefore fitted as :math:`z = \bar z + m (x - \bar x)` with direction
:math:`(1, m)/\sqrt{1+m^2}`.
"""
from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from lartpc_reco.clusters import Cluster
from lartpc_reco.errors import FitError
from lartpc_reco.kernels import nearest_coordinate
from lartpc_reco.utils import fit_line, weighted_moments


class TransverseCluster:
    r"""
    A seed cluster plus its associated satellites, fitted as one straight line.

    The weighted least-squares fit runs over every hit of the seed and the
    distinct associated clusters (unit weight per hit). With the fitted line
    :math:`z(x)` and the overall hit range :math:`[x_\min, x_\max]`:

    .. math::
        v_\text{inner} = (x_\min, z(x_\min)),\qquad
        v_\text{outer} = (x_\max, z(x_\max)).

    When the fit is degenerate (no spread in ``x``) both vertices collapse
    to the centroid and the direction falls back to :math:`(1, 0)`.

    Parameters
    ----------
    seed : Cluster
        The seed cluster.
    associated : sequence of Cluster
        Clusters associated with the seed.

    Raises
    ------
    FitError
        If no hit weight is accumulated.
    """

    __slots__ = ("seed", "associated", "inner_vertex", "outer_vertex", "direction")

    def __init__(self, seed: Cluster, associated: Sequence[Cluster] = ()) -> None:
        self.seed = seed
        self.associated: Tuple[Cluster, ...] = tuple(associated)

        members = {id(seed): seed}
        for cluster in self.associated:
            members.setdefault(id(cluster), cluster)
        positions = np.concatenate([c.positions for c in members.values()], axis=0)
        x = positions[:, 0]
        z = positions[:, 1]

        sw, swx, swz, _, _ = weighted_moments(x, z)
        if sw <= 0.0:
            raise FitError(f"Transverse cluster seeded by {seed.cluster_id} has no hit weight")

        line = fit_line(x, z)
        if line is None:
            centroid = np.array([swx / sw, swz / sw], dtype=np.float64)
            self.inner_vertex = centroid.copy()
            self.outer_vertex = centroid.copy()
            self.direction = np.array([1.0, 0.0], dtype=np.float64)
        else:
            min_x, max_x = float(x.min()), float(x.max())
            self.inner_vertex = np.array([min_x, line.z_at(min_x)], dtype=np.float64)
            self.outer_vertex = np.array([max_x, line.z_at(max_x)], dtype=np.float64)
            self.direction = line.direction

    @property
    def clusters(self) -> Tuple[Cluster, ...]:
        return (self.seed, *self.associated)

    def __repr__(self) -> str:
        return (
            f"TransverseCluster(seed={self.seed.cluster_id}, n_associated={len(self.associated)}, "
            f"inner={self.inner_vertex.tolist()}, outer={self.outer_vertex.tolist()})"
        )


def _cross(a: np.ndarray, b: np.ndarray) -> float:
    return float(a[0] * b[1] - a[1] * b[0])


def average_centroid(cluster: Cluster) -> np.ndarray:
    """Midpoint of the inner- and outer-layer centroids."""
    return 0.5 * (cluster.inner_centroid + cluster.outer_centroid)


def is_point_associated(
    cluster1: Cluster,
    cluster2: Cluster,
    window: float,
    tan_angle: float,
) -> bool:
    r"""
    Whether two clusters sit side by side along the transverse direction.

    With :math:`(\Delta x, \Delta z)` the separation of the average
    inner/outer centroids, the clusters are associated iff

    .. math::
        |\Delta x| < w,\qquad |\Delta z| < w,\qquad
        |\Delta z| < |\Delta x|\,|\tan\theta|.
    """
    d = average_centroid(cluster2) - average_centroid(cluster1)
    dx, dz = abs(float(d[0])), abs(float(d[1]))
    return dx < window and dz < window and dz < dx * abs(tan_angle)


def is_vertex_associated(
    transverse_cluster: TransverseCluster,
    vertex: np.ndarray,
    window: float,
    max_transverse_separation: float,
) -> bool:
    r"""
    Whether ``vertex`` lies in the tolerance band around a super-cluster's line.

    The perpendicular distance must satisfy
    :math:`|\hat d \times (v - v_\text{inner})|^2 \le s_\max^2`, and the
    longitudinal projection must not fall more than ``window`` before the
    inner vertex or beyond the outer vertex.
    """
    direction = transverse_cluster.direction
    to_inner = np.asarray(vertex, dtype=np.float64) - transverse_cluster.inner_vertex
    to_outer = np.asarray(vertex, dtype=np.float64) - transverse_cluster.outer_vertex

    if _cross(direction, to_inner) ** 2 > max_transverse_separation * max_transverse_separation:
        return False
    if float(direction @ to_inner) < -window or float(direction @ to_outer) > window:
        return False
    return True


def are_transverse_associated(
    inner: TransverseCluster,
    outer: TransverseCluster,
    min_cos_relative_angle: float,
    window: float,
    max_transverse_separation: float,
) -> bool:
    r"""
    Whether two super-clusters continue each other.

    Their directions must be nearly parallel
    (:math:`\hat d_1\cdot\hat d_2 \ge \cos_\min`), the outer super-cluster's
    inner vertex must lie in the inner one's band, and the inner one's outer
    vertex in the outer one's band.
    """
    if float(inner.direction @ outer.direction) < min_cos_relative_angle:
        return False
    if not is_vertex_associated(inner, outer.inner_vertex, window, max_transverse_separation):
        return False
    if not is_vertex_associated(outer, inner.outer_vertex, window, max_transverse_separation):
        return False
    return True


def is_extremal_cluster(is_forward: bool, current: Cluster, test: Cluster) -> bool:
    """Forward: ``test`` reaches further in ``+x``. Backward: further in ``-x``."""
    current_min, current_max = current.extremal_x()
    test_min, test_max = test.extremal_x()
    if is_forward:
        return test_max > current_max
    return test_min < current_min


def transverse_length(seed: Cluster, associated: Sequence[Cluster]) -> float:
    """Extent in ``x`` spanned by ``seed`` and ``associated`` together."""
    overall_min, overall_max = seed.extremal_x()
    for cluster in associated:
        local_min, local_max = cluster.extremal_x()
        overall_min = min(overall_min, local_min)
        overall_max = max(overall_max, local_max)
    return overall_max - overall_min


def projected_coordinate_x(
    cluster: Cluster,
    target_z: float,
    max_longitudinal_displacement: float,
) -> Optional[float]:
    r"""
    Project a (longitudinal) cluster onto depth ``target_z``.

    The target must lie within the inner/outer centroid depths widened by
    ``max_longitudinal_displacement``; then the hit nearest in ``z``
    (strictly closer than the tolerance, first one on ties) gives the result.

    Returns
    -------
    float or None
        Projected ``x``, or ``None`` when there is no projection.
    """
    min_z = float(cluster.inner_centroid[1])
    max_z = float(cluster.outer_centroid[1])
    if target_z < min_z - max_longitudinal_displacement or target_z > max_z + max_longitudinal_displacement:
        return None
    found, x = nearest_coordinate(
        np.ascontiguousarray(cluster.z), np.ascontiguousarray(cluster.x),
        float(target_z), float(max_longitudinal_displacement),
    )
    return float(x) if found else None
