from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from lartpc_reco.kernels import (
    extremal_range,
    line_fit_sums,
    sorted_intersection_size,
)


def canonical_hit_ids(hit_ids: Iterable[int] | np.ndarray) -> np.ndarray:
    r"""
    Materialize hit identifiers in **canonical (identity) order**.

    Parameters
    ----------
    hit_ids : iterable of int or ndarray
        Hit identifiers, possibly unsorted and with duplicates.

    Returns
    -------
    ndarray of int64, shape (K,)
        Sorted, duplicate-free, C-contiguous ids. Empty input gives an empty
        ``int64`` array.

    Examples
    --------
    >>> canonical_hit_ids([5, 1, 5, 3])
    array([1, 3, 5])
    """
    arr = np.asarray(list(hit_ids) if not isinstance(hit_ids, np.ndarray) else hit_ids, dtype=np.int64)
    if arr.size == 0:
        return np.empty((0,), dtype=np.int64)
    return np.ascontiguousarray(np.unique(arr.ravel()), dtype=np.int64)


def count_shared_hits(a: np.ndarray, b: np.ndarray) -> int:
    r"""
    Number of hits shared by two canonical id arrays.

    Parameters
    ----------
    a, b : ndarray of int64
        Outputs of :func:`canonical_hit_ids` (sorted and unique).

    Returns
    -------
    int
        :math:`|A\cap B|`, never larger than ``min(len(a), len(b))``.

    Examples
    --------
    >>> count_shared_hits(np.array([1, 2, 3]), np.array([2, 3, 4]))
    2
    """
    if a.size == 0 or b.size == 0:
        return 0
    # disjoint ranges cannot overlap
    if a[-1] < b[0] or b[-1] < a[0]:
        return 0
    return int(sorted_intersection_size(a, b))


def extremal_coordinates(values: np.ndarray) -> Tuple[float, float]:
    r"""
    Minimum and maximum of a coordinate column.

    Parameters
    ----------
    values : array_like, shape (N,)
        One coordinate per hit.

    Returns
    -------
    (float, float)
        ``(min, max)``.

    Raises
    ------
    ValueError
        If ``values`` is empty.
    """
    v = np.ascontiguousarray(values, dtype=np.float64)
    if v.size == 0:
        raise ValueError("Cannot take extremal coordinates of an empty hit collection.")
    lo, hi = extremal_range(v)
    return float(lo), float(hi)


@dataclass(frozen=True)
class LineFit:
    r"""
    Result of a weighted least-squares fit :math:`z = \bar z + m (x - \bar x)`.

    Attributes
    ----------
    slope : float
        :math:`m = \frac{S_w S_{wzx} - S_{wx} S_{wz}}{S_w S_{wxx} - S_{wx}^2}`.
    mean_x, mean_z : float
        Weighted centroid :math:`(\bar x, \bar z)`.
    """
    slope: float
    mean_x: float
    mean_z: float

    def z_at(self, x: float) -> float:
        return self.mean_z + self.slope * (x - self.mean_x)

    @property
    def direction(self) -> np.ndarray:
        r"""Unit vector :math:`(1, m)/\sqrt{1+m^2}` in the ``(x, z)`` plane."""
        norm = np.sqrt(1.0 + self.slope * self.slope)
        return np.array([1.0 / norm, self.slope / norm], dtype=np.float64)


def weighted_moments(
    x: np.ndarray,
    z: np.ndarray,
    weights: Optional[np.ndarray] = None,
) -> Tuple[float, float, float, float, float]:
    r"""
    Weighted moment sums ``(S_w, S_wx, S_wz, S_wxx, S_wzx)`` of 2-D points.

    ``weights`` defaults to one per point.
    """
    x = np.ascontiguousarray(x, dtype=np.float64)
    z = np.ascontiguousarray(z, dtype=np.float64)
    if x.shape != z.shape:
        raise ValueError("x and z must have the same shape.")
    if weights is None:
        w = np.ones_like(x)
    else:
        w = np.ascontiguousarray(weights, dtype=np.float64)
        if w.shape != x.shape:
            raise ValueError("weights must match the shape of x.")
    sw, swx, swz, swxx, swzx = line_fit_sums(x, z, w)
    return float(sw), float(swx), float(swz), float(swxx), float(swzx)


def fit_line(
    x: np.ndarray,
    z: np.ndarray,
    weights: Optional[np.ndarray] = None,
) -> Optional[LineFit]:
    r"""
    Weighted linear regression of ``z`` on ``x``.

    Parameters
    ----------
    x, z : array_like, shape (N,)
        Point coordinates.
    weights : array_like, shape (N,), optional
        Per-point weights (default ``1``).

    Returns
    -------
    LineFit or None
        ``None`` when the fit is degenerate, i.e. no weight was accumulated or
        the weighted variance in ``x`` vanishes
        (:math:`S_w S_{wxx} - S_{wx}^2 \le 0`).

    Examples
    --------
    >>> fit = fit_line(np.array([0.0, 1.0, 2.0]), np.array([1.0, 3.0, 5.0]))
    >>> round(fit.slope, 6), round(fit.z_at(3.0), 6)
    (2.0, 7.0)
    """
    sw, swx, swz, swxx, swzx = weighted_moments(x, z, weights)
    if sw <= 0.0:
        return None
    denom = sw * swxx - swx * swx
    if denom <= 0.0:
        return None
    slope = (sw * swzx - swx * swz) / denom
    return LineFit(slope=slope, mean_x=swx / sw, mean_z=swz / sw)
