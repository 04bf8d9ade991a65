from __future__ import annotations

import numpy as np
from numba import njit


__all__ = [
    "sorted_intersection_size",
    "line_fit_sums",
    "extremal_range",
    "nearest_coordinate",
]


@njit(cache=True)
def sorted_intersection_size(a: np.ndarray, b: np.ndarray) -> int:
    r"""
    Size of :math:`A\cap B` for two **sorted, duplicate-free** id arrays.

    A single merge pass over both inputs:

    .. math::
        |A\cap B| = \#\{(i,j) : a_i = b_j\},\qquad
        \mathcal{O}(|A| + |B|).

    Parameters
    ----------
    a, b : ndarray of int64, shape (N,), (M,)
        Ascending hit identifiers.

    Returns
    -------
    int
        Number of shared identifiers.
    """
    i = 0
    j = 0
    n = 0
    na = a.shape[0]
    nb = b.shape[0]
    while i < na and j < nb:
        if a[i] < b[j]:
            i += 1
        elif a[i] > b[j]:
            j += 1
        else:
            n += 1
            i += 1
            j += 1
    return n


@njit(cache=True)
def line_fit_sums(x: np.ndarray, z: np.ndarray, w: np.ndarray):
    r"""
    Weighted moment sums for a least-squares line :math:`z = m x + c`.

    .. math::
        S_w=\sum w_i,\quad S_{wx}=\sum w_i x_i,\quad S_{wz}=\sum w_i z_i,\quad
        S_{wxx}=\sum w_i x_i^2,\quad S_{wzx}=\sum w_i z_i x_i.

    Parameters
    ----------
    x, z : ndarray of float64, shape (N,)
        Point coordinates.
    w : ndarray of float64, shape (N,)
        Per-point weights.

    Returns
    -------
    tuple of float
        ``(S_w, S_wx, S_wz, S_wxx, S_wzx)``.
    """
    sw = 0.0
    swx = 0.0
    swz = 0.0
    swxx = 0.0
    swzx = 0.0
    for i in range(x.shape[0]):
        wi = w[i]
        sw += wi
        swx += wi * x[i]
        swz += wi * z[i]
        swxx += wi * x[i] * x[i]
        swzx += wi * z[i] * x[i]
    return sw, swx, swz, swxx, swzx


@njit(cache=True)
def extremal_range(values: np.ndarray):
    """Return ``(min, max)`` of a 1-D array; ``(+inf, -inf)`` when empty."""
    lo = np.inf
    hi = -np.inf
    for i in range(values.shape[0]):
        v = values[i]
        if v < lo:
            lo = v
        if v > hi:
            hi = v
    return lo, hi


@njit(cache=True)
def nearest_coordinate(z: np.ndarray, x: np.ndarray, target: float, tolerance: float):
    r"""
    Scan for the hit closest to depth ``target`` within ``tolerance``.

    Only hits with :math:`|z_i - z_\text{target}| <` the best distance so far
    (initialised to ``tolerance``) are accepted, so the first hit wins ties.

    Parameters
    ----------
    z, x : ndarray of float64, shape (N,)
        Hit depths and transverse coordinates, in layer order.
    target : float
        Depth to project to.
    tolerance : float
        Strict upper bound on the accepted depth difference.

    Returns
    -------
    found : bool
        Whether any hit qualified.
    x_out : float
        Transverse coordinate of the selected hit (``0.0`` if not found).
    """
    best = tolerance
    found = False
    x_out = 0.0
    for i in range(z.shape[0]):
        dz = abs(z[i] - target)
        if dz < best:
            best = dz
            x_out = x[i]
            found = True
    return found, x_out
