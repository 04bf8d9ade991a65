import numpy as np
import pytest

from lartpc_reco.kernels import extremal_range, nearest_coordinate, sorted_intersection_size
from lartpc_reco.utils import (
    canonical_hit_ids,
    count_shared_hits,
    extremal_coordinates,
    fit_line,
    weighted_moments,
)


def test_canonical_hit_ids():
    ids = canonical_hit_ids([5, 1, 5, 3])
    assert ids.tolist() == [1, 3, 5]
    assert ids.dtype == np.int64
    assert canonical_hit_ids([]).size == 0
    assert canonical_hit_ids(np.array([[2, 1], [1, 0]])).tolist() == [0, 1, 2]


def test_count_shared_hits():
    a = canonical_hit_ids([1, 2, 3, 7])
    b = canonical_hit_ids([2, 3, 4, 7, 9])
    assert count_shared_hits(a, b) == 3
    assert count_shared_hits(a, canonical_hit_ids([10, 11])) == 0
    assert count_shared_hits(a, canonical_hit_ids([])) == 0


def test_sorted_intersection_kernel():
    a = np.array([0, 2, 4, 6, 8], dtype=np.int64)
    b = np.array([1, 2, 3, 4, 5], dtype=np.int64)
    assert sorted_intersection_size(a, b) == 2


def test_extremal_coordinates():
    assert extremal_coordinates(np.array([3.0, -1.0, 2.0])) == (-1.0, 3.0)
    with pytest.raises(ValueError):
        extremal_coordinates(np.array([]))
    lo, hi = extremal_range(np.empty(0))
    assert lo == np.inf and hi == -np.inf


def test_nearest_coordinate_kernel():
    z = np.array([0.0, 1.0, 2.0])
    x = np.array([10.0, 11.0, 12.0])
    assert nearest_coordinate(z, x, 1.9, 0.5) == (True, 12.0)
    found, _ = nearest_coordinate(z, x, 5.0, 0.5)
    assert not found


def test_weighted_moments():
    sw, swx, swz, swxx, swzx = weighted_moments(np.array([1.0, 2.0]), np.array([3.0, 5.0]), np.array([1.0, 2.0]))
    assert (sw, swx, swz, swxx, swzx) == (3.0, 5.0, 13.0, 9.0, 23.0)
    with pytest.raises(ValueError):
        weighted_moments(np.array([1.0]), np.array([1.0, 2.0]))


def test_fit_line():
    fit = fit_line(np.array([0.0, 1.0, 2.0]), np.array([1.0, 3.0, 5.0]))
    assert fit.slope == pytest.approx(2.0)
    assert fit.z_at(3.0) == pytest.approx(7.0)
    np.testing.assert_allclose(fit.direction, np.array([1.0, 2.0]) / np.sqrt(5.0))


def test_fit_line_degenerate():
    assert fit_line(np.array([1.0, 1.0]), np.array([0.0, 4.0])) is None
    assert fit_line(np.array([0.0, 1.0]), np.array([0.0, 1.0]), np.zeros(2)) is None
