import numpy as np
import pytest

from lartpc_reco.transverse import (
    TransverseCluster,
    are_transverse_associated,
    average_centroid,
    is_extremal_cluster,
    is_point_associated,
    is_vertex_associated,
    projected_coordinate_x,
    transverse_length,
)
from conftest import make_cluster


def test_transverse_cluster_fit(transverse_chain):
    x, y, z = transverse_chain
    tc = TransverseCluster(y, [x, z])
    np.testing.assert_allclose(tc.inner_vertex, [0.0, 5.0])
    np.testing.assert_allclose(tc.outer_vertex, [5.0, 5.0])
    np.testing.assert_allclose(tc.direction, [1.0, 0.0])
    assert tc.clusters == (y, x, z)


def test_transverse_cluster_sloped_fit():
    seed = make_cluster(1, [0.0, 1.0], [0.0, 1.0])
    other = make_cluster(2, [2.0, 3.0], [2.0, 3.0])
    tc = TransverseCluster(seed, [other])
    np.testing.assert_allclose(tc.inner_vertex, [0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(tc.outer_vertex, [3.0, 3.0])
    np.testing.assert_allclose(tc.direction, [np.sqrt(0.5), np.sqrt(0.5)])


def test_transverse_cluster_ignores_duplicate_members(transverse_chain):
    x, y, _ = transverse_chain
    once = TransverseCluster(x, [y])
    twice = TransverseCluster(x, [y, y, x])
    np.testing.assert_allclose(once.inner_vertex, twice.inner_vertex)
    np.testing.assert_allclose(once.outer_vertex, twice.outer_vertex)


def test_degenerate_fit_collapses_to_centroid():
    seed = make_cluster(1, [2.0, 2.0, 2.0], [1.0, 2.0, 3.0])
    tc = TransverseCluster(seed)
    assert tc.inner_vertex.tolist() == [2.0, 2.0]
    assert tc.outer_vertex.tolist() == [2.0, 2.0]
    assert tc.direction.tolist() == [1.0, 0.0]


def test_average_centroid():
    c = make_cluster(1, [0.0, 2.0, 4.0], [0.0, 0.0, 3.0])
    np.testing.assert_allclose(average_centroid(c), [2.5, 1.5])


def test_point_association(transverse_chain):
    x, y, z = transverse_chain
    assert is_point_associated(x, y, 3.0, 1.0)
    # 4.0 apart in x is outside the window
    assert not is_point_associated(x, z, 3.0, 1.0)
    above = make_cluster(4, [0.5, 0.5], [6.0, 6.0])
    # steeper than the allowed slope
    assert not is_point_associated(x, above, 3.0, 1.0)


def test_point_association_is_strict():
    a = make_cluster(1, [0.0], [0.0])
    b = make_cluster(2, [3.0], [0.0])
    assert not is_point_associated(a, b, 3.0, 1.0)
    c = make_cluster(3, [2.0], [2.0])
    assert not is_point_associated(a, c, 3.0, 1.0)


def test_vertex_association(transverse_chain):
    x, y, _ = transverse_chain
    tc = TransverseCluster(x, [y])
    assert is_vertex_associated(tc, np.array([4.0, 5.5]), 3.0, 1.5)
    assert not is_vertex_associated(tc, np.array([2.0, 7.0]), 3.0, 1.5)
    assert not is_vertex_associated(tc, np.array([6.5, 5.0]), 3.0, 1.5)
    assert not is_vertex_associated(tc, np.array([-3.5, 5.0]), 3.0, 1.5)


def test_transverse_association_requires_parallel_directions(transverse_chain):
    x, y, z = transverse_chain
    inner = TransverseCluster(x, [y])
    outer = TransverseCluster(z, [y])
    assert are_transverse_associated(inner, outer, 0.866, 3.0, 1.5)

    steep = TransverseCluster(make_cluster(5, [3.0, 4.0], [5.0, 7.0]))
    assert not are_transverse_associated(inner, steep, 0.866, 3.0, 1.5)


def test_is_extremal_cluster(transverse_chain):
    x, y, _ = transverse_chain
    assert is_extremal_cluster(True, x, y)
    assert not is_extremal_cluster(True, y, x)
    assert is_extremal_cluster(False, y, x)
    assert not is_extremal_cluster(False, x, y)


def test_transverse_length(transverse_chain):
    x, y, z = transverse_chain
    assert transverse_length(x, []) == pytest.approx(1.0)
    assert transverse_length(y, [x, z]) == pytest.approx(5.0)


def test_projection(longitudinal_wall):
    assert projected_coordinate_x(longitudinal_wall, 5.2, 1.5) == pytest.approx(3.5)
    # inside the widened range but no hit close enough
    assert projected_coordinate_x(longitudinal_wall, 5.5, 0.3) is None
    # outside the centroid range
    assert projected_coordinate_x(longitudinal_wall, 20.0, 1.5) is None


def test_projection_takes_nearest_hit():
    c = make_cluster(1, [1.0, 2.0, 3.0], [0.0, 1.0, 2.0])
    assert projected_coordinate_x(c, 1.2, 1.5) == pytest.approx(2.0)
    # equidistant hits: the first one in layer order wins
    assert projected_coordinate_x(c, 0.5, 1.5) == pytest.approx(1.0)
