import numpy as np
import pandas as pd
import pytest

from lartpc_reco.clusters import Cluster, clusters_from_frame, sort_by_occupied_layers
from conftest import make_cluster


def test_hits_sorted_by_layer():
    c = Cluster(7, [[0.0, 2.0], [1.0, 0.0], [2.0, 1.0]], layers=[2, 0, 1])
    assert c.layers.tolist() == [0, 1, 2]
    assert c.x.tolist() == [1.0, 2.0, 0.0]
    assert c.inner_layer == 0 and c.outer_layer == 2
    assert c.n_occupied_layers == 3


def test_layers_derived_from_pitch():
    c = Cluster(1, [[0.0, 0.0], [0.0, 0.65]], layer_pitch=0.3)
    assert c.layers.tolist() == [0, 2]


def test_centroids():
    c = Cluster(1, [[0.0, 0.0], [2.0, 0.0], [4.0, 3.0]], layers=[0, 0, 5])
    np.testing.assert_allclose(c.inner_centroid, [1.0, 0.0])
    np.testing.assert_allclose(c.outer_centroid, [4.0, 3.0])
    with pytest.raises(KeyError):
        c.centroid(3)


def test_extremal_and_length():
    c = make_cluster(1, [1.0, 4.0, 2.0], [0.0, 4.0, 1.0])
    assert c.extremal_x() == (1.0, 4.0)
    assert c.extremal_z() == (0.0, 4.0)
    assert c.length_squared == pytest.approx(25.0)


def test_fit_direction_along_z():
    c = make_cluster(1, np.full(5, 3.0), np.arange(5.0)[::-1])
    fit = c.fit
    assert fit.success
    np.testing.assert_allclose(fit.direction, [0.0, 1.0], atol=1e-12)
    np.testing.assert_allclose(fit.centroid, [3.0, 2.0])


def test_fit_fails_without_spread():
    assert not make_cluster(1, [1.0], [1.0]).fit.success
    assert not make_cluster(2, [1.0, 1.0, 1.0], [2.0, 2.0, 2.0]).fit.success


def test_empty_cluster_rejected():
    with pytest.raises(ValueError):
        Cluster(1, np.empty((0, 2)))
    with pytest.raises(ValueError):
        Cluster(1, [[0.0, 1.0]], layers=[0, 1])


def test_clusters_from_frame_keeps_first_appearance_order():
    frame = pd.DataFrame({
        "cluster_id": [5, 5, 2, 5, 2],
        "x": [0.0, 1.0, 4.0, 2.0, 5.0],
        "z": [0.0, 0.0, 1.0, 0.0, 1.0],
        "layer": [0, 1, 3, 2, 3],
    })
    clusters = clusters_from_frame(frame)
    assert [c.cluster_id for c in clusters] == [5, 2]
    assert clusters[0].n_hits == 3
    assert clusters[1].n_occupied_layers == 1


def test_clusters_from_frame_requires_columns():
    with pytest.raises(KeyError):
        clusters_from_frame(pd.DataFrame({"cluster_id": [1], "x": [0.0]}))


def test_sort_by_occupied_layers():
    a = Cluster(1, [[0.0, 0.0], [1.0, 0.0]], layers=[0, 0])
    b = Cluster(2, [[0.0, 0.0], [1.0, 1.0]], layers=[0, 1])
    c = Cluster(3, [[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]], layers=[0, 0, 0])
    d = Cluster(4, [[5.0, 0.0], [6.0, 0.0]], layers=[0, 0])
    assert [x.cluster_id for x in sort_by_occupied_layers([a, b, c, d])] == [2, 3, 1, 4]
