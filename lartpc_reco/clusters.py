from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from lartpc_reco.utils import extremal_coordinates

DEFAULT_LAYER_PITCH = 0.3


@dataclass(frozen=True)
class ClusterFit:
    r"""
    Global straight-line fit to all hits of a cluster.

    Attributes
    ----------
    success : bool
        ``False`` for fewer than two hits or zero spread.
    direction : ndarray, shape (2,)
        Unit vector ``(x, z)`` along the principal axis, oriented towards
        increasing ``z`` (towards increasing ``x`` when perpendicular to ``z``).
    centroid : ndarray, shape (2,)
        Mean hit position.
    """
    success: bool
    direction: np.ndarray
    centroid: np.ndarray


class Cluster:
    r"""
    Layer-ordered collection of 2-D hits in one wire-plane view.

    Hits are stored sorted by pseudo-layer (stable within a layer). The
    longitudinal axis is ``z`` (the wire direction) and ``x`` is the drift
    coordinate; pseudo-layers slice the cluster along ``z``.

    Parameters
    ----------
    cluster_id : int
        Identifier, also used for ordering and in association tables.
    positions : array_like, shape (N, 2)
        Hit positions ``(x, z)``.
    layers : array_like of int, shape (N,), optional
        Pseudo-layer per hit. Derived as ``floor(z / layer_pitch)`` if omitted.
    layer_pitch : float, optional
        Pitch used to derive layers.

    Raises
    ------
    ValueError
        If the cluster holds no hits or the array shapes disagree.
    """

    __slots__ = (
        "cluster_id", "positions", "layers", "_fit", "_centroids",
    )

    def __init__(
        self,
        cluster_id: int,
        positions: np.ndarray | Sequence[Sequence[float]],
        layers: Optional[np.ndarray | Sequence[int]] = None,
        layer_pitch: float = DEFAULT_LAYER_PITCH,
    ) -> None:
        pos = np.asarray(positions, dtype=np.float64)
        if pos.ndim != 2 or pos.shape[1] != 2:
            raise ValueError("positions must have shape (N, 2) with columns (x, z).")
        if pos.shape[0] == 0:
            raise ValueError(f"Cluster {cluster_id} has no hits.")
        if layers is None:
            lay = np.floor(pos[:, 1] / float(layer_pitch)).astype(np.int64)
        else:
            lay = np.asarray(layers, dtype=np.int64)
            if lay.shape != (pos.shape[0],):
                raise ValueError("layers must have shape (N,).")

        order = np.argsort(lay, kind="stable")
        self.cluster_id = int(cluster_id)
        self.positions = np.ascontiguousarray(pos[order])
        self.layers = np.ascontiguousarray(lay[order])
        self._fit: Optional[ClusterFit] = None
        self._centroids: Dict[int, np.ndarray] = {}

    # hits -------------------------------------------------------------
    @property
    def n_hits(self) -> int:
        return int(self.positions.shape[0])

    @property
    def x(self) -> np.ndarray:
        return self.positions[:, 0]

    @property
    def z(self) -> np.ndarray:
        return self.positions[:, 1]

    @property
    def inner_layer(self) -> int:
        return int(self.layers[0])

    @property
    def outer_layer(self) -> int:
        return int(self.layers[-1])

    @property
    def n_occupied_layers(self) -> int:
        return int(np.unique(self.layers).size)

    def centroid(self, layer: int) -> np.ndarray:
        """Mean ``(x, z)`` of the hits in ``layer``; raises ``KeyError`` if it is empty."""
        if layer not in self._centroids:
            mask = self.layers == layer
            if not mask.any():
                raise KeyError(f"Cluster {self.cluster_id} has no hits in layer {layer}")
            self._centroids[layer] = self.positions[mask].mean(axis=0)
        return self._centroids[layer]

    @property
    def inner_centroid(self) -> np.ndarray:
        return self.centroid(self.inner_layer)

    @property
    def outer_centroid(self) -> np.ndarray:
        return self.centroid(self.outer_layer)

    # geometry ---------------------------------------------------------
    def extremal_x(self):
        return extremal_coordinates(self.x)

    def extremal_z(self):
        return extremal_coordinates(self.z)

    @property
    def length_squared(self) -> float:
        r"""Squared diagonal of the hit bounding box, :math:`\Delta x^2 + \Delta z^2`."""
        span = self.positions.max(axis=0) - self.positions.min(axis=0)
        return float(span @ span)

    @property
    def fit(self) -> ClusterFit:
        r"""
        Principal-axis fit to all hits (cached).

        The direction is the leading right-singular vector of the centred
        positions, i.e. the axis maximising the hit spread.
        """
        if self._fit is None:
            centroid = self.positions.mean(axis=0)
            if self.n_hits < 2:
                self._fit = ClusterFit(False, np.zeros(2), centroid)
            else:
                _, s, vt = np.linalg.svd(self.positions - centroid, full_matrices=False)
                if s[0] <= 0.0:
                    self._fit = ClusterFit(False, np.zeros(2), centroid)
                else:
                    direction = vt[0] / np.linalg.norm(vt[0])
                    if direction[1] < 0.0 or (direction[1] == 0.0 and direction[0] < 0.0):
                        direction = -direction
                    self._fit = ClusterFit(True, direction, centroid)
        return self._fit

    def __repr__(self) -> str:
        return f"Cluster(id={self.cluster_id}, n_hits={self.n_hits}, layers={self.inner_layer}..{self.outer_layer})"


def clusters_from_frame(frame: pd.DataFrame, layer_pitch: float = DEFAULT_LAYER_PITCH) -> List[Cluster]:
    r"""
    Group a long-format hit table into clusters.

    Parameters
    ----------
    frame : pandas.DataFrame
        Columns ``cluster_id``, ``x``, ``z`` and optionally ``layer``.
    layer_pitch : float, optional
        Used when no ``layer`` column is present.

    Returns
    -------
    list of Cluster
        In order of first appearance of each ``cluster_id``.

    Raises
    ------
    KeyError
        If a required column is missing.
    """
    missing = [c for c in ("cluster_id", "x", "z") if c not in frame.columns]
    if missing:
        raise KeyError(f"Cluster table is missing required column(s): {', '.join(missing)}")
    has_layer = "layer" in frame.columns
    out: List[Cluster] = []
    for cluster_id, df in frame.groupby("cluster_id", sort=False):
        pos = df[["x", "z"]].to_numpy(dtype=np.float64)
        layers = df["layer"].to_numpy(dtype=np.int64) if has_layer else None
        out.append(Cluster(int(cluster_id), pos, layers, layer_pitch=layer_pitch))
    return out


def sort_by_occupied_layers(clusters: Sequence[Cluster]) -> List[Cluster]:
    """Order clusters by descending occupied-layer count, then hit count (stable)."""
    return sorted(clusters, key=lambda c: (-c.n_occupied_layers, -c.n_hits))
