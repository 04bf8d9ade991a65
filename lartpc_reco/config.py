from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import orjson

from lartpc_reco.errors import ConfigError


class FoldMode(Enum):
    """How descendant chains are collapsed into hierarchy nodes."""
    NONE = "none"
    PRIMARIES = "primaries"
    LEADING_SHOWERS = "leading_showers"
    BOTH = "both"

    @classmethod
    def from_flags(cls, fold_to_primaries: bool, fold_to_leading_showers: bool) -> "FoldMode":
        r"""
        Map the two boolean folding switches onto a single mode.

        Parameters
        ----------
        fold_to_primaries : bool
            Collapse every primary's descendants into the primary node.
        fold_to_leading_showers : bool
            Collapse each leading shower (or neutron) subtree into one node.

        Returns
        -------
        FoldMode
        """
        if fold_to_primaries and fold_to_leading_showers:
            return cls.BOTH
        if fold_to_primaries:
            return cls.PRIMARIES
        if fold_to_leading_showers:
            return cls.LEADING_SHOWERS
        return cls.NONE


def _from_mapping(cls, mapping: Optional[Mapping[str, Any]]):
    if mapping is None:
        return cls()
    if not isinstance(mapping, Mapping):
        raise ConfigError(f"{cls.__name__} expects a mapping, got {type(mapping).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(mapping) - known)
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")
    try:
        return cls(**dict(mapping))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid {cls.__name__}: {e}") from e


@dataclass(frozen=True)
class ReconstructabilityCriteria:
    r"""
    Thresholds deciding whether a truth node could have been reconstructed.

    A node is reconstructable iff it owns at least ``min_hits`` hits and at
    least ``min_good_views`` of the three views hold ``min_hits_for_good_view``
    hits or more.

    Attributes
    ----------
    min_hits : int
        Minimum total hit count.
    min_hits_for_good_view : int
        Per-view hit count needed for a view to count as "good".
    min_good_views : int
        Minimum number of good views.
    remove_neutrons : bool
        Discard neutron-induced sub-trees from truth hierarchies.
    """
    min_hits: int = 15
    min_hits_for_good_view: int = 5
    min_good_views: int = 2
    remove_neutrons: bool = True

    def __post_init__(self) -> None:
        for name in ("min_hits", "min_hits_for_good_view", "min_good_views"):
            if int(getattr(self, name)) < 0:
                raise ValueError(f"{name} must be >= 0")

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "ReconstructabilityCriteria":
        return _from_mapping(cls, mapping)


@dataclass(frozen=True)
class HierarchyConfig:
    """Folding switches for hierarchy construction."""
    fold_to_primaries: bool = False
    fold_to_leading_showers: bool = False

    @property
    def fold_mode(self) -> FoldMode:
        return FoldMode.from_flags(self.fold_to_primaries, self.fold_to_leading_showers)

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "HierarchyConfig":
        return _from_mapping(cls, mapping)


@dataclass(frozen=True)
class TransverseAssociationConfig:
    r"""
    Geometric thresholds for the transverse association engine.

    Distances share the units of the cluster hit positions (cm in LArTPC
    views); ``cluster_angle`` is in degrees.

    Attributes
    ----------
    cluster_window : float
        Half-size of the square window used for point association and the
        longitudinal tolerance band of super-cluster association.
    cluster_angle : float
        Angle (degrees) to the longitudinal axis separating transverse from
        longitudinal clusters; also bounds the slope of point associations.
    min_cos_relative_angle : float
        Minimum cosine between the directions of two associated super-clusters.
    max_transverse_separation : float
        Maximum perpendicular distance of a vertex from a super-cluster's line.
    min_transverse_displacement : float
        Minimum combined extent in ``x`` of a seed and its associated clusters.
    max_longitudinal_displacement : float
        Tolerance in ``z`` of the projection search on longitudinal clusters.
    transverse_cluster_max_length : float
        Longest cluster still eligible to be transverse.
    transverse_cluster_max_calo_hits : int
        Clusters with at most this many hits are always transverse.
    longitudinal_cluster_min_length : float
        Shortest cluster eligible to be longitudinal.
    """
    cluster_window: float = 3.0
    cluster_angle: float = 45.0
    min_cos_relative_angle: float = 0.866
    max_transverse_separation: float = 1.5
    min_transverse_displacement: float = 1.5
    max_longitudinal_displacement: float = 1.5
    transverse_cluster_max_length: float = 7.5
    transverse_cluster_max_calo_hits: int = 5
    longitudinal_cluster_min_length: float = 5.0

    @property
    def cluster_cos_angle(self) -> float:
        return math.cos(math.radians(self.cluster_angle))

    @property
    def cluster_tan_angle(self) -> float:
        return math.tan(math.radians(self.cluster_angle))

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "TransverseAssociationConfig":
        return _from_mapping(cls, mapping)


@dataclass(frozen=True)
class RecoConfig:
    """Bundle of every configurable block, as read from one JSON document."""
    hierarchy: HierarchyConfig = field(default_factory=HierarchyConfig)
    reconstructability: ReconstructabilityCriteria = field(default_factory=ReconstructabilityCriteria)
    transverse_association: TransverseAssociationConfig = field(default_factory=TransverseAssociationConfig)

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "RecoConfig":
        r"""
        Build the bundle from a parsed document.

        Parameters
        ----------
        mapping : mapping or None
            Top-level object with optional ``"hierarchy"``,
            ``"reconstructability"`` and ``"transverse_association"`` sections.

        Raises
        ------
        ConfigError
            On unknown sections or keys, or on values the dataclasses reject.
        """
        mapping = {} if mapping is None else mapping
        if not isinstance(mapping, Mapping):
            raise ConfigError("Top-level configuration must be a JSON object")
        unknown = sorted(set(mapping) - {"hierarchy", "reconstructability", "transverse_association"})
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {', '.join(unknown)}")
        return cls(
            hierarchy=HierarchyConfig.from_mapping(mapping.get("hierarchy")),
            reconstructability=ReconstructabilityCriteria.from_mapping(mapping.get("reconstructability")),
            transverse_association=TransverseAssociationConfig.from_mapping(mapping.get("transverse_association")),
        )


def load_config(config_path: Union[str, Path]) -> RecoConfig:
    r"""
    Load a JSON configuration with :mod:`orjson`.

    Parameters
    ----------
    config_path : str or pathlib.Path
        Path to the JSON file.

    Returns
    -------
    RecoConfig
        Parsed and validated configuration.

    Raises
    ------
    ConfigError
        If the file is missing, cannot be parsed, or holds invalid settings.
    """
    config_path = Path(config_path)
    try:
        raw = orjson.loads(config_path.read_bytes())
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e
    except orjson.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from e
    return RecoConfig.from_mapping(raw)
