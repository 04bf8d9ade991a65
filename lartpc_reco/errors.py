"""Typed exceptions raised by the hierarchy and transverse-association engines.

"No data" outcomes (a missing projection, an unmatched node) are returned as
``None`` by the engines and never show up here. Everything below marks either
malformed input or an internal inconsistency that aborts the current build.
"""

from __future__ import annotations


class LArRecoError(Exception):
    """Base exception for all lartpc_reco errors."""


class ConfigError(LArRecoError, ValueError):
    """Raised when a configuration mapping or file cannot be turned into settings."""


class HierarchyError(LArRecoError):
    """Raised when a particle table cannot be organised into a hierarchy."""


class NoRootFoundError(HierarchyError):
    """Raised when a non-empty reconstructed particle list has no neutrino root."""


class AssociationError(LArRecoError):
    """Raised when the transverse association build reaches an invalid state."""


class SelfAssociationError(AssociationError):
    """Raised when a cluster is associated with itself."""

    def __init__(self, cluster: object):
        self.cluster = cluster
        label = getattr(cluster, "cluster_id", cluster)
        super().__init__(f"Cluster {label} is associated with itself")


class FitError(AssociationError):
    """Raised when a transverse cluster fit accumulates zero weight."""
