__all__ = [
    "FoldMode", "ReconstructabilityCriteria", "HierarchyConfig",
    "TransverseAssociationConfig", "RecoConfig", "load_config",
    "LArRecoError", "ConfigError", "HierarchyError", "NoRootFoundError",
    "AssociationError", "SelfAssociationError", "FitError",
    "Particle", "View", "build_particles", "hits_by_owner", "read_event_tables",
    "Node", "Hierarchy", "MCHierarchy", "RecoHierarchy",
    "fill_mc_hierarchy", "fill_reco_hierarchy",
    "MatchRecord", "match_hierarchies", "matches_to_frame", "log_matches",
    "Cluster", "ClusterFit", "clusters_from_frame", "sort_by_occupied_layers",
    "TransverseCluster", "TransverseAssociation", "ClusterAssociation",
    "prune_merge_map", "associations_to_frame",
]

# Configuration & errors
from .config import (
    FoldMode,
    ReconstructabilityCriteria,
    HierarchyConfig,
    TransverseAssociationConfig,
    RecoConfig,
    load_config,
)
from .errors import (
    LArRecoError,
    ConfigError,
    HierarchyError,
    NoRootFoundError,
    AssociationError,
    SelfAssociationError,
    FitError,
)

# Data model
from .data import Particle, View, build_particles, hits_by_owner, read_event_tables

# Hierarchies & matching
from .hierarchy import (
    Node,
    Hierarchy,
    MCHierarchy,
    RecoHierarchy,
    fill_mc_hierarchy,
    fill_reco_hierarchy,
)
from .metrics import MatchRecord, match_hierarchies, matches_to_frame, log_matches

# Clusters & transverse association
from .clusters import Cluster, ClusterFit, clusters_from_frame, sort_by_occupied_layers
from .transverse import TransverseCluster
from .association import (
    TransverseAssociation,
    ClusterAssociation,
    prune_merge_map,
    associations_to_frame,
)
