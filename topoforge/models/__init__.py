"""Topoforge data models — all Pydantic v2, all frozen (immutable)."""

from topoforge.models.access import (
    AccessEdge,
    AccessPolicy,
    AccessRule,
    Action,
    Direction,
    GroupPolicy,
)
from topoforge.models.artifacts import Artifact, ArtifactKind, BundleObject, PublishResult
from topoforge.models.deployment import (
    DatabaseInstance,
    DatabaseSpec,
    Deployment,
    DeploymentConfig,
    PlacementSpec,
    ResourceNode,
)
from topoforge.models.fingerprint import Fingerprint
from topoforge.models.network import EgressGateway, NetworkSegment, NetworkTopology, Visibility
from topoforge.models.placement import (
    ExecutionRole,
    LogGroup,
    OutputRef,
    Placement,
    ResourceShape,
)
from topoforge.models.routing import (
    VALID_TRANSITIONS,
    CachePolicy,
    EdgeDistribution,
    LoadBalancer,
    Route,
    ServiceState,
    ServiceTransition,
    TargetKind,
)

__all__ = [
    # fingerprint
    "Fingerprint",
    # network
    "Visibility",
    "NetworkSegment",
    "EgressGateway",
    "NetworkTopology",
    # access
    "Direction",
    "Action",
    "AccessEdge",
    "AccessRule",
    "GroupPolicy",
    "AccessPolicy",
    # artifacts
    "ArtifactKind",
    "BundleObject",
    "Artifact",
    "PublishResult",
    # placement
    "OutputRef",
    "ResourceShape",
    "ExecutionRole",
    "LogGroup",
    "Placement",
    # routing
    "TargetKind",
    "CachePolicy",
    "Route",
    "ServiceState",
    "ServiceTransition",
    "VALID_TRANSITIONS",
    "LoadBalancer",
    "EdgeDistribution",
    # deployment
    "DatabaseSpec",
    "DatabaseInstance",
    "PlacementSpec",
    "DeploymentConfig",
    "ResourceNode",
    "Deployment",
]
