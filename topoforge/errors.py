"""Error taxonomy — every exception topoforge raises, in one import.

Each error is defined beside the code that raises it; this module only
re-exports them. Errors carry the entity and input at fault, and none of
them is retried automatically.
"""

from topoforge.core.access_policy import InvalidEdge
from topoforge.core.assembler import TopologyInvalid, UnresolvedReference
from topoforge.core.blob_store import BlobIntegrityError
from topoforge.core.hasher import InputNotFound
from topoforge.core.network import AddressSpaceExhausted
from topoforge.core.placement import ArtifactNotReady
from topoforge.core.publisher import (
    BuildFailed,
    PublishCancelled,
    PushFailed,
    UnsupportedContentType,
)
from topoforge.core.resource_graph import CyclicDependencyError, MissingDependencyError
from topoforge.core.router import AmbiguousRoute, InvalidTransition, NoDefaultRoute

__all__ = [
    # inputs
    "InputNotFound",
    # network and access
    "AddressSpaceExhausted",
    "InvalidEdge",
    # publishing
    "BuildFailed",
    "PushFailed",
    "PublishCancelled",
    "UnsupportedContentType",
    "BlobIntegrityError",
    # placement and routing
    "ArtifactNotReady",
    "NoDefaultRoute",
    "AmbiguousRoute",
    "InvalidTransition",
    # assembly
    "TopologyInvalid",
    "CyclicDependencyError",
    "MissingDependencyError",
    "UnresolvedReference",
]
