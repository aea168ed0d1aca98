"""Network topology models — segmented address ranges per visibility class."""

from __future__ import annotations

import ipaddress
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Visibility(str, Enum):
    """Visibility class of a network segment."""

    PUBLIC = "public"
    PRIVATE = "private"
    DATA = "data"


class NetworkSegment(BaseModel):
    """A named, contiguous address range pinned to one availability zone."""

    model_config = ConfigDict(frozen=True)

    name: str
    cidr: str
    visibility: Visibility
    zone: str

    @property
    def network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        return ipaddress.ip_network(self.cidr)


class EgressGateway(BaseModel):
    """A NAT egress path placed in a public segment.

    ``serves`` lists the private and data segment names routed through it.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    segment: str
    serves: list[str] = []


class NetworkTopology(BaseModel):
    """The addressable network every other component places itself into."""

    model_config = ConfigDict(frozen=True)

    name: str
    cidr_block: str
    region: str
    zones: list[str]
    segments: list[NetworkSegment]
    egress: list[EgressGateway] = []
    single_egress: bool = True
    data_subnet_group: str = ""

    def segments_for(self, visibility: Visibility) -> list[NetworkSegment]:
        """Return the segments of one visibility class in zone order."""
        return [s for s in self.segments if s.visibility == visibility]

    def segment_names(self, visibility: Visibility) -> list[str]:
        return [s.name for s in self.segments_for(visibility)]

    def overlaps(self) -> list[tuple[str, str]]:
        """Return every pair of segments whose ranges overlap."""
        pairs: list[tuple[str, str]] = []
        for i, left in enumerate(self.segments):
            for right in self.segments[i + 1:]:
                if left.network.overlaps(right.network):
                    pairs.append((left.name, right.name))
        return pairs

    def outside_block(self) -> list[str]:
        """Return segment names not contained in the parent CIDR block."""
        parent = ipaddress.ip_network(self.cidr_block)
        return [s.name for s in self.segments if not s.network.subnet_of(parent)]
