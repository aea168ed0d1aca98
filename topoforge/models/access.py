"""Access-control models — directed edges and the rules derived from them."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Direction(str, Enum):
    INGRESS = "ingress"
    EGRESS = "egress"


class Action(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


# Peers that name an address range rather than a group.
ANYWHERE_V4 = "0.0.0.0/0"
ANYWHERE_V6 = "::/0"

# Protocols a rule may name; "all" matches every protocol and port.
KNOWN_PROTOCOLS: frozenset[str] = frozenset({"tcp", "udp", "icmp", "all"})


class AccessEdge(BaseModel):
    """A declared permitted path: ``source`` may reach ``destination`` on a port.

    ``source`` is a group name or a CIDR peer such as ``0.0.0.0/0``.
    Every edge is realized exactly once, as an ingress rule on the
    destination (and the matching egress rule on the source).
    """

    model_config = ConfigDict(frozen=True)

    source: str
    destination: str
    port: int
    protocol: str = "tcp"

    @property
    def source_is_cidr(self) -> bool:
        return "/" in self.source

    def describe(self) -> str:
        return f"{self.source} -> {self.destination} {self.protocol}/{self.port}"


class AccessRule(BaseModel):
    """One normalized rule attached to a group."""

    model_config = ConfigDict(frozen=True)

    direction: Direction
    peer: str  # group name or CIDR
    port: int  # 0 for "all ports"
    protocol: str
    action: Action = Action.ALLOW
    default: bool = False  # True when implied rather than declared

    def sort_key(self) -> tuple[str, int, str, str]:
        return (self.peer, self.port, self.protocol, self.action.value)


class GroupPolicy(BaseModel):
    """The complete rule set of one access group."""

    model_config = ConfigDict(frozen=True)

    group: str
    ingress: list[AccessRule] = []
    egress: list[AccessRule] = []

    @property
    def has_default_egress(self) -> bool:
        return any(r.default for r in self.egress)


class AccessPolicy(BaseModel):
    """Rules for every group, derived from one edge set.

    ``digest`` is a content address of the normalized rules; deriving from
    the same edges in any order produces the same digest.
    """

    model_config = ConfigDict(frozen=True)

    groups: list[GroupPolicy]
    edges: list[AccessEdge]
    digest: str

    @property
    def group_names(self) -> list[str]:
        return [g.group for g in self.groups]

    def rules_for(self, group: str) -> GroupPolicy:
        for policy in self.groups:
            if policy.group == group:
                return policy
        raise KeyError(f"No access group named {group!r}")

    def has_group(self, group: str) -> bool:
        return group in self.group_names

    def has_edge(self, source: str, destination: str, port: int) -> bool:
        return any(
            e.source == source and e.destination == destination and e.port == port
            for e in self.edges
        )
