"""Access policy derivation — firewall rules from declared "who talks to whom".

Each tier's rules are derived from its neighbours' edges rather than
restated: an edge ``lb -> service tcp/80`` becomes the service's ingress
rule and the load balancer's egress rule in one place.

Groups without any outbound edge receive an explicit default egress rule
(allow-all unless overridden with ``"deny"``). The default is recorded on
the rule itself (``default=True``) so it shows up in every rendered plan.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping

from topoforge.core.hasher import content_address
from topoforge.models.access import (
    ANYWHERE_V4,
    ANYWHERE_V6,
    KNOWN_PROTOCOLS,
    AccessEdge,
    AccessPolicy,
    AccessRule,
    Action,
    Direction,
    GroupPolicy,
)

logger = logging.getLogger(__name__)


class InvalidEdge(ValueError):
    """Raised when an access edge names an impossible port or protocol."""

    def __init__(self, edge: AccessEdge, reason: str) -> None:
        self.edge = edge
        super().__init__(f"Invalid access edge {edge.describe()}: {reason}")


def validate_edge(edge: AccessEdge) -> AccessEdge:
    """Check port range and protocol; return the edge with a lowercased protocol."""
    protocol = edge.protocol.lower()
    if protocol not in KNOWN_PROTOCOLS:
        raise InvalidEdge(edge, f"unrecognized protocol {edge.protocol!r}")
    if not 1 <= edge.port <= 65535:
        raise InvalidEdge(edge, f"port {edge.port} outside 1-65535")
    if not edge.destination or "/" in edge.destination:
        raise InvalidEdge(edge, "destination must be a group name")
    if not edge.source:
        raise InvalidEdge(edge, "source must not be empty")
    if protocol == edge.protocol:
        return edge
    return edge.model_copy(update={"protocol": protocol})


def _default_egress(action: Action) -> list[AccessRule]:
    return [
        AccessRule(
            direction=Direction.EGRESS,
            peer=peer,
            port=0,
            protocol="all",
            action=action,
            default=True,
        )
        for peer in (ANYWHERE_V4, ANYWHERE_V6)
    ]


def derive(
    edges: Iterable[AccessEdge],
    *,
    egress_overrides: Mapping[str, str] | None = None,
) -> AccessPolicy:
    """Derive ingress and egress rules for every group named by ``edges``.

    Rules are de-duplicated and sorted by (peer, port, protocol), so the
    result is independent of input order.

    Parameters
    ----------
    edges:
        Declared access edges.
    egress_overrides:
        Optional ``group -> "allow" | "deny"`` default egress policy for
        groups without outbound edges. Unlisted groups default to allow.

    Raises
    ------
    InvalidEdge
        If any edge has an out-of-range port or unknown protocol.
    """
    overrides = dict(egress_overrides or {})
    for group, action in overrides.items():
        if action not in (Action.ALLOW.value, Action.DENY.value):
            raise ValueError(f"egress override for {group!r} must be 'allow' or 'deny'")

    normalized = sorted(
        {validate_edge(e) for e in edges},
        key=lambda e: (e.destination, e.port, e.protocol, e.source),
    )

    ingress: dict[str, set[AccessRule]] = defaultdict(set)
    egress: dict[str, set[AccessRule]] = defaultdict(set)
    groups: set[str] = set()

    for edge in normalized:
        groups.add(edge.destination)
        ingress[edge.destination].add(
            AccessRule(
                direction=Direction.INGRESS,
                peer=edge.source,
                port=edge.port,
                protocol=edge.protocol,
            )
        )
        if edge.source_is_cidr:
            continue
        groups.add(edge.source)
        egress[edge.source].add(
            AccessRule(
                direction=Direction.EGRESS,
                peer=edge.destination,
                port=edge.port,
                protocol=edge.protocol,
            )
        )

    unknown = set(overrides) - groups
    if unknown:
        raise ValueError(f"egress overrides name unknown groups: {sorted(unknown)}")

    policies: list[GroupPolicy] = []
    for group in sorted(groups):
        group_egress = sorted(egress.get(group, ()), key=AccessRule.sort_key)
        if not group_egress:
            action = Action(overrides.get(group, Action.ALLOW.value))
            group_egress = _default_egress(action)
            logger.debug("Group %s has no outbound edges; default egress %s", group, action.value)
        policies.append(
            GroupPolicy(
                group=group,
                ingress=sorted(ingress.get(group, ()), key=AccessRule.sort_key),
                egress=group_egress,
            )
        )

    digest = content_address([p.model_dump(mode="json") for p in policies])
    return AccessPolicy(groups=policies, edges=normalized, digest=digest)
