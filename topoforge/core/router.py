"""Traffic router — path routing, service lifecycle, load balancer and edge.

Routing is longest-prefix match over the declared routes, with ties broken
by the lower ``priority`` value and unmatched paths falling through to the
single default (empty-prefix) route. A route table without a default route
is rejected when it is built, never at request time.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from topoforge.models.placement import Placement
from topoforge.models.routing import (
    VALID_TRANSITIONS,
    CacheBehavior,
    EdgeDistribution,
    HealthCheck,
    ListenerRule,
    LoadBalancer,
    Origin,
    Route,
    ServiceState,
    ServiceTransition,
    TargetGroup,
    TargetKind,
)

logger = logging.getLogger(__name__)

BUNDLE_ORIGIN_ID = "bundleOrigin"
BACKEND_ORIGIN_ID = "backendOrigin"
FIRST_RULE_PRIORITY = 100


class NoDefaultRoute(ValueError):
    """Raised when a route table has no empty-prefix catch-all route."""


class AmbiguousRoute(ValueError):
    """Raised when two routes would match the same path with equal rank."""


class InvalidTransition(RuntimeError):
    """Raised when a requested service state transition is not valid."""


# ---------------------------------------------------------------------------
# Route table
# ---------------------------------------------------------------------------


class RouteTable:
    """Ordered, validated set of routes.

    Parameters
    ----------
    routes:
        Declared routes. Exactly one must have an empty prefix.

    Raises
    ------
    NoDefaultRoute
        If no route has an empty prefix.
    AmbiguousRoute
        If more than one default route exists, or two routes share both
        prefix and priority.
    """

    def __init__(self, routes: Iterable[Route]) -> None:
        routes = list(routes)
        defaults = [r for r in routes if r.is_default]
        if not defaults:
            raise NoDefaultRoute("Route table has no default (empty-prefix) route")
        if len(defaults) > 1:
            raise AmbiguousRoute(
                f"Route table has {len(defaults)} default routes: "
                f"{', '.join(r.target for r in defaults)}"
            )

        seen: dict[tuple[str, int], Route] = {}
        for route in routes:
            key = (route.prefix, route.priority)
            if key in seen and not route.is_default:
                raise AmbiguousRoute(
                    f"Routes to {seen[key].target!r} and {route.target!r} share "
                    f"prefix {route.prefix!r} and priority {route.priority}"
                )
            seen[key] = route

        self._default = defaults[0]
        # Longest prefix first, then lower priority, then target for stability.
        self._ordered = sorted(
            (r for r in routes if not r.is_default),
            key=lambda r: (-len(r.prefix), r.priority, r.target),
        )

    @property
    def default(self) -> Route:
        return self._default

    @property
    def routes(self) -> list[Route]:
        """Prefix routes in evaluation order, followed by the default route."""
        return [*self._ordered, self._default]

    def route(self, path: str) -> Route:
        """Return the single route that serves ``path``."""
        for candidate in self._ordered:
            if path.startswith(candidate.prefix):
                return candidate
        return self._default

    def targets(self, kind: TargetKind | None = None) -> list[str]:
        return sorted({r.target for r in self.routes if kind is None or r.target_kind == kind})


# ---------------------------------------------------------------------------
# Service lifecycle
# ---------------------------------------------------------------------------


class ServiceLifecycle:
    """Tracks each exposed service through defined -> ... -> removed.

    Thread-safe: health pollers for different services report concurrently.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, ServiceState] = {}
        self.history: list[ServiceTransition] = []

    def define(self, service: str) -> None:
        with self._lock:
            if service in self._states:
                raise InvalidTransition(f"Service {service!r} is already defined")
            self._states[service] = ServiceState.DEFINED

    def register(self, service: str) -> ServiceTransition:
        """First registration with the load balancer: defined -> health_unknown."""
        return self.transition(service, ServiceState.HEALTH_UNKNOWN, reason="registered")

    def state(self, service: str) -> ServiceState:
        with self._lock:
            try:
                return self._states[service]
            except KeyError:
                raise KeyError(f"Unknown service {service!r}") from None

    def states(self) -> dict[str, ServiceState]:
        with self._lock:
            return dict(self._states)

    def is_routable(self, service: str) -> bool:
        """Only healthy services receive new connections."""
        return self.state(service) == ServiceState.HEALTHY

    def transition(
        self, service: str, target: ServiceState, *, reason: str = ""
    ) -> ServiceTransition:
        """Move a service to ``target``, validating against VALID_TRANSITIONS."""
        with self._lock:
            record = self._apply(service, target, reason)
        logger.info("Service %s: %s -> %s", service, record.from_state.value, target.value)
        return record

    def transition_if(
        self,
        service: str,
        expected: ServiceState,
        target: ServiceState,
        *,
        reason: str = "",
    ) -> ServiceTransition | None:
        """Move ``service`` to ``target`` only if it is still in ``expected``.

        The check and the move happen under one lock. Returns ``None`` when
        the service has already left ``expected``.
        """
        with self._lock:
            if self._states.get(service) != expected:
                return None
            record = self._apply(service, target, reason)
        logger.info("Service %s: %s -> %s", service, expected.value, target.value)
        return record

    def _apply(self, service: str, target: ServiceState, reason: str) -> ServiceTransition:
        # Caller holds self._lock.
        if service not in self._states:
            raise KeyError(f"Unknown service {service!r}")
        current = self._states[service]
        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransition(
                f"Cannot transition {service} from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        self._states[service] = target
        record = ServiceTransition(
            service=service, from_state=current, to_state=target, reason=reason
        )
        self.history.append(record)
        return record


# ---------------------------------------------------------------------------
# Load balancer and edge derivation
# ---------------------------------------------------------------------------


def build_load_balancer(
    name: str,
    access_group: str,
    table: RouteTable,
    placements: dict[str, Placement],
    subnets: list[str],
) -> LoadBalancer:
    """One target group and one listener rule per placement route.

    Rule priorities start at 100 and follow route evaluation order, so the
    load balancer agrees with ``RouteTable.route``.
    """
    target_groups: list[TargetGroup] = []
    rules: list[ListenerRule] = []
    priority = FIRST_RULE_PRIORITY
    for route in table.routes:
        if route.target_kind != TargetKind.PLACEMENT:
            continue
        placement = placements[route.target]
        group_name = f"{placement.name}-target-group"
        if all(tg.name != group_name for tg in target_groups):
            target_groups.append(
                TargetGroup(
                    name=group_name,
                    placement=placement.name,
                    port=placement.container_port,
                    health_check=HealthCheck(
                        path=placement.health_check_path, port=placement.container_port
                    ),
                )
            )
        rules.append(
            ListenerRule(priority=priority, path_pattern=route.path_pattern, target_group=group_name)
        )
        priority += 1

    return LoadBalancer(
        name=name,
        access_group=access_group,
        target_groups=target_groups,
        rules=rules,
        subnets=list(subnets),
    )


def build_distribution(
    name: str,
    domain_name: str,
    table: RouteTable,
    bundle_endpoint: str,
    load_balancer: LoadBalancer | None,
) -> EdgeDistribution:
    """Edge with the bundle as default origin and dynamic routes in front of it."""
    origins = [Origin(origin_id=BUNDLE_ORIGIN_ID, domain_name=bundle_endpoint)]
    if load_balancer is not None:
        origins.append(Origin(origin_id=BACKEND_ORIGIN_ID, domain_name=load_balancer.dns_name))

    ordered = [
        CacheBehavior(
            path_pattern=route.path_pattern,
            origin_id=(
                BACKEND_ORIGIN_ID if route.target_kind == TargetKind.PLACEMENT
                else BUNDLE_ORIGIN_ID
            ),
            policy=route.cache_policy,
        )
        for route in table.routes
        if not route.is_default
    ]
    if ordered and load_balancer is None and any(
        b.origin_id == BACKEND_ORIGIN_ID for b in ordered
    ):
        raise ValueError("Placement routes require a load balancer origin")

    return EdgeDistribution(
        name=name,
        domain_name=domain_name,
        origins=origins,
        default_behavior=CacheBehavior(
            path_pattern="*", origin_id=BUNDLE_ORIGIN_ID, policy=table.default.cache_policy
        ),
        ordered_behaviors=ordered,
    )
