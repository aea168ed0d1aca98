"""Routing models — routes, cache policies, and the service lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ALL_METHODS: list[str] = ["DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT"]
CACHED_METHODS: list[str] = ["GET", "HEAD"]


class ServiceState(str, Enum):
    """Lifecycle of a service exposed through the router."""

    DEFINED = "defined"
    HEALTH_UNKNOWN = "health_unknown"
    HEALTHY = "healthy"
    DRAINING = "draining"
    REMOVED = "removed"


# Valid state transitions, enforced by ServiceLifecycle.
# REMOVED is terminal. A failed probe demotes HEALTHY back to HEALTH_UNKNOWN.
VALID_TRANSITIONS: dict[ServiceState, set[ServiceState]] = {
    ServiceState.DEFINED: {ServiceState.HEALTH_UNKNOWN},
    ServiceState.HEALTH_UNKNOWN: {ServiceState.HEALTHY, ServiceState.DRAINING},
    ServiceState.HEALTHY: {ServiceState.DRAINING, ServiceState.HEALTH_UNKNOWN},
    ServiceState.DRAINING: {ServiceState.REMOVED},
    ServiceState.REMOVED: set(),
}


class ServiceTransition(BaseModel):
    """Records a single lifecycle transition."""

    model_config = ConfigDict(frozen=True)

    service: str
    from_state: ServiceState
    to_state: ServiceState
    reason: str = ""
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TargetKind(str, Enum):
    PLACEMENT = "placement"
    BUNDLE = "bundle"


class CachePolicy(BaseModel):
    """Edge cache behaviour for one route. TTLs are seconds."""

    model_config = ConfigDict(frozen=True)

    name: str
    min_ttl: int = 0
    default_ttl: int = 86400
    max_ttl: int = 31536000
    allowed_methods: list[str] = Field(default_factory=lambda: list(ALL_METHODS))
    cached_methods: list[str] = Field(default_factory=lambda: list(CACHED_METHODS))
    forward_query_string: bool = True
    forward_headers: list[str] = []
    forward_cookies: str = "none"  # "none" or "all"
    viewer_protocol_policy: str = "redirect-to-https"

    @model_validator(mode="after")
    def _check_window(self) -> CachePolicy:
        if not 0 <= self.min_ttl <= self.default_ttl <= self.max_ttl:
            raise ValueError(
                f"cache policy {self.name!r} needs 0 <= min_ttl <= default_ttl <= max_ttl, "
                f"got {self.min_ttl}/{self.default_ttl}/{self.max_ttl}"
            )
        return self

    @classmethod
    def static(cls) -> CachePolicy:
        """Long, query-aware caching for the static bundle."""
        return cls(name="static")

    @classmethod
    def dynamic(cls) -> CachePolicy:
        """Short freshness window for backend responses; absorbs bursts only."""
        return cls(
            name="dynamic",
            min_ttl=0,
            default_ttl=10,
            max_ttl=50,
            forward_headers=["*"],
            forward_cookies="all",
        )


class Route(BaseModel):
    """Maps an external path prefix to a target and a cache policy.

    ``prefix`` may be written as a pattern (``/api/*``); the trailing ``*``
    is dropped. An empty prefix marks the default route.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str
    target: str
    target_kind: TargetKind
    priority: int = 100
    cache_policy: CachePolicy = Field(default_factory=CachePolicy.static)

    @field_validator("prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        prefix = value.rstrip("*")
        if prefix in ("", "/"):
            return ""
        if not prefix.startswith("/"):
            prefix = f"/{prefix}"
        return prefix

    @property
    def is_default(self) -> bool:
        return self.prefix == ""

    @property
    def path_pattern(self) -> str:
        return f"{self.prefix}*" if self.prefix else "*"

    @classmethod
    def to_placement(cls, prefix: str, placement: str, priority: int = 100) -> Route:
        return cls(
            prefix=prefix,
            target=placement,
            target_kind=TargetKind.PLACEMENT,
            priority=priority,
            cache_policy=CachePolicy.dynamic(),
        )

    @classmethod
    def default_to_bundle(cls, bundle: str) -> Route:
        return cls(
            prefix="",
            target=bundle,
            target_kind=TargetKind.BUNDLE,
            cache_policy=CachePolicy.static(),
        )


# ---------------------------------------------------------------------------
# Load balancer and edge
# ---------------------------------------------------------------------------


class HealthCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = "/ready"
    port: int = 80
    enabled: bool = True


class TargetGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    placement: str
    port: int = 80
    protocol: str = "HTTP"
    target_type: str = "ip"
    health_check: HealthCheck = HealthCheck()


class ListenerRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    priority: int
    path_pattern: str
    target_group: str


class FixedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_code: int = 404
    content_type: str = "text/plain"
    message_body: str = "Could not find the resource you are looking for"


class LoadBalancer(BaseModel):
    """Public application load balancer with one HTTP listener."""

    model_config = ConfigDict(frozen=True)

    name: str
    access_group: str
    listener_port: int = 80
    listener_protocol: str = "HTTP"
    default_response: FixedResponse = FixedResponse()
    target_groups: list[TargetGroup] = []
    rules: list[ListenerRule] = []
    subnets: list[str] = []
    internal: bool = False

    @property
    def dns_name(self) -> str:
        return f"{self.name}.elb.internal"


class Origin(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin_id: str
    domain_name: str
    protocol_policy: str = "http-only"
    http_port: int = 80
    https_port: int = 443
    ssl_protocols: list[str] = ["TLSv1.2", "TLSv1.1", "TLSv1"]


class CacheBehavior(BaseModel):
    model_config = ConfigDict(frozen=True)

    path_pattern: str  # "*" for the default behaviour
    origin_id: str
    policy: CachePolicy


class EdgeDistribution(BaseModel):
    """Caching edge in front of the bucket and the load balancer."""

    model_config = ConfigDict(frozen=True)

    name: str
    domain_name: str
    origins: list[Origin]
    default_behavior: CacheBehavior
    ordered_behaviors: list[CacheBehavior] = []
    default_root_object: str = "index.html"
    geo_restriction: str = "none"
    default_certificate: bool = True
