"""Tests for the TrafficRouter — route table, lifecycle, LB and edge."""

from __future__ import annotations

import pytest

from topoforge.core.placement import define_placement
from topoforge.core.router import (
    BACKEND_ORIGIN_ID,
    BUNDLE_ORIGIN_ID,
    AmbiguousRoute,
    InvalidTransition,
    NoDefaultRoute,
    RouteTable,
    ServiceLifecycle,
    build_distribution,
    build_load_balancer,
)
from topoforge.models.routing import (
    CachePolicy,
    Route,
    ServiceState,
    TargetKind,
)


@pytest.fixture
def table() -> RouteTable:
    return RouteTable([
        Route.to_placement("/api/*", "placement"),
        Route.default_to_bundle("bundle"),
    ])


class TestRouteModel:
    @pytest.mark.parametrize(
        ("raw", "prefix"),
        [("/api/*", "/api/"), ("api/", "/api/"), ("*", ""), ("/", ""), ("", "")],
    )
    def test_prefix_normalized(self, raw, prefix):
        assert Route(prefix=raw, target="t", target_kind=TargetKind.BUNDLE).prefix == prefix

    def test_path_pattern(self):
        assert Route.to_placement("/backend/*", "svc").path_pattern == "/backend/*"
        assert Route.default_to_bundle("b").path_pattern == "*"


class TestCachePolicy:
    def test_static_defaults(self):
        policy = CachePolicy.static()
        assert (policy.min_ttl, policy.default_ttl, policy.max_ttl) == (0, 86400, 31536000)
        assert policy.forward_cookies == "none"

    def test_dynamic_short_window(self):
        policy = CachePolicy.dynamic()
        assert (policy.min_ttl, policy.default_ttl, policy.max_ttl) == (0, 10, 50)
        assert policy.forward_headers == ["*"]
        assert policy.forward_cookies == "all"

    def test_window_must_be_ordered(self):
        with pytest.raises(ValueError):
            CachePolicy(name="bad", min_ttl=100, default_ttl=10, max_ttl=50)


class TestRouteTable:
    def test_prefix_match(self, table):
        assert table.route("/api/posts").target == "placement"

    def test_default_match(self, table):
        assert table.route("/anything").target == "bundle"
        assert table.route("/").target == "bundle"

    def test_longest_prefix_wins(self):
        table = RouteTable([
            Route.to_placement("/api/*", "api"),
            Route.to_placement("/api/admin/*", "admin"),
            Route.default_to_bundle("bundle"),
        ])
        assert table.route("/api/admin/users").target == "admin"
        assert table.route("/api/users").target == "api"

    def test_priority_breaks_ties(self):
        table = RouteTable([
            Route.to_placement("/api/*", "slow", priority=200),
            Route.to_placement("/api/*", "fast", priority=10),
            Route.default_to_bundle("bundle"),
        ])
        assert table.route("/api/x").target == "fast"

    def test_no_default(self):
        with pytest.raises(NoDefaultRoute):
            RouteTable([Route.to_placement("/api/*", "placement")])

    def test_two_defaults(self):
        with pytest.raises(AmbiguousRoute):
            RouteTable([Route.default_to_bundle("a"), Route.default_to_bundle("b")])

    def test_same_prefix_and_priority(self):
        with pytest.raises(AmbiguousRoute):
            RouteTable([
                Route.to_placement("/api/*", "a"),
                Route.to_placement("/api/", "b"),
                Route.default_to_bundle("bundle"),
            ])

    def test_evaluation_order(self):
        table = RouteTable([
            Route.default_to_bundle("bundle"),
            Route.to_placement("/a/*", "short"),
            Route.to_placement("/a/b/*", "long"),
        ])
        assert [r.target for r in table.routes] == ["long", "short", "bundle"]

    def test_targets_by_kind(self, table):
        assert table.targets(TargetKind.PLACEMENT) == ["placement"]
        assert table.targets(TargetKind.BUNDLE) == ["bundle"]


class TestServiceLifecycle:
    def test_happy_path(self):
        lifecycle = ServiceLifecycle()
        lifecycle.define("svc")
        lifecycle.register("svc")
        lifecycle.transition("svc", ServiceState.HEALTHY)
        assert lifecycle.is_routable("svc")
        lifecycle.transition("svc", ServiceState.DRAINING)
        assert not lifecycle.is_routable("svc")
        lifecycle.transition("svc", ServiceState.REMOVED)
        assert [t.to_state for t in lifecycle.history] == [
            ServiceState.HEALTH_UNKNOWN,
            ServiceState.HEALTHY,
            ServiceState.DRAINING,
            ServiceState.REMOVED,
        ]

    def test_probe_failure_demotes(self):
        lifecycle = ServiceLifecycle()
        lifecycle.define("svc")
        lifecycle.register("svc")
        lifecycle.transition("svc", ServiceState.HEALTHY)
        lifecycle.transition("svc", ServiceState.HEALTH_UNKNOWN)
        assert not lifecycle.is_routable("svc")

    def test_cannot_skip_health_check(self):
        lifecycle = ServiceLifecycle()
        lifecycle.define("svc")
        with pytest.raises(InvalidTransition):
            lifecycle.transition("svc", ServiceState.HEALTHY)

    def test_removed_is_terminal(self):
        lifecycle = ServiceLifecycle()
        lifecycle.define("svc")
        lifecycle.register("svc")
        lifecycle.transition("svc", ServiceState.DRAINING)
        lifecycle.transition("svc", ServiceState.REMOVED)
        with pytest.raises(InvalidTransition):
            lifecycle.transition("svc", ServiceState.HEALTH_UNKNOWN)

    def test_define_twice(self):
        lifecycle = ServiceLifecycle()
        lifecycle.define("svc")
        with pytest.raises(InvalidTransition):
            lifecycle.define("svc")

    def test_unknown_service(self):
        with pytest.raises(KeyError):
            ServiceLifecycle().state("ghost")

    def test_transition_if_applies_when_state_matches(self):
        lifecycle = ServiceLifecycle()
        lifecycle.define("svc")
        lifecycle.register("svc")
        record = lifecycle.transition_if(
            "svc", ServiceState.HEALTH_UNKNOWN, ServiceState.HEALTHY
        )
        assert record is not None
        assert record.to_state == ServiceState.HEALTHY
        assert lifecycle.state("svc") == ServiceState.HEALTHY

    def test_transition_if_skips_when_state_moved(self):
        lifecycle = ServiceLifecycle()
        lifecycle.define("svc")
        lifecycle.register("svc")
        lifecycle.transition("svc", ServiceState.DRAINING)
        before = len(lifecycle.history)
        assert lifecycle.transition_if(
            "svc", ServiceState.HEALTH_UNKNOWN, ServiceState.HEALTHY
        ) is None
        assert lifecycle.state("svc") == ServiceState.DRAINING
        assert len(lifecycle.history) == before


class TestLoadBalancerAndEdge:
    @pytest.fixture
    def placements(self, image):
        return {"placement": define_placement("placement", image, {}, "service")}

    def test_target_groups_and_rules(self, table, placements):
        lb = build_load_balancer("loadbalancer", "loadbalancer", table, placements, ["pub-a"])
        assert [tg.name for tg in lb.target_groups] == ["placement-target-group"]
        assert lb.target_groups[0].health_check.path == "/ready"
        assert [(r.priority, r.path_pattern) for r in lb.rules] == [(100, "/api/*")]
        assert lb.default_response.status_code == 404
        assert lb.subnets == ["pub-a"]

    def test_distribution_origins(self, table, placements):
        lb = build_load_balancer("loadbalancer", "loadbalancer", table, placements, [])
        edge = build_distribution("edge", "d123.cloudfront.net", table, "b.s3-website", lb)
        assert {o.origin_id for o in edge.origins} == {BUNDLE_ORIGIN_ID, BACKEND_ORIGIN_ID}
        assert edge.default_behavior.origin_id == BUNDLE_ORIGIN_ID
        assert edge.default_behavior.policy.name == "static"
        assert [(b.path_pattern, b.origin_id, b.policy.name) for b in edge.ordered_behaviors] == [
            ("/api/*", BACKEND_ORIGIN_ID, "dynamic")
        ]
        assert edge.default_root_object == "index.html"

    def test_placement_routes_need_load_balancer(self, table):
        with pytest.raises(ValueError, match="load balancer"):
            build_distribution("edge", "d.example", table, "b.s3-website", None)

    def test_bundle_only(self):
        table = RouteTable([Route.default_to_bundle("bundle")])
        edge = build_distribution("edge", "d.example", table, "b.s3-website", None)
        assert [o.origin_id for o in edge.origins] == [BUNDLE_ORIGIN_ID]
        assert edge.ordered_behaviors == []
