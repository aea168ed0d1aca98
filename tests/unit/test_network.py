"""Tests for network carving — strided layout, dense fallback, egress."""

from __future__ import annotations

import ipaddress

import pytest

from topoforge.core.network import AddressSpaceExhausted, build_topology, zone_names
from topoforge.models.network import Visibility


class TestBuildTopology:
    def test_slash16_three_zones(self):
        topo = build_topology("app", "10.0.0.0/16", 3)
        assert len(topo.segments) == 9
        parent = ipaddress.ip_network("10.0.0.0/16")
        nets = [s.network for s in topo.segments]
        assert all(n.prefixlen == 24 and n.subnet_of(parent) for n in nets)
        assert topo.overlaps() == []
        assert topo.outside_block() == []

    def test_strided_layout(self):
        topo = build_topology("app", "10.0.0.0/16", 3)
        assert [s.cidr for s in topo.segments_for(Visibility.PRIVATE)] == [
            "10.0.1.0/24", "10.0.2.0/24", "10.0.3.0/24",
        ]
        assert [s.cidr for s in topo.segments_for(Visibility.PUBLIC)] == [
            "10.0.101.0/24", "10.0.102.0/24", "10.0.103.0/24",
        ]
        assert [s.cidr for s in topo.segments_for(Visibility.DATA)] == [
            "10.0.201.0/24", "10.0.202.0/24", "10.0.203.0/24",
        ]

    def test_one_segment_per_zone_per_class(self):
        topo = build_topology("app", "10.0.0.0/16", 3, region="eu-west-1")
        assert topo.zones == ["eu-west-1a", "eu-west-1b", "eu-west-1c"]
        for cls in Visibility:
            assert [s.zone for s in topo.segments_for(cls)] == topo.zones

    def test_segment_names(self):
        topo = build_topology("app", "10.0.0.0/16", 1)
        assert topo.segment_names(Visibility.DATA) == ["app-data-us-east-1a"]
        assert topo.data_subnet_group == "app-data"

    def test_dense_fallback(self):
        topo = build_topology("app", "10.0.0.0/20", 3)
        assert topo.overlaps() == []
        assert [s.cidr for s in topo.segments_for(Visibility.PUBLIC)] == [
            "10.0.1.0/24", "10.0.2.0/24", "10.0.3.0/24",
        ]
        # Block zero is never handed out.
        assert all(s.cidr != "10.0.0.0/24" for s in topo.segments)

    def test_deterministic(self):
        assert build_topology("app", "10.0.0.0/16", 2) == build_topology("app", "10.0.0.0/16", 2)

    def test_exhausted(self):
        with pytest.raises(AddressSpaceExhausted) as exc_info:
            build_topology("app", "10.0.0.0/22", 3)
        assert exc_info.value.requested == 9
        assert exc_info.value.available == 3

    def test_zero_zones(self):
        with pytest.raises(ValueError):
            build_topology("app", "10.0.0.0/16", 0)

    def test_prefix_larger_than_block(self):
        with pytest.raises(ValueError):
            build_topology("app", "10.0.0.0/16", 1, segment_prefix=8)


class TestEgress:
    def test_single_egress(self):
        topo = build_topology("app", "10.0.0.0/16", 3)
        assert len(topo.egress) == 1
        gateway = topo.egress[0]
        assert gateway.segment == topo.segment_names(Visibility.PUBLIC)[0]
        assert sorted(gateway.serves) == sorted(
            topo.segment_names(Visibility.PRIVATE) + topo.segment_names(Visibility.DATA)
        )

    def test_per_zone_egress(self):
        topo = build_topology("app", "10.0.0.0/16", 3, single_egress=False)
        assert len(topo.egress) == 3
        for gateway, zone in zip(topo.egress, topo.zones):
            assert gateway.name.endswith(zone)
            assert all(name.endswith(zone) for name in gateway.serves)


def test_zone_names():
    assert zone_names("us-east-1", 2) == ["us-east-1a", "us-east-1b"]
