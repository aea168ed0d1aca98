"""Network topology builder — carves a parent range into tiered segments.

Segments are carved class-major, zone-minor. When the parent range is large
enough, each class starts at its own fixed block offset so that a ``/16``
carved into ``/24`` segments yields the familiar layout::

    private  10.0.1.0/24    10.0.2.0/24    10.0.3.0/24
    public   10.0.101.0/24  10.0.102.0/24  10.0.103.0/24
    data     10.0.201.0/24  10.0.202.0/24  10.0.203.0/24

Smaller ranges fall back to dense packing in the order public, private,
data, skipping block zero.
"""

from __future__ import annotations

import ipaddress
import logging
import string

from topoforge.models.network import (
    EgressGateway,
    NetworkSegment,
    NetworkTopology,
    Visibility,
)

logger = logging.getLogger(__name__)

# Block offsets per class for the strided layout.
CLASS_OFFSETS: dict[Visibility, int] = {
    Visibility.PRIVATE: 1,
    Visibility.PUBLIC: 101,
    Visibility.DATA: 201,
}
CLASS_STRIDE = 100

# Class order for dense packing and for the emitted segment list.
CLASS_ORDER: tuple[Visibility, ...] = (
    Visibility.PUBLIC,
    Visibility.PRIVATE,
    Visibility.DATA,
)


class AddressSpaceExhausted(ValueError):
    """Raised when the parent range cannot hold every requested segment."""

    def __init__(self, cidr_block: str, requested: int, available: int) -> None:
        self.cidr_block = cidr_block
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot carve {requested} segments from {cidr_block}: "
            f"only {available} blocks available."
        )


def zone_names(region: str, zone_count: int) -> list[str]:
    """Return ``zone_count`` zone names suffixed a, b, c, ... onto the region."""
    if zone_count > len(string.ascii_lowercase):
        raise ValueError(f"zone_count {zone_count} exceeds {len(string.ascii_lowercase)}")
    return [f"{region}{letter}" for letter in string.ascii_lowercase[:zone_count]]


def _block_indices(
    zone_count: int, total_blocks: int
) -> dict[Visibility, list[int]] | None:
    """Return block indices per class, or None if they do not fit."""
    if (
        zone_count <= CLASS_STRIDE
        and CLASS_OFFSETS[Visibility.DATA] + zone_count <= total_blocks
    ):
        return {
            cls: [CLASS_OFFSETS[cls] + zone for zone in range(zone_count)]
            for cls in CLASS_ORDER
        }

    if len(CLASS_ORDER) * zone_count + 1 <= total_blocks:
        return {
            cls: [class_index * zone_count + zone + 1 for zone in range(zone_count)]
            for class_index, cls in enumerate(CLASS_ORDER)
        }
    return None


def build_topology(
    name: str,
    cidr_block: str,
    zone_count: int,
    *,
    region: str = "us-east-1",
    single_egress: bool = True,
    segment_prefix: int = 24,
) -> NetworkTopology:
    """Partition ``cidr_block`` into public, private and data segments.

    One segment per zone per class. ``single_egress`` chooses between one
    shared NAT egress for all private segments (cheaper, less redundant)
    and one egress per zone.

    Raises
    ------
    ValueError
        If ``zone_count`` is below 1 or the prefix lengths are inconsistent.
    AddressSpaceExhausted
        If the carved segments would not fit inside ``cidr_block``.
    """
    if zone_count < 1:
        raise ValueError(f"zone_count must be >= 1, got {zone_count}")

    parent = ipaddress.ip_network(cidr_block)
    if segment_prefix < parent.prefixlen or segment_prefix > parent.max_prefixlen:
        raise ValueError(
            f"segment prefix /{segment_prefix} does not fit inside {cidr_block}"
        )

    blocks = list(parent.subnets(new_prefix=segment_prefix))
    indices = _block_indices(zone_count, len(blocks))
    if indices is None:
        # Block zero is never handed out.
        raise AddressSpaceExhausted(
            cidr_block, len(CLASS_ORDER) * zone_count, len(blocks) - 1
        )

    zones = zone_names(region, zone_count)
    segments = [
        NetworkSegment(
            name=f"{name}-{cls.value}-{zone}",
            cidr=str(blocks[indices[cls][z]]),
            visibility=cls,
            zone=zone,
        )
        for cls in CLASS_ORDER
        for z, zone in enumerate(zones)
    ]

    public = [s for s in segments if s.visibility == Visibility.PUBLIC]
    private = [s.name for s in segments if s.visibility != Visibility.PUBLIC]
    if single_egress:
        egress = [EgressGateway(name=f"{name}-nat", segment=public[0].name, serves=private)]
    else:
        egress = [
            EgressGateway(
                name=f"{name}-nat-{seg.zone}",
                segment=seg.name,
                serves=[
                    s.name for s in segments
                    if s.visibility != Visibility.PUBLIC and s.zone == seg.zone
                ],
            )
            for seg in public
        ]

    topology = NetworkTopology(
        name=name,
        cidr_block=str(parent),
        region=region,
        zones=zones,
        segments=segments,
        egress=egress,
        single_egress=single_egress,
        data_subnet_group=f"{name}-data",
    )
    logger.debug(
        "Carved %d segments from %s across %d zones", len(segments), cidr_block, zone_count
    )
    return topology
