"""Resource capacity conflict detection for proposed bookings"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Optional

from .overlap import Interval, is_valid_interval, max_simultaneous, overlaps

CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProposedBooking:
    service_id: int
    interval: Interval


@dataclass(frozen=True)
class ExistingBooking:
    id: int
    service_id: Optional[int]
    interval: Interval
    final_service_id: Optional[int] = None
    status: Optional[str] = None
    confirmation_status: Optional[str] = None

    @property
    def effective_service_id(self) -> Optional[int]:
        return self.final_service_id or self.service_id

    @property
    def is_cancelled(self) -> bool:
        return self.status == CANCELLED or self.confirmation_status == CANCELLED


@dataclass(frozen=True)
class ResourceInfo:
    id: int
    name: str
    capacity: Any  # raw column value, parsed by parse_capacity


@dataclass(frozen=True)
class ResourceConflict:
    resource_id: int
    resource_name: str
    capacity: float
    max_simultaneous: int

    def to_dict(self) -> dict:
        return {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "capacity": self.capacity,
            "max_simultaneous": self.max_simultaneous,
        }


def parse_capacity(raw: Any) -> float:
    """Numeric capacity, or 0 when missing, unparseable or not finite"""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return int(value) if value.is_integer() else value


def find_resource_conflicts(
    proposed: Iterable[ProposedBooking],
    existing: Iterable[ExistingBooking],
    service_resources: Mapping[int, Optional[int]],
    resources: Mapping[int, ResourceInfo],
    exclude_ids: Iterable[int] = (),
) -> list[ResourceConflict]:
    """
    Check a batch of proposed bookings against the capacity of every resource they use.

    For each resource touched by the batch, the proposed intervals plus the
    existing bookings on that resource that overlap one of them (ignoring
    cancelled and excluded ones) are swept for peak occupancy. A resource is
    in conflict when the peak exceeds its capacity.

    Services without a resource are skipped, as are resources missing from
    ``resources``. Results follow the order resources are first touched.
    """
    excluded = set(exclude_ids)

    proposed_by_resource: dict[int, list[Interval]] = {}
    for booking in proposed:
        if not is_valid_interval(booking.interval):
            continue
        resource_id = service_resources.get(booking.service_id)
        if not resource_id:
            continue
        proposed_by_resource.setdefault(resource_id, []).append(booking.interval)

    if not proposed_by_resource:
        return []

    existing_by_resource: dict[int, list[Interval]] = {}
    for booking in existing:
        if booking.is_cancelled or booking.id in excluded:
            continue
        resource_id = service_resources.get(booking.effective_service_id)
        if not resource_id or resource_id not in proposed_by_resource:
            continue
        if not is_valid_interval(booking.interval):
            continue
        if not any(overlaps(booking.interval, new) for new in proposed_by_resource[resource_id]):
            continue
        existing_by_resource.setdefault(resource_id, []).append(booking.interval)

    conflicts = []
    for resource_id, new_intervals in proposed_by_resource.items():
        resource = resources.get(resource_id)
        if resource is None:
            continue
        peak = max_simultaneous(new_intervals + existing_by_resource.get(resource_id, []))
        capacity = parse_capacity(resource.capacity)
        if peak > capacity:
            conflicts.append(
                ResourceConflict(
                    resource_id=resource_id,
                    resource_name=resource.name,
                    capacity=capacity,
                    max_simultaneous=peak,
                )
            )
    return conflicts
