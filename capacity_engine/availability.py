from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from .models import Allocation, Resource
from .weeks import WeekBucket, aggregate_existing_hours


@dataclass(frozen=True)
class WeekAvailability:
    bucket: WeekBucket
    capacity_hours: float
    allocated_hours: float
    available_hours: float

    @property
    def utilization(self) -> float:
        return self.allocated_hours / self.capacity_hours

    @property
    def utilization_pct(self) -> float:
        return self.utilization * 100

    @property
    def is_overallocated(self) -> bool:
        return self.allocated_hours > self.capacity_hours


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """Weekly availability of one resource across a planning window."""

    resource: Resource
    weeks: Tuple[WeekAvailability, ...]

    @property
    def total_available_hours(self) -> float:
        return sum(week.available_hours for week in self.weeks)

    @property
    def total_allocated_hours(self) -> float:
        return sum(week.allocated_hours for week in self.weeks)

    def allocated_in(self, bucket_index: int) -> float:
        return self.weeks[bucket_index].allocated_hours


def snapshot_resource(
    resource: Resource,
    existing_by_week: Mapping[int, float],
    buckets: Sequence[WeekBucket],
) -> AvailabilitySnapshot:
    capacity = resource.capacity_hours_per_week
    weeks: List[WeekAvailability] = []
    for bucket in buckets:
        allocated = existing_by_week.get(bucket.index, 0.0)
        weeks.append(
            WeekAvailability(
                bucket=bucket,
                capacity_hours=capacity,
                allocated_hours=allocated,
                available_hours=max(0.0, capacity - allocated),
            )
        )
    return AvailabilitySnapshot(resource=resource, weeks=tuple(weeks))


def build_snapshots(
    resources: Sequence[Resource],
    allocations: Iterable[Allocation],
    buckets: Sequence[WeekBucket],
) -> Dict[str, AvailabilitySnapshot]:
    """Snapshot every resource; dict order follows ``resources``."""
    existing = aggregate_existing_hours(allocations, buckets)
    return {
        resource.id: snapshot_resource(resource, existing.get(resource.id, {}), buckets)
        for resource in resources
    }
