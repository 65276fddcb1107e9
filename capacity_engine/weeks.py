from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import InvalidRangeError
from .models import WEEK_DAYS, Allocation

WEEK = timedelta(days=WEEK_DAYS)


@dataclass(frozen=True)
class WeekBucket:
    index: int
    start: date
    end: date

    @property
    def key(self) -> str:
        return self.start.isoformat()


def build_week_buckets(start: date, end: date) -> List[WeekBucket]:
    """Split [start, end) into 7-day buckets anchored at start.

    The last bucket may extend past ``end``; it still counts as a full week.
    """
    if end <= start:
        raise InvalidRangeError(start, end)
    buckets: List[WeekBucket] = []
    current = start
    while current < end:
        buckets.append(WeekBucket(index=len(buckets), start=current, end=current + WEEK))
        current += WEEK
    return buckets


def bucket_index(week_start: date, window_start: date, bucket_count: int) -> Optional[int]:
    offset = (week_start - window_start).days
    if offset < 0:
        return None
    idx = offset // WEEK_DAYS
    if idx >= bucket_count:
        return None
    return idx


def aggregate_existing_hours(
    allocations: Iterable[Allocation],
    buckets: Sequence[WeekBucket],
) -> Dict[str, Dict[int, float]]:
    """Sum allocated hours per resource and bucket index.

    Allocations whose week start is not on the bucket grid land in the bucket
    that contains them; allocations outside the window are ignored.
    """
    if not buckets:
        return {}
    window_start = buckets[0].start
    totals: Dict[str, Dict[int, float]] = defaultdict(lambda: defaultdict(float))
    for allocation in allocations:
        idx = bucket_index(allocation.week_start, window_start, len(buckets))
        if idx is None:
            continue
        totals[allocation.resource_id][idx] += allocation.allocated_hours
    return {resource_id: dict(per_week) for resource_id, per_week in totals.items()}
