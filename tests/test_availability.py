from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import make_resource, weekly_allocations

from capacity_engine.availability import build_snapshots
from capacity_engine.weeks import build_week_buckets


@pytest.mark.parametrize("existing", [0.0, 12.5, 40.0, 55.0])
def test_available_plus_allocated_matches_capacity(window_start, existing: float) -> None:
    resource = make_resource("r1", capacity=40)
    buckets = build_week_buckets(window_start, window_start + timedelta(weeks=3))
    snapshot = build_snapshots([resource], weekly_allocations("r1", existing, 3), buckets)["r1"]

    for week in snapshot.weeks:
        if existing <= resource.capacity_hours_per_week:
            assert week.available_hours + week.allocated_hours == pytest.approx(40.0)
        else:
            assert week.available_hours == 0
            assert week.is_overallocated
        assert week.utilization == pytest.approx(existing / 40)


def test_total_available_hours_sums_window(window_start) -> None:
    resources = [make_resource("r1", capacity=40), make_resource("r2", capacity=30)]
    buckets = build_week_buckets(window_start, window_start + timedelta(weeks=4))
    allocations = weekly_allocations("r1", 30, 2)

    snapshots = build_snapshots(resources, allocations, buckets)

    assert list(snapshots) == ["r1", "r2"]
    assert snapshots["r1"].total_available_hours == pytest.approx(10 + 10 + 40 + 40)
    assert snapshots["r1"].total_allocated_hours == pytest.approx(60)
    assert snapshots["r2"].total_available_hours == pytest.approx(120)
    assert snapshots["r1"].allocated_in(1) == 30
    assert snapshots["r1"].allocated_in(2) == 0
