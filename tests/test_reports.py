from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import make_resource, weekly_allocations

from capacity_engine.availability import build_snapshots
from capacity_engine.models import AllocationRequest, PlanningWindow, SkillRequirement
from capacity_engine.planner import build_plan
from capacity_engine.reports import (
    PLAN_COLUMNS,
    TEAM_CAPACITY_COLUMNS,
    plan_to_frame,
    resource_availability_report,
    team_capacity_report,
)
from capacity_engine.weeks import build_week_buckets


def test_resource_availability_report_summary(window_start) -> None:
    window = PlanningWindow(window_start, window_start + timedelta(weeks=3))
    allocations = weekly_allocations("r1", 44, 1) + weekly_allocations(
        "r1", 20, 1, start=window_start + timedelta(weeks=1), block_id="b2"
    )

    weekly, summary = resource_availability_report(make_resource("r1"), allocations, window)

    assert list(weekly["allocated_hours"]) == [44, 20, 0]
    assert list(weekly["available_hours"]) == [0, 20, 40]
    assert list(weekly["is_overallocated"]) == [True, False, False]
    assert summary["total_capacity_hours"] == 120
    assert summary["total_allocated_hours"] == 64
    assert summary["average_utilization"] == pytest.approx(53.33)
    assert summary["overallocated_weeks"] == 1
    assert summary["has_overallocation"]
    assert not summary["is_fully_allocated"]


def test_team_capacity_report_groups_by_week_and_team(window_start) -> None:
    window = PlanningWindow(window_start, window_start + timedelta(weeks=2))
    resources = [
        make_resource("r1", team="Platform"),
        make_resource("r2", team="Platform", capacity=20),
        make_resource("r3", team="Data"),
    ]
    allocations = weekly_allocations("r1", 30, 2) + weekly_allocations("r3", 10, 1)

    frame = team_capacity_report(resources, allocations, window)

    assert list(frame.columns) == TEAM_CAPACITY_COLUMNS
    assert len(frame) == 4
    first_week = frame[frame["week_start"] == window_start.isoformat()].set_index("team")
    assert first_week.loc["Platform", "resource_count"] == 2
    assert first_week.loc["Platform", "capacity_hours"] == 60
    assert first_week.loc["Platform", "allocated_hours"] == 30
    assert first_week.loc["Platform", "utilization_pct"] == 50
    assert first_week.loc["Data", "available_hours"] == 30


def test_team_capacity_report_without_resources_is_empty(window_start) -> None:
    window = PlanningWindow(window_start, window_start + timedelta(weeks=1))

    frame = team_capacity_report([], [], window)

    assert frame.empty
    assert list(frame.columns) == TEAM_CAPACITY_COLUMNS


def test_plan_to_frame_has_one_row_per_entry(window_start) -> None:
    window = PlanningWindow(window_start, window_start + timedelta(weeks=2))
    buckets = build_week_buckets(window.start, window.end)
    request = AllocationRequest("proj-1", "block-1", window, (SkillRequirement("python", 5, 30),))
    snapshots = build_snapshots([make_resource("r1", {"python": 6})], [], buckets)

    frame = plan_to_frame(build_plan(request, snapshots, buckets))

    assert list(frame.columns) == PLAN_COLUMNS
    assert list(frame["allocated_hours"]) == [15, 15]
    assert list(frame["week_start"]) == [window_start.isoformat(), (window_start + timedelta(weeks=1)).isoformat()]
