from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Sequence

import pytest
from conftest import make_resource, weekly_allocations

from capacity_engine.availability import build_snapshots
from capacity_engine.models import (
    AllocationPreferences,
    AllocationRequest,
    EngineConfig,
    PlanningWindow,
    SkillRequirement,
)
from capacity_engine.planner import build_plan, plan_allocation
from capacity_engine.weeks import build_week_buckets


def _request(
    start: date,
    weeks: int,
    requirements: Sequence[SkillRequirement],
    preferences: AllocationPreferences = AllocationPreferences(),
) -> AllocationRequest:
    return AllocationRequest(
        project_id="proj-1",
        project_block_id="block-1",
        window=PlanningWindow(start, start + timedelta(weeks=weeks)),
        requirements=tuple(requirements),
        preferences=preferences,
    )


def _plan(resources, allocations, request, config=None):
    window = request.window
    buckets = build_week_buckets(window.start, window.end)
    return build_plan(request, build_snapshots(resources, allocations, buckets), buckets, config)


def test_free_resource_gets_flat_weekly_split(window_start) -> None:
    request = _request(window_start, 4, [SkillRequirement("python", 5, 80)])

    plan = _plan([make_resource("r1", {"python": 7})], [], request)

    assert [entry.allocated_hours for entry in plan.entries] == [20, 20, 20, 20]
    assert [entry.week_start for entry in plan.entries] == [window_start + timedelta(weeks=i) for i in range(4)]
    assert all(entry.utilization_after_allocation == pytest.approx(50) for entry in plan.entries)
    assert plan.fulfillment_percentage == pytest.approx(100)
    assert plan.can_fully_fulfill
    assert plan.warnings == []
    assert plan.unfulfilled == []


def test_existing_load_caps_weekly_hours(window_start) -> None:
    request = _request(window_start, 4, [SkillRequirement("python", 5, 80)])

    plan = _plan([make_resource("r1", {"python": 7})], weekly_allocations("r1", 30, 4), request)

    assert [entry.allocated_hours for entry in plan.entries] == [10, 10, 10, 10]
    assert not any(entry.is_overallocation for entry in plan.entries)
    assert plan.fulfillment_percentage == pytest.approx(50)
    assert not plan.can_fully_fulfill
    assert "Only 50.0% of required hours can be allocated" in plan.warnings
    assert "Some skill requirements cannot be fulfilled with available resources" in plan.warnings


def test_overallocation_buffer_allows_twenty_percent_and_flags(window_start) -> None:
    preferences = AllocationPreferences(allow_overallocation=True)
    request = _request(window_start, 4, [SkillRequirement("python", 5, 80)], preferences)

    plan = _plan([make_resource("r1", {"python": 7})], weekly_allocations("r1", 35, 4), request)

    assert [entry.allocated_hours for entry in plan.entries] == [13, 13, 13, 13]
    assert all(entry.is_overallocation for entry in plan.entries)
    assert all(entry.utilization_after_allocation == pytest.approx(120) for entry in plan.entries)
    assert plan.summary()["over_allocation_count"] == 4
    assert "4 allocations would result in over-utilization" in plan.warnings


def test_weekly_hours_round_up(window_start) -> None:
    request = _request(window_start, 3, [SkillRequirement("python", 5, 10)])

    plan = _plan([make_resource("r1", {"python": 7})], [], request)

    assert [entry.allocated_hours for entry in plan.entries] == [4, 4, 4]
    assert plan.total_allocated_hours == 12


def test_committed_hours_shared_across_requirements(window_start) -> None:
    resource = make_resource("r1", {"python": 7, "sql": 6})
    request = _request(
        window_start,
        4,
        [SkillRequirement("python", 5, 100), SkillRequirement("sql", 5, 80)],
    )

    plan = _plan([resource], [], request)

    python_hours = [e.allocated_hours for e in plan.entries if e.skill_id == "python"]
    sql_hours = [e.allocated_hours for e in plan.entries if e.skill_id == "sql"]
    assert python_hours == [25, 25, 25, 25]
    assert sql_hours == [15, 15, 15, 15]
    for week in range(4):
        week_start = window_start + timedelta(weeks=week)
        assert sum(e.allocated_hours for e in plan.entries if e.week_start == week_start) <= 40
    assert plan.resource_ids == ["r1"]


def test_priority_ordering_is_opt_in(window_start) -> None:
    resource = make_resource("r1", {"python": 7, "sql": 6})
    requirements = [
        SkillRequirement("python", 5, 100, priority="low"),
        SkillRequirement("sql", 5, 80, priority="critical"),
    ]
    request = _request(window_start, 4, requirements)

    input_order = _plan([resource], [], request)
    by_priority = _plan([resource], [], request, EngineConfig(order_by_priority=True))

    assert input_order.entries[0].skill_id == "python"
    assert by_priority.entries[0].skill_id == "sql"
    assert [e.allocated_hours for e in by_priority.entries if e.skill_id == "sql"] == [20, 20, 20, 20]
    assert [e.allocated_hours for e in by_priority.entries if e.skill_id == "python"] == [20, 20, 20, 20]


def test_unmatched_requirement_reported_and_logged(window_start, caplog) -> None:
    request = _request(window_start, 2, [SkillRequirement("rust", 3, 20)])

    with caplog.at_level(logging.WARNING, logger="capacity_engine.planner"):
        plan = _plan([make_resource("r1", {"python": 7})], [], request)

    assert plan.entries == []
    assert plan.fulfillment_percentage == 0
    assert len(plan.unfulfilled) == 1
    assert plan.unfulfilled[0].best_resource_id is None
    assert "rust" in caplog.text
    payload = plan.to_dict()
    assert payload["unfulfilled_requirements"][0]["skill_id"] == "rust"
    assert payload["analysis"]["unique_resources_needed"] == 0


def test_plan_is_deterministic(window_start) -> None:
    resources = [make_resource(rid, {"python": 6, "sql": 8}) for rid in ("a", "b", "c")]
    allocations = weekly_allocations("a", 10, 4) + weekly_allocations("c", 25, 2)
    request = _request(
        window_start,
        4,
        [SkillRequirement("python", 5, 60), SkillRequirement("sql", 7, 90, priority="high")],
    )

    first = _plan(resources, allocations, request).to_dict()
    second = _plan(resources, allocations, request).to_dict()

    assert first == second


@pytest.mark.parametrize("existing", [0, 10, 25, 39])
def test_more_existing_load_never_increases_allocation(window_start, existing: int) -> None:
    request = _request(window_start, 4, [SkillRequirement("python", 5, 120)])
    resource = make_resource("r1", {"python": 7})

    baseline = _plan([resource], weekly_allocations("r1", existing, 4), request).total_allocated_hours
    heavier = _plan([resource], weekly_allocations("r1", existing + 1, 4), request).total_allocated_hours

    assert heavier <= baseline


def test_plan_allocation_respects_team_and_exclusions(window_start, store_factory) -> None:
    store = store_factory(
        [
            make_resource("r1", {"python": 9}, team="Platform"),
            make_resource("r2", {"python": 8}, team="Data"),
            make_resource("r3", {"python": 7}, team="Data"),
            make_resource("r4", {"python": 10}, team="Data", active=False),
        ]
    )
    preferences = AllocationPreferences(preferred_teams=("Data",), exclude_resources=("r2",))
    request = _request(window_start, 2, [SkillRequirement("python", 5, 40)], preferences)

    plan = plan_allocation(store, request)

    assert [item.resource_id for item in plan.skill_matches[0].matches] == ["r3"]
    assert plan.resource_ids == ["r3"]


def test_plan_allocation_reads_existing_rows_in_window(window_start, store_factory) -> None:
    allocations = weekly_allocations("r1", 30, 6, start=window_start - timedelta(weeks=2))
    store = store_factory([make_resource("r1", {"python": 7})], allocations)
    request = _request(window_start, 4, [SkillRequirement("python", 5, 40)])

    plan = plan_allocation(store, request)

    assert [entry.allocated_hours for entry in plan.entries] == [10, 10, 10, 10]
    assert plan.entries[0].skill_name == "python"


def test_more_required_hours_never_reduces_entries(window_start) -> None:
    resource = make_resource("r1", {"python": 7})
    # First week is already full, so at most three weeks can take hours.
    existing = weekly_allocations("r1", 40, 1)
    counts = []
    for hours in (4, 40, 80, 200):
        request = _request(window_start, 4, [SkillRequirement("python", 5, hours)])
        plan = _plan([resource], existing, request)
        assert all(entry.resource_id == "r1" for entry in plan.entries)
        counts.append(len(plan.entries))

    assert counts == sorted(counts)
    assert counts[-1] == 3
