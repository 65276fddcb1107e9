from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import make_resource, weekly_allocations

from capacity_engine.models import CapacityBasis, PlanningWindow
from capacity_engine.validator import check_capacity, proposed_resource_ids, validate_capacity


def _window(start, weeks=1) -> PlanningWindow:
    return PlanningWindow(start, start + timedelta(weeks=weeks))


@pytest.mark.parametrize(
    ("hours", "severity", "utilization"),
    [(45, "medium", 112.5), (48, "medium", 120.0), (49, "high", 122.5)],
)
def test_overallocation_severity(window_start, store_factory, hours, severity, utilization) -> None:
    store = store_factory([make_resource("r1")])

    result = validate_capacity(store, {"block-1": {"r1": hours}}, _window(window_start))

    assert not result.is_valid
    capacity = result.resource_capacities[0]
    assert capacity.utilization_percentage == pytest.approx(utilization)
    assert [(c.type, c.severity) for c in capacity.conflicts] == [("overallocation", severity)]
    assert result.errors == [f"Person r1 is overallocated by {hours - 40} hours"]
    assert capacity.recommendations[0] == f"Reduce allocation by {hours - 40} hours or extend timeline"


def test_high_utilization_is_a_warning(window_start, store_factory) -> None:
    store = store_factory([make_resource("r1")])

    result = validate_capacity(store, {"block-1": {"r1": 37}}, _window(window_start))

    assert result.is_valid
    assert result.errors == []
    assert result.warnings == ["Person r1 has high utilization (92%)"]
    conflict = result.resource_capacities[0].conflicts[0]
    assert (conflict.type, conflict.severity) == ("high_utilization", "low")
    assert "Project is near capacity limits. Consider extending timeline or adding resources." in result.suggestions


def test_existing_allocations_count_towards_total(window_start, store_factory) -> None:
    existing = weekly_allocations("r1", 30, 2)
    store = store_factory([make_resource("r1")], existing)

    result = validate_capacity(store, {"block-1": {"r1": 60}}, _window(window_start, weeks=2), project_id="proj-1")

    capacity = result.resource_capacities[0]
    assert capacity.existing_hours == 60
    assert capacity.total_capacity == 80
    assert capacity.available_hours == 20
    assert capacity.utilization_percentage == pytest.approx(150)
    assert not result.is_valid


def test_single_other_project_overlap_is_medium_without_warning(window_start, store_factory) -> None:
    store = store_factory([make_resource("r1")], weekly_allocations("r1", 5, 1))

    result = validate_capacity(store, {"block-1": {"r1": 10}}, _window(window_start), project_id="proj-1")

    overlap = [c for c in result.resource_capacities[0].conflicts if c.type == "project_overlap"]
    assert len(overlap) == 1
    assert overlap[0].severity == "medium"
    assert "Data Migration" in overlap[0].description
    assert result.warnings == []


def test_many_concurrent_projects_warn(window_start, store_factory) -> None:
    existing = []
    for idx in range(3):
        existing += weekly_allocations("r1", 3, 1, project_id=f"p{idx}", block_id=f"b{idx}")
    # Rows on the validated project do not count as overlap.
    existing += weekly_allocations("r1", 3, 1, project_id="proj-1", block_id="block-0")
    store = store_factory([make_resource("r1")], existing)

    result = validate_capacity(store, {"block-1": {"r1": 10}}, _window(window_start), project_id="proj-1")

    overlap = [c for c in result.resource_capacities[0].conflicts if c.type == "project_overlap"]
    assert overlap[0].severity == "high"
    assert overlap[0].description.startswith("Concurrent assignments to 3 other project(s)")
    assert result.warnings == ["Person r1 is assigned to 3 concurrent projects"]
    assert "Consider reducing concurrent project assignments for better focus" in result.resource_capacities[0].recommendations


def test_underutilized_resource_gets_recommendation(window_start, store_factory) -> None:
    store = store_factory([make_resource("r1")])

    result = validate_capacity(store, {"block-1": {"r1": 10}}, _window(window_start))

    assert result.resource_capacities[0].recommendations == [
        "Person r1 is underutilized (25%) - consider increasing allocation"
    ]
    assert result.overall_utilization == pytest.approx(25)
    assert result.suggestions == [
        "Project is under-utilizing team capacity. Consider adding more features or reducing team size.",
        "Resource allocation looks optimal for the project timeline.",
    ]


def test_missing_resource_is_an_error(window_start, store_factory) -> None:
    store = store_factory([make_resource("r1"), make_resource("r2", active=False)])

    result = validate_capacity(
        store,
        {"block-1": {"r1": 20, "ghost": 20}, "block-2": {"r2": 5}},
        _window(window_start),
    )

    assert not result.is_valid
    assert result.errors == ["Resource ghost not found or inactive", "Resource r2 not found or inactive"]
    assert [item.resource_id for item in result.resource_capacities] == ["r1"]
    assert result.overall_utilization == pytest.approx(45 / 120 * 100)


def test_hours_are_summed_across_blocks(window_start) -> None:
    resources = {"r1": make_resource("r1")}

    result = check_capacity({"b1": {"r1": 20}, "b2": {"r1": 25}}, _window(window_start), resources, [])

    assert result.resource_capacities[0].proposed_hours == 45
    assert not result.is_valid


def test_resource_capacity_basis_uses_personal_capacity(window_start) -> None:
    resources = {"r1": make_resource("r1", capacity=30)}
    proposed = {"b1": {"r1": 33}}

    standard = check_capacity(proposed, _window(window_start), resources, [])
    personal = check_capacity(proposed, _window(window_start), resources, [], capacity_basis=CapacityBasis.RESOURCE)

    assert standard.is_valid
    assert standard.resource_capacities[0].total_capacity == 40
    assert not personal.is_valid
    assert personal.resource_capacities[0].total_capacity == 30
    assert personal.overall_utilization == pytest.approx(110)


def test_existing_rows_outside_window_are_ignored(window_start) -> None:
    resources = {"r1": make_resource("r1")}
    existing = weekly_allocations("r1", 40, 1, start=window_start + timedelta(weeks=1))

    result = check_capacity({"b1": {"r1": 20}}, _window(window_start), resources, existing)

    assert result.resource_capacities[0].existing_hours == 0
    assert result.resource_capacities[0].conflicts == []


def test_empty_proposal_is_valid(window_start) -> None:
    result = check_capacity({"b1": {"r1": 0}}, _window(window_start), {}, [])

    assert result.is_valid
    assert result.resource_capacities == []
    assert result.overall_utilization == 0
    assert proposed_resource_ids({"b1": {"r1": 0, "r2": 3}, "b2": {"r2": 1, "r3": 2}}) == ["r2", "r3"]


def test_result_serialises_rounded(window_start) -> None:
    resources = {"r1": make_resource("r1", capacity=30)}

    payload = check_capacity(
        {"b1": {"r1": 10}}, _window(window_start, weeks=3), resources, [], capacity_basis=CapacityBasis.RESOURCE
    ).to_dict()

    assert payload["overall_utilization"] == 11.11
    assert payload["resource_capacities"][0]["utilization_percentage"] == 11.11
