"""
Capacity validation for proposed allocation maps.

Runs independently of the planner, so it can audit hand-edited allocations
before they are committed. Findings are reported as data; the only exception
raised is InvalidRangeError for an empty window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .models import STANDARD_WEEKLY_HOURS, Allocation, CapacityBasis, PlanningWindow, Resource
from .store import AllocationStore

ProposedAllocations = Mapping[str, Mapping[str, float]]

OVERAGE_HIGH_SEVERITY_RATIO = 0.2
HIGH_UTILIZATION_PCT = 90.0
UNDERUTILIZATION_PCT = 60.0
PROJECT_OVERLAP_WARNING_COUNT = 2
PROJECT_UNDERUTILIZED_PCT = 50.0
PROJECT_NEAR_LIMIT_PCT = 90.0


@dataclass(frozen=True)
class CapacityConflict:
    type: str  # "overallocation", "high_utilization", "project_overlap"
    severity: str  # "low", "medium", "high"
    description: str
    period: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "period": self.period,
        }


@dataclass
class ResourceCapacity:
    resource_id: str
    resource_name: str
    proposed_hours: float
    existing_hours: float
    total_capacity: float
    available_hours: float
    utilization_percentage: float
    conflicts: List[CapacityConflict] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "proposed_hours": self.proposed_hours,
            "existing_hours": self.existing_hours,
            "total_capacity": self.total_capacity,
            "available_hours": self.available_hours,
            "utilization_percentage": round(self.utilization_percentage, 2),
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "recommendations": list(self.recommendations),
        }


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    suggestions: List[str]
    resource_capacities: List[ResourceCapacity]
    overall_utilization: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
            "resource_capacities": [item.to_dict() for item in self.resource_capacities],
            "overall_utilization": round(self.overall_utilization, 2),
        }


def proposed_resource_ids(proposed: ProposedAllocations) -> List[str]:
    """Resources with positive proposed hours, in first-seen order."""
    seen: Dict[str, None] = {}
    for block_allocations in proposed.values():
        for resource_id, hours in block_allocations.items():
            if hours > 0:
                seen.setdefault(resource_id, None)
    return list(seen)


def _weekly_basis(resource: Resource, basis: CapacityBasis, standard_weekly_hours: float) -> float:
    if basis is CapacityBasis.RESOURCE:
        return resource.capacity_hours_per_week
    return standard_weekly_hours


def _overallocation_conflict(total: float, max_capacity: float, utilization: float, period: str) -> CapacityConflict:
    overage = total - max_capacity
    # Exactly 20% over is still medium.
    severity = "high" if overage > max_capacity * OVERAGE_HIGH_SEVERITY_RATIO else "medium"
    return CapacityConflict(
        type="overallocation",
        severity=severity,
        description=f"Overallocated by {round(overage)} hours ({round(utilization - 100)}% over capacity)",
        period=period,
    )


def check_capacity(
    proposed: ProposedAllocations,
    window: PlanningWindow,
    resources: Mapping[str, Resource],
    existing: Iterable[Allocation],
    *,
    project_id: Optional[str] = None,
    project_names: Optional[Mapping[str, str]] = None,
    capacity_basis: CapacityBasis = CapacityBasis.STANDARD,
    standard_weekly_hours: float = STANDARD_WEEKLY_HOURS,
) -> ValidationResult:
    """Pure validation over pre-fetched resources and existing allocations.

    ``resources`` should only contain active resources; anything referenced
    by ``proposed`` but absent is reported as an error.
    """
    names = project_names or {}
    duration_weeks = window.duration_weeks
    period = f"{window.start.isoformat()} - {window.end.isoformat()}"
    resource_ids = proposed_resource_ids(proposed)
    if not resource_ids:
        return ValidationResult(
            is_valid=True,
            errors=[],
            warnings=[],
            suggestions=[],
            resource_capacities=[],
            overall_utilization=0.0,
        )

    existing_by_resource: Dict[str, List[Allocation]] = {}
    for allocation in existing:
        if window.contains(allocation.week_start):
            existing_by_resource.setdefault(allocation.resource_id, []).append(allocation)

    errors: List[str] = []
    warnings: List[str] = []
    suggestions: List[str] = []
    capacities: List[ResourceCapacity] = []
    total_capacity_all = 0.0

    for resource_id in resource_ids:
        resource = resources.get(resource_id)
        if resource is None or not resource.active:
            errors.append(f"Resource {resource_id} not found or inactive")
            continue
        max_capacity = duration_weeks * _weekly_basis(resource, capacity_basis, standard_weekly_hours)
        total_capacity_all += max_capacity
        proposed_hours = sum(block.get(resource_id, 0.0) for block in proposed.values())
        own_existing = existing_by_resource.get(resource_id, [])
        existing_hours = sum(allocation.allocated_hours for allocation in own_existing)
        total = proposed_hours + existing_hours
        utilization = total / max_capacity * 100
        entry = ResourceCapacity(
            resource_id=resource_id,
            resource_name=resource.name,
            proposed_hours=proposed_hours,
            existing_hours=existing_hours,
            total_capacity=max_capacity,
            available_hours=max(0.0, max_capacity - existing_hours),
            utilization_percentage=utilization,
        )

        if utilization > 100:
            conflict = _overallocation_conflict(total, max_capacity, utilization, period)
            entry.conflicts.append(conflict)
            overage = round(total - max_capacity)
            errors.append(f"{resource.name} is overallocated by {overage} hours")
            entry.recommendations.append(f"Reduce allocation by {overage} hours or extend timeline")
        elif utilization > HIGH_UTILIZATION_PCT:
            entry.conflicts.append(
                CapacityConflict(
                    type="high_utilization",
                    severity="low",
                    description=f"High utilization ({round(utilization)}%)",
                    period=period,
                )
            )
            warnings.append(f"{resource.name} has high utilization ({round(utilization)}%)")
            entry.recommendations.append("Consider adding buffer time or reducing allocation slightly")

        other_projects: Dict[str, None] = {}
        for allocation in own_existing:
            if allocation.project_id != project_id:
                other_projects.setdefault(allocation.project_id, None)
        if other_projects:
            count = len(other_projects)
            labels = ", ".join(names.get(pid, pid) for pid in other_projects)
            entry.conflicts.append(
                CapacityConflict(
                    type="project_overlap",
                    severity="high" if count > PROJECT_OVERLAP_WARNING_COUNT else "medium",
                    description=f"Concurrent assignments to {count} other project(s): {labels}",
                    period=period,
                )
            )
            if count > PROJECT_OVERLAP_WARNING_COUNT:
                warnings.append(f"{resource.name} is assigned to {count} concurrent projects")
                entry.recommendations.append("Consider reducing concurrent project assignments for better focus")

        if utilization < UNDERUTILIZATION_PCT and proposed_hours > 0:
            entry.recommendations.append(
                f"{resource.name} is underutilized ({round(utilization)}%) - consider increasing allocation"
            )
        capacities.append(entry)

    total_proposed = sum(sum(block.values()) for block in proposed.values())
    overall = _overall_utilization(total_proposed, resource_ids, duration_weeks, standard_weekly_hours, capacity_basis, total_capacity_all)
    if overall < PROJECT_UNDERUTILIZED_PCT:
        suggestions.append(
            "Project is under-utilizing team capacity. Consider adding more features or reducing team size."
        )
    elif overall > PROJECT_NEAR_LIMIT_PCT:
        suggestions.append("Project is near capacity limits. Consider extending timeline or adding resources.")
    if not errors and not warnings:
        suggestions.append("Resource allocation looks optimal for the project timeline.")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        suggestions=suggestions,
        resource_capacities=capacities,
        overall_utilization=overall,
    )


def _overall_utilization(
    total_proposed: float,
    resource_ids: Sequence[str],
    duration_weeks: int,
    standard_weekly_hours: float,
    basis: CapacityBasis,
    resolved_capacity: float,
) -> float:
    if basis is CapacityBasis.STANDARD:
        capacity = len(resource_ids) * duration_weeks * standard_weekly_hours
    else:
        capacity = resolved_capacity
    if capacity <= 0:
        return 0.0
    return total_proposed / capacity * 100


def validate_capacity(
    store: AllocationStore,
    proposed: ProposedAllocations,
    window: PlanningWindow,
    *,
    project_id: Optional[str] = None,
    capacity_basis: CapacityBasis = CapacityBasis.STANDARD,
    standard_weekly_hours: float = STANDARD_WEEKLY_HOURS,
) -> ValidationResult:
    resource_ids = proposed_resource_ids(proposed)
    resources: Dict[str, Resource] = {}
    for resource_id in resource_ids:
        resource = store.get_resource(resource_id)
        if resource is not None and resource.active:
            resources[resource_id] = resource
    existing = store.list_allocations(resource_ids, window.start, window.end) if resource_ids else []
    project_names = {allocation.project_id: store.project_name(allocation.project_id) for allocation in existing}
    return check_capacity(
        proposed,
        window,
        resources,
        existing,
        project_id=project_id,
        project_names=project_names,
        capacity_basis=capacity_basis,
        standard_weekly_hours=standard_weekly_hours,
    )
