from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .availability import AvailabilitySnapshot, build_snapshots
from .errors import UnfulfillableRequirementWarning
from .matching import ScoredMatch, SkillMatch, match_requirement
from .models import (
    OVERALLOCATION_BUFFER_PCT,
    AllocationPreferences,
    AllocationRequest,
    EngineConfig,
    SkillRequirement,
)
from .store import AllocationStore
from .weeks import WeekBucket, build_week_buckets

logger = logging.getLogger(__name__)

FULL_FULFILLMENT_THRESHOLD_PCT = 95.0


class CommittedHours:
    """Hours handed out so far in one planning pass, per resource and week.

    Shared by every requirement of the pass, which is what makes processing
    order significant. Never share an instance between concurrent passes.
    """

    def __init__(self) -> None:
        self._hours: Dict[str, Dict[int, float]] = defaultdict(dict)

    def get(self, resource_id: str, bucket_index: int) -> float:
        return self._hours.get(resource_id, {}).get(bucket_index, 0.0)

    def add(self, resource_id: str, bucket_index: int, hours: float) -> None:
        per_week = self._hours[resource_id]
        per_week[bucket_index] = per_week.get(bucket_index, 0.0) + hours


@dataclass(frozen=True)
class AllocationPlanEntry:
    resource_id: str
    resource_name: str
    employee_code: str
    home_team: str
    skill_id: str
    skill_name: str
    required_level: int
    resource_skill_level: int
    priority: str
    week_start: date
    allocated_hours: float
    utilization_after_allocation: float
    is_overallocation: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "employee_code": self.employee_code,
            "home_team": self.home_team,
            "skill_id": self.skill_id,
            "skill_name": self.skill_name,
            "required_level": self.required_level,
            "resource_skill_level": self.resource_skill_level,
            "priority": self.priority,
            "week_start": self.week_start.isoformat(),
            "allocated_hours": self.allocated_hours,
            "utilization_after_allocation": round(self.utilization_after_allocation, 2),
            "is_overallocation": self.is_overallocation,
        }


@dataclass
class AllocationPlan:
    request: AllocationRequest
    buckets: List[WeekBucket]
    skill_matches: List[SkillMatch]
    entries: List[AllocationPlanEntry] = field(default_factory=list)
    unfulfilled: List[UnfulfillableRequirementWarning] = field(default_factory=list)

    @property
    def weeks_duration(self) -> int:
        return len(self.buckets)

    @property
    def total_required_hours(self) -> float:
        return sum(req.required_hours for req in self.request.requirements)

    @property
    def total_allocated_hours(self) -> float:
        return sum(entry.allocated_hours for entry in self.entries)

    @property
    def fulfillment_percentage(self) -> float:
        required = self.total_required_hours
        if required <= 0:
            return 0.0
        return self.total_allocated_hours / required * 100

    @property
    def resource_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for entry in self.entries:
            seen.setdefault(entry.resource_id, None)
        return list(seen)

    @property
    def overallocations(self) -> List[AllocationPlanEntry]:
        return [entry for entry in self.entries if entry.is_overallocation]

    @property
    def can_fully_fulfill(self) -> bool:
        return self.fulfillment_percentage >= FULL_FULFILLMENT_THRESHOLD_PCT

    @property
    def warnings(self) -> List[str]:
        messages: List[str] = []
        over = self.overallocations
        if over:
            messages.append(f"{len(over)} allocations would result in over-utilization")
        fulfillment = self.fulfillment_percentage
        if fulfillment < 100:
            messages.append(f"Only {round(fulfillment, 2)}% of required hours can be allocated")
        if any(not match.can_be_fulfilled for match in self.skill_matches):
            messages.append("Some skill requirements cannot be fulfilled with available resources")
        return messages

    def approved_entries(self) -> List[Tuple[str, date, float]]:
        """One (resource, week, hours) tuple per cell, summed across requirements."""
        totals: Dict[Tuple[str, date], float] = {}
        for entry in self.entries:
            key = (entry.resource_id, entry.week_start)
            totals[key] = totals.get(key, 0.0) + entry.allocated_hours
        return [(resource_id, week_start, hours) for (resource_id, week_start), hours in totals.items()]

    def summary(self) -> Dict[str, object]:
        return {
            "total_required_hours": self.total_required_hours,
            "total_allocated_hours": self.total_allocated_hours,
            "fulfillment_percentage": round(self.fulfillment_percentage, 2),
            "unique_resources_needed": len(self.resource_ids),
            "has_over_allocations": bool(self.overallocations),
            "over_allocation_count": len(self.overallocations),
            "can_fully_fulfill": self.can_fully_fulfill,
        }

    def to_dict(self) -> Dict[str, object]:
        request = self.request
        prefs = request.preferences
        return {
            "request": {
                "project_id": request.project_id,
                "project_block_id": request.project_block_id,
                "start_date": request.window.start.isoformat(),
                "end_date": request.window.end.isoformat(),
                "weeks_duration": self.weeks_duration,
                "preferences": {
                    "preferred_teams": list(prefs.preferred_teams),
                    "exclude_resources": list(prefs.exclude_resources),
                    "max_utilization_percentage": prefs.max_utilization_percentage,
                    "allow_overallocation": prefs.allow_overallocation,
                    "prioritize_skill_level": prefs.prioritize_skill_level,
                    "prioritize_availability": prefs.prioritize_availability,
                },
            },
            "analysis": self.summary(),
            "skill_matches": [match.to_dict() for match in self.skill_matches],
            "allocation_plan": [entry.to_dict() for entry in self.entries],
            "overallocated_entries": [entry.to_dict() for entry in self.overallocations],
            "unfulfilled_requirements": [
                {"skill_id": item.requirement.skill_id, "reason": item.reason, "best_resource_id": item.best_resource_id}
                for item in self.unfulfilled
            ],
            "warnings": self.warnings,
        }


def order_requirements(requirements: Sequence[SkillRequirement], by_priority: bool) -> List[SkillRequirement]:
    if not by_priority:
        return list(requirements)
    return sorted(requirements, key=lambda req: req.priority_rank)


def _max_allowable(capacity: float, preferences: AllocationPreferences, buffer_pct: float) -> float:
    if preferences.allow_overallocation:
        return capacity * (1 + buffer_pct)
    return capacity


def _unfulfilled_reason(match: SkillMatch) -> Optional[UnfulfillableRequirementWarning]:
    if match.can_be_fulfilled:
        return None
    best = match.best_match
    requirement = match.requirement
    if best is None:
        reason = f"no active resource has skill {requirement.skill_id} at level {requirement.required_level} or above"
        return UnfulfillableRequirementWarning(requirement, reason)
    reason = (
        f"best match {best.resource_id} has {best.total_available_hours:.1f}h available, "
        f"{requirement.required_hours:.1f}h required"
    )
    return UnfulfillableRequirementWarning(requirement, reason, best.resource_id)


def allocate_requirement(
    match: SkillMatch,
    buckets: Sequence[WeekBucket],
    committed: CommittedHours,
    preferences: AllocationPreferences,
    *,
    buffer_pct: float = OVERALLOCATION_BUFFER_PCT,
    skill_name: str = "",
) -> List[AllocationPlanEntry]:
    """Spread one requirement flat across the window on its best match.

    Mutates ``committed`` with every hour handed out.
    """
    best: Optional[ScoredMatch] = match.best_match
    if best is None or not buckets:
        return []
    requirement = match.requirement
    snapshot: AvailabilitySnapshot = best.snapshot
    resource = snapshot.resource
    capacity = resource.capacity_hours_per_week
    max_allowable = _max_allowable(capacity, preferences, buffer_pct)
    hours_per_week = float(math.ceil(requirement.required_hours / len(buckets)))

    entries: List[AllocationPlanEntry] = []
    for bucket in buckets:
        already = committed.get(resource.id, bucket.index) + snapshot.allocated_in(bucket.index)
        available_this_week = max(0.0, max_allowable - already)
        to_allocate = min(hours_per_week, available_this_week)
        if to_allocate <= 0:
            continue
        resulting = already + to_allocate
        entries.append(
            AllocationPlanEntry(
                resource_id=resource.id,
                resource_name=resource.name,
                employee_code=resource.employee_code,
                home_team=resource.home_team,
                skill_id=requirement.skill_id,
                skill_name=skill_name or requirement.skill_id,
                required_level=requirement.required_level,
                resource_skill_level=best.skill_level,
                priority=requirement.priority,
                week_start=bucket.start,
                allocated_hours=to_allocate,
                utilization_after_allocation=resulting / capacity * 100,
                # Flagged against raw capacity even when the buffer made room.
                is_overallocation=resulting > capacity,
            )
        )
        committed.add(resource.id, bucket.index, to_allocate)
    return entries


def build_plan(
    request: AllocationRequest,
    snapshots: Mapping[str, AvailabilitySnapshot],
    buckets: Sequence[WeekBucket],
    config: Optional[EngineConfig] = None,
    skill_names: Optional[Mapping[str, str]] = None,
) -> AllocationPlan:
    """Pure planning pass over pre-fetched snapshots."""
    cfg = config or EngineConfig()
    names = skill_names or {}
    preferences = request.preferences
    requirements = order_requirements(request.requirements, cfg.order_by_priority)

    skill_matches = [match_requirement(req, snapshots, preferences) for req in requirements]
    plan = AllocationPlan(request=request, buckets=list(buckets), skill_matches=skill_matches)
    committed = CommittedHours()
    for match in skill_matches:
        issue = _unfulfilled_reason(match)
        if issue is not None:
            logger.warning("%s", issue)
            plan.unfulfilled.append(issue)
        if match.best_match is None:
            continue
        plan.entries.extend(
            allocate_requirement(
                match,
                buckets,
                committed,
                preferences,
                buffer_pct=cfg.overallocation_buffer_pct,
                skill_name=names.get(match.requirement.skill_id, ""),
            )
        )
    logger.debug(
        "Planned %d entries across %d resources (%.2f%% fulfilled)",
        len(plan.entries),
        len(plan.resource_ids),
        plan.fulfillment_percentage,
    )
    return plan


def plan_allocation(
    store: AllocationStore,
    request: AllocationRequest,
    config: Optional[EngineConfig] = None,
) -> AllocationPlan:
    """Fetch candidates and existing allocations once, then plan."""
    window = request.window
    buckets = build_week_buckets(window.start, window.end)
    preferences = request.preferences
    resources = store.list_active_resources(
        teams=preferences.preferred_teams or None,
        exclude_ids=preferences.exclude_resources or None,
    )
    existing = store.list_allocations([resource.id for resource in resources], window.start, window.end)
    snapshots = build_snapshots(resources, existing, buckets)
    skill_names = {req.skill_id: store.skill_name(req.skill_id) for req in request.requirements}
    logger.info(
        "Planning %d requirements for block %s over %d weeks with %d candidates",
        len(request.requirements),
        request.project_block_id,
        len(buckets),
        len(resources),
    )
    return build_plan(request, snapshots, buckets, config, skill_names)
