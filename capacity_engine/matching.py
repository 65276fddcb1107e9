from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from .availability import AvailabilitySnapshot
from .models import MAX_SKILL_LEVEL, AllocationPreferences, SkillRequirement

OVERUTILIZATION_PENALTY = -20.0
NEUTRAL_SKILL_SCORE = 50.0
PRIMARY_WEIGHT = 0.7
SECONDARY_WEIGHT = 0.3


@dataclass(frozen=True)
class ScoredMatch:
    snapshot: AvailabilitySnapshot
    skill_level: int
    skill_score: float
    availability_score: float
    composite_score: float

    @property
    def resource_id(self) -> str:
        return self.snapshot.resource.id

    @property
    def total_available_hours(self) -> float:
        return self.snapshot.total_available_hours

    def to_dict(self) -> Dict[str, object]:
        resource = self.snapshot.resource
        return {
            "resource_id": resource.id,
            "resource_name": resource.name,
            "employee_code": resource.employee_code,
            "home_team": resource.home_team,
            "capacity_hours_per_week": resource.capacity_hours_per_week,
            "skill_level": self.skill_level,
            "total_available_hours": self.total_available_hours,
            "skill_score": round(self.skill_score, 2),
            "average_availability_score": round(self.availability_score, 2),
            "composite_score": round(self.composite_score, 2),
            "weekly_availability": [
                {
                    "week_start": week.bucket.key,
                    "allocated_hours": week.allocated_hours,
                    "available_hours": week.available_hours,
                    "utilization": round(week.utilization_pct, 2),
                }
                for week in self.snapshot.weeks
            ],
        }


@dataclass(frozen=True)
class SkillMatch:
    requirement: SkillRequirement
    matches: Tuple[ScoredMatch, ...]

    @property
    def best_match(self) -> Optional[ScoredMatch]:
        return self.matches[0] if self.matches else None

    @property
    def can_be_fulfilled(self) -> bool:
        # Single-assignee: only the top-ranked resource is considered.
        best = self.best_match
        return best is not None and best.total_available_hours >= self.requirement.required_hours

    def to_dict(self) -> Dict[str, object]:
        best = self.best_match
        return {
            "requirement": {
                "skill_id": self.requirement.skill_id,
                "required_level": self.requirement.required_level,
                "required_hours": self.requirement.required_hours,
                "priority": self.requirement.priority,
            },
            "matching_resources": [match.to_dict() for match in self.matches],
            "can_be_fulfilled": self.can_be_fulfilled,
            "best_match": best.to_dict() if best else None,
        }


def skill_score(level: int, preferences: AllocationPreferences) -> float:
    if preferences.prioritize_skill_level:
        return level / MAX_SKILL_LEVEL * 100
    return NEUTRAL_SKILL_SCORE


def availability_score(snapshot: AvailabilitySnapshot, preferences: AllocationPreferences) -> float:
    """Average per-week score; negative when every week is penalised."""
    if not snapshot.weeks:
        return 0.0
    total = 0.0
    capacity = snapshot.resource.capacity_hours_per_week
    for week in snapshot.weeks:
        if week.utilization_pct > preferences.max_utilization_percentage and not preferences.allow_overallocation:
            total += OVERUTILIZATION_PENALTY
        else:
            total += min(week.available_hours / capacity * 100, 100.0)
    return total / len(snapshot.weeks)


def composite_score(skill: float, availability: float, preferences: AllocationPreferences) -> float:
    if preferences.prioritize_availability:
        return SECONDARY_WEIGHT * skill + PRIMARY_WEIGHT * availability
    return PRIMARY_WEIGHT * skill + SECONDARY_WEIGHT * availability


def score_candidate(
    snapshot: AvailabilitySnapshot,
    requirement: SkillRequirement,
    preferences: AllocationPreferences,
) -> Optional[ScoredMatch]:
    level = snapshot.resource.skill_level(requirement.skill_id)
    if level is None or level < requirement.required_level:
        return None
    s_score = skill_score(level, preferences)
    a_score = availability_score(snapshot, preferences)
    return ScoredMatch(
        snapshot=snapshot,
        skill_level=level,
        skill_score=s_score,
        availability_score=a_score,
        composite_score=composite_score(s_score, a_score, preferences),
    )


def match_requirement(
    requirement: SkillRequirement,
    snapshots: Mapping[str, AvailabilitySnapshot],
    preferences: AllocationPreferences,
) -> SkillMatch:
    scored: List[ScoredMatch] = []
    for snapshot in snapshots.values():
        match = score_candidate(snapshot, requirement, preferences)
        if match is not None:
            scored.append(match)
    # sorted() is stable, so equal scores keep discovery order.
    scored = sorted(scored, key=lambda item: item.composite_score, reverse=True)
    return SkillMatch(requirement=requirement, matches=tuple(scored))
