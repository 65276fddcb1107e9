from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Literal, Optional, Tuple

from .errors import InvalidRangeError

Priority = Literal["critical", "high", "medium", "low"]

PRIORITY_ORDER: Dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}
MIN_SKILL_LEVEL = 1
MAX_SKILL_LEVEL = 10
WEEK_DAYS = 7
STANDARD_WEEKLY_HOURS = 40.0
OVERALLOCATION_BUFFER_PCT = 0.20


class CapacityBasis(str, Enum):
    """What "full capacity" means to the capacity validator."""

    STANDARD = "standard"
    RESOURCE = "resource"


@dataclass(frozen=True)
class Skill:
    id: str
    code: str
    name: str = ""
    category: str = ""


@dataclass(frozen=True)
class Resource:
    """Staff member with a constant weekly capacity and skill proficiencies."""

    id: str
    name: str
    home_team: str
    capacity_hours_per_week: float
    employee_code: str = ""
    employment_category: str = ""
    active: bool = True
    skill_levels: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.capacity_hours_per_week <= 0:
            raise ValueError(f"capacity_hours_per_week must be positive for resource {self.id}")
        for skill_id, level in self.skill_levels.items():
            if not MIN_SKILL_LEVEL <= level <= MAX_SKILL_LEVEL:
                raise ValueError(f"skill level for {skill_id} on resource {self.id} must be in [1, 10]")

    def skill_level(self, skill_id: str) -> Optional[int]:
        return self.skill_levels.get(skill_id)


@dataclass(frozen=True)
class SkillRequirement:
    skill_id: str
    required_level: int
    required_hours: float
    priority: Priority = "medium"

    def __post_init__(self) -> None:
        if not MIN_SKILL_LEVEL <= self.required_level <= MAX_SKILL_LEVEL:
            raise ValueError("required_level must be in [1, 10]")
        if self.required_hours <= 0:
            raise ValueError("required_hours must be positive")
        if self.priority not in PRIORITY_ORDER:
            raise ValueError(f"unsupported priority '{self.priority}'")

    @property
    def priority_rank(self) -> int:
        return PRIORITY_ORDER[self.priority]


@dataclass(frozen=True)
class Allocation:
    """Persisted allocation row; unique on (project_block_id, resource_id, week_start)."""

    id: str
    project_id: str
    project_block_id: str
    resource_id: str
    week_start: date
    allocated_hours: float

    @property
    def key(self) -> Tuple[str, str, date]:
        return (self.project_block_id, self.resource_id, self.week_start)


@dataclass(frozen=True)
class PlanningWindow:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidRangeError(self.start, self.end)

    @property
    def duration_weeks(self) -> int:
        return math.ceil((self.end - self.start).days / WEEK_DAYS)

    def contains(self, value: date) -> bool:
        return self.start <= value < self.end


@dataclass(frozen=True)
class AllocationPreferences:
    preferred_teams: Tuple[str, ...] = ()
    exclude_resources: Tuple[str, ...] = ()
    max_utilization_percentage: float = 80.0
    allow_overallocation: bool = False
    prioritize_skill_level: bool = True
    prioritize_availability: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.max_utilization_percentage <= 100:
            raise ValueError("max_utilization_percentage must be in [0, 100]")


@dataclass(frozen=True)
class AllocationRequest:
    project_id: str
    project_block_id: str
    window: PlanningWindow
    requirements: Tuple[SkillRequirement, ...]
    preferences: AllocationPreferences = field(default_factory=AllocationPreferences)


@dataclass(frozen=True)
class EngineConfig:
    logging_level: str = "INFO"
    overallocation_buffer_pct: float = OVERALLOCATION_BUFFER_PCT
    standard_weekly_hours: float = STANDARD_WEEKLY_HOURS
    capacity_basis: CapacityBasis = CapacityBasis.STANDARD
    # Input order is the reference behaviour; sorting by priority is opt-in.
    order_by_priority: bool = False
    preferences: AllocationPreferences = field(default_factory=AllocationPreferences)
