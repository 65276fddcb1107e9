from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .models import SkillRequirement


class InvalidRangeError(ValueError):
    def __init__(self, start: date, end: date) -> None:
        super().__init__(f"end date {end.isoformat()} must be after start date {start.isoformat()}")
        self.start = start
        self.end = end


class ResourceNotFoundError(LookupError):
    """Raised when an apply references resources that are missing or inactive."""

    def __init__(self, resource_ids: Sequence[str]) -> None:
        ids = ", ".join(resource_ids)
        super().__init__(f"resources not found or inactive: {ids}")
        self.resource_ids = tuple(resource_ids)


class AllocationStoreError(RuntimeError):
    pass


class UnfulfillableRequirementWarning(UserWarning):
    def __init__(self, requirement: "SkillRequirement", reason: str, best_resource_id: Optional[str] = None) -> None:
        super().__init__(f"Requirement for skill {requirement.skill_id} unfulfillable: {reason}")
        self.requirement = requirement
        self.reason = reason
        self.best_resource_id = best_resource_id
