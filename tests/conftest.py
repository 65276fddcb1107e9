from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from capacity_engine.models import Allocation, Resource
from capacity_engine.store import InMemoryAllocationStore

WINDOW_START = date(2025, 1, 6)  # Monday


def make_resource(
    resource_id: str,
    skills: Optional[Dict[str, int]] = None,
    *,
    capacity: float = 40.0,
    team: str = "Platform",
    active: bool = True,
) -> Resource:
    return Resource(
        id=resource_id,
        name=f"Person {resource_id}",
        home_team=team,
        capacity_hours_per_week=capacity,
        employee_code=f"E-{resource_id}",
        active=active,
        skill_levels=dict(skills or {}),
    )


def weekly_allocations(
    resource_id: str,
    hours: float,
    weeks: int,
    *,
    start: date = WINDOW_START,
    project_id: str = "other-project",
    block_id: str = "other-block",
) -> List[Allocation]:
    return [
        Allocation(
            id=f"{resource_id}-{block_id}-{week}",
            project_id=project_id,
            project_block_id=block_id,
            resource_id=resource_id,
            week_start=start + timedelta(weeks=week),
            allocated_hours=hours,
        )
        for week in range(weeks)
    ]


@pytest.fixture
def window_start() -> date:
    return WINDOW_START


@pytest.fixture
def store_factory() -> Callable[..., InMemoryAllocationStore]:
    def _build(
        resources: Iterable[Resource],
        allocations: Iterable[Allocation] = (),
        allocations_path: Optional[Path] = None,
    ) -> InMemoryAllocationStore:
        return InMemoryAllocationStore(
            resources,
            allocations,
            project_names={"proj-1": "Website Relaunch", "other-project": "Data Migration"},
            block_names={"block-1": "Build", "other-block": "Discovery"},
            allocations_path=allocations_path,
        )

    return _build
