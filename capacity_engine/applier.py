from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Sequence, Tuple

from .errors import ResourceNotFoundError
from .store import AllocationStore

logger = logging.getLogger(__name__)

PlanTuple = Tuple[str, date, float]


@dataclass(frozen=True)
class AppliedAllocation:
    id: str
    resource_id: str
    resource_name: str
    project_id: str
    project_name: str
    project_block_id: str
    block_name: str
    week_start: date
    allocated_hours: float
    created: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "project_block_id": self.project_block_id,
            "block_name": self.block_name,
            "week_start": self.week_start.isoformat(),
            "allocated_hours": self.allocated_hours,
            "created": self.created,
        }


def _validate_entries(entries: Sequence[PlanTuple]) -> None:
    for resource_id, _, hours in entries:
        if hours < 0:
            raise ValueError(f"allocated hours for resource {resource_id} must not be negative")


def apply_plan(
    store: AllocationStore,
    project_id: str,
    block_id: str,
    entries: Iterable[PlanTuple],
) -> List[AppliedAllocation]:
    """Upsert approved (resource, week, hours) tuples in one transaction.

    Existing rows for the same (block, resource, week) have their hours
    replaced. Any missing or inactive resource aborts the whole batch with
    ResourceNotFoundError; nothing is written in that case.
    """
    batch = list(entries)
    _validate_entries(batch)
    applied: List[AppliedAllocation] = []
    with store.transaction() as txn:
        missing: List[str] = []
        for resource_id, _, _ in batch:
            resource = txn.get_resource(resource_id)
            if (resource is None or not resource.active) and resource_id not in missing:
                missing.append(resource_id)
        if missing:
            raise ResourceNotFoundError(missing)
        for resource_id, week_start, hours in batch:
            created = txn.find(block_id, resource_id, week_start) is None
            row = txn.upsert(project_id, block_id, resource_id, week_start, hours)
            resource = txn.get_resource(resource_id)
            applied.append(
                AppliedAllocation(
                    id=row.id,
                    resource_id=row.resource_id,
                    resource_name=resource.name if resource else resource_id,
                    project_id=row.project_id,
                    project_name=store.project_name(row.project_id),
                    project_block_id=row.project_block_id,
                    block_name=store.block_name(row.project_block_id),
                    week_start=row.week_start,
                    allocated_hours=row.allocated_hours,
                    created=created,
                )
            )
    created_count = sum(1 for item in applied if item.created)
    logger.info(
        "Applied %d allocations to block %s (%d created, %d updated)",
        len(applied),
        block_id,
        created_count,
        len(applied) - created_count,
    )
    return applied
