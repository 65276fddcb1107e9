from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import ContextManager, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import AllocationStoreError
from .io_utils import allocations_to_frame, load_allocations, load_catalog
from .models import Allocation, Resource, Skill

logger = logging.getLogger(__name__)

AllocationKey = Tuple[str, str, date]


class StoreTransaction(Protocol):
    def get_resource(self, resource_id: str) -> Optional[Resource]: ...

    def find(self, block_id: str, resource_id: str, week_start: date) -> Optional[Allocation]: ...

    def upsert(
        self,
        project_id: str,
        block_id: str,
        resource_id: str,
        week_start: date,
        hours: float,
    ) -> Allocation: ...


class AllocationStore(Protocol):
    """Collaborator that owns resources, skills and allocation rows."""

    def list_active_resources(
        self,
        teams: Optional[Sequence[str]] = None,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> List[Resource]: ...

    def get_resource(self, resource_id: str) -> Optional[Resource]: ...

    def list_allocations(self, resource_ids: Iterable[str], start: date, end: date) -> List[Allocation]: ...

    def skill_name(self, skill_id: str) -> str: ...

    def project_name(self, project_id: str) -> str: ...

    def block_name(self, block_id: str) -> str: ...

    def transaction(self) -> ContextManager[StoreTransaction]: ...


class _Transaction:
    def __init__(self, store: "InMemoryAllocationStore") -> None:
        self._store = store

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        return self._store.get_resource(resource_id)

    def find(self, block_id: str, resource_id: str, week_start: date) -> Optional[Allocation]:
        return self._store._allocations.get((block_id, resource_id, week_start))

    def upsert(
        self,
        project_id: str,
        block_id: str,
        resource_id: str,
        week_start: date,
        hours: float,
    ) -> Allocation:
        key = (block_id, resource_id, week_start)
        existing = self._store._allocations.get(key)
        if existing is not None:
            # Last write wins; hours are replaced, never added.
            allocation = Allocation(
                id=existing.id,
                project_id=existing.project_id,
                project_block_id=block_id,
                resource_id=resource_id,
                week_start=week_start,
                allocated_hours=hours,
            )
        else:
            allocation = Allocation(
                id=self._store._new_id(),
                project_id=project_id,
                project_block_id=block_id,
                resource_id=resource_id,
                week_start=week_start,
                allocated_hours=hours,
            )
        self._store._allocations[key] = allocation
        return allocation


class InMemoryAllocationStore:
    """Thread-safe allocation store, optionally mirrored to a CSV file.

    Transactions hold the store lock for their whole duration, so readers never
    observe a partially applied batch. When bound to ``allocations_path`` the
    file is rewritten on every commit; a failed write rolls the batch back.
    """

    def __init__(
        self,
        resources: Iterable[Resource],
        allocations: Iterable[Allocation] = (),
        *,
        skills: Iterable[Skill] = (),
        project_names: Optional[Mapping[str, str]] = None,
        block_names: Optional[Mapping[str, str]] = None,
        allocations_path: Optional[Path] = None,
    ) -> None:
        self._resources: Dict[str, Resource] = {resource.id: resource for resource in resources}
        self._skills: Dict[str, Skill] = {skill.id: skill for skill in skills}
        self._project_names = dict(project_names or {})
        self._block_names = dict(block_names or {})
        self._allocations: Dict[AllocationKey, Allocation] = {}
        for allocation in allocations:
            if allocation.key in self._allocations:
                raise ValueError(f"duplicate allocation key {allocation.key}")
            self._allocations[allocation.key] = allocation
        self._next_id = len(self._allocations) + 1
        self._allocations_path = Path(allocations_path) if allocations_path else None
        self._lock = threading.RLock()

    @classmethod
    def from_files(cls, catalog_path: str | Path, allocations_path: Optional[str | Path] = None) -> "InMemoryAllocationStore":
        catalog = load_catalog(catalog_path)
        allocations: List[Allocation] = []
        path = Path(allocations_path) if allocations_path else None
        if path is not None and path.exists():
            allocations = load_allocations(path)
        return cls(
            catalog.resources,
            allocations,
            skills=catalog.skills,
            project_names=catalog.project_names,
            block_names=catalog.block_names,
            allocations_path=path,
        )

    def _new_id(self) -> str:
        while True:
            candidate = f"alloc-{self._next_id}"
            self._next_id += 1
            if all(existing.id != candidate for existing in self._allocations.values()):
                return candidate

    def list_active_resources(
        self,
        teams: Optional[Sequence[str]] = None,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> List[Resource]:
        team_filter = set(teams or ())
        excluded = set(exclude_ids or ())
        with self._lock:
            resources = list(self._resources.values())
        return [
            resource
            for resource in resources
            if resource.active
            and (not team_filter or resource.home_team in team_filter)
            and resource.id not in excluded
        ]

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        with self._lock:
            return self._resources.get(resource_id)

    def skill_name(self, skill_id: str) -> str:
        skill = self._skills.get(skill_id)
        if skill is None:
            return skill_id
        return skill.name or skill.code

    def list_allocations(self, resource_ids: Iterable[str], start: date, end: date) -> List[Allocation]:
        wanted = set(resource_ids)
        with self._lock:
            rows = list(self._allocations.values())
        return [
            allocation
            for allocation in rows
            if allocation.resource_id in wanted and start <= allocation.week_start < end
        ]

    def all_allocations(self) -> List[Allocation]:
        with self._lock:
            return sorted(self._allocations.values(), key=lambda a: (a.week_start, a.resource_id, a.project_block_id))

    def project_name(self, project_id: str) -> str:
        return self._project_names.get(project_id, project_id)

    def block_name(self, block_id: str) -> str:
        return self._block_names.get(block_id, block_id)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        with self._lock:
            saved_rows = dict(self._allocations)
            saved_next_id = self._next_id
            try:
                yield _Transaction(self)
                if self._allocations_path is not None:
                    self._flush(self._allocations_path)
            except OSError as exc:
                self._allocations = saved_rows
                self._next_id = saved_next_id
                logger.error("Allocation store write failed, rolled back: %s", exc)
                raise AllocationStoreError(f"failed to persist allocations: {exc}") from exc
            except BaseException:
                self._allocations = saved_rows
                self._next_id = saved_next_id
                logger.debug("Allocation transaction rolled back")
                raise

    def _flush(self, path: Path) -> None:
        frame = allocations_to_frame(self.all_allocations())
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        frame.to_csv(tmp_path, index=False)
        tmp_path.replace(path)
