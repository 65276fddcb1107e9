from __future__ import annotations

import json
import numbers
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    PRIORITY_ORDER,
    STANDARD_WEEKLY_HOURS,
    Allocation,
    AllocationPreferences,
    CapacityBasis,
    EngineConfig,
    OVERALLOCATION_BUFFER_PCT,
    Resource,
    Skill,
    SkillRequirement,
)

DATE_FMT = "%Y-%m-%d"

ALLOCATION_COLUMNS = [
    "id",
    "project_id",
    "project_block_id",
    "resource_id",
    "week_start",
    "allocated_hours",
]

_ALLOCATION_REQUIRED_COLUMNS = {
    "project_id",
    "project_block_id",
    "resource_id",
    "week_start",
    "allocated_hours",
}

_REQUIREMENT_REQUIRED_COLUMNS = {"skill_id", "required_level", "required_hours"}


@dataclass(frozen=True)
class Catalog:
    skills: Tuple[Skill, ...]
    resources: Tuple[Resource, ...]
    project_names: Dict[str, str] = field(default_factory=dict)
    block_names: Dict[str, str] = field(default_factory=dict)


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = sorted(col for col in required if col not in df.columns)
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _parse_bool(value: object, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and not (isinstance(value, float) and pd.isna(value)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}' for '{field_name}'")


def parse_date(value: object, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or (isinstance(value, float) and pd.isna(value)):
        raise ValueError(f"'{field_name}' is required")
    try:
        return dateparser.isoparse(str(value).strip()).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_number(value: object, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (numbers.Real, str)):
        raise ValueError(f"'{field_name}' must be a number")
    try:
        number = float(value)
    except ValueError as exc:
        raise ValueError(f"'{field_name}' must be a number") from exc
    if pd.isna(number):
        raise ValueError(f"'{field_name}' must be a number")
    return number


def _parse_int(value: object, field_name: str) -> int:
    number = _parse_number(value, field_name)
    if not number.is_integer():
        raise ValueError(f"'{field_name}' must be a whole number")
    return int(number)


def _parse_skill_levels(value: object, resource_id: str) -> Dict[str, int]:
    if value is None:
        return {}
    levels: Dict[str, int] = {}
    if isinstance(value, Mapping):
        items = list(value.items())
    elif isinstance(value, list):
        items = []
        for entry in value:
            if not isinstance(entry, Mapping) or "skill_id" not in entry:
                raise ValueError(f"skill entries for {resource_id} must be objects with skill_id")
            items.append((entry["skill_id"], entry.get("level")))
    else:
        raise ValueError(f"skills for {resource_id} must be an object or array")
    for skill_id, level in items:
        levels[str(skill_id)] = _parse_int(level, f"{resource_id}.skills.{skill_id}")
    return levels


def _resource_from_dict(entry: Mapping[str, object], known_skills: Optional[set]) -> Resource:
    resource_id = entry.get("id")
    if not resource_id:
        raise ValueError("resource id is required")
    resource_id = str(resource_id)
    name = entry.get("name")
    if not name or not isinstance(name, str):
        raise ValueError(f"resource name is required for {resource_id}")
    levels = _parse_skill_levels(entry.get("skills"), resource_id)
    if known_skills is not None:
        unknown = sorted(set(levels) - known_skills)
        if unknown:
            raise ValueError(f"resource {resource_id} references unknown skills: {', '.join(unknown)}")
    return Resource(
        id=resource_id,
        name=name,
        home_team=str(entry.get("home_team", "") or ""),
        capacity_hours_per_week=_parse_number(
            entry.get("capacity_hours_per_week", STANDARD_WEEKLY_HOURS),
            f"{resource_id}.capacity_hours_per_week",
        ),
        employee_code=str(entry.get("employee_code", "") or ""),
        employment_category=str(entry.get("employment_category", "") or ""),
        active=_parse_bool(entry.get("active", True), f"{resource_id}.active"),
        skill_levels=levels,
    )


def load_catalog(path: str | Path) -> Catalog:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("catalog file must be a JSON object")
    skills: List[Skill] = []
    for entry in data.get("skills", []) or []:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ValueError("skill entries must be objects with an id")
        skills.append(
            Skill(
                id=str(entry["id"]),
                code=str(entry.get("code", entry["id"])),
                name=str(entry.get("name", "") or ""),
                category=str(entry.get("category", "") or ""),
            )
        )
    known_skills = {skill.id for skill in skills} if skills else None
    raw_resources = data.get("resources")
    if not isinstance(raw_resources, list) or not raw_resources:
        raise ValueError("catalog must contain a non-empty resources array")
    resources: List[Resource] = []
    seen: set = set()
    for entry in raw_resources:
        if not isinstance(entry, dict):
            raise ValueError("resource entries must be objects")
        resource = _resource_from_dict(entry, known_skills)
        if resource.id in seen:
            raise ValueError(f"duplicate resource id {resource.id}")
        seen.add(resource.id)
        resources.append(resource)
    project_names: Dict[str, str] = {}
    block_names: Dict[str, str] = {}
    for project in data.get("projects", []) or []:
        if not isinstance(project, dict) or not project.get("id"):
            raise ValueError("project entries must be objects with an id")
        project_id = str(project["id"])
        project_names[project_id] = str(project.get("name", project_id))
        for block in project.get("blocks", []) or []:
            if not isinstance(block, dict) or not block.get("id"):
                raise ValueError(f"blocks of project {project_id} must be objects with an id")
            block_names[str(block["id"])] = str(block.get("name", block["id"]))
    return Catalog(
        skills=tuple(skills),
        resources=tuple(resources),
        project_names=project_names,
        block_names=block_names,
    )


def load_allocations(path: str | Path) -> List[Allocation]:
    df = pd.read_csv(path, dtype={"id": str, "project_id": str, "project_block_id": str, "resource_id": str})
    _require_columns(df, _ALLOCATION_REQUIRED_COLUMNS, "allocations.csv")
    if df.empty:
        return []
    try:
        df["allocated_hours"] = pd.to_numeric(df["allocated_hours"])
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'allocated_hours'") from exc
    if (df["allocated_hours"] < 0).any():
        raise ValueError("column 'allocated_hours' contains negative values")
    if "id" not in df.columns:
        df["id"] = [f"alloc-{idx + 1}" for idx in range(len(df))]
    allocations: List[Allocation] = []
    seen: set = set()
    for row in df.itertuples(index=False):
        allocation = Allocation(
            id=str(row.id),
            project_id=str(row.project_id),
            project_block_id=str(row.project_block_id),
            resource_id=str(row.resource_id),
            week_start=parse_date(row.week_start, "week_start"),
            allocated_hours=float(row.allocated_hours),
        )
        if allocation.key in seen:
            block_id, resource_id, week = allocation.key
            raise ValueError(
                f"duplicate allocation for block {block_id}, resource {resource_id}, week {week.isoformat()}"
            )
        seen.add(allocation.key)
        allocations.append(allocation)
    return allocations


def parse_requirement(entry: Mapping[str, object]) -> SkillRequirement:
    skill_id = entry.get("skill_id")
    if skill_id is None or (isinstance(skill_id, float) and pd.isna(skill_id)) or str(skill_id).strip() == "":
        raise ValueError("requirement skill_id is required")
    priority = entry.get("priority")
    if priority is None or (isinstance(priority, float) and pd.isna(priority)) or priority == "":
        priority = "medium"
    priority = str(priority).strip().lower()
    if priority not in PRIORITY_ORDER:
        raise ValueError(f"unsupported priority '{priority}' for skill {skill_id}")
    return SkillRequirement(
        skill_id=str(skill_id).strip(),
        required_level=_parse_int(entry.get("required_level"), "required_level"),
        required_hours=_parse_number(entry.get("required_hours"), "required_hours"),
        priority=priority,  # type: ignore[arg-type]
    )


def load_requirements(path: str | Path) -> List[SkillRequirement]:
    df = pd.read_csv(path, dtype={"skill_id": str})
    if df.empty:
        raise ValueError("requirements file is empty")
    _require_columns(df, _REQUIREMENT_REQUIRED_COLUMNS, "requirements.csv")
    return [parse_requirement(row) for row in df.to_dict(orient="records")]


def _parse_string_list(value: object, field_name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(";") if part.strip())
    if isinstance(value, Sequence):
        return tuple(str(item).strip() for item in value if str(item).strip())
    raise ValueError(f"'{field_name}' must be an array of strings")


def parse_preferences(data: Optional[Mapping[str, object]]) -> AllocationPreferences:
    if not data:
        return AllocationPreferences()
    if not isinstance(data, Mapping):
        raise ValueError("preferences must be an object")
    max_util = _parse_number(data.get("max_utilization_percentage", 80), "max_utilization_percentage")
    if not 0 <= max_util <= 100:
        raise ValueError("max_utilization_percentage must be in [0, 100]")
    flags: Dict[str, bool] = {}
    for key, default in (
        ("allow_overallocation", False),
        ("prioritize_skill_level", True),
        ("prioritize_availability", True),
    ):
        flags[key] = _parse_bool(data.get(key, default), key)
    return AllocationPreferences(
        preferred_teams=_parse_string_list(data.get("preferred_teams"), "preferred_teams"),
        exclude_resources=_parse_string_list(data.get("exclude_resources"), "exclude_resources"),
        max_utilization_percentage=max_util,
        **flags,
    )


def load_config(path: str | Path) -> EngineConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")

    buffer_pct = _parse_number(data.get("overallocation_buffer_pct", OVERALLOCATION_BUFFER_PCT), "overallocation_buffer_pct")
    if not 0 <= buffer_pct <= 1:
        raise ValueError("overallocation_buffer_pct must be in [0, 1]")

    standard_hours = _parse_number(data.get("standard_weekly_hours", STANDARD_WEEKLY_HOURS), "standard_weekly_hours")
    if standard_hours <= 0:
        raise ValueError("standard_weekly_hours must be positive")

    basis_raw = data.get("capacity_basis", CapacityBasis.STANDARD.value)
    try:
        capacity_basis = CapacityBasis(str(basis_raw).lower())
    except ValueError as exc:
        choices = ", ".join(item.value for item in CapacityBasis)
        raise ValueError(f"capacity_basis must be one of: {choices}") from exc

    order_by_priority = data.get("order_by_priority", False)
    if not isinstance(order_by_priority, bool):
        raise ValueError("order_by_priority must be a boolean")

    return EngineConfig(
        logging_level=logging_level,
        overallocation_buffer_pct=buffer_pct,
        standard_weekly_hours=standard_hours,
        capacity_basis=capacity_basis,
        order_by_priority=order_by_priority,
        preferences=parse_preferences(data.get("preferences")),
    )


def allocations_to_frame(allocations: Iterable[Allocation]) -> pd.DataFrame:
    rows = [
        {
            "id": allocation.id,
            "project_id": allocation.project_id,
            "project_block_id": allocation.project_block_id,
            "resource_id": allocation.resource_id,
            "week_start": allocation.week_start.strftime(DATE_FMT),
            "allocated_hours": allocation.allocated_hours,
        }
        for allocation in allocations
    ]
    return pd.DataFrame(rows, columns=ALLOCATION_COLUMNS)


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
