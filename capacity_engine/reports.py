from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

import pandas as pd

from .availability import build_snapshots
from .models import Allocation, PlanningWindow, Resource
from .planner import AllocationPlan
from .weeks import build_week_buckets

RESOURCE_AVAILABILITY_COLUMNS = [
    "week_start",
    "week_end",
    "capacity_hours",
    "allocated_hours",
    "available_hours",
    "utilization_pct",
    "is_overallocated",
]

TEAM_CAPACITY_COLUMNS = [
    "week_start",
    "team",
    "resource_count",
    "capacity_hours",
    "allocated_hours",
    "available_hours",
    "utilization_pct",
]

PLAN_COLUMNS = [
    "resource_id",
    "resource_name",
    "home_team",
    "skill_id",
    "priority",
    "week_start",
    "allocated_hours",
    "utilization_after_allocation",
    "is_overallocation",
]


def _utilization(allocated: float, capacity: float) -> float:
    return round(allocated / capacity * 100, 2) if capacity > 0 else 0.0


def resource_availability_report(
    resource: Resource,
    allocations: Iterable[Allocation],
    window: PlanningWindow,
) -> Tuple[pd.DataFrame, Dict[str, object]]:
    buckets = build_week_buckets(window.start, window.end)
    snapshot = build_snapshots([resource], allocations, buckets)[resource.id]
    rows: List[Dict[str, object]] = []
    for week in snapshot.weeks:
        rows.append(
            {
                "week_start": week.bucket.start.isoformat(),
                "week_end": week.bucket.end.isoformat(),
                "capacity_hours": week.capacity_hours,
                "allocated_hours": week.allocated_hours,
                "available_hours": week.available_hours,
                "utilization_pct": round(week.utilization_pct, 2),
                "is_overallocated": week.is_overallocated,
            }
        )
    weekly = pd.DataFrame(rows, columns=RESOURCE_AVAILABILITY_COLUMNS)
    total_capacity = float(weekly["capacity_hours"].sum())
    total_allocated = float(weekly["allocated_hours"].sum())
    total_available = max(0.0, total_capacity - total_allocated)
    overallocated_weeks = int(weekly["is_overallocated"].sum())
    summary: Dict[str, object] = {
        "resource_id": resource.id,
        "resource_name": resource.name,
        "total_weeks": len(weekly),
        "total_capacity_hours": total_capacity,
        "total_allocated_hours": total_allocated,
        "total_available_hours": total_available,
        "average_utilization": _utilization(total_allocated, total_capacity),
        "overallocated_weeks": overallocated_weeks,
        "is_fully_allocated": total_available == 0,
        "has_overallocation": overallocated_weeks > 0,
    }
    return weekly, summary


def team_capacity_report(
    resources: Sequence[Resource],
    allocations: Iterable[Allocation],
    window: PlanningWindow,
) -> pd.DataFrame:
    """Weekly capacity, allocation and utilization per home team."""
    buckets = build_week_buckets(window.start, window.end)
    snapshots = build_snapshots(resources, allocations, buckets)
    rows: List[Dict[str, object]] = []
    for snapshot in snapshots.values():
        for week in snapshot.weeks:
            rows.append(
                {
                    "week_start": week.bucket.start.isoformat(),
                    "team": snapshot.resource.home_team,
                    "resource_id": snapshot.resource.id,
                    "capacity_hours": week.capacity_hours,
                    "allocated_hours": week.allocated_hours,
                }
            )
    if not rows:
        return pd.DataFrame(columns=TEAM_CAPACITY_COLUMNS)
    df = pd.DataFrame(rows)
    grouped = (
        df.groupby(["week_start", "team"], sort=True)
        .agg(
            resource_count=("resource_id", "nunique"),
            capacity_hours=("capacity_hours", "sum"),
            allocated_hours=("allocated_hours", "sum"),
        )
        .reset_index()
    )
    grouped["available_hours"] = (grouped["capacity_hours"] - grouped["allocated_hours"]).clip(lower=0.0)
    grouped["utilization_pct"] = [
        _utilization(allocated, capacity)
        for allocated, capacity in zip(grouped["allocated_hours"], grouped["capacity_hours"])
    ]
    return grouped[TEAM_CAPACITY_COLUMNS]


def plan_to_frame(plan: AllocationPlan) -> pd.DataFrame:
    rows = [
        {
            "resource_id": entry.resource_id,
            "resource_name": entry.resource_name,
            "home_team": entry.home_team,
            "skill_id": entry.skill_id,
            "priority": entry.priority,
            "week_start": entry.week_start.isoformat(),
            "allocated_hours": entry.allocated_hours,
            "utilization_after_allocation": round(entry.utilization_after_allocation, 2),
            "is_overallocation": entry.is_overallocation,
        }
        for entry in plan.entries
    ]
    return pd.DataFrame(rows, columns=PLAN_COLUMNS)
