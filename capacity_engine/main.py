from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .applier import apply_plan
from .errors import AllocationStoreError, ResourceNotFoundError
from .io_utils import ensure_directory, load_config, load_requirements, parse_date, write_csv
from .models import AllocationRequest, EngineConfig, PlanningWindow
from .planner import AllocationPlan, plan_allocation
from .reports import plan_to_frame, resource_availability_report, team_capacity_report
from .store import InMemoryAllocationStore
from .validator import validate_capacity

EXIT_ENGINE_ERROR = 1
EXIT_USAGE_ERROR = 2


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--catalog", required=True, help="Path to catalog JSON (skills, resources, projects)")
    parser.add_argument(
        "--allocations",
        required=True,
        help="Path to allocations CSV; updated in place when allocations are applied",
    )
    parser.add_argument("--config", help="Path to engine configuration JSON file")
    parser.add_argument("--start", required=True, help="Window start date (ISO, inclusive)")
    parser.add_argument("--end", required=True, help="Window end date (ISO, exclusive)")


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resource allocation and capacity engine (JSON/CSV in, CSV/JSON out)."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    plan_parser = sub.add_parser("plan", help="Plan allocations for a list of skill requirements")
    _add_common_arguments(plan_parser)
    plan_parser.add_argument("--requirements", required=True, help="Path to skill requirements CSV")
    plan_parser.add_argument("--project-id", required=True)
    plan_parser.add_argument("--block-id", required=True)
    plan_parser.add_argument("--outdir", default="out", help="Output directory for plan files (default: ./out)")
    plan_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail if any requirement cannot be fulfilled by its best match",
    )
    plan_parser.add_argument(
        "--apply",
        action="store_true",
        help="Persist the plan to the allocations file after planning",
    )
    plan_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan and print summary without writing any files",
    )

    apply_parser = sub.add_parser("apply", help="Apply an approved plan CSV")
    apply_parser.add_argument("--catalog", required=True)
    apply_parser.add_argument("--allocations", required=True)
    apply_parser.add_argument("--plan", required=True, help="CSV with resource_id, week_start, allocated_hours")
    apply_parser.add_argument("--project-id", required=True)
    apply_parser.add_argument("--block-id", required=True)

    validate_parser = sub.add_parser("validate", help="Validate a proposed allocation map")
    _add_common_arguments(validate_parser)
    validate_parser.add_argument(
        "--proposed",
        required=True,
        help="JSON object mapping block id to {resource id: hours}",
    )
    validate_parser.add_argument("--project-id", help="Project the proposal belongs to")

    report_parser = sub.add_parser("report", help="Write weekly team capacity and per-resource availability")
    _add_common_arguments(report_parser)
    report_parser.add_argument("--resource-id", help="Limit the availability report to one resource")
    report_parser.add_argument("--outdir", default="out")

    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _window(args: argparse.Namespace) -> PlanningWindow:
    return PlanningWindow(start=parse_date(args.start, "start"), end=parse_date(args.end, "end"))


def _load_config(path: Optional[str]) -> EngineConfig:
    if not path:
        return EngineConfig()
    config_path = Path(path)
    if not config_path.exists():
        raise ValueError(f"config file not found at {config_path}")
    return load_config(config_path)


def _load_store(args: argparse.Namespace) -> InMemoryAllocationStore:
    catalog_path = Path(args.catalog)
    if not catalog_path.exists():
        raise ValueError(f"catalog file not found at {catalog_path}")
    return InMemoryAllocationStore.from_files(catalog_path, Path(args.allocations))


def _print_plan_summary(plan: AllocationPlan) -> None:
    summary = plan.summary()
    print(
        f"Planned {summary['total_allocated_hours']}h of {summary['total_required_hours']}h "
        f"({summary['fulfillment_percentage']}%) across {summary['unique_resources_needed']} resources"
    )
    if plan.entries:
        print("Allocation plan:")
        for entry in plan.entries:
            marker = " (over)" if entry.is_overallocation else ""
            print(
                f"- {entry.week_start.isoformat()} {entry.resource_name} [{entry.skill_id}] "
                f"{entry.allocated_hours}h → {entry.utilization_after_allocation:.0f}%{marker}"
            )
    if plan.warnings:
        print("\nWarnings:")
        for warning in plan.warnings:
            print(f"- {warning}")


def _write_unfulfilled_markdown(plan: AllocationPlan, outdir: Path) -> Path:
    path = outdir / "unfulfilled_requirements.md"
    lines: List[str] = ["# Unfulfilled Requirements", ""]
    if not plan.unfulfilled:
        lines.append("All requirements can be fulfilled by their best match.")
    else:
        for item in plan.unfulfilled:
            requirement = item.requirement
            lines.append(f"- **{requirement.skill_id}** (level {requirement.required_level}+, {requirement.priority})")
            lines.append(f"  - Required Hours: {requirement.required_hours:g}")
            lines.append(f"  - Reason: {item.reason}")
            if item.best_resource_id:
                lines.append(f"  - Best Match: {item.best_resource_id}")
            lines.append("")
    path.write_text("\n".join(lines).strip() + "\n")
    return path


def _run_plan(args: argparse.Namespace, config: EngineConfig) -> int:
    store = _load_store(args)
    requirements_path = Path(args.requirements)
    if not requirements_path.exists():
        raise ValueError(f"requirements file not found at {requirements_path}")
    request = AllocationRequest(
        project_id=args.project_id,
        project_block_id=args.block_id,
        window=_window(args),
        requirements=tuple(load_requirements(requirements_path)),
        preferences=config.preferences,
    )
    plan = plan_allocation(store, request, config)
    if args.strict and plan.unfulfilled:
        for item in plan.unfulfilled:
            print(str(item), file=sys.stderr)
        return EXIT_ENGINE_ERROR

    if args.dry_run:
        _print_plan_summary(plan)
        return 0

    outdir = ensure_directory(args.outdir)
    plan_path = outdir / "allocation_plan.csv"
    json_path = outdir / "allocation_plan.json"
    write_csv(plan_to_frame(plan), plan_path)
    json_path.write_text(json.dumps(plan.to_dict(), indent=2))
    markdown_path = _write_unfulfilled_markdown(plan, outdir)
    print(f"Wrote {plan_path}")
    print(f"Wrote {json_path}")
    print(f"Wrote {markdown_path}")
    if args.apply:
        applied = apply_plan(store, args.project_id, args.block_id, plan.approved_entries())
        print(f"Applied {len(applied)} allocations to {args.allocations}")
    for warning in plan.warnings:
        print(f"Warning: {warning}")
    return 0


def _load_plan_entries(path: Path) -> List[Tuple[str, date, float]]:
    df = pd.read_csv(path, dtype={"resource_id": str})
    missing = [col for col in ("resource_id", "week_start", "allocated_hours") if col not in df.columns]
    if missing:
        raise ValueError(f"plan file missing required columns: {', '.join(missing)}")
    entries = []
    for row in df.itertuples(index=False):
        entries.append(
            (str(row.resource_id), parse_date(row.week_start, "week_start"), float(row.allocated_hours))
        )
    return entries


def _run_apply(args: argparse.Namespace) -> int:
    store = _load_store(args)
    plan_path = Path(args.plan)
    if not plan_path.exists():
        raise ValueError(f"plan file not found at {plan_path}")
    applied = apply_plan(store, args.project_id, args.block_id, _load_plan_entries(plan_path))
    for item in applied:
        action = "created" if item.created else "updated"
        print(
            f"- {item.week_start.isoformat()} {item.resource_name}: {item.allocated_hours}h "
            f"on {item.project_name} / {item.block_name} ({action})"
        )
    print(f"Applied {len(applied)} allocations")
    return 0


def _load_proposed(path: Path) -> Dict[str, Dict[str, float]]:
    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        raise ValueError("proposed allocations must be a JSON object")
    proposed: Dict[str, Dict[str, float]] = {}
    for block_id, block in data.items():
        if not isinstance(block, dict):
            raise ValueError(f"allocations for block {block_id} must be an object")
        proposed[str(block_id)] = {str(rid): float(hours) for rid, hours in block.items()}
    return proposed


def _run_validate(args: argparse.Namespace, config: EngineConfig) -> int:
    store = _load_store(args)
    proposed_path = Path(args.proposed)
    if not proposed_path.exists():
        raise ValueError(f"proposed allocations file not found at {proposed_path}")
    result = validate_capacity(
        store,
        _load_proposed(proposed_path),
        _window(args),
        project_id=args.project_id,
        capacity_basis=config.capacity_basis,
        standard_weekly_hours=config.standard_weekly_hours,
    )
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.is_valid else EXIT_ENGINE_ERROR


def _run_report(args: argparse.Namespace) -> int:
    store = _load_store(args)
    window = _window(args)
    outdir = ensure_directory(args.outdir)
    resources = store.list_active_resources()
    if args.resource_id:
        resources = [resource for resource in resources if resource.id == args.resource_id]
        if not resources:
            raise ResourceNotFoundError([args.resource_id])
    allocations = store.list_allocations([r.id for r in resources], window.start, window.end)
    team_path = outdir / "team_capacity.csv"
    write_csv(team_capacity_report(resources, allocations, window), team_path)
    print(f"Wrote {team_path}")
    for resource in resources:
        weekly, summary = resource_availability_report(resource, allocations, window)
        path = outdir / f"availability_{resource.id}.csv"
        write_csv(weekly, path)
        print(
            f"Wrote {path} ({summary['average_utilization']}% average utilization, "
            f"{summary['overallocated_weeks']} overallocated weeks)"
        )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config = _load_config(getattr(args, "config", None))
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE_ERROR
    _configure_logging(config.logging_level)
    try:
        if args.command == "plan":
            return _run_plan(args, config)
        if args.command == "apply":
            return _run_apply(args)
        if args.command == "validate":
            return _run_validate(args, config)
        return _run_report(args)
    except (ResourceNotFoundError, AllocationStoreError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_ENGINE_ERROR
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE_ERROR


if __name__ == "__main__":
    sys.exit(main())
