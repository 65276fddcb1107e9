from __future__ import annotations

import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from flask import Flask, jsonify, request

from capacity_engine.applier import apply_plan
from capacity_engine.errors import AllocationStoreError, ResourceNotFoundError
from capacity_engine.io_utils import load_config, parse_date, parse_preferences, parse_requirement
from capacity_engine.models import AllocationRequest, EngineConfig, PlanningWindow
from capacity_engine.planner import plan_allocation
from capacity_engine.reports import resource_availability_report, team_capacity_report
from capacity_engine.store import AllocationStore, InMemoryAllocationStore
from capacity_engine.validator import validate_capacity


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _default_data_root() -> Path:
    return (Path(__file__).resolve().parent.parent / "data").resolve()


def _resolve_data_root() -> Path:
    env_value = os.getenv("CAPACITY_DATA_ROOT")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_data_root()


def _default_store() -> InMemoryAllocationStore:
    root = _resolve_data_root()
    catalog_path = root / "catalog.json"
    if not catalog_path.is_file():
        raise ValueError(f"catalog file not found at {catalog_path}")
    return InMemoryAllocationStore.from_files(catalog_path, root / "allocations.csv")


def _default_config() -> EngineConfig:
    config_path = _resolve_data_root() / "config.json"
    if config_path.is_file():
        return load_config(config_path)
    return EngineConfig()


def _error(message: str, status: int, **extra: object):
    payload: Dict[str, object] = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _json_body() -> Dict[str, object]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    return data


def _window_from(data: Mapping[str, object]) -> PlanningWindow:
    return PlanningWindow(
        start=parse_date(data.get("start_date"), "start_date"),
        end=parse_date(data.get("end_date"), "end_date"),
    )


def _require_str(data: Mapping[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} is required")
    return value


def _parse_plan_request(data: Mapping[str, object], config: EngineConfig) -> AllocationRequest:
    raw_requirements = data.get("skill_requirements")
    if not isinstance(raw_requirements, list):
        raise ValueError("skill_requirements must be an array")
    requirements = []
    for entry in raw_requirements:
        if not isinstance(entry, dict):
            raise ValueError("skill requirement entries must be objects")
        requirements.append(parse_requirement(entry))
    raw_preferences = data.get("preferences")
    preferences = parse_preferences(raw_preferences) if raw_preferences is not None else config.preferences
    return AllocationRequest(
        project_id=_require_str(data, "project_id"),
        project_block_id=_require_str(data, "project_block_id"),
        window=_window_from(data),
        requirements=tuple(requirements),
        preferences=preferences,
    )


def _parse_apply_entries(data: Mapping[str, object]) -> List[Tuple[str, date, float]]:
    raw = data.get("allocations")
    if not isinstance(raw, list):
        raise ValueError("allocations must be an array")
    entries = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("allocation entries must be objects")
        hours = item.get("allocated_hours")
        if isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours <= 0:
            raise ValueError("allocated_hours must be a positive number")
        entries.append(
            (
                _require_str(item, "resource_id"),
                parse_date(item.get("week_start"), "week_start"),
                float(hours),
            )
        )
    return entries


def _parse_proposed(raw: object) -> Dict[str, Dict[str, float]]:
    if not isinstance(raw, dict):
        raise ValueError("allocations must be an object")
    proposed: Dict[str, Dict[str, float]] = {}
    for block_id, block in raw.items():
        if not isinstance(block, dict):
            raise ValueError(f"allocations for block {block_id} must be an object")
        parsed: Dict[str, float] = {}
        for resource_id, hours in block.items():
            if isinstance(hours, bool) or not isinstance(hours, (int, float)):
                raise ValueError(f"hours for resource {resource_id} must be a number")
            parsed[str(resource_id)] = float(hours)
        proposed[str(block_id)] = parsed
    return proposed


def create_app(store: Optional[AllocationStore] = None, config: Optional[EngineConfig] = None) -> Flask:
    app = Flask(__name__)
    engine_store = store if store is not None else _default_store()
    engine_config = config if config is not None else _default_config()
    app.config["ALLOCATION_STORE"] = engine_store
    app.config["ENGINE_CONFIG"] = engine_config

    @app.errorhandler(ValueError)
    def bad_request(exc: ValueError):
        return _error(str(exc), 400)

    @app.errorhandler(ResourceNotFoundError)
    def not_found(exc: ResourceNotFoundError):
        return _error(str(exc), 404, resource_ids=list(exc.resource_ids))

    @app.errorhandler(AllocationStoreError)
    def store_failure(exc: AllocationStoreError):
        app.logger.error("Error applying allocations: %s", exc)
        return _error("Failed to apply allocations", 500)

    @app.post("/plan")
    def plan_endpoint():
        data = _json_body()
        allocation_request = _parse_plan_request(data, engine_config)
        plan = plan_allocation(engine_store, allocation_request, engine_config)
        return jsonify(plan.to_dict())

    @app.put("/plan")
    def apply_endpoint():
        data = _json_body()
        project_id = _require_str(data, "project_id")
        block_id = _require_str(data, "project_block_id")
        applied = apply_plan(engine_store, project_id, block_id, _parse_apply_entries(data))
        return jsonify(
            {
                "message": "Allocations applied successfully",
                "allocations_created": len(applied),
                "allocations": [item.to_dict() for item in applied],
            }
        )

    @app.post("/validate")
    def validate_endpoint():
        data = _json_body()
        timeframe = data.get("timeframe")
        if "allocations" not in data or not isinstance(timeframe, dict):
            raise ValueError("Invalid input data provided")
        project_id = data.get("project_id")
        result = validate_capacity(
            engine_store,
            _parse_proposed(data["allocations"]),
            _window_from(timeframe),
            project_id=str(project_id) if project_id else None,
            capacity_basis=engine_config.capacity_basis,
            standard_weekly_hours=engine_config.standard_weekly_hours,
        )
        payload = result.to_dict()
        payload["validation_id"] = data.get("validation_id")
        payload["timestamp"] = _now_iso()
        return jsonify(payload)

    @app.get("/resources/<resource_id>/availability")
    def availability_endpoint(resource_id: str):
        window = _window_from(request.args)
        resource = engine_store.get_resource(resource_id)
        if resource is None:
            raise ResourceNotFoundError([resource_id])
        allocations = engine_store.list_allocations([resource_id], window.start, window.end)
        weekly, summary = resource_availability_report(resource, allocations, window)
        return jsonify({"summary": summary, "weekly_availability": weekly.to_dict(orient="records")})

    @app.get("/capacity")
    def capacity_endpoint():
        window = _window_from(request.args)
        team = request.args.get("team")
        resources = engine_store.list_active_resources(teams=[team] if team else None)
        allocations = engine_store.list_allocations([r.id for r in resources], window.start, window.end)
        frame = team_capacity_report(resources, allocations, window)
        return jsonify(
            {
                "start_date": window.start.isoformat(),
                "end_date": window.end.isoformat(),
                "total_resources": len(resources),
                "weekly_capacity": frame.to_dict(orient="records"),
            }
        )

    return app
