from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import Optional, Tuple

from dateutil import parser as dateparser
from flask import Flask, Response, jsonify, request

from portfolio_tracker import engine, health
from portfolio_tracker.critical_path import CyclicDependencyError, compute_critical_path
from portfolio_tracker.io_utils import load_config, parse_state
from portfolio_tracker.models import EngineConfig, PortfolioState
from portfolio_tracker.portfolio import project_tasks
from portfolio_tracker.store import JsonStateStore

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,PUT,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _default_state_file() -> Path:
    return (Path(__file__).resolve().parent.parent / "data" / "state.json").resolve()


def _resolve_state_file() -> Path:
    env_value = os.getenv("STATE_FILE")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_state_file()


def _resolve_config() -> EngineConfig:
    env_value = os.getenv("ENGINE_CONFIG")
    return load_config(Path(env_value).expanduser()) if env_value else EngineConfig()


def _parse_query_date(name: str) -> Optional[date]:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return dateparser.isoparse(raw).date()
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"query parameter '{name}' must be an ISO date") from exc


def create_app(state_file: Optional[Path] = None, config: Optional[EngineConfig] = None) -> Flask:
    app = Flask(__name__)
    store = JsonStateStore(state_file or _resolve_state_file())
    cfg = config or _resolve_config()
    app.config["STATE_STORE"] = store
    app.config["ENGINE_CONFIG"] = cfg

    def _snapshot() -> PortfolioState:
        return parse_state(store.load(), cfg)

    def _project_or_404(state: PortfolioState, project_id: str):
        project = state.get_project(project_id)
        if project is None:
            return None, (jsonify({"error": "project not found"}), 404)
        return project, None

    @app.after_request
    def add_cors_headers(response: Response) -> Response:
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.errorhandler(ValueError)
    def bad_request(exc: ValueError) -> Tuple[Response, int]:
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(OSError)
    def storage_failure(exc: OSError) -> Tuple[Response, int]:
        app.logger.error("state storage failed: %s", exc)
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/api/state", methods=["GET", "PUT", "OPTIONS"], provide_automatic_options=False)
    def state():
        if request.method == "OPTIONS":
            return Response(status=204, headers=CORS_HEADERS)
        if request.method == "GET":
            return jsonify(store.load())
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "Body must be JSON object."}), 400
        store.save(body)
        return jsonify({"message": "State saved."})

    @app.get("/api/projects/<project_id>/critical-path")
    def critical_path(project_id: str):
        state = _snapshot()
        _, error = _project_or_404(state, project_id)
        if error:
            return error
        try:
            result = compute_critical_path(project_tasks(state, project_id))
        except CyclicDependencyError as exc:
            return jsonify({"error": str(exc), "taskIds": exc.task_ids}), 409
        return jsonify(result.to_dict())

    @app.get("/api/projects/<project_id>/fte")
    def project_fte(project_id: str):
        state = _snapshot()
        fte = engine.project_fte(project_id, members=state.members, bookings=state.resource_bookings)
        return jsonify({"projectId": project_id, "fte": fte})

    @app.get("/api/projects/<project_id>/forecast")
    def project_forecast(project_id: str):
        state = _snapshot()
        forecast = engine.forecast_from_bookings(
            project_id, members=state.members, bookings=state.resource_bookings, config=cfg
        )
        return jsonify({"projectId": project_id, "forecastInternal": forecast})

    @app.get("/api/projects/<project_id>/costs")
    def project_costs(project_id: str):
        today = _parse_query_date("today")
        state = _snapshot()
        project, error = _project_or_404(state, project_id)
        if error:
            return error
        categories = health.costs_by_category(
            project, costs=state.costs, members=state.members, bookings=state.resource_bookings, config=cfg
        )
        return jsonify(
            {
                "categories": {name: item.to_dict() for name, item in categories.items()},
                "burnRate": health.burn_rate(project, costs=state.costs, today=today),
            }
        )

    @app.get("/api/projects/<project_id>/health")
    def project_health(project_id: str):
        today = _parse_query_date("today")
        state = _snapshot()
        project, error = _project_or_404(state, project_id)
        if error:
            return error
        light = health.project_health(
            project,
            costs=state.costs,
            risks=state.risks,
            members=state.members,
            bookings=state.resource_bookings,
            config=cfg,
            today=today,
        )
        return jsonify({"projectId": project_id, "light": light, "manualOverride": project.manual_override})

    @app.get("/api/members/<member_id>/utilization")
    def member_utilization(member_id: str):
        start = _parse_query_date("start")
        end = _parse_query_date("end")
        if start is None or end is None:
            return jsonify({"error": "start and end are required"}), 400
        state = _snapshot()
        result = engine.resource_utilization(
            member_id,
            start,
            end,
            members=state.members,
            bookings=state.resource_bookings,
            projects=state.projects,
            exclude_booking_id=request.args.get("exclude") or None,
        )
        return jsonify(result.to_dict())

    @app.get("/api/members/<member_id>/global-utilization")
    def member_global_utilization(member_id: str):
        state = _snapshot()
        result = engine.global_resource_utilization(
            member_id, members=state.members, bookings=state.resource_bookings, projects=state.projects
        )
        if result is None:
            return jsonify({"error": "member not found"}), 404
        return jsonify(result.to_dict())

    @app.get("/api/fte/total")
    def total_fte():
        state = _snapshot()
        return jsonify({"totalAvailableFTE": engine.total_available_fte(state.members)})

    @app.get("/api/competency-groups")
    def competency_groups():
        state = _snapshot()
        groups = engine.competency_group_utilization(
            members=state.members, bookings=state.resource_bookings, projects=state.projects, config=cfg
        )
        return jsonify([item.to_dict() for item in groups])

    @app.get("/api/fte-timeline")
    def fte_timeline():
        today = _parse_query_date("today")
        state = _snapshot()
        weeks = engine.fte_timeline(
            projects=state.projects,
            members=state.members,
            bookings=state.resource_bookings,
            today=today,
            config=cfg,
        )
        return jsonify([week.to_dict() for week in weeks])

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
