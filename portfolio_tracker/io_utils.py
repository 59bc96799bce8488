from __future__ import annotations

import json
import logging
from dataclasses import fields
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    COST_TYPES,
    PROGRESS_STEPS,
    PROJECT_STATUSES,
    TRAFFIC_LIGHTS,
    Budget,
    Cost,
    Dependency,
    EngineConfig,
    Member,
    Milestone,
    PartialPayment,
    PhaseTemplate,
    PortfolioState,
    Project,
    ProjectTeamMember,
    ResourceBooking,
    Risk,
    Task,
    generate_id,
    resolve_available_capacity,
    span_in_days,
)

logger = logging.getLogger(__name__)

DATE_FMT = "%Y-%m-%d"

COLLECTION_KEYS: Tuple[str, ...] = (
    "projects",
    "members",
    "projectTeamMembers",
    "costs",
    "milestones",
    "risks",
    "tasks",
    "phaseTemplates",
    "resourceBookings",
)

DEFAULT_PHASE_TEMPLATE = {
    "name": "Standard software project",
    "phases": [
        {"name": "Concept", "order": 1},
        {"name": "Development", "order": 2},
        {"name": "Test", "order": 3},
        {"name": "Rollout", "order": 4},
    ],
    "defaultMilestones": [
        {"name": "Concept complete", "phase": "Concept"},
        {"name": "MVP ready", "phase": "Development"},
        {"name": "Testing complete", "phase": "Test"},
        {"name": "Go-live", "phase": "Rollout"},
    ],
}

T = TypeVar("T")


def empty_document() -> Dict[str, List[object]]:
    return {key: [] for key in COLLECTION_KEYS}


def _is_missing(value: object) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _parse_bool(value: object, field_name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}' in '{field_name}'")


def _parse_optional_date(value: object, field_name: str) -> Optional[date]:
    if _is_missing(value):
        return None
    if isinstance(value, date):
        return value
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError, OverflowError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_required_date(value: object, field_name: str) -> date:
    parsed = _parse_optional_date(value, field_name)
    if parsed is None:
        raise ValueError(f"'{field_name}' is required")
    return parsed


def _parse_optional_number(value: object, field_name: str) -> Optional[float]:
    if _is_missing(value):
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid numeric value in '{field_name}': {value}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid numeric value in '{field_name}': {value}") from exc


def _parse_number(value: object, field_name: str, default: float = 0.0) -> float:
    parsed = _parse_optional_number(value, field_name)
    return default if parsed is None else parsed


def _require_id(entry: Mapping[str, object], key: str, source: str) -> str:
    value = entry.get(key)
    if _is_missing(value):
        raise ValueError(f"{source} entry missing '{key}'")
    return str(value)


def _optional_str(value: object) -> Optional[str]:
    return None if _is_missing(value) else str(value)


def _format_date(value: Optional[date]) -> Optional[str]:
    return value.strftime(DATE_FMT) if value else None


def _parse_budget(raw: object) -> Budget:
    if raw is None:
        return Budget()
    if not isinstance(raw, Mapping):
        raise ValueError("project budget must be an object")

    # Legacy documents use intern/extern/investitionen
    def pick(*keys: str) -> Optional[float]:
        for key in keys:
            if key in raw:
                value = _parse_optional_number(raw[key], f"budget.{key}")
                if value is not None:
                    return value
        return None

    internal = pick("internal", "intern") or 0.0
    external = pick("external", "extern") or 0.0
    investment = pick("investment", "investitionen") or 0.0
    total = pick("total")
    return Budget(
        internal=internal,
        external=external,
        investment=investment,
        forecast_internal=pick("forecastInternal", "forecastIntern"),
        forecast_external=pick("forecastExternal", "forecastExtern"),
        forecast_investment=pick("forecastInvestment", "forecastInvestitionen"),
        total=internal + external + investment if total is None else total,
    )


def _parse_project(entry: Mapping[str, object], config: EngineConfig) -> Project:
    project_id = _require_id(entry, "id", "projects")
    lifecycle = entry.get("projectStatus")
    health = entry.get("status")
    if isinstance(health, str):
        lifecycle, health = lifecycle or health, None
    if health is not None and not isinstance(health, Mapping):
        raise ValueError(f"project {project_id}: status must be an object or a string")
    health = health or {}
    lifecycle = _optional_str(lifecycle)
    if lifecycle is not None and lifecycle not in PROJECT_STATUSES:
        raise ValueError(f"project {project_id}: unsupported status '{lifecycle}'")
    light = _optional_str(health.get("light"))
    if light is not None and light not in TRAFFIC_LIGHTS:
        raise ValueError(f"project {project_id}: unsupported traffic light '{light}'")
    priority = _parse_optional_number(entry.get("priority"), "priority")
    return Project(
        id=project_id,
        name=str(entry.get("name") or ""),
        start_date=_parse_optional_date(entry.get("startDate"), "startDate"),
        end_date=_parse_optional_date(entry.get("endDate") or entry.get("plannedEndDate"), "endDate"),
        budget=_parse_budget(entry.get("budget")),
        priority=int(priority) if priority is not None else None,
        status=lifecycle,
        manual_override=_parse_bool(
            health.get("manualOverride", entry.get("manualOverride")), "manualOverride", False
        ),
        light=light,
        completed_date=_parse_optional_date(entry.get("completedDate"), "completedDate"),
        sop_baseline_date=_parse_optional_date(entry.get("sopBaselineDate"), "sopBaselineDate"),
        sop_current_date=_parse_optional_date(entry.get("sopCurrentDate"), "sopCurrentDate"),
        sop_change_comment=str(entry.get("sopChangeComment") or ""),
    )


def _parse_member(entry: Mapping[str, object], config: EngineConfig) -> Member:
    employment_level = _parse_optional_number(entry.get("employmentLevel"), "employmentLevel")
    explicit_capacity = _parse_optional_number(entry.get("availableCapacity"), "availableCapacity")
    # Zero capacity on legacy records means "not set"
    if explicit_capacity == 0:
        explicit_capacity = None
    return Member(
        id=_require_id(entry, "id", "members"),
        name=str(entry.get("name") or ""),
        available_capacity=resolve_available_capacity(explicit_capacity, employment_level, config),
        role=str(entry.get("role") or ""),
        competency_group=_optional_str(entry.get("competencyGroup")),
        hourly_rate_internal=_parse_number(entry.get("hourlyRateInternal"), "hourlyRateInternal"),
        employment_level=employment_level,
        active=_parse_bool(entry.get("active"), "active", True),
    )


def _parse_team_member(entry: Mapping[str, object], config: EngineConfig) -> ProjectTeamMember:
    return ProjectTeamMember(
        id=str(entry.get("id") or generate_id()),
        project_id=_require_id(entry, "projectId", "projectTeamMembers"),
        member_id=_require_id(entry, "memberId", "projectTeamMembers"),
        role_in_project=str(entry.get("roleInProject") or ""),
        added_date=_parse_optional_date(entry.get("addedDate"), "addedDate"),
    )


def _parse_booking(entry: Mapping[str, object], config: EngineConfig) -> ResourceBooking:
    booking_id = _require_id(entry, "id", "resourceBookings")
    start = _parse_required_date(entry.get("startDate"), f"resourceBookings[{booking_id}].startDate")
    end = _parse_required_date(entry.get("endDate"), f"resourceBookings[{booking_id}].endDate")
    return ResourceBooking(
        id=booking_id,
        project_id=_require_id(entry, "projectId", "resourceBookings"),
        member_id=_require_id(entry, "memberId", "resourceBookings"),
        start_date=start,
        end_date=end,
        capacity_percent=_parse_number(entry.get("capacityPercent"), "capacityPercent"),
        description=str(entry.get("description") or ""),
    )


def _parse_dependencies(raw: object, task_id: str) -> Tuple[Dependency, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError(f"task {task_id}: dependencies must be an array")
    seen = set()
    parsed: List[Dependency] = []
    for item in raw:
        if isinstance(item, Mapping):
            target = _optional_str(item.get("task"))
            dep_type = str(item.get("type") or "FS")
        else:
            target = _optional_str(item)
            dep_type = "FS"
        if target is None:
            continue
        if dep_type != "FS":
            raise ValueError(f"task {task_id}: unsupported dependency type '{dep_type}'")
        if target in seen:
            continue
        seen.add(target)
        parsed.append(Dependency(task=target, type=dep_type))
    return tuple(parsed)


def _parse_task(entry: Mapping[str, object], config: EngineConfig) -> Task:
    task_id = _require_id(entry, "id", "tasks")
    start = _parse_optional_date(entry.get("startDate"), "startDate")
    end = _parse_optional_date(entry.get("endDate") or entry.get("dueDate"), "endDate")
    duration = _parse_optional_number(entry.get("duration"), "duration")
    if not duration:
        duration = float(span_in_days(start, end))
    progress = _parse_number(entry.get("progress"), "progress")
    if progress not in PROGRESS_STEPS:
        steps = ", ".join(str(step) for step in PROGRESS_STEPS)
        raise ValueError(f"task {task_id}: progress must be one of {steps}, got {progress:g}")
    return Task(
        id=task_id,
        project_id=_require_id(entry, "projectId", "tasks"),
        name=str(entry.get("name") or ""),
        duration=duration,
        start_date=start,
        end_date=end,
        status=str(entry.get("status") or "open"),
        priority=_optional_str(entry.get("priority")),
        responsible=_optional_str(entry.get("responsible")),
        progress=int(progress),
        dependencies=_parse_dependencies(entry.get("dependencies"), task_id),
        description=str(entry.get("description") or ""),
    )


def _parse_milestone(entry: Mapping[str, object], config: EngineConfig) -> Milestone:
    return Milestone(
        id=_require_id(entry, "id", "milestones"),
        project_id=_require_id(entry, "projectId", "milestones"),
        name=str(entry.get("name") or ""),
        due_date=_parse_optional_date(entry.get("date"), "date"),
        status=str(entry.get("status") or "pending"),
        phase=_optional_str(entry.get("phase")),
        description=str(entry.get("description") or ""),
    )


def _parse_risk(entry: Mapping[str, object], config: EngineConfig) -> Risk:
    return Risk(
        id=_require_id(entry, "id", "risks"),
        project_id=_require_id(entry, "projectId", "risks"),
        title=str(entry.get("title") or ""),
        probability=_optional_str(entry.get("probability")),
        impact=_optional_str(entry.get("impact")),
        category=_optional_str(entry.get("category")),
        status=str(entry.get("status") or "open"),
        mitigation=str(entry.get("mitigation") or ""),
        owner=_optional_str(entry.get("owner")),
    )


def _parse_cost(entry: Mapping[str, object], config: EngineConfig) -> Cost:
    cost_id = _require_id(entry, "id", "costs")
    cost_type = str(entry.get("type") or "")
    if cost_type not in COST_TYPES:
        raise ValueError(f"cost {cost_id}: unsupported type '{cost_type}'")
    incurred_on = _parse_optional_date(entry.get("date"), "date")
    raw_payments = entry.get("partialPayments")
    if raw_payments is None and not _is_missing(entry.get("partialAmount")):
        # Older documents stored a single partial amount
        raw_payments = [{"date": entry.get("date"), "amount": entry.get("partialAmount")}]
    if raw_payments is not None and not isinstance(raw_payments, list):
        raise ValueError(f"cost {cost_id}: partialPayments must be an array")
    payments = tuple(
        PartialPayment(
            paid_on=_parse_optional_date(item.get("date"), "partialPayments.date"),
            amount=_parse_number(item.get("amount"), "partialPayments.amount"),
        )
        for item in raw_payments or []
        if isinstance(item, Mapping)
    )
    return Cost(
        id=cost_id,
        project_id=_require_id(entry, "projectId", "costs"),
        type=cost_type,
        amount=_parse_number(entry.get("amount"), "amount"),
        incurred_on=incurred_on,
        status=_optional_str(entry.get("status")),
        description=str(entry.get("description") or ""),
        partial_payments=payments,
    )


def _parse_phase_template(entry: Mapping[str, object], config: EngineConfig) -> PhaseTemplate:
    return PhaseTemplate(
        id=str(entry.get("id") or generate_id()),
        name=str(entry.get("name") or ""),
        phases=tuple(dict(item) for item in entry.get("phases") or [] if isinstance(item, Mapping)),
        default_milestones=tuple(
            dict(item) for item in entry.get("defaultMilestones") or [] if isinstance(item, Mapping)
        ),
    )


def _parse_collection(
    document: Mapping[str, object],
    key: str,
    parse: Callable[[Mapping[str, object], EngineConfig], T],
    config: EngineConfig,
) -> List[T]:
    raw = document.get(key)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"'{key}' must be a JSON array")
    items: List[T] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise ValueError(f"'{key}' entries must be objects")
        items.append(parse(entry, config))
    return items


def default_phase_template() -> PhaseTemplate:
    return _parse_phase_template(DEFAULT_PHASE_TEMPLATE, EngineConfig())


def parse_state(document: object, config: Optional[EngineConfig] = None) -> PortfolioState:
    """Build a ``PortfolioState`` from the persisted document, resolving defaults once."""
    if not isinstance(document, Mapping):
        raise ValueError("state document must be a JSON object")
    cfg = config or EngineConfig()
    state = PortfolioState(
        projects=_parse_collection(document, "projects", _parse_project, cfg),
        members=_parse_collection(document, "members", _parse_member, cfg),
        project_team_members=_parse_collection(document, "projectTeamMembers", _parse_team_member, cfg),
        costs=_parse_collection(document, "costs", _parse_cost, cfg),
        milestones=_parse_collection(document, "milestones", _parse_milestone, cfg),
        risks=_parse_collection(document, "risks", _parse_risk, cfg),
        tasks=_parse_collection(document, "tasks", _parse_task, cfg),
        phase_templates=_parse_collection(document, "phaseTemplates", _parse_phase_template, cfg),
        resource_bookings=_parse_collection(document, "resourceBookings", _parse_booking, cfg),
    )
    if not state.phase_templates:
        state.phase_templates.append(default_phase_template())
    logger.debug(
        "parsed state: %d projects, %d members, %d bookings, %d tasks",
        len(state.projects),
        len(state.members),
        len(state.resource_bookings),
        len(state.tasks),
    )
    return state


def _project_to_dict(project: Project) -> Dict[str, object]:
    budget = project.budget
    return {
        "id": project.id,
        "name": project.name,
        "startDate": _format_date(project.start_date),
        "endDate": _format_date(project.end_date),
        "budget": {
            "internal": budget.internal,
            "external": budget.external,
            "investment": budget.investment,
            "forecastInternal": budget.forecast_internal,
            "forecastExternal": budget.forecast_external,
            "forecastInvestment": budget.forecast_investment,
            "total": budget.total,
        },
        "priority": project.priority,
        "projectStatus": project.status,
        "status": {"light": project.light, "manualOverride": project.manual_override},
        "completedDate": _format_date(project.completed_date),
        "sopBaselineDate": _format_date(project.sop_baseline_date),
        "sopCurrentDate": _format_date(project.sop_current_date),
        "sopChangeComment": project.sop_change_comment,
    }


def _member_to_dict(member: Member) -> Dict[str, object]:
    return {
        "id": member.id,
        "name": member.name,
        "role": member.role,
        "competencyGroup": member.competency_group,
        "hourlyRateInternal": member.hourly_rate_internal,
        "employmentLevel": member.employment_level,
        "availableCapacity": member.available_capacity,
        "active": member.active,
    }


def _team_member_to_dict(item: ProjectTeamMember) -> Dict[str, object]:
    return {
        "id": item.id,
        "projectId": item.project_id,
        "memberId": item.member_id,
        "roleInProject": item.role_in_project,
        "addedDate": _format_date(item.added_date),
    }


def _booking_to_dict(booking: ResourceBooking) -> Dict[str, object]:
    return {
        "id": booking.id,
        "projectId": booking.project_id,
        "memberId": booking.member_id,
        "startDate": _format_date(booking.start_date),
        "endDate": _format_date(booking.end_date),
        "capacityPercent": booking.capacity_percent,
        "description": booking.description,
    }


def _task_to_dict(task: Task) -> Dict[str, object]:
    return {
        "id": task.id,
        "projectId": task.project_id,
        "name": task.name,
        "description": task.description,
        "startDate": _format_date(task.start_date),
        "endDate": _format_date(task.end_date),
        "duration": task.duration,
        "status": task.status,
        "priority": task.priority,
        "responsible": task.responsible,
        "progress": task.progress,
        "dependencies": [{"task": dep.task, "type": dep.type} for dep in task.dependencies],
    }


def _milestone_to_dict(milestone: Milestone) -> Dict[str, object]:
    return {
        "id": milestone.id,
        "projectId": milestone.project_id,
        "name": milestone.name,
        "date": _format_date(milestone.due_date),
        "status": milestone.status,
        "phase": milestone.phase,
        "description": milestone.description,
    }


def _risk_to_dict(risk: Risk) -> Dict[str, object]:
    return {
        "id": risk.id,
        "projectId": risk.project_id,
        "title": risk.title,
        "probability": risk.probability,
        "impact": risk.impact,
        "category": risk.category,
        "status": risk.status,
        "mitigation": risk.mitigation,
        "owner": risk.owner,
    }


def _cost_to_dict(cost: Cost) -> Dict[str, object]:
    return {
        "id": cost.id,
        "projectId": cost.project_id,
        "date": _format_date(cost.incurred_on),
        "type": cost.type,
        "amount": cost.amount,
        "status": cost.status,
        "description": cost.description,
        "partialPayments": [
            {"date": _format_date(item.paid_on), "amount": item.amount} for item in cost.partial_payments
        ],
    }


def _phase_template_to_dict(template: PhaseTemplate) -> Dict[str, object]:
    return {
        "id": template.id,
        "name": template.name,
        "phases": [dict(item) for item in template.phases],
        "defaultMilestones": [dict(item) for item in template.default_milestones],
    }


def state_to_document(state: PortfolioState) -> Dict[str, List[Dict[str, object]]]:
    return {
        "projects": [_project_to_dict(item) for item in state.projects],
        "members": [_member_to_dict(item) for item in state.members],
        "projectTeamMembers": [_team_member_to_dict(item) for item in state.project_team_members],
        "costs": [_cost_to_dict(item) for item in state.costs],
        "milestones": [_milestone_to_dict(item) for item in state.milestones],
        "risks": [_risk_to_dict(item) for item in state.risks],
        "tasks": [_task_to_dict(item) for item in state.tasks],
        "phaseTemplates": [_phase_template_to_dict(item) for item in state.phase_templates],
        "resourceBookings": [_booking_to_dict(item) for item in state.resource_bookings],
    }


def load_state(path: str | Path, config: Optional[EngineConfig] = None) -> PortfolioState:
    text = Path(path).read_text()
    if not text.strip():
        return parse_state(empty_document(), config)
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"state file {path} is not valid JSON") from exc
    return parse_state(document, config)


def save_state(state: PortfolioState, path: str | Path) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(state_to_document(state), indent=2))


def _require_number(data: Mapping[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(data: Mapping[str, object], key: str, default: int, minimum: int = 0) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    if value < minimum:
        raise ValueError(f"{key} must be at least {minimum}")
    return value


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    """Read engine settings; every key is optional and falls back to ``EngineConfig``."""
    if path is None:
        return EngineConfig()
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config must be a JSON object")
    defaults = EngineConfig()
    known = {item.name for item in fields(EngineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("ignoring unknown config keys: %s", ", ".join(unknown))

    default_capacity = _require_number(data, "default_available_capacity", defaults.default_available_capacity)
    if not (0 < default_capacity <= 100):
        raise ValueError("default_available_capacity must be in (0, 100]")
    billable_factor = _require_number(data, "billable_factor", defaults.billable_factor)
    if not (0 < billable_factor <= 1):
        raise ValueError("billable_factor must be in (0, 1]")
    hours_per_day = _require_number(data, "hours_per_day", defaults.hours_per_day)
    if hours_per_day <= 0:
        raise ValueError("hours_per_day must be positive")
    working_days = _require_int(data, "working_days_per_week", defaults.working_days_per_week, minimum=1)
    if working_days > 7:
        raise ValueError("working_days_per_week must not exceed 7")

    unassigned_group = data.get("unassigned_group", defaults.unassigned_group)
    if not isinstance(unassigned_group, str) or not unassigned_group.strip():
        raise ValueError("unassigned_group must be a non-empty string")

    red_variance = _require_number(data, "red_variance_pct", defaults.red_variance_pct)
    yellow_variance = _require_number(data, "yellow_variance_pct", defaults.yellow_variance_pct)
    if yellow_variance > red_variance:
        raise ValueError("yellow_variance_pct must not exceed red_variance_pct")
    red_risks = _require_int(data, "red_high_risks", defaults.red_high_risks)
    yellow_risks = _require_int(data, "yellow_high_risks", defaults.yellow_high_risks)
    if yellow_risks > red_risks:
        raise ValueError("yellow_high_risks must not exceed red_high_risks")

    impacts = data.get("high_risk_impacts", list(defaults.high_risk_impacts))
    if not isinstance(impacts, list) or not all(isinstance(item, str) for item in impacts):
        raise ValueError("high_risk_impacts must be an array of strings")

    logging_level = data.get("logging_level", defaults.logging_level)
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")

    return EngineConfig(
        default_available_capacity=default_capacity,
        billable_factor=billable_factor,
        hours_per_day=hours_per_day,
        working_days_per_week=working_days,
        unassigned_group=unassigned_group,
        timeline_weeks_before=_require_int(data, "timeline_weeks_before", defaults.timeline_weeks_before),
        timeline_weeks_after=_require_int(data, "timeline_weeks_after", defaults.timeline_weeks_after),
        red_variance_pct=red_variance,
        yellow_variance_pct=yellow_variance,
        red_high_risks=red_risks,
        yellow_high_risks=yellow_risks,
        yellow_days_remaining=_require_int(data, "yellow_days_remaining", defaults.yellow_days_remaining),
        high_risk_impacts=tuple(impacts),
        logging_level=logging_level,
    )


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
