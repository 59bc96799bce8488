from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple


ProjectStatus = str
CostType = str

PROJECT_STATUSES: Tuple[ProjectStatus, ...] = ("active", "completed", "archived")
COST_TYPES: Tuple[CostType, ...] = ("internal_hours", "external_service", "investment")
TRAFFIC_LIGHTS: Tuple[str, ...] = ("green", "yellow", "red")
PROGRESS_STEPS: Tuple[int, ...] = (0, 25, 50, 75, 100)


@dataclass(frozen=True)
class EngineConfig:
    default_available_capacity: float = 80.0
    billable_factor: float = 0.8
    hours_per_day: float = 8.0
    working_days_per_week: int = 5
    unassigned_group: str = "unassigned"
    timeline_weeks_before: int = 4
    timeline_weeks_after: int = 4
    red_variance_pct: float = 15.0
    yellow_variance_pct: float = 5.0
    red_high_risks: int = 3
    yellow_high_risks: int = 1
    yellow_days_remaining: int = 30
    high_risk_impacts: Tuple[str, ...] = ("high", "critical")
    logging_level: str = "INFO"

    @property
    def working_day_ratio(self) -> float:
        return self.working_days_per_week / 7

    def timeline_week_count(self) -> int:
        return self.timeline_weeks_before + 1 + self.timeline_weeks_after


@dataclass(frozen=True)
class Budget:
    internal: float = 0.0
    external: float = 0.0
    investment: float = 0.0
    forecast_internal: Optional[float] = None
    forecast_external: Optional[float] = None
    forecast_investment: Optional[float] = None
    total: float = 0.0

    def manual_forecasts(self) -> Dict[str, float]:
        """Manual forecast per category; an unset or zero forecast falls back to the category budget."""
        return {
            "internal": self.forecast_internal or self.internal,
            "external": self.forecast_external or self.external,
            "investment": self.forecast_investment or self.investment,
        }

    def category_budgets(self) -> Dict[str, float]:
        return {"internal": self.internal, "external": self.external, "investment": self.investment}


@dataclass(frozen=True)
class Project:
    """Portfolio entry; everything else hangs off its id."""

    id: str
    name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Budget = field(default_factory=Budget)
    priority: Optional[int] = None
    status: Optional[ProjectStatus] = None
    manual_override: bool = False
    light: Optional[str] = None
    completed_date: Optional[date] = None
    sop_baseline_date: Optional[date] = None
    sop_current_date: Optional[date] = None
    sop_change_comment: str = ""

    @property
    def is_active(self) -> bool:
        # Legacy records without a status count as active
        return self.status is None or self.status == "active"

    def overlaps(self, start: date, end: date) -> bool:
        if self.start_date is None or self.end_date is None:
            return False
        return self.start_date <= end and self.end_date >= start


@dataclass(frozen=True)
class Member:
    """Global resource. ``available_capacity`` is billable percent of full time."""

    id: str
    name: str
    available_capacity: float
    role: str = ""
    competency_group: Optional[str] = None
    hourly_rate_internal: float = 0.0
    employment_level: Optional[float] = None
    active: bool = True

    @property
    def available_fte(self) -> float:
        return self.available_capacity / 100

    def booking_fte(self, capacity_percent: float) -> float:
        return (capacity_percent / 100) * self.available_fte


def resolve_available_capacity(
    explicit: Optional[float], employment_level: Optional[float], config: EngineConfig
) -> float:
    if explicit is not None:
        return float(explicit)
    if employment_level is not None:
        return float(employment_level) * config.billable_factor
    return config.default_available_capacity


@dataclass(frozen=True)
class ProjectTeamMember:
    id: str
    project_id: str
    member_id: str
    role_in_project: str = ""
    added_date: Optional[date] = None


@dataclass(frozen=True)
class ResourceBooking:
    id: str
    project_id: str
    member_id: str
    start_date: date
    end_date: date
    capacity_percent: float
    description: str = ""

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date <= end and self.end_date >= start

    def duration_days(self) -> int:
        """Calendar days covered, both endpoints included."""
        return (self.end_date - self.start_date).days + 1


@dataclass(frozen=True)
class Dependency:
    task: str
    type: str = "FS"


def span_in_days(start: Optional[date], end: Optional[date]) -> int:
    if start is None or end is None:
        return 1
    return max(1, math.ceil(abs((end - start).days)))


@dataclass(frozen=True)
class Task:
    id: str
    project_id: str
    name: str
    duration: float
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str = "open"
    priority: Optional[str] = None
    responsible: Optional[str] = None
    progress: int = 0
    dependencies: Tuple[Dependency, ...] = ()
    description: str = ""

    def dependency_ids(self) -> List[str]:
        return [dep.task for dep in self.dependencies]


@dataclass(frozen=True)
class Milestone:
    id: str
    project_id: str
    name: str
    due_date: Optional[date] = None
    status: str = "pending"
    phase: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class Risk:
    id: str
    project_id: str
    title: str
    probability: Optional[str] = None
    impact: Optional[str] = None
    category: Optional[str] = None
    status: str = "open"
    mitigation: str = ""
    owner: Optional[str] = None


@dataclass(frozen=True)
class PartialPayment:
    paid_on: Optional[date]
    amount: float


@dataclass(frozen=True)
class Cost:
    id: str
    project_id: str
    type: CostType
    amount: float
    incurred_on: Optional[date] = None
    status: Optional[str] = None
    description: str = ""
    partial_payments: Tuple[PartialPayment, ...] = ()


@dataclass(frozen=True)
class PhaseTemplate:
    id: str
    name: str
    phases: Tuple[Dict[str, object], ...] = ()
    default_milestones: Tuple[Dict[str, object], ...] = ()


@dataclass
class PortfolioState:
    """Whole-document snapshot; engines read slices of it, never the container."""

    projects: List[Project] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    project_team_members: List[ProjectTeamMember] = field(default_factory=list)
    costs: List[Cost] = field(default_factory=list)
    milestones: List[Milestone] = field(default_factory=list)
    risks: List[Risk] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    phase_templates: List[PhaseTemplate] = field(default_factory=list)
    resource_bookings: List[ResourceBooking] = field(default_factory=list)

    def get_project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self.projects if p.id == project_id), None)


def generate_id() -> str:
    return f"id_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
