from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional, Sequence

from .engine import DEFAULT_CONFIG, forecast_from_bookings
from .models import Cost, EngineConfig, Member, Project, ResourceBooking, Risk

DAYS_PER_MONTH = 30.44

CATEGORY_COST_TYPES: Dict[str, str] = {
    "internal": "internal_hours",
    "external": "external_service",
    "investment": "investment",
}


@dataclass(frozen=True)
class CategoryCosts:
    budget: float
    actual: float
    forecast: float

    def to_dict(self) -> Dict[str, float]:
        return {"budget": self.budget, "actual": self.actual, "forecast": self.forecast}


def costs_by_category(
    project: Project,
    *,
    costs: Sequence[Cost],
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Dict[str, CategoryCosts]:
    """
    Budget, actual and forecast per cost category.

    Partial payments never count towards ``actual``. The internal forecast
    comes from the staffing plan whenever the project has bookings.
    """
    project_costs = [cost for cost in costs if cost.project_id == project.id]
    budgets = project.budget.category_budgets()
    forecasts = project.budget.manual_forecasts()
    if any(booking.project_id == project.id for booking in bookings):
        forecasts["internal"] = forecast_from_bookings(
            project.id, members=members, bookings=bookings, config=config
        )
    result: Dict[str, CategoryCosts] = {}
    for category, cost_type in CATEGORY_COST_TYPES.items():
        actual = sum(cost.amount for cost in project_costs if cost.type == cost_type)
        result[category] = CategoryCosts(
            budget=float(budgets[category]),
            actual=float(actual),
            forecast=float(forecasts[category]),
        )
    return result


def budget_variance(forecast_total: float, budget_total: float) -> float:
    """Forecast overrun in percent of budget; 0 without a budget."""
    if budget_total <= 0:
        return 0.0
    return (forecast_total - budget_total) / budget_total * 100


def burn_rate(project: Project, *, costs: Sequence[Cost], today: Optional[date] = None) -> float:
    """Actual cost per month since project start."""
    total_actual = sum(cost.amount for cost in costs if cost.project_id == project.id)
    if project.start_date is None:
        return float(total_actual)
    today = today or date.today()
    months_elapsed = max(1.0, (today - project.start_date).days / DAYS_PER_MONTH)
    return total_actual / months_elapsed


def high_risk_count(project_id: str, risks: Sequence[Risk], config: EngineConfig = DEFAULT_CONFIG) -> int:
    return sum(1 for risk in risks if risk.project_id == project_id and risk.impact in config.high_risk_impacts)


def days_remaining(project: Project, today: Optional[date] = None) -> Optional[int]:
    if project.end_date is None:
        return None
    today = today or date.today()
    return (project.end_date - today).days


def classify_health(
    variance_pct: float,
    high_risks: int,
    remaining_days: Optional[int],
    config: EngineConfig = DEFAULT_CONFIG,
) -> str:
    # Thresholds are strict: exactly 15 % variance is still yellow
    overdue = remaining_days is not None and remaining_days < 0
    if variance_pct > config.red_variance_pct or high_risks > config.red_high_risks or overdue:
        return "red"
    closing = remaining_days is not None and remaining_days < config.yellow_days_remaining
    if variance_pct > config.yellow_variance_pct or high_risks > config.yellow_high_risks or closing:
        return "yellow"
    return "green"


def project_health(
    project: Project,
    *,
    costs: Sequence[Cost],
    risks: Sequence[Risk],
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    config: EngineConfig = DEFAULT_CONFIG,
    today: Optional[date] = None,
) -> Optional[str]:
    """Traffic light for ``project``; a manual override keeps the stored light."""
    if project.manual_override:
        return project.light
    categories = costs_by_category(project, costs=costs, members=members, bookings=bookings, config=config)
    forecast_total = sum(item.forecast for item in categories.values())
    variance = budget_variance(forecast_total, project.budget.total)
    return classify_health(
        variance,
        high_risk_count(project.id, risks, config),
        days_remaining(project, today),
        config,
    )
