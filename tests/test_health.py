from datetime import date

import pytest

from conftest import make_booking, make_member, make_project
from portfolio_tracker.health import (
    budget_variance,
    burn_rate,
    classify_health,
    costs_by_category,
    days_remaining,
    high_risk_count,
    project_health,
)
from portfolio_tracker.models import Budget, Cost, PartialPayment, Risk


def _risk(risk_id, impact, project_id="p"):
    return Risk(id=risk_id, project_id=project_id, title=f"Risk {risk_id}", impact=impact)


@pytest.mark.parametrize(
    "variance,expected",
    [(0, "green"), (5, "green"), (5.01, "yellow"), (15, "yellow"), (16, "red"), (20, "red")],
)
def test_variance_thresholds_are_strict(variance, expected):
    assert classify_health(variance, 0, 60) == expected


@pytest.mark.parametrize("risks,expected", [(1, "green"), (2, "yellow"), (3, "yellow"), (4, "red")])
def test_high_risk_thresholds(risks, expected):
    assert classify_health(0, risks, 60) == expected


@pytest.mark.parametrize("remaining,expected", [(None, "green"), (30, "green"), (29, "yellow"), (0, "yellow"), (-1, "red")])
def test_days_remaining_thresholds(remaining, expected):
    assert classify_health(0, 0, remaining) == expected


def test_budget_variance_without_budget_is_zero():
    assert budget_variance(5000, 0) == 0
    assert budget_variance(120000, 100000) == 20


def test_overrun_of_twenty_percent_is_red(today):
    budget = Budget(
        internal=50000, external=30000, investment=20000,
        forecast_internal=60000, forecast_external=40000, total=100000,
    )
    project = make_project("p", budget=budget, end=date(2026, 12, 18))

    assert days_remaining(project, today) == 60
    assert (
        project_health(project, costs=[], risks=[], members=[], bookings=[], today=today)
        == "red"
    )


def test_on_budget_project_with_time_left_is_green(today):
    project = make_project("p", budget=Budget(internal=100000, total=100000), end=date(2027, 6, 30))
    risks = [_risk("r1", "high"), _risk("r2", "low"), _risk("r3", "critical", project_id="other")]

    assert high_risk_count("p", risks) == 1
    assert project_health(project, costs=[], risks=risks, members=[], bookings=[], today=today) == "green"


def test_manual_override_keeps_stored_light(today):
    project = make_project("p", manual_override=True, light="green", end=date(2020, 1, 1))
    risks = [_risk(str(idx), "critical") for idx in range(5)]

    assert project_health(project, costs=[], risks=risks, members=[], bookings=[], today=today) == "green"


def test_missing_end_date_has_no_remaining_days(today):
    project = make_project("p", end=None)
    assert days_remaining(project, today) is None


def test_actual_costs_ignore_partial_payments():
    project = make_project("p", budget=Budget(internal=1000, external=2000, investment=500, total=3500))
    costs = [
        Cost(
            id="c1",
            project_id="p",
            type="external_service",
            amount=1200,
            partial_payments=(PartialPayment(paid_on=date(2026, 2, 1), amount=400),),
        ),
        Cost(id="c2", project_id="p", type="investment", amount=300),
        Cost(id="c3", project_id="other", type="investment", amount=999),
    ]
    categories = costs_by_category(project, costs=costs, members=[], bookings=[])

    assert categories["external"].actual == 1200
    assert categories["investment"].actual == 300
    assert categories["internal"].actual == 0
    # no manual forecasts: each category falls back to its budget
    assert categories["external"].forecast == 2000


def test_bookings_replace_internal_forecast():
    project = make_project("p", budget=Budget(internal=1000, forecast_internal=9999, total=1000))
    members = [make_member("m", hourly_rate_internal=100.0)]
    bookings = [make_booking("b", "p", "m", date(2026, 1, 5), date(2026, 1, 11), 50)]
    categories = costs_by_category(project, costs=[], members=members, bookings=bookings)

    assert categories["internal"].forecast == 1600
    assert categories["internal"].budget == 1000


def test_manual_forecast_used_without_bookings():
    project = make_project("p", budget=Budget(internal=1000, forecast_internal=1500, total=1000))
    categories = costs_by_category(project, costs=[], members=[], bookings=[])
    assert categories["internal"].forecast == 1500


def test_burn_rate_spreads_actuals_over_elapsed_months():
    project = make_project("p", start=date(2026, 1, 1))
    costs = [Cost(id="c", project_id="p", type="investment", amount=3044)]

    # 304 days elapsed
    assert burn_rate(project, costs=costs, today=date(2026, 11, 1)) == pytest.approx(3044 / (304 / 30.44))
    # never divides by less than a month
    assert burn_rate(project, costs=costs, today=date(2026, 1, 10)) == 3044
