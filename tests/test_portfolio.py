from datetime import date

import pytest

from conftest import make_booking, make_project
from portfolio_tracker.portfolio import (
    TeamMembershipError,
    active_projects,
    add_booking,
    add_to_project_team,
    is_in_project_team,
    member_bookings,
    project_bookings,
    project_team,
    remove_booking,
    remove_from_project_team,
    set_project_status,
    visible_projects,
)


def test_active_and_visible_projects(state):
    state.projects.append(make_project("p3", status=None))
    state.projects.append(make_project("p4", status="completed"))

    assert [p.id for p in active_projects(state.projects)] == ["p1", "p3"]
    assert [p.id for p in visible_projects(state.projects)] == ["p1", "p3", "p4"]
    assert len(visible_projects(state.projects, include_archived=True)) == 4


def test_add_to_project_team_is_idempotent(state, today):
    assert add_to_project_team(state, "p1", "ben", role_in_project="Reviewer", today=today) is True
    assert add_to_project_team(state, "p1", "ben", today=today) is False

    added = [item for item in project_team(state, "p1") if item.member_id == "ben"]
    assert len(added) == 1
    assert added[0].role_in_project == "Reviewer"
    assert added[0].added_date == today


def test_removing_team_member_cascades(state):
    assert remove_from_project_team(state, "p1", "anna") is True

    assert not is_in_project_team(state, "p1", "anna")
    # membership and bookings on the other project are untouched
    assert is_in_project_team(state, "p2", "anna")
    assert [b.id for b in member_bookings(state, "anna")] == ["b2"]
    assert [b.id for b in project_bookings(state, "p1")] == ["b3"]
    task_c = next(task for task in state.tasks if task.id == "c")
    assert task_c.responsible is None


def test_removing_non_member_is_a_no_op(state):
    bookings = list(state.resource_bookings)
    assert remove_from_project_team(state, "p1", "ben") is False
    assert state.resource_bookings == bookings


def test_booking_requires_team_membership(state):
    booking = make_booking("b4", "p1", "ben", date(2026, 10, 1), date(2026, 10, 31), 20)
    with pytest.raises(TeamMembershipError) as excinfo:
        add_booking(state, booking)
    assert excinfo.value.member_id == "ben"

    add_to_project_team(state, "p1", "ben")
    assert add_booking(state, booking) is booking
    assert [b.id for b in member_bookings(state, "ben")] == ["b4"]


def test_booking_must_not_end_before_start(state):
    booking = make_booking("b4", "p1", "anna", date(2026, 10, 31), date(2026, 10, 1), 20)
    with pytest.raises(ValueError, match="ends before it starts"):
        add_booking(state, booking)


def test_remove_booking(state):
    assert remove_booking(state, "b1") is True
    assert remove_booking(state, "b1") is False
    assert [b.id for b in state.resource_bookings] == ["b2", "b3"]


def test_completion_date_is_set_once(state, today):
    assert set_project_status(state, "p1", "completed", today=today) is True
    assert state.get_project("p1").completed_date == today

    assert set_project_status(state, "p1", "archived", today=date(2027, 1, 1)) is True
    project = state.get_project("p1")
    assert project.status == "archived"
    assert project.completed_date == today


def test_unknown_status_or_project(state):
    assert set_project_status(state, "p1", "paused") is False
    assert set_project_status(state, "nope", "completed") is False
    assert state.get_project("p1").status == "active"
