from datetime import date

import pytest

from portfolio_tracker.models import (
    Budget,
    Dependency,
    Member,
    PortfolioState,
    Project,
    ProjectTeamMember,
    ResourceBooking,
    Task,
)


def make_member(member_id, available_capacity=80.0, **kwargs):
    kwargs.setdefault("name", member_id.title())
    return Member(id=member_id, available_capacity=available_capacity, **kwargs)


def make_project(project_id, status="active", start=date(2026, 1, 1), end=date(2026, 12, 31), **kwargs):
    kwargs.setdefault("name", f"Project {project_id}")
    kwargs.setdefault("budget", Budget())
    return Project(id=project_id, status=status, start_date=start, end_date=end, **kwargs)


def make_booking(booking_id, project_id, member_id, start, end, capacity_percent):
    return ResourceBooking(
        id=booking_id,
        project_id=project_id,
        member_id=member_id,
        start_date=start,
        end_date=end,
        capacity_percent=capacity_percent,
    )


def make_task(task_id, duration, depends_on=(), project_id="p1"):
    return Task(
        id=task_id,
        project_id=project_id,
        name=f"Task {task_id}",
        duration=duration,
        dependencies=tuple(Dependency(task=dep) for dep in depends_on),
    )


@pytest.fixture
def today():
    # A Monday
    return date(2026, 10, 19)


@pytest.fixture
def state():
    """Two projects, one archived, with a shared member booked on both."""
    members = [
        make_member("anna", competency_group="dev", hourly_rate_internal=100.0),
        make_member("ben", available_capacity=40.0, competency_group="dev"),
        make_member("cara"),
    ]
    projects = [make_project("p1"), make_project("p2", status="archived")]
    team = [
        ProjectTeamMember(id="t1", project_id="p1", member_id="anna"),
        ProjectTeamMember(id="t2", project_id="p2", member_id="anna"),
        ProjectTeamMember(id="t3", project_id="p1", member_id="cara"),
    ]
    bookings = [
        make_booking("b1", "p1", "anna", date(2026, 10, 1), date(2026, 10, 31), 50),
        make_booking("b2", "p2", "anna", date(2026, 10, 1), date(2026, 10, 31), 30),
        make_booking("b3", "p1", "cara", date(2026, 11, 1), date(2026, 11, 30), 25),
    ]
    tasks = [
        make_task("a", 3),
        make_task("b", 2, depends_on=["a"]),
        Task(id="c", project_id="p1", name="Task c", duration=1, responsible="anna"),
    ]
    return PortfolioState(
        projects=projects,
        members=members,
        project_team_members=team,
        resource_bookings=bookings,
        tasks=tasks,
    )
