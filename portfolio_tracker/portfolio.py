from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import List, Optional, Sequence

from .models import (
    PROJECT_STATUSES,
    PortfolioState,
    Project,
    ProjectTeamMember,
    ResourceBooking,
    Task,
    generate_id,
)

logger = logging.getLogger(__name__)


class TeamMembershipError(ValueError):
    def __init__(self, project_id: str, member_id: str) -> None:
        super().__init__(f"member {member_id} is not on the team of project {project_id}")
        self.project_id = project_id
        self.member_id = member_id


def active_projects(projects: Sequence[Project]) -> List[Project]:
    return [project for project in projects if project.is_active]


def visible_projects(projects: Sequence[Project], include_archived: bool = False) -> List[Project]:
    if include_archived:
        return list(projects)
    return [project for project in projects if project.status != "archived"]


def project_tasks(state: PortfolioState, project_id: str) -> List[Task]:
    return [task for task in state.tasks if task.project_id == project_id]


def project_team(state: PortfolioState, project_id: str) -> List[ProjectTeamMember]:
    return [item for item in state.project_team_members if item.project_id == project_id]


def project_bookings(state: PortfolioState, project_id: str) -> List[ResourceBooking]:
    return [booking for booking in state.resource_bookings if booking.project_id == project_id]


def member_bookings(state: PortfolioState, member_id: str) -> List[ResourceBooking]:
    return [booking for booking in state.resource_bookings if booking.member_id == member_id]


def is_in_project_team(state: PortfolioState, project_id: str, member_id: str) -> bool:
    return any(
        item.project_id == project_id and item.member_id == member_id for item in state.project_team_members
    )


def add_to_project_team(
    state: PortfolioState,
    project_id: str,
    member_id: str,
    role_in_project: str = "",
    today: Optional[date] = None,
) -> bool:
    """Add a member to a project team; False when the pair already exists."""
    if is_in_project_team(state, project_id, member_id):
        return False
    state.project_team_members.append(
        ProjectTeamMember(
            id=generate_id(),
            project_id=project_id,
            member_id=member_id,
            role_in_project=role_in_project,
            added_date=today or date.today(),
        )
    )
    return True


def remove_from_project_team(state: PortfolioState, project_id: str, member_id: str) -> bool:
    """
    Drop a member from a project team together with their bookings on that
    project. Tasks they were responsible for stay, unassigned.
    """
    if not is_in_project_team(state, project_id, member_id):
        return False
    state.project_team_members = [
        item
        for item in state.project_team_members
        if not (item.project_id == project_id and item.member_id == member_id)
    ]
    before = len(state.resource_bookings)
    state.resource_bookings = [
        booking
        for booking in state.resource_bookings
        if not (booking.project_id == project_id and booking.member_id == member_id)
    ]
    unassigned = 0
    tasks: List[Task] = []
    for task in state.tasks:
        if task.project_id == project_id and task.responsible == member_id:
            task = replace(task, responsible=None)
            unassigned += 1
        tasks.append(task)
    state.tasks = tasks
    logger.info(
        "removed member %s from project %s (%d bookings deleted, %d tasks unassigned)",
        member_id,
        project_id,
        before - len(state.resource_bookings),
        unassigned,
    )
    return True


def add_booking(state: PortfolioState, booking: ResourceBooking) -> ResourceBooking:
    if not is_in_project_team(state, booking.project_id, booking.member_id):
        raise TeamMembershipError(booking.project_id, booking.member_id)
    if booking.end_date < booking.start_date:
        raise ValueError(f"booking {booking.id} ends before it starts")
    state.resource_bookings.append(booking)
    return booking


def remove_booking(state: PortfolioState, booking_id: str) -> bool:
    remaining = [booking for booking in state.resource_bookings if booking.id != booking_id]
    if len(remaining) == len(state.resource_bookings):
        return False
    state.resource_bookings = remaining
    return True


def set_project_status(
    state: PortfolioState, project_id: str, status: str, today: Optional[date] = None
) -> bool:
    """Move a project to ``status``; completion date is set once on leaving active."""
    if status not in PROJECT_STATUSES:
        return False
    for idx, project in enumerate(state.projects):
        if project.id != project_id:
            continue
        completed_date = project.completed_date
        if status != "active" and completed_date is None:
            completed_date = today or date.today()
        state.projects[idx] = replace(project, status=status, completed_date=completed_date)
        return True
    return False
