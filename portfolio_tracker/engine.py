from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

import pandas as pd
from dateutil.relativedelta import MO, relativedelta

from .models import EngineConfig, Member, Project, ResourceBooking

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = EngineConfig()


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like the dashboard does: halves go up, not to even."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _members_by_id(members: Sequence[Member]) -> Dict[str, Member]:
    return {member.id: member for member in members}


def _projects_by_id(projects: Sequence[Project]) -> Dict[str, Project]:
    return {project.id: project for project in projects}


@dataclass
class ResourceUtilization:
    utilization: float
    overbook_warning: bool
    available_capacity: Optional[float]
    bookings: List[ResourceBooking] = field(default_factory=list)

    @property
    def booking_count(self) -> int:
        return len(self.bookings)

    def to_dict(self) -> Dict[str, object]:
        return {
            "utilization": self.utilization,
            "overbookWarning": self.overbook_warning,
            "availableCapacity": self.available_capacity,
            "bookings": self.booking_count,
            "bookingDetails": [booking.id for booking in self.bookings],
        }


def resource_utilization(
    member_id: str,
    start: date,
    end: date,
    *,
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    projects: Sequence[Project],
    exclude_booking_id: Optional[str] = None,
) -> ResourceUtilization:
    """
    Sum of ``capacity_percent`` over the member's bookings overlapping
    ``[start, end]``.

    Without ``exclude_booking_id`` only bookings on active projects count.
    With it, that booking is left out and the project filter is skipped, so an
    edit form sees every other booking the member holds.
    """
    member = _members_by_id(members).get(member_id)
    if member is None:
        return ResourceUtilization(utilization=0.0, overbook_warning=False, available_capacity=None)

    matching = [
        booking
        for booking in bookings
        if booking.member_id == member_id
        and not (exclude_booking_id and booking.id == exclude_booking_id)
        and booking.overlaps(start, end)
    ]
    if not exclude_booking_id:
        project_map = _projects_by_id(projects)
        matching = [
            booking
            for booking in matching
            if booking.project_id in project_map and project_map[booking.project_id].is_active
        ]
    utilization = float(sum(booking.capacity_percent for booking in matching))
    return ResourceUtilization(
        utilization=utilization,
        overbook_warning=utilization > member.available_capacity,
        available_capacity=member.available_capacity,
        bookings=matching,
    )


@dataclass
class ProjectAllocation:
    project_id: str
    project_name: str
    project_status: str
    bookings: List[ResourceBooking] = field(default_factory=list)
    total_capacity: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "projectId": self.project_id,
            "projectName": self.project_name,
            "projectStatus": self.project_status,
            "bookings": [booking.id for booking in self.bookings],
            "totalCapacity": self.total_capacity,
        }


@dataclass
class GlobalUtilization:
    member: Member
    total_utilization: float
    is_overbooked: bool
    by_project: List[ProjectAllocation]
    available_capacity: float
    remaining_capacity: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "memberId": self.member.id,
            "memberName": self.member.name,
            "totalUtilization": self.total_utilization,
            "isOverbooked": self.is_overbooked,
            "byProject": [item.to_dict() for item in self.by_project],
            "availableCapacity": self.available_capacity,
            "remainingCapacity": self.remaining_capacity,
        }


def global_resource_utilization(
    member_id: str,
    *,
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    projects: Sequence[Project],
) -> Optional[GlobalUtilization]:
    member = _members_by_id(members).get(member_id)
    if member is None:
        return None
    project_map = _projects_by_id(projects)
    by_project: Dict[str, ProjectAllocation] = {}
    for booking in bookings:
        if booking.member_id != member_id:
            continue
        project = project_map.get(booking.project_id)
        if project is None:
            logger.debug("booking %s references unknown project %s", booking.id, booking.project_id)
            continue
        allocation = by_project.get(project.id)
        if allocation is None:
            allocation = ProjectAllocation(
                project_id=project.id,
                project_name=project.name,
                project_status=project.status or "active",
            )
            by_project[project.id] = allocation
        allocation.bookings.append(booking)
        if project.is_active:
            allocation.total_capacity += booking.capacity_percent

    total = float(sum(item.total_capacity for item in by_project.values()))
    return GlobalUtilization(
        member=member,
        total_utilization=total,
        is_overbooked=total > member.available_capacity,
        by_project=list(by_project.values()),
        available_capacity=member.available_capacity,
        remaining_capacity=member.available_capacity - total,
    )


def _bookings_fte(bookings: Sequence[ResourceBooking], member_map: Dict[str, Member]) -> float:
    total = 0.0
    for booking in bookings:
        member = member_map.get(booking.member_id)
        if member is None:
            continue
        total += member.booking_fte(booking.capacity_percent)
    return total


def project_fte(
    project_id: str,
    *,
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
) -> float:
    project_bookings = [booking for booking in bookings if booking.project_id == project_id]
    return round_half_up(_bookings_fte(project_bookings, _members_by_id(members)), 2)


def booking_cost(booking: ResourceBooking, member: Member, config: EngineConfig = DEFAULT_CONFIG) -> float:
    working_days = booking.duration_days() * config.working_day_ratio
    hours = member.booking_fte(booking.capacity_percent) * working_days * config.hours_per_day
    return hours * member.hourly_rate_internal


def forecast_from_bookings(
    project_id: str,
    *,
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """Internal-cost forecast derived from the project's staffing plan."""
    member_map = _members_by_id(members)
    total = 0.0
    for booking in bookings:
        if booking.project_id != project_id:
            continue
        member = member_map.get(booking.member_id)
        if member is None:
            continue
        total += booking_cost(booking, member, config)
    return round_half_up(total)


def total_available_fte(members: Sequence[Member]) -> float:
    return round_half_up(sum(member.available_fte for member in members if member.active), 2)


@dataclass
class CompetencyGroupLoad:
    name: str
    total_capacity: float
    booked_fte: float
    utilization_percent: float
    is_overloaded: bool
    member_count: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "totalCapacity": self.total_capacity,
            "bookedFTE": self.booked_fte,
            "utilizationPercent": self.utilization_percent,
            "isOverloaded": self.is_overloaded,
            "memberCount": self.member_count,
        }


def competency_group_utilization(
    *,
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    projects: Sequence[Project],
    config: EngineConfig = DEFAULT_CONFIG,
    active_projects_only: bool = True,
) -> List[CompetencyGroupLoad]:
    """
    Available and booked FTE per competency group of active members.

    Booked FTE counts only bookings on active projects, the same rule
    ``global_resource_utilization`` applies; pass ``active_projects_only=False``
    to count every booking regardless of project status.
    """
    capacity: Dict[str, float] = defaultdict(float)
    booked: Dict[str, float] = defaultdict(float)
    member_ids: Dict[str, List[str]] = defaultdict(list)
    group_of: Dict[str, str] = {}
    for member in members:
        if not member.active:
            continue
        group = member.competency_group or config.unassigned_group
        group_of[member.id] = group
        capacity[group] += member.available_fte
        member_ids[group].append(member.id)

    member_map = _members_by_id(members)
    project_map = _projects_by_id(projects)
    for booking in bookings:
        group = group_of.get(booking.member_id)
        if group is None:
            continue
        if active_projects_only:
            project = project_map.get(booking.project_id)
            if project is None or not project.is_active:
                continue
        booked[group] += member_map[booking.member_id].booking_fte(booking.capacity_percent)

    result: List[CompetencyGroupLoad] = []
    for group, total in capacity.items():
        group_booked = booked.get(group, 0.0)
        result.append(
            CompetencyGroupLoad(
                name=group,
                total_capacity=round_half_up(total, 2),
                booked_fte=round_half_up(group_booked, 2),
                utilization_percent=round_half_up(group_booked / total * 100) if total > 0 else 0.0,
                is_overloaded=group_booked > total,
                member_count=len(member_ids[group]),
            )
        )
    result.sort(key=lambda item: item.name)
    return result


@dataclass
class ProjectWeekLoad:
    project_id: str
    project_name: str
    fte: float

    def to_dict(self) -> Dict[str, object]:
        return {"projectId": self.project_id, "projectName": self.project_name, "fte": self.fte}


@dataclass
class WeekLoad:
    start_date: date
    end_date: date
    total_fte: float
    projects: List[ProjectWeekLoad]
    is_overloaded: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "totalFTE": self.total_fte,
            "projects": [item.to_dict() for item in self.projects],
            "isOverloaded": self.is_overloaded,
        }


def week_start(value: date) -> date:
    """Monday of the ISO week containing ``value``."""
    return value + relativedelta(weekday=MO(-1))


def fte_timeline(
    *,
    projects: Sequence[Project],
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    today: Optional[date] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[WeekLoad]:
    """
    Weekly booked FTE around the current week, active projects only.

    Returns an empty list when no project is active.
    """
    active = [project for project in projects if project.is_active]
    if not active:
        return []
    today = today or date.today()
    first_week = week_start(today) - timedelta(weeks=config.timeline_weeks_before)
    available = total_available_fte(members)
    member_map = _members_by_id(members)

    weeks: List[WeekLoad] = []
    for week_idx in range(config.timeline_week_count()):
        period_start = first_week + timedelta(weeks=week_idx)
        period_end = period_start + timedelta(days=6)
        total = 0.0
        loads: List[ProjectWeekLoad] = []
        for project in active:
            if not project.overlaps(period_start, period_end):
                continue
            week_bookings = [
                booking
                for booking in bookings
                if booking.project_id == project.id and booking.overlaps(period_start, period_end)
            ]
            fte = _bookings_fte(week_bookings, member_map)
            if fte > 0:
                total += fte
                loads.append(
                    ProjectWeekLoad(project_id=project.id, project_name=project.name, fte=round_half_up(fte, 2))
                )
        weeks.append(
            WeekLoad(
                start_date=period_start,
                end_date=period_end,
                total_fte=round_half_up(total, 2),
                projects=loads,
                is_overloaded=total > available,
            )
        )
    return weeks


def utilization_frame(
    *,
    members: Sequence[Member],
    bookings: Sequence[ResourceBooking],
    projects: Sequence[Project],
) -> pd.DataFrame:
    columns = [
        "member_id",
        "name",
        "competency_group",
        "available_capacity",
        "total_utilization",
        "remaining_capacity",
        "is_overbooked",
        "project_count",
    ]
    rows = []
    for member in members:
        summary = global_resource_utilization(member.id, members=members, bookings=bookings, projects=projects)
        if summary is None:
            continue
        rows.append(
            {
                "member_id": member.id,
                "name": member.name,
                "competency_group": member.competency_group,
                "available_capacity": summary.available_capacity,
                "total_utilization": summary.total_utilization,
                "remaining_capacity": summary.remaining_capacity,
                "is_overbooked": summary.is_overbooked,
                "project_count": sum(1 for item in summary.by_project if item.total_capacity > 0),
            }
        )
    return pd.DataFrame(rows, columns=columns)


def fte_timeline_frame(weeks: Sequence[WeekLoad]) -> pd.DataFrame:
    columns = ["week_start", "week_end", "project_id", "project_name", "fte", "total_fte", "is_overloaded"]
    rows = []
    for week in weeks:
        entries = week.projects or [None]
        for entry in entries:
            rows.append(
                {
                    "week_start": week.start_date.isoformat(),
                    "week_end": week.end_date.isoformat(),
                    "project_id": entry.project_id if entry else None,
                    "project_name": entry.project_name if entry else None,
                    "fte": entry.fte if entry else 0.0,
                    "total_fte": week.total_fte,
                    "is_overloaded": week.is_overloaded,
                }
            )
    return pd.DataFrame(rows, columns=columns)
