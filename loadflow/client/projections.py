"""
Pure derivations over the load set, recomputed whenever the store changes.

Every projection starts from ``visible_loads(actor, ...)``, so an
employee's view can never contain a load assigned to someone else, even
if the caller passes in more than the store holds.

Two different time rules apply and must not be confused:

* the kanban ``completed`` column is a rolling 48h window on
  ``updated_at`` (inclusive);
* the daily summaries compare *calendar dates* of ``created_at`` in local
  time, so at 23:59 a load created at 00:01 today counts and one created
  at 23:59 yesterday does not.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable
from datetime import date, datetime, timedelta, timezone, tzinfo

from pydantic import BaseModel

from loadflow.core.lifecycle import (COMPLETED_VISIBILITY, LoadStatus, as_utc,
                                     is_completed_visible, paused_since,
                                     transferred_on)
from loadflow.core.permissions import Actor, Role, visible_loads
from loadflow.schemas.load import LoadRecord
from loadflow.schemas.user import UserRead

# Roles listed in the daily allocation summary.
_ALLOCATION_ROLES = frozenset({Role.EMPLOYEE.value, Role.ALLOCATOR.value})


# ── Result shapes ───────────────────────────────────────────────────
class DashboardCounts(BaseModel):
    total: int = 0
    by_status: dict[LoadStatus, int]


class AllocationRow(BaseModel):
    user_id: int
    name: str
    role: str
    loads_assigned: int = 0
    loads_completed: int = 0
    total_employees: int = 0


class AllocationSummary(BaseModel):
    day: date
    rows: list[AllocationRow]
    total_loads: int = 0
    total_completed: int = 0
    total_employees: int = 0


class TodayStats(BaseModel):
    assigned: int = 0
    completed: int = 0
    pending: int = 0
    in_progress: int = 0
    paused: int = 0
    employees: int = 0
    completion_rate: int = 0


class AllTimeStats(BaseModel):
    total: int = 0
    completed: int = 0
    employees: int = 0


class PersonalStats(BaseModel):
    user_id: int
    day: date
    today: TodayStats
    all_time: AllTimeStats


class DatedLoad(BaseModel):
    """A load with the timestamp of its last status change."""

    load: LoadRecord
    since: datetime


# ── Helpers ─────────────────────────────────────────────────────────
def _local_date(dt: datetime, tz: tzinfo | None) -> date:
    return as_utc(dt).astimezone(tz).date()


def _today(today: date | None, tz: tzinfo | None) -> date:
    if today is not None:
        return today
    return datetime.now(timezone.utc).astimezone(tz).date()


def _created_on(loads: Iterable[LoadRecord], day: date, tz: tzinfo | None) -> list[LoadRecord]:
    return [load for load in loads if _local_date(load.created_at, tz) == day]


def _employees(loads: Iterable[LoadRecord]) -> int:
    return sum(load.employee_count or 1 for load in loads)


# ── Projections ─────────────────────────────────────────────────────
def dashboard_counts(actor: Actor, loads: Iterable[LoadRecord]) -> DashboardCounts:
    by_status = {status: 0 for status in LoadStatus}
    total = 0
    for load in visible_loads(actor, loads):
        total += 1
        by_status[LoadStatus(load.status)] += 1
    return DashboardCounts(total=total, by_status=by_status)


def my_loads(actor: Actor, loads: Iterable[LoadRecord]) -> list[LoadRecord]:
    return [load for load in visible_loads(actor, loads) if load.assigned_to == actor.id]


def kanban_columns(
    actor: Actor,
    loads: Iterable[LoadRecord],
    now: datetime | None = None,
    show_mine: bool = False,
    window: timedelta = COMPLETED_VISIBILITY,
) -> dict[LoadStatus, list[LoadRecord]]:
    """Group the board by status; completed cards age out after *window*.

    ``show_mine`` narrows a privileged actor's board to their own loads;
    employees only ever see their own.
    """
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    columns: dict[LoadStatus, list[LoadRecord]] = {status: [] for status in LoadStatus}
    for load in visible_loads(actor, loads):
        if show_mine and load.assigned_to != actor.id:
            continue
        status = LoadStatus(load.status)
        if status is LoadStatus.COMPLETED and not is_completed_visible(load, now, window):
            continue
        columns[status].append(load)
    return columns


def daily_allocation_summary(
    loads: Iterable[LoadRecord],
    users: Iterable[UserRead],
    today: date | None = None,
    tz: tzinfo | None = None,
    actor: Actor | None = None,
) -> AllocationSummary:
    """Per-person totals for loads created on *today* (local calendar day)."""
    if actor is not None:
        loads = visible_loads(actor, loads)
    day = _today(today, tz)
    todays = _created_on(loads, day, tz)

    rows = []
    people = sorted(
        (u for u in users if u.role in _ALLOCATION_ROLES),
        key=lambda u: u.name.casefold(),
    )
    for user in people:
        assigned = [load for load in todays if load.assigned_to == user.id]
        rows.append(
            AllocationRow(
                user_id=user.id,
                name=user.name,
                role=user.role,
                loads_assigned=len(assigned),
                loads_completed=sum(1 for load in assigned if load.status == LoadStatus.COMPLETED),
                total_employees=_employees(assigned),
            )
        )

    return AllocationSummary(
        day=day,
        rows=rows,
        total_loads=len(todays),
        total_completed=sum(1 for load in todays if load.status == LoadStatus.COMPLETED),
        total_employees=_employees(todays),
    )


def personal_stats(
    user_id: Hashable,
    loads: Iterable[LoadRecord],
    today: date | None = None,
    tz: tzinfo | None = None,
) -> PersonalStats:
    mine = [load for load in loads if load.assigned_to == user_id]
    day = _today(today, tz)
    todays = _created_on(mine, day, tz)

    def count(status: LoadStatus) -> int:
        return sum(1 for load in todays if load.status == status)

    completed = count(LoadStatus.COMPLETED)
    return PersonalStats(
        user_id=user_id,
        day=day,
        today=TodayStats(
            assigned=len(todays),
            completed=completed,
            pending=count(LoadStatus.PENDING),
            in_progress=count(LoadStatus.IN_PROGRESS),
            paused=count(LoadStatus.PAUSED),
            employees=_employees(todays),
            completion_rate=round(completed / len(todays) * 100) if todays else 0,
        ),
        all_time=AllTimeStats(
            total=len(mine),
            completed=sum(1 for load in mine if load.status == LoadStatus.COMPLETED),
            employees=_employees(mine),
        ),
    )


def paused_loads(actor: Actor, loads: Iterable[LoadRecord]) -> list[DatedLoad]:
    """Paused loads, most recently paused first."""
    dated = [
        DatedLoad(load=load, since=paused_since(load))
        for load in visible_loads(actor, loads)
        if load.status == LoadStatus.PAUSED
    ]
    return sorted(dated, key=lambda d: d.since, reverse=True)


def transferred_loads(actor: Actor, loads: Iterable[LoadRecord]) -> list[DatedLoad]:
    """Transferred loads, most recently transferred first."""
    dated = [
        DatedLoad(load=load, since=transferred_on(load))
        for load in visible_loads(actor, loads)
        if load.status == LoadStatus.TRANSFERRED
    ]
    return sorted(dated, key=lambda d: d.since, reverse=True)
