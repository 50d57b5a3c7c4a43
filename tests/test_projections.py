"""Tests for the dashboard view projections."""

from datetime import date, datetime, timedelta, timezone

from conftest import T0, make_record
from loadflow.client.projections import (daily_allocation_summary,
                                         dashboard_counts, kanban_columns,
                                         my_loads, paused_loads,
                                         personal_stats, transferred_loads)
from loadflow.core.lifecycle import LoadStatus
from loadflow.core.permissions import Actor, Role
from loadflow.schemas.user import UserRead

ALLOCATOR = Actor(1, Role.ALLOCATOR)
EMPLOYEE = Actor(7, Role.EMPLOYEE)

# UTC-5, no DST, so "local" days are unambiguous
LOCAL = timezone(timedelta(hours=-5))


def _mixed_loads():
    return [
        make_record(id=1, status=LoadStatus.PENDING, assigned_to=7),
        make_record(id=2, status=LoadStatus.IN_PROGRESS, assigned_to=8),
        make_record(id=3, status=LoadStatus.PAUSED, assigned_to=7),
        make_record(id=4, status=LoadStatus.COMPLETED, assigned_to=None),
        make_record(id=5, status=LoadStatus.PENDING, assigned_to=1),
    ]


def test_dashboard_counts_per_status():
    counts = dashboard_counts(ALLOCATOR, _mixed_loads())
    assert counts.total == 5
    assert counts.by_status[LoadStatus.PENDING] == 2
    assert counts.by_status[LoadStatus.TRANSFERRED] == 0
    assert sum(counts.by_status.values()) == counts.total


def test_employee_projections_never_include_foreign_loads():
    loads = _mixed_loads()
    assert dashboard_counts(EMPLOYEE, loads).total == 2
    columns = kanban_columns(EMPLOYEE, loads, now=T0)
    every_card = [load for cards in columns.values() for load in cards]
    assert {load.id for load in every_card} == {1, 3}
    assert all(load.assigned_to == EMPLOYEE.id for load in every_card)
    assert [d.load.id for d in paused_loads(EMPLOYEE, loads)] == [3]


def test_my_loads():
    assert [l.id for l in my_loads(ALLOCATOR, _mixed_loads())] == [5]


def test_kanban_has_every_column_and_show_mine_toggle():
    columns = kanban_columns(ALLOCATOR, _mixed_loads(), now=T0)
    assert set(columns) == set(LoadStatus)
    assert [l.id for l in columns[LoadStatus.PENDING]] == [1, 5]

    mine = kanban_columns(ALLOCATOR, _mixed_loads(), now=T0, show_mine=True)
    assert [l.id for l in mine[LoadStatus.PENDING]] == [5]
    assert mine[LoadStatus.PAUSED] == []


def test_completed_column_48_hour_boundary():
    now = T0 + timedelta(days=10)
    at_edge = make_record(id=1, status=LoadStatus.COMPLETED, updated_at=now - timedelta(hours=48))
    past_edge = make_record(
        id=2, status=LoadStatus.COMPLETED, updated_at=now - timedelta(hours=48, seconds=1)
    )
    old_paused = make_record(id=3, status=LoadStatus.PAUSED, updated_at=now - timedelta(days=9))
    columns = kanban_columns(ALLOCATOR, [at_edge, past_edge, old_paused], now=now)
    assert [l.id for l in columns[LoadStatus.COMPLETED]] == [1]
    assert [l.id for l in columns[LoadStatus.PAUSED]] == [3]


def _users():
    return [
        UserRead(id=7, email="z@example.com", name="Zoe", role="employee"),
        UserRead(id=8, email="a@example.com", name="Abe", role="allocator"),
        UserRead(id=9, email="s@example.com", name="Sue", role="supervisor"),
    ]


def test_daily_summary_uses_local_calendar_day():
    # 23:59 local on 2024-06-03
    today = datetime(2024, 6, 3, 23, 59, tzinfo=LOCAL).date()
    early_today = make_record(
        id=1, assigned_to=7, employee_count=3,
        created_at=datetime(2024, 6, 3, 0, 1, tzinfo=LOCAL),
    )
    late_yesterday = make_record(
        id=2, assigned_to=7, created_at=datetime(2024, 6, 2, 23, 59, tzinfo=LOCAL),
    )
    summary = daily_allocation_summary([early_today, late_yesterday], _users(), today=today, tz=LOCAL)
    assert summary.day == date(2024, 6, 3)
    assert summary.total_loads == 1
    assert summary.total_employees == 3


def test_daily_summary_rows_per_person_sorted_by_name():
    created = datetime(2024, 6, 3, 10, 0, tzinfo=timezone.utc)
    loads = [
        make_record(id=1, assigned_to=7, employee_count=2, created_at=created),
        make_record(id=2, assigned_to=7, status=LoadStatus.COMPLETED, created_at=created),
        make_record(id=3, assigned_to=8, employee_count=4, created_at=created),
        make_record(id=4, assigned_to=None, created_at=created),
    ]
    summary = daily_allocation_summary(loads, _users(), today=date(2024, 6, 3), tz=timezone.utc)

    assert [row.name for row in summary.rows] == ["Abe", "Zoe"]
    zoe = summary.rows[1]
    assert (zoe.loads_assigned, zoe.loads_completed, zoe.total_employees) == (2, 1, 3)
    assert summary.total_loads == 4
    assert summary.total_completed == 1
    assert summary.total_employees == 2 + 1 + 4 + 1


def test_personal_stats():
    created = datetime(2024, 6, 3, 10, 0, tzinfo=timezone.utc)
    loads = [
        make_record(id=1, assigned_to=7, status=LoadStatus.COMPLETED, created_at=created),
        make_record(id=2, assigned_to=7, status=LoadStatus.PAUSED, created_at=created),
        make_record(id=3, assigned_to=7, status=LoadStatus.COMPLETED, created_at=created - timedelta(days=3)),
        make_record(id=4, assigned_to=8, created_at=created),
    ]
    stats = personal_stats(7, loads, today=date(2024, 6, 3), tz=timezone.utc)
    assert stats.today.assigned == 2
    assert stats.today.completed == 1
    assert stats.today.paused == 1
    assert stats.today.completion_rate == 50
    assert stats.all_time.total == 3
    assert stats.all_time.completed == 2

    empty = personal_stats(99, loads, today=date(2024, 6, 3), tz=timezone.utc)
    assert empty.today.completion_rate == 0


def test_paused_and_transferred_sorted_newest_first():
    loads = [
        make_record(id=1, status=LoadStatus.TRANSFERRED, updated_at=T0),
        make_record(id=2, status=LoadStatus.TRANSFERRED, updated_at=T0 + timedelta(hours=1)),
        make_record(id=3, status=LoadStatus.PAUSED, updated_at=T0),
    ]
    transferred = transferred_loads(ALLOCATOR, loads)
    assert [d.load.id for d in transferred] == [2, 1]
    assert transferred[0].since == T0 + timedelta(hours=1)
    assert [d.load.id for d in paused_loads(ALLOCATOR, loads)] == [3]
