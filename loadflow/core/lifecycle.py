"""
Load status lifecycle.

Statuses move along an explicit graph::

    pending ──► in_progress ──► paused ──┐
                    ▲  │                 │
                    │  ├──► completed    │
                    │  └──► transferred  │
                    └────────────────────┘

``completed`` and ``transferred`` are terminal. Setting the status a load
already has is a no-op and always accepted. The graph can be switched off
(``ENFORCE_STATUS_TRANSITIONS=false``), in which case any of the five
tokens may be written.

There is no dedicated transition timestamp: "paused since" and
"transferred on" are read from ``updated_at``, so a load that is paused
twice reports the second pause.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any

from loadflow.core.exceptions import ValidationError


class LoadStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    TRANSFERRED = "transferred"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_TOKENS: tuple[str, ...] = tuple(s.value for s in LoadStatus)

STATUS_LABELS: dict[LoadStatus, str] = {
    LoadStatus.PENDING: "Pending",
    LoadStatus.IN_PROGRESS: "In Progress",
    LoadStatus.PAUSED: "Paused",
    LoadStatus.COMPLETED: "Completed",
    LoadStatus.TRANSFERRED: "Transferred",
}

TRANSITIONS: dict[LoadStatus, frozenset[LoadStatus]] = {
    LoadStatus.PENDING: frozenset({LoadStatus.IN_PROGRESS}),
    LoadStatus.IN_PROGRESS: frozenset(
        {LoadStatus.PAUSED, LoadStatus.COMPLETED, LoadStatus.TRANSFERRED}
    ),
    LoadStatus.PAUSED: frozenset({LoadStatus.IN_PROGRESS}),
    LoadStatus.COMPLETED: frozenset(),
    LoadStatus.TRANSFERRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

COMPLETED_VISIBILITY = timedelta(hours=48)


def parse_status(value: Any) -> LoadStatus:
    """Coerce *value* to a ``LoadStatus`` or raise ``ValidationError``."""
    if isinstance(value, LoadStatus):
        return value
    try:
        return LoadStatus(value)
    except ValueError:
        raise ValidationError(
            f"Invalid status {value!r}; expected one of {', '.join(STATUS_TOKENS)}",
            field="status",
        ) from None


def can_transition(current: LoadStatus | str, target: LoadStatus | str) -> bool:
    current, target = parse_status(current), parse_status(target)
    return current == target or target in TRANSITIONS[current]


def validate_transition(
    current: LoadStatus | str,
    target: LoadStatus | str,
    enforce: bool = True,
) -> LoadStatus:
    """Return the parsed target status if moving there is allowed."""
    current, target = parse_status(current), parse_status(target)
    if enforce and not can_transition(current, target):
        raise ValidationError(
            f"Cannot move a load from {current.value} to {target.value}",
            field="status",
        )
    return target


def as_utc(dt: datetime) -> datetime:
    """Normalise a potentially-naive timestamp to UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def paused_since(load: Any) -> datetime | None:
    if parse_status(load.status) is not LoadStatus.PAUSED:
        return None
    return as_utc(load.updated_at)


def transferred_on(load: Any) -> datetime | None:
    if parse_status(load.status) is not LoadStatus.TRANSFERRED:
        return None
    return as_utc(load.updated_at)


def is_completed_visible(
    load: Any,
    now: datetime | None = None,
    window: timedelta = COMPLETED_VISIBILITY,
) -> bool:
    """True while a completed load is inside the board's rolling window.

    The bound is inclusive: a load updated exactly ``window`` ago is
    still shown.
    """
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - as_utc(load.updated_at) <= window
