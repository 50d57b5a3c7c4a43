"""
Access control policy: a pure decision over (actor, action, load).

| Action                 | admin | supervisor | allocator | employee        |
|------------------------|-------|------------|-----------|-----------------|
| VIEW_ALL_LOADS         | yes   | yes        | yes       | no              |
| VIEW_LOAD              | yes   | yes        | yes       | if assigned     |
| CREATE_LOAD            | yes   | yes        | yes       | no              |
| DELETE_LOAD            | yes   | yes        | yes       | no              |
| UPDATE_LOAD            | yes   | yes        | yes       | no              |
| UPDATE_LOAD_STATUS     | yes   | yes        | yes       | if assigned     |
| COMMENT_LOAD           | yes   | yes        | yes       | if assigned     |
| VIEW_USERS             | yes   | yes        | yes       | no              |
| MANAGE_USERS           | yes   | yes        | no        | no              |
| EXPORT_LOADS           | yes   | yes        | no        | no              |

Callers check that the target exists (``require_found``) before calling
``authorize`` so a missing load is always a 404, never a 403.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Hashable, TypeVar

from loadflow.core.exceptions import AuthorizationError, NotFoundError

T = TypeVar("T")


class Role(str, enum.Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    ALLOCATOR = "allocator"
    EMPLOYEE = "employee"


ROLE_TOKENS: tuple[str, ...] = tuple(r.value for r in Role)


class Action(str, enum.Enum):
    VIEW_ALL_LOADS = "view_all_loads"
    VIEW_LOAD = "view_load"
    CREATE_LOAD = "create_load"
    DELETE_LOAD = "delete_load"
    UPDATE_LOAD = "update_load"
    UPDATE_LOAD_STATUS = "update_load_status"
    COMMENT_LOAD = "comment_load"
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"
    EXPORT_LOADS = "export_loads"


_PRIVILEGED = frozenset({Role.ADMIN, Role.SUPERVISOR, Role.ALLOCATOR})
_MANAGERS = frozenset({Role.ADMIN, Role.SUPERVISOR})

_ROLE_GRANTS: dict[Action, frozenset[Role]] = {
    Action.VIEW_ALL_LOADS: _PRIVILEGED,
    Action.VIEW_LOAD: _PRIVILEGED,
    Action.CREATE_LOAD: _PRIVILEGED,
    Action.DELETE_LOAD: _PRIVILEGED,
    Action.UPDATE_LOAD: _PRIVILEGED,
    Action.UPDATE_LOAD_STATUS: _PRIVILEGED,
    Action.COMMENT_LOAD: _PRIVILEGED,
    Action.VIEW_USERS: _PRIVILEGED,
    Action.MANAGE_USERS: _MANAGERS,
    Action.EXPORT_LOADS: _MANAGERS,
}

# Actions an employee may take on a load assigned to them.
_OWNER_ACTIONS = frozenset({Action.VIEW_LOAD, Action.UPDATE_LOAD_STATUS, Action.COMMENT_LOAD})


@dataclass(frozen=True)
class Actor:
    id: Hashable
    role: Role

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))

    @property
    def is_employee(self) -> bool:
        return self.role is Role.EMPLOYEE

    @classmethod
    def of(cls, user: Any) -> "Actor":
        """Build an actor from anything with ``id`` and ``role`` attributes."""
        return cls(id=user.id, role=Role(user.role))


def _assigned_to(load: Any) -> Any:
    if isinstance(load, Mapping):
        return load.get("assigned_to")
    return getattr(load, "assigned_to", None)


def is_allowed(actor: Actor, action: Action, load: Any = None) -> bool:
    if actor.role in _ROLE_GRANTS[action]:
        return True
    if actor.is_employee and action in _OWNER_ACTIONS and load is not None:
        return _assigned_to(load) == actor.id
    return False


def authorize(actor: Actor, action: Action, load: Any = None) -> None:
    if not is_allowed(actor, action, load):
        raise AuthorizationError(f"Role '{actor.role.value}' may not {action.value.replace('_', ' ')}")


def require_found(entity: T | None, what: str = "Load") -> T:
    if entity is None:
        raise NotFoundError(f"{what} not found")
    return entity


def can_view(actor: Actor, load: Any) -> bool:
    return is_allowed(actor, Action.VIEW_LOAD, load)


def visible_loads(actor: Actor, loads: Iterable[T]) -> list[T]:
    """Subset of *loads* the actor is entitled to see, order preserved."""
    if not actor.is_employee:
        return list(loads)
    return [load for load in loads if _assigned_to(load) == actor.id]


def update_action(patch_fields: Iterable[str]) -> Action:
    """Classify an update: status-only patches are ``UPDATE_LOAD_STATUS``."""
    fields = set(patch_fields)
    if fields and fields <= {"status"}:
        return Action.UPDATE_LOAD_STATUS
    return Action.UPDATE_LOAD
