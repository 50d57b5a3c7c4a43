"""
Load service: business logic for load CRUD, status changes and comments.

Every function takes the acting ``Actor`` and enforces the access policy
itself: the target is looked up first (``NotFoundError``) and only then
authorized (``AuthorizationError``). Successful mutations are published
to the realtime broker after commit.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loadflow.core.config import settings
from loadflow.core.exceptions import ConflictError, ValidationError
from loadflow.core.lifecycle import LoadStatus, validate_transition
from loadflow.core.permissions import (Action, Actor, authorize, require_found,
                                       update_action)
from loadflow.models.load import Comment, Load
from loadflow.models.user import User
from loadflow.realtime.broker import LoadEventBroker
from loadflow.realtime.broker import broker as default_broker
from loadflow.schemas.load import CommentCreate, LoadCreate, LoadRecord, LoadUpdate

logger = logging.getLogger(__name__)


def to_record(load: Load) -> LoadRecord:
    return LoadRecord.model_validate(load)


async def get_load(db: AsyncSession, load_id: int) -> Load | None:
    result = await db.execute(
        select(Load)
        .where(Load.id == load_id)
        .execution_options(populate_existing=True)
    )
    return result.unique().scalar_one_or_none()


async def _require_user(db: AsyncSession, user_id: int, field: str) -> None:
    exists = await db.scalar(select(func.count()).select_from(User).where(User.id == user_id))
    if not exists:
        raise ValidationError(f"User {user_id} does not exist", field=field)


# ── Reads ───────────────────────────────────────────────────────────
async def list_loads(
    db: AsyncSession,
    actor: Actor,
    status: LoadStatus | None = None,
) -> list[Load]:
    """Newest first. Employees only ever get loads assigned to them."""
    query = select(Load).order_by(Load.created_at.desc(), Load.id.desc())
    if status is not None:
        query = query.where(Load.status == status.value)
    if actor.is_employee:
        query = query.where(Load.assigned_to == actor.id)
    result = await db.execute(query)
    return list(result.unique().scalars().all())


async def read_load(db: AsyncSession, actor: Actor, load_id: int) -> Load:
    load = require_found(await get_load(db, load_id))
    authorize(actor, Action.VIEW_LOAD, load)
    return load


# ── Mutations ───────────────────────────────────────────────────────
async def create_load(
    db: AsyncSession,
    actor: Actor,
    data: LoadCreate,
    events: LoadEventBroker = default_broker,
) -> Load:
    authorize(actor, Action.CREATE_LOAD)
    if data.assigned_to is not None:
        await _require_user(db, data.assigned_to, "assigned_to")

    load = Load(
        client_name=data.client_name,
        client_number=data.client_number,
        status=data.status.value,
        employee_count=data.employee_count,
        assigned_to=data.assigned_to,
        created_by=actor.id,
    )
    db.add(load)
    await db.commit()

    load = require_found(await get_load(db, load.id))
    events.publish("insert", to_record(load))
    logger.info("Load %d created by user %s (client %s)", load.id, actor.id, load.client_number)
    return load


async def update_load(
    db: AsyncSession,
    actor: Actor,
    load_id: int,
    data: LoadUpdate,
    events: LoadEventBroker = default_broker,
) -> Load:
    load = require_found(await get_load(db, load_id))
    changes = data.model_dump(exclude_unset=True)
    authorize(actor, update_action(changes), load)

    if not changes:
        return load

    before = to_record(load)
    if "status" in changes:
        if changes["status"] is None:
            raise ValidationError("Status must not be null", field="status")
        target = validate_transition(
            load.status, changes["status"], enforce=settings.ENFORCE_STATUS_TRANSITIONS
        )
        changes["status"] = target.value
    for field in ("client_name", "client_number", "employee_count"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} must not be null", field=field)
    if changes.get("assigned_to") is not None:
        await _require_user(db, changes["assigned_to"], "assigned_to")

    for field, value in changes.items():
        setattr(load, field, value)
    load.touch()
    await db.commit()

    load = require_found(await get_load(db, load_id))
    events.publish("update", to_record(load), before)
    logger.info("Load %d updated by user %s: %s", load_id, actor.id, sorted(changes))
    return load


async def delete_load(
    db: AsyncSession,
    actor: Actor,
    load_id: int,
    events: LoadEventBroker = default_broker,
) -> LoadRecord:
    load = require_found(await get_load(db, load_id))
    authorize(actor, Action.DELETE_LOAD, load)

    record = to_record(load)
    await db.execute(sa_delete(Comment).where(Comment.load_id == load_id))
    await db.delete(load)
    await db.commit()

    events.publish("delete", record, record)
    logger.info("Load %d deleted by user %s", load_id, actor.id)
    return record


async def release_assignments(
    db: AsyncSession,
    user_id: int,
    events: LoadEventBroker = default_broker,
) -> int:
    """Unassign every load held by *user_id*; used before deleting the user."""
    held = (
        await db.execute(select(Load).where(Load.assigned_to == user_id))
    ).unique().scalars().all()
    if not held:
        return 0

    before = {load.id: to_record(load) for load in held}
    for load in held:
        load.assigned_to = None
        load.touch()
    await db.commit()

    for load_id, old in before.items():
        fresh = await get_load(db, load_id)
        if fresh is not None:
            events.publish("update", to_record(fresh), old)
    logger.info("Released %d loads assigned to user %d", len(before), user_id)
    return len(before)


async def ensure_user_has_no_loads(db: AsyncSession, user_id: int) -> None:
    created = await db.scalar(
        select(func.count()).select_from(Load).where(Load.created_by == user_id)
    )
    if created:
        raise ConflictError(
            f"User created {created} load(s); reassign or delete them first"
        )


# ── Comments ────────────────────────────────────────────────────────
async def list_comments(db: AsyncSession, actor: Actor, load_id: int) -> list[Comment]:
    load = require_found(await get_load(db, load_id))
    authorize(actor, Action.VIEW_LOAD, load)
    result = await db.execute(
        select(Comment)
        .where(Comment.load_id == load_id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    )
    return list(result.unique().scalars().all())


async def add_comment(
    db: AsyncSession,
    actor: Actor,
    load_id: int,
    data: CommentCreate,
) -> Comment:
    load = require_found(await get_load(db, load_id))
    authorize(actor, Action.COMMENT_LOAD, load)

    comment = Comment(load_id=load_id, user_id=actor.id, content=data.content)
    db.add(comment)
    await db.commit()

    result = await db.execute(select(Comment).where(Comment.id == comment.id))
    comment = result.unique().scalar_one()
    logger.info("Comment %d added to load %d by user %s", comment.id, load_id, actor.id)
    return comment


async def delete_user_comments(db: AsyncSession, user_id: int) -> None:
    """Drop comments authored by *user_id* so the user row can be removed."""
    await db.execute(sa_delete(Comment).where(Comment.user_id == user_id))
