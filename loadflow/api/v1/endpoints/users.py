"""
User management endpoints.

- GET /users is open to roles that assign loads (admin, supervisor, allocator).
- POST / PUT / DELETE require the manage-users permission (admin, supervisor).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loadflow.api.v1.deps import get_db, require_permission
from loadflow.core.exceptions import ConflictError, ValidationError
from loadflow.core.permissions import Action, require_found
from loadflow.core.security import get_password_hash
from loadflow.models.user import User
from loadflow.schemas.token import MessageResponse
from loadflow.schemas.user import UserCreate, UserRead, UserUpdate
from loadflow.services import loads as load_service

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)


async def _email_taken(db: AsyncSession, email: str, exclude_id: int | None = None) -> bool:
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    return (await db.execute(query)).first() is not None


@router.get("", response_model=list[UserRead])
async def list_users(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission(Action.VIEW_USERS)),
) -> list[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


@router.post("", response_model=UserRead, status_code=201)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    manager: User = Depends(require_permission(Action.MANAGE_USERS)),
) -> User:
    if await _email_taken(db, body.email):
        raise ConflictError("Email already exists", field="email")

    user = User(
        email=body.email,
        hashed_password=get_password_hash(body.password),
        name=body.name,
        role=body.role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("User %d (%s) created by user %d", user.id, user.role, manager.id)
    return user


@router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: int,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    manager: User = Depends(require_permission(Action.MANAGE_USERS)),
) -> User:
    user = require_found(await db.get(User, user_id), "User")

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")
    if "email" in changes and await _email_taken(db, changes["email"], exclude_id=user_id):
        raise ConflictError("Email already exists", field="email")

    password = changes.pop("password", None)
    if password:
        user.hashed_password = get_password_hash(password)
    for field, value in changes.items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    logger.info("User %d updated by user %d: %s", user_id, manager.id, sorted(body.model_fields_set))
    return user


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    manager: User = Depends(require_permission(Action.MANAGE_USERS)),
) -> MessageResponse:
    """Delete a user. Their assignments are released; creators of loads are kept."""
    user = require_found(await db.get(User, user_id), "User")
    if user.id == manager.id:
        raise ConflictError("You cannot delete your own account")
    await load_service.ensure_user_has_no_loads(db, user_id)

    await load_service.release_assignments(db, user_id)
    await load_service.delete_user_comments(db, user_id)
    await db.delete(user)
    await db.commit()
    logger.info("User %d deleted by user %d", user_id, manager.id)
    return MessageResponse(message="User deleted successfully")
