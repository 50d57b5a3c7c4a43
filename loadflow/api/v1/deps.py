"""
FastAPI dependencies: auth guards and database session.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Coroutine
from typing import Any, Optional

from fastapi import Cookie, Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loadflow.core.config import settings
from loadflow.core.exceptions import AuthenticationError
from loadflow.core.permissions import Action, Actor, authorize
from loadflow.core.security import ACCESS, decode_token
from loadflow.db.session import async_session_factory
from loadflow.models.user import User

# auto_error=False so we can fall back to the cookie when the header is missing
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_PREFIX}/auth/login", auto_error=False
)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _strip_bearer(value: str | None) -> str | None:
    if value and value.startswith("Bearer "):
        return value.split(" ", 1)[1]
    return value


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),  # HttpOnly cookie
    db: AsyncSession = Depends(get_db),
) -> User:
    """Decode JWT from Header OR Cookie, look up user."""
    final_token = token or _strip_bearer(access_token)
    if not final_token:
        raise AuthenticationError("Not authenticated")

    payload = decode_token(final_token, ACCESS)
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationError() from None

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationError("User no longer exists")
    return user


async def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor.of(current_user)


def require_permission(action: Action) -> Callable[..., Coroutine[Any, Any, User]]:
    """Dependency factory for role-only checks (no target load involved)."""

    async def _guard(current_user: User = Depends(get_current_user)) -> User:
        authorize(Actor.of(current_user), action)
        return current_user

    _guard.__name__ = f"require_{action.value}"
    return _guard
