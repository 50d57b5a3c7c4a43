"""
Explicit session context for a dashboard client.

A ``DashboardSession`` owns everything that is per signed-in user: the
actor, the load store, the realtime reconciler and the action layer.
Components receive the session instead of reaching for globals, and the
session has a clear lifecycle: ``start()`` subscribes and loads,
``close()`` unsubscribes and cancels in-flight work. Use it as an async
context manager to get both::

    async with DashboardSession(LoadsApi(token=token)) as session:
        board = session.board()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, tzinfo
from typing import Any

from loadflow.client.actions import LoadActions
from loadflow.client.api import LoadsApi
from loadflow.client.config import ClientSettings
from loadflow.client.projections import (AllocationSummary, DashboardCounts,
                                         DatedLoad, PersonalStats,
                                         daily_allocation_summary,
                                         dashboard_counts, kanban_columns,
                                         my_loads, paused_loads,
                                         personal_stats, transferred_loads)
from loadflow.client.reconciler import RealtimeReconciler
from loadflow.client.store import LoadStore
from loadflow.core.exceptions import AuthenticationError
from loadflow.core.lifecycle import LoadStatus
from loadflow.core.permissions import Action, Actor, is_allowed
from loadflow.schemas.load import LoadRecord
from loadflow.schemas.user import UserRead

logger = logging.getLogger(__name__)


class DashboardSession:
    def __init__(
        self,
        api: LoadsApi,
        on_logout: Callable[[], Any] | None = None,
        settings: ClientSettings | None = None,
    ) -> None:
        self.api = api
        self.on_logout = on_logout
        self.settings = settings or api.settings
        self.user: UserRead | None = None
        self.actor: Actor | None = None
        self.store: LoadStore | None = None
        self.reconciler: RealtimeReconciler | None = None
        self.actions: LoadActions | None = None
        self.users: list[UserRead] = []
        self.stream_error: BaseException | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # ── Lifecycle ───────────────────────────────────────────────────
    @classmethod
    async def login(
        cls,
        email: str,
        password: str,
        api: LoadsApi | None = None,
        **kwargs: Any,
    ) -> "DashboardSession":
        api = api or LoadsApi()
        await api.login(email, password)
        session = cls(api, **kwargs)
        await session.start()
        return session

    async def start(self) -> "DashboardSession":
        user = await self.api.current_user()
        if user is None:
            raise AuthenticationError("Not signed in")
        self.user = user
        self.actor = Actor.of(user)
        self.store = LoadStore(self.actor)
        self.reconciler = RealtimeReconciler(
            self.store, self.api, on_fatal=self._stream_failed, settings=self.settings
        )
        self.actions = LoadActions(
            self.store,
            self.api,
            self.actor,
            on_auth_error=self.handle_auth_error,
            enforce_transitions=self.settings.ENFORCE_STATUS_TRANSITIONS,
        )
        await self.reconciler.start()
        if is_allowed(self.actor, Action.VIEW_USERS):
            self.users = await self.api.list_users()
        self._closed = False
        logger.info("Session started for %s (%s)", user.email, user.role)
        return self

    async def close(self) -> None:
        """Unsubscribe and cancel in-flight actions. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self.actions is not None:
            await self.actions.cancel()
        if self.reconciler is not None:
            await self.reconciler.stop()

    async def logout(self) -> None:
        await self.close()
        await self.api.logout()
        await self._signed_out()

    async def handle_auth_error(self, exc: AuthenticationError) -> None:
        """Global handler: the server no longer accepts our credentials."""
        logger.warning("Authentication lost: %s", exc)
        await self.close()
        self.api.clear_token()
        await self._signed_out()

    async def _signed_out(self) -> None:
        self.user = None
        if self.on_logout is not None:
            result = self.on_logout()
            if inspect.isawaitable(result):
                await result

    def _stream_failed(self, exc: BaseException) -> None:
        self.stream_error = exc
        if isinstance(exc, AuthenticationError):
            task = asyncio.ensure_future(self.handle_auth_error(exc))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def __aenter__(self) -> "DashboardSession":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Views ───────────────────────────────────────────────────────
    @property
    def loads(self) -> list[LoadRecord]:
        return self.store.records if self.store is not None else []

    def counts(self) -> DashboardCounts:
        return dashboard_counts(self.actor, self.loads)

    def mine(self) -> list[LoadRecord]:
        return my_loads(self.actor, self.loads)

    def board(self, now: datetime | None = None, show_mine: bool = False) -> dict[LoadStatus, list[LoadRecord]]:
        window = timedelta(hours=self.settings.COMPLETED_VISIBILITY_HOURS)
        return kanban_columns(self.actor, self.loads, now=now, show_mine=show_mine, window=window)

    def daily_summary(self, today: date | None = None, tz: tzinfo | None = None) -> AllocationSummary:
        return daily_allocation_summary(self.loads, self.users, today=today, tz=tz, actor=self.actor)

    def my_stats(self, today: date | None = None, tz: tzinfo | None = None) -> PersonalStats:
        return personal_stats(self.actor.id, self.loads, today=today, tz=tz)

    def paused(self) -> list[DatedLoad]:
        return paused_loads(self.actor, self.loads)

    def transferred(self) -> list[DatedLoad]:
        return transferred_loads(self.actor, self.loads)
