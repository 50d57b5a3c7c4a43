"""
User-initiated load mutations with optimistic UI.

Each action checks what it can locally (role, ownership, transition,
field validity), applies the change to the store at once, and sends the
write in a background task so the caller never waits on the network.
When the server answers, the optimistic change is either confirmed or
rolled back.

Failures are turned into ``Notice`` objects instead of exceptions:

* validation and conflict errors are *inline* notices tied to the action
  (and field) that caused them;
* an ``AuthenticationError`` goes to the session's global handler, which
  logs the user out;
* anything else rolls back and leaves a dismissible notice.

Nothing raises out of an action task.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable, Hashable, Mapping
import dataclasses
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from loadflow.client.api import LoadBackend
from loadflow.client.config import client_settings
from loadflow.client.store import (LoadStore, RollbackToken, canonical_patch,
                                   validation_error_from)
from loadflow.core.exceptions import (AuthenticationError, ConflictError,
                                      LoadflowError, NotFoundError,
                                      ValidationError)
from loadflow.core.lifecycle import LoadStatus, validate_transition
from loadflow.core.permissions import Action, Actor, authorize, update_action
from loadflow.schemas.load import LoadCreate, LoadRecord

logger = logging.getLogger(__name__)

_notice_ids = itertools.count(1)

AuthErrorHandler = Callable[[AuthenticationError], Any]


@dataclasses.dataclass
class Notice:
    message: str
    load_id: Hashable | None = None
    field: str | None = None
    inline: bool = False
    id: int = dataclasses.field(default_factory=lambda: next(_notice_ids))


class LoadActions:
    def __init__(
        self,
        store: LoadStore,
        backend: LoadBackend,
        actor: Actor,
        on_auth_error: AuthErrorHandler | None = None,
        enforce_transitions: bool | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.actor = actor
        self.on_auth_error = on_auth_error
        if enforce_transitions is None:
            enforce_transitions = client_settings.ENFORCE_STATUS_TRANSITIONS
        self.enforce_transitions = enforce_transitions
        self.notices: list[Notice] = []
        self._tasks: set[asyncio.Task] = set()

    # ── Notices ─────────────────────────────────────────────────────
    def dismiss(self, notice: Notice) -> None:
        self.notices = [n for n in self.notices if n.id != notice.id]

    def clear_inline(self) -> None:
        self.notices = [n for n in self.notices if not n.inline]

    def _report(self, exc: BaseException, load_id: Hashable | None = None) -> None:
        if isinstance(exc, AuthenticationError):
            logger.info("Session rejected by server: %s", exc)
            if self.on_auth_error is not None:
                result = self.on_auth_error(exc)
                if inspect.isawaitable(result):
                    self._spawn(result)
            return
        if isinstance(exc, (ValidationError, ConflictError)):
            notice = Notice(exc.detail, load_id=load_id, field=exc.field, inline=True)
        elif isinstance(exc, LoadflowError):
            notice = Notice(exc.detail, load_id=load_id)
        else:
            logger.warning("Load action failed: %r", exc)
            notice = Notice("Could not reach the server; change reverted", load_id=load_id)
        self.notices.append(notice)

    # ── Task bookkeeping ────────────────────────────────────────────
    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _others(self) -> list[asyncio.Task]:
        current = asyncio.current_task()
        return [task for task in self._tasks if task is not current]

    async def drain(self) -> None:
        """Wait for every in-flight action to settle."""
        others = self._others()
        while others:
            await asyncio.gather(*others, return_exceptions=True)
            others = self._others()

    async def cancel(self) -> None:
        for task in self._others():
            task.cancel()
        await self.drain()

    # ── Optimistic updates ──────────────────────────────────────────
    async def _commit(self, token: RollbackToken) -> None:
        try:
            record = await self.backend.update(token.load_id, token.patch)
        except asyncio.CancelledError:
            self.store.rollback(token)
            raise
        except Exception as exc:
            self.store.rollback(token)
            if isinstance(exc, NotFoundError):
                self.store.remove(token.load_id)
            self._report(exc, token.load_id)
        else:
            self.store.confirm(token, record)

    def update(self, load_id: Hashable, patch: Mapping[str, Any]) -> RollbackToken | None:
        """Apply *patch* locally now and send it to the server.

        Returns the rollback token, or ``None`` when the change was
        refused locally (a notice explains why) or changes nothing.
        """
        current = self.store.get(load_id)
        try:
            if current is None:
                raise NotFoundError("Load not found")
            clean = canonical_patch(patch)
            authorize(self.actor, update_action(clean), current)
            if "status" in clean:
                if clean["status"] is None:
                    raise ValidationError("Status is required", field="status")
                validate_transition(current.status, clean["status"], self.enforce_transitions)
            changes = {k: v for k, v in clean.items() if getattr(current, k) != v}
            if not changes:
                return None
            token = self.store.apply_optimistic(load_id, changes)
        except LoadflowError as exc:
            self._report(exc, load_id)
            return None
        self._spawn(self._commit(token))
        return token

    def move(self, load_id: Hashable, status: LoadStatus | str) -> RollbackToken | None:
        """Drag a card to another status column."""
        return self.update(load_id, {"status": status})

    # ── Create / delete ─────────────────────────────────────────────
    async def _insert(self, payload: dict[str, Any]) -> LoadRecord | None:
        try:
            record = await self.backend.insert(payload)
        except Exception as exc:
            self._report(exc)
            return None
        self.store.upsert(record, prepend=True)
        return record

    def create(self, fields: Mapping[str, Any]) -> asyncio.Task | None:
        """Validate and submit a new load; the store gets it once the server has."""
        try:
            authorize(self.actor, Action.CREATE_LOAD)
            try:
                payload = LoadCreate.model_validate(dict(fields)).model_dump()
            except PydanticValidationError as exc:
                raise validation_error_from(exc) from exc
        except LoadflowError as exc:
            self._report(exc)
            return None
        return self._spawn(self._insert(payload))

    async def _delete(self, load_id: Hashable) -> None:
        try:
            await self.backend.delete(load_id)
        except NotFoundError:
            self.store.remove(load_id)
        except Exception as exc:
            self._report(exc, load_id)
        else:
            self.store.remove(load_id)

    def delete(self, load_id: Hashable) -> asyncio.Task | None:
        current = self.store.get(load_id)
        try:
            authorize(self.actor, Action.DELETE_LOAD, current)
        except LoadflowError as exc:
            self._report(exc, load_id)
            return None
        return self._spawn(self._delete(load_id))
