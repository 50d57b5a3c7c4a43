"""
Merge the server's load change stream into a ``LoadStore``.

Events are applied with the access filter re-evaluated per event, so an
employee's store only ever holds loads assigned to them:

* ``insert``: prepended, unless the actor may not see it;
* ``update``: upserted, or removed when the load left the actor's view
  (reassigned away);
* ``delete``: removed unconditionally (idempotent).

The stream is lossy across disconnects. Every time a subscription is
(re)opened the reconciler re-fetches the full set through
``LoadStore.load`` so a missed event can never leave the store out of
sync. Reconnects back off exponentially with jitter via ``tenacity``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from tenacity import (AsyncRetrying, RetryCallState, retry_if_exception_type,
                      stop_after_attempt, stop_never, wait_exponential,
                      wait_random)

from loadflow.client.api import EventSubscription, LoadBackend
from loadflow.client.config import ClientSettings, client_settings
from loadflow.client.errors import TRANSIENT_ERRORS
from loadflow.client.store import LoadStore
from loadflow.schemas.load import LoadEventMessage

logger = logging.getLogger(__name__)


def _log_reconnect(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Event stream connect attempt %d failed (%s); retrying in %.2fs",
        retry_state.attempt_number,
        type(exc).__name__ if exc else "unknown",
        wait,
    )


class RealtimeReconciler:
    def __init__(
        self,
        store: LoadStore,
        backend: LoadBackend,
        on_fatal: Callable[[BaseException], None] | None = None,
        settings: ClientSettings | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.on_fatal = on_fatal
        self.settings = settings or client_settings
        self.connected = False
        self.disconnects = 0
        self.resyncs = 0
        self._subscription: EventSubscription | None = None
        self._task: asyncio.Task | None = None

    # ── Event application ───────────────────────────────────────────
    def apply(self, event: LoadEventMessage) -> None:
        if event.type == "insert":
            self.store.upsert(event.record, prepend=True)
        elif event.type == "update":
            self.store.upsert(event.record)
        elif event.type == "delete":
            self.store.remove(event.record.id)

    async def resync(self) -> None:
        """Replace the store contents with a fresh fetch."""
        records = await self.backend.fetch_all()
        self.store.load(records)
        self.resyncs += 1
        logger.info("Load store resynchronised (%d loads)", len(self.store))

    # ── Connection management ───────────────────────────────────────
    def _retrying(self) -> AsyncRetrying:
        attempts = self.settings.RECONNECT_MAX_ATTEMPTS
        initial = self.settings.RECONNECT_INITIAL_DELAY
        return AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            wait=wait_exponential(multiplier=initial, max=self.settings.RECONNECT_MAX_DELAY)
            + wait_random(0, initial),
            stop=stop_after_attempt(attempts) if attempts > 0 else stop_never,
            before_sleep=_log_reconnect,
            reraise=True,
        )

    async def _connect(self) -> EventSubscription:
        """Open a subscription, then re-fetch so nothing missed is lost."""
        async for attempt in self._retrying():
            with attempt:
                subscription = self.backend.subscribe()
                try:
                    await subscription.open()
                    await self.resync()
                except BaseException:
                    await subscription.close()
                    raise
        self.connected = True
        return subscription

    async def start(self) -> None:
        """Connect, load the initial set and begin consuming events."""
        if self._task is not None:
            return
        self._subscription = await self._connect()
        self._task = asyncio.create_task(self.run(), name="load-event-reconciler")

    async def run(self) -> None:
        while True:
            subscription = self._subscription
            if subscription is None:
                return
            try:
                async for event in subscription:
                    self.apply(event)
            except TRANSIENT_ERRORS as exc:
                logger.warning("Event stream disconnected: %s", exc)
            except Exception as exc:
                logger.error("Event stream failed: %s", exc)
                await self._fail(exc)
                return
            self.connected = False
            self.disconnects += 1
            await subscription.close()
            self._subscription = None
            try:
                self._subscription = await self._connect()
            except Exception as exc:
                logger.error("Giving up on event stream: %s", exc)
                await self._fail(exc)
                return

    async def _fail(self, exc: BaseException) -> None:
        self.connected = False
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        if self.on_fatal is not None:
            self.on_fatal(exc)

    async def stop(self) -> None:
        """Stop consuming and close the subscription."""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        self.connected = False
