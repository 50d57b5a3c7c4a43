"""
In-process fan-out of load change events to event-stream subscribers.

Each subscriber owns a bounded ``asyncio.Queue``. Publishing never
blocks: a subscriber that falls so far behind that its queue is full is
cut off, and its client re-fetches on reconnect. Events are filtered per
subscriber with the access policy, so an employee only hears about loads
that were assigned to them before or after the change.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from loadflow.core.config import settings
from loadflow.core.permissions import Actor, can_view
from loadflow.schemas.load import EventType, LoadEventMessage, LoadRecord

logger = logging.getLogger(__name__)


class Subscription:
    def __init__(self, broker: "LoadEventBroker", actor: Actor, maxsize: int) -> None:
        self.broker = broker
        self.actor = actor
        self.queue: asyncio.Queue[LoadEventMessage] = asyncio.Queue(maxsize=maxsize)
        self.overflowed = False
        self.closed = False

    def wants(self, message: LoadEventMessage) -> bool:
        if can_view(self.actor, message.record):
            return True
        return message.old_record is not None and can_view(self.actor, message.old_record)

    def offer(self, message: LoadEventMessage) -> None:
        if self.closed or not self.wants(message):
            return
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Event subscriber for user %s overflowed; disconnecting", self.actor.id
            )
            self.overflowed = True

    async def next(self, timeout: float | None = None) -> LoadEventMessage | None:
        """Wait for the next event; ``None`` means *timeout* elapsed first."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def events(self, keepalive: float | None = None) -> AsyncIterator[LoadEventMessage | None]:
        """Yield events until closed or overflowed; ``None`` items are keepalive ticks."""
        while not self.closed and not self.overflowed:
            yield await self.next(keepalive)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.broker.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class LoadEventBroker:
    def __init__(self, queue_size: int | None = None) -> None:
        self.queue_size = queue_size or settings.EVENT_QUEUE_SIZE
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, actor: Actor) -> Subscription:
        sub = Subscription(self, actor, self.queue_size)
        self._subscribers.add(sub)
        logger.info("Event subscriber added for user %s (%d total)", actor.id, len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)
        logger.info("Event subscriber removed for user %s (%d left)", sub.actor.id, len(self._subscribers))

    def publish(
        self,
        event_type: EventType,
        record: LoadRecord,
        old_record: LoadRecord | None = None,
    ) -> LoadEventMessage:
        message = LoadEventMessage(type=event_type, record=record, old_record=old_record)
        for sub in list(self._subscribers):
            sub.offer(message)
        return message


broker = LoadEventBroker()
