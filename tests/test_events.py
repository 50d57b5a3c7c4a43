"""Tests for the load event broker and the SSE stream generator."""

import asyncio
import json

import pytest

from conftest import make_record
from loadflow.api.v1.endpoints.events import _generate_sse, format_sse
from loadflow.core.permissions import Actor, Role
from loadflow.realtime.broker import LoadEventBroker

ADMIN = Actor(1, Role.ADMIN)
EMPLOYEE = Actor(7, Role.EMPLOYEE)


class _FakeRequest:
    def __init__(self) -> None:
        self.disconnected = False

    async def is_disconnected(self) -> bool:
        return self.disconnected


@pytest.mark.asyncio
async def test_privileged_subscriber_hears_everything():
    events = LoadEventBroker(queue_size=8)
    sub = events.subscribe(ADMIN)
    events.publish("insert", make_record(id=1, assigned_to=None))
    events.publish("insert", make_record(id=2, assigned_to=99))
    assert sub.queue.qsize() == 2
    sub.close()
    assert events.subscriber_count == 0


@pytest.mark.asyncio
async def test_employee_only_hears_about_own_loads_before_or_after():
    events = LoadEventBroker(queue_size=8)
    sub = events.subscribe(EMPLOYEE)

    foreign = make_record(id=1, assigned_to=99)
    events.publish("insert", foreign)
    assert sub.queue.empty()

    mine = make_record(id=2, assigned_to=EMPLOYEE.id)
    reassigned = mine.model_copy(update={"assigned_to": 99})
    events.publish("update", reassigned, mine)
    message = sub.queue.get_nowait()
    assert message.record.assigned_to == 99
    assert message.old_record.assigned_to == EMPLOYEE.id


@pytest.mark.asyncio
async def test_overflowing_subscriber_is_cut_off():
    events = LoadEventBroker(queue_size=1)
    sub = events.subscribe(ADMIN)
    events.publish("insert", make_record(id=1))
    events.publish("insert", make_record(id=2))
    assert sub.overflowed
    assert [e async for e in sub.events(keepalive=0.01)] == []


@pytest.mark.asyncio
async def test_next_returns_none_on_timeout():
    events = LoadEventBroker(queue_size=4)
    sub = events.subscribe(ADMIN)
    assert await sub.next(timeout=0.01) is None


def test_format_sse():
    assert format_sse("update", '{"a": 1}') == 'event: update\ndata: {"a": 1}\n\n'


@pytest.mark.asyncio
async def test_sse_generator_streams_events_and_unsubscribes():
    events = LoadEventBroker(queue_size=8)
    sub = events.subscribe(ADMIN)
    request = _FakeRequest()
    stream = _generate_sse(request, sub)

    assert await stream.__anext__() == ": connected\n\n"

    record = make_record(id=5)
    events.publish("insert", record)
    chunk = await stream.__anext__()
    assert chunk.startswith("event: insert\ndata: ")
    payload = json.loads(chunk.split("data: ", 1)[1])
    assert payload["type"] == "insert"
    assert payload["record"]["id"] == 5
    assert payload["old_record"] is None

    request.disconnected = True
    events.publish("delete", record, record)
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert events.subscriber_count == 0
