"""Tests for the realtime reconciler."""

import asyncio

import httpx
import pytest

from conftest import later, make_record
from fakes import FakeBackend, network_down
from loadflow.client.config import ClientSettings
from loadflow.client.errors import ServerError
from loadflow.client.reconciler import RealtimeReconciler
from loadflow.client.store import LoadStore
from loadflow.core.exceptions import AuthenticationError
from loadflow.core.permissions import Actor, Role
from loadflow.schemas.load import LoadEventMessage

ALLOCATOR = Actor(1, Role.ALLOCATOR)
EMPLOYEE = Actor(7, Role.EMPLOYEE)

FAST = ClientSettings(
    RECONNECT_INITIAL_DELAY=0,
    RECONNECT_MAX_DELAY=0,
    RECONNECT_MAX_ATTEMPTS=5,
)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _event(type_, record, old=None) -> LoadEventMessage:
    return LoadEventMessage(type=type_, record=record, old_record=old)


# ── apply() ─────────────────────────────────────────────────────────
def test_update_reassigning_away_removes_load_from_employee_store():
    record = make_record(id=7, assigned_to=EMPLOYEE.id)
    store = LoadStore(EMPLOYEE)
    store.load([record])
    reconciler = RealtimeReconciler(store, FakeBackend())

    reconciler.apply(_event("update", later(record, assigned_to=99), record))
    assert 7 not in store


def test_insert_is_filtered_for_employees_and_prepended_otherwise():
    store = LoadStore(EMPLOYEE)
    store.load([make_record(id=1, assigned_to=EMPLOYEE.id)])
    reconciler = RealtimeReconciler(store, FakeBackend())

    reconciler.apply(_event("insert", make_record(id=2, assigned_to=99)))
    assert 2 not in store
    reconciler.apply(_event("insert", make_record(id=3, assigned_to=EMPLOYEE.id)))
    assert [r.id for r in store] == [3, 1]


def test_update_upserts_for_privileged_actor():
    record = make_record(id=1)
    store = LoadStore(ALLOCATOR)
    store.load([record])
    reconciler = RealtimeReconciler(store, FakeBackend())

    reconciler.apply(_event("update", later(record, client_name="Changed"), record))
    assert store.get(1).client_name == "Changed"

    # an update for a load we never had is added
    reconciler.apply(_event("update", make_record(id=2)))
    assert 2 in store


def test_delete_twice_is_idempotent():
    record = make_record(id=1)
    store = LoadStore(ALLOCATOR)
    store.load([record, make_record(id=2)])
    reconciler = RealtimeReconciler(store, FakeBackend())

    reconciler.apply(_event("delete", record, record))
    after_first = (store.records, store.version)
    reconciler.apply(_event("delete", record, record))
    assert (store.records, store.version) == after_first
    assert [r.id for r in store] == [2]


# ── Stream lifecycle ────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_start_fetches_and_consumes_events():
    backend = FakeBackend([make_record(id=1)])
    store = LoadStore(ALLOCATOR)
    reconciler = RealtimeReconciler(store, backend, settings=FAST)

    await reconciler.start()
    assert reconciler.connected
    assert backend.fetches == 1
    assert [r.id for r in store] == [1]

    backend.live.push(_event("insert", make_record(id=2)))
    await wait_until(lambda: 2 in store)

    await reconciler.stop()
    assert backend.live.closed
    assert not reconciler.connected


@pytest.mark.asyncio
async def test_reconnect_triggers_full_refetch():
    backend = FakeBackend([make_record(id=1)])
    store = LoadStore(ALLOCATOR)
    reconciler = RealtimeReconciler(store, backend, settings=FAST)
    await reconciler.start()
    first = backend.live

    # this change is never pushed; only a re-fetch can find it
    backend.records[3] = make_record(id=3)
    first.disconnect()

    await wait_until(lambda: 3 in store)
    assert first.closed
    assert backend.fetches == 2
    assert reconciler.disconnects == 1
    assert reconciler.connected
    assert len(backend.subscriptions) == 2
    await reconciler.stop()


@pytest.mark.asyncio
async def test_transient_connect_failures_are_retried():
    backend = FakeBackend([make_record(id=1)])
    backend.open_failures = [network_down(), network_down()]
    reconciler = RealtimeReconciler(LoadStore(ALLOCATOR), backend, settings=FAST)

    await reconciler.start()
    assert len(backend.subscriptions) == 3
    assert all(sub.closed for sub in backend.subscriptions[:2])
    await reconciler.stop()


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    backend = FakeBackend()
    backend.open_failures = [network_down()] * 3
    settings = FAST.model_copy(update={"RECONNECT_MAX_ATTEMPTS": 2})
    reconciler = RealtimeReconciler(LoadStore(ALLOCATOR), backend, settings=settings)

    with pytest.raises(httpx.ConnectError):
        await reconciler.start()
    assert len(backend.subscriptions) == 2


@pytest.mark.asyncio
async def test_non_transient_failure_on_reconnect_is_reported():
    failures = []
    backend = FakeBackend([make_record(id=1)])
    reconciler = RealtimeReconciler(
        LoadStore(ALLOCATOR), backend, on_fatal=failures.append, settings=FAST
    )
    await reconciler.start()

    backend.open_failures = [AuthenticationError("Token expired")]
    backend.live.disconnect()

    await wait_until(lambda: failures)
    assert isinstance(failures[0], AuthenticationError)
    assert not reconciler.connected
    await reconciler.stop()


@pytest.mark.asyncio
async def test_server_error_on_reconnect_is_retried():
    failures = []
    backend = FakeBackend([make_record(id=1)])
    reconciler = RealtimeReconciler(
        LoadStore(ALLOCATOR), backend, on_fatal=failures.append, settings=FAST
    )
    await reconciler.start()

    # a restarting proxy answers 502 once
    backend.open_failures = [ServerError("Bad gateway")]
    backend.live.disconnect()

    await wait_until(lambda: len(backend.subscriptions) == 3 and reconciler.connected)
    assert failures == []
    assert backend.subscriptions[1].closed
    assert backend.fetches == 2
    await reconciler.stop()
