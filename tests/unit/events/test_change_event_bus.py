from __future__ import annotations

import asyncio
from collections import defaultdict

import pytest

from geodir.entries.models import EntryPatch, NewEntry
from geodir.entries.store import EntryStore
from geodir.events.bus import ChangeEventBus
from geodir.events.types import ChangeEvent
from tests.support.entries import FakeChangeEventLog, FakeEntryRepository, FakeOutbox

pytestmark = pytest.mark.unit


class Recorder:
    def __init__(self, failures: int = 0) -> None:
        self.handled: list[ChangeEvent] = []
        self.failures = failures

    async def __call__(self, event: ChangeEvent) -> None:
        if self.failures:
            self.failures -= 1
            raise RuntimeError("handler down")
        self.handled.append(event)


def _build(fake_clock, handler, *, max_attempts: int = 10):
    outbox = FakeOutbox(max_attempts=max_attempts)
    store = EntryStore(FakeEntryRepository(outbox=outbox), clock=fake_clock.now)
    bus = ChangeEventBus(
        FakeChangeEventLog(outbox=outbox),
        handler,
        worker_id="bus:test",
        batch_size=10,
        poll_interval_seconds=0.01,
        backoff_base_seconds=2.0,
        backoff_max_seconds=60.0,
        clock=fake_clock.now,
    )
    store.set_on_commit(bus.wake)
    return store, outbox, bus


async def _drain(bus: ChangeEventBus) -> None:
    while await bus.process_batch():
        pass


@pytest.mark.asyncio
async def test_events_of_one_entry_are_handled_in_sequence_order(fake_clock):
    recorder = Recorder()
    store, outbox, bus = _build(fake_clock, recorder)
    first, version = await store.create(NewEntry(title="First", lat=1.0, lng=1.0))
    version = await store.update(first, version, EntryPatch(title="First v1"))
    await store.update(first, version, EntryPatch(title="First v2"))
    await store.create(NewEntry(title="Second", lat=2.0, lng=2.0))

    await _drain(bus)

    per_entry: dict[str, list[int]] = defaultdict(list)
    for event in recorder.handled:
        per_entry[event.entry_id].append(event.sequence)
    assert per_entry[first] == [1, 2, 3]
    assert sorted(e.sequence for e in recorder.handled) == [1, 2, 3, 4]
    assert {row.status for row in outbox.rows} == {"processed"}


@pytest.mark.asyncio
async def test_failed_event_is_retried_after_backoff_and_blocks_later_events(fake_clock):
    recorder = Recorder(failures=1)
    store, outbox, bus = _build(fake_clock, recorder)
    entry_id, version = await store.create(NewEntry(title="Cafe", lat=1.0, lng=1.0))
    await store.update(entry_id, version, EntryPatch(title="Cafe v1"))

    assert await bus.process_batch() == 1
    row = outbox.row(1)
    assert (row.status, row.attempts, row.last_error) == ("pending", 1, "handler down")

    # Neither the failed event nor its successor is runnable yet.
    assert await bus.process_batch() == 0

    fake_clock.advance(seconds=2)
    await _drain(bus)

    assert [event.sequence for event in recorder.handled] == [1, 2]
    assert outbox.row(1).attempts == 2


@pytest.mark.asyncio
async def test_event_is_parked_after_max_attempts(fake_clock):
    recorder = Recorder(failures=2)
    store, outbox, bus = _build(fake_clock, recorder, max_attempts=2)
    entry_id, version = await store.create(NewEntry(title="Cafe", lat=1.0, lng=1.0))
    await store.update(entry_id, version, EntryPatch(title="Cafe v1"))

    await bus.process_batch()
    fake_clock.advance(seconds=2)
    await bus.process_batch()

    assert outbox.row(1).status == "failed"
    assert outbox.row(1).processed_at == fake_clock.now()

    # A parked event no longer holds back the entry's later events.
    await _drain(bus)
    assert [event.sequence for event in recorder.handled] == [2]


@pytest.mark.asyncio
async def test_run_forever_wakes_on_commit_and_stops(fake_clock):
    recorder = Recorder()
    store, _outbox, bus = _build(fake_clock, recorder)
    runner = asyncio.create_task(bus.run_forever())
    try:
        await store.create(NewEntry(title="Cafe", lat=1.0, lng=1.0))
        for _ in range(200):
            if recorder.handled:
                break
            await asyncio.sleep(0.01)
    finally:
        bus.stop()
        await asyncio.wait_for(runner, timeout=2.0)

    assert [event.sequence for event in recorder.handled] == [1]


@pytest.mark.asyncio
async def test_stopped_bus_leaves_claimed_events_for_the_lease(fake_clock):
    recorder = Recorder()
    store, outbox, bus = _build(fake_clock, recorder)
    await store.create(NewEntry(title="A", lat=1.0, lng=1.0))
    await store.create(NewEntry(title="B", lat=2.0, lng=2.0))

    bus.stop()
    assert await bus.process_batch() == 2

    assert recorder.handled == []
    assert {row.status for row in outbox.rows} == {"pending"}
    assert all(row.lease_until is not None for row in outbox.rows)
