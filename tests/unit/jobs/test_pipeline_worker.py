from __future__ import annotations

import asyncio

import pytest

from geodir.entries.models import NewEntry
from geodir.geo.types import MapBbox
from geodir.jobs.worker import PipelineWorker

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_worker_delivers_notifications_end_to_end(services, repositories, notifier):
    repositories.users.add("alice")
    await services.registry.subscribe("alice", MapBbox.from_degrees(10, 10, 20, 20))
    worker = PipelineWorker(services)

    await worker.start()
    try:
        await services.entries.create(NewEntry(title="Inside", lat=15.0, lng=15.0))
        await services.entries.create(NewEntry(title="Outside", lat=25.0, lng=25.0))
        for _ in range(200):
            if notifier.calls:
                break
            await asyncio.sleep(0.01)
    finally:
        await worker.stop(grace_seconds=1.0)

    assert [summary.title for _, summary, _ in notifier.calls] == ["Inside"]
    assert not services.dispatcher.running


@pytest.mark.asyncio
async def test_request_shutdown_ends_run_forever(services):
    worker = PipelineWorker(services)
    runner = asyncio.create_task(worker.run_forever())
    await asyncio.sleep(0.05)

    worker.request_shutdown()
    await asyncio.wait_for(runner, timeout=5.0)

    assert not services.dispatcher.running
