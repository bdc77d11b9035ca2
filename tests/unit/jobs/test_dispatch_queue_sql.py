from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from geodir.events.types import ChangeKind
from geodir.jobs.queue import EnqueueDispatchRequest, PostgresDispatchQueue, compute_backoff_seconds

pytestmark = pytest.mark.unit

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _request(user_id: str) -> EnqueueDispatchRequest:
    return EnqueueDispatchRequest(
        event_sequence=7,
        user_id=user_id,
        entry_id="e1",
        event_kind=ChangeKind.CREATED,
        idempotency_key=f"key-{user_id}",
        run_at=NOW,
        max_attempts=0,
    )


def _item_row(**overrides):
    row = {
        "id": "dsp_1",
        "event_sequence": 7,
        "user_id": "alice",
        "entry_id": "e1",
        "event_kind": "updated",
        "idempotency_key": "key-alice",
        "status": "sending",
        "attempts": 2,
        "max_attempts": 6,
        "run_at": NOW,
        "last_error": None,
        "sent_at": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_enqueue_counts_only_new_rows(mock_db_pool):
    conn = mock_db_pool.acquire.return_value.__aenter__.return_value
    conn.fetchrow.side_effect = [{"id": "dsp_1"}, None]

    inserted = await PostgresDispatchQueue(mock_db_pool).enqueue_many(
        [_request("alice"), _request("bob")], now=NOW
    )

    assert inserted == 1
    assert conn.transaction.called
    sql, *params = conn.fetchrow.call_args_list[0].args
    assert "ON CONFLICT (idempotency_key) DO NOTHING" in sql
    assert params[5] == "key-alice"
    # max_attempts is floored at one.
    assert params[6] == 1


@pytest.mark.asyncio
async def test_enqueue_nothing_skips_the_database(mock_db_pool):
    assert await PostgresDispatchQueue(mock_db_pool).enqueue_many([], now=NOW) == 0
    assert not mock_db_pool.acquire.called


@pytest.mark.asyncio
async def test_claim_uses_skip_locked_and_a_lease(mock_db_pool):
    conn = mock_db_pool.acquire.return_value.__aenter__.return_value
    conn.fetchrow.return_value = _item_row()

    item = await PostgresDispatchQueue(mock_db_pool).claim_next(worker_id="w1", lease_seconds=1, now=NOW)

    assert item.id == "dsp_1"
    assert item.event_kind is ChangeKind.UPDATED
    assert item.attempts == 2
    sql, worker_id, lease_until, now = conn.fetchrow.call_args.args
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "attempts = attempts + 1" in sql
    assert worker_id == "w1"
    assert lease_until == NOW + timedelta(seconds=5)
    assert now == NOW


@pytest.mark.asyncio
async def test_claim_returns_none_when_queue_is_idle(mock_db_pool):
    assert await PostgresDispatchQueue(mock_db_pool).claim_next(worker_id="w1", lease_seconds=60, now=NOW) is None


@pytest.mark.asyncio
async def test_mark_retry_truncates_error_and_reschedules(mock_db_pool):
    conn = mock_db_pool.acquire.return_value.__aenter__.return_value
    later = NOW + timedelta(seconds=8)

    await PostgresDispatchQueue(mock_db_pool).mark_retry("dsp_1", error="x" * 5000, run_at=later, at=NOW)

    sql, item_id, error, run_at, at = conn.execute.call_args.args
    assert "status = 'queued'" in sql
    assert (item_id, len(error), run_at, at) == ("dsp_1", 2000, later, NOW)


@pytest.mark.asyncio
async def test_requeue_expired_reports_recovered_rows(mock_db_pool):
    conn = mock_db_pool.acquire.return_value.__aenter__.return_value
    conn.fetch.return_value = [{"id": "dsp_1"}, {"id": "dsp_2"}]

    assert await PostgresDispatchQueue(mock_db_pool).requeue_expired(limit=0, now=NOW) == 2
    sql, limit, now = conn.fetch.call_args.args
    assert "lease_until < $2" in sql
    assert (limit, now) == (1, NOW)


@pytest.mark.asyncio
async def test_retry_failed_only_touches_failed_items(mock_db_pool):
    conn = mock_db_pool.acquire.return_value.__aenter__.return_value
    queue = PostgresDispatchQueue(mock_db_pool)

    conn.fetchval.return_value = None
    assert await queue.retry_failed("dsp_1", max_attempts=3, now=NOW) is False

    conn.fetchval.return_value = "dsp_1"
    assert await queue.retry_failed("dsp_1", max_attempts=3, now=NOW) is True
    assert "AND status = 'failed'" in conn.fetchval.call_args.args[0]


@pytest.mark.asyncio
async def test_list_items_maps_rows(mock_db_pool):
    conn = mock_db_pool.acquire.return_value.__aenter__.return_value
    conn.fetch.return_value = [_item_row(status="sent", sent_at=NOW)]

    [item] = await PostgresDispatchQueue(mock_db_pool).list_items(status="sent", limit=10)

    assert item.to_dict()["sent_at"] == NOW.isoformat()
    assert conn.fetch.call_args.args[1:] == ("sent", 10)


@pytest.mark.parametrize(
    ("attempt", "expected"),
    [(0, 2.0), (1, 2.0), (2, 4.0), (3, 8.0), (6, 60.0), (10_000, 60.0)],
)
def test_backoff_doubles_per_attempt_up_to_the_cap(attempt, expected):
    assert compute_backoff_seconds(attempt=attempt, base=2.0, cap=60.0) == expected
