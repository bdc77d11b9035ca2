"""Postgres-backed durable notification dispatch queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol, Sequence

import structlog

from geodir.db.port import RawQueryPool
from geodir.events.types import ChangeKind
from geodir.kernel.ids import new_prefixed_id
from geodir.kernel.time import coerce_utc

logger = structlog.get_logger()

DISPATCH_STATUSES = ("queued", "sending", "sent", "failed")


@dataclass(frozen=True)
class EnqueueDispatchRequest:
    event_sequence: int
    user_id: str
    entry_id: str
    event_kind: ChangeKind
    idempotency_key: str
    run_at: datetime
    max_attempts: int = 6


@dataclass(frozen=True)
class DispatchItem:
    id: str
    event_sequence: int
    user_id: str
    entry_id: str
    event_kind: ChangeKind
    idempotency_key: str
    status: str
    attempts: int
    max_attempts: int
    run_at: datetime
    last_error: str | None = None
    sent_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_sequence": self.event_sequence,
            "user_id": self.user_id,
            "entry_id": self.entry_id,
            "event_kind": self.event_kind.value,
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "run_at": self.run_at.isoformat(),
            "last_error": self.last_error,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    @classmethod
    def from_row(cls, row: Any) -> "DispatchItem":
        sent_at = row["sent_at"]
        return cls(
            id=str(row["id"]),
            event_sequence=int(row["event_sequence"]),
            user_id=str(row["user_id"]),
            entry_id=str(row["entry_id"]),
            event_kind=ChangeKind(row["event_kind"]),
            idempotency_key=row["idempotency_key"],
            status=row["status"],
            attempts=int(row["attempts"] or 0),
            max_attempts=int(row["max_attempts"] or 1),
            run_at=coerce_utc(row["run_at"]),
            last_error=row["last_error"],
            sent_at=coerce_utc(sent_at) if sent_at else None,
        )


class DispatchQueue(Protocol):
    async def enqueue_many(self, requests: Sequence[EnqueueDispatchRequest], *, now: datetime) -> int: ...

    async def claim_next(self, *, worker_id: str, lease_seconds: int, now: datetime) -> DispatchItem | None: ...

    async def mark_sent(self, item_id: str, *, at: datetime) -> None: ...

    async def mark_retry(self, item_id: str, *, error: str, run_at: datetime, at: datetime) -> None: ...

    async def mark_failed(self, item_id: str, *, error: str, at: datetime) -> None: ...

    async def requeue_expired(self, *, limit: int, now: datetime) -> int: ...

    async def list_items(self, *, status: str | None, limit: int) -> list[DispatchItem]: ...

    async def retry_failed(self, item_id: str, *, max_attempts: int, now: datetime) -> bool: ...


_ITEM_COLUMNS = """
    id, event_sequence, user_id, entry_id, event_kind, idempotency_key,
    status, attempts, max_attempts, run_at, last_error, sent_at
"""


class PostgresDispatchQueue:
    def __init__(self, pool: RawQueryPool) -> None:
        self._pool = pool

    async def enqueue_many(self, requests: Sequence[EnqueueDispatchRequest], *, now: datetime) -> int:
        """
        Insert queue items, skipping keys that already exist.

        Idempotency: the unique `idempotency_key` makes re-handling the same
        change event a no-op, including for items that were already sent.
        """
        if not requests:
            return 0
        inserted = 0
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                for request in requests:
                    row = await conn.fetchrow(
                        """
                        INSERT INTO notification_dispatch (
                            id, event_sequence, user_id, entry_id, event_kind,
                            idempotency_key, status, attempts, max_attempts, run_at,
                            created_at, updated_at
                        )
                        VALUES (
                            $1, $2, $3, $4, $5,
                            $6, 'queued', 0, $7, $8,
                            $9, $9
                        )
                        ON CONFLICT (idempotency_key) DO NOTHING
                        RETURNING id
                        """,
                        new_prefixed_id("dsp"),
                        request.event_sequence,
                        request.user_id,
                        request.entry_id,
                        request.event_kind.value,
                        request.idempotency_key,
                        int(max(1, request.max_attempts)),
                        request.run_at,
                        now,
                    )
                    if row:
                        inserted += 1
        return inserted

    async def claim_next(self, *, worker_id: str, lease_seconds: int, now: datetime) -> DispatchItem | None:
        """Claim the next runnable item using a lease (FOR UPDATE SKIP LOCKED)."""
        lease_until = now + timedelta(seconds=max(5, lease_seconds))
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE notification_dispatch
                SET status = 'sending',
                    locked_by = $1,
                    lease_until = $2,
                    attempts = attempts + 1,
                    updated_at = $3
                WHERE id = (
                    SELECT nd.id
                    FROM notification_dispatch nd
                    WHERE nd.status = 'queued'
                      AND nd.run_at <= $3
                    ORDER BY nd.run_at ASC, nd.event_sequence ASC
                    FOR UPDATE SKIP LOCKED
                    LIMIT 1
                )
                RETURNING {_ITEM_COLUMNS}
                """,
                worker_id,
                lease_until,
                now,
            )
        return DispatchItem.from_row(row) if row else None

    async def mark_sent(self, item_id: str, *, at: datetime) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE notification_dispatch
                SET status = 'sent',
                    sent_at = $2,
                    lease_until = NULL,
                    locked_by = NULL,
                    last_error = NULL,
                    updated_at = $2
                WHERE id = $1
                """,
                item_id,
                at,
            )

    async def mark_retry(self, item_id: str, *, error: str, run_at: datetime, at: datetime) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE notification_dispatch
                SET status = 'queued',
                    run_at = $3,
                    lease_until = NULL,
                    locked_by = NULL,
                    last_error = $2,
                    updated_at = $4
                WHERE id = $1
                """,
                item_id,
                error[:2000],
                run_at,
                at,
            )

    async def mark_failed(self, item_id: str, *, error: str, at: datetime) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE notification_dispatch
                SET status = 'failed',
                    lease_until = NULL,
                    locked_by = NULL,
                    last_error = $2,
                    updated_at = $3
                WHERE id = $1
                """,
                item_id,
                error[:2000],
                at,
            )

    async def requeue_expired(self, *, limit: int, now: datetime) -> int:
        """
        Requeue items left in 'sending' whose lease expired.

        Without this, a worker crash mid-send would leave items stuck forever.
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                WITH expired AS (
                    SELECT id
                    FROM notification_dispatch
                    WHERE status = 'sending'
                      AND lease_until IS NOT NULL
                      AND lease_until < $2::timestamptz
                    ORDER BY lease_until ASC
                    LIMIT $1
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE notification_dispatch nd
                SET status = CASE WHEN nd.attempts >= nd.max_attempts THEN 'failed' ELSE 'queued' END,
                    lease_until = NULL,
                    locked_by = NULL,
                    last_error = COALESCE(nd.last_error, 'Lease expired'),
                    run_at = CASE WHEN nd.attempts >= nd.max_attempts THEN nd.run_at ELSE $2::timestamptz END,
                    updated_at = $2::timestamptz
                FROM expired
                WHERE nd.id = expired.id
                RETURNING nd.id
                """,
                int(max(1, limit)),
                now,
            )
        return len(rows or [])

    async def list_items(self, *, status: str | None, limit: int) -> list[DispatchItem]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_ITEM_COLUMNS}
                FROM notification_dispatch
                WHERE ($1::text IS NULL OR status = $1)
                ORDER BY updated_at DESC
                LIMIT $2
                """,
                status,
                int(max(1, limit)),
            )
        return [DispatchItem.from_row(row) for row in rows or []]

    async def retry_failed(self, item_id: str, *, max_attempts: int, now: datetime) -> bool:
        async with self._pool.acquire() as conn:
            updated = await conn.fetchval(
                """
                UPDATE notification_dispatch
                SET status = 'queued',
                    attempts = 0,
                    max_attempts = $2,
                    run_at = $3,
                    updated_at = $3
                WHERE id = $1 AND status = 'failed'
                RETURNING id
                """,
                item_id,
                int(max(1, max_attempts)),
                now,
            )
        return updated is not None


def compute_backoff_seconds(*, attempt: int, base: float = 2.0, cap: float = 300.0) -> float:
    # attempt=1 -> base, attempt=2 -> 2*base, attempt=3 -> 4*base, clamped to cap
    exponent = min(max(0, attempt - 1), 32)
    return min(cap, base * (2 ** exponent))
