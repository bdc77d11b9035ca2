"""
Change Event Log

Consumer side of the `change_event` outbox. Claims use a lease so a crashed
consumer's events become claimable again, and never hand out an event while
an older event of the same entry is still unprocessed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from geodir.db.port import RawQueryPool
from geodir.events.types import ChangeEvent


@dataclass(frozen=True)
class ClaimedChangeEvent:
    event: ChangeEvent
    attempts: int
    max_attempts: int


class ChangeEventLog(Protocol):
    async def claim(
        self,
        *,
        worker_id: str,
        lease_seconds: int,
        limit: int,
        now: datetime,
    ) -> list[ClaimedChangeEvent]: ...

    async def mark_processed(self, sequence: int, *, at: datetime) -> None: ...

    async def mark_failed(
        self,
        sequence: int,
        *,
        error: str,
        retry_at: datetime,
        at: datetime,
    ) -> str: ...


class PostgresChangeEventLog:
    def __init__(self, pool: RawQueryPool) -> None:
        self._pool = pool

    async def claim(
        self,
        *,
        worker_id: str,
        lease_seconds: int,
        limit: int,
        now: datetime,
    ) -> list[ClaimedChangeEvent]:
        lease_until = now + timedelta(seconds=max(5, lease_seconds))
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                WITH picked AS (
                    SELECT ce.sequence
                    FROM change_event ce
                    WHERE ce.status = 'pending'
                      AND ce.available_at <= $3
                      AND (ce.lease_until IS NULL OR ce.lease_until < $3)
                      AND NOT EXISTS (
                        SELECT 1
                        FROM change_event prior
                        WHERE prior.entry_id = ce.entry_id
                          AND prior.sequence < ce.sequence
                          AND prior.status = 'pending'
                      )
                    ORDER BY ce.sequence ASC
                    LIMIT $4
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE change_event ce
                SET lease_until = $2,
                    locked_by = $1,
                    attempts = ce.attempts + 1
                FROM picked
                WHERE ce.sequence = picked.sequence
                RETURNING
                    ce.sequence,
                    ce.entry_id,
                    ce.kind,
                    ce.lat,
                    ce.lng,
                    ce.occurred_at,
                    ce.attempts,
                    ce.max_attempts
                """,
                worker_id,
                lease_until,
                now,
                max(1, int(limit)),
            )

        claimed = [
            ClaimedChangeEvent(
                event=ChangeEvent.from_row(row),
                attempts=int(row["attempts"]),
                max_attempts=int(row["max_attempts"]),
            )
            for row in rows or []
        ]
        # UPDATE ... RETURNING does not preserve the CTE ordering.
        claimed.sort(key=lambda item: item.event.sequence)
        return claimed

    async def mark_processed(self, sequence: int, *, at: datetime) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE change_event
                SET status = 'processed',
                    processed_at = $2,
                    lease_until = NULL,
                    last_error = NULL
                WHERE sequence = $1
                """,
                sequence,
                at,
            )

    async def mark_failed(
        self,
        sequence: int,
        *,
        error: str,
        retry_at: datetime,
        at: datetime,
    ) -> str:
        """Reschedule, or park as `failed` once attempts are exhausted. Returns the new status."""
        async with self._pool.acquire() as conn:
            status = await conn.fetchval(
                """
                UPDATE change_event
                SET status = CASE WHEN attempts >= max_attempts THEN 'failed' ELSE 'pending' END,
                    processed_at = CASE WHEN attempts >= max_attempts THEN $4::timestamptz ELSE NULL END,
                    available_at = $3::timestamptz,
                    lease_until = NULL,
                    locked_by = NULL,
                    last_error = $2
                WHERE sequence = $1
                RETURNING status
                """,
                sequence,
                error[:2000],
                retry_at,
                at,
            )
        return str(status or "failed")
