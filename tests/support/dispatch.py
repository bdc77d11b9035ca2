from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from itertools import count
from typing import Sequence

from geodir.confirmation.models import TokenSubject
from geodir.jobs.queue import DispatchItem, EnqueueDispatchRequest
from geodir.notifications.notifier import EntrySummary


@dataclass
class FakeDispatchQueue:
    """`notification_dispatch` in memory, with the same lease rules as Postgres."""

    items: dict[str, DispatchItem] = field(default_factory=dict)
    leases: dict[str, datetime] = field(default_factory=dict)
    _ids: count = field(default_factory=lambda: count(1))

    async def enqueue_many(self, requests: Sequence[EnqueueDispatchRequest], *, now: datetime) -> int:
        await asyncio.sleep(0)
        known = {item.idempotency_key for item in self.items.values()}
        inserted = 0
        for request in requests:
            if request.idempotency_key in known:
                continue
            item_id = f"dsp_{next(self._ids)}"
            self.items[item_id] = DispatchItem(
                id=item_id,
                event_sequence=request.event_sequence,
                user_id=request.user_id,
                entry_id=request.entry_id,
                event_kind=request.event_kind,
                idempotency_key=request.idempotency_key,
                status="queued",
                attempts=0,
                max_attempts=max(1, request.max_attempts),
                run_at=request.run_at,
            )
            known.add(request.idempotency_key)
            inserted += 1
        return inserted

    async def claim_next(self, *, worker_id: str, lease_seconds: int, now: datetime) -> DispatchItem | None:
        await asyncio.sleep(0)
        runnable = [item for item in self.items.values() if item.status == "queued" and item.run_at <= now]
        if not runnable:
            return None
        item = min(runnable, key=lambda i: (i.run_at, i.event_sequence))
        claimed = replace(item, status="sending", attempts=item.attempts + 1)
        self.items[item.id] = claimed
        self.leases[item.id] = now + timedelta(seconds=max(5, lease_seconds))
        return claimed

    async def mark_sent(self, item_id: str, *, at: datetime) -> None:
        self.leases.pop(item_id, None)
        self.items[item_id] = replace(self.items[item_id], status="sent", sent_at=at, last_error=None)

    async def mark_retry(self, item_id: str, *, error: str, run_at: datetime, at: datetime) -> None:
        self.leases.pop(item_id, None)
        self.items[item_id] = replace(self.items[item_id], status="queued", run_at=run_at, last_error=error)

    async def mark_failed(self, item_id: str, *, error: str, at: datetime) -> None:
        self.leases.pop(item_id, None)
        self.items[item_id] = replace(self.items[item_id], status="failed", last_error=error)

    async def requeue_expired(self, *, limit: int, now: datetime) -> int:
        expired = sorted(
            (item_id for item_id, until in self.leases.items() if until < now),
            key=lambda item_id: self.leases[item_id],
        )[:limit]
        for item_id in expired:
            self.leases.pop(item_id)
            item = self.items[item_id]
            exhausted = item.attempts >= item.max_attempts
            self.items[item_id] = replace(
                item,
                status="failed" if exhausted else "queued",
                run_at=item.run_at if exhausted else now,
                last_error=item.last_error or "Lease expired",
            )
        return len(expired)

    async def list_items(self, *, status: str | None, limit: int) -> list[DispatchItem]:
        items = [item for item in self.items.values() if status is None or item.status == status]
        return items[:limit]

    async def retry_failed(self, item_id: str, *, max_attempts: int, now: datetime) -> bool:
        item = self.items.get(item_id)
        if item is None or item.status != "failed":
            return False
        self.items[item_id] = replace(item, status="queued", attempts=0, max_attempts=max_attempts, run_at=now)
        return True

    def with_status(self, status: str) -> list[DispatchItem]:
        return [item for item in self.items.values() if item.status == status]


@dataclass
class ScriptedNotifier:
    """
    Records every send. `script` holds outcomes consumed one per call: `None`
    succeeds, an exception instance is raised. An empty script succeeds.

    Set `hold` to an unset event to park sends until the test releases them.
    """

    script: deque = field(default_factory=deque)
    calls: list[tuple[str, EntrySummary, str]] = field(default_factory=list)
    hold: asyncio.Event | None = None

    async def send(self, recipient: str, summary: EntrySummary, *, idempotency_key: str) -> None:
        self.calls.append((recipient, summary, idempotency_key))
        if self.hold is not None:
            await self.hold.wait()
        outcome = self.script.popleft() if self.script else None
        if outcome is not None:
            raise outcome

    def keys(self) -> list[str]:
        return [key for _recipient, _summary, key in self.calls]


@dataclass
class RecordingMailer:
    sent: list[tuple[str, TokenSubject, str]] = field(default_factory=list)

    async def send_token(self, recipient: str, subject: TokenSubject, token: str) -> None:
        self.sent.append((recipient, subject, token))

    def last_token(self, subject: TokenSubject | None = None) -> str:
        tokens = [token for _to, sent_subject, token in self.sent if subject in (None, sent_subject)]
        return tokens[-1]
