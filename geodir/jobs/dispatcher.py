"""
Notification Dispatcher

Turns matched subscribers into durable queue items and delivers them with a
bounded pool of asyncio workers.

Delivery guarantees:
- One queue item per (change event, user); the idempotency key is
  sha256("{sequence}||{user_id}") and the queue ignores duplicates.
- At-least-once towards the Notifier, with the idempotency key passed along
  so the provider can drop a repeat after a crash.
- A key this process has seen succeed is never sent again by this process.
"""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from typing import Iterable
from uuid import uuid4

import structlog
from cachetools import LRUCache

from geodir.entries.store import EntryStore
from geodir.events.types import ChangeEvent
from geodir.jobs.queue import DispatchItem, DispatchQueue, EnqueueDispatchRequest, compute_backoff_seconds
from geodir.kernel.hashing import build_idempotency_key
from geodir.kernel.time import Clock, utc_now
from geodir.matching.matcher import SubscriberTarget
from geodir.monitoring.metrics import get_metrics
from geodir.notifications.notifier import EntrySummary, Notifier, PermanentDispatchError
from geodir.users.repository import UserDirectory

logger = structlog.get_logger()


def dispatch_key(sequence: int, user_id: str) -> str:
    return build_idempotency_key(str(sequence), user_id)


class NotificationDispatcher:
    def __init__(
        self,
        queue: DispatchQueue,
        notifier: Notifier,
        users: UserDirectory,
        entries: EntryStore,
        *,
        worker_count: int = 4,
        lease_seconds: int = 60,
        poll_interval_seconds: float = 1.0,
        max_attempts: int = 6,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 300.0,
        reaper_interval_seconds: float = 30.0,
        reaper_limit: int = 500,
        sent_key_cache_size: int = 100_000,
        clock: Clock = utc_now,
    ) -> None:
        self._queue = queue
        self._notifier = notifier
        self._users = users
        self._entries = entries
        self._worker_count = max(1, int(worker_count))
        self._lease_seconds = int(lease_seconds)
        self._poll_interval = float(poll_interval_seconds)
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_base = float(backoff_base_seconds)
        self._backoff_max = float(backoff_max_seconds)
        self._reaper_interval = float(reaper_interval_seconds)
        self._reaper_limit = max(1, int(reaper_limit))
        self._clock = clock

        # Keys this process delivered; least recently sent keys are evicted first.
        self._sent_keys: LRUCache[str, bool] = LRUCache(maxsize=max(1, int(sent_key_cache_size)))

        self.worker_id = f"dispatcher:{uuid4()}"
        self._stopping = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._reaper: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def has_sent(self, idempotency_key: str) -> bool:
        return idempotency_key in self._sent_keys

    async def enqueue(self, event: ChangeEvent, targets: Iterable[SubscriberTarget]) -> int:
        now = self._clock()
        requests = [
            EnqueueDispatchRequest(
                event_sequence=event.sequence,
                user_id=target.user_id,
                entry_id=event.entry_id,
                event_kind=event.kind,
                idempotency_key=dispatch_key(event.sequence, target.user_id),
                run_at=now,
                max_attempts=self._max_attempts,
            )
            for target in sorted(targets, key=lambda t: t.user_id)
        ]
        if not requests:
            return 0
        inserted = await self._queue.enqueue_many(requests, now=now)
        get_metrics().track_dispatch_enqueued(inserted)
        if inserted:
            self._wakeup.set()
        logger.info(
            "Notifications enqueued",
            sequence=event.sequence,
            entry_id=event.entry_id,
            targets=len(requests),
            inserted=inserted,
        )
        return inserted

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(self._worker_loop(f"{self.worker_id}:{n}"), name=f"dispatch-worker-{n}")
            for n in range(self._worker_count)
        ]
        self._reaper = asyncio.create_task(self._reap_expired_leases(), name="dispatch-reaper")
        logger.info(
            "Notification dispatcher started",
            worker_id=self.worker_id,
            worker_count=self._worker_count,
        )

    async def shutdown(self, grace_seconds: float = 10.0) -> None:
        """Stop claiming, let in-flight sends finish until the deadline, then cancel them."""
        self._stopping.set()
        self._wakeup.set()

        if self._reaper is not None:
            self._reaper.cancel()
            await asyncio.gather(self._reaper, return_exceptions=True)
            self._reaper = None

        if not self._workers:
            return
        _done, pending = await asyncio.wait(self._workers, timeout=max(0.0, grace_seconds))
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        if pending:
            # Their items stay in 'sending' until the lease lapses, then the reaper requeues them.
            logger.warning(
                "Dispatcher shutdown cancelled in-flight sends",
                worker_id=self.worker_id,
                cancelled=len(pending),
            )
        self._workers = []
        logger.info("Notification dispatcher stopped", worker_id=self.worker_id)

    async def process_next(self, worker_id: str | None = None) -> bool:
        """Claim and deliver one item. Returns False when nothing was runnable."""
        item = await self._queue.claim_next(
            worker_id=worker_id or self.worker_id,
            lease_seconds=self._lease_seconds,
            now=self._clock(),
        )
        if item is None:
            return False
        await self._deliver(item)
        return True

    async def requeue_expired(self) -> int:
        requeued = await self._queue.requeue_expired(limit=self._reaper_limit, now=self._clock())
        if requeued:
            get_metrics().track_dispatch_requeued(requeued)
            logger.warning("Requeued expired dispatch items", worker_id=self.worker_id, count=requeued)
        return requeued

    async def _worker_loop(self, worker_id: str) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.process_next(worker_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Never crash the worker loop because of a single item.
                logger.error("Dispatch worker iteration failed", worker_id=worker_id, error=str(exc))
                processed = False
            if not processed:
                await self._idle()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            return
        if not self._stopping.is_set():
            self._wakeup.clear()

    async def _reap_expired_leases(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.requeue_expired()
            except Exception as exc:
                logger.warning("Failed to requeue expired dispatch items", worker_id=self.worker_id, error=str(exc))
            await asyncio.sleep(max(1.0, self._reaper_interval))

    async def _deliver(self, item: DispatchItem) -> None:
        metrics = get_metrics()
        log = logger.bind(
            dispatch_id=item.id,
            sequence=item.event_sequence,
            user_id=item.user_id,
            attempts=item.attempts,
        )

        if self.has_sent(item.idempotency_key):
            await self._queue.mark_sent(item.id, at=self._clock())
            metrics.track_dispatch_attempt(outcome="duplicate")
            log.info("Dispatch already delivered by this process")
            return

        started = time.perf_counter()
        try:
            summary, recipient = await self._prepare(item)
            await self._notifier.send(recipient, summary, idempotency_key=item.idempotency_key)
        except asyncio.CancelledError:
            raise
        except PermanentDispatchError as exc:
            await self._queue.mark_failed(item.id, error=_describe(exc), at=self._clock())
            metrics.track_dispatch_attempt(outcome="failed", duration=time.perf_counter() - started)
            metrics.track_dispatch_failure(kind="permanent")
            log.error("Notification failed permanently", error=_describe(exc))
            return
        except Exception as exc:
            await self._retry_or_fail(item, exc, duration=time.perf_counter() - started)
            return

        self._remember_sent(item.idempotency_key)
        metrics.track_dispatch_attempt(outcome="sent", duration=time.perf_counter() - started)
        try:
            await self._queue.mark_sent(item.id, at=self._clock())
        except Exception as exc:
            # The lease will lapse and the item will be reclaimed; the sent-key
            # cache stops this process from calling the notifier again.
            log.error("Failed to mark dispatch sent", error=str(exc))
            return
        log.info("Notification sent")

    async def _retry_or_fail(self, item: DispatchItem, exc: Exception, *, duration: float) -> None:
        metrics = get_metrics()
        now = self._clock()
        error = _describe(exc)
        if item.attempts >= item.max_attempts:
            await self._queue.mark_failed(item.id, error=error, at=now)
            metrics.track_dispatch_attempt(outcome="failed", duration=duration)
            metrics.track_dispatch_failure(kind="exhausted")
            logger.error(
                "Notification failed after final attempt",
                dispatch_id=item.id,
                user_id=item.user_id,
                attempts=item.attempts,
                error=error,
            )
            return

        backoff = compute_backoff_seconds(
            attempt=item.attempts,
            base=self._backoff_base,
            cap=self._backoff_max,
        )
        await self._queue.mark_retry(item.id, error=error, run_at=now + timedelta(seconds=backoff), at=now)
        metrics.track_dispatch_attempt(outcome="retry", duration=duration)
        metrics.track_dispatch_failure(kind="retryable")
        logger.error(
            "Notification attempt failed; retry scheduled",
            dispatch_id=item.id,
            user_id=item.user_id,
            attempts=item.attempts,
            max_attempts=item.max_attempts,
            backoff_seconds=backoff,
            error=error,
        )

    async def _prepare(self, item: DispatchItem) -> tuple[EntrySummary, str]:
        user = await self._users.get(item.user_id)
        if user is None or not user.email:
            raise PermanentDispatchError(f"No recipient for user {item.user_id}")
        entry = await self._entries.find(item.entry_id, include_archived=True)
        if entry is None:
            raise PermanentDispatchError(f"Entry {item.entry_id} no longer exists")
        summary = EntrySummary.from_entry(
            entry,
            kind=item.event_kind,
            sequence=item.event_sequence,
            occurred_at=entry.updated_at,
        )
        return summary, user.email

    def _remember_sent(self, idempotency_key: str) -> None:
        self._sent_keys[idempotency_key] = True


def _describe(exc: BaseException) -> str:
    message = str(exc)
    return f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__
