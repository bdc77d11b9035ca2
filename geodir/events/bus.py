"""
Change Event Bus

Single consumer loop over the change-event outbox. Events reach the handler in
sequence order per entry; handler failures are retried with backoff and the
event is parked as `failed` after `max_attempts`.
"""

from __future__ import annotations

import asyncio
import os
import socket
from datetime import timedelta
from typing import Awaitable, Callable

import structlog

from geodir.events.log import ChangeEventLog, ClaimedChangeEvent
from geodir.events.types import ChangeEvent
from geodir.jobs.queue import compute_backoff_seconds
from geodir.kernel.time import Clock, utc_now
from geodir.monitoring.metrics import get_metrics

logger = structlog.get_logger()

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


def default_worker_id(role: str) -> str:
    return f"{role}:{socket.gethostname()}:{os.getpid()}"


class ChangeEventBus:
    def __init__(
        self,
        log: ChangeEventLog,
        handler: ChangeHandler,
        *,
        worker_id: str | None = None,
        batch_size: int = 100,
        lease_seconds: int = 60,
        poll_interval_seconds: float = 1.0,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 300.0,
        clock: Clock = utc_now,
    ) -> None:
        self._log = log
        self._handler = handler
        self._worker_id = worker_id or default_worker_id("bus")
        self._batch_size = max(1, int(batch_size))
        self._lease_seconds = int(lease_seconds)
        self._poll_interval = float(poll_interval_seconds)
        self._backoff_base = float(backoff_base_seconds)
        self._backoff_max = float(backoff_max_seconds)
        self._clock = clock
        self._wakeup = asyncio.Event()
        self._shutdown = asyncio.Event()

    def wake(self) -> None:
        """Nudge the consumer after a commit instead of waiting for the next poll."""
        self._wakeup.set()

    def stop(self) -> None:
        self._shutdown.set()
        self._wakeup.set()

    async def process_batch(self) -> int:
        """Claim and handle one batch. Returns the number of events claimed."""
        batch = await self._log.claim(
            worker_id=self._worker_id,
            lease_seconds=self._lease_seconds,
            limit=self._batch_size,
            now=self._clock(),
        )
        for item in batch:
            if self._shutdown.is_set():
                # Unhandled claims fall back to the queue when their lease lapses.
                break
            await self._handle(item)
        return len(batch)

    async def run_forever(self) -> None:
        logger.info("Change event bus starting", worker_id=self._worker_id)
        while not self._shutdown.is_set():
            self._wakeup.clear()
            try:
                claimed = await self.process_batch()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Change event claim failed", error=str(exc))
                claimed = 0

            if claimed >= self._batch_size:
                continue
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Change event bus stopped", worker_id=self._worker_id)

    async def _handle(self, item: ClaimedChangeEvent) -> None:
        event = item.event
        try:
            await self._handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            now = self._clock()
            backoff = compute_backoff_seconds(
                attempt=item.attempts,
                base=self._backoff_base,
                cap=self._backoff_max,
            )
            status = await self._log.mark_failed(
                event.sequence,
                error=str(exc) or exc.__class__.__name__,
                retry_at=now + timedelta(seconds=backoff),
                at=now,
            )
            get_metrics().track_bus_event(status="failed" if status == "failed" else "retry")
            logger.error(
                "Change event handler failed",
                sequence=event.sequence,
                entry_id=event.entry_id,
                attempts=item.attempts,
                max_attempts=item.max_attempts,
                status=status,
                backoff_seconds=backoff,
                error=str(exc),
            )
            return

        now = self._clock()
        await self._log.mark_processed(event.sequence, at=now)
        get_metrics().track_bus_event(
            status="processed",
            lag_seconds=(now - event.occurred_at).total_seconds(),
        )
