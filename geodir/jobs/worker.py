"""
Pipeline Worker

Runs the change-event bus consumer and the notification dispatcher pool.
The API embeds one when `pipeline_run_in_api` is set; otherwise run it as its
own process with `python -m geodir.jobs.worker`.
"""

from __future__ import annotations

import asyncio
import signal

import structlog

from geodir.config import get_settings
from geodir.container import Services, build_services
from geodir.db.client import close_db_pool, get_db_pool
from geodir.kernel.logging import configure_logging
from geodir.notifications.resend import ResendNotifier

logger = structlog.get_logger()


class PipelineWorker:
    def __init__(self, services: Services) -> None:
        self.services = services
        self._bus_task: asyncio.Task | None = None
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        await self.services.registry.load()
        await self.services.dispatcher.start()
        self._bus_task = asyncio.create_task(self.services.bus.run_forever(), name="change-event-bus")
        logger.info("Pipeline worker started")

    async def stop(self, grace_seconds: float | None = None) -> None:
        grace = (
            grace_seconds
            if grace_seconds is not None
            else self.services.settings.dispatch_shutdown_grace_seconds
        )
        self.services.bus.stop()
        if self._bus_task is not None:
            try:
                await asyncio.wait_for(self._bus_task, timeout=max(0.0, grace))
            except asyncio.TimeoutError:
                logger.warning("Change event bus did not stop in time; cancelling")
            except Exception as exc:
                logger.error("Change event bus exited with error", error=str(exc))
            self._bus_task = None
        await self.services.dispatcher.shutdown(grace)
        logger.info("Pipeline worker stopped")

    async def run_forever(self) -> None:
        await self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def _run() -> None:
    configure_logging()
    settings = get_settings()
    pool = await get_db_pool()
    notifier = ResendNotifier(settings=settings)
    services = build_services(pool=pool, notifier=notifier, mailer=notifier, settings=settings)
    worker = PipelineWorker(services)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.request_shutdown)
        except NotImplementedError:
            signal.signal(sig, lambda *_: worker.request_shutdown())

    try:
        await worker.run_forever()
    finally:
        await close_db_pool()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
