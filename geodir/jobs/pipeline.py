"""Change event handler: refresh the registry, match, enqueue."""

from __future__ import annotations

import structlog

from geodir.events.types import ChangeEvent
from geodir.jobs.dispatcher import NotificationDispatcher
from geodir.matching.matcher import BboxMatcher
from geodir.monitoring.metrics import get_metrics
from geodir.subscriptions.registry import SubscriptionRegistry

logger = structlog.get_logger()


class NotificationPipeline:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        matcher: BboxMatcher,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._registry = registry
        self._matcher = matcher
        self._dispatcher = dispatcher

    async def handle(self, event: ChangeEvent) -> int:
        await self._registry.refresh()
        targets = self._matcher.match(event)
        get_metrics().observe_match(len(targets))
        if not targets:
            logger.debug("Change event matched no subscribers", sequence=event.sequence, entry_id=event.entry_id)
            return 0
        return await self._dispatcher.enqueue(event, targets)
