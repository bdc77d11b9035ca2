"""
Subscription Registry

Source of truth for bbox subscriptions plus the in-memory spatial index the
matcher reads. A subscription is indexed exactly when it is Confirmed, which
requires a confirmed owner email and, when configured, a redeemed
subscription token.

Index maintenance:
- `load()` builds the index from all confirmed rows at startup.
- Local writes are applied to the index immediately.
- `refresh()` pulls rows whose `revision` moved past the watermark, so a
  worker process follows subscriptions written by API processes.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

import structlog

from geodir.confirmation.gate import ConfirmationGate
from geodir.confirmation.models import TokenSubject
from geodir.geo.index import IndexSnapshot, SpatialIndex
from geodir.geo.types import MapBbox
from geodir.kernel.errors import ConflictError, NotFoundError
from geodir.kernel.ids import new_prefixed_id
from geodir.kernel.time import Clock, utc_now
from geodir.monitoring.metrics import get_metrics
from geodir.notifications.notifier import ConfirmationMailer
from geodir.subscriptions.models import Subscription, SubscriptionState
from geodir.subscriptions.repository import SubscriptionRepository
from geodir.users.repository import UserDirectory

logger = structlog.get_logger()


class SubscriptionRegistry:
    def __init__(
        self,
        repository: SubscriptionRepository,
        users: UserDirectory,
        gate: ConfirmationGate,
        *,
        index: SpatialIndex | None = None,
        mailer: ConfirmationMailer | None = None,
        require_subscription_confirmation: bool = False,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._users = users
        self._gate = gate
        self._index = index or SpatialIndex()
        self._mailer = mailer
        self._require_token = require_subscription_confirmation
        self._clock = clock
        self._watermark = 0
        self._applied: dict[str, int] = {}
        self._refresh_lock = asyncio.Lock()

    @property
    def watermark(self) -> int:
        return self._watermark

    def snapshot(self) -> IndexSnapshot:
        return self._index.snapshot()

    async def subscribe(self, user_id: str, bbox: MapBbox) -> str:
        user = await self._users.get(user_id)
        if user is None:
            raise NotFoundError(code="user.not_found", message="User not found", meta={"user_id": user_id})

        existing = await self._repository.find_by_user_bbox(user_id, bbox)
        if existing is not None and existing.is_live:
            return existing.id

        token_confirmed = not self._require_token
        state = (
            SubscriptionState.CONFIRMED
            if token_confirmed and user.email_confirmed
            else SubscriptionState.PENDING
        )
        now = self._clock()
        if existing is not None:
            subscription = await self._repository.set_state(
                existing.id,
                state,
                at=now,
                token_confirmed=token_confirmed,
                expected_state=SubscriptionState.REVOKED,
            )
            if subscription is None:
                # Revived by a concurrent subscribe of the same box.
                winner = await self._repository.get(existing.id)
                if winner is None or not winner.is_live:
                    raise ConflictError(
                        code="subscription.concurrent_update",
                        message="Subscription changed concurrently, retry",
                        meta={"subscription_id": existing.id},
                    )
                return winner.id
        else:
            try:
                subscription = await self._repository.insert(
                    subscription_id=new_prefixed_id("sub"),
                    user_id=user_id,
                    bbox=bbox,
                    state=state,
                    token_confirmed=token_confirmed,
                    at=now,
                )
            except ConflictError:
                # Concurrent subscribe of the same box; the other call won.
                winner = await self._repository.find_by_user_bbox(user_id, bbox)
                if winner is None:
                    raise
                return winner.id

        self._sync(subscription)
        get_metrics().track_subscription_change(subscription.state.value)
        logger.info(
            "Subscription created",
            user_id=user_id,
            subscription_id=subscription.id,
            state=subscription.state.value,
            antimeridian=bbox.crosses_antimeridian,
        )

        if not token_confirmed:
            await self._send_subscription_token(subscription.id, user.email)
        return subscription.id

    async def unsubscribe_all(self, user_id: str) -> int:
        revoked = await self._repository.revoke_all_for_user(user_id, at=self._clock())
        if not revoked:
            return 0
        for subscription in revoked:
            self._sync(subscription)
        await self._gate.revoke_for_owner(TokenSubject.SUBSCRIPTION, [s.id for s in revoked])
        get_metrics().track_subscription_change(SubscriptionState.REVOKED.value)
        logger.info("Subscriptions revoked", user_id=user_id, count=len(revoked))
        return len(revoked)

    async def list_for_user(self, user_id: str) -> list[Subscription]:
        return await self._repository.list_for_user(user_id)

    def list_confirmed(self) -> AsyncIterator[Subscription]:
        return self._repository.iter_confirmed()

    async def confirm_subscription(self, subscription_id: str) -> None:
        subscription = await self._repository.get(subscription_id)
        if subscription is None or not subscription.is_live:
            logger.info("Subscription confirmation ignored", subscription_id=subscription_id)
            return
        user = await self._users.get(subscription.user_id)
        state = (
            SubscriptionState.CONFIRMED
            if user is not None and user.email_confirmed
            else SubscriptionState.PENDING
        )
        updated = await self._repository.set_state(
            subscription_id,
            state,
            at=self._clock(),
            token_confirmed=True,
            expected_state=subscription.state,
        )
        if updated is None:
            logger.info("Subscription changed during confirmation", subscription_id=subscription_id)
            return
        self._sync(updated)
        get_metrics().track_subscription_change(updated.state.value)

    async def activate_user(self, user_id: str) -> int:
        """Confirm every pending subscription of a user whose own token is settled.

        Only rows still pending at write time move; a concurrent unsubscribe wins.
        """
        activated = 0
        for subscription in await self._repository.list_for_user(user_id):
            if subscription.state is not SubscriptionState.PENDING or not subscription.token_confirmed:
                continue
            updated = await self._repository.set_state(
                subscription.id,
                SubscriptionState.CONFIRMED,
                at=self._clock(),
                expected_state=SubscriptionState.PENDING,
            )
            if updated is None:
                logger.info("Subscription left pending state before activation", subscription_id=subscription.id)
                continue
            self._sync(updated)
            activated += 1
        if activated:
            get_metrics().track_subscription_change(SubscriptionState.CONFIRMED.value)
            logger.info("Subscriptions activated", user_id=user_id, count=activated)
        return activated

    async def load(self) -> int:
        """Build the index from scratch out of confirmed subscriptions."""
        async with self._refresh_lock:
            # Read the watermark first so writes racing the scan are replayed by refresh().
            watermark = await self._repository.max_revision()
            batch: list[tuple[str, str, MapBbox]] = []
            async for subscription in self._repository.iter_confirmed():
                if self._is_stale(subscription):
                    continue
                self._applied[subscription.id] = subscription.revision
                batch.append((subscription.id, subscription.user_id, subscription.bbox))
            self._index.insert_many(batch)
            self._watermark = max(self._watermark, watermark)
        get_metrics().set_subscriptions_indexed(len(self._index))
        logger.info("Subscription index loaded", size=len(self._index), revision=self._watermark)
        return len(batch)

    async def refresh(self) -> int:
        """Apply subscription changes committed since the last load/refresh."""
        applied = 0
        async with self._refresh_lock:
            while True:
                changed = await self._repository.changed_since(self._watermark)
                if not changed:
                    break
                for subscription in changed:
                    self._sync(subscription)
                    self._watermark = max(self._watermark, subscription.revision)
                applied += len(changed)
        if applied:
            logger.debug("Subscription index refreshed", applied=applied, revision=self._watermark)
        return applied

    def _is_stale(self, subscription: Subscription) -> bool:
        return subscription.revision < self._applied.get(subscription.id, 0)

    def _sync(self, subscription: Subscription) -> None:
        # Concurrent writers can finish out of order; the highest revision wins.
        if self._is_stale(subscription):
            return
        self._applied[subscription.id] = subscription.revision
        if subscription.is_confirmed:
            self._index.insert(subscription.id, subscription.user_id, subscription.bbox)
        else:
            self._index.remove(subscription.id)
        get_metrics().set_subscriptions_indexed(len(self._index))

    async def _send_subscription_token(self, subscription_id: str, email: str) -> None:
        token = await self._gate.issue(TokenSubject.SUBSCRIPTION, subscription_id)
        if self._mailer is None:
            logger.warning("No confirmation mailer configured", subscription_id=subscription_id)
            return
        try:
            await self._mailer.send_token(email, TokenSubject.SUBSCRIPTION, token)
        except Exception as exc:
            logger.error(
                "Subscription confirmation email failed",
                subscription_id=subscription_id,
                error=str(exc),
            )
