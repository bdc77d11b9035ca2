"""
Confirmation Gate

Single-use, expiring tokens for email-address and subscription confirmation.

State machine: Pending -> Confirmed | Expired | Revoked. Every transition is a
compare-and-set on `state = 'pending'`, so two concurrent redemptions of one
token cannot both succeed. Expiry is only evaluated when a token is redeemed.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Awaitable, Callable, Sequence

import structlog

from geodir.confirmation.models import ConfirmationToken, TokenState, TokenSubject
from geodir.confirmation.repository import TokenRepository
from geodir.kernel.errors import ConfirmationError
from geodir.kernel.hashing import hash_token
from geodir.kernel.time import Clock, utc_now
from geodir.monitoring.metrics import get_metrics
from geodir.users.repository import UserDirectory

logger = structlog.get_logger()

ConfirmedListener = Callable[[str], Awaitable[None]]


def _already_used(record: ConfirmationToken) -> ConfirmationError:
    return ConfirmationError(
        code="confirmation.already_used",
        message="Confirmation token has already been used or is no longer valid",
        meta={"state": record.state.value},
    )


class ConfirmationGate:
    def __init__(
        self,
        repository: TokenRepository,
        users: UserDirectory,
        *,
        ttls: dict[TokenSubject, timedelta] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._users = users
        self._ttls = ttls or {}
        self._clock = clock
        self._listeners: dict[TokenSubject, list[ConfirmedListener]] = {}

    def add_listener(self, subject: TokenSubject, listener: ConfirmedListener) -> None:
        """Run `listener(owner_id)` after a token of `subject` is confirmed."""
        self._listeners.setdefault(subject, []).append(listener)

    async def issue(
        self,
        subject: TokenSubject,
        owner_id: str,
        *,
        ttl: timedelta | None = None,
    ) -> str:
        lifetime = ttl or self._ttls.get(subject) or timedelta(hours=72)
        token = secrets.token_urlsafe(32)
        now = self._clock()
        await self._repository.insert(
            ConfirmationToken(
                token_hash=hash_token(token),
                subject=subject,
                owner_id=owner_id,
                state=TokenState.PENDING,
                expires_at=now + lifetime,
                created_at=now,
            )
        )
        logger.info("Confirmation token issued", subject=subject.value, owner_id=owner_id)
        return token

    async def redeem(self, token: str) -> ConfirmationToken:
        token_hash = hash_token(token or "")
        record = await self._repository.get(token_hash)
        if record is None:
            get_metrics().track_confirmation(subject="unknown", outcome="invalid")
            raise ConfirmationError(code="confirmation.invalid", message="Unknown confirmation token")

        subject = record.subject.value
        if record.state is not TokenState.PENDING:
            get_metrics().track_confirmation(subject=subject, outcome="already_used")
            raise _already_used(record)

        now = self._clock()
        if record.is_expired(now):
            await self._repository.transition(
                token_hash,
                from_state=TokenState.PENDING,
                to_state=TokenState.EXPIRED,
                at=now,
            )
            get_metrics().track_confirmation(subject=subject, outcome="expired")
            logger.info("Confirmation token expired", subject=subject, owner_id=record.owner_id)
            raise ConfirmationError(
                code="confirmation.expired",
                message="Confirmation token has expired",
                status_code=410,
            )

        confirmed = await self._repository.transition(
            token_hash,
            from_state=TokenState.PENDING,
            to_state=TokenState.CONFIRMED,
            at=now,
        )
        if confirmed is None:
            # Lost a race with another redemption or a revocation.
            current = await self._repository.get(token_hash) or record
            get_metrics().track_confirmation(subject=subject, outcome="already_used")
            raise _already_used(current)

        await self._apply(confirmed)
        get_metrics().track_confirmation(subject=subject, outcome="confirmed")
        logger.info("Confirmation token redeemed", subject=subject, owner_id=confirmed.owner_id)
        return confirmed

    async def revoke(self, token: str) -> bool:
        revoked = await self._repository.transition(
            hash_token(token),
            from_state=TokenState.PENDING,
            to_state=TokenState.REVOKED,
            at=self._clock(),
        )
        return revoked is not None

    async def revoke_for_owner(self, subject: TokenSubject, owner_ids: str | Sequence[str]) -> int:
        ids = [owner_ids] if isinstance(owner_ids, str) else list(owner_ids)
        count = await self._repository.revoke_pending_for_owners(subject, ids, at=self._clock())
        if count:
            logger.info("Confirmation tokens revoked", subject=subject.value, count=count)
        return count

    async def _apply(self, token: ConfirmationToken) -> None:
        if token.subject is TokenSubject.EMAIL:
            await self._users.mark_email_confirmed(token.owner_id)
        for listener in self._listeners.get(token.subject, []):
            await listener(token.owner_id)
