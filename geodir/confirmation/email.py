"""
Email confirmation requests.

Starts the email half of the confirmation flow: issues an EMAIL token for a
user and mails the link. Redeeming it through the gate marks the address
confirmed and activates the user's pending subscriptions.

Only the newest link works; earlier pending email tokens of the user are
revoked when a new one is requested.
"""

from __future__ import annotations

import structlog

from geodir.confirmation.gate import ConfirmationGate
from geodir.confirmation.models import TokenSubject
from geodir.kernel.errors import GeodirError, NotFoundError, ValidationError
from geodir.monitoring.metrics import get_metrics
from geodir.notifications.notifier import ConfirmationMailer
from geodir.users.repository import UserDirectory

logger = structlog.get_logger()


class EmailConfirmationService:
    def __init__(
        self,
        gate: ConfirmationGate,
        users: UserDirectory,
        mailer: ConfirmationMailer | None,
    ) -> None:
        self._gate = gate
        self._users = users
        self._mailer = mailer

    async def request_email_confirmation(self, user_id: str) -> bool:
        """Mail a fresh confirmation link; False when the address is already confirmed."""
        user = await self._users.get(user_id)
        if user is None:
            raise NotFoundError(code="user.not_found", message="User not found", meta={"user_id": user_id})
        if user.email_confirmed:
            logger.info("Email already confirmed", user_id=user_id)
            return False
        if not user.email:
            raise ValidationError(
                code="user.missing_email",
                message="User has no email address to confirm",
                meta={"user_id": user_id},
            )
        if self._mailer is None:
            raise GeodirError(
                code="confirmation.delivery_unavailable",
                message="Confirmation emails cannot be sent right now",
                status_code=503,
            )

        await self._gate.revoke_for_owner(TokenSubject.EMAIL, user_id)
        token = await self._gate.issue(TokenSubject.EMAIL, user_id)
        try:
            await self._mailer.send_token(user.email, TokenSubject.EMAIL, token)
        except Exception as exc:
            await self._gate.revoke(token)
            get_metrics().track_confirmation(subject=TokenSubject.EMAIL.value, outcome="delivery_failed")
            logger.error("Email confirmation delivery failed", user_id=user_id, error=str(exc))
            raise GeodirError(
                code="confirmation.delivery_failed",
                message="Confirmation email could not be sent",
                status_code=502,
            ) from exc

        get_metrics().track_confirmation(subject=TokenSubject.EMAIL.value, outcome="requested")
        logger.info("Email confirmation requested", user_id=user_id)
        return True
