"""Resend email client implementing the Notifier and ConfirmationMailer capabilities."""

from __future__ import annotations

import httpx
import structlog

from geodir.config import Settings, get_settings
from geodir.confirmation.models import TokenSubject
from geodir.notifications.notifier import (
    EntrySummary,
    PermanentDispatchError,
    RetryableDispatchError,
)
from geodir.notifications.templates import RenderedEmail, render_entry_email, render_token_email

logger = structlog.get_logger()

_RETRYABLE_STATUS = {408, 409, 425, 429}


class ResendNotifier:
    """Posts one email per call to the Resend API.

    Without an API key and sender address nothing can be delivered, so every
    send fails permanently instead of reporting a delivery that never happened.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._settings.resend_api_key and self._settings.resend_from)

    async def send(self, recipient: str, summary: EntrySummary, *, idempotency_key: str) -> None:
        email = render_entry_email(summary, web_app_url=self._settings.web_app_url)
        await self._post(
            recipient,
            email,
            idempotency_key=idempotency_key,
            tags={"kind": f"entry_{summary.kind.value}"},
        )

    async def send_token(self, recipient: str, subject: TokenSubject, token: str) -> None:
        email = render_token_email(subject, token, web_app_url=self._settings.web_app_url)
        await self._post(recipient, email, idempotency_key=None, tags={"kind": f"confirm_{subject.value}"})

    async def _post(
        self,
        recipient: str,
        email: RenderedEmail,
        *,
        idempotency_key: str | None,
        tags: dict[str, str],
    ) -> None:
        settings = self._settings
        if not self.configured:
            logger.warning(
                "Resend email not sent (missing configuration)",
                has_api_key=bool(settings.resend_api_key),
                has_from=bool(settings.resend_from),
            )
            raise PermanentDispatchError("Resend is not configured")

        to = recipient.strip().lower()
        if not to:
            raise PermanentDispatchError("Recipient address is empty")

        payload: dict[str, object] = {
            "from": settings.resend_from,
            "to": [to],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
            "tags": [{"name": key, "value": value} for key, value in tags.items()],
        }
        if settings.resend_reply_to:
            payload["reply_to"] = settings.resend_reply_to

        headers = {
            "Authorization": f"Bearer {settings.resend_api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        url = settings.resend_api_url.rstrip("/") + "/emails"
        try:
            if self._client is not None:
                response = await self._client.post(url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=settings.resend_timeout_seconds) as client:
                    response = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise RetryableDispatchError(f"Resend request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise RetryableDispatchError(f"Resend transport error: {exc}") from exc

        status = response.status_code
        if status >= 500 or status in _RETRYABLE_STATUS:
            raise RetryableDispatchError(f"Resend returned {status}")
        if status >= 400:
            logger.warning("Resend email rejected", subject=email.subject, status_code=status, body=response.text)
            raise PermanentDispatchError(f"Resend rejected the email ({status})")

        logger.info("Resend email sent", subject=email.subject)
