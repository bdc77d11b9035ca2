from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from geodir.config import Settings
from geodir.confirmation.models import TokenSubject
from geodir.events.types import ChangeKind
from geodir.notifications.notifier import EntrySummary, PermanentDispatchError, RetryableDispatchError
from geodir.notifications.resend import ResendNotifier

pytestmark = pytest.mark.unit

SUMMARY = EntrySummary(
    entry_id="e1",
    kind=ChangeKind.CREATED,
    title="Repair Cafe",
    description="Fix things together",
    lat=15.0,
    lng=15.0,
    categories=("initiative",),
    tags=("repair",),
    sequence=7,
    occurred_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
)


def _settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "resend_api_key": "re_test",
        "resend_from": "Map <map@example.org>",
        "web_app_url": "https://map.example.org",
    }
    values.update(overrides)
    return Settings(**values)


def _notifier(handler, **overrides):
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return ResendNotifier(settings=_settings(**overrides), client=client), requests


@pytest.mark.asyncio
async def test_send_posts_email_with_idempotency_key():
    notifier, requests = _notifier(lambda request: httpx.Response(200, json={"id": "em_1"}))

    await notifier.send(" Alice@Example.org ", SUMMARY, idempotency_key="abc123")

    [request] = requests
    assert str(request.url) == "https://api.resend.com/emails"
    assert request.headers["Idempotency-Key"] == "abc123"
    assert request.headers["Authorization"] == "Bearer re_test"
    body = json.loads(request.content)
    assert body["to"] == ["alice@example.org"]
    assert body["subject"] == "New entry: Repair Cafe"
    assert {"name": "kind", "value": "entry_created"} in body["tags"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [500, 503, 408, 409, 425, 429])
async def test_transient_statuses_are_retryable(status):
    notifier, _ = _notifier(lambda request: httpx.Response(status))

    with pytest.raises(RetryableDispatchError):
        await notifier.send("alice@example.org", SUMMARY, idempotency_key="k")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 403, 422])
async def test_rejections_are_permanent(status):
    notifier, _ = _notifier(lambda request: httpx.Response(status, json={"message": "nope"}))

    with pytest.raises(PermanentDispatchError):
        await notifier.send("alice@example.org", SUMMARY, idempotency_key="k")


@pytest.mark.asyncio
async def test_transport_errors_are_retryable():
    def fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier, _ = _notifier(fail)

    with pytest.raises(RetryableDispatchError):
        await notifier.send("alice@example.org", SUMMARY, idempotency_key="k")


@pytest.mark.asyncio
async def test_empty_recipient_is_permanent():
    notifier, requests = _notifier(lambda request: httpx.Response(200))

    with pytest.raises(PermanentDispatchError):
        await notifier.send("   ", SUMMARY, idempotency_key="k")
    assert requests == []


@pytest.mark.asyncio
async def test_unconfigured_notifier_fails_permanently_without_calling_out():
    notifier, requests = _notifier(lambda request: httpx.Response(200), resend_api_key=None)

    assert notifier.configured is False
    with pytest.raises(PermanentDispatchError, match="not configured"):
        await notifier.send("alice@example.org", SUMMARY, idempotency_key="k")
    with pytest.raises(PermanentDispatchError):
        await notifier.send_token("alice@example.org", TokenSubject.EMAIL, "tok")
    assert requests == []


@pytest.mark.asyncio
async def test_confirmation_mail_links_to_the_web_app():
    notifier, requests = _notifier(lambda request: httpx.Response(200))

    await notifier.send_token("bob@example.org", TokenSubject.EMAIL, "tok123")

    [request] = requests
    assert "Idempotency-Key" not in request.headers
    body = json.loads(request.content)
    assert "https://map.example.org/confirm-email?token=tok123" in body["text"]
