"""API tests for the dispatch admin routes and health endpoints."""

from __future__ import annotations

from collections import deque

import pytest

from geodir.entries.models import NewEntry
from geodir.matching.matcher import SubscriberTarget
from geodir.notifications.notifier import PermanentDispatchError

pytestmark = [pytest.mark.api, pytest.mark.asyncio]

ADMIN = {"X-User-Id": "admin_1"}


async def _failed_item(services, repositories, notifier) -> str:
    repositories.users.add("alice")
    notifier.script = deque([PermanentDispatchError("bounced")])
    await services.entries.create(NewEntry(title="Cafe", lat=15.0, lng=15.0))
    [event] = repositories.entries.outbox.events
    await services.dispatcher.enqueue(event, [SubscriberTarget("alice", ("sub_1",))])
    await services.dispatcher.process_next()
    [item] = repositories.dispatch_queue.with_status("failed")
    return item.id


class TestDispatchAdmin:
    async def test_non_admin_is_forbidden(self, async_client):
        response = await async_client.get("/api/v1/admin/dispatches", headers={"X-User-Id": "alice"})

        assert response.status_code == 403
        assert response.json()["code"] == "auth.forbidden"

    async def test_anonymous_is_unauthorized(self, async_client):
        response = await async_client.get("/api/v1/admin/dispatches")

        assert response.status_code == 401

    async def test_list_filters_by_status(self, async_client, services, repositories, notifier):
        item_id = await _failed_item(services, repositories, notifier)

        failed = await async_client.get("/api/v1/admin/dispatches", params={"status": "failed"}, headers=ADMIN)
        sent = await async_client.get("/api/v1/admin/dispatches", params={"status": "sent"}, headers=ADMIN)

        [item] = failed.json()["items"]
        assert item["id"] == item_id
        assert "bounced" in item["last_error"]
        assert sent.json() == {"items": []}

    async def test_unknown_status_is_rejected(self, async_client):
        response = await async_client.get("/api/v1/admin/dispatches", params={"status": "lost"}, headers=ADMIN)

        assert response.status_code == 422
        assert response.json()["code"] == "http.validation_error"

    async def test_retry_requeues_a_failed_item_once(self, async_client, services, repositories, notifier):
        item_id = await _failed_item(services, repositories, notifier)

        retried = await async_client.post(f"/api/v1/admin/dispatches/{item_id}/retry", headers=ADMIN)
        assert retried.json() == {"id": item_id, "status": "queued"}
        assert repositories.dispatch_queue.items[item_id].attempts == 0

        again = await async_client.post(f"/api/v1/admin/dispatches/{item_id}/retry", headers=ADMIN)
        assert again.status_code == 409
        assert again.json()["code"] == "dispatch.not_failed"

        assert await services.dispatcher.process_next() is True
        assert repositories.dispatch_queue.items[item_id].status == "sent"


class TestHealth:
    async def test_health(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "geodir"

    async def test_live(self, async_client):
        response = await async_client.get("/live")

        assert response.json() == {"status": "alive"}

    async def test_responses_carry_a_request_id(self, async_client):
        response = await async_client.get("/live", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
