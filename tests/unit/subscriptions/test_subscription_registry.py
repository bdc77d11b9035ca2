from __future__ import annotations

import asyncio

import pytest

from geodir.confirmation.gate import ConfirmationGate
from geodir.confirmation.models import TokenState, TokenSubject
from geodir.geo.types import MapBbox
from geodir.kernel.errors import NotFoundError
from geodir.subscriptions.models import SubscriptionState
from geodir.subscriptions.registry import SubscriptionRegistry
from tests.support.accounts import FakeSubscriptionRepository, FakeTokenRepository, FakeUserDirectory
from tests.support.dispatch import RecordingMailer

pytestmark = pytest.mark.unit

BOX = MapBbox.from_degrees(10, 10, 20, 20)


@pytest.fixture
def users():
    directory = FakeUserDirectory()
    directory.add("alice")
    directory.add("bob", email_confirmed=False)
    return directory


@pytest.fixture
def subscriptions():
    return FakeSubscriptionRepository()


@pytest.fixture
def tokens():
    return FakeTokenRepository()


@pytest.fixture
def mailer():
    return RecordingMailer()


def _registry(subscriptions, users, tokens, mailer, fake_clock, *, require_token: bool = False):
    gate = ConfirmationGate(tokens, users, clock=fake_clock.now)
    registry = SubscriptionRegistry(
        subscriptions,
        users,
        gate,
        mailer=mailer,
        require_subscription_confirmation=require_token,
        clock=fake_clock.now,
    )
    gate.add_listener(TokenSubject.EMAIL, registry.activate_user)
    gate.add_listener(TokenSubject.SUBSCRIPTION, registry.confirm_subscription)
    return registry, gate


@pytest.fixture
def registry(subscriptions, users, tokens, mailer, fake_clock):
    registry, _gate = _registry(subscriptions, users, tokens, mailer, fake_clock)
    return registry


def _indexed(registry: SubscriptionRegistry, lat: float, lng: float) -> set[str]:
    return {box.key for box in registry.snapshot().query_point(lat, lng)}


@pytest.mark.asyncio
async def test_confirmed_user_subscription_is_indexed_immediately(registry):
    subscription_id = await registry.subscribe("alice", BOX)

    assert subscription_id.startswith("sub_")
    assert _indexed(registry, 15, 15) == {subscription_id}
    assert _indexed(registry, 25, 25) == set()


@pytest.mark.asyncio
async def test_subscribe_is_idempotent_per_user_and_box(registry, subscriptions):
    first = await registry.subscribe("alice", BOX)
    second = await registry.subscribe("alice", MapBbox.from_degrees(10, 10, 20, 20))

    assert first == second
    assert len(subscriptions.rows) == 1
    assert len(registry.snapshot().query_point(15, 15)) == 1


@pytest.mark.asyncio
async def test_concurrent_identical_subscribes_share_one_row(registry, subscriptions):
    ids = await asyncio.gather(*(registry.subscribe("alice", BOX) for _ in range(4)))

    assert len(set(ids)) == 1
    assert len(subscriptions.rows) == 1


@pytest.mark.asyncio
async def test_unknown_user_cannot_subscribe(registry):
    with pytest.raises(NotFoundError) as exc:
        await registry.subscribe("mallory", BOX)
    assert exc.value.code == "user.not_found"


@pytest.mark.asyncio
async def test_unsubscribe_all_is_a_noop_without_subscriptions(registry, subscriptions):
    version = registry.snapshot().version

    assert await registry.unsubscribe_all("alice") == 0
    assert await registry.unsubscribe_all("nobody") == 0

    assert subscriptions.rows == {}
    assert registry.snapshot().version == version


@pytest.mark.asyncio
async def test_unsubscribe_all_removes_every_box_of_the_user(registry):
    await registry.subscribe("alice", BOX)
    await registry.subscribe("alice", MapBbox.from_degrees(-10, 170, 10, -170))

    assert await registry.unsubscribe_all("alice") == 2
    assert await registry.unsubscribe_all("alice") == 0
    assert registry.snapshot().size == 0
    assert await registry.list_for_user("alice") == []


@pytest.mark.asyncio
async def test_resubscribe_after_unsubscribe_revives_the_row(registry, subscriptions):
    original = await registry.subscribe("alice", BOX)
    await registry.unsubscribe_all("alice")

    revived = await registry.subscribe("alice", BOX)

    assert revived == original
    assert subscriptions.rows[original].state is SubscriptionState.CONFIRMED
    assert _indexed(registry, 15, 15) == {original}


@pytest.mark.asyncio
async def test_unconfirmed_email_keeps_subscription_pending_until_confirmed(
    subscriptions, users, tokens, mailer, fake_clock
):
    registry, gate = _registry(subscriptions, users, tokens, mailer, fake_clock)
    subscription_id = await registry.subscribe("bob", BOX)

    assert subscriptions.rows[subscription_id].state is SubscriptionState.PENDING
    assert _indexed(registry, 15, 15) == set()

    token = await gate.issue(TokenSubject.EMAIL, "bob")
    await gate.redeem(token)

    assert subscriptions.rows[subscription_id].state is SubscriptionState.CONFIRMED
    assert _indexed(registry, 15, 15) == {subscription_id}


@pytest.mark.asyncio
async def test_subscription_token_and_email_are_both_required(subscriptions, users, tokens, mailer, fake_clock):
    registry, gate = _registry(subscriptions, users, tokens, mailer, fake_clock, require_token=True)

    subscription_id = await registry.subscribe("bob", BOX)
    assert mailer.sent[-1][:2] == ("bob@example.org", TokenSubject.SUBSCRIPTION)

    await gate.redeem(mailer.last_token(TokenSubject.SUBSCRIPTION))
    stored = subscriptions.rows[subscription_id]
    assert stored.token_confirmed
    assert stored.state is SubscriptionState.PENDING
    assert _indexed(registry, 15, 15) == set()

    await gate.redeem(await gate.issue(TokenSubject.EMAIL, "bob"))
    assert subscriptions.rows[subscription_id].state is SubscriptionState.CONFIRMED
    assert _indexed(registry, 15, 15) == {subscription_id}


@pytest.mark.asyncio
async def test_email_confirmation_alone_does_not_activate_token_gated_subscription(
    subscriptions, users, tokens, mailer, fake_clock
):
    registry, gate = _registry(subscriptions, users, tokens, mailer, fake_clock, require_token=True)
    subscription_id = await registry.subscribe("bob", BOX)

    await gate.redeem(await gate.issue(TokenSubject.EMAIL, "bob"))

    assert subscriptions.rows[subscription_id].state is SubscriptionState.PENDING
    assert _indexed(registry, 15, 15) == set()


@pytest.mark.asyncio
async def test_unsubscribe_revokes_outstanding_subscription_tokens(subscriptions, users, tokens, mailer, fake_clock):
    registry, _gate = _registry(subscriptions, users, tokens, mailer, fake_clock, require_token=True)
    subscription_id = await registry.subscribe("alice", BOX)

    await registry.unsubscribe_all("alice")

    assert [t.state for t in tokens.for_owner(subscription_id)] == [TokenState.REVOKED]


@pytest.mark.asyncio
async def test_mailer_failure_does_not_fail_subscribe(subscriptions, users, tokens, fake_clock):
    class BrokenMailer:
        async def send_token(self, recipient, subject, token):
            raise RuntimeError("smtp down")

    registry, _gate = _registry(subscriptions, users, tokens, BrokenMailer(), fake_clock, require_token=True)

    subscription_id = await registry.subscribe("alice", BOX)

    assert subscription_id in subscriptions.rows
    assert len(tokens.for_owner(subscription_id)) == 1


@pytest.mark.asyncio
async def test_load_and_refresh_follow_writes_from_other_processes(subscriptions, users, tokens, mailer, fake_clock):
    writer, _ = _registry(subscriptions, users, tokens, mailer, fake_clock)
    first = await writer.subscribe("alice", BOX)

    reader, _ = _registry(subscriptions, users, tokens, mailer, fake_clock)
    assert await reader.load() == 1
    assert _indexed(reader, 15, 15) == {first}

    second = await writer.subscribe("alice", MapBbox.from_degrees(-10, 170, 10, -170))
    await writer.unsubscribe_all("alice")
    third = await writer.subscribe("alice", MapBbox.from_degrees(0, 0, 5, 5))
    # Not visible until the reader pulls changes.
    assert _indexed(reader, 15, 15) == {first}

    applied = await reader.refresh()

    assert applied >= 3
    assert _indexed(reader, 15, 15) == set()
    assert _indexed(reader, 0, 180) == set()
    assert _indexed(reader, 2, 2) == {third}
    assert reader.watermark == await subscriptions.max_revision()
    assert second not in {box.key for box in reader.snapshot().query_point(0, 175)}
    assert await reader.refresh() == 0


@pytest.mark.asyncio
async def test_list_confirmed_yields_only_confirmed(registry):
    confirmed = await registry.subscribe("alice", BOX)
    await registry.subscribe("bob", BOX)

    listed = [subscription.id async for subscription in registry.list_confirmed()]

    assert listed == [confirmed]


def _yield_after(method):
    """Wrap a fake repository read so other tasks run before the caller sees its result."""

    async def wrapper(*args, **kwargs):
        result = await method(*args, **kwargs)
        await asyncio.sleep(0)
        return result

    return wrapper


@pytest.mark.asyncio
async def test_unsubscribe_during_email_activation_stays_revoked(registry, subscriptions):
    subscription_id = await registry.subscribe("bob", BOX)
    subscriptions.list_for_user = _yield_after(subscriptions.list_for_user)

    activated, revoked = await asyncio.gather(
        registry.activate_user("bob"),
        registry.unsubscribe_all("bob"),
    )

    assert (activated, revoked) == (0, 1)
    assert subscriptions.rows[subscription_id].state is SubscriptionState.REVOKED
    assert _indexed(registry, 15, 15) == set()


@pytest.mark.asyncio
async def test_unsubscribe_during_subscription_confirmation_stays_revoked(
    subscriptions, users, tokens, mailer, fake_clock
):
    registry, _gate = _registry(subscriptions, users, tokens, mailer, fake_clock, require_token=True)
    subscription_id = await registry.subscribe("alice", BOX)
    subscriptions.get = _yield_after(subscriptions.get)

    await asyncio.gather(
        registry.confirm_subscription(subscription_id),
        registry.unsubscribe_all("alice"),
    )

    stored = subscriptions.rows[subscription_id]
    assert stored.state is SubscriptionState.REVOKED
    assert not stored.token_confirmed
    assert _indexed(registry, 15, 15) == set()


@pytest.mark.asyncio
async def test_index_ignores_an_older_revision_of_a_subscription(registry, subscriptions):
    subscription_id = await registry.subscribe("alice", BOX)
    confirmed = subscriptions.rows[subscription_id]
    await registry.unsubscribe_all("alice")

    # A second worker refreshing late replays the older confirmed row.
    subscriptions.changed_since = _changes([confirmed])
    await registry.refresh()

    assert _indexed(registry, 15, 15) == set()


def _changes(rows):
    pending = list(rows)

    async def changed_since(revision, *, limit=1000):
        batch = [row for row in pending if row.revision > revision]
        pending.clear()
        return batch

    return changed_since
