from __future__ import annotations

from dataclasses import replace

import pytest

from geodir.confirmation.email import EmailConfirmationService
from geodir.confirmation.gate import ConfirmationGate
from geodir.confirmation.models import TokenState, TokenSubject
from geodir.kernel.errors import GeodirError, NotFoundError, ValidationError
from tests.support.accounts import FakeTokenRepository, FakeUserDirectory
from tests.support.dispatch import RecordingMailer

pytestmark = pytest.mark.unit


@pytest.fixture
def users():
    directory = FakeUserDirectory()
    directory.add("alice")
    directory.add("bob", email_confirmed=False)
    return directory


@pytest.fixture
def tokens():
    return FakeTokenRepository()


@pytest.fixture
def gate(tokens, users, fake_clock):
    return ConfirmationGate(tokens, users, clock=fake_clock.now)


@pytest.mark.asyncio
async def test_request_mails_a_token_that_confirms_the_address(gate, users, tokens):
    mailer = RecordingMailer()
    service = EmailConfirmationService(gate, users, mailer)

    assert await service.request_email_confirmation("bob") is True

    [(recipient, subject, token)] = mailer.sent
    assert (recipient, subject) == ("bob@example.org", TokenSubject.EMAIL)
    await gate.redeem(token)
    assert (await users.get("bob")).email_confirmed


@pytest.mark.asyncio
async def test_new_request_revokes_the_previous_link(gate, users, tokens):
    mailer = RecordingMailer()
    service = EmailConfirmationService(gate, users, mailer)

    await service.request_email_confirmation("bob")
    await service.request_email_confirmation("bob")

    assert sorted(t.state.value for t in tokens.for_owner("bob")) == ["pending", "revoked"]


@pytest.mark.asyncio
async def test_confirmed_address_is_not_mailed_again(gate, users):
    mailer = RecordingMailer()

    assert await EmailConfirmationService(gate, users, mailer).request_email_confirmation("alice") is False
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_unknown_user_and_missing_address_are_rejected(gate, users):
    service = EmailConfirmationService(gate, users, RecordingMailer())
    users.users["carol"] = replace(users.add("carol", email_confirmed=False), email="")

    with pytest.raises(NotFoundError):
        await service.request_email_confirmation("mallory")
    with pytest.raises(ValidationError) as exc:
        await service.request_email_confirmation("carol")
    assert exc.value.code == "user.missing_email"


@pytest.mark.asyncio
async def test_delivery_failure_revokes_the_issued_token(gate, users, tokens):
    class BrokenMailer:
        async def send_token(self, recipient, subject, token):
            raise RuntimeError("smtp down")

    with pytest.raises(GeodirError) as exc:
        await EmailConfirmationService(gate, users, BrokenMailer()).request_email_confirmation("bob")

    assert exc.value.code == "confirmation.delivery_failed"
    assert exc.value.status_code == 502
    assert [t.state for t in tokens.for_owner("bob")] == [TokenState.REVOKED]


@pytest.mark.asyncio
async def test_without_mailer_nothing_is_issued(gate, users, tokens):
    with pytest.raises(GeodirError) as exc:
        await EmailConfirmationService(gate, users, None).request_email_confirmation("bob")

    assert exc.value.status_code == 503
    assert tokens.for_owner("bob") == []
