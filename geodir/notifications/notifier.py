"""
Notifier capability.

`Notifier.send` returns on success and signals failure by raising one of the
dispatch errors below. The dispatcher retries `RetryableDispatchError` (and
anything unexpected) with backoff and gives up at once on
`PermanentDispatchError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from geodir.confirmation.models import TokenSubject
from geodir.entries.models import Entry
from geodir.events.types import ChangeKind


class DispatchError(Exception):
    """A notification could not be delivered."""


class RetryableDispatchError(DispatchError):
    """Transient failure: timeouts, throttling, provider 5xx."""


class PermanentDispatchError(DispatchError):
    """Delivery can never succeed: bad recipient, rejected payload, unknown user."""


@dataclass(frozen=True)
class EntrySummary:
    """What a subscriber is told about a created or changed entry."""

    entry_id: str
    kind: ChangeKind
    title: str
    description: str
    lat: float
    lng: float
    categories: tuple[str, ...]
    tags: tuple[str, ...]
    sequence: int
    occurred_at: datetime
    address: str | None = None
    email: str | None = None
    telephone: str | None = None
    homepage: str | None = None
    license: str | None = None

    @classmethod
    def from_entry(
        cls,
        entry: Entry,
        *,
        kind: ChangeKind,
        sequence: int,
        occurred_at: datetime,
    ) -> "EntrySummary":
        return cls(
            entry_id=entry.id,
            kind=kind,
            title=entry.title,
            description=entry.description,
            lat=entry.lat,
            lng=entry.lng,
            categories=entry.categories,
            tags=entry.tags,
            sequence=sequence,
            occurred_at=occurred_at,
            address=entry.address or None,
            email=entry.email,
            telephone=entry.telephone,
            homepage=entry.homepage,
            license=entry.license,
        )


class Notifier(Protocol):
    async def send(self, recipient: str, summary: EntrySummary, *, idempotency_key: str) -> None: ...


class ConfirmationMailer(Protocol):
    async def send_token(self, recipient: str, subject: TokenSubject, token: str) -> None: ...
