"""Confirmation token types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from geodir.kernel.time import coerce_utc


class TokenSubject(str, Enum):
    EMAIL = "email"
    SUBSCRIPTION = "subscription"


class TokenState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True)
class ConfirmationToken:
    """Stored form of a token. The raw token value only exists in the email."""

    token_hash: str
    subject: TokenSubject
    owner_id: str
    state: TokenState
    expires_at: datetime
    created_at: datetime
    resolved_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @classmethod
    def from_row(cls, row: Any) -> "ConfirmationToken":
        resolved_at = row["resolved_at"]
        return cls(
            token_hash=row["token_hash"],
            subject=TokenSubject(row["subject"]),
            owner_id=str(row["owner_id"]),
            state=TokenState(row["state"]),
            expires_at=coerce_utc(row["expires_at"]),
            created_at=coerce_utc(row["created_at"]),
            resolved_at=coerce_utc(resolved_at) if resolved_at else None,
        )
