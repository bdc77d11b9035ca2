"""
User Directory

Accounts are provisioned by the upstream auth layer; geodir only needs the
email address and whether it has been confirmed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from geodir.db.port import RawQueryPool


@dataclass(frozen=True)
class UserAccount:
    id: str
    email: str
    email_confirmed: bool = False

    @classmethod
    def from_row(cls, row: Any) -> "UserAccount":
        return cls(
            id=str(row["id"]),
            email=row["email"],
            email_confirmed=bool(row["email_confirmed"]),
        )


class UserDirectory(Protocol):
    async def get(self, user_id: str) -> UserAccount | None: ...

    async def mark_email_confirmed(self, user_id: str) -> bool: ...


class PostgresUserDirectory:
    def __init__(self, pool: RawQueryPool) -> None:
        self._pool = pool

    async def get(self, user_id: str) -> UserAccount | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, email, email_confirmed FROM users WHERE id = $1",
                user_id,
            )
        return UserAccount.from_row(row) if row else None

    async def mark_email_confirmed(self, user_id: str) -> bool:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE users SET email_confirmed = TRUE WHERE id = $1",
                user_id,
            )
        # asyncpg returns strings like "UPDATE 1"
        return str(result).endswith(" 1")
