"""Token persistence. State changes are compare-and-set on the current state."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from geodir.confirmation.models import ConfirmationToken, TokenState, TokenSubject
from geodir.db.port import RawQueryPool

_TOKEN_COLUMNS = "token_hash, subject, owner_id, state, expires_at, created_at, resolved_at"


class TokenRepository(Protocol):
    async def insert(self, token: ConfirmationToken) -> None: ...

    async def get(self, token_hash: str) -> ConfirmationToken | None: ...

    async def transition(
        self,
        token_hash: str,
        *,
        from_state: TokenState,
        to_state: TokenState,
        at: datetime,
    ) -> ConfirmationToken | None: ...

    async def revoke_pending_for_owners(
        self,
        subject: TokenSubject,
        owner_ids: Sequence[str],
        *,
        at: datetime,
    ) -> int: ...


class PostgresTokenRepository:
    def __init__(self, pool: RawQueryPool) -> None:
        self._pool = pool

    async def insert(self, token: ConfirmationToken) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO confirmation_tokens (
                    token_hash, subject, owner_id, state, expires_at, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                token.token_hash,
                token.subject.value,
                token.owner_id,
                token.state.value,
                token.expires_at,
                token.created_at,
            )

    async def get(self, token_hash: str) -> ConfirmationToken | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_TOKEN_COLUMNS} FROM confirmation_tokens WHERE token_hash = $1",
                token_hash,
            )
        return ConfirmationToken.from_row(row) if row else None

    async def transition(
        self,
        token_hash: str,
        *,
        from_state: TokenState,
        to_state: TokenState,
        at: datetime,
    ) -> ConfirmationToken | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE confirmation_tokens
                SET state = $3,
                    resolved_at = $4
                WHERE token_hash = $1
                  AND state = $2
                RETURNING {_TOKEN_COLUMNS}
                """,
                token_hash,
                from_state.value,
                to_state.value,
                at,
            )
        return ConfirmationToken.from_row(row) if row else None

    async def revoke_pending_for_owners(
        self,
        subject: TokenSubject,
        owner_ids: Sequence[str],
        *,
        at: datetime,
    ) -> int:
        if not owner_ids:
            return 0
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE confirmation_tokens
                SET state = 'revoked',
                    resolved_at = $3
                WHERE subject = $1
                  AND owner_id = ANY($2::text[])
                  AND state = 'pending'
                RETURNING token_hash
                """,
                subject.value,
                list(owner_ids),
                at,
            )
        return len(rows or [])
