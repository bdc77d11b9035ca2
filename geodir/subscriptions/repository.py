"""
Subscription Repository

Every write draws a fresh `revision` from a sequence. Other processes follow
changes with `changed_since(watermark)` instead of rescanning the table.

Revisions must become visible in the order they are drawn, otherwise a reader
could advance its watermark past a revision that commits later. Writers take a
transaction-scoped advisory lock before `nextval()`, so the lock is held until
commit and revision order equals commit order.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, AsyncIterator, Protocol

import asyncpg

from geodir.db.port import RawQueryPool
from geodir.geo.types import MapBbox
from geodir.kernel.errors import ConflictError
from geodir.subscriptions.models import Subscription, SubscriptionState

_SUBSCRIPTION_COLUMNS = """
    id, user_id, south_west_lat, south_west_lng, north_east_lat, north_east_lng,
    state, token_confirmed, revision, created_at, updated_at
"""

REVISION_LOCK_SQL = "SELECT pg_advisory_xact_lock(hashtext('bbox_subscription_revision'))"


class SubscriptionRepository(Protocol):
    async def insert(
        self,
        *,
        subscription_id: str,
        user_id: str,
        bbox: MapBbox,
        state: SubscriptionState,
        token_confirmed: bool,
        at: datetime,
    ) -> Subscription: ...

    async def get(self, subscription_id: str) -> Subscription | None: ...

    async def find_by_user_bbox(self, user_id: str, bbox: MapBbox) -> Subscription | None: ...

    async def set_state(
        self,
        subscription_id: str,
        state: SubscriptionState,
        *,
        at: datetime,
        token_confirmed: bool | None = None,
        expected_state: SubscriptionState | None = None,
    ) -> Subscription | None:
        """Move a row to `state`; with `expected_state`, only if it is still in that state.

        Returns None when the row is missing or the compare-and-set lost.
        """
        ...

    async def revoke_all_for_user(self, user_id: str, *, at: datetime) -> list[Subscription]: ...

    async def list_for_user(self, user_id: str, *, include_revoked: bool = False) -> list[Subscription]: ...

    def iter_confirmed(self, *, page_size: int = 1000) -> AsyncIterator[Subscription]: ...

    async def changed_since(self, revision: int, *, limit: int = 1000) -> list[Subscription]: ...

    async def max_revision(self) -> int: ...


class PostgresSubscriptionRepository:
    def __init__(self, pool: RawQueryPool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def _revision_writer(self) -> AsyncGenerator[Any, None]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(REVISION_LOCK_SQL)
                yield conn

    async def insert(
        self,
        *,
        subscription_id: str,
        user_id: str,
        bbox: MapBbox,
        state: SubscriptionState,
        token_confirmed: bool,
        at: datetime,
    ) -> Subscription:
        try:
            async with self._revision_writer() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO bbox_subscriptions (
                        id, user_id, south_west_lat, south_west_lng, north_east_lat, north_east_lng,
                        state, token_confirmed, revision, created_at, updated_at
                    )
                    VALUES (
                        $1, $2, $3, $4, $5, $6,
                        $7, $8, nextval('bbox_subscription_revision_seq'), $9, $9
                    )
                    RETURNING {_SUBSCRIPTION_COLUMNS}
                    """,
                    subscription_id,
                    user_id,
                    bbox.south,
                    bbox.west,
                    bbox.north,
                    bbox.east,
                    state.value,
                    token_confirmed,
                    at,
                )
        except asyncpg.UniqueViolationError:
            raise ConflictError(
                code="subscription.already_exists",
                message="Subscription already exists",
                meta={"user_id": user_id},
            )
        return Subscription.from_row(row)

    async def get(self, subscription_id: str) -> Subscription | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SUBSCRIPTION_COLUMNS} FROM bbox_subscriptions WHERE id = $1",
                subscription_id,
            )
        return Subscription.from_row(row) if row else None

    async def find_by_user_bbox(self, user_id: str, bbox: MapBbox) -> Subscription | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM bbox_subscriptions
                WHERE user_id = $1
                  AND south_west_lat = $2
                  AND south_west_lng = $3
                  AND north_east_lat = $4
                  AND north_east_lng = $5
                """,
                user_id,
                bbox.south,
                bbox.west,
                bbox.north,
                bbox.east,
            )
        return Subscription.from_row(row) if row else None

    async def set_state(
        self,
        subscription_id: str,
        state: SubscriptionState,
        *,
        at: datetime,
        token_confirmed: bool | None = None,
        expected_state: SubscriptionState | None = None,
    ) -> Subscription | None:
        async with self._revision_writer() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE bbox_subscriptions
                SET state = $2,
                    token_confirmed = COALESCE($3, token_confirmed),
                    revision = nextval('bbox_subscription_revision_seq'),
                    updated_at = $4
                WHERE id = $1
                  AND ($5::text IS NULL OR state = $5)
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                subscription_id,
                state.value,
                token_confirmed,
                at,
                expected_state.value if expected_state is not None else None,
            )
        return Subscription.from_row(row) if row else None

    async def revoke_all_for_user(self, user_id: str, *, at: datetime) -> list[Subscription]:
        async with self._revision_writer() as conn:
            rows = await conn.fetch(
                f"""
                UPDATE bbox_subscriptions
                SET state = 'revoked',
                    revision = nextval('bbox_subscription_revision_seq'),
                    updated_at = $2
                WHERE user_id = $1
                  AND state <> 'revoked'
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                user_id,
                at,
            )
        return [Subscription.from_row(row) for row in rows or []]

    async def list_for_user(self, user_id: str, *, include_revoked: bool = False) -> list[Subscription]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM bbox_subscriptions
                WHERE user_id = $1
                  AND ($2 OR state <> 'revoked')
                ORDER BY created_at ASC, id ASC
                """,
                user_id,
                include_revoked,
            )
        return [Subscription.from_row(row) for row in rows or []]

    async def iter_confirmed(self, *, page_size: int = 1000) -> AsyncIterator[Subscription]:
        # Keyset pagination on id keeps each query short.
        last_id = ""
        while True:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_SUBSCRIPTION_COLUMNS}
                    FROM bbox_subscriptions
                    WHERE state = 'confirmed'
                      AND id > $1
                    ORDER BY id ASC
                    LIMIT $2
                    """,
                    last_id,
                    page_size,
                )
            if not rows:
                return
            for row in rows:
                yield Subscription.from_row(row)
            last_id = str(rows[-1]["id"])
            if len(rows) < page_size:
                return

    async def changed_since(self, revision: int, *, limit: int = 1000) -> list[Subscription]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM bbox_subscriptions
                WHERE revision > $1
                ORDER BY revision ASC
                LIMIT $2
                """,
                revision,
                limit,
            )
        return [Subscription.from_row(row) for row in rows or []]

    async def max_revision(self) -> int:
        async with self._pool.acquire() as conn:
            value = await conn.fetchval("SELECT COALESCE(MAX(revision), 0) FROM bbox_subscriptions")
        return int(value or 0)
