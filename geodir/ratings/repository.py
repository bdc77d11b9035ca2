"""
Rating Repository

Inserts and archives ratings and recomputes the owning entry's aggregate in
the same transaction. The entry row is locked (`FOR UPDATE`) first, so rating
writes for one entry serialize across processes as well.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, Sequence

from geodir.db.port import RawQueryPool
from geodir.entries.repository import entry_not_found
from geodir.ratings.models import Rating, RatingAggregate

_RATING_COLUMNS = """
    id, entry_id, value, context, title, comment, source, created_at, archived_at
"""


class RatingRepository(Protocol):
    async def add(self, rating: Rating) -> RatingAggregate: ...

    async def archive_for_entry(
        self,
        entry_id: str,
        rating_ids: Sequence[str],
        *,
        archived_at: datetime,
    ) -> RatingAggregate: ...

    async def entry_ids_for(self, rating_ids: Sequence[str]) -> dict[str, str]: ...

    async def get_many(self, rating_ids: Sequence[str]) -> list[Rating]: ...

    async def list_for_entry(self, entry_id: str) -> list[Rating]: ...

    async def context_averages(self, entry_id: str) -> dict[str, float]: ...


async def _lock_entry(conn: Any, entry_id: str) -> None:
    locked = await conn.fetchval(
        """
        SELECT id
        FROM entries
        WHERE id = $1 AND archived_at IS NULL
        FOR UPDATE
        """,
        entry_id,
    )
    if locked is None:
        raise entry_not_found(entry_id)


async def _recompute(conn: Any, entry_id: str) -> RatingAggregate:
    row = await conn.fetchrow(
        """
        SELECT COUNT(*) AS rating_count, COALESCE(SUM(value), 0) AS rating_sum
        FROM ratings
        WHERE entry_id = $1 AND archived_at IS NULL
        """,
        entry_id,
    )
    aggregate = RatingAggregate(
        entry_id=entry_id,
        count=int(row["rating_count"]),
        total=int(row["rating_sum"]),
    )
    await conn.execute(
        """
        UPDATE entries
        SET rating_count = $2,
            rating_sum = $3,
            average_rating = $4
        WHERE id = $1
        """,
        entry_id,
        aggregate.count,
        aggregate.total,
        aggregate.average,
    )
    return aggregate


class PostgresRatingRepository:
    def __init__(self, pool: RawQueryPool) -> None:
        self._pool = pool

    async def add(self, rating: Rating) -> RatingAggregate:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _lock_entry(conn, rating.entry_id)
                await conn.execute(
                    """
                    INSERT INTO ratings (
                        id, entry_id, value, context, title, comment, source, created_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    rating.id,
                    rating.entry_id,
                    rating.value,
                    rating.context.value,
                    rating.title,
                    rating.comment,
                    rating.source,
                    rating.created_at,
                )
                return await _recompute(conn, rating.entry_id)

    async def archive_for_entry(
        self,
        entry_id: str,
        rating_ids: Sequence[str],
        *,
        archived_at: datetime,
    ) -> RatingAggregate:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _lock_entry(conn, entry_id)
                await conn.execute(
                    """
                    UPDATE ratings
                    SET archived_at = $3
                    WHERE entry_id = $1
                      AND id = ANY($2::text[])
                      AND archived_at IS NULL
                    """,
                    entry_id,
                    list(rating_ids),
                    archived_at,
                )
                return await _recompute(conn, entry_id)

    async def entry_ids_for(self, rating_ids: Sequence[str]) -> dict[str, str]:
        if not rating_ids:
            return {}
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, entry_id
                FROM ratings
                WHERE id = ANY($1::text[]) AND archived_at IS NULL
                """,
                list(rating_ids),
            )
        return {str(row["id"]): str(row["entry_id"]) for row in rows or []}

    async def get_many(self, rating_ids: Sequence[str]) -> list[Rating]:
        if not rating_ids:
            return []
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_RATING_COLUMNS}
                FROM ratings
                WHERE id = ANY($1::text[]) AND archived_at IS NULL
                """,
                list(rating_ids),
            )
        by_id = {str(row["id"]): Rating.from_row(row) for row in rows or []}
        return [by_id[rating_id] for rating_id in rating_ids if rating_id in by_id]

    async def list_for_entry(self, entry_id: str) -> list[Rating]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_RATING_COLUMNS}
                FROM ratings
                WHERE entry_id = $1 AND archived_at IS NULL
                ORDER BY created_at ASC, id ASC
                """,
                entry_id,
            )
        return [Rating.from_row(row) for row in rows or []]

    async def context_averages(self, entry_id: str) -> dict[str, float]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT context, SUM(value) AS total, COUNT(*) AS n
                FROM ratings
                WHERE entry_id = $1 AND archived_at IS NULL
                GROUP BY context
                """,
                entry_id,
            )
        return {row["context"]: int(row["total"]) / int(row["n"]) for row in rows or []}
