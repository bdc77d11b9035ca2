"""
Entry Repository

Postgres persistence for directory entries. Every create/update writes the
matching `change_event` row in the same transaction, so an entry mutation is
never visible without its event (transactional outbox).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, Sequence

import asyncpg
import structlog

from geodir.db.port import RawQueryPool
from geodir.entries.models import DETAIL_FIELDS, Entry
from geodir.events.types import ChangeEvent, ChangeKind
from geodir.kernel.errors import ConflictError, NotFoundError

logger = structlog.get_logger()

# Columns an update may touch; anything else is rejected before SQL is built.
UPDATABLE_COLUMNS = ("title", "description", "lat", "lng", "categories", "tags", *DETAIL_FIELDS)

_ENTRY_COLUMNS = """
    id, title, description, lat, lng, categories, tags, version,
    street, zip, city, country, email, telephone, homepage, image_url, image_link_url, license,
    rating_count, rating_sum, average_rating, created_at, updated_at, archived_at
"""


class EntryRepository(Protocol):
    async def insert(self, entry: Entry) -> ChangeEvent: ...

    async def update(
        self,
        entry_id: str,
        *,
        expected_version: int,
        fields: dict[str, Any],
        updated_at: datetime,
    ) -> tuple[Entry, ChangeEvent]: ...

    async def archive(self, entry_id: str, *, expected_version: int, archived_at: datetime) -> Entry: ...

    async def get(self, entry_id: str, *, include_archived: bool = False) -> Entry | None: ...

    async def get_many(self, entry_ids: Sequence[str], *, include_archived: bool = False) -> list[Entry]: ...


def version_conflict(entry_id: str, *, expected: int, actual: int) -> ConflictError:
    return ConflictError(
        code="entry.version_conflict",
        message="Entry was modified concurrently; reload and retry",
        meta={"entry_id": entry_id, "expected_version": expected, "actual_version": actual},
    )


def entry_not_found(entry_id: str) -> NotFoundError:
    return NotFoundError(code="entry.not_found", message="Entry not found", meta={"entry_id": entry_id})


async def _append_change_event(
    conn: Any,
    *,
    entry_id: str,
    kind: ChangeKind,
    lat: float,
    lng: float,
    occurred_at: datetime,
    max_attempts: int,
) -> ChangeEvent:
    row = await conn.fetchrow(
        """
        INSERT INTO change_event (
            entry_id, kind, lat, lng, occurred_at,
            status, attempts, max_attempts, available_at
        )
        VALUES ($1, $2, $3, $4, $5, 'pending', 0, $6, $5)
        RETURNING sequence, entry_id, kind, lat, lng, occurred_at
        """,
        entry_id,
        kind.value,
        lat,
        lng,
        occurred_at,
        max_attempts,
    )
    return ChangeEvent.from_row(row)


class PostgresEntryRepository:
    """Entry storage on the raw asyncpg pool."""

    def __init__(self, pool: RawQueryPool, *, event_max_attempts: int = 10) -> None:
        self._pool = pool
        self._event_max_attempts = max(1, int(event_max_attempts))

    async def insert(self, entry: Entry) -> ChangeEvent:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                try:
                    await conn.execute(
                        """
                        INSERT INTO entries (
                            id, title, description, lat, lng, categories, tags, version,
                            street, zip, city, country, email, telephone,
                            homepage, image_url, image_link_url, license,
                            rating_count, rating_sum, average_rating, created_at, updated_at
                        )
                        VALUES (
                            $1, $2, $3, $4, $5, $6, $7, $8,
                            $10, $11, $12, $13, $14, $15,
                            $16, $17, $18, $19,
                            0, 0, NULL, $9, $9
                        )
                        """,
                        entry.id,
                        entry.title,
                        entry.description,
                        entry.lat,
                        entry.lng,
                        list(entry.categories),
                        list(entry.tags),
                        entry.version,
                        entry.created_at,
                        *(getattr(entry, name) for name in DETAIL_FIELDS),
                        entry.license,
                    )
                except asyncpg.UniqueViolationError:
                    raise ConflictError(
                        code="entry.already_exists",
                        message="An entry with this id already exists",
                        meta={"entry_id": entry.id},
                    )
                return await _append_change_event(
                    conn,
                    entry_id=entry.id,
                    kind=ChangeKind.CREATED,
                    lat=entry.lat,
                    lng=entry.lng,
                    occurred_at=entry.created_at,
                    max_attempts=self._event_max_attempts,
                )

    async def update(
        self,
        entry_id: str,
        *,
        expected_version: int,
        fields: dict[str, Any],
        updated_at: datetime,
    ) -> tuple[Entry, ChangeEvent]:
        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported entry columns: {sorted(unknown)}")

        assignments = ["version = version + 1", "updated_at = $3"]
        params: list[Any] = [entry_id, expected_version, updated_at]
        for column in UPDATABLE_COLUMNS:
            if column not in fields:
                continue
            value = fields[column]
            if column in ("categories", "tags"):
                value = list(value)
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE entries
                    SET {", ".join(assignments)}
                    WHERE id = $1
                      AND version = $2
                      AND archived_at IS NULL
                    RETURNING {_ENTRY_COLUMNS}
                    """,
                    *params,
                )
                if row is None:
                    await self._raise_update_miss(conn, entry_id, expected_version)
                entry = Entry.from_row(row)
                event = await _append_change_event(
                    conn,
                    entry_id=entry.id,
                    kind=ChangeKind.UPDATED,
                    lat=entry.lat,
                    lng=entry.lng,
                    occurred_at=updated_at,
                    max_attempts=self._event_max_attempts,
                )
        return entry, event

    async def archive(self, entry_id: str, *, expected_version: int, archived_at: datetime) -> Entry:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE entries
                    SET archived_at = $3,
                        version = version + 1,
                        updated_at = $3
                    WHERE id = $1
                      AND version = $2
                      AND archived_at IS NULL
                    RETURNING {_ENTRY_COLUMNS}
                    """,
                    entry_id,
                    expected_version,
                    archived_at,
                )
                if row is None:
                    await self._raise_update_miss(conn, entry_id, expected_version)
        return Entry.from_row(row)

    async def get(self, entry_id: str, *, include_archived: bool = False) -> Entry | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM entries
                WHERE id = $1
                  AND ($2 OR archived_at IS NULL)
                """,
                entry_id,
                include_archived,
            )
        return Entry.from_row(row) if row else None

    async def get_many(self, entry_ids: Sequence[str], *, include_archived: bool = False) -> list[Entry]:
        if not entry_ids:
            return []
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM entries
                WHERE id = ANY($1::text[])
                  AND ($2 OR archived_at IS NULL)
                """,
                list(entry_ids),
                include_archived,
            )
        by_id = {str(row["id"]): Entry.from_row(row) for row in rows or []}
        return [by_id[entry_id] for entry_id in entry_ids if entry_id in by_id]

    async def _raise_update_miss(self, conn: Any, entry_id: str, expected_version: int) -> None:
        current = await conn.fetchrow(
            "SELECT version, archived_at FROM entries WHERE id = $1",
            entry_id,
        )
        if current is None or current["archived_at"] is not None:
            raise entry_not_found(entry_id)
        raise version_conflict(entry_id, expected=expected_version, actual=int(current["version"]))
