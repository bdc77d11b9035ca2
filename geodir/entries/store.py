"""
Entry Store

Owns entry validation, tag normalization and optimistic versioning. The
repository writes the change event with the entry; this layer only nudges the
change-event bus once the write has committed.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Sequence

import structlog
from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from geodir.entries.models import DETAIL_FIELDS, LINK_FIELDS, Entry, EntryPatch, NewEntry
from geodir.entries.repository import EntryRepository, entry_not_found
from geodir.geo.types import MapPoint
from geodir.kernel.errors import ValidationError
from geodir.kernel.ids import new_id
from geodir.kernel.time import Clock, utc_now
from geodir.monitoring.metrics import get_metrics

logger = structlog.get_logger()

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_DETAIL_LENGTH = 500

_HTTP_URL = TypeAdapter(HttpUrl)


def normalize_tags(tags: Iterable[str]) -> list[str]:
    """Split on whitespace, remove every reserved `#`, drop empties, sort, dedupe."""
    normalized: set[str] = set()
    for raw in tags:
        for token in str(raw).split():
            tag = token.replace("#", "").strip()
            if tag:
                normalized.add(tag)
    return sorted(normalized)


def _clean_categories(categories: Iterable[str]) -> list[str]:
    return sorted({str(c).strip() for c in categories if str(c).strip()})


def _check_title(title: str) -> str:
    cleaned = title.strip()
    if not cleaned:
        raise ValidationError(code="entry.invalid_title", message="Title must not be empty")
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise ValidationError(
            code="entry.invalid_title",
            message=f"Title must be at most {MAX_TITLE_LENGTH} characters",
        )
    return cleaned


def _check_description(description: str) -> str:
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            code="entry.invalid_description",
            message=f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
        )
    return description


def parse_url(field: str, raw: str) -> str:
    """Normalise a homepage or image link; a missing scheme defaults to https."""
    candidate = raw.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        return str(_HTTP_URL.validate_python(candidate))
    except PydanticValidationError:
        raise ValidationError(
            code="entry.invalid_url",
            message=f"{field} is not a valid http(s) URL",
            meta={"field": field},
        )


def _clean_detail(field: str, raw: str | None) -> str | None:
    value = (raw or "").strip()
    if not value:
        return None
    if len(value) > MAX_DETAIL_LENGTH:
        raise ValidationError(
            code="entry.invalid_detail",
            message=f"{field} must be at most {MAX_DETAIL_LENGTH} characters",
            meta={"field": field},
        )
    if field in LINK_FIELDS:
        return parse_url(field, value)
    if field == "email" and "@" not in value:
        raise ValidationError(code="entry.invalid_email", message="Email address is not valid")
    return value


def _clean_license(raw: str) -> str:
    value = raw.strip()
    if not value:
        raise ValidationError(code="entry.invalid_license", message="License must not be empty")
    return value


class EntryStore:
    def __init__(
        self,
        repository: EntryRepository,
        *,
        clock: Clock = utc_now,
        on_commit: Callable[[], None] | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._on_commit = on_commit

    async def create(self, new_entry: NewEntry, *, entry_id: str | None = None) -> tuple[str, int]:
        point = MapPoint.from_lat_lng(new_entry.lat, new_entry.lng)
        now = self._clock()
        entry = Entry(
            id=entry_id or new_id(),
            title=_check_title(new_entry.title),
            description=_check_description(new_entry.description),
            lat=point.lat,
            lng=point.lng,
            categories=tuple(_clean_categories(new_entry.categories)),
            tags=tuple(normalize_tags(new_entry.tags)),
            version=0,
            created_at=now,
            updated_at=now,
            license=_clean_license(new_entry.license),
            **{name: _clean_detail(name, getattr(new_entry, name)) for name in DETAIL_FIELDS},
        )
        event = await self._repository.insert(entry)
        self._committed()
        get_metrics().track_entry_mutation("created")
        logger.info("Entry created", entry_id=entry.id, sequence=event.sequence)
        return entry.id, entry.version

    async def update(self, entry_id: str, expected_version: int, patch: EntryPatch) -> int:
        fields = self._validated_fields(patch)
        entry, event = await self._repository.update(
            entry_id,
            expected_version=int(expected_version),
            fields=fields,
            updated_at=self._clock(),
        )
        self._committed()
        get_metrics().track_entry_mutation("updated")
        logger.info(
            "Entry updated",
            entry_id=entry_id,
            version=entry.version,
            sequence=event.sequence,
        )
        return entry.version

    async def archive(self, entry_id: str, expected_version: int) -> int:
        entry = await self._repository.archive(
            entry_id,
            expected_version=int(expected_version),
            archived_at=self._clock(),
        )
        get_metrics().track_entry_mutation("archived")
        logger.info("Entry archived", entry_id=entry_id, version=entry.version)
        return entry.version

    async def get(self, entry_id: str, *, include_archived: bool = False) -> Entry:
        entry = await self._repository.get(entry_id, include_archived=include_archived)
        if entry is None:
            raise entry_not_found(entry_id)
        return entry

    async def find(self, entry_id: str, *, include_archived: bool = False) -> Entry | None:
        return await self._repository.get(entry_id, include_archived=include_archived)

    async def get_many(self, entry_ids: Sequence[str], *, include_archived: bool = False) -> list[Entry]:
        return await self._repository.get_many(list(entry_ids), include_archived=include_archived)

    def _validated_fields(self, patch: EntryPatch) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if patch.title is not None:
            fields["title"] = _check_title(patch.title)
        if patch.description is not None:
            fields["description"] = _check_description(patch.description)
        if (patch.lat is None) != (patch.lng is None):
            raise ValidationError(
                code="geo.invalid_position",
                message="lat and lng must be updated together",
            )
        if patch.lat is not None and patch.lng is not None:
            point = MapPoint.from_lat_lng(patch.lat, patch.lng)
            fields["lat"] = point.lat
            fields["lng"] = point.lng
        if patch.categories is not None:
            fields["categories"] = _clean_categories(patch.categories)
        if patch.tags is not None:
            fields["tags"] = normalize_tags(patch.tags)
        for name in DETAIL_FIELDS:
            raw = getattr(patch, name)
            if raw is not None:
                fields[name] = _clean_detail(name, raw)
        return fields

    def set_on_commit(self, callback: Callable[[], None] | None) -> None:
        self._on_commit = callback

    def _committed(self) -> None:
        if self._on_commit is None:
            return
        try:
            self._on_commit()
        except Exception as exc:
            # The event is durable; the consumer will pick it up on its next poll.
            logger.warning("Change event wake-up failed", error=str(exc))
