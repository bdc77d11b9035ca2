"""
Entry API Routes

Writes return `{id, version}`; clients pass the version back on their next
update (optimistic concurrency).
"""

from __future__ import annotations

import re
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from geodir.api.deps import get_services, split_ids
from geodir.container import Services
from geodir.entries.models import EntryPatch, NewEntry
from geodir.kernel.errors import ValidationError

router = APIRouter(prefix="/entries", tags=["Entries"])

_ENTRY_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class EntryWriteResponse(BaseModel):
    id: str
    version: int


class EntryPutRequest(BaseModel):
    """Update when `version` is present, otherwise create under the path id."""

    version: int | None = None
    title: str | None = None
    description: str | None = None
    lat: float | None = None
    lng: float | None = None
    street: str | None = None
    zip: str | None = None
    city: str | None = None
    country: str | None = None
    email: str | None = None
    telephone: str | None = None
    homepage: str | None = None
    image_url: str | None = None
    image_link_url: str | None = None
    # Only read on create; an existing entry keeps its license.
    license: str | None = None
    categories: list[str] | None = None
    tags: list[str] | None = None


class ArchiveEntryRequest(BaseModel):
    version: int


@router.post("", response_model=EntryWriteResponse)
async def create_entry(
    body: NewEntry,
    services: Services = Depends(get_services),
) -> EntryWriteResponse:
    entry_id, version = await services.entries.create(body)
    return EntryWriteResponse(id=entry_id, version=version)


@router.put("/{entry_id}", response_model=EntryWriteResponse)
async def put_entry(
    entry_id: str,
    body: EntryPutRequest,
    services: Services = Depends(get_services),
) -> EntryWriteResponse:
    if body.version is not None:
        patch = EntryPatch(**body.model_dump(exclude={"version", "license"}, exclude_none=True))
        version = await services.entries.update(entry_id, body.version, patch)
        return EntryWriteResponse(id=entry_id, version=version)

    if not _ENTRY_ID_RE.fullmatch(entry_id):
        raise ValidationError(code="entry.invalid_id", message="Entry ids are 1-64 letters, digits, '-' or '_'")
    missing = [name for name in ("title", "lat", "lng") if getattr(body, name) is None]
    if missing:
        raise ValidationError(
            code="entry.missing_fields",
            message="Creating an entry requires title, lat and lng",
            meta={"missing": missing},
        )
    new_entry = NewEntry(**body.model_dump(exclude={"version"}, exclude_none=True))
    created_id, version = await services.entries.create(new_entry, entry_id=entry_id)
    return EntryWriteResponse(id=created_id, version=version)


@router.get("/{ids}")
async def get_entries(
    ids: str,
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    entries = await services.entries.get_many(split_ids(ids))
    return [entry.to_dict() for entry in entries]


@router.post("/{entry_id}/archive", response_model=EntryWriteResponse)
async def archive_entry(
    entry_id: str,
    body: ArchiveEntryRequest,
    services: Services = Depends(get_services),
) -> EntryWriteResponse:
    version = await services.entries.archive(entry_id, body.version)
    return EntryWriteResponse(id=entry_id, version=version)
