"""Entry domain types and request shapes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from geodir.geo.types import MapPoint
from geodir.kernel.time import coerce_utc

DEFAULT_LICENSE = "CC0-1.0"

ADDRESS_FIELDS = ("street", "zip", "city", "country")
CONTACT_FIELDS = ("email", "telephone")
LINK_FIELDS = ("homepage", "image_url", "image_link_url")
# Optional free-form details; an empty string on update clears the value.
DETAIL_FIELDS = ADDRESS_FIELDS + CONTACT_FIELDS + LINK_FIELDS


@dataclass(frozen=True)
class Entry:
    id: str
    title: str
    description: str
    lat: float
    lng: float
    categories: tuple[str, ...]
    tags: tuple[str, ...]
    version: int
    created_at: datetime
    updated_at: datetime
    rating_count: int = 0
    rating_sum: int = 0
    average_rating: float | None = None
    archived_at: datetime | None = None
    street: str | None = None
    zip: str | None = None
    city: str | None = None
    country: str | None = None
    email: str | None = None
    telephone: str | None = None
    homepage: str | None = None
    image_url: str | None = None
    image_link_url: str | None = None
    license: str | None = None

    @property
    def point(self) -> MapPoint:
        return MapPoint(lat=self.lat, lng=self.lng)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def address(self) -> str:
        """One-line postal address, e.g. `Main St 1, 12345 Berlin, Germany`."""
        locality = " ".join(part for part in (self.zip, self.city) if part)
        return ", ".join(part for part in (self.street, locality, self.country) if part)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "lat": self.lat,
            "lng": self.lng,
            **{name: getattr(self, name) for name in DETAIL_FIELDS},
            "license": self.license,
            "categories": list(self.categories),
            "tags": list(self.tags),
            "version": self.version,
            "rating_count": self.rating_count,
            "average_rating": self.average_rating,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
        }

    @classmethod
    def from_row(cls, row: Any) -> "Entry":
        archived_at = row["archived_at"]
        average = row["average_rating"]
        return cls(
            id=str(row["id"]),
            title=row["title"],
            description=row["description"] or "",
            lat=float(row["lat"]),
            lng=float(row["lng"]),
            categories=tuple(row["categories"] or ()),
            tags=tuple(row["tags"] or ()),
            version=int(row["version"]),
            rating_count=int(row["rating_count"] or 0),
            rating_sum=int(row["rating_sum"] or 0),
            average_rating=float(average) if average is not None else None,
            created_at=coerce_utc(row["created_at"]),
            updated_at=coerce_utc(row["updated_at"]),
            archived_at=coerce_utc(archived_at) if archived_at else None,
            license=row.get("license"),
            **{name: row.get(name) for name in DETAIL_FIELDS},
        )


class NewEntry(BaseModel):
    title: str
    description: str = ""
    lat: float
    lng: float
    street: str | None = None
    zip: str | None = None
    city: str | None = None
    country: str | None = None
    email: str | None = None
    telephone: str | None = None
    homepage: str | None = None
    image_url: str | None = None
    image_link_url: str | None = None
    license: str = DEFAULT_LICENSE
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class EntryPatch(BaseModel):
    """Partial update; `None` means "leave unchanged".

    The license is fixed at creation and cannot be patched.
    """

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
    categories: list[str] | None = None
    tags: list[str] | None = None
