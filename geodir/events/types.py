"""
Change Event Types

Records emitted by the Entry Store for every entry creation or update.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from geodir.geo.types import MapPoint
from geodir.kernel.time import coerce_utc


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class ChangeEvent:
    """An entry mutation, as seen by the matcher.

    `sequence` is allocated by the store when the event is written and is
    strictly increasing; it is the basis of dispatch idempotency keys.
    """

    sequence: int
    entry_id: str
    kind: ChangeKind
    lat: float
    lng: float
    occurred_at: datetime

    @property
    def point(self) -> MapPoint:
        return MapPoint(lat=self.lat, lng=self.lng)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "entry_id": self.entry_id,
            "kind": self.kind.value,
            "lat": self.lat,
            "lng": self.lng,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Any) -> "ChangeEvent":
        return cls(
            sequence=int(row["sequence"]),
            entry_id=str(row["entry_id"]),
            kind=ChangeKind(row["kind"]),
            lat=float(row["lat"]),
            lng=float(row["lng"]),
            occurred_at=coerce_utc(row["occurred_at"]),
        )
