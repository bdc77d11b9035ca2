"""Subscription domain types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from geodir.geo.types import MapBbox, MapPoint
from geodir.kernel.time import coerce_utc


class SubscriptionState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVOKED = "revoked"


@dataclass(frozen=True)
class Subscription:
    id: str
    user_id: str
    bbox: MapBbox
    state: SubscriptionState
    token_confirmed: bool
    revision: int
    created_at: datetime
    updated_at: datetime

    @property
    def is_live(self) -> bool:
        return self.state is not SubscriptionState.REVOKED

    @property
    def is_confirmed(self) -> bool:
        return self.state is SubscriptionState.CONFIRMED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            **self.bbox.to_dict(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Any) -> "Subscription":
        # Stored rows were validated on the way in; skip re-validation here.
        bbox = MapBbox(
            south_west=MapPoint(lat=float(row["south_west_lat"]), lng=float(row["south_west_lng"])),
            north_east=MapPoint(lat=float(row["north_east_lat"]), lng=float(row["north_east_lng"])),
        )
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            bbox=bbox,
            state=SubscriptionState(row["state"]),
            token_confirmed=bool(row["token_confirmed"]),
            revision=int(row["revision"]),
            created_at=coerce_utc(row["created_at"]),
            updated_at=coerce_utc(row["updated_at"]),
        )
