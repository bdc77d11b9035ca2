"""Rating domain types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from geodir.kernel.time import coerce_utc


class RatingContext(str, Enum):
    GENERAL = "general"
    DIVERSITY = "diversity"
    FAIRNESS = "fairness"
    HUMANITY = "humanity"
    RENEWABLE = "renewable"
    SOLIDARITY = "solidarity"
    TRANSPARENCY = "transparency"


@dataclass(frozen=True)
class Rating:
    id: str
    entry_id: str
    value: int
    context: RatingContext
    title: str
    created_at: datetime
    comment: str | None = None
    source: str | None = None
    archived_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entry_id": self.entry_id,
            "value": self.value,
            "context": self.context.value,
            "title": self.title,
            "comment": self.comment,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Any) -> "Rating":
        archived_at = row["archived_at"]
        return cls(
            id=str(row["id"]),
            entry_id=str(row["entry_id"]),
            value=int(row["value"]),
            context=RatingContext(row["context"]),
            title=row["title"] or "",
            comment=row["comment"],
            source=row["source"],
            created_at=coerce_utc(row["created_at"]),
            archived_at=coerce_utc(archived_at) if archived_at else None,
        )


@dataclass(frozen=True)
class RatingAggregate:
    """Derived rating state of one entry: exact integer sum and count."""

    entry_id: str
    count: int
    total: int

    @property
    def average(self) -> float | None:
        if self.count == 0:
            return None
        return self.total / self.count


class NewRating(BaseModel):
    entry_id: str = Field(..., min_length=1)
    # Strictness of `value` is checked by the aggregator so the error code is stable.
    value: Any
    context: str = RatingContext.GENERAL.value
    title: str = ""
    comment: str | None = None
    source: str | None = None
