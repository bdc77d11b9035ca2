"""
Rating Aggregator

Writes ratings and keeps each entry's average equal to the exact mean of its
live ratings. All writes for one entry go through that entry's critical
section; writes for different entries proceed in parallel.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Sequence

import structlog

from geodir.kernel.errors import ValidationError
from geodir.kernel.ids import new_prefixed_id
from geodir.kernel.locks import KeyedLock
from geodir.kernel.time import Clock, utc_now
from geodir.monitoring.metrics import get_metrics
from geodir.ratings.models import Rating, RatingContext
from geodir.ratings.repository import RatingRepository

logger = structlog.get_logger()

MAX_RATING_TITLE_LENGTH = 200
MAX_RATING_COMMENT_LENGTH = 2000


def parse_context(value: str | RatingContext | None) -> RatingContext:
    if value is None or value == "":
        return RatingContext.GENERAL
    try:
        return RatingContext(value)
    except ValueError:
        raise ValidationError(
            code="rating.invalid_context",
            message="Unknown rating context",
            meta={"context": str(value), "allowed": [c.value for c in RatingContext]},
        )


class RatingAggregator:
    def __init__(
        self,
        repository: RatingRepository,
        *,
        rating_min: int = 1,
        rating_max: int = 10,
        clock: Clock = utc_now,
        locks: KeyedLock | None = None,
    ) -> None:
        self._repository = repository
        self._rating_min = int(rating_min)
        self._rating_max = int(rating_max)
        self._clock = clock
        self._locks = locks or KeyedLock()

    @property
    def scale(self) -> tuple[int, int]:
        return self._rating_min, self._rating_max

    def validate_value(self, value: object) -> int:
        # bool is an int subclass; reject it along with floats and strings.
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(
                code="rating.invalid_value",
                message="Rating value must be an integer",
                meta={"value": repr(value)},
            )
        if not self._rating_min <= value <= self._rating_max:
            raise ValidationError(
                code="rating.invalid_value",
                message=f"Rating value must be between {self._rating_min} and {self._rating_max}",
                meta={"value": value},
            )
        return value

    async def add_rating(
        self,
        entry_id: str,
        value: object,
        *,
        context: str | RatingContext | None = None,
        title: str = "",
        comment: str | None = None,
        source: str | None = None,
    ) -> tuple[str, float]:
        """Store one rating and return `(rating_id, new_average)`."""
        rating = Rating(
            id=new_prefixed_id("rat"),
            entry_id=entry_id,
            value=self.validate_value(value),
            context=parse_context(context),
            title=self._check_text(title, field="title", limit=MAX_RATING_TITLE_LENGTH),
            comment=self._check_text(comment, field="comment", limit=MAX_RATING_COMMENT_LENGTH)
            if comment is not None
            else None,
            source=source,
            created_at=self._clock(),
        )
        async with self._locks.hold(entry_id):
            aggregate = await self._repository.add(rating)

        get_metrics().track_rating("added")
        logger.info(
            "Rating added",
            entry_id=entry_id,
            rating_id=rating.id,
            rating_count=aggregate.count,
            average_rating=aggregate.average,
        )
        # A successful add always leaves at least one live rating.
        return rating.id, float(aggregate.average or 0.0)

    async def archive_ratings(self, rating_ids: Sequence[str]) -> dict[str, float | None]:
        """Archive ratings; returns the new average of every affected entry."""
        owners = await self._repository.entry_ids_for(list(dict.fromkeys(rating_ids)))
        by_entry: dict[str, list[str]] = defaultdict(list)
        for rating_id, entry_id in owners.items():
            by_entry[entry_id].append(rating_id)

        averages: dict[str, float | None] = {}
        archived_at = self._clock()
        for entry_id in sorted(by_entry):
            async with self._locks.hold(entry_id):
                aggregate = await self._repository.archive_for_entry(
                    entry_id,
                    by_entry[entry_id],
                    archived_at=archived_at,
                )
            averages[entry_id] = aggregate.average
            get_metrics().track_rating("archived", len(by_entry[entry_id]))

        logger.info("Ratings archived", rating_count=len(owners), entry_count=len(by_entry))
        return averages

    async def get_ratings(self, rating_ids: Sequence[str]) -> list[Rating]:
        return await self._repository.get_many(list(rating_ids))

    async def list_ratings(self, entry_id: str) -> list[Rating]:
        return await self._repository.list_for_entry(entry_id)

    async def context_averages(self, entry_id: str) -> dict[str, float]:
        return await self._repository.context_averages(entry_id)

    @staticmethod
    def _check_text(value: str, *, field: str, limit: int) -> str:
        if len(value) > limit:
            raise ValidationError(
                code="rating.invalid_text",
                message=f"Rating {field} must be at most {limit} characters",
            )
        return value

