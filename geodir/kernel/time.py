from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

# Services take a clock instead of calling utc_now directly so tests can freeze time.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_utc(value: datetime) -> datetime:
    """Normalise a driver timestamp to tz-aware UTC.

    asyncpg returns aware values for TIMESTAMPTZ columns, but fakes and older
    rows may hand back naive datetimes, which are taken to already be UTC.
    """
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
