"""Database models."""

from geodir.db.models.base import Base
from geodir.db.models.directory import EntryRecord, RatingRecord, UserRecord
from geodir.db.models.pipeline import ChangeEventRecord, NotificationDispatchRecord
from geodir.db.models.subscriptions import BboxSubscriptionRecord, ConfirmationTokenRecord

__all__ = [
    "Base",
    "EntryRecord",
    "RatingRecord",
    "UserRecord",
    "BboxSubscriptionRecord",
    "ConfirmationTokenRecord",
    "ChangeEventRecord",
    "NotificationDispatchRecord",
]
