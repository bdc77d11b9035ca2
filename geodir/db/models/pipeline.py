"""Durable tables behind the notification pipeline."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    Text,
)

from geodir.db.models.base import Base


class ChangeEventRecord(Base):
    """Transactional outbox written together with every entry mutation."""

    __tablename__ = "change_event"

    sequence = Column(BigInteger, primary_key=True, autoincrement=True)
    entry_id = Column(Text, nullable=False)
    kind = Column(Text, nullable=False)  # created, updated
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    status = Column(Text, nullable=False, default="pending")  # pending, processed, failed
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=10)
    available_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    lease_until = Column(DateTime(timezone=True), nullable=True)
    locked_by = Column(Text, nullable=True)
    last_error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("change_event_status_seq_idx", "status", "sequence"),
        Index("change_event_entry_seq_idx", "entry_id", "sequence"),
    )


class NotificationDispatchRecord(Base):
    """One row per (change event, subscriber) notification."""

    __tablename__ = "notification_dispatch"

    id = Column(Text, primary_key=True)
    event_sequence = Column(BigInteger, nullable=False)
    user_id = Column(Text, nullable=False)
    entry_id = Column(Text, nullable=False)
    event_kind = Column(Text, nullable=False)
    idempotency_key = Column(Text, nullable=False, unique=True)

    status = Column(Text, nullable=False, index=True)  # queued, sending, sent, failed
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=6)
    run_at = Column(DateTime(timezone=True), nullable=False)
    lease_until = Column(DateTime(timezone=True), nullable=True, index=True)
    locked_by = Column(Text, nullable=True)
    last_error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("notification_dispatch_claim_idx", "status", "run_at"),
    )
