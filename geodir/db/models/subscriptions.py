"""Bounding-box subscriptions and confirmation tokens."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Sequence,
    Text,
    UniqueConstraint,
)

from geodir.db.models.base import Base

subscription_revision_seq = Sequence("bbox_subscription_revision_seq")


class BboxSubscriptionRecord(Base):
    """
    A user's region of interest.

    Rows are revoked rather than deleted so processes following `revision`
    can observe removals.
    """

    __tablename__ = "bbox_subscriptions"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    south_west_lat = Column(Float, nullable=False)
    south_west_lng = Column(Float, nullable=False)
    north_east_lat = Column(Float, nullable=False)
    north_east_lng = Column(Float, nullable=False)
    state = Column(Text, nullable=False, default="pending")  # pending, confirmed, revoked
    token_confirmed = Column(Boolean, nullable=False, default=True)
    revision = Column(
        BigInteger,
        subscription_revision_seq,
        nullable=False,
        server_default=subscription_revision_seq.next_value(),
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "south_west_lat",
            "south_west_lng",
            "north_east_lat",
            "north_east_lng",
            name="bbox_subscriptions_user_bbox_uq",
        ),
        Index("bbox_subscriptions_revision_idx", "revision"),
    )


class ConfirmationTokenRecord(Base):
    __tablename__ = "confirmation_tokens"

    # sha256 of the token; the raw token only ever leaves in an email.
    token_hash = Column(Text, primary_key=True)
    subject = Column(Text, nullable=False)  # email, subscription
    owner_id = Column(Text, nullable=False, index=True)
    state = Column(Text, nullable=False, default="pending")  # pending, confirmed, expired, revoked
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
