"""
Directory Database Models

Entries, their ratings, and the minimal user record the pipeline needs
(recipient address + email confirmation flag).
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import ARRAY

from geodir.db.models.base import Base


class EntryRecord(Base):
    """A place/organization on the map. Soft-archived, never deleted."""

    __tablename__ = "entries"

    id = Column(Text, primary_key=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    categories = Column(ARRAY(Text), nullable=False, default=list)
    tags = Column(ARRAY(Text), nullable=False, default=list)

    # Optional address, contact and link details
    street = Column(Text, nullable=True)
    zip = Column(Text, nullable=True)
    city = Column(Text, nullable=True)
    country = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    telephone = Column(Text, nullable=True)
    homepage = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    image_link_url = Column(Text, nullable=True)
    license = Column(Text, nullable=False, default="CC0-1.0")

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    # Rating aggregate (derived, refreshed with every rating write)
    rating_count = Column(Integer, nullable=False, default=0)
    rating_sum = Column(BigInteger, nullable=False, default=0)
    average_rating = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    archived_at = Column(DateTime(timezone=True), nullable=True)


class RatingRecord(Base):
    __tablename__ = "ratings"

    id = Column(Text, primary_key=True)
    entry_id = Column(Text, ForeignKey("entries.id"), nullable=False)
    value = Column(Integer, nullable=False)
    context = Column(Text, nullable=False, default="general")
    title = Column(Text, nullable=False, default="")
    comment = Column(Text, nullable=True)
    source = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ratings_entry_live_idx", "entry_id", "archived_at"),
    )


class UserRecord(Base):
    __tablename__ = "users"

    id = Column(Text, primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    email_confirmed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
