"""Directory, subscription and notification pipeline tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # ==========================================================================
    # Directory
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("email_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("categories", ARRAY(sa.Text()), nullable=False, server_default="{}"),
        sa.Column("tags", ARRAY(sa.Text()), nullable=False, server_default="{}"),
        sa.Column("street", sa.Text(), nullable=True),
        sa.Column("zip", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("country", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("telephone", sa.Text(), nullable=True),
        sa.Column("homepage", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("image_link_url", sa.Text(), nullable=True),
        sa.Column("license", sa.Text(), nullable=False, server_default="CC0-1.0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rating_sum", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("average_rating", sa.Float(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("archived_at", nullable=True),
        sa.CheckConstraint("lat BETWEEN -90 AND 90", name="entries_lat_range"),
        sa.CheckConstraint("lng BETWEEN -180 AND 180", name="entries_lng_range"),
    )

    op.create_table(
        "ratings",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("entry_id", sa.Text(), sa.ForeignKey("entries.id"), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("context", sa.Text(), nullable=False, server_default="general"),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("archived_at", nullable=True),
    )
    op.create_index("ratings_entry_live_idx", "ratings", ["entry_id", "archived_at"])

    # ==========================================================================
    # Subscriptions and confirmation tokens
    # ==========================================================================
    op.execute("CREATE SEQUENCE bbox_subscription_revision_seq")
    op.create_table(
        "bbox_subscriptions",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("south_west_lat", sa.Float(), nullable=False),
        sa.Column("south_west_lng", sa.Float(), nullable=False),
        sa.Column("north_east_lat", sa.Float(), nullable=False),
        sa.Column("north_east_lng", sa.Float(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("token_confirmed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "revision",
            sa.BigInteger(),
            nullable=False,
            server_default=sa.text("nextval('bbox_subscription_revision_seq')"),
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint(
            "user_id",
            "south_west_lat",
            "south_west_lng",
            "north_east_lat",
            "north_east_lng",
            name="bbox_subscriptions_user_bbox_uq",
        ),
    )
    op.create_index("ix_bbox_subscriptions_user_id", "bbox_subscriptions", ["user_id"])
    op.create_index("bbox_subscriptions_revision_idx", "bbox_subscriptions", ["revision"])

    op.create_table(
        "confirmation_tokens",
        sa.Column("token_hash", sa.Text(), primary_key=True),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        _timestamp("resolved_at", nullable=True),
    )
    op.create_index("ix_confirmation_tokens_owner_id", "confirmation_tokens", ["owner_id"])

    # ==========================================================================
    # Notification pipeline
    # ==========================================================================
    op.create_table(
        "change_event",
        sa.Column("sequence", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("entry_id", sa.Text(), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        _timestamp("occurred_at"),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="10"),
        _timestamp("available_at"),
        _timestamp("lease_until", nullable=True),
        sa.Column("locked_by", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("processed_at", nullable=True),
    )
    op.create_index("change_event_status_seq_idx", "change_event", ["status", "sequence"])
    op.create_index("change_event_entry_seq_idx", "change_event", ["entry_id", "sequence"])

    op.create_table(
        "notification_dispatch",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("event_sequence", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("entry_id", sa.Text(), nullable=False),
        sa.Column("event_kind", sa.Text(), nullable=False),
        sa.Column("idempotency_key", sa.Text(), nullable=False, unique=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="6"),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("lease_until", nullable=True),
        sa.Column("locked_by", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("sent_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("notification_dispatch_claim_idx", "notification_dispatch", ["status", "run_at"])
    op.create_index("ix_notification_dispatch_status", "notification_dispatch", ["status"])
    op.create_index("ix_notification_dispatch_lease_until", "notification_dispatch", ["lease_until"])


def downgrade() -> None:
    op.drop_table("notification_dispatch")
    op.drop_table("change_event")
    op.drop_table("confirmation_tokens")
    op.drop_table("bbox_subscriptions")
    op.execute("DROP SEQUENCE IF EXISTS bbox_subscription_revision_seq")
    op.drop_table("ratings")
    op.drop_table("entries")
    op.drop_table("users")
