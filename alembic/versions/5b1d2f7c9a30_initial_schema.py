"""initial schema

Revision ID: 5b1d2f7c9a30
Revises:
Create Date: 2026-10-19 09:12:04.518233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1d2f7c9a30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "owners",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.Text, server_default=""),
        sa.Column("email", sa.Text, nullable=True, unique=True),
        sa.Column("access_token", sa.Text, nullable=True),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("token_expires_at", sa.DateTime, nullable=True),
        sa.Column("needs_reauth", sa.Boolean, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "tracked_queries",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("owner_id", sa.Integer, sa.ForeignKey("owners.id"), nullable=False, index=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("keywords", sa.Text, nullable=False),
        sa.Column("min_price", sa.Float, nullable=True),
        sa.Column("max_price", sa.Float, nullable=True),
        sa.Column("condition", sa.Text, nullable=True),
        sa.Column("buying_format", sa.Text, nullable=True),
        sa.Column("free_shipping", sa.Boolean, server_default="0"),
        sa.Column("marketplace_id", sa.Text, server_default="EBAY_US"),
        sa.Column("is_active", sa.Boolean, server_default="1", index=True),
        sa.Column("last_run_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("owner_id", "name", name="uq_tracked_query_owner_name"),
    )

    op.create_table(
        "tracked_items",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("owner_id", sa.Integer, sa.ForeignKey("owners.id"), nullable=False, index=True),
        sa.Column("query_id", sa.Integer, sa.ForeignKey("tracked_queries.id"), nullable=True),
        sa.Column("remote_item_id", sa.Text, nullable=False),
        sa.Column("title", sa.Text, server_default=""),
        sa.Column("url", sa.Text, server_default=""),
        sa.Column("currency", sa.Text, server_default="USD"),
        sa.Column("current_price", sa.Float, nullable=True),
        sa.Column("target_price", sa.Float, nullable=True),
        sa.Column("lowest_price", sa.Float, nullable=True),
        sa.Column("highest_price", sa.Float, nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="1", index=True),
        sa.Column("last_checked_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("owner_id", "remote_item_id", name="uq_tracked_item_owner_remote"),
    )

    op.create_table(
        "price_samples",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("item_id", sa.Integer, sa.ForeignKey("tracked_items.id"), nullable=False, index=True),
        sa.Column("owner_id", sa.Integer, nullable=False, index=True),
        sa.Column("price", sa.Float, nullable=False),
        sa.Column("currency", sa.Text, server_default="USD"),
        sa.Column("price_dropped", sa.Boolean, server_default="0"),
        sa.Column("drop_amount", sa.Float, nullable=True),
        sa.Column("recorded_at", sa.DateTime, nullable=False, index=True),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("owner_id", sa.Integer, sa.ForeignKey("owners.id"), nullable=False, unique=True),
        sa.Column("drop_threshold_pct", sa.Float, server_default="5.0"),
        sa.Column("quiet_hours_enabled", sa.Boolean, server_default="0"),
        sa.Column("quiet_start_hour", sa.Integer, server_default="22"),
        sa.Column("quiet_end_hour", sa.Integer, server_default="8"),
        sa.Column("timezone", sa.Text, server_default="UTC"),
        sa.Column("channels", sa.Text, server_default="[]"),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("owner_id", sa.Integer, nullable=False, index=True),
        sa.Column("item_id", sa.Integer, nullable=True),
        sa.Column("channel", sa.Text, nullable=False),
        sa.Column("event_type", sa.Text, server_default="price_drop"),
        sa.Column("message", sa.Text, server_default=""),
        sa.Column("success", sa.Boolean, server_default="1"),
        sa.Column("sent_at", sa.DateTime, nullable=False, index=True),
    )


def downgrade() -> None:
    op.drop_table("notification_log")
    op.drop_table("notification_preferences")
    op.drop_table("price_samples")
    op.drop_table("tracked_items")
    op.drop_table("tracked_queries")
    op.drop_table("owners")
