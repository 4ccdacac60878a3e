"""Initial schema for notifications, resolution cache and subscriptions.

Revision ID: 001_initial
Revises:
Create Date: 2026-03-01 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Notifications table
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("ticker", sa.String(64), nullable=True),
        sa.Column("trader", sa.String(64), nullable=True),
        sa.Column("has_contract_address", sa.Boolean(), nullable=False),
        sa.Column("contract_address", sa.String(128), nullable=True),
        sa.Column("chain", sa.String(16), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolution_source", sa.String(20), nullable=True),
        sa.Column("cache_hit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("aggregator_hit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scanner_hit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lookup_duration_seconds", sa.Float(), nullable=True),
        sa.Column("was_resolved_by_retry", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("market_cap_at_send", sa.Numeric(24, 2), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_notifications_sent_at", "notifications", ["sent_at"])
    op.create_index("idx_notifications_ticker", "notifications", ["ticker"])

    # Sent messages table
    op.create_table(
        "sent_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("notification_id", sa.Integer(), nullable=False),
        sa.Column("recipient_id", sa.BigInteger(), nullable=False),
        sa.Column("transport_message_id", sa.BigInteger(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_manually_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_system_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["notification_id"], ["notifications.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_sent_messages_notification", "sent_messages", ["notification_id"])

    # Ticker resolution cache
    op.create_table(
        "cached_token_addresses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticker", sa.String(64), nullable=False),
        sa.Column("contract_address", sa.String(128), nullable=False),
        sa.Column("chain", sa.String(16), nullable=True),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ticker"),
    )
    op.create_index("idx_cached_token_addresses_expires_at", "cached_token_addresses", ["expires_at"])

    # Known token overrides
    op.create_table(
        "known_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False),
        sa.Column("contract_address", sa.String(128), nullable=False),
        sa.Column("min_market_cap", sa.Numeric(24, 2), nullable=False, server_default="0"),
        sa.Column("chain", sa.String(16), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("symbol"),
    )

    # Subscription graph
    op.create_table(
        "traders",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("handle", sa.String(64), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("handle"),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_follow_new_traders", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chat_id"),
    )
    op.create_table(
        "user_traders",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("trader_id", sa.Integer(), nullable=False),
        sa.Column("followed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["trader_id"], ["traders.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "trader_id", name="uq_user_traders_pair"),
    )
    op.create_index("idx_user_traders_trader", "user_traders", ["trader_id"])


def downgrade() -> None:
    op.drop_index("idx_user_traders_trader", table_name="user_traders")
    op.drop_table("user_traders")
    op.drop_table("users")
    op.drop_table("traders")
    op.drop_table("known_tokens")
    op.drop_index("idx_cached_token_addresses_expires_at", table_name="cached_token_addresses")
    op.drop_table("cached_token_addresses")
    op.drop_index("idx_sent_messages_notification", table_name="sent_messages")
    op.drop_table("sent_messages")
    op.drop_index("idx_notifications_ticker", table_name="notifications")
    op.drop_index("idx_notifications_sent_at", table_name="notifications")
    op.drop_table("notifications")
