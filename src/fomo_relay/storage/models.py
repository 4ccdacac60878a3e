"""SQLAlchemy models for persistent storage.

This module defines the database schema for notifications and their
delivered messages, the ticker resolution cache, operator-curated token
overrides, and the trader/user subscription graph.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class NotificationModel(Base):
    """One dispatched trade alert."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    ticker: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trader: Mapped[str | None] = mapped_column(String(64), nullable=True)

    has_contract_address: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    contract_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    chain: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Resolution tracking
    resolution_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cache_hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    aggregator_hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scanner_hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lookup_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    was_resolved_by_retry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    market_cap_at_send: Mapped[Decimal | None] = mapped_column(Numeric(24, 2), nullable=True)

    sent_messages: Mapped[list[SentMessageModel]] = relationship(
        back_populates="notification",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_notifications_sent_at", "sent_at"),
        Index("idx_notifications_ticker", "ticker"),
    )


class SentMessageModel(Base):
    """One delivered copy of a notification, per recipient."""

    __tablename__ = "sent_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False
    )
    recipient_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transport_message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    is_manually_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_system_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    notification: Mapped[NotificationModel] = relationship(back_populates="sent_messages")

    __table_args__ = (Index("idx_sent_messages_notification", "notification_id"),)


class CachedTokenAddressModel(Base):
    """Ticker to contract address resolution with a sliding expiry."""

    __tablename__ = "cached_token_addresses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    contract_address: Mapped[str] = mapped_column(String(128), nullable=False)
    chain: Mapped[str | None] = mapped_column(String(16), nullable=True)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_cached_token_addresses_expires_at", "expires_at"),)


class KnownTokenModel(Base):
    """Operator-curated symbol override, applied above a market-cap floor."""

    __tablename__ = "known_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    contract_address: Mapped[str] = mapped_column(String(128), nullable=False)
    min_market_cap: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False, default=Decimal("0"))
    chain: Mapped[str | None] = mapped_column(String(16), nullable=True)


class TraderModel(Base):
    """Alert author identified by handle."""

    __tablename__ = "traders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    handle: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserModel(Base):
    """Subscriber reachable through the messaging transport."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_follow_new_traders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserTraderModel(Base):
    """Follow edge between a user and a trader."""

    __tablename__ = "user_traders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    trader_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("traders.id", ondelete="CASCADE"), nullable=False
    )
    followed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "trader_id", name="uq_user_traders_pair"),
        Index("idx_user_traders_trader", "trader_id"),
    )
