"""Repository pattern implementations for data access.

This module provides data access abstractions for notifications, delivered
messages, the ticker resolution cache, known-token overrides, traders,
users and follow edges.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from fomo_relay.storage.models import (
    CachedTokenAddressModel,
    KnownTokenModel,
    NotificationModel,
    SentMessageModel,
    TraderModel,
    UserModel,
    UserTraderModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(ts: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts


def _insert_for(session: AsyncSession, model: Any) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


# ============================================================================
# Notifications
# ============================================================================


@dataclass
class NotificationDTO:
    """Data transfer object for notifications."""

    message: str
    ticker: str | None = None
    trader: str | None = None
    has_contract_address: bool = False
    contract_address: str | None = None
    chain: str | None = None
    sent_at: datetime | None = None
    resolution_source: str | None = None
    cache_hit_count: int = 0
    aggregator_hit_count: int = 0
    scanner_hit_count: int = 0
    lookup_duration_seconds: float | None = None
    was_resolved_by_retry: bool = False
    market_cap_at_send: Decimal | None = None
    id: int | None = None

    @classmethod
    def from_model(cls, model: NotificationModel) -> NotificationDTO:
        return cls(
            id=model.id,
            message=model.message,
            ticker=model.ticker,
            trader=model.trader,
            has_contract_address=model.has_contract_address,
            contract_address=model.contract_address,
            chain=model.chain,
            sent_at=_as_utc(model.sent_at),
            resolution_source=model.resolution_source,
            cache_hit_count=model.cache_hit_count,
            aggregator_hit_count=model.aggregator_hit_count,
            scanner_hit_count=model.scanner_hit_count,
            lookup_duration_seconds=model.lookup_duration_seconds,
            was_resolved_by_retry=model.was_resolved_by_retry,
            market_cap_at_send=model.market_cap_at_send,
        )


@dataclass(frozen=True)
class TickerActivity:
    """Alert counts for one ticker over a time window."""

    ticker: str
    total: int
    buys: int
    sells: int
    contract_address: str | None


class NotificationRepository:
    """Repository for dispatched notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, notification_id: int) -> NotificationDTO | None:
        model = await self.session.get(NotificationModel, notification_id)
        return NotificationDTO.from_model(model) if model else None

    async def insert(self, dto: NotificationDTO) -> NotificationDTO:
        """Insert a notification and return it with its generated id."""
        model = NotificationModel(
            message=dto.message,
            ticker=dto.ticker,
            trader=dto.trader,
            has_contract_address=bool(dto.contract_address),
            contract_address=dto.contract_address or None,
            chain=dto.chain,
            sent_at=dto.sent_at or datetime.now(UTC),
            resolution_source=dto.resolution_source,
            cache_hit_count=dto.cache_hit_count,
            aggregator_hit_count=dto.aggregator_hit_count,
            scanner_hit_count=dto.scanner_hit_count,
            lookup_duration_seconds=dto.lookup_duration_seconds,
            was_resolved_by_retry=dto.was_resolved_by_retry,
            market_cap_at_send=dto.market_cap_at_send,
        )
        self.session.add(model)
        await self.session.flush()
        return NotificationDTO.from_model(model)

    async def set_contract_address(
        self,
        notification_id: int,
        *,
        contract_address: str,
        chain: str | None,
        resolution_source: str | None = None,
        cache_hits: int = 0,
        aggregator_hits: int = 0,
        scanner_hits: int = 0,
        lookup_duration_seconds: float | None = None,
        resolved_by_retry: bool = False,
    ) -> NotificationDTO | None:
        """Attach a contract address to an existing notification.

        Hit counters are added to the ones recorded at send time. The
        message, ticker, trader and send timestamp are never touched.

        Returns:
            The updated notification, or None if it does not exist.
        """
        model = await self.session.get(NotificationModel, notification_id)
        if model is None:
            return None
        model.contract_address = contract_address
        model.has_contract_address = bool(contract_address)
        model.chain = chain
        if resolution_source is not None:
            model.resolution_source = resolution_source
        model.cache_hit_count += cache_hits
        model.aggregator_hit_count += aggregator_hits
        model.scanner_hit_count += scanner_hits
        if lookup_duration_seconds is not None:
            model.lookup_duration_seconds = lookup_duration_seconds
        if resolved_by_retry:
            model.was_resolved_by_retry = True
        await self.session.flush()
        return NotificationDTO.from_model(model)

    async def list_recent(self, *, limit: int = 50) -> list[NotificationDTO]:
        result = await self.session.execute(
            select(NotificationModel).order_by(NotificationModel.sent_at.desc(), NotificationModel.id.desc()).limit(limit)
        )
        return [NotificationDTO.from_model(m) for m in result.scalars().all()]

    async def ticker_activity(self, *, since: datetime, limit: int = 20) -> list[TickerActivity]:
        """Most-alerted tickers since a cutoff, busiest first.

        Buys and sells are counted from the literal words "bought" and
        "sold" in the raw message. The contract address is the most
        recent non-empty one seen for the ticker.
        """
        result = await self.session.execute(
            select(
                NotificationModel.ticker,
                NotificationModel.message,
                NotificationModel.contract_address,
            )
            .where((NotificationModel.sent_at >= since) & (NotificationModel.ticker.is_not(None)))
            .order_by(NotificationModel.sent_at.asc(), NotificationModel.id.asc())
        )
        stats: dict[str, dict[str, Any]] = {}
        for ticker, message, contract_address in result.all():
            entry = stats.setdefault(ticker, {"total": 0, "buys": 0, "sells": 0, "ca": None})
            entry["total"] += 1
            if "bought" in message:
                entry["buys"] += 1
            if "sold" in message:
                entry["sells"] += 1
            if contract_address:
                entry["ca"] = contract_address

        ranked = sorted(stats.items(), key=lambda kv: kv[1]["total"], reverse=True)[:limit]
        return [
            TickerActivity(
                ticker=ticker,
                total=s["total"],
                buys=s["buys"],
                sells=s["sells"],
                contract_address=s["ca"],
            )
            for ticker, s in ranked
        ]


# ============================================================================
# Sent messages
# ============================================================================


@dataclass
class SentMessageDTO:
    """Data transfer object for delivered messages."""

    notification_id: int
    recipient_id: int
    transport_message_id: int
    sent_at: datetime | None = None
    is_manually_edited: bool = False
    is_system_edited: bool = False
    edited_at: datetime | None = None
    id: int | None = None

    @classmethod
    def from_model(cls, model: SentMessageModel) -> SentMessageDTO:
        return cls(
            id=model.id,
            notification_id=model.notification_id,
            recipient_id=model.recipient_id,
            transport_message_id=model.transport_message_id,
            sent_at=_as_utc(model.sent_at),
            is_manually_edited=model.is_manually_edited,
            is_system_edited=model.is_system_edited,
            edited_at=_as_utc(model.edited_at),
        )


class SentMessageRepository:
    """Repository for per-recipient delivery records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, dtos: Sequence[SentMessageDTO]) -> int:
        """Insert delivery records in one batch."""
        if not dtos:
            return 0
        now = datetime.now(UTC)
        self.session.add_all(
            [
                SentMessageModel(
                    notification_id=dto.notification_id,
                    recipient_id=dto.recipient_id,
                    transport_message_id=dto.transport_message_id,
                    sent_at=dto.sent_at or now,
                )
                for dto in dtos
            ]
        )
        await self.session.flush()
        return len(dtos)

    async def list_for_notification(self, notification_id: int) -> list[SentMessageDTO]:
        result = await self.session.execute(
            select(SentMessageModel)
            .where(SentMessageModel.notification_id == notification_id)
            .order_by(SentMessageModel.id.asc())
        )
        return [SentMessageDTO.from_model(m) for m in result.scalars().all()]

    async def count_by_notification(self, notification_ids: Iterable[int]) -> dict[int, int]:
        ids = list(notification_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(SentMessageModel.notification_id, func.count(SentMessageModel.id))
            .where(SentMessageModel.notification_id.in_(ids))
            .group_by(SentMessageModel.notification_id)
        )
        return {row[0]: row[1] for row in result.all()}

    async def mark_edited(self, message_ids: Sequence[int], *, manual: bool, edited_at: datetime | None = None) -> int:
        """Flag delivered messages as edited.

        The manual and system flags are mutually exclusive: setting one
        clears the other.
        """
        if not message_ids:
            return 0
        result = await self.session.execute(
            update(SentMessageModel)
            .where(SentMessageModel.id.in_(list(message_ids)))
            .values(
                is_manually_edited=manual,
                is_system_edited=not manual,
                edited_at=edited_at or datetime.now(UTC),
            )
        )
        await self.session.flush()
        return int(result.rowcount or 0)


# ============================================================================
# Resolution cache
# ============================================================================


@dataclass
class CachedTokenAddressDTO:
    """Data transfer object for cached ticker resolutions."""

    ticker: str
    contract_address: str
    chain: str | None
    last_accessed_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CachedTokenAddressModel) -> CachedTokenAddressDTO:
        return cls(
            ticker=model.ticker,
            contract_address=model.contract_address,
            chain=model.chain,
            last_accessed_at=_as_utc(model.last_accessed_at),
            expires_at=_as_utc(model.expires_at),
        )


class CachedTokenAddressRepository:
    """Repository for the ticker to contract address cache."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_unexpired(self, ticker: str, *, now: datetime) -> CachedTokenAddressDTO | None:
        result = await self.session.execute(
            select(CachedTokenAddressModel).where(
                (CachedTokenAddressModel.ticker == ticker) & (CachedTokenAddressModel.expires_at > now)
            )
        )
        model = result.scalar_one_or_none()
        return CachedTokenAddressDTO.from_model(model) if model else None

    async def touch(self, ticker: str, *, now: datetime, expires_at: datetime) -> None:
        """Slide an entry's expiry forward; never moves it backward."""
        await self.session.execute(
            update(CachedTokenAddressModel)
            .where(CachedTokenAddressModel.ticker == ticker)
            .values(
                last_accessed_at=now,
                expires_at=func.max(CachedTokenAddressModel.expires_at, expires_at)
                if self.session.get_bind().dialect.name == "sqlite"
                else func.greatest(CachedTokenAddressModel.expires_at, expires_at),
            )
        )
        await self.session.flush()

    async def upsert(
        self,
        *,
        ticker: str,
        contract_address: str,
        chain: str | None,
        now: datetime,
        expires_at: datetime,
    ) -> None:
        """Insert or replace the cached resolution for a ticker."""
        stmt = _insert_for(self.session, CachedTokenAddressModel).values(
            ticker=ticker,
            contract_address=contract_address,
            chain=chain,
            last_accessed_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["ticker"],
            set_={
                "contract_address": stmt.excluded.contract_address,
                "chain": stmt.excluded.chain,
                "last_accessed_at": stmt.excluded.last_accessed_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def delete_expired(self, *, now: datetime) -> int:
        result = await self.session.execute(
            delete(CachedTokenAddressModel).where(CachedTokenAddressModel.expires_at <= now)
        )
        await self.session.flush()
        return int(result.rowcount or 0)

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(CachedTokenAddressModel.id)))
        return int(result.scalar_one())


# ============================================================================
# Known-token overrides
# ============================================================================


@dataclass
class KnownTokenDTO:
    """Data transfer object for known-token overrides."""

    symbol: str
    contract_address: str
    min_market_cap: Decimal = Decimal("0")
    chain: str | None = None
    id: int | None = None

    @classmethod
    def from_model(cls, model: KnownTokenModel) -> KnownTokenDTO:
        return cls(
            id=model.id,
            symbol=model.symbol,
            contract_address=model.contract_address,
            min_market_cap=Decimal(model.min_market_cap),
            chain=model.chain,
        )


class KnownTokenRepository:
    """Repository for operator-curated token overrides."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_all(self) -> list[KnownTokenDTO]:
        result = await self.session.execute(select(KnownTokenModel).order_by(KnownTokenModel.symbol.asc()))
        return [KnownTokenDTO.from_model(m) for m in result.scalars().all()]

    async def get(self, token_id: int) -> KnownTokenDTO | None:
        model = await self.session.get(KnownTokenModel, token_id)
        return KnownTokenDTO.from_model(model) if model else None

    async def get_by_symbol(self, symbol: str) -> KnownTokenDTO | None:
        result = await self.session.execute(select(KnownTokenModel).where(KnownTokenModel.symbol == symbol))
        model = result.scalar_one_or_none()
        return KnownTokenDTO.from_model(model) if model else None

    async def insert(self, dto: KnownTokenDTO) -> KnownTokenDTO:
        model = KnownTokenModel(
            symbol=dto.symbol,
            contract_address=dto.contract_address,
            min_market_cap=dto.min_market_cap,
            chain=dto.chain,
        )
        self.session.add(model)
        await self.session.flush()
        return KnownTokenDTO.from_model(model)

    async def update(self, dto: KnownTokenDTO) -> KnownTokenDTO | None:
        if dto.id is None:
            raise ValueError("KnownTokenDTO.id is required for update")
        model = await self.session.get(KnownTokenModel, dto.id)
        if model is None:
            return None
        model.symbol = dto.symbol
        model.contract_address = dto.contract_address
        model.min_market_cap = dto.min_market_cap
        model.chain = dto.chain
        await self.session.flush()
        return KnownTokenDTO.from_model(model)

    async def delete(self, token_id: int) -> bool:
        result = await self.session.execute(delete(KnownTokenModel).where(KnownTokenModel.id == token_id))
        await self.session.flush()
        return bool(result.rowcount)


# ============================================================================
# Traders, users and follow edges
# ============================================================================


@dataclass
class TraderDTO:
    """Data transfer object for traders."""

    id: int
    handle: str
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TraderModel) -> TraderDTO:
        return cls(
            id=model.id,
            handle=model.handle,
            first_seen_at=_as_utc(model.first_seen_at),
            last_seen_at=_as_utc(model.last_seen_at),
        )


class TraderRepository:
    """Repository for traders."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, trader_id: int) -> TraderDTO | None:
        model = await self.session.get(TraderModel, trader_id)
        return TraderDTO.from_model(model) if model else None

    async def get_by_handle(self, handle: str) -> TraderDTO | None:
        result = await self.session.execute(select(TraderModel).where(TraderModel.handle == handle))
        model = result.scalar_one_or_none()
        return TraderDTO.from_model(model) if model else None

    async def list_all(self) -> list[TraderDTO]:
        result = await self.session.execute(select(TraderModel).order_by(TraderModel.id.asc()))
        return [TraderDTO.from_model(m) for m in result.scalars().all()]

    async def upsert(self, handle: str, *, now: datetime | None = None) -> tuple[TraderDTO, bool]:
        """Record a sighting of a trader.

        Returns:
            The trader and whether it was created by this call.
        """
        now = now or datetime.now(UTC)
        stmt = (
            _insert_for(self.session, TraderModel)
            .values(handle=handle, first_seen_at=now, last_seen_at=now)
            .on_conflict_do_nothing(index_elements=["handle"])
        )
        result = await self.session.execute(stmt)
        created = result.rowcount == 1
        if not created:
            await self.session.execute(
                update(TraderModel).where(TraderModel.handle == handle).values(last_seen_at=now)
            )
        await self.session.flush()
        trader = await self.get_by_handle(handle)
        if trader is None:
            raise RuntimeError(f"Trader {handle!r} vanished during upsert")
        return trader, created


@dataclass
class UserDTO:
    """Data transfer object for subscribers."""

    id: int
    chat_id: int
    username: str | None = None
    first_name: str | None = None
    joined_at: datetime | None = None
    is_active: bool = True
    auto_follow_new_traders: bool = True

    @property
    def display_name(self) -> str:
        return self.first_name or self.username or str(self.chat_id)

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(
            id=model.id,
            chat_id=model.chat_id,
            username=model.username,
            first_name=model.first_name,
            joined_at=_as_utc(model.joined_at),
            is_active=model.is_active,
            auto_follow_new_traders=model.auto_follow_new_traders,
        )


class UserRepository:
    """Repository for subscribers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> UserDTO | None:
        model = await self.session.get(UserModel, user_id)
        return UserDTO.from_model(model) if model else None

    async def get_by_chat_id(self, chat_id: int) -> UserDTO | None:
        result = await self.session.execute(select(UserModel).where(UserModel.chat_id == chat_id))
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def list_all(self) -> list[UserDTO]:
        result = await self.session.execute(select(UserModel).order_by(UserModel.joined_at.desc(), UserModel.id.desc()))
        return [UserDTO.from_model(m) for m in result.scalars().all()]

    async def list_active(self) -> list[UserDTO]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.is_active.is_(True)).order_by(UserModel.id.asc())
        )
        return [UserDTO.from_model(m) for m in result.scalars().all()]

    async def count_active(self) -> int:
        result = await self.session.execute(
            select(func.count(UserModel.id)).where(UserModel.is_active.is_(True))
        )
        return int(result.scalar_one())

    async def register(
        self,
        chat_id: int,
        *,
        username: str | None,
        first_name: str | None,
    ) -> tuple[UserDTO, bool]:
        """Create a subscriber or refresh and reactivate an existing one.

        Returns:
            The user and whether it was created by this call.
        """
        result = await self.session.execute(select(UserModel).where(UserModel.chat_id == chat_id))
        model = result.scalar_one_or_none()
        created = model is None
        if model is None:
            model = UserModel(chat_id=chat_id, username=username, first_name=first_name, joined_at=datetime.now(UTC))
            self.session.add(model)
        else:
            model.username = username
            model.first_name = first_name
        model.is_active = True
        await self.session.flush()
        return UserDTO.from_model(model), created

    async def deactivate(self, chat_id: int) -> bool:
        result = await self.session.execute(
            update(UserModel).where(UserModel.chat_id == chat_id).values(is_active=False)
        )
        await self.session.flush()
        return bool(result.rowcount)

    async def set_auto_follow(self, user_id: int, enabled: bool) -> bool:
        result = await self.session.execute(
            update(UserModel).where(UserModel.id == user_id).values(auto_follow_new_traders=enabled)
        )
        await self.session.flush()
        return bool(result.rowcount)


class UserTraderRepository:
    """Repository for follow edges between users and traders."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, user_id: int, trader_id: int) -> bool:
        """Insert a follow edge; True only if it did not exist yet."""
        stmt = (
            _insert_for(self.session, UserTraderModel)
            .values(user_id=user_id, trader_id=trader_id, followed_at=datetime.now(UTC))
            .on_conflict_do_nothing(index_elements=["user_id", "trader_id"])
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount == 1

    async def add_all_for_user(self, user_id: int) -> int:
        """Follow every known trader; returns the number of new edges."""
        trader_ids = (await self.session.execute(select(TraderModel.id))).scalars().all()
        created = 0
        for trader_id in trader_ids:
            if await self.add(user_id, trader_id):
                created += 1
        return created

    async def remove(self, user_id: int, trader_id: int) -> bool:
        result = await self.session.execute(
            delete(UserTraderModel).where(
                (UserTraderModel.user_id == user_id) & (UserTraderModel.trader_id == trader_id)
            )
        )
        await self.session.flush()
        return bool(result.rowcount)

    async def remove_all_for_user(self, user_id: int) -> int:
        result = await self.session.execute(delete(UserTraderModel).where(UserTraderModel.user_id == user_id))
        await self.session.flush()
        return int(result.rowcount or 0)

    async def exists(self, user_id: int, trader_id: int) -> bool:
        result = await self.session.execute(
            select(UserTraderModel.id).where(
                (UserTraderModel.user_id == user_id) & (UserTraderModel.trader_id == trader_id)
            )
        )
        return result.scalar_one_or_none() is not None

    async def follower_ids(self, trader_id: int) -> set[int]:
        result = await self.session.execute(
            select(UserTraderModel.user_id).where(UserTraderModel.trader_id == trader_id)
        )
        return set(result.scalars().all())

    async def active_followers(self, trader_id: int) -> list[UserDTO]:
        result = await self.session.execute(
            select(UserModel)
            .join(UserTraderModel, UserTraderModel.user_id == UserModel.id)
            .where((UserTraderModel.trader_id == trader_id) & (UserModel.is_active.is_(True)))
            .order_by(UserModel.id.asc())
        )
        return [UserDTO.from_model(m) for m in result.scalars().all()]

    async def traders_for_user(self, user_id: int) -> list[TraderDTO]:
        result = await self.session.execute(
            select(TraderModel)
            .join(UserTraderModel, UserTraderModel.trader_id == TraderModel.id)
            .where(UserTraderModel.user_id == user_id)
            .order_by(TraderModel.id.asc())
        )
        return [TraderDTO.from_model(m) for m in result.scalars().all()]
