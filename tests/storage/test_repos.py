"""Tests for storage repositories."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from fomo_relay.storage.database import DatabaseManager
from fomo_relay.storage.repos import (
    KnownTokenDTO,
    KnownTokenRepository,
    NotificationDTO,
    NotificationRepository,
    SentMessageDTO,
    SentMessageRepository,
    TraderRepository,
    UserRepository,
    UserTraderRepository,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def async_session(db: DatabaseManager) -> AsyncSession:
    """Session over the shared test database; committed on exit."""
    async with db.get_async_session() as session:
        yield session


@pytest.fixture
def sample_notification_dto() -> NotificationDTO:
    return NotificationDTO(
        message="KLED at $31.2m MC 🟢 @frankdegods bought $9,955.55",
        ticker="KLED",
        trader="frankdegods",
        market_cap_at_send=Decimal("31200000"),
        cache_hit_count=1,
        aggregator_hit_count=1,
    )


# ============================================================================
# NotificationRepository Tests
# ============================================================================


class TestNotificationRepository:
    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, async_session: AsyncSession, sample_notification_dto) -> None:
        repo = NotificationRepository(async_session)

        created = await repo.insert(sample_notification_dto)

        assert created.id is not None
        assert created.has_contract_address is False
        assert created.sent_at is not None
        assert created.sent_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_has_contract_address_follows_address(
        self, async_session: AsyncSession, sample_notification_dto
    ) -> None:
        sample_notification_dto.contract_address = "MINT"
        sample_notification_dto.chain = "SOL"

        created = await NotificationRepository(async_session).insert(sample_notification_dto)

        assert created.has_contract_address is True

    @pytest.mark.asyncio
    async def test_set_contract_address_adds_counters(
        self, async_session: AsyncSession, sample_notification_dto
    ) -> None:
        repo = NotificationRepository(async_session)
        created = await repo.insert(sample_notification_dto)

        updated = await repo.set_contract_address(
            created.id,
            contract_address="MINT",
            chain="SOL",
            resolution_source="DEXSCREENER",
            aggregator_hits=1,
            scanner_hits=1,
            resolved_by_retry=True,
        )

        assert updated is not None
        assert updated.has_contract_address is True
        assert updated.aggregator_hit_count == 2
        assert updated.scanner_hit_count == 1
        assert updated.cache_hit_count == 1
        assert updated.was_resolved_by_retry is True
        assert updated.message == created.message
        assert updated.sent_at == created.sent_at

    @pytest.mark.asyncio
    async def test_set_contract_address_missing(self, async_session: AsyncSession) -> None:
        repo = NotificationRepository(async_session)

        assert await repo.set_contract_address(999, contract_address="MINT", chain="SOL") is None

    @pytest.mark.asyncio
    async def test_list_recent_newest_first(self, async_session: AsyncSession) -> None:
        repo = NotificationRepository(async_session)
        now = datetime.now(UTC)
        await repo.insert(NotificationDTO(message="old", sent_at=now - timedelta(hours=1)))
        await repo.insert(NotificationDTO(message="new", sent_at=now))

        recent = await repo.list_recent(limit=1)

        assert [n.message for n in recent] == ["new"]

    @pytest.mark.asyncio
    async def test_ticker_activity(self, async_session: AsyncSession) -> None:
        repo = NotificationRepository(async_session)
        now = datetime.now(UTC)
        await repo.insert(NotificationDTO(message="KLED ... bought", ticker="KLED", sent_at=now))
        await repo.insert(
            NotificationDTO(message="KLED ... sold", ticker="KLED", contract_address="MINT", sent_at=now)
        )
        await repo.insert(NotificationDTO(message="WIF ... bought", ticker="WIF", sent_at=now))
        await repo.insert(
            NotificationDTO(message="BONK ... bought", ticker="BONK", sent_at=now - timedelta(days=2))
        )
        await repo.insert(NotificationDTO(message="no ticker", sent_at=now))

        activity = await repo.ticker_activity(since=now - timedelta(hours=1))

        assert [a.ticker for a in activity] == ["KLED", "WIF"]
        kled = activity[0]
        assert (kled.total, kled.buys, kled.sells) == (2, 1, 1)
        assert kled.contract_address == "MINT"
        assert activity[1].contract_address is None


# ============================================================================
# SentMessageRepository Tests
# ============================================================================


class TestSentMessageRepository:
    @pytest.mark.asyncio
    async def test_insert_and_list(self, async_session: AsyncSession, sample_notification_dto) -> None:
        notification = await NotificationRepository(async_session).insert(sample_notification_dto)
        repo = SentMessageRepository(async_session)

        inserted = await repo.insert_many(
            [
                SentMessageDTO(notification_id=notification.id, recipient_id=1, transport_message_id=10),
                SentMessageDTO(notification_id=notification.id, recipient_id=2, transport_message_id=11),
            ]
        )
        messages = await repo.list_for_notification(notification.id)

        assert inserted == 2
        assert [m.recipient_id for m in messages] == [1, 2]
        assert all(not m.is_manually_edited and not m.is_system_edited for m in messages)

    @pytest.mark.asyncio
    async def test_insert_many_empty(self, async_session: AsyncSession) -> None:
        assert await SentMessageRepository(async_session).insert_many([]) == 0

    @pytest.mark.asyncio
    async def test_count_by_notification(self, async_session: AsyncSession, sample_notification_dto) -> None:
        notification = await NotificationRepository(async_session).insert(sample_notification_dto)
        repo = SentMessageRepository(async_session)
        await repo.insert_many(
            [SentMessageDTO(notification_id=notification.id, recipient_id=i, transport_message_id=i) for i in range(3)]
        )

        assert await repo.count_by_notification([notification.id, 999]) == {notification.id: 3}
        assert await repo.count_by_notification([]) == {}

    @pytest.mark.asyncio
    async def test_edit_flags_are_exclusive(self, async_session: AsyncSession, sample_notification_dto) -> None:
        notification = await NotificationRepository(async_session).insert(sample_notification_dto)
        repo = SentMessageRepository(async_session)
        await repo.insert_many(
            [SentMessageDTO(notification_id=notification.id, recipient_id=1, transport_message_id=10)]
        )
        (message,) = await repo.list_for_notification(notification.id)

        await repo.mark_edited([message.id], manual=False)
        async_session.expire_all()
        (system_edited,) = await repo.list_for_notification(notification.id)
        await repo.mark_edited([message.id], manual=True)
        async_session.expire_all()
        (manually_edited,) = await repo.list_for_notification(notification.id)

        assert system_edited.is_system_edited and not system_edited.is_manually_edited
        assert manually_edited.is_manually_edited and not manually_edited.is_system_edited
        assert manually_edited.edited_at is not None


# ============================================================================
# KnownTokenRepository Tests
# ============================================================================


class TestKnownTokenRepository:
    @pytest.mark.asyncio
    async def test_crud(self, async_session: AsyncSession) -> None:
        repo = KnownTokenRepository(async_session)

        created = await repo.insert(KnownTokenDTO(symbol="KLED", contract_address="MINT", chain="SOL"))
        created.contract_address = "MINT2"
        created.min_market_cap = Decimal("1000000")
        updated = await repo.update(created)
        by_symbol = await repo.get_by_symbol("KLED")
        deleted = await repo.delete(created.id)

        assert updated is not None
        assert by_symbol is not None
        assert by_symbol.contract_address == "MINT2"
        assert by_symbol.min_market_cap == Decimal("1000000")
        assert deleted is True
        assert await repo.get(created.id) is None

    @pytest.mark.asyncio
    async def test_update_requires_id(self, async_session: AsyncSession) -> None:
        with pytest.raises(ValueError):
            await KnownTokenRepository(async_session).update(KnownTokenDTO(symbol="X", contract_address="Y"))

    @pytest.mark.asyncio
    async def test_update_and_delete_missing(self, async_session: AsyncSession) -> None:
        repo = KnownTokenRepository(async_session)

        assert await repo.update(KnownTokenDTO(id=42, symbol="X", contract_address="Y")) is None
        assert await repo.delete(42) is False


# ============================================================================
# Trader / User / follow edge Tests
# ============================================================================


class TestTraderRepository:
    @pytest.mark.asyncio
    async def test_upsert_reports_creation_once(self, async_session: AsyncSession) -> None:
        repo = TraderRepository(async_session)
        first_seen = datetime(2026, 3, 1, tzinfo=UTC)

        trader, created = await repo.upsert("frankdegods", now=first_seen)
        again, created_again = await repo.upsert("frankdegods", now=first_seen + timedelta(hours=1))

        assert created is True
        assert created_again is False
        assert again.id == trader.id
        assert again.first_seen_at == first_seen
        assert again.last_seen_at == first_seen + timedelta(hours=1)


class TestUserRepository:
    @pytest.mark.asyncio
    async def test_register_and_reactivate(self, async_session: AsyncSession) -> None:
        repo = UserRepository(async_session)

        user, created = await repo.register(111, username="alice", first_name=None)
        await repo.deactivate(111)
        assert await repo.count_active() == 0
        again, created_again = await repo.register(111, username="alice2", first_name="Alice")

        assert created is True
        assert created_again is False
        assert again.id == user.id
        assert again.is_active is True
        assert again.display_name == "Alice"
        assert await repo.count_active() == 1

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, async_session: AsyncSession) -> None:
        assert await UserRepository(async_session).deactivate(404) is False

    @pytest.mark.asyncio
    async def test_auto_follow_defaults_on(self, async_session: AsyncSession) -> None:
        repo = UserRepository(async_session)
        user, _ = await repo.register(111, username=None, first_name=None)

        await repo.set_auto_follow(user.id, False)
        async_session.expire_all()
        reloaded = await repo.get(user.id)

        assert user.auto_follow_new_traders is True
        assert reloaded is not None
        assert reloaded.auto_follow_new_traders is False
        assert reloaded.display_name == "111"


class TestUserTraderRepository:
    @pytest.mark.asyncio
    async def test_follow_edges(self, async_session: AsyncSession) -> None:
        users = UserRepository(async_session)
        traders = TraderRepository(async_session)
        edges = UserTraderRepository(async_session)
        alice, _ = await users.register(1, username="alice", first_name=None)
        bob, _ = await users.register(2, username="bob", first_name=None)
        frank, _ = await traders.upsert("frankdegods")

        assert await edges.add(alice.id, frank.id) is True
        assert await edges.add(alice.id, frank.id) is False
        assert await edges.add(bob.id, frank.id) is True
        await users.deactivate(2)

        assert await edges.exists(alice.id, frank.id)
        assert await edges.follower_ids(frank.id) == {alice.id, bob.id}
        assert [u.id for u in await edges.active_followers(frank.id)] == [alice.id]
        assert [t.handle for t in await edges.traders_for_user(alice.id)] == ["frankdegods"]

        assert await edges.remove(alice.id, frank.id) is True
        assert await edges.remove(alice.id, frank.id) is False

    @pytest.mark.asyncio
    async def test_add_and_remove_all(self, async_session: AsyncSession) -> None:
        users = UserRepository(async_session)
        traders = TraderRepository(async_session)
        edges = UserTraderRepository(async_session)
        alice, _ = await users.register(1, username="alice", first_name=None)
        for handle in ("a", "b", "c"):
            await traders.upsert(handle)

        assert await edges.add_all_for_user(alice.id) == 3
        assert await edges.add_all_for_user(alice.id) == 0
        assert await edges.remove_all_for_user(alice.id) == 3
        assert await edges.traders_for_user(alice.id) == []
