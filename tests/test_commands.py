"""Tests for subscriber bot commands."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fomo_relay.alerter.transport import IncomingMessage
from fomo_relay.commands import (
    HELP_TEXT,
    NOT_REGISTERED,
    UNKNOWN_COMMAND,
    CommandHandler,
    parse_period,
)
from fomo_relay.storage.database import DatabaseManager
from fomo_relay.storage.repos import NotificationDTO, NotificationRepository, TraderRepository
from fomo_relay.subscriptions import SubscriptionIndex

CHAT_ID = 4242


def msg(text: str, *, chat_id: int = CHAT_ID, update_id: int = 1) -> IncomingMessage:
    return IncomingMessage(update_id=update_id, chat_id=chat_id, text=text, username="alice", first_name="Alice")


async def add_traders(db: DatabaseManager, *handles: str) -> None:
    async with db.get_async_session() as session:
        repo = TraderRepository(session)
        for handle in handles:
            await repo.upsert(handle)


@pytest.fixture
def subscriptions(db: DatabaseManager, transport) -> SubscriptionIndex:
    return SubscriptionIndex(db, transport)


@pytest.fixture
def handler(db: DatabaseManager, transport, subscriptions: SubscriptionIndex, broadcaster: AsyncMock) -> CommandHandler:
    return CommandHandler(db, transport, subscriptions, broadcaster, poll_timeout_seconds=0)


@pytest.fixture
async def registered(handler: CommandHandler, db: DatabaseManager) -> CommandHandler:
    await add_traders(db, "alpha", "beta", "gamma")
    await handler.handle(msg("/start"))
    return handler


class TestParsePeriod:
    @pytest.mark.parametrize(
        ("value", "window", "label"),
        [
            ("1h", timedelta(hours=1), "1 hour"),
            ("6H", timedelta(hours=6), "6 hours"),
            ("168h", timedelta(hours=168), "168 hours"),
            ("1d", timedelta(days=1), "1 day"),
            ("30d", timedelta(days=30), "30 days"),
        ],
    )
    def test_valid(self, value: str, window: timedelta, label: str) -> None:
        assert parse_period(value) == (window, label)

    @pytest.mark.parametrize("value", ["0h", "169h", "31d", "1w", "h", "-1h", ""])
    def test_invalid(self, value: str) -> None:
        assert parse_period(value) is None


class TestStart:
    @pytest.mark.asyncio
    async def test_start_registers_and_follows_all(
        self, handler: CommandHandler, db: DatabaseManager, subscriptions: SubscriptionIndex, broadcaster: AsyncMock, transport
    ) -> None:
        await add_traders(db, "alpha", "beta")

        reply = await handler.handle(msg("/start"))

        assert "following all 2 traders" in reply
        assert transport.texts_for(CHAT_ID) == [reply]
        user, created = await subscriptions.register_user(CHAT_ID)
        assert created is False
        assert len(await subscriptions.traders_for_user(user.id)) == 2
        assert broadcaster.user_joined.await_args.args[0]["chat_id"] == CHAT_ID

    @pytest.mark.asyncio
    async def test_help_and_unknown(self, handler: CommandHandler) -> None:
        assert await handler.handle(msg("/help")) == HELP_TEXT
        assert await handler.handle(msg("/frobnicate")) == UNKNOWN_COMMAND

    @pytest.mark.asyncio
    async def test_bot_suffix_is_ignored(self, handler: CommandHandler) -> None:
        assert await handler.handle(msg("/help@fomo_bot")) == HELP_TEXT

    @pytest.mark.asyncio
    async def test_plain_text_is_ignored(self, handler: CommandHandler, transport) -> None:
        assert await handler.handle(msg("hello")) is None
        assert transport.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["/list", "/mytraders", "/follow 1", "/unfollow 1", "/autofollow", "/top 1h"])
    async def test_requires_registration(self, handler: CommandHandler, command: str) -> None:
        assert await handler.handle(msg(command)) == NOT_REGISTERED


class TestFollowCommands:
    @pytest.mark.asyncio
    async def test_list_marks_followed(self, registered: CommandHandler) -> None:
        await registered.handle(msg("/unfollow beta"))

        reply = await registered.handle(msg("/list"))

        assert "All Traders (3 total)" in reply
        assert "1 - [alpha](https://x.com/alpha) ✅" in reply
        assert "2 - [beta](https://x.com/beta) ❌" in reply

    @pytest.mark.asyncio
    async def test_follow_mixed_targets(self, registered: CommandHandler) -> None:
        await registered.handle(msg("/unfollow all"))

        reply = await registered.handle(msg("/follow 1, beta nobody 99"))

        assert reply == "Now following alpha, beta\nNot found: nobody, 99"

    @pytest.mark.asyncio
    async def test_follow_already_following(self, registered: CommandHandler) -> None:
        assert await registered.handle(msg("/follow alpha")) == "Already following alpha"

    @pytest.mark.asyncio
    async def test_follow_all(self, registered: CommandHandler) -> None:
        assert await registered.handle(msg("/follow all")) == "You're already following all 3 traders."
        await registered.handle(msg("/unfollow gamma"))
        assert await registered.handle(msg("/follow all")) == "Now following all traders (1 new, 3 total)"

    @pytest.mark.asyncio
    async def test_follow_all_without_traders(self, handler: CommandHandler) -> None:
        await handler.handle(msg("/start"))

        assert await handler.handle(msg("/follow all")) == "❌ No traders available to follow yet."

    @pytest.mark.asyncio
    async def test_follow_usage(self, registered: CommandHandler) -> None:
        assert (await registered.handle(msg("/follow"))).startswith("❌ Please specify traders to follow.")

    @pytest.mark.asyncio
    async def test_unfollow(self, registered: CommandHandler) -> None:
        assert await registered.handle(msg("/unfollow alpha")) == "Unfollowed alpha"
        assert await registered.handle(msg("/unfollow alpha")) == "Weren't following alpha"
        assert await registered.handle(msg("/unfollow all")) == "Unfollowed all traders (2 total)"
        assert await registered.handle(msg("/unfollow all")) == "You're not following any traders."

    @pytest.mark.asyncio
    async def test_my_traders(self, registered: CommandHandler) -> None:
        reply = await registered.handle(msg("/mytraders"))
        await registered.handle(msg("/unfollow all"))
        empty = await registered.handle(msg("/mytraders"))

        assert "Your Followed Traders (3 total)" in reply
        assert empty.startswith("📭 You're not following any traders yet.")


class TestAutofollow:
    @pytest.mark.asyncio
    async def test_toggle(self, registered: CommandHandler) -> None:
        assert "currently: ON" in await registered.handle(msg("/autofollow"))
        assert (await registered.handle(msg("/autofollow off"))).startswith("❌ Auto-follow for new traders is now OFF")
        assert "currently: OFF" in await registered.handle(msg("/autofollow"))
        assert (await registered.handle(msg("/autofollow ON"))).startswith("✅ Auto-follow for new traders is now ON")

    @pytest.mark.asyncio
    async def test_invalid_option(self, registered: CommandHandler) -> None:
        assert await registered.handle(msg("/autofollow maybe")) == (
            "❌ Invalid option. Use /autofollow on or /autofollow off"
        )


class TestTop:
    @pytest.mark.asyncio
    async def test_usage_and_invalid(self, registered: CommandHandler) -> None:
        assert (await registered.handle(msg("/top"))).startswith("❌ Please specify a time period.")
        assert "Max: 168h (7 days) or 30d" in await registered.handle(msg("/top 200h"))

    @pytest.mark.asyncio
    async def test_leaderboard(self, registered: CommandHandler, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = NotificationRepository(session)
            await repo.insert(NotificationDTO(message="KLED @a bought", ticker="KLED"))
            await repo.insert(NotificationDTO(message="KLED @b sold", ticker="KLED", contract_address="MINT"))

        reply = await registered.handle(msg("/top 1h"))

        assert reply.startswith("📊 *Top Tokens* (Last 1 hour)")
        assert "🥇 *KLED* - 2 trades (1 🟢, 1 🔴)\n`MINT`" in reply

    @pytest.mark.asyncio
    async def test_no_activity(self, registered: CommandHandler) -> None:
        assert await registered.handle(msg("/top 7d")) == "📊 No token activity in the last 7 days."


class TestPolling:
    @pytest.mark.asyncio
    async def test_poll_once_advances_offset(self, handler: CommandHandler, transport) -> None:
        transport.updates = [[msg("/help", update_id=7), IncomingMessage(update_id=8, chat_id=0, text="")]]

        received = await handler.poll_once()
        await handler.poll_once()

        assert received == 2
        assert handler._offset == 9
        assert transport.texts_for(CHAT_ID) == [HELP_TEXT]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_batch(self, handler: CommandHandler, transport) -> None:
        transport.failing_recipients = {1}
        transport.updates = [[msg("/help", chat_id=1, update_id=1), msg("/help", update_id=2)]]

        await handler.poll_once()

        assert transport.texts_for(CHAT_ID) == [HELP_TEXT]

    @pytest.mark.asyncio
    async def test_start_stop(self, handler: CommandHandler) -> None:
        await handler.start()
        assert handler.is_running

        await handler.stop()

        assert not handler.is_running
