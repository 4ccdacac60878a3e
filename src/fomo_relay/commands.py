"""Subscriber bot commands and the long-polling loop that feeds them."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from fomo_relay.alerter.formatter import (
    format_ticker_activity,
    format_trader_line,
    format_trader_list,
)
from fomo_relay.storage.repos import (
    NotificationRepository,
    TraderRepository,
    UserDTO,
    UserRepository,
    UserTraderRepository,
)
from fomo_relay.subscriptions import TraderNotFoundError

if TYPE_CHECKING:
    from fomo_relay.alerter.broadcaster import DashboardBroadcaster
    from fomo_relay.alerter.transport import IncomingMessage, MessageTransport
    from fomo_relay.storage.database import DatabaseManager
    from fomo_relay.subscriptions import SubscriptionIndex

logger = logging.getLogger(__name__)

MAX_TOP_HOURS = 168
MAX_TOP_DAYS = 30
ERROR_BACKOFF_SECONDS = 5.0
IDLE_BACKOFF_SECONDS = 1.0

NOT_REGISTERED = "❌ Please use /start first to register."
UNKNOWN_COMMAND = "❓ Unknown command. Use /help to see available commands."

HELP_TEXT = """📚 FOMOFASTER Commands:

/start - Subscribe to notifications
/help - Show this help message
/list - View all available traders
/mytraders - View traders you're following
/follow <ids/handles> - Follow traders (e.g., /follow 1,2,3 or /follow trader1,trader2)
/follow all - Follow all traders
/unfollow <ids/handles> - Unfollow traders (e.g., /unfollow 1,trader2)
/unfollow all - Unfollow all traders
/autofollow - Check/toggle auto-follow for new traders (starts ON by default)
/top <period> - View top tokens by activity (e.g., /top 1h, /top 1d, /top 7d)

You'll only receive notifications from traders you follow!"""

WELCOME_TEXT = """🎉 Welcome to FOMOFASTER!

You're now following all {count} traders by default, configure according to your preferences if needed:

/help - show available commands
/list - view all available traders
/mytraders - view traders youre following
/follow - follow specific traders
/unfollow - unfollow specific traders
/autofollow - check/toggle auto-follow for new traders (starts ON by default)
/top - view top tokens by activity (e.g., /top 1h, /top 7d)"""

TOP_USAGE = (
    "/top 1h - Last 1 hour\n/top 6h - Last 6 hours\n/top 1d - Last 1 day\n/top 7d - Last 7 days"
)

_PERIOD_PATTERN = re.compile(r"^(\d+)([hd])$")


def parse_period(value: str) -> tuple[timedelta, str] | None:
    """Parse a ``/top`` window such as ``6h`` or ``7d``.

    Returns:
        The window and its display label, or None if invalid or out of range.

    >>> parse_period("1h")[1]
    '1 hour'
    >>> parse_period("169h") is None
    True
    """
    match = _PERIOD_PATTERN.match(value.strip().lower())
    if not match:
        return None
    amount, unit = int(match.group(1)), match.group(2)
    if unit == "h":
        if not 0 < amount <= MAX_TOP_HOURS:
            return None
        return timedelta(hours=amount), "1 hour" if amount == 1 else f"{amount} hours"
    if not 0 < amount <= MAX_TOP_DAYS:
        return None
    return timedelta(days=amount), "1 day" if amount == 1 else f"{amount} days"


def _split_targets(args: str) -> list[str]:
    return [part.strip() for part in re.split(r"[,\s]+", args) if part.strip()]


class CommandHandler:
    """Answers subscriber commands received over the transport."""

    def __init__(
        self,
        db: DatabaseManager,
        transport: MessageTransport,
        subscriptions: SubscriptionIndex,
        broadcaster: DashboardBroadcaster,
        *,
        poll_timeout_seconds: int = 30,
    ) -> None:
        self._db = db
        self._transport = transport
        self._subscriptions = subscriptions
        self._broadcaster = broadcaster
        self._poll_timeout = poll_timeout_seconds

        self._offset: int | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _user(self, chat_id: int) -> UserDTO | None:
        async with self._db.get_async_session() as session:
            return await UserRepository(session).get_by_chat_id(chat_id)

    async def handle(self, message: IncomingMessage) -> str | None:
        """Answer one incoming message.

        Returns:
            The reply sent, or None for non-command messages.
        """
        text = message.text.strip()
        if not text.startswith("/"):
            return None
        command, _, args = text.partition(" ")
        # Group chats address commands as /cmd@botname.
        command = command.split("@", 1)[0].lower()
        args = args.strip()
        logger.info("Command %s from %d", command, message.chat_id)

        if command == "/start":
            reply = await self._start(message)
        elif command == "/help":
            reply = HELP_TEXT
        else:
            handler = {
                "/list": self._list,
                "/mytraders": self._my_traders,
                "/follow": self._follow,
                "/unfollow": self._unfollow,
                "/autofollow": self._autofollow,
                "/top": self._top,
            }.get(command)
            if handler is None:
                reply = UNKNOWN_COMMAND
            else:
                user = await self._user(message.chat_id)
                reply = NOT_REGISTERED if user is None else await handler(user, args)

        await self._transport.send(message.chat_id, reply)
        return reply

    async def _start(self, message: IncomingMessage) -> str:
        user, _ = await self._subscriptions.register_user(
            message.chat_id, username=message.username, first_name=message.first_name
        )
        await self._subscriptions.follow_all(user.id)
        async with self._db.get_async_session() as session:
            trader_count = len(await TraderRepository(session).list_all())
        await self._broadcaster.user_joined(
            {
                "chat_id": user.chat_id,
                "username": user.username,
                "first_name": user.first_name,
                "joined_at": user.joined_at,
                "is_active": user.is_active,
            }
        )
        logger.info("User started bot: chat_id=%d username=%s", user.chat_id, user.username)
        return WELCOME_TEXT.format(count=trader_count)

    async def _list(self, user: UserDTO, args: str) -> str:  # noqa: ARG002
        async with self._db.get_async_session() as session:
            traders = await TraderRepository(session).list_all()
            followed = {t.id for t in await UserTraderRepository(session).traders_for_user(user.id)}
        if not traders:
            return "📭 No traders in the system yet. They'll appear as notifications come in!"
        lines = [format_trader_line(t, following=t.id in followed) for t in traders]
        return format_trader_list(
            f"All Traders ({len(traders)} total)",
            lines,
            "Use /follow 1,2,3 or /follow trader1,trader2 to follow traders.",
        )

    async def _my_traders(self, user: UserDTO, args: str) -> str:  # noqa: ARG002
        traders = await self._subscriptions.traders_for_user(user.id)
        if not traders:
            return (
                "📭 You're not following any traders yet.\n\n"
                "Use /list to see all available traders, then /follow to start following them!"
            )
        lines = [format_trader_line(t, following=True) for t in traders]
        return format_trader_list(
            f"Your Followed Traders ({len(traders)} total)",
            lines,
            "Use /unfollow 1,2,3 or /unfollow trader1,trader2 to unfollow traders.",
        )

    async def _follow(self, user: UserDTO, args: str) -> str:
        if not args:
            return (
                "❌ Please specify traders to follow.\n\nExamples:\n"
                "/follow 1,2,3\n/follow trader1,trader2\n/follow 1,trader2,3\n/follow all"
            )
        if args.lower() == "all":
            async with self._db.get_async_session() as session:
                total = len(await TraderRepository(session).list_all())
            if total == 0:
                return "❌ No traders available to follow yet."
            added = await self._subscriptions.follow_all(user.id)
            if added == 0:
                return f"You're already following all {total} traders."
            return f"Now following all traders ({added} new, {total} total)"

        followed, already, missing = await self._apply(user, _split_targets(args), follow=True)
        parts = []
        if followed:
            parts.append(f"Now following {', '.join(followed)}")
        if already:
            parts.append(f"Already following {', '.join(already)}")
        if missing:
            parts.append(f"Not found: {', '.join(missing)}")
        return "\n".join(parts)

    async def _unfollow(self, user: UserDTO, args: str) -> str:
        if not args:
            return (
                "❌ Please specify traders to unfollow.\n\nExamples:\n"
                "/unfollow 1,2,3\n/unfollow trader1,trader2\n/unfollow 1,trader2,3\n/unfollow all"
            )
        if args.lower() == "all":
            removed = await self._subscriptions.unfollow_all(user.id)
            if removed == 0:
                return "You're not following any traders."
            return f"Unfollowed all traders ({removed} total)"

        unfollowed, not_following, missing = await self._apply(user, _split_targets(args), follow=False)
        parts = []
        if unfollowed:
            parts.append(f"Unfollowed {', '.join(unfollowed)}")
        if not_following:
            parts.append(f"Weren't following {', '.join(not_following)}")
        if missing:
            parts.append(f"Not found: {', '.join(missing)}")
        return "\n".join(parts)

    async def _apply(
        self, user: UserDTO, targets: list[str], *, follow: bool
    ) -> tuple[list[str], list[str], list[str]]:
        """Follow or unfollow each id/handle; returns (changed, unchanged, missing)."""
        changed: list[str] = []
        unchanged: list[str] = []
        missing: list[str] = []
        for target in targets:
            try:
                if target.isdigit():
                    async with self._db.get_async_session() as session:
                        trader = await TraderRepository(session).get(int(target))
                    if trader is None:
                        missing.append(target)
                        continue
                    if follow:
                        ok = await self._subscriptions.follow(user.id, trader.id)
                    else:
                        ok = await self._subscriptions.unfollow(user.id, trader.id)
                elif follow:
                    trader, ok = await self._subscriptions.follow_by_handle(user.id, target)
                else:
                    trader, ok = await self._subscriptions.unfollow_by_handle(user.id, target)
            except TraderNotFoundError:
                missing.append(target)
                continue
            (changed if ok else unchanged).append(trader.handle)
        return changed, unchanged, missing

    async def _autofollow(self, user: UserDTO, args: str) -> str:
        value = args.lower()
        if not value:
            status = "ON" if user.auto_follow_new_traders else "OFF"
            return (
                f"Your auto-follow for new traders is currently: {status}\n\n"
                "Use /autofollow on or /autofollow off to change it."
            )
        if value == "on":
            await self._subscriptions.set_auto_follow(user.id, True)
            return (
                "✅ Auto-follow for new traders is now ON\n\n"
                "You'll automatically follow any new traders added to the system."
            )
        if value == "off":
            await self._subscriptions.set_auto_follow(user.id, False)
            return (
                "❌ Auto-follow for new traders is now OFF\n\n"
                "You won't automatically follow new traders added to the system."
            )
        return "❌ Invalid option. Use /autofollow on or /autofollow off"

    async def _top(self, user: UserDTO, args: str) -> str:  # noqa: ARG002
        if not args:
            return f"❌ Please specify a time period.\n\nExamples:\n{TOP_USAGE}"
        parsed = parse_period(args.split()[0])
        if parsed is None:
            return (
                "❌ Invalid time period. Use format: {number}h or {number}d\n\n"
                f"Examples:\n{TOP_USAGE}\n\nMax: 168h (7 days) or 30d"
            )
        window, label = parsed
        async with self._db.get_async_session() as session:
            activity = await NotificationRepository(session).ticker_activity(since=datetime.now(UTC) - window)
        return format_ticker_activity(activity, label)

    async def poll_once(self) -> int:
        """Fetch one batch of updates and answer them.

        Returns:
            Number of updates received.
        """
        updates = await self._transport.get_updates(self._offset, self._poll_timeout)
        for update in updates:
            self._offset = update.update_id + 1
            if not update.text:
                continue
            try:
                await self.handle(update)
            except Exception as e:
                logger.error("Error handling update %d: %s", update.update_id, e)
        return len(updates)

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Command polling started")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Command polling stopped")

    async def _wait_or_stop(self, seconds: float) -> bool:
        """Sleep unless stopped first; True when stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except TimeoutError:
            return False

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                received = await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error during polling: %s", e)
                if await self._wait_or_stop(ERROR_BACKOFF_SECONDS):
                    break
                continue
            # Transports without long polling return at once.
            if not received and await self._wait_or_stop(IDLE_BACKOFF_SECONDS):
                break
