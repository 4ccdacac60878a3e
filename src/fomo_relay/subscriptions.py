"""Follow graph between subscribers and traders.

All mutations are idempotent: following an already-followed trader or
unfollowing one that is not followed is a no-op that returns False.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fomo_relay.alerter.formatter import format_new_trader_announcement
from fomo_relay.storage.repos import (
    TraderDTO,
    TraderRepository,
    UserDTO,
    UserRepository,
    UserTraderRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from fomo_relay.alerter.transport import MessageTransport
    from fomo_relay.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class SubscriptionError(ValueError):
    """Base exception for malformed subscription requests."""


class UserNotFoundError(SubscriptionError):
    pass


class TraderNotFoundError(SubscriptionError):
    pass


async def _require_user(session: AsyncSession, user_id: int) -> UserDTO:
    user = await UserRepository(session).get(user_id)
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


async def _require_trader(session: AsyncSession, trader_id: int) -> TraderDTO:
    trader = await TraderRepository(session).get(trader_id)
    if trader is None:
        raise TraderNotFoundError(f"Trader {trader_id} not found")
    return trader


async def _require_trader_by_handle(session: AsyncSession, handle: str) -> TraderDTO:
    trader = await TraderRepository(session).get_by_handle(handle.strip().lstrip("@"))
    if trader is None:
        raise TraderNotFoundError(f"Trader {handle!r} not found")
    return trader


class SubscriptionIndex:
    """Queries and mutations over user/trader follow edges."""

    def __init__(self, db: DatabaseManager, transport: MessageTransport) -> None:
        self._db = db
        self._transport = transport

    async def register_user(
        self,
        chat_id: int,
        *,
        username: str | None = None,
        first_name: str | None = None,
    ) -> tuple[UserDTO, bool]:
        """Create or reactivate a subscriber by transport chat id."""
        async with self._db.get_async_session() as session:
            user, created = await UserRepository(session).register(
                chat_id, username=username, first_name=first_name
            )
        if created:
            logger.info("Registered user %d (%s)", chat_id, user.display_name)
        return user, created

    async def follow(self, user_id: int, trader_id: int) -> bool:
        """Follow a trader; True only if the edge is new."""
        async with self._db.get_async_session() as session:
            await _require_user(session, user_id)
            await _require_trader(session, trader_id)
            return await UserTraderRepository(session).add(user_id, trader_id)

    async def unfollow(self, user_id: int, trader_id: int) -> bool:
        """Unfollow a trader; True only if the edge existed."""
        async with self._db.get_async_session() as session:
            await _require_user(session, user_id)
            await _require_trader(session, trader_id)
            return await UserTraderRepository(session).remove(user_id, trader_id)

    async def follow_by_handle(self, user_id: int, handle: str) -> tuple[TraderDTO, bool]:
        async with self._db.get_async_session() as session:
            await _require_user(session, user_id)
            trader = await _require_trader_by_handle(session, handle)
            return trader, await UserTraderRepository(session).add(user_id, trader.id)

    async def unfollow_by_handle(self, user_id: int, handle: str) -> tuple[TraderDTO, bool]:
        async with self._db.get_async_session() as session:
            await _require_user(session, user_id)
            trader = await _require_trader_by_handle(session, handle)
            return trader, await UserTraderRepository(session).remove(user_id, trader.id)

    async def is_following(self, user_id: int, trader_id: int) -> bool:
        async with self._db.get_async_session() as session:
            return await UserTraderRepository(session).exists(user_id, trader_id)

    async def followers_of(self, trader_id: int) -> set[int]:
        """User ids following ``trader_id``, active or not."""
        async with self._db.get_async_session() as session:
            return await UserTraderRepository(session).follower_ids(trader_id)

    async def follow_all(self, user_id: int) -> int:
        """Follow every trader and turn auto-follow on.

        Returns:
            Number of newly created follow edges.
        """
        async with self._db.get_async_session() as session:
            await _require_user(session, user_id)
            await UserRepository(session).set_auto_follow(user_id, True)
            return await UserTraderRepository(session).add_all_for_user(user_id)

    async def unfollow_all(self, user_id: int) -> int:
        """Drop every follow edge and turn auto-follow off.

        Returns:
            Number of removed follow edges.
        """
        async with self._db.get_async_session() as session:
            await _require_user(session, user_id)
            await UserRepository(session).set_auto_follow(user_id, False)
            return await UserTraderRepository(session).remove_all_for_user(user_id)

    async def set_auto_follow(self, user_id: int, enabled: bool) -> None:
        async with self._db.get_async_session() as session:
            await _require_user(session, user_id)
            await UserRepository(session).set_auto_follow(user_id, enabled)

    async def traders_for_user(self, user_id: int) -> list[TraderDTO]:
        async with self._db.get_async_session() as session:
            return await UserTraderRepository(session).traders_for_user(user_id)

    async def recipients_for(self, trader_id: int | None) -> list[UserDTO]:
        """Active followers of a trader, or every active user without one."""
        async with self._db.get_async_session() as session:
            if trader_id is None:
                return await UserRepository(session).list_active()
            return await UserTraderRepository(session).active_followers(trader_id)

    async def announce_new_trader(self, trader: TraderDTO) -> int:
        """Tell every active user about a newly seen trader.

        Users with auto-follow on are subscribed first; the rest are only
        informed. A failed send to one user does not affect the others.

        Returns:
            Number of users auto-subscribed.
        """
        async with self._db.get_async_session() as session:
            users = await UserRepository(session).list_active()
            edges = UserTraderRepository(session)
            for user in users:
                if user.auto_follow_new_traders:
                    await edges.add(user.id, trader.id)

        auto_followed = 0
        for user in users:
            if user.auto_follow_new_traders:
                auto_followed += 1
            text = format_new_trader_announcement(trader, auto_followed=user.auto_follow_new_traders)
            try:
                await self._transport.send(user.chat_id, text)
            except Exception as e:
                logger.warning("New-trader announcement to %d failed: %s", user.chat_id, e)

        logger.info(
            "Announced new trader %s to %d users (%d auto-followed)",
            trader.handle,
            len(users),
            auto_followed,
        )
        return auto_followed
