"""Messaging transports.

``TelegramTransport`` delivers through the Bot API using
python-telegram-bot. ``DryRunTransport`` only logs, for ``DRY_RUN``
deployments and local runs without a bot token.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from telegram import Bot, LinkPreviewOptions, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError

logger = logging.getLogger(__name__)

_NO_PREVIEW = LinkPreviewOptions(is_disabled=True)


class TransportError(Exception):
    """Raised when a message cannot be delivered or edited."""


@dataclass(frozen=True)
class IncomingMessage:
    """A text message received from a subscriber."""

    update_id: int
    chat_id: int
    text: str
    username: str | None = None
    first_name: str | None = None


class MessageTransport(Protocol):
    """Delivery channel used by the dispatcher, editor and bot commands."""

    async def send(self, recipient_id: int, text: str) -> int:
        """Send ``text`` and return the transport's message id."""
        ...

    async def edit(self, recipient_id: int, message_id: int, text: str) -> bool:
        """Replace the text of a previously sent message."""
        ...

    async def get_updates(self, offset: int | None, timeout: int) -> Sequence[IncomingMessage]:
        """Long-poll for incoming subscriber messages."""
        ...


class TelegramTransport:
    """Telegram Bot API transport.

    Example:
        ```python
        transport = TelegramTransport(token)
        await transport.initialize()
        message_id = await transport.send(chat_id, "hello")
        await transport.shutdown()
        ```
    """

    def __init__(self, token: str, *, bot: Bot | None = None) -> None:
        self._bot = bot or Bot(token=token)
        self._initialized = False

    async def initialize(self) -> None:
        if not self._initialized:
            await self._bot.initialize()
            self._initialized = True
            logger.info("Telegram bot initialized as @%s", self._bot.username)

    async def shutdown(self) -> None:
        if self._initialized:
            await self._bot.shutdown()
            self._initialized = False

    async def send(self, recipient_id: int, text: str) -> int:
        try:
            message = await self._bot.send_message(
                chat_id=recipient_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
                link_preview_options=_NO_PREVIEW,
            )
        except TelegramError as e:
            raise TransportError(f"Send to {recipient_id} failed: {e}") from e
        return message.message_id

    async def edit(self, recipient_id: int, message_id: int, text: str) -> bool:
        try:
            await self._bot.edit_message_text(
                chat_id=recipient_id,
                message_id=message_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
                link_preview_options=_NO_PREVIEW,
            )
        except TelegramError as e:
            logger.warning("Edit of message %d for %d failed: %s", message_id, recipient_id, e)
            return False
        return True

    async def get_updates(self, offset: int | None, timeout: int) -> list[IncomingMessage]:
        try:
            updates: Sequence[Update] = await self._bot.get_updates(
                offset=offset,
                timeout=timeout,
                allowed_updates=["message"],
            )
        except TelegramError as e:
            raise TransportError(f"getUpdates failed: {e}") from e

        messages = []
        for update in updates:
            msg = update.message
            if msg is None or not msg.text:
                # Still acknowledge it so it is not redelivered.
                messages.append(IncomingMessage(update_id=update.update_id, chat_id=0, text=""))
                continue
            user = msg.from_user
            messages.append(
                IncomingMessage(
                    update_id=update.update_id,
                    chat_id=msg.chat.id,
                    text=msg.text,
                    username=user.username if user else None,
                    first_name=user.first_name if user else None,
                )
            )
        return messages


class DryRunTransport:
    """Logs messages instead of delivering them."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    async def send(self, recipient_id: int, text: str) -> int:
        message_id = next(self._ids)
        logger.info("[dry-run] send to %d (#%d): %s", recipient_id, message_id, text)
        return message_id

    async def edit(self, recipient_id: int, message_id: int, text: str) -> bool:
        logger.info("[dry-run] edit %d for %d: %s", message_id, recipient_id, text)
        return True

    async def get_updates(self, offset: int | None, timeout: int) -> list[IncomingMessage]:  # noqa: ARG002
        return []
