"""Retroactive editing of delivered notifications.

Both the retry queue (system edits) and the admin API (manual edits)
attach a contract address to an already-sent notification through
``NotificationEditor.apply_contract_address``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from fomo_relay.alerter.broadcaster import notification_payload
from fomo_relay.alerter.formatter import format_notification, truncate_address
from fomo_relay.resolver.models import Chain
from fomo_relay.storage.repos import NotificationRepository, SentMessageRepository

if TYPE_CHECKING:
    from fomo_relay.alerter.broadcaster import DashboardBroadcaster
    from fomo_relay.alerter.transport import MessageTransport
    from fomo_relay.resolver.models import ResolutionResult
    from fomo_relay.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class EditKind(str, Enum):
    SYSTEM = "system"
    MANUAL = "manual"


class NotificationNotFoundError(LookupError):
    """Raised when editing a notification that does not exist."""


@dataclass(frozen=True)
class EditResult:
    notification_id: int
    edited: int
    failed: int

    @property
    def total(self) -> int:
        return self.edited + self.failed


class NotificationEditor:
    """Applies a contract address to a notification and all its messages."""

    def __init__(
        self,
        db: DatabaseManager,
        transport: MessageTransport,
        broadcaster: DashboardBroadcaster,
    ) -> None:
        self._db = db
        self._transport = transport
        self._broadcaster = broadcaster

    async def apply_contract_address(
        self,
        notification_id: int,
        contract_address: str,
        chain: Chain | str | None,
        *,
        kind: EditKind = EditKind.SYSTEM,
        resolution: ResolutionResult | None = None,
    ) -> EditResult:
        """Attach ``contract_address`` and edit every delivered copy.

        Args:
            notification_id: Notification to update.
            contract_address: Resolved contract address.
            chain: Chain of the address; Solana when unknown.
            kind: SYSTEM for retry-queue edits, MANUAL for operator edits.
            resolution: Resolution that produced the address, recorded on
                the notification for system edits.

        Returns:
            Counts of successfully edited and failed messages.

        Raises:
            ValueError: If the contract address is empty.
            NotificationNotFoundError: If the notification does not exist.
        """
        contract_address = contract_address.strip()
        if not contract_address:
            raise ValueError("contract_address must not be empty")
        parsed_chain = Chain.parse(chain) or Chain.SOL
        system = kind is EditKind.SYSTEM

        async with self._db.get_async_session() as session:
            notification = await NotificationRepository(session).set_contract_address(
                notification_id,
                contract_address=contract_address,
                chain=parsed_chain.value,
                resolution_source=resolution.source.value if resolution and resolution.source else None,
                cache_hits=resolution.cache_hits if resolution else 0,
                aggregator_hits=resolution.aggregator_hits if resolution else 0,
                scanner_hits=resolution.scanner_hits if resolution else 0,
                lookup_duration_seconds=resolution.duration_seconds if resolution else None,
                resolved_by_retry=system,
            )
            if notification is None:
                raise NotificationNotFoundError(f"Notification {notification_id} not found")
            messages = await SentMessageRepository(session).list_for_notification(notification_id)

        text = format_notification(
            notification.message,
            trader=notification.trader,
            contract_address=contract_address,
            chain=parsed_chain,
        )

        edited_ids: list[int] = []
        failed = 0
        for sent in messages:
            try:
                ok = await self._transport.edit(sent.recipient_id, sent.transport_message_id, text)
            except Exception as e:
                logger.warning(
                    "Editing message %d for %d failed: %s",
                    sent.transport_message_id,
                    sent.recipient_id,
                    e,
                )
                ok = False
            if ok and sent.id is not None:
                edited_ids.append(sent.id)
            else:
                failed += 1

        if edited_ids:
            async with self._db.get_async_session() as session:
                await SentMessageRepository(session).mark_edited(
                    edited_ids, manual=not system, edited_at=datetime.now(UTC)
                )

        logger.info(
            "%s edit of notification %d (%s -> %s): %d/%d messages edited",
            kind.value.capitalize(),
            notification_id,
            notification.ticker,
            truncate_address(contract_address),
            len(edited_ids),
            len(messages),
        )
        await self._broadcaster.notification_updated(notification_payload(notification), edited_count=len(edited_ids))
        return EditResult(notification_id=notification_id, edited=len(edited_ids), failed=failed)
