"""Alert ingestion, resolution and fan-out.

``NotificationDispatcher.dispatch`` turns one raw alert into delivered
messages: extract fields, record the trader, resolve a contract address,
pick recipients, send, persist, and queue a retry when the address is
still unknown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from fomo_relay.alerter.broadcaster import notification_payload
from fomo_relay.alerter.formatter import format_notification
from fomo_relay.ingestor.extractor import extract_alert
from fomo_relay.resolver.models import Chain, ResolutionResult, ResolutionSource
from fomo_relay.storage.repos import (
    NotificationDTO,
    NotificationRepository,
    SentMessageDTO,
    SentMessageRepository,
    TraderRepository,
    UserRepository,
)

if TYPE_CHECKING:
    from fomo_relay.alerter.broadcaster import DashboardBroadcaster
    from fomo_relay.alerter.transport import MessageTransport
    from fomo_relay.resolver.known_tokens import KnownTokenCache
    from fomo_relay.resolver.orchestrator import ResolutionOrchestrator
    from fomo_relay.retry_queue import RetryQueue
    from fomo_relay.storage.database import DatabaseManager
    from fomo_relay.storage.repos import TraderDTO
    from fomo_relay.subscriptions import SubscriptionIndex

logger = logging.getLogger(__name__)


class InvalidAlertError(ValueError):
    """Raised for empty or whitespace-only alert text."""


class DispatchStatus(str, Enum):
    SENT = "sent"
    NO_RECIPIENTS = "no_recipients"


@dataclass(frozen=True)
class DispatchResult:
    """What one dispatch resolved and delivered."""

    status: DispatchStatus
    ticker: str | None = None
    trader: str | None = None
    market_cap_usd: int | None = None
    contract_address: str | None = None
    chain: Chain | None = None
    source: ResolutionSource | None = None
    notification_id: int | None = None
    recipients: int = 0
    sent: int = 0
    failed: int = 0
    retry_enqueued: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Caller-facing view; missing values render as empty strings."""
        return {
            "status": self.status.value,
            "ticker": self.ticker or "",
            "trader": self.trader or "",
            "contract_address": self.contract_address or "",
            "chain": self.chain.value if self.chain else "",
            "source": self.source.value if self.source else "",
            "notification_id": self.notification_id,
            "recipients": self.recipients,
            "sent": self.sent,
            "failed": self.failed,
            "retry_enqueued": self.retry_enqueued,
        }


class NotificationDispatcher:
    """Dispatches raw alerts to subscribers."""

    def __init__(
        self,
        db: DatabaseManager,
        transport: MessageTransport,
        subscriptions: SubscriptionIndex,
        known_tokens: KnownTokenCache,
        orchestrator: ResolutionOrchestrator,
        retry_queue: RetryQueue,
        broadcaster: DashboardBroadcaster,
    ) -> None:
        self._db = db
        self._transport = transport
        self._subscriptions = subscriptions
        self._known_tokens = known_tokens
        self._orchestrator = orchestrator
        self._retry_queue = retry_queue
        self._broadcaster = broadcaster

    async def _upsert_trader(self, handle: str) -> TraderDTO:
        async with self._db.get_async_session() as session:
            trader, created = await TraderRepository(session).upsert(handle)
        if created:
            logger.info("New trader %s (id=%d)", trader.handle, trader.id)
            await self._subscriptions.announce_new_trader(trader)
        return trader

    async def _resolve(self, ticker: str, market_cap: int | None) -> ResolutionResult:
        override = await self._known_tokens.match(ticker, market_cap)
        if override is not None:
            logger.info("Known token override for %s -> %s", ticker, override.contract_address)
            return ResolutionResult(
                contract_address=override.contract_address,
                chain=Chain.parse(override.chain) or Chain.SOL,
                source=ResolutionSource.KNOWN_TOKEN,
            )
        return await self._orchestrator.resolve(ticker, market_cap)

    async def dispatch(self, raw_text: str) -> DispatchResult:
        """Process one alert end to end.

        Raises:
            InvalidAlertError: If the alert text is empty.
        """
        if raw_text is None or not raw_text.strip():
            raise InvalidAlertError("Alert text must not be empty")
        message = raw_text.strip()

        alert = extract_alert(message)
        logger.info(
            "Alert: ticker=%s trader=%s mc=%s thesis=%s",
            alert.ticker,
            alert.trader,
            alert.market_cap_usd,
            alert.is_thesis,
        )

        trader = await self._upsert_trader(alert.trader) if alert.trader else None

        resolution = ResolutionResult()
        if alert.ticker:
            resolution = await self._resolve(alert.ticker, alert.market_cap_usd)

        recipients = await self._subscriptions.recipients_for(trader.id if trader else None)
        base = DispatchResult(
            status=DispatchStatus.NO_RECIPIENTS,
            ticker=alert.ticker,
            trader=alert.trader,
            market_cap_usd=alert.market_cap_usd,
            contract_address=resolution.contract_address,
            chain=resolution.chain,
            source=resolution.source,
        )
        if not recipients:
            logger.info("No recipients for alert from %s; nothing sent", alert.trader or "unknown trader")
            return base

        async with self._db.get_async_session() as session:
            notification = await NotificationRepository(session).insert(
                NotificationDTO(
                    message=message,
                    ticker=alert.ticker,
                    trader=alert.trader,
                    contract_address=resolution.contract_address,
                    chain=resolution.chain.value if resolution.chain else None,
                    resolution_source=resolution.source.value if resolution.source else None,
                    cache_hit_count=resolution.cache_hits,
                    aggregator_hit_count=resolution.aggregator_hits,
                    scanner_hit_count=resolution.scanner_hits,
                    lookup_duration_seconds=resolution.duration_seconds if alert.ticker else None,
                    market_cap_at_send=Decimal(alert.market_cap_usd) if alert.market_cap_usd is not None else None,
                )
            )
        if notification.id is None:
            raise RuntimeError("Notification insert did not return an id")

        text = format_notification(
            message,
            trader=alert.trader,
            contract_address=resolution.contract_address,
            chain=resolution.chain,
        )
        delivered: list[SentMessageDTO] = []
        failed = 0
        for user in recipients:
            try:
                message_id = await self._transport.send(user.chat_id, text)
            except Exception as e:
                logger.warning("Send of notification %d to %d failed: %s", notification.id, user.chat_id, e)
                failed += 1
                continue
            delivered.append(
                SentMessageDTO(
                    notification_id=notification.id,
                    recipient_id=user.chat_id,
                    transport_message_id=message_id,
                )
            )

        async with self._db.get_async_session() as session:
            await SentMessageRepository(session).insert_many(delivered)
            total_users = await UserRepository(session).count_active()

        retry_enqueued = False
        if alert.ticker and not resolution.resolved:
            await self._retry_queue.enqueue(notification.id, alert.ticker, alert.trader, alert.market_cap_usd)
            retry_enqueued = True

        logger.info(
            "Notification %d sent to %d/%d recipients (ca=%s)",
            notification.id,
            len(delivered),
            len(recipients),
            resolution.contract_address or "-",
        )
        await self._broadcaster.notification_created(
            notification_payload(notification),
            recipient_count=len(delivered),
            total_users=total_users,
        )
        return DispatchResult(
            status=DispatchStatus.SENT,
            ticker=alert.ticker,
            trader=alert.trader,
            market_cap_usd=alert.market_cap_usd,
            contract_address=resolution.contract_address,
            chain=resolution.chain,
            source=resolution.source,
            notification_id=notification.id,
            recipients=len(recipients),
            sent=len(delivered),
            failed=failed,
            retry_enqueued=retry_enqueued,
        )
