"""Dashboard event broadcasting over Redis pub/sub.

Events are fire-and-forget: there is no acknowledgement and no replay,
so a dashboard only sees events published after it subscribed.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from redis.asyncio import Redis

from fomo_relay.storage.repos import NotificationDTO

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "fomo:dashboard"

EVENT_NOTIFICATION_CREATED = "notification_created"
EVENT_NOTIFICATION_UPDATED = "notification_updated"
EVENT_USER_JOINED = "user_joined"


def _json_default(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def notification_payload(notification: NotificationDTO) -> dict[str, Any]:
    """Serialize a notification for dashboard events."""
    return {
        "id": notification.id,
        "message": notification.message,
        "ticker": notification.ticker,
        "trader": notification.trader,
        "has_contract_address": notification.has_contract_address,
        "contract_address": notification.contract_address,
        "chain": notification.chain,
        "sent_at": notification.sent_at,
        "resolution_source": notification.resolution_source,
        "was_resolved_by_retry": notification.was_resolved_by_retry,
        "lookup_duration_seconds": notification.lookup_duration_seconds,
    }


class DashboardBroadcaster:
    """Publishes dashboard events; a no-op without Redis."""

    def __init__(self, redis: Redis | None, *, channel: str = DEFAULT_CHANNEL) -> None:
        self._redis = redis
        self._channel = channel

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Publish one event; failures are logged, never raised."""
        if self._redis is None:
            return
        message = json.dumps(
            {"event": event, "data": payload, "timestamp": datetime.now(UTC).isoformat()},
            default=_json_default,
        )
        try:
            await self._redis.publish(self._channel, message)
        except Exception as e:
            logger.warning("Dashboard publish of %s failed: %s", event, e)

    async def notification_created(self, notification: dict[str, Any], *, recipient_count: int, total_users: int) -> None:
        await self.publish(
            EVENT_NOTIFICATION_CREATED,
            {**notification, "recipient_count": recipient_count, "total_users": total_users},
        )

    async def notification_updated(self, notification: dict[str, Any], *, edited_count: int) -> None:
        await self.publish(EVENT_NOTIFICATION_UPDATED, {**notification, "edited_count": edited_count})

    async def user_joined(self, user: dict[str, Any]) -> None:
        await self.publish(EVENT_USER_JOINED, user)
