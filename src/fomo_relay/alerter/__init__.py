"""Alert delivery - formatting, transports, edits and dashboard events."""

from fomo_relay.alerter.broadcaster import DashboardBroadcaster, notification_payload
from fomo_relay.alerter.editor import (
    EditKind,
    EditResult,
    NotificationEditor,
    NotificationNotFoundError,
)
from fomo_relay.alerter.formatter import dexscreener_url, format_notification, linkify_trader
from fomo_relay.alerter.transport import (
    DryRunTransport,
    IncomingMessage,
    MessageTransport,
    TelegramTransport,
    TransportError,
)

__all__ = [
    "DashboardBroadcaster",
    "DryRunTransport",
    "EditKind",
    "EditResult",
    "IncomingMessage",
    "MessageTransport",
    "NotificationEditor",
    "NotificationNotFoundError",
    "TelegramTransport",
    "TransportError",
    "dexscreener_url",
    "format_notification",
    "linkify_trader",
    "notification_payload",
]
