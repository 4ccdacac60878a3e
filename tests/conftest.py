"""Pytest configuration and fixtures."""

from __future__ import annotations

import itertools
from unittest.mock import AsyncMock

import pytest

from fomo_relay.alerter.broadcaster import DashboardBroadcaster
from fomo_relay.alerter.transport import IncomingMessage, TransportError
from fomo_relay.storage.database import DatabaseManager

KLED_ALERT = "KLED at $31.2m MC 🟢 @frankdegods bought $9,955.55"
KLED_MINT = "1zJX5gRnjLgmTpq5sVwkq69mNDQkCemqoasyjaPW6jm"


class RecordingTransport:
    """In-memory transport that records sends and edits."""

    def __init__(self, *, failing_recipients: set[int] | None = None) -> None:
        self._ids = itertools.count(100)
        self.failing_recipients = failing_recipients or set()
        self.sent: list[tuple[int, int, str]] = []
        self.edits: list[tuple[int, int, str]] = []
        self.updates: list[list[IncomingMessage]] = []

    async def send(self, recipient_id: int, text: str) -> int:
        if recipient_id in self.failing_recipients:
            raise TransportError(f"Send to {recipient_id} failed: blocked")
        message_id = next(self._ids)
        self.sent.append((recipient_id, message_id, text))
        return message_id

    async def edit(self, recipient_id: int, message_id: int, text: str) -> bool:
        if recipient_id in self.failing_recipients:
            return False
        self.edits.append((recipient_id, message_id, text))
        return True

    async def get_updates(self, offset: int | None, timeout: int) -> list[IncomingMessage]:
        return self.updates.pop(0) if self.updates else []

    def texts_for(self, recipient_id: int) -> list[str]:
        return [text for rid, _, text in self.sent if rid == recipient_id]


@pytest.fixture
async def db(tmp_path) -> DatabaseManager:
    """File-backed SQLite database with the full schema."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def broadcaster() -> AsyncMock:
    return AsyncMock(spec=DashboardBroadcaster)


@pytest.fixture
def kled_alert() -> str:
    return KLED_ALERT
