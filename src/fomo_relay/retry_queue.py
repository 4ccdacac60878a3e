"""Second-chance resolution for notifications sent without a contract address.

Each unresolved notification gets a small retry budget with a fixed delay.
A single background loop polls for due entries. The entry list is guarded
by one lock that is only held to add, snapshot or remove entries, never
across a resolution attempt.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from fomo_relay.alerter.editor import EditKind

if TYPE_CHECKING:
    from fomo_relay.alerter.editor import NotificationEditor
    from fomo_relay.resolver.orchestrator import ResolutionOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 1
DEFAULT_DELAY_SECONDS = 5.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RetryEntry:
    """One notification awaiting a retry."""

    notification_id: int
    ticker: str | None
    trader: str | None
    market_cap_usd: Decimal | None
    enqueued_at: datetime
    next_retry_at: datetime
    retry_count: int = 0


@dataclass
class RetryStats:
    enqueued: int = 0
    attempts: int = 0
    resolved: int = 0
    exhausted: int = 0
    errors: int = 0
    last_error: str | None = field(default=None)


class RetryQueue:
    """In-memory retry queue with a single consumer loop.

    Example:
        ```python
        queue = RetryQueue(orchestrator, editor)
        await queue.start()
        await queue.enqueue(notification_id, "KLED", "frankdegods", 31_200_000)
        ...
        await queue.stop()
        ```
    """

    def __init__(
        self,
        orchestrator: ResolutionOrchestrator,
        editor: NotificationEditor,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._orchestrator = orchestrator
        self._editor = editor
        self._max_retries = max_retries
        self._delay = timedelta(seconds=delay_seconds)
        self._poll_interval = poll_interval_seconds
        self._clock = clock

        self._entries: list[RetryEntry] = []
        self._lock = asyncio.Lock()
        self._stats = RetryStats()

        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def stats(self) -> RetryStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def enqueue(
        self,
        notification_id: int,
        ticker: str | None,
        trader: str | None,
        market_cap_usd: Decimal | int | None,
    ) -> RetryEntry:
        now = self._clock()
        entry = RetryEntry(
            notification_id=notification_id,
            ticker=ticker,
            trader=trader,
            market_cap_usd=Decimal(market_cap_usd) if market_cap_usd is not None else None,
            enqueued_at=now,
            next_retry_at=now + self._delay,
        )
        async with self._lock:
            self._entries.append(entry)
        self._stats.enqueued += 1
        logger.info(
            "Queued retry for notification %d (ticker=%s, due %s)",
            notification_id,
            ticker,
            entry.next_retry_at.isoformat(),
        )
        return entry

    async def pending(self) -> list[RetryEntry]:
        """Snapshot of the queued entries."""
        async with self._lock:
            return list(self._entries)

    async def process_due(self, now: datetime | None = None) -> int:
        """Attempt every entry whose retry time has passed.

        Returns:
            Number of entries attempted.
        """
        now = now or self._clock()
        async with self._lock:
            due = [e for e in self._entries if e.next_retry_at <= now]
        for entry in due:
            await self._attempt(entry)
        return len(due)

    async def _attempt(self, entry: RetryEntry) -> None:
        self._stats.attempts += 1
        try:
            resolved = await self._try_resolve(entry)
        except Exception as e:
            logger.error("Retry for notification %d failed: %s", entry.notification_id, e)
            self._stats.errors += 1
            self._stats.last_error = str(e)
            resolved = False

        async with self._lock:
            with contextlib.suppress(ValueError):
                self._entries.remove(entry)
            if resolved:
                self._stats.resolved += 1
                return
            retry_count = entry.retry_count + 1
            if retry_count >= self._max_retries:
                self._stats.exhausted += 1
                logger.info(
                    "Giving up on notification %d (%s) after %d retries",
                    entry.notification_id,
                    entry.ticker,
                    retry_count,
                )
                return
            self._entries.append(
                replace(entry, retry_count=retry_count, next_retry_at=self._clock() + self._delay)
            )

    async def _try_resolve(self, entry: RetryEntry) -> bool:
        if not entry.ticker:
            return False
        result = await self._orchestrator.resolve(
            entry.ticker,
            entry.market_cap_usd,
            order="aggregator_first",
        )
        if not result.resolved or result.contract_address is None:
            logger.info("Retry for notification %d found nothing", entry.notification_id)
            return False

        edit = await self._editor.apply_contract_address(
            entry.notification_id,
            result.contract_address,
            result.chain,
            kind=EditKind.SYSTEM,
            resolution=result,
        )
        logger.info(
            "Retry resolved notification %d via %s (%d/%d messages edited)",
            entry.notification_id,
            result.source.value if result.source else "unknown",
            edit.edited,
            edit.total,
        )
        return True

    async def start(self) -> None:
        """Start the background loop; a second call is a no-op."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Retry queue started")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Retry queue stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                    break
                except TimeoutError:
                    pass

                await self.process_due()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Retry loop error: %s", e)
                self._stats.errors += 1
                self._stats.last_error = str(e)
