"""Persistent ticker to contract address cache with a sliding TTL.

Entries live in the ``cached_token_addresses`` table. A hit pushes the
entry's expiry forward by the full TTL; a background sweep deletes rows
whose expiry has passed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from fomo_relay.resolver.models import Chain
from fomo_relay.storage.repos import CachedTokenAddressDTO, CachedTokenAddressRepository

if TYPE_CHECKING:
    from fomo_relay.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=4)
DEFAULT_SWEEP_INTERVAL_SECONDS = 600.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenCache:
    """Ticker resolution cache.

    Lookups are case-sensitive on the ticker exactly as extracted.
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        ttl: timedelta = DEFAULT_TTL,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._ttl = ttl
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock

        self._sweep_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    async def get(self, ticker: str) -> CachedTokenAddressDTO | None:
        """Return the unexpired entry for ``ticker`` and slide its expiry."""
        now = self._clock()
        async with self._db.get_async_session() as session:
            repo = CachedTokenAddressRepository(session)
            entry = await repo.get_unexpired(ticker, now=now)
            if entry is None:
                return None
            expires_at = now + self._ttl
            await repo.touch(ticker, now=now, expires_at=expires_at)

        logger.info("Cache hit for %s -> %s", ticker, entry.contract_address)
        entry.last_accessed_at = now
        if entry.expires_at is None or entry.expires_at < expires_at:
            entry.expires_at = expires_at
        return entry

    async def put(self, ticker: str, contract_address: str, chain: Chain | str | None = Chain.SOL) -> None:
        """Insert or replace the cached resolution for ``ticker``."""
        now = self._clock()
        parsed = Chain.parse(chain)
        async with self._db.get_async_session() as session:
            await CachedTokenAddressRepository(session).upsert(
                ticker=ticker,
                contract_address=contract_address,
                chain=parsed.value if parsed else None,
                now=now,
                expires_at=now + self._ttl,
            )
        logger.info("Cached %s -> %s (%s)", ticker, contract_address, parsed.value if parsed else "unknown chain")

    async def sweep_expired(self) -> int:
        """Delete expired entries; returns how many were removed."""
        async with self._db.get_async_session() as session:
            removed = await CachedTokenAddressRepository(session).delete_expired(now=self._clock())
        if removed:
            logger.info("Removed %d expired cache entries", removed)
        return removed

    async def start(self) -> None:
        """Start the periodic sweep loop."""
        if self._sweep_task is not None:
            return
        self._stop_event.clear()
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Token cache sweep started (interval=%ss)", self._sweep_interval)

    async def stop(self) -> None:
        """Stop the periodic sweep loop."""
        self._stop_event.set()
        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
            logger.info("Token cache sweep stopped")

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._sweep_interval)
                    break
                except TimeoutError:
                    pass

                await self.sweep_expired()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Cache sweep error: %s", e)
