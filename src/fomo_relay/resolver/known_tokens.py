"""Operator-curated known-token overrides.

Overrides short-circuit automated resolution: an alert whose ticker
matches an override symbol, at or above the override's market-cap floor,
uses the override's contract address directly. The table is small and
read on every alert, so it is held in memory and reloaded lazily after
any admin write.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from fomo_relay.resolver.models import Chain
from fomo_relay.storage.repos import KnownTokenDTO, KnownTokenRepository

if TYPE_CHECKING:
    from fomo_relay.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class KnownTokenError(Exception):
    """Base exception for known-token admin operations."""


class DuplicateKnownTokenError(KnownTokenError):
    """Raised when adding a symbol that already has an override."""


class KnownTokenNotFoundError(KnownTokenError):
    """Raised when updating or deleting a missing override."""


def _normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class KnownTokenCache:
    """In-memory view of the ``known_tokens`` table.

    Reads take a fast unlocked path when the cache is warm. A single
    lock guards the miss-then-populate path and re-checks inside it, so
    concurrent readers trigger at most one reload. Every invalidation
    bumps a generation counter; a reload that started before the latest
    invalidation is discarded instead of stored.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db
        self._lock = asyncio.Lock()
        self._generation = 0
        self._tokens: list[KnownTokenDTO] | None = None
        self._by_symbol: dict[str, KnownTokenDTO] | None = None

    @property
    def is_warm(self) -> bool:
        return self._by_symbol is not None

    async def populate(self) -> bool:
        """Reload every override from storage.

        Returns:
            False when an admin write invalidated the cache during the
            read, in which case the rows read are stale and were dropped.
        """
        generation = self._generation
        async with self._db.get_async_session() as session:
            tokens = await KnownTokenRepository(session).list_all()
        if generation != self._generation:
            logger.debug("Discarding known-token reload overtaken by an admin write")
            return False
        self._tokens = tokens
        self._by_symbol = {_normalize_symbol(t.symbol): t for t in tokens}
        logger.info("Loaded %d known-token overrides", len(tokens))
        return True

    def invalidate(self) -> None:
        """Drop the in-memory view; the next read reloads it."""
        self._generation += 1
        self._tokens = None
        self._by_symbol = None
        logger.debug("Known-token cache invalidated")

    async def _ensure_loaded(self) -> dict[str, KnownTokenDTO]:
        by_symbol = self._by_symbol
        if by_symbol is not None:
            return by_symbol
        async with self._lock:
            by_symbol = self._by_symbol
            while by_symbol is None:
                await self.populate()
                by_symbol = self._by_symbol
            return by_symbol

    async def get_all(self) -> list[KnownTokenDTO]:
        await self._ensure_loaded()
        return list(self._tokens or [])

    async def match(self, ticker: str | None, market_cap_usd: Decimal | int | None) -> KnownTokenDTO | None:
        """Return the override for ``ticker`` if the market-cap floor is met.

        An alert without a market cap counts as zero, so it only matches
        overrides whose floor is zero.
        """
        if not ticker:
            return None
        by_symbol = await self._ensure_loaded()
        token = by_symbol.get(_normalize_symbol(ticker))
        if token is None:
            return None
        market_cap = Decimal(market_cap_usd) if market_cap_usd is not None else Decimal(0)
        if market_cap < token.min_market_cap:
            logger.debug(
                "Known token %s skipped: market cap %s below floor %s",
                token.symbol,
                market_cap,
                token.min_market_cap,
            )
            return None
        return token

    # ------------------------------------------------------------------
    # Admin writes (each invalidates the cache)
    # ------------------------------------------------------------------

    async def add(
        self,
        symbol: str,
        contract_address: str,
        *,
        min_market_cap: Decimal = Decimal("0"),
        chain: Chain | str | None = None,
    ) -> KnownTokenDTO:
        parsed = Chain.parse(chain)
        dto = KnownTokenDTO(
            symbol=_normalize_symbol(symbol),
            contract_address=contract_address.strip(),
            min_market_cap=min_market_cap,
            chain=parsed.value if parsed else None,
        )
        try:
            async with self._db.get_async_session() as session:
                repo = KnownTokenRepository(session)
                if await repo.get_by_symbol(dto.symbol) is not None:
                    raise DuplicateKnownTokenError(f"Known token {dto.symbol} already exists")
                created = await repo.insert(dto)
        except IntegrityError as e:
            raise DuplicateKnownTokenError(f"Known token {dto.symbol} already exists") from e
        finally:
            self.invalidate()
        logger.info("Added known token %s -> %s", created.symbol, created.contract_address)
        return created

    async def update(
        self,
        token_id: int,
        *,
        symbol: str,
        contract_address: str,
        min_market_cap: Decimal = Decimal("0"),
        chain: Chain | str | None = None,
    ) -> KnownTokenDTO:
        parsed = Chain.parse(chain)
        dto = KnownTokenDTO(
            id=token_id,
            symbol=_normalize_symbol(symbol),
            contract_address=contract_address.strip(),
            min_market_cap=min_market_cap,
            chain=parsed.value if parsed else None,
        )
        try:
            async with self._db.get_async_session() as session:
                updated = await KnownTokenRepository(session).update(dto)
                if updated is None:
                    raise KnownTokenNotFoundError(f"Known token {token_id} not found")
        except IntegrityError as e:
            raise DuplicateKnownTokenError(f"Known token {dto.symbol} already exists") from e
        finally:
            self.invalidate()
        logger.info("Updated known token %d (%s)", token_id, updated.symbol)
        return updated

    async def delete(self, token_id: int) -> None:
        try:
            async with self._db.get_async_session() as session:
                if not await KnownTokenRepository(session).delete(token_id):
                    raise KnownTokenNotFoundError(f"Known token {token_id} not found")
        finally:
            self.invalidate()
        logger.info("Deleted known token %d", token_id)
