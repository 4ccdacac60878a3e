"""Tiered contract-address resolution.

Resolution order is cache, then the DexScreener aggregator and the
Helius scanner in a configurable order. Stage failures never propagate:
a stage that errors or times out simply found nothing.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import TYPE_CHECKING

from fomo_relay.config import LookupOrder
from fomo_relay.resolver.models import Chain, ResolutionResult, ResolutionSource

if TYPE_CHECKING:
    from fomo_relay.resolver.candidates import CandidateResolver
    from fomo_relay.resolver.chain import HeliusScanner
    from fomo_relay.resolver.dexscreener import DexScreenerClient
    from fomo_relay.resolver.token_cache import TokenCache

logger = logging.getLogger(__name__)


class ResolutionOrchestrator:
    """Resolves a ticker (and optional market cap) to a contract address.

    Example:
        ```python
        orchestrator = ResolutionOrchestrator(cache, dexscreener, candidates, scanner)
        result = await orchestrator.resolve("KLED", 31_200_000)
        if result.resolved:
            print(result.contract_address, result.chain, result.source)
        ```
    """

    def __init__(
        self,
        cache: TokenCache,
        aggregator: DexScreenerClient,
        candidates: CandidateResolver,
        scanner: HeliusScanner,
        *,
        lookup_order: LookupOrder = "auto",
    ) -> None:
        self._cache = cache
        self._aggregator = aggregator
        self._candidates = candidates
        self._scanner = scanner
        self._lookup_order = lookup_order

    @property
    def cache(self) -> TokenCache:
        return self._cache

    def _aggregator_first(self, order: LookupOrder, market_cap: Decimal | None) -> bool:
        if order == "aggregator_first":
            return True
        if order == "scanner_first":
            return False
        return market_cap is not None and market_cap > 0

    async def _from_cache(self, ticker: str) -> tuple[str, Chain] | None:
        try:
            entry = await self._cache.get(ticker)
        except Exception as e:
            logger.warning("Cache lookup for %s failed: %s", ticker, e)
            return None
        if entry is None:
            return None
        return entry.contract_address, Chain.parse(entry.chain) or Chain.SOL

    async def _from_aggregator(self, ticker: str, market_cap: Decimal) -> tuple[str, Chain] | None:
        try:
            pairs = await self._aggregator.search(ticker)
        except Exception as e:
            logger.warning("Aggregator stage for %s failed: %s", ticker, e)
            return None
        best = self._candidates.select_best(pairs, market_cap)
        if best is None or not best.token_address:
            return None
        chain = best.chain
        if chain is None:
            logger.warning("Aggregator matched %s on unsupported chain %s", ticker, best.chain_id)
            return None
        logger.info(
            "Aggregator matched %s -> %s on %s (mc=%s, liquidity=%s)",
            ticker,
            best.token_address,
            chain.value,
            best.market_cap_usd,
            best.liquidity_usd,
        )
        return best.token_address, chain

    async def _from_scanner(self, ticker: str) -> tuple[str, Chain] | None:
        try:
            mint = await self._scanner.find_by_ticker(ticker)
        except Exception as e:
            logger.warning("Scanner stage for %s failed: %s", ticker, e)
            return None
        return (mint, Chain.SOL) if mint else None

    async def _write_through(self, ticker: str, contract_address: str, chain: Chain) -> None:
        if not chain.is_native:
            return
        try:
            await self._cache.put(ticker, contract_address, chain)
        except Exception as e:
            logger.warning("Cache write for %s failed: %s", ticker, e)

    async def resolve(
        self,
        ticker: str,
        market_cap_usd: Decimal | int | None = None,
        *,
        order: LookupOrder | None = None,
        use_cache: bool = True,
    ) -> ResolutionResult:
        """Resolve ``ticker`` to a contract address.

        Args:
            ticker: Ticker exactly as extracted (cache keys are case-sensitive).
            market_cap_usd: Market cap from the alert; the aggregator stage
                only runs when it is positive.
            order: Override of the configured stage order.
            use_cache: Consult the cache before the remote stages.

        Returns:
            The resolution result; ``result.resolved`` is False when every
            stage came up empty.
        """
        started = time.monotonic()
        market_cap = Decimal(market_cap_usd) if market_cap_usd is not None else None
        cache_hits = aggregator_hits = scanner_hits = 0

        def _result(
            found: tuple[str, Chain] | None = None,
            source: ResolutionSource | None = None,
        ) -> ResolutionResult:
            return ResolutionResult(
                contract_address=found[0] if found else None,
                chain=found[1] if found else None,
                source=source if found else None,
                cache_hits=cache_hits,
                aggregator_hits=aggregator_hits,
                scanner_hits=scanner_hits,
                duration_seconds=time.monotonic() - started,
            )

        if use_cache:
            cache_hits += 1
            found = await self._from_cache(ticker)
            if found:
                return _result(found, ResolutionSource.CACHE)

        effective_order = order or self._lookup_order
        stages = ["aggregator", "scanner"]
        if not self._aggregator_first(effective_order, market_cap):
            stages.reverse()

        for stage in stages:
            if stage == "aggregator":
                if market_cap is None or market_cap <= 0:
                    continue
                aggregator_hits += 1
                found = await self._from_aggregator(ticker, market_cap)
                source = ResolutionSource.DEXSCREENER
            else:
                scanner_hits += 1
                found = await self._from_scanner(ticker)
                source = ResolutionSource.HELIUS

            if found:
                await self._write_through(ticker, found[0], found[1])
                return _result(found, source)

        logger.info("No contract address found for %s", ticker)
        return _result()
