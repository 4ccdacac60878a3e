"""Solana wallet-transaction scanner backed by the Helius API.

The scanner finds a ticker's mint by looking at what a known aggregator
wallet has traded recently:
- Fetch the wallet's most recent enhanced transactions
- Collect distinct token-transfer mints (excluding the USDC quote mint)
- Look up each mint's on-chain symbol, with Redis caching
- Return the first mint whose symbol matches the ticker

This is best-effort by nature: it only finds tokens the wallet touched
within its recent transaction window.
"""

import logging
from collections.abc import Sequence
from typing import Any

import httpx
from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.helius.xyz"
DEFAULT_AGGREGATOR_WALLET = "AgmLJBMDCqWynYnQiPCuj9ewsNNsBJXyzoUhD9LJzN51"
DEFAULT_STABLECOIN_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
DEFAULT_TRANSACTION_LIMIT = 50
DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_METADATA_CACHE_TTL_SECONDS = 7 * 24 * 3600

# Helius accepts at most 100 mints per token-metadata request.
METADATA_BATCH_SIZE = 100


class HeliusError(Exception):
    """Raised when a Helius request fails."""


def _symbol_from_metadata(item: dict[str, Any]) -> str | None:
    on_chain = item.get("onChainMetadata") or {}
    metadata = on_chain.get("metadata") or {}
    data = metadata.get("data") or {}
    symbol = data.get("symbol")
    if not isinstance(symbol, str):
        return None
    # On-chain symbols are often NUL-padded to a fixed width.
    return symbol.strip().strip("\x00").strip() or None


class HeliusScanner:
    """Resolves tickers to Solana mints via the aggregator wallet's history.

    Example:
        ```python
        scanner = HeliusScanner(api_key="...", redis=Redis.from_url("redis://localhost:6379"))
        mint = await scanner.find_by_ticker("KLED")
        ```
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        aggregator_wallet: str = DEFAULT_AGGREGATOR_WALLET,
        stablecoin_mint: str = DEFAULT_STABLECOIN_MINT,
        transaction_limit: int = DEFAULT_TRANSACTION_LIMIT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        redis: Redis | None = None,
        metadata_cache_ttl_seconds: int = DEFAULT_METADATA_CACHE_TTL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            api_key: Helius API key. Without one the scanner never matches.
            base_url: API host.
            aggregator_wallet: Wallet whose transactions are scanned.
            stablecoin_mint: Quote mint ignored when collecting candidates.
            transaction_limit: How many recent transactions to fetch.
            timeout_seconds: Per-request timeout.
            redis: Optional Redis client for caching mint symbols.
            metadata_cache_ttl_seconds: TTL of cached mint symbols.
            http_client: Optional pre-built client (tests inject a mock transport).
        """
        self._api_key = api_key
        self._wallet = aggregator_wallet
        self._stablecoin_mint = stablecoin_mint
        self._limit = transaction_limit
        self._redis = redis
        self._cache_ttl = metadata_cache_ttl_seconds
        self._cache_prefix = "helius:symbol:"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Accept": "application/json"},
            timeout=timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def _get_cached(self, mint: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(self._cache_prefix + mint)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, mint: str, symbol: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(self._cache_prefix + mint, symbol, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def recent_mints(self) -> list[str]:
        """Distinct transferred mints, most recent transaction first.

        Raises:
            HeliusError: If the transaction history cannot be fetched.
        """
        try:
            response = await self._client.get(
                f"/v0/addresses/{self._wallet}/transactions",
                params={"api-key": self._api_key, "limit": self._limit},
            )
            response.raise_for_status()
            transactions = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise HeliusError(f"Failed to fetch transactions for {self._wallet}: {e}") from e

        mints: list[str] = []
        seen: set[str] = set()
        for tx in transactions if isinstance(transactions, list) else []:
            for transfer in tx.get("tokenTransfers") or []:
                mint = transfer.get("mint")
                if not mint or mint == self._stablecoin_mint or mint in seen:
                    continue
                seen.add(mint)
                mints.append(mint)
        return mints

    async def _fetch_symbols(self, mints: Sequence[str]) -> dict[str, str]:
        symbols: dict[str, str] = {}
        for start in range(0, len(mints), METADATA_BATCH_SIZE):
            batch = list(mints[start : start + METADATA_BATCH_SIZE])
            try:
                response = await self._client.post(
                    "/v0/token-metadata",
                    params={"api-key": self._api_key},
                    json={"mintAccounts": batch},
                )
                response.raise_for_status()
                items = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise HeliusError(f"Failed to fetch token metadata: {e}") from e

            for idx, item in enumerate(items if isinstance(items, list) else []):
                if not isinstance(item, dict):
                    continue
                mint = item.get("account") or (batch[idx] if idx < len(batch) else None)
                symbol = _symbol_from_metadata(item)
                if mint and symbol:
                    symbols[mint] = symbol
        return symbols

    async def symbols_for(self, mints: Sequence[str]) -> dict[str, str]:
        """Map mints to their on-chain symbols; unknown mints are omitted."""
        symbols: dict[str, str] = {}
        missing: list[str] = []
        for mint in mints:
            cached = await self._get_cached(mint)
            if cached:
                symbols[mint] = cached
            else:
                missing.append(mint)

        if missing:
            fetched = await self._fetch_symbols(missing)
            for mint, symbol in fetched.items():
                symbols[mint] = symbol
                await self._set_cached(mint, symbol)
        return symbols

    async def find_by_ticker(self, ticker: str) -> str | None:
        """Return the first recently-traded mint whose symbol matches ``ticker``.

        Failures are logged and reported as no match.
        """
        if not self.enabled:
            logger.debug("Helius API key not configured; skipping scan for %s", ticker)
            return None

        wanted = ticker.strip().upper()
        try:
            mints = await self.recent_mints()
            if not mints:
                return None
            symbols = await self.symbols_for(mints)
        except HeliusError as e:
            logger.warning("Helius scan for %s failed: %s", ticker, e)
            return None

        for mint in mints:
            symbol = symbols.get(mint)
            if symbol and symbol.upper() == wanted:
                logger.info("Helius matched %s to mint %s", ticker, mint)
                return mint
        logger.debug("Helius found no mint for %s among %d candidates", ticker, len(mints))
        return None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
