"""DexScreener pair search client."""

import logging

import httpx

from fomo_relay.resolver.models import PairCandidate

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dexscreener.com"
DEFAULT_TIMEOUT_SECONDS = 10.0
SEARCH_PATH = "/latest/dex/search"


class DexScreenerClient:
    """Searches DexScreener for trading pairs matching a ticker.

    Errors never escape ``search``: a failed request, a non-2xx status or
    an undecodable body all yield an empty candidate list.

    Example:
        ```python
        client = DexScreenerClient()
        pairs = await client.search("KLED")
        await client.close()
        ```
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API host.
            timeout_seconds: Per-request timeout.
            http_client: Optional pre-built client (tests inject a mock transport).
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Accept": "application/json"},
            timeout=timeout_seconds,
        )

    async def search(self, ticker: str) -> list[PairCandidate]:
        """Return every pair DexScreener associates with ``ticker``."""
        try:
            response = await self._client.get(SEARCH_PATH, params={"q": ticker})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning("DexScreener search for %s failed: %s", ticker, e)
            return []
        except ValueError as e:
            logger.warning("DexScreener search for %s returned invalid JSON: %s", ticker, e)
            return []

        pairs = data.get("pairs") if isinstance(data, dict) else None
        if not pairs:
            logger.debug("DexScreener returned no pairs for %s", ticker)
            return []

        candidates = [PairCandidate.from_dict(p) for p in pairs if isinstance(p, dict)]
        logger.debug("DexScreener returned %d pairs for %s", len(candidates), ticker)
        return candidates

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
