"""Tests for the Helius wallet scanner."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from fomo_relay.resolver.chain import DEFAULT_STABLECOIN_MINT, HeliusScanner

WALLET = "WALLET"


def metadata(mint: str, symbol: str) -> dict:
    return {"account": mint, "onChainMetadata": {"metadata": {"data": {"symbol": symbol}}}}


TRANSACTIONS = [
    {"tokenTransfers": [{"mint": DEFAULT_STABLECOIN_MINT}, {"mint": "MINT_WIF"}]},
    {"tokenTransfers": [{"mint": "MINT_KLED"}, {"mint": "MINT_WIF"}]},
    {"tokenTransfers": None},
]


class FakeHelius:
    """Routes the two Helius endpoints and records metadata requests."""

    def __init__(self, transactions=TRANSACTIONS, symbols=None, status: int = 200) -> None:
        self.transactions = transactions
        self.symbols = symbols or {"MINT_WIF": "WIF", "MINT_KLED": "KLED\x00\x00\x00"}
        self.status = status
        self.metadata_requests: list[list[str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.status != 200:
            return httpx.Response(self.status)
        if request.url.path == f"/v0/addresses/{WALLET}/transactions":
            return httpx.Response(200, json=self.transactions)
        if request.url.path == "/v0/token-metadata":
            mints = json.loads(request.content)["mintAccounts"]
            self.metadata_requests.append(mints)
            return httpx.Response(200, json=[metadata(m, self.symbols[m]) for m in mints if m in self.symbols])
        return httpx.Response(404)


def make_scanner(fake: FakeHelius, *, api_key: str | None = "key", redis=None) -> HeliusScanner:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://helius.test")
    return HeliusScanner(api_key=api_key, aggregator_wallet=WALLET, redis=redis, http_client=http_client)


class TestRecentMints:
    @pytest.mark.asyncio
    async def test_distinct_and_excludes_stablecoin(self) -> None:
        scanner = make_scanner(FakeHelius())

        assert await scanner.recent_mints() == ["MINT_WIF", "MINT_KLED"]


class TestFindByTicker:
    @pytest.mark.asyncio
    async def test_matches_nul_padded_symbol(self) -> None:
        fake = FakeHelius()
        scanner = make_scanner(fake)

        assert await scanner.find_by_ticker("kled") == "MINT_KLED"
        assert fake.metadata_requests == [["MINT_WIF", "MINT_KLED"]]

    @pytest.mark.asyncio
    async def test_no_match(self) -> None:
        assert await make_scanner(FakeHelius()).find_by_ticker("BONK") is None

    @pytest.mark.asyncio
    async def test_disabled_without_api_key(self) -> None:
        fake = FakeHelius()
        scanner = make_scanner(fake, api_key=None)

        assert scanner.enabled is False
        assert await scanner.find_by_ticker("KLED") is None
        assert fake.metadata_requests == []

    @pytest.mark.asyncio
    async def test_http_failure_is_no_match(self) -> None:
        assert await make_scanner(FakeHelius(status=503)).find_by_ticker("KLED") is None

    @pytest.mark.asyncio
    async def test_empty_history(self) -> None:
        fake = FakeHelius(transactions=[])

        assert await make_scanner(fake).find_by_ticker("KLED") is None
        assert fake.metadata_requests == []


class TestSymbolCache:
    @pytest.mark.asyncio
    async def test_cached_symbols_skip_metadata_call(self) -> None:
        redis = AsyncMock()
        redis.get = AsyncMock(side_effect=lambda key: {"helius:symbol:MINT_WIF": b"WIF"}.get(key))
        redis.set = AsyncMock()
        fake = FakeHelius()
        scanner = make_scanner(fake, redis=redis)

        symbols = await scanner.symbols_for(["MINT_WIF", "MINT_KLED"])

        assert symbols == {"MINT_WIF": "WIF", "MINT_KLED": "KLED"}
        assert fake.metadata_requests == [["MINT_KLED"]]
        redis.set.assert_awaited_once()
        key, value = redis.set.await_args.args
        assert (key, value) == ("helius:symbol:MINT_KLED", "KLED")

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_api(self) -> None:
        redis = AsyncMock()
        redis.get = AsyncMock(side_effect=ConnectionError("down"))
        redis.set = AsyncMock(side_effect=ConnectionError("down"))
        scanner = make_scanner(FakeHelius(), redis=redis)

        assert await scanner.find_by_ticker("WIF") == "MINT_WIF"
