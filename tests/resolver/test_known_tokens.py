"""Tests for the known-token override cache."""

import asyncio
from decimal import Decimal

import pytest

from fomo_relay.resolver.known_tokens import (
    DuplicateKnownTokenError,
    KnownTokenCache,
    KnownTokenNotFoundError,
)
from fomo_relay.storage.database import DatabaseManager
from fomo_relay.storage.repos import KnownTokenRepository


@pytest.fixture
async def known_tokens(db: DatabaseManager) -> KnownTokenCache:
    cache = KnownTokenCache(db)
    await cache.add("kled", " MINT ", min_market_cap=Decimal("1000000"), chain="solana")
    return cache


class TestMatch:
    @pytest.mark.asyncio
    async def test_match_above_floor(self, known_tokens: KnownTokenCache) -> None:
        token = await known_tokens.match("KLED", 31_200_000)

        assert token is not None
        assert token.symbol == "KLED"
        assert token.contract_address == "MINT"
        assert token.chain == "SOL"

    @pytest.mark.asyncio
    async def test_match_ignores_ticker_case(self, known_tokens: KnownTokenCache) -> None:
        assert await known_tokens.match("Kled", 1_000_000) is not None

    @pytest.mark.asyncio
    async def test_below_floor(self, known_tokens: KnownTokenCache) -> None:
        assert await known_tokens.match("KLED", 999_999) is None

    @pytest.mark.asyncio
    async def test_missing_market_cap_counts_as_zero(self, known_tokens: KnownTokenCache) -> None:
        await known_tokens.add("WIF", "WIFMINT")

        assert await known_tokens.match("KLED", None) is None
        assert await known_tokens.match("WIF", None) is not None

    @pytest.mark.asyncio
    async def test_no_ticker(self, known_tokens: KnownTokenCache) -> None:
        assert await known_tokens.match(None, 31_200_000) is None
        assert await known_tokens.match("BONK", 31_200_000) is None


class TestAdminWrites:
    @pytest.mark.asyncio
    async def test_duplicate_symbol(self, known_tokens: KnownTokenCache) -> None:
        with pytest.raises(DuplicateKnownTokenError):
            await known_tokens.add("KLED", "OTHER")

    @pytest.mark.asyncio
    async def test_writes_invalidate_cache(self, known_tokens: KnownTokenCache) -> None:
        (token,) = await known_tokens.get_all()
        assert known_tokens.is_warm

        await known_tokens.update(token.id, symbol="KLED", contract_address="MINT2")

        assert not known_tokens.is_warm
        updated = await known_tokens.match("KLED", 0)
        assert updated is not None
        assert updated.contract_address == "MINT2"
        assert updated.chain is None

        await known_tokens.delete(token.id)

        assert await known_tokens.get_all() == []

    @pytest.mark.asyncio
    async def test_write_during_reload_is_not_lost(self, known_tokens: KnownTokenCache, monkeypatch) -> None:
        list_all = KnownTokenRepository.list_all
        read_done = asyncio.Event()
        release = asyncio.Event()
        reads = 0

        async def paused_list_all(repo: KnownTokenRepository) -> list:
            nonlocal reads
            reads += 1
            tokens = await list_all(repo)
            if reads == 1:
                read_done.set()
                await release.wait()
            return tokens

        monkeypatch.setattr(KnownTokenRepository, "list_all", paused_list_all)

        reader = asyncio.create_task(known_tokens.get_all())
        await read_done.wait()
        await known_tokens.add("WIF", "WIFMINT")
        release.set()
        loaded = await reader

        assert sorted(t.symbol for t in loaded) == ["KLED", "WIF"]
        token = await known_tokens.match("WIF", 10)
        assert token is not None
        assert token.contract_address == "WIFMINT"
        assert reads == 2

    @pytest.mark.asyncio
    async def test_update_to_existing_symbol(self, known_tokens: KnownTokenCache) -> None:
        wif = await known_tokens.add("WIF", "WIFMINT")

        with pytest.raises(DuplicateKnownTokenError):
            await known_tokens.update(wif.id, symbol="KLED", contract_address="WIFMINT")

    @pytest.mark.asyncio
    async def test_update_missing(self, known_tokens: KnownTokenCache) -> None:
        with pytest.raises(KnownTokenNotFoundError):
            await known_tokens.update(999, symbol="X", contract_address="Y")

    @pytest.mark.asyncio
    async def test_delete_missing(self, known_tokens: KnownTokenCache) -> None:
        with pytest.raises(KnownTokenNotFoundError):
            await known_tokens.delete(999)
