"""Data models for contract-address resolution."""

import contextlib
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class Chain(str, Enum):
    """Supported chains, keyed by the short code shown to subscribers."""

    SOL = "SOL"
    BNB = "BNB"
    BASE = "BASE"

    @property
    def dexscreener_id(self) -> str:
        return _DEXSCREENER_IDS[self]

    @property
    def is_native(self) -> bool:
        """Only native-chain resolutions are written to the ticker cache."""
        return self is Chain.SOL

    @classmethod
    def from_dexscreener_id(cls, chain_id: str | None) -> "Chain | None":
        if not chain_id:
            return None
        return _CHAINS_BY_DEXSCREENER_ID.get(chain_id.lower())

    @classmethod
    def parse(cls, value: "str | Chain | None") -> "Chain | None":
        """Accept a chain code ("SOL") or a DexScreener id ("solana")."""
        if value is None or isinstance(value, Chain):
            return value
        with contextlib.suppress(ValueError):
            return cls(value.upper())
        return cls.from_dexscreener_id(value)


_DEXSCREENER_IDS = {
    Chain.SOL: "solana",
    Chain.BNB: "bsc",
    Chain.BASE: "base",
}
_CHAINS_BY_DEXSCREENER_ID = {v: k for k, v in _DEXSCREENER_IDS.items()}


class ResolutionSource(str, Enum):
    """Where a contract address came from."""

    CACHE = "CACHE"
    DEXSCREENER = "DEXSCREENER"
    HELIUS = "HELIUS"
    KNOWN_TOKEN = "KNOWN_TOKEN"


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


@dataclass(frozen=True)
class PairCandidate:
    """One trading pair returned by a DexScreener search."""

    chain_id: str
    dex_id: str | None
    pair_address: str | None
    token_address: str | None
    token_symbol: str | None
    market_cap_usd: Decimal | None
    liquidity_usd: Decimal | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PairCandidate":
        """Create a PairCandidate from a DexScreener ``pairs[]`` item."""
        base_token = data.get("baseToken") or {}
        liquidity = data.get("liquidity") or {}
        return cls(
            chain_id=str(data.get("chainId") or ""),
            dex_id=data.get("dexId"),
            pair_address=data.get("pairAddress"),
            token_address=base_token.get("address") or None,
            token_symbol=base_token.get("symbol"),
            market_cap_usd=_decimal_or_none(data.get("marketCap")),
            liquidity_usd=_decimal_or_none(liquidity.get("usd")),
        )

    @property
    def chain(self) -> Chain | None:
        return Chain.from_dexscreener_id(self.chain_id)


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one resolution attempt, with per-stage call counts."""

    contract_address: str | None = None
    chain: Chain | None = None
    source: ResolutionSource | None = None
    cache_hits: int = 0
    aggregator_hits: int = 0
    scanner_hits: int = 0
    duration_seconds: float = 0.0

    @property
    def resolved(self) -> bool:
        return bool(self.contract_address)
