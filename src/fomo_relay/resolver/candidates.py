"""Market-cap tolerance filtering and scoring of DexScreener pairs.

A ticker search routinely returns dozens of same-symbol pools across
chains. The alert's market cap is the only disambiguating signal, so a
candidate must sit inside a tolerance band around it, carry a plausible
amount of liquidity, and is then ranked by closeness and depth.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from fomo_relay.resolver.models import PairCandidate

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_CHAINS = ("solana", "bsc", "base")
DEFAULT_TOLERANCE_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("2000000"), Decimal("500")),
    (Decimal("10000000"), Decimal("300")),
    (Decimal("50000000"), Decimal("200")),
    (Decimal("Infinity"), Decimal("100")),
)
DEFAULT_MIN_LIQUIDITY_USD = Decimal("1000")
DEFAULT_MIN_RATIO_PCT = Decimal("5")
DEFAULT_MAX_RATIO_PCT = Decimal("200")

MARKET_CAP_WEIGHT = 70.0
LIQUIDITY_WEIGHT = 30.0


@dataclass(frozen=True)
class ToleranceRange:
    """Accepted market-cap band around an expected value."""

    expected: Decimal
    tolerance_pct: Decimal
    low: Decimal
    high: Decimal

    @classmethod
    def around(
        cls,
        expected: Decimal,
        tiers: Sequence[tuple[Decimal, Decimal]] = DEFAULT_TOLERANCE_TIERS,
    ) -> ToleranceRange:
        pct = tiers[-1][1]
        for upper_bound, tier_pct in tiers:
            if expected < upper_bound:
                pct = tier_pct
                break
        factor = 1 + pct / 100
        return cls(expected=expected, tolerance_pct=pct, low=expected / factor, high=expected * factor)

    def contains(self, value: Decimal) -> bool:
        return self.low <= value <= self.high


class CandidateResolver:
    """Picks the most plausible pair for an alert's ticker and market cap."""

    def __init__(
        self,
        *,
        allowed_chains: Iterable[str] = DEFAULT_ALLOWED_CHAINS,
        tolerance_tiers: Sequence[tuple[Decimal, Decimal]] = DEFAULT_TOLERANCE_TIERS,
        min_liquidity_usd: Decimal = DEFAULT_MIN_LIQUIDITY_USD,
        min_ratio_pct: Decimal = DEFAULT_MIN_RATIO_PCT,
        max_ratio_pct: Decimal = DEFAULT_MAX_RATIO_PCT,
    ) -> None:
        self._allowed_chains = frozenset(c.lower() for c in allowed_chains)
        self._tiers = tuple(sorted(tolerance_tiers, key=lambda t: t[0]))
        if not self._tiers:
            raise ValueError("tolerance_tiers must not be empty")
        self._min_liquidity = min_liquidity_usd
        self._min_ratio = min_ratio_pct
        self._max_ratio = max_ratio_pct

    def tolerance_for(self, expected_market_cap: Decimal) -> ToleranceRange:
        return ToleranceRange.around(expected_market_cap, self._tiers)

    def is_valid(self, candidate: PairCandidate, band: ToleranceRange) -> bool:
        """Check every filter a candidate must pass."""
        if candidate.chain_id.lower() not in self._allowed_chains:
            return False
        # An allowed chain id with no Chain mapping can't be linked or edited.
        if candidate.chain is None:
            return False
        if not candidate.token_address:
            return False
        mc = candidate.market_cap_usd
        liquidity = candidate.liquidity_usd
        if mc is None or liquidity is None or mc <= 0:
            return False
        if not band.contains(mc):
            return False
        if liquidity < self._min_liquidity:
            return False
        ratio = liquidity / mc * 100
        return self._min_ratio <= ratio <= self._max_ratio

    @staticmethod
    def score(candidate: PairCandidate, expected_market_cap: Decimal) -> float:
        """Weighted closeness-to-expected plus log-scaled liquidity."""
        mc = float(candidate.market_cap_usd or 0)
        liquidity = float(candidate.liquidity_usd or 0)
        expected = float(expected_market_cap)
        closeness = 1.0 / (1.0 + abs(mc - expected) / expected)
        return MARKET_CAP_WEIGHT * closeness + LIQUIDITY_WEIGHT * math.log10(liquidity + 1.0)

    def select_best(
        self,
        candidates: Sequence[PairCandidate],
        expected_market_cap_usd: Decimal | int | None,
    ) -> PairCandidate | None:
        """Return the highest-scoring valid candidate, or None.

        Ties keep the input order.
        """
        if expected_market_cap_usd is None:
            return None
        expected = Decimal(expected_market_cap_usd)
        if expected <= 0:
            return None

        band = self.tolerance_for(expected)
        valid = [c for c in candidates if self.is_valid(c, band)]
        logger.debug(
            "%d/%d candidates within %s..%s (±%s%%)",
            len(valid),
            len(candidates),
            band.low,
            band.high,
            band.tolerance_pct,
        )
        if not valid:
            return None

        # sorted() is stable, so equal scores keep list order.
        ranked = sorted(valid, key=lambda c: self.score(c, expected), reverse=True)
        return ranked[0]
