"""Field extraction from free-text trade alerts.

Alerts come in two shapes:

    KLED at $31.2m MC 🟢 @frankdegods bought $9,955.55
    WIF thesis by ansem

The first is a trade alert carrying a market cap, the second a "thesis"
post without one. Every helper here is pure and returns ``None`` rather
than raising when the text does not match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

_TRADE_TRADER_RE = re.compile(r"MC\s+\S+\s+@(\w+)\s+(bought|sold)", re.IGNORECASE)
_THESIS_TRADER_RE = re.compile(r"thesis by\s+(\w+)", re.IGNORECASE)

_TICKER_MARKER = " at $"
_THESIS_MARKER = " thesis by"
_MARKET_CAP_MARKER = " MC"

_UNIT_MULTIPLIERS = {
    "k": Decimal(1_000),
    "m": Decimal(1_000_000),
    "b": Decimal(1_000_000_000),
}


@dataclass(frozen=True)
class ExtractedAlert:
    """Fields recovered from one alert text."""

    ticker: str | None
    trader: str | None
    market_cap_usd: int | None
    is_thesis: bool


def is_thesis(text: str) -> bool:
    """Return True for thesis-style alerts (no MC, no bought/sold)."""
    lowered = text.lower()
    if "thesis" not in lowered:
        return False
    return not any(word in lowered for word in ("mc", "bought", "sold"))


def _prefix_before(text: str, marker: str) -> str | None:
    idx = text.lower().find(marker)
    if idx <= 0:
        return None
    ticker = text[:idx].strip().upper()
    return ticker or None


def extract_ticker(text: str, *, thesis: bool | None = None) -> str | None:
    """Extract the upper-cased ticker that leads the alert."""
    if thesis is None:
        thesis = is_thesis(text)
    return _prefix_before(text, _THESIS_MARKER if thesis else _TICKER_MARKER)


def extract_trader(text: str, *, thesis: bool | None = None) -> str | None:
    """Extract the trader handle, without a leading ``@``."""
    if thesis is None:
        thesis = is_thesis(text)
    match = (_THESIS_TRADER_RE if thesis else _TRADE_TRADER_RE).search(text)
    return match.group(1) if match else None


def extract_market_cap(text: str) -> int | None:
    """Parse the ``$<number><k|m|b> MC`` fragment into whole US dollars.

    Example:
        >>> extract_market_cap("KLED at $31.2m MC 🟢 @frankdegods bought $9,955.55")
        31200000
    """
    mc_idx = text.find(_MARKET_CAP_MARKER)
    if mc_idx < 0:
        return None
    dollar_idx = text.rfind("$", 0, mc_idx)
    if dollar_idx < 0:
        return None

    value = text[dollar_idx + 1 : mc_idx].strip()
    if len(value) < 2:
        return None
    multiplier = _UNIT_MULTIPLIERS.get(value[-1])
    if multiplier is None:
        return None
    try:
        number = Decimal(value[:-1])
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return int(number * multiplier)


def extract_alert(text: str) -> ExtractedAlert:
    """Run every extractor over one alert text."""
    thesis = is_thesis(text)
    return ExtractedAlert(
        ticker=extract_ticker(text, thesis=thesis),
        trader=extract_trader(text, thesis=thesis),
        market_cap_usd=None if thesis else extract_market_cap(text),
        is_thesis=thesis,
    )
