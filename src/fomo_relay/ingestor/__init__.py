"""Alert ingestion - field extraction from raw alert text."""

from fomo_relay.ingestor.extractor import (
    ExtractedAlert,
    extract_alert,
    extract_market_cap,
    extract_ticker,
    extract_trader,
    is_thesis,
)

__all__ = [
    "ExtractedAlert",
    "extract_alert",
    "extract_market_cap",
    "extract_ticker",
    "extract_trader",
    "is_thesis",
]
