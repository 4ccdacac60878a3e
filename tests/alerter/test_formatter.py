"""Tests for subscriber message formatting."""

from fomo_relay.alerter.formatter import (
    dexscreener_url,
    format_new_trader_announcement,
    format_notification,
    format_ticker_activity,
    linkify_trader,
    truncate_address,
)
from fomo_relay.resolver.models import Chain
from fomo_relay.storage.repos import TickerActivity, TraderDTO

KLED = "KLED at $31.2m MC 🟢 @frankdegods bought $9,955.55"


class TestLinkifyTrader:
    def test_replaces_handle(self) -> None:
        assert linkify_trader(KLED, "frankdegods") == (
            "KLED at $31.2m MC 🟢 [frankdegods](https://x.com/frankdegods) bought $9,955.55"
        )

    def test_no_trader(self) -> None:
        assert linkify_trader(KLED, None) == KLED


class TestDexscreenerUrl:
    def test_chain_ids(self) -> None:
        assert dexscreener_url("MINT", Chain.SOL) == "https://dexscreener.com/solana/MINT"
        assert dexscreener_url("0xabc", "BNB") == "https://dexscreener.com/bsc/0xabc"
        assert dexscreener_url("0xabc", "base") == "https://dexscreener.com/base/0xabc"

    def test_unknown_chain_defaults_to_solana(self) -> None:
        assert dexscreener_url("MINT", None) == "https://dexscreener.com/solana/MINT"
        assert dexscreener_url("MINT", "tron") == "https://dexscreener.com/solana/MINT"


class TestFormatNotification:
    def test_with_contract_address(self) -> None:
        text = format_notification(KLED, trader="frankdegods", contract_address="MINT", chain=Chain.SOL)

        assert text.startswith("KLED at $31.2m MC 🟢 [frankdegods](https://x.com/frankdegods)")
        assert "\n\n📝 Contract: `MINT`\n" in text
        assert text.endswith("🔗 [DEXScreener](https://dexscreener.com/solana/MINT)")

    def test_without_contract_address(self) -> None:
        text = format_notification(KLED, trader="frankdegods", contract_address=None, chain=None)

        assert "Contract" not in text
        assert "DEXScreener" not in text


class TestAnnouncement:
    def test_auto_followed(self) -> None:
        text = format_new_trader_announcement(TraderDTO(id=7, handle="frankdegods"), auto_followed=True)

        assert "[frankdegods](https://x.com/frankdegods)" in text
        assert "/unfollow frankdegods or /unfollow 7" in text

    def test_not_followed(self) -> None:
        text = format_new_trader_announcement(TraderDTO(id=7, handle="frankdegods"), auto_followed=False)

        assert "NOT following" in text
        assert "/follow frankdegods or /follow 7" in text


class TestTickerActivity:
    def test_empty(self) -> None:
        assert format_ticker_activity([], "24 hours") == "📊 No token activity in the last 24 hours."

    def test_ranking(self) -> None:
        activity = [
            TickerActivity(ticker=f"T{i}", total=10 - i, buys=1, sells=0, contract_address=None)
            for i in range(4)
        ]
        activity[0] = TickerActivity(ticker="T0", total=10, buys=6, sells=4, contract_address="MINT")

        text = format_ticker_activity(activity, "2 hours")

        assert text.startswith("📊 *Top Tokens* (Last 2 hours)")
        assert "🥇 *T0* - 10 trades (6 🟢, 4 🔴)\n`MINT`" in text
        assert "🥉 *T2*" in text
        assert "4. *T3*" in text


def test_truncate_address() -> None:
    assert truncate_address("1zJX5gRnjLgmTpq5sVwkq69mNDQkCemqoasyjaPW6jm") == "1zJX...W6jm"
    assert truncate_address("short") == "short"
