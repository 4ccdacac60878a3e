"""Message formatting for subscriber delivery.

Messages use Telegram's legacy Markdown: ``[text](url)`` links, ``*bold*``
and backtick code spans.
"""

from __future__ import annotations

from fomo_relay.resolver.models import Chain
from fomo_relay.storage.repos import TickerActivity, TraderDTO

X_PROFILE_URL = "https://x.com/{handle}"
DEXSCREENER_TOKEN_URL = "https://dexscreener.com/{chain_id}/{address}"

MEDALS = ("🥇", "🥈", "🥉")


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate a contract address to ``abcd...wxyz`` form for logs."""
    if len(address) < chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def profile_link(handle: str) -> str:
    return f"[{handle}]({X_PROFILE_URL.format(handle=handle)})"


def linkify_trader(text: str, trader: str | None) -> str:
    """Rewrite ``@handle`` as an X profile link.

    Telegram would otherwise treat the handle as a mention of one of
    its own users.
    """
    if not trader:
        return text
    return text.replace(f"@{trader}", profile_link(trader))


def dexscreener_url(contract_address: str, chain: Chain | str | None) -> str:
    """DexScreener token page; unknown chains fall back to Solana."""
    parsed = Chain.parse(chain) or Chain.SOL
    return DEXSCREENER_TOKEN_URL.format(chain_id=parsed.dexscreener_id, address=contract_address)


def format_notification(
    message: str,
    *,
    trader: str | None,
    contract_address: str | None,
    chain: Chain | str | None,
) -> str:
    """Build the text delivered to subscribers for one alert."""
    body = linkify_trader(message, trader)
    if not contract_address:
        return body
    return (
        f"{body}\n\n"
        f"📝 Contract: `{contract_address}`\n"
        f"🔗 [DEXScreener]({dexscreener_url(contract_address, chain)})"
    )


def format_new_trader_announcement(trader: TraderDTO, *, auto_followed: bool) -> str:
    header = f"🎯 A new sharp FOMO APP trader, {profile_link(trader.handle)}, was just added to our services!"
    if auto_followed:
        return (
            f"{header}\n\n"
            "✅ This trader's trades will be tracked by you since you have auto-follow ON.\n\n"
            f"Use /unfollow {trader.handle} or /unfollow {trader.id} if you do not desire this trader.\n"
            "Use /autofollow off if you want to opt out completely of auto-following new traders."
        )
    return (
        f"{header}\n\n"
        "ℹ️ You are NOT following this trader since you have auto-follow OFF.\n\n"
        f"Use /follow {trader.handle} or /follow {trader.id} if you want to follow them.\n"
        "Use /autofollow on if you want to opt in to auto-following new traders."
    )


def format_trader_list(title: str, lines: list[str], footer: str) -> str:
    return f"📊 {title}\n\n" + "\n".join(lines) + f"\n\n{footer}"


def format_trader_line(trader: TraderDTO, *, following: bool) -> str:
    return f"{trader.id} - {profile_link(trader.handle)} {'✅' if following else '❌'}"


def format_ticker_activity(activity: list[TickerActivity], period_label: str) -> str:
    """Render the ``/top`` leaderboard."""
    if not activity:
        return f"📊 No token activity in the last {period_label}."
    lines = []
    for idx, stat in enumerate(activity):
        rank = MEDALS[idx] if idx < len(MEDALS) else f"{idx + 1}."
        ca = f"\n`{stat.contract_address}`" if stat.contract_address else ""
        lines.append(f"{rank} *{stat.ticker}* - {stat.total} trades ({stat.buys} 🟢, {stat.sells} 🔴){ca}")
    return f"📊 *Top Tokens* (Last {period_label})\n\n" + "\n\n".join(lines)
