"""Contract-address resolution - cache, DexScreener search and Helius scan."""

from fomo_relay.resolver.candidates import CandidateResolver, ToleranceRange
from fomo_relay.resolver.chain import HeliusError, HeliusScanner
from fomo_relay.resolver.dexscreener import DexScreenerClient
from fomo_relay.resolver.known_tokens import (
    DuplicateKnownTokenError,
    KnownTokenCache,
    KnownTokenError,
    KnownTokenNotFoundError,
)
from fomo_relay.resolver.models import Chain, PairCandidate, ResolutionResult, ResolutionSource
from fomo_relay.resolver.orchestrator import ResolutionOrchestrator
from fomo_relay.resolver.token_cache import TokenCache

__all__ = [
    "CandidateResolver",
    "Chain",
    "DexScreenerClient",
    "DuplicateKnownTokenError",
    "HeliusError",
    "HeliusScanner",
    "KnownTokenCache",
    "KnownTokenError",
    "KnownTokenNotFoundError",
    "PairCandidate",
    "ResolutionOrchestrator",
    "ResolutionResult",
    "ResolutionSource",
    "TokenCache",
    "ToleranceRange",
]
