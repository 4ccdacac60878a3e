"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
FOMO relay, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

LookupOrder = Literal["auto", "aggregator_first", "scanner_first"]

# The top tolerance tier is open-ended, bounded by Decimal("Infinity").
TierBound = Annotated[Decimal, Field(allow_inf_nan=True)]


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./fomo_relay.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string for the dashboard channel and mint metadata cache",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None or v == "":
            return None
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class TelegramSettings(BaseSettings):
    """Telegram bot settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    commands_enabled: bool = Field(
        default=True,
        alias="TELEGRAM_COMMANDS_ENABLED",
        description="Poll for and answer subscriber bot commands",
    )
    poll_timeout_seconds: int = Field(
        default=30,
        alias="TELEGRAM_POLL_TIMEOUT_SECONDS",
        ge=0,
        le=120,
        description="Long-poll timeout for getUpdates",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram delivery is enabled."""
        return self.bot_token is not None


class DexScreenerSettings(BaseSettings):
    """Price aggregator search and candidate filtering settings."""

    model_config = SettingsConfigDict(env_prefix="DEXSCREENER_", extra="ignore")

    base_url: str = Field(
        default="https://api.dexscreener.com",
        alias="DEXSCREENER_BASE_URL",
        description="DexScreener API host",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="DEXSCREENER_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="HTTP timeout for pair searches",
    )
    allowed_chains: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("solana", "bsc", "base"),
        alias="DEXSCREENER_ALLOWED_CHAINS",
        description="Chain ids accepted as candidates (comma-separated)",
    )
    min_liquidity_usd: Decimal = Field(
        default=Decimal("1000"),
        alias="DEXSCREENER_MIN_LIQUIDITY_USD",
        description="Minimum pool liquidity for a candidate",
    )
    min_liquidity_ratio_pct: Decimal = Field(
        default=Decimal("5"),
        alias="DEXSCREENER_MIN_LIQUIDITY_RATIO_PCT",
        description="Lower bound of liquidity / market cap (percent)",
    )
    max_liquidity_ratio_pct: Decimal = Field(
        default=Decimal("200"),
        alias="DEXSCREENER_MAX_LIQUIDITY_RATIO_PCT",
        description="Upper bound of liquidity / market cap (percent)",
    )
    tolerance_tiers: Annotated[tuple[tuple[TierBound, Decimal], ...], NoDecode] = Field(
        default=(
            (Decimal("2000000"), Decimal("500")),
            (Decimal("10000000"), Decimal("300")),
            (Decimal("50000000"), Decimal("200")),
            (Decimal("Infinity"), Decimal("100")),
        ),
        alias="DEXSCREENER_TOLERANCE_TIERS",
        description="Market-cap tolerance tiers as 'below:percent' pairs (comma-separated)",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("DEXSCREENER_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @field_validator("allowed_chains", mode="before")
    @classmethod
    def _parse_allowed_chains(cls, v: object) -> tuple[str, ...]:
        if isinstance(v, str):
            return tuple(p.strip().lower() for p in v.split(",") if p.strip())
        if isinstance(v, (list, tuple)):
            return tuple(str(x).lower() for x in v)
        raise TypeError("Invalid DEXSCREENER_ALLOWED_CHAINS type")

    @field_validator("tolerance_tiers", mode="before")
    @classmethod
    def _parse_tolerance_tiers(cls, v: object) -> tuple[tuple[Decimal, Decimal], ...]:
        if isinstance(v, str):
            tiers: list[tuple[Decimal, Decimal]] = []
            for part in v.split(","):
                part = part.strip()
                if not part:
                    continue
                bound, _, pct = part.partition(":")
                if not pct:
                    raise ValueError(f"Invalid tolerance tier {part!r}, expected 'below:percent'")
                tiers.append((Decimal(bound.strip()), Decimal(pct.strip())))
            v = tiers
        if isinstance(v, (list, tuple)):
            parsed = tuple((Decimal(str(b)), Decimal(str(p))) for b, p in v)
            if not parsed:
                raise ValueError("DEXSCREENER_TOLERANCE_TIERS must not be empty")
            return tuple(sorted(parsed, key=lambda t: t[0]))
        raise TypeError("Invalid DEXSCREENER_TOLERANCE_TIERS type")


class HeliusSettings(BaseSettings):
    """Solana wallet-transaction scanner settings."""

    model_config = SettingsConfigDict(env_prefix="HELIUS_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="HELIUS_API_KEY",
        description="Helius API key (scanner disabled when unset)",
    )
    base_url: str = Field(
        default="https://api.helius.xyz",
        alias="HELIUS_BASE_URL",
        description="Helius API host",
    )
    aggregator_wallet: str = Field(
        default="AgmLJBMDCqWynYnQiPCuj9ewsNNsBJXyzoUhD9LJzN51",
        alias="HELIUS_AGGREGATOR_WALLET",
        description="Wallet whose recent transfers are scanned for new mints",
    )
    transaction_limit: int = Field(
        default=50,
        alias="HELIUS_TRANSACTION_LIMIT",
        ge=1,
        le=100,
        description="How many recent transactions to scan",
    )
    stablecoin_mint: str = Field(
        default="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        alias="HELIUS_STABLECOIN_MINT",
        description="Quote mint excluded from candidates (USDC)",
    )
    timeout_seconds: float = Field(
        default=5.0,
        alias="HELIUS_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="HTTP timeout for Helius calls",
    )
    metadata_cache_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        alias="HELIUS_METADATA_CACHE_TTL_SECONDS",
        ge=60,
        description="Redis TTL for cached mint symbols",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("HELIUS_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        return self.api_key is not None


class ResolutionSettings(BaseSettings):
    """Contract-address resolution policy."""

    model_config = SettingsConfigDict(env_prefix="RESOLUTION_", extra="ignore")

    lookup_order: LookupOrder = Field(
        default="auto",
        alias="RESOLUTION_LOOKUP_ORDER",
        description="Stage order: auto (aggregator first when a market cap is known), aggregator_first, scanner_first",
    )
    cache_ttl_hours: float = Field(
        default=4.0,
        alias="RESOLUTION_CACHE_TTL_HOURS",
        gt=0.0,
        le=24 * 30,
        description="Sliding TTL of cached ticker resolutions",
    )
    cache_sweep_interval_seconds: int = Field(
        default=600,
        alias="RESOLUTION_CACHE_SWEEP_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="How often expired cache rows are deleted",
    )


class RetrySettings(BaseSettings):
    """Background retry queue settings."""

    model_config = SettingsConfigDict(env_prefix="RETRY_", extra="ignore")

    max_retries: int = Field(
        default=1,
        alias="RETRY_MAX_RETRIES",
        ge=1,
        le=100,
        description="Retry budget per unresolved notification",
    )
    delay_seconds: float = Field(
        default=5.0,
        alias="RETRY_DELAY_SECONDS",
        ge=0.0,
        le=3600.0,
        description="Delay before (re)attempting a resolution",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        alias="RETRY_POLL_INTERVAL_SECONDS",
        gt=0.0,
        le=60.0,
        description="How often the retry loop checks for due entries",
    )


class ApiSettings(BaseSettings):
    """Admin / ingestion HTTP API settings."""

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    host: str = Field(default="127.0.0.1", alias="API_HOST", description="Bind address")
    port: int = Field(default=8080, alias="API_PORT", ge=1, le=65535, description="Bind port")


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from fomo_relay.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.retry.max_retries)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    dexscreener: DexScreenerSettings = Field(
        default_factory=lambda: DexScreenerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    helius: HeliusSettings = Field(
        default_factory=lambda: HeliusSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    resolution: ResolutionSettings = Field(
        default_factory=lambda: ResolutionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    retry: RetrySettings = Field(
        default_factory=lambda: RetrySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    api: ApiSettings = Field(
        default_factory=lambda: ApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dashboard_channel: str = Field(
        default="fomo:dashboard",
        alias="DASHBOARD_CHANNEL",
        description="Redis pub/sub channel for dashboard events",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log outgoing messages instead of sending them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "telegram": {
                "bot_token": "(set)" if self.telegram.bot_token else "(not set)",
                "commands_enabled": str(self.telegram.commands_enabled),
            },
            "dexscreener": {
                "base_url": self.dexscreener.base_url,
                "allowed_chains": ",".join(self.dexscreener.allowed_chains),
            },
            "helius": {
                "api_key": "(set)" if self.helius.api_key else "(not set)",
                "aggregator_wallet": self.helius.aggregator_wallet,
            },
            "resolution": {
                "lookup_order": self.resolution.lookup_order,
                "cache_ttl_hours": str(self.resolution.cache_ttl_hours),
            },
            "retry": {
                "max_retries": str(self.retry.max_retries),
                "delay_seconds": str(self.retry.delay_seconds),
            },
            "api": f"{self.api.host}:{self.api.port}",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when environment variables change.
    """
    get_settings.cache_clear()
