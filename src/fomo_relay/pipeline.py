"""Service wiring for the FOMO relay.

This module provides the Pipeline class that builds every component from
Settings and owns the lifecycle of the background loops: the retry queue,
the token cache sweep and the bot command poller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from fomo_relay.alerter.broadcaster import DashboardBroadcaster
from fomo_relay.alerter.editor import NotificationEditor
from fomo_relay.alerter.transport import DryRunTransport, MessageTransport, TelegramTransport
from fomo_relay.commands import CommandHandler
from fomo_relay.config import Settings, get_settings
from fomo_relay.dispatcher import DispatchResult, NotificationDispatcher
from fomo_relay.resolver.candidates import CandidateResolver
from fomo_relay.resolver.chain import HeliusScanner
from fomo_relay.resolver.dexscreener import DexScreenerClient
from fomo_relay.resolver.known_tokens import KnownTokenCache
from fomo_relay.resolver.orchestrator import ResolutionOrchestrator
from fomo_relay.resolver.token_cache import TokenCache
from fomo_relay.retry_queue import RetryQueue
from fomo_relay.storage.database import DatabaseManager
from fomo_relay.subscriptions import SubscriptionIndex

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    alerts_received: int = 0
    alerts_sent: int = 0
    alerts_without_recipients: int = 0
    messages_sent: int = 0
    send_failures: int = 0
    errors: int = 0
    last_alert_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Owns every relay component and the background loops.

    Pipeline flow:
        Alert text → Extractor → Known tokens / Resolver → Subscribers → Transport
                                                         ↘ Retry queue → Editor

    Example:
        ```python
        from fomo_relay.config import get_settings
        from fomo_relay.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            result = await pipeline.dispatch(alert_text)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        transport: MessageTransport | None = None,
        db_manager: DatabaseManager | None = None,
        dexscreener: DexScreenerClient | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log messages instead of sending. Overrides settings.dry_run.
            transport: Pre-built transport, mainly for tests.
            db_manager: Pre-built database manager, mainly for tests.
            dexscreener: Pre-built DexScreener client, mainly for tests.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._transport_override = transport
        self._db_override = db_manager
        self._dexscreener_override = dexscreener

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._transport: MessageTransport | None = None
        self._broadcaster: DashboardBroadcaster | None = None
        self._dexscreener: DexScreenerClient | None = None
        self._scanner: HeliusScanner | None = None
        self._token_cache: TokenCache | None = None
        self._known_tokens: KnownTokenCache | None = None
        self._orchestrator: ResolutionOrchestrator | None = None
        self._subscriptions: SubscriptionIndex | None = None
        self._editor: NotificationEditor | None = None
        self._retry_queue: RetryQueue | None = None
        self._dispatcher: NotificationDispatcher | None = None
        self._commands: CommandHandler | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def db(self) -> DatabaseManager:
        return self._require(self._db_manager)

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._require(self._dispatcher)

    @property
    def editor(self) -> NotificationEditor:
        return self._require(self._editor)

    @property
    def known_tokens(self) -> KnownTokenCache:
        return self._require(self._known_tokens)

    @property
    def token_cache(self) -> TokenCache:
        return self._require(self._token_cache)

    @property
    def retry_queue(self) -> RetryQueue:
        return self._require(self._retry_queue)

    @property
    def subscriptions(self) -> SubscriptionIndex:
        return self._require(self._subscriptions)

    @property
    def commands(self) -> CommandHandler | None:
        return self._commands

    def _require(self, component: Any) -> Any:
        if component is None:
            raise RuntimeError(f"Pipeline is not running (state {self._state.value})")
        return component

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            self._state = PipelineState.STOPPED
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
        else:
            logger.info("REDIS_URL not set; dashboard events and mint metadata caching disabled")

        logger.debug("Initializing database manager...")
        self._db_manager = self._db_override or DatabaseManager(settings.database.url)
        if self._db_manager.database_url.startswith("sqlite"):
            # PostgreSQL schemas are managed by alembic.
            await self._db_manager.init_schema_async()

        logger.debug("Initializing transport...")
        if self._transport_override is not None:
            self._transport = self._transport_override
        elif self._dry_run or not settings.telegram.enabled:
            logger.info("Using dry-run transport; messages will only be logged")
            self._transport = DryRunTransport()
        else:
            bot_token = settings.telegram.bot_token
            if bot_token is None:
                raise RuntimeError("TELEGRAM_BOT_TOKEN is required for Telegram delivery")
            telegram = TelegramTransport(bot_token.get_secret_value())
            await telegram.initialize()
            self._transport = telegram

        self._broadcaster = DashboardBroadcaster(self._redis, channel=settings.dashboard_channel)

        logger.debug("Initializing resolvers...")
        self._dexscreener = self._dexscreener_override or DexScreenerClient(
            base_url=settings.dexscreener.base_url,
            timeout_seconds=settings.dexscreener.timeout_seconds,
        )
        self._scanner = HeliusScanner(
            api_key=settings.helius.api_key.get_secret_value() if settings.helius.api_key else None,
            base_url=settings.helius.base_url,
            aggregator_wallet=settings.helius.aggregator_wallet,
            stablecoin_mint=settings.helius.stablecoin_mint,
            transaction_limit=settings.helius.transaction_limit,
            timeout_seconds=settings.helius.timeout_seconds,
            redis=self._redis,
            metadata_cache_ttl_seconds=settings.helius.metadata_cache_ttl_seconds,
        )
        candidates = CandidateResolver(
            allowed_chains=settings.dexscreener.allowed_chains,
            tolerance_tiers=settings.dexscreener.tolerance_tiers,
            min_liquidity_usd=settings.dexscreener.min_liquidity_usd,
            min_ratio_pct=settings.dexscreener.min_liquidity_ratio_pct,
            max_ratio_pct=settings.dexscreener.max_liquidity_ratio_pct,
        )
        self._token_cache = TokenCache(
            self._db_manager,
            ttl=timedelta(hours=settings.resolution.cache_ttl_hours),
            sweep_interval_seconds=settings.resolution.cache_sweep_interval_seconds,
        )
        self._orchestrator = ResolutionOrchestrator(
            self._token_cache,
            self._dexscreener,
            candidates,
            self._scanner,
            lookup_order=settings.resolution.lookup_order,
        )
        self._known_tokens = KnownTokenCache(self._db_manager)
        await self._known_tokens.populate()

        logger.debug("Initializing delivery services...")
        self._subscriptions = SubscriptionIndex(self._db_manager, self._transport)
        self._editor = NotificationEditor(self._db_manager, self._transport, self._broadcaster)
        self._retry_queue = RetryQueue(
            self._orchestrator,
            self._editor,
            max_retries=settings.retry.max_retries,
            delay_seconds=settings.retry.delay_seconds,
            poll_interval_seconds=settings.retry.poll_interval_seconds,
        )
        self._dispatcher = NotificationDispatcher(
            self._db_manager,
            self._transport,
            self._subscriptions,
            self._known_tokens,
            self._orchestrator,
            self._retry_queue,
            self._broadcaster,
        )
        if settings.telegram.commands_enabled:
            self._commands = CommandHandler(
                self._db_manager,
                self._transport,
                self._subscriptions,
                self._broadcaster,
                poll_timeout_seconds=settings.telegram.poll_timeout_seconds,
            )

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._retry_queue:
            logger.debug("Starting retry queue...")
            await self._retry_queue.start()

        if self._token_cache:
            logger.debug("Starting token cache sweep...")
            await self._token_cache.start()

        if self._commands:
            logger.debug("Starting command polling...")
            await self._commands.start()

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._commands:
            await self._commands.stop()
        if self._retry_queue:
            await self._retry_queue.stop()
        if self._token_cache:
            await self._token_cache.stop()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._dexscreener:
            await self._dexscreener.close()
            self._dexscreener = None

        if self._scanner:
            await self._scanner.close()
            self._scanner = None

        if isinstance(self._transport, TelegramTransport):
            await self._transport.shutdown()

        # An injected database manager belongs to the caller.
        if self._db_manager and self._db_manager is not self._db_override:
            await self._db_manager.dispose_async()
        self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        self._transport = None
        self._broadcaster = None
        self._token_cache = None
        self._known_tokens = None
        self._orchestrator = None
        self._subscriptions = None
        self._editor = None
        self._retry_queue = None
        self._dispatcher = None
        self._commands = None

        logger.debug("Resources cleaned up")

    async def dispatch(self, raw_text: str) -> DispatchResult:
        """Dispatch one alert and record pipeline statistics."""
        dispatcher = self.dispatcher
        self._stats.alerts_received += 1
        self._stats.last_alert_time = datetime.now(UTC)
        try:
            result = await dispatcher.dispatch(raw_text)
        except ValueError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            raise
        if result.notification_id is None:
            self._stats.alerts_without_recipients += 1
        else:
            self._stats.alerts_sent += 1
        self._stats.messages_sent += result.sent
        self._stats.send_failures += result.failed
        return result

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
