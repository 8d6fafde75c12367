"""
Bot lifecycle manager - wires the pipeline together and broadcasts events.

Provides WebSocket broadcasting and owns the store, classifier, rate
limiter, publisher, pipeline and scheduler for the running process.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket

from .config import BotConfig, ConfigManager, get_config_manager
from .core.events import EventBus, EventType, Event, get_event_bus
from .core.exceptions import InvalidTransitionError
from .core.interfaces import (
    PostingClient,
    PriceTier,
    PublishResult,
    SaleEvent,
    SalesSource,
    TransactionCategory,
)
from .services.moralis_source import MoralisSalesSource
from .services.pipeline import SalePipeline
from .services.publisher import Publisher
from .services.rate_limiter import RateLimiter
from .services.sale_filter import SaleFilter
from .services.scheduler import Scheduler
from .services.store import SalesStore
from .services.tiers import TierClassifier, validate_tiers
from .services.tweet_formatter import TweetFormatter
from .services.twitter_client import DryRunPostingClient, TwitterPostingClient

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections for real-time broadcasting."""

    def __init__(self):
        self._connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self._connections.add(websocket)
        logger.info(f"WebSocket connected. Total: {len(self._connections)}")

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        self._connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total: {len(self._connections)}")

    async def broadcast(self, message: Dict[str, Any]) -> None:
        """Broadcast a message to all connected clients."""
        if not self._connections:
            return

        logger.debug(f"Broadcasting to {len(self._connections)} clients: {message.get('type')}")
        disconnected = set()
        for ws in self._connections:
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"WS send error: {e}")
                disconnected.add(ws)

        for ws in disconnected:
            self._connections.discard(ws)

    @property
    def connection_count(self) -> int:
        """Get number of active connections."""
        return len(self._connections)


class BotManager:
    """
    Owns the sales pipeline for the process and bridges the EventBus to
    WebSocket clients.

    Components are built by initialize(). A config update rebuilds them,
    which is only allowed while the scheduler is not running.
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        config_manager: Optional[ConfigManager] = None,
        source: Optional[SalesSource] = None,
        posting_client: Optional[PostingClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._event_bus = event_bus or get_event_bus()
        self._config_manager = config_manager or get_config_manager()
        self._ws_manager = WebSocketManager()
        self._source_override = source
        self._client_override = posting_client
        self._clock = clock

        self.formatter = TweetFormatter()
        self.store: Optional[SalesStore] = None
        self.classifier: Optional[TierClassifier] = None
        self.rate_limiter: Optional[RateLimiter] = None
        self.posting_client: Optional[PostingClient] = None
        self.source: Optional[SalesSource] = None
        self.publisher: Optional[Publisher] = None
        self.pipeline: Optional[SalePipeline] = None
        self.scheduler: Optional[Scheduler] = None
        self._publish_lock: Optional[asyncio.Lock] = None

        # Recent activity for new connections
        self._log_buffer: list = []
        self._max_log_buffer = 200

        # Subscribe to all events for WebSocket broadcasting
        self._event_bus.subscribe_all(self._handle_event)

    @property
    def config(self) -> BotConfig:
        return self._config_manager.get()

    @property
    def connection_manager(self) -> WebSocketManager:
        """Get WebSocket manager for connection handling."""
        return self._ws_manager

    @property
    def initialized(self) -> bool:
        return self.scheduler is not None

    # ---- events ----

    async def _handle_event(self, event: Event) -> None:
        """Handle events from the EventBus and broadcast to WebSocket clients."""
        if event.type.notable:
            logger.info(f"Event: {event.type.value} -> {self._ws_manager.connection_count} clients")

        message = event.to_message()

        if event.type.buffered:
            self._log_buffer.append(message)
            if len(self._log_buffer) > self._max_log_buffer:
                self._log_buffer.pop(0)

        await self._ws_manager.broadcast(message)

    async def _emit_log(self, level: str, message: str) -> None:
        getattr(logger, level.lower(), logger.info)(message)
        await self._event_bus.emit(EventType.LOG, level=level, message=message)

    def get_log_buffer(self) -> list:
        """Get buffered activity for new connections."""
        return self._log_buffer.copy()

    # ---- wiring ----

    def _build(self, config: BotConfig) -> None:
        """(Re)build every component that depends on the config."""
        self.rate_limiter = RateLimiter(self.store, max_posts=config.daily_post_limit, clock=self._clock)

        if self._client_override is not None:
            self.posting_client = self._client_override
        elif config.dry_run:
            self.posting_client = DryRunPostingClient()
        else:
            self.posting_client = TwitterPostingClient(config)

        self.source = self._source_override or MoralisSalesSource(config)

        self.publisher = Publisher(
            store=self.store,
            rate_limiter=self.rate_limiter,
            client=self.posting_client,
            event_bus=self._event_bus,
            is_enabled=lambda: self.config.twitter_enabled,
            clock=self._clock,
            lock=self._publish_lock,
        )
        self.pipeline = SalePipeline(
            source=self.source,
            store=self.store,
            sale_filter=SaleFilter(config.min_price_eth, config.min_block_number),
            classifier=self.classifier,
            formatter=self.formatter,
            publisher=self.publisher,
            event_bus=self._event_bus,
            auto_post_enabled=lambda: self.config.auto_post_enabled,
            max_age_hours=lambda: self.config.auto_post_max_age_hours,
            clock=self._clock,
        )
        if self.scheduler is not None:
            self.scheduler.pipeline = self.pipeline

        mode = "DRY RUN" if config.dry_run else "LIVE"
        logger.info(
            f"Pipeline ready ({mode}): min {config.min_price_eth} ETH, "
            f"block >= {config.min_block_number}, {config.daily_post_limit} posts/24h"
        )

    async def initialize(self) -> None:
        """Open the store, load tiers and restore the scheduler."""
        if self.initialized:
            return

        config = self.config
        self.store = SalesStore(config.database_path)
        self.classifier = TierClassifier(self.store.get_tiers())
        self._publish_lock = asyncio.Lock()
        self._build(config)
        self.scheduler = Scheduler(
            pipeline=self.pipeline,
            store=self.store,
            interval=lambda: self.config.poll_interval_seconds,
            event_bus=self._event_bus,
            clock=self._clock,
        )
        await self.scheduler.restore()

        valid, reason = config.is_valid_for_running()
        if not valid:
            logger.warning(f"Configuration incomplete: {reason}")

    async def shutdown(self) -> None:
        """Stop the loop (keeping its persisted status) and release resources."""
        if self.scheduler:
            await self.scheduler.shutdown()
        if self.source:
            await self.source.close()
        if self.store:
            self.store.close()
        self.scheduler = None
        logger.info("Bot manager shut down")

    # ---- scheduler control ----

    async def start(self) -> Dict[str, Any]:
        """Start the scheduler."""
        valid, reason = self.config.is_valid_for_running()
        if not valid:
            return {"success": False, "error": reason}
        try:
            await self.scheduler.start()
        except InvalidTransitionError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "message": "Scheduler started", "status": self.scheduler.get_status()}

    async def stop(self) -> Dict[str, Any]:
        """Stop the scheduler after the current tick."""
        try:
            await self.scheduler.stop()
        except InvalidTransitionError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "message": "Scheduler stopped", "status": self.scheduler.get_status()}

    async def force_stop(self) -> Dict[str, Any]:
        await self.scheduler.force_stop()
        return {"success": True, "message": "Scheduler force-stopped", "status": self.scheduler.get_status()}

    async def reset(self) -> Dict[str, Any]:
        try:
            await self.scheduler.reset()
        except InvalidTransitionError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "message": "Scheduler reset", "status": self.scheduler.get_status()}

    async def reset_errors(self) -> Dict[str, Any]:
        await self.scheduler.reset_errors()
        return {"success": True, "message": "Error counter cleared", "status": self.scheduler.get_status()}

    async def sync(self) -> Dict[str, Any]:
        """Run one tick now."""
        try:
            report = await self.scheduler.trigger_sync()
        except InvalidTransitionError as e:
            return {"success": False, "error": str(e)}
        return {
            "success": report.error is None,
            "result": report.to_dict(),
            "status": self.scheduler.get_status(),
        }

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        return self.scheduler.get_status()

    # ---- configuration ----

    async def update_config(self, updates: Dict[str, Any]) -> BotConfig:
        """Apply config updates and rebuild the pipeline. Refused while running or mid-tick."""
        if self.scheduler and self.scheduler.is_running:
            raise InvalidTransitionError("Cannot update config while scheduler is running")
        if self.scheduler and self.scheduler.tick_in_progress:
            raise InvalidTransitionError("Cannot update config while a sync is in progress")

        new_config = self._config_manager.update(updates)
        if self.initialized:
            old_source = self.source
            self._build(new_config)
            if old_source is not None and old_source is not self.source:
                await old_source.close()
        await self._emit_log("INFO", f"Configuration updated: {sorted(updates)}")
        return new_config

    def get_tiers(self, category: Optional[TransactionCategory] = None) -> List[PriceTier]:
        if category is None:
            return [t for c in self.classifier.categories() for t in self.classifier.tiers_for(c)]
        return self.classifier.tiers_for(category)

    async def update_tiers(self, category: TransactionCategory, tiers: List[PriceTier]) -> List[PriceTier]:
        """Validate and atomically replace one category's tiers. Raises ConfigurationError."""
        bands = validate_tiers(category, tiers)
        others = [t for t in self.get_tiers() if t.category != category]
        classifier = TierClassifier(others + bands)

        self.store.replace_tiers(category, bands)
        self.classifier = classifier
        self.pipeline.classifier = classifier
        await self._emit_log("INFO", f"{category.value} price tiers updated")
        return classifier.tiers_for(category)

    # ---- sales and posts ----

    def get_sale(self, sale_id: int) -> SaleEvent:
        sale = self.store.get_sale(sale_id)
        if sale is None:
            raise LookupError(f"Sale {sale_id} not found")
        return sale

    def preview_sale(self, sale_id: int) -> Dict[str, Any]:
        """Formatted tweet plus tier information, without posting."""
        sale = self.get_sale(sale_id)
        message = self.formatter.format(sale)
        tier = self.classifier.tier_for_sale(sale)
        return {
            "sale": sale.to_dict(),
            "tweet": message.text,
            "length": len(message.text),
            "errors": self.formatter.validate(message.text),
            "tier": tier.to_dict(),
            "auto_post_eligible": self.classifier.is_auto_post_eligible(sale),
        }

    async def post_sale(self, sale_id: int) -> PublishResult:
        """Manually publish a stored sale. Tier floors and age do not apply."""
        sale = self.get_sale(sale_id)
        if sale.posted:
            raise InvalidTransitionError(f"Sale {sale_id} was already posted as {sale.tweet_id}")
        result = await self.publisher.publish(self.formatter.format(sale), sale.id)
        if result.status == "already_posted":
            raise InvalidTransitionError(f"Sale {sale_id} was already posted as {result.tweet_id}")
        return result

    async def test_twitter_connection(self) -> Dict[str, Any]:
        """Check the posting client's credentials without posting."""
        return await self.posting_client.test_connection()

    async def reset_posts(self) -> int:
        """Delete all post records and rate-limit timestamps."""
        deleted = self.store.reset_posts()
        await self._emit_log("WARNING", f"Post history reset: {deleted} records deleted")
        return deleted

    def get_stats(self) -> Dict[str, Any]:
        stats = self.store.get_stats()
        stats["rate_limit"] = self.rate_limiter.status().to_dict()
        stats["scheduler"] = self.scheduler.get_status()
        stats["dry_run"] = self.config.dry_run
        return stats


# Global bot manager instance
_bot_manager: Optional[BotManager] = None


def get_bot_manager() -> BotManager:
    """Get the global bot manager instance."""
    global _bot_manager
    if _bot_manager is None:
        _bot_manager = BotManager()
    return _bot_manager


def set_bot_manager(manager: Optional[BotManager]) -> None:
    """Replace the global bot manager (used by tests)."""
    global _bot_manager
    _bot_manager = manager
