"""
Rate-limited publisher.

Check, attempt and record run under one lock so manual and automatic
posts cannot both take the last slot of the window. A sale already
marked posted is skipped, so overlapping attempts tweet it once.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from ..core.events import EventBus, EventType
from ..core.exceptions import PublishError, StoreError
from ..core.interfaces import FormattedMessage, PostingClient, PostRecord, PublishResult
from .rate_limiter import RateLimiter
from .store import SalesStore

logger = logging.getLogger(__name__)


class Publisher:
    """Posts formatted messages subject to the rolling rate limit."""

    def __init__(
        self,
        store: SalesStore,
        rate_limiter: RateLimiter,
        client: PostingClient,
        event_bus: Optional[EventBus] = None,
        is_enabled: Callable[[], bool] = lambda: True,
        clock: Callable[[], float] = time.time,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.client = client
        self.event_bus = event_bus
        self.is_enabled = is_enabled
        self.clock = clock
        # may be shared by several publishers
        self._lock = lock or asyncio.Lock()

    async def _emit(self, event_type: EventType, **data) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_type, **data)

    async def publish(self, message: FormattedMessage, sale_id: Optional[int] = None) -> PublishResult:
        """Publish one message. Never raises for rate limiting or posting failures."""
        async with self._lock:
            if not self.is_enabled():
                logger.warning("Post blocked - Twitter posting disabled via admin toggle")
                result = PublishResult(status="disabled", sale_id=sale_id, error="Twitter posting is disabled")
                await self._emit(EventType.POST_SKIPPED, **result.to_dict())
                return result

            if sale_id is not None:
                try:
                    sale = self.store.get_sale(sale_id)
                except StoreError as e:
                    logger.error(f"Could not read sale {sale_id} before posting: {e}")
                    result = PublishResult(status="failed", sale_id=sale_id, error=f"StoreError: {e}")
                    await self._emit(EventType.POST_FAILED, **result.to_dict())
                    return result
                if sale is not None and sale.posted:
                    logger.info(f"Skipping sale {sale_id}: already posted as {sale.tweet_id}")
                    result = PublishResult(
                        status="already_posted",
                        sale_id=sale_id,
                        tweet_id=sale.tweet_id,
                        error=f"Sale {sale_id} was already posted",
                    )
                    await self._emit(EventType.POST_SKIPPED, **result.to_dict())
                    return result

            status = self.rate_limiter.status()
            if not status.can_post:
                reason = f"Rate limit exceeded: {status.posts_in_window}/{status.limit} posts used"
                logger.info(f"Skipping sale {sale_id}: {reason}")
                result = PublishResult(status="rate_limited", sale_id=sale_id, error=reason)
                await self._emit(EventType.POST_SKIPPED, **result.to_dict())
                return result

            attempted_at = self.clock()
            try:
                tweet_id = await self.client.post(message)
            except PublishError as e:
                kind = type(e).__name__
                logger.error(f"Publish failed for sale {sale_id} ({kind}): {e}")
                self._record(PostRecord(
                    sale_id=sale_id,
                    success=False,
                    posted_at=attempted_at,
                    content=message.text,
                    error_message=f"{kind}: {e}",
                ))
                result = PublishResult(status="failed", sale_id=sale_id, error=f"{kind}: {e}")
                await self._emit(EventType.POST_FAILED, **result.to_dict())
                return result

            try:
                self.rate_limiter.record_post(attempted_at)
                self.store.record_post(PostRecord(
                    sale_id=sale_id,
                    success=True,
                    posted_at=attempted_at,
                    content=message.text,
                    tweet_id=tweet_id,
                ))
                if sale_id is not None:
                    self.store.mark_sale_posted(sale_id, tweet_id)
            except StoreError as e:
                logger.error(f"Tweet {tweet_id} posted but could not be recorded: {e}")

            logger.info(f"Successfully posted sale {sale_id} - Tweet ID: {tweet_id}")
            result = PublishResult(status="posted", sale_id=sale_id, tweet_id=tweet_id)
            await self._emit(EventType.POST_PUBLISHED, **result.to_dict())
            return result

    def _record(self, record: PostRecord) -> None:
        try:
            self.store.record_post(record)
        except StoreError as e:
            logger.error(f"Could not record failed post for sale {record.sale_id}: {e}")
