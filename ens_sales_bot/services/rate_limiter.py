"""
Rolling 24-hour post rate limiter.

Successful post timestamps are persisted in the store. Expired entries are
pruned lazily on each query. Store failures fail closed (treated as at-limit).
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..core.exceptions import StoreError
from .store import SalesStore

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 24 * 60 * 60
DEFAULT_DAILY_LIMIT = 15


@dataclass
class RateLimitStatus:
    """Snapshot of the rolling window."""
    posts_in_window: int
    limit: int
    can_post: bool
    reset_at: Optional[float]
    store_available: bool = True

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.posts_in_window)

    @property
    def limit_reached(self) -> bool:
        return not self.can_post

    def to_dict(self) -> Dict[str, Any]:
        reset_iso = None
        if self.reset_at is not None:
            reset_iso = datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()
        return {
            "posts_in_window": self.posts_in_window,
            "remaining": self.remaining,
            "limit": self.limit,
            "limit_reached": self.limit_reached,
            "can_post": self.can_post,
            "reset_at": reset_iso,
            "store_available": self.store_available,
        }


class RateLimiter:
    """Sliding-window counter over persisted post timestamps."""

    def __init__(
        self,
        store: SalesStore,
        max_posts: int = DEFAULT_DAILY_LIMIT,
        clock: Callable[[], float] = time.time,
        window_seconds: int = WINDOW_SECONDS,
    ):
        self.store = store
        self.max_posts = max_posts
        self.clock = clock
        self.window_seconds = window_seconds

    def status(self, now: Optional[float] = None) -> RateLimitStatus:
        """Count successful posts in [now - 24h, now]."""
        now = self.clock() if now is None else now
        cutoff = now - self.window_seconds

        try:
            self.store.prune_post_timestamps(cutoff)
            timestamps = self.store.post_timestamps_between(cutoff, now)
        except StoreError as e:
            logger.error(f"Rate limit check failed, treating as at-limit: {e}")
            return RateLimitStatus(
                posts_in_window=self.max_posts,
                limit=self.max_posts,
                can_post=False,
                reset_at=None,
                store_available=False,
            )

        count = len(timestamps)
        reset_at = timestamps[0] + self.window_seconds if timestamps else None
        return RateLimitStatus(
            posts_in_window=count,
            limit=self.max_posts,
            can_post=count < self.max_posts,
            reset_at=reset_at,
        )

    def can_post(self, now: Optional[float] = None) -> bool:
        return self.status(now).can_post

    def record_post(self, timestamp: Optional[float] = None) -> None:
        """Append a successful post to the window."""
        timestamp = self.clock() if timestamp is None else timestamp
        self.store.add_post_timestamp(timestamp)
        logger.debug(f"Recorded post at {timestamp:.0f}")
