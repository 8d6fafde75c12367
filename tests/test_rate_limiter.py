"""Unit tests for the rolling 24h rate limiter."""

import os
import sys

import pytest

# Add project root to path so we can import the package
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from ens_sales_bot.core.exceptions import StoreError
from ens_sales_bot.services.rate_limiter import RateLimiter
from ens_sales_bot.services.store import SalesStore

HOUR = 3600
T = 1_700_000_000.0


class BrokenStore:
    """Store whose every query fails."""

    def prune_post_timestamps(self, before):
        raise StoreError("database is locked")

    def post_timestamps_between(self, start, end):
        raise StoreError("database is locked")

    def add_post_timestamp(self, posted_at):
        raise StoreError("database is locked")


@pytest.fixture
def store(tmp_path):
    s = SalesStore(str(tmp_path / "limiter.sqlite3"))
    yield s
    s.close()


class TestRollingWindow:
    """Counting posts in [now - 24h, now]."""

    def test_full_day_then_oldest_ages_out(self, store):
        """15 posts at T..T+14h: blocked at T+23h, open again at T+25h."""
        limiter = RateLimiter(store, max_posts=15)
        for i in range(15):
            limiter.record_post(T + i * HOUR)

        assert limiter.can_post(T + 23 * HOUR) is False
        assert limiter.can_post(T + 25 * HOUR) is True

    def test_status_counts(self, store):
        limiter = RateLimiter(store, max_posts=15)
        for i in range(3):
            limiter.record_post(T + i * HOUR)

        status = limiter.status(T + 3 * HOUR)

        assert status.posts_in_window == 3
        assert status.remaining == 12
        assert status.limit == 15
        assert status.limit_reached is False
        assert status.reset_at == T + 24 * HOUR

    def test_expired_entries_not_counted(self, store):
        """Entries older than the window never show up in counts."""
        limiter = RateLimiter(store, max_posts=2)
        limiter.record_post(T)
        limiter.record_post(T + HOUR)

        status = limiter.status(T + 24 * HOUR + 1)

        assert status.posts_in_window == 1
        assert status.can_post is True

    def test_empty_window(self, store):
        status = RateLimiter(store).status(T)

        assert status.posts_in_window == 0
        assert status.reset_at is None
        assert status.can_post is True

    def test_can_post_is_pure(self, store):
        """Repeated checks without record_post give the same answer."""
        limiter = RateLimiter(store, max_posts=1)
        limiter.record_post(T)

        answers = [limiter.can_post(T + HOUR) for _ in range(5)]

        assert answers == [False] * 5
        assert limiter.status(T + HOUR).posts_in_window == 1

    def test_injected_clock(self, store):
        """Without an explicit time the limiter uses its clock."""
        now = [T]
        limiter = RateLimiter(store, max_posts=1, clock=lambda: now[0])
        limiter.record_post()

        assert limiter.can_post() is False
        now[0] = T + 24 * HOUR + 1
        assert limiter.can_post() is True

    def test_persisted_across_instances(self, tmp_path):
        """A restarted process sees the same window."""
        path = str(tmp_path / "restart.sqlite3")
        first = SalesStore(path)
        RateLimiter(first, max_posts=1).record_post(T)
        first.close()

        second = SalesStore(path)
        try:
            assert RateLimiter(second, max_posts=1).can_post(T + HOUR) is False
        finally:
            second.close()


class TestFailClosed:
    """Store failures are treated as at-limit."""

    def test_broken_store_blocks_posting(self):
        limiter = RateLimiter(BrokenStore(), max_posts=15)

        status = limiter.status(T)

        assert status.can_post is False
        assert status.store_available is False
        assert limiter.can_post(T) is False

    def test_record_post_propagates_store_error(self):
        with pytest.raises(StoreError):
            RateLimiter(BrokenStore()).record_post(T)
