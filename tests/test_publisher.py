"""Unit tests for the rate-limited publisher."""

import asyncio
import os
import sys

import pytest

# Add project root to path so we can import the package
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from ens_sales_bot.core.events import EventBus, EventType
from ens_sales_bot.core.exceptions import (
    AuthenticationError,
    RemoteRateLimitError,
    TransportError,
)
from ens_sales_bot.core.interfaces import FormattedMessage, PostingClient, SaleEvent
from ens_sales_bot.services.publisher import Publisher
from ens_sales_bot.services.rate_limiter import RateLimiter
from ens_sales_bot.services.store import SalesStore

T = 1_700_000_000.0


class MockPostingClient(PostingClient):
    """Records posts; yields to the loop so concurrent callers interleave."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def post(self, message):
        self.calls.append(message.text)
        await asyncio.sleep(0.01)
        if self.error:
            raise self.error
        return f"tweet-{len(self.calls)}"


@pytest.fixture
def store(tmp_path):
    s = SalesStore(str(tmp_path / "publisher.sqlite3"))
    yield s
    s.close()


def make_publisher(store, client, max_posts=15, enabled=True, event_bus=None):
    limiter = RateLimiter(store, max_posts=max_posts, clock=lambda: T)
    return Publisher(
        store=store,
        rate_limiter=limiter,
        client=client,
        event_bus=event_bus,
        is_enabled=lambda: enabled,
        clock=lambda: T,
    )


def stored_sale(store, tx="0xsale"):
    return store.insert_sale(SaleEvent(
        transaction_hash=tx,
        block_number=23_000_100,
        price_eth=1.0,
        buyer_address="0xb",
        seller_address="0xs",
        name="test.eth",
    ))


class TestSuccessfulPublish:
    """A post inside the limit is recorded everywhere."""

    def test_records_post_and_marks_sale(self, store):
        client = MockPostingClient()
        publisher = make_publisher(store, client)
        sale = stored_sale(store)

        result = asyncio.run(publisher.publish(FormattedMessage("hello"), sale.id))

        assert result.status == "posted"
        assert result.tweet_id == "tweet-1"
        assert store.get_sale(sale.id).posted is True
        assert store.get_post_history()[0].success is True
        assert publisher.rate_limiter.status().posts_in_window == 1

    def test_events_emitted(self, store):
        bus = EventBus()
        publisher = make_publisher(store, MockPostingClient(), event_bus=bus)

        asyncio.run(publisher.publish(FormattedMessage("hello"), None))

        assert [e.type for e in bus.get_history()] == [EventType.POST_PUBLISHED]


class TestRateLimited:
    """Exhausted window skips without calling the client."""

    def test_skipped_without_external_call(self, store):
        client = MockPostingClient()
        publisher = make_publisher(store, client, max_posts=1)
        publisher.rate_limiter.record_post(T - 60)

        result = asyncio.run(publisher.publish(FormattedMessage("hello"), None))

        assert result.status == "rate_limited"
        assert result.skipped is True
        assert client.calls == []
        assert store.get_post_history() == []

    def test_concurrent_publishes_share_last_slot(self, store):
        """Two concurrent publishes with one slot left: one posts, one is rate-limited."""
        client = MockPostingClient()
        publisher = make_publisher(store, client, max_posts=1)

        async def run_test():
            return await asyncio.gather(
                publisher.publish(FormattedMessage("first"), None),
                publisher.publish(FormattedMessage("second"), None),
            )

        results = asyncio.run(run_test())

        assert sorted(r.status for r in results) == ["posted", "rate_limited"]
        assert len(client.calls) == 1
        assert publisher.rate_limiter.status().posts_in_window == 1

    def test_many_concurrent_never_exceed_limit(self, store):
        client = MockPostingClient()
        publisher = make_publisher(store, client, max_posts=3)

        async def run_test():
            return await asyncio.gather(*[
                publisher.publish(FormattedMessage(f"post {i}"), None) for i in range(10)
            ])

        results = asyncio.run(run_test())

        assert sum(1 for r in results if r.success) == 3
        assert sum(1 for r in results if r.status == "rate_limited") == 7


class TestFailedPublish:
    """Failures are recorded but do not consume quota."""

    @pytest.mark.parametrize("error", [
        AuthenticationError("401 Unauthorized"),
        RemoteRateLimitError("429 Too Many Requests"),
        TransportError("connection reset"),
    ])
    def test_failure_recorded_without_quota(self, store, error):
        publisher = make_publisher(store, MockPostingClient(error=error))
        sale = stored_sale(store)

        result = asyncio.run(publisher.publish(FormattedMessage("hello"), sale.id))

        assert result.status == "failed"
        assert type(error).__name__ in result.error
        record = store.get_post_history()[0]
        assert record.success is False
        assert record.error_message.startswith(type(error).__name__)
        assert publisher.rate_limiter.status().posts_in_window == 0
        assert store.get_sale(sale.id).posted is False

    def test_failure_does_not_block_next_post(self, store):
        """With one slot, a failure leaves the slot for the next attempt."""
        client = MockPostingClient(error=TransportError("timeout"))
        publisher = make_publisher(store, client, max_posts=1)

        first = asyncio.run(publisher.publish(FormattedMessage("a"), None))
        client.error = None
        second = asyncio.run(publisher.publish(FormattedMessage("b"), None))

        assert first.status == "failed"
        assert second.status == "posted"


class TestDisabled:
    """The admin toggle blocks posting."""

    def test_disabled_skips(self, store):
        client = MockPostingClient()
        publisher = make_publisher(store, client, enabled=False)

        result = asyncio.run(publisher.publish(FormattedMessage("hello"), None))

        assert result.status == "disabled"
        assert result.skipped is True
        assert client.calls == []
        assert store.get_post_history() == []


class TestAlreadyPosted:
    """A sale marked posted is never tweeted again."""

    def test_concurrent_publishes_of_one_sale_tweet_once(self, store):
        client = MockPostingClient()
        publisher = make_publisher(store, client)
        sale = stored_sale(store)

        async def run_test():
            return await asyncio.gather(
                publisher.publish(FormattedMessage("hello"), sale.id),
                publisher.publish(FormattedMessage("hello"), sale.id),
            )

        results = asyncio.run(run_test())

        assert sorted(r.status for r in results) == ["already_posted", "posted"]
        assert len(client.calls) == 1
        assert publisher.rate_limiter.status().posts_in_window == 1
        assert len(store.get_post_history()) == 1

    def test_skipped_result_carries_tweet_id(self, store):
        client = MockPostingClient()
        publisher = make_publisher(store, client)
        sale = stored_sale(store)
        store.mark_sale_posted(sale.id, "tweet-old")

        result = asyncio.run(publisher.publish(FormattedMessage("hello"), sale.id))

        assert result.status == "already_posted"
        assert result.skipped is True
        assert result.tweet_id == "tweet-old"
        assert client.calls == []


class TestSharedLock:
    """Publishers built over the same lock serialize with each other."""

    def test_two_publishers_share_last_slot(self, store):
        client = MockPostingClient()
        lock = asyncio.Lock()
        limiter = RateLimiter(store, max_posts=1, clock=lambda: T)
        first = Publisher(store, limiter, client, clock=lambda: T, lock=lock)
        second = Publisher(store, RateLimiter(store, max_posts=1, clock=lambda: T), client,
                           clock=lambda: T, lock=lock)

        async def run_test():
            return await asyncio.gather(
                first.publish(FormattedMessage("old"), None),
                second.publish(FormattedMessage("new"), None),
            )

        results = asyncio.run(run_test())

        assert sorted(r.status for r in results) == ["posted", "rate_limited"]
        assert len(client.calls) == 1
