"""API tests for the admin surface, driven through FastAPI's TestClient."""

import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add project root to path so we can import the package
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from ens_sales_bot.bot_manager import BotManager, set_bot_manager
from ens_sales_bot.config import BotConfig, ConfigManager
from ens_sales_bot.core.events import EventBus
from ens_sales_bot.core.interfaces import SaleEvent, SalesSource
from ens_sales_bot.main import app
from ens_sales_bot.services.twitter_client import DryRunPostingClient


def make_sale(tx, block, price_eth=1.0):
    return SaleEvent(
        transaction_hash=tx,
        block_number=block,
        price_eth=price_eth,
        price_usd=price_eth * 4000,
        buyer_address="0xbuyer000000000000000000000000000000000001",
        seller_address="0xseller00000000000000000000000000000000002",
        name=f"{tx[2:]}.eth",
        block_timestamp="2025-06-01T12:00:00.000Z",
    )


class StaticSource(SalesSource):
    """Always returns the same batch above the cursor."""

    def __init__(self, sales=None):
        self.sales = sales or []

    async def fetch_sales_since(self, cursor):
        sales = [s for s in self.sales if s.block_number > cursor]
        return sales, max([cursor] + [s.block_number for s in sales])


@pytest.fixture
def make_client(tmp_path):
    clients = []

    def factory(sales=None, **config):
        settings = dict(
            moralis_api_key="test-key",
            database_path=str(tmp_path / "api.sqlite3"),
            dry_run=True,
            poll_interval_seconds=60,
        )
        settings.update(config)
        manager = BotManager(
            event_bus=EventBus(),
            config_manager=ConfigManager(BotConfig(**settings)),
            source=StaticSource(sales),
            posting_client=DryRunPostingClient(),
        )
        set_bot_manager(manager)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)
    set_bot_manager(None)


class TestSchedulerEndpoints:
    """Lifecycle over HTTP."""

    def test_initial_status(self, make_client):
        client = make_client()

        response = client.get("/api/scheduler/status")

        assert response.status_code == 200
        assert response.json()["status"] == "stopped"
        assert response.json()["interval_seconds"] == 60

    def test_start_and_stop(self, make_client):
        client = make_client()

        assert client.post("/api/scheduler/start").json()["status"]["status"] == "running"
        assert client.post("/api/scheduler/start").status_code == 400
        assert client.post("/api/scheduler/stop").json()["status"]["status"] == "stopped"

    def test_force_stop_and_reset(self, make_client):
        client = make_client()

        client.post("/api/scheduler/force-stop")
        assert client.post("/api/scheduler/start").status_code == 400
        assert client.post("/api/scheduler/sync").status_code == 400

        assert client.post("/api/scheduler/reset").json()["status"]["status"] == "stopped"
        assert client.post("/api/scheduler/reset-errors").status_code == 200

    def test_start_rejected_without_moralis_key(self, make_client):
        client = make_client(moralis_api_key="")

        response = client.post("/api/scheduler/start")

        assert response.status_code == 400
        assert "Moralis" in response.json()["detail"]

    def test_sync_ingests_sales(self, make_client):
        client = make_client(sales=[
            make_sale("0xa", 23_000_010, price_eth=0.01),
            make_sale("0xb", 23_000_020),
        ])

        body = client.post("/api/scheduler/sync").json()

        assert body["success"] is True
        assert body["result"]["accepted"] == 1
        assert body["result"]["below_price"] == 1
        assert body["status"]["cursor"] == 23_000_020

        recent = client.get("/api/sales/recent").json()["sales"]
        assert [s["transaction_hash"] for s in recent] == ["0xb"]


class TestSalesEndpoints:
    """Manual posting, preview and history."""

    def test_manual_post_once(self, make_client):
        client = make_client(sales=[make_sale("0xa", 23_000_010)])
        client.post("/api/scheduler/sync")
        sale_id = client.get("/api/sales/unposted").json()["sales"][0]["id"]

        first = client.post(f"/api/sales/{sale_id}/post")
        second = client.post(f"/api/sales/{sale_id}/post")

        assert first.json()["status"] == "posted"
        assert first.json()["tweet_id"].startswith("dry-run-")
        assert second.status_code == 409
        assert client.get("/api/sales/unposted").json()["sales"] == []
        assert client.get("/api/rate-limit").json()["posts_in_window"] == 1

        history = client.get("/api/posts/history").json()["posts"]
        assert len(history) == 1
        assert history[0]["success"] is True

    def test_manual_post_respects_limit(self, make_client):
        client = make_client(
            sales=[make_sale("0xa", 23_000_010), make_sale("0xb", 23_000_011)],
            daily_post_limit=1,
        )
        client.post("/api/scheduler/sync")
        ids = [s["id"] for s in client.get("/api/sales/unposted").json()["sales"]]

        results = [client.post(f"/api/sales/{i}/post").json() for i in ids]

        assert [r["status"] for r in results] == ["posted", "rate_limited"]
        assert results[1]["rate_limit"]["limit_reached"] is True

    def test_twitter_disabled(self, make_client):
        client = make_client(sales=[make_sale("0xa", 23_000_010)], twitter_enabled=False)
        client.post("/api/scheduler/sync")
        sale_id = client.get("/api/sales/unposted").json()["sales"][0]["id"]

        assert client.post(f"/api/sales/{sale_id}/post").json()["status"] == "disabled"

    def test_unknown_sale(self, make_client):
        client = make_client()

        assert client.post("/api/sales/999/post").status_code == 404
        assert client.get("/api/sales/999/preview").status_code == 404

    def test_preview(self, make_client):
        client = make_client(sales=[make_sale("0xa", 23_000_010, price_eth=3.0)])
        client.post("/api/scheduler/sync")
        sale_id = client.get("/api/sales/recent").json()["sales"][0]["id"]

        preview = client.get(f"/api/sales/{sale_id}/preview").json()

        assert "Price: 3.00 ETH ($12,000.00)" in preview["tweet"]
        assert preview["errors"] == []
        assert preview["tier"]["level"] == 2
        assert preview["auto_post_eligible"] is True

    def test_reset_posts(self, make_client):
        client = make_client(sales=[make_sale("0xa", 23_000_010)])
        client.post("/api/scheduler/sync")
        sale_id = client.get("/api/sales/recent").json()["sales"][0]["id"]
        client.post(f"/api/sales/{sale_id}/post")

        response = client.post("/api/admin/reset-posts")

        assert response.json() == {"success": True, "deleted": 1}
        assert client.get("/api/rate-limit").json()["posts_in_window"] == 0
        assert client.get("/api/posts/history").json()["posts"] == []


class TestTierEndpoints:
    """Reading and replacing price tiers."""

    VALID = [
        {"level": 1, "min_usd": 0, "max_usd": 5000, "min_eth": 0.2},
        {"level": 2, "min_usd": 5000, "max_usd": 50000, "min_eth": 0.6},
        {"level": 3, "min_usd": 50000, "max_usd": 200000, "min_eth": 2},
        {"level": 4, "min_usd": 200000, "max_usd": None, "min_eth": 10},
    ]

    def test_list_by_category(self, make_client):
        client = make_client()

        everything = client.get("/api/tiers").json()["tiers"]
        sales = client.get("/api/tiers", params={"category": "sales"}).json()["tiers"]

        assert len(everything) == 12
        assert [t["level"] for t in sales] == [1, 2, 3, 4]

    def test_replace_valid(self, make_client):
        client = make_client()

        response = client.put("/api/tiers/sales", json={"tiers": self.VALID})

        assert response.status_code == 200
        sales = client.get("/api/tiers", params={"category": "sales"}).json()["tiers"]
        assert [t["min_eth"] for t in sales] == [0.2, 0.6, 2, 10]

    def test_invalid_rejected_and_unchanged(self, make_client):
        client = make_client()
        before = client.get("/api/tiers", params={"category": "sales"}).json()["tiers"]
        gap = [dict(t) for t in self.VALID]
        gap[1]["min_usd"] = 6000

        response = client.put("/api/tiers/sales", json={"tiers": gap})

        assert response.status_code == 400
        assert "gap" in response.json()["detail"]
        assert client.get("/api/tiers", params={"category": "sales"}).json()["tiers"] == before

    def test_unknown_category(self, make_client):
        client = make_client()

        assert client.put("/api/tiers/mints", json={"tiers": self.VALID}).status_code == 422


class TestConfigEndpoints:
    """Config read/update rules."""

    def test_get_hides_secrets(self, make_client):
        client = make_client()

        config = client.get("/api/config").json()

        assert "moralis_api_key" not in config
        assert config["moralis_configured"] is True

    def test_update_when_stopped(self, make_client):
        client = make_client()

        response = client.put("/api/config", json={"daily_post_limit": 3, "min_price_eth": 0.2})

        assert response.status_code == 200
        assert response.json()["config"]["daily_post_limit"] == 3
        assert client.get("/api/rate-limit").json()["limit"] == 3

    def test_update_refused_while_running(self, make_client):
        client = make_client()
        client.post("/api/scheduler/start")

        response = client.put("/api/config", json={"daily_post_limit": 3})

        assert response.status_code == 400
        client.post("/api/scheduler/stop")

    def test_twitter_connection_check(self, make_client):
        client = make_client()

        response = client.get("/api/twitter/test")

        assert response.status_code == 200
        assert response.json() == {"success": True, "username": "dry-run", "id": "0"}

    def test_stats(self, make_client):
        client = make_client(sales=[make_sale("0xa", 23_000_010)])
        client.post("/api/scheduler/sync")

        stats = client.get("/api/stats").json()

        assert stats["total_sales"] == 1
        assert stats["unposted_sales"] == 1
        assert stats["rate_limit"]["limit"] == 15
        assert stats["dry_run"] is True


class TestWebSocket:
    """Event stream."""

    def test_state_sent_on_connect(self, make_client):
        client = make_client()

        with client.websocket_connect("/ws") as websocket:
            message = websocket.receive_json()

        assert message["type"] == "state"
        assert message["status"] == "stopped"
