"""Tests for the admin and ingestion HTTP API."""

from __future__ import annotations

import httpx
import pytest

from fomo_relay.api import create_app
from fomo_relay.config import Settings
from fomo_relay.pipeline import Pipeline
from fomo_relay.storage.database import DatabaseManager

KLED_ALERT = "KLED at $31.2m MC 🟢 @frankdegods bought $9,955.55"


@pytest.fixture
def settings(monkeypatch) -> Settings:
    for name in ("REDIS_URL", "TELEGRAM_BOT_TOKEN", "HELIUS_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TELEGRAM_COMMANDS_ENABLED", "false")
    monkeypatch.setenv("RETRY_DELAY_SECONDS", "60")
    return Settings(_env_file=None)


@pytest.fixture
async def pipeline(settings: Settings, db: DatabaseManager, transport) -> Pipeline:
    pipeline = Pipeline(settings, transport=transport, db_manager=db)
    await pipeline.start()
    yield pipeline
    await pipeline.stop()


@pytest.fixture
async def client(pipeline: Pipeline) -> httpx.AsyncClient:
    app = create_app(pipeline, manage_lifecycle=False)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://relay.test") as client:
        yield client


async def seed_alert(client: httpx.AsyncClient, pipeline: Pipeline) -> int:
    await pipeline.subscriptions.register_user(1, username="alice")
    await pipeline.known_tokens.add("KLED", "KLEDMINT")
    response = await client.post("/api/notifications", json={"message": KLED_ALERT})
    return response.json()["notification_id"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_running(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["pending_retries"] == 0

    @pytest.mark.asyncio
    async def test_routes_unavailable_when_stopped(self, settings: Settings, db: DatabaseManager, transport) -> None:
        app = create_app(Pipeline(settings, transport=transport, db_manager=db), manage_lifecycle=False)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://relay.test") as client:
            health = await client.get("/health")
            users = await client.get("/api/users")

        assert health.json()["status"] == "degraded"
        assert users.status_code == 503


class TestNotifications:
    @pytest.mark.asyncio
    async def test_create(self, client: httpx.AsyncClient, pipeline: Pipeline) -> None:
        await pipeline.subscriptions.register_user(1)
        await pipeline.known_tokens.add("KLED", "KLEDMINT")

        response = await client.post("/api/notifications", json={"message": KLED_ALERT})

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "sent"
        assert body["ticker"] == "KLED"
        assert body["trader"] == "frankdegods"
        assert body["contract_address"] == "KLEDMINT"
        assert body["source"] == "KNOWN_TOKEN"
        assert body["sent"] == 1

    @pytest.mark.asyncio
    async def test_create_without_recipients(self, client: httpx.AsyncClient, pipeline: Pipeline) -> None:
        await pipeline.known_tokens.add("KLED", "KLEDMINT")

        response = await client.post("/api/notifications", json={"message": KLED_ALERT})

        assert response.json()["status"] == "no_recipients"
        assert response.json()["notification_id"] is None

    @pytest.mark.asyncio
    async def test_empty_message(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/notifications", json={"message": "   "})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list(self, client: httpx.AsyncClient, pipeline: Pipeline) -> None:
        notification_id = await seed_alert(client, pipeline)

        response = await client.get("/api/notifications", params={"limit": 10})

        (notification,) = response.json()
        assert notification["id"] == notification_id
        assert notification["recipient_count"] == 1
        assert notification["has_contract_address"] is True

    @pytest.mark.asyncio
    async def test_manual_edit(self, client: httpx.AsyncClient, pipeline: Pipeline, transport) -> None:
        notification_id = await seed_alert(client, pipeline)

        response = await client.post(
            f"/api/notifications/{notification_id}/edit",
            json={"contract_address": "0xNEW", "chain": "bsc"},
        )

        assert response.json() == {"notification_id": notification_id, "edited": 1, "failed": 0, "total": 1}
        assert "dexscreener.com/bsc/0xNEW" in transport.edits[-1][2]

    @pytest.mark.asyncio
    async def test_edit_errors(self, client: httpx.AsyncClient) -> None:
        missing = await client.post("/api/notifications/999/edit", json={"contract_address": "X"})
        bad_chain = await client.post("/api/notifications/999/edit", json={"contract_address": "X", "chain": "tron"})
        empty = await client.post("/api/notifications/999/edit", json={"contract_address": ""})

        assert missing.status_code == 404
        assert bad_chain.status_code == 400
        assert empty.status_code == 422


class TestKnownTokens:
    @pytest.mark.asyncio
    async def test_crud(self, client: httpx.AsyncClient) -> None:
        created = await client.post(
            "/api/known-tokens",
            json={"symbol": "kled", "contract_address": "MINT", "min_market_cap": "1000000", "chain": "SOL"},
        )
        token_id = created.json()["id"]
        duplicate = await client.post("/api/known-tokens", json={"symbol": "KLED", "contract_address": "X"})
        updated = await client.put(
            f"/api/known-tokens/{token_id}", json={"symbol": "KLED", "contract_address": "MINT2"}
        )
        listed = await client.get("/api/known-tokens")
        deleted = await client.delete(f"/api/known-tokens/{token_id}")
        deleted_again = await client.delete(f"/api/known-tokens/{token_id}")

        assert created.status_code == 201
        assert created.json()["symbol"] == "KLED"
        assert duplicate.status_code == 409
        assert updated.json()["contract_address"] == "MINT2"
        assert [t["symbol"] for t in listed.json()] == ["KLED"]
        assert deleted.status_code == 204
        assert deleted_again.status_code == 404

    @pytest.mark.asyncio
    async def test_update_missing(self, client: httpx.AsyncClient) -> None:
        response = await client.put("/api/known-tokens/999", json={"symbol": "X", "contract_address": "Y"})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_negative_floor_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/known-tokens", json={"symbol": "X", "contract_address": "Y", "min_market_cap": -1}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_refresh_cache(self, client: httpx.AsyncClient, pipeline: Pipeline) -> None:
        await pipeline.known_tokens.add("WIF", "WIFMINT")

        response = await client.post("/api/known-tokens/refresh-cache")

        assert response.json() == {"count": 1}


class TestTokenCache:
    @pytest.mark.asyncio
    async def test_seed_cache(self, client: httpx.AsyncClient, pipeline: Pipeline) -> None:
        response = await client.post("/api/token-cache", json={"ticker": "KLED", "contract_address": " MINT "})

        assert response.status_code == 201
        assert response.json() == {"ticker": "KLED", "contract_address": "MINT", "chain": "SOL"}
        entry = await pipeline.token_cache.get("KLED")
        assert entry is not None
        assert entry.contract_address == "MINT"


class TestUsersAndTraders:
    @pytest.mark.asyncio
    async def test_users(self, client: httpx.AsyncClient, pipeline: Pipeline) -> None:
        await pipeline.subscriptions.register_user(1, username="alice")

        listed = await client.get("/api/users")
        deactivated = await client.post("/api/users/1/deactivate")
        missing = await client.post("/api/users/2/deactivate")

        assert [u["chat_id"] for u in listed.json()] == [1]
        assert deactivated.json() == {"chat_id": 1, "is_active": False}
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_traders(self, client: httpx.AsyncClient, pipeline: Pipeline) -> None:
        await seed_alert(client, pipeline)

        response = await client.get("/api/traders")

        (trader,) = response.json()
        assert trader["handle"] == "frankdegods"
        assert trader["follower_count"] == 1
