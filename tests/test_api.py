"""Tests for the FastAPI endpoints."""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from htlcbridge.api.app import create_app
from htlcbridge.services.factory import Services


@pytest.fixture
def services(settings, registry, ledgers, quote_engine, coordinator, monitor):
    """Services wired to simulated ledgers."""
    return Services(
        settings=settings,
        registry=registry,
        adapters=ledgers,
        quote_engine=quote_engine,
        coordinator=coordinator,
        monitor=monitor,
    )


@pytest_asyncio.fixture
async def client(services):
    """Create async test client."""
    transport = ASGITransport(app=create_app(services))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def swap_body(accounts):
    return {
        "from_chain": "polygon",
        "to_chain": "stellar",
        "from_token": "matic",
        "to_token": "XLM",
        "amount": "100",
        "initiator": accounts.alice_polygon,
        "recipient": accounts.bob_stellar,
    }


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Test basic health check."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "htlcbridge"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        """Test detailed health check."""
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["chains"] == ["ethereum", "polygon", "stellar"]
        assert data["watched_swaps"] == 0
        assert data["config"]["environment"] == "test"

    @pytest.mark.asyncio
    async def test_not_ready_without_services(self):
        """Endpoints answer 503 until services are attached."""
        app = create_app()
        app.state.services = None
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.get("/api/v1/chains")

        assert response.status_code == 503


class TestChainEndpoints:
    """Tests for the chain listing."""

    @pytest.mark.asyncio
    async def test_list_chains(self, client):
        response = await client.get("/api/v1/chains")

        assert response.status_code == 200
        chains = {c["id"]: c for c in response.json()}
        assert set(chains) == {"ethereum", "polygon", "stellar"}
        assert chains["polygon"]["chain_id"] == 137
        assert chains["stellar"]["available"] is True
        assert "XLM" in [t["symbol"] for t in chains["stellar"]["tokens"]]


class TestQuoteEndpoints:
    """Tests for quoting."""

    @pytest.mark.asyncio
    async def test_quote(self, client):
        response = await client.post(
            "/api/v1/quotes",
            json={
                "from_chain": "polygon",
                "to_chain": "stellar",
                "from_token": "MATIC",
                "to_token": "xlm",
                "amount": "100",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["to_amount"] == "708.3333333"
        assert data["routing_method"] == "static-fallback"
        assert data["fees"]["total"] == "0.20051"

    @pytest.mark.asyncio
    async def test_same_token(self, client):
        response = await client.post(
            "/api/v1/quotes",
            json={
                "from_chain": "polygon",
                "to_chain": "polygon",
                "from_token": "MATIC",
                "to_token": "MATIC",
                "amount": "1",
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "same_token"

    @pytest.mark.asyncio
    async def test_unknown_chain_rejected(self, client):
        response = await client.post(
            "/api/v1/quotes",
            json={
                "from_chain": "solana",
                "to_chain": "stellar",
                "from_token": "SOL",
                "to_token": "XLM",
                "amount": "1",
            },
        )

        assert response.status_code == 422


class TestSwapEndpoints:
    """Tests for the swap lifecycle over HTTP."""

    @pytest.mark.asyncio
    async def test_initiate_and_complete(self, client, swap_body):
        response = await client.post("/api/v1/swaps", json=swap_body)

        assert response.status_code == 201
        data = response.json()
        swap_id = data["swap"]["id"]
        assert data["swap"]["status"] == "locked"
        assert data["swap"]["secret"] is None
        assert data["quote"]["to_amount"] == data["swap"]["to_amount"]

        response = await client.post(
            f"/api/v1/swaps/{swap_id}/complete", json={"secret": data["secret"]}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["secret"] == data["secret"]

        response = await client.post(
            f"/api/v1/swaps/{swap_id}/complete", json={"secret": data["secret"]}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "already_settled"

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client, swap_body):
        swap_id = (await client.post("/api/v1/swaps", json=swap_body)).json()["swap"]["id"]

        response = await client.post(
            f"/api/v1/swaps/{swap_id}/complete", json={"secret": "0x" + "22" * 32}
        )

        assert response.status_code == 409
        assert response.json()["swap_id"] == swap_id

    @pytest.mark.asyncio
    async def test_refund_after_timelock(self, client, swap_body, clock):
        swap_id = (await client.post("/api/v1/swaps", json=swap_body)).json()["swap"]["id"]

        early = await client.post(f"/api/v1/swaps/{swap_id}/refund")
        assert early.status_code == 409
        assert early.json()["error"] == "timelock_not_expired"

        clock.advance(3600)
        response = await client.post(f"/api/v1/swaps/{swap_id}/refund")

        assert response.status_code == 200
        assert response.json()["status"] == "refunded"

    @pytest.mark.asyncio
    async def test_invalid_recipient(self, client, swap_body):
        swap_body["recipient"] = "0x" + "b1" * 20

        response = await client.post("/api/v1/swaps", json=swap_body)

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_recipient"

    @pytest.mark.asyncio
    async def test_timelock_out_of_range(self, client, swap_body):
        swap_body["timelock_seconds"] = 60

        response = await client.post("/api/v1/swaps", json=swap_body)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_unknown_swap(self, client):
        response = await client.get("/api/v1/swaps/0x" + "00" * 32)

        assert response.status_code == 404
        assert response.json()["error"] == "swap_not_found"

    @pytest.mark.asyncio
    async def test_get_swap(self, client, swap_body):
        swap_id = (await client.post("/api/v1/swaps", json=swap_body)).json()["swap"]["id"]

        response = await client.get(f"/api/v1/swaps/{swap_id}", params={"reconcile": "true"})

        assert response.status_code == 200
        assert response.json()["status"] == "locked"


class TestHistoryEndpoints:
    """Tests for listing, stats and export."""

    @pytest.mark.asyncio
    async def test_list_by_address(self, client, swap_body, accounts):
        await client.post("/api/v1/swaps", json=swap_body)
        await client.post("/api/v1/swaps", json=swap_body)

        response = await client.get("/api/v1/swaps", params={"address": accounts.bob_stellar})

        assert response.status_code == 200
        assert response.json()["count"] == 2

        response = await client.get(
            "/api/v1/swaps", params={"address": accounts.bob_stellar, "status": "completed"}
        )
        assert response.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_list_requires_address(self, client):
        response = await client.get("/api/v1/swaps")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stats(self, client, swap_body, accounts):
        data = (await client.post("/api/v1/swaps", json=swap_body)).json()
        await client.post(
            f"/api/v1/swaps/{data['swap']['id']}/complete", json={"secret": data["secret"]}
        )

        response = await client.get(
            "/api/v1/swaps/stats", params={"address": accounts.alice_polygon}
        )

        assert response.status_code == 200
        stats = response.json()
        assert stats["total"] == 1
        assert stats["completed"] == 1
        assert stats["completed_volume"] == {"polygon:MATIC": "100"}

    @pytest.mark.asyncio
    async def test_export_csv(self, client, swap_body, accounts):
        swap_id = (await client.post("/api/v1/swaps", json=swap_body)).json()["swap"]["id"]

        response = await client.get(
            "/api/v1/swaps/export", params={"address": accounts.alice_polygon}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "swaps.csv" in response.headers["content-disposition"]
        assert swap_id in response.text

    @pytest.mark.asyncio
    async def test_export_json(self, client, swap_body, accounts):
        await client.post("/api/v1/swaps", json=swap_body)

        response = await client.get(
            "/api/v1/swaps/export", params={"address": accounts.alice_polygon, "format": "json"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert json.loads(response.text)[0]["toChain"] == "stellar"
