"""End-to-end tests for the AI routing endpoints"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.main import app
from src.core.config import RouterConfig, Settings, StorageConfig
from src.core.exceptions import ProviderErrorKind
from src.models.profile import UserProfile
from src.models.subscription import ProviderName
from src.services.profile_service import StaticProfileProvider
from src.services.service_factory import ServiceFactory

from support import ScriptedAdapter, descriptor, provider_error


HEADERS = {"X-User-Id": "student-1", "X-Tenant-Id": "school-1"}


@pytest.fixture
def adapters():
    return {
        ProviderName.ANTHROPIC: ScriptedAdapter(ProviderName.ANTHROPIC),
        ProviderName.OPENAI: ScriptedAdapter(ProviderName.OPENAI),
    }


@pytest.fixture
def profiles():
    provider = StaticProfileProvider()
    provider.upsert(UserProfile(user_id="tutor-1", tenant_id="school-1", subscription_tier="premium"))
    return provider


def wire_services(ledger, settings, adapters, profiles):
    ServiceFactory.get_accountant(store=ledger, settings=settings)
    orchestrator = ServiceFactory.get_orchestrator(adapters=adapters, settings=settings)
    orchestrator.recorder.retry_delay_seconds = 0
    ServiceFactory.set_profile_provider(profiles)
    return orchestrator


@pytest_asyncio.fixture
async def client(ledger, settings, adapters, profiles):
    """API client over services backed by a temporary ledger"""
    wire_services(ledger, settings, adapters, profiles)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    ServiceFactory.clear_instances()


class TestRouteRequest:
    """Test POST /api/ai/requests"""

    @pytest.mark.asyncio
    async def test_success(self, client):
        response = await client.post(
            "/api/ai/requests",
            json={"service_type": "homework_help", "prompt": "What is 7 x 8?"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["provider"] == "anthropic"
        assert body["model"] == "claude-3-haiku-20240307"
        assert body["attempts"] == [
            {"provider": "anthropic", "model": "claude-3-haiku-20240307", "status": "success",
             "error_kind": None, "detail": None}
        ]
        assert "X-Trace-Id" in response.headers

    @pytest.mark.asyncio
    async def test_premium_profile_gets_premium_model(self, client):
        response = await client.post(
            "/api/ai/requests",
            json={"prompt": "Plan a lesson"},
            headers={"X-User-Id": "tutor-1"},
        )

        assert response.status_code == 200
        assert response.json()["model"] == "claude-3-5-sonnet-20241022"

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, client, adapters):
        payload = {"service_type": "exam_generation", "prompt": "Make a fractions quiz"}
        for _ in range(3):
            assert (await client.post("/api/ai/requests", json=payload, headers=HEADERS)).status_code == 200

        response = await client.post("/api/ai/requests", json=payload, headers=HEADERS)

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "QuotaExceeded"
        assert body["message"] == "quota exceeded, upgrade or wait"
        assert body["details"]["quota"] == {"allowed": False, "remaining": 0, "limit": 3, "tier_name": "free"}
        assert len(adapters[ProviderName.ANTHROPIC].calls) == 3

    @pytest.mark.asyncio
    async def test_chain_exhausted(self, client, adapters):
        adapters[ProviderName.ANTHROPIC].outcomes = [provider_error(ProviderErrorKind.RATE_LIMITED)]
        adapters[ProviderName.OPENAI].outcomes = [
            provider_error(ProviderErrorKind.BALANCE_DEPLETED, ProviderName.OPENAI)
        ]

        response = await client.post("/api/ai/requests", json={"prompt": "Hi"}, headers=HEADERS)

        assert response.status_code == 503
        details = response.json()["details"]
        assert details["error_kind"] == "provider_chain_exhausted"
        assert [a["error_kind"] for a in details["attempts"]] == ["rate_limited", "balance_depleted"]

    @pytest.mark.asyncio
    async def test_invalid_body(self, client):
        response = await client.post("/api/ai/requests", json={"prompt": ""}, headers=HEADERS)

        assert response.status_code == 422


class TestTierMismatch:
    """Test refusal when no eligible model supports the request"""

    @pytest.mark.asyncio
    async def test_images_without_vision_model(self, ledger, temp_dir, profiles):
        settings = Settings(
            storage=StorageConfig(type="filesystem", filesystem_path=str(temp_dir / "ledger")),
            router=RouterConfig(catalog=[descriptor("text-only", ProviderName.ANTHROPIC)]),
        )
        wire_services(ledger, settings, {ProviderName.ANTHROPIC: ScriptedAdapter(ProviderName.ANTHROPIC)}, profiles)
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                response = await ac.post(
                    "/api/ai/requests",
                    json={"prompt": "Describe this", "images": [{"data": "aGk=", "media_type": "image/png"}]},
                    headers=HEADERS,
                )
        finally:
            ServiceFactory.clear_instances()

        assert response.status_code == 403
        assert response.json()["details"]["error_kind"] == "tier_capability_mismatch"


class TestQuotaAndUsage:
    """Test GET /api/ai/quota and /api/ai/usage"""

    @pytest.mark.asyncio
    async def test_quota_status(self, client):
        await client.post("/api/ai/requests", json={"service_type": "chat_message", "prompt": "Hi"}, headers=HEADERS)

        response = await client.get("/api/ai/quota", params={"service_type": "chat_message"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["bucket"] == "chat_messages"
        assert body["period"] == "day"
        assert body["limit"] == 10
        assert body["remaining"] == 9

    @pytest.mark.asyncio
    async def test_usage_history(self, client, adapters):
        adapters[ProviderName.ANTHROPIC].outcomes = [provider_error(ProviderErrorKind.RATE_LIMITED)]
        await client.post("/api/ai/requests", json={"prompt": "Hi"}, headers=HEADERS)
        await ServiceFactory.get_recorder().flush()

        response = await client.get("/api/ai/usage", params={"limit": 5}, headers=HEADERS)

        assert response.status_code == 200
        entries = response.json()
        assert [e["status"] for e in entries] == ["success", "rate_limited"]
        assert entries[0]["tenant_id"] == "school-1"

    @pytest.mark.asyncio
    async def test_corrupt_ledger_is_unavailable_not_crash(self, client, ledger):
        ledger._get_usage_path("student-1").write_text("{truncated\n")

        response = await client.get("/api/ai/usage", headers=HEADERS)

        assert response.status_code == 503
        assert "traceback" not in response.json().get("details", {})

    @pytest.mark.asyncio
    async def test_usage_limit_validated(self, client):
        response = await client.get("/api/ai/usage", params={"limit": 500}, headers=HEADERS)

        assert response.status_code == 422


class TestHealth:
    """Test service endpoints"""

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert set(body["services"]["orchestrator"]["providers"]) == {"anthropic", "openai"}
