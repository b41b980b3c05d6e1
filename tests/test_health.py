import pytest
from sqlalchemy.exc import OperationalError


@pytest.mark.anyio("asyncio")
async def test_healthcheck(client):
    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] in {"ok", "degraded"}
    assert payload["stripe"] == {
        "enabled": True,
        "webhook_configured": True,
        "api_key_configured": True,
    }
    assert isinstance(payload["scheduler_config_enabled"], bool)
    assert isinstance(payload["scheduler_running"], bool)
    assert "last_pending_sweep" in payload
    assert payload.get("db_status") in {"ok", "error"}
    assert payload.get("migrations_status") in {"up_to_date", "out_of_date", "unknown"}


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise OperationalError("SELECT 1", {}, Exception("DB down"))

    monkeypatch.setattr("app.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["migrations_status"] == "unknown"
