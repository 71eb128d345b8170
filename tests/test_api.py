import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tas_chat.app import app
from tas_chat.models.analysis import ResultSet
from tas_chat.orchestrator.orchestrator import get_orchestrator


@pytest.fixture
def services(registry, make_orchestrator, tenants_result):
    infinite = ResultSet(
        columns=["location_name", "colleague_count"],
        rows=[["A", "inf"], ["B", float("inf")], ["C", 2]]
    )
    return make_orchestrator({
        registry.get("active_tenants").template: tenants_result,
        registry.get("colleagues_by_location").template: infinite,
    })


@pytest_asyncio.fixture
async def client(services):
    orchestrator, _ = services
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_blank_message_is_rejected(client):
    response = await client.post("/api/chat/message", json={"session_id": "s1", "message": "   "})
    assert response.status_code == 400
    assert response.json()["detail"] == "Message cannot be empty"


@pytest.mark.asyncio
async def test_message_history_and_clear(client):
    response = await client.post("/api/chat/message", json={"session_id": "s1", "message": "show active tenants"})
    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] == "s1"
    assert body["category"] == "active_tenants"
    assert "2 of 5" in body["insight"]["summary"]
    assert body["result"]["columns"][1] == "tenant_name"

    history = (await client.get("/api/chat/history/s1")).json()
    assert history["message_count"] == 2
    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]

    cleared = await client.delete("/api/chat/session/s1")
    assert cleared.json() == {"message": "Session cleared", "session_id": "s1"}
    assert (await client.get("/api/chat/history/s1")).json()["message_count"] == 0


@pytest.mark.asyncio
async def test_suggestions(client):
    response = await client.get("/api/chat/suggestions")
    assert "Show tenant overview" in response.json()["suggestions"]


@pytest.mark.asyncio
async def test_session_create_and_info(client):
    session_id = (await client.post("/api/session/create")).json()["session_id"]

    info = await client.get(f"/api/session/{session_id}")
    assert info.status_code == 200
    assert info.json()["turn_count"] == 0

    missing = await client.get("/api/session/does-not-exist")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_health_reports_database_status(client, services):
    assert (await client.get("/health")).json()["database_connected"] is True

    services[1].connected = False
    body = (await client.get("/health")).json()
    assert body["database_connected"] is False
    assert body["status"] == "degraded"


@pytest.mark.asyncio
async def test_tables(client):
    response = await client.get("/api/chat/tables")
    assert response.json() == {"tables": ["location", "tenant"]}


@pytest.mark.asyncio
async def test_infinite_values_do_not_break_the_response(client):
    response = await client.post("/api/chat/message", json={"session_id": "s2", "message": "colleagues by location"})

    assert response.status_code == 200
    body = response.json()
    assert body["insight"]["summary"] == "Found 2 colleagues distributed across 3 locations."
    assert body["chart"]["datasets"][0]["data"] == [0.0, 0.0, 2.0]
    assert body["result"]["rows"][1] == ["B", None]
