import pytest
from httpx import AsyncClient

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio


async def test_health_reports_orchestrator_wiring(client: AsyncClient):
    response = await client.get("http://localhost/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["storage"] == "memory"
    assert body["providers"] == ["fake"]
    assert body["active_streams"] == 0
    assert body["pending_tasks"] == 0


async def test_health_counts_streams_of_finished_turns(client: AsyncClient, edit_proposal):
    body = (await client.get("/health")).json()
    assert body["active_streams"] == 1


async def test_version(client: AsyncClient):
    response = await client.get("http://localhost/version")
    assert response.status_code == 200
    assert response.json() == {"version": "0.1.0", "schema_version": "v1"}


async def test_openapi_served_under_api_prefix(client: AsyncClient):
    response = await client.get("/api/v1/openapi.json")
    assert response.status_code == 200
    paths = response.json()["paths"]
    assert "/api/v1/chat" in paths
    assert "/api/v1/proposals/{proposal_id}/merge" in paths
