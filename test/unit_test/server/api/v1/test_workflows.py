import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def test_list_filters_by_project(client: AsyncClient, provider, chat_payload, edit_proposal):
    provider.replies.append("<complete><summary>ok</summary></complete>")
    await client.post("/api/v1/chat", json=chat_payload(project_id="place-2"))

    everything = (await client.get("/api/v1/workflows")).json()
    place_one = (await client.get("/api/v1/workflows", params={"project_id": "place-1"})).json()

    assert len(everything) == 2
    assert [w["id"] for w in place_one] == [edit_proposal["workflow_id"]]


async def test_get_unknown_is_404(client: AsyncClient):
    assert (await client.get("/api/v1/workflows/wf_missing")).status_code == 404
    assert (await client.get("/api/v1/workflows/wf_missing/task-state")).status_code == 404


async def test_task_state_tracks_history(client: AsyncClient, edit_proposal):
    state = (await client.get(f"/api/v1/workflows/{edit_proposal['workflow_id']}/task-state")).json()

    assert state["workflow_id"] == edit_proposal["workflow_id"]
    assert state["history"][0] == {"role": "user", "content": "Capitalize the last line"}
    assert state["runs"][-1]["tool"] == "provider.fake"
    assert state["runs"][-1]["status"] == "succeeded"
