"""
Unit tests for the chat endpoint.

Tests cover:
- Proposals produced by a turn-sequence are stored as workflow steps
- Continuing an existing workflow
- Error mapping for unknown workflows, provider failures and protocol failures
"""

import pytest
from httpx import AsyncClient

from studio_copilot.agent_core.errors import ProviderHttpError

pytestmark = pytest.mark.asyncio


async def test_chat_returns_edit_proposal(client: AsyncClient, edit_proposal):
    data = edit_proposal
    assert data["workflow_id"].startswith("wf_")
    assert data["is_complete"] is False
    assert data["fallback"] is False
    [proposal] = data["proposals"]
    assert proposal["type"] == "edit"
    assert proposal["workflow_id"] == data["workflow_id"]
    assert proposal["status"] == "pending"
    change = proposal["files"][0]
    assert change["path"] == "src/main.lua"
    assert change["base_text"] == "a\nb\nc"
    assert "+C" in change["preview"]["unified"]

    workflow = (await client.get(f"/api/v1/workflows/{data['workflow_id']}")).json()
    assert workflow["project_id"] == "place-1"
    assert [s["proposal_id"] for s in workflow["steps"]] == [proposal["id"]]
    assert workflow["steps"][0]["tool_name"] == "show_diff"


async def test_chat_continues_existing_workflow(client: AsyncClient, provider, chat_payload, edit_proposal):
    workflow_id = edit_proposal["workflow_id"]
    provider.replies.append("<complete><summary>All done</summary></complete>")

    response = await client.post("/api/v1/chat", json=chat_payload("Anything else?", workflow_id=workflow_id))

    assert response.status_code == 200
    data = response.json()
    assert data["workflow_id"] == workflow_id
    assert data["is_complete"] is True
    assert data["proposals"][0]["type"] == "completion"
    steps = (await client.get(f"/api/v1/workflows/{workflow_id}")).json()["steps"]
    assert len(steps) == 2
    history = data["task_state"]["history"]
    assert [m["role"] for m in history].count("user") == 2


async def test_chat_unknown_workflow_is_404(client: AsyncClient, provider, chat_payload):
    response = await client.post("/api/v1/chat", json=chat_payload(workflow_id="wf_missing"))
    assert response.status_code == 404
    assert response.json()["error"] == "workflow_not_found"
    assert provider.calls == 0


async def test_chat_provider_error_is_502(client: AsyncClient, provider, chat_payload):
    provider.replies.append(ProviderHttpError("bad key", status=401, provider="fake"))

    response = await client.post("/api/v1/chat", json=chat_payload())

    assert response.status_code == 502
    body = response.json()
    assert body["error"] == "provider_http_error"
    assert "bad key" in body["message"]
    # nothing persisted for a failed turn
    assert (await client.get("/api/v1/proposals")).json() == []

    workflow_id = body["details"]["workflow_id"]
    state = (await client.get(f"/api/v1/workflows/{workflow_id}/task-state")).json()
    assert state["history"] == []
    assert [(r["tool"], r["status"]) for r in state["runs"]] == [("provider.fake", "failed")]


async def test_chat_without_action_and_fallbacks_disabled_is_422(client: AsyncClient, provider, chat_payload):
    provider.replies.extend(["I am not sure what to do."] * 8)

    response = await client.post("/api/v1/chat", json=chat_payload(enable_fallbacks=False))

    assert response.status_code == 422
    assert response.json()["error"] == "protocol_error"


async def test_chat_without_action_falls_back(client: AsyncClient, provider, chat_payload):
    provider.replies.extend(["Sure, I can help."] * 8)

    response = await client.post("/api/v1/chat", json=chat_payload())

    assert response.status_code == 200
    data = response.json()
    assert data["fallback"] is True
    proposal = data["proposals"][0]
    assert proposal["meta"]["fallback"] is True
    assert proposal["files"][0]["diff"]["edits"][0]["text"].startswith("-- Copilot: ")


async def test_chat_rejects_empty_message(client: AsyncClient, chat_payload):
    response = await client.post("/api/v1/chat", json=chat_payload(message=""))
    assert response.status_code == 422
