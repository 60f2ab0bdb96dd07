"""
Unit tests for the checkpoint endpoints.

Tests cover:
- Creating checkpoints for known and unknown workflows
- Listing and fetching manifests
- Restoring the conversation of a checkpoint
"""

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def test_create_list_get(client: AsyncClient, edit_proposal):
    workflow_id = edit_proposal["workflow_id"]

    created = await client.post("/api/v1/checkpoints", json={"workflow_id": workflow_id, "note": "manual"})

    assert created.status_code == 201
    summary = created.json()
    assert summary["id"].startswith("ckpt_")
    assert summary["workflow_id"] == workflow_id
    assert summary["note"] == "manual"
    # no managed workspace is configured
    assert summary["include_workspace"] is False

    listed = (await client.get("/api/v1/checkpoints", params={"workflow_id": workflow_id})).json()
    assert [c["id"] for c in listed] == [summary["id"]]

    manifest = (await client.get(f"/api/v1/checkpoints/{summary['id']}")).json()
    assert manifest["state"]["workflow_id"] == workflow_id
    assert manifest["state"]["history"][0]["content"] == "Capitalize the last line"

    state = (await client.get(f"/api/v1/workflows/{workflow_id}/task-state")).json()
    assert state["last_checkpoint_id"] == summary["id"]
    assert state["checkpoints"]["count"] == 1


async def test_create_for_unknown_workflow_is_404(client: AsyncClient):
    response = await client.post("/api/v1/checkpoints", json={"workflow_id": "wf_missing"})
    assert response.status_code == 404


async def test_get_unknown_is_404(client: AsyncClient):
    response = await client.get("/api/v1/checkpoints/ckpt_1")
    assert response.status_code == 404
    assert response.json()["error"] == "checkpoint_not_found"


async def test_restore_conversation(client: AsyncClient, provider, chat_payload, edit_proposal):
    workflow_id = edit_proposal["workflow_id"]
    checkpoint = (await client.post("/api/v1/checkpoints", json={"workflow_id": workflow_id})).json()

    provider.replies.append("<complete><summary>Done</summary></complete>")
    await client.post("/api/v1/chat", json=chat_payload("Second message", workflow_id=workflow_id))
    grown = (await client.get(f"/api/v1/workflows/{workflow_id}/task-state")).json()

    response = await client.post(f"/api/v1/checkpoints/{checkpoint['id']}/restore", json={"mode": "conversation"})

    assert response.status_code == 200
    restored = (await client.get(f"/api/v1/workflows/{workflow_id}/task-state")).json()
    assert len(restored["history"]) < len(grown["history"])
    assert restored["history"][-1]["content"] != "Second message"
    assert (await client.get(f"/api/v1/workflows/{workflow_id}")).json()["status"] == "executing"


async def test_restore_unknown_is_404(client: AsyncClient):
    response = await client.post("/api/v1/checkpoints/ckpt_1/restore", json={})
    assert response.status_code == 404
