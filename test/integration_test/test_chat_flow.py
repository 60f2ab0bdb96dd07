"""
End-to-end flow through the HTTP API with the real OpenAI-compatible adapter.

The provider endpoint is served by ``httpx.MockTransport``; everything else
(engine, stores, stream bus, checkpoints, merge) runs for real.
"""

import json
from typing import Any, AsyncGenerator, Dict, List

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from studio_copilot.agent_core.abstraction import ProviderFactory
from studio_copilot.agent_core.abstraction.adapters import OpenAICompatibleProvider
from studio_copilot.core.persistence import InMemoryKeyValueStore
from studio_copilot.server.core.config import Settings
from studio_copilot.server.services.orchestrator import OrchestratorService, get_orchestrator

pytestmark = pytest.mark.asyncio

SCRIPT = "local speed = 16\nreturn speed"
EDIT = json.dumps([{"start": {"line": 0, "character": 14}, "end": {"line": 0, "character": 16}, "text": "24"}])


class FakeCompletions:
    """Serves ``/v1/chat/completions`` from a queue of replies and records requests."""

    def __init__(self) -> None:
        self.replies: List[Any] = []
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        self.requests.append({"headers": dict(request.headers), "body": json.loads(request.content)})
        reply = self.replies.pop(0)
        if isinstance(reply, int):
            return httpx.Response(reply, json={"error": "unavailable"})
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": reply}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5},
            },
        )


@pytest.fixture
def completions() -> FakeCompletions:
    return FakeCompletions()


@pytest_asyncio.fixture
async def client(completions: FakeCompletions, tmp_path) -> AsyncGenerator[AsyncClient, None]:
    from studio_copilot.server.main import app

    transport = httpx.MockTransport(completions)
    factory = ProviderFactory()
    factory.register("openai", lambda **kwargs: OpenAICompatibleProvider(transport=transport, **kwargs))
    service = OrchestratorService(
        config=Settings(_env_file=None, PROVIDER_BACKOFF_INITIAL=0, PROVIDER_BACKOFF_MAX=0),
        kv=InMemoryKeyValueStore(),
        providers=factory,
        checkpoint_root=tmp_path / "checkpoints",
    )
    app.dependency_overrides[get_orchestrator] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as http:
        yield http

    app.dependency_overrides.clear()
    await service.shutdown()


def _chat_body(**overrides: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "project_id": "place-9",
        "message": "Make the player faster",
        "context": {"activeScript": {"path": "src/speed.lua", "text": SCRIPT}},
        "provider": {"name": "openai", "api_key": "sk-test", "base_url": "http://mock/v1", "model": "gpt-test"},
    }
    body.update(overrides)
    return body


async def test_context_then_edit_then_merge(client: AsyncClient, completions: FakeCompletions):
    completions.replies.extend(
        [
            "Let me look first.\n<get_active_script></get_active_script>",
            f"<apply_edit><path>src/speed.lua</path><edits>{EDIT}</edits></apply_edit>",
        ]
    )

    chat = await client.post("/api/v1/chat", json=_chat_body())

    assert chat.status_code == 200, chat.text
    data = chat.json()
    [proposal] = data["proposals"]
    assert proposal["type"] == "edit"
    assert proposal["meta"]["tool"] == "apply_edit"

    # the second provider call saw the context result
    assert len(completions.requests) == 2
    first, second = completions.requests
    assert first["headers"]["authorization"] == "Bearer sk-test"
    assert first["body"]["model"] == "gpt-test"
    assert first["body"]["messages"][0]["role"] == "system"
    assert second["body"]["messages"][-1]["content"].startswith("TOOL_RESULT get_active_script")

    # the file changed in the editor meanwhile: merge onto the live text
    live = SCRIPT + "\nprint(speed)"
    merged = await client.post(
        f"/api/v1/proposals/{proposal['id']}/merge",
        json={"files": [{"path": "src/speed.lua", "current_text": live}]},
    )
    assert merged.status_code == 200
    assert merged.json()["files"][0]["merged_text"] == "local speed = 24\nreturn speed\nprint(speed)"

    applied = await client.post(f"/api/v1/proposals/{proposal['id']}/apply", json={"ok": True})
    assert applied.json()["after"]["status"] == "applied"

    stream = (await client.get(f"/api/v1/stream/{data['workflow_id']}")).json()
    texts = [c["text"] for c in stream["chunks"]]
    assert texts[0] == "planning: started"
    assert "context.result get_active_script" in texts


async def test_server_errors_are_retried(client: AsyncClient, completions: FakeCompletions):
    completions.replies.extend([503, "<complete><summary>Nothing to change</summary></complete>"])

    chat = await client.post("/api/v1/chat", json=_chat_body())

    assert chat.status_code == 200
    assert chat.json()["is_complete"] is True
    assert len(completions.requests) == 2


async def test_client_errors_are_not_retried(client: AsyncClient, completions: FakeCompletions):
    completions.replies.extend([401, "never used"])

    chat = await client.post("/api/v1/chat", json=_chat_body())

    assert chat.status_code == 502
    assert chat.json()["error"] == "provider_http_error"
    assert len(completions.requests) == 1
