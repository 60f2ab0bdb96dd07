import json
from typing import Any, AsyncGenerator, Callable, Dict, List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from studio_copilot.agent_core.abstraction import ChatProviderBase, ProviderFactory, ProviderReply
from studio_copilot.core.persistence import InMemoryKeyValueStore
from studio_copilot.server.services.orchestrator import OrchestratorService


class ScriptedProvider(ChatProviderBase):
    """Provider double answering with queued replies."""

    name = "fake"
    default_model = "fake-model"

    def __init__(self) -> None:
        super().__init__()
        self.replies: List[Any] = []
        self.calls = 0

    def build_request(self, system_prompt, messages, model, credentials):
        raise NotImplementedError

    def parse_response(self, data):
        raise NotImplementedError

    async def complete(self, system_prompt, messages, *, model=None, credentials=None, timeout=60.0) -> ProviderReply:
        self.calls += 1
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return ProviderReply(content=item, model=self.resolve_model(model), provider=self.name)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest_asyncio.fixture
async def orchestrator(provider: ScriptedProvider, tmp_path) -> AsyncGenerator[OrchestratorService, None]:
    factory = ProviderFactory()
    factory.register("fake", lambda **_: provider)
    service = OrchestratorService(
        kv=InMemoryKeyValueStore(),
        providers=factory,
        checkpoint_root=tmp_path / "checkpoints",
    )
    yield service
    await service.shutdown()


@pytest_asyncio.fixture(name="client")
async def client_fixture(orchestrator: OrchestratorService) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app with the orchestrator overridden."""
    from studio_copilot.server.main import app
    from studio_copilot.server.services.orchestrator import get_orchestrator

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
        yield client

    app.dependency_overrides.clear()


ACTIVE_PATH = "src/main.lua"
ACTIVE_TEXT = "a\nb\nc"

# Replaces the last line ("c") of ACTIVE_TEXT with "C".
EDIT_REPLY = "<show_diff><edits>{}</edits></show_diff>".format(
    json.dumps([{"start": {"line": 2, "character": 0}, "end": {"line": 2, "character": 1}, "text": "C"}])
)
RENAME_REPLY = "<rename_instance><path>game.Workspace.Part</path><newName>Door</newName></rename_instance>"


@pytest.fixture
def chat_payload() -> Callable[..., Dict[str, Any]]:
    """Builder for chat request bodies targeting the fake provider."""

    def build(message: str = "Capitalize the last line", **overrides: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "project_id": "place-1",
            "message": message,
            "context": {"activeScript": {"path": ACTIVE_PATH, "text": ACTIVE_TEXT}},
            "provider": {"name": "fake", "api_key": "k"},
        }
        payload.update(overrides)
        return payload

    return build


@pytest_asyncio.fixture
async def edit_proposal(client: AsyncClient, provider: ScriptedProvider, chat_payload) -> Dict[str, Any]:
    """Chat once so the fake provider proposes an edit; returns the chat response body."""
    provider.replies.append(EDIT_REPLY)
    response = await client.post("/api/v1/chat", json=chat_payload(message_created_at="2026-01-01T00:00:00Z"))
    assert response.status_code == 200, response.text
    return response.json()


@pytest_asyncio.fixture
async def object_proposal(client: AsyncClient, provider: ScriptedProvider, chat_payload) -> Dict[str, Any]:
    provider.replies.append(RENAME_REPLY)
    response = await client.post("/api/v1/chat", json=chat_payload("Rename the part"))
    assert response.status_code == 200, response.text
    return response.json()
