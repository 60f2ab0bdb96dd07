from __future__ import annotations

import httpx
import pytest

from studio_copilot.agent_core.abstraction import ProviderCredentials, RetryPolicy
from studio_copilot.agent_core.abstraction.adapters import (
    BedrockProvider,
    GeminiProvider,
    NvidiaProvider,
    OpenAICompatibleProvider,
    OpenRouterProvider,
)
from studio_copilot.agent_core.abstraction.adapters.bedrock import to_converse_messages
from studio_copilot.agent_core.abstraction.adapters.gemini import to_gemini_contents
from studio_copilot.agent_core.abstraction.base import merge_consecutive_roles
from studio_copilot.agent_core.errors import ProviderError
from studio_copilot.agent_core.schemas.domain import ChatMessage

CREDS = ProviderCredentials(api_key="key-1")

HISTORY = [
    ChatMessage(role="user", content="first"),
    ChatMessage(role="user", content="second"),
    ChatMessage(role="assistant", content="answer"),
    ChatMessage(role="system", content="note"),
    ChatMessage(role="user", content="third"),
]


def test_merge_consecutive_roles_folds_adjacent():
    merged = merge_consecutive_roles(HISTORY[:3])
    assert [(m.role, m.content) for m in merged] == [("user", "first\n\nsecond"), ("assistant", "answer")]


class TestOpenAICompatible:
    def test_system_prompt_is_first_message(self):
        spec = OpenAICompatibleProvider().build_request("SYS", HISTORY, "gpt-x", CREDS)
        assert spec.url == "https://api.openai.com/v1/chat/completions"
        assert spec.body["messages"][0] == {"role": "system", "content": "SYS"}
        assert len(spec.body["messages"]) == len(HISTORY) + 1

    def test_base_url_override_strips_slash(self):
        creds = ProviderCredentials(api_key="k", base_url="http://local:1234/v1/")
        spec = OpenAICompatibleProvider().build_request("", HISTORY, "m", creds)
        assert spec.url == "http://local:1234/v1/chat/completions"
        assert spec.body["messages"][0]["role"] == "user"

    def test_openrouter_and_nvidia_headers(self):
        router = OpenRouterProvider().build_request("S", HISTORY, "m", CREDS)
        assert router.url.startswith("https://openrouter.ai/api/v1")
        assert router.headers["X-Title"] == "Studio Copilot"
        nvidia = NvidiaProvider().build_request("S", HISTORY, "m", CREDS)
        assert nvidia.headers["Accept"] == "application/json"

    def test_parse_response_falls_back_to_output_text(self):
        content, usage = OpenAICompatibleProvider().parse_response({"output_text": "plain"})
        assert content == "plain"
        assert usage is None

    def test_resolve_model_uses_default_for_blank(self):
        assert OpenRouterProvider().resolve_model("  ") == OpenRouterProvider.default_model


class TestGemini:
    def test_contents_alternate_and_use_model_role(self):
        contents = to_gemini_contents(HISTORY)
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert contents[2]["parts"][0]["text"] == "note\n\nthird"

    def test_request_shape(self):
        spec = GeminiProvider().build_request("SYS", HISTORY, "gemini-pro", CREDS)
        assert spec.url.endswith("/gemini-pro:generateContent")
        assert spec.params == {"key": "key-1"}
        assert spec.body["systemInstruction"]["parts"][0]["text"] == "SYS"

    def test_parse_response_with_usage(self):
        data = {
            "candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2},
        }
        content, usage = GeminiProvider().parse_response(data)
        assert content == "ab"
        assert (usage.input_tokens, usage.output_tokens) == (5, 2)

    def test_no_candidates_is_empty(self):
        assert GeminiProvider().parse_response({}) == ("", None)

    def test_safety_block_is_not_retryable(self):
        with pytest.raises(ProviderError) as exc_info:
            GeminiProvider().parse_response({"candidates": [{"finishReason": "SAFETY"}]})
        assert exc_info.value.retryable is False


class TestBedrock:
    def test_converse_messages_move_system_out_and_start_with_user(self):
        history = [ChatMessage(role="assistant", content="hello"), *HISTORY]
        wire, system = to_converse_messages("SYS", history)
        assert system == [{"text": "SYS"}, {"text": "note"}]
        assert wire[0]["role"] == "user"
        roles = [m["role"] for m in wire]
        assert all(a != b for a, b in zip(roles, roles[1:]))

    def test_request_uses_region_and_quoted_model(self):
        creds = ProviderCredentials(api_key="tok", region="eu-west-1")
        spec = BedrockProvider().build_request("SYS", HISTORY, "anthropic.claude:0", creds)
        assert spec.url == "https://bedrock-runtime.eu-west-1.amazonaws.com/model/anthropic.claude%3A0/converse"
        assert spec.headers["Authorization"] == "Bearer tok"

    def test_parse_response(self):
        data = {
            "output": {"message": {"content": [{"text": " hi "}]}},
            "usage": {"inputTokens": 7, "outputTokens": 1},
        }
        content, usage = BedrockProvider().parse_response(data)
        assert content == "hi"
        assert usage.output_tokens == 1


@pytest.mark.asyncio
async def test_gemini_end_to_end_through_mock_transport():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

    provider = GeminiProvider(retry=RetryPolicy(max_attempts=1), transport=httpx.MockTransport(handler))
    creds = ProviderCredentials(api_key="g", base_url="http://mock/models")
    assert await provider.call("S", HISTORY, credentials=creds) == "ok"
    assert seen[0].url.params["key"] == "g"
