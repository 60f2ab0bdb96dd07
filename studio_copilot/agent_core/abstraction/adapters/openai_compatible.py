"""OpenAI-compatible chat/completions adapters.

OpenAI, OpenRouter and NVIDIA NIM all speak the same wire format: a ``messages``
array where the system prompt is simply the first message. Only the base URL,
default model and a few headers differ.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple

from ...schemas.domain import ChatMessage
from ..base import ChatProviderBase, HttpRequestSpec, ProviderCredentials, TokenUsage


class OpenAICompatibleProvider(ChatProviderBase):
    name: ClassVar[str] = "openai"
    default_model: ClassVar[str] = "gpt-4o-mini"
    default_base_url: ClassVar[str] = "https://api.openai.com/v1"

    def extra_headers(self) -> Dict[str, str]:
        return {}

    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        model: str,
        credentials: ProviderCredentials,
    ) -> HttpRequestSpec:
        api_key = self.require_api_key(credentials)
        base_url = (credentials.base_url or self.default_base_url).rstrip("/")
        wire = [{"role": "system", "content": system_prompt}] if system_prompt.strip() else []
        wire.extend({"role": m.role, "content": m.content} for m in messages)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            **self.extra_headers(),
        }
        return HttpRequestSpec(
            url=f"{base_url}/chat/completions",
            headers=headers,
            body={"model": model, "messages": wire},
        )

    def parse_response(self, data: Dict[str, Any]) -> Tuple[str, Optional[TokenUsage]]:
        choices = data.get("choices") or []
        message = (choices[0] or {}).get("message") if choices else None
        content = (message or {}).get("content") or data.get("output_text") or ""
        usage_raw = data.get("usage")
        usage = None
        if isinstance(usage_raw, dict):
            usage = TokenUsage(
                input_tokens=usage_raw.get("prompt_tokens"),
                output_tokens=usage_raw.get("completion_tokens"),
            )
        return (content if isinstance(content, str) else ""), usage


class OpenRouterProvider(OpenAICompatibleProvider):
    name: ClassVar[str] = "openrouter"
    default_model: ClassVar[str] = "moonshotai/kimi-k2:free"
    default_base_url: ClassVar[str] = "https://openrouter.ai/api/v1"

    def extra_headers(self) -> Dict[str, str]:
        return {"HTTP-Referer": "http://localhost", "X-Title": "Studio Copilot"}


class NvidiaProvider(OpenAICompatibleProvider):
    name: ClassVar[str] = "nvidia"
    default_model: ClassVar[str] = "qwen/qwen3-coder-480b-a35b-instruct"
    default_base_url: ClassVar[str] = "https://integrate.api.nvidia.com/v1"

    def extra_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}
