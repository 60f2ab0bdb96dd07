"""Google Gemini ``generateContent`` adapter.

Gemini differs from the OpenAI shape in three ways:

- the system prompt travels in a separate ``systemInstruction`` field,
- the assistant role is called ``model``,
- turns must alternate, so consecutive same-role messages are folded.

A candidate stopped for safety reasons is reported as a non-retryable
``ProviderError`` rather than as an empty reply.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple

from ...errors import ProviderError
from ...schemas.domain import ChatMessage
from ..base import (
    ChatProviderBase,
    HttpRequestSpec,
    ProviderCredentials,
    TokenUsage,
    merge_consecutive_roles,
)


def to_gemini_contents(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    """Map role-tagged history to Gemini ``contents``.

    In-history system messages become user turns; the dedicated system prompt
    is handled by ``systemInstruction``.
    """
    relabelled = [
        ChatMessage(role="assistant" if m.role == "assistant" else "user", content=m.content) for m in messages
    ]
    return [
        {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
        for m in merge_consecutive_roles(relabelled)
    ]


class GeminiProvider(ChatProviderBase):
    name: ClassVar[str] = "gemini"
    default_model: ClassVar[str] = "gemini-2.5-flash"
    default_base_url: ClassVar[str] = "https://generativelanguage.googleapis.com/v1beta/models"

    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        model: str,
        credentials: ProviderCredentials,
    ) -> HttpRequestSpec:
        api_key = self.require_api_key(credentials)
        base_url = (credentials.base_url or self.default_base_url).rstrip("/")
        body: Dict[str, Any] = {"contents": to_gemini_contents(messages)}
        if system_prompt.strip():
            body["systemInstruction"] = {"role": "system", "parts": [{"text": system_prompt}]}
        return HttpRequestSpec(
            url=f"{base_url}/{model}:generateContent",
            headers={"Content-Type": "application/json", "x-goog-api-client": "studio-copilot/1.0"},
            params={"key": api_key},
            body=body,
        )

    def parse_response(self, data: Dict[str, Any]) -> Tuple[str, Optional[TokenUsage]]:
        candidates = data.get("candidates") or []
        if not candidates:
            return "", None
        candidate = candidates[0] or {}
        finish_reason = str(candidate.get("finishReason") or "").upper()
        if "SAFETY" in finish_reason:
            raise ProviderError(f"Gemini blocked the response ({finish_reason})", provider=self.name)
        parts = (candidate.get("content") or {}).get("parts") or []
        content = "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict)).strip()

        usage = None
        meta = data.get("usageMetadata")
        if isinstance(meta, dict):
            usage = TokenUsage(
                input_tokens=meta.get("promptTokenCount"),
                output_tokens=meta.get("candidatesTokenCount"),
            )
        return content, usage
