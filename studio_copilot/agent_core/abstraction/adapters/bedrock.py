"""Amazon Bedrock Converse adapter.

The Converse API takes the system prompt as a top-level ``system`` list and
requires the conversation to start with a user turn and to alternate between
user and assistant. In-history system messages are appended to the system
block. Authentication uses a Bedrock API key as a bearer token.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from ...schemas.domain import ChatMessage
from ..base import (
    ChatProviderBase,
    HttpRequestSpec,
    ProviderCredentials,
    TokenUsage,
    merge_consecutive_roles,
)

DEFAULT_REGION = "us-east-1"


def to_converse_messages(
    system_prompt: str, messages: Sequence[ChatMessage]
) -> Tuple[List[Dict[str, Any]], List[Dict[str, str]]]:
    system_blocks = [{"text": system_prompt}] if system_prompt.strip() else []
    turns: List[ChatMessage] = []
    for message in messages:
        if message.role == "system":
            system_blocks.append({"text": message.content})
        else:
            turns.append(message)

    turns = merge_consecutive_roles(turns)
    if turns and turns[0].role == "assistant":
        turns.insert(0, ChatMessage(role="user", content="(continuing the conversation)"))

    wire = [{"role": m.role, "content": [{"text": m.content}]} for m in turns]
    return wire, system_blocks


class BedrockProvider(ChatProviderBase):
    name: ClassVar[str] = "bedrock"
    default_model: ClassVar[str] = "anthropic.claude-3-5-sonnet-20240620-v1:0"

    max_tokens: ClassVar[int] = 2048
    temperature: ClassVar[float] = 0.3

    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        model: str,
        credentials: ProviderCredentials,
    ) -> HttpRequestSpec:
        api_key = self.require_api_key(credentials)
        region = (credentials.region or DEFAULT_REGION).strip()
        base_url = (credentials.base_url or f"https://bedrock-runtime.{region}.amazonaws.com").rstrip("/")
        wire, system_blocks = to_converse_messages(system_prompt, messages)
        body: Dict[str, Any] = {
            "messages": wire,
            "inferenceConfig": {"maxTokens": self.max_tokens, "temperature": self.temperature},
        }
        if system_blocks:
            body["system"] = system_blocks
        return HttpRequestSpec(
            url=f"{base_url}/model/{quote(model, safe='')}/converse",
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            body=body,
        )

    def parse_response(self, data: Dict[str, Any]) -> Tuple[str, Optional[TokenUsage]]:
        message = (data.get("output") or {}).get("message") or {}
        parts = message.get("content") or []
        content = "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict)).strip()

        usage = None
        raw = data.get("usage")
        if isinstance(raw, dict):
            usage = TokenUsage(input_tokens=raw.get("inputTokens"), output_tokens=raw.get("outputTokens"))
        return content, usage
