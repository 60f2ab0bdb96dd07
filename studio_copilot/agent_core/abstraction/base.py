"""Base abstraction for chat-completion providers.

Every backend (OpenAI-compatible endpoints, Gemini, Bedrock) is exposed through
the same contract::

    text = await provider.call(system_prompt, messages, model=..., credentials=..., timeout=...)

Adapters only describe *how* to shape a request and read a response
(``build_request`` / ``parse_response``). Transport, timeout and retry policy
live here so they behave identically across backends:

- 5xx responses, timeouts and transport errors are retried with exponential
  backoff ``min(initial * factor ** attempt, max)`` up to ``max_attempts``.
- 4xx responses fail immediately.
- A reply without text raises ``EmptyResponseError``.

Adapters keep no per-call state; a single instance may serve concurrent calls.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import Field

from ..errors import EmptyResponseError, ProviderError, ProviderHttpError, ProviderTimeoutError
from ..schemas.base import BaseSchema
from ..schemas.domain import ChatMessage

logger = logging.getLogger(__name__)


class ProviderCredentials(BaseSchema):
    """Per-call credentials supplied by the caller (or resolved from settings)."""

    api_key: Optional[str] = Field(default=None, description="API key or bearer token")
    base_url: Optional[str] = Field(default=None, description="Override for the backend base URL")
    region: Optional[str] = Field(default=None, description="Cloud region, for regional backends")


class RetryPolicy(BaseSchema):
    """Exponential backoff policy for retryable provider failures."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_initial: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    backoff_max: float = Field(default=10.0, ge=0)

    def delay(self, attempt: int) -> float:
        return min(self.backoff_initial * (self.backoff_factor**attempt), self.backoff_max)


class TokenUsage(BaseSchema):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class ProviderReply(BaseSchema):
    content: str
    model: str
    provider: str
    attempts: int = 1
    latency_ms: int = 0
    usage: Optional[TokenUsage] = None


class HttpRequestSpec(BaseSchema):
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)


class ChatProviderBase(ABC):
    """Abstract base class for chat-completion provider adapters.

    Subclasses set ``name`` and ``default_model`` and implement
    ``build_request`` and ``parse_response``.

    Args:
        retry: Retry policy for retryable failures.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        sleep: Awaitable sleep used between retries, injectable for tests.
    """

    name: ClassVar[str] = "base"
    default_model: ClassVar[str] = ""

    def __init__(
        self,
        *,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._retry = retry or RetryPolicy()
        self._transport = transport
        self._sleep = sleep

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    @abstractmethod
    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        model: str,
        credentials: ProviderCredentials,
    ) -> HttpRequestSpec:
        """Translate role-tagged history into the backend's native request."""

    @abstractmethod
    def parse_response(self, data: Dict[str, Any]) -> Tuple[str, Optional[TokenUsage]]:
        """Extract the reply text (possibly empty) and token usage from a JSON body."""

    def resolve_model(self, model: Optional[str]) -> str:
        return (model or "").strip() or self.default_model

    def require_api_key(self, credentials: ProviderCredentials) -> str:
        key = (credentials.api_key or "").strip()
        if not key:
            raise ProviderError(f"Missing API key for provider '{self.name}'", provider=self.name, status_code=401)
        return key

    async def call(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        *,
        model: Optional[str] = None,
        credentials: Optional[ProviderCredentials] = None,
        timeout: float = 60.0,
    ) -> str:
        reply = await self.complete(system_prompt, messages, model=model, credentials=credentials, timeout=timeout)
        return reply.content

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        *,
        model: Optional[str] = None,
        credentials: Optional[ProviderCredentials] = None,
        timeout: float = 60.0,
    ) -> ProviderReply:
        """Call the backend with retry and return the full reply.

        Raises:
            ProviderHttpError: Non-2xx status (immediately for 4xx, after retries for 5xx).
            ProviderTimeoutError: The call exceeded ``timeout`` on every attempt.
            EmptyResponseError: The backend answered without any text.
            ProviderError: Transport failures after retries, or a blocked response.
        """
        creds = credentials or ProviderCredentials()
        resolved_model = self.resolve_model(model)
        spec = self.build_request(system_prompt, messages, resolved_model, creds)

        last_error: Optional[ProviderError] = None
        for attempt in range(self._retry.max_attempts):
            label = f"{attempt + 1}/{self._retry.max_attempts}"
            started = time.monotonic()
            try:
                data = await self._post(spec, timeout)
                content, usage = self.parse_response(data)
            except ProviderError as exc:
                if not exc.retryable:
                    logger.error("Provider %s failed attempt=%s: %s", self.name, label, exc)
                    raise
                last_error = exc
            else:
                if not content or not content.strip():
                    raise EmptyResponseError(f"{self.name} returned an empty response", provider=self.name)
                latency_ms = int((time.monotonic() - started) * 1000)
                logger.info(
                    "Provider %s ok attempt=%s model=%s contentLen=%d dtMs=%d",
                    self.name,
                    label,
                    resolved_model,
                    len(content),
                    latency_ms,
                )
                return ProviderReply(
                    content=content,
                    model=resolved_model,
                    provider=self.name,
                    attempts=attempt + 1,
                    latency_ms=latency_ms,
                    usage=usage,
                )

            if attempt >= self._retry.max_attempts - 1:
                break
            delay = self._retry.delay(attempt)
            logger.warning(
                "Provider %s error; retrying in %ss (attempt %s): %s",
                self.name,
                delay,
                label,
                last_error,
            )
            await self._sleep(delay)

        assert last_error is not None
        raise last_error

    async def _post(self, spec: HttpRequestSpec, timeout: float) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await asyncio.wait_for(
                    client.post(spec.url, headers=spec.headers, params=spec.params or None, json=spec.body),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ProviderTimeoutError(
                f"{self.name} request timed out after {timeout}s", provider=self.name
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"{self.name} transport error: {e}", provider=self.name, retryable=True
            ) from e

        if response.status_code >= 400:
            raise ProviderHttpError(
                f"{self.name} error {response.status_code}",
                status=response.status_code,
                provider=self.name,
                details=response.text[:1000],
            )
        try:
            data = response.json()
        except ValueError as e:
            raise EmptyResponseError(f"{self.name} returned a non-JSON body", provider=self.name) from e
        if not isinstance(data, dict):
            raise EmptyResponseError(f"{self.name} returned an unexpected body", provider=self.name)
        return data


def merge_consecutive_roles(messages: Sequence[ChatMessage]) -> List[ChatMessage]:
    """Fold adjacent messages with the same role into one, separated by a blank line.

    Backends that require strictly alternating user/assistant turns use this
    after dropping or relocating system messages.
    """
    merged: List[ChatMessage] = []
    for message in messages:
        if merged and merged[-1].role == message.role:
            merged[-1] = ChatMessage(role=message.role, content=f"{merged[-1].content}\n\n{message.content}")
        else:
            merged.append(message)
    return merged
