"""Runtime dependency bundle, request/result models and LangGraph state.

- ``EngineDeps`` collects the collaborators the turn engine needs.
- ``TurnRequest`` / ``TurnResult`` are the engine's input and output.
- ``_GraphState`` is the mutable state passed between LangGraph nodes during
  one turn-sequence.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    List,
    NotRequired,
    Optional,
    Required,
    TypedDict,
)

from pydantic import Field

from ..abstraction import ProviderCredentials, ProviderFactory, RetryPolicy
from ..schemas.base import BaseSchema
from ..schemas.domain import ChatMessage, ChatMode, Proposal, TaskState, WorkspaceContext, utc_now
from ..streaming import StreamBus
from ..workflows.task_state import TaskStateStore
from ..workspace import LocalWorkspace
from .context import ContextExecutor

DEFAULT_MAX_TURNS = 4
MAX_TURNS_CEILING = 16
CONTEXT_BUDGET = 1
CONTEXT_REQUEST_LIMIT = 1
VALIDATION_RETRY_LIMIT = 2
UNKNOWN_TOOL_RETRY_LIMIT = 1
NO_ACTION_RETRY_LIMIT = 1


class ProviderSelection(BaseSchema):
    name: str = "openai"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    region: Optional[str] = None


CredentialsResolver = Callable[[ProviderSelection], ProviderCredentials]


class TurnRequest(BaseSchema):
    workflow_id: str
    project_id: str
    message: str = Field(min_length=1)
    context: WorkspaceContext = Field(default_factory=WorkspaceContext)
    provider: ProviderSelection = Field(default_factory=ProviderSelection)
    mode: ChatMode = ChatMode.agent
    max_turns: Optional[int] = Field(default=None, ge=1)
    auto_context: bool = True
    auto_approval: bool = False
    enable_fallbacks: bool = True
    message_id: Optional[str] = None
    message_created_at: datetime = Field(default_factory=utc_now)


class TurnResult(BaseSchema):
    proposals: List[Proposal] = Field(default_factory=list)
    task_state: TaskState
    is_complete: bool = False
    turns: int = 0
    fallback: bool = False


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``TurnEngine``.

    Constructed by application wiring code (the server's orchestrator
    service) and by tests with fakes:

    - ``providers``: adapter registry resolved by ``TurnRequest.provider.name``
    - ``task_states``: live task-state store
    - ``stream``: progress bus (keyed by workflow id)
    - ``context_executor``: runs read-only context actions
    - ``workspace``: optional managed workspace used to resolve edit base text
    """

    providers: ProviderFactory
    task_states: TaskStateStore
    stream: StreamBus
    context_executor: ContextExecutor

    workspace: Optional[LocalWorkspace] = None
    retry: Optional[RetryPolicy] = None
    provider_timeout: float = 60.0
    default_max_turns: int = DEFAULT_MAX_TURNS
    resolve_credentials: Optional[CredentialsResolver] = None
    provider_kwargs: Dict[str, Any] | None = None


class _GraphState(TypedDict):
    """Mutable LangGraph state for one turn-sequence.

    Required keys:

    - ``request``: the turn request.
    - ``working``: working copy of the task state, committed at the end.
    - ``prior``: history sent ahead of this sequence's messages.
    - ``messages``: provider messages produced during this sequence.
    - ``turn`` / ``max_turns``: provider calls made and allowed.

    Optional keys hold the last model reply, the protocol result, retry
    counters and the terminal outcome.
    """

    request: Required[TurnRequest]
    working: Required[TaskState]
    prior: Required[List[ChatMessage]]
    messages: Required[List[ChatMessage]]
    turn: Required[int]
    max_turns: Required[int]
    content: NotRequired[Optional[str]]
    result: NotRequired[Any]
    context_used: NotRequired[int]
    context_requests: NotRequired[int]
    validation_errors: NotRequired[int]
    unknown_tool_retries: NotRequired[int]
    no_action_retries: NotRequired[int]
    proposals: NotRequired[List[Any]]
    fallback_reason: NotRequired[Optional[str]]
    route: NotRequired[str]
