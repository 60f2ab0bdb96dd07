"""Orchestration core: providers, tool protocol, turn runtime and durable state.

Design overview
---------------

A turn-sequence starts with a user message and ends with proposals:

- ``abstraction`` calls an LLM provider with retry and timeout.
- ``tools`` turns the model's reply into exactly one validated action.
- ``runtime.TurnEngine`` chains read-only context actions, maps the final
  action to proposals and falls back deterministically when the model fails.

Durable state lives in ``workflows`` (workflows, steps, proposals, task
state) and ``checkpoints`` (snapshots of task state and workspace files).
``diff`` applies range edits and merges them three-way against live text;
``streaming`` carries progress chunks to pollers and SSE clients.
"""

from .errors import CopilotError, ProtocolError, ProviderError
from .runtime import EngineDeps, TurnEngine, TurnRequest, TurnResult
from .schemas.domain import (
    ChatMode,
    Proposal,
    RestoreMode,
    StepStatus,
    TaskState,
    Workflow,
    WorkflowStatus,
    WorkspaceContext,
)

__all__ = [
    "ChatMode",
    "CopilotError",
    "EngineDeps",
    "Proposal",
    "ProtocolError",
    "ProviderError",
    "RestoreMode",
    "StepStatus",
    "TaskState",
    "TurnEngine",
    "TurnRequest",
    "TurnResult",
    "Workflow",
    "WorkflowStatus",
    "WorkspaceContext",
]
