"""LangGraph-based turn runtime.

The runtime takes a user message plus an editor snapshot and drives the model
until it produces proposals:

- read-only context actions are executed locally and fed back (auto-chaining),
- planning actions update the task plan,
- edit, object, asset and completion actions become proposals,
- malformed output is re-prompted, then replaced by one fallback proposal.

The main entry point is ``TurnEngine``; its collaborators are injected via
``EngineDeps``.
"""

from .context import ContextExecutor, WorkspaceContextExecutor
from .engine import TurnEngine
from .models import EngineDeps, ProviderSelection, TurnRequest, TurnResult

__all__ = [
    "ContextExecutor",
    "EngineDeps",
    "ProviderSelection",
    "TurnEngine",
    "TurnRequest",
    "TurnResult",
    "WorkspaceContextExecutor",
]
