"""Durable workflow, proposal and task-state stores."""

from .locks import KeyedLocks
from .proposals import ProposalStore
from .store import STEP_TRANSITIONS, WORKFLOW_TRANSITIONS, WorkflowStore
from .task_state import TaskStateStore, append_history

__all__ = [
    "KeyedLocks",
    "ProposalStore",
    "STEP_TRANSITIONS",
    "TaskStateStore",
    "WORKFLOW_TRANSITIONS",
    "WorkflowStore",
    "append_history",
]
