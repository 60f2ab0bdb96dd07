"""Per-workflow task state store.

``TaskState`` is the live orchestration record of a workflow: conversation
history, tool runs, counters and checkpoint metadata. It is what checkpoints
clone and what a ``conversation`` restore replaces.
"""

from __future__ import annotations

import logging
from typing import Callable, Literal, Optional

from ...core.persistence import KeyValueStore
from ..schemas.domain import ChatMessage, TaskState, utc_now
from .locks import KeyedLocks

logger = logging.getLogger(__name__)

TASK_STATE_PREFIX = "task_state:"

MAX_HISTORY = 40
KEEP_RECENT = 20
SUMMARY_SNIPPET_CHARS = 160
SUMMARY_MAX_CHARS = 2000

StateMutator = Callable[[TaskState], Optional[TaskState]]


def append_history(
    state: TaskState,
    role: Literal["system", "user", "assistant"],
    content: str,
    *,
    max_history: int = MAX_HISTORY,
    keep_recent: int = KEEP_RECENT,
) -> None:
    """Append a message and fold old entries into a summary.

    Once history exceeds ``max_history`` entries, everything but the last
    ``keep_recent`` is replaced by one system message summarizing it.
    """
    state.history.append(ChatMessage(role=role, content=content))

    if len(state.history) <= max_history:
        return
    removed = state.history[: len(state.history) - keep_recent]
    kept = state.history[len(state.history) - keep_recent :]
    lines = [f"[{m.role}] {' '.join(m.content.split())[:SUMMARY_SNIPPET_CHARS]}" for m in removed]
    summary = "\n".join(lines)[:SUMMARY_MAX_CHARS]
    state.history = [
        ChatMessage(role="system", content=f"Summary of earlier conversation (trimmed):\n{summary}"),
        *kept,
    ]


class TaskStateStore:
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._locks = KeyedLocks()

    @staticmethod
    def _key(workflow_id: str) -> str:
        return f"{TASK_STATE_PREFIX}{workflow_id}"

    async def _load(self, workflow_id: str) -> TaskState:
        raw = await self._kv.read(self._key(workflow_id))
        if raw is None:
            return TaskState(workflow_id=workflow_id)
        return TaskState.model_validate(raw)

    async def _save(self, state: TaskState) -> None:
        await self._kv.write(self._key(state.workflow_id), state.model_dump(mode="json"))

    async def get(self, workflow_id: str) -> TaskState:
        """Current state, or a fresh empty one when nothing was stored yet."""
        return await self._load(workflow_id)

    async def update(self, workflow_id: str, fn: StateMutator) -> TaskState:
        """Apply ``fn`` to the stored state under the workflow lock and persist the result.

        ``fn`` may mutate the state in place or return a replacement.
        """
        async with self._locks.for_key(workflow_id):
            state = await self._load(workflow_id)
            result = fn(state)
            if result is not None:
                state = result
            state.updated_at = utc_now()
            await self._save(state)
            return state

    async def replace(self, workflow_id: str, state: TaskState) -> TaskState:
        async with self._locks.for_key(workflow_id):
            replacement = state.model_copy(deep=True, update={"workflow_id": workflow_id, "updated_at": utc_now()})
            await self._save(replacement)
            logger.info("Replaced task state for workflow=%s", workflow_id)
            return replacement
