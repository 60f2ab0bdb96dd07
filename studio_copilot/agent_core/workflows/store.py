"""Workflow / step state machine over the key-value persistence boundary.

Workflow statuses move ``planning -> executing -> {paused, completed, failed}``
(``paused`` may resume to ``executing``). Step statuses move
``pending -> approved -> executing -> {completed, failed}``; intermediate
states may be skipped, but a status never moves backwards unless the caller
passes ``allow_regress=True`` (checkpoint restore does).

Every read-modify-write of one workflow runs under that workflow's lock, so
step indices never collide. Operations on a missing workflow or step return
``None`` instead of raising: approval callbacks may race with workflow expiry.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from ...core.persistence import KeyValueStore
from ..errors import IllegalTransitionError
from ..schemas.domain import Step, StepStatus, Workflow, WorkflowStatus, utc_now
from .locks import KeyedLocks

logger = logging.getLogger(__name__)

WORKFLOW_PREFIX = "workflow:"

WORKFLOW_TRANSITIONS: Dict[WorkflowStatus, FrozenSet[WorkflowStatus]] = {
    WorkflowStatus.planning: frozenset(
        {WorkflowStatus.executing, WorkflowStatus.paused, WorkflowStatus.completed, WorkflowStatus.failed}
    ),
    WorkflowStatus.executing: frozenset({WorkflowStatus.paused, WorkflowStatus.completed, WorkflowStatus.failed}),
    WorkflowStatus.paused: frozenset({WorkflowStatus.executing, WorkflowStatus.completed, WorkflowStatus.failed}),
    WorkflowStatus.completed: frozenset(),
    WorkflowStatus.failed: frozenset(),
}

STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.pending: frozenset(
        {StepStatus.approved, StepStatus.executing, StepStatus.completed, StepStatus.failed}
    ),
    StepStatus.approved: frozenset({StepStatus.executing, StepStatus.completed, StepStatus.failed}),
    StepStatus.executing: frozenset({StepStatus.completed, StepStatus.failed}),
    StepStatus.completed: frozenset(),
    StepStatus.failed: frozenset(),
}

_STEP_PATCH_FIELDS = frozenset({"status", "error", "proposal_id", "tool_name"})
_WORKFLOW_PATCH_FIELDS = frozenset({"status", "context", "current_step", "last_checkpointed_message_at"})


def check_workflow_transition(current: WorkflowStatus, target: WorkflowStatus) -> None:
    if current != target and target not in WORKFLOW_TRANSITIONS[current]:
        raise IllegalTransitionError("workflow", current.value, target.value)


def check_step_transition(current: StepStatus, target: StepStatus) -> None:
    if current != target and target not in STEP_TRANSITIONS[current]:
        raise IllegalTransitionError("step", current.value, target.value)


class WorkflowStore:
    """Owned access to workflow records.

    Args:
        kv: Persistence collaborator; workflows are stored under ``workflow:<id>``.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._locks = KeyedLocks()

    @staticmethod
    def _key(workflow_id: str) -> str:
        return f"{WORKFLOW_PREFIX}{workflow_id}"

    async def _load(self, workflow_id: str) -> Optional[Workflow]:
        raw = await self._kv.read(self._key(workflow_id))
        if raw is None:
            return None
        return Workflow.model_validate(raw)

    async def _save(self, workflow: Workflow) -> None:
        await self._kv.write(self._key(workflow.id), workflow.model_dump(mode="json"))

    async def create(self, project_id: str, *, context: Optional[Dict[str, Any]] = None) -> Workflow:
        workflow = Workflow(project_id=project_id, context=dict(context or {}))
        await self._save(workflow)
        logger.info("Created workflow id=%s project=%s", workflow.id, project_id)
        return workflow

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        return await self._load(workflow_id)

    async def list(self, project_id: Optional[str] = None) -> List[Workflow]:
        """Workflows, newest first, optionally restricted to one project."""
        out: List[Workflow] = []
        for key in await self._kv.keys(WORKFLOW_PREFIX):
            workflow = await self._load(key[len(WORKFLOW_PREFIX) :])
            if workflow is None:
                continue
            if project_id is None or workflow.project_id == project_id:
                out.append(workflow)
        out.sort(key=lambda w: w.created_at, reverse=True)
        return out

    async def append_step(
        self,
        workflow_id: str,
        *,
        proposal_id: Optional[str] = None,
        tool_name: Optional[str] = None,
        status: StepStatus = StepStatus.pending,
    ) -> Optional[Step]:
        async with self._locks.for_key(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow is None:
                logger.warning("append_step on missing workflow id=%s", workflow_id)
                return None
            now = utc_now()
            step = Step(
                index=len(workflow.steps),
                status=status,
                proposal_id=proposal_id,
                tool_name=tool_name,
                created_at=now,
                updated_at=now,
            )
            workflow.steps.append(step)
            workflow.current_step = step.index
            workflow.updated_at = now
            await self._save(workflow)
            return step

    async def update_step(
        self,
        workflow_id: str,
        step_id: str,
        patch: Mapping[str, Any],
        *,
        allow_regress: bool = False,
    ) -> Optional[Step]:
        """Merge ``patch`` (status / error / proposal_id / tool_name) into a step.

        Raises:
            IllegalTransitionError: If the patch moves the status backwards and
                ``allow_regress`` is False.
        """
        unknown = set(patch) - _STEP_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Unsupported step fields: {sorted(unknown)}")
        async with self._locks.for_key(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow is None:
                return None
            step = next((s for s in workflow.steps if s.id == step_id), None)
            if step is None:
                return None
            if "status" in patch:
                target = StepStatus(patch["status"])
                if not allow_regress:
                    check_step_transition(step.status, target)
                step.status = target
            for name in ("error", "proposal_id", "tool_name"):
                if name in patch:
                    setattr(step, name, patch[name])
            step.updated_at = utc_now()
            workflow.updated_at = step.updated_at
            await self._save(workflow)
            return step

    async def find_step_by_proposal(self, workflow_id: str, proposal_id: str) -> Optional[Step]:
        workflow = await self._load(workflow_id)
        if workflow is None:
            return None
        return next((s for s in workflow.steps if s.proposal_id == proposal_id), None)

    async def set_status(
        self, workflow_id: str, status: WorkflowStatus, *, allow_regress: bool = False
    ) -> Optional[Workflow]:
        return await self.update(workflow_id, {"status": status}, allow_regress=allow_regress)

    async def update(
        self,
        workflow_id: str,
        patch: Mapping[str, Any],
        *,
        allow_regress: bool = False,
    ) -> Optional[Workflow]:
        unknown = set(patch) - _WORKFLOW_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Unsupported workflow fields: {sorted(unknown)}")
        async with self._locks.for_key(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow is None:
                return None
            if "status" in patch:
                target = WorkflowStatus(patch["status"])
                if not allow_regress:
                    check_workflow_transition(workflow.status, target)
                workflow.status = target
            if "context" in patch:
                workflow.context = dict(patch["context"] or {})
            if "current_step" in patch:
                workflow.current_step = int(patch["current_step"])
            if "last_checkpointed_message_at" in patch:
                workflow.last_checkpointed_message_at = patch["last_checkpointed_message_at"]
            workflow.updated_at = utc_now()
            await self._save(workflow)
            return workflow

    async def mark_checkpointed(self, workflow_id: str, message_created_at: datetime) -> bool:
        """Record that a checkpoint was taken for the message created at ``message_created_at``.

        Returns True when the timestamp is newly recorded, False when it was
        already the last checkpointed message (or the workflow is missing).
        """
        async with self._locks.for_key(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow is None:
                return False
            if workflow.last_checkpointed_message_at == message_created_at:
                return False
            workflow.last_checkpointed_message_at = message_created_at
            workflow.updated_at = utc_now()
            await self._save(workflow)
            return True

    async def clear_checkpointed(self, workflow_id: str, message_created_at: datetime) -> None:
        """Undo ``mark_checkpointed`` after a failed checkpoint so a retry is not deduplicated away."""
        async with self._locks.for_key(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow is None or workflow.last_checkpointed_message_at != message_created_at:
                return
            workflow.last_checkpointed_message_at = None
            await self._save(workflow)
