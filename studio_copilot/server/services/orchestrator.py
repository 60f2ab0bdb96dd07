"""
Orchestrator Service.

Business logic behind the API: chat turns, proposal application and merge,
checkpoints, workflows and progress polling.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from studio_copilot.agent_core.abstraction import (
    ProviderCredentials,
    ProviderFactory,
    RetryPolicy,
    build_default_factory,
)
from studio_copilot.agent_core.checkpoints import CheckpointManager
from studio_copilot.agent_core.diff import apply_range_edits, check_stale, diff3_merge
from studio_copilot.agent_core.errors import (
    CheckpointNotFoundError,
    CopilotError,
    MergeConflictError,
    ProposalNotFoundError,
    WorkflowNotFoundError,
)
from studio_copilot.agent_core.runtime import (
    ContextExecutor,
    EngineDeps,
    ProviderSelection,
    TurnEngine,
    TurnRequest,
    WorkspaceContextExecutor,
)
from studio_copilot.agent_core.runtime import scene as scene_graph
from studio_copilot.agent_core.schemas.domain import (
    CheckpointManifest,
    CheckpointSummary,
    EditProposal,
    ObjectProposal,
    Proposal,
    ProposalEvent,
    ProposalStatus,
    RestoreMode,
    StepStatus,
    TaskState,
    ToolRun,
    ToolRunStatus,
    Workflow,
    WorkflowStatus,
    utc_now,
)
from studio_copilot.agent_core.streaming import StreamBus, StreamSlice
from studio_copilot.agent_core.workflows import KeyedLocks, ProposalStore, TaskStateStore, WorkflowStore
from studio_copilot.agent_core.workspace import LocalWorkspace
from studio_copilot.core.logging_config import get_logger
from studio_copilot.core.persistence import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore
from studio_copilot.server.core.config import Settings, settings
from studio_copilot.server.schemas import (
    ApplyRequest,
    ApplyResponse,
    ChatRequest,
    ChatResponse,
    CheckpointCreate,
    HealthStatus,
    MergeFileResult,
    MergeRequest,
    MergeResponse,
    apply_event_payload,
)

logger = get_logger(__name__)


class OrchestratorService:
    """
    Service layer wiring the orchestration core for the API.

    Owns the stores, the stream bus, the checkpoint manager and the turn
    engine, and implements the multi-step operations the endpoints expose
    (chat turn, apply, merge, checkpoint, restore).
    """

    def __init__(
        self,
        *,
        config: Optional[Settings] = None,
        kv: Optional[KeyValueStore] = None,
        providers: Optional[ProviderFactory] = None,
        workspace: Optional[LocalWorkspace] = None,
        stream: Optional[StreamBus] = None,
        context_executor: Optional[ContextExecutor] = None,
        checkpoint_root: Optional[str | Path] = None,
    ) -> None:
        cfg = config or settings
        self.config = cfg
        self.kv: KeyValueStore = kv or (
            JsonFileKeyValueStore(cfg.data_dir) if cfg.data_dir else InMemoryKeyValueStore()
        )
        self.workflows = WorkflowStore(self.kv)
        self.proposals = ProposalStore(self.kv)
        self.task_states = TaskStateStore(self.kv)
        self.stream = stream or StreamBus(
            max_per_key=cfg.stream_max_per_key,
            max_idle_seconds=cfg.stream_max_idle_seconds,
        )
        if workspace is None and cfg.workspace_root:
            workspace = LocalWorkspace(cfg.workspace_root)
        self.workspace = workspace
        self.checkpoints = CheckpointManager(
            checkpoint_root or cfg.checkpoint_dir,
            task_states=self.task_states,
            workspace=workspace,
            max_keep=cfg.checkpoint_max_keep,
        )
        self.providers = providers or build_default_factory()
        self.engine = TurnEngine(
            deps=EngineDeps(
                providers=self.providers,
                task_states=self.task_states,
                stream=self.stream,
                context_executor=context_executor or WorkspaceContextExecutor(workspace),
                workspace=workspace,
                retry=RetryPolicy(
                    max_attempts=cfg.provider_max_attempts,
                    backoff_initial=cfg.provider_backoff_initial,
                    backoff_factor=cfg.provider_backoff_factor,
                    backoff_max=cfg.provider_backoff_max,
                ),
                provider_timeout=cfg.provider_timeout_seconds,
                default_max_turns=cfg.orchestrator_max_turns,
                resolve_credentials=self._default_credentials,
            )
        )
        self._turn_locks = KeyedLocks()
        self._background: Set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.stream.start()

    async def drain(self) -> None:
        """Wait for queued background work (automatic checkpoints) to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        await self.drain()
        await self.stream.stop()

    def health(self) -> HealthStatus:
        return HealthStatus(
            storage="file" if isinstance(self.kv, JsonFileKeyValueStore) else "memory",
            workspace=self.workspace is not None,
            providers=self.providers.get_registered_providers(),
            active_streams=len(self.stream.keys()),
            pending_tasks=len(self._background),
        )

    def _default_credentials(self, selection: ProviderSelection) -> ProviderCredentials:
        """Credentials from settings for requests that carry no API key."""
        cfg = self.config
        name = selection.name.strip().lower()
        if name == "openrouter":
            group: Any = cfg.openrouter
        elif name == "gemini":
            group = cfg.gemini
        elif name == "bedrock":
            bedrock = cfg.bedrock
            return ProviderCredentials(api_key=bedrock.api_key, region=selection.region or bedrock.region)
        elif name == "nvidia":
            group = cfg.nvidia
        else:
            group = cfg.openai
        return ProviderCredentials(api_key=group.api_key, base_url=selection.base_url or group.base_url)

    def _default_model(self, selection: ProviderSelection) -> Optional[str]:
        name = selection.name.strip().lower()
        group = {
            "openrouter": self.config.openrouter,
            "gemini": self.config.gemini,
            "bedrock": self.config.bedrock,
            "nvidia": self.config.nvidia,
        }.get(name, self.config.openai)
        return group.model

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(self, req: ChatRequest) -> ChatResponse:
        """Run one turn-sequence and persist its proposals as workflow steps.

        Proposals are saved only after the engine returns; a provider or
        protocol error leaves no proposal behind. The error details carry the
        workflow id so the client can retry within the same workflow.
        """
        if req.workflow_id:
            workflow = await self.workflows.get(req.workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(req.workflow_id)
        else:
            workflow = await self.workflows.create(req.project_id, context={"mode": req.mode.value})
        self.stream.push(workflow.id, "planning: started")

        selection = req.provider or ProviderSelection()
        if not selection.model:
            selection = selection.model_copy(update={"model": self._default_model(selection)})

        turn = TurnRequest(
            workflow_id=workflow.id,
            project_id=req.project_id,
            message=req.message,
            context=req.context,
            provider=selection,
            mode=req.mode,
            max_turns=req.max_turns,
            auto_context=req.auto_context,
            auto_approval=req.auto_approval,
            enable_fallbacks=req.enable_fallbacks,
            message_id=req.message_id,
            message_created_at=req.message_created_at or utc_now(),
        )
        try:
            async with self._turn_locks.for_key(workflow.id):
                result = await self.engine.run(turn)
        except CopilotError as e:
            e.add_details(workflow_id=workflow.id)
            raise

        stored = await self.proposals.save_many(result.proposals)
        for proposal in stored:
            await self.workflows.append_step(workflow.id, proposal_id=proposal.id, tool_name=proposal.meta.tool)
        logger.info(
            f"Chat turn workflow={workflow.id} proposals={len(stored)} turns={result.turns} fallback={result.fallback}"
        )
        return ChatResponse(
            workflow_id=workflow.id,
            proposals=stored,
            task_state=result.task_state,
            is_complete=result.is_complete,
            fallback=result.fallback,
        )

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def list_proposals(self, workflow_id: Optional[str] = None) -> List[Proposal]:
        return await self.proposals.list(workflow_id)

    async def get_proposal(self, proposal_id: str) -> Proposal:
        proposal = await self.proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    async def apply(self, proposal_id: str, req: ApplyRequest) -> ApplyResponse:
        """Record the editor's apply result.

        A successful report marks the proposal applied, completes its step and
        folds object operations into the scene graph. A failed report fails
        the step and appends a ``failed`` event; the proposal stays pending.

        Raises:
            ProposalNotFoundError: Unknown proposal.
            StaleContentError: Live text reported for an edited file no longer
                matches the text the edit was computed against.
        """
        proposal = await self.get_proposal(proposal_id)
        payload = apply_event_payload(req)
        if not req.ok:
            return await self._record_failed_apply(proposal, req, payload)

        if isinstance(proposal, EditProposal) and req.files:
            live = {f.path: f.current_text for f in req.files if f.current_text is not None}
            for change in proposal.files:
                if change.path in live:
                    check_stale(change.path, live[change.path], change.before_hash)

        marked = await self.proposals.mark_applied(proposal_id, payload)
        if marked is None:
            raise ProposalNotFoundError(proposal_id)
        before, after = marked

        workflow_id = after.workflow_id
        if workflow_id:
            await self._set_step_status(workflow_id, proposal_id, StepStatus.completed)
            if before.status != ProposalStatus.applied:
                await self._record_scene(workflow_id, proposal, req)
            if after.message_created_at is not None:
                await self._queue_auto_checkpoint(workflow_id, proposal_id, after.message_created_at)
        logger.info(f"Applied proposal id={proposal_id} workflow={workflow_id or 'n/a'}")
        return ApplyResponse(ok=True, id=proposal_id, before=before, after=after)

    async def _record_failed_apply(
        self, proposal: Proposal, req: ApplyRequest, payload: Dict[str, Any]
    ) -> ApplyResponse:
        error = req.error or "apply failed"
        after = await self.proposals.append_event(proposal.id, ProposalEvent(type="failed", payload=payload))
        if after is None:
            raise ProposalNotFoundError(proposal.id)
        if after.workflow_id:
            await self._set_step_status(after.workflow_id, proposal.id, StepStatus.failed, error=error)
            self.stream.push(after.workflow_id, f"proposal.failed id={proposal.id} error={error}")
        logger.warning(f"Editor failed to apply proposal id={proposal.id}: {error}")
        return ApplyResponse(ok=True, id=proposal.id, before=proposal, after=after)

    async def _set_step_status(
        self, workflow_id: str, proposal_id: str, status: StepStatus, error: Optional[str] = None
    ) -> None:
        step = await self.workflows.find_step_by_proposal(workflow_id, proposal_id)
        if step is None or step.status in (StepStatus.completed, StepStatus.failed):
            return
        patch: Dict[str, Any] = {"status": status}
        if error is not None:
            patch["error"] = error
        await self.workflows.update_step(workflow_id, step.id, patch)

    async def _record_scene(self, workflow_id: str, proposal: Proposal, req: ApplyRequest) -> None:
        """Fold the applied object operation into the task state's scene graph.

        The editor may report the operation it actually performed (with the
        resulting instance path); otherwise the proposal's own operations are
        used.
        """
        reported = scene_graph.operation_from_payload(req.model_extra or {})
        if reported is not None:
            ops = [reported]
        elif isinstance(proposal, ObjectProposal):
            ops = list(proposal.ops)
        else:
            return
        await self.task_states.update(workflow_id, lambda state: scene_graph.apply_operations(state.scene, ops))

    async def _queue_auto_checkpoint(self, workflow_id: str, proposal_id: str, message_created_at: datetime) -> None:
        if not await self.workflows.mark_checkpointed(workflow_id, message_created_at):
            logger.debug(f"Auto checkpoint already taken for workflow={workflow_id} message={message_created_at}")
            return
        task = asyncio.create_task(self._auto_checkpoint(workflow_id, proposal_id, message_created_at))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _auto_checkpoint(self, workflow_id: str, proposal_id: str, message_created_at: datetime) -> None:
        self.stream.push(workflow_id, f"checkpoint.auto start proposal={proposal_id}")
        try:
            state = await self.task_states.get(workflow_id)
            summary = await self.checkpoints.create(
                workflow_id,
                state,
                note="auto",
                proposal_id=proposal_id,
                message_created_at=message_created_at,
                include_workspace=True,
            )
        except Exception as e:
            logger.error(f"Auto checkpoint failed for workflow {workflow_id}: {e}", exc_info=True)
            self.stream.push(workflow_id, f"checkpoint.auto error {e}")
            await self.workflows.clear_checkpointed(workflow_id, message_created_at)
            return
        self.stream.push(workflow_id, f"checkpoint.auto ok id={summary.id}")

    async def merge(self, proposal_id: str, req: MergeRequest) -> MergeResponse:
        """Three-way merge an edit proposal onto the live text of its files.

        Raises:
            ProposalNotFoundError: Unknown proposal, or not an edit proposal.
            CopilotError: 400 when live text is missing, 422 when the proposal
                recorded no base text.
            MergeConflictError: At least one file has conflicting hunks.
        """
        proposal = await self.get_proposal(proposal_id)
        if not isinstance(proposal, EditProposal):
            raise ProposalNotFoundError(proposal_id)
        if not req.files:
            raise CopilotError("files[] with current_text required", status_code=400)

        live = {f.path: f.current_text for f in req.files}
        results: List[MergeFileResult] = []
        for change in proposal.files:
            current = live.get(change.path)
            if current is None:
                raise CopilotError(f"Missing current_text for {change.path}", status_code=400)
            if change.base_text is None:
                raise CopilotError(f"Base text unavailable for {change.path}", status_code=422)
            proposed = apply_range_edits(change.base_text, change.diff.edits)
            outcome = diff3_merge(change.base_text, current, proposed)
            results.append(MergeFileResult(path=change.path, merged_text=outcome.merged_text, conflicts=outcome.conflicts))

        conflicted = [r for r in results if r.conflicts]
        if conflicted:
            summary = ",".join(f"{r.path}:{len(r.conflicts)}" for r in conflicted)
            if proposal.workflow_id:
                self.stream.push(proposal.workflow_id, f"conflict.merge proposal={proposal_id} files={summary}")
                await self.task_states.update(
                    proposal.workflow_id, lambda state: self._record_conflict(state, summary)
                )
            logger.warning(f"Merge conflict proposal={proposal_id} files={summary}")
            raise MergeConflictError([r.model_dump(mode="json") for r in results])
        return MergeResponse(status="merged", proposal_id=proposal_id, files=results)

    @staticmethod
    def _record_conflict(state: TaskState, summary: str) -> None:
        now = utc_now()
        state.runs.append(
            ToolRun(
                tool="apply_edit",
                status=ToolRunStatus.failed,
                started_at=now,
                ended_at=now,
                error=f"MERGE_CONFLICT {summary}",
            )
        )

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def create_checkpoint(self, req: CheckpointCreate) -> CheckpointSummary:
        if await self.workflows.get(req.workflow_id) is None:
            raise WorkflowNotFoundError(req.workflow_id)
        state = await self.task_states.get(req.workflow_id)
        return await self.checkpoints.create(
            req.workflow_id,
            state,
            note=req.note,
            proposal_id=req.proposal_id,
            message_created_at=req.message_created_at,
            include_workspace=req.include_workspace,
        )

    async def list_checkpoints(self, workflow_id: Optional[str] = None) -> List[CheckpointSummary]:
        return await self.checkpoints.list(workflow_id)

    async def get_checkpoint(self, checkpoint_id: str) -> CheckpointManifest:
        manifest = await self.checkpoints.get(checkpoint_id)
        if manifest is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return manifest

    async def restore_checkpoint(self, checkpoint_id: str, mode: RestoreMode) -> CheckpointManifest:
        """Restore a checkpoint; a restored conversation re-opens a finished workflow."""
        manifest = await self.checkpoints.restore(checkpoint_id, mode)
        if mode in (RestoreMode.conversation, RestoreMode.both):
            workflow = await self.workflows.get(manifest.workflow_id)
            if workflow is not None and workflow.status != WorkflowStatus.executing:
                await self.workflows.set_status(manifest.workflow_id, WorkflowStatus.executing, allow_regress=True)
        self.stream.push(manifest.workflow_id, f"checkpoint.restore id={checkpoint_id} mode={RestoreMode(mode).value}")
        return manifest

    # ------------------------------------------------------------------
    # Workflows and streaming
    # ------------------------------------------------------------------

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def list_workflows(self, project_id: Optional[str] = None) -> List[Workflow]:
        return await self.workflows.list(project_id)

    async def get_task_state(self, workflow_id: str) -> TaskState:
        await self.get_workflow(workflow_id)
        return await self.task_states.get(workflow_id)

    async def poll_stream(self, key: str, cursor: int, timeout_ms: int) -> StreamSlice:
        timeout_ms = max(0, min(timeout_ms, self.config.stream_poll_timeout_ms))
        if timeout_ms == 0:
            return self.stream.get_since(key, cursor)
        return await self.stream.wait_for(key, cursor, timeout_ms)


# Global singleton
_orchestrator: Optional[OrchestratorService] = None


def get_orchestrator() -> OrchestratorService:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = OrchestratorService()
    return _orchestrator
