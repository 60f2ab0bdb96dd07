from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import Field, TypeAdapter

from .base import BaseSchema


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
        if value == 0:
            return out


def new_workflow_id() -> str:
    return f"wf_{secrets.token_hex(3)}_{_base36(int(time.time() * 1000))}"


def new_proposal_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(4)}"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class WorkflowStatus(str, Enum):
    planning = "planning"
    executing = "executing"
    paused = "paused"
    completed = "completed"
    failed = "failed"


class StepStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    executing = "executing"
    completed = "completed"
    failed = "failed"


class ProposalStatus(str, Enum):
    pending = "pending"
    applied = "applied"


class ToolRunStatus(str, Enum):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class ChatMode(str, Enum):
    ask = "ask"
    agent = "agent"


class RestoreMode(str, Enum):
    conversation = "conversation"
    workspace = "workspace"
    both = "both"


# ---------------------------------------------------------------------------
# Messages and task state
# ---------------------------------------------------------------------------


class ChatMessage(BaseSchema):
    role: Literal["system", "user", "assistant"]
    content: str


class ToolRun(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    tool: str
    input: Dict[str, Any] = Field(default_factory=dict)
    status: ToolRunStatus = ToolRunStatus.queued
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    error: Optional[str] = None


class StreamingState(BaseSchema):
    is_streaming: bool = False
    last_event_at: Optional[datetime] = None


class AutoApprovalState(BaseSchema):
    enabled: bool = False
    read_only: bool = True


class TaskCounters(BaseSchema):
    context_requests: int = 0
    mistakes: int = 0
    consecutive_fallbacks: int = 0
    tokens_in: int = 0
    tokens_out: int = 0


class SceneNode(BaseSchema):
    path: str
    parent_path: Optional[str] = None
    name: str
    class_name: str = "Instance"
    props: Dict[str, Any] = Field(default_factory=dict)


class SceneGraph(BaseSchema):
    """Instances the editor reported as created or changed, keyed by full path."""

    nodes: Dict[str, SceneNode] = Field(default_factory=dict)


class CheckpointMeta(BaseSchema):
    last_id: Optional[str] = None
    last_note: Optional[str] = None
    last_created_at: Optional[datetime] = None
    last_message_created_at: Optional[datetime] = None
    count: int = 0


class TaskState(BaseSchema):
    """Live orchestration state of one workflow.

    This is the record that checkpoints clone and that a ``conversation``
    restore replaces wholesale.
    """

    workflow_id: str
    history: List[ChatMessage] = Field(default_factory=list)
    plan: List[str] = Field(default_factory=list)
    completed_plan_steps: List[str] = Field(default_factory=list)
    runs: List[ToolRun] = Field(default_factory=list)
    streaming: StreamingState = Field(default_factory=StreamingState)
    auto_approval: AutoApprovalState = Field(default_factory=AutoApprovalState)
    counters: TaskCounters = Field(default_factory=TaskCounters)
    scene: SceneGraph = Field(default_factory=SceneGraph)
    last_checkpoint_id: Optional[str] = None
    checkpoints: CheckpointMeta = Field(default_factory=CheckpointMeta)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Workflow / Step
# ---------------------------------------------------------------------------


class Step(BaseSchema):
    id: str = Field(default_factory=lambda: f"step_{uuid4().hex[:10]}")
    index: int
    status: StepStatus = StepStatus.pending
    proposal_id: Optional[str] = None
    tool_name: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Workflow(BaseSchema):
    id: str = Field(default_factory=new_workflow_id)
    project_id: str
    status: WorkflowStatus = WorkflowStatus.executing
    steps: List[Step] = Field(default_factory=list)
    current_step: int = -1
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_checkpointed_message_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


class Position(BaseSchema):
    line: int = Field(ge=0)
    character: int = Field(ge=0)


class RangeEdit(BaseSchema):
    start: Position
    end: Position
    text: str


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


class ProposalEvent(BaseSchema):
    type: str
    at: datetime = Field(default_factory=utc_now)
    payload: Dict[str, Any] = Field(default_factory=dict)


class ProposalMeta(BaseSchema):
    tool: Optional[str] = None
    fallback: bool = False
    fallback_reason: Optional[str] = None
    auto_approved: bool = False


class _ProposalBase(BaseSchema):
    workflow_id: Optional[str] = None
    message_id: Optional[str] = None
    message_created_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    status: ProposalStatus = ProposalStatus.pending
    events: List[ProposalEvent] = Field(default_factory=list)
    meta: ProposalMeta = Field(default_factory=ProposalMeta)
    notes: Optional[str] = None


class EditDiff(BaseSchema):
    mode: Literal["rangeEDITS"] = "rangeEDITS"
    edits: List[RangeEdit]


class EditPreview(BaseSchema):
    unified: str = ""


class EditFileChange(BaseSchema):
    path: str
    diff: EditDiff
    before_hash: Optional[str] = None
    base_text: Optional[str] = None
    preview: Optional[EditPreview] = None


class EditProposal(_ProposalBase):
    id: str = Field(default_factory=lambda: new_proposal_id("edit"))
    type: Literal["edit"] = "edit"
    files: List[EditFileChange]


class ObjectOperation(BaseSchema):
    op: Literal["create_instance", "set_properties", "rename_instance", "delete_instance"]
    path: Optional[str] = None
    class_name: Optional[str] = None
    parent_path: Optional[str] = None
    props: Optional[Dict[str, Any]] = None
    new_name: Optional[str] = None


class ObjectProposal(_ProposalBase):
    id: str = Field(default_factory=lambda: new_proposal_id("obj"))
    type: Literal["object_op"] = "object_op"
    ops: List[ObjectOperation]


class AssetSearchRequest(BaseSchema):
    query: str
    tags: Optional[List[str]] = None
    limit: int = 6


class AssetInsertRequest(BaseSchema):
    asset_id: int
    parent_path: Optional[str] = None


class AssetGenerateRequest(BaseSchema):
    prompt: str
    tags: Optional[List[str]] = None
    style: Optional[str] = None
    budget: Optional[float] = None


class AssetProposal(_ProposalBase):
    id: str = Field(default_factory=lambda: new_proposal_id("asset"))
    type: Literal["asset_op"] = "asset_op"
    search: Optional[AssetSearchRequest] = None
    insert: Optional[AssetInsertRequest] = None
    generate3d: Optional[AssetGenerateRequest] = None


class CompletionProposal(_ProposalBase):
    id: str = Field(default_factory=lambda: new_proposal_id("done"))
    type: Literal["completion"] = "completion"
    summary: str
    confidence: Optional[float] = None


Proposal = Annotated[
    Union[EditProposal, ObjectProposal, AssetProposal, CompletionProposal],
    Field(discriminator="type"),
]

ProposalAdapter: TypeAdapter[Proposal] = TypeAdapter(Proposal)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class MergeConflict(BaseSchema):
    start_line: int
    end_line: int
    base: str
    current: str
    proposed: str


class MergeOutcome(BaseSchema):
    merged_text: str
    conflicts: List[MergeConflict] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.conflicts


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------


class CheckpointFileEntry(BaseSchema):
    path: str
    size: int
    sha1: str


class CheckpointSummary(BaseSchema):
    id: str
    workflow_id: str
    note: Optional[str] = None
    created_at: datetime
    message_created_at: Optional[datetime] = None
    proposal_id: Optional[str] = None
    include_workspace: bool = True
    file_count: int = 0
    total_bytes: int = 0
    zip_size: Optional[int] = None


class CheckpointManifest(CheckpointSummary):
    state: TaskState
    files: List[CheckpointFileEntry] = Field(default_factory=list)
    archive_name: Optional[str] = None

    def summary(self) -> CheckpointSummary:
        return CheckpointSummary.model_validate(self.model_dump(exclude={"state", "files", "archive_name"}))


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


class ActiveScript(BaseSchema):
    path: str
    text: str = ""


class SelectedInstance(BaseSchema):
    class_name: str = Field(default="Instance", alias="className")
    path: str


class OpenDocument(BaseSchema):
    path: str


class WorkspaceContext(BaseSchema):
    """Snapshot of the editor state sent along with a chat message."""

    active_script: Optional[ActiveScript] = Field(default=None, alias="activeScript")
    selection: List[SelectedInstance] = Field(default_factory=list)
    open_documents: List[OpenDocument] = Field(default_factory=list, alias="openDocuments")
    code_definitions: Optional[List[Dict[str, Any]]] = Field(default=None, alias="codeDefinitions")

    @property
    def single_selection_path(self) -> Optional[str]:
        if len(self.selection) == 1:
            return self.selection[0].path
        return None
