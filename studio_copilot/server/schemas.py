"""
API Schemas.

This module contains Pydantic models used for API request bodies and response validation.
These schemas define the interface contract between the editor plugin and the server.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from studio_copilot.agent_core.diff import sha1_hex
from studio_copilot.agent_core.runtime import ProviderSelection
from studio_copilot.agent_core.schemas.domain import (
    ChatMode,
    MergeConflict,
    Proposal,
    RestoreMode,
    TaskState,
    WorkspaceContext,
)


class ChatRequest(BaseModel):
    """
    Schema for sending a chat message.

    Starts (or continues) a workflow and runs one turn-sequence against the
    selected provider.
    """

    project_id: str = Field(..., description="Project the workflow belongs to.", examples=["place-123"])
    message: str = Field(..., min_length=1, description="The user's request.", examples=["Add a spawn point"])
    context: WorkspaceContext = Field(
        default_factory=WorkspaceContext,
        description="Editor snapshot: active script, selection and open documents.",
    )
    provider: Optional[ProviderSelection] = Field(
        default=None, description="Provider name and credentials. Server defaults apply when omitted."
    )
    workflow_id: Optional[str] = Field(default=None, description="Existing workflow to continue.")
    mode: ChatMode = Field(default=ChatMode.agent, description="ask forces a single provider call.")
    max_turns: Optional[int] = Field(default=None, ge=1, description="Provider calls allowed (capped at 16).")
    auto_approval: bool = Field(default=False, description="Tag safe proposals for automatic application.")
    auto_context: bool = Field(default=True, description="Execute read-only context actions automatically.")
    enable_fallbacks: bool = Field(default=True, description="Synthesize a fallback proposal on failure.")
    message_id: Optional[str] = Field(default=None, description="Client-side id of the message.")
    message_created_at: Optional[datetime] = Field(
        default=None, description="Client-side creation time of the message; used to de-duplicate checkpoints."
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "project_id": "place-123",
                "message": "Make the part red",
                "context": {"selection": [{"className": "Part", "path": "game.Workspace.Part"}]},
                "provider": {"name": "openai", "model": "gpt-4o-mini"},
                "mode": "agent",
            }
        }
    )


class ChatResponse(BaseModel):
    """Result of one turn-sequence."""

    workflow_id: str
    proposals: List[Proposal] = Field(default_factory=list)
    task_state: TaskState
    is_complete: bool = False
    fallback: bool = False


class MergeFileInput(BaseModel):
    path: str
    current_text: Optional[str] = Field(default=None, description="Live text of the file in the editor.")


class ApplyRequest(BaseModel):
    """
    Schema reporting that the editor applied (or failed to apply) a proposal.

    Any extra keys are recorded verbatim on the proposal's ``applied`` event.
    For edit proposals, ``files[].current_text`` lets the server verify the
    proposal was computed against the live content.
    """

    ok: bool = Field(default=True, description="Whether the editor applied the proposal successfully.")
    error: Optional[str] = Field(default=None, description="Failure reason when ok is false.")
    files: Optional[List[MergeFileInput]] = Field(default=None, description="Live text of edited files.")

    model_config = ConfigDict(extra="allow")


class ApplyResponse(BaseModel):
    ok: bool = True
    id: str
    before: Proposal
    after: Proposal


class MergeRequest(BaseModel):
    """Schema for three-way merging an edit proposal onto live content."""

    action: Literal["merge"] = "merge"
    files: List[MergeFileInput] = Field(default_factory=list)


class MergeFileResult(BaseModel):
    path: str
    merged_text: str
    conflicts: List[MergeConflict] = Field(default_factory=list)


class MergeResponse(BaseModel):
    status: Literal["merged", "conflict"]
    proposal_id: str
    files: List[MergeFileResult]


class CheckpointCreate(BaseModel):
    """Schema for taking a manual checkpoint."""

    workflow_id: str
    note: Optional[str] = None
    proposal_id: Optional[str] = None
    include_workspace: bool = True
    message_created_at: Optional[datetime] = None


class CheckpointRestore(BaseModel):
    mode: RestoreMode = Field(default=RestoreMode.both, description="conversation, workspace or both.")


class ErrorResponse(BaseModel):
    """Structured error body produced by the exception handlers."""

    error: str
    message: str
    details: Optional[Any] = None
    status: Optional[str] = None


class HealthStatus(BaseModel):
    """Liveness report with the orchestrator's wiring."""

    status: Literal["ok"] = "ok"
    storage: Literal["memory", "file"]
    workspace: bool = Field(..., description="Whether a workspace root is configured for checkpoints.")
    providers: List[str] = Field(default_factory=list, description="Registered provider backends.")
    active_streams: int = 0
    pending_tasks: int = Field(default=0, description="Queued background work such as automatic checkpoints.")


def apply_event_payload(req: ApplyRequest) -> Dict[str, Any]:
    """Apply report as recorded on the proposal event log.

    Keys accepted through ``extra="allow"`` are kept. Live file text is
    reduced to its sha1 so events stay small.
    """
    payload = req.model_dump(mode="json", exclude_none=True, exclude={"files"})
    if req.files:
        payload["files"] = [
            {"path": f.path, "sha1": sha1_hex(f.current_text) if f.current_text is not None else None}
            for f in req.files
        ]
    return payload
