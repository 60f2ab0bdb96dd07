"""Schemas and DTOs for the agent core."""

from .domain import (
    AssetProposal,
    ChatMessage,
    ChatMode,
    CheckpointManifest,
    CheckpointSummary,
    CompletionProposal,
    EditProposal,
    MergeConflict,
    MergeOutcome,
    ObjectProposal,
    Proposal,
    ProposalStatus,
    RangeEdit,
    RestoreMode,
    Step,
    StepStatus,
    TaskState,
    Workflow,
    WorkflowStatus,
)

__all__ = [
    "AssetProposal",
    "ChatMessage",
    "ChatMode",
    "CheckpointManifest",
    "CheckpointSummary",
    "CompletionProposal",
    "EditProposal",
    "MergeConflict",
    "MergeOutcome",
    "ObjectProposal",
    "Proposal",
    "ProposalStatus",
    "RangeEdit",
    "RestoreMode",
    "Step",
    "StepStatus",
    "TaskState",
    "Workflow",
    "WorkflowStatus",
]
