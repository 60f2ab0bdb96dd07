"""
Proposals API Endpoints.

Proposals are produced by chat turns. The editor previews them, applies them
locally and reports back here; edit proposals whose file changed in the
meantime are three-way merged onto the live text.
"""

from typing import List, Optional

from fastapi import APIRouter

from studio_copilot.agent_core.schemas.domain import Proposal
from studio_copilot.core.logging_config import get_logger
from studio_copilot.server.schemas import (
    ApplyRequest,
    ApplyResponse,
    ErrorResponse,
    MergeRequest,
    MergeResponse,
)
from studio_copilot.server.services.deps import OrchestratorDep

logger = get_logger(__name__)
router = APIRouter()


@router.get(
    "",
    response_model=List[Proposal],
    summary="List Proposals",
    description="List proposals, newest first, optionally filtered by workflow.",
)
async def list_proposals(orchestrator: OrchestratorDep, workflow_id: Optional[str] = None):
    return await orchestrator.list_proposals(workflow_id)


@router.get(
    "/{proposal_id}",
    response_model=Proposal,
    summary="Get Proposal",
    responses={404: {"model": ErrorResponse, "description": "Proposal not found"}},
)
async def get_proposal(proposal_id: str, orchestrator: OrchestratorDep):
    return await orchestrator.get_proposal(proposal_id)


@router.post(
    "/{proposal_id}/apply",
    response_model=ApplyResponse,
    summary="Report Proposal Applied",
    description="Mark a proposal applied, complete its workflow step and queue an automatic checkpoint.",
    responses={
        404: {"model": ErrorResponse, "description": "Proposal not found"},
        409: {"model": ErrorResponse, "description": "Live content is stale"},
    },
)
async def apply_proposal(proposal_id: str, apply_in: ApplyRequest, orchestrator: OrchestratorDep):
    """
    Report the result of applying a proposal.

    Applying twice is harmless: the second call returns the applied proposal
    as both ``before`` and ``after``.
    """
    return await orchestrator.apply(proposal_id, apply_in)


@router.post(
    "/{proposal_id}/merge",
    response_model=MergeResponse,
    summary="Merge Edit Proposal",
    description="Three-way merge an edit proposal onto the live text of its files.",
    responses={
        400: {"model": ErrorResponse, "description": "Live text missing"},
        404: {"model": ErrorResponse, "description": "Edit proposal not found"},
        409: {"model": ErrorResponse, "description": "Merge conflict"},
        422: {"model": ErrorResponse, "description": "Base text unavailable"},
    },
)
async def merge_proposal(proposal_id: str, merge_in: MergeRequest, orchestrator: OrchestratorDep):
    """
    Merge an edit proposal.

    Conflicting hunks are never auto-resolved: the answer is 409 with
    ``{"status": "conflict", "files": [...]}`` and the user must re-approve.
    """
    return await orchestrator.merge(proposal_id, merge_in)
