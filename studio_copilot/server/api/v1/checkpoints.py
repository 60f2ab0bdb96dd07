"""
Checkpoint API Endpoints.

Checkpoints snapshot a workflow's task state and, optionally, the managed
workspace files. Restoring rolls back the conversation, the files, or both.
"""

from typing import List, Optional

from fastapi import APIRouter

from studio_copilot.agent_core.schemas.domain import CheckpointManifest, CheckpointSummary
from studio_copilot.core.logging_config import get_logger
from studio_copilot.server.schemas import CheckpointCreate, CheckpointRestore, ErrorResponse
from studio_copilot.server.services.deps import OrchestratorDep

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "",
    response_model=CheckpointSummary,
    status_code=201,
    summary="Create Checkpoint",
    responses={404: {"model": ErrorResponse, "description": "Workflow not found"}},
)
async def create_checkpoint(checkpoint_in: CheckpointCreate, orchestrator: OrchestratorDep):
    logger.info(f"Creating checkpoint for workflow: {checkpoint_in.workflow_id}")
    return await orchestrator.create_checkpoint(checkpoint_in)


@router.get(
    "",
    response_model=List[CheckpointSummary],
    summary="List Checkpoints",
    description="List checkpoints, newest first, optionally filtered by workflow.",
)
async def list_checkpoints(orchestrator: OrchestratorDep, workflow_id: Optional[str] = None):
    return await orchestrator.list_checkpoints(workflow_id)


@router.get(
    "/{checkpoint_id}",
    response_model=CheckpointManifest,
    summary="Get Checkpoint",
    responses={404: {"model": ErrorResponse, "description": "Checkpoint not found"}},
)
async def get_checkpoint(checkpoint_id: str, orchestrator: OrchestratorDep):
    return await orchestrator.get_checkpoint(checkpoint_id)


@router.post(
    "/{checkpoint_id}/restore",
    response_model=CheckpointManifest,
    summary="Restore Checkpoint",
    responses={
        404: {"model": ErrorResponse, "description": "Checkpoint not found"},
        500: {"model": ErrorResponse, "description": "Workspace restore failed"},
    },
)
async def restore_checkpoint(checkpoint_id: str, restore_in: CheckpointRestore, orchestrator: OrchestratorDep):
    """
    Restore a checkpoint.

    - **conversation**: replace the live task state.
    - **workspace**: extract archived files onto the workspace root.
    - **both**: do both.
    """
    logger.info(f"Restoring checkpoint {checkpoint_id} mode={restore_in.mode.value}")
    return await orchestrator.restore_checkpoint(checkpoint_id, restore_in.mode)
