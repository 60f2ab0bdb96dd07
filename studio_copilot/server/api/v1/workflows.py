"""
Workflow API Endpoints.

Read access to workflows (with their steps) and to the live task state of a
workflow.
"""

from typing import List, Optional

from fastapi import APIRouter

from studio_copilot.agent_core.schemas.domain import TaskState, Workflow
from studio_copilot.server.schemas import ErrorResponse
from studio_copilot.server.services.deps import OrchestratorDep

router = APIRouter()


@router.get("", response_model=List[Workflow], summary="List Workflows")
async def list_workflows(orchestrator: OrchestratorDep, project_id: Optional[str] = None):
    return await orchestrator.list_workflows(project_id)


@router.get(
    "/{workflow_id}",
    response_model=Workflow,
    summary="Get Workflow",
    responses={404: {"model": ErrorResponse, "description": "Workflow not found"}},
)
async def get_workflow(workflow_id: str, orchestrator: OrchestratorDep):
    return await orchestrator.get_workflow(workflow_id)


@router.get(
    "/{workflow_id}/task-state",
    response_model=TaskState,
    summary="Get Task State",
    responses={404: {"model": ErrorResponse, "description": "Workflow not found"}},
)
async def get_task_state(workflow_id: str, orchestrator: OrchestratorDep):
    return await orchestrator.get_task_state(workflow_id)
