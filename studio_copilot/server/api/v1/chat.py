"""
Chat API Endpoint.

A chat message runs one turn-sequence: the model is queried (chaining
read-only context actions) until it proposes a change, and the resulting
proposals are stored as steps of the workflow.
"""

from fastapi import APIRouter

from studio_copilot.core.logging_config import get_logger
from studio_copilot.server.schemas import ChatRequest, ChatResponse, ErrorResponse
from studio_copilot.server.services.deps import OrchestratorDep

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "",
    response_model=ChatResponse,
    summary="Send Chat Message",
    description="Run one turn-sequence for the message and return the proposals it produced.",
    response_description="Workflow id, proposals and the updated task state.",
    responses={
        404: {"model": ErrorResponse, "description": "Workflow not found"},
        422: {"model": ErrorResponse, "description": "No usable action and no fallback left"},
        502: {"model": ErrorResponse, "description": "Provider error"},
        504: {"model": ErrorResponse, "description": "Provider timeout"},
    },
)
async def chat(chat_in: ChatRequest, orchestrator: OrchestratorDep):
    """
    Send a chat message.

    - **project_id**: Project the workflow belongs to.
    - **message**: The user's request.
    - **context**: Active script, selection and open documents.
    - **provider**: Provider name, API key and model (optional).
    - **workflow_id**: Continue an existing workflow (optional).
    """
    logger.info(
        f"Chat request project={chat_in.project_id} workflow={chat_in.workflow_id or 'new'} mode={chat_in.mode.value}"
    )
    return await orchestrator.chat(chat_in)
