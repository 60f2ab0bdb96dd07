"""
Progress Stream Endpoints.

Progress chunks pushed during chat turns, merges and checkpoints are
delivered by long polling or by Server-Sent Events (SSE). Both deliver the
same ``{cursor, chunks}`` payload; clients resume by passing the last cursor.
"""

from fastapi import APIRouter, Query, Request
from sse_starlette.sse import EventSourceResponse

from studio_copilot.agent_core.streaming import StreamSlice
from studio_copilot.core.logging_config import get_logger
from studio_copilot.server.core.config import settings
from studio_copilot.server.services.deps import OrchestratorDep

logger = get_logger(__name__)
router = APIRouter()


@router.get(
    "/{key}",
    response_model=StreamSlice,
    summary="Poll Stream",
    description="Return chunks after the cursor, waiting up to timeout_ms for new ones.",
)
async def poll_stream(
    key: str,
    orchestrator: OrchestratorDep,
    cursor: int = Query(default=0, ge=0),
    timeout_ms: int = Query(default=0, ge=0),
):
    return await orchestrator.poll_stream(key, cursor, timeout_ms)


@router.get(
    "/{key}/sse",
    summary="Stream Events (SSE)",
    description="Server-Sent Events feed of progress chunks for a workflow.",
)
async def stream_sse(
    key: str,
    request: Request,
    orchestrator: OrchestratorDep,
    cursor: int = Query(default=0, ge=0),
):
    """
    Stream progress chunks via Server-Sent Events.

    Each event carries a JSON ``{cursor, chunks}`` slice. The connection stays
    open until the client disconnects.
    """
    logger.info(f"Starting SSE stream for key: {key} cursor={cursor}")

    async def event_generator():
        position = cursor
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(f"Client disconnected from stream: {key}")
                    break
                batch = await orchestrator.stream.wait_for(key, position, settings.sse_ping_seconds * 1000)
                if batch.chunks:
                    position = batch.cursor
                    yield {"event": "chunks", "data": batch.model_dump_json()}
        except Exception as e:
            logger.error(f"Error in SSE stream for key {key}: {e}", exc_info=True)
            yield {"event": "error", "data": str(e)}

    return EventSourceResponse(event_generator(), ping=settings.sse_ping_seconds)
