"""
Exception Handlers for the FastAPI Application.

Domain errors (``CopilotError`` and subclasses) are turned into structured
JSON reasons with the HTTP status they carry. Any other unhandled exception is
logged with an error ID, request context and full traceback.
"""

import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from studio_copilot.agent_core.errors import CopilotError, MergeConflictError, StaleContentError
from studio_copilot.core.logging_config import get_logger

logger = get_logger(__name__)


async def copilot_error_handler(request: Request, exc: CopilotError) -> JSONResponse:
    """
    Map an orchestration-core error to its structured reason.

    Merge outcomes keep the body shape the editor expects:
    ``{"status": "conflict", "files": [...]}`` and ``{"status": "stale", ...}``.
    """
    status_code = exc.status_code or 500
    content = exc.to_reason()
    if isinstance(exc, MergeConflictError):
        content.update({"status": "conflict", "files": exc.files})
    elif isinstance(exc, StaleContentError):
        content["status"] = "stale"

    log = logger.warning if status_code < 500 else logger.error
    log(f"{type(exc).__name__} in {request.method} {request.url.path} -> {status_code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler to log detailed error information.

    This handler is called for any unhandled exception in the application.
    It logs the full error context and returns a JSON response with an error ID
    that clients can use to reference the error when reporting issues.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with error details and error ID
    """
    # Generate unique error ID for tracking
    error_id = id(exc)

    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(CopilotError, copilot_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
