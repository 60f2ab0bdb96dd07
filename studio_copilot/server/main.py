"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
registers exception handlers and includes all API routers. It serves as the
root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studio_copilot.core.logging_config import get_logger, setup_logging

from .api.v1 import (
    chat,
    checkpoints,
    health,
    proposals,
    stream,
    workflows,
)
from .core import constant
from .core.config import settings
from .exception_handlers import setup_exception_handlers
from .services.orchestrator import get_orchestrator

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Starts the stream bus cleanup loop on startup and waits for queued
    background checkpoints on shutdown.
    """
    # Startup
    logger.info("Starting up Studio Copilot Server...")
    orchestrator = get_orchestrator()
    orchestrator.start()

    yield

    # Shutdown
    logger.info("Shutting down Studio Copilot Server...")
    await orchestrator.shutdown()


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    Studio Copilot Server API

    This API exposes the orchestration core between a chat-driven AI agent and a live editor workspace.
    It runs chat turns, tracks proposals and workflows, merges edits, streams progress and manages checkpoints.
    """,
    version=constant.VERSION,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
cors = settings.cors
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors.origins,
    allow_credentials=cors.allow_credentials,
    allow_methods=cors.allow_methods,
    allow_headers=cors.allow_headers,
)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(chat.router, prefix=f"{constant.API_V1_STR}/chat", tags=["chat"])
app.include_router(proposals.router, prefix=f"{constant.API_V1_STR}/proposals", tags=["proposals"])
app.include_router(stream.router, prefix=f"{constant.API_V1_STR}/stream", tags=["stream"])
app.include_router(checkpoints.router, prefix=f"{constant.API_V1_STR}/checkpoints", tags=["checkpoints"])
app.include_router(workflows.router, prefix=f"{constant.API_V1_STR}/workflows", tags=["workflows"])
