"""
Health Check Endpoints.

Liveness and version endpoints for the editor plugin. ``/health`` also
reports how the orchestrator is wired (storage backend, workspace, provider
backends) so a plugin can tell a misconfigured server from an unreachable one.
"""

from fastapi import APIRouter

from studio_copilot.server.schemas import HealthStatus
from studio_copilot.server.services.deps import OrchestratorDep

from ...core import constant

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health Check",
    description="Report server liveness with storage, workspace and provider wiring.",
)
async def health_check(orchestrator: OrchestratorDep):
    return orchestrator.health()


@router.get("/version", summary="Get Version")
async def version():
    """API version and the schema version of persisted state."""
    return {"version": constant.VERSION, "schema_version": constant.SCHEMA_VERSION}
