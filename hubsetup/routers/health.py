"""Health-check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from hubsetup import __version__
from hubsetup.auth import require_api_key
from hubsetup.models.requests import HealthResponse, SessionInfo
from hubsetup.routers.common import get_registry
from hubsetup.services.registry import SessionRegistry

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health() -> HealthResponse:
    """Basic liveness probe (no auth required)."""
    return HealthResponse(status="ok", version=__version__)


@router.get(
    "/api/ssh/sessions",
    response_model=list[SessionInfo],
    dependencies=[Depends(require_api_key)],
)
async def list_sessions(
    registry: SessionRegistry = Depends(get_registry),
) -> list[SessionInfo]:
    """Sessions currently held by the registry."""
    return [
        SessionInfo(host=s.host, username=s.username, healthy=s.is_healthy())
        for s in registry.sessions()
    ]
