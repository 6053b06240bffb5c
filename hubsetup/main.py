"""FastAPI application entry-point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hubsetup import __version__
from hubsetup.errors import (
    AuthenticationError,
    ConnectivityError,
    HubSetupError,
    PreconditionUnavailable,
    RemoteCommandError,
    ValidationError,
)
from hubsetup.routers import health, source, ssh
from hubsetup.services.registry import SessionRegistry
from hubsetup.utils.logging import get_logger, setup_logging

log = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[HubSetupError], int]] = [
    (ValidationError, 400),
    (AuthenticationError, 401),
    (PreconditionUnavailable, 412),
    (ConnectivityError, 502),
    (RemoteCommandError, 502),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    setup_logging()
    app.state.registry = SessionRegistry()
    yield
    # Shutdown: close every SSH session
    await app.state.registry.disconnect_all()


app = FastAPI(
    title="Hub Setup API",
    description="Remote hub provisioning over SSH",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(HubSetupError)
async def hub_error_handler(request: Request, exc: HubSetupError) -> JSONResponse:
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    log.warning("api.error", path=request.url.path, status=status_code, error=str(exc))
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


app.include_router(health.router)
app.include_router(ssh.router)
app.include_router(source.router)
