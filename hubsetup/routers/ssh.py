"""Direct SSH endpoints: connect, execute, stream, disconnect."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from hubsetup.auth import require_api_key
from hubsetup.models.requests import (
    ActionResponse,
    DisconnectRequest,
    ExecuteRequest,
    ExecuteResponse,
    HubTarget,
)
from hubsetup.routers.common import get_registry, stream_run
from hubsetup.services.pipeline import CommandRun
from hubsetup.services.progress import StreamSink
from hubsetup.services.registry import SessionRegistry
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)

router = APIRouter(
    prefix="/api/ssh",
    tags=["ssh"],
    dependencies=[Depends(require_api_key)],
)


@router.post("/connect", response_model=ActionResponse)
async def connect(
    req: HubTarget,
    registry: SessionRegistry = Depends(get_registry),
) -> ActionResponse:
    """Open (or reuse) the session for this host and user."""
    await registry.get_or_create(req.host, req.username, req.password)
    return ActionResponse(success=True, message="Connected successfully")


@router.post("/execute", response_model=ExecuteResponse)
async def execute(
    req: ExecuteRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ExecuteResponse:
    """Run one command and return its output once it has finished."""
    session = await registry.get_or_create(req.host, req.username, req.password)
    result = await registry.run(session, req.command, cwd=req.cwd)
    log.info("ssh.execute", host=req.host, command=req.command, rc=result.exit_code)
    return ExecuteResponse(
        success=result.ok,
        stdout=result.stdout,
        stderr=result.stderr,
        code=result.exit_code,
    )


@router.post("/execute-stream")
async def execute_stream(
    req: ExecuteRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Run one command, streaming its output as server-sent events."""
    sink = StreamSink()
    target = HubTarget(host=req.host, username=req.username, password=req.password)
    run = CommandRun(registry, sink, target)
    return stream_run(sink, run.run(req.command, cwd=req.cwd))


@router.post("/disconnect", response_model=ActionResponse)
async def disconnect(
    req: DisconnectRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ActionResponse:
    await registry.disconnect(req.host, req.username)
    return ActionResponse(success=True, message="Disconnected successfully")
