"""Dependencies and SSE plumbing shared by the routers."""

from __future__ import annotations

import asyncio
from typing import Awaitable

from fastapi import Request
from fastapi.responses import StreamingResponse

from hubsetup.services.pipeline import RunResult
from hubsetup.services.progress import StreamSink, format_sse
from hubsetup.services.registry import SessionRegistry
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)

# Runs keep going when the client drops the stream
_running: set[asyncio.Task] = set()

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def get_registry(request: Request) -> SessionRegistry:
    """The session registry owned by the application."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        registry = SessionRegistry()
        request.app.state.registry = registry
    return registry


def _run_finished(task: asyncio.Task) -> None:
    _running.discard(task)
    if not task.cancelled() and task.exception() is not None:
        log.error("stream.run_crashed", error=str(task.exception()))


def stream_run(sink: StreamSink, run: Awaitable[RunResult]) -> StreamingResponse:
    """Start *run* in the background and stream its sink as SSE frames."""
    task = asyncio.ensure_future(run)
    _running.add(task)
    task.add_done_callback(_run_finished)

    async def frames():
        async for event in sink:
            yield format_sse(event)

    return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)
