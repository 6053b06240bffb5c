"""Progress sinks: ordered, append-only conduits of progress events."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from hubsetup.errors import SinkClosedError
from hubsetup.models.events import ProgressEvent, is_terminal
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)


class ProgressSink:
    """Accepts events until a terminal one (success, error, done) arrives."""

    def __init__(self) -> None:
        self._closed = False
        self.terminal: Optional[ProgressEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            raise SinkClosedError(f"sink already closed, rejected {event.type!r} event")
        if is_terminal(event):
            self._closed = True
            self.terminal = event
        self._deliver(event)

    def _deliver(self, event: ProgressEvent) -> None:
        raise NotImplementedError

    @property
    def succeeded(self) -> bool:
        return self.terminal is not None and self.terminal.type != "error"


class StreamSink(ProgressSink):
    """Queue-backed sink consumed by exactly one async reader."""

    def __init__(self) -> None:
        super().__init__()
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()

    def _deliver(self, event: ProgressEvent) -> None:
        self._queue.put_nowait(event)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if is_terminal(event):
                return


class LogSink(ProgressSink):
    """Renders events through structlog; used by the CLI."""

    def __init__(self, name: str = "hubsetup.progress") -> None:
        super().__init__()
        self._log = get_logger(name)

    def _deliver(self, event: ProgressEvent) -> None:
        kind = event.type
        if kind == "step":
            self._log.info(f"[{event.step}] {event.message}", stage=event.stage)
        elif kind in ("stdout", "stderr"):
            for line in event.data.splitlines():
                if line.strip():
                    self._log.info(line, stream=kind)
        elif kind == "error":
            self._log.error(event.error, stage=event.stage)
        elif kind == "success":
            self._log.info(event.message, **(event.payload or {}))
        elif kind == "done":
            self._log.info(event.message, exit_code=event.exit_code)
        else:
            self._log.info(event.message, kind=kind)


def format_sse(event: ProgressEvent) -> str:
    """One server-sent-events frame carrying the event as JSON."""
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"
