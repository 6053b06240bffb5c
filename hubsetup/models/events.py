"""Progress events streamed to the observer of a pipeline run.

Field names follow the browser client's contract: ``step`` carries the stage
ordinal, chunks travel in ``data`` and failures in ``error``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class ConnectedEvent(BaseModel):
    type: Literal["connected"] = "connected"
    message: str = "Connected to hub"


class InfoEvent(BaseModel):
    type: Literal["info"] = "info"
    message: str


class StepEvent(BaseModel):
    type: Literal["step"] = "step"
    step: int
    message: str
    stage: Optional[str] = None


class StdoutEvent(BaseModel):
    type: Literal["stdout"] = "stdout"
    data: str


class StderrEvent(BaseModel):
    type: Literal["stderr"] = "stderr"
    data: str


class SuccessEvent(BaseModel):
    type: Literal["success"] = "success"
    message: str
    payload: Optional[dict[str, Any]] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str
    stage: Optional[str] = None


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    message: str = "Command completed"
    exit_code: Optional[int] = None


ProgressEvent = Annotated[
    Union[
        ConnectedEvent,
        InfoEvent,
        StepEvent,
        StdoutEvent,
        StderrEvent,
        SuccessEvent,
        ErrorEvent,
        DoneEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_TYPES = frozenset({"success", "error", "done"})

progress_event_adapter: TypeAdapter[ProgressEvent] = TypeAdapter(ProgressEvent)


def is_terminal(event: BaseModel) -> bool:
    return getattr(event, "type", None) in TERMINAL_TYPES


def parse_event(raw: str | bytes) -> ProgressEvent:
    """Parse one JSON-encoded event back into its model."""
    return progress_event_adapter.validate_json(raw)
