"""Command-related data structures."""

from __future__ import annotations

from pydantic import BaseModel


class CommandResult(BaseModel):
    """Result of one remote command. ``exit_code`` is the success signal."""

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    elapsed_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
