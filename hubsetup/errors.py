"""Exception taxonomy for the orchestration engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hubsetup.models.commands import CommandResult


class HubSetupError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(HubSetupError):
    """Malformed or missing request input. Never retried."""


class AuthenticationError(HubSetupError):
    """The hub rejected the credentials."""


class ConnectivityError(HubSetupError):
    """Network failure or timeout reaching the hub, or a dropped session."""


class PreconditionUnavailable(HubSetupError):
    """Something the run needs is absent and will not appear by retrying."""


class RemoteCommandError(HubSetupError):
    """A remote command exited non-zero or its postcondition was not met."""

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        command: str | None = None,
        result: CommandResult | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.command = command
        self.result = result

    @classmethod
    def from_result(cls, result: CommandResult, stage: str | None = None) -> RemoteCommandError:
        detail = (result.stderr or result.stdout).strip().splitlines()
        tail = detail[-1] if detail else "no output"
        return cls(
            f"`{result.command}` exited with status {result.exit_code}: {tail}",
            stage=stage,
            command=result.command,
            result=result,
        )


class SinkClosedError(HubSetupError):
    """An event was emitted after the run's terminal event."""
