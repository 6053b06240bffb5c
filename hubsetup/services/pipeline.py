"""Staged provisioning runs with live progress reporting.

A run acquires a session from the registry, executes its stages strictly in
order and reports every transition to a progress sink. The first stage that
fails terminally ends the run with exactly one ``error`` event; nothing is
sent to the hub after that.

Flows:

- setup:          create dir → detect tool → fetch → verify → extract →
                  install deps (if manifest) → run setup script
- branch download: create dir → detect tool → fetch → verify
- file download:  detect tool → fetch → verify
- extract:        extract
"""

from __future__ import annotations

import asyncio
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from hubsetup.config import Settings, settings
from hubsetup.errors import (
    ConnectivityError,
    HubSetupError,
    PreconditionUnavailable,
    RemoteCommandError,
)
from hubsetup.models.commands import CommandResult
from hubsetup.models.events import (
    ConnectedEvent,
    DoneEvent,
    ErrorEvent,
    InfoEvent,
    StderrEvent,
    StdoutEvent,
    StepEvent,
    SuccessEvent,
)
from hubsetup.models.requests import HubTarget
from hubsetup.services import commands
from hubsetup.services.progress import ProgressSink
from hubsetup.services.registry import SessionRegistry
from hubsetup.services.retry import RetryPolicy
from hubsetup.services.ssh_session import RemoteSession
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)


class Stage(str, Enum):
    create_target_directory = "create-target-directory"
    detect_transfer_tool = "detect-transfer-tool"
    fetch_archive = "fetch-archive"
    verify_archive = "verify-archive"
    extract_archive = "extract-archive"
    install_dependencies = "install-dependencies"
    execute_setup_script = "execute-setup-script"


STAGE_ORDINALS: dict[Stage, int] = {stage: i for i, stage in enumerate(Stage, start=1)}


class PipelineState(str, Enum):
    init = "init"
    running = "running"
    complete = "complete"
    failed = "failed"


@dataclass
class RunResult:
    state: PipelineState
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.complete


# ---------------------------------------------------------------------------
# Shared run machinery
# ---------------------------------------------------------------------------


class StagedRun:
    """Session acquisition, guarded command execution and terminal reporting."""

    def __init__(
        self,
        registry: SessionRegistry,
        sink: ProgressSink,
        target: HubTarget,
        *,
        cfg: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._cfg = cfg or settings
        self._registry = registry
        self._sink = sink
        self._target = target
        self._sleep = sleep
        self._policy = RetryPolicy.for_commands(self._cfg)
        self._session: Optional[RemoteSession] = None
        self._label = "Connecting to hub"
        self.state = PipelineState.init
        self.current_stage: Optional[str] = None

    # ── events ────────────────────────────────────────────────────────

    def _step(self, ordinal: int, stage: str, message: str) -> None:
        self.current_stage = stage
        self._label = message.rstrip(".")
        log.info("pipeline.step", step=ordinal, stage=stage, host=self._target.host)
        self._sink.emit(StepEvent(step=ordinal, message=message, stage=stage))

    def _info(self, message: str) -> None:
        self._sink.emit(InfoEvent(message=message))

    def _on_stdout(self, chunk: str) -> None:
        self._sink.emit(StdoutEvent(data=chunk))

    def _on_stderr(self, chunk: str) -> None:
        self._sink.emit(StderrEvent(data=chunk))

    def _report_retry(self, attempt: int, limit: int, exc: BaseException) -> None:
        outcome = "retrying" if attempt < limit else "giving up"
        self._info(f"Attempt {attempt}/{limit} failed: {exc} ({outcome})")

    # ── remote execution ──────────────────────────────────────────────

    @property
    def session(self) -> RemoteSession:
        if self._session is None:
            raise ConnectivityError("No session acquired for this run")
        return self._session

    async def _acquire(self) -> None:
        target = self._target
        self._session = await self._registry.get_or_create(
            target.host,
            target.username,
            target.password,
            reporter=self._report_retry,
        )
        self._sink.emit(ConnectedEvent())

    async def _recover(self) -> None:
        # rejected credentials propagate once the connect policy is exhausted
        await self._registry.reconnect(self.session, reporter=self._report_retry)

    async def _exec(
        self,
        command: str,
        *,
        cwd: str | None = None,
        stream: bool = True,
        check: bool = True,
        retry_failures: bool = False,
    ) -> CommandResult:
        """Run one command under the command retry policy.

        Connectivity failures are always retried after reconnecting;
        a non-zero exit only when *retry_failures* is set.
        """

        async def attempt() -> CommandResult:
            if stream:
                result = await self.session.run_streaming(
                    command,
                    cwd=cwd,
                    on_stdout=self._on_stdout,
                    on_stderr=self._on_stderr,
                )
            else:
                result = await self.session.run(command, cwd=cwd)
            if check and not result.ok:
                raise RemoteCommandError.from_result(result, stage=self.current_stage)
            return result

        retry_on: tuple[type[BaseException], ...] = (ConnectivityError,)
        if retry_failures:
            retry_on = (ConnectivityError, RemoteCommandError)
        return await self._policy.guard(
            attempt,
            on_retry=self._recover,
            retry_on=retry_on,
            reporter=self._report_retry,
            sleep=self._sleep,
        )

    async def _file_exists(self, path: str) -> bool:
        result = await self._exec(commands.file_exists_command(path), stream=False, check=False)
        return result.ok

    # ── terminal handling ─────────────────────────────────────────────

    def _fail(self, exc: BaseException) -> RunResult:
        if isinstance(exc, PreconditionUnavailable):
            message = str(exc)
        elif isinstance(exc, HubSetupError):
            message = f"{self._label} failed: {exc}"
        else:
            message = f"{self._label} failed: {type(exc).__name__}: {exc}"
        self.state = PipelineState.failed
        log.error(
            "pipeline.failed",
            stage=self.current_stage,
            host=self._target.host,
            error=str(exc),
        )
        self._sink.emit(ErrorEvent(error=message, stage=self.current_stage))
        return RunResult(PipelineState.failed, failed_stage=self.current_stage, error=message)

    async def _execute(self, body: Callable[[], Awaitable[SuccessEvent | DoneEvent]]) -> RunResult:
        self.state = PipelineState.running
        try:
            await self._acquire()
            final = await body()
        except HubSetupError as exc:
            return self._fail(exc)
        except Exception as exc:
            log.exception("pipeline.unexpected_error", stage=self.current_stage)
            return self._fail(exc)

        self.state = PipelineState.complete
        self._sink.emit(final)
        payload = getattr(final, "payload", None) or {}
        log.info("pipeline.complete", host=self._target.host, **payload)
        return RunResult(PipelineState.complete, payload=payload)


# ---------------------------------------------------------------------------
# Source archive pipeline
# ---------------------------------------------------------------------------


@dataclass
class SourceSpec:
    """Where the archive comes from and where it lands on the hub."""

    owner: str
    repo: str
    branch: str
    base_path: str
    file_path: Optional[str] = None
    output_path: Optional[str] = None
    archive_path: Optional[str] = None
    extract_to: Optional[str] = None

    @classmethod
    def resolve(cls, cfg: Settings | None = None, **overrides: Optional[str]) -> SourceSpec:
        """Fill blank fields from the configured defaults."""
        cfg = cfg or settings
        given = {k: v for k, v in overrides.items() if v}
        return cls(
            owner=given.pop("owner", cfg.hub_source_owner),
            repo=given.pop("repo", cfg.hub_source_repo),
            branch=given.pop("branch", cfg.hub_source_branch),
            base_path=given.pop("base_path", cfg.hub_base_path),
            **given,
        )


@dataclass(frozen=True)
class Flow:
    name: str
    stages: tuple[Stage, ...]
    success_message: str
    payload: Callable[[PipelineRunner], dict[str, Any]]


SETUP_FLOW = Flow(
    name="setup",
    stages=tuple(Stage),
    success_message="Setup completed successfully!",
    payload=lambda run: {"path": run.extracted_dir},
)

DOWNLOAD_FLOW = Flow(
    name="download-branch",
    stages=(
        Stage.create_target_directory,
        Stage.detect_transfer_tool,
        Stage.fetch_archive,
        Stage.verify_archive,
    ),
    success_message="Download completed",
    payload=lambda run: {"archivePath": run.download_path},
)

FILE_DOWNLOAD_FLOW = Flow(
    name="download-file",
    stages=(Stage.detect_transfer_tool, Stage.fetch_archive, Stage.verify_archive),
    success_message="File downloaded",
    payload=lambda run: {"path": run.download_path},
)

EXTRACT_FLOW = Flow(
    name="extract",
    stages=(Stage.extract_archive,),
    success_message="Extraction completed",
    payload=lambda run: {"path": run.extract_to},
)


class PipelineRunner(StagedRun):
    """Fetches a source archive onto the hub and runs its setup script."""

    def __init__(
        self,
        registry: SessionRegistry,
        sink: ProgressSink,
        target: HubTarget,
        source: SourceSpec,
        **kwargs: Any,
    ) -> None:
        super().__init__(registry, sink, target, **kwargs)
        self.source = source
        self.tool: Optional[str] = None

        base = source.base_path
        if source.file_path:
            self.url = commands.raw_file_url(
                source.owner, source.repo, source.branch, source.file_path,
            )
            default_out = posixpath.join(base, posixpath.basename(source.file_path))
        else:
            self.url = commands.archive_url(source.owner, source.repo, source.branch)
            default_out = posixpath.join(base, self._cfg.hub_archive_name)
        self.download_path = source.output_path or default_out
        self.archive_path = source.archive_path or self.download_path
        self.extract_to = source.extract_to or base
        self.extracted_dir = posixpath.join(
            self.extract_to,
            commands.extracted_dir_name(source.repo, source.branch),
        )

        self._handlers: dict[Stage, Callable[[], Awaitable[None]]] = {
            Stage.create_target_directory: self._create_target_directory,
            Stage.detect_transfer_tool: self._detect_transfer_tool,
            Stage.fetch_archive: self._fetch_archive,
            Stage.verify_archive: self._verify_archive,
            Stage.extract_archive: self._extract_archive,
            Stage.install_dependencies: self._install_dependencies,
            Stage.execute_setup_script: self._execute_setup_script,
        }

    def _describe(self, stage: Stage) -> str:
        if stage is Stage.create_target_directory:
            return "Creating directory..."
        if stage is Stage.detect_transfer_tool:
            return "Checking for download tools..."
        if stage is Stage.fetch_archive:
            if self.source.file_path:
                return f"Downloading {self.source.file_path}..."
            return "Downloading repository..."
        if stage is Stage.verify_archive:
            return "Verifying download..."
        if stage is Stage.extract_archive:
            return "Extracting archive..."
        if stage is Stage.install_dependencies:
            return "Installing dependencies..."
        return f"Running {self._cfg.hub_setup_script}..."

    async def run(self, flow: Flow = SETUP_FLOW) -> RunResult:
        log.info(
            "pipeline.start",
            flow=flow.name,
            host=self._target.host,
            source=f"{self.source.owner}/{self.source.repo}@{self.source.branch}",
        )

        async def body() -> SuccessEvent:
            for stage in flow.stages:
                self._step(STAGE_ORDINALS[stage], stage.value, self._describe(stage))
                await self._handlers[stage]()
            return SuccessEvent(message=flow.success_message, payload=flow.payload(self))

        return await self._execute(body)

    # ── stages ────────────────────────────────────────────────────────

    async def _create_target_directory(self) -> None:
        await self._exec(commands.mkdir_command(self.source.base_path), stream=False)

    async def _detect_transfer_tool(self) -> None:
        for tool in commands.TRANSFER_TOOLS:
            probe = await self._exec(commands.probe_command(tool), stream=False, check=False)
            if probe.ok and probe.stdout.strip():
                self.tool = tool
                self._info(f"Using {tool} for download...")
                return
        raise PreconditionUnavailable(
            "Neither curl nor wget is available on the hub. Please install one of them.",
        )

    async def _fetch_archive(self) -> None:
        if self.tool is None:
            raise PreconditionUnavailable("No download tool selected")
        await self._exec(commands.download_command(self.url, self.download_path, self.tool))

    async def _verify_archive(self) -> None:
        # some tools exit 0 after saving an error page elsewhere
        if not await self._file_exists(self.download_path):
            raise RemoteCommandError(
                f"{self.download_path} not found after download",
                stage=self.current_stage,
            )

    async def _extract_archive(self) -> None:
        if not await self._file_exists(self.archive_path):
            raise RemoteCommandError(
                f"Archive {self.archive_path} does not exist",
                stage=self.current_stage,
            )
        await self._exec(commands.mkdir_command(self.extract_to), stream=False)
        await self._exec(commands.extract_command(self.archive_path, self.extract_to))

    async def _install_dependencies(self) -> None:
        manifest = self._cfg.hub_dependency_manifest
        if not await self._file_exists(posixpath.join(self.extracted_dir, manifest)):
            self._info(f"No {manifest} found, skipping dependency installation")
            return
        self._info(f"Found {manifest}, installing dependencies...")
        await self._exec(
            self._cfg.hub_install_command,
            cwd=self.extracted_dir,
            retry_failures=True,
        )
        self._info("Dependencies installed successfully")

    async def _execute_setup_script(self) -> None:
        script = self._cfg.hub_setup_script
        if not await self._file_exists(posixpath.join(self.extracted_dir, script)):
            raise RemoteCommandError(
                f"{script} not found in {self.extracted_dir}",
                stage=self.current_stage,
            )
        await self._exec(
            commands.run_script_command(self._cfg.hub_setup_interpreter, script),
            cwd=self.extracted_dir,
        )


# ---------------------------------------------------------------------------
# Single command
# ---------------------------------------------------------------------------


class CommandRun(StagedRun):
    """Streams one arbitrary command; ends with ``done`` on a zero exit."""

    async def run(self, command: str, *, cwd: str | None = None) -> RunResult:
        async def body() -> DoneEvent:
            self._label = "Command"
            result = await self._exec(command, cwd=cwd)
            return DoneEvent(message="Command completed", exit_code=result.exit_code)

        return await self._execute(body)
