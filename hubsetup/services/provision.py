"""Standalone hub provisioning: packages, artifacts, network, services."""

from __future__ import annotations

import posixpath
import shlex
from typing import Any, Awaitable, Callable

from hubsetup.errors import ConnectivityError, PreconditionUnavailable, RemoteCommandError
from hubsetup.models.events import SuccessEvent
from hubsetup.models.provision import ProvisionPlan
from hubsetup.models.requests import HubTarget
from hubsetup.services import commands
from hubsetup.services.pipeline import RunResult, StagedRun
from hubsetup.services.progress import ProgressSink
from hubsetup.services.registry import SessionRegistry
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)


class HubProvisioner(StagedRun):
    """Brings a fresh hub to the state the platform services expect."""

    def __init__(
        self,
        registry: SessionRegistry,
        sink: ProgressSink,
        target: HubTarget,
        plan: ProvisionPlan | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(registry, sink, target, **kwargs)
        self.plan = plan or ProvisionPlan()
        self._steps: list[tuple[str, str, Callable[[], Awaitable[None]]]] = [
            ("check-prerequisites", "Checking prerequisites...", self._check_prerequisites),
            ("install-packages", "Installing global packages...", self._install_packages),
            ("create-directories", "Creating directories...", self._create_directories),
            ("upload-artifacts", "Uploading artifacts...", self._upload_artifacts),
            ("extract-artifacts", "Extracting artifacts...", self._extract_artifacts),
            ("configure-network", "Configuring container network...", self._configure_network),
            ("register-services", "Registering services...", self._register_services),
        ]

    async def run(self) -> RunResult:
        log.info("provision.start", host=self._target.host)

        async def body() -> SuccessEvent:
            for ordinal, (stage, message, handler) in enumerate(self._steps, start=1):
                self._step(ordinal, stage, message)
                await handler()
            return SuccessEvent(message="Hub provisioned successfully!")

        return await self._execute(body)

    # ── steps ─────────────────────────────────────────────────────────

    async def _check_prerequisites(self) -> None:
        for name in self.plan.required_commands:
            probe = await self._exec(commands.probe_command(name), stream=False, check=False)
            if not probe.ok:
                raise PreconditionUnavailable(f"{name} is not installed on the hub. Exiting.")
            self._info(f"{name} found at {probe.stdout.strip()}")

    async def _install_packages(self) -> None:
        for package in self.plan.global_packages:
            check = await self._exec(
                commands.npm_global_check_command(package),
                stream=False,
                check=False,
            )
            if check.ok and package in check.stdout:
                self._info(f"{package} is already installed.")
                continue
            self._info(f"Installing {package}...")
            await self._exec(commands.npm_global_install_command(package), retry_failures=True)

    async def _create_directories(self) -> None:
        for directory in self.plan.directories:
            await self._exec(commands.mkdir_command(directory), stream=False)

    async def _upload(self, local_path: str, remote_path: str) -> None:
        async def attempt() -> None:
            await self.session.upload(local_path, remote_path)

        await self._policy.guard(
            attempt,
            on_retry=self._recover,
            retry_on=(ConnectivityError,),
            reporter=self._report_retry,
            sleep=self._sleep,
        )

    async def _upload_artifacts(self) -> None:
        for upload in self.plan.uploads:
            self._info(f"Uploading {upload.local_path} to {upload.remote_path}...")
            await self._upload(upload.local_path, upload.remote_path)
            final_path = upload.remote_path
            if upload.install_path:
                await self._exec(
                    commands.move_command(upload.remote_path, upload.install_path),
                    stream=False,
                )
                final_path = upload.install_path
            if upload.mode:
                await self._exec(commands.chmod_command(upload.mode, final_path), stream=False)

    async def _extract_artifacts(self) -> None:
        for archive in self.plan.archives:
            if not await self._file_exists(archive.path):
                raise RemoteCommandError(
                    f"Tar file does not exist on the hub: {archive.path}",
                    stage=self.current_stage,
                )
            await self._exec(commands.extract_command(archive.path, archive.extract_to))

    async def _configure_network(self) -> None:
        runtime = self.plan.container_runtime
        version = await self._exec(f"{runtime} --version", stream=False, check=False)
        if not version.ok:
            raise PreconditionUnavailable(
                f"{runtime} is not installed. Please install {runtime} before proceeding.",
            )
        name = self.plan.network
        if not name:
            self._info("No container network requested, skipping")
            return
        listing = await self._exec(commands.network_list_command(runtime), stream=False)
        if name in listing.stdout.split():
            self._info(f'Network "{name}" already exists.')
            return
        self._info(f'Creating network "{name}"...')
        await self._exec(commands.network_create_command(name, runtime), retry_failures=True)

    async def _register_services(self) -> None:
        supervisor = self.plan.supervisor
        if supervisor is None:
            self._info("No service supervisor configured, skipping")
            return
        for command in supervisor.startup_commands:
            await self._exec(command)
        await self._upload(supervisor.config_local, supervisor.config_remote)
        config_dir, config_name = posixpath.split(supervisor.config_remote)
        await self._exec(
            supervisor.start_command.format(config=shlex.quote(config_name)),
            cwd=config_dir or "/",
        )
        await self._exec(supervisor.save_command)
