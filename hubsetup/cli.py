"""Command-line entry point.

``hubsetup setup`` and ``hubsetup provision`` drive a run unattended, logging
progress to the console; the exit status is 0 on success, 1 on a failed run
and 2 on invalid input. ``hubsetup serve`` starts the HTTP API.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import pydantic
import typer

from hubsetup.errors import ValidationError
from hubsetup.models.provision import ProvisionPlan
from hubsetup.models.requests import HubTarget
from hubsetup.services.pipeline import SETUP_FLOW, PipelineRunner, RunResult, SourceSpec
from hubsetup.services.progress import LogSink
from hubsetup.services.provision import HubProvisioner
from hubsetup.services.registry import SessionRegistry
from hubsetup.utils.logging import setup_logging

app = typer.Typer(
    name="hubsetup",
    help="Provision hubs over SSH",
    add_completion=False,
)

HostOpt = Annotated[str, typer.Option("--host", "-H", envvar="HUB_HOST", help="Hub IP address")]
UserOpt = Annotated[str, typer.Option("--username", "-u", envvar="HUB_USERNAME")]
PasswordOpt = Annotated[
    str,
    typer.Option("--password", "-p", envvar="HUB_PASSWORD", help="SSH password"),
]
LogFormatOpt = Annotated[Optional[str], typer.Option("--log-format", help="console or json")]


def _build_target(host: str, username: str, password: str) -> HubTarget:
    try:
        return HubTarget(host=host, username=username, password=password)
    except pydantic.ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors())
        raise ValidationError(f"host, username and password are required (invalid: {fields})") from exc


def _exit_code(result: RunResult) -> int:
    return 0 if result.ok else 1


async def _run_setup(target: HubTarget, source: SourceSpec) -> RunResult:
    registry = SessionRegistry()
    try:
        runner = PipelineRunner(registry, LogSink(), target, source)
        return await runner.run(SETUP_FLOW)
    finally:
        await registry.disconnect_all()


async def _run_provision(target: HubTarget, plan: ProvisionPlan) -> RunResult:
    registry = SessionRegistry()
    try:
        provisioner = HubProvisioner(registry, LogSink(), target, plan)
        return await provisioner.run()
    finally:
        await registry.disconnect_all()


@app.command()
def setup(
    host: HostOpt = "",
    username: UserOpt = "root",
    password: PasswordOpt = "",
    owner: Annotated[Optional[str], typer.Option(help="Repository owner")] = None,
    repo: Annotated[Optional[str], typer.Option(help="Repository name")] = None,
    branch: Annotated[Optional[str], typer.Option(help="Branch to download")] = None,
    base_path: Annotated[Optional[str], typer.Option("--base-path", help="Target directory on the hub")] = None,
    log_format: LogFormatOpt = None,
) -> None:
    """Download the setup repository onto the hub and run its setup script."""
    setup_logging(log_format=log_format)
    try:
        target = _build_target(host, username, password)
    except ValidationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from exc

    source = SourceSpec.resolve(owner=owner, repo=repo, branch=branch, base_path=base_path)
    result = asyncio.run(_run_setup(target, source))
    if not result.ok:
        typer.secho(f"Setup failed: {result.error}", fg=typer.colors.RED, err=True)
    raise typer.Exit(_exit_code(result))


@app.command()
def provision(
    host: HostOpt = "",
    username: UserOpt = "root",
    password: PasswordOpt = "",
    plan: Annotated[
        Optional[Path],
        typer.Option("--plan", exists=True, dir_okay=False, help="JSON provisioning plan"),
    ] = None,
    log_format: LogFormatOpt = None,
) -> None:
    """Install packages, upload artifacts, create the network and register services."""
    setup_logging(log_format=log_format)
    try:
        target = _build_target(host, username, password)
        provision_plan = ProvisionPlan.from_file(plan) if plan else ProvisionPlan()
    except ValidationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from exc
    except pydantic.ValidationError as exc:
        typer.secho(f"Invalid plan file {plan}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from exc

    result = asyncio.run(_run_provision(target, provision_plan))
    if not result.ok:
        typer.secho(f"Provisioning failed: {result.error}", fg=typer.colors.RED, err=True)
    raise typer.Exit(_exit_code(result))


@app.command()
def serve(
    bind: Annotated[str, typer.Option("--bind", help="Interface to listen on")] = "0.0.0.0",
    port: Annotated[int, typer.Option("--port", envvar="PORT")] = 3000,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("hubsetup.main:app", host=bind, port=port)


if __name__ == "__main__":
    app()
