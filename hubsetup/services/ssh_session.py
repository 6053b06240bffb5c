"""One authenticated SSH session to a hub.

Uses a paramiko ``SSHClient`` driven from a single-thread executor so the
FastAPI event loop is never blocked and commands issued by one caller
complete in issuance order.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

import paramiko

from hubsetup.config import Settings, settings
from hubsetup.errors import (
    AuthenticationError,
    ConnectivityError,
    PreconditionUnavailable,
    RemoteCommandError,
)
from hubsetup.models.commands import CommandResult
from hubsetup.services.commands import shell_wrap
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)

ChunkCallback = Callable[[str], None]

_READ_SIZE = 4096
_POLL_INTERVAL = 0.01

# paramiko and socket failures that mean "the hub is unreachable"
_TRANSPORT_ERRORS = (paramiko.SSHException, socket.error, EOFError, TimeoutError)


class RemoteSession:
    """Owns one connection to ``username@host``."""

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        *,
        port: int | None = None,
        cfg: Settings | None = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self._cfg = cfg or settings
        self.host = host
        self.username = username
        self.port = port or self._cfg.hub_ssh_port
        self._password = password
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._lock = asyncio.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def __repr__(self) -> str:
        return f"RemoteSession({self.username}@{self.host}:{self.port})"

    @property
    def key(self) -> tuple[str, str]:
        return (self.host, self.username)

    def update_credential(self, password: str) -> None:
        """Used by the registry before reconnecting with a fresh password."""
        self._password = password

    # ── connection lifecycle ──────────────────────────────────────────

    def _open_sync(self) -> paramiko.SSHClient:
        self._close_sync()
        log.info("ssh.connecting", host=self.host, user=self.username, port=self.port)
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self._password,
                timeout=self._cfg.hub_connect_timeout_seconds,
                banner_timeout=self._cfg.hub_banner_timeout_seconds,
                auth_timeout=self._cfg.hub_auth_timeout_seconds,
                allow_agent=False,
                look_for_keys=False,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthenticationError(
                f"Authentication failed for {self.username}@{self.host}: {exc}",
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            client.close()
            raise ConnectivityError(
                f"Cannot reach {self.host}:{self.port}: {exc or type(exc).__name__}",
            ) from exc

        transport = client.get_transport()
        if transport is not None:
            transport.set_keepalive(self._cfg.hub_keepalive_seconds)
        log.info("ssh.connected", host=self.host, user=self.username)
        return client

    def _close_sync(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except _TRANSPORT_ERRORS as exc:
                log.debug("ssh.close_error", host=self.host, error=str(exc))
            self._client = None
            log.info("ssh.closed", host=self.host, user=self.username)

    async def connect(self) -> None:
        """Authenticate a fresh transport, replacing any previous one."""
        async with self._lock:
            self._client = await self._run(self._open_sync)

    def is_healthy(self) -> bool:
        """Cheap liveness probe; never sends anything to the hub."""
        if self._client is None:
            return False
        transport = self._client.get_transport()
        if transport is None:
            return False
        return transport.is_active() and transport.is_authenticated()

    async def teardown(self) -> None:
        """Release the transport. Safe to call repeatedly."""
        async with self._lock:
            if self._client is not None:
                await self._run(self._close_sync)
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None

    # ── helpers ───────────────────────────────────────────────────────

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix=f"ssh-{self.host}",
            )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def _require_client(self) -> paramiko.SSHClient:
        if self._client is None or not self.is_healthy():
            raise ConnectivityError(f"Session to {self.username}@{self.host} is not connected")
        return self._client

    # ── public: command execution ─────────────────────────────────────

    async def run(self, command: str, *, cwd: str | None = None) -> CommandResult:
        """Execute *command* and return once it has finished."""
        async with self._lock:
            client = self._require_client()
            return await self._run(_exec_wrapper, client, command, cwd, None, None)

    async def run_streaming(
        self,
        command: str,
        *,
        cwd: str | None = None,
        on_stdout: ChunkCallback | None = None,
        on_stderr: ChunkCallback | None = None,
    ) -> CommandResult:
        """Execute *command*, delivering output chunks as they arrive.

        Callbacks run on the event loop thread, in arrival order per stream.
        """
        loop = asyncio.get_running_loop()

        def _forward(callback: ChunkCallback | None) -> ChunkCallback | None:
            if callback is None:
                return None
            return lambda chunk: loop.call_soon_threadsafe(callback, chunk)

        async with self._lock:
            client = self._require_client()
            return await self._run(
                _exec_wrapper, client, command, cwd,
                _forward(on_stdout), _forward(on_stderr),
            )

    # ── public: file transfer ─────────────────────────────────────────

    async def upload(self, local_path: str, remote_path: str) -> None:
        if not os.path.isfile(local_path):
            raise PreconditionUnavailable(f"Local file does not exist: {local_path}")
        async with self._lock:
            client = self._require_client()
            await self._run(_upload_wrapper, client, local_path, remote_path)
        log.info("ssh.uploaded", host=self.host, local=local_path, remote=remote_path)


# ── module-level sync wrappers (executor-friendly) ────────────────────────

def _exec_wrapper(
    client: paramiko.SSHClient,
    command: str,
    cwd: str | None,
    on_stdout: ChunkCallback | None,
    on_stderr: ChunkCallback | None,
) -> CommandResult:
    started = time.monotonic()
    try:
        transport = client.get_transport()
        if transport is None:
            raise ConnectivityError("SSH transport is gone")
        channel = transport.open_session()
        channel.exec_command(shell_wrap(command, cwd))
        stdout, stderr, code = drain_channel(channel, on_stdout, on_stderr)
    except _TRANSPORT_ERRORS as exc:
        raise ConnectivityError(f"Connection lost while running `{command}`: {exc}") from exc
    # paramiko reports -1 when the channel closed without an exit status
    if code == -1 and not _transport_alive(client):
        raise ConnectivityError(f"Connection lost while running `{command}`")
    result = CommandResult(
        command=command,
        stdout=stdout,
        stderr=stderr,
        exit_code=code,
        elapsed_time=time.monotonic() - started,
    )
    log.debug("ssh.exec", command=command, cwd=cwd, rc=code, elapsed=result.elapsed_time)
    return result


def _transport_alive(client: paramiko.SSHClient) -> bool:
    transport = client.get_transport()
    return transport is not None and transport.is_active()


def drain_channel(
    channel: paramiko.Channel,
    on_stdout: ChunkCallback | None = None,
    on_stderr: ChunkCallback | None = None,
) -> tuple[str, str, int]:
    """Read both streams of *channel* until the command exits.

    Returns (stdout, stderr, exit_code).
    """
    out_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    err_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    out_buf: list[str] = []
    err_buf: list[str] = []

    def _take(data: bytes, decoder, buf: list[str], callback, final: bool = False) -> None:
        text = decoder.decode(data, final=final)
        if text:
            buf.append(text)
            if callback is not None:
                callback(text)

    try:
        while True:
            busy = False
            if channel.recv_ready():
                data = channel.recv(_READ_SIZE)
                if data:
                    busy = True
                    _take(data, out_decoder, out_buf, on_stdout)
            if channel.recv_stderr_ready():
                data = channel.recv_stderr(_READ_SIZE)
                if data:
                    busy = True
                    _take(data, err_decoder, err_buf, on_stderr)
            if busy:
                continue
            if (
                channel.exit_status_ready()
                and not channel.recv_ready()
                and not channel.recv_stderr_ready()
            ):
                break
            time.sleep(_POLL_INTERVAL)

        _take(b"", out_decoder, out_buf, on_stdout, final=True)
        _take(b"", err_decoder, err_buf, on_stderr, final=True)
        code = channel.recv_exit_status()
    finally:
        channel.close()
    return "".join(out_buf), "".join(err_buf), code


def _upload_wrapper(client: paramiko.SSHClient, local_path: str, remote_path: str) -> None:
    try:
        sftp = client.open_sftp()
        try:
            sftp.put(local_path, remote_path)
        finally:
            sftp.close()
    except FileNotFoundError as exc:
        # remote directory missing; reconnecting will not help
        raise RemoteCommandError(f"Cannot write {remote_path} on the hub: {exc}") from exc
    except _TRANSPORT_ERRORS as exc:
        raise ConnectivityError(f"Upload of {local_path} failed: {exc}") from exc
