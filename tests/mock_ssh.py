"""Fake hub sessions and paramiko objects for testing without a real hub.

``MockRemoteSession`` answers commands from scripted rules plus a tiny model
of the hub (installed tools, existing files). ``FakeSSHClient`` stands in for
``paramiko.SSHClient`` underneath the real ``RemoteSession``.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from hubsetup.errors import ConnectivityError
from hubsetup.models.commands import CommandResult
from hubsetup.services.progress import ProgressSink

HUB_IP = "10.1.4.215"
BASE = "/data/hub-setup"
ARCHIVE = f"{BASE}/repo.tar.gz"
EXTRACTED = f"{BASE}/hub-main"

CURL_PROGRESS = """\
  % Total    % Received % Xferd  Average Speed   Time    Time     Time  Current
100 48213  100 48213    0     0   181k      0 --:--:-- --:--:-- --:--:--  181k
"""

NPM_INSTALL = """\
added 143 packages, and audited 144 packages in 9s
found 0 vulnerabilities
"""

SETUP_SCRIPT_OUTPUT = """\
Connecting to Raspberry Pi at 10.1.4.215...
Successfully connected to Raspberry Pi
PM2 is already installed.
"""


# ── Mock session ─────────────────────────────────────────────────────────


@dataclass
class _Rule:
    prefix: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    creates: tuple[str, ...] = ()
    raises: Optional[BaseException] = None
    times: Optional[int] = None


class MockRemoteSession:
    """Drop-in replacement for RemoteSession."""

    def __init__(self, host: str = HUB_IP, username: str = "root", password: str = "x", *, cfg=None) -> None:
        self.host = host
        self.username = username
        self.password = password
        self.healthy = False
        self.connect_calls = 0
        self.teardown_calls = 0
        self.connect_failures: list[BaseException] = []
        self.commands: list[str] = []
        self.cwds: list[Optional[str]] = []
        self.uploads: list[tuple[str, str]] = []
        self.files: set[str] = set()
        self.tools: set[str] = {"curl", "wget"}
        self._rules: list[_Rule] = []

    @property
    def key(self) -> tuple[str, str]:
        return (self.host, self.username)

    def update_credential(self, password: str) -> None:
        self.password = password

    # ── scripting ─────────────────────────────────────────────────────

    def add_response(
        self,
        prefix: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        *,
        creates: Iterable[str] = (),
        times: Optional[int] = None,
    ) -> None:
        """Answer commands starting with *prefix*; later rules win."""
        self._rules.insert(
            0,
            _Rule(prefix, stdout, stderr, exit_code, tuple(creates), times=times),
        )

    def add_failure(self, prefix: str, exc: BaseException, *, times: int = 1) -> None:
        """Raise *exc* (and drop the connection) for the next *times* matches."""
        self._rules.insert(0, _Rule(prefix, raises=exc, times=times))

    def _match(self, command: str) -> Optional[_Rule]:
        for rule in self._rules:
            if rule.times == 0:
                continue
            if command.startswith(rule.prefix):
                if rule.times is not None:
                    rule.times -= 1
                return rule
        return None

    def _builtin(self, command: str) -> CommandResult:
        argv = shlex.split(command)
        if argv[:2] == ["command", "-v"]:
            tool = argv[2]
            if tool in self.tools:
                return CommandResult(command=command, stdout=f"/usr/bin/{tool}\n")
            return CommandResult(command=command, exit_code=1)
        if argv[:2] == ["test", "-f"]:
            return CommandResult(command=command, exit_code=0 if argv[2] in self.files else 1)
        return CommandResult(command=command)

    # ── RemoteSession surface ─────────────────────────────────────────

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_failures:
            raise self.connect_failures.pop(0)
        self.healthy = True

    def is_healthy(self) -> bool:
        return self.healthy

    async def teardown(self) -> None:
        self.teardown_calls += 1
        self.healthy = False

    async def run(self, command: str, *, cwd: Optional[str] = None) -> CommandResult:
        self.commands.append(command)
        self.cwds.append(cwd)
        if not self.healthy:
            raise ConnectivityError(f"Session to {self.username}@{self.host} is not connected")
        rule = self._match(command)
        if rule is None:
            return self._builtin(command)
        if rule.raises is not None:
            self.healthy = False
            raise rule.raises
        self.files.update(rule.creates)
        return CommandResult(
            command=command,
            stdout=rule.stdout,
            stderr=rule.stderr,
            exit_code=rule.exit_code,
        )

    async def run_streaming(
        self,
        command: str,
        *,
        cwd: Optional[str] = None,
        on_stdout=None,
        on_stderr=None,
    ) -> CommandResult:
        result = await self.run(command, cwd=cwd)
        if result.stdout and on_stdout is not None:
            on_stdout(result.stdout)
        if result.stderr and on_stderr is not None:
            on_stderr(result.stderr)
        return result

    async def upload(self, local_path: str, remote_path: str) -> None:
        if not self.healthy:
            raise ConnectivityError("not connected")
        self.uploads.append((local_path, remote_path))
        self.files.add(remote_path)


class MockSessionFactory:
    """Session factory for SessionRegistry that remembers what it built."""

    def __init__(self, configure=None) -> None:
        self.configure = configure
        self.created: list[MockRemoteSession] = []

    def __call__(self, host: str, username: str, password: str, *, cfg=None) -> MockRemoteSession:
        session = MockRemoteSession(host, username, password, cfg=cfg)
        if self.configure is not None:
            self.configure(session)
        self.created.append(session)
        return session


def capable_hub(session: MockRemoteSession) -> None:
    """A hub where the full acme/hub@main setup succeeds."""
    session.add_response("curl ", stdout=CURL_PROGRESS, creates=[ARCHIVE])
    session.add_response("wget ", stderr="saving to repo.tar.gz\n", creates=[ARCHIVE])
    session.add_response(
        "tar -xzf",
        creates=[f"{EXTRACTED}/package.json", f"{EXTRACTED}/hub-setup.js"],
    )
    session.add_response("npm install", stdout=NPM_INSTALL)
    session.add_response("node hub-setup.js", stdout=SETUP_SCRIPT_OUTPUT)


async def no_sleep(_delay: float) -> None:
    return None


# ── Recording sink ───────────────────────────────────────────────────────


class RecordingSink(ProgressSink):
    """Keeps every delivered event in order."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list = []

    def _deliver(self, event) -> None:
        self.events.append(event)

    def of_type(self, kind: str) -> list:
        return [e for e in self.events if e.type == kind]

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]


# ── Fake paramiko objects ────────────────────────────────────────────────


@dataclass
class FakeChannel:
    """Delivers scripted (stream, bytes) chunks, one per recv call."""

    chunks: list[tuple[str, bytes]] = field(default_factory=list)
    exit_code: int = 0
    executed: Optional[str] = None
    closed: bool = False
    # called right after exec_command, e.g. to drop the transport
    on_exec: Optional[Callable[[], None]] = None

    def exec_command(self, command: str) -> None:
        self.executed = command
        if self.on_exec is not None:
            self.on_exec()

    def _next(self, stream: str) -> bool:
        return bool(self.chunks) and self.chunks[0][0] == stream

    def recv_ready(self) -> bool:
        return self._next("out")

    def recv_stderr_ready(self) -> bool:
        return self._next("err")

    def recv(self, _size: int) -> bytes:
        return self.chunks.pop(0)[1]

    def recv_stderr(self, _size: int) -> bytes:
        return self.chunks.pop(0)[1]

    def exit_status_ready(self) -> bool:
        return not self.chunks

    def recv_exit_status(self) -> int:
        return self.exit_code

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    def __init__(self, channels: list[FakeChannel]) -> None:
        self.active = True
        self.keepalive: Optional[int] = None
        self._channels = channels
        self.opened: list[FakeChannel] = []

    def is_active(self) -> bool:
        return self.active

    def is_authenticated(self) -> bool:
        return True

    def set_keepalive(self, interval: int) -> None:
        self.keepalive = interval

    def open_session(self) -> FakeChannel:
        if not self.active:
            raise EOFError("transport closed")
        channel = self._channels.pop(0) if self._channels else FakeChannel()
        self.opened.append(channel)
        return channel


class FakeSSHClient:
    """Minimal paramiko.SSHClient stand-in."""

    def __init__(self, connect_error: Optional[BaseException] = None, channels=None) -> None:
        self.connect_error = connect_error
        self.transport: Optional[FakeTransport] = None
        self.channels: list[FakeChannel] = list(channels or [])
        self.connect_kwargs: dict = {}
        self.closed = False
        self.policy = None

    def set_missing_host_key_policy(self, policy) -> None:
        self.policy = policy

    def connect(self, **kwargs) -> None:
        self.connect_kwargs = kwargs
        if self.connect_error is not None:
            raise self.connect_error
        self.transport = FakeTransport(self.channels)

    def get_transport(self) -> Optional[FakeTransport]:
        return self.transport

    def close(self) -> None:
        self.closed = True
        if self.transport is not None:
            self.transport.active = False
        self.transport = None
