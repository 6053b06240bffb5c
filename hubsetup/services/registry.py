"""Registry of live hub sessions keyed by (host, username).

Created once per service (FastAPI lifespan) or per CLI invocation and passed
by reference to whatever runs pipelines.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from hubsetup.config import Settings, settings
from hubsetup.errors import AuthenticationError, ConnectivityError, HubSetupError
from hubsetup.services.retry import Reporter, RetryPolicy
from hubsetup.models.commands import CommandResult
from hubsetup.services.ssh_session import RemoteSession
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)

ConnectionKey = tuple[str, str]
SessionFactory = Callable[..., RemoteSession]

CONNECT_RETRY_ON = (AuthenticationError, ConnectivityError)


class SessionRegistry:
    """At most one live session per connection key."""

    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        session_factory: SessionFactory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._cfg = cfg or settings
        self._factory = session_factory or RemoteSession
        self._sleep = sleep
        self._connect_policy = RetryPolicy.for_connect(self._cfg)
        self._command_policy = RetryPolicy.for_commands(self._cfg)
        self._sessions: dict[ConnectionKey, RemoteSession] = {}
        self._locks: dict[ConnectionKey, asyncio.Lock] = {}
        self._lock_users: dict[ConnectionKey, int] = {}

    @staticmethod
    def make_key(host: str, username: str) -> ConnectionKey:
        return (host.strip(), username.strip())

    @asynccontextmanager
    async def _locked(self, key: ConnectionKey) -> AsyncIterator[None]:
        """Hold the key's lock; it is dropped once unused and the key has no session."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                if key not in self._sessions:
                    self._locks.pop(key, None)

    async def _connect(self, session: RemoteSession, reporter: Reporter | None) -> None:
        await self._connect_policy.guard(
            session.connect,
            retry_on=CONNECT_RETRY_ON,
            reporter=reporter,
            sleep=self._sleep,
        )

    # ── public API ────────────────────────────────────────────────────

    async def get_or_create(
        self,
        host: str,
        username: str,
        password: str,
        *,
        reporter: Reporter | None = None,
    ) -> RemoteSession:
        """Return a connected session for the key, authenticating only if needed."""
        key = self.make_key(host, username)
        async with self._locked(key):
            session = self._sessions.get(key)
            if session is not None:
                if session.is_healthy():
                    log.debug("registry.reuse", host=key[0], user=key[1])
                    return session
                log.info("registry.reconnect", host=key[0], user=key[1])
                session.update_credential(password)
                await self._connect(session, reporter)
                return session

            session = self._factory(key[0], key[1], password, cfg=self._cfg)
            try:
                await self._connect(session, reporter)
            except HubSetupError:
                await session.teardown()
                raise
            self._sessions[key] = session
            log.info("registry.added", host=key[0], user=key[1], total=len(self._sessions))
            return session

    async def reconnect(
        self,
        session: RemoteSession,
        *,
        reporter: Reporter | None = None,
    ) -> RemoteSession:
        """Reconnect in place under the connect retry policy; a no-op while healthy."""
        async with self._locked(session.key):
            if not session.is_healthy():
                log.info("registry.recover", host=session.host, user=session.username)
                await self._connect(session, reporter)
        return session

    async def run(
        self,
        session: RemoteSession,
        command: str,
        *,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run *command* on *session*, reconnecting when the connection drops.

        A non-zero exit is returned as is; only lost connections are retried.
        """
        return await self._command_policy.guard(
            lambda: session.run(command, cwd=cwd),
            on_retry=lambda: self.reconnect(session),
            retry_on=(ConnectivityError,),
            sleep=self._sleep,
        )

    def get(self, host: str, username: str) -> Optional[RemoteSession]:
        return self._sessions.get(self.make_key(host, username))

    def sessions(self) -> list[RemoteSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    async def disconnect(self, host: str, username: str) -> bool:
        """Tear down and forget the session. Unknown keys are ignored."""
        key = self.make_key(host, username)
        async with self._locked(key):
            session = self._sessions.pop(key, None)
            if session is None:
                return False
            await session.teardown()
            log.info("registry.removed", host=key[0], user=key[1])
            return True

    async def disconnect_all(self) -> None:
        for host, username in list(self._sessions):
            await self.disconnect(host, username)
