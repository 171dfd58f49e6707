"""SSH session to the target device.

One asyncssh connection per provisioning run.  Every command gets a fresh
exec channel, so no shell state carries over between calls.  Files are
written over SFTP.

Uses asyncssh for real SSH; a MockSession class is provided for tests.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Protocol, Union

import asyncssh

from meshcore_installer.config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_SSH_USER
from meshcore_installer.errors import (
    CommandTimeoutError,
    RemoteCommandError,
    SessionConnectionError,
    TransferError,
)

logger = logging.getLogger(__name__)

# Extra time the local side waits past a deadline for the remote
# `timeout` wrapper to report back.
DEADLINE_GRACE_SECONDS = 5.0
# Exit status coreutils `timeout` uses when it kills the command.
TIMEOUT_EXIT_STATUS = 124


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    exit_status: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


# ── Session protocol ──────────────────────────────────────────────


class RemoteSession(Protocol):
    """Protocol for remote sessions: real asyncssh or mock."""

    host: str
    user: str

    async def connect(self) -> None:
        ...

    async def run(self, command: str, check: bool = True) -> CommandResult:
        ...

    async def run_with_deadline(
        self, seconds: float, command: str, check: bool = True
    ) -> CommandResult:
        ...

    async def copy_file(self, content: bytes | str, remote_path: str) -> None:
        ...

    async def close(self) -> None:
        ...


def deadline_command(seconds: float, command: str) -> str:
    """Wrap *command* so the remote host kills it after *seconds*."""
    return f"timeout {seconds:g} sh -c {shlex.quote(command)}"


def _checked(command: str, result: CommandResult, check: bool) -> CommandResult:
    if check and not result.ok:
        raise RemoteCommandError(command, result.exit_status, result.stdout, result.stderr)
    return result


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


# ── asyncssh implementation ───────────────────────────────────────


class SSHSession:
    """Real SSH session using asyncssh."""

    def __init__(
        self,
        host: str,
        user: str = DEFAULT_SSH_USER,
        password: str | None = None,
        *,
        port: int = 22,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self.host = host
        self.user = user
        self.password = password
        self.port = port
        self.connect_timeout = connect_timeout
        self._conn: asyncssh.SSHClientConnection | None = None

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"

    async def connect(self) -> None:
        if self._conn is not None:
            return
        kwargs: dict = {
            "host": self.host,
            "port": self.port,
            "username": self.user,
            "known_hosts": None,  # Fresh devices have no known host key yet
            "connect_timeout": self.connect_timeout,
        }
        if self.password:
            kwargs["password"] = self.password
        try:
            self._conn = await asyncssh.connect(**kwargs)
        except asyncio.TimeoutError as exc:
            raise SessionConnectionError(
                f"Timed out connecting to {self.target} after {self.connect_timeout:g}s"
            ) from exc
        except (asyncssh.Error, OSError) as exc:
            raise SessionConnectionError(f"Could not connect to {self.target}: {exc}") from exc
        logger.info("Connected to %s:%d", self.host, self.port)

    async def run(self, command: str, check: bool = True) -> CommandResult:
        result = await self._execute(command)
        return _checked(command, result, check)

    async def run_with_deadline(
        self, seconds: float, command: str, check: bool = True
    ) -> CommandResult:
        result = await self._execute(
            deadline_command(seconds, command),
            timeout=seconds + DEADLINE_GRACE_SECONDS,
            label=command,
            deadline=seconds,
        )
        if result.exit_status == TIMEOUT_EXIT_STATUS:
            raise CommandTimeoutError(command, seconds)
        return _checked(command, result, check)

    async def copy_file(self, content: bytes | str, remote_path: str) -> None:
        data = content.encode("utf-8") if isinstance(content, str) else content
        try:
            conn = await self._connection()
            async with conn.start_sftp_client() as sftp:
                async with sftp.open(remote_path, "wb") as remote_file:
                    await remote_file.write(data)
        except (SessionConnectionError, asyncssh.Error, OSError) as exc:
            raise TransferError(f"Could not write {remote_path} on {self.target}: {exc}") from exc
        logger.debug("Wrote %d bytes to %s:%s", len(data), self.host, remote_path)

    async def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        await self._conn.wait_closed()
        self._conn = None

    async def __aenter__(self) -> "SSHSession":
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def _connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            await self.connect()
        assert self._conn is not None
        return self._conn

    async def _execute(
        self,
        command: str,
        timeout: float | None = None,
        label: str | None = None,
        deadline: float | None = None,
    ) -> CommandResult:
        conn = await self._connection()
        label = label or command
        logger.debug("%s$ %s", self.target, label)
        try:
            completed = await conn.run(command, check=False, timeout=timeout)
        except asyncio.TimeoutError as exc:
            # asyncssh closes the channel when its timeout fires
            raise CommandTimeoutError(label, deadline or timeout or 0.0) from exc
        except (asyncssh.Error, OSError) as exc:
            raise SessionConnectionError(f"Lost connection to {self.target}: {exc}") from exc

        exit_status = completed.returncode if completed.returncode is not None else -1
        result = CommandResult(
            stdout=_text(completed.stdout),
            stderr=_text(completed.stderr),
            exit_status=exit_status,
        )
        if not result.ok:
            logger.debug("%s exited %d: %s", label, exit_status, result.stderr.strip())
        return result


# ── Mock implementation ───────────────────────────────────────────

MockResponse = Union[CommandResult, BaseException]


class MockSession:
    """Mock session for testing: returns pre-configured responses.

    Responses are looked up by exact command first, then by prefix.  A
    response may be an exception instance, which is raised instead.
    """

    def __init__(
        self,
        responses: dict[str, MockResponse] | None = None,
        default: CommandResult | None = None,
        host: str = "mock-device",
        user: str = DEFAULT_SSH_USER,
    ) -> None:
        self.host = host
        self.user = user
        self._responses = responses or {}
        self._default = default if default is not None else CommandResult()
        self.connect_error: BaseException | None = None
        self.transfer_errors: dict[str, BaseException] = {}
        self.commands: list[str] = []
        self.deadlines: dict[str, float] = {}
        self.files: dict[str, bytes] = {}
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def run(self, command: str, check: bool = True) -> CommandResult:
        self.commands.append(command)
        return _checked(command, self._lookup(command), check)

    async def run_with_deadline(
        self, seconds: float, command: str, check: bool = True
    ) -> CommandResult:
        self.commands.append(command)
        self.deadlines[command] = seconds
        result = self._lookup(command)
        if result.exit_status == TIMEOUT_EXIT_STATUS:
            raise CommandTimeoutError(command, seconds)
        return _checked(command, result, check)

    async def copy_file(self, content: bytes | str, remote_path: str) -> None:
        if remote_path in self.transfer_errors:
            raise TransferError(
                f"Could not write {remote_path}: {self.transfer_errors[remote_path]}"
            )
        self.files[remote_path] = content.encode("utf-8") if isinstance(content, str) else content

    async def close(self) -> None:
        self.closed = True

    def ran(self, prefix: str) -> bool:
        """True if any recorded command starts with *prefix*."""
        return any(cmd.startswith(prefix) for cmd in self.commands)

    def _lookup(self, command: str) -> CommandResult:
        response = self._responses.get(command)
        if response is None:
            for key, val in self._responses.items():
                if command.startswith(key):
                    response = val
                    break
        if response is None:
            return self._default
        if isinstance(response, BaseException):
            raise response
        return response
