"""Error taxonomy for the remote installer.

Fatal errors propagate out of the provisioning run and end the process with
a non-zero status.  ``ScanError`` and ``ValidationError`` are recovered
locally by the interactive stages.
"""

from __future__ import annotations


class InstallerError(Exception):
    """Base error for installer failures."""


class PreflightError(InstallerError):
    """Raised when a local precondition is not met."""


class SessionConnectionError(InstallerError, ConnectionError):
    """Raised when the SSH transport cannot be established or drops."""


class RemoteCommandError(InstallerError):
    """Raised when a remote command exits non-zero."""

    def __init__(
        self,
        command: str,
        exit_status: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = command
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip()
        message = f"Remote command failed with exit status {exit_status}: {command}"
        if detail:
            message += f"\n{detail[-1000:]}"
        super().__init__(message)


class CommandTimeoutError(InstallerError, TimeoutError):
    """Raised when a remote command outlives its deadline."""

    def __init__(self, command: str, deadline: float) -> None:
        self.command = command
        self.deadline = deadline
        super().__init__(f"Remote command timed out after {deadline:g}s: {command}")


class TransferError(InstallerError):
    """Raised when writing a file to the remote host fails."""


class ScanError(InstallerError):
    """Raised when the remote host cannot perform a BLE scan."""


class ValidationError(InstallerError, ValueError):
    """Raised for malformed operator input."""


class PromptAttemptsExceeded(InstallerError):
    """Raised when a bounded prompt runs out of attempts."""


class PromptCancelled(InstallerError):
    """Raised when input ends (EOF) while a prompt is waiting."""
