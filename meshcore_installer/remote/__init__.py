"""Remote execution over SSH.

  - session: command execution and file transfer (asyncssh, plus a mock)
  - scripts: helper scripts shipped to and run on the device
"""

from __future__ import annotations

from meshcore_installer.remote.session import (
    CommandResult,
    MockSession,
    RemoteSession,
    SSHSession,
)

__all__ = [
    "CommandResult",
    "MockSession",
    "RemoteSession",
    "SSHSession",
]
