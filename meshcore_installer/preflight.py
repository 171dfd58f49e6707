"""Local checks run before touching the remote device."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from meshcore_installer.errors import PreflightError

logger = logging.getLogger(__name__)


def check_local_dependencies(stdin: TextIO | None = None, assume_tty: bool = False) -> None:
    """Make sure the installer can actually ask its questions.

    SSH itself needs no local helper binary (asyncssh handles password
    auth), but every setting is collected interactively.

    Raises:
        PreflightError: if stdin is not a terminal and *assume_tty* is off.
    """
    stream = stdin if stdin is not None else sys.stdin
    if assume_tty:
        logger.debug("Skipping terminal check (--assume-tty)")
        return
    isatty = getattr(stream, "isatty", None)
    if stream is None or isatty is None or not isatty():
        raise PreflightError(
            "The installer is interactive and needs a terminal on stdin.\n"
            "Run it directly from a shell:  python -m meshcore_installer\n"
            "To pipe scripted answers in anyway, pass --assume-tty."
        )
