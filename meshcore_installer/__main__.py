"""MeshCore MQTT Bridge remote installer entry point.

Usage::

    python -m meshcore_installer [--verbose] [--max-attempts N] [--assume-tty]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from meshcore_installer.config import InstallerConfig
from meshcore_installer.errors import InstallerError
from meshcore_installer.menu import Console, Prompter
from meshcore_installer.orchestrator import Provisioner
from meshcore_installer.preflight import check_local_dependencies

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="python -m meshcore_installer",
        description="Install the MeshCore MQTT bridge on a remote Linux device over SSH",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every remote command and stage transition",
    )
    parser.add_argument(
        "--max-attempts",
        metavar="N",
        type=int,
        default=None,
        help="Give up after N invalid answers to one prompt (default: ask forever "
             "or MESHCORE_PROMPT_ATTEMPTS env var)",
    )
    parser.add_argument(
        "--assume-tty",
        action="store_true",
        help="Skip the interactive terminal check, e.g. when piping answers in",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    config = InstallerConfig.from_env()
    if args.max_attempts is not None:
        config.max_prompt_attempts = args.max_attempts

    console = Console()
    try:
        check_local_dependencies(assume_tty=args.assume_tty)
        prompter = Prompter(console=console, max_attempts=config.max_prompt_attempts)
        asyncio.run(Provisioner(config=config, prompter=prompter).run())
    except KeyboardInterrupt:
        print("\n\nInstallation cancelled.")
        sys.exit(1)
    except InstallerError as e:
        logger.error("Installation failed: %s", e)
        console.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
