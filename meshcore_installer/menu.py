"""Console output and interactive prompts for the installer.

Every prompt returns its answer as a value; nothing is bound by name.
Invalid answers are rejected and the prompt repeats.  Retries are unbounded
unless ``max_attempts`` is set, and end-of-input raises ``PromptCancelled``
so scripted runs cannot spin forever.
"""

from __future__ import annotations

import getpass
import itertools
import logging
from typing import Callable, Iterator, Sequence, TypeVar

from meshcore_installer.errors import (
    PromptAttemptsExceeded,
    PromptCancelled,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ManualEntryRequested:
    """Returned by :meth:`Prompter.select` when the operator picks "enter manually"."""

    def __repr__(self) -> str:
        return "MANUAL_ENTRY"


MANUAL_ENTRY = ManualEntryRequested()


# ── Console ───────────────────────────────────────────────────────


class Console:
    """Operator-facing output.  Diagnostics go to logging, not here."""

    def __init__(self, print_fn: Callable[[str], None] | None = None) -> None:
        self._print_fn = print_fn

    def line(self, msg: str = "") -> None:
        if self._print_fn is not None:
            self._print_fn(msg)
        else:
            print(msg, flush=True)

    def banner(self, title: str) -> None:
        rule = "=" * 60
        self.line(rule)
        self.line(title.center(60).rstrip())
        self.line(rule)

    def step(self, msg: str) -> None:
        self.line()
        self.line(f"==> {msg}")

    def info(self, msg: str) -> None:
        self.line(f"    {msg}")

    def warn(self, msg: str) -> None:
        self.line(f"!   {msg}")

    def error(self, msg: str) -> None:
        self.line(f"✗   {msg}")

    def success(self, msg: str) -> None:
        self.line(f"✓   {msg}")


# ── Validators ────────────────────────────────────────────────────


def non_blank(value: str) -> str:
    if not value.strip():
        raise ValidationError("A value is required.")
    return value.strip()


def integer(
    minimum: int | None = None,
    maximum: int | None = None,
    choices: Sequence[int] | None = None,
) -> Callable[[str], int]:
    """Build a validator that parses an int within the given bounds."""

    def validate(value: str) -> int:
        try:
            number = int(value.strip())
        except ValueError as exc:
            raise ValidationError(f"{value!r} is not a whole number.") from exc
        if choices is not None and number not in choices:
            allowed = ", ".join(str(c) for c in choices)
            raise ValidationError(f"Please enter one of: {allowed}.")
        if minimum is not None and number < minimum:
            raise ValidationError(f"Please enter a number of at least {minimum}.")
        if maximum is not None and number > maximum:
            raise ValidationError(f"Please enter a number no greater than {maximum}.")
        return number

    return validate


# ── Prompter ──────────────────────────────────────────────────────


class Prompter:
    """Reads operator answers from a terminal (or injected functions in tests)."""

    def __init__(
        self,
        console: Console | None = None,
        input_fn: Callable[[str], str] = input,
        secret_fn: Callable[[str], str] = getpass.getpass,
        max_attempts: int | None = None,
    ) -> None:
        self.console = console or Console()
        self._input_fn = input_fn
        self._secret_fn = secret_fn
        self.max_attempts = max_attempts

    def ask(self, prompt: str, default: str | None = None) -> str:
        """Free-text answer; blank input returns *default* (or "")."""
        suffix = f" [{default}]" if default else ""
        raw = self._read(f"{prompt}{suffix}: ")
        return raw or (default or "")

    def ask_secret(self, prompt: str) -> str:
        return self._read(f"{prompt}: ", secret=True)

    def yes_no(self, prompt: str, default: bool = True) -> bool:
        suffix = " [Y/n] " if default else " [y/N] "
        raw = self._read(prompt + suffix)
        if not raw:
            return default
        return raw.lower().startswith("y")

    def ask_validated(
        self,
        prompt: str,
        validator: Callable[[str], T],
        default: str | None = None,
    ) -> T:
        """Ask until *validator* accepts the answer.

        The validator raises :class:`ValidationError` to reject; its message
        is shown before asking again.
        """
        for _ in self._attempts():
            raw = self.ask(prompt, default)
            try:
                return validator(raw)
            except ValidationError as exc:
                self.console.error(str(exc))
        raise PromptAttemptsExceeded(
            f"No valid answer to {prompt!r} after {self.max_attempts} attempt(s)"
        )

    def ask_int(
        self,
        prompt: str,
        default: int | None = None,
        minimum: int | None = None,
        maximum: int | None = None,
        choices: Sequence[int] | None = None,
    ) -> int:
        return self.ask_validated(
            prompt,
            integer(minimum=minimum, maximum=maximum, choices=choices),
            default=str(default) if default is not None else None,
        )

    def select(
        self,
        items: Sequence[tuple[str, T]],
        allow_manual_entry: bool = False,
        title: str = "Select",
        manual_label: str = "Enter manually",
    ) -> T | ManualEntryRequested:
        """Numbered menu over *items*; returns the chosen value.

        With *allow_manual_entry*, slot N+1 returns :data:`MANUAL_ENTRY`.
        Blank input is not a choice.
        """
        if not items and not allow_manual_entry:
            raise ValueError("select() needs at least one item or a manual-entry slot")

        for i, (label, _) in enumerate(items, 1):
            self.console.line(f"  {i}) {label}")
        max_choice = len(items) + (1 if allow_manual_entry else 0)
        if allow_manual_entry:
            self.console.line(f"  {max_choice}) {manual_label}")
        self.console.line()

        for _ in self._attempts():
            raw = self._read(f"{title} [1-{max_choice}]: ")
            choice = int(raw) if raw.isascii() and raw.isdigit() else 0
            if 1 <= choice <= len(items):
                return items[choice - 1][1]
            if allow_manual_entry and choice == max_choice:
                return MANUAL_ENTRY
            self.console.error(f"Invalid choice. Please enter 1-{max_choice}.")
        raise PromptAttemptsExceeded(
            f"No valid selection after {self.max_attempts} attempt(s)"
        )

    def _attempts(self) -> Iterator[int]:
        if self.max_attempts is None:
            return itertools.count(1)
        return iter(range(1, self.max_attempts + 1))

    def _read(self, prompt: str, secret: bool = False) -> str:
        read = self._secret_fn if secret else self._input_fn
        try:
            return read(prompt).strip()
        except EOFError as exc:
            logger.debug("EOF while waiting on %r", prompt)
            raise PromptCancelled("Input ended while waiting for an answer") from exc
