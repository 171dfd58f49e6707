"""pytest configuration for MeshCore installer tests."""

from __future__ import annotations

import pytest

from meshcore_installer.menu import Console, Prompter


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class ScriptedPrompter(Prompter):
    """Prompter fed from a list of answers; records everything printed.

    Running out of answers behaves like EOF on a terminal.
    """

    def __init__(self, answers, secrets=None, max_attempts=None):
        self.output: list[str] = []
        self.prompts: list[str] = []
        self._answers = list(answers)
        self._secrets = list(secrets or [])
        super().__init__(
            console=Console(print_fn=self.output.append),
            input_fn=self._next_answer,
            secret_fn=self._next_secret,
            max_attempts=max_attempts,
        )

    def _next_answer(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self._answers:
            raise EOFError
        return self._answers.pop(0)

    def _next_secret(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self._secrets:
            raise EOFError
        return self._secrets.pop(0)

    @property
    def text(self) -> str:
        return "\n".join(self.output)

    @property
    def remaining(self) -> int:
        return len(self._answers)


@pytest.fixture
def scripted():
    """Factory for ScriptedPrompter instances."""
    return ScriptedPrompter
