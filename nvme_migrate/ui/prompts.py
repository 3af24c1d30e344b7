"""Operator prompts on the controlling terminal."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

YES = {"y", "yes"}
NO = {"n", "no"}


@dataclass
class Prompter:
    """yes/no and free-text questions, each yes/no with a stated default.

    ``assume_yes`` answers only the questions asked with ``destructive=True``;
    optional steps are still asked.
    """

    input_fn: Callable[[str], str] = input
    output_fn: Callable[[str], None] = print
    assume_yes: bool = False
    answers: dict[str, str] = field(default_factory=dict)

    def _read(self, prompt: str) -> Optional[str]:
        try:
            return self.input_fn(prompt)
        except EOFError:
            return None

    def confirm(self, question: str, default: bool = False, destructive: bool = False) -> bool:
        if destructive and self.assume_yes:
            self.output_fn(f"{question} [assumed yes]")
            return True
        hint = "[Y/n]" if default else "[y/N]"
        while True:
            reply = self._read(f"{question} {hint}: ")
            if reply is None:
                return default
            reply = reply.strip().lower()
            if not reply:
                return default
            if reply in YES:
                return True
            if reply in NO:
                return False
            self.output_fn("Please answer yes or no.")

    def ask(self, question: str, key: Optional[str] = None) -> str:
        """Free-text question; a preset answer under ``key`` skips the prompt."""
        if key and key in self.answers:
            return self.answers[key]
        reply = self._read(f"{question}: ")
        return (reply or "").strip()
