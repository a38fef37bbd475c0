"""Terminal IO used by the review session, swappable for scripted answers in tests."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, TextIO


class PromptIO(Protocol):
    def show(self, text: str = "") -> None: ...

    def ask(self, prompt: str) -> str: ...


class ConsolePromptIO:
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stdout

    def show(self, text: str = "") -> None:
        print(text, file=self.stream, flush=True)

    def ask(self, prompt: str) -> str:
        return input(prompt).strip()


@dataclass(slots=True)
class ScriptedPromptIO:
    """Answers prompts from a list; raises EOFError once it runs out."""

    answers: List[str] = field(default_factory=list)
    shown: List[str] = field(default_factory=list)
    asked: List[str] = field(default_factory=list)

    def show(self, text: str = "") -> None:
        self.shown.append(text)

    def ask(self, prompt: str) -> str:
        self.asked.append(prompt)
        if not self.answers:
            raise EOFError("no scripted answers left")
        return self.answers.pop(0).strip()

    @property
    def transcript(self) -> str:
        return "\n".join(self.shown)
