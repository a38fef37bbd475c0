from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class StatLine:
    label: str
    value: object
    detail: Optional[str] = None

    def render(self) -> str:
        if self.detail:
            return f"{self.label}: {self.value} ({self.detail})"
        return f"{self.label}: {self.value}"


def stat(label: str, value: object, detail: Optional[str] = None) -> str:
    return StatLine(label, value, detail).render()


def percent(value: float) -> str:
    return f"{value:.0%}"
