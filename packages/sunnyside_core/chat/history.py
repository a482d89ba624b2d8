"""Rolling window of recent lines shared by everyone in the world."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import time
from typing import Callable


MAX_HISTORY = 12
PROMPT_LINES = 4


@dataclass(frozen=True)
class HistoryLine:
    sender: str
    text: str
    time: float

    def render(self) -> str:
        return f"{self.sender}: {self.text}"


class ChatHistory:
    def __init__(self, *, max_lines: int = MAX_HISTORY, clock: Callable[[], float] | None = None) -> None:
        self._lines: deque[HistoryLine] = deque(maxlen=max_lines)
        self._clock = clock or time.time

    def __len__(self) -> int:
        return len(self._lines)

    def add(self, sender: str, text: str) -> None:
        self._lines.append(HistoryLine(sender=sender, text=text, time=self._clock()))

    def recent(self, count: int = PROMPT_LINES) -> list[str]:
        if count <= 0:
            return []
        return [line.render() for line in list(self._lines)[-count:]]

    def lines(self) -> list[HistoryLine]:
        return list(self._lines)
