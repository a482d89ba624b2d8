"""Sliding-window flood guard for inbound chat frames."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Callable


class ChatFloodGuard:
    """Caps how many chat messages one client may send per window."""

    def __init__(
        self,
        *,
        max_messages: int,
        window_seconds: float,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.max_messages = max(1, int(max_messages))
        self.window_seconds = max(0.1, float(window_seconds))
        self._clock = clock or time.monotonic
        self._sent: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> deque[float]:
        sent = self._sent[key]
        cutoff = now - self.window_seconds
        while sent and sent[0] <= cutoff:
            sent.popleft()
        return sent

    def allow(self, key: str) -> bool:
        """Record one message for ``key`` and tell whether it may go through."""
        now = self._clock()
        with self._lock:
            sent = self._prune(key, now)
            if len(sent) >= self.max_messages:
                return False
            sent.append(now)
            return True

    def retry_after(self, key: str) -> float:
        now = self._clock()
        with self._lock:
            sent = self._prune(key, now)
            if len(sent) < self.max_messages:
                return 0.0
            return max(0.0, sent[0] + self.window_seconds - now)

    def forget(self, key: str) -> None:
        with self._lock:
            self._sent.pop(key, None)
