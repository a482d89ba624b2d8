"""Turn generated dialogue into timed lines and play them back."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable
import asyncio
import inspect
import logging


logger = logging.getLogger("sunnyside_core.schedule")

DelayFn = Callable[[str, int], float]
DeliverFn = Callable[["ScheduledLine"], Any]


@dataclass(frozen=True)
class ScheduledLine:
    agent: str
    message: str
    delay_ms: float
    turn_index: int

    def as_dict(self) -> dict[str, object]:
        return {
            "agent": self.agent,
            "message": self.message,
            "delay_ms": int(self.delay_ms),
            "turn_index": self.turn_index,
        }


def build_schedule(lines: Iterable[tuple[str, str]], delay_for: DelayFn, *, base_delay_ms: float = 0.0) -> list[ScheduledLine]:
    """Cumulative delays: each line waits for the one before it."""
    schedule = []
    elapsed = float(base_delay_ms)
    for index, (agent, message) in enumerate(lines):
        elapsed += max(0.0, float(delay_for(agent, index)))
        schedule.append(ScheduledLine(agent=agent, message=message, delay_ms=elapsed, turn_index=index))
    return schedule


class DialoguePlayer:
    """Delivers scheduled lines in order, one asyncio task per schedule."""

    def __init__(self, *, sleep: Callable[[float], Awaitable[None]] | None = None) -> None:
        self._sleep = sleep or asyncio.sleep
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def play(self, schedule: list[ScheduledLine], deliver: DeliverFn) -> asyncio.Task:
        task = asyncio.create_task(self._run(sorted(schedule, key=lambda line: line.delay_ms), deliver))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, schedule: list[ScheduledLine], deliver: DeliverFn) -> int:
        delivered = 0
        waited_ms = 0.0
        for line in schedule:
            gap = line.delay_ms - waited_ms
            if gap > 0:
                await self._sleep(gap / 1000.0)
                waited_ms = line.delay_ms
            try:
                outcome = deliver(line)
                if inspect.isawaitable(outcome):
                    await outcome
                delivered += 1
            except Exception:
                logger.exception("[SCHEDULE] Failed delivering line from %s", line.agent)
        return delivered

    async def cancel_all(self) -> None:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
