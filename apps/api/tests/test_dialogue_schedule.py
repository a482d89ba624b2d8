#!/usr/bin/env python3

from __future__ import annotations

import asyncio
import unittest

from packages.sunnyside_core.chat.history import ChatHistory
from packages.sunnyside_core.chat.schedule import DialoguePlayer, ScheduledLine, build_schedule


LINES = [("Elena", "¡Hola, cariño!"), ("Marco", "Hmph."), ("Elena", "¿Sopa?")]


class BuildScheduleTests(unittest.TestCase):
    def test_delays_accumulate_across_turns(self) -> None:
        schedule = build_schedule(LINES, lambda agent, index: 1000 * (index + 1))

        self.assertEqual([line.delay_ms for line in schedule], [1000, 3000, 6000])
        self.assertEqual([line.turn_index for line in schedule], [0, 1, 2])
        self.assertEqual(schedule[1], ScheduledLine(agent="Marco", message="Hmph.", delay_ms=3000, turn_index=1))

    def test_base_delay_and_negative_delays(self) -> None:
        schedule = build_schedule(LINES[:2], lambda agent, index: -50, base_delay_ms=500)
        self.assertEqual([line.delay_ms for line in schedule], [500, 500])


class DialoguePlayerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.slept: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            self.slept.append(seconds)

        self.player = DialoguePlayer(sleep=fake_sleep)

    async def test_lines_play_in_order_with_gaps(self) -> None:
        delivered: list[str] = []
        schedule = build_schedule(LINES, lambda agent, index: 1000 * (index + 1))

        task = self.player.play(list(reversed(schedule)), lambda line: delivered.append(line.message))
        count = await task

        self.assertEqual(count, 3)
        self.assertEqual(delivered, ["¡Hola, cariño!", "Hmph.", "¿Sopa?"])
        self.assertEqual(self.slept, [1.0, 2.0, 3.0])

    async def test_async_delivery_and_failures_do_not_stop_playback(self) -> None:
        delivered: list[str] = []

        async def deliver(line: ScheduledLine) -> None:
            if line.turn_index == 0:
                raise RuntimeError("socket gone")
            delivered.append(line.agent)

        schedule = build_schedule(LINES, lambda agent, index: 10)
        with self.assertLogs("sunnyside_core.schedule", level="ERROR"):
            count = await self.player.play(schedule, deliver)

        self.assertEqual(count, 2)
        self.assertEqual(delivered, ["Marco", "Elena"])

    async def test_cancel_all_stops_pending_lines(self) -> None:
        gate = asyncio.Event()

        async def blocking_sleep(seconds: float) -> None:
            await gate.wait()

        player = DialoguePlayer(sleep=blocking_sleep)
        delivered: list[str] = []
        task = player.play(build_schedule(LINES, lambda agent, index: 100), lambda line: delivered.append(line.agent))
        await asyncio.sleep(0)
        self.assertEqual(player.active, 1)

        await player.cancel_all()

        self.assertTrue(task.cancelled())
        self.assertEqual(delivered, [])
        self.assertEqual(player.active, 0)


class ChatHistoryTests(unittest.TestCase):
    def test_window_keeps_latest_lines(self) -> None:
        history = ChatHistory(max_lines=3, clock=lambda: 1.0)
        for index in range(5):
            history.add("Ana", f"mensaje {index}")

        self.assertEqual(len(history), 3)
        self.assertEqual(history.recent(2), ["Ana: mensaje 3", "Ana: mensaje 4"])
        self.assertEqual(history.recent(0), [])


if __name__ == "__main__":
    unittest.main()
