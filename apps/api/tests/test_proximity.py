#!/usr/bin/env python3

from __future__ import annotations

import unittest

from packages.sunnyside_core.chat.proximity import (
    NOBODY_NEAR_NOTICE,
    STAND_IN_LINE,
    Point,
    filter_by_proximity,
    hearing_range,
    visible_agents,
)


PLAYER = Point(1536, 1536)
AGENTS = {
    "Elena": Point(1450, 1450),
    "Bones": Point(1536 + 720, 1600),
    "Gruk": Point(1536, 1536 + 441),
}


class ProximityTests(unittest.TestCase):
    def test_hearing_range_is_half_viewport_plus_margin(self) -> None:
        self.assertEqual(hearing_range(None, None), (720, 440))
        self.assertEqual(hearing_range(400, 300), (280, 230))

    def test_visible_agents_uses_inclusive_bounds(self) -> None:
        report = visible_agents(PLAYER, AGENTS)

        self.assertEqual(report.listening, ("Elena", "Bones"))
        rows = {row.name: row for row in report.agents}
        self.assertFalse(rows["Gruk"].can_hear)
        self.assertEqual(rows["Gruk"].dy, 441)
        self.assertEqual(report.nearest_listener(), "Elena")

    def test_small_viewport_shrinks_hearing(self) -> None:
        report = visible_agents(PLAYER, AGENTS, viewport_width=400, viewport_height=300)
        self.assertEqual(report.listening, ("Elena",))
        self.assertEqual(report.viewport_width, 400)

    def test_far_responders_are_dropped(self) -> None:
        report = visible_agents(PLAYER, AGENTS)
        filtered = filter_by_proximity({"Elena": "¡Hola, cariño!", "Gruk": "¡Shiny!"}, report)

        self.assertEqual(filtered.responses, {"Elena": "¡Hola, cariño!"})
        self.assertIsNone(filtered.notice)

    def test_nearest_listener_stands_in_for_far_responders(self) -> None:
        report = visible_agents(PLAYER, AGENTS)
        filtered = filter_by_proximity({"Gruk": "¡Shiny!"}, report)
        self.assertEqual(list(filtered.responses), ["Elena"])

    def test_default_viewport_hears_near_agents_only(self) -> None:
        agents = {"Elena": Point(PLAYER.x + 50, PLAYER.y), "Marco": Point(PLAYER.x + 1000, PLAYER.y)}
        report = visible_agents(PLAYER, agents, viewport_width=1280, viewport_height=720)

        self.assertEqual(report.listening, ("Elena",))
        self.assertEqual({row.name: row.distance for row in report.agents}, {"Elena": 50, "Marco": 1000})

    def test_stand_in_speaks_a_supplied_line(self) -> None:
        report = visible_agents(PLAYER, AGENTS)
        filtered = filter_by_proximity({"Gruk": "¡Shiny!"}, report, stand_in_line=lambda name: f"{name} saluda.")
        self.assertEqual(filtered.responses, {"Elena": "Elena saluda."})

        plain = filter_by_proximity({"Gruk": "¡Shiny!"}, report)
        self.assertEqual(plain.responses, {"Elena": STAND_IN_LINE})

    def test_nobody_in_range_yields_notice(self) -> None:
        report = visible_agents(Point(0, 0), AGENTS)
        filtered = filter_by_proximity({"Elena": "¡Hola!"}, report)

        self.assertEqual(report.listening, ())
        self.assertEqual(filtered.responses, {})
        self.assertEqual(filtered.notice, NOBODY_NEAR_NOTICE)

    def test_report_serializes_for_the_client(self) -> None:
        payload = visible_agents(PLAYER, {"Elena": Point(1450, 1450)}).as_dict()
        self.assertEqual(payload["listening"], ["Elena"])


if __name__ == "__main__":
    unittest.main()
