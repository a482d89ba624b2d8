#!/usr/bin/env python3

from __future__ import annotations

import random
import unittest

from packages.sunnyside_core.llm.fallback import (
    CONTEXTUAL_FALLBACKS,
    DEFAULT_PHRASES,
    GENERIC_PHRASES,
    contextual_fallback,
    fallback_line,
    phrases_for,
)


ROSTER = ("Elena", "Marco", "Gruk", "Bones")


class _FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(7)
        self.value = value

    def random(self) -> float:
        return self.value


class ContextualFallbackTests(unittest.TestCase):
    def test_addressed_agent_answers_with_activity_line(self) -> None:
        result = contextual_fallback({"Elena": "watering"}, ["Elena"], rng=_FixedRandom(0.9), roster=ROSTER)

        self.assertEqual(list(result), ["Elena"])
        self.assertIn(result["Elena"], CONTEXTUAL_FALLBACKS["Elena"]["watering"])

    def test_bystander_may_chime_in(self) -> None:
        result = contextual_fallback({}, ["Marco"], rng=_FixedRandom(0.1), roster=ROSTER)

        self.assertEqual(len(result), 2)
        self.assertEqual(list(result)[0], "Marco")

    def test_unaddressed_message_gets_one_or_two_responders(self) -> None:
        for seed in range(20):
            result = contextual_fallback({}, [], rng=random.Random(seed), roster=ROSTER)
            self.assertIn(len(result), (1, 2))
            self.assertTrue(set(result) <= set(ROSTER))

    def test_unknown_addressees_are_ignored(self) -> None:
        result = contextual_fallback({}, ["Zorg", "Gruk", "Gruk"], rng=_FixedRandom(0.9), roster=ROSTER)
        self.assertEqual(list(result), ["Gruk"])

    def test_defaults_always_produce_a_line(self) -> None:
        result = contextual_fallback({}, [])

        self.assertGreaterEqual(len(result), 1)
        self.assertTrue(set(result) <= set(CONTEXTUAL_FALLBACKS))
        self.assertTrue(all(result.values()))

    def test_roster_limits_who_answers(self) -> None:
        for seed in range(10):
            result = contextual_fallback({}, ["Marco"], rng=random.Random(seed), roster=("Elena",))
            self.assertEqual(list(result), ["Elena"])

    def test_fallback_line_draws_from_the_activity_table(self) -> None:
        line = fallback_line("Gruk", "mining", rng=random.Random(3))
        self.assertIn(line, CONTEXTUAL_FALLBACKS["Gruk"]["mining"])

    def test_phrase_tables(self) -> None:
        self.assertEqual(phrases_for("Marco", "dancing"), CONTEXTUAL_FALLBACKS["Marco"][DEFAULT_PHRASES])
        self.assertEqual(phrases_for("Bones", "meditating"), CONTEXTUAL_FALLBACKS["Bones"]["meditating"])
        self.assertEqual(phrases_for("Zorg", "mining"), GENERIC_PHRASES)


if __name__ == "__main__":
    unittest.main()
