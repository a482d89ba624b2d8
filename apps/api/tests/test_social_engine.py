#!/usr/bin/env python3

from __future__ import annotations

import random
import unittest

from packages.sunnyside_core.cognition.memory import EPISODIC, MemoryManager
from packages.sunnyside_core.cognition.personalities import default_catalog
from packages.sunnyside_core.cognition.social import (
    COOLDOWN_MIN_SECONDS,
    MAX_PENDING_CONVERSATIONS,
    PENDING_CONVERSATION_TTL_SECONDS,
    AgentMood,
    ConversationRequest,
    SeekIntent,
    SocialEngine,
    Topic,
)
from packages.sunnyside_core.llm.responses import DialogueTurn


class _FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


CLUSTERED = {"Elena": (1450, 1450), "Marco": (1500, 1480), "Gruk": (1400, 1500), "Bones": (1550, 1420)}
SCATTERED = {"Elena": (1100, 1200), "Marco": (2000, 1900), "Gruk": (1100, 1900), "Bones": (2000, 1200)}


class SocialEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.rng = _FixedRandom(0.0)
        self.catalog = default_catalog()
        self.memory = MemoryManager(self.catalog.names, clock=self.clock, rng=self.rng)
        self.positions = dict(CLUSTERED)
        self.engine = SocialEngine(
            self.catalog,
            self.memory,
            position_provider=lambda: self.positions,
            clock=self.clock,
            rng=self.rng,
        )

    def test_tick_queues_conversation_with_nearby_agents(self) -> None:
        self.clock.now += 5
        request = self.engine.tick()

        self.assertIsNotNone(request)
        self.assertEqual(request.initiator, "Elena")
        self.assertEqual(request.target, "Marco")
        self.assertEqual(request.participants[:2], ("Elena", "Marco"))
        self.assertEqual(request.topic.kind, "interest")
        self.assertEqual(self.engine.pending_count, 1)
        self.assertIs(self.engine.get_next_conversation(), request)
        self.assertIsNone(self.engine.get_next_conversation())

    def test_repeated_ticks_keep_one_request_per_initiator(self) -> None:
        for _ in range(50):
            self.clock.now += 5
            self.engine.tick()

        pending = list(self.engine._queue)
        initiators = [request.initiator for request in pending]
        self.assertEqual(len(initiators), len(set(initiators)))
        self.assertLessEqual(self.engine.pending_count, MAX_PENDING_CONVERSATIONS)
        self.assertEqual(pending[-1].timestamp, self.clock.now)

    def test_stale_requests_are_dropped(self) -> None:
        self.clock.now += 5
        self.engine.tick()
        self.assertEqual(self.engine.pending_count, 1)

        self.clock.now += PENDING_CONVERSATION_TTL_SECONDS + 1
        self.assertIsNone(self.engine.get_next_conversation())
        self.assertEqual(self.engine.pending_count, 0)

    def test_closed_queue_never_enqueues(self) -> None:
        for _ in range(20):
            self.clock.now += 5
            self.assertNotIsInstance(self.engine.tick(queue_open=False), ConversationRequest)
        self.assertEqual(self.engine.pending_count, 0)
        self.assertGreater(self.engine.drives["Elena"].expressiveness, 40.0)

    def test_conversation_never_drives_needs_negative(self) -> None:
        drive = self.engine.drives["Gruk"]
        drive.loneliness = 5.0
        drive.expressiveness = 3.0
        for _ in range(5):
            drive.on_conversation(self.clock.now)

        self.assertEqual(drive.loneliness, 0.0)
        self.assertEqual(drive.expressiveness, 0.0)
        self.assertGreaterEqual(drive.curiosity, 0.0)
        self.assertGreaterEqual(drive.helpfulness, 0.0)

    def test_lonely_agent_with_nobody_around_goes_seeking(self) -> None:
        self.positions = dict(SCATTERED)
        self.clock.now += 5

        seek = self.engine.tick()

        self.assertIsInstance(seek, SeekIntent)
        self.assertEqual(seek.agent, "Elena")
        self.assertEqual(seek.target, "Marco")
        self.assertEqual(self.engine.pending_count, 0)
        self.assertEqual(self.engine.get_seek_targets(), [SeekIntent("Elena", "Marco", "wants_to_chat")])
        self.assertEqual(self.engine.get_seek_targets(), [])

    def test_cooldown_blocks_initiation(self) -> None:
        for drive in self.engine.drives.values():
            drive.on_conversation(self.clock.now)
            self.assertGreaterEqual(drive.cooldown, COOLDOWN_MIN_SECONDS)
        self.clock.now += 5
        self.assertIsNone(self.engine.tick())

    def test_lock_defers_queued_conversations(self) -> None:
        self.clock.now += 5
        request = self.engine.tick()
        self.engine.lock_conversation(5000)

        self.assertTrue(self.engine.is_locked())
        self.assertIsNone(self.engine.get_next_conversation())
        self.clock.now += 6
        self.assertIs(self.engine.get_next_conversation(), request)

    def test_shorter_lock_never_shortens_an_existing_one(self) -> None:
        self.engine.lock_conversation(10000)
        self.engine.lock_conversation(2000)
        self.clock.now += 5
        self.assertTrue(self.engine.is_locked())

    def test_response_delay_uses_typing_speed(self) -> None:
        self.rng.value = 0.5
        self.assertEqual(self.engine.get_response_delay("Elena", 0), 1800 + 3600 + 1200)
        self.assertEqual(self.engine.get_response_delay("Elena", 1), 3000 + 3600 + 1200)

    def test_after_conversation_resets_drives_and_stores_memories(self) -> None:
        turns = [
            DialogueTurn(agent="Elena", message="Marco, ¿probaste mi sopa?"),
            DialogueTurn(agent="Marco", message="Todavía no. Esta noche."),
        ]
        self.engine.after_conversation(("Elena", "Marco"), turns)

        elena = self.engine.drives["Elena"]
        self.assertEqual(elena.last_conversation, self.clock.now)
        self.assertGreater(elena.cooldown, 0)
        marco_texts = [m.text for m in self.memory.store("Marco").memories if m.kind == EPISODIC]
        self.assertTrue(any(text.startswith('Elena dijo: "Marco, ¿probaste') for text in marco_texts))
        self.assertTrue(any(text.startswith("Hablé con Elena sobre") for text in marco_texts))

    def test_unknown_topic_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Topic(kind="gossip", text="rumores", weight=1.0)
        self.assertEqual(Topic(kind="memory", text="sopa", weight=3.0).kind, "memory")

    def test_direct_address_always_gets_a_reply(self) -> None:
        self.rng.value = 0.99
        self.assertTrue(self.engine.should_npc_respond("Bones", "hola", True))
        self.assertFalse(self.engine.should_npc_respond("Bones", "hola", False))

    def test_conversation_prompt_lists_participants(self) -> None:
        self.clock.now += 5
        request = self.engine.tick()

        prompt = self.engine.build_conversation_prompt(request, {"Elena": "watering"})

        self.assertIn("Elena(human,Granjera y herbolaria)", prompt.system_prompt)
        self.assertIn("Elena: regando cultivos", prompt.system_prompt)
        self.assertIn("Elena SIEMPRE habla primero", prompt.system_prompt)
        self.assertIn("Elena inicia hablando con/cerca de Marco", prompt.user_message)

    def test_player_prompt_marks_nearby_agents(self) -> None:
        prompt = self.engine.build_player_conversation_prompt(
            player_name="Ana",
            player_message="Hola Elena",
            activities={"Elena": "watering"},
            nearby=["Elena"],
            player_memory={"color": "rojo"},
            moods={"Elena": AgentMood(happiness=80, social=60)},
            addressing_hint=" [HABLA CON: Elena]",
            recent_lines=["Marco: Todo despejado."],
        )

        self.assertIn("[regando cultivos] ✓CERCA", prompt.system_prompt)
        self.assertIn("✗LEJOS", prompt.system_prompt)
        self.assertIn("Ánimo:feliz,social:sociable", prompt.system_prompt)
        self.assertTrue(prompt.user_message.startswith("[Reciente]:\nMarco: Todo despejado."))
        self.assertIn("Ana: Hola Elena [HABLA CON: Elena]", prompt.user_message)
        self.assertIn("[Recuerdas del jugador: color=rojo]", prompt.user_message)


if __name__ == "__main__":
    unittest.main()
