#!/usr/bin/env python3

from __future__ import annotations

import asyncio
import os
import random
import unittest
from typing import Any

from fastapi.testclient import TestClient

os.environ["SUNNYSIDE_AUTOSTART_LOOPS"] = "0"

from apps.api.sunnyside_api.main import app
from apps.api.sunnyside_api.middleware.rate_limit import ChatFloodGuard
from apps.api.sunnyside_api.routers.ws import dispatch_frame
from apps.api.sunnyside_api.services.session import SessionLoop
from apps.api.sunnyside_api.storage.llm_logs import (
    insert_call_log,
    list_call_logs,
    reset_backend_cache_for_tests as reset_llm_logs,
)
from packages.sunnyside_core.llm.policy import GenerationPolicy
from packages.sunnyside_core.llm.providers import ProviderResponse, TextProvider


class CannedProvider(TextProvider):
    name = "canned"

    def call(self, system_prompt: str, user_message: str, *, policy: GenerationPolicy) -> ProviderResponse:
        return ProviderResponse(text='{"Elena": "¡Hola!", "Gruk": null}', finish_reason="stop", model_name="canned:test")


class DebugApiTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_llm_logs()
        self._session_backup = app.state.session
        app.state.session = SessionLoop(rng=random.Random(5))
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.state.session = self._session_backup
        reset_llm_logs()

    def test_healthz(self) -> None:
        res = self.client.get("/healthz")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"status": "ok"})

    def test_status_and_debug(self) -> None:
        status = self.client.get("/api/status").json()
        self.assertFalse(status["running"])
        self.assertFalse(status["ai_configured"])
        self.assertEqual(status["npcs"], 4)

        debug = self.client.get("/api/debug").json()
        self.assertEqual(debug["ai_status"]["status"], "fallback")
        self.assertEqual(set(debug["npc_positions"]), {"Elena", "Marco", "Gruk", "Bones"})
        self.assertEqual(debug["settings"]["chat_max_messages"], 5)

    def test_npc_memory_holds_seeded_knowledge(self) -> None:
        res = self.client.get("/api/npc-memory")
        self.assertEqual(res.status_code, 200)
        memory = res.json()["memory"]
        self.assertIn("Elena", memory)

    def test_npc_recall(self) -> None:
        res = self.client.get("/api/npc-recall", params={"npc": "Elena", "q": "Marco"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["npc"], "Elena")

        missing = self.client.get("/api/npc-recall", params={"npc": "Zorg", "q": "hola"})
        self.assertEqual(missing.status_code, 404)

    def test_npc_persona(self) -> None:
        res = self.client.get("/api/npc-persona", params={"npc": "Gruk"})
        self.assertEqual(res.status_code, 200)
        self.assertIn("Gruk", res.json()["system_prompt"])

    def test_player_memory_and_life(self) -> None:
        report = self.client.get("/api/player-memory").json()
        self.assertEqual(report["players"], {})
        self.assertIn("Bones", report["npc_personalities"])

        life = self.client.get("/api/npc-life").json()
        self.assertIn("Elena", life["current_moods"])
        self.assertEqual(life["pending_interactions"], 0)

    def test_fallback_preview(self) -> None:
        res = self.client.get("/api/test-fallback", params={"npc": "Marco"})
        self.assertEqual(res.status_code, 200)
        self.assertIn("Marco", res.json()["fallback"])
        self.assertEqual(res.json()["addressed"], ["Marco"])

    def test_test_npc_without_keys_is_an_error(self) -> None:
        res = self.client.get("/api/test-npc")
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json(), {"error": "No API keys configured"})

    def test_test_npc_with_provider(self) -> None:
        app.state.session = SessionLoop(providers=[CannedProvider()], rng=random.Random(5))
        res = self.client.get("/api/test-npc", params={"msg": "Hola Elena"})
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["responses"], {"Elena": "¡Hola!"})

    def test_runtime_start_and_stop(self) -> None:
        with TestClient(app) as client:
            started = client.post("/api/runtime/start").json()
            self.assertTrue(started["started"])
            self.assertTrue(started["status"]["running"])

            stopped = client.post("/api/runtime/stop").json()
        self.assertTrue(stopped["stopped"])
        self.assertFalse(stopped["status"]["running"])

    def test_llm_policies_and_logs(self) -> None:
        policies = self.client.get("/api/llm/policies").json()
        self.assertEqual(
            {p["task_name"] for p in policies["policies"]},
            {"player_chat", "npc_conversation", "diagnostic"},
        )

        insert_call_log(
            {
                "id": "log-1",
                "created_at": 1.0,
                "task_name": "player_chat",
                "model_name": "groq:llama",
                "success": True,
            }
        )
        insert_call_log({"id": "log-2", "task_name": "npc_conversation", "model_name": "gemini:flash"})

        logs = self.client.get("/api/llm/logs", params={"task_name": "player_chat"}).json()
        self.assertEqual(logs["count"], 1)
        self.assertEqual(logs["logs"][0]["id"], "log-1")
        self.assertEqual(len(list_call_logs()), 2)
        self.assertEqual(self.client.get("/api/llm/logs", params={"limit": 0}).status_code, 422)

    def test_websocket_join_sends_world_state(self) -> None:
        session = app.state.session
        with self.client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join-world", "data": {"name": "Ana", "x": 1450, "y": 1450}})
            world = ws.receive_json()
            self.assertEqual(world["type"], "world-state")
            self.assertEqual(world["data"]["players"][0]["name"], "Ana")
            self.assertEqual(ws.receive_json()["type"], "friendship-init")
            self.assertEqual(len(session.world.players), 1)


class FakeConnection:
    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.frames.append(data)


class DispatchFrameTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.session = SessionLoop(rng=random.Random(2))
        self.now = 0.0
        self.guard = ChatFloodGuard(max_messages=2, window_seconds=10, clock=lambda: self.now)
        self.connection = FakeConnection()
        self.session.bus.connect("c1", self.connection)

    async def asyncTearDown(self) -> None:
        await self.session.stop()

    async def test_invalid_frames_are_dropped(self) -> None:
        with self.assertLogs("sunnyside_api.ws", level="WARNING"):
            self.assertFalse(await dispatch_frame(self.session, self.guard, "c1", {"type": "teleport"}))
        with self.assertLogs("sunnyside_api.ws", level="WARNING"):
            accepted = await dispatch_frame(
                self.session, self.guard, "c1", {"type": "chat-message", "data": {"message": ""}}
            )
        self.assertFalse(accepted)

    async def test_join_then_chat_runs_as_task(self) -> None:
        await dispatch_frame(self.session, self.guard, "c1", {"type": "join-world", "data": {"name": "Ana"}})
        task = await dispatch_frame(
            self.session, self.guard, "c1", {"type": "chat-message", "data": {"message": "hola"}}
        )
        await task
        self.assertEqual(self.session.world.chat_log[0]["message"], "hola")

    async def test_chat_flood_gets_a_notice(self) -> None:
        await dispatch_frame(self.session, self.guard, "c1", {"type": "join-world", "data": {"name": "Ana"}})
        tasks = [
            await dispatch_frame(self.session, self.guard, "c1", {"type": "chat-message", "data": {"message": "hola"}})
            for _ in range(2)
        ]
        await asyncio.gather(*tasks)
        self.connection.frames.clear()

        accepted = await dispatch_frame(
            self.session, self.guard, "c1", {"type": "chat-message", "data": {"message": "hola"}}
        )

        self.assertFalse(accepted)
        self.assertEqual(self.connection.frames[-1]["type"], "chat-message")
        self.assertIn("10s", self.connection.frames[-1]["data"]["message"])


if __name__ == "__main__":
    unittest.main()
