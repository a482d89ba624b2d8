#!/usr/bin/env python3

from __future__ import annotations

import asyncio
import random
import unittest

from packages.sunnyside_core.llm.pipeline import GenerationPipeline
from packages.sunnyside_core.llm.policy import GenerationPolicy
from packages.sunnyside_core.llm.providers import (
    NoProviderConfiguredError,
    ProviderHTTPError,
    ProviderResponse,
    RateLimitedError,
    TextProvider,
)


ROSTER = ("Elena", "Marco", "Gruk", "Bones")


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedProvider(TextProvider):
    """Replays a list of texts or exceptions, one per call."""

    def __init__(self, name: str, script: list) -> None:
        self.name = name
        self.script = list(script)
        self.calls: list[tuple[str, str, str]] = []

    def call(self, system_prompt: str, user_message: str, *, policy: GenerationPolicy) -> ProviderResponse:
        self.calls.append((system_prompt, user_message, policy.task_name))
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return ProviderResponse(text=step, finish_reason="stop", model_name=f"{self.name}:fake")


class GenerationPipelineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = _Clock()
        self.slept: list[float] = []
        self.logs: list[dict] = []

    async def asyncTearDown(self) -> None:
        for pipeline in getattr(self, "_pipelines", []):
            await pipeline.close()

    async def _sleep(self, seconds: float) -> None:
        self.slept.append(round(seconds, 3))
        self.clock.now += seconds

    def _pipeline(self, *providers: TextProvider) -> GenerationPipeline:
        pipeline = GenerationPipeline(
            list(providers),
            roster=ROSTER,
            clock=self.clock,
            sleep=self._sleep,
            log_sink=self.logs.append,
            rng=random.Random(3),
        )
        self._pipelines = getattr(self, "_pipelines", []) + [pipeline]
        return pipeline

    async def test_player_responses_put_addressed_agent_first(self) -> None:
        provider = ScriptedProvider("groq", ['{"Elena": "¡Hola!", "Marco": null, "Gruk": "¡Shiny!"}'])
        pipeline = self._pipeline(provider)

        responses = await pipeline.generate_player_responses(
            system_prompt="sys", user_message="Gruk, hola", spoken_to=("Gruk",)
        )

        self.assertEqual(list(responses.items()), [("Gruk", "¡Shiny!"), ("Elena", "¡Hola!")])
        self.assertEqual(provider.calls[0][2], "player_chat")
        self.assertEqual(pipeline.state.successes, 1)
        self.assertEqual(pipeline.ai_status(), {"status": "ok", "wait_seconds": 0})
        self.assertEqual(len(self.logs), 1)
        self.assertTrue(self.logs[0]["success"])
        self.assertEqual(self.logs[0]["model_name"], "groq:fake")

    async def test_providers_are_tried_in_order(self) -> None:
        first = ScriptedProvider("groq", [ProviderHTTPError("boom", status=500, body_excerpt="boom")])
        second = ScriptedProvider("gemini", ['{"Marco": "Todo despejado."}'])
        pipeline = self._pipeline(first, second)

        responses = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")

        self.assertEqual(responses, {"Marco": "Todo despejado."})
        self.assertEqual(len(first.calls), 1)
        self.assertEqual(pipeline.state.provider, "gemini")
        self.assertEqual([log["error_code"] for log in self.logs], ["http_500", None])

    async def test_rate_limit_sets_shared_deadline(self) -> None:
        first = ScriptedProvider("groq", [RateLimitedError("slow down", retry_after_seconds=30)])
        second = ScriptedProvider("gemini", ['{"Bones": "*rattle*"}'])
        pipeline = self._pipeline(first, second)

        responses = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")

        self.assertEqual(responses, {"Bones": "*rattle*"})
        self.assertTrue(pipeline.is_rate_limited())
        self.assertEqual(pipeline.ai_status(), {"status": "ratelimit", "wait_seconds": 30})

    async def test_long_rate_limit_skips_the_call(self) -> None:
        provider = ScriptedProvider("groq", ['{"Elena": "hola"}'])
        pipeline = self._pipeline(provider)
        pipeline.note_rate_limit(30)

        result = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")

        self.assertIsNone(result)
        self.assertEqual(provider.calls, [])
        self.assertEqual(self.slept, [])
        self.assertEqual(pipeline.state.last_outcome, "ratelimit")

    async def test_short_rate_limit_is_waited_out(self) -> None:
        provider = ScriptedProvider("groq", ['{"Elena": "hola"}'])
        pipeline = self._pipeline(provider)
        pipeline.note_rate_limit(5)

        result = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")

        self.assertEqual(result, {"Elena": "hola"})
        self.assertEqual(self.slept, [5.3])

    async def test_consecutive_dispatches_are_spaced(self) -> None:
        provider = ScriptedProvider("groq", ['{"Elena": "uno"}', '{"Marco": "dos"}'])
        pipeline = self._pipeline(provider)

        first, second = await asyncio.gather(
            pipeline.generate_player_responses(system_prompt="sys", user_message="a"),
            pipeline.generate_player_responses(system_prompt="sys", user_message="b"),
        )

        self.assertEqual(first, {"Elena": "uno"})
        self.assertEqual(second, {"Marco": "dos"})
        self.assertEqual(self.slept, [2.2])
        self.assertEqual([call[1] for call in provider.calls], ["a", "b"])

    async def test_total_failure_returns_none_and_fallback_answers(self) -> None:
        provider = ScriptedProvider("groq", [ProviderHTTPError("boom", status=502, body_excerpt="")])
        pipeline = self._pipeline(provider)

        result = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")
        self.assertIsNone(result)
        self.assertEqual(pipeline.state.failures, 1)
        self.assertEqual(pipeline.ai_status()["status"], "error")

        fallback = pipeline.contextual_fallback({"Elena": "watering"}, ["Elena"])
        self.assertIn("Elena", fallback)
        self.assertEqual(pipeline.state.fallbacks, 1)

    async def test_empty_text_moves_to_next_provider(self) -> None:
        first = ScriptedProvider("groq", ["   "])
        second = ScriptedProvider("gemini", ['{"Gruk": "shiny"}'])
        pipeline = self._pipeline(first, second)

        result = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")

        self.assertEqual(result, {"Gruk": "shiny"})
        self.assertEqual(self.logs[0]["error_code"], "empty_response")

    async def test_unparsable_output_counts_as_failure(self) -> None:
        pipeline = self._pipeline(ScriptedProvider("groq", ["lo siento, no puedo"]))

        result = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")

        self.assertIsNone(result)
        self.assertEqual(pipeline.state.failures, 1)
        self.assertEqual(pipeline.state.last_error["type"], "unparsable_output")

    async def test_all_null_lines_count_as_failure(self) -> None:
        pipeline = self._pipeline(ScriptedProvider("groq", ['{"Elena": null, "Marco": null}']))
        result = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")
        self.assertIsNone(result)
        self.assertEqual(pipeline.state.last_error["type"], "empty_result")

    async def test_repairs_are_counted(self) -> None:
        pipeline = self._pipeline(ScriptedProvider("groq", ['{"Elena": "Hola cariño']))
        result = await pipeline.generate_player_responses(system_prompt="sys", user_message="hola")
        self.assertEqual(result, {"Elena": "Hola cariño"})
        self.assertEqual(pipeline.state.repairs, 1)

    async def test_conversation_returns_ordered_turns(self) -> None:
        provider = ScriptedProvider(
            "groq", ['[{"npc":"Marco","msg":"Elena, ¿hay sopa?"},{"npc":"Elena","msg":"Siempre, cariño."}]']
        )
        pipeline = self._pipeline(provider)

        turns = await pipeline.generate_conversation(system_prompt="sys", user_message="conv")

        self.assertEqual(turns.speakers(), ["Marco", "Elena"])
        self.assertEqual(provider.calls[0][2], "npc_conversation")

    async def test_without_providers_everything_falls_back(self) -> None:
        pipeline = self._pipeline()

        self.assertFalse(pipeline.configured)
        self.assertIsNone(await pipeline.generate_player_responses(system_prompt="s", user_message="u"))
        self.assertIsNone(await pipeline.generate_conversation(system_prompt="s", user_message="u"))
        self.assertEqual(pipeline.ai_status(), {"status": "fallback", "wait_seconds": 0})
        self.assertEqual(pipeline.snapshot()["success_rate"], "N/A")
        self.assertEqual(pipeline.state.last_error["type"], "no_provider")
        with self.assertRaises(NoProviderConfiguredError):
            await pipeline.diagnose(system_prompt="s", user_message="u")

    async def test_diagnose_reports_each_provider(self) -> None:
        first = ScriptedProvider("groq", [RateLimitedError("slow", retry_after_seconds=10)])
        second = ScriptedProvider("gemini", ['{"Elena": "hola"}'])
        pipeline = self._pipeline(first, second)

        report = await pipeline.diagnose(system_prompt="sys", user_message="Hola a todos")

        self.assertTrue(report["success"])
        self.assertEqual(report["provider"], "gemini")
        self.assertEqual(report["errors"]["groq"]["code"], "rate_limit")
        self.assertEqual(report["responding_agents"], ["Elena"])
        self.assertEqual(pipeline.state.attempts, 0)


if __name__ == "__main__":
    unittest.main()
