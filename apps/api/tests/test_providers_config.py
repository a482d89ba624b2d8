#!/usr/bin/env python3

from __future__ import annotations

import json
import os
import unittest
from unittest.mock import patch

from packages.sunnyside_core.llm.policy import NPC_CONVERSATION, PLAYER_CHAT, default_policy_for_task
from packages.sunnyside_core.llm.providers import (
    DEFAULT_GEMINI_MODELS,
    DEFAULT_GROQ_MODEL,
    GeminiProvider,
    OpenAICompatibleProvider,
    ProviderHTTPError,
    ProvidersExhaustedError,
    RateLimitedError,
    _HTTPReply,
    providers_from_env,
)


def _gemini_ok(text: str) -> _HTTPReply:
    body = {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 5},
    }
    return _HTTPReply(status=200, headers={}, body=json.dumps(body))


def _gemini_429(status: str) -> _HTTPReply:
    return _HTTPReply(status=429, headers={}, body=json.dumps({"error": {"status": status}}))


class ProviderConfigTests(unittest.TestCase):
    _env_keys = (
        "GROQ_API_KEY",
        "GEMINI_API_KEY",
        "SUNNYSIDE_LLM_GROQ_API_KEY",
        "SUNNYSIDE_LLM_GROQ_MODEL",
        "SUNNYSIDE_LLM_GROQ_BASE_URL",
        "SUNNYSIDE_LLM_GEMINI_API_KEY",
        "SUNNYSIDE_LLM_GEMINI_MODELS",
        "SUNNYSIDE_LLM_GEMINI_BASE_URL",
        "SUNNYSIDE_LLM_ALLOW_EMPTY_API_KEY",
    )

    def setUp(self) -> None:
        self._env_backup = {k: os.environ.get(k) for k in self._env_keys}
        for key in self._env_keys:
            os.environ.pop(key, None)

    def tearDown(self) -> None:
        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def test_no_keys_means_no_providers(self) -> None:
        with self.assertLogs("sunnyside_core.providers", level="WARNING"):
            self.assertEqual(providers_from_env(), [])

    def test_groq_comes_before_gemini(self) -> None:
        os.environ["GROQ_API_KEY"] = "gsk-test"
        os.environ["GEMINI_API_KEY"] = "gm-test"

        providers = providers_from_env()

        self.assertEqual([p.name for p in providers], ["groq", "gemini"])
        self.assertEqual(providers[0].model, DEFAULT_GROQ_MODEL)
        self.assertEqual(providers[1].models, DEFAULT_GEMINI_MODELS)

    def test_overrides_are_read_from_environment(self) -> None:
        os.environ["SUNNYSIDE_LLM_GROQ_API_KEY"] = "gsk-test"
        os.environ["SUNNYSIDE_LLM_GROQ_MODEL"] = "llama-3.3-70b-versatile"
        os.environ["SUNNYSIDE_LLM_GROQ_BASE_URL"] = "http://localhost:8080/v1/"
        os.environ["SUNNYSIDE_LLM_GEMINI_API_KEY"] = "gm-test"
        os.environ["SUNNYSIDE_LLM_GEMINI_MODELS"] = "gemini-a, gemini-b ,"

        groq, gemini = providers_from_env()

        self.assertEqual(groq.describe(), {"name": "groq", "model": "llama-3.3-70b-versatile", "base_url": "http://localhost:8080/v1"})
        self.assertEqual(gemini.models, ("gemini-a", "gemini-b"))

    def test_allow_empty_key_enables_local_compatible_host(self) -> None:
        os.environ["SUNNYSIDE_LLM_ALLOW_EMPTY_API_KEY"] = "1"
        providers = providers_from_env()
        self.assertEqual([p.name for p in providers], ["groq"])

    def test_conversation_policy_does_not_force_json_object(self) -> None:
        self.assertTrue(default_policy_for_task(PLAYER_CHAT).json_mode)
        self.assertFalse(default_policy_for_task(NPC_CONVERSATION).json_mode)


class OpenAICompatibleProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = OpenAICompatibleProvider(api_key="gsk-test")
        self.policy = default_policy_for_task(PLAYER_CHAT)

    def test_success_parses_first_choice(self) -> None:
        body = {
            "model": "llama-3.1-8b-instant",
            "choices": [{"message": {"content": '{"Elena": "hola"}'}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 40, "completion_tokens": 6},
        }
        reply = _HTTPReply(status=200, headers={}, body=json.dumps(body))
        with patch("packages.sunnyside_core.llm.providers._post_json", return_value=reply) as post:
            response = self.provider.call("sys", "user", policy=self.policy)

        payload = post.call_args.args[1]
        self.assertEqual(payload["response_format"], {"type": "json_object"})
        self.assertEqual(post.call_args.kwargs["headers"], {"Authorization": "Bearer gsk-test"})
        self.assertEqual(response.text, '{"Elena": "hola"}')
        self.assertEqual(response.finish_reason, "stop")
        self.assertEqual(response.prompt_tokens, 40)

    def test_429_raises_rate_limit_with_retry_after(self) -> None:
        reply = _HTTPReply(status=429, headers={"retry-after": "7"}, body="")
        with patch("packages.sunnyside_core.llm.providers._post_json", return_value=reply):
            with self.assertRaises(RateLimitedError) as ctx:
                self.provider.call("sys", "user", policy=self.policy)
        self.assertEqual(ctx.exception.retry_after_seconds, 7.0)
        self.assertEqual(ctx.exception.error_code, "rate_limit")

    def test_server_error_is_typed(self) -> None:
        reply = _HTTPReply(status=503, headers={}, body="upstream down")
        with patch("packages.sunnyside_core.llm.providers._post_json", return_value=reply):
            with self.assertRaises(ProviderHTTPError) as ctx:
                self.provider.call("sys", "user", policy=self.policy)
        self.assertEqual(ctx.exception.error_code, "http_503")
        self.assertEqual(ctx.exception.body_excerpt, "upstream down")


class GeminiProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = 1000.0
        self.provider = GeminiProvider(api_key="gm-test", models=("m1", "m2"), clock=lambda: self.now)
        self.policy = default_policy_for_task(PLAYER_CHAT)

    def test_exhausted_model_is_parked_and_next_one_answers(self) -> None:
        replies = [_gemini_429("RESOURCE_EXHAUSTED"), _gemini_ok("hola")]
        with patch("packages.sunnyside_core.llm.providers._post_json", side_effect=replies) as post:
            response = self.provider.call("sys", "user", policy=self.policy)

        self.assertEqual(response.text, "hola")
        self.assertEqual(response.model_name, "gemini:m2")
        self.assertEqual(self.provider.parked_models(), ["m1"])
        self.assertEqual(post.call_args.kwargs["headers"], {"x-goog-api-key": "gm-test"})

    def test_parked_model_returns_after_an_hour(self) -> None:
        self.provider.park("m1")
        self.assertEqual(self.provider.current_model(), "m2")
        self.now += 3601
        self.assertEqual(self.provider.parked_models(), [])

    def test_all_models_parked_raises_exhausted(self) -> None:
        replies = [_gemini_429("RESOURCE_EXHAUSTED"), _gemini_429("RESOURCE_EXHAUSTED")]
        with patch("packages.sunnyside_core.llm.providers._post_json", side_effect=replies):
            with self.assertRaises(ProvidersExhaustedError):
                self.provider.call("sys", "user", policy=self.policy)
        self.assertIsNone(self.provider.current_model())

    def test_per_minute_limit_is_a_rate_limit(self) -> None:
        with patch("packages.sunnyside_core.llm.providers._post_json", return_value=_gemini_429("OTHER")):
            with self.assertRaises(RateLimitedError) as ctx:
                self.provider.call("sys", "user", policy=self.policy)
        self.assertEqual(ctx.exception.retry_after_seconds, 10.0)
        self.assertEqual(self.provider.parked_models(), [])


if __name__ == "__main__":
    unittest.main()
