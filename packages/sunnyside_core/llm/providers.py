"""Provider adapters for dialogue generation.

Every adapter exposes the same capability: given a system prompt and a user
message, return raw text or raise a typed ``ProviderError``. HTTP is done with
the standard library client; the pipeline runs these blocking calls off the
event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Sequence
from urllib import error, parse, request
import json
import logging
import os
import time

from .policy import GenerationPolicy, estimate_token_count


logger = logging.getLogger("sunnyside_core.providers")

DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_GROQ_MODEL = "llama-3.1-8b-instant"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODELS = (
    "gemini-2.5-flash-lite",
    "gemini-2.0-flash-lite",
    "gemini-2.0-flash",
    "gemini-2.5-flash",
)
DEFAULT_RETRY_AFTER_SECONDS = 10.0
GEMINI_PARK_SECONDS = 3600.0


def _truthy_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _first_non_empty(*values: str | None) -> str | None:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    finish_reason: str
    model_name: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class ProviderError(RuntimeError):
    def __init__(self, message: str, *, error_code: str, model_name: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.model_name = model_name


class RateLimitedError(ProviderError):
    def __init__(self, message: str, *, retry_after_seconds: float, model_name: str | None = None) -> None:
        super().__init__(message, error_code="rate_limit", model_name=model_name)
        self.retry_after_seconds = max(0.0, float(retry_after_seconds))


class ProviderHTTPError(ProviderError):
    def __init__(self, message: str, *, status: int, body_excerpt: str, model_name: str | None = None) -> None:
        super().__init__(message, error_code=f"http_{status}", model_name=model_name)
        self.status = int(status)
        self.body_excerpt = body_excerpt


class ProviderNetworkError(ProviderError):
    def __init__(self, message: str, *, model_name: str | None = None) -> None:
        super().__init__(message, error_code="network_error", model_name=model_name)


class ProvidersExhaustedError(ProviderError):
    def __init__(self, message: str, *, model_name: str | None = None) -> None:
        super().__init__(message, error_code="exhausted", model_name=model_name)


class EmptyResponseError(ProviderError):
    def __init__(self, message: str = "Empty model response", *, model_name: str | None = None) -> None:
        super().__init__(message, error_code="empty_response", model_name=model_name)


class UnparsableOutputError(ProviderError):
    def __init__(self, message: str, *, raw_excerpt: str, model_name: str | None = None) -> None:
        super().__init__(message, error_code="unparsable_output", model_name=model_name)
        self.raw_excerpt = raw_excerpt


class NoProviderConfiguredError(ProviderError):
    def __init__(self, message: str = "No generation provider configured") -> None:
        super().__init__(message, error_code="no_provider")


@dataclass(frozen=True)
class _HTTPReply:
    status: int
    headers: Any
    body: str


def _post_json(
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout_ms: int,
    model_name: str,
) -> _HTTPReply:
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    req = request.Request(url, method="POST", data=body, headers={"Content-Type": "application/json", **headers})
    timeout_s = max(0.2, float(timeout_ms) / 1000.0)
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8", errors="replace")
            return _HTTPReply(status=int(response.status), headers=response.headers, body=raw)
    except error.HTTPError as exc:
        detail = ""
        try:
            detail = exc.read().decode("utf-8", errors="replace")
        except Exception:
            detail = ""
        return _HTTPReply(status=int(exc.code), headers=exc.headers, body=detail)
    except Exception as exc:
        raise ProviderNetworkError(f"Provider network error: {exc}", model_name=model_name) from exc


def _parse_json_body(reply: _HTTPReply, model_name: str) -> dict[str, Any]:
    try:
        parsed = json.loads(reply.body)
    except Exception as exc:
        raise ProviderHTTPError(
            "Provider returned non-JSON response",
            status=reply.status,
            body_excerpt=reply.body[:200],
            model_name=model_name,
        ) from exc
    if not isinstance(parsed, dict):
        raise ProviderHTTPError(
            "Provider returned unexpected payload",
            status=reply.status,
            body_excerpt=reply.body[:200],
            model_name=model_name,
        )
    return parsed


def _retry_after_seconds(headers: Any) -> float:
    raw = None
    if headers is not None:
        try:
            raw = headers.get("retry-after")
        except Exception:
            raw = None
    try:
        return float(raw) if raw is not None else DEFAULT_RETRY_AFTER_SECONDS
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


class TextProvider(ABC):
    """One generation backend."""

    name: str = "provider"

    @abstractmethod
    def call(self, system_prompt: str, user_message: str, *, policy: GenerationPolicy) -> ProviderResponse:
        raise NotImplementedError

    def describe(self) -> dict[str, Any]:
        return {"name": self.name}


class OpenAICompatibleProvider(TextProvider):
    """Chat Completions contract, used for Groq and any compatible host."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = DEFAULT_GROQ_MODEL,
        base_url: str = DEFAULT_GROQ_BASE_URL,
        name: str = "groq",
    ) -> None:
        self.name = name
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key

    def model_name(self) -> str:
        return f"{self.name}:{self.model}"

    def call(self, system_prompt: str, user_message: str, *, policy: GenerationPolicy) -> ProviderResponse:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "max_tokens": int(policy.max_output_tokens),
            "temperature": float(policy.temperature),
            "top_p": float(policy.top_p),
        }
        if policy.json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        reply = _post_json(
            f"{self.base_url}/chat/completions",
            payload,
            headers=headers,
            timeout_ms=policy.timeout_ms,
            model_name=self.model_name(),
        )
        if reply.status == 429:
            raise RateLimitedError(
                f"{self.name} rate limited",
                retry_after_seconds=_retry_after_seconds(reply.headers),
                model_name=self.model_name(),
            )
        if reply.status >= 400:
            raise ProviderHTTPError(
                f"Provider HTTP error {reply.status}: {reply.body[:200]}",
                status=reply.status,
                body_excerpt=reply.body[:200],
                model_name=self.model_name(),
            )

        parsed = _parse_json_body(reply, self.model_name())
        choices = parsed.get("choices") or []
        first = choices[0] if choices else {}
        text = str(((first or {}).get("message") or {}).get("content") or "")
        usage = parsed.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens")
        completion_tokens = usage.get("completion_tokens")
        return ProviderResponse(
            text=text,
            finish_reason=str((first or {}).get("finish_reason") or "unknown"),
            model_name=f"{self.name}:{parsed.get('model') or self.model}",
            prompt_tokens=int(prompt_tokens) if prompt_tokens is not None else estimate_token_count(system_prompt + user_message),
            completion_tokens=int(completion_tokens) if completion_tokens is not None else estimate_token_count(text),
        )

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "model": self.model, "base_url": self.base_url}


class GeminiProvider(TextProvider):
    """Gemini generateContent with rotation across a list of models.

    A model that reports ``RESOURCE_EXHAUSTED`` is parked for an hour and the
    next one is tried within the same call.
    """

    def __init__(
        self,
        *,
        api_key: str,
        models: Sequence[str] = DEFAULT_GEMINI_MODELS,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        clock: Callable[[], float] | None = None,
        name: str = "gemini",
    ) -> None:
        if not models:
            raise ValueError("GeminiProvider needs at least one model")
        self.name = name
        self.models = tuple(models)
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._clock = clock or time.time
        self._parked_until: dict[str, float] = {}
        self._index = 0

    def current_model(self) -> str | None:
        now = self._clock()
        for offset in range(len(self.models)):
            idx = (self._index + offset) % len(self.models)
            model = self.models[idx]
            if now >= self._parked_until.get(model, 0.0):
                self._index = idx
                return model
        return None

    def park(self, model: str) -> None:
        self._parked_until[model] = self._clock() + GEMINI_PARK_SECONDS
        self._index = (self.models.index(model) + 1) % len(self.models)
        logger.warning("[AI] Gemini %s exhausted, rotating to %s", model, self.current_model())

    def parked_models(self) -> list[str]:
        now = self._clock()
        return [m for m, until in self._parked_until.items() if now < until]

    def call(self, system_prompt: str, user_message: str, *, policy: GenerationPolicy) -> ProviderResponse:
        for _ in range(len(self.models)):
            model = self.current_model()
            if model is None:
                break
            generation_config: dict[str, Any] = {
                "temperature": float(policy.temperature),
                "maxOutputTokens": int(policy.max_output_tokens),
                "topP": float(policy.top_p),
            }
            if policy.json_mode:
                generation_config["responseMimeType"] = "application/json"
            payload = {
                "system_instruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_message}]}],
                "generationConfig": generation_config,
            }
            model_name = f"{self.name}:{model}"
            reply = _post_json(
                f"{self.base_url}/models/{parse.quote(model)}:generateContent",
                payload,
                headers={"x-goog-api-key": self._api_key},
                timeout_ms=policy.timeout_ms,
                model_name=model_name,
            )
            if reply.status == 429:
                try:
                    detail = json.loads(reply.body or "{}")
                except Exception:
                    detail = {}
                status = ((detail or {}).get("error") or {}).get("status") if isinstance(detail, dict) else None
                if status == "RESOURCE_EXHAUSTED":
                    self.park(model)
                    continue
                raise RateLimitedError(
                    f"Gemini {model} per-minute limit",
                    retry_after_seconds=DEFAULT_RETRY_AFTER_SECONDS,
                    model_name=model_name,
                )
            if reply.status >= 400:
                raise ProviderHTTPError(
                    f"Provider HTTP error {reply.status}: {reply.body[:200]}",
                    status=reply.status,
                    body_excerpt=reply.body[:200],
                    model_name=model_name,
                )

            parsed = _parse_json_body(reply, model_name)
            candidates = parsed.get("candidates") or []
            first = candidates[0] if candidates else {}
            parts = (((first or {}).get("content") or {}).get("parts")) or []
            text = "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))
            usage = parsed.get("usageMetadata") or {}
            return ProviderResponse(
                text=text,
                finish_reason=str((first or {}).get("finishReason") or "unknown"),
                model_name=model_name,
                prompt_tokens=usage.get("promptTokenCount"),
                completion_tokens=usage.get("candidatesTokenCount"),
            )

        raise ProvidersExhaustedError("All Gemini models exhausted", model_name=f"{self.name}:*")

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "model": self.current_model(),
            "models": list(self.models),
            "parked": self.parked_models(),
        }


def providers_from_env(*, clock: Callable[[], float] | None = None) -> list[TextProvider]:
    """Build the provider chain in priority order from environment variables."""
    providers: list[TextProvider] = []

    groq_key = _first_non_empty(os.environ.get("SUNNYSIDE_LLM_GROQ_API_KEY"), os.environ.get("GROQ_API_KEY"))
    if groq_key or _truthy_env("SUNNYSIDE_LLM_ALLOW_EMPTY_API_KEY", False):
        providers.append(
            OpenAICompatibleProvider(
                api_key=groq_key,
                model=_first_non_empty(os.environ.get("SUNNYSIDE_LLM_GROQ_MODEL")) or DEFAULT_GROQ_MODEL,
                base_url=_first_non_empty(os.environ.get("SUNNYSIDE_LLM_GROQ_BASE_URL")) or DEFAULT_GROQ_BASE_URL,
            )
        )

    gemini_key = _first_non_empty(os.environ.get("SUNNYSIDE_LLM_GEMINI_API_KEY"), os.environ.get("GEMINI_API_KEY"))
    if gemini_key:
        raw_models = _first_non_empty(os.environ.get("SUNNYSIDE_LLM_GEMINI_MODELS"))
        models = tuple(m.strip() for m in raw_models.split(",") if m.strip()) if raw_models else DEFAULT_GEMINI_MODELS
        providers.append(
            GeminiProvider(
                api_key=gemini_key,
                models=models or DEFAULT_GEMINI_MODELS,
                base_url=_first_non_empty(os.environ.get("SUNNYSIDE_LLM_GEMINI_BASE_URL")) or DEFAULT_GEMINI_BASE_URL,
                clock=clock,
            )
        )

    if not providers:
        logger.warning("[AI] Neither GROQ_API_KEY nor GEMINI_API_KEY set; agents will use canned lines")
    return providers
