"""Generation pipeline: one spaced FIFO in front of an ordered provider chain.

Every request, whether it comes from a player message or from an agent
deciding to chat, funnels through a single worker so consecutive provider
calls are at least ``spacing_seconds`` apart. A process-wide rate-limit
deadline is shared by the pre-flight check and the worker. Failures never
escape as exceptions: callers get ``None`` and substitute canned lines.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Awaitable, Callable, Mapping, Sequence
import asyncio
import logging
import math
import random
import time
import uuid

from .fallback import contextual_fallback
from .policy import (
    DIAGNOSTIC,
    NPC_CONVERSATION,
    PLAYER_CHAT,
    GenerationPolicy,
    default_policy_for_task,
    estimate_token_count,
)
from .providers import (
    NoProviderConfiguredError,
    ProviderError,
    ProviderResponse,
    RateLimitedError,
    TextProvider,
)
from .repair import parse_response_map, parse_turn_sequence
from .responses import TurnSequence


logger = logging.getLogger("sunnyside_core.pipeline")

LogSink = Callable[[dict[str, Any]], None]
SleepFn = Callable[[float], Awaitable[None]]

REQUEST_SPACING_SECONDS = 2.2
MAX_RATE_LIMIT_WAIT_SECONDS = 15.0
RATE_LIMIT_GRACE_SECONDS = 0.3
RESPONSE_TIME_WINDOW = 20

AI_STATUS_OK = "ok"
AI_STATUS_RATE_LIMITED = "ratelimit"
AI_STATUS_FALLBACK = "fallback"
AI_STATUS_ERROR = "error"


@dataclass
class GenerationState:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    repairs: int = 0
    fallbacks: int = 0
    rate_limited_until: float = 0.0
    last_dispatch_at: float = 0.0
    provider: str = "none"
    model: str = ""
    last_request: dict[str, Any] | None = None
    last_response: dict[str, Any] | None = None
    last_error: dict[str, Any] | None = None
    last_outcome: str = "idle"
    response_times_ms: deque = field(default_factory=lambda: deque(maxlen=RESPONSE_TIME_WINDOW))

    def average_response_ms(self) -> int:
        if not self.response_times_ms:
            return 0
        return int(round(sum(self.response_times_ms) / len(self.response_times_ms)))

    def success_rate(self) -> str:
        if self.attempts <= 0:
            return "N/A"
        return f"{round(self.successes / self.attempts * 100)}%"


@dataclass
class _QueuedCall:
    task_name: str
    system_prompt: str
    user_message: str
    future: asyncio.Future


class GenerationPipeline:
    def __init__(
        self,
        providers: Sequence[TextProvider],
        *,
        roster: Sequence[str],
        policies: Mapping[str, GenerationPolicy] | None = None,
        spacing_seconds: float = REQUEST_SPACING_SECONDS,
        max_rate_limit_wait_seconds: float = MAX_RATE_LIMIT_WAIT_SECONDS,
        clock: Callable[[], float] | None = None,
        sleep: SleepFn | None = None,
        log_sink: LogSink | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.providers = list(providers)
        self.roster = tuple(roster)
        self._policies = dict(policies or {})
        self.spacing_seconds = max(0.0, float(spacing_seconds))
        self.max_rate_limit_wait_seconds = max(0.0, float(max_rate_limit_wait_seconds))
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep
        self._log_sink = log_sink
        self._rng = rng or random.Random()
        self.state = GenerationState()
        self._queue: asyncio.Queue[_QueuedCall] | None = None
        self._worker: asyncio.Task | None = None

    @property
    def configured(self) -> bool:
        return bool(self.providers)

    def policy_for(self, task_name: str) -> GenerationPolicy:
        return self._policies.get(task_name) or default_policy_for_task(task_name)

    # ── rate limit ──────────────────────────────────────────

    def is_rate_limited(self) -> bool:
        return self._clock() < self.state.rate_limited_until

    def rate_limit_remaining(self) -> float:
        return max(0.0, self.state.rate_limited_until - self._clock())

    def note_rate_limit(self, retry_after_seconds: float) -> None:
        until = self._clock() + max(0.0, retry_after_seconds)
        if until > self.state.rate_limited_until:
            self.state.rate_limited_until = until
        logger.warning("[AI] Rate limited for %.1fs", self.rate_limit_remaining())

    async def _wait_out_rate_limit(self) -> bool:
        """Sleep through a short rate-limit window; False when it is too long."""
        remaining = self.rate_limit_remaining()
        if remaining <= 0:
            return True
        if remaining > self.max_rate_limit_wait_seconds:
            return False
        await self._sleep(remaining + RATE_LIMIT_GRACE_SECONDS)
        return True

    # ── queue ───────────────────────────────────────────────

    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._worker is not None and self._worker.get_loop() is not loop:
            self._worker = None
            self._queue = None
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker(self._queue))
        return self._queue

    async def _submit(self, task_name: str, system_prompt: str, user_message: str) -> ProviderResponse | None:
        if not self.providers:
            missing = NoProviderConfiguredError()
            self.state.last_error = {"time": self._clock(), "type": missing.error_code, "message": str(missing)}
            self.state.last_outcome = AI_STATUS_FALLBACK
            return None
        if not await self._wait_out_rate_limit():
            logger.info("[AI] Skipping %s: rate limited for %.0fs", task_name, self.rate_limit_remaining())
            self.state.last_outcome = AI_STATUS_RATE_LIMITED
            return None
        queue = self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        await queue.put(
            _QueuedCall(task_name=task_name, system_prompt=system_prompt, user_message=user_message, future=future)
        )
        return await future

    async def _run_worker(self, queue: asyncio.Queue) -> None:
        while True:
            call = await queue.get()
            try:
                if call.future.done():
                    continue
                result = await self._dispatch(call)
                if not call.future.done():
                    call.future.set_result(result)
            except asyncio.CancelledError:
                if not call.future.done():
                    call.future.set_result(None)
                raise
            except Exception:
                logger.exception("[AI] Worker failed on %s", call.task_name)
                if not call.future.done():
                    call.future.set_result(None)
            finally:
                queue.task_done()

    async def _dispatch(self, call: _QueuedCall) -> ProviderResponse | None:
        if not await self._wait_out_rate_limit():
            self.state.last_outcome = AI_STATUS_RATE_LIMITED
            return None
        elapsed = self._clock() - self.state.last_dispatch_at
        if self.state.last_dispatch_at and elapsed < self.spacing_seconds:
            await self._sleep(self.spacing_seconds - elapsed)
        self.state.last_dispatch_at = self._clock()
        return await self._call_providers(call.task_name, call.system_prompt, call.user_message)

    async def _call_providers(self, task_name: str, system_prompt: str, user_message: str) -> ProviderResponse | None:
        policy = self.policy_for(task_name)
        prompt_tokens = estimate_token_count(system_prompt + user_message)
        self.state.attempts += 1
        request_number = self.state.attempts
        self.state.last_request = {
            "time": self._clock(),
            "type": task_name,
            "prompt": user_message[:150],
            "request_number": request_number,
        }

        for provider in self.providers:
            start = perf_counter()
            model_name = f"{provider.name}:provider"
            try:
                logger.info("[AI] #%s [%s] %s", request_number, provider.name, task_name)
                response = await asyncio.to_thread(provider.call, system_prompt, user_message, policy=policy)
            except RateLimitedError as exc:
                self.note_rate_limit(exc.retry_after_seconds)
                self._record_provider_error(task_name, exc, exc.model_name or model_name, prompt_tokens, start)
                continue
            except ProviderError as exc:
                self._record_provider_error(task_name, exc, exc.model_name or model_name, prompt_tokens, start)
                continue
            except Exception as exc:
                latency_ms = int((perf_counter() - start) * 1000)
                logger.warning("[AI] %s raised %s", provider.name, exc)
                self._emit_log(
                    task_name=task_name,
                    model_name=model_name,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=0,
                    latency_ms=latency_ms,
                    success=False,
                    error_code=f"provider_exception:{exc.__class__.__name__}",
                )
                continue

            latency_ms = int((perf_counter() - start) * 1000)
            self.state.response_times_ms.append(latency_ms)
            self.state.provider = provider.name
            self.state.model = response.model_name
            self.state.last_response = {
                "time": self._clock(),
                "raw": response.text[:500],
                "finish_reason": response.finish_reason,
                "elapsed_ms": latency_ms,
                "request_number": request_number,
                "provider": provider.name,
                "model": response.model_name,
            }
            if not response.text.strip():
                self._emit_log(
                    task_name=task_name,
                    model_name=response.model_name,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=0,
                    latency_ms=latency_ms,
                    success=False,
                    error_code="empty_response",
                )
                continue
            self._emit_log(
                task_name=task_name,
                model_name=response.model_name,
                prompt_tokens=int(response.prompt_tokens or prompt_tokens),
                completion_tokens=int(response.completion_tokens or estimate_token_count(response.text)),
                latency_ms=latency_ms,
                success=True,
                error_code=None,
            )
            return response

        self.state.failures += 1
        self.state.last_outcome = AI_STATUS_RATE_LIMITED if self.is_rate_limited() else AI_STATUS_ERROR
        logger.error("[AI] #%s all providers failed for %s", request_number, task_name)
        return None

    def _record_provider_error(
        self,
        task_name: str,
        exc: ProviderError,
        model_name: str,
        prompt_tokens: int,
        start: float,
    ) -> None:
        latency_ms = int((perf_counter() - start) * 1000)
        logger.warning("[AI] %s failed: %s (%s)", model_name, exc.error_code, exc)
        self.state.last_error = {"time": self._clock(), "type": exc.error_code, "message": str(exc)[:200]}
        self._emit_log(
            task_name=task_name,
            model_name=model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=0,
            latency_ms=latency_ms,
            success=False,
            error_code=exc.error_code,
        )

    def _record_parse_failure(self, exc: ProviderError, raw: str) -> None:
        self.state.failures += 1
        self.state.last_outcome = AI_STATUS_ERROR
        self.state.last_error = {"time": self._clock(), "type": exc.error_code, "message": raw[:80]}
        logger.error("[AI] Unrecoverable output: %s", raw[:80])

    # ── public operations ───────────────────────────────────

    async def generate_player_responses(
        self,
        *,
        system_prompt: str,
        user_message: str,
        spoken_to: Sequence[str] = (),
    ) -> dict[str, str] | None:
        """Ask for one optional line per agent; ``None`` means use a fallback."""
        response = await self._submit(PLAYER_CHAT, system_prompt, user_message)
        if response is None:
            return None
        try:
            mapping, repaired = parse_response_map(response.text, self.roster)
        except ProviderError as exc:
            self._record_parse_failure(exc, response.text)
            return None
        if repaired:
            self.state.repairs += 1
        responses = mapping.ordered(first=spoken_to)
        if not responses:
            self.state.failures += 1
            self.state.last_outcome = AI_STATUS_ERROR
            self.state.last_error = {"time": self._clock(), "type": "empty_result", "message": "No agent lines"}
            return None
        self.state.successes += 1
        self.state.last_outcome = AI_STATUS_OK
        if self.state.last_response is not None:
            self.state.last_response["parsed"] = dict(responses)
        logger.info("[AI] [%s] -> %s", self.state.model, ", ".join(responses))
        return responses

    async def generate_conversation(self, *, system_prompt: str, user_message: str) -> TurnSequence | None:
        response = await self._submit(NPC_CONVERSATION, system_prompt, user_message)
        if response is None:
            return None
        try:
            turns, repaired = parse_turn_sequence(response.text, self.roster)
        except ProviderError as exc:
            self._record_parse_failure(exc, response.text)
            return None
        if repaired:
            self.state.repairs += 1
        self.state.successes += 1
        self.state.last_outcome = AI_STATUS_OK
        logger.info("[AI] Agent conversation: %s", " -> ".join(turn.agent for turn in turns))
        return turns

    def contextual_fallback(
        self,
        activities: Mapping[str, str] | None,
        addressed: Sequence[str] = (),
        *,
        roster: Sequence[str] | None = None,
    ) -> dict[str, str]:
        result = contextual_fallback(activities, addressed, rng=self._rng, roster=roster or self.roster)
        self.state.fallbacks += 1
        if self.state.last_outcome not in (AI_STATUS_RATE_LIMITED, AI_STATUS_ERROR):
            self.state.last_outcome = AI_STATUS_FALLBACK
        return result

    async def diagnose(self, *, system_prompt: str, user_message: str) -> dict[str, Any]:
        """Call each provider directly, bypassing the queue, and report every step."""
        if not self.providers:
            raise NoProviderConfiguredError()
        started = perf_counter()
        report: dict[str, Any] = {
            "input": user_message,
            "provider": "none",
            "model": "none",
            "providers": [provider.describe() for provider in self.providers],
            "steps": [{"step": "prompt_built", "ms": 0}],
            "errors": {},
        }
        policy = self.policy_for(DIAGNOSTIC)
        for provider in self.providers:
            try:
                response = await asyncio.to_thread(provider.call, system_prompt, user_message, policy=policy)
            except ProviderError as exc:
                report["errors"][provider.name] = {"code": exc.error_code, "message": str(exc)[:200]}
                report["steps"].append(
                    {"step": f"{provider.name}_failed", "ms": int((perf_counter() - started) * 1000)}
                )
                continue
            report["steps"].append(
                {"step": f"{provider.name}_responded", "ms": int((perf_counter() - started) * 1000)}
            )
            report.update(
                provider=provider.name,
                model=response.model_name,
                raw_response=response.text,
                finish_reason=response.finish_reason,
            )
            try:
                mapping, repaired = parse_response_map(response.text, self.roster)
            except ProviderError as exc:
                report["parse_error"] = exc.error_code
                break
            report["parsed"] = mapping.as_dict()
            report["repaired"] = repaired
            report["responses"] = mapping.spoken()
            report["responding_agents"] = list(mapping.spoken())
            break
        report["total_ms"] = int((perf_counter() - started) * 1000)
        report["success"] = bool(report.get("responses"))
        return report

    def ai_status(self) -> dict[str, Any]:
        if self.is_rate_limited():
            return {"status": AI_STATUS_RATE_LIMITED, "wait_seconds": math.ceil(self.rate_limit_remaining())}
        if not self.providers:
            return {"status": AI_STATUS_FALLBACK, "wait_seconds": 0}
        if self.state.last_outcome in (AI_STATUS_FALLBACK, AI_STATUS_ERROR):
            return {"status": self.state.last_outcome, "wait_seconds": 0}
        return {"status": AI_STATUS_OK, "wait_seconds": 0}

    def snapshot(self) -> dict[str, Any]:
        remaining = self.rate_limit_remaining()
        parked: list[str] = []
        for provider in self.providers:
            parked.extend(provider.describe().get("parked") or [])
        return {
            "provider": self.state.provider,
            "model": self.state.model,
            "providers": [provider.describe() for provider in self.providers],
            "attempts": self.state.attempts,
            "successes": self.state.successes,
            "failures": self.state.failures,
            "repairs": self.state.repairs,
            "fallbacks": self.state.fallbacks,
            "success_rate": self.state.success_rate(),
            "avg_response_ms": self.state.average_response_ms(),
            "queue_depth": self.queue_depth(),
            "rate_limit_active": remaining > 0,
            "rate_limit_remaining_seconds": math.ceil(remaining),
            "exhausted_models": parked,
            "last_request": self.state.last_request,
            "last_response": self.state.last_response,
            "last_error": self.state.last_error,
        }

    async def close(self) -> None:
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        if self._queue is not None:
            while not self._queue.empty():
                call = self._queue.get_nowait()
                if not call.future.done():
                    call.future.set_result(None)
            self._queue = None

    def _emit_log(
        self,
        *,
        task_name: str,
        model_name: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        success: bool,
        error_code: str | None,
    ) -> None:
        if not self._log_sink:
            return
        self._log_sink(
            {
                "id": str(uuid.uuid4()),
                "created_at": self._clock(),
                "task_name": task_name,
                "model_name": model_name,
                "prompt_tokens": int(prompt_tokens),
                "completion_tokens": int(completion_tokens),
                "latency_ms": int(latency_ms),
                "success": bool(success),
                "error_code": error_code,
            }
        )
