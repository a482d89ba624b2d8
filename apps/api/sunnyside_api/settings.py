"""Environment-driven runtime settings."""

from __future__ import annotations

from dataclasses import dataclass
import os


def _truthy_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = str(os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


@dataclass(frozen=True)
class RuntimeSettings:
    request_spacing_ms: int = 2200
    max_rate_limit_wait_ms: int = 15000
    autostart_loops: bool = True
    npc_conversations: bool = True
    cors_origins: tuple[str, ...] = ("*",)
    chat_max_messages: int = 5
    chat_window_seconds: int = 10

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        origins = tuple(
            origin.strip()
            for origin in os.environ.get("SUNNYSIDE_CORS_ORIGINS", "*").split(",")
            if origin.strip()
        )
        return cls(
            request_spacing_ms=_int_env("SUNNYSIDE_LLM_REQUEST_SPACING_MS", 2200),
            max_rate_limit_wait_ms=_int_env("SUNNYSIDE_LLM_MAX_RATE_LIMIT_WAIT_MS", 15000),
            autostart_loops=_truthy_env("SUNNYSIDE_AUTOSTART_LOOPS", default=True),
            npc_conversations=_truthy_env("SUNNYSIDE_NPC_CONVERSATIONS", default=True),
            cors_origins=origins or ("*",),
            chat_max_messages=_int_env("SUNNYSIDE_CHAT_MAX_MESSAGES", 5, minimum=1),
            chat_window_seconds=_int_env("SUNNYSIDE_CHAT_WINDOW_SECONDS", 10, minimum=1),
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "request_spacing_ms": self.request_spacing_ms,
            "max_rate_limit_wait_ms": self.max_rate_limit_wait_ms,
            "autostart_loops": self.autostart_loops,
            "npc_conversations": self.npc_conversations,
            "cors_origins": list(self.cors_origins),
            "chat_max_messages": self.chat_max_messages,
            "chat_window_seconds": self.chat_window_seconds,
        }
