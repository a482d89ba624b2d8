"""Generation call telemetry, kept in process memory."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from functools import lru_cache
from typing import Any, Optional
import threading


MAX_CALL_LOGS = 200


class LlmCallLogStore(ABC):
    @abstractmethod
    def insert_call_log(self, record: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_call_logs(self, *, limit: int = 100, task_name: Optional[str] = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class InMemoryLlmCallLogStore(LlmCallLogStore):
    def __init__(self, *, max_records: int = MAX_CALL_LOGS) -> None:
        self._rows: deque[dict[str, Any]] = deque(maxlen=max(1, int(max_records)))
        self._lock = threading.Lock()

    def insert_call_log(self, record: dict[str, Any]) -> None:
        row = {
            "id": str(record["id"]),
            "created_at": record.get("created_at"),
            "task_name": str(record["task_name"]),
            "model_name": str(record["model_name"]),
            "prompt_tokens": int(record.get("prompt_tokens") or 0),
            "completion_tokens": int(record.get("completion_tokens") or 0),
            "latency_ms": int(record.get("latency_ms") or 0),
            "success": bool(record.get("success", False)),
            "error_code": record.get("error_code"),
        }
        with self._lock:
            self._rows.append(row)

    def list_call_logs(self, *, limit: int = 100, task_name: Optional[str] = None) -> list[dict[str, Any]]:
        bounded_limit = max(1, min(int(limit), MAX_CALL_LOGS))
        with self._lock:
            rows = list(self._rows)
        rows.reverse()
        if task_name:
            rows = [row for row in rows if row["task_name"] == task_name]
        return [dict(row) for row in rows[:bounded_limit]]

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()


@lru_cache(maxsize=1)
def _backend() -> LlmCallLogStore:
    return InMemoryLlmCallLogStore()


def reset_backend_cache_for_tests() -> None:
    _backend.cache_clear()


def insert_call_log(record: dict[str, Any]) -> None:
    _backend().insert_call_log(record)


def list_call_logs(*, limit: int = 100, task_name: Optional[str] = None) -> list[dict[str, Any]]:
    return _backend().list_call_logs(limit=limit, task_name=task_name)
