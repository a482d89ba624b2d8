"""Fan-out of typed JSON frames to connected WebSocket clients."""

from __future__ import annotations

from typing import Any, Protocol
import logging


logger = logging.getLogger("sunnyside_api.bus")


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


def frame(event_type: str, data: Any) -> dict[str, Any]:
    return {"type": event_type, "data": data}


class MessageBus:
    """Registry of live connections keyed by client id.

    A connection whose send fails is dropped; the WebSocket route notices the
    disconnect on its own receive loop.
    """

    def __init__(self) -> None:
        self._clients: dict[str, Connection] = {}

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def connect(self, client_id: str, connection: Connection) -> None:
        self._clients[client_id] = connection
        logger.info("[WS] %s connected (%d online)", client_id, len(self._clients))

    def disconnect(self, client_id: str) -> None:
        if self._clients.pop(client_id, None) is not None:
            logger.info("[WS] %s disconnected (%d online)", client_id, len(self._clients))

    async def send_to(self, client_id: str, event_type: str, data: Any) -> bool:
        connection = self._clients.get(client_id)
        if connection is None:
            return False
        try:
            await connection.send_json(frame(event_type, data))
            return True
        except Exception as exc:
            logger.warning("[WS] send %s to %s failed: %s", event_type, client_id, exc)
            self.disconnect(client_id)
            return False

    async def broadcast(self, event_type: str, data: Any, *, exclude: str | None = None) -> int:
        sent = 0
        for client_id in list(self._clients):
            if client_id == exclude:
                continue
            if await self.send_to(client_id, event_type, data):
                sent += 1
        return sent
