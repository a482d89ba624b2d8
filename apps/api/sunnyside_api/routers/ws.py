"""Realtime websocket endpoint for players."""

from __future__ import annotations

from typing import Any, Optional
import asyncio
import json
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..middleware.rate_limit import ChatFloodGuard
from ..services.session import SessionLoop


router = APIRouter(tags=["realtime"])
logger = logging.getLogger("sunnyside_api.ws")

FLOOD_NOTICE = "Vas muy rápido. Espera {seconds}s antes de volver a hablar."

_chat_tasks: set[asyncio.Task] = set()


class ClientFrame(BaseModel):
    type: str = Field(min_length=1, max_length=40)
    data: dict[str, Any] = Field(default_factory=dict)


class JoinPayload(BaseModel):
    name: Optional[str] = Field(default=None, max_length=24)
    type: str = Field(default="human", max_length=24)
    hair_style: Optional[str] = Field(default=None, max_length=24)
    x: Optional[float] = None
    y: Optional[float] = None
    viewport_w: Optional[int] = Field(default=None, ge=1, le=10000)
    viewport_h: Optional[int] = Field(default=None, ge=1, le=10000)


class MovePayload(BaseModel):
    x: float
    y: float
    direction: Optional[str] = Field(default=None, max_length=16)
    animation: Optional[str] = Field(default=None, max_length=24)
    viewport_w: Optional[int] = Field(default=None, ge=1, le=10000)
    viewport_h: Optional[int] = Field(default=None, ge=1, le=10000)


class ChatPayload(BaseModel):
    message: str = Field(min_length=1, max_length=300)
    x: Optional[float] = None
    y: Optional[float] = None
    viewport_w: Optional[int] = Field(default=None, ge=1, le=10000)
    viewport_h: Optional[int] = Field(default=None, ge=1, le=10000)


class ActionPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str = Field(min_length=1, max_length=40)


_PAYLOADS: dict[str, type[BaseModel]] = {
    "join-world": JoinPayload,
    "player-move": MovePayload,
    "chat-message": ChatPayload,
    "player-action": ActionPayload,
}


async def _run_chat(session: SessionLoop, client_id: str, data: dict[str, Any]) -> None:
    try:
        await session.handle_chat(client_id, data)
    except Exception as exc:
        logger.exception("[CHAT] Failed handling message from %s: %s", client_id[:8], exc)


async def dispatch_frame(
    session: SessionLoop,
    guard: ChatFloodGuard,
    client_id: str,
    raw: Any,
) -> asyncio.Task | bool:
    """Validate one inbound frame and route it to the session.

    Returns the chat task for chat frames, otherwise whether the frame was
    accepted. Invalid frames are logged and dropped.
    """
    try:
        frame = ClientFrame.model_validate(raw)
        model = _PAYLOADS.get(frame.type)
        if model is None:
            logger.warning("[WS] Unknown frame type %r from %s", frame.type, client_id[:8])
            return False
        payload = model.model_validate(frame.data).model_dump(exclude_none=True)
    except ValidationError as exc:
        logger.warning("[WS] Dropping invalid frame from %s: %s", client_id[:8], exc.errors()[:3])
        return False

    if frame.type == "join-world":
        await session.handle_join(client_id, payload)
    elif frame.type == "player-move":
        await session.handle_move(client_id, payload)
    elif frame.type == "player-action":
        await session.handle_action(client_id, payload)
    elif frame.type == "chat-message":
        if not guard.allow(client_id):
            wait = max(1, round(guard.retry_after(client_id)))
            await session.bus.send_to(
                client_id,
                "chat-message",
                {
                    "player_id": "system",
                    "player_name": "Sistema",
                    "message": FLOOD_NOTICE.format(seconds=wait),
                    "color": "#ffd700",
                    "is_npc": False,
                },
            )
            return False
        task = asyncio.create_task(_run_chat(session, client_id, payload))
        _chat_tasks.add(task)
        task.add_done_callback(_chat_tasks.discard)
        return task
    return True


@router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    session: SessionLoop = websocket.app.state.session
    guard: ChatFloodGuard = websocket.app.state.chat_guard
    await websocket.accept()
    client_id = uuid.uuid4().hex
    session.bus.connect(client_id, websocket)
    logger.info("[WS] Client %s connected", client_id[:8])
    try:
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except ValueError:
                logger.warning("[WS] Dropping non-JSON frame from %s", client_id[:8])
                continue
            await dispatch_frame(session, guard, client_id, raw)
    except WebSocketDisconnect:
        logger.info("[WS] Client %s disconnected", client_id[:8])
    finally:
        guard.forget(client_id)
        await session.handle_disconnect(client_id)
