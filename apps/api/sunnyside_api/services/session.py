"""Session loop: wires drives, memory, generation and the world together.

The loop owns every stateful collaborator for one running world. Background
tasks tick the world and the social engine; player chat is handled per
message. Generated lines are played back on a timed schedule and broadcast
through the message bus.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Sequence
import asyncio
import inspect
import logging
import random
import time

from packages.sunnyside_core.chat.addressing import detect_addressing
from packages.sunnyside_core.chat.history import ChatHistory
from packages.sunnyside_core.chat.player_memory import extract_player_memory, new_facts
from packages.sunnyside_core.chat.proximity import ProximityReport, filter_by_proximity, visible_agents
from packages.sunnyside_core.chat.schedule import DialoguePlayer, ScheduledLine, build_schedule
from packages.sunnyside_core.cognition.memory import EPISODIC, Importance, MemoryManager
from packages.sunnyside_core.cognition.personalities import (
    CORE_KNOWLEDGE,
    PersonalityCatalog,
    default_catalog,
    detect_discoveries,
)
from packages.sunnyside_core.cognition.social import SocialEngine, default_moods, default_relationships
from packages.sunnyside_core.llm.fallback import fallback_line
from packages.sunnyside_core.llm.pipeline import AI_STATUS_OK, AI_STATUS_RATE_LIMITED, GenerationPipeline
from packages.sunnyside_core.llm.providers import TextProvider

from ..settings import RuntimeSettings
from .bus import MessageBus
from .world import TICK_MS, World


logger = logging.getLogger("sunnyside_api.session")

MOVEMENT_INTERVAL_SECONDS = TICK_MS / 1000.0
SOCIAL_INTERVAL_SECONDS = 5.0
CONVERSATION_INTERVAL_SECONDS = 8.0
DECAY_INTERVAL_SECONDS = 60.0
MOOD_INTERVAL_SECONDS = 30.0
AI_STATUS_INTERVAL_SECONDS = 3.0

CONVERSATION_LOCK_PADDING_MS = 2000
MAX_LIFE_LOG = 100
MAX_FRIENDSHIP = 100
FRIENDSHIP_GAIN = 2
QUESTION_BONUS = 1
REVEAL_BONUS = 2
RELATIONSHIP_GAIN = 2
LONELY_MOOD_THRESHOLD = 25

SYSTEM_SENDER = "system"
SYSTEM_NAME = "Sistema"
SYSTEM_COLOR = "#ffd700"
PLAYER_CHAT_COLOR = "#7bf"


@dataclass
class ChatResult:
    """What the session decided to do with one player message."""

    lines: list[ScheduledLine] = field(default_factory=list)
    playback: asyncio.Task | None = None
    used_fallback: bool = False
    notice: str | None = None
    listening: tuple[str, ...] = ()


class SessionLoop:
    def __init__(
        self,
        *,
        catalog: PersonalityCatalog | None = None,
        providers: Sequence[TextProvider] | None = None,
        settings: RuntimeSettings | None = None,
        bus: MessageBus | None = None,
        world: World | None = None,
        clock: Callable[[], float] | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        log_sink: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.catalog = catalog or default_catalog()
        self.settings = settings or RuntimeSettings()
        self._clock = clock or time.time
        self._rng = rng or random.Random()
        self.bus = bus or MessageBus()
        self.world = world or World(self.catalog, rng=self._rng)
        self.memory = MemoryManager(self.catalog.names, clock=self._clock, rng=self._rng)
        seeded = self.memory.seed_core_knowledge(CORE_KNOWLEDGE)
        logger.info("[MEMORY] Seeded %d core memories for %s", seeded, ", ".join(self.catalog.names))
        self.social = SocialEngine(
            self.catalog,
            self.memory,
            position_provider=self.world.positions,
            clock=self._clock,
            rng=self._rng,
        )
        self.pipeline = GenerationPipeline(
            list(providers or ()),
            roster=self.catalog.names,
            spacing_seconds=self.settings.request_spacing_ms / 1000.0,
            max_rate_limit_wait_seconds=self.settings.max_rate_limit_wait_ms / 1000.0,
            clock=self._clock,
            sleep=sleep,
            log_sink=log_sink,
            rng=self._rng,
        )
        self.dialogues = DialoguePlayer(sleep=sleep)
        self.history = ChatHistory(clock=self._clock)
        self.moods = {name: mood for name, mood in default_moods().items() if name in self.catalog}
        self.relationships = {
            name: dict(row) for name, row in default_relationships().items() if name in self.catalog
        }
        self.friendship: dict[str, dict[str, int]] = {}
        self.player_memory: dict[str, dict[str, str]] = {}
        self.life_log: deque[dict[str, Any]] = deque(maxlen=MAX_LIFE_LOG)
        self._tasks: list[asyncio.Task] = []
        self._started_at = self._clock()
        self._last_ai_status = AI_STATUS_OK

    # ── lifecycle ───────────────────────────────────────────

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> bool:
        if self.running:
            return False
        loops = (
            ("movement", MOVEMENT_INTERVAL_SECONDS, self.movement_tick),
            ("social", SOCIAL_INTERVAL_SECONDS, self.social_tick),
            ("conversation", CONVERSATION_INTERVAL_SECONDS, self.conversation_tick),
            ("decay", DECAY_INTERVAL_SECONDS, self.decay_tick),
            ("moods", MOOD_INTERVAL_SECONDS, self.mood_tick),
            ("ai-status", AI_STATUS_INTERVAL_SECONDS, self.ai_status_tick),
        )
        self._tasks = [
            asyncio.create_task(self._every(name, interval, fn), name=f"sunnyside-{name}")
            for name, interval, fn in loops
        ]
        logger.info("[RUNTIME] Session loops started")
        return True

    async def stop(self) -> bool:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.dialogues.cancel_all()
        await self.pipeline.close()
        if tasks:
            logger.info("[RUNTIME] Session loops stopped")
        return bool(tasks)

    async def _every(self, name: str, interval: float, fn: Callable[[], Any]) -> None:
        while True:
            try:
                outcome = fn()
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("[RUNTIME] %s loop error: %s", name, exc)
            await asyncio.sleep(interval)

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "loops": [task.get_name() for task in self._tasks if not task.done()],
            "players": len(self.world.players),
            "npcs": len(self.world.npcs),
            "uptime_seconds": round(self._clock() - self._started_at),
            "ai_configured": self.pipeline.configured,
            "active_dialogues": self.dialogues.active,
        }

    # ── background ticks ────────────────────────────────────

    async def movement_tick(self) -> None:
        for npc in self.world.step(TICK_MS):
            await self.bus.broadcast("npc-update", npc.as_dict())

    def conversations_can_run(self) -> bool:
        if not self.settings.npc_conversations or not self.world.players:
            return False
        return self.pipeline.configured and not self.pipeline.is_rate_limited()

    def social_tick(self) -> None:
        self.social.tick(queue_open=self.conversations_can_run())
        for seek in self.social.get_seek_targets():
            self.world.apply_seek(seek)

    async def conversation_tick(self) -> list[ScheduledLine]:
        """Turn one queued agent conversation into scheduled lines."""
        if not self.conversations_can_run():
            return []
        request = self.social.get_next_conversation()
        if request is None:
            return []

        self.log_life(
            "interaction",
            detail=f"{request.initiator} quiere hablar con {request.target} ({request.topic.kind}: {request.topic.text})",
        )
        prompt = self.social.build_conversation_prompt(request, self.world.activities())
        turns = await self.pipeline.generate_conversation(
            system_prompt=prompt.system_prompt,
            user_message=prompt.user_message,
        )
        if turns is None or not len(turns):
            logger.info("[SOCIAL] %s -> %s produced no dialogue", request.initiator, request.target)
            return []

        lines = build_schedule(((t.agent, t.message) for t in turns), self.social.get_response_delay)
        self.social.lock_conversation(lines[-1].delay_ms + CONVERSATION_LOCK_PADDING_MS)
        self.social.after_conversation(request.participants, turns)
        self._strengthen_relationships(turns.speakers())
        self.dialogues.play(lines, self._deliver_agent_line)
        return lines

    async def _deliver_agent_line(self, line: ScheduledLine) -> None:
        self.history.add(line.agent, line.message)
        await self.broadcast_npc_message(line.agent, line.message)
        mood = self.moods.get(line.agent)
        if mood is not None:
            mood.cheer(social=15, happiness=5)
        self.log_life("chat", npc=line.agent, message=line.message[:50])

    def _strengthen_relationships(self, speakers: Sequence[str]) -> None:
        for index, first in enumerate(speakers):
            for second in speakers[index + 1 :]:
                for a, b in ((first, second), (second, first)):
                    row = self.relationships.get(a)
                    if row is not None and b in row:
                        row[b] = min(100, row[b] + RELATIONSHIP_GAIN)

    def decay_tick(self) -> int:
        forgotten = self.memory.tick_all()
        if forgotten:
            logger.info("[MEMORY] %d memories faded", forgotten)
        return forgotten

    def mood_tick(self) -> None:
        for name, mood in self.moods.items():
            mood.drift()
            if mood.social < LONELY_MOOD_THRESHOLD:
                self.log_life("mood", npc=name, detail=f"{name} se siente solo (social: {round(mood.social)})")

    async def ai_status_tick(self) -> dict[str, Any] | None:
        """Broadcast the AI indicator only when it changes."""
        status = self.pipeline.ai_status()
        if status["status"] == self._last_ai_status:
            return None
        self._last_ai_status = status["status"]
        snapshot = self.pipeline.snapshot()
        payload = {
            "status": status["status"],
            "success_rate": snapshot["success_rate"],
            "requests": snapshot["attempts"],
            "queue": snapshot["queue_depth"],
            "rate_limit_seconds": status["wait_seconds"],
        }
        await self.bus.broadcast("ai-status", payload)
        logger.info("[AI] status -> %s", status["status"])
        return payload

    def log_life(self, kind: str, **fields: Any) -> None:
        now = self._clock()
        self.life_log.append(
            {
                "type": kind,
                **fields,
                "time": now,
                "time_str": datetime.fromtimestamp(now, tz=timezone.utc).strftime("%H:%M:%S"),
            }
        )

    # ── player events ───────────────────────────────────────

    async def handle_join(self, client_id: str, data: dict[str, Any]) -> None:
        player = self.world.add_player(client_id, data)
        self.friendship[client_id] = {name: 0 for name in self.catalog.names}
        self.player_memory.setdefault(client_id, {})
        logger.info(
            "[CHAT] %s joined at (%s, %s) viewport %sx%s",
            player.name,
            round(player.x),
            round(player.y),
            player.viewport_w,
            player.viewport_h,
        )
        await self.bus.send_to(client_id, "world-state", self.world.snapshot())
        await self.bus.send_to(
            client_id,
            "friendship-init",
            {
                "levels": dict(self.friendship[client_id]),
                "npc_info": {
                    p.name: {"type": p.archetype, "role": p.role, "hair_style": p.hair_style} for p in self.catalog
                },
            },
        )
        await self.bus.broadcast("player-joined", player.as_dict(), exclude=client_id)
        await self.bus.send_to(
            client_id,
            "chat-message",
            self._system_message(f"¡Bienvenido {player.name}! Habla por el chat y los NPCs te responderán."),
        )

    async def handle_move(self, client_id: str, data: dict[str, Any]) -> None:
        if self.world.move_player(client_id, data) is None:
            return
        await self.bus.broadcast("player-moved", {"id": client_id, **data}, exclude=client_id)

    async def handle_action(self, client_id: str, data: dict[str, Any]) -> None:
        if client_id not in self.world.players:
            return
        await self.bus.broadcast("player-action", {"id": client_id, **data}, exclude=client_id)

    async def handle_disconnect(self, client_id: str) -> None:
        self.bus.disconnect(client_id)
        player = self.world.remove_player(client_id)
        self.friendship.pop(client_id, None)
        self.player_memory.pop(client_id, None)
        if player is not None:
            logger.info("[CHAT] %s left", player.name)
            await self.bus.broadcast("player-left", {"id": client_id})

    async def handle_chat(self, client_id: str, data: dict[str, Any]) -> ChatResult:
        """Answer one player message with in-character lines from nearby agents."""
        message = str(data.get("message") or "").strip()
        if not message:
            return ChatResult()
        player = self.world.players.get(client_id)
        if player is None:
            logger.warning("[CHAT] Dropping message from unknown client %s", client_id[:8])
            return ChatResult()
        if data.get("x") is not None:
            self.world.move_player(client_id, data)
        player_name = player.name

        entry = {
            "player_id": client_id,
            "player_name": player_name,
            "message": message,
            "color": PLAYER_CHAT_COLOR,
            "is_npc": False,
            "time": self._clock(),
        }
        self.world.record_chat(entry)
        await self.bus.broadcast("chat-message", entry)
        await self.bus.broadcast(
            "speech-bubble",
            {"id": client_id, "name": player_name, "message": message, "duration": min(6000, 2000 + len(message) * 60)},
        )

        before = dict(self.player_memory.get(client_id) or {})
        after = extract_player_memory(message, before, skip_words=self.catalog.names)
        self.player_memory[client_id] = after
        revealed = new_facts(before, after)
        if revealed:
            logger.info(
                "[MEMORY] %s revealed: %s", player_name, ", ".join(f"{k}={v}" for k, v in revealed.items())
            )

        report = visible_agents(
            player.position(),
            self.world.points(),
            viewport_width=player.viewport_w,
            viewport_height=player.viewport_h,
        )
        listening = report.listening
        await self.bus.send_to(client_id, "proximity-info", report.as_dict())
        logger.info("[CHAT] %s: %s | nearby: [%s]", player_name, message[:60], ", ".join(listening))

        for name in listening:
            self.memory.observe_conversation(name, player_name, message)

        activities = self.world.activities()
        addressing = detect_addressing(message, self.catalog.names)
        recent = self.history.recent()
        self.history.add(player_name, message)
        prompt = self.social.build_player_conversation_prompt(
            player_name=player_name,
            player_message=message,
            activities=activities,
            nearby=list(listening),
            player_memory=after,
            moods=self.moods,
            addressing_hint=addressing.hint(),
            recent_lines=recent,
        )
        responses = await self.pipeline.generate_player_responses(
            system_prompt=prompt.system_prompt,
            user_message=prompt.user_message,
            spoken_to=addressing.spoken_to,
        )
        used_fallback = responses is None
        if responses is None:
            responses = self._fallback_responses(message, addressing.spoken_to, activities, report)

        filtered = filter_by_proximity(
            responses,
            report,
            stand_in_line=lambda name: fallback_line(name, activities.get(name), rng=self._rng),
        )
        if filtered.notice:
            await self.bus.send_to(client_id, "chat-message", self._system_message(filtered.notice))
            return ChatResult(used_fallback=used_fallback, notice=filtered.notice, listening=listening)

        await self._announce_chat_status(used_fallback)
        if not filtered.responses:
            return ChatResult(used_fallback=used_fallback, listening=listening)

        lines = build_schedule(filtered.responses.items(), self.social.get_response_delay)
        self.social.lock_conversation(lines[-1].delay_ms + CONVERSATION_LOCK_PADDING_MS)

        async def deliver(line: ScheduledLine) -> None:
            await self._deliver_player_reply(client_id, player_name, line, listening, bool(revealed))

        playback = self.dialogues.play(lines, deliver)
        return ChatResult(
            lines=lines,
            playback=playback,
            used_fallback=used_fallback,
            listening=listening,
        )

    def _fallback_responses(
        self,
        message: str,
        spoken_to: Sequence[str],
        activities: Mapping[str, str],
        report: ProximityReport,
    ) -> dict[str, str]:
        """Canned lines from agents that can hear the player.

        Named agents answer. Otherwise each listener rolls its talkativeness and
        the nearest listener answers when nobody wins the roll.
        """
        listening = list(report.listening)
        lowered = message.lower()
        addressed = list(spoken_to) or [n for n in self.catalog.names if n.lower() in lowered]
        if not addressed:
            addressed = [n for n in listening if self.social.should_npc_respond(n, message, False)]
            nearest = report.nearest_listener()
            if not addressed and nearest is not None:
                addressed = [nearest]
        return self.pipeline.contextual_fallback(activities, addressed, roster=listening or None)

    async def _announce_chat_status(self, used_fallback: bool) -> None:
        if not used_fallback:
            self._last_ai_status = AI_STATUS_OK
            await self.bus.broadcast("ai-status", {"status": AI_STATUS_OK})
            return
        status = self.pipeline.ai_status()
        limited = status["status"] == AI_STATUS_RATE_LIMITED
        self._last_ai_status = status["status"]
        await self.bus.broadcast(
            "ai-status",
            {
                "status": AI_STATUS_RATE_LIMITED if limited else "fallback",
                "reason": "API no disponible",
                "rate_limit_seconds": status["wait_seconds"] if limited else 0,
            },
        )

    async def _deliver_player_reply(
        self,
        client_id: str,
        player_name: str,
        line: ScheduledLine,
        listening: Sequence[str],
        player_revealed: bool,
    ) -> None:
        agent, text = line.agent, line.message
        self.history.add(agent, text)
        await self.broadcast_npc_message(agent, text)

        for other in listening:
            if other != agent:
                self.memory.observe_conversation(other, agent, text)
        self.memory.add_memory(
            agent,
            kind=EPISODIC,
            text=f'Le dije a {player_name}: "{text[:60]}"',
            subject=player_name,
            tags=[player_name.lower(), "conversación"],
            importance=Importance.NORMAL,
            emotion="neutral",
        )

        friendship = self.friendship.get(client_id)
        if friendship is None:
            return
        gain = FRIENDSHIP_GAIN
        if "?" in text or "¿" in text:
            gain += QUESTION_BONUS
        if player_revealed:
            gain += REVEAL_BONUS
        friendship[agent] = min(MAX_FRIENDSHIP, friendship.get(agent, 0) + gain)

        mood = self.moods.get(agent)
        if mood is not None:
            mood.cheer(social=10, happiness=3)
        drive = self.social.drives.get(agent)
        if drive is not None:
            drive.on_conversation(self._clock())

        personality = self.catalog.get(agent)
        discoveries = detect_discoveries(personality, text) if personality is not None else []
        if discoveries:
            await self.bus.send_to(
                client_id,
                "friendship-discovery",
                {"npc_key": agent, "discoveries": discoveries, "friendship": friendship[agent]},
            )
        await self.bus.send_to(client_id, "friendship-update", {"npc_key": agent, "level": friendship[agent]})

    async def broadcast_npc_message(self, agent: str, message: str) -> None:
        personality = self.catalog.get(agent)
        color = personality.chat_color if personality is not None else "#ccc"
        entry = {
            "player_id": f"npc_{agent.lower()}",
            "player_name": agent,
            "message": message,
            "color": color,
            "is_npc": True,
            "time": self._clock(),
        }
        self.world.record_chat(entry)
        await self.bus.broadcast("chat-message", entry)
        npc = self.world.npc_by_name(agent)
        if npc is None:
            return
        await self.bus.broadcast("npc-expression", {"id": npc.id, "expression": "chat", "duration": 3000})
        await self.bus.broadcast(
            "speech-bubble",
            {
                "id": npc.id,
                "name": agent,
                "message": message,
                "color": color,
                "duration": min(6000, 2500 + len(message) * 60),
            },
        )

    def _system_message(self, text: str) -> dict[str, Any]:
        return {
            "player_id": SYSTEM_SENDER,
            "player_name": SYSTEM_NAME,
            "message": text,
            "color": SYSTEM_COLOR,
            "is_npc": False,
            "time": self._clock(),
        }

    # ── introspection ───────────────────────────────────────

    def debug_state(self) -> dict[str, Any]:
        activities = self.world.activities()
        return {
            "ai": self.pipeline.snapshot(),
            "ai_status": self.pipeline.ai_status(),
            "npc_activities": self.world.activity_labels(),
            "npc_positions": {
                npc.name: {
                    "x": round(npc.x),
                    "y": round(npc.y),
                    "animation": npc.animation,
                    "activity": activities.get(npc.name),
                }
                for npc in self.world.npcs.values()
            },
            "players": len(self.world.players),
            "chat_history_length": len(self.history),
            "chat_history": [line.render() for line in self.history.lines()[-5:]],
            "friendship": {client_id: dict(levels) for client_id, levels in self.friendship.items()},
            "settings": self.settings.as_dict(),
            "server_time": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    def player_memory_report(self) -> dict[str, Any]:
        players = {}
        for client_id, player in self.world.players.items():
            players[player.name] = {
                "client_id": client_id[:8] + "...",
                "memory": dict(self.player_memory.get(client_id) or {}),
                "friendship": dict(self.friendship.get(client_id) or {}),
                "position": {"x": round(player.x), "y": round(player.y)},
            }
        activities = self.world.activity_labels()
        npcs = {}
        for personality in self.catalog:
            summary = personality.summary()
            summary["current_activity"] = activities.get(personality.name, "descansando")
            npcs[personality.name] = summary
        return {
            "players": players,
            "npc_personalities": npcs,
            "chat_history": [line.render() for line in self.history.lines()[-10:]],
            "total_memory_entries": sum(len(m) for m in self.player_memory.values()),
        }

    def npc_life(self) -> dict[str, Any]:
        return {
            "events": list(self.life_log)[-30:],
            "current_moods": {name: mood.as_dict() for name, mood in self.moods.items()},
            "relationships": {name: dict(row) for name, row in self.relationships.items()},
            "pending_interactions": self.social.pending_count,
        }

    def npc_memory(self) -> dict[str, Any]:
        return {"memory": self.memory.debug_snapshot(), "social": self.social.debug_snapshot()}

    def diagnostic_prompt(self, message: str) -> tuple[str, str]:
        prompt = self.social.build_player_conversation_prompt(
            player_name="Jugador",
            player_message=message,
            activities=self.world.activities(),
            nearby=self.catalog.names,
            moods=self.moods,
            addressing_hint=detect_addressing(message, self.catalog.names).hint(),
        )
        return prompt.system_prompt, prompt.user_message
