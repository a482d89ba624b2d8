"""In-memory world: NPC bodies, connected players and their movement."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from math import hypot
from typing import Any, Iterable
import logging
import random

from packages.sunnyside_core.chat.proximity import DEFAULT_VIEWPORT_HEIGHT, DEFAULT_VIEWPORT_WIDTH, Point
from packages.sunnyside_core.cognition.personalities import DEFAULT_ACTIVITY, PersonalityCatalog
from packages.sunnyside_core.cognition.social import SeekIntent


logger = logging.getLogger("sunnyside_api.world")

TICK_MS = 500
WALK_SPEED = 12.0
ARRIVAL_DISTANCE = 15.0
WALK_ANIMATION_DISTANCE = 50.0
WANDER_SPAN = 200.0
SEEK_JITTER = 60.0
SEEK_WALK_MS = 8000
ACTIVITY_JITTER_MS = 3000
MAX_CHAT_LOG = 100

MIN_X, MAX_X = 1100.0, 2000.0
MIN_Y, MAX_Y = 1200.0, 1900.0

PLAYER_SPAWN = (1536.0, 1536.0)
DEFAULT_PLAYER_NAME = "Aventurero"


def clamp_to_village(x: float, y: float) -> tuple[float, float]:
    return max(MIN_X, min(MAX_X, x)), max(MIN_Y, min(MAX_Y, y))


@dataclass
class NPCState:
    id: str
    name: str
    archetype: str
    x: float
    y: float
    hair_style: str | None = None
    direction: str = "right"
    animation: str = "idle"
    health: int = 100
    max_health: int = 100
    activity: str | None = None
    activity_timer_ms: float = 0.0
    target_x: float | None = None
    target_y: float | None = None

    def position(self) -> Point:
        return Point(self.x, self.y)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.archetype,
            "hair_style": self.hair_style,
            "x": self.x,
            "y": self.y,
            "direction": self.direction,
            "current_animation": self.animation,
            "health": self.health,
            "max_health": self.max_health,
            "activity": self.activity or "",
            "is_npc": True,
        }


@dataclass
class PlayerState:
    id: str
    name: str = DEFAULT_PLAYER_NAME
    archetype: str = "human"
    hair_style: str = "base"
    x: float = PLAYER_SPAWN[0]
    y: float = PLAYER_SPAWN[1]
    direction: str = "right"
    animation: str = "idle"
    health: int = 100
    max_health: int = 100
    viewport_w: int = DEFAULT_VIEWPORT_WIDTH
    viewport_h: int = DEFAULT_VIEWPORT_HEIGHT

    def position(self) -> Point:
        return Point(self.x, self.y)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_NPCS = (
    NPCState(id="npc_villager_1", name="Elena", archetype="human", hair_style="longhair", x=1450, y=1450),
    NPCState(id="npc_villager_2", name="Marco", archetype="human", hair_style="shorthair", x=1600, y=1500),
    NPCState(id="npc_goblin_1", name="Gruk", archetype="goblin", x=1300, y=1550, direction="left", health=80, max_health=80),
    NPCState(id="npc_skeleton_1", name="Bones", archetype="skeleton", x=1700, y=1600, health=60, max_health=60),
)


class World:
    def __init__(
        self,
        catalog: PersonalityCatalog,
        *,
        npcs: Iterable[NPCState] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.catalog = catalog
        self._rng = rng or random.Random()
        source = DEFAULT_NPCS if npcs is None else npcs
        self.npcs: dict[str, NPCState] = {}
        for npc in source:
            if npc.name in catalog:
                self.npcs[npc.id] = NPCState(**asdict(npc))
        self.players: dict[str, PlayerState] = {}
        self.chat_log: deque[dict[str, Any]] = deque(maxlen=MAX_CHAT_LOG)

    # ── lookups ─────────────────────────────────────────────

    def npc_by_name(self, name: str) -> NPCState | None:
        for npc in self.npcs.values():
            if npc.name == name:
                return npc
        return None

    def positions(self) -> dict[str, tuple[float, float]]:
        return {npc.name: (npc.x, npc.y) for npc in self.npcs.values()}

    def points(self) -> dict[str, Point]:
        return {npc.name: npc.position() for npc in self.npcs.values()}

    def activities(self) -> dict[str, str]:
        return {npc.name: npc.activity or DEFAULT_ACTIVITY for npc in self.npcs.values()}

    def activity_labels(self) -> dict[str, str]:
        return {name: self.catalog.activity_label(name, key) for name, key in self.activities().items()}

    # ── mutation ────────────────────────────────────────────

    def set_activity(self, name: str, key: str) -> bool:
        npc = self.npc_by_name(name)
        personality = self.catalog.get(name)
        if npc is None or personality is None:
            return False
        activity = personality.activity(key)
        if activity is None:
            return False
        npc.activity = activity.key
        npc.animation = activity.animation
        npc.activity_timer_ms = activity.duration_ms + self._rng.random() * ACTIVITY_JITTER_MS
        if activity.zone is not None:
            zone = activity.zone
            target = (zone.x + self._rng.random() * zone.w, zone.y + self._rng.random() * zone.h)
        else:
            target = (
                npc.x + (self._rng.random() - 0.5) * WANDER_SPAN,
                npc.y + (self._rng.random() - 0.5) * WANDER_SPAN,
            )
        npc.target_x, npc.target_y = clamp_to_village(*target)
        return True

    def apply_seek(self, seek: SeekIntent) -> bool:
        seeker = self.npc_by_name(seek.agent)
        target = self.npc_by_name(seek.target)
        if seeker is None or target is None:
            return False
        seeker.target_x, seeker.target_y = clamp_to_village(
            target.x + (self._rng.random() - 0.5) * SEEK_JITTER,
            target.y + (self._rng.random() - 0.5) * SEEK_JITTER,
        )
        seeker.animation = "walk"
        seeker.activity_timer_ms = SEEK_WALK_MS
        logger.info("[WORLD] %s walks toward %s (%s)", seek.agent, seek.target, seek.reason)
        return True

    def _pick_next_activity(self, npc: NPCState) -> None:
        personality = self.catalog.get(npc.name)
        if personality is None or not personality.activities:
            return
        choices = [a for a in personality.activities if a.key != npc.activity] or list(personality.activities)
        self.set_activity(npc.name, self._rng.choice(choices).key)

    def step(self, elapsed_ms: float = TICK_MS) -> list[NPCState]:
        """Advance activities and walking by one movement tick."""
        for npc in self.npcs.values():
            npc.activity_timer_ms -= elapsed_ms
            if npc.activity_timer_ms <= 0:
                self._pick_next_activity(npc)
            if npc.target_x is None or npc.target_y is None:
                continue
            dx = npc.target_x - npc.x
            dy = npc.target_y - npc.y
            distance = hypot(dx, dy)
            if distance > ARRIVAL_DISTANCE:
                npc.x += dx / distance * WALK_SPEED
                npc.y += dy / distance * WALK_SPEED
                npc.direction = "left" if dx < 0 else "right"
                if npc.animation not in ("walk", "run") and distance > WALK_ANIMATION_DISTANCE:
                    npc.animation = "walk"
            else:
                personality = self.catalog.get(npc.name)
                activity = personality.activity(npc.activity) if personality else None
                if activity is not None:
                    npc.animation = activity.animation
                npc.target_x = None
                npc.target_y = None
        return list(self.npcs.values())

    # ── players ─────────────────────────────────────────────

    def add_player(self, player_id: str, data: dict[str, Any]) -> PlayerState:
        player = PlayerState(
            id=player_id,
            name=str(data.get("name") or DEFAULT_PLAYER_NAME),
            archetype=str(data.get("type") or "human"),
            hair_style=str(data.get("hair_style") or "base"),
            x=float(data["x"]) if data.get("x") is not None else PLAYER_SPAWN[0],
            y=float(data["y"]) if data.get("y") is not None else PLAYER_SPAWN[1],
            viewport_w=int(data.get("viewport_w") or DEFAULT_VIEWPORT_WIDTH),
            viewport_h=int(data.get("viewport_h") or DEFAULT_VIEWPORT_HEIGHT),
        )
        self.players[player_id] = player
        return player

    def move_player(self, player_id: str, data: dict[str, Any]) -> PlayerState | None:
        player = self.players.get(player_id)
        if player is None:
            return None
        if data.get("x") is not None:
            player.x = float(data["x"])
        if data.get("y") is not None:
            player.y = float(data["y"])
        if data.get("direction"):
            player.direction = str(data["direction"])
        if data.get("animation"):
            player.animation = str(data["animation"])
        if data.get("viewport_w"):
            player.viewport_w = int(data["viewport_w"])
        if data.get("viewport_h"):
            player.viewport_h = int(data["viewport_h"])
        return player

    def remove_player(self, player_id: str) -> PlayerState | None:
        return self.players.pop(player_id, None)

    def record_chat(self, entry: dict[str, Any]) -> None:
        self.chat_log.append(entry)

    def snapshot(self) -> dict[str, Any]:
        return {
            "players": [player.as_dict() for player in self.players.values()],
            "npcs": [npc.as_dict() for npc in self.npcs.values()],
            "objects": [],
        }
