"""Social drives and the engine that turns them into conversations."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from math import hypot
from typing import Callable, Iterable, Mapping, Sequence
import logging
import random
import time

from packages.sunnyside_core.llm.responses import DialoguePayload, DialogueTurn, as_turns

from .memory import MemoryManager
from .personalities import PersonalityCatalog, SocialParameters
from .prompts import ConversationPrompt, build_conversation_prompt, build_player_prompt


logger = logging.getLogger("sunnyside_core.social")

Clock = Callable[[], float]
Position = tuple[float, float]
PositionProvider = Callable[[], Mapping[str, Position]]

HEARING_RADIUS = 350.0
LONELINESS_IDLE_SECONDS = 60.0
LONELINESS_RATE = 0.15
CURIOSITY_RATE = 0.05
EXPRESSIVENESS_RATE = 0.08
COOLDOWN_MIN_SECONDS = 90.0
COOLDOWN_SPREAD_SECONDS = 120.0
FIRST_TURN_DELAY_MS = 1800
LATER_TURN_DELAY_MS = 3000
PENDING_CONVERSATION_TTL_SECONDS = 30.0
MAX_PENDING_CONVERSATIONS = 4

ENVIRONMENTAL_TOPICS = (
    "qué bonito día",
    "hace calor hoy",
    "oí un ruido raro",
    "vi algo moverse en el bosque",
    "tengo hambre",
    "qué hora es",
    "ayer soñé algo raro",
    "has visto algo interesante",
)

TOPIC_KINDS = ("memory", "interest", "activity", "environmental")


@dataclass(frozen=True)
class Topic:
    kind: str
    text: str
    weight: float

    def __post_init__(self) -> None:
        if self.kind not in TOPIC_KINDS:
            raise ValueError(f"Unknown topic kind: {self.kind}")

    def as_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "text": self.text, "weight": self.weight}


@dataclass(frozen=True)
class ConversationRequest:
    initiator: str
    target: str
    topic: Topic
    participants: tuple[str, ...]
    timestamp: float

    def as_dict(self) -> dict[str, object]:
        return {
            "initiator": self.initiator,
            "target": self.target,
            "topic": self.topic.as_dict(),
            "participants": list(self.participants),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class SeekIntent:
    agent: str
    target: str
    reason: str

    def as_dict(self) -> dict[str, str]:
        return {"agent": self.agent, "target": self.target, "reason": self.reason}


@dataclass
class AgentMood:
    happiness: float = 50.0
    energy: float = 50.0
    social: float = 50.0

    def drift(self) -> None:
        self.energy = min(100.0, self.energy + 1)
        self.social = max(0.0, self.social - 0.5)
        if self.social < 20:
            self.happiness = max(10.0, self.happiness - 1)
        if self.energy > 80:
            self.happiness = min(100.0, self.happiness + 0.5)

    def cheer(self, *, social: float, happiness: float) -> None:
        self.social = min(100.0, self.social + social)
        self.happiness = min(100.0, self.happiness + happiness)

    def as_dict(self) -> dict[str, float]:
        return {
            "happiness": round(self.happiness, 1),
            "energy": round(self.energy, 1),
            "social": round(self.social, 1),
        }


@dataclass
class SocialDrive:
    """Numeric social needs of one agent, ticked with elapsed seconds."""

    agent: str
    params: SocialParameters
    memory: MemoryManager
    rng: random.Random
    loneliness: float = 30.0
    curiosity: float = 50.0
    expressiveness: float = 40.0
    helpfulness: float = 20.0
    intent: str | None = None
    intent_target: str | None = None
    last_conversation: float | None = None
    cooldown: float = 0.0

    def tick(self, elapsed: float, now: float) -> None:
        elapsed = max(0.0, float(elapsed))
        idle = self.last_conversation is None or (now - self.last_conversation) > LONELINESS_IDLE_SECONDS
        if idle:
            self.loneliness = min(100.0, self.loneliness + elapsed * LONELINESS_RATE)
        self.curiosity += elapsed * CURIOSITY_RATE * (self.rng.random() - 0.3)
        self.curiosity = max(0.0, min(100.0, self.curiosity))
        self.expressiveness = min(100.0, self.expressiveness + elapsed * EXPRESSIVENESS_RATE)
        self.cooldown = max(0.0, self.cooldown - elapsed)

    @property
    def urgency(self) -> float:
        return self.loneliness + self.expressiveness

    def should_initiate(self) -> bool:
        if self.cooldown > 0:
            return False
        return self.rng.random() < self.params.initiative * (self.urgency / 200.0)

    def pick_target(self, nearby: Sequence[str]) -> str | None:
        best: tuple[float, str] | None = None
        for name in nearby:
            if name == self.agent:
                continue
            score = self.params.affinity_toward(name)
            emotion = self.memory.feelings_about(self.agent, name).emotion
            if emotion == "happy":
                score += 0.2
            elif emotion == "curious":
                score += 0.15
            score += self.rng.random() * 0.3
            if best is None or score > best[0]:
                best = (score, name)
        return best[1] if best else None

    def pick_topic(self, target: str) -> Topic:
        topics: list[Topic] = []
        recall = self.memory.try_recall(self.agent, target, tags=[target.lower()], max_results=2)
        if recall.success and recall.memories:
            topics.append(Topic(kind="memory", text=recall.memories[0].text, weight=3.0))
        if self.params.interests:
            topics.append(Topic(kind="interest", text=self.rng.choice(self.params.interests), weight=2.0))
        topics.append(Topic(kind="activity", text="actividad actual", weight=1.5))
        topics.append(Topic(kind="environmental", text=self.rng.choice(ENVIRONMENTAL_TOPICS), weight=1.0))

        roll = self.rng.random() * sum(t.weight for t in topics)
        for topic in topics:
            roll -= topic.weight
            if roll <= 0:
                return topic
        return topics[-1]

    def on_conversation(self, now: float) -> None:
        self.last_conversation = now
        self.loneliness = max(0.0, self.loneliness - 30)
        self.expressiveness = max(0.0, self.expressiveness - 20)
        self.cooldown = COOLDOWN_MIN_SECONDS + self.rng.random() * COOLDOWN_SPREAD_SECONDS
        self.intent = None
        self.intent_target = None

    def as_dict(self, now: float) -> dict[str, object]:
        return {
            "loneliness": round(self.loneliness),
            "curiosity": round(self.curiosity),
            "expressiveness": round(self.expressiveness),
            "helpfulness": round(self.helpfulness),
            "intent": self.intent,
            "intent_target": self.intent_target,
            "cooldown_seconds": round(self.cooldown, 1),
            "last_conversation_age_seconds": (
                None if self.last_conversation is None else round(now - self.last_conversation)
            ),
        }


class SocialEngine:
    """Ticks every drive, queues conversations and guards them with a lock."""

    def __init__(
        self,
        catalog: PersonalityCatalog,
        memory: MemoryManager,
        *,
        position_provider: PositionProvider | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        hearing_radius: float = HEARING_RADIUS,
    ) -> None:
        self.catalog = catalog
        self.memory = memory
        self._positions = position_provider
        self._clock = clock or time.time
        self._rng = rng or random.Random()
        self.hearing_radius = float(hearing_radius)
        self.drives: dict[str, SocialDrive] = {
            name: SocialDrive(agent=name, params=catalog.social(name), memory=memory, rng=self._rng)
            for name in catalog.names
        }
        self._queue: deque[ConversationRequest] = deque(maxlen=MAX_PENDING_CONVERSATIONS)
        self._lock_until = 0.0
        self._last_tick = self._clock()

    def set_position_provider(self, provider: PositionProvider | None) -> None:
        self._positions = provider

    def tick(self, *, queue_open: bool = True) -> ConversationRequest | SeekIntent | None:
        """Advance every drive and maybe start a conversation.

        With ``queue_open`` false the drives still tick and agents may still go
        looking for company, but no conversation request is queued.
        """
        now = self._clock()
        elapsed = now - self._last_tick
        self._last_tick = now
        for drive in self.drives.values():
            drive.tick(elapsed, now)

        initiators = [d for d in self.drives.values() if d.should_initiate()]
        if not initiators:
            return None
        initiator = max(initiators, key=lambda d: d.urgency)

        nearby = self.nearby_agents(initiator.agent)
        if not nearby:
            return self._create_seek_intent(initiator)

        if not queue_open:
            return None
        target = initiator.pick_target(nearby)
        if target is None:
            return None
        topic = initiator.pick_topic(target)
        request = ConversationRequest(
            initiator=initiator.agent,
            target=target,
            topic=topic,
            participants=self._participants(initiator.agent, target, nearby),
            timestamp=now,
        )
        self._replace_pending(request)
        logger.info(
            "[SOCIAL] %s wants to talk with %s (%s: %s)",
            request.initiator,
            request.target,
            topic.kind,
            topic.text,
        )
        return request

    def _replace_pending(self, request: ConversationRequest) -> None:
        stale = [r for r in self._queue if r.initiator == request.initiator]
        for old in stale:
            self._queue.remove(old)
        self._queue.append(request)

    def nearby_agents(self, agent: str) -> list[str]:
        if self._positions is None:
            return [name for name in self.drives if name != agent]
        positions = self._positions()
        origin = positions.get(agent)
        if origin is None:
            return []
        out: list[str] = []
        for name, pos in positions.items():
            if name == agent or name not in self.drives:
                continue
            if hypot(pos[0] - origin[0], pos[1] - origin[1]) < self.hearing_radius:
                out.append(name)
        return out

    def _participants(self, initiator: str, target: str, nearby: Iterable[str]) -> tuple[str, ...]:
        participants = [initiator, target]
        for name in nearby:
            if name in participants:
                continue
            if self._rng.random() < self.catalog.social(name).talkativeness * 0.5:
                participants.append(name)
        return tuple(participants)

    def _create_seek_intent(self, drive: SocialDrive) -> SeekIntent | None:
        candidates = sorted(drive.params.affinities.items(), key=lambda item: item[1], reverse=True)
        candidates = [(name, weight) for name, weight in candidates if name in self.drives]
        if not candidates:
            return None
        if self._rng.random() < 0.6:
            target = candidates[0][0]
        else:
            total = sum(max(0.0, w) for _, w in candidates)
            roll = self._rng.random() * total
            target = candidates[-1][0]
            for name, weight in candidates:
                roll -= max(0.0, weight)
                if roll <= 0:
                    target = name
                    break
        drive.intent = "seek"
        drive.intent_target = target
        reason = "lonely" if drive.loneliness > 60 else "wants_to_chat"
        logger.info("[SOCIAL] %s goes looking for %s (%s)", drive.agent, target, reason)
        return SeekIntent(agent=drive.agent, target=target, reason=reason)

    def get_seek_targets(self) -> list[SeekIntent]:
        seeks: list[SeekIntent] = []
        for name, drive in self.drives.items():
            if drive.intent == "seek" and drive.intent_target:
                reason = "lonely" if drive.loneliness > 60 else "wants_to_chat"
                seeks.append(SeekIntent(agent=name, target=drive.intent_target, reason=reason))
                drive.intent = None
                drive.intent_target = None
        return seeks

    def _memory_contexts(self, agents: Iterable[str], participants: Sequence[str]) -> dict[str, str]:
        return {name: self.memory.build_memory_context(name, participants) for name in agents}

    def _activity_labels(self, activities: Mapping[str, str]) -> dict[str, str]:
        return {name: self.catalog.activity_label(name, activities.get(name)) for name in self.catalog.names}

    def build_conversation_prompt(
        self,
        request: ConversationRequest,
        activities: Mapping[str, str],
    ) -> ConversationPrompt:
        participants = [self.catalog.require(name) for name in request.participants]
        return build_conversation_prompt(
            initiator=request.initiator,
            target=request.target,
            topic_kind=request.topic.kind,
            topic_text=request.topic.text,
            participants=participants,
            memory_contexts=self._memory_contexts(request.participants, request.participants),
            activity_labels=self._activity_labels(activities),
        )

    def build_player_conversation_prompt(
        self,
        *,
        player_name: str,
        player_message: str,
        activities: Mapping[str, str],
        nearby: Sequence[str],
        player_memory: Mapping[str, str] | None = None,
        moods: Mapping[str, AgentMood] | None = None,
        addressing_hint: str = "",
        recent_lines: Sequence[str] = (),
    ) -> ConversationPrompt:
        for name in nearby:
            # Rehearse what this agent knows about the player.
            self.memory.try_recall(name, player_name, tags=[player_name.lower()], max_results=3)
        contexts = self._memory_contexts(nearby, [player_name, *nearby])
        return build_player_prompt(
            player_name=player_name,
            player_message=player_message,
            roster=list(self.catalog),
            nearby=nearby,
            memory_contexts=contexts,
            activity_labels=self._activity_labels(activities),
            moods=moods,
            addressing_hint=addressing_hint,
            player_memory=player_memory,
            recent_lines=recent_lines,
        )

    def after_conversation(
        self,
        participants: Iterable[str],
        turns: DialoguePayload | Sequence[DialogueTurn],
    ) -> None:
        now = self._clock()
        sequence = as_turns(turns)
        for name in participants:
            drive = self.drives.get(name)
            if drive is not None:
                drive.on_conversation(now)
            for turn in sequence:
                if turn.message and turn.agent != name:
                    self.memory.observe_conversation(name, turn.agent, turn.message)
        speakers = sequence.speakers()
        if len(speakers) >= 2:
            opener = sequence.turns[0].message[:30] if sequence.turns else "chat"
            self.memory.record_interaction(speakers[0], speakers[1], opener or "chat", "conversación normal")

    def lock_conversation(self, duration_ms: float) -> None:
        until = self._clock() + max(0.0, float(duration_ms)) / 1000.0
        self._lock_until = max(self._lock_until, until)

    def is_locked(self) -> bool:
        return self._clock() < self._lock_until

    def get_next_conversation(self) -> ConversationRequest | None:
        if self.is_locked():
            return None
        now = self._clock()
        while self._queue:
            request = self._queue.popleft()
            age = now - request.timestamp
            if age <= PENDING_CONVERSATION_TTL_SECONDS:
                return request
            logger.debug("[SOCIAL] dropping stale request %s -> %s (%.0fs old)", request.initiator, request.target, age)
        return None

    def has_pending_conversations(self) -> bool:
        return bool(self._queue)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def should_npc_respond(self, agent: str, message: str, directly_addressed: bool) -> bool:
        if directly_addressed:
            return True
        params = self.catalog.social(agent)
        chance = params.talkativeness
        drive = self.drives.get(agent)
        if drive is not None and drive.loneliness > 50:
            chance += 0.15
        lowered = str(message or "").lower()
        if any(interest in lowered for interest in params.interests):
            chance += 0.2
        return self._rng.random() < chance

    def get_response_delay(self, agent: str, turn_index: int) -> float:
        """Milliseconds before this turn shows; callers accumulate across turns."""
        params = self.catalog.social(agent)
        base = FIRST_TURN_DELAY_MS if turn_index == 0 else LATER_TURN_DELAY_MS
        return base + params.typing_base_ms + self._rng.random() * params.typing_variance_ms

    def debug_snapshot(self) -> dict[str, object]:
        now = self._clock()
        return {
            "drives": {name: drive.as_dict(now) for name, drive in self.drives.items()},
            "queue_length": len(self._queue),
            "locked": self.is_locked(),
            "lock_remaining_seconds": round(max(0.0, self._lock_until - now), 1),
            "chat_rules": {
                "talkativeness": {p.name: p.social.talkativeness for p in self.catalog},
                "typing_speed": {
                    p.name: f"{p.social.typing_base_ms}+{p.social.typing_variance_ms}ms" for p in self.catalog
                },
            },
        }


def default_moods() -> dict[str, AgentMood]:
    return {
        "Elena": AgentMood(happiness=80, energy=70, social=60),
        "Marco": AgentMood(happiness=50, energy=80, social=30),
        "Gruk": AgentMood(happiness=70, energy=90, social=50),
        "Bones": AgentMood(happiness=30, energy=100, social=20),
    }


def default_relationships() -> dict[str, dict[str, float]]:
    return {
        "Elena": {"Marco": 60, "Gruk": 45, "Bones": 35},
        "Marco": {"Elena": 55, "Gruk": 25, "Bones": 40},
        "Gruk": {"Elena": 50, "Marco": 20, "Bones": 30},
        "Bones": {"Elena": 40, "Marco": 45, "Gruk": 35},
    }
