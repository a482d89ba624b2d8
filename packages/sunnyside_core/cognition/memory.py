"""Per-agent memory with decay, rehearsal and imperfect recall."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, Sequence
import random
import time
import uuid

if TYPE_CHECKING:
    from .classifier import TextClassifier


Clock = Callable[[], float]

EPISODIC = "episodic"
SEMANTIC = "semantic"
EMOTIONAL = "emotional"
MEMORY_KINDS = (EPISODIC, SEMANTIC, EMOTIONAL)

EMOTIONS = ("neutral", "happy", "sad", "angry", "curious", "amused", "annoyed")


class Importance:
    TRIVIAL = 1
    LOW = 2
    NORMAL = 3
    HIGH = 5
    CRITICAL = 8
    PERMANENT = 10


DEFAULT_CAPACITY = 80
DEFAULT_SHORT_TERM_CAPACITY = 6
BASE_DECAY_RATE = 0.02
DECAY_INTERVAL_SECONDS = 60.0
STRENGTH_FLOOR = 0.05
RECALL_SCORE_FLOOR = 0.5
REHEARSAL_BONUS = 0.15


@dataclass
class Memory:
    owner: str
    kind: str
    text: str
    subject: str | None
    tags: tuple[str, ...]
    importance: int
    emotion: str
    created_at: float
    last_accessed: float
    strength: float = 1.0
    access_count: int = 0
    memory_id: str = field(default_factory=lambda: f"mem_{uuid.uuid4().hex[:12]}")

    @property
    def permanent(self) -> bool:
        return self.importance >= Importance.PERMANENT

    def access(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = float(now)
        self.strength = min(1.0, self.strength + REHEARSAL_BONUS)

    def decay(self, rate: float) -> bool:
        """Weaken the memory; returns False once it should be forgotten."""
        if self.permanent:
            return True
        protected = float(rate) / (self.importance * 0.5 + 1)
        access_bonus = min(0.5, self.access_count * 0.05)
        self.strength -= max(0.001, protected - access_bonus)
        return self.strength > STRENGTH_FLOOR

    def relevance(self, query: str, context_tags: Iterable[str] | None, now: float) -> float:
        score = 0.0
        query_lower = str(query or "").lower()
        text_lower = self.text.lower()

        if query_lower and query_lower in text_lower:
            score += 3
        for word in query_lower.split():
            if len(word) > 2 and word in text_lower:
                score += 1
        for tag in context_tags or ():
            if tag in self.tags:
                score += 2
        if self.subject and self.subject.lower() in query_lower:
            score += 2

        age_minutes = (float(now) - self.last_accessed) / 60.0
        if age_minutes < 5:
            score += 2
        elif age_minutes < 30:
            score += 1

        if self.emotion != "neutral":
            score += 1
        return score * self.strength

    def as_dict(self, *, now: float | None = None) -> dict[str, object]:
        out: dict[str, object] = {
            "memory_id": self.memory_id,
            "kind": self.kind,
            "text": self.text,
            "subject": self.subject,
            "tags": list(self.tags),
            "importance": int(self.importance),
            "emotion": self.emotion,
            "strength": round(float(self.strength), 2),
            "access_count": int(self.access_count),
        }
        if now is not None:
            out["age_minutes"] = round((float(now) - self.created_at) / 60.0)
        return out


@dataclass(frozen=True)
class RecallResult:
    success: bool
    feeling: str
    memories: tuple[Memory, ...] = ()
    confidence: str | None = None
    hint: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "feeling": self.feeling,
            "confidence": self.confidence,
            "hint": self.hint,
            "memories": [m.as_dict() for m in self.memories],
        }


@dataclass(frozen=True)
class Feeling:
    emotion: str
    intensity: float = 0.0
    reason: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {"emotion": self.emotion, "intensity": round(self.intensity, 2), "reason": self.reason}


NEUTRAL_FEELING = Feeling(emotion="neutral")


class MemoryStore:
    """Bounded memory collection owned by a single agent."""

    def __init__(
        self,
        owner: str,
        *,
        capacity: int = DEFAULT_CAPACITY,
        short_term_capacity: int = DEFAULT_SHORT_TERM_CAPACITY,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.owner = owner
        self.capacity = max(1, int(capacity))
        self._clock = clock or time.time
        self._rng = rng or random.Random()
        self.memories: list[Memory] = []
        self.short_term: deque[Memory] = deque(maxlen=max(1, int(short_term_capacity)))

    def __len__(self) -> int:
        return len(self.memories)

    def remember(
        self,
        *,
        kind: str,
        text: str,
        subject: str | None = None,
        tags: Iterable[str] = (),
        importance: int = Importance.NORMAL,
        emotion: str = "neutral",
    ) -> Memory:
        if kind not in MEMORY_KINDS:
            raise ValueError(f"Unknown memory kind: {kind}")
        now = self._clock()
        memory = Memory(
            owner=self.owner,
            kind=kind,
            text=str(text),
            subject=subject,
            tags=tuple(dict.fromkeys(str(t).lower() for t in tags if t)),
            importance=max(Importance.TRIVIAL, int(importance)),
            emotion=emotion if emotion in EMOTIONS else "neutral",
            created_at=now,
            last_accessed=now,
        )
        self.memories.append(memory)
        self.short_term.append(memory)
        self._evict_over_capacity()
        return memory

    def _evict_over_capacity(self) -> None:
        overflow = len(self.memories) - self.capacity
        if overflow <= 0:
            return
        candidates = sorted(
            (m for m in self.memories if not m.permanent),
            key=lambda m: m.strength * m.importance,
        )
        doomed = {id(m) for m in candidates[:overflow]}
        if doomed:
            self.memories = [m for m in self.memories if id(m) not in doomed]

    def recall(
        self,
        query: str,
        *,
        tags: Sequence[str] | None = None,
        max_results: int = 3,
        must_succeed: bool = False,
    ) -> RecallResult:
        now = self._clock()
        scored = [(m.relevance(query, tags, now), m) for m in self.memories]
        scored = [pair for pair in scored if pair[0] > RECALL_SCORE_FLOOR]
        if not scored:
            return RecallResult(success=False, feeling="nothing")
        scored.sort(key=lambda pair: pair[0], reverse=True)
        top_score, top = scored[0]

        if not must_succeed:
            if top_score < 1.0 and self._rng.random() < 0.3:
                hint = top.subject or (top.tags[0] if top.tags else None)
                return RecallResult(success=False, feeling="vague", hint=hint)
            if top_score < 2.0 and self._rng.random() < 0.2:
                top.access(now)
                return RecallResult(success=True, feeling="fuzzy", confidence="low", memories=(top,))

        results = [m for _, m in scored[: max(1, int(max_results))]]
        for memory in results:
            memory.access(now)
        vivid = top_score > 4
        return RecallResult(
            success=True,
            feeling="vivid" if vivid else "clear",
            confidence="high" if vivid else "medium",
            memories=tuple(results),
        )

    def memories_about(self, subject: str) -> list[Memory]:
        lowered = str(subject).lower()
        matches = [m for m in self.memories if m.subject == subject or lowered in m.tags]
        return sorted(matches, key=lambda m: m.strength, reverse=True)

    def feelings_about(self, subject: str) -> Feeling:
        emotional = [m for m in self.memories if m.kind == EMOTIONAL and m.subject == subject]
        if not emotional:
            return NEUTRAL_FEELING
        totals: dict[str, float] = {}
        for memory in emotional:
            totals[memory.emotion] = totals.get(memory.emotion, 0.0) + memory.strength
        dominant, total = max(totals.items(), key=lambda item: item[1])
        latest = max(emotional, key=lambda m: m.created_at)
        return Feeling(emotion=dominant, intensity=min(1.0, total / 3.0), reason=latest.text)

    def short_term_summary(self) -> str:
        return ". ".join(m.text for m in self.short_term)

    def tick(self, rate: float = BASE_DECAY_RATE) -> int:
        """Apply one decay period; returns how many memories were forgotten."""
        before = len(self.memories)
        self.memories = [m for m in self.memories if m.decay(rate)]
        kept = {id(m) for m in self.memories}
        if len(kept) != before:
            self.short_term = deque((m for m in self.short_term if id(m) in kept), maxlen=self.short_term.maxlen)
        return before - len(self.memories)

    def stats(self) -> dict[str, object]:
        by_kind = {kind: 0 for kind in MEMORY_KINDS}
        for memory in self.memories:
            by_kind[memory.kind] += 1
        avg = sum(m.strength for m in self.memories) / len(self.memories) if self.memories else 0.0
        return {
            "total": len(self.memories),
            "short_term": len(self.short_term),
            "by_kind": by_kind,
            "avg_strength": round(avg, 2),
        }

    def snapshot(self, *, limit: int = 20) -> dict[str, object]:
        now = self._clock()
        strongest = sorted(self.memories, key=lambda m: m.strength, reverse=True)
        return {
            "agent": self.owner,
            "stats": self.stats(),
            "memories": [m.as_dict(now=now) for m in strongest[: max(1, int(limit))]],
        }


_FEELING_WORDS = {
    "happy": "aprecio",
    "annoyed": "fastidio",
    "curious": "curiosidad",
    "amused": "diversión",
}


class MemoryManager:
    """Owns one MemoryStore per agent and turns observations into memories."""

    def __init__(
        self,
        agent_names: Iterable[str],
        *,
        classifier: TextClassifier | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        self._clock = clock or time.time
        self._rng = rng or random.Random()
        self.stores: dict[str, MemoryStore] = {
            name: MemoryStore(name, capacity=capacity, clock=self._clock, rng=self._rng)
            for name in agent_names
        }
        if classifier is None:
            from .classifier import KeywordTextClassifier

            classifier = KeywordTextClassifier(agent_names=list(self.stores))
        self.classifier = classifier

    def store(self, agent: str) -> MemoryStore | None:
        return self.stores.get(agent)

    def seed_core_knowledge(self, knowledge: dict[str, dict[str, dict[str, object]]]) -> int:
        """Seed permanent facts plus one emotional stance per known agent."""
        seeded = 0
        for agent, relations in knowledge.items():
            store = self.stores.get(agent)
            if store is None:
                continue
            for target, data in relations.items():
                subject = agent if target == "self" else target
                emotion = str(data.get("emotion") or "neutral")
                tags = list(data.get("tags") or ())
                for fact in data.get("facts") or ():
                    store.remember(
                        kind=SEMANTIC,
                        text=str(fact),
                        subject=subject,
                        tags=tags,
                        importance=Importance.PERMANENT,
                        emotion=emotion,
                    )
                    seeded += 1
                if target != "self" and data.get("emotion"):
                    store.remember(
                        kind=EMOTIONAL,
                        text=f"Siento {_FEELING_WORDS.get(emotion, 'indiferencia')} hacia {target}",
                        subject=target,
                        tags=[target.lower()],
                        importance=Importance.HIGH,
                        emotion=emotion,
                    )
                    seeded += 1
        return seeded

    def add_memory(self, agent: str, **kwargs: object) -> Memory | None:
        store = self.stores.get(agent)
        if store is None:
            return None
        return store.remember(**kwargs)  # type: ignore[arg-type]

    def observe_conversation(self, listener: str, speaker: str, message: str) -> list[Memory]:
        store = self.stores.get(listener)
        if store is None:
            return []
        created = [
            store.remember(
                kind=EPISODIC,
                text=f'{speaker} dijo: "{message[:80]}"',
                subject=speaker,
                tags=self.classifier.tags(message),
                importance=self.classifier.importance(message, listener=listener),
                emotion=self.classifier.emotion(message),
            )
        ]
        for fact in self.classifier.facts(speaker, message):
            created.append(
                store.remember(
                    kind=SEMANTIC,
                    text=fact.text,
                    subject=fact.subject or speaker,
                    tags=fact.tags,
                    importance=Importance.HIGH,
                )
            )
        return created

    def record_interaction(self, first: str, second: str, topic: str, outcome: str = "") -> None:
        for agent, other in ((first, second), (second, first)):
            store = self.stores.get(agent)
            if store is None:
                continue
            store.remember(
                kind=EPISODIC,
                text=f"Hablé con {other} sobre {topic}. {outcome}".strip(),
                subject=other,
                tags=[other.lower(), *self.classifier.tags(topic)],
                importance=Importance.NORMAL,
            )

    def try_recall(self, agent: str, query: str, **kwargs: object) -> RecallResult:
        store = self.stores.get(agent)
        if store is None:
            return RecallResult(success=False, feeling="nothing")
        return store.recall(query, **kwargs)  # type: ignore[arg-type]

    def feelings_about(self, agent: str, subject: str) -> Feeling:
        store = self.stores.get(agent)
        if store is None:
            return NEUTRAL_FEELING
        return store.feelings_about(subject)

    def relationship_context(self, agent: str, about: str) -> tuple[list[Memory], Feeling]:
        store = self.stores.get(agent)
        if store is None:
            return [], NEUTRAL_FEELING
        return store.memories_about(about)[:5], store.feelings_about(about)

    def build_memory_context(self, agent: str, participants: Iterable[str]) -> str:
        store = self.stores.get(agent)
        if store is None:
            return ""
        parts: list[str] = []
        recent = store.short_term_summary()
        if recent:
            parts.append(f"[Reciente] {recent}")
        for participant in participants:
            if participant == agent:
                continue
            facts, feeling = self.relationship_context(agent, participant)
            if facts:
                fact_text = ". ".join(m.text for m in facts[:3])
                parts.append(f"[Sobre {participant}] {fact_text}. Siento: {feeling.emotion}")
        return "\n".join(parts)

    def tick_all(self) -> int:
        return sum(store.tick() for store in self.stores.values())

    def debug_snapshot(self, *, limit: int = 20) -> dict[str, object]:
        return {name: store.snapshot(limit=limit) for name, store in self.stores.items()}
