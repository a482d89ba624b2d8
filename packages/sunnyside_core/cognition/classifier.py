"""Pluggable text classification used when turning utterances into memories."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable
import re

from .memory import Importance


@dataclass(frozen=True)
class ExtractedFact:
    text: str
    subject: str | None
    tags: tuple[str, ...]


class TextClassifier(ABC):
    """Derives tags, importance, emotion and facts from free text."""

    @abstractmethod
    def tags(self, text: str) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def importance(self, text: str, *, listener: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def emotion(self, text: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def facts(self, speaker: str, text: str) -> list[ExtractedFact]:
        raise NotImplementedError


_TOPIC_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), tag)
    for pattern, tag in (
        (r"planta|hierba|flor|jardín|cultivo|regar", "plantas"),
        (r"shiny|brillante|oro|tesoro|botón", "shiny"),
        (r"guardia|patrulla|pelea|espada|proteger", "guardia"),
        (r"hueso|muerte|morir|vida|filosof", "filosofía"),
        (r"comida|comer|cocinar|sopa|manzana", "comida"),
        (r"libro|leer|historia|saber|conocer", "conocimiento"),
        (r"mina|piedra|cavar|excavar|pico", "minería"),
        (r"amigo|querer|cariño|solo|compañía", "amistad"),
        (r"triste|feliz|contento|enfadado|miedo", "emociones"),
    )
)

_REVELATION_RE = re.compile(r"mi nombre|me llamo|mi favorit|mi familia|te cuento un secreto", re.IGNORECASE)

# First match wins.
_EMOTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), emotion)
    for pattern, emotion in (
        (r"jaja|jeje|gracioso|divertido|risa", "amused"),
        (r"gracias|amable|genial|increíble|me gusta", "happy"),
        (r"triste|pena|lástima|lo siento|pobre", "sad"),
        (r"idiota|tonto|feo|odio|cállate", "angry"),
        (r"misterio|secreto|curioso|interesante|¿por qué", "curious"),
    )
)

_NAME_RE = re.compile(r"(?:me llamo|mi nombre es|soy) (\w+)", re.IGNORECASE)
_LIKE_RE = re.compile(
    r"me (?:gusta|encanta|fascina) (?:mucho )?(?:el |la |los |las )?(.{3,25}?)(?:\.|,|$)",
    re.IGNORECASE,
)
_WORK_RE = re.compile(r"(?:trabajo (?:como|de)|soy) (.{3,20}?) (?:de profesión|en|$)", re.IGNORECASE)


class KeywordTextClassifier(TextClassifier):
    """Regex and keyword heuristics tuned for Spanish village chatter."""

    def __init__(self, *, agent_names: Iterable[str] = ()) -> None:
        self._agent_names = tuple(str(name).lower() for name in agent_names)

    def tags(self, text: str) -> list[str]:
        lowered = str(text or "").lower()
        found = [name for name in self._agent_names if name in lowered]
        for pattern, tag in _TOPIC_PATTERNS:
            if pattern.search(lowered):
                found.append(tag)
        return list(dict.fromkeys(found))

    def importance(self, text: str, *, listener: str) -> int:
        lowered = str(text or "").lower()
        if _REVELATION_RE.search(lowered):
            return Importance.HIGH
        if listener and listener.lower() in lowered:
            return Importance.NORMAL + 1
        if len(str(text or "")) < 15:
            return Importance.LOW
        return Importance.NORMAL

    def emotion(self, text: str) -> str:
        lowered = str(text or "").lower()
        for pattern, emotion in _EMOTION_PATTERNS:
            if pattern.search(lowered):
                return emotion
        return "neutral"

    def facts(self, speaker: str, text: str) -> list[ExtractedFact]:
        lowered = str(text or "").lower()
        speaker_tag = speaker.lower()
        out: list[ExtractedFact] = []

        name_match = _NAME_RE.search(lowered)
        if name_match:
            out.append(
                ExtractedFact(
                    text=f"{speaker} se llama {name_match.group(1)}",
                    subject=speaker,
                    tags=("nombre", speaker_tag),
                )
            )
        like_match = _LIKE_RE.search(lowered)
        if like_match:
            out.append(
                ExtractedFact(
                    text=f"A {speaker} le gusta {like_match.group(1)}",
                    subject=speaker,
                    tags=("gustos", speaker_tag),
                )
            )
        work_match = _WORK_RE.search(lowered)
        if work_match:
            out.append(
                ExtractedFact(
                    text=f"{speaker} trabaja como {work_match.group(1)}",
                    subject=speaker,
                    tags=("trabajo", speaker_tag),
                )
            )
        return out
