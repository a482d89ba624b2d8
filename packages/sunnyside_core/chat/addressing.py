"""Who is a player message aimed at, and who is it about."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
import re


GREETING_WORDS = ("oye", "hey", "hola", "eh", "ey", "mira", "dime", "escucha")
FOLLOW_UP_WORDS = ("dime", "sabes", "puedes", "quiero", "te", "eres", "como", "que", "donde", "por", "tienes", "has")
NAME_OPENING_CHARS = 3


@dataclass(frozen=True)
class Addressing:
    spoken_to: tuple[str, ...] = ()
    mentioned_about: tuple[str, ...] = ()

    def hint(self) -> str:
        """Instruction appended to the player line in the prompt."""
        if self.spoken_to:
            text = f" [HABLA CON {', '.join(self.spoken_to)}"
            if self.mentioned_about:
                text += f", PREGUNTA SOBRE {', '.join(self.mentioned_about)}"
            return text + f". Solo {'/'.join(self.spoken_to)} responde(n).]"
        if self.mentioned_about:
            return f" [Menciona a {', '.join(self.mentioned_about)}. Quien mejor conozca el tema responde.]"
        return ""

    def as_dict(self) -> dict[str, list[str]]:
        return {"spoken_to": list(self.spoken_to), "mentioned_about": list(self.mentioned_about)}


def _patterns(roster: Sequence[str]) -> tuple[list[re.Pattern], list[re.Pattern]]:
    names = "|".join(re.escape(name.lower()) for name in roster)
    greetings = "|".join(GREETING_WORDS)
    follow_ups = "|".join(FOLLOW_UP_WORDS)
    speak_to = [
        re.compile(rf"^(?:{greetings})\s+({names})", re.IGNORECASE),
        re.compile(rf"^({names})\s*[,!:¡¿]", re.IGNORECASE),
        re.compile(rf"^({names})$", re.IGNORECASE),
        re.compile(rf"^({names})\s+(?:{follow_ups})", re.IGNORECASE),
    ]
    ask_about = [
        re.compile(rf"(?:donde|dónde)\s+(?:esta|está|anda|vive)\s+({names})", re.IGNORECASE),
        re.compile(rf"(?:visto|conoces|sabes de|que piensas de|opinas de|que tal|como es)\s+({names})", re.IGNORECASE),
        re.compile(rf"\b(?:sobre|acerca de|de)\s+({names})", re.IGNORECASE),
        re.compile(rf"\b(?:con|a)\s+({names})\s*\?", re.IGNORECASE),
    ]
    return speak_to, ask_about


def detect_addressing(message: str, roster: Sequence[str]) -> Addressing:
    """Classify agents as spoken to or merely mentioned.

    A name at the very start of the message counts as speaking to that agent.
    When nobody is spoken to and exactly one agent is mentioned, that agent is
    treated as the one being spoken to.
    """
    if not roster:
        return Addressing()
    text = (message or "").strip().lower()
    by_lower = {name.lower(): name for name in roster}
    speak_to, ask_about = _patterns(roster)

    spoken_to: list[str] = []
    mentioned: list[str] = []
    for pattern in speak_to:
        match = pattern.search(text)
        if match:
            name = by_lower[match.group(1).lower()]
            if name not in spoken_to:
                spoken_to.append(name)
    for pattern in ask_about:
        for match in pattern.finditer(text):
            name = by_lower[match.group(1).lower()]
            if name not in spoken_to and name not in mentioned:
                mentioned.append(name)

    if not spoken_to:
        for name in roster:
            index = text.find(name.lower())
            if index == -1 or name in mentioned:
                continue
            if index < NAME_OPENING_CHARS:
                spoken_to.append(name)
            else:
                mentioned.append(name)
        if not spoken_to and len(mentioned) == 1:
            spoken_to.append(mentioned.pop())

    return Addressing(spoken_to=tuple(spoken_to), mentioned_about=tuple(mentioned))
