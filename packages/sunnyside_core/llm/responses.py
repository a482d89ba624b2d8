"""Typed response shapes returned by generation calls.

Providers answer in one of two wire shapes: an object keyed by agent name
(``{"Elena": "hola", "Marco": null}``) for player chat, or an ordered array of
turns (``[{"npc": "Elena", "msg": "hola"}, ...]``) for agent-to-agent
conversations. Both are parsed into explicit types with converters between
them so callers never sniff shapes at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Union


MAX_MESSAGE_CHARS = 200


@dataclass(frozen=True)
class DialogueTurn:
    agent: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"agent": self.agent, "message": self.message}


@dataclass(frozen=True)
class AgentResponseMap:
    """One optional line per agent; ``None`` means the agent stays silent."""

    responses: dict[str, str | None] = field(default_factory=dict)

    def spoken(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for agent, text in self.responses.items():
            if isinstance(text, str) and text.strip() and text.strip().lower() != "null":
                out[agent] = text.strip()[:MAX_MESSAGE_CHARS]
        return out

    def ordered(self, *, first: Iterable[str] = ()) -> dict[str, str]:
        spoken = self.spoken()
        leading = [name for name in first if name in spoken]
        rest = [name for name in spoken if name not in leading]
        return {name: spoken[name] for name in leading + rest}

    def to_turns(self) -> "TurnSequence":
        return TurnSequence(turns=tuple(DialogueTurn(agent=a, message=m) for a, m in self.spoken().items()))

    def as_dict(self) -> dict[str, str | None]:
        return dict(self.responses)


@dataclass(frozen=True)
class TurnSequence:
    turns: tuple[DialogueTurn, ...] = ()

    def __len__(self) -> int:
        return len(self.turns)

    def __iter__(self):
        return iter(self.turns)

    def speakers(self) -> list[str]:
        return list(dict.fromkeys(turn.agent for turn in self.turns))

    def to_response_map(self) -> AgentResponseMap:
        """Collapse to one line per agent; the first line an agent spoke wins."""
        responses: dict[str, str | None] = {}
        for turn in self.turns:
            responses.setdefault(turn.agent, turn.message)
        return AgentResponseMap(responses=responses)

    def as_list(self) -> list[dict[str, str]]:
        return [turn.as_dict() for turn in self.turns]


DialoguePayload = Union[AgentResponseMap, TurnSequence]


def as_turns(payload: DialoguePayload | Iterable[DialogueTurn]) -> TurnSequence:
    if isinstance(payload, TurnSequence):
        return payload
    if isinstance(payload, AgentResponseMap):
        return payload.to_turns()
    return TurnSequence(turns=tuple(payload))
