"""Recover structured dialogue from raw model text.

Small models routinely wrap JSON in code fences, stop mid-string when they hit
the token cap, or drift between the object and array shapes. Each parser here
walks a ladder of progressively looser strategies and reports whether any
repair was needed so the pipeline can count it.
"""

from __future__ import annotations

from typing import Any, Sequence
import json
import re

from .providers import EmptyResponseError, UnparsableOutputError
from .responses import MAX_MESSAGE_CHARS, AgentResponseMap, DialogueTurn, TurnSequence


MIN_CONVERSATION_TURNS = 2

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def _names_pattern(roster: Sequence[str]) -> str:
    return "|".join(re.escape(name) for name in roster)


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _coerce_map(parsed: Any, roster: Sequence[str]) -> AgentResponseMap | None:
    if not isinstance(parsed, dict):
        return None
    responses: dict[str, str | None] = {}
    for name in roster:
        if name not in parsed:
            continue
        value = parsed[name]
        responses[name] = value if isinstance(value, str) else None
    return AgentResponseMap(responses=responses)


def _unescape(raw: str) -> str:
    decoded = _try_json(f'"{raw}"')
    return decoded if isinstance(decoded, str) else raw


def parse_response_map(text: str, roster: Sequence[str]) -> tuple[AgentResponseMap, bool]:
    """Parse ``{"Agent": "line" | null}`` output.

    Returns the map and a flag telling whether a repair step was used.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise EmptyResponseError()

    direct = _coerce_map(_try_json(cleaned), roster)
    if direct is not None:
        return direct, False

    if cleaned.startswith("{") and not cleaned.endswith("}"):
        # Cut off mid-value: close the open string, then the object.
        for suffix in ('"}', "}"):
            closed = _coerce_map(_try_json(cleaned + suffix), roster)
            if closed is not None and closed.spoken():
                return closed, True
        last_quote = cleaned.rfind('"')
        if last_quote > 0:
            head = cleaned[: last_quote + 1]
            for suffix in ("}", '"}'):
                closed = _coerce_map(_try_json(head + suffix), roster)
                if closed is not None and closed.spoken():
                    return closed, True

    names = _names_pattern(roster)
    if names:
        strict = re.compile(r'"(' + names + r')"\s*:\s*("(?:[^"\\]|\\.)*"|null)')
        pairs: dict[str, str | None] = {}
        for match in strict.finditer(cleaned):
            value = match.group(2)
            pairs[match.group(1)] = None if value == "null" else _unescape(value[1:-1])
        if pairs:
            return AgentResponseMap(responses=pairs), True

        loose = re.compile(r'"?(' + names + r')"?\s*:\s*"([^"]{3,})"')
        found = {match.group(1): match.group(2) for match in loose.finditer(cleaned)}
        if found:
            return AgentResponseMap(responses=dict(found)), True

    raise UnparsableOutputError("Could not recover agent responses", raw_excerpt=cleaned[:200])


def _turn_from_item(item: Any, roster: Sequence[str]) -> DialogueTurn | None:
    if not isinstance(item, dict):
        return None
    agent = item.get("npc") or item.get("agent")
    message = item.get("msg") or item.get("message")
    if not isinstance(agent, str) or not isinstance(message, str):
        return None
    if agent not in roster or not message.strip():
        return None
    return DialogueTurn(agent=agent, message=message.strip()[:MAX_MESSAGE_CHARS])


def _turns_from_object(parsed: dict, roster: Sequence[str]) -> list[DialogueTurn]:
    turns = []
    for key, value in parsed.items():
        if key in roster and isinstance(value, str) and value.strip():
            turns.append(DialogueTurn(agent=key, message=value.strip()[:MAX_MESSAGE_CHARS]))
    return turns


def parse_turn_sequence(text: str, roster: Sequence[str]) -> tuple[TurnSequence, bool]:
    """Parse ``[{"npc": ..., "msg": ...}, ...]`` output into ordered turns.

    Object-shaped output is converted in payload order. Anything recovered by
    repair must yield at least two turns.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise EmptyResponseError()

    parsed = _try_json(cleaned)
    if isinstance(parsed, list):
        turns = [turn for turn in (_turn_from_item(item, roster) for item in parsed) if turn is not None]
        if turns:
            return TurnSequence(turns=tuple(turns)), False
    elif isinstance(parsed, dict):
        turns = _turns_from_object(parsed, roster)
        if len(turns) >= MIN_CONVERSATION_TURNS:
            return TurnSequence(turns=tuple(turns)), True

    names = _names_pattern(roster)
    if cleaned.startswith("[") and names:
        item_re = re.compile(
            r'\{\s*"(?:npc|agent)"\s*:\s*"(' + names + r')"\s*,\s*"(?:msg|message)"\s*:\s*"([^"]{1,200})"\s*\}'
        )
        items = [DialogueTurn(agent=m.group(1), message=m.group(2).strip()) for m in item_re.finditer(cleaned)]
        items = [turn for turn in items if turn.message]
        if len(items) >= MIN_CONVERSATION_TURNS:
            return TurnSequence(turns=tuple(items)), True

    try:
        fallback, _ = parse_response_map(cleaned, roster)
    except UnparsableOutputError:
        fallback = None
    if fallback is not None:
        converted = fallback.to_turns()
        if len(converted) >= MIN_CONVERSATION_TURNS:
            return converted, True

    raise UnparsableOutputError("Could not recover conversation turns", raw_excerpt=cleaned[:200])
