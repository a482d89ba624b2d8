"""Facts players reveal about themselves in chat."""

from __future__ import annotations

from typing import Iterable, Mapping
import re


MAX_VALUE_CHARS = 30

SKIP_WORDS = frozenset({"elena", "marco", "gruk", "bones", "hola", "si", "no", "que", "como", "bien", "mal"})

MEMORY_PATTERNS: tuple[tuple[str, tuple[re.Pattern, ...]], ...] = (
    (
        "nombre_real",
        (
            re.compile(r"me llamo (\w+)"),
            re.compile(r"mi nombre (?:real )?(?:es|será) (\w+)"),
            re.compile(r"soy (\w+)"),
        ),
    ),
    (
        "edad",
        (
            re.compile(r"tengo (\d+) años"),
            re.compile(r"mi edad (?:es|son) (\d+)"),
            re.compile(r"(\d+) años"),
        ),
    ),
    (
        "color_favorito",
        (
            re.compile(r"mi color favorito (?:es|será) (?:el )?(\w+)"),
            re.compile(r"me gusta el color (\w+)"),
            re.compile(r"favorito (?:es|el) (\w+)"),
        ),
    ),
    (
        "comida_favorita",
        (
            re.compile(r"mi comida favorita (?:es|será) (.+?)(?:\.|$)"),
            re.compile(r"me gusta (?:comer|la comida) (.+?)(?:\.|$)"),
        ),
    ),
    (
        "hobby",
        (
            re.compile(r"mi hobby (?:es|será) (.+?)(?:\.|$)"),
            re.compile(r"me gusta (?:mucho )?(?:el |la |los |las )?(\w+(?:\s\w+)?)"),
        ),
    ),
    (
        "profesion",
        (
            re.compile(r"soy (\w+(?:\s\w+)?) de profesión"),
            re.compile(r"trabajo (?:como|de) (.+?)(?:\.|$)"),
        ),
    ),
)


def _usable(value: str, extra_skip: Iterable[str]) -> bool:
    cleaned = value.strip().lower()
    if not 1 < len(cleaned) < MAX_VALUE_CHARS:
        return False
    return cleaned not in SKIP_WORDS and cleaned not in extra_skip


def extract_player_memory(
    message: str,
    existing: Mapping[str, str] | None = None,
    *,
    skip_words: Iterable[str] = (),
) -> dict[str, str]:
    """Merge facts found in ``message`` into a copy of ``existing``.

    Patterns are tried most specific first and the first usable match per key
    wins. Trivial words never replace a stored value.
    """
    memory = dict(existing or {})
    text = (message or "").lower()
    extra = {word.lower() for word in skip_words}
    for key, patterns in MEMORY_PATTERNS:
        for pattern in patterns:
            match = pattern.search(text)
            if match and match.group(1) and _usable(match.group(1), extra):
                memory[key] = match.group(1).strip()
                break
    return memory


def new_facts(before: Mapping[str, str], after: Mapping[str, str]) -> dict[str, str]:
    return {key: value for key, value in after.items() if not before.get(key)}
