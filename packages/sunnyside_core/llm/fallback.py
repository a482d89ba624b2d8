"""Canned in-character lines used when no provider answers."""

from __future__ import annotations

from typing import Mapping, Sequence
import random

from packages.sunnyside_core.cognition.personalities import DEFAULT_ACTIVITY


DEFAULT_PHRASES = "_default"
EXTRA_RESPONDER_CHANCE = 0.3

CONTEXTUAL_FALLBACKS: dict[str, dict[str, tuple[str, ...]]] = {
    "Elena": {
        "watering": ("Las calabazas necesitan agua, cariño.", "Hoy la lavanda huele divina."),
        "gathering_herbs": ("Esta menta es perfecta para el té.", "Las hierbas hoy están preciosas."),
        "carrying_harvest": ("¡Vaya cosecha, cariño!", "Esto dará para buena sopa."),
        "resting": ("¡Qué bonito día, cariño!", "La brisa es perfecta."),
        "strolling": ("Pasear relaja el alma.", "Cada rincón tiene su encanto."),
        DEFAULT_PHRASES: ("¡Hola, cariño!", "Las plantas crecen bien hoy."),
    },
    "Marco": {
        "patrolling": ("Todo despejado.", "Nada sospechoso por aquí."),
        "chopping_wood": ("Buen tronco. Resistente.", "La madera reforzará la valla."),
        "fighting_monsters": ("¡Atrás, bestia!", "Otro menos."),
        "keeping_watch": ("Mantengo la guardia.", "Ojo avizor."),
        "training": ("No se baja la guardia nunca.", "El cuerpo es un arma más."),
        DEFAULT_PHRASES: ("Todo tranquilo. De momento.", "Hmph."),
    },
    "Gruk": {
        "mining": ("Gruk buscar shiny en roca!", "Piedra dura, Gruk más duro."),
        "digging": ("Gruk encontrar... tierra.", "Cavar cavar."),
        "carrying_loot": ("Gruk llevar tesoro!", "¡Mucho shiny hoy!"),
        "seeking_shiny": ("¿Dónde estar shiny?", "Gruk oler shiny cerca..."),
        "hiding": ("Gruk no estar aquí. Shh.", "*mira nervioso*"),
        "hammering": ("¡Clang clang!", "Gruk arreglar cosa."),
        DEFAULT_PHRASES: ("¡Shiny!", "Gruk amigo."),
    },
    "Bones": {
        "meditating": ("La eternidad da para reflexionar.", "Meditar sin cerebro... irónico."),
        "wandering": ("Paseo mis huesos. Literalmente.", "Vagar es mi cardio."),
        "scaring_intruders": ("¡Buh! ...Nunca funciona.", "Ser esqueleto y no asustar."),
        "contemplating": ("¿Piensa un esqueleto?", "Cogito ergo... rattle."),
        "patrolling_territory": ("Mi ronda. No duermo.", "Este rincón es mío."),
        DEFAULT_PHRASES: ("*rattle*", "Echo de menos los párpados."),
    },
}

GENERIC_PHRASES = ("...", "Hmm.")


def phrases_for(agent: str, activity: str | None) -> tuple[str, ...]:
    table = CONTEXTUAL_FALLBACKS.get(agent)
    if not table:
        return GENERIC_PHRASES
    return table.get(activity or DEFAULT_ACTIVITY) or table.get(DEFAULT_PHRASES) or GENERIC_PHRASES


def fallback_line(agent: str, activity: str | None, *, rng: random.Random | None = None) -> str:
    return (rng or random.Random()).choice(phrases_for(agent, activity))


def contextual_fallback(
    activities: Mapping[str, str] | None,
    addressed: Sequence[str] = (),
    *,
    rng: random.Random | None = None,
    roster: Sequence[str] | None = None,
) -> dict[str, str]:
    """Pick one to three responders and give each an activity-appropriate line.

    Addressed agents always answer; there is a small chance one bystander
    chimes in. With nobody addressed, one or two random agents answer.
    """
    rng = rng or random.Random()
    activities = activities or {}
    names = list(roster) if roster is not None else list(CONTEXTUAL_FALLBACKS)
    if not names:
        names = list(CONTEXTUAL_FALLBACKS)

    addressed = [name for name in addressed if name in names]
    if addressed:
        respondents = list(dict.fromkeys(addressed))
        if rng.random() < EXTRA_RESPONDER_CHANCE:
            others = [name for name in names if name not in respondents]
            if others:
                respondents.append(rng.choice(others))
    else:
        shuffled = list(names)
        rng.shuffle(shuffled)
        respondents = shuffled[: 1 + rng.randrange(2)]

    result: dict[str, str] = {}
    for agent in respondents:
        result[agent] = fallback_line(agent, activities.get(agent), rng=rng)
    return result
