"""Prompt text for agent-to-agent and player-to-agent exchanges."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from .personalities import AgentPersonality


CONVERSATION_MAX_CHARS = 50
PLAYER_REPLY_MAX_CHARS = 55
PROMPT_MEMORY_CHARS = 200
PLAYER_PROMPT_MEMORY_CHARS = 150


@dataclass(frozen=True)
class ConversationPrompt:
    system_prompt: str
    user_message: str

    def as_dict(self) -> dict[str, str]:
        return {"system_prompt": self.system_prompt, "user_message": self.user_message}


def style_reminders(personalities: Iterable[AgentPersonality]) -> str:
    return ". ".join(f"{p.name}: {p.style_reminder}" for p in personalities) + "."


def topic_hint(initiator: str, kind: str, text: str) -> str:
    if kind == "memory":
        return f'{initiator} recuerda algo: "{text}" y quiere comentarlo.'
    if kind == "interest":
        return f"{initiator} quiere hablar de: {text}."
    if kind == "activity":
        return f"{initiator} comenta sobre lo que están haciendo."
    if kind == "environmental":
        return f'{initiator} comenta: "{text}".'
    return ""


def mood_summary(mood: object | None) -> str:
    if mood is None:
        return ""
    happiness = float(getattr(mood, "happiness", 50))
    social = float(getattr(mood, "social", 50))
    if happiness > 70:
        feel = "feliz"
    elif happiness > 40:
        feel = "normal"
    else:
        feel = "triste"
    return f" Ánimo:{feel},social:{'sociable' if social > 50 else 'solo'}"


def build_conversation_prompt(
    *,
    initiator: str,
    target: str,
    topic_kind: str,
    topic_text: str,
    participants: Sequence[AgentPersonality],
    memory_contexts: Mapping[str, str],
    activity_labels: Mapping[str, str],
) -> ConversationPrompt:
    descriptions = []
    for p in participants:
        line = f"{p.name}({p.archetype},{p.role}): {p.quirks[0] if p.quirks else p.personality}"
        memory = memory_contexts.get(p.name) or ""
        if memory:
            line += f"\n  Recuerdos: {memory[:PROMPT_MEMORY_CHARS]}"
        descriptions.append(line)
    names = [p.name for p in participants]
    activities = ", ".join(f"{name}: {activity_labels.get(name, 'descansando')}" for name in names)

    system_prompt = (
        "Eres el narrador de NPCs en Sunnyside World. Genera una conversación SECUENCIAL entre NPCs.\n\n"
        "PARTICIPANTES:\n"
        + "\n".join(descriptions)
        + f"\n\nACTIVIDADES: {activities}\n\n"
        "FORMATO: Array JSON de turnos en ORDEN CRONOLÓGICO. Cada turno es un mensaje de un NPC.\n"
        '[{"npc":"Nombre","msg":"texto"},{"npc":"Nombre2","msg":"texto"},...]\n\n'
        "REGLAS CRÍTICAS:\n"
        "- Genera entre 2 y 4 turnos SECUENCIALES.\n"
        "- Un NPC puede hablar más de una vez si la conversación lo requiere.\n"
        f"- {initiator} SIEMPRE habla primero (turno 1).\n"
        "- Cada turno es una REACCIÓN al turno anterior. No pueden responder a algo que no se ha dicho aún.\n"
        f"- Max {CONVERSATION_MAX_CHARS} caracteres por mensaje. Corto y natural.\n"
        f"- Mantener personalidad: {style_reminders(participants)}\n"
        "- La conversación debe tener SENTIDO de principio a fin. Cada mensaje conecta con el anterior.\n"
        "- Sin emojis. Español. JSON puro sin markdown."
    )
    user_message = (
        "[Conversación NPC-NPC]\n"
        f"{topic_hint(initiator, topic_kind, topic_text)}\n"
        f"{initiator} inicia hablando con/cerca de {target}.\n"
        f"Participantes cercanos: {', '.join(names)}.\n"
        f"Genera 2-4 turnos secuenciales. Array JSON puro. {initiator} habla primero."
    )
    return ConversationPrompt(system_prompt=system_prompt, user_message=user_message)


def build_player_prompt(
    *,
    player_name: str,
    player_message: str,
    roster: Sequence[AgentPersonality],
    nearby: Iterable[str],
    memory_contexts: Mapping[str, str],
    activity_labels: Mapping[str, str],
    moods: Mapping[str, object] | None = None,
    addressing_hint: str = "",
    player_memory: Mapping[str, str] | None = None,
    recent_lines: Sequence[str] = (),
) -> ConversationPrompt:
    near = set(nearby)
    descriptions = []
    for p in roster:
        flag = " ✓CERCA" if p.name in near else " ✗LEJOS"
        quirk = p.quirks[0] if p.quirks else p.personality
        line = (
            f"{p.name}({p.archetype},{p.role}): {quirk}.{mood_summary((moods or {}).get(p.name))}"
            f" [{activity_labels.get(p.name, 'descansando')}]{flag}"
        )
        memory = memory_contexts.get(p.name) or ""
        if memory:
            line += f"\n  Recuerdos: {memory[:PLAYER_PROMPT_MEMORY_CHARS]}"
        descriptions.append(line)
    example = ",".join(
        f'"{p.name}":"texto"' if index == 0 else f'"{p.name}":null' for index, p in enumerate(roster)
    )

    system_prompt = (
        f"Eres el narrador de {len(roster)} NPCs en Sunnyside World. Responde SOLO JSON puro, sin texto extra.\n\n"
        + "\n".join(descriptions)
        + "\n\nFORMATO OBLIGATORIO (JSON puro, sin markdown):\n"
        "{" + example + "}\n\n"
        "REGLAS DE CHAT REALISTA:\n"
        "- Solo NPCs marcados ✓CERCA pueden responder. Los demás = null obligatorio.\n"
        "- Solo 1-2 NPCs responden normalmente. No todos hablan siempre.\n"
        "- Si el jugador HABLA CON un NPC específico, ESE NPC responde primero.\n"
        "- Los demás pueden reaccionar/añadir si es natural, pero no siempre.\n"
        f"- MÁXIMO {PLAYER_REPLY_MAX_CHARS} caracteres por frase. Ultra-corto como chat real.\n"
        "- Español. Sin emojis. En personaje SIEMPRE.\n"
        f"- {style_reminders(roster)}\n"
        "- No dicen que son IA. Revelan personalidad gradualmente.\n"
        "- Pueden preguntar al jugador sobre su vida.\n"
        "- USA los recuerdos de cada NPC cuando sea relevante.\n"
        "- Pueden reaccionar a lo que OTRO NPC dijo antes (conversación encadenada).\n"
        "- Pueden referirse a lo que están haciendo en ese momento."
    )

    memory_line = ""
    if player_memory:
        facts = ", ".join(f"{key}={value}" for key, value in player_memory.items())
        memory_line = f"\n[Recuerdas del jugador: {facts}]"
    current = f"{player_name}: {player_message}{addressing_hint}{memory_line}"
    if recent_lines:
        user_message = "[Reciente]:\n" + "\n".join(recent_lines) + f"\n\n{current}"
    else:
        user_message = current
    return ConversationPrompt(system_prompt=system_prompt, user_message=user_message)
