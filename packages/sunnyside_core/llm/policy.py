"""Generation task policies for village dialogue."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


PLAYER_CHAT = "player_chat"
NPC_CONVERSATION = "npc_conversation"
DIAGNOSTIC = "diagnostic"


@dataclass(frozen=True)
class GenerationPolicy:
    task_name: str
    max_output_tokens: int
    temperature: float
    top_p: float
    timeout_ms: int
    json_mode: bool = True

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_GENERATION_POLICIES: dict[str, GenerationPolicy] = {
    PLAYER_CHAT: GenerationPolicy(
        task_name=PLAYER_CHAT,
        max_output_tokens=400,
        temperature=0.8,
        top_p=0.9,
        timeout_ms=15000,
    ),
    # Arrays are not valid top-level values in provider JSON modes.
    NPC_CONVERSATION: GenerationPolicy(
        task_name=NPC_CONVERSATION,
        max_output_tokens=400,
        temperature=0.8,
        top_p=0.9,
        timeout_ms=15000,
        json_mode=False,
    ),
    DIAGNOSTIC: GenerationPolicy(
        task_name=DIAGNOSTIC,
        max_output_tokens=400,
        temperature=0.8,
        top_p=0.9,
        timeout_ms=15000,
    ),
}


def default_policy_for_task(task_name: str) -> GenerationPolicy:
    policy = DEFAULT_GENERATION_POLICIES.get(task_name)
    if policy is not None:
        return policy
    return GenerationPolicy(
        task_name=task_name,
        max_output_tokens=300,
        temperature=0.7,
        top_p=0.9,
        timeout_ms=12000,
    )


def estimate_token_count(text: str) -> int:
    return max(1, len(text) // 4)
