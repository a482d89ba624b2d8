"""Dialogue generation helpers: providers, output repair and the request pipeline."""

from .fallback import CONTEXTUAL_FALLBACKS, contextual_fallback, fallback_line
from .pipeline import GenerationPipeline, GenerationState
from .policy import DEFAULT_GENERATION_POLICIES, GenerationPolicy, default_policy_for_task
from .providers import (
    GeminiProvider,
    OpenAICompatibleProvider,
    ProviderError,
    RateLimitedError,
    TextProvider,
    providers_from_env,
)
from .repair import parse_response_map, parse_turn_sequence
from .responses import AgentResponseMap, DialogueTurn, TurnSequence

__all__ = [
    "CONTEXTUAL_FALLBACKS",
    "contextual_fallback",
    "fallback_line",
    "GenerationPipeline",
    "GenerationState",
    "DEFAULT_GENERATION_POLICIES",
    "GenerationPolicy",
    "default_policy_for_task",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "ProviderError",
    "RateLimitedError",
    "TextProvider",
    "providers_from_env",
    "parse_response_map",
    "parse_turn_sequence",
    "AgentResponseMap",
    "DialogueTurn",
    "TurnSequence",
]
