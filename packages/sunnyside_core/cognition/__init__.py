"""Agent cognition for Sunnyside: memory, personalities and social drives."""

from .memory import Importance, Memory, MemoryManager, MemoryStore
from .personalities import AgentPersonality, PersonalityCatalog, default_catalog
from .social import ConversationRequest, SeekIntent, SocialDrive, SocialEngine

__all__ = [
    "Importance",
    "Memory",
    "MemoryManager",
    "MemoryStore",
    "AgentPersonality",
    "PersonalityCatalog",
    "default_catalog",
    "ConversationRequest",
    "SeekIntent",
    "SocialDrive",
    "SocialEngine",
]
