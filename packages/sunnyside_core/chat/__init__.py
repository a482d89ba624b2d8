"""Player chat helpers: addressing, hearing range, player facts and playback."""

from .addressing import Addressing, detect_addressing
from .history import ChatHistory
from .player_memory import extract_player_memory, new_facts
from .proximity import Point, ProximityReport, filter_by_proximity, visible_agents
from .schedule import DialoguePlayer, ScheduledLine, build_schedule

__all__ = [
    "Addressing",
    "detect_addressing",
    "ChatHistory",
    "extract_player_memory",
    "new_facts",
    "Point",
    "ProximityReport",
    "filter_by_proximity",
    "visible_agents",
    "DialoguePlayer",
    "ScheduledLine",
    "build_schedule",
]
