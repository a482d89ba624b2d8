"""Which agents can hear a player: anyone whose speech bubble would be on screen."""

from __future__ import annotations

from dataclasses import dataclass
from math import hypot
from typing import Callable, Mapping


DEFAULT_VIEWPORT_WIDTH = 1280
DEFAULT_VIEWPORT_HEIGHT = 720
HEARING_MARGIN = 80
NOBODY_NEAR_NOTICE = "No hay nadie cerca para oírte. Acércate a un NPC."
STAND_IN_LINE = "..."


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class AgentDistance:
    name: str
    dx: int
    dy: int
    distance: int
    can_hear: bool
    position: Point

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "dist": self.distance,
            "dx": self.dx,
            "dy": self.dy,
            "can_hear": self.can_hear,
            "npc_pos": {"x": round(self.position.x), "y": round(self.position.y)},
        }


@dataclass(frozen=True)
class ProximityReport:
    listening: tuple[str, ...]
    agents: tuple[AgentDistance, ...]
    player: Point
    viewport_width: int
    viewport_height: int
    half_width: float
    half_height: float

    def nearest_listener(self) -> str | None:
        candidates = [a for a in self.agents if a.can_hear]
        if not candidates:
            return None
        return min(candidates, key=lambda a: a.distance).name

    def as_dict(self) -> dict[str, object]:
        return {
            "listening": list(self.listening),
            "all": [agent.as_dict() for agent in self.agents],
            "player_pos": {"x": round(self.player.x), "y": round(self.player.y)},
            "viewport": {"w": self.viewport_width, "h": self.viewport_height},
            "half_w": round(self.half_width),
            "half_h": round(self.half_height),
        }


def hearing_range(viewport_width: int | None, viewport_height: int | None) -> tuple[float, float]:
    width = viewport_width or DEFAULT_VIEWPORT_WIDTH
    height = viewport_height or DEFAULT_VIEWPORT_HEIGHT
    return width / 2 + HEARING_MARGIN, height / 2 + HEARING_MARGIN


def visible_agents(
    player: Point,
    agents: Mapping[str, Point],
    *,
    viewport_width: int | None = None,
    viewport_height: int | None = None,
) -> ProximityReport:
    half_w, half_h = hearing_range(viewport_width, viewport_height)
    rows = []
    for name, position in agents.items():
        dx = abs(position.x - player.x)
        dy = abs(position.y - player.y)
        rows.append(
            AgentDistance(
                name=name,
                dx=round(dx),
                dy=round(dy),
                distance=round(hypot(dx, dy)),
                can_hear=dx <= half_w and dy <= half_h,
                position=position,
            )
        )
    return ProximityReport(
        listening=tuple(row.name for row in rows if row.can_hear),
        agents=tuple(rows),
        player=player,
        viewport_width=viewport_width or DEFAULT_VIEWPORT_WIDTH,
        viewport_height=viewport_height or DEFAULT_VIEWPORT_HEIGHT,
        half_width=half_w,
        half_height=half_h,
    )


@dataclass(frozen=True)
class FilteredResponses:
    responses: dict[str, str]
    notice: str | None = None


def filter_by_proximity(
    responses: Mapping[str, str],
    report: ProximityReport,
    *,
    stand_in_line: Callable[[str], str] | None = None,
) -> FilteredResponses:
    """Keep only lines from agents in hearing range.

    When nobody in range produced a line, the nearest listener stands in. When
    nobody is in range at all, the caller gets a notice for the player instead.
    ``stand_in_line`` supplies the stand-in's words when it had none of its own.
    """
    listening = set(report.listening)
    kept = {name: text for name, text in responses.items() if name in listening}
    if kept or not responses:
        return FilteredResponses(responses=kept)
    stand_in = report.nearest_listener()
    if stand_in is not None:
        line = responses.get(stand_in) or (stand_in_line(stand_in) if stand_in_line else STAND_IN_LINE)
        return FilteredResponses(responses={stand_in: line})
    return FilteredResponses(responses={}, notice=NOBODY_NEAR_NOTICE)
