"""
Line of sight and cover.

A segment is traced from observer to target in 3D grid space. An obstacle
or creature lies on the line when its projection falls within the segment
and it is no more than one square from the line. An obstacle with a height
only blocks if the line passes at or below its top at that point.

Cover from what lies on the line, highest wins:

    half_cover, small/medium creature        half            +2 AC, +2 DEX
    three_quarters_cover, large/huge         three-quarters  +5 AC, +5 DEX
    wall, pillar, total_cover, gargantuan    total           can't be targeted
    tiny creature, terrain types             none

Line of sight is blocked exactly when the cover is total.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

from ..models import Lighting, Size
from .positioning import FEET_PER_SQUARE, Position

LINE_TOLERANCE = 1.0


class ObstacleKind(str, Enum):
    WALL = "wall"
    PILLAR = "pillar"
    HALF_COVER = "half_cover"
    THREE_QUARTERS_COVER = "three_quarters_cover"
    TOTAL_COVER = "total_cover"
    DIFFICULT_TERRAIN = "difficult_terrain"
    WATER = "water"
    HAZARD = "hazard"


class CoverLevel(str, Enum):
    NONE = "none"
    HALF = "half"
    THREE_QUARTERS = "three_quarters"
    TOTAL = "total"


COVER_RANK: dict[CoverLevel, int] = {
    CoverLevel.NONE: 0,
    CoverLevel.HALF: 1,
    CoverLevel.THREE_QUARTERS: 2,
    CoverLevel.TOTAL: 3,
}

# (AC bonus, DEX save bonus); total cover means the target can't be targeted
COVER_BONUSES: dict[CoverLevel, tuple[int, int]] = {
    CoverLevel.NONE: (0, 0),
    CoverLevel.HALF: (2, 2),
    CoverLevel.THREE_QUARTERS: (5, 5),
    CoverLevel.TOTAL: (0, 0),
}

OBSTACLE_COVER: dict[ObstacleKind, CoverLevel] = {
    ObstacleKind.WALL: CoverLevel.TOTAL,
    ObstacleKind.PILLAR: CoverLevel.TOTAL,
    ObstacleKind.TOTAL_COVER: CoverLevel.TOTAL,
    ObstacleKind.HALF_COVER: CoverLevel.HALF,
    ObstacleKind.THREE_QUARTERS_COVER: CoverLevel.THREE_QUARTERS,
    ObstacleKind.DIFFICULT_TERRAIN: CoverLevel.NONE,
    ObstacleKind.WATER: CoverLevel.NONE,
    ObstacleKind.HAZARD: CoverLevel.NONE,
}

CREATURE_COVER: dict[Size, CoverLevel] = {
    Size.TINY: CoverLevel.NONE,
    Size.SMALL: CoverLevel.HALF,
    Size.MEDIUM: CoverLevel.HALF,
    Size.LARGE: CoverLevel.THREE_QUARTERS,
    Size.HUGE: CoverLevel.THREE_QUARTERS,
    Size.GARGANTUAN: CoverLevel.TOTAL,
}


class Obstacle(BaseModel):
    """A point obstacle on the grid."""

    x: float
    y: float
    z: float = 0
    kind: ObstacleKind = ObstacleKind.WALL
    height: float | None = Field(default=None, ge=0, description="Height in feet; None = unbounded")

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y, z=self.z)


class CreatureBlocker(BaseModel):
    """A creature that may stand between observer and target."""

    x: float
    y: float
    z: float = 0
    size: Size = Size.MEDIUM
    name: str | None = None

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y, z=self.z)


class SenseKind(str, Enum):
    BLINDSIGHT = "blindsight"
    DARKVISION = "darkvision"
    TREMORSENSE = "tremorsense"
    TRUESIGHT = "truesight"


class Sense(BaseModel):
    kind: SenseKind
    range: int = Field(ge=0, description="Range in feet")


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def line_parameter(start: Position, end: Position, point: Position) -> tuple[float, float]:
    """Project ``point`` onto the segment ``start -> end``.

    Returns:
        ``(t, d)``: the unclamped projection parameter (0 at start, 1 at end)
        and the distance in squares from the point to the infinite line.
    """
    dx, dy, dz = end.x - start.x, end.y - start.y, end.z - start.z
    px, py, pz = point.x - start.x, point.y - start.y, point.z - start.z
    length_sq = dx * dx + dy * dy + dz * dz
    if length_sq == 0:
        return 0.0, math.sqrt(px * px + py * py + pz * pz)
    t = (px * dx + py * dy + pz * dz) / length_sq
    cx, cy, cz = px - t * dx, py - t * dy, pz - t * dz
    return t, math.sqrt(cx * cx + cy * cy + cz * cz)


def is_on_line(start: Position, end: Position, point: Position, tolerance: float = LINE_TOLERANCE) -> bool:
    """Whether ``point`` lies within ``tolerance`` squares of the segment."""
    t, d = line_parameter(start, end, point)
    return 0.0 <= t <= 1.0 and d <= tolerance


def _obstacle_intersects(start: Position, end: Position, obstacle: Obstacle) -> bool:
    if not is_on_line(start, end, obstacle.position):
        return False
    if obstacle.height is None:
        return True
    t, _ = line_parameter(start, end, obstacle.position)
    line_z = start.z + t * (end.z - start.z)
    top = obstacle.z + obstacle.height / FEET_PER_SQUARE
    return line_z <= top


# ---------------------------------------------------------------------------
# Cover trace
# ---------------------------------------------------------------------------

@dataclass
class CoverSource:
    """One thing on the line that grants cover."""

    label: str
    position: Position
    cover: CoverLevel


@dataclass
class CoverResult:
    cover: CoverLevel
    distance_feet: float
    sources: list[CoverSource] = field(default_factory=list)

    @property
    def ac_bonus(self) -> int:
        return COVER_BONUSES[self.cover][0]

    @property
    def dex_save_bonus(self) -> int:
        return COVER_BONUSES[self.cover][1]

    @property
    def can_target(self) -> bool:
        return self.cover != CoverLevel.TOTAL

    @property
    def deciding_source(self) -> CoverSource | None:
        for source in self.sources:
            if source.cover == self.cover:
                return source
        return None

    def describe(self) -> str:
        if self.cover == CoverLevel.TOTAL:
            text = "Total cover: target cannot be targeted directly"
        elif self.cover == CoverLevel.NONE:
            text = "No cover"
        else:
            name = "Half" if self.cover == CoverLevel.HALF else "Three-quarters"
            text = f"{name} cover: +{self.ac_bonus} AC, +{self.dex_save_bonus} DEX saves"
        source = self.deciding_source
        if source is not None:
            text += f" (from {source.label} at {source.position})"
        return text

    def to_dict(self) -> dict:
        return {
            "cover": self.cover.value,
            "ac_bonus": self.ac_bonus,
            "dex_save_bonus": self.dex_save_bonus,
            "can_target": self.can_target,
            "distance_feet": self.distance_feet,
            "sources": [
                {"label": s.label, "position": s.position.model_dump(), "cover": s.cover.value}
                for s in self.sources
            ],
        }


def check_cover(
    attacker: Position,
    target: Position,
    obstacles: list[Obstacle] | None = None,
    creatures: list[CreatureBlocker] | None = None,
    creatures_provide_cover: bool = True,
) -> CoverResult:
    """Determine the cover a target has against an attacker.

    Obstacles in the attacker's own square are ignored, as are creatures at
    either end of the line.
    """
    dist = math.sqrt(
        (target.x - attacker.x) ** 2 + (target.y - attacker.y) ** 2 + (target.z - attacker.z) ** 2
    ) * FEET_PER_SQUARE
    result = CoverResult(cover=CoverLevel.NONE, distance_feet=dist)
    if dist == 0:
        return result

    for obstacle in obstacles or []:
        if (obstacle.x, obstacle.y) == (attacker.x, attacker.y):
            continue
        if _obstacle_intersects(attacker, target, obstacle):
            cover = OBSTACLE_COVER[obstacle.kind]
            if cover != CoverLevel.NONE:
                result.sources.append(CoverSource(obstacle.kind.value, obstacle.position, cover))

    if creatures_provide_cover:
        for creature in creatures or []:
            pos = creature.position
            if (pos.x, pos.y) in ((attacker.x, attacker.y), (target.x, target.y)):
                continue
            if is_on_line(attacker, target, pos):
                cover = CREATURE_COVER[creature.size]
                if cover != CoverLevel.NONE:
                    label = f"{creature.name or creature.size.value} creature"
                    result.sources.append(CoverSource(label, pos, cover))

    for source in result.sources:
        if COVER_RANK[source.cover] > COVER_RANK[result.cover]:
            result.cover = source.cover
    return result


# ---------------------------------------------------------------------------
# Line of sight
# ---------------------------------------------------------------------------

@dataclass
class LineOfSightResult:
    clear: bool
    cover: CoverResult
    visible: bool
    notes: list[str] = field(default_factory=list)

    @property
    def distance_feet(self) -> float:
        return self.cover.distance_feet

    def describe(self) -> str:
        if self.cover.distance_feet == 0:
            status = "CLEAR (same position)"
        elif self.clear:
            status = "CLEAR"
        else:
            status = "BLOCKED"
        lines = [f"Line of sight: {status}", f"Distance: {round(self.distance_feet)} ft"]
        if self.clear and self.cover.cover != CoverLevel.NONE:
            lines.append(self.cover.describe())
        elif not self.clear:
            source = self.cover.deciding_source
            if source is not None:
                lines.append(f"Blocked by {source.label} at {source.position}")
        if not self.visible:
            lines.append("Target cannot be seen")
        lines.extend(self.notes)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "clear": self.clear,
            "visible": self.visible,
            "distance_feet": self.distance_feet,
            "cover": self.cover.to_dict(),
            "notes": list(self.notes),
        }


def _sense_range(senses: list[Sense], kind: SenseKind) -> int | None:
    ranges = [s.range for s in senses if s.kind == kind]
    return max(ranges) if ranges else None


def check_line_of_sight(
    observer: Position,
    target: Position,
    obstacles: list[Obstacle] | None = None,
    creatures: list[CreatureBlocker] | None = None,
    creatures_block: bool = False,
    lighting: Lighting = Lighting.BRIGHT,
    senses: list[Sense] | None = None,
) -> LineOfSightResult:
    """Trace line of sight from observer to target.

    Creatures only count when ``creatures_block`` is set. Lighting and senses
    do not change the trace; they decide whether the target can actually be
    seen and add notes.
    """
    cover = check_cover(
        observer,
        target,
        obstacles=obstacles,
        creatures=creatures,
        creatures_provide_cover=creatures_block,
    )
    clear = cover.cover != CoverLevel.TOTAL
    senses = senses or []
    dist = cover.distance_feet
    notes: list[str] = []
    visible = clear

    blindsight = _sense_range(senses, SenseKind.BLINDSIGHT)
    truesight = _sense_range(senses, SenseKind.TRUESIGHT)
    darkvision = _sense_range(senses, SenseKind.DARKVISION)
    tremorsense = _sense_range(senses, SenseKind.TREMORSENSE)

    if lighting == Lighting.DARKNESS:
        if darkvision is not None and dist <= darkvision:
            notes.append(f"Darkness: within darkvision ({darkvision} ft), treated as dim light")
        else:
            notes.append("Darkness: target is heavily obscured")
            visible = False
    elif lighting == Lighting.MAGICAL_DARKNESS:
        notes.append("Magical darkness: darkvision does not help")
        visible = False
    elif lighting == Lighting.DIM:
        notes.append("Dim light: lightly obscured (disadvantage on sight-based Perception)")

    if truesight is not None and dist <= truesight and clear and not visible:
        notes.append(f"Truesight ({truesight} ft): sees through darkness")
        visible = True

    if blindsight is not None and dist <= blindsight:
        notes.append(f"Blindsight ({blindsight} ft): target perceived without sight")
        visible = True

    if tremorsense is not None:
        if target.z > 0:
            notes.append("Tremorsense: target is airborne and cannot be sensed")
        elif dist <= tremorsense:
            notes.append(f"Tremorsense ({tremorsense} ft): target's position is known")

    return LineOfSightResult(clear=clear, cover=cover, visible=visible, notes=notes)
