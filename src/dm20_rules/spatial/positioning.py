"""
Grid positions, distance metrics and spell areas.

Squares are 5 ft. (0, 0) is the top-left square of the battle area; x grows
to the right, y grows downward and z is elevation in squares (standing on a
ledge and flying count alike).

Areas of effect are plain data (``AreaOfEffect``) tested square by square:
a square is inside when its centre is. Angles follow the screen: 0 degrees
points along +x, 90 along +y.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Protocol

from pydantic import BaseModel, Field

FEET_PER_SQUARE = 5

# Half-angle that makes a cone as wide as it is long at its far end
CONE_HALF_ANGLE = 53.0


class Position(BaseModel):
    """A point on the battle grid, in squares (fractions allowed)."""

    x: float = Field(description="Squares from the left edge")
    y: float = Field(description="Squares from the top edge")
    z: float = Field(default=0, description="Elevation in squares (0 = ground)")

    def cell(self) -> tuple[int, int]:
        """The grid square this position falls in."""
        return (int(math.floor(self.x)), int(math.floor(self.y)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Position):
            return NotImplemented
        return (self.x, self.y, self.z) == (other.x, other.y, other.z)

    def __hash__(self) -> int:
        return hash((self.x, self.y, self.z))

    def __str__(self) -> str:
        coords = [_fmt(self.x), _fmt(self.y)]
        if self.z:
            coords.append(_fmt(self.z))
        return f"({', '.join(coords)})"


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


# ---------------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------------

class DistanceMode(str, Enum):
    """Distance metrics.

    - ``grid_5e``: every diagonal step costs 5 ft (Chebyshev distance).
    - ``euclidean``: true 3D straight-line distance.
    - ``grid_alt``: diagonals alternate 5 ft / 10 ft.
    """

    GRID_5E = "grid_5e"
    EUCLIDEAN = "euclidean"
    GRID_ALT = "grid_alt"


@dataclass
class DistanceResult:
    feet: float
    mode: DistanceMode
    include_elevation: bool
    dx: float
    dy: float
    dz: float

    @property
    def squares(self) -> float:
        return self.feet / FEET_PER_SQUARE

    def describe(self) -> str:
        feet = _fmt(round(self.feet, 2))
        squares = _fmt(round(self.squares, 2))
        return f"{feet} ft ({squares} squares, {self.mode.value})"


def measure_distance(
    a: Position,
    b: Position,
    mode: DistanceMode = DistanceMode.GRID_5E,
    include_elevation: bool = False,
) -> DistanceResult:
    """Measure the distance in feet between two positions.

    ``euclidean`` is always three-dimensional. The grid modes ignore
    elevation unless ``include_elevation`` is set: ``grid_5e`` then takes
    the largest of the three deltas and ``grid_alt`` adds vertical squares
    at 5 ft each.

    Args:
        a: First position.
        b: Second position.
        mode: Distance metric.
        include_elevation: Whether the grid modes account for z.
    """
    dx = abs(a.x - b.x)
    dy = abs(a.y - b.y)
    dz = abs(a.z - b.z)

    if mode == DistanceMode.EUCLIDEAN:
        feet = math.sqrt(dx ** 2 + dy ** 2 + dz ** 2) * FEET_PER_SQUARE
    elif mode == DistanceMode.GRID_ALT:
        diagonal = min(dx, dy)
        straight = max(dx, dy) - diagonal
        # Every second diagonal costs double
        feet = (diagonal + math.floor(diagonal / 2) + straight) * FEET_PER_SQUARE
        if include_elevation:
            feet += dz * FEET_PER_SQUARE
    else:
        squares = max(dx, dy, dz) if include_elevation else max(dx, dy)
        feet = squares * FEET_PER_SQUARE

    return DistanceResult(
        feet=float(feet),
        mode=mode,
        include_elevation=include_elevation,
        dx=dx,
        dy=dy,
        dz=dz,
    )


# ---------------------------------------------------------------------------
# Areas of effect
# ---------------------------------------------------------------------------

class AoEShapeKind(str, Enum):
    SPHERE = "sphere"
    CUBE = "cube"
    CONE = "cone"
    LINE = "line"
    CYLINDER = "cylinder"


class AreaOfEffect(BaseModel):
    """A spell area anchored at ``origin``.

    ``size`` is the radius of a sphere or cylinder, the side of a cube and
    the length of a cone or line. Cubes are centred on the origin; cones
    and lines start there.
    """

    shape: AoEShapeKind
    origin: Position
    size: float = Field(gt=0, description="Feet")
    direction_degrees: float = 0.0
    width: float = Field(default=5.0, gt=0, description="Line width in feet")
    height: float = Field(default=20.0, gt=0, description="Cylinder height in feet")

    def contains(self, pos: Position) -> bool:
        return _SHAPE_TESTS[self.shape](self, pos)

    def describe(self) -> str:
        size = _fmt(self.size)
        heading = _fmt(self.direction_degrees)
        dims = {
            AoEShapeKind.SPHERE: f"{size} ft radius",
            AoEShapeKind.CUBE: f"{size} ft side",
            AoEShapeKind.CONE: f"{size} ft long, heading {heading} deg",
            AoEShapeKind.LINE: f"{size} x {_fmt(self.width)} ft, heading {heading} deg",
            AoEShapeKind.CYLINDER: f"{size} ft radius, {_fmt(self.height)} ft high",
        }[self.shape]
        return f"{self.shape.value} at {self.origin}: {dims}"


def _offset_feet(area: AreaOfEffect, pos: Position) -> tuple[float, float]:
    return (
        (pos.x - area.origin.x) * FEET_PER_SQUARE,
        (pos.y - area.origin.y) * FEET_PER_SQUARE,
    )


def _angle_between(a: float, b: float) -> float:
    diff = abs(a - b) % 360
    return min(diff, 360 - diff)


def _in_sphere(area: AreaOfEffect, pos: Position) -> bool:
    # Ground-plane reach, snapped to whole squares
    reach = math.hypot(*_offset_feet(area, pos))
    return round(reach / FEET_PER_SQUARE) * FEET_PER_SQUARE <= area.size


def _in_cube(area: AreaOfEffect, pos: Position) -> bool:
    dx, dy = _offset_feet(area, pos)
    return max(abs(dx), abs(dy)) <= area.size / 2


def _in_cone(area: AreaOfEffect, pos: Position) -> bool:
    if pos.cell() == area.origin.cell():
        return True
    dx, dy = _offset_feet(area, pos)
    if math.hypot(dx, dy) > area.size:
        return False
    bearing = math.degrees(math.atan2(dy, dx))
    return _angle_between(bearing, area.direction_degrees) <= CONE_HALF_ANGLE


def _in_line(area: AreaOfEffect, pos: Position) -> bool:
    dx, dy = _offset_feet(area, pos)
    heading = math.radians(area.direction_degrees)
    along = dx * math.cos(heading) + dy * math.sin(heading)
    across = dy * math.cos(heading) - dx * math.sin(heading)
    # The far end is exclusive: a 100 ft line covers exactly 20 squares
    return 0 <= along < area.size and abs(across) <= area.width / 2


def _in_cylinder(area: AreaOfEffect, pos: Position) -> bool:
    rise = (pos.z - area.origin.z) * FEET_PER_SQUARE
    return 0 <= rise <= area.height and _in_sphere(area, pos)


_SHAPE_TESTS: dict[AoEShapeKind, Callable[[AreaOfEffect, Position], bool]] = {
    AoEShapeKind.SPHERE: _in_sphere,
    AoEShapeKind.CUBE: _in_cube,
    AoEShapeKind.CONE: _in_cone,
    AoEShapeKind.LINE: _in_line,
    AoEShapeKind.CYLINDER: _in_cylinder,
}


class Positioned(Protocol):
    id: str
    position: Position


def cells_in_area(area: AreaOfEffect, width: int, height: int) -> list[tuple[int, int]]:
    """Every square of a ``width`` x ``height`` grid inside the area, row by row."""
    return [
        (x, y)
        for y in range(height)
        for x in range(width)
        if area.contains(Position(x=x, y=y, z=area.origin.z))
    ]


def targets_in_area(area: AreaOfEffect, participants: Iterable[Positioned]) -> list[str]:
    """Ids of the participants standing inside the area, in input order."""
    return [p.id for p in participants if area.contains(p.position)]
