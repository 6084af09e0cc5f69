"""
Text battlefield renderer.

Projects an encounter's terrain and participants onto a monospaced grid:

- ``·`` floor, ``█`` wall, ``▒`` difficult terrain, ``≈`` water, ``⚠`` hazard
- ``■`` a visible prop (hidden props are left off)
- allies use uppercase initials, enemies lowercase (numbered when several
  enemies share an initial)
- ``+`` marks a square holding more than one living participant
- ``†`` marks a square holding only the dead

The legend lists every participant with its position, HP and conditions.
``▶`` marks whose turn it is, ``†`` the dead and ``○`` the unconscious.
"""

from __future__ import annotations

from collections import Counter
from enum import Enum
from typing import Mapping

from pydantic import BaseModel, Field

from ..errors import ValidationError
from .conditions import ActiveCondition
from .encounter import Encounter, Participant

FLOOR = "·"
WALL = "█"
DIFFICULT = "▒"
WATER = "≈"
HAZARD = "⚠"
PROP = "■"
STACKED = "+"
DEAD = "†"
UNCONSCIOUS = "○"
CURRENT = "▶"

DEFAULT_FOCUS_SIZE = 11


class LegendDetail(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    DETAILED = "detailed"


class Viewport(BaseModel):
    """A rectangular window onto the grid (top-left corner plus size)."""

    x: int = Field(default=0, ge=0)
    y: int = Field(default=0, ge=0)
    width: int = Field(ge=1, le=100)
    height: int = Field(ge=1, le=100)


# ---------------------------------------------------------------------------
# Symbols
# ---------------------------------------------------------------------------

def assign_symbols(participants: list[Participant]) -> dict[str, str]:
    """Give every participant a single-character map symbol.

    Allies take the first free uppercase letter of their name, enemies the
    first free lowercase one. Enemies sharing an initial are numbered
    1-9 instead. Symbols never repeat within an encounter.
    """
    symbols: dict[str, str] = {}
    used: set[str] = set()
    enemy_initials = Counter(p.name[:1].lower() for p in participants if p.is_enemy)
    numbered = 0

    for p in participants:
        letters = [c for c in p.name if c.isalpha()]
        if p.is_enemy:
            candidates: list[str] = []
            if enemy_initials[p.name[:1].lower()] > 1:
                candidates.extend(str(n) for n in range(numbered + 1, 10))
            candidates.extend(c.lower() for c in letters)
            candidates.extend("abcdefghijklmnopqrstuvwxyz")
        else:
            candidates = [c.upper() for c in letters]
            candidates.extend("ABCDEFGHIJKLMNOPQRSTUVWXYZ")

        symbol = next((c for c in candidates if c not in used), "?")
        if symbol.isdigit():
            numbered = int(symbol)
        used.add(symbol)
        symbols[p.id] = symbol
    return symbols


# ---------------------------------------------------------------------------
# Window
# ---------------------------------------------------------------------------

def _window(
    encounter: Encounter,
    viewport: Viewport | None,
    focus_on: str | None,
) -> tuple[int, int, int, int]:
    terrain = encounter.terrain
    if viewport is None and focus_on is None:
        return 0, 0, terrain.width, terrain.height

    width = min(viewport.width if viewport else DEFAULT_FOCUS_SIZE, terrain.width)
    height = min(viewport.height if viewport else DEFAULT_FOCUS_SIZE, terrain.height)
    if focus_on is not None:
        cx, cy = encounter.participant(focus_on).position.cell()
        x0 = cx - width // 2
        y0 = cy - height // 2
    else:
        x0, y0 = viewport.x, viewport.y
        if x0 >= terrain.width or y0 >= terrain.height:
            raise ValidationError(
                f"Viewport origin ({x0}, {y0}) is outside the "
                f"{terrain.width}x{terrain.height} grid",
                field="viewport",
            )
    x0 = max(0, min(x0, terrain.width - width))
    y0 = max(0, min(y0, terrain.height - height))
    return x0, y0, width, height


# ---------------------------------------------------------------------------
# Legend
# ---------------------------------------------------------------------------

def _status_marker(p: Participant, current_id: str) -> str:
    if p.id == current_id:
        return CURRENT
    if p.is_dead:
        return DEAD
    if p.hp == 0:
        return UNCONSCIOUS
    return " "


def _legend_line(
    p: Participant,
    symbol: str,
    current_id: str,
    conditions: list[ActiveCondition],
    detail: LegendDetail,
    show_elevation: bool,
) -> str:
    head = f"{_status_marker(p, current_id)} {symbol} {p.name}"
    if detail == LegendDetail.MINIMAL:
        return f"{head} HP {p.hp}/{p.max_hp}"

    side = "enemy" if p.is_enemy else "ally"
    parts = [f"{head} ({side}) at {p.position.cell()[0]},{p.position.cell()[1]}", f"HP {p.hp}/{p.max_hp}"]
    if p.is_dead:
        parts.append("Dead")
    elif p.is_stable:
        parts.append("Stable")
    elif p.bloodied:
        parts.append("Bloodied")
    if conditions:
        parts.append(", ".join(c.describe() for c in conditions))
    if show_elevation and p.position.z:
        parts.append(f"elevation {p.position.z * 5:g} ft")
    if detail == LegendDetail.DETAILED:
        parts.append(f"AC {p.ac}")
        parts.append(f"speed {p.speed} ft")
        parts.append(f"init {p.initiative}")
        if p.death_saves is not None and not p.is_dead:
            parts.append(f"death saves {p.death_saves.describe()}")
    return " | ".join(parts)


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------

def render_battlefield(
    encounter: Encounter,
    conditions: Mapping[str, list[ActiveCondition]] | None = None,
    viewport: Viewport | None = None,
    focus_on: str | None = None,
    show_legend: bool = True,
    show_coordinates: bool = True,
    show_elevation: bool = True,
    legend_detail: LegendDetail = LegendDetail.STANDARD,
) -> str:
    """Render an encounter to a monospaced text map.

    Args:
        encounter: The encounter to draw.
        conditions: Active conditions keyed by participant id.
        viewport: Crop to this window.
        focus_on: Centre the window on this participant (id or name).
        show_legend: Append the participant and terrain legend.
        show_coordinates: Draw x/y axis labels.
        show_elevation: Report elevation of airborne participants.
        legend_detail: How much to say about each participant.

    Returns:
        The rendered map as a single string.
    """
    conditions = conditions or {}
    terrain = encounter.terrain
    x0, y0, width, height = _window(encounter, viewport, focus_on)
    symbols = assign_symbols(encounter.participants)
    current_id = encounter.current.id

    occupants: dict[tuple[int, int], list[Participant]] = {}
    for p in encounter.participants:
        occupants.setdefault(p.position.cell(), []).append(p)
    props = {prop.position.cell(): prop for prop in encounter.props if not prop.hidden}

    col_width = max(2, len(str(x0 + width - 1)) + 1)
    row_width = len(str(y0 + height - 1))
    used_glyphs: set[str] = set()

    lines = [f"Encounter {encounter.id} | Round {encounter.round} | {encounter.current.name}'s turn", ""]
    if show_coordinates:
        header = " " * (row_width + 1) + "".join(str(x).rjust(col_width) for x in range(x0, x0 + width))
        lines.append(header)

    for y in range(y0, y0 + height):
        row = []
        for x in range(x0, x0 + width):
            here = occupants.get((x, y), [])
            living = [p for p in here if not p.is_dead]
            if len(living) > 1:
                glyph = STACKED
            elif living:
                glyph = symbols[living[0].id]
            elif here:
                glyph = DEAD
            elif terrain.is_wall(x, y):
                glyph = WALL
            elif (x, y) in props:
                glyph = PROP
            elif terrain.hazard_at(x, y) is not None:
                glyph = HAZARD
            elif (x, y) in terrain.water:
                glyph = WATER
            elif (x, y) in terrain.difficult_terrain:
                glyph = DIFFICULT
            else:
                glyph = FLOOR
            used_glyphs.add(glyph)
            row.append(glyph.rjust(col_width))
        prefix = str(y).rjust(row_width) + " " if show_coordinates else ""
        lines.append(prefix + "".join(row))

    if not show_legend:
        return "\n".join(lines)

    lines.append("")
    lines.append("Legend:")
    for p in encounter.participants:
        lines.append(
            _legend_line(
                p,
                symbols[p.id],
                current_id,
                conditions.get(p.id, []),
                legend_detail,
                show_elevation,
            )
        )

    terrain_key = [
        (WALL, "wall"),
        (DIFFICULT, "difficult terrain"),
        (WATER, "water"),
        (HAZARD, "hazard"),
        (PROP, "prop"),
        (STACKED, "several creatures"),
        (DEAD, "dead"),
    ]
    present = [f"{glyph} {label}" for glyph, label in terrain_key if glyph in used_glyphs]
    if present:
        lines.append("")
        lines.append("Key: " + "  ".join(present))
    if HAZARD in used_glyphs and legend_detail != LegendDetail.MINIMAL:
        for hazard in terrain.hazards:
            hx, hy = hazard.position
            if x0 <= hx < x0 + width and y0 <= hy < y0 + height:
                damage = f" {hazard.damage}" if hazard.damage else ""
                dc = f" DC {hazard.dc}" if hazard.dc else ""
                lines.append(f"  {HAZARD} {hx},{hy}: {hazard.type}{damage}{dc}")
    if PROP in used_glyphs and legend_detail != LegendDetail.MINIMAL:
        for (px, py), prop in props.items():
            if x0 <= px < x0 + width and y0 <= py < y0 + height:
                lines.append(f"  {PROP} {px},{py}: {prop.name} ({prop.type.value})")
    if show_elevation and any(p.position.z for p in encounter.participants):
        lines.append("Elevation: 1 square = 5 ft above ground")

    return "\n".join(lines)
