"""
Battlefield props: barrels, doors, statues, traps...

Props live on their encounter. Those that block movement stop
``move_participant`` and pathfinding from entering their square, and props
with a cover level are fed to line-of-sight and cover checks the same way
terrain walls are. Hidden props (undiscovered traps) still block, but are
left off the battlefield map.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field
from shortuuid import random as random_id

from ..errors import NotFoundError, ValidationError
from ..models import Size
from ..spatial.positioning import Position
from ..spatial.sight import CoverLevel

if TYPE_CHECKING:
    from .encounter import Terrain

logger = logging.getLogger("dm20-rules")


class PropType(str, Enum):
    BARREL = "barrel"
    CRATE = "crate"
    CHEST = "chest"
    DOOR = "door"
    LEVER = "lever"
    PILLAR = "pillar"
    STATUE = "statue"
    TABLE = "table"
    CHAIR = "chair"
    ALTAR = "altar"
    TRAP = "trap"
    OBSTACLE = "obstacle"
    CUSTOM = "custom"


class Prop(BaseModel):
    """An object placed on the battle grid."""

    id: str = Field(default_factory=lambda: f"prop-{random_id(length=8)}")
    name: str = Field(min_length=1)
    type: PropType
    position: Position
    state: str | None = Field(default=None, description="'open', 'closed', 'lit'...")
    locked: bool = False
    lock_dc: int | None = Field(default=None, ge=1, le=30)
    cover: CoverLevel = CoverLevel.NONE
    blocks_movement: bool = False
    destructible: bool = False
    hp: int | None = Field(default=None, ge=0)
    max_hp: int | None = Field(default=None, ge=1)
    ac: int | None = Field(default=None, ge=1, le=30)
    size: Size | None = None
    description: str | None = None
    hidden: bool = False
    trap_dc: int | None = Field(default=None, ge=1, le=30)
    trap_damage: str | None = None
    trigger: str | None = None

    def describe(self) -> str:
        text = f"{self.name} ({self.type.value}, {self.id}) at {self.position}"
        details = []
        if self.state:
            details.append(self.state)
        if self.locked:
            details.append(f"locked DC {self.lock_dc}" if self.lock_dc else "locked")
        if self.cover != CoverLevel.NONE:
            details.append(f"{self.cover.value.replace('_', '-')} cover")
        if self.blocks_movement:
            details.append("blocks movement")
        if self.destructible and self.hp is not None:
            details.append(f"HP {self.hp}/{self.max_hp or self.hp}" + (f", AC {self.ac}" if self.ac else ""))
        if self.hidden:
            details.append("hidden")
        if self.trap_dc or self.trap_damage:
            trap = "trap"
            if self.trap_damage:
                trap += f" {self.trap_damage}"
            if self.trap_dc:
                trap += f" DC {self.trap_dc}"
            if self.trigger:
                trap += f" ({self.trigger})"
            details.append(trap)
        if details:
            text += f": {', '.join(details)}"
        return text


# Fields an update may change. Position changes go through ``move``.
UPDATABLE_FIELDS = (
    "state", "locked", "lock_dc", "cover", "blocks_movement", "hp", "hidden",
)


def _check_bounds(terrain: "Terrain", position: Position) -> None:
    x, y = position.cell()
    if not terrain.in_bounds(x, y):
        raise ValidationError(
            f"Position {position} is out of bounds (grid is {terrain.width}x{terrain.height})",
            field="position",
        )


class PropEngine:
    """Stateless place/move/update/remove over an encounter's ``list[Prop]``."""

    @staticmethod
    def get(props: list[Prop], prop_id: str) -> Prop:
        for prop in props:
            if prop.id == prop_id:
                return prop
        raise NotFoundError(f"Prop '{prop_id}' not found", identifier=prop_id)

    @staticmethod
    def place(props: list[Prop], terrain: "Terrain", prop: Prop) -> Prop:
        """Add a prop. Destructible props start at full HP.

        Raises:
            ValidationError: Off the grid, or a duplicate id.
        """
        _check_bounds(terrain, prop.position)
        if any(p.id == prop.id for p in props):
            raise ValidationError(f"Duplicate prop id '{prop.id}'", field="prop_id")
        if prop.destructible and prop.hp is not None and prop.max_hp is None:
            prop.max_hp = max(prop.hp, 1)
        props.append(prop)
        logger.debug(f"🪵 Placed {prop.name} at {prop.position}")
        return prop

    @staticmethod
    def move(props: list[Prop], terrain: "Terrain", prop_id: str, position: Position) -> tuple[Prop, Position]:
        """Returns the prop and where it came from."""
        prop = PropEngine.get(props, prop_id)
        _check_bounds(terrain, position)
        old = prop.position
        prop.position = position
        return prop, old

    @staticmethod
    def update(props: list[Prop], prop_id: str, changes: dict) -> Prop:
        prop = PropEngine.get(props, prop_id)
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update {', '.join(sorted(unknown))}", field="changes")
        if "hp" in changes and prop.max_hp is not None and changes["hp"] > prop.max_hp:
            changes = {**changes, "hp": prop.max_hp}
        for name, value in changes.items():
            setattr(prop, name, value)
        return prop

    @staticmethod
    def remove(props: list[Prop], prop_id: str) -> Prop:
        prop = PropEngine.get(props, prop_id)
        props.remove(prop)
        return prop

    @staticmethod
    def blocking_at(props: list[Prop], x: int, y: int) -> Prop | None:
        for prop in props:
            if prop.blocks_movement and prop.position.cell() == (x, y):
                return prop
        return None
