"""
Condition engine for D&D 5e combat.

This module provides:
- CONDITION_EFFECTS: the mechanical template of every tracked condition.
- EXHAUSTION_EFFECTS: the cumulative exhaustion table (levels 1-6).
- ConditionEngine: stateless add/remove/query/tick operations over a list of
  ActiveCondition, and the effective-stats projection.

Effective stats are never stored. They are recomputed from base values and
the active condition list, so removing a condition restores the base value
exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from ..errors import StateError, ValidationError
from ..models import Ability, ConditionTag

MAX_EXHAUSTION = 6


class DurationKind(str, Enum):
    """Durations that are not a count of rounds and are never ticked."""

    CONCENTRATION = "concentration"
    UNTIL_DISPELLED = "until_dispelled"
    UNTIL_REST = "until_rest"
    SAVE_ENDS = "save_ends"


class ActiveCondition(BaseModel):
    """A condition currently affecting a creature."""

    condition: ConditionTag
    duration: int | DurationKind | None = Field(
        default=None,
        description="Rounds remaining, a non-round duration, or None for indefinite",
    )
    source: str | None = None
    save_dc: int | None = Field(default=None, ge=1, le=30)
    save_ability: Ability | None = None
    exhaustion_level: int | None = Field(default=None, ge=1, le=MAX_EXHAUSTION)

    @model_validator(mode="after")
    def _check(self) -> "ActiveCondition":
        if isinstance(self.duration, int) and self.duration < 0:
            raise ValueError("duration in rounds cannot be negative")
        if self.condition == ConditionTag.EXHAUSTION and self.exhaustion_level is None:
            self.exhaustion_level = 1
        return self

    @property
    def rounds_remaining(self) -> int | None:
        return self.duration if isinstance(self.duration, int) else None

    def describe(self) -> str:
        name = self.condition.value.title()
        if self.condition == ConditionTag.EXHAUSTION:
            name += f" {self.exhaustion_level}"
        extras = []
        if isinstance(self.duration, int):
            extras.append(f"{self.duration} round{'s' if self.duration != 1 else ''}")
        elif isinstance(self.duration, DurationKind):
            extras.append(self.duration.value.replace("_", " "))
        if self.save_dc is not None and self.save_ability is not None:
            extras.append(f"DC {self.save_dc} {self.save_ability.short} save")
        if self.source:
            extras.append(f"from {self.source}")
        return f"{name} ({', '.join(extras)})" if extras else name


# ---------------------------------------------------------------------------
# Condition templates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConditionEffect:
    """Mechanical footprint of one condition."""

    description: str
    disadvantage_on: tuple[str, ...] = ()
    advantage_on: tuple[str, ...] = ()
    speed_zero: bool = False
    crawl_only: bool = False
    incapacitated: bool = False
    auto_fail_saves: tuple[Ability, ...] = ()
    notes: tuple[str, ...] = ()


_STR_DEX = (Ability.STRENGTH, Ability.DEXTERITY)

CONDITION_EFFECTS: dict[ConditionTag, ConditionEffect] = {
    ConditionTag.BLINDED: ConditionEffect(
        description="Can't see; automatically fails checks that require sight.",
        disadvantage_on=("attack rolls",),
        notes=("attacks against have advantage",),
    ),
    ConditionTag.CHARMED: ConditionEffect(
        description="Can't attack the charmer; the charmer has advantage on social checks.",
    ),
    ConditionTag.DEAFENED: ConditionEffect(
        description="Can't hear; automatically fails checks that require hearing.",
    ),
    ConditionTag.EXHAUSTION: ConditionEffect(
        description="Cumulative penalties by level, ending in death at level 6.",
    ),
    ConditionTag.FRIGHTENED: ConditionEffect(
        description="Disadvantage on ability checks and attacks while the source is in sight.",
        disadvantage_on=("ability checks", "attack rolls"),
    ),
    ConditionTag.GRAPPLED: ConditionEffect(
        description="Speed becomes 0.",
        speed_zero=True,
    ),
    ConditionTag.INCAPACITATED: ConditionEffect(
        description="Can't take actions or reactions.",
        incapacitated=True,
    ),
    ConditionTag.INVISIBLE: ConditionEffect(
        description="Can't be seen without special senses.",
        advantage_on=("attack rolls",),
        notes=("attacks against have disadvantage",),
    ),
    ConditionTag.PARALYZED: ConditionEffect(
        description="Incapacitated, can't move or speak.",
        speed_zero=True,
        incapacitated=True,
        auto_fail_saves=_STR_DEX,
        notes=("attacks against have advantage", "hits within 5 ft are critical"),
    ),
    ConditionTag.PETRIFIED: ConditionEffect(
        description="Transformed to stone; incapacitated and unaware.",
        speed_zero=True,
        incapacitated=True,
        auto_fail_saves=_STR_DEX,
        notes=("resistance to all damage", "immune to poison and disease"),
    ),
    ConditionTag.POISONED: ConditionEffect(
        description="Disadvantage on attack rolls and ability checks.",
        disadvantage_on=("attack rolls", "ability checks"),
    ),
    ConditionTag.PRONE: ConditionEffect(
        description="Can only crawl; standing up costs half movement.",
        disadvantage_on=("attack rolls",),
        crawl_only=True,
        notes=("melee attacks against have advantage",),
    ),
    ConditionTag.RESTRAINED: ConditionEffect(
        description="Speed becomes 0; disadvantage on attacks and DEX saves.",
        disadvantage_on=("attack rolls", "DEX saves"),
        speed_zero=True,
        notes=("attacks against have advantage",),
    ),
    ConditionTag.STUNNED: ConditionEffect(
        description="Incapacitated, can't move, speaks falteringly.",
        speed_zero=True,
        incapacitated=True,
        auto_fail_saves=_STR_DEX,
        notes=("attacks against have advantage",),
    ),
    ConditionTag.UNCONSCIOUS: ConditionEffect(
        description="Incapacitated, can't move or speak, unaware of surroundings.",
        speed_zero=True,
        incapacitated=True,
        auto_fail_saves=_STR_DEX,
        notes=("attacks against have advantage", "hits within 5 ft are critical"),
    ),
}

EXHAUSTION_EFFECTS: dict[int, str] = {
    1: "Disadvantage on ability checks",
    2: "Speed halved",
    3: "Disadvantage on attack rolls and saving throws",
    4: "Hit point maximum halved",
    5: "Speed reduced to 0",
    6: "Death",
}

INCAPACITATING = frozenset(
    tag for tag, effect in CONDITION_EFFECTS.items() if effect.incapacitated
)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class StatValue:
    base: int
    effective: int

    @property
    def modified(self) -> bool:
        return self.base != self.effective

    def to_dict(self) -> dict:
        return {"base": self.base, "effective": self.effective, "modified": self.modified}


@dataclass
class EffectiveStats:
    """Base-plus-conditions projection of a creature's numbers."""

    hp: StatValue
    max_hp: StatValue
    speed: StatValue
    ac: StatValue
    explanations: list[str] = field(default_factory=list)
    advantage_on: list[str] = field(default_factory=list)
    disadvantage_on: list[str] = field(default_factory=list)
    auto_fail_saves: list[Ability] = field(default_factory=list)
    incapacitated: bool = False
    crawl_only: bool = False
    dead: bool = False

    @property
    def can_move(self) -> bool:
        return self.speed.effective > 0 and not self.dead

    def to_dict(self) -> dict:
        return {
            "hp": self.hp.to_dict(),
            "max_hp": self.max_hp.to_dict(),
            "speed": self.speed.to_dict(),
            "ac": self.ac.to_dict(),
            "explanations": list(self.explanations),
            "advantage_on": list(self.advantage_on),
            "disadvantage_on": list(self.disadvantage_on),
            "auto_fail_saves": [a.value for a in self.auto_fail_saves],
            "incapacitated": self.incapacitated,
            "crawl_only": self.crawl_only,
            "can_move": self.can_move,
            "dead": self.dead,
        }


@dataclass
class ConditionChange:
    """What an add/remove did to a creature's condition set."""

    target_id: str
    condition: ConditionTag | None
    status: str
    active: ActiveCondition | None = None
    removed: list[ActiveCondition] = field(default_factory=list)
    message: str = ""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _find(conditions: list[ActiveCondition], tag: ConditionTag) -> ActiveCondition | None:
    for active in conditions:
        if active.condition == tag:
            return active
    return None


def _add_unique(values: list[str], items: tuple[str, ...] | list[str]) -> None:
    for item in items:
        if item not in values:
            values.append(item)


class ConditionEngine:
    """Stateless engine over a creature's ``list[ActiveCondition]``.

    The list is keyed by condition tag: at most one entry per tag.
    """

    @staticmethod
    def has(conditions: list[ActiveCondition], tag: ConditionTag) -> bool:
        return _find(conditions, tag) is not None

    @staticmethod
    def exhaustion_level(conditions: list[ActiveCondition]) -> int:
        active = _find(conditions, ConditionTag.EXHAUSTION)
        if active is None:
            return 0
        return active.exhaustion_level or 0

    @staticmethod
    def add(
        conditions: list[ActiveCondition],
        target_id: str,
        tag: ConditionTag,
        duration: int | DurationKind | None = None,
        source: str | None = None,
        exhaustion_levels: int = 1,
        save_dc: int | None = None,
        save_ability: Ability | None = None,
        immunities: list[ConditionTag] | None = None,
    ) -> ConditionChange:
        """Add a condition, refreshing it if already present.

        Exhaustion stacks ``exhaustion_levels`` onto the current level,
        capped at 6.

        Raises:
            StateError: If the target is immune to the condition.
            ValidationError: If ``exhaustion_levels`` is not 1-6.
        """
        if immunities and tag in immunities:
            raise StateError(f"{target_id} is immune to {tag.value}")

        existing = _find(conditions, tag)

        if tag == ConditionTag.EXHAUSTION:
            if not 1 <= exhaustion_levels <= MAX_EXHAUSTION:
                raise ValidationError("exhaustion_levels must be 1-6", field="exhaustion_levels")
            if existing is not None:
                before = existing.exhaustion_level or 0
                existing.exhaustion_level = min(MAX_EXHAUSTION, before + exhaustion_levels)
                if source is not None:
                    existing.source = source
                return ConditionChange(
                    target_id=target_id,
                    condition=tag,
                    status="stacked",
                    active=existing,
                    message=f"Exhaustion {before} -> {existing.exhaustion_level}",
                )

        if existing is not None:
            existing.duration = duration
            if source is not None:
                existing.source = source
            existing.save_dc = save_dc
            existing.save_ability = save_ability
            return ConditionChange(
                target_id=target_id,
                condition=tag,
                status="refreshed",
                active=existing,
                message=f"{tag.value.title()} refreshed",
            )

        active = ActiveCondition(
            condition=tag,
            duration=duration,
            source=source,
            save_dc=save_dc,
            save_ability=save_ability,
            exhaustion_level=min(MAX_EXHAUSTION, exhaustion_levels) if tag == ConditionTag.EXHAUSTION else None,
        )
        conditions.append(active)
        return ConditionChange(
            target_id=target_id,
            condition=tag,
            status="added",
            active=active,
            message=f"{active.describe()} added",
        )

    @staticmethod
    def remove(
        conditions: list[ActiveCondition],
        target_id: str,
        tag: ConditionTag | str,
        exhaustion_levels: int = 1,
    ) -> ConditionChange:
        """Remove a condition. Removing an absent condition is a no-op.

        Pass ``"all"`` to clear every condition. Exhaustion is lowered by
        ``exhaustion_levels`` and dropped once it reaches 0.
        """
        if tag == "all":
            removed = list(conditions)
            conditions.clear()
            return ConditionChange(
                target_id=target_id,
                condition=None,
                status="cleared" if removed else "not_present",
                removed=removed,
                message=f"Removed {len(removed)} condition(s)",
            )

        tag = ConditionTag(tag)
        existing = _find(conditions, tag)
        if existing is None:
            return ConditionChange(
                target_id=target_id,
                condition=tag,
                status="not_present",
                message=f"{tag.value.title()} was not present",
            )

        if tag == ConditionTag.EXHAUSTION:
            remaining = (existing.exhaustion_level or 0) - exhaustion_levels
            if remaining > 0:
                existing.exhaustion_level = remaining
                return ConditionChange(
                    target_id=target_id,
                    condition=tag,
                    status="reduced",
                    active=existing,
                    message=f"Exhaustion reduced to {remaining}",
                )

        conditions.remove(existing)
        return ConditionChange(
            target_id=target_id,
            condition=tag,
            status="removed",
            removed=[existing],
            message=f"{tag.value.title()} removed",
        )

    @staticmethod
    def query(conditions: list[ActiveCondition]) -> list[ActiveCondition]:
        return [c.model_copy() for c in conditions]

    @staticmethod
    def tick(conditions: list[ActiveCondition]) -> list[ActiveCondition]:
        """Decrement round-counted durations and remove the expired ones.

        Non-round durations (concentration, until rest, ...) and indefinite
        conditions are left alone.

        Returns:
            The conditions that expired.
        """
        expired: list[ActiveCondition] = []
        for active in list(conditions):
            if not isinstance(active.duration, int):
                continue
            active.duration -= 1
            if active.duration <= 0:
                conditions.remove(active)
                expired.append(active)
        return expired

    @staticmethod
    def compute_effective_stats(
        hp: int,
        max_hp: int,
        speed: int,
        ac: int,
        conditions: list[ActiveCondition],
    ) -> EffectiveStats:
        """Project base stats through the active conditions.

        Multipliers round down. Effective HP is capped at effective max HP.
        """
        explanations: list[str] = []
        advantage: list[str] = []
        disadvantage: list[str] = []
        auto_fail: list[Ability] = []
        incapacitated = False
        crawl_only = False
        dead = False

        eff_speed = speed
        eff_max_hp = max_hp

        level = ConditionEngine.exhaustion_level(conditions)
        if level >= 1:
            _add_unique(disadvantage, ["ability checks"])
            explanations.append(f"Exhaustion {level}: disadvantage on ability checks")
        if level >= 2:
            eff_speed = eff_speed // 2
            explanations.append(f"Exhaustion {level}: speed halved")
        if level >= 3:
            _add_unique(disadvantage, ["attack rolls", "saving throws"])
            explanations.append(f"Exhaustion {level}: disadvantage on attack rolls and saving throws")
        if level >= 4:
            eff_max_hp = eff_max_hp // 2
            explanations.append(f"Exhaustion {level}: HP maximum halved")
        if level >= 5:
            eff_speed = 0
            explanations.append(f"Exhaustion {level}: speed 0")
        if level >= 6:
            dead = True
            explanations.append(f"Exhaustion {level}: death")

        for active in conditions:
            if active.condition == ConditionTag.EXHAUSTION:
                continue
            effect = CONDITION_EFFECTS[active.condition]
            name = active.condition.value.title()
            if effect.speed_zero:
                eff_speed = 0
                explanations.append(f"{name}: speed 0")
            if effect.crawl_only:
                crawl_only = True
                explanations.append(f"{name}: crawl only")
            if effect.incapacitated:
                incapacitated = True
                explanations.append(f"{name}: incapacitated")
            if effect.auto_fail_saves:
                for ability in effect.auto_fail_saves:
                    if ability not in auto_fail:
                        auto_fail.append(ability)
                short = ", ".join(a.short for a in effect.auto_fail_saves)
                explanations.append(f"{name}: auto-fail {short} saves")
            if effect.disadvantage_on:
                _add_unique(disadvantage, effect.disadvantage_on)
                explanations.append(f"{name}: disadvantage on {', '.join(effect.disadvantage_on)}")
            if effect.advantage_on:
                _add_unique(advantage, effect.advantage_on)
                explanations.append(f"{name}: advantage on {', '.join(effect.advantage_on)}")

        return EffectiveStats(
            hp=StatValue(hp, min(hp, eff_max_hp)),
            max_hp=StatValue(max_hp, eff_max_hp),
            speed=StatValue(speed, eff_speed),
            ac=StatValue(ac, ac),
            explanations=explanations,
            advantage_on=advantage,
            disadvantage_on=disadvantage,
            auto_fail_saves=auto_fail,
            incapacitated=incapacitated,
            crawl_only=crawl_only,
            dead=dead,
        )
