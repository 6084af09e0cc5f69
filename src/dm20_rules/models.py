"""
Data models for the dm20 rules engine.

Holds the closed vocabularies (abilities, skills, sizes, damage types,
conditions), the character record read through the character repository,
and the class/race descriptors that feed spell-slot and resource math.
"""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from shortuuid import random


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

class Ability(str, Enum):
    """The six ability scores. Accepts three-letter abbreviations on input."""

    STRENGTH = "strength"
    DEXTERITY = "dexterity"
    CONSTITUTION = "constitution"
    INTELLIGENCE = "intelligence"
    WISDOM = "wisdom"
    CHARISMA = "charisma"

    @classmethod
    def _missing_(cls, value: object) -> "Ability | None":
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered or member.value[:3] == lowered:
                    return member
        return None

    @property
    def short(self) -> str:
        return self.value[:3].upper()


class Skill(str, Enum):
    ACROBATICS = "acrobatics"
    ANIMAL_HANDLING = "animal_handling"
    ARCANA = "arcana"
    ATHLETICS = "athletics"
    DECEPTION = "deception"
    HISTORY = "history"
    INSIGHT = "insight"
    INTIMIDATION = "intimidation"
    INVESTIGATION = "investigation"
    MEDICINE = "medicine"
    NATURE = "nature"
    PERCEPTION = "perception"
    PERFORMANCE = "performance"
    PERSUASION = "persuasion"
    RELIGION = "religion"
    SLEIGHT_OF_HAND = "sleight_of_hand"
    STEALTH = "stealth"
    SURVIVAL = "survival"

    @classmethod
    def _missing_(cls, value: object) -> "Skill | None":
        if isinstance(value, str):
            normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
            for member in cls:
                if member.value == normalized:
                    return member
        return None


SKILL_ABILITIES: dict[Skill, Ability] = {
    Skill.ACROBATICS: Ability.DEXTERITY,
    Skill.ANIMAL_HANDLING: Ability.WISDOM,
    Skill.ARCANA: Ability.INTELLIGENCE,
    Skill.ATHLETICS: Ability.STRENGTH,
    Skill.DECEPTION: Ability.CHARISMA,
    Skill.HISTORY: Ability.INTELLIGENCE,
    Skill.INSIGHT: Ability.WISDOM,
    Skill.INTIMIDATION: Ability.CHARISMA,
    Skill.INVESTIGATION: Ability.INTELLIGENCE,
    Skill.MEDICINE: Ability.WISDOM,
    Skill.NATURE: Ability.INTELLIGENCE,
    Skill.PERCEPTION: Ability.WISDOM,
    Skill.PERFORMANCE: Ability.CHARISMA,
    Skill.PERSUASION: Ability.CHARISMA,
    Skill.RELIGION: Ability.INTELLIGENCE,
    Skill.SLEIGHT_OF_HAND: Ability.DEXTERITY,
    Skill.STEALTH: Ability.DEXTERITY,
    Skill.SURVIVAL: Ability.WISDOM,
}


class Size(str, Enum):
    """Creature size categories, smallest first."""

    TINY = "tiny"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"
    GARGANTUAN = "gargantuan"


class DamageType(str, Enum):
    ACID = "acid"
    BLUDGEONING = "bludgeoning"
    COLD = "cold"
    FIRE = "fire"
    FORCE = "force"
    LIGHTNING = "lightning"
    NECROTIC = "necrotic"
    PIERCING = "piercing"
    POISON = "poison"
    PSYCHIC = "psychic"
    RADIANT = "radiant"
    SLASHING = "slashing"
    THUNDER = "thunder"


class ConditionTag(str, Enum):
    """The closed set of conditions the engine tracks."""

    BLINDED = "blinded"
    CHARMED = "charmed"
    DEAFENED = "deafened"
    EXHAUSTION = "exhaustion"
    FRIGHTENED = "frightened"
    GRAPPLED = "grappled"
    INCAPACITATED = "incapacitated"
    INVISIBLE = "invisible"
    PARALYZED = "paralyzed"
    PETRIFIED = "petrified"
    POISONED = "poisoned"
    PRONE = "prone"
    RESTRAINED = "restrained"
    STUNNED = "stunned"
    UNCONSCIOUS = "unconscious"


class Lighting(str, Enum):
    BRIGHT = "bright"
    DIM = "dim"
    DARKNESS = "darkness"
    MAGICAL_DARKNESS = "magical_darkness"


class SpellcastingTier(str, Enum):
    """How a class gains spell slots as it levels."""

    FULL = "full"
    HALF = "half"
    THIRD = "third"
    PACT = "pact"
    NONE = "none"

    @classmethod
    def _missing_(cls, value: object) -> "SpellcastingTier | None":
        if isinstance(value, str) and value.strip().lower() == "warlock":
            return cls.PACT
        return None


class ResourceScaling(str, Enum):
    """How a custom class resource grows past level 1."""

    LEVEL = "level"
    HALF = "half"
    THIRD = "third"
    NONE = "none"


class KnownClassName(str, Enum):
    BARBARIAN = "barbarian"
    BARD = "bard"
    CLERIC = "cleric"
    DRUID = "druid"
    FIGHTER = "fighter"
    MONK = "monk"
    PALADIN = "paladin"
    RANGER = "ranger"
    ROGUE = "rogue"
    SORCERER = "sorcerer"
    WARLOCK = "warlock"
    WIZARD = "wizard"

    @classmethod
    def _missing_(cls, value: object) -> "KnownClassName | None":
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


# Hit die, spellcasting tier, spellcasting ability, saving throw proficiencies
KNOWN_CLASS_TABLE: dict[KnownClassName, tuple[int, SpellcastingTier, Ability | None, tuple[Ability, ...]]] = {
    KnownClassName.BARBARIAN: (12, SpellcastingTier.NONE, None, (Ability.STRENGTH, Ability.CONSTITUTION)),
    KnownClassName.BARD: (8, SpellcastingTier.FULL, Ability.CHARISMA, (Ability.DEXTERITY, Ability.CHARISMA)),
    KnownClassName.CLERIC: (8, SpellcastingTier.FULL, Ability.WISDOM, (Ability.WISDOM, Ability.CHARISMA)),
    KnownClassName.DRUID: (8, SpellcastingTier.FULL, Ability.WISDOM, (Ability.INTELLIGENCE, Ability.WISDOM)),
    KnownClassName.FIGHTER: (10, SpellcastingTier.NONE, None, (Ability.STRENGTH, Ability.CONSTITUTION)),
    KnownClassName.MONK: (8, SpellcastingTier.NONE, None, (Ability.STRENGTH, Ability.DEXTERITY)),
    KnownClassName.PALADIN: (10, SpellcastingTier.HALF, Ability.CHARISMA, (Ability.WISDOM, Ability.CHARISMA)),
    KnownClassName.RANGER: (10, SpellcastingTier.HALF, Ability.WISDOM, (Ability.STRENGTH, Ability.DEXTERITY)),
    KnownClassName.ROGUE: (8, SpellcastingTier.NONE, None, (Ability.DEXTERITY, Ability.INTELLIGENCE)),
    KnownClassName.SORCERER: (6, SpellcastingTier.FULL, Ability.CHARISMA, (Ability.CONSTITUTION, Ability.CHARISMA)),
    KnownClassName.WARLOCK: (8, SpellcastingTier.PACT, Ability.CHARISMA, (Ability.WISDOM, Ability.CHARISMA)),
    KnownClassName.WIZARD: (6, SpellcastingTier.FULL, Ability.INTELLIGENCE, (Ability.INTELLIGENCE, Ability.WISDOM)),
}


def proficiency_bonus_for_level(level: int) -> int:
    """Proficiency bonus by character level: +2 at 1, +6 at 17."""
    return 2 + (level - 1) // 4


# ---------------------------------------------------------------------------
# Class and race descriptors
# ---------------------------------------------------------------------------

class KnownClass(BaseModel):
    """One of the built-in classes, identified by name only."""

    kind: Literal["known"] = "known"
    name: KnownClassName


class CustomClass(BaseModel):
    """A homebrew class descriptor. Accepted as data, never checked against canon."""

    kind: Literal["custom"] = "custom"
    name: str = Field(min_length=1)
    hit_die: int = Field(default=8, ge=4, le=12)
    spellcasting: SpellcastingTier = SpellcastingTier.NONE
    spellcasting_ability: Ability | None = None
    primary_ability: Ability | None = None
    save_proficiencies: list[Ability] = Field(default_factory=list)
    description: str = ""
    resource_name: str | None = None
    resource_max: int | None = Field(default=None, ge=0)
    resource_scaling: ResourceScaling | int | None = None


ClassSpec = Annotated[KnownClass | CustomClass, Field(discriminator="kind")]


def calculate_resource_max(
    base: int,
    scaling: ResourceScaling | int | None,
    level: int,
) -> int:
    """Scale a level-1 resource pool to ``level``.

    ``level`` adds one per level, ``half``/``third`` add one every two or
    three levels, an integer adds that much per level, and ``none`` keeps
    the base value.
    """
    steps = level - 1
    if scaling is None or scaling == ResourceScaling.NONE:
        return base
    if scaling == ResourceScaling.LEVEL:
        return base + steps
    if scaling == ResourceScaling.HALF:
        return base + steps // 2
    if scaling == ResourceScaling.THIRD:
        return base + steps // 3
    return base + steps * int(scaling)


class ClassProgression(BaseModel):
    """A class spec resolved against a level.

    Built once when a character is constructed so the rest of the engine
    never branches on known-versus-custom classes again.
    """

    class_name: str
    is_custom: bool = False
    hit_die: int
    spellcasting: SpellcastingTier
    spellcasting_ability: Ability | None = None
    primary_ability: Ability | None = None
    save_proficiencies: list[Ability] = Field(default_factory=list)
    resource_name: str | None = None
    resource_max: int | None = None

    @classmethod
    def from_spec(cls, spec: KnownClass | CustomClass, level: int) -> "ClassProgression":
        if isinstance(spec, KnownClass):
            hit_die, tier, casting, saves = KNOWN_CLASS_TABLE[spec.name]
            return cls(
                class_name=spec.name.value.title(),
                hit_die=hit_die,
                spellcasting=tier,
                spellcasting_ability=casting,
                save_proficiencies=list(saves),
            )

        resource_max = None
        if spec.resource_name and spec.resource_max is not None:
            resource_max = calculate_resource_max(spec.resource_max, spec.resource_scaling, level)
        return cls(
            class_name=spec.name,
            is_custom=True,
            hit_die=spec.hit_die,
            spellcasting=spec.spellcasting,
            spellcasting_ability=spec.spellcasting_ability,
            primary_ability=spec.primary_ability,
            save_proficiencies=list(spec.save_proficiencies),
            resource_name=spec.resource_name,
            resource_max=resource_max,
        )


class CustomRace(BaseModel):
    """A homebrew race descriptor."""

    name: str = Field(min_length=1)
    size: Size = Size.MEDIUM
    ability_bonuses: dict[Ability, int] = Field(default_factory=dict)
    speed: int = Field(default=30, ge=0)
    fly_speed: int | None = Field(default=None, ge=0)
    swim_speed: int | None = Field(default=None, ge=0)
    climb_speed: int | None = Field(default=None, ge=0)
    traits: list[str] = Field(default_factory=list)
    resistances: list[DamageType] = Field(default_factory=list)
    immunities: list[DamageType] = Field(default_factory=list)
    vulnerabilities: list[DamageType] = Field(default_factory=list)
    condition_immunities: list[ConditionTag] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Spell slot pool (stored on the character record)
# ---------------------------------------------------------------------------

class SlotCount(BaseModel):
    """Current and maximum slots for one spell level."""

    current: int = Field(default=0, ge=0)
    max: int = Field(default=0, ge=0)


class PactSlots(BaseModel):
    """Pact Magic pool: a few slots that all share one slot level."""

    current: int = Field(default=0, ge=0)
    max: int = Field(default=0, ge=0)
    slot_level: int = Field(default=1, ge=1, le=9)


class SpellSlotPool(BaseModel):
    """Spell slots keyed by level 1-9, plus an optional pact pool."""

    levels: dict[int, SlotCount] = Field(default_factory=dict)
    pact: PactSlots | None = None

    @model_validator(mode="after")
    def _fill_levels(self) -> "SpellSlotPool":
        for level in range(1, 10):
            self.levels.setdefault(level, SlotCount())
        return self

    @property
    def has_any(self) -> bool:
        return any(slot.max > 0 or slot.current > 0 for slot in self.levels.values()) or (
            self.pact is not None and (self.pact.max > 0 or self.pact.current > 0)
        )


# ---------------------------------------------------------------------------
# Character record
# ---------------------------------------------------------------------------

class AbilityScore(BaseModel):
    """D&D ability score with modifiers."""
    score: int = Field(ge=1, le=30, description="Raw ability score")

    @property
    def mod(self) -> int:
        """Calculate ability modifier."""
        return (self.score - 10) // 2


def _default_abilities() -> dict[Ability, AbilityScore]:
    return {ability: AbilityScore(score=10) for ability in Ability}


class Character(BaseModel):
    """A persisted character record, as read from the character repository.

    Encounters copy what they need out of this record; combat never writes
    hit points back to it.
    """

    id: str = Field(default_factory=lambda: random(length=8))
    name: str = Field(min_length=1)
    character_class: ClassSpec = Field(default_factory=lambda: KnownClass(name=KnownClassName.FIGHTER))
    level: int = Field(default=1, ge=1, le=20)
    race: str | CustomRace = "Human"
    abilities: dict[Ability, AbilityScore] = Field(default_factory=_default_abilities)
    hit_points_max: int = Field(default=10, ge=1)
    hit_points_current: int | None = Field(default=None, ge=0)
    armor_class: int = Field(default=10, ge=0)
    speed: int | None = Field(default=None, ge=0)
    size: Size | None = None
    damage_resistances: list[DamageType] = Field(default_factory=list)
    damage_immunities: list[DamageType] = Field(default_factory=list)
    damage_vulnerabilities: list[DamageType] = Field(default_factory=list)
    condition_immunities: list[ConditionTag] = Field(default_factory=list)
    skill_proficiencies: list[Skill] = Field(default_factory=list)
    saving_throw_proficiencies: list[Ability] = Field(default_factory=list)
    spell_slots: SpellSlotPool | None = None
    progression: ClassProgression | None = Field(default=None, exclude=True)

    @field_validator("character_class", mode="before")
    @classmethod
    def _class_from_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"kind": "known", "name": value}
        if isinstance(value, dict) and "kind" not in value:
            return {"kind": "custom", **value}
        return value

    @field_validator("abilities", mode="before")
    @classmethod
    def _abilities_from_ints(cls, value: Any) -> Any:
        if isinstance(value, dict):
            filled: dict[Any, Any] = {ability.value: {"score": 10} for ability in Ability}
            for key, score in value.items():
                name = Ability(key).value if isinstance(key, str) else key
                filled[name] = {"score": score} if isinstance(score, int) else score
            return filled
        return value

    @model_validator(mode="after")
    def _resolve(self) -> "Character":
        if self.hit_points_current is None:
            self.hit_points_current = self.hit_points_max
        if isinstance(self.race, CustomRace):
            race = self.race
            if self.speed is None:
                self.speed = race.speed
            if self.size is None:
                self.size = race.size
            self.damage_resistances = _merge(self.damage_resistances, race.resistances)
            self.damage_immunities = _merge(self.damage_immunities, race.immunities)
            self.damage_vulnerabilities = _merge(self.damage_vulnerabilities, race.vulnerabilities)
            self.condition_immunities = _merge(self.condition_immunities, race.condition_immunities)
        if self.speed is None:
            self.speed = 30
        if self.size is None:
            self.size = Size.MEDIUM
        self.progression = ClassProgression.from_spec(self.character_class, self.level)
        return self

    @property
    def class_name(self) -> str:
        return self.progression.class_name if self.progression else "Unknown"

    @property
    def race_name(self) -> str:
        return self.race.name if isinstance(self.race, CustomRace) else self.race

    @property
    def proficiency_bonus(self) -> int:
        return proficiency_bonus_for_level(self.level)

    def ability_score(self, ability: Ability) -> int:
        """Score including any custom race bonus."""
        base = self.abilities[ability].score
        if isinstance(self.race, CustomRace):
            base += self.race.ability_bonuses.get(ability, 0)
        return base

    def ability_modifier(self, ability: Ability) -> int:
        return (self.ability_score(ability) - 10) // 2

    def is_save_proficient(self, ability: Ability) -> bool:
        if ability in self.saving_throw_proficiencies:
            return True
        return self.progression is not None and ability in self.progression.save_proficiencies


def _merge(first: list, second: list) -> list:
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged


def ordinal(n: int) -> str:
    """1 -> '1st', 2 -> '2nd', 3 -> '3rd', 4 -> '4th'."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"
