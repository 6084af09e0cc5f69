"""
Spell scrolls and improvised spells.

Reading a scroll of a spell level the reader cannot yet cast takes an
Arcana check against DC 10 + the spell level; the scroll is used up whether
or not the check succeeds. The spell is cast with the scroll's own save DC
and attack bonus (``SCROLL_STATS``), not the reader's.

Synthesizing a spell on the fly is an Arcana check against
DC 10 + 2 x spell level, lowered near a ley line and by costly material
components. Desperation adds +2 to the roll but turns any failure into a
mishap; a natural 1 is always a mishap.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from ..checks import CheckResult, CheckType, resolve_check
from ..dice import RollMode, parse_dice
from ..errors import ValidationError
from ..models import Ability, Character, ConditionTag, DamageType, Skill, ordinal
from ..spatial.positioning import AoEShapeKind, Position
from .spell_slots import build_pool

logger = logging.getLogger("dm20-rules")


# spell level -> (save DC, attack bonus)
SCROLL_STATS: dict[int, tuple[int, int]] = {
    0: (13, 5),
    1: (13, 5),
    2: (13, 5),
    3: (15, 7),
    4: (15, 7),
    5: (17, 9),
    6: (17, 9),
    7: (18, 10),
    8: (18, 10),
    9: (19, 11),
}

LEY_LINE_DC_REDUCTION = 2
DESPERATION_ROLL_BONUS = 2
ENHANCED_MARGIN = 5

# gp value -> DC reduction, highest first
MATERIAL_DC_REDUCTIONS: tuple[tuple[int, int], ...] = ((1000, 3), (500, 2), (100, 1))


class SpellSchool(str, Enum):
    ABJURATION = "abjuration"
    CONJURATION = "conjuration"
    DIVINATION = "divination"
    ENCHANTMENT = "enchantment"
    EVOCATION = "evocation"
    ILLUSION = "illusion"
    NECROMANCY = "necromancy"
    TRANSMUTATION = "transmutation"


def highest_spell_level(character: Character) -> int:
    """Highest spell level the character has slots for; 0 for non-casters."""
    pool = character.spell_slots or build_pool(character.progression, character.level)
    best = max((level for level, count in pool.levels.items() if count.max > 0), default=0)
    if pool.pact is not None and pool.pact.max > 0:
        best = max(best, pool.pact.slot_level)
    return best


def _spell_level_label(level: int) -> str:
    return "cantrip" if level == 0 else f"{ordinal(level)}-level"


# ---------------------------------------------------------------------------
# Scrolls
# ---------------------------------------------------------------------------

@dataclass
class ScrollResult:
    scroll_name: str
    spell_name: str
    spell_level: int
    caster_level: int
    save_dc: int
    attack_bonus: int
    success: bool
    check: CheckResult | None = None
    check_dc: int | None = None
    is_attack_spell: bool = False
    school: SpellSchool | None = None
    targets: list[str] = field(default_factory=list)
    target_position: Position | None = None
    reader: str | None = None

    def describe(self) -> str:
        lines = [f"📜 {self.reader + ' reads ' if self.reader else ''}{self.scroll_name}"]
        lines.append(f"Spell: {self.spell_name} ({_spell_level_label(self.spell_level)})")
        if self.school:
            lines.append(f"School: {self.school.value}")
        if self.check is not None:
            lines.append(
                f"Spell level {self.spell_level} exceeds caster level {self.caster_level}: "
                f"Arcana DC {self.check_dc}"
            )
            lines.append(self.check.describe())
        if self.targets:
            lines.append(f"Targets: {', '.join(self.targets)}")
        if self.target_position is not None:
            lines.append(f"Target point: {self.target_position}")
        lines.append(f"Spell save DC {self.save_dc}")
        if self.is_attack_spell:
            lines.append(f"Spell attack +{self.attack_bonus}")
        if self.success:
            lines.append(f"{self.spell_name} has been cast!")
        else:
            lines.append("The magic fizzles and the scroll is lost!")
        lines.append("The scroll crumbles to dust (consumed).")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "scroll_name": self.scroll_name,
            "spell_name": self.spell_name,
            "spell_level": self.spell_level,
            "caster_level": self.caster_level,
            "check_required": self.check is not None,
            "check_dc": self.check_dc,
            "check": self.check.to_dict() if self.check else None,
            "success": self.success,
            "consumed": True,
            "save_dc": self.save_dc,
            "attack_bonus": self.attack_bonus if self.is_attack_spell else None,
            "targets": list(self.targets),
            "target_position": self.target_position.model_dump() if self.target_position else None,
        }


def use_scroll(
    scroll_name: str,
    spell_level: int,
    character: Character | None = None,
    caster_level: int | None = None,
    arcana_bonus: int = 0,
    mode: RollMode = RollMode.NORMAL,
    manual_roll: int | None = None,
    manual_rolls: list[int] | None = None,
    is_attack_spell: bool = False,
    school: SpellSchool | None = None,
    targets: list[str] | None = None,
    target_position: Position | None = None,
    rng: random.Random | None = None,
) -> ScrollResult:
    """Read a spell scroll.

    ``caster_level`` is the highest spell level the reader can cast. It
    defaults to the character's highest slot level; without a character it
    must be given.

    Raises:
        ValidationError: Spell level outside 0-9, or no caster level.
    """
    if spell_level not in SCROLL_STATS:
        raise ValidationError("spell_level must be 0-9", field="spell_level")
    if caster_level is None:
        if character is None:
            raise ValidationError("caster_level is required without a character", field="caster_level")
        caster_level = highest_spell_level(character)

    spell_name = scroll_name
    if scroll_name.lower().startswith("scroll of "):
        spell_name = scroll_name[len("scroll of "):]
    save_dc, attack_bonus = SCROLL_STATS[spell_level]

    check = None
    check_dc = None
    success = True
    if spell_level > caster_level:
        check_dc = 10 + spell_level
        check = resolve_check(
            CheckType.SKILL,
            skill=Skill.ARCANA,
            character=character,
            bonus=arcana_bonus,
            dc=check_dc,
            mode=mode,
            manual_roll=manual_roll,
            manual_rolls=manual_rolls,
            rng=rng,
        )
        success = bool(check.success)

    result = ScrollResult(
        scroll_name=scroll_name,
        spell_name=spell_name,
        spell_level=spell_level,
        caster_level=caster_level,
        save_dc=save_dc,
        attack_bonus=attack_bonus,
        success=success,
        check=check,
        check_dc=check_dc,
        is_attack_spell=is_attack_spell,
        school=school,
        targets=list(targets or []),
        target_position=target_position,
        reader=character.name if character else None,
    )
    logger.info(f"🔮 {scroll_name} read: {'cast' if success else 'fizzled'}")
    return result


# ---------------------------------------------------------------------------
# Spell synthesis
# ---------------------------------------------------------------------------

class SpellEffectKind(str, Enum):
    DAMAGE = "damage"
    HEALING = "healing"
    CONTROL = "control"
    UTILITY = "utility"
    SUMMON = "summon"


class SpellEffect(BaseModel):
    type: SpellEffectKind
    damage: str | None = None
    damage_type: DamageType | None = None
    healing: str | None = None
    condition: ConditionTag | None = None

    @field_validator("damage", "healing")
    @classmethod
    def _valid_dice(cls, value: str | None) -> str | None:
        if value is not None:
            parse_dice(value)
        return value


class SpellArea(BaseModel):
    shape: AoEShapeKind
    size: int = Field(ge=1, description="Feet")


class SpellSave(BaseModel):
    ability: Ability
    dc: int = Field(ge=1, le=30)


class ProposedSpell(BaseModel):
    """A spell the caster is trying to improvise."""

    name: str = Field(min_length=1)
    level: int = Field(ge=1, le=9)
    school: SpellSchool
    effect: SpellEffect
    range_feet: int = Field(default=0, ge=0)
    area: SpellArea | None = None
    saving_throw: SpellSave | None = None
    concentration: bool = False
    duration: str | None = None

    def summary(self) -> list[str]:
        lines = [f"{self.name}: {_spell_level_label(self.level)} {self.school.value}"]
        effect = f"Effect: {self.effect.type.value}"
        if self.effect.damage:
            effect += f", {self.effect.damage}"
            if self.effect.damage_type:
                effect += f" {self.effect.damage_type.value}"
        if self.effect.healing:
            effect += f", heals {self.effect.healing}"
        if self.effect.condition:
            effect += f", {self.effect.condition.value}"
        lines.append(effect)
        lines.append(f"Range: {'self' if self.range_feet == 0 else f'{self.range_feet} ft'}")
        if self.area:
            lines.append(f"Area: {self.area.size} ft {self.area.shape.value}")
        if self.saving_throw:
            lines.append(f"Save: DC {self.saving_throw.dc} {self.saving_throw.ability.short}")
        if self.concentration:
            lines.append("Concentration: yes")
        if self.duration:
            lines.append(f"Duration: {self.duration}")
        return lines


class SynthesisOutcome(str, Enum):
    CRITICAL = "critical_success"
    ENHANCED = "enhanced_success"
    SUCCESS = "success"
    FAILED = "failed"
    MISHAP = "mishap"


def synthesis_dc(level: int, near_ley_line: bool = False, material_value_gp: int = 0) -> tuple[int, list[str]]:
    """The Arcana DC to improvise a spell, and what changed it."""
    dc = 10 + level * 2
    modifiers = []
    if near_ley_line:
        dc -= LEY_LINE_DC_REDUCTION
        modifiers.append(f"ley line -{LEY_LINE_DC_REDUCTION}")
    for threshold, reduction in MATERIAL_DC_REDUCTIONS:
        if material_value_gp >= threshold:
            dc -= reduction
            modifiers.append(f"{threshold}+ gp components -{reduction}")
            break
    return dc, modifiers


@dataclass
class SynthesisResult:
    spell: ProposedSpell
    intent: str | None
    dc: int
    dc_modifiers: list[str]
    check: CheckResult
    desperation: bool
    outcome: SynthesisOutcome
    caster: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome in (SynthesisOutcome.CRITICAL, SynthesisOutcome.ENHANCED, SynthesisOutcome.SUCCESS)

    @property
    def margin(self) -> int:
        return self.check.total - self.dc

    def describe(self) -> str:
        lines = [f"✨ {self.caster + ' improvises ' if self.caster else 'Improvised '}{self.spell.name}"]
        if self.intent:
            lines.append(f"Intent: {self.intent}")
        lines.extend(self.spell.summary())
        dc_line = f"Arcana DC {self.dc} (10 + {self.spell.level} x 2"
        dc_line += f", {', '.join(self.dc_modifiers)})" if self.dc_modifiers else ")"
        lines.append(dc_line)
        if self.desperation:
            lines.append(f"Desperation: +{DESPERATION_ROLL_BONUS} to the roll, mishap on failure")
        lines.append(self.check.describe())

        if self.outcome == SynthesisOutcome.CRITICAL:
            lines.append(f"CRITICAL SUCCESS! {self.spell.name} manifests flawlessly.")
            if self.spell.effect.damage:
                lines.append(f"Deals maximum damage: {self.spell.effect.damage}")
        elif self.outcome == SynthesisOutcome.ENHANCED:
            lines.append(f"ENHANCED SUCCESS! Beat the DC by {self.margin}: {self.spell.name} gains an enhanced effect.")
        elif self.outcome == SynthesisOutcome.SUCCESS:
            lines.append(f"SUCCESS: {self.spell.name} takes form.")
        elif self.outcome == SynthesisOutcome.MISHAP:
            if self.check.natural == 1:
                lines.append("MISHAP! The magic surges wildly and backfires.")
            else:
                lines.append("SEVERE MISHAP! Desperation magic gone wrong.")
            lines.append("The DM decides the mishap: wild magic surge, damage to the caster or an unintended effect.")
        else:
            lines.append(f"FAILED: the spell fizzles. Missed the DC by {-self.margin}.")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "spell": self.spell.model_dump(mode="json"),
            "intent": self.intent,
            "dc": self.dc,
            "dc_modifiers": list(self.dc_modifiers),
            "check": self.check.to_dict(),
            "desperation": self.desperation,
            "outcome": self.outcome.value,
            "success": self.success,
            "margin": self.margin,
        }


def synthesize_spell(
    spell: ProposedSpell,
    character: Character | None = None,
    intent: str | None = None,
    arcana_bonus: int = 0,
    near_ley_line: bool = False,
    material_value_gp: int = 0,
    desperation: bool = False,
    mode: RollMode = RollMode.NORMAL,
    manual_roll: int | None = None,
    manual_rolls: list[int] | None = None,
    rng: random.Random | None = None,
) -> SynthesisResult:
    """Attempt to improvise ``spell`` with an Arcana check.

    Success needs the DC and not a natural 1. A natural 20 success is
    critical; beating the DC by 5 or more is enhanced.
    """
    dc, modifiers = synthesis_dc(spell.level, near_ley_line, material_value_gp)
    bonus = arcana_bonus + (DESPERATION_ROLL_BONUS if desperation else 0)
    check = resolve_check(
        CheckType.SKILL,
        skill=Skill.ARCANA,
        character=character,
        bonus=bonus,
        dc=dc,
        mode=mode,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
        rng=rng,
    )

    success = check.total >= dc and check.natural != 1
    if success and check.natural == 20:
        outcome = SynthesisOutcome.CRITICAL
    elif success and check.total - dc >= ENHANCED_MARGIN:
        outcome = SynthesisOutcome.ENHANCED
    elif success:
        outcome = SynthesisOutcome.SUCCESS
    elif check.natural == 1 or desperation:
        outcome = SynthesisOutcome.MISHAP
    else:
        outcome = SynthesisOutcome.FAILED

    logger.info(f"✨ Synthesis of {spell.name}: {outcome.value}")
    return SynthesisResult(
        spell=spell,
        intent=intent,
        dc=dc,
        dc_modifiers=modifiers,
        check=check,
        desperation=desperation,
        outcome=outcome,
        caster=character.name if character else None,
    )
