"""
d20 check resolution: skill, ability, save, attack and initiative rolls.

modifier = ability modifier + proficiency bonus (when proficient) + bonus.

Proficiency rules:
- skill: the skill is in the character's skill proficiencies
- save: the ability is a save proficiency (own or from the class)
- attack: always proficient
- ability / initiative: never proficient (initiative always uses DEX)

On saving throws a natural 20 always succeeds and a natural 1 always fails.
On every other check natural 20/1 are only flagged for display.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum

from .dice import D20Roll, RollMode, roll_d20
from .errors import ValidationError
from .models import SKILL_ABILITIES, Ability, Character, Skill


class CheckType(str, Enum):
    SKILL = "skill"
    ABILITY = "ability"
    SAVE = "save"
    ATTACK = "attack"
    INITIATIVE = "initiative"


@dataclass
class CheckResult:
    """Outcome of a single d20 check."""

    check_type: CheckType
    ability: Ability
    skill: Skill | None
    roll: D20Roll
    ability_modifier: int
    proficiency_bonus: int
    bonus: int
    dc: int | None
    success: bool | None
    character_name: str | None = None

    @property
    def modifier(self) -> int:
        return self.ability_modifier + self.proficiency_bonus + self.bonus

    @property
    def total(self) -> int:
        return self.roll.total

    @property
    def natural(self) -> int:
        return self.roll.natural

    @property
    def is_critical(self) -> bool:
        return self.roll.is_critical

    @property
    def is_fumble(self) -> bool:
        return self.roll.is_fumble

    @property
    def label(self) -> str:
        if self.check_type == CheckType.SKILL and self.skill is not None:
            return f"{self.skill.value.replace('_', ' ').title()} ({self.ability.short}) check"
        if self.check_type == CheckType.SAVE:
            return f"{self.ability.value.title()} saving throw"
        if self.check_type == CheckType.ATTACK:
            return f"{self.ability.value.title()} attack roll"
        if self.check_type == CheckType.INITIATIVE:
            return "Initiative"
        return f"{self.ability.value.title()} check"

    def describe(self) -> str:
        who = f"{self.character_name}: " if self.character_name else ""
        text = f"{who}{self.label}: {self.roll.describe()}"
        if self.is_critical:
            text += " (natural 20!)"
        elif self.is_fumble:
            text += " (natural 1)"
        if self.dc is not None:
            text += f" vs DC {self.dc} - {'SUCCESS' if self.success else 'FAILURE'}"
        return text

    def to_dict(self) -> dict:
        return {
            "check_type": self.check_type.value,
            "ability": self.ability.value,
            "skill": self.skill.value if self.skill else None,
            "character": self.character_name,
            "rolls": list(self.roll.rolls),
            "natural": self.natural,
            "mode": self.roll.mode.value,
            "ability_modifier": self.ability_modifier,
            "proficiency_bonus": self.proficiency_bonus,
            "bonus": self.bonus,
            "modifier": self.modifier,
            "total": self.total,
            "dc": self.dc,
            "success": self.success,
            "critical": self.is_critical,
            "fumble": self.is_fumble,
        }


def _check_ability(
    check_type: CheckType,
    ability: Ability | None,
    skill: Skill | None,
) -> Ability:
    if check_type == CheckType.INITIATIVE:
        return Ability.DEXTERITY
    if check_type == CheckType.SKILL:
        if skill is None:
            raise ValidationError("A skill check requires a skill", field="skill")
        return ability or SKILL_ABILITIES[skill]
    if ability is None:
        raise ValidationError(f"A {check_type.value} roll requires an ability", field="ability")
    return ability


def _is_proficient(
    check_type: CheckType,
    character: Character,
    ability: Ability,
    skill: Skill | None,
) -> bool:
    if check_type == CheckType.SKILL:
        return skill in character.skill_proficiencies
    if check_type == CheckType.SAVE:
        return character.is_save_proficient(ability)
    return check_type == CheckType.ATTACK


def resolve_check(
    check_type: CheckType,
    ability: Ability | None = None,
    skill: Skill | None = None,
    character: Character | None = None,
    bonus: int = 0,
    dc: int | None = None,
    mode: RollMode = RollMode.NORMAL,
    manual_roll: int | None = None,
    manual_rolls: list[int] | None = None,
    rng: random.Random | None = None,
) -> CheckResult:
    """Roll a check and decide success against an optional DC.

    Without a character only ``bonus`` contributes to the modifier.

    Raises:
        ValidationError: If the skill or ability the check needs is missing.
    """
    check_ability = _check_ability(check_type, ability, skill)
    ability_mod = 0
    prof = 0
    if character is not None:
        ability_mod = character.ability_modifier(check_ability)
        if _is_proficient(check_type, character, check_ability, skill):
            prof = character.proficiency_bonus

    roll = roll_d20(
        mode=mode,
        modifier=ability_mod + prof + bonus,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
        rng=rng,
    )

    success: bool | None = None
    if dc is not None:
        if check_type == CheckType.SAVE and roll.is_critical:
            success = True
        elif check_type == CheckType.SAVE and roll.is_fumble:
            success = False
        else:
            success = roll.total >= dc

    return CheckResult(
        check_type=check_type,
        ability=check_ability,
        skill=skill if check_type == CheckType.SKILL else None,
        roll=roll,
        ability_modifier=ability_mod,
        proficiency_bonus=prof,
        bonus=bonus,
        dc=dc,
        success=success,
        character_name=character.name if character else None,
    )


@dataclass
class ContestedResult:
    """Two opposed checks. Ties go to the defender."""

    attacker: CheckResult
    defender: CheckResult

    @property
    def winner(self) -> str:
        return "attacker" if self.attacker.total > self.defender.total else "defender"

    @property
    def margin(self) -> int:
        return abs(self.attacker.total - self.defender.total)

    def describe(self) -> str:
        winner = self.attacker if self.winner == "attacker" else self.defender
        name = winner.character_name or self.winner
        lines = [
            f"Contested: {self.attacker.describe()}",
            f"      vs: {self.defender.describe()}",
        ]
        if self.margin == 0:
            lines.append(f"Tie - {name} (defender) wins")
        else:
            lines.append(f"{name} wins by {self.margin}")
        return "\n".join(lines)


def resolve_contested(attacker: CheckResult, defender: CheckResult) -> ContestedResult:
    """Pair two already rolled checks into a contest."""
    return ContestedResult(attacker=attacker, defender=defender)
