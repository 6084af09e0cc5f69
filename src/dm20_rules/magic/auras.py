"""
Auras: persistent areas centred on a creature (Spirit Guardians, Aura of
Protection, ...).

An aura is created once and then processed, typically at the start or end of
its owner's turn. Processing filters a target list to those within the
radius, rolls damage/healing once for the pulse, rolls a saving throw per
target when the aura has a save DC and ability, and decrements the duration.
The aura is deleted when its duration reaches 0.

Auras are independent of encounters. The command layer applies the returned
damage, healing and conditions to encounter participants when asked to.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator
from shortuuid import random as random_id

from ..dice import D20Roll, DiceRoll, parse_dice, roll_d20, roll_dice
from ..errors import NotFoundError
from ..models import Ability, ConditionTag, DamageType

logger = logging.getLogger("dm20-rules")


class Aura(BaseModel):
    """An active aura."""

    id: str = Field(default_factory=lambda: f"aura-{random_id(length=8).lower()}")
    owner_id: str = Field(min_length=1)
    spell_name: str = Field(min_length=1)
    radius: int = Field(ge=1, description="Radius in feet")
    duration: int | None = Field(default=None, ge=1, description="Remaining rounds; None = until removed")
    damage: str | None = Field(default=None, description="Damage dice per pulse, e.g. '3d8'")
    damage_type: DamageType | None = None
    healing: str | None = Field(default=None, description="Healing dice per pulse")
    effect: str | None = Field(default=None, description="Free-text effect shown when processed")
    condition: ConditionTag | None = None
    save_dc: int | None = Field(default=None, ge=1, le=30)
    save_ability: Ability | None = None
    half_on_save: bool = False
    affects_enemies: bool = True
    affects_allies: bool = False

    @field_validator("damage", "healing")
    @classmethod
    def _valid_dice(cls, value: str | None) -> str | None:
        if value is not None:
            parse_dice(value)
        return value

    @property
    def has_save(self) -> bool:
        return self.save_dc is not None and self.save_ability is not None

    def describe(self) -> str:
        parts = [f"{self.spell_name} [{self.id}] owner {self.owner_id}, {self.radius} ft"]
        if self.damage:
            parts.append(f"{self.damage} {self.damage_type.value if self.damage_type else ''}".rstrip())
        if self.healing:
            parts.append(f"heals {self.healing}")
        if self.condition:
            parts.append(f"inflicts {self.condition.value}")
        if self.has_save:
            parts.append(f"DC {self.save_dc} {self.save_ability.short} save")
        parts.append(f"{self.duration} rounds left" if self.duration is not None else "no duration")
        return ", ".join(parts)


class AuraTarget(BaseModel):
    target_id: str = Field(min_length=1)
    distance: float = Field(ge=0, description="Distance from the aura's owner in feet")
    save_modifier: int = 0


class ManualSaveRoll(BaseModel):
    target_id: str
    roll: int = Field(ge=1, le=20)


@dataclass
class AuraTargetOutcome:
    target_id: str
    distance: float
    in_range: bool
    save: D20Roll | None = None
    saved: bool | None = None
    damage: int = 0
    healing: int = 0
    condition: ConditionTag | None = None

    def describe(self) -> str:
        if not self.in_range:
            return f"{self.target_id}: out of range ({self.distance:g} ft)"
        parts = [f"{self.target_id} ({self.distance:g} ft)"]
        if self.save is not None:
            parts.append(f"save {self.save.describe()} {'succeeds' if self.saved else 'fails'}")
        if self.damage:
            parts.append(f"takes {self.damage} damage")
        if self.healing:
            parts.append(f"heals {self.healing}")
        if self.condition:
            parts.append(f"is {self.condition.value}")
        if len(parts) == 1:
            parts.append("unaffected")
        return ": ".join([parts[0], ", ".join(parts[1:])])

    def to_dict(self) -> dict:
        return {
            "target_id": self.target_id,
            "distance": self.distance,
            "in_range": self.in_range,
            "save_rolls": list(self.save.rolls) if self.save else None,
            "save_total": self.save.total if self.save else None,
            "saved": self.saved,
            "damage": self.damage,
            "healing": self.healing,
            "condition": self.condition.value if self.condition else None,
        }


@dataclass
class AuraProcessResult:
    aura: Aura
    outcomes: list[AuraTargetOutcome] = field(default_factory=list)
    damage_roll: DiceRoll | None = None
    healing_roll: DiceRoll | None = None
    expired: bool = False
    remaining: int | None = None

    @property
    def affected(self) -> list[AuraTargetOutcome]:
        return [o for o in self.outcomes if o.in_range]

    def describe(self) -> str:
        lines = [f"{self.aura.spell_name} pulses ({self.aura.radius} ft)"]
        if self.damage_roll is not None:
            lines.append(f"Damage: {self.damage_roll.describe()}")
        if self.healing_roll is not None:
            lines.append(f"Healing: {self.healing_roll.describe()}")
        if self.aura.effect:
            lines.append(f"Effect: {self.aura.effect}")
        lines.extend(f"  {o.describe()}" for o in self.outcomes)
        if self.expired:
            lines.append(f"{self.aura.spell_name} has ended")
        elif self.remaining is not None:
            lines.append(f"{self.remaining} rounds remaining")
        return "\n".join(lines)


class AuraManager:
    """Create, list, remove and process auras in a flat id -> Aura store."""

    def __init__(self, store: dict[str, Aura]) -> None:
        self.store = store

    def create(self, **fields) -> Aura:
        aura = Aura(**fields)
        self.store[aura.id] = aura
        logger.info(f"✨ Aura {aura.spell_name} ({aura.id}) created for {aura.owner_id}")
        return aura

    def get(self, aura_id: str) -> Aura:
        aura = self.store.get(aura_id)
        if aura is None:
            raise NotFoundError(f"Aura '{aura_id}' not found", identifier=aura_id)
        return aura

    def list(self, owner_id: str | None = None) -> list[Aura]:
        return [a for a in self.store.values() if owner_id is None or a.owner_id == owner_id]

    def remove(self, aura_id: str, reason: str | None = None) -> Aura:
        aura = self.get(aura_id)
        del self.store[aura_id]
        logger.info(f"✨ Aura {aura.spell_name} ({aura_id}) removed{f': {reason}' if reason else ''}")
        return aura

    def process(
        self,
        aura_id: str,
        targets: list[AuraTarget],
        decrement_duration: bool = True,
        manual_damage_rolls: list[int] | None = None,
        manual_healing_rolls: list[int] | None = None,
        manual_save_rolls: list[ManualSaveRoll] | None = None,
        rng: random.Random | None = None,
    ) -> AuraProcessResult:
        """Apply one pulse of the aura to the targets.

        Damage is full when there is no save or the save fails, halved
        (rounded down) on a success when ``half_on_save`` is set, and 0 on a
        success otherwise. The condition is only imposed when there is no
        save or the save fails.
        """
        aura = self.get(aura_id)
        result = AuraProcessResult(aura=aura)
        saves = {m.target_id: m.roll for m in manual_save_rolls or []}

        in_range = [t for t in targets if t.distance <= aura.radius]
        if in_range and aura.damage:
            result.damage_roll = roll_dice(aura.damage, rng=rng, manual_rolls=manual_damage_rolls)
        if in_range and aura.healing:
            result.healing_roll = roll_dice(aura.healing, rng=rng, manual_rolls=manual_healing_rolls)

        for target in targets:
            outcome = AuraTargetOutcome(
                target_id=target.target_id,
                distance=target.distance,
                in_range=target.distance <= aura.radius,
            )
            result.outcomes.append(outcome)
            if not outcome.in_range:
                continue

            if aura.has_save:
                outcome.save = roll_d20(
                    modifier=target.save_modifier,
                    manual_roll=saves.get(target.target_id),
                    rng=rng,
                )
                if outcome.save.is_critical:
                    outcome.saved = True
                elif outcome.save.is_fumble:
                    outcome.saved = False
                else:
                    outcome.saved = outcome.save.total >= aura.save_dc

            if result.damage_roll is not None:
                damage = result.damage_roll.total
                if outcome.saved:
                    damage = damage // 2 if aura.half_on_save else 0
                outcome.damage = max(0, damage)
            if result.healing_roll is not None:
                outcome.healing = max(0, result.healing_roll.total)
            if aura.condition is not None and not outcome.saved:
                outcome.condition = aura.condition

        if decrement_duration and aura.duration is not None:
            remaining = aura.duration - 1
            if remaining <= 0:
                result.expired = True
                del self.store[aura.id]
                logger.info(f"✨ Aura {aura.spell_name} ({aura.id}) expired")
            else:
                aura.duration = remaining
        result.remaining = None if result.expired else aura.duration
        return result
