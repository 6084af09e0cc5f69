"""
Concentration tracking for D&D 5e spellcasting.

This module enforces the D&D 5e concentration mechanic:
- A caster can only concentrate on one spell at a time.
- Starting a new concentration spell ends the previous one.
- Taking damage triggers a CON saving throw (DC = max(10, damage // 2)).
- Dropping to 0 HP or becoming incapacitated ends concentration.

The ConcentrationTracker is stateless: it operates on a store mapping caster
ids to ConcentrationState and returns result objects describing what
happened.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from pydantic import BaseModel, Field

from ..dice import D20Roll, RollMode, roll_d20


class ConcentrationState(BaseModel):
    """The spell a caster is concentrating on."""

    caster_id: str
    spell_name: str
    targets: list[str] = Field(default_factory=list)
    duration: int | None = Field(default=None, ge=1, description="Remaining rounds")
    started_round: int = 0

    def describe(self) -> str:
        text = self.spell_name
        if self.targets:
            text += f" on {', '.join(self.targets)}"
        if self.duration is not None:
            text += f" ({self.duration} rounds)"
        return text


@dataclass
class ConcentrationCheckResult:
    """Result of a concentration saving throw.

    Attributes:
        success: Whether the save succeeded (concentration maintained).
        roll: The d20 roll, including the CON save modifier.
        dc: The difficulty class of the save.
        spell_name: The spell the caster was concentrating on.
        broke: Whether concentration broke as a result.
        detail: Human-readable description of the result.
    """
    success: bool
    roll: D20Roll
    dc: int
    spell_name: str
    broke: bool
    detail: str

    @property
    def total(self) -> int:
        return self.roll.total


class ConcentrationTracker:
    """Stateless engine for D&D 5e concentration tracking.

    Typical workflow:
    1. Caster casts a concentration spell -> ``start()``
    2. Caster takes damage -> ``check()``
    3. Caster drops to 0 HP or is incapacitated -> ``end()``
    """

    @staticmethod
    def calculate_dc(damage: int) -> int:
        """Concentration save DC for a given amount of damage."""
        return max(10, damage // 2)

    @staticmethod
    def get(store: dict[str, ConcentrationState], caster_id: str) -> ConcentrationState | None:
        return store.get(caster_id)

    @staticmethod
    def start(
        store: dict[str, ConcentrationState],
        caster_id: str,
        spell_name: str,
        targets: list[str] | None = None,
        duration: int | None = None,
        current_round: int = 0,
    ) -> dict:
        """Begin concentrating on a spell, ending any previous one.

        Returns:
            A dict with ``spell_name``, ``previous_spell`` (or None) and
            ``state``.
        """
        previous = store.pop(caster_id, None)
        state = ConcentrationState(
            caster_id=caster_id,
            spell_name=spell_name,
            targets=list(targets or []),
            duration=duration,
            started_round=current_round,
        )
        store[caster_id] = state
        return {
            "spell_name": spell_name,
            "previous_spell": previous.spell_name if previous else None,
            "state": state,
        }

    @staticmethod
    def end(
        store: dict[str, ConcentrationState],
        caster_id: str,
        reason: str | None = None,
    ) -> dict:
        """End concentration.

        Returns:
            A dict with ``spell_name`` (None if not concentrating) and
            ``reason``.
        """
        previous = store.pop(caster_id, None)
        return {
            "spell_name": previous.spell_name if previous else None,
            "reason": reason,
        }

    @staticmethod
    def check(
        store: dict[str, ConcentrationState],
        caster_id: str,
        damage: int,
        con_save_modifier: int = 0,
        mode: RollMode = RollMode.NORMAL,
        manual_roll: int | None = None,
        manual_rolls: list[int] | None = None,
        rng: random.Random | None = None,
        caster_name: str | None = None,
    ) -> ConcentrationCheckResult | None:
        """Roll a concentration save after taking damage.

        A natural 20 always holds and a natural 1 always breaks, as with any
        saving throw.

        Returns:
            The result, or None if the caster is not concentrating.
        """
        state = store.get(caster_id)
        if state is None:
            return None

        name = caster_name or caster_id
        dc = ConcentrationTracker.calculate_dc(damage)
        roll = roll_d20(
            mode=mode,
            modifier=con_save_modifier,
            manual_roll=manual_roll,
            manual_rolls=manual_rolls,
            rng=rng,
        )
        if roll.is_critical:
            success = True
        elif roll.is_fumble:
            success = False
        else:
            success = roll.total >= dc

        if success:
            detail = (
                f"{name} maintains concentration on {state.spell_name}! "
                f"(CON save {roll.describe()} vs DC {dc})"
            )
        else:
            store.pop(caster_id, None)
            detail = (
                f"{name} loses concentration on {state.spell_name}! "
                f"(CON save {roll.describe()} vs DC {dc})"
            )

        return ConcentrationCheckResult(
            success=success,
            roll=roll,
            dc=dc,
            spell_name=state.spell_name,
            broke=not success,
            detail=detail,
        )
