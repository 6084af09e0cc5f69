"""
Death saving throws for creatures at 0 HP.

States: none -> rolling(successes, failures) -> stable | dead.

- total >= 10 is a success, anything lower a failure
- a natural 1 counts as two failures
- a natural 20 revives the creature at 1 HP and clears all progress
- three successes: stable, HP stays 0, no more rolls
- three failures: dead, no more rolls
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

from ..dice import D20Roll, RollMode, roll_d20
from ..errors import StateError

DEATH_SAVE_DC = 10


class DeathSaveStatus(str, Enum):
    NONE = "none"
    ROLLING = "rolling"
    STABLE = "stable"
    DEAD = "dead"


class DeathSaveState(BaseModel):
    """Progress of a dying creature. Only exists while HP is 0."""

    successes: int = Field(default=0, ge=0, le=3)
    failures: int = Field(default=0, ge=0, le=3)
    stable: bool = False
    dead: bool = False

    @property
    def status(self) -> DeathSaveStatus:
        if self.dead:
            return DeathSaveStatus.DEAD
        if self.stable:
            return DeathSaveStatus.STABLE
        return DeathSaveStatus.ROLLING

    def describe(self) -> str:
        if self.dead:
            return "DEAD"
        if self.stable:
            return "stable"
        successes = "●" * self.successes + "○" * (3 - self.successes)
        failures = "●" * self.failures + "○" * (3 - self.failures)
        return f"{successes} successes, {failures} failures"


@dataclass
class DeathSaveOutcome:
    """Result of one death saving throw.

    ``result`` is one of ``success``, ``failure``, ``critical_failure``,
    ``revived``, ``stable`` or ``dead``.
    """

    roll: D20Roll
    result: str
    state: DeathSaveState | None
    revived: bool = False

    @property
    def status(self) -> DeathSaveStatus:
        return self.state.status if self.state is not None else DeathSaveStatus.NONE


class DeathSaveTracker:
    """Stateless rules for death saves. Mutates the state it is given."""

    @staticmethod
    def roll(
        state: DeathSaveState | None,
        current_hp: int,
        name: str = "Creature",
        modifier: int = 0,
        mode: RollMode = RollMode.NORMAL,
        manual_roll: int | None = None,
        manual_rolls: list[int] | None = None,
        rng: random.Random | None = None,
    ) -> DeathSaveOutcome:
        """Roll a death save.

        Args:
            state: Current progress, or None if the creature just hit 0 HP.
            current_hp: The creature's HP. Must be 0.

        Returns:
            The outcome. On a natural 20 the returned state is None and the
            caller restores the creature to 1 HP.

        Raises:
            StateError: If HP is not 0 or the creature is already stable/dead.
        """
        if current_hp != 0:
            raise StateError(f"{name} is not at 0 HP (HP {current_hp}); no death save needed")
        state = state or DeathSaveState()
        if state.dead:
            raise StateError(f"{name} is already dead")
        if state.stable:
            raise StateError(f"{name} is already stable")

        roll = roll_d20(
            mode=mode,
            modifier=modifier,
            manual_roll=manual_roll,
            manual_rolls=manual_rolls,
            rng=rng,
        )

        if roll.is_critical:
            return DeathSaveOutcome(roll=roll, result="revived", state=None, revived=True)

        if roll.is_fumble:
            state.failures = min(3, state.failures + 2)
            result = "critical_failure"
        elif roll.total >= DEATH_SAVE_DC:
            state.successes = min(3, state.successes + 1)
            result = "success"
        else:
            state.failures = min(3, state.failures + 1)
            result = "failure"

        if state.failures >= 3:
            state.dead = True
            result = "dead"
        elif state.successes >= 3:
            state.stable = True
            result = "stable"

        return DeathSaveOutcome(roll=roll, result=result, state=state)

    @staticmethod
    def record_damage(state: DeathSaveState, critical: bool = False) -> DeathSaveState:
        """Damage taken at 0 HP costs one failure, two on a critical hit.

        A stable creature that takes damage starts dying again.
        """
        if state.dead:
            return state
        state.stable = False
        if state.successes >= 3:
            state.successes = 0
        state.failures = min(3, state.failures + (2 if critical else 1))
        if state.failures >= 3:
            state.dead = True
        return state
