"""
WorldState: the single owner of every in-memory key-space.

All engines receive the world (or one of its stores) explicitly; there is no
module-level mutable state.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from .combat.concentration import ConcentrationState
from .combat.conditions import ActiveCondition
from .combat.encounter import Encounter
from .magic.auras import Aura
from .repository import CharacterRepository, InMemoryCharacterRepository


@dataclass
class WorldState:
    """Encounters, conditions, concentration, auras and the shared RNG.

    Conditions and concentration are keyed by creature id (a participant id
    or a character id), so they outlive any single encounter. Death-save
    progress lives on encounter participants; spell slots live on the
    character records in ``repository``.
    """

    repository: CharacterRepository = field(default_factory=InMemoryCharacterRepository)
    seed: int | None = None
    rng: random.Random = field(init=False)
    encounters: dict[str, Encounter] = field(default_factory=dict)
    conditions: dict[str, list[ActiveCondition]] = field(default_factory=dict)
    concentration: dict[str, ConcentrationState] = field(default_factory=dict)
    auras: dict[str, Aura] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.rng = random.Random(self.seed)

    def conditions_for(self, target_id: str) -> list[ActiveCondition]:
        return self.conditions.setdefault(target_id, [])

    def reset(self) -> None:
        """Drop all in-memory state and reseed the RNG. The repository is kept."""
        self.encounters.clear()
        self.conditions.clear()
        self.concentration.clear()
        self.auras.clear()
        self.rng = random.Random(self.seed)
