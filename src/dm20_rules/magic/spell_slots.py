"""
Spell slot progression tables and slot management.

Slot pools are derived from a character's resolved class progression:

- full casters (wizard, sorcerer, cleric, druid, bard)
- half casters (paladin, ranger)
- third casters (custom classes only)
- pact casters (warlock): a separate Pact Magic pool, all slots one level
- non-casters (fighter, rogue, barbarian, monk)

Pools live on the character record and are written back through the
character repository after every change. Pact slots come back on any rest;
standard slots only on a long rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from ..errors import ResourceError, ValidationError
from ..models import (
    Character,
    ClassProgression,
    PactSlots,
    SlotCount,
    SpellSlotPool,
    SpellcastingTier,
    ordinal,
)
from ..repository import CharacterRepository, resolve_character

logger = logging.getLogger("dm20-rules")


# ---------------------------------------------------------------------------
# Progression tables (character level -> slots for spell levels 1..n)
# ---------------------------------------------------------------------------

FULL_CASTER_SLOTS: dict[int, list[int]] = {
    1: [2],
    2: [3],
    3: [4, 2],
    4: [4, 3],
    5: [4, 3, 2],
    6: [4, 3, 3],
    7: [4, 3, 3, 1],
    8: [4, 3, 3, 2],
    9: [4, 3, 3, 3, 1],
    10: [4, 3, 3, 3, 2],
    11: [4, 3, 3, 3, 2, 1],
    12: [4, 3, 3, 3, 2, 1],
    13: [4, 3, 3, 3, 2, 1, 1],
    14: [4, 3, 3, 3, 2, 1, 1],
    15: [4, 3, 3, 3, 2, 1, 1, 1],
    16: [4, 3, 3, 3, 2, 1, 1, 1],
    17: [4, 3, 3, 3, 2, 1, 1, 1, 1],
    18: [4, 3, 3, 3, 3, 1, 1, 1, 1],
    19: [4, 3, 3, 3, 3, 2, 1, 1, 1],
    20: [4, 3, 3, 3, 3, 2, 2, 1, 1],
}

HALF_CASTER_SLOTS: dict[int, list[int]] = {
    1: [],
    2: [2],
    3: [3],
    4: [3],
    5: [4, 2],
    6: [4, 2],
    7: [4, 3],
    8: [4, 3],
    9: [4, 3, 2],
    10: [4, 3, 2],
    11: [4, 3, 3],
    12: [4, 3, 3],
    13: [4, 3, 3, 1],
    14: [4, 3, 3, 1],
    15: [4, 3, 3, 2],
    16: [4, 3, 3, 2],
    17: [4, 3, 3, 3, 1],
    18: [4, 3, 3, 3, 1],
    19: [4, 3, 3, 3, 2],
    20: [4, 3, 3, 3, 2],
}

THIRD_CASTER_SLOTS: dict[int, list[int]] = {
    1: [],
    2: [],
    3: [2],
    4: [3],
    5: [3],
    6: [3],
    7: [4, 2],
    8: [4, 2],
    9: [4, 2],
    10: [4, 3],
    11: [4, 3],
    12: [4, 3],
    13: [4, 3, 2],
    14: [4, 3, 2],
    15: [4, 3, 2],
    16: [4, 3, 3],
    17: [4, 3, 3],
    18: [4, 3, 3],
    19: [4, 3, 3, 1],
    20: [4, 3, 3, 1],
}

# character level -> (number of pact slots, pact slot level)
PACT_MAGIC_SLOTS: dict[int, tuple[int, int]] = {
    1: (1, 1),
    2: (2, 1),
    3: (2, 2),
    4: (2, 2),
    5: (2, 3),
    6: (2, 3),
    7: (2, 4),
    8: (2, 4),
    9: (2, 5),
    10: (2, 5),
    11: (3, 5),
    12: (3, 5),
    13: (3, 5),
    14: (3, 5),
    15: (3, 5),
    16: (3, 5),
    17: (4, 5),
    18: (4, 5),
    19: (4, 5),
    20: (4, 5),
}

_TIER_TABLES: dict[SpellcastingTier, dict[int, list[int]]] = {
    SpellcastingTier.FULL: FULL_CASTER_SLOTS,
    SpellcastingTier.HALF: HALF_CASTER_SLOTS,
    SpellcastingTier.THIRD: THIRD_CASTER_SLOTS,
}


def slots_for(tier: SpellcastingTier, level: int) -> dict[int, int]:
    """Standard slot maxima (spell level -> count) for a tier at a level."""
    table = _TIER_TABLES.get(tier)
    counts = table[level] if table else []
    return {spell_level: counts[spell_level - 1] if spell_level <= len(counts) else 0 for spell_level in range(1, 10)}


def build_pool(progression: ClassProgression, level: int) -> SpellSlotPool:
    """A full pool for a class progression at a character level."""
    pool = SpellSlotPool(
        levels={lvl: SlotCount(current=n, max=n) for lvl, n in slots_for(progression.spellcasting, level).items()}
    )
    if progression.spellcasting == SpellcastingTier.PACT:
        count, slot_level = PACT_MAGIC_SLOTS[level]
        pool.pact = PactSlots(current=count, max=count, slot_level=slot_level)
    return pool


class RestKind(str, Enum):
    SHORT = "short"
    LONG = "long"


# ---------------------------------------------------------------------------
# Pool operations
# ---------------------------------------------------------------------------

def _check_level(level: int | None) -> int:
    if level is None or not 1 <= level <= 9:
        raise ValidationError("slot_level must be 1-9", field="slot_level")
    return level


def _check_count(count: int) -> int:
    if count < 1:
        raise ValidationError("count must be at least 1", field="count")
    return count


class SlotPoolEngine:
    """Stateless operations on a SpellSlotPool. Failed operations leave it untouched."""

    @staticmethod
    def expend(pool: SpellSlotPool, level: int, count: int = 1, owner: str = "Character") -> str:
        _check_level(level)
        _check_count(count)
        slot = pool.levels[level]
        if slot.max == 0 and slot.current == 0:
            raise ResourceError(f"{owner} has no {ordinal(level)} level spell slots")
        if slot.current < count:
            raise ResourceError(
                f"Not enough {ordinal(level)} level spell slots. Have {slot.current}, need {count}"
            )
        slot.current -= count
        return f"Expended {count} {ordinal(level)} level slot{'s' if count != 1 else ''} ({slot.current}/{slot.max} left)"

    @staticmethod
    def expend_pact(pool: SpellSlotPool, count: int = 1, owner: str = "Character") -> str:
        _check_count(count)
        if pool.pact is None or pool.pact.max == 0 and pool.pact.current == 0:
            raise ResourceError(f"{owner} does not have pact magic slots")
        if pool.pact.current < count:
            raise ResourceError(
                f"Not enough pact magic slots. Have {pool.pact.current}, need {count}"
            )
        pool.pact.current -= count
        return (
            f"Expended {count} pact slot{'s' if count != 1 else ''} "
            f"({ordinal(pool.pact.slot_level)} level, {pool.pact.current}/{pool.pact.max} left)"
        )

    @staticmethod
    def restore(pool: SpellSlotPool, level: int | None = None, count: int | None = None) -> str:
        """Restore slots at one level, or every level and the pact pool when ``level`` is None."""
        if level is None:
            for slot in pool.levels.values():
                slot.current = max(slot.current, slot.max)
            if pool.pact is not None:
                pool.pact.current = max(pool.pact.current, pool.pact.max)
            return "All spell slots restored"
        _check_level(level)
        slot = pool.levels[level]
        amount = slot.max if count is None else _check_count(count)
        slot.current = min(slot.max, slot.current + amount)
        return f"{ordinal(level)} level slots: {slot.current}/{slot.max}"

    @staticmethod
    def restore_pact(pool: SpellSlotPool, count: int | None = None, owner: str = "Character") -> str:
        if pool.pact is None:
            raise ResourceError(f"{owner} does not have pact magic slots")
        amount = pool.pact.max if count is None else _check_count(count)
        pool.pact.current = min(pool.pact.max, pool.pact.current + amount)
        return f"Pact slots: {pool.pact.current}/{pool.pact.max}"

    @staticmethod
    def set_slots(pool: SpellSlotPool, slots: dict[str, dict[str, int]]) -> str:
        """DM override. Keys are spell levels ``"1"``-``"9"`` or ``"pact"``.

        Values hold ``current`` and optionally ``max`` (and ``slot_level``
        for the pact pool). Values may exceed the computed maximum.
        """
        if not slots:
            raise ValidationError("slots must not be empty", field="slots")
        staged: list[tuple[str, dict[str, int]]] = []
        for key, value in slots.items():
            if key != "pact":
                try:
                    _check_level(int(key))
                except ValueError as e:
                    raise ValidationError(f"Unknown slot key {key!r}", field="slots") from e
            current = value.get("current")
            if current is None or current < 0 or value.get("max", 0) < 0:
                raise ValidationError(f"Slot {key!r} needs a non-negative 'current'", field="slots")
            staged.append((key, value))

        changes = []
        for key, value in staged:
            current = value["current"]
            if key == "pact":
                existing = pool.pact or PactSlots(slot_level=5)
                slot_level = value.get("slot_level", existing.slot_level)
                maximum = value.get("max", max(existing.max, current))
                pool.pact = PactSlots(current=current, max=maximum, slot_level=slot_level)
                changes.append(f"pact {current}/{maximum}")
            else:
                slot = pool.levels[int(key)]
                slot.max = value.get("max", max(slot.max, current))
                slot.current = current
                changes.append(f"{ordinal(int(key))} {slot.current}/{slot.max}")
        return "Set " + ", ".join(changes)

    @staticmethod
    def rest(pool: SpellSlotPool, kind: RestKind) -> str:
        if kind == RestKind.LONG:
            SlotPoolEngine.restore(pool)
            return "Long rest: all spell slots restored"
        if pool.pact is not None:
            pool.pact.current = max(pool.pact.current, pool.pact.max)
            return "Short rest: pact slots restored"
        return "Short rest: no pact slots to restore"

    @staticmethod
    def render(pool: SpellSlotPool) -> str:
        """Text view: ``●○`` for standard slots, ``◆◇`` for pact slots."""
        lines = []
        for level in range(1, 10):
            slot = pool.levels[level]
            if slot.max == 0 and slot.current == 0:
                continue
            filled = "●" * slot.current
            empty = "○" * max(0, slot.max - slot.current)
            lines.append(f"{ordinal(level):<4} {filled}{empty} ({slot.current}/{slot.max})")
        if pool.pact is not None and (pool.pact.max or pool.pact.current):
            filled = "◆" * pool.pact.current
            empty = "◇" * max(0, pool.pact.max - pool.pact.current)
            lines.append(
                f"Pact ({ordinal(pool.pact.slot_level)}) {filled}{empty} ({pool.pact.current}/{pool.pact.max})"
            )
        return "\n".join(lines) if lines else "No spell slots available"


# ---------------------------------------------------------------------------
# Repository-backed manager
# ---------------------------------------------------------------------------

class SlotOperation(str, Enum):
    VIEW = "view"
    EXPEND = "expend"
    RESTORE = "restore"
    SET = "set"


@dataclass
class SlotOperationResult:
    character: Character
    pool: SpellSlotPool
    message: str
    warnings: list[str] = field(default_factory=list)

    def render(self) -> str:
        header = f"Spell Slots: {self.character.name} ({self.character.class_name} {self.character.level})"
        return f"{header}\n{self.message}\n{SlotPoolEngine.render(self.pool)}"

    def to_dict(self) -> dict:
        return {
            "character_id": self.character.id,
            "character_name": self.character.name,
            "message": self.message,
            "slots": {
                str(level): slot.model_dump() for level, slot in self.pool.levels.items() if slot.max or slot.current
            },
            "pact": self.pool.pact.model_dump() if self.pool.pact else None,
        }


class SpellSlotManager:
    """Spell slot operations against characters in a repository.

    Each operation loads the character, initialises its pool from its class
    progression on first use, applies the change to a copy and writes it
    back. Failed operations write nothing.
    """

    def __init__(self, repository: CharacterRepository) -> None:
        self.repository = repository

    def _load(self, character_id: str | None, character_name: str | None) -> tuple[Character, SpellSlotPool, list[str]]:
        lookup = resolve_character(self.repository, character_id, character_name)
        character = lookup.character
        if character.spell_slots is not None:
            pool = character.spell_slots.model_copy(deep=True)
        else:
            pool = build_pool(character.progression, character.level)
        return character, pool, lookup.warnings

    def _save(self, character: Character, pool: SpellSlotPool) -> Character:
        return self.repository.update(character.id, {"spell_slots": pool.model_dump()})

    def view(self, character_id: str | None = None, character_name: str | None = None) -> SlotOperationResult:
        character, pool, warnings = self._load(character_id, character_name)
        if character.spell_slots is None:
            character = self._save(character, pool)
        return SlotOperationResult(character, pool, "Current spell slots", warnings)

    def expend(
        self,
        character_id: str | None = None,
        character_name: str | None = None,
        slot_level: int | None = None,
        count: int = 1,
        pact_magic: bool = False,
    ) -> SlotOperationResult:
        character, pool, warnings = self._load(character_id, character_name)
        if pact_magic:
            message = SlotPoolEngine.expend_pact(pool, count, owner=character.name)
        else:
            if slot_level is None:
                raise ValidationError("slot_level is required unless pact_magic is set", field="slot_level")
            message = SlotPoolEngine.expend(pool, slot_level, count, owner=character.name)
        character = self._save(character, pool)
        logger.info(f"🔮 {character.name}: {message}")
        return SlotOperationResult(character, pool, message, warnings)

    def restore(
        self,
        character_id: str | None = None,
        character_name: str | None = None,
        slot_level: int | None = None,
        count: int | None = None,
        pact_magic: bool = False,
    ) -> SlotOperationResult:
        character, pool, warnings = self._load(character_id, character_name)
        if pact_magic:
            message = SlotPoolEngine.restore_pact(pool, count, owner=character.name)
        else:
            message = SlotPoolEngine.restore(pool, slot_level, count)
        character = self._save(character, pool)
        return SlotOperationResult(character, pool, message, warnings)

    def set(
        self,
        slots: dict[str, dict[str, int]],
        character_id: str | None = None,
        character_name: str | None = None,
    ) -> SlotOperationResult:
        character, pool, warnings = self._load(character_id, character_name)
        message = SlotPoolEngine.set_slots(pool, slots)
        character = self._save(character, pool)
        logger.info(f"🔮 DM override for {character.name}: {message}")
        return SlotOperationResult(character, pool, message, warnings)

    def take_rest(
        self,
        kind: RestKind,
        character_id: str | None = None,
        character_name: str | None = None,
    ) -> SlotOperationResult:
        character, pool, warnings = self._load(character_id, character_name)
        message = SlotPoolEngine.rest(pool, kind)
        character = self._save(character, pool)
        return SlotOperationResult(character, pool, message, warnings)
