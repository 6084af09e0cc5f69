"""
Encounter and turn orchestration.

An Encounter owns its participants (point-in-time copies of characters or
explicit stat blocks), their initiative order, the round/turn cursor and the
terrain grid. EncounterManager performs every mutation against a
WorldState: creation with initiative, turn advancement, damage, healing,
death saves and movement.

Nothing here writes back to the character repository. Encounter HP is
isolated from the persisted character record.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from shortuuid import random as random_id

from ..dice import RollMode
from ..errors import NotFoundError, StateError, ValidationError
from ..models import Ability, ConditionTag, DamageType, Lighting, Size
from ..repository import resolve_character
from ..spatial.positioning import Position, measure_distance
from .concentration import ConcentrationTracker
from .conditions import ActiveCondition, ConditionEngine, EffectiveStats
from .death_saves import DeathSaveOutcome, DeathSaveState, DeathSaveTracker
from .props import Prop, PropEngine

if TYPE_CHECKING:
    from ..world import WorldState

logger = logging.getLogger("dm20-rules")


# ---------------------------------------------------------------------------
# Terrain
# ---------------------------------------------------------------------------

def _parse_cell(value: Any) -> tuple[int, int]:
    if isinstance(value, str):
        parts = value.replace(" ", "").split(",")
        if len(parts) != 2:
            raise ValueError(f"cell must look like 'x,y', got {value!r}")
        return int(parts[0]), int(parts[1])
    if isinstance(value, dict):
        return int(value["x"]), int(value["y"])
    x, y = value
    return int(x), int(y)


class Hazard(BaseModel):
    """A dangerous square (fire, acid pool, spikes...)."""

    position: tuple[int, int]
    type: str = Field(min_length=1)
    damage: str | None = Field(default=None, description="Damage dice when entered")
    dc: int | None = Field(default=None, ge=1, le=30)

    @field_validator("position", mode="before")
    @classmethod
    def _cell(cls, value: Any) -> tuple[int, int]:
        return _parse_cell(value)


class Terrain(BaseModel):
    """Battle grid: size plus wall, difficult-terrain, water and hazard squares.

    Cells are accepted as ``"x,y"`` strings, ``[x, y]`` pairs or
    ``{"x": .., "y": ..}`` objects.
    """

    width: int = Field(default=20, ge=5, le=100)
    height: int = Field(default=20, ge=5, le=100)
    obstacles: list[tuple[int, int]] = Field(default_factory=list)
    difficult_terrain: list[tuple[int, int]] = Field(default_factory=list)
    water: list[tuple[int, int]] = Field(default_factory=list)
    hazards: list[Hazard] = Field(default_factory=list)

    @field_validator("obstacles", "difficult_terrain", "water", mode="before")
    @classmethod
    def _cells(cls, value: Any) -> list[tuple[int, int]]:
        return [_parse_cell(v) for v in value or []]

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def is_wall(self, x: int, y: int) -> bool:
        return (x, y) in self.obstacles

    def is_difficult(self, x: int, y: int) -> bool:
        return (x, y) in self.difficult_terrain or (x, y) in self.water

    def hazard_at(self, x: int, y: int) -> Hazard | None:
        for hazard in self.hazards:
            if hazard.position == (x, y):
                return hazard
        return None


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

class ParticipantSpec(BaseModel):
    """A participant given as explicit data (typically a monster)."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    name: str = Field(min_length=1)
    hp: int = Field(ge=0)
    max_hp: int | None = Field(default=None, ge=1)
    ac: int = Field(default=10, ge=0)
    speed: int = Field(default=30, ge=0)
    initiative_bonus: int = 0
    initiative: int | None = Field(default=None, description="Pre-rolled initiative")
    position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    is_enemy: bool = False
    size: Size = Size.MEDIUM
    resistances: list[DamageType] = Field(default_factory=list)
    immunities: list[DamageType] = Field(default_factory=list)
    vulnerabilities: list[DamageType] = Field(default_factory=list)
    condition_immunities: list[ConditionTag] = Field(default_factory=list)


class ParticipantRef(BaseModel):
    """A participant resolved from the character repository."""

    model_config = ConfigDict(extra="forbid")

    character_id: str | None = None
    character_name: str | None = None
    id: str | None = Field(default=None, description="Participant id; defaults to the character id")
    initiative: int | None = Field(default=None, description="Pre-rolled initiative")
    position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    is_enemy: bool = False

    @model_validator(mode="after")
    def _needs_reference(self) -> "ParticipantRef":
        if not self.character_id and not self.character_name:
            raise ValueError("character_id or character_name is required")
        return self


ParticipantInput = ParticipantSpec | ParticipantRef


class TurnState(BaseModel):
    """What a participant has spent since the start of their latest turn.

    Reset when their next turn begins, so a reaction spent on someone
    else's turn stays spent until then, and Dodge lasts until then too.
    """

    action_used: bool = False
    bonus_action_used: bool = False
    reaction_used: bool = False
    movement_used: float = 0.0
    dashed: bool = False
    disengaged: bool = False
    dodging: bool = False


class Participant(BaseModel):
    """A combatant inside an encounter."""

    id: str
    name: str
    hp: int = Field(ge=0)
    max_hp: int = Field(ge=1)
    ac: int = 10
    speed: int = 30
    initiative_bonus: int = 0
    initiative: int = 0
    position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    is_enemy: bool = False
    size: Size = Size.MEDIUM
    resistances: list[DamageType] = Field(default_factory=list)
    immunities: list[DamageType] = Field(default_factory=list)
    vulnerabilities: list[DamageType] = Field(default_factory=list)
    condition_immunities: list[ConditionTag] = Field(default_factory=list)
    character_id: str | None = None
    surprised: bool = False
    death_saves: DeathSaveState | None = None
    turn: TurnState = Field(default_factory=TurnState)

    @property
    def is_dead(self) -> bool:
        if self.death_saves is not None and self.death_saves.dead:
            return True
        return self.is_enemy and self.hp <= 0

    @property
    def is_stable(self) -> bool:
        return self.hp == 0 and self.death_saves is not None and self.death_saves.stable

    @property
    def is_dying(self) -> bool:
        return self.hp == 0 and not self.is_dead and not self.is_stable

    @property
    def bloodied(self) -> bool:
        return 0 < self.hp <= self.max_hp / 2


class Encounter(BaseModel):
    """A combat encounter. Participants are kept in initiative order."""

    id: str = Field(default_factory=lambda: random_id(length=8))
    participants: list[Participant] = Field(default_factory=list)
    round: int = 1
    turn_index: int = 0
    terrain: Terrain = Field(default_factory=Terrain)
    props: list[Prop] = Field(default_factory=list)
    seed: int | None = None
    lighting: Lighting = Lighting.BRIGHT

    @property
    def current(self) -> Participant:
        return self.participants[self.turn_index]

    def participant(self, participant_id: str) -> Participant:
        for p in self.participants:
            if p.id == participant_id:
                return p
        lowered = participant_id.lower()
        for p in self.participants:
            if p.name.lower() == lowered:
                return p
        raise NotFoundError(
            f"Participant '{participant_id}' not found in encounter {self.id}",
            identifier=participant_id,
        )

    def initiative_order(self) -> str:
        lines = []
        for i, p in enumerate(self.participants):
            marker = "▶" if i == self.turn_index else " "
            status = ""
            if p.is_dead:
                status = " [dead]"
            elif p.is_stable:
                status = " [stable]"
            elif p.hp == 0:
                status = " [dying]"
            side = "enemy" if p.is_enemy else "ally"
            lines.append(f"{marker} {p.initiative:>2}  {p.name} ({side}) HP {p.hp}/{p.max_hp}{status}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class TurnAdvance:
    encounter: Encounter
    previous: Participant
    current: Participant
    new_round: bool
    skipped: list[str] = field(default_factory=list)
    expired_conditions: list[str] = field(default_factory=list)
    death_save_reminders: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def describe(self) -> str:
        lines = []
        if self.new_round:
            lines.append(f"=== Round {self.encounter.round} ===")
        lines.append(f"{self.previous.name}'s turn ends.")
        lines.extend(self.expired_conditions)
        lines.extend(self.notes)
        if self.skipped:
            lines.append(f"Skipped: {', '.join(self.skipped)}")
        lines.append(f"▶ Round {self.encounter.round}: {self.current.name}'s turn")
        for reminder in self.death_save_reminders:
            lines.append(f"💀 {reminder}")
        lines.append("")
        lines.append("Initiative order:")
        lines.append(self.encounter.initiative_order())
        return "\n".join(lines)


@dataclass
class DamageResult:
    participant: Participant
    raw_damage: int
    damage: int
    damage_type: DamageType | None
    hp_before: int
    resisted: bool = False
    vulnerable: bool = False
    immune: bool = False
    dropped_to_zero: bool = False
    killed: bool = False
    concentration_dc: int | None = None
    concentration_broken: str | None = None
    notes: list[str] = field(default_factory=list)

    def describe(self) -> str:
        p = self.participant
        type_text = f" {self.damage_type.value}" if self.damage_type else ""
        text = f"{p.name} takes {self.damage}{type_text} damage"
        if self.immune:
            text += " (immune)"
        elif self.resisted:
            text += f" (resisted, {self.raw_damage} halved)"
        elif self.vulnerable:
            text += f" (vulnerable, {self.raw_damage} doubled)"
        lines = [f"{text}. HP {self.hp_before} -> {p.hp}/{p.max_hp}"]
        if self.killed:
            lines.append(f"💀 {p.name} is dead!")
        elif self.dropped_to_zero:
            lines.append(f"{p.name} drops to 0 HP and falls unconscious. Death saves begin.")
        lines.extend(self.notes)
        if self.concentration_broken:
            lines.append(f"{p.name} loses concentration on {self.concentration_broken}.")
        elif self.concentration_dc is not None:
            lines.append(f"{p.name} must make a DC {self.concentration_dc} concentration save.")
        return "\n".join(lines)


@dataclass
class HealResult:
    participant: Participant
    amount: int
    hp_before: int
    revived: bool = False

    def describe(self) -> str:
        p = self.participant
        text = f"{p.name} heals {p.hp - self.hp_before} HP. HP {self.hp_before} -> {p.hp}/{p.max_hp}"
        if self.revived:
            text += f"\n{p.name} regains consciousness."
        return text


@dataclass
class MoveResult:
    participant: Participant
    from_position: Position
    to_position: Position
    distance_feet: float
    cost_feet: float
    speed: int
    remaining_feet: float = 0.0
    difficult_squares: int = 0
    hazards: list[str] = field(default_factory=list)
    opportunity_attacks: list[str] = field(default_factory=list)

    def describe(self) -> str:
        p = self.participant
        text = (
            f"{p.name} moves {self.from_position} -> {self.to_position}: "
            f"{self.cost_feet:g} ft of {self.speed} ft"
        )
        if self.difficult_squares:
            text += f" ({self.difficult_squares} difficult square(s))"
        if p.turn.movement_used:
            text += f", {self.remaining_feet:g} ft left"
        for hazard in self.hazards:
            text += f"\n⚠ {hazard}"
        for name in self.opportunity_attacks:
            text += f"\n🗡️ {name} can make an opportunity attack against {p.name}"
        return text


# ---------------------------------------------------------------------------
# Geometry helper
# ---------------------------------------------------------------------------

def _bresenham_line(x0: int, y0: int, x1: int, y1: int) -> list[tuple[int, int]]:
    """Return a list of grid cells along a straight line from (x0,y0) to (x1,y1).

    The result includes both endpoints.
    """
    points: list[tuple[int, int]] = []

    dx = abs(x1 - x0)
    dy = abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    err = dx - dy

    cx, cy = x0, y0

    while True:
        points.append((cx, cy))
        if cx == x1 and cy == y1:
            break
        e2 = 2 * err
        if e2 > -dy:
            err -= dy
            cx += sx
        if e2 < dx:
            err += dx
            cy += sy

    return points


def apply_damage_modifiers(
    raw_damage: int,
    damage_type: DamageType | None,
    resistances: list[DamageType],
    immunities: list[DamageType],
    vulnerabilities: list[DamageType],
    resist_all: bool = False,
) -> tuple[int, bool, bool, bool]:
    """Apply resistance, vulnerability, and immunity to raw damage.

    Per 5e rules:
    - Immunity: damage becomes 0
    - Resistance: damage is halved (floor)
    - Vulnerability: damage is doubled
    - If both resistance and vulnerability apply: they cancel out

    Returns:
        Tuple of (final_damage, resistance_applied, vulnerability_applied, immunity_applied).
    """
    if damage_type is not None and damage_type in immunities:
        return 0, False, False, True

    has_resistance = resist_all or (damage_type is not None and damage_type in resistances)
    has_vulnerability = damage_type is not None and damage_type in vulnerabilities

    if has_resistance and has_vulnerability:
        return raw_damage, False, False, False
    if has_resistance:
        return raw_damage // 2, True, False, False
    if has_vulnerability:
        return raw_damage * 2, False, True, False
    return raw_damage, False, False, False


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class EncounterManager:
    """All encounter operations, performed against a WorldState."""

    def __init__(self, world: "WorldState") -> None:
        self.world = world

    # -----------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------

    def get(self, encounter_id: str) -> Encounter:
        encounter = self.world.encounters.get(encounter_id)
        if encounter is None:
            raise NotFoundError(f"Encounter '{encounter_id}' not found", identifier=encounter_id)
        return encounter

    def conditions_of(self, participant: Participant) -> list[ActiveCondition]:
        return self.world.conditions_for(participant.id)

    def effective_stats(self, participant: Participant) -> EffectiveStats:
        return ConditionEngine.compute_effective_stats(
            participant.hp,
            participant.max_hp,
            participant.speed,
            participant.ac,
            self.conditions_of(participant),
        )

    # -----------------------------------------------------------------
    # Creation
    # -----------------------------------------------------------------

    def _resolve(self, entry: ParticipantInput, warnings: list[str]) -> Participant:
        if isinstance(entry, ParticipantSpec):
            data = entry.model_dump(exclude={"initiative", "max_hp"})
            data["id"] = entry.id or random_id(length=8)
            data["max_hp"] = entry.max_hp or max(entry.hp, 1)
            return Participant(**data)

        lookup = resolve_character(self.world.repository, entry.character_id, entry.character_name)
        warnings.extend(lookup.warnings)
        character = lookup.character
        return Participant(
            id=entry.id or character.id,
            name=character.name,
            hp=character.hit_points_current,
            max_hp=character.hit_points_max,
            ac=character.armor_class,
            speed=character.speed,
            initiative_bonus=character.ability_modifier(Ability.DEXTERITY),
            position=entry.position,
            is_enemy=entry.is_enemy,
            size=character.size,
            resistances=list(character.damage_resistances),
            immunities=list(character.damage_immunities),
            vulnerabilities=list(character.damage_vulnerabilities),
            condition_immunities=list(character.condition_immunities),
            character_id=character.id,
        )

    def create(
        self,
        participants: list[ParticipantInput],
        terrain: Terrain | None = None,
        seed: int | None = None,
        lighting: Lighting = Lighting.BRIGHT,
        surprise: list[str] | None = None,
    ) -> tuple[Encounter, list[str]]:
        """Create an encounter and roll initiative.

        Initiative is d20 + bonus (unless pre-rolled), sorted descending;
        ties keep the order participants were given in. A seed makes the
        rolls reproducible.

        Returns:
            The encounter and any name-lookup warnings.

        Raises:
            ValidationError: On an empty roster, duplicate ids or positions
                off the grid.
            NotFoundError: If a referenced character does not exist.
        """
        if not participants:
            raise ValidationError("An encounter needs at least one participant", field="participants")
        terrain = terrain or Terrain()
        warnings: list[str] = []
        rng = random.Random(seed) if seed is not None else self.world.rng

        resolved: list[Participant] = []
        seen: set[str] = set()
        for entry in participants:
            participant = self._resolve(entry, warnings)
            if participant.id in seen:
                raise ValidationError(f"Duplicate participant id '{participant.id}'", field="participants")
            seen.add(participant.id)
            cx, cy = participant.position.cell()
            if not terrain.in_bounds(cx, cy):
                raise ValidationError(
                    f"{participant.name} at {participant.position} is outside the "
                    f"{terrain.width}x{terrain.height} grid",
                    field="participants",
                )
            participant.initiative = (
                entry.initiative
                if entry.initiative is not None
                else rng.randint(1, 20) + participant.initiative_bonus
            )
            resolved.append(participant)

        for participant_id in surprise or []:
            matches = [p for p in resolved if p.id == participant_id]
            if not matches:
                raise NotFoundError(f"Surprised participant '{participant_id}' not found", identifier=participant_id)
            matches[0].surprised = True

        resolved.sort(key=lambda p: -p.initiative)
        encounter = Encounter(
            participants=resolved,
            terrain=terrain,
            seed=seed,
            lighting=lighting,
        )
        for p in encounter.participants:
            if p.hp == 0 and not p.is_enemy:
                p.death_saves = DeathSaveState()
                ConditionEngine.add(self.conditions_of(p), p.id, ConditionTag.UNCONSCIOUS)

        for index, p in enumerate(encounter.participants):
            if self._skip_reason(encounter, p) is None:
                encounter.turn_index = index
                break

        self.world.encounters[encounter.id] = encounter
        logger.info(f"⚔️ Encounter {encounter.id} created with {len(resolved)} participants")
        return encounter, warnings

    def end(self, encounter_id: str) -> Encounter:
        encounter = self.get(encounter_id)
        del self.world.encounters[encounter_id]
        logger.info(f"⚔️ Encounter {encounter_id} ended after {encounter.round} round(s)")
        return encounter

    # -----------------------------------------------------------------
    # Turns
    # -----------------------------------------------------------------

    def _skip_reason(self, encounter: Encounter, participant: Participant) -> str | None:
        if participant.is_dead:
            return "dead"
        if participant.is_stable:
            return "stable"
        if participant.surprised and encounter.round == 1:
            return "surprised"
        return None

    def _death_save_reminder(self, participant: Participant) -> str:
        state = participant.death_saves or DeathSaveState()
        return (
            f"{participant.name} is dying: roll a death save "
            f"({state.successes} successes, {state.failures} failures)"
        )

    def advance_turn(self, encounter_id: str) -> TurnAdvance:
        """End the current turn and move to the next participant who can act.

        Dead and stable participants are skipped. Wrapping past the end of
        the order starts a new round. Round-counted conditions of the
        participant whose turn ends tick down.

        Raises:
            NotFoundError: Unknown encounter.
            StateError: Nobody left who can act.
        """
        encounter = self.get(encounter_id)
        if all(p.is_dead or p.is_stable for p in encounter.participants):
            raise StateError(f"No participant in encounter {encounter_id} can act")

        previous = encounter.current
        result_expired: list[str] = []
        notes: list[str] = []
        for expired in ConditionEngine.tick(self.conditions_of(previous)):
            result_expired.append(f"{previous.name}'s {expired.condition.value} has worn off.")

        state = ConcentrationTracker.get(self.world.concentration, previous.id)
        if state is not None and state.duration is not None:
            state.duration -= 1
            if state.duration <= 0:
                ConcentrationTracker.end(self.world.concentration, previous.id, reason="duration expired")
                notes.append(f"{previous.name}'s {state.spell_name} ends (duration expired).")

        new_round = False
        skipped: list[str] = []
        index = encounter.turn_index
        for _ in range(len(encounter.participants) * 2):
            index += 1
            if index >= len(encounter.participants):
                index = 0
                encounter.round += 1
                new_round = True
            candidate = encounter.participants[index]
            reason = self._skip_reason(encounter, candidate)
            if reason is None:
                break
            skipped.append(f"{candidate.name} ({reason})")
        encounter.turn_index = index
        current = encounter.current
        current.turn = TurnState()

        reminders: list[str] = []
        if new_round:
            reminders = [self._death_save_reminder(p) for p in encounter.participants if p.is_dying]
        if current.is_dying and not new_round:
            reminders.append(self._death_save_reminder(current))

        logger.debug(f"⏭️ Encounter {encounter.id}: round {encounter.round}, {current.name}'s turn")
        return TurnAdvance(
            encounter=encounter,
            previous=previous,
            current=current,
            new_round=new_round,
            skipped=skipped,
            expired_conditions=result_expired,
            death_save_reminders=reminders,
            notes=notes,
        )

    # -----------------------------------------------------------------
    # Hit points
    # -----------------------------------------------------------------

    def apply_damage(
        self,
        encounter_id: str,
        participant_id: str,
        amount: int,
        damage_type: DamageType | None = None,
        critical: bool = False,
    ) -> DamageResult:
        """Deal damage to a participant.

        Allies dropped to 0 HP fall unconscious and start death saves;
        enemies dropped to 0 die. Damage at 0 HP costs death-save failures,
        and damage at 0 HP that reaches the HP maximum kills outright.
        """
        if amount < 0:
            raise ValidationError("Damage cannot be negative", field="amount")
        encounter = self.get(encounter_id)
        p = encounter.participant(participant_id)
        if p.is_dead:
            raise StateError(f"{p.name} is already dead")

        conditions = self.conditions_of(p)
        final, resisted, vulnerable, immune = apply_damage_modifiers(
            amount,
            damage_type,
            p.resistances,
            p.immunities,
            p.vulnerabilities,
            resist_all=ConditionEngine.has(conditions, ConditionTag.PETRIFIED),
        )
        result = DamageResult(
            participant=p,
            raw_damage=amount,
            damage=final,
            damage_type=damage_type,
            hp_before=p.hp,
            resisted=resisted,
            vulnerable=vulnerable,
            immune=immune,
        )
        if final == 0:
            return result

        if p.hp == 0:
            state = p.death_saves or DeathSaveState()
            if final >= p.max_hp:
                state.dead = True
                result.notes.append("Massive damage: instant death.")
            else:
                DeathSaveTracker.record_damage(state, critical=critical)
                result.notes.append(
                    f"Damage at 0 HP: {2 if critical else 1} death save failure(s) "
                    f"({state.failures}/3)."
                )
            p.death_saves = state
            result.killed = state.dead
            return result

        overflow = final - p.hp
        p.hp = max(0, p.hp - final)
        if p.hp == 0:
            result.dropped_to_zero = True
            if p.is_enemy:
                result.killed = True
            elif overflow >= p.max_hp:
                p.death_saves = DeathSaveState(dead=True)
                result.killed = True
                result.notes.append("Massive damage: instant death.")
            else:
                p.death_saves = DeathSaveState()
                ConditionEngine.add(conditions, p.id, ConditionTag.UNCONSCIOUS)
            ended = ConcentrationTracker.end(self.world.concentration, p.id, reason="dropped to 0 HP")
            result.concentration_broken = ended["spell_name"]
        elif ConcentrationTracker.get(self.world.concentration, p.id) is not None:
            result.concentration_dc = ConcentrationTracker.calculate_dc(final)

        logger.debug(f"🗡️ {p.name} took {final} damage ({result.hp_before} -> {p.hp})")
        return result

    def heal(self, encounter_id: str, participant_id: str, amount: int) -> HealResult:
        """Restore HP up to the maximum. Healing from 0 HP ends dying."""
        if amount < 0:
            raise ValidationError("Healing cannot be negative", field="amount")
        encounter = self.get(encounter_id)
        p = encounter.participant(participant_id)
        if p.is_dead:
            raise StateError(f"{p.name} is dead and cannot be healed")

        before = p.hp
        p.hp = min(p.max_hp, p.hp + amount)
        result = HealResult(participant=p, amount=amount, hp_before=before)
        if before == 0 and p.hp > 0:
            p.death_saves = None
            ConditionEngine.remove(self.conditions_of(p), p.id, ConditionTag.UNCONSCIOUS)
            result.revived = True
        return result

    def roll_death_save(
        self,
        encounter_id: str,
        participant_id: str,
        modifier: int = 0,
        mode: RollMode = RollMode.NORMAL,
        manual_roll: int | None = None,
        manual_rolls: list[int] | None = None,
    ) -> tuple[Participant, DeathSaveOutcome]:
        """Roll a death save for a participant at 0 HP.

        A natural 20 brings them back at 1 HP, clears their progress and
        removes ``unconscious``.
        """
        encounter = self.get(encounter_id)
        p = encounter.participant(participant_id)
        if p.is_enemy and p.hp <= 0:
            raise StateError(f"{p.name} is already dead")

        outcome = DeathSaveTracker.roll(
            p.death_saves,
            p.hp,
            name=p.name,
            modifier=modifier,
            mode=mode,
            manual_roll=manual_roll,
            manual_rolls=manual_rolls,
            rng=self.world.rng,
        )
        if outcome.revived:
            p.hp = 1
            p.death_saves = None
            ConditionEngine.remove(self.conditions_of(p), p.id, ConditionTag.UNCONSCIOUS)
        else:
            p.death_saves = outcome.state
        logger.debug(f"💀 {p.name} death save: {outcome.result}")
        return p, outcome

    # -----------------------------------------------------------------
    # Movement
    # -----------------------------------------------------------------

    def movement_left(self, participant: Participant) -> tuple[int, float]:
        """This turn's movement allowance and what is left of it."""
        budget = self.effective_stats(participant).speed.effective * (2 if participant.turn.dashed else 1)
        return budget, max(0.0, budget - participant.turn.movement_used)

    def move_participant(
        self,
        encounter_id: str,
        participant_id: str,
        to: Position,
        ignore_speed: bool = False,
    ) -> MoveResult:
        """Validate and perform a move along a straight grid path.

        Checks:
        1. Destination is within the grid.
        2. Destination and path are not walls or movement-blocking props.
        3. Destination is not occupied by an opposing creature.
        4. Cost fits what is left of this turn's movement: effective speed
           (conditions applied), doubled after a Dash, minus what was
           already spent. Difficult terrain and water cost an extra 5 ft
           per square, as does crawling while prone.

        Leaving the reach of a hostile creature that still has its reaction
        is reported as an opportunity attack, unless the mover disengaged.
        ``ignore_speed`` (forced movement) spends nothing and provokes
        nothing.

        Raises:
            ValidationError: Destination off the grid.
            StateError: Blocked, occupied or too far.
        """
        encounter = self.get(encounter_id)
        p = encounter.participant(participant_id)
        terrain = encounter.terrain
        tx, ty = to.cell()
        if not terrain.in_bounds(tx, ty):
            raise ValidationError(f"Destination {to} is out of bounds", field="to")
        if terrain.is_wall(tx, ty):
            raise StateError(f"Destination {to} is a wall")
        for other in encounter.participants:
            if other.id != p.id and other.position.cell() == (tx, ty) and other.is_enemy != p.is_enemy and not other.is_dead:
                raise StateError(f"Destination {to} is occupied by {other.name}")

        fx, fy = p.position.cell()
        path = _bresenham_line(fx, fy, tx, ty)
        for cx, cy in path[1:-1]:
            if terrain.is_wall(cx, cy):
                raise StateError(f"Path blocked by a wall at ({cx}, {cy})")
        for cx, cy in path[1:]:
            prop = PropEngine.blocking_at(encounter.props, cx, cy)
            if prop is not None:
                raise StateError(f"Path blocked by {prop.name} at ({cx}, {cy})")

        stats = self.effective_stats(p)
        distance_feet = measure_distance(p.position, to, include_elevation=True).feet
        difficult = sum(1 for cx, cy in path[1:] if terrain.is_difficult(cx, cy))
        cost = distance_feet + difficult * 5.0
        if stats.crawl_only:
            cost += (len(path) - 1) * 5.0

        budget, remaining = self.movement_left(p)
        if not ignore_speed:
            if stats.speed.effective == 0 or stats.dead:
                reasons = "; ".join(e for e in stats.explanations if "speed" in e) or "speed 0"
                raise StateError(f"{p.name} cannot move ({reasons})")
            if cost > remaining:
                allowance = (
                    f"remaining movement {remaining:g} of {budget} ft"
                    if p.turn.movement_used
                    else f"speed {budget} ft"
                )
                raise StateError(
                    f"Movement cost {cost:g} ft exceeds {p.name}'s {allowance}"
                    f" ({difficult} difficult terrain square(s))"
                )

        provoked: list[str] = []
        if not ignore_speed and not p.turn.disengaged:
            for other in encounter.participants:
                if other.id == p.id or other.is_enemy == p.is_enemy or other.is_dead:
                    continue
                if other.turn.reaction_used or self.effective_stats(other).incapacitated:
                    continue
                if _adjacent(other.position, p.position) and not _adjacent(other.position, to):
                    provoked.append(other.name)

        hazards = []
        for cx, cy in path[1:]:
            hazard = terrain.hazard_at(cx, cy)
            if hazard is not None:
                detail = hazard.type
                if hazard.damage:
                    detail += f" ({hazard.damage}"
                    detail += f", DC {hazard.dc})" if hazard.dc else ")"
                hazards.append(f"{p.name} passes through {detail} at ({cx}, {cy})")

        old = p.position
        p.position = to
        if not ignore_speed:
            p.turn.movement_used += cost
            remaining -= cost
        return MoveResult(
            participant=p,
            from_position=old,
            to_position=to,
            distance_feet=distance_feet,
            cost_feet=cost,
            speed=budget,
            remaining_feet=max(0.0, remaining),
            difficult_squares=difficult,
            hazards=hazards,
            opportunity_attacks=provoked,
        )


def _adjacent(a: Position, b: Position) -> bool:
    """Within 5 ft reach on the grid (elevation included)."""
    return measure_distance(a, b, include_elevation=True).feet <= 5
