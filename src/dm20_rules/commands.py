"""
Command layer.

Every rules operation is a named command: a pydantic model discriminated by
its ``action`` field. Input is validated field by field before any state is
touched. Each command produces a CommandResult carrying a machine-readable
``data`` payload and a rendered ``text`` summary; engine errors become failed
results tagged with their ``error_kind``.

    result = execute(world, {"action": "roll_dice", "expression": "2d6+3"})
    batch = execute_batch(world, [...])   # 1-20 commands, independently tagged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from .checks import CheckType, resolve_check, resolve_contested
from .combat.actions import ActionCost, ActionKind, ActionManager, ShoveMode
from .combat.battlefield import LegendDetail, Viewport, render_battlefield
from .combat.concentration import ConcentrationTracker
from .combat.conditions import INCAPACITATING, ConditionEngine, DurationKind
from .combat.encounter import (
    Encounter,
    EncounterManager,
    Participant,
    ParticipantRef,
    ParticipantSpec,
    Terrain,
)
from .combat.props import UPDATABLE_FIELDS, Prop, PropEngine, PropType
from .dice import RollMode, resolve_roll_mode, roll_dice
from .errors import RulesEngineError, StateError, ValidationError
from .magic.auras import AuraManager, AuraTarget, ManualSaveRoll
from .magic.scrolls import ProposedSpell, SpellSchool, synthesize_spell, use_scroll
from .magic.spell_slots import RestKind, SlotOperation, SlotPoolEngine, SpellSlotManager
from .models import Ability, Character, ConditionTag, DamageType, Lighting, Size, Skill
from .repository import resolve_character
from .spatial.positioning import (
    AoEShapeKind,
    AreaOfEffect,
    DistanceMode,
    Position,
    cells_in_area,
    measure_distance,
    targets_in_area,
)
from .spatial.movement import MovementGrid, MovementMode, adjacent_cells, find_path, reachable_cells
from .spatial.sight import (
    CoverLevel,
    CreatureBlocker,
    Obstacle,
    ObstacleKind,
    Sense,
    check_cover,
    check_line_of_sight,
)
from .world import WorldState

logger = logging.getLogger("dm20-rules")

MAX_BATCH = 20


# ---------------------------------------------------------------------------
# Shared field groups
# ---------------------------------------------------------------------------

class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _RollOptions(_Command):
    advantage: bool = False
    disadvantage: bool = False
    manual_roll: int | None = Field(default=None, ge=1, le=20, description="Physical d20 result")
    manual_rolls: list[int] | None = Field(
        default=None, min_length=2, max_length=2, description="Both d20s for advantage/disadvantage"
    )

    @property
    def mode(self) -> RollMode:
        return resolve_roll_mode(self.advantage, self.disadvantage)


class _CharacterRef(_Command):
    character_id: str | None = None
    character_name: str | None = None

    @model_validator(mode="after")
    def _needs_character(self):
        if not self.character_id and not self.character_name:
            raise ValueError("character_id or character_name is required")
        return self


# ---------------------------------------------------------------------------
# Encounter commands
# ---------------------------------------------------------------------------

class CreateEncounterCommand(_Command):
    action: Literal["create_encounter"] = "create_encounter"
    participants: list[ParticipantSpec | ParticipantRef] = Field(min_length=1, max_length=50)
    terrain: Terrain | None = None
    seed: int | None = None
    lighting: Lighting = Lighting.BRIGHT
    surprise: list[str] = Field(default_factory=list)


class AdvanceTurnCommand(_Command):
    action: Literal["advance_turn"] = "advance_turn"
    encounter_id: str = Field(min_length=1)


class GetEncounterCommand(_Command):
    action: Literal["get_encounter"] = "get_encounter"
    encounter_id: str = Field(min_length=1)


class EndEncounterCommand(_Command):
    action: Literal["end_encounter"] = "end_encounter"
    encounter_id: str = Field(min_length=1)


class ApplyDamageCommand(_Command):
    action: Literal["apply_damage"] = "apply_damage"
    encounter_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    amount: int | None = Field(default=None, ge=0, le=10000)
    dice: str | None = Field(default=None, description="Roll the damage instead, e.g. '2d6+3'")
    manual_rolls: list[int] | None = None
    damage_type: DamageType | None = None
    critical: bool = Field(default=False, description="Damage came from a critical hit")

    @model_validator(mode="after")
    def _amount_or_dice(self):
        if (self.amount is None) == (self.dice is None):
            raise ValueError("exactly one of amount or dice is required")
        return self


class HealCommand(_Command):
    action: Literal["heal"] = "heal"
    encounter_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    amount: int | None = Field(default=None, ge=0, le=10000)
    dice: str | None = None
    manual_rolls: list[int] | None = None

    @model_validator(mode="after")
    def _amount_or_dice(self):
        if (self.amount is None) == (self.dice is None):
            raise ValueError("exactly one of amount or dice is required")
        return self


class MoveParticipantCommand(_Command):
    action: Literal["move_participant"] = "move_participant"
    encounter_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    to: Position
    ignore_speed: bool = False


class RollDeathSaveCommand(_RollOptions):
    action: Literal["roll_death_save"] = "roll_death_save"
    encounter_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    modifier: int = Field(default=0, ge=-10, le=10)


class RenderBattlefieldCommand(_Command):
    action: Literal["render_battlefield"] = "render_battlefield"
    encounter_id: str = Field(min_length=1)
    viewport: Viewport | None = None
    focus_on: str | None = None
    show_legend: bool = True
    show_coordinates: bool = True
    show_elevation: bool = True
    legend_detail: LegendDetail = LegendDetail.STANDARD


class ExecuteActionCommand(_RollOptions):
    action: Literal["execute_action"] = "execute_action"
    encounter_id: str = Field(min_length=1)
    actor_id: str = Field(min_length=1)
    action_type: ActionKind
    cost: ActionCost = ActionCost.ACTION
    target_id: str | None = None
    attack_bonus: int = Field(default=0, ge=-20, le=30)
    damage: str | None = Field(default=None, description="Damage dice on a hit, e.g. '1d8+3'")
    damage_type: DamageType | None = None
    range_feet: int | None = Field(default=None, ge=5, le=1000, description="Longest reach or range of the attack")
    manual_damage_rolls: list[int] | None = None
    athletics_bonus: int = Field(default=0, ge=-20, le=20)
    defender_bonus: int = Field(default=0, ge=-20, le=20)
    defender_skill: Skill | None = Field(default=None, description="athletics or acrobatics; defaults to the better one")
    defender_manual_roll: int | None = Field(default=None, ge=1, le=20)
    shove_mode: ShoveMode = ShoveMode.AWAY

    @model_validator(mode="after")
    def _needs_target(self):
        if self.action_type in (ActionKind.ATTACK, ActionKind.GRAPPLE, ActionKind.SHOVE) and not self.target_id:
            raise ValueError(f"{self.action_type.value} requires target_id")
        return self


class PlacePropCommand(_Command):
    action: Literal["place_prop"] = "place_prop"
    encounter_id: str = Field(min_length=1)
    operation: Literal["place", "remove", "update", "move", "list"]
    prop_id: str | None = None
    name: str | None = Field(default=None, min_length=1)
    prop_type: PropType | None = None
    position: Position | None = None
    state: str | None = None
    locked: bool = False
    lock_dc: int | None = Field(default=None, ge=1, le=30)
    cover: CoverLevel = CoverLevel.NONE
    blocks_movement: bool = False
    destructible: bool = False
    hp: int | None = Field(default=None, ge=0)
    ac: int | None = Field(default=None, ge=1, le=30)
    size: Size | None = None
    description: str | None = None
    hidden: bool = False
    trap_dc: int | None = Field(default=None, ge=1, le=30)
    trap_damage: str | None = None
    trigger: str | None = None

    @model_validator(mode="after")
    def _operation_fields(self):
        if self.operation == "place":
            missing = [n for n in ("name", "prop_type", "position") if getattr(self, n) is None]
            if missing:
                raise ValueError(f"place requires {', '.join(missing)}")
        if self.operation in ("remove", "update", "move") and not self.prop_id:
            raise ValueError(f"{self.operation} requires prop_id")
        if self.operation == "move" and self.position is None:
            raise ValueError("move requires position")
        if self.operation == "update" and not self.changes:
            raise ValueError(f"update requires at least one of {', '.join(UPDATABLE_FIELDS)}")
        return self

    @property
    def changes(self) -> dict[str, Any]:
        return {n: getattr(self, n) for n in UPDATABLE_FIELDS if n in self.model_fields_set}


class CalculateMovementCommand(_Command):
    action: Literal["calculate_movement"] = "calculate_movement"
    mode: MovementMode = MovementMode.PATH
    start: Position | None = None
    participant_id: str | None = None
    to: Position | None = None
    movement: int | None = Field(
        default=None, ge=0, le=1000, description="Feet available for reach; defaults to what is left this turn, or 30"
    )
    encounter_id: str | None = None
    terrain: Terrain | None = Field(default=None, description="Grid to plan on when there is no encounter")
    creatures_block: bool = False

    @model_validator(mode="after")
    def _operation_fields(self):
        _require_endpoint(self.start, self.participant_id, self.encounter_id, "start")
        if self.mode == MovementMode.PATH and self.to is None:
            raise ValueError("path requires to")
        return self


class UseScrollCommand(_RollOptions):
    action: Literal["use_scroll"] = "use_scroll"
    scroll_name: str = Field(min_length=1)
    spell_level: int = Field(ge=0, le=9)
    character_id: str | None = None
    character_name: str | None = None
    caster_level: int | None = Field(default=None, ge=0, le=9, description="Highest spell level the reader can cast")
    arcana_bonus: int = Field(default=0, ge=-20, le=20)
    is_attack_spell: bool = False
    spell_school: SpellSchool | None = None
    target_id: str | None = None
    target_ids: list[str] = Field(default_factory=list)
    target_position: Position | None = None

    @model_validator(mode="after")
    def _needs_caster(self):
        if self.caster_level is None and not self.character_id and not self.character_name:
            raise ValueError("caster_level or a character is required")
        return self


class SynthesizeSpellCommand(_RollOptions):
    action: Literal["synthesize_spell"] = "synthesize_spell"
    proposed_spell: ProposedSpell
    intent: str | None = Field(default=None, description="What the caster wants the magic to do")
    character_id: str | None = None
    character_name: str | None = None
    arcana_bonus: int = Field(default=0, ge=-20, le=20)
    near_ley_line: bool = False
    desperation: bool = Field(default=False, description="+2 to the roll; any failure is a mishap")
    material_component_value: int = Field(default=0, ge=0, description="gp value of material components")


# ---------------------------------------------------------------------------
# Condition / resource commands
# ---------------------------------------------------------------------------

class ManageConditionCommand(_Command):
    action: Literal["manage_condition"] = "manage_condition"
    target_id: str = Field(min_length=1)
    operation: Literal["add", "remove", "query"]
    condition: ConditionTag | Literal["all"] | None = None
    duration: Annotated[int, Field(ge=1)] | DurationKind | None = None
    source: str | None = None
    exhaustion_levels: int = Field(default=1, ge=1, le=6)
    save_dc: int | None = Field(default=None, ge=1, le=30)
    save_ability: Ability | None = None
    encounter_id: str | None = Field(default=None, description="Resolve target_id as a participant")

    @model_validator(mode="after")
    def _needs_condition(self):
        if self.operation == "add" and (self.condition is None or self.condition == "all"):
            raise ValueError("add requires a single condition")
        if self.operation == "remove" and self.condition is None:
            raise ValueError("remove requires a condition or 'all'")
        return self


class RollDiceCommand(_Command):
    action: Literal["roll_dice"] = "roll_dice"
    expression: str = Field(min_length=3, max_length=40)
    manual_rolls: list[int] | None = None
    label: str | None = Field(default=None, description="What the roll is for")


class OpposedCheck(_RollOptions):
    check_type: CheckType = CheckType.SKILL
    ability: Ability | None = None
    skill: Skill | None = None
    character_id: str | None = None
    character_name: str | None = None
    bonus: int = Field(default=0, ge=-20, le=20)


class RollCheckCommand(_RollOptions):
    action: Literal["roll_check"] = "roll_check"
    check_type: CheckType
    ability: Ability | None = None
    skill: Skill | None = None
    character_id: str | None = None
    character_name: str | None = None
    bonus: int = Field(default=0, ge=-20, le=20)
    dc: int | None = Field(default=None, ge=1, le=40)
    contest: OpposedCheck | None = Field(default=None, description="Opposing check for a contest")


class ManageConcentrationCommand(_RollOptions):
    action: Literal["manage_concentration"] = "manage_concentration"
    caster_id: str = Field(min_length=1)
    operation: Literal["set", "get", "break", "check"]
    spell_name: str | None = None
    targets: list[str] = Field(default_factory=list)
    duration: int | None = Field(default=None, ge=1, description="Rounds")
    reason: str | None = None
    damage: int | None = Field(default=None, ge=0)
    con_save_modifier: int | None = Field(default=None, ge=-10, le=20)
    encounter_id: str | None = None

    @model_validator(mode="after")
    def _operation_fields(self):
        if self.operation == "set" and not self.spell_name:
            raise ValueError("set requires spell_name")
        if self.operation == "check" and self.damage is None:
            raise ValueError("check requires damage")
        return self


class ManageSpellSlotsCommand(_CharacterRef):
    action: Literal["manage_spell_slots"] = "manage_spell_slots"
    operation: SlotOperation
    slot_level: int | None = Field(default=None, ge=1, le=9)
    count: int | None = Field(default=None, ge=1, le=20)
    pact_magic: bool = False
    slots: dict[str, dict[str, int]] | None = None

    @model_validator(mode="after")
    def _operation_fields(self):
        if self.operation == SlotOperation.EXPEND and self.slot_level is None and not self.pact_magic:
            raise ValueError("expend requires slot_level or pact_magic")
        if self.operation == SlotOperation.SET and not self.slots:
            raise ValueError("set requires slots")
        return self


class TakeRestCommand(_CharacterRef):
    action: Literal["take_rest"] = "take_rest"
    rest_type: RestKind


class RegisterCharacterCommand(_Command):
    action: Literal["register_character"] = "register_character"
    character: Character


# ---------------------------------------------------------------------------
# Spatial commands
# ---------------------------------------------------------------------------

class CheckLineOfSightCommand(_Command):
    action: Literal["check_line_of_sight"] = "check_line_of_sight"
    observer: Position | None = None
    target: Position | None = None
    observer_id: str | None = None
    target_id: str | None = None
    encounter_id: str | None = None
    obstacles: list[Obstacle] = Field(default_factory=list)
    creatures: list[CreatureBlocker] = Field(default_factory=list)
    creatures_block: bool = False
    lighting: Lighting | None = None
    senses: list[Sense] = Field(default_factory=list)

    @model_validator(mode="after")
    def _endpoints(self):
        _require_endpoint(self.observer, self.observer_id, self.encounter_id, "observer")
        _require_endpoint(self.target, self.target_id, self.encounter_id, "target")
        return self


class CheckCoverCommand(_Command):
    action: Literal["check_cover"] = "check_cover"
    attacker: Position | None = None
    target: Position | None = None
    attacker_id: str | None = None
    target_id: str | None = None
    encounter_id: str | None = None
    obstacles: list[Obstacle] = Field(default_factory=list)
    creatures: list[CreatureBlocker] = Field(default_factory=list)
    creatures_provide_cover: bool = True

    @model_validator(mode="after")
    def _endpoints(self):
        _require_endpoint(self.attacker, self.attacker_id, self.encounter_id, "attacker")
        _require_endpoint(self.target, self.target_id, self.encounter_id, "target")
        return self


class MeasureDistanceCommand(_Command):
    action: Literal["measure_distance"] = "measure_distance"
    from_position: Position | None = None
    to_position: Position | None = None
    from_id: str | None = None
    to_id: str | None = None
    encounter_id: str | None = None
    mode: DistanceMode = DistanceMode.GRID_5E
    include_elevation: bool = False

    @model_validator(mode="after")
    def _endpoints(self):
        _require_endpoint(self.from_position, self.from_id, self.encounter_id, "from")
        _require_endpoint(self.to_position, self.to_id, self.encounter_id, "to")
        return self


class CalculateAoeCommand(_Command):
    action: Literal["calculate_aoe"] = "calculate_aoe"
    shape: AoEShapeKind
    size: float = Field(gt=0, le=1000, description="Radius, side or length in feet")
    origin: Position | None = None
    origin_id: str | None = None
    direction_degrees: float = 0.0
    width: float = Field(default=5.0, gt=0, description="Line width in feet")
    height: float = Field(default=20.0, gt=0, description="Cylinder height in feet")
    encounter_id: str | None = None
    grid_width: int = Field(default=20, ge=5, le=100)
    grid_height: int = Field(default=20, ge=5, le=100)

    @model_validator(mode="after")
    def _endpoints(self):
        _require_endpoint(self.origin, self.origin_id, self.encounter_id, "origin")
        return self


class ManageAuraCommand(_Command):
    action: Literal["manage_aura"] = "manage_aura"
    operation: Literal["create", "list", "remove", "process"]
    aura_id: str | None = None
    owner_id: str | None = None
    spell_name: str | None = None
    radius: int | None = Field(default=None, ge=1, le=1000)
    duration: int | None = Field(default=None, ge=1)
    damage: str | None = None
    damage_type: DamageType | None = None
    healing: str | None = None
    effect: str | None = None
    condition: ConditionTag | None = None
    save_dc: int | None = Field(default=None, ge=1, le=30)
    save_ability: Ability | None = None
    half_on_save: bool = False
    affects_enemies: bool = True
    affects_allies: bool = False
    reason: str | None = None
    targets: list[AuraTarget] = Field(default_factory=list)
    encounter_id: str | None = Field(default=None, description="Apply results to this encounter")
    decrement_duration: bool = True
    manual_damage_rolls: list[int] | None = None
    manual_healing_rolls: list[int] | None = None
    manual_save_rolls: list[ManualSaveRoll] = Field(default_factory=list)

    @model_validator(mode="after")
    def _operation_fields(self):
        if self.operation == "create":
            missing = [n for n in ("owner_id", "spell_name", "radius") if getattr(self, n) is None]
            if missing:
                raise ValueError(f"create requires {', '.join(missing)}")
        if self.operation in ("remove", "process") and not self.aura_id:
            raise ValueError(f"{self.operation} requires aura_id")
        if self.operation == "process" and not self.targets and not self.encounter_id:
            raise ValueError("process requires targets or encounter_id")
        return self


def _require_endpoint(position: Position | None, participant_id: str | None, encounter_id: str | None, name: str) -> None:
    if position is None and participant_id is None:
        raise ValueError(f"{name} position or {name}_id is required")
    if position is None and encounter_id is None:
        raise ValueError(f"encounter_id is required to locate {name}_id")


COMMAND_TYPES = (
    CreateEncounterCommand,
    AdvanceTurnCommand,
    GetEncounterCommand,
    EndEncounterCommand,
    ApplyDamageCommand,
    HealCommand,
    MoveParticipantCommand,
    ManageConditionCommand,
    RollDiceCommand,
    RollCheckCommand,
    RollDeathSaveCommand,
    ManageConcentrationCommand,
    ManageSpellSlotsCommand,
    TakeRestCommand,
    CheckLineOfSightCommand,
    CheckCoverCommand,
    MeasureDistanceCommand,
    CalculateAoeCommand,
    ManageAuraCommand,
    RenderBattlefieldCommand,
    RegisterCharacterCommand,
    ExecuteActionCommand,
    PlacePropCommand,
    CalculateMovementCommand,
    UseScrollCommand,
    SynthesizeSpellCommand,
)

COMMAND_ACTIONS: tuple[str, ...] = tuple(t.model_fields["action"].default for t in COMMAND_TYPES)

Command = Annotated[
    Union[
        CreateEncounterCommand,
        AdvanceTurnCommand,
        GetEncounterCommand,
        EndEncounterCommand,
        ApplyDamageCommand,
        HealCommand,
        MoveParticipantCommand,
        ManageConditionCommand,
        RollDiceCommand,
        RollCheckCommand,
        RollDeathSaveCommand,
        ManageConcentrationCommand,
        ManageSpellSlotsCommand,
        TakeRestCommand,
        CheckLineOfSightCommand,
        CheckCoverCommand,
        MeasureDistanceCommand,
        CalculateAoeCommand,
        ManageAuraCommand,
        RenderBattlefieldCommand,
        RegisterCharacterCommand,
        ExecuteActionCommand,
        PlacePropCommand,
        CalculateMovementCommand,
        UseScrollCommand,
        SynthesizeSpellCommand,
    ],
    Field(discriminator="action"),
]

_COMMAND_ADAPTER: TypeAdapter = TypeAdapter(Command)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class CommandResult:
    """Outcome of one command."""

    action: str
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    text: str = ""
    error_kind: str | None = None
    warnings: list[str] = field(default_factory=list)

    def render(self) -> str:
        text = f"{'✅' if self.success else '❌'} {self.text}"
        for warning in self.warnings:
            text += f"\n⚠️ {warning}"
        return text

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "success": self.success,
            "data": self.data,
            "text": self.text,
            "error_kind": self.error_kind,
            "warnings": list(self.warnings),
        }


@dataclass
class BatchResult:
    """Ordered results of a batch. Each entry succeeds or fails on its own."""

    results: list[CommandResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    def render(self) -> str:
        lines = [f"Batch: {self.succeeded}/{len(self.results)} succeeded"]
        for index, result in enumerate(self.results, start=1):
            lines.append(f"\n[{index}] {result.action}")
            lines.append(result.render())
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


def _ok(command: BaseModel, text: str, data: dict[str, Any] | None = None, warnings: list[str] | None = None) -> CommandResult:
    return CommandResult(
        action=command.action,
        success=True,
        data=data or {},
        text=text,
        warnings=list(warnings or []),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _encounter_data(encounter: Encounter) -> dict[str, Any]:
    return {
        "encounter_id": encounter.id,
        "round": encounter.round,
        "turn_index": encounter.turn_index,
        "current": encounter.current.id,
        "order": [p.id for p in encounter.participants],
        "participants": [p.model_dump(mode="json") for p in encounter.participants],
    }


def _locate(
    world: WorldState,
    encounter_id: str | None,
    position: Position | None,
    participant_id: str | None,
) -> tuple[Position, Participant | None]:
    if position is not None:
        return position, None
    participant = EncounterManager(world).get(encounter_id).participant(participant_id)
    return participant.position, participant


def _save_modifier(world: WorldState, participant: Participant | None, ability: Ability) -> int:
    """Saving throw modifier of a participant backed by a character record."""
    if participant is None or participant.character_id is None:
        return 0
    character = world.repository.get(participant.character_id)
    modifier = character.ability_modifier(ability)
    if character.is_save_proficient(ability):
        modifier += character.proficiency_bonus
    return modifier


_PROP_COVER: dict[CoverLevel, ObstacleKind] = {
    CoverLevel.HALF: ObstacleKind.HALF_COVER,
    CoverLevel.THREE_QUARTERS: ObstacleKind.THREE_QUARTERS_COVER,
    CoverLevel.TOTAL: ObstacleKind.TOTAL_COVER,
}


def _terrain_obstacles(encounter: Encounter) -> list[Obstacle]:
    """Walls plus every prop that gives cover."""
    obstacles = [Obstacle(x=x, y=y, kind=ObstacleKind.WALL) for x, y in encounter.terrain.obstacles]
    for prop in encounter.props:
        if prop.cover != CoverLevel.NONE:
            x, y = prop.position.cell()
            obstacles.append(Obstacle(x=x, y=y, z=prop.position.z, kind=_PROP_COVER[prop.cover]))
    return obstacles


def _blockers(encounter: Encounter, exclude: set[str]) -> list[CreatureBlocker]:
    return [
        CreatureBlocker(x=p.position.x, y=p.position.y, z=p.position.z, size=p.size, name=p.name)
        for p in encounter.participants
        if p.id not in exclude and not p.is_dead
    ]


# ---------------------------------------------------------------------------
# Handlers: encounter
# ---------------------------------------------------------------------------

def _create_encounter(world: WorldState, cmd: CreateEncounterCommand) -> CommandResult:
    encounter, warnings = EncounterManager(world).create(
        cmd.participants,
        terrain=cmd.terrain,
        seed=cmd.seed,
        lighting=cmd.lighting,
        surprise=cmd.surprise,
    )
    text = (
        f"Encounter {encounter.id} created with {len(encounter.participants)} participants\n\n"
        f"Initiative order:\n{encounter.initiative_order()}"
    )
    return _ok(cmd, text, _encounter_data(encounter), warnings)


def _advance_turn(world: WorldState, cmd: AdvanceTurnCommand) -> CommandResult:
    advance = EncounterManager(world).advance_turn(cmd.encounter_id)
    data = _encounter_data(advance.encounter)
    data.update(
        {
            "previous": advance.previous.id,
            "new_round": advance.new_round,
            "skipped": advance.skipped,
            "expired_conditions": advance.expired_conditions,
            "death_save_reminders": advance.death_save_reminders,
        }
    )
    return _ok(cmd, advance.describe(), data)


def _get_encounter(world: WorldState, cmd: GetEncounterCommand) -> CommandResult:
    encounter = EncounterManager(world).get(cmd.encounter_id)
    lines = [
        f"Encounter {encounter.id}: round {encounter.round}, {encounter.current.name}'s turn",
        "",
        encounter.initiative_order(),
    ]
    data = _encounter_data(encounter)
    data["conditions"] = {}
    for p in encounter.participants:
        active = world.conditions.get(p.id, [])
        if active:
            data["conditions"][p.id] = [c.model_dump(mode="json") for c in active]
            lines.append(f"  {p.name}: {', '.join(c.describe() for c in active)}")
    return _ok(cmd, "\n".join(lines), data)


def _end_encounter(world: WorldState, cmd: EndEncounterCommand) -> CommandResult:
    encounter = EncounterManager(world).end(cmd.encounter_id)
    standing = [p.name for p in encounter.participants if p.hp > 0]
    fallen = [p.name for p in encounter.participants if p.is_dead]
    down = [p.name for p in encounter.participants if p.hp == 0 and not p.is_dead]
    lines = [f"Encounter {encounter.id} ended after {encounter.round} round(s)"]
    lines.append(f"Standing: {', '.join(standing) or 'none'}")
    if down:
        lines.append(f"Down: {', '.join(down)}")
    if fallen:
        lines.append(f"Fallen: {', '.join(fallen)}")
    data = _encounter_data(encounter)
    data.update({"standing": standing, "down": down, "fallen": fallen})
    return _ok(cmd, "\n".join(lines), data)


def _apply_damage(world: WorldState, cmd: ApplyDamageCommand) -> CommandResult:
    amount = cmd.amount
    rolled = None
    if cmd.dice is not None:
        rolled = roll_dice(cmd.dice, rng=world.rng, manual_rolls=cmd.manual_rolls)
        amount = max(0, rolled.total)
    result = EncounterManager(world).apply_damage(
        cmd.encounter_id, cmd.target_id, amount, cmd.damage_type, critical=cmd.critical
    )
    text = result.describe()
    if rolled is not None:
        text = f"Damage roll {rolled.describe()}\n{text}"
    data = {
        "target_id": result.participant.id,
        "raw_damage": result.raw_damage,
        "damage": result.damage,
        "damage_type": result.damage_type.value if result.damage_type else None,
        "hp_before": result.hp_before,
        "hp_after": result.participant.hp,
        "resisted": result.resisted,
        "vulnerable": result.vulnerable,
        "immune": result.immune,
        "dropped_to_zero": result.dropped_to_zero,
        "killed": result.killed,
        "concentration_dc": result.concentration_dc,
        "concentration_broken": result.concentration_broken,
        "rolls": rolled.rolls if rolled else None,
    }
    return _ok(cmd, text, data)


def _heal(world: WorldState, cmd: HealCommand) -> CommandResult:
    amount = cmd.amount
    rolled = None
    if cmd.dice is not None:
        rolled = roll_dice(cmd.dice, rng=world.rng, manual_rolls=cmd.manual_rolls)
        amount = max(0, rolled.total)
    result = EncounterManager(world).heal(cmd.encounter_id, cmd.target_id, amount)
    text = result.describe()
    if rolled is not None:
        text = f"Healing roll {rolled.describe()}\n{text}"
    data = {
        "target_id": result.participant.id,
        "amount": amount,
        "hp_before": result.hp_before,
        "hp_after": result.participant.hp,
        "revived": result.revived,
    }
    return _ok(cmd, text, data)


def _move_participant(world: WorldState, cmd: MoveParticipantCommand) -> CommandResult:
    result = EncounterManager(world).move_participant(
        cmd.encounter_id, cmd.participant_id, cmd.to, ignore_speed=cmd.ignore_speed
    )
    data = {
        "participant_id": result.participant.id,
        "from": result.from_position.model_dump(),
        "to": result.to_position.model_dump(),
        "distance_feet": result.distance_feet,
        "cost_feet": result.cost_feet,
        "speed": result.speed,
        "difficult_squares": result.difficult_squares,
        "hazards": result.hazards,
        "remaining_feet": result.remaining_feet,
        "opportunity_attacks": result.opportunity_attacks,
    }
    return _ok(cmd, result.describe(), data)


def _roll_death_save(world: WorldState, cmd: RollDeathSaveCommand) -> CommandResult:
    participant, outcome = EncounterManager(world).roll_death_save(
        cmd.encounter_id,
        cmd.participant_id,
        modifier=cmd.modifier,
        mode=cmd.mode,
        manual_roll=cmd.manual_roll,
        manual_rolls=cmd.manual_rolls,
    )
    text = f"{participant.name} death save: {outcome.roll.describe()} -> {outcome.result.replace('_', ' ')}"
    if outcome.revived:
        text += f"\n✨ {participant.name} regains 1 HP and is conscious!"
    elif outcome.state is not None:
        text += f"\n{outcome.state.describe()}"
    data = {
        "participant_id": participant.id,
        "rolls": list(outcome.roll.rolls),
        "natural": outcome.roll.natural,
        "total": outcome.roll.total,
        "result": outcome.result,
        "status": outcome.status.value,
        "state": outcome.state.model_dump() if outcome.state else None,
        "hp": participant.hp,
    }
    return _ok(cmd, text, data)


def _render_battlefield(world: WorldState, cmd: RenderBattlefieldCommand) -> CommandResult:
    encounter = EncounterManager(world).get(cmd.encounter_id)
    text = render_battlefield(
        encounter,
        conditions=world.conditions,
        viewport=cmd.viewport,
        focus_on=cmd.focus_on,
        show_legend=cmd.show_legend,
        show_coordinates=cmd.show_coordinates,
        show_elevation=cmd.show_elevation,
        legend_detail=cmd.legend_detail,
    )
    return _ok(cmd, text, {"encounter_id": encounter.id, "map": text})


def _execute_action(world: WorldState, cmd: ExecuteActionCommand) -> CommandResult:
    manager = ActionManager(world)
    common = {"encounter_id": cmd.encounter_id, "actor_id": cmd.actor_id, "cost": cmd.cost}
    if cmd.action_type == ActionKind.ATTACK:
        result = manager.attack(
            target_id=cmd.target_id,
            attack_bonus=cmd.attack_bonus,
            damage=cmd.damage,
            damage_type=cmd.damage_type,
            range_feet=cmd.range_feet,
            advantage=cmd.advantage,
            disadvantage=cmd.disadvantage,
            manual_roll=cmd.manual_roll,
            manual_rolls=cmd.manual_rolls,
            manual_damage_rolls=cmd.manual_damage_rolls,
            **common,
        )
    elif cmd.action_type in (ActionKind.GRAPPLE, ActionKind.SHOVE):
        contest = {
            "target_id": cmd.target_id,
            "athletics_bonus": cmd.athletics_bonus,
            "defender_bonus": cmd.defender_bonus,
            "defender_skill": cmd.defender_skill,
            "advantage": cmd.advantage,
            "disadvantage": cmd.disadvantage,
            "manual_roll": cmd.manual_roll,
            "manual_rolls": cmd.manual_rolls,
            "defender_manual_roll": cmd.defender_manual_roll,
        }
        if cmd.action_type == ActionKind.GRAPPLE:
            result = manager.grapple(**contest, **common)
        else:
            result = manager.shove(mode=cmd.shove_mode, **contest, **common)
    else:
        result = getattr(manager, cmd.action_type.value)(**common)
    return _ok(cmd, result.describe(), result.to_dict())


def _occupied_warning(encounter: Encounter, prop: Prop) -> list[str]:
    if not prop.blocks_movement:
        return []
    return [
        f"{prop.name} blocks movement on the square {p.name} occupies"
        for p in encounter.participants
        if not p.is_dead and p.position.cell() == prop.position.cell()
    ]


def _place_prop(world: WorldState, cmd: PlacePropCommand) -> CommandResult:
    encounter = EncounterManager(world).get(cmd.encounter_id)
    props = encounter.props

    if cmd.operation == "list":
        text = "\n".join(p.describe() for p in props) if props else "No props placed"
        return _ok(cmd, text, {"encounter_id": encounter.id, "props": [p.model_dump(mode="json") for p in props]})

    warnings: list[str] = []
    if cmd.operation == "place":
        fields = {
            n: getattr(cmd, n)
            for n in (
                "name", "position", "state", "locked", "lock_dc", "cover", "blocks_movement", "destructible",
                "hp", "ac", "size", "description", "hidden", "trap_dc", "trap_damage", "trigger",
            )
        }
        if cmd.prop_id:
            fields["id"] = cmd.prop_id
        prop = PropEngine.place(props, encounter.terrain, Prop(type=cmd.prop_type, **fields))
        text = f"Placed {prop.describe()}"
        warnings = _occupied_warning(encounter, prop)
    elif cmd.operation == "move":
        prop, old = PropEngine.move(props, encounter.terrain, cmd.prop_id, cmd.position)
        text = f"{prop.name} moved {old} -> {prop.position}"
        warnings = _occupied_warning(encounter, prop)
    elif cmd.operation == "update":
        prop = PropEngine.update(props, cmd.prop_id, cmd.changes)
        text = f"Updated {prop.describe()}"
    else:
        prop = PropEngine.remove(props, cmd.prop_id)
        text = f"Removed {prop.name} ({prop.id})"
    data = {"encounter_id": encounter.id, "operation": cmd.operation, "prop": prop.model_dump(mode="json")}
    return _ok(cmd, text, data, warnings)


# ---------------------------------------------------------------------------
# Handlers: conditions, dice, checks, resources
# ---------------------------------------------------------------------------

def _manage_condition(world: WorldState, cmd: ManageConditionCommand) -> CommandResult:
    participant = None
    target_id = cmd.target_id
    name = cmd.target_id
    immunities: list[ConditionTag] = []
    if cmd.encounter_id:
        participant = EncounterManager(world).get(cmd.encounter_id).participant(cmd.target_id)
        target_id = participant.id
        name = participant.name
        immunities = participant.condition_immunities

    conditions = world.conditions_for(target_id)
    lines: list[str] = []
    status = "query"
    if cmd.operation == "add":
        change = ConditionEngine.add(
            conditions,
            target_id,
            cmd.condition,
            duration=cmd.duration,
            source=cmd.source,
            exhaustion_levels=cmd.exhaustion_levels,
            save_dc=cmd.save_dc,
            save_ability=cmd.save_ability,
            immunities=immunities,
        )
        status = change.status
        lines.append(f"{name}: {change.message}")
        if cmd.condition in INCAPACITATING:
            ended = ConcentrationTracker.end(world.concentration, target_id, reason=cmd.condition.value)
            if ended["spell_name"]:
                lines.append(f"{name} loses concentration on {ended['spell_name']}.")
    elif cmd.operation == "remove":
        change = ConditionEngine.remove(conditions, target_id, cmd.condition, cmd.exhaustion_levels)
        status = change.status
        lines.append(f"{name}: {change.message}")
    else:
        active = ConditionEngine.query(conditions)
        if active:
            lines.append(f"{name}: " + ", ".join(c.describe() for c in active))
        else:
            lines.append(f"{name} has no active conditions")

    data: dict[str, Any] = {
        "target_id": target_id,
        "status": status,
        "conditions": [c.model_dump(mode="json") for c in conditions],
    }
    if participant is not None:
        stats = EncounterManager(world).effective_stats(participant)
        data["effective_stats"] = stats.to_dict()
        lines.extend(f"  {e}" for e in stats.explanations)
    return _ok(cmd, "\n".join(lines), data)


def _roll_dice(world: WorldState, cmd: RollDiceCommand) -> CommandResult:
    roll = roll_dice(cmd.expression, rng=world.rng, manual_rolls=cmd.manual_rolls)
    text = roll.describe()
    if cmd.label:
        text = f"{cmd.label}: {text}"
    data = {
        "expression": roll.expression.notation,
        "rolls": roll.rolls,
        "kept": roll.kept,
        "dropped": roll.dropped,
        "modifier": roll.modifier,
        "total": roll.total,
    }
    return _ok(cmd, text, data)


def _check(world: WorldState, cmd: RollCheckCommand | OpposedCheck, dc: int | None, warnings: list[str]):
    character = None
    if cmd.character_id or cmd.character_name:
        lookup = resolve_character(world.repository, cmd.character_id, cmd.character_name)
        warnings.extend(lookup.warnings)
        character = lookup.character
    return resolve_check(
        cmd.check_type,
        ability=cmd.ability,
        skill=cmd.skill,
        character=character,
        bonus=cmd.bonus,
        dc=dc,
        mode=cmd.mode,
        manual_roll=cmd.manual_roll,
        manual_rolls=cmd.manual_rolls,
        rng=world.rng,
    )


def _roll_check(world: WorldState, cmd: RollCheckCommand) -> CommandResult:
    warnings: list[str] = []
    result = _check(world, cmd, cmd.dc, warnings)
    if cmd.contest is None:
        return _ok(cmd, result.describe(), result.to_dict(), warnings)

    opposed = _check(world, cmd.contest, None, warnings)
    contest = resolve_contested(result, opposed)
    data = {
        "attacker": result.to_dict(),
        "defender": opposed.to_dict(),
        "winner": contest.winner,
        "margin": contest.margin,
    }
    return _ok(cmd, contest.describe(), data, warnings)


def _manage_concentration(world: WorldState, cmd: ManageConcentrationCommand) -> CommandResult:
    participant = None
    caster_id = cmd.caster_id
    current_round = 0
    if cmd.encounter_id:
        encounter = EncounterManager(world).get(cmd.encounter_id)
        participant = encounter.participant(cmd.caster_id)
        caster_id = participant.id
        current_round = encounter.round
    name = participant.name if participant else caster_id
    store = world.concentration

    if cmd.operation == "set":
        started = ConcentrationTracker.start(
            store, caster_id, cmd.spell_name, cmd.targets, cmd.duration, current_round
        )
        text = f"{name} is concentrating on {started['state'].describe()}"
        if started["previous_spell"]:
            text += f"\n{started['previous_spell']} ends."
        data = {
            "caster_id": caster_id,
            "concentrating": True,
            "spell_name": started["spell_name"],
            "previous_spell": started["previous_spell"],
            "state": started["state"].model_dump(),
        }
        return _ok(cmd, text, data)

    if cmd.operation == "get":
        state = ConcentrationTracker.get(store, caster_id)
        text = f"{name} is concentrating on {state.describe()}" if state else f"{name} is not concentrating"
        data = {"caster_id": caster_id, "concentrating": state is not None, "state": state.model_dump() if state else None}
        return _ok(cmd, text, data)

    if cmd.operation == "break":
        ended = ConcentrationTracker.end(store, caster_id, reason=cmd.reason)
        if ended["spell_name"]:
            text = f"{name} stops concentrating on {ended['spell_name']}"
            if cmd.reason:
                text += f" ({cmd.reason})"
        else:
            text = f"{name} is not concentrating"
        return _ok(cmd, text, {"caster_id": caster_id, "concentrating": False, **ended})

    modifier = cmd.con_save_modifier
    if modifier is None:
        modifier = _save_modifier(world, participant, Ability.CONSTITUTION)
    check = ConcentrationTracker.check(
        store,
        caster_id,
        cmd.damage,
        con_save_modifier=modifier,
        mode=cmd.mode,
        manual_roll=cmd.manual_roll,
        manual_rolls=cmd.manual_rolls,
        rng=world.rng,
        caster_name=name,
    )
    if check is None:
        return _ok(cmd, f"{name} is not concentrating", {"caster_id": caster_id, "concentrating": False})
    data = {
        "caster_id": caster_id,
        "concentrating": check.success,
        "spell_name": check.spell_name,
        "dc": check.dc,
        "rolls": list(check.roll.rolls),
        "total": check.total,
        "success": check.success,
        "broke": check.broke,
    }
    return _ok(cmd, check.detail, data)


def _manage_spell_slots(world: WorldState, cmd: ManageSpellSlotsCommand) -> CommandResult:
    manager = SpellSlotManager(world.repository)
    if cmd.operation == SlotOperation.VIEW:
        result = manager.view(cmd.character_id, cmd.character_name)
    elif cmd.operation == SlotOperation.EXPEND:
        result = manager.expend(
            cmd.character_id, cmd.character_name, cmd.slot_level, cmd.count or 1, cmd.pact_magic
        )
    elif cmd.operation == SlotOperation.RESTORE:
        result = manager.restore(cmd.character_id, cmd.character_name, cmd.slot_level, cmd.count, cmd.pact_magic)
    else:
        result = manager.set(cmd.slots, cmd.character_id, cmd.character_name)
    return _ok(cmd, result.render(), result.to_dict(), result.warnings)


def _take_rest(world: WorldState, cmd: TakeRestCommand) -> CommandResult:
    result = SpellSlotManager(world.repository).take_rest(cmd.rest_type, cmd.character_id, cmd.character_name)
    character = result.character
    lines = [f"{character.name} finishes a {cmd.rest_type.value} rest. {result.message}"]

    conditions = world.conditions.get(character.id, [])
    for active in list(conditions):
        if active.duration == DurationKind.UNTIL_REST:
            conditions.remove(active)
            lines.append(f"{active.condition.value.title()} ends.")
    if cmd.rest_type == RestKind.LONG and ConditionEngine.exhaustion_level(conditions):
        change = ConditionEngine.remove(conditions, character.id, ConditionTag.EXHAUSTION)
        lines.append(change.message)

    lines.append(SlotPoolEngine.render(result.pool))
    data = result.to_dict()
    data["rest_type"] = cmd.rest_type.value
    data["conditions"] = [c.model_dump(mode="json") for c in conditions]
    return _ok(cmd, "\n".join(lines), data, result.warnings)


def _register_character(world: WorldState, cmd: RegisterCharacterCommand) -> CommandResult:
    character = world.repository.add(cmd.character)
    text = (
        f"Stored {character.name} ({character.id}): {character.race_name} "
        f"{character.class_name} {character.level}, HP {character.hit_points_current}/"
        f"{character.hit_points_max}, AC {character.armor_class}"
    )
    return _ok(cmd, text, {"character": character.model_dump(mode="json")})


# ---------------------------------------------------------------------------
# Handlers: spatial
# ---------------------------------------------------------------------------

def _check_line_of_sight(world: WorldState, cmd: CheckLineOfSightCommand) -> CommandResult:
    observer, observer_p = _locate(world, cmd.encounter_id, cmd.observer, cmd.observer_id)
    target, target_p = _locate(world, cmd.encounter_id, cmd.target, cmd.target_id)
    obstacles = list(cmd.obstacles)
    creatures = list(cmd.creatures)
    lighting = cmd.lighting or Lighting.BRIGHT
    if cmd.encounter_id:
        encounter = EncounterManager(world).get(cmd.encounter_id)
        obstacles.extend(_terrain_obstacles(encounter))
        exclude = {p.id for p in (observer_p, target_p) if p is not None}
        creatures.extend(_blockers(encounter, exclude))
        lighting = cmd.lighting or encounter.lighting

    result = check_line_of_sight(
        observer,
        target,
        obstacles=obstacles,
        creatures=creatures,
        creatures_block=cmd.creatures_block,
        lighting=lighting,
        senses=cmd.senses,
    )
    return _ok(cmd, result.describe(), result.to_dict())


def _check_cover(world: WorldState, cmd: CheckCoverCommand) -> CommandResult:
    attacker, attacker_p = _locate(world, cmd.encounter_id, cmd.attacker, cmd.attacker_id)
    target, target_p = _locate(world, cmd.encounter_id, cmd.target, cmd.target_id)
    obstacles = list(cmd.obstacles)
    creatures = list(cmd.creatures)
    if cmd.encounter_id:
        encounter = EncounterManager(world).get(cmd.encounter_id)
        obstacles.extend(_terrain_obstacles(encounter))
        exclude = {p.id for p in (attacker_p, target_p) if p is not None}
        creatures.extend(_blockers(encounter, exclude))

    result = check_cover(
        attacker,
        target,
        obstacles=obstacles,
        creatures=creatures,
        creatures_provide_cover=cmd.creatures_provide_cover,
    )
    return _ok(cmd, result.describe(), result.to_dict())


def _measure_distance(world: WorldState, cmd: MeasureDistanceCommand) -> CommandResult:
    start, start_p = _locate(world, cmd.encounter_id, cmd.from_position, cmd.from_id)
    end, end_p = _locate(world, cmd.encounter_id, cmd.to_position, cmd.to_id)
    result = measure_distance(start, end, cmd.mode, cmd.include_elevation)
    start_name = start_p.name if start_p else str(start)
    end_name = end_p.name if end_p else str(end)
    data = {
        "feet": result.feet,
        "squares": result.squares,
        "mode": result.mode.value,
        "include_elevation": result.include_elevation,
        "from": start.model_dump(),
        "to": end.model_dump(),
    }
    return _ok(cmd, f"{start_name} -> {end_name}: {result.describe()}", data)


def _calculate_aoe(world: WorldState, cmd: CalculateAoeCommand) -> CommandResult:
    origin, origin_p = _locate(world, cmd.encounter_id, cmd.origin, cmd.origin_id)
    area = AreaOfEffect(
        shape=cmd.shape,
        origin=origin,
        size=cmd.size,
        direction_degrees=cmd.direction_degrees,
        width=cmd.width,
        height=cmd.height,
    )
    width, height = cmd.grid_width, cmd.grid_height
    affected: list[Participant] = []
    if cmd.encounter_id:
        encounter = EncounterManager(world).get(cmd.encounter_id)
        width, height = encounter.terrain.width, encounter.terrain.height
        candidates = [
            p for p in encounter.participants
            if not p.is_dead and (origin_p is None or p.id != origin_p.id)
        ]
        ids = set(targets_in_area(area, candidates))
        affected = [p for p in candidates if p.id in ids]

    cells = cells_in_area(area, width, height)
    lines = [f"{cmd.shape.value.title()} ({cmd.size:g} ft) at {origin}: {len(cells)} square(s)"]
    if cmd.encounter_id:
        names = ", ".join(p.name for p in affected) or "nobody"
        lines.append(f"Creatures affected: {names}")
    data = {
        "area": area.model_dump(mode="json"),
        "cells": [list(c) for c in cells],
        "targets": [p.id for p in affected],
    }
    return _ok(cmd, "\n".join(lines), data)


def _movement_grid(
    encounter: Encounter | None, terrain: Terrain | None, creatures_block: bool, mover_id: str | None
) -> MovementGrid:
    terrain = encounter.terrain if encounter is not None else (terrain or Terrain())
    grid = MovementGrid(
        width=terrain.width,
        height=terrain.height,
        blocked={cell: "wall" for cell in terrain.obstacles},
        difficult=set(terrain.difficult_terrain),
        water=set(terrain.water),
        creatures_block=creatures_block,
    )
    if encounter is not None:
        for prop in encounter.props:
            if prop.blocks_movement:
                grid.blocked.setdefault(prop.position.cell(), prop.name)
        for p in encounter.participants:
            if p.id != mover_id and not p.is_dead:
                grid.occupants[p.position.cell()] = p.name
    return grid


def _cell_str(cell: tuple[int, int]) -> str:
    return f"({cell[0]}, {cell[1]})"


def _calculate_movement(world: WorldState, cmd: CalculateMovementCommand) -> CommandResult:
    start, mover = _locate(world, cmd.encounter_id, cmd.start, cmd.participant_id)
    encounters = EncounterManager(world)
    encounter = encounters.get(cmd.encounter_id) if cmd.encounter_id else None
    grid = _movement_grid(encounter, cmd.terrain, cmd.creatures_block, mover.id if mover else None)
    origin = start.cell()
    if not grid.in_bounds(origin):
        raise ValidationError(f"Start {start} is out of bounds (grid is {grid.width}x{grid.height})", field="start")
    name = mover.name if mover else _cell_str(origin)
    remaining = encounters.movement_left(mover)[1] if mover else None
    data: dict[str, Any] = {"mode": cmd.mode.value, "start": list(origin)}

    if cmd.mode == MovementMode.PATH:
        goal = cmd.to.cell()
        if not grid.in_bounds(goal):
            raise ValidationError(f"Destination {cmd.to} is out of bounds", field="to")
        path = find_path(grid, origin, goal)
        data["to"] = list(goal)
        if path is None:
            reason = f": {grid.blocked[goal]}" if goal in grid.blocked else ""
            data.update({"reachable": False, "path": [], "cost_feet": None})
            return _ok(cmd, f"No path from {name} to {_cell_str(goal)}{reason}", data)
        lines = [f"{name} -> {_cell_str(goal)}: {path.cost_feet} ft over {path.squares} square(s)"]
        if path.difficult_squares:
            lines[0] += f" ({path.difficult_squares} difficult)"
        lines.append("Path: " + " -> ".join(_cell_str(c) for c in path.cells))
        data.update(
            {
                "reachable": True,
                "path": [list(c) for c in path.cells],
                "cost_feet": path.cost_feet,
                "difficult_squares": path.difficult_squares,
            }
        )
        if remaining is not None:
            fits = path.cost_feet <= remaining
            data["within_movement"] = fits
            lines.append(f"{'Within' if fits else 'Exceeds'} {name}'s remaining movement ({remaining:g} ft)")
        return _ok(cmd, "\n".join(lines), data)

    if cmd.mode == MovementMode.REACH:
        budget = cmd.movement if cmd.movement is not None else (remaining if remaining is not None else 30)
        cells = reachable_cells(grid, origin, int(budget))
        lines = [f"{name} can reach {len(cells)} square(s) with {budget:g} ft of movement"]
        by_cost: dict[int, list[str]] = {}
        for cell, cost in cells.items():
            by_cost.setdefault(cost, []).append(_cell_str(cell))
        lines.extend(f"  {cost} ft: {', '.join(found)}" for cost, found in by_cost.items())
        data.update(
            {
                "movement": budget,
                "cells": [{"x": x, "y": y, "cost_feet": cost} for (x, y), cost in cells.items()],
            }
        )
        return _ok(cmd, "\n".join(lines), data)

    around = adjacent_cells(grid, origin)
    lines = [f"Squares around {name}:"]
    lines.extend(f"  {_cell_str(cell)}: {status}" for cell, status in around)
    data["adjacent"] = [{"x": x, "y": y, "status": status} for (x, y), status in around]
    return _ok(cmd, "\n".join(lines), data)


_AURA_FIELDS = (
    "owner_id", "spell_name", "radius", "duration", "damage", "damage_type", "healing",
    "effect", "condition", "save_dc", "save_ability", "half_on_save", "affects_enemies",
    "affects_allies",
)


def _aura_targets(world: WorldState, encounter: Encounter, aura) -> list[AuraTarget]:
    owner = encounter.participant(aura.owner_id)
    targets = []
    for p in encounter.participants:
        if p.id == owner.id or p.is_dead:
            continue
        hostile = p.is_enemy != owner.is_enemy
        if (hostile and not aura.affects_enemies) or (not hostile and not aura.affects_allies):
            continue
        save_modifier = _save_modifier(world, p, aura.save_ability) if aura.save_ability else 0
        targets.append(
            AuraTarget(
                target_id=p.id,
                distance=measure_distance(owner.position, p.position).feet,
                save_modifier=save_modifier,
            )
        )
    return targets


def _manage_aura(world: WorldState, cmd: ManageAuraCommand) -> CommandResult:
    manager = AuraManager(world.auras)

    if cmd.operation == "create":
        if cmd.encounter_id:
            EncounterManager(world).get(cmd.encounter_id).participant(cmd.owner_id)
        fields = {n: getattr(cmd, n) for n in _AURA_FIELDS if getattr(cmd, n) is not None}
        aura = manager.create(**fields)
        return _ok(cmd, f"Aura created: {aura.describe()}", {"aura": aura.model_dump(mode="json")})

    if cmd.operation == "list":
        auras = manager.list(cmd.owner_id)
        text = "\n".join(a.describe() for a in auras) if auras else "No active auras"
        return _ok(cmd, text, {"auras": [a.model_dump(mode="json") for a in auras]})

    if cmd.operation == "remove":
        aura = manager.remove(cmd.aura_id, cmd.reason)
        text = f"{aura.spell_name} ({aura.id}) removed"
        if cmd.reason:
            text += f": {cmd.reason}"
        return _ok(cmd, text, {"aura": aura.model_dump(mode="json")})

    aura = manager.get(cmd.aura_id)
    encounter = EncounterManager(world).get(cmd.encounter_id) if cmd.encounter_id else None
    targets = list(cmd.targets)
    participants: dict[str, Participant] = {}
    if encounter is not None:
        if not targets:
            targets = _aura_targets(world, encounter, aura)
        # Resolve every target before the pulse spends duration or deals damage.
        participants = {t.target_id: encounter.participant(t.target_id) for t in targets}

    result = manager.process(
        aura.id,
        targets,
        decrement_duration=cmd.decrement_duration,
        manual_damage_rolls=cmd.manual_damage_rolls,
        manual_healing_rolls=cmd.manual_healing_rolls,
        manual_save_rolls=cmd.manual_save_rolls,
        rng=world.rng,
    )
    lines = [result.describe()]

    if encounter is not None:
        encounters = EncounterManager(world)
        for outcome in result.affected:
            participant = participants[outcome.target_id]
            if outcome.damage and not participant.is_dead:
                damage = encounters.apply_damage(encounter.id, participant.id, outcome.damage, aura.damage_type)
                lines.append(damage.describe())
            if outcome.healing and not participant.is_dead:
                lines.append(encounters.heal(encounter.id, participant.id, outcome.healing).describe())
            if outcome.condition is not None and not participant.is_dead:
                try:
                    change = ConditionEngine.add(
                        world.conditions_for(participant.id),
                        participant.id,
                        outcome.condition,
                        source=aura.spell_name,
                        immunities=participant.condition_immunities,
                    )
                except StateError as e:
                    lines.append(e.message)
                else:
                    lines.append(f"{participant.name}: {change.message}")

    data = {
        "aura_id": aura.id,
        "expired": result.expired,
        "duration": result.remaining,
        "damage_total": result.damage_roll.total if result.damage_roll else None,
        "healing_total": result.healing_roll.total if result.healing_roll else None,
        "outcomes": [o.to_dict() for o in result.outcomes],
    }
    return _ok(cmd, "\n".join(lines), data)


# ---------------------------------------------------------------------------
# Handlers: scrolls and improvised spells
# ---------------------------------------------------------------------------

def _optional_character(world: WorldState, character_id: str | None, character_name: str | None, warnings: list[str]):
    if not character_id and not character_name:
        return None
    lookup = resolve_character(world.repository, character_id, character_name)
    warnings.extend(lookup.warnings)
    return lookup.character


def _use_scroll(world: WorldState, cmd: UseScrollCommand) -> CommandResult:
    warnings: list[str] = []
    character = _optional_character(world, cmd.character_id, cmd.character_name, warnings)
    targets = ([cmd.target_id] if cmd.target_id else []) + list(cmd.target_ids)
    result = use_scroll(
        cmd.scroll_name,
        cmd.spell_level,
        character=character,
        caster_level=cmd.caster_level,
        arcana_bonus=cmd.arcana_bonus,
        mode=cmd.mode,
        manual_roll=cmd.manual_roll,
        manual_rolls=cmd.manual_rolls,
        is_attack_spell=cmd.is_attack_spell,
        school=cmd.spell_school,
        targets=targets,
        target_position=cmd.target_position,
        rng=world.rng,
    )
    return _ok(cmd, result.describe(), result.to_dict(), warnings)


def _synthesize_spell(world: WorldState, cmd: SynthesizeSpellCommand) -> CommandResult:
    warnings: list[str] = []
    character = _optional_character(world, cmd.character_id, cmd.character_name, warnings)
    result = synthesize_spell(
        cmd.proposed_spell,
        character=character,
        intent=cmd.intent,
        arcana_bonus=cmd.arcana_bonus,
        near_ley_line=cmd.near_ley_line,
        material_value_gp=cmd.material_component_value,
        desperation=cmd.desperation,
        mode=cmd.mode,
        manual_roll=cmd.manual_roll,
        manual_rolls=cmd.manual_rolls,
        rng=world.rng,
    )
    return _ok(cmd, result.describe(), result.to_dict(), warnings)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

_HANDLERS: dict[str, Callable[[WorldState, Any], CommandResult]] = {
    "create_encounter": _create_encounter,
    "advance_turn": _advance_turn,
    "get_encounter": _get_encounter,
    "end_encounter": _end_encounter,
    "apply_damage": _apply_damage,
    "heal": _heal,
    "move_participant": _move_participant,
    "manage_condition": _manage_condition,
    "roll_dice": _roll_dice,
    "roll_check": _roll_check,
    "roll_death_save": _roll_death_save,
    "manage_concentration": _manage_concentration,
    "manage_spell_slots": _manage_spell_slots,
    "take_rest": _take_rest,
    "check_line_of_sight": _check_line_of_sight,
    "check_cover": _check_cover,
    "measure_distance": _measure_distance,
    "calculate_aoe": _calculate_aoe,
    "manage_aura": _manage_aura,
    "render_battlefield": _render_battlefield,
    "register_character": _register_character,
    "execute_action": _execute_action,
    "place_prop": _place_prop,
    "calculate_movement": _calculate_movement,
    "use_scroll": _use_scroll,
    "synthesize_spell": _synthesize_spell,
}

if set(_HANDLERS) != set(COMMAND_ACTIONS):
    raise RuntimeError(f"Command handlers out of sync: {sorted(set(COMMAND_ACTIONS) ^ set(_HANDLERS))}")


def _from_pydantic(error: PydanticValidationError) -> ValidationError:
    problems = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item["loc"])
        problems.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    first = error.errors()[0]["loc"] if error.errors() else ()
    return ValidationError("; ".join(problems), field=".".join(str(p) for p in first) or None)


def parse_command(raw: BaseModel | dict[str, Any]) -> BaseModel:
    """Validate raw input into a command model.

    Raises:
        ValidationError: Unknown action or invalid fields.
    """
    if isinstance(raw, COMMAND_TYPES):
        return raw
    try:
        return _COMMAND_ADAPTER.validate_python(raw)
    except PydanticValidationError as e:
        raise _from_pydantic(e) from e


def execute(world: WorldState, command: BaseModel | dict[str, Any]) -> CommandResult:
    """Run one command against the world.

    Engine errors are returned as failed results; they never escape.
    """
    if isinstance(command, dict):
        action = str(command.get("action", "unknown"))
    else:
        action = getattr(command, "action", "unknown")
    try:
        parsed = parse_command(command)
        return _HANDLERS[parsed.action](world, parsed)
    except PydanticValidationError as e:
        error = _from_pydantic(e)
    except RulesEngineError as e:
        error = e
    logger.debug(f"❌ {action} failed ({error.kind}): {error.message}")
    return CommandResult(action=action, success=False, text=error.message, error_kind=error.kind)


def execute_batch(world: WorldState, commands: list[BaseModel | dict[str, Any]]) -> BatchResult:
    """Run 1-20 commands in order. Each one succeeds or fails independently.

    Raises:
        ValidationError: If the batch is empty or too large.
    """
    if not 1 <= len(commands) <= MAX_BATCH:
        raise ValidationError(f"A batch holds 1-{MAX_BATCH} commands, got {len(commands)}", field="commands")
    return BatchResult(results=[execute(world, command) for command in commands])
