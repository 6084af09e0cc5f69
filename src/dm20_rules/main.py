"""
DM20 Rules Engine MCP Server
D&D 5e combat, magic and spatial rules exposed as FastMCP tools.
"""

import logging
from typing import Annotated, Any, Literal

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

from .checks import CheckType
from .combat.actions import ActionCost, ActionKind, ShoveMode
from .combat.battlefield import LegendDetail, Viewport
from .combat.encounter import ParticipantRef, ParticipantSpec, Terrain
from .combat.props import PropType
from .commands import MAX_BATCH, execute, execute_batch
from .errors import RulesEngineError
from .logutils import configure_logging
from .magic.auras import AuraTarget, ManualSaveRoll
from .magic.scrolls import ProposedSpell, SpellSchool
from .magic.spell_slots import RestKind, SlotOperation
from .models import Ability, ConditionTag, DamageType, Lighting, Skill
from .repository import InMemoryCharacterRepository, JsonCharacterRepository
from .config import EngineSettings
from .spatial.positioning import AoEShapeKind, DistanceMode, Position
from .spatial.movement import MovementMode
from .spatial.sight import CoverLevel, CreatureBlocker, Obstacle, Sense
from .world import WorldState

logger = logging.getLogger("dm20-rules")

if not load_dotenv():
    logger.debug("No .env file found, using process environment only")

settings = EngineSettings.from_env()
configure_logging(settings.log_level)

if settings.characters_dir is not None:
    repository = JsonCharacterRepository(settings.characters_dir)
    logger.debug(f"📂 Character directory: {settings.characters_dir}")
else:
    repository = InMemoryCharacterRepository()
    logger.debug("📂 No character directory configured, characters are kept in memory")

world = WorldState(repository=repository, seed=settings.seed)
logger.debug("✅ World state initialized")

mcp = FastMCP(
    name="dm20-rules"
)

logger.debug("✅ Server initialized, registering tools")


def _run(action: str, **fields: Any) -> str:
    """Execute one command; ``None`` arguments fall back to command defaults."""
    payload = {"action": action}
    payload.update({k: v for k, v in fields.items() if v is not None})
    return execute(world, payload).render()


def _run_batch(commands: list[dict[str, Any]]) -> str:
    try:
        return execute_batch(world, commands).render()
    except RulesEngineError as e:
        return f"❌ {e.message}"


# Encounter Tools
@mcp.tool
def create_encounter(
    participants: Annotated[list[ParticipantSpec | ParticipantRef], Field(description="Participants: explicit stat blocks ({name, hp, ac, ...}) or character references ({character_id | character_name, position, is_enemy})", min_length=1)],
    terrain: Annotated[Terrain | None, Field(description="Grid size plus wall, difficult terrain, water and hazard squares ('x,y' strings)")] = None,
    seed: Annotated[int | None, Field(description="Seed for reproducible initiative rolls")] = None,
    lighting: Annotated[Lighting, Field(description="Ambient lighting")] = Lighting.BRIGHT,
    surprise: Annotated[list[str] | None, Field(description="Participant ids that are surprised in round 1")] = None,
) -> str:
    """Start a combat encounter and roll initiative.

    Initiative is d20 + DEX modifier (or the given bonus), sorted highest first.
    Characters referenced by id or name are copied from the character records;
    damage taken in the encounter does not change those records.
    """
    return _run(
        "create_encounter",
        participants=participants,
        terrain=terrain,
        seed=seed,
        lighting=lighting,
        surprise=surprise,
    )


@mcp.tool
def advance_turn(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
) -> str:
    """End the current turn and move to the next participant who can act.

    Dead and stable participants are skipped. Conditions of the participant
    whose turn ends tick down; dying participants get death save reminders.
    """
    return _run("advance_turn", encounter_id=encounter_id)


@mcp.tool
def get_encounter(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
) -> str:
    """Show the round, whose turn it is, the initiative order and active conditions."""
    return _run("get_encounter", encounter_id=encounter_id)


@mcp.tool
def end_encounter(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
) -> str:
    """End an encounter and summarize who is standing, down and fallen."""
    return _run("end_encounter", encounter_id=encounter_id)


@mcp.tool
def apply_damage(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
    target_id: Annotated[str, Field(description="Participant ID or name")],
    amount: Annotated[int | None, Field(description="Damage before resistances", ge=0)] = None,
    dice: Annotated[str | None, Field(description="Roll the damage instead, e.g. '2d6+3'")] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Physical dice results for the damage roll")] = None,
    damage_type: Annotated[DamageType | None, Field(description="Damage type for resistance/immunity/vulnerability")] = None,
    critical: Annotated[bool, Field(description="Damage is from a critical hit (two death save failures at 0 HP)")] = False,
) -> str:
    """Deal damage to a participant.

    Allies dropping to 0 HP fall unconscious and start death saves, enemies die.
    Concentrating casters are told the concentration save DC.
    """
    return _run(
        "apply_damage",
        encounter_id=encounter_id,
        target_id=target_id,
        amount=amount,
        dice=dice,
        manual_rolls=manual_rolls,
        damage_type=damage_type,
        critical=critical,
    )


@mcp.tool
def heal(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
    target_id: Annotated[str, Field(description="Participant ID or name")],
    amount: Annotated[int | None, Field(description="HP restored", ge=0)] = None,
    dice: Annotated[str | None, Field(description="Roll the healing instead, e.g. '1d8+3'")] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Physical dice results for the healing roll")] = None,
) -> str:
    """Restore hit points (capped at max). Healing from 0 HP ends dying."""
    return _run(
        "heal",
        encounter_id=encounter_id,
        target_id=target_id,
        amount=amount,
        dice=dice,
        manual_rolls=manual_rolls,
    )


@mcp.tool
def move_participant(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
    participant_id: Annotated[str, Field(description="Participant ID or name")],
    x: Annotated[float, Field(description="Destination column (grid squares)")],
    y: Annotated[float, Field(description="Destination row (grid squares)")],
    z: Annotated[float, Field(description="Destination elevation in squares")] = 0,
    ignore_speed: Annotated[bool, Field(description="Skip the speed check (forced movement, teleport)")] = False,
) -> str:
    """Move a participant, checking walls, props, enemy-occupied squares and speed.

    Movement is tracked per turn: several moves share one speed allowance,
    doubled by a Dash. Difficult terrain and water cost double; conditions
    like grappled or restrained reduce speed to 0. Leaving an enemy's reach
    is reported as an opportunity attack.
    """
    return _run(
        "move_participant",
        encounter_id=encounter_id,
        participant_id=participant_id,
        to={"x": x, "y": y, "z": z},
        ignore_speed=ignore_speed,
    )


@mcp.tool
def roll_death_save(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
    participant_id: Annotated[str, Field(description="Participant ID or name")],
    modifier: Annotated[int, Field(description="Bonus to the save", ge=-10, le=10)] = 0,
    advantage: Annotated[bool, Field(description="Roll with advantage")] = False,
    disadvantage: Annotated[bool, Field(description="Roll with disadvantage")] = False,
    manual_roll: Annotated[int | None, Field(description="Physical d20 result", ge=1, le=20)] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Both d20 results for advantage/disadvantage")] = None,
) -> str:
    """Roll a death saving throw for a participant at 0 HP.

    10+ succeeds, natural 1 counts as two failures, natural 20 restores 1 HP.
    Three successes stabilize; three failures mean death.
    """
    return _run(
        "roll_death_save",
        encounter_id=encounter_id,
        participant_id=participant_id,
        modifier=modifier,
        advantage=advantage,
        disadvantage=disadvantage,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
    )


@mcp.tool
def render_battlefield(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
    viewport: Annotated[Viewport | None, Field(description="Crop window {x, y, width, height}")] = None,
    focus_on: Annotated[str | None, Field(description="Centre the view on this participant")] = None,
    show_legend: Annotated[bool, Field(description="Include the legend")] = True,
    show_coordinates: Annotated[bool, Field(description="Include x/y axis labels")] = True,
    show_elevation: Annotated[bool, Field(description="Report elevation of airborne creatures")] = True,
    legend_detail: Annotated[LegendDetail, Field(description="minimal, standard or detailed")] = LegendDetail.STANDARD,
) -> str:
    """Draw the encounter grid as text with a participant legend."""
    return _run(
        "render_battlefield",
        encounter_id=encounter_id,
        viewport=viewport,
        focus_on=focus_on,
        show_legend=show_legend,
        show_coordinates=show_coordinates,
        show_elevation=show_elevation,
        legend_detail=legend_detail,
    )


# Action Tools
@mcp.tool
def execute_action(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
    actor_id: Annotated[str, Field(description="Participant taking the action")],
    action_type: Annotated[ActionKind, Field(description="attack, dash, disengage, dodge, grapple or shove")],
    target_id: Annotated[str | None, Field(description="Target participant (attack, grapple, shove)")] = None,
    cost: Annotated[ActionCost, Field(description="What it spends: action, bonus_action, reaction or free")] = ActionCost.ACTION,
    attack_bonus: Annotated[int, Field(description="Attack roll bonus", ge=-20, le=30)] = 0,
    damage: Annotated[str | None, Field(description="Damage dice on a hit, e.g. '1d8+3'")] = None,
    damage_type: Annotated[DamageType | None, Field(description="Damage type")] = None,
    range_feet: Annotated[int | None, Field(description="Reach or range; farther targets are refused", ge=5)] = None,
    manual_damage_rolls: Annotated[list[int] | None, Field(description="Physical damage dice (crit dice after the normal ones)")] = None,
    athletics_bonus: Annotated[int, Field(description="Extra bonus to the actor's Athletics check", ge=-20, le=20)] = 0,
    defender_bonus: Annotated[int, Field(description="Extra bonus to the target's check", ge=-20, le=20)] = 0,
    defender_skill: Annotated[Skill | None, Field(description="athletics or acrobatics; defaults to the better one")] = None,
    defender_manual_roll: Annotated[int | None, Field(description="Target's physical d20", ge=1, le=20)] = None,
    shove_mode: Annotated[ShoveMode, Field(description="Push 5 ft away or knock prone")] = ShoveMode.AWAY,
    advantage: Annotated[bool, Field(description="Roll with advantage")] = False,
    disadvantage: Annotated[bool, Field(description="Roll with disadvantage")] = False,
    manual_roll: Annotated[int | None, Field(description="Physical d20 result", ge=1, le=20)] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Both d20 results for advantage/disadvantage")] = None,
) -> str:
    """Take a combat action and spend its action, bonus action or reaction.

    Attacks pick up advantage and disadvantage from conditions and dodging
    targets; grapple and shove are contested Athletics checks. Spent
    actions come back at the start of the participant's next turn.
    """
    return _run(
        "execute_action",
        encounter_id=encounter_id,
        actor_id=actor_id,
        action_type=action_type,
        target_id=target_id,
        cost=cost,
        attack_bonus=attack_bonus,
        damage=damage,
        damage_type=damage_type,
        range_feet=range_feet,
        manual_damage_rolls=manual_damage_rolls,
        athletics_bonus=athletics_bonus,
        defender_bonus=defender_bonus,
        defender_skill=defender_skill,
        defender_manual_roll=defender_manual_roll,
        shove_mode=shove_mode,
        advantage=advantage,
        disadvantage=disadvantage,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
    )


@mcp.tool
def place_prop(
    encounter_id: Annotated[str, Field(description="Encounter ID")],
    operation: Annotated[Literal["place", "remove", "update", "move", "list"], Field(description="Operation")],
    prop_id: Annotated[str | None, Field(description="Prop ID (remove, update, move; optional for place)")] = None,
    name: Annotated[str | None, Field(description="Prop name (place)")] = None,
    prop_type: Annotated[PropType | None, Field(description="barrel, crate, door, pillar, trap, ... (place)")] = None,
    x: Annotated[float | None, Field(description="Column (place, move)")] = None,
    y: Annotated[float | None, Field(description="Row (place, move)")] = None,
    z: Annotated[float, Field(description="Elevation in squares")] = 0,
    state: Annotated[str | None, Field(description="'open', 'closed', 'lit'...")] = None,
    locked: Annotated[bool | None, Field(description="Locked")] = None,
    lock_dc: Annotated[int | None, Field(description="DC to pick the lock", ge=1, le=30)] = None,
    cover: Annotated[CoverLevel | None, Field(description="Cover the prop gives: none, half, three_quarters, total")] = None,
    blocks_movement: Annotated[bool | None, Field(description="Creatures cannot enter its square")] = None,
    destructible: Annotated[bool | None, Field(description="Can be destroyed")] = None,
    hp: Annotated[int | None, Field(description="Hit points", ge=0)] = None,
    ac: Annotated[int | None, Field(description="Armor class", ge=1, le=30)] = None,
    hidden: Annotated[bool | None, Field(description="Not shown on the map")] = None,
    description: Annotated[str | None, Field(description="Free-text description")] = None,
    trap_dc: Annotated[int | None, Field(description="Trap save or detection DC", ge=1, le=30)] = None,
    trap_damage: Annotated[str | None, Field(description="Trap damage dice")] = None,
    trigger: Annotated[str | None, Field(description="What sets the trap off")] = None,
) -> str:
    """Place, move, update, remove or list props on the battlefield.

    Props that block movement stop movement and pathing; props with cover
    count in line-of-sight and cover checks.
    """
    position = {"x": x, "y": y, "z": z} if x is not None and y is not None else None
    return _run(
        "place_prop",
        encounter_id=encounter_id,
        operation=operation,
        prop_id=prop_id,
        name=name,
        prop_type=prop_type,
        position=position,
        state=state,
        locked=locked,
        lock_dc=lock_dc,
        cover=cover,
        blocks_movement=blocks_movement,
        destructible=destructible,
        hp=hp,
        ac=ac,
        hidden=hidden,
        description=description,
        trap_dc=trap_dc,
        trap_damage=trap_damage,
        trigger=trigger,
    )


# Condition Tools
@mcp.tool
def manage_condition(
    target_id: Annotated[str, Field(description="Creature ID (participant ID or name when encounter_id is given)")],
    operation: Annotated[Literal["add", "remove", "query"], Field(description="Operation")],
    condition: Annotated[str | None, Field(description="Condition name, or 'all' to remove everything")] = None,
    duration: Annotated[int | str | None, Field(description="Rounds, or concentration / until_dispelled / until_rest / save_ends")] = None,
    source: Annotated[str | None, Field(description="What caused the condition")] = None,
    exhaustion_levels: Annotated[int, Field(description="Exhaustion levels to add or remove", ge=1, le=6)] = 1,
    save_dc: Annotated[int | None, Field(description="Save DC to end the condition", ge=1, le=30)] = None,
    save_ability: Annotated[Ability | None, Field(description="Ability for the save")] = None,
    encounter_id: Annotated[str | None, Field(description="Encounter whose participant is targeted")] = None,
) -> str:
    """Add, remove or list conditions on a creature.

    Exhaustion stacks up to level 6. Incapacitating conditions end concentration.
    With an encounter, the effective stats after conditions are shown.
    """
    return _run(
        "manage_condition",
        target_id=target_id,
        operation=operation,
        condition=condition,
        duration=duration,
        source=source,
        exhaustion_levels=exhaustion_levels,
        save_dc=save_dc,
        save_ability=save_ability,
        encounter_id=encounter_id,
    )


@mcp.tool
def manage_condition_batch(
    operations: Annotated[list[dict[str, Any]], Field(description="manage_condition arguments, one object per operation", min_length=1, max_length=MAX_BATCH)],
) -> str:
    """Run several condition operations; each succeeds or fails on its own."""
    return _run_batch([{**op, "action": "manage_condition"} for op in operations])


# Dice Tools
@mcp.tool
def roll_dice(
    expression: Annotated[str, Field(description="Dice notation: '2d6+3', '4d6kh3', '2d20kl1'")],
    manual_rolls: Annotated[list[int] | None, Field(description="Physical results for the first dice")] = None,
    label: Annotated[str | None, Field(description="What the roll is for")] = None,
) -> str:
    """Roll dice with keep/drop highest/lowest and a flat modifier."""
    return _run("roll_dice", expression=expression, manual_rolls=manual_rolls, label=label)


@mcp.tool
def roll_check(
    check_type: Annotated[CheckType, Field(description="skill, ability, save, attack or initiative")],
    ability: Annotated[Ability | None, Field(description="Ability (not needed for skills and initiative)")] = None,
    skill: Annotated[Skill | None, Field(description="Skill for skill checks")] = None,
    character_id: Annotated[str | None, Field(description="Character ID for modifiers and proficiency")] = None,
    character_name: Annotated[str | None, Field(description="Character name (if no ID)")] = None,
    bonus: Annotated[int, Field(description="Extra flat bonus", ge=-20, le=20)] = 0,
    dc: Annotated[int | None, Field(description="Difficulty class", ge=1, le=40)] = None,
    advantage: Annotated[bool, Field(description="Roll with advantage")] = False,
    disadvantage: Annotated[bool, Field(description="Roll with disadvantage")] = False,
    manual_roll: Annotated[int | None, Field(description="Physical d20 result", ge=1, le=20)] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Both d20 results for advantage/disadvantage")] = None,
    contest: Annotated[dict[str, Any] | None, Field(description="Opposing check {check_type, skill, character_id, ...} for a contest")] = None,
) -> str:
    """Roll a skill check, ability check, saving throw, attack roll or initiative.

    Saving throws treat a natural 20 as success and a natural 1 as failure.
    """
    return _run(
        "roll_check",
        check_type=check_type,
        ability=ability,
        skill=skill,
        character_id=character_id,
        character_name=character_name,
        bonus=bonus,
        dc=dc,
        advantage=advantage,
        disadvantage=disadvantage,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
        contest=contest,
    )


# Concentration Tools
@mcp.tool
def manage_concentration(
    caster_id: Annotated[str, Field(description="Caster ID (participant ID or name when encounter_id is given)")],
    operation: Annotated[Literal["set", "get", "break", "check"], Field(description="Operation")],
    spell_name: Annotated[str | None, Field(description="Spell to concentrate on (set)")] = None,
    targets: Annotated[list[str] | None, Field(description="Spell targets (set)")] = None,
    duration: Annotated[int | None, Field(description="Duration in rounds (set)", ge=1)] = None,
    reason: Annotated[str | None, Field(description="Why concentration ends (break)")] = None,
    damage: Annotated[int | None, Field(description="Damage taken (check)", ge=0)] = None,
    con_save_modifier: Annotated[int | None, Field(description="CON save modifier; looked up from the character when omitted")] = None,
    advantage: Annotated[bool, Field(description="Roll with advantage")] = False,
    disadvantage: Annotated[bool, Field(description="Roll with disadvantage")] = False,
    manual_roll: Annotated[int | None, Field(description="Physical d20 result", ge=1, le=20)] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Both d20 results for advantage/disadvantage")] = None,
    encounter_id: Annotated[str | None, Field(description="Encounter of the caster")] = None,
) -> str:
    """Track concentration: start a spell, look it up, end it, or roll the save after damage.

    The save DC is max(10, half the damage).
    """
    return _run(
        "manage_concentration",
        caster_id=caster_id,
        operation=operation,
        spell_name=spell_name,
        targets=targets,
        duration=duration,
        reason=reason,
        damage=damage,
        con_save_modifier=con_save_modifier,
        advantage=advantage,
        disadvantage=disadvantage,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
        encounter_id=encounter_id,
    )


# Spell Slot Tools
@mcp.tool
def manage_spell_slots(
    operation: Annotated[SlotOperation, Field(description="view, expend, restore or set")],
    character_id: Annotated[str | None, Field(description="Character ID")] = None,
    character_name: Annotated[str | None, Field(description="Character name (if no ID)")] = None,
    slot_level: Annotated[int | None, Field(description="Slot level 1-9", ge=1, le=9)] = None,
    count: Annotated[int | None, Field(description="Number of slots", ge=1, le=20)] = None,
    pact_magic: Annotated[bool, Field(description="Use the pact magic pool")] = False,
    slots: Annotated[dict[str, dict[str, int]] | None, Field(description="DM override: {'1': {'current': 2, 'max': 4}, 'pact': {'current': 1}}")] = None,
) -> str:
    """View, expend, restore or override a character's spell slots.

    Pools are initialized from class and level on first use. Expending more
    slots than remain fails without changing anything.
    """
    return _run(
        "manage_spell_slots",
        operation=operation,
        character_id=character_id,
        character_name=character_name,
        slot_level=slot_level,
        count=count,
        pact_magic=pact_magic,
        slots=slots,
    )


@mcp.tool
def manage_spell_slots_batch(
    operations: Annotated[list[dict[str, Any]], Field(description="manage_spell_slots arguments, one object per operation", min_length=1, max_length=MAX_BATCH)],
) -> str:
    """Run several spell slot operations; each succeeds or fails on its own."""
    return _run_batch([{**op, "action": "manage_spell_slots"} for op in operations])


@mcp.tool
def take_rest(
    rest_type: Annotated[RestKind, Field(description="short or long")],
    character_id: Annotated[str | None, Field(description="Character ID")] = None,
    character_name: Annotated[str | None, Field(description="Character name (if no ID)")] = None,
) -> str:
    """Take a rest. Long rests restore all slots; short rests restore pact magic."""
    return _run("take_rest", rest_type=rest_type, character_id=character_id, character_name=character_name)


@mcp.tool
def register_character(
    character: Annotated[dict[str, Any], Field(description="Character record: name, character_class (name or custom class object), level, race, abilities, hit_points_max, armor_class, ...")],
) -> str:
    """Store a character record so encounters, checks and spell slots can use it."""
    return _run("register_character", character=character)


# Spatial Tools
@mcp.tool
def check_line_of_sight(
    observer: Annotated[Position | None, Field(description="Observer position {x, y, z}")] = None,
    target: Annotated[Position | None, Field(description="Target position {x, y, z}")] = None,
    observer_id: Annotated[str | None, Field(description="Observer participant (needs encounter_id)")] = None,
    target_id: Annotated[str | None, Field(description="Target participant (needs encounter_id)")] = None,
    encounter_id: Annotated[str | None, Field(description="Encounter whose walls and creatures are considered")] = None,
    obstacles: Annotated[list[Obstacle] | None, Field(description="Point obstacles {x, y, z, kind, height}")] = None,
    creatures: Annotated[list[CreatureBlocker] | None, Field(description="Creatures in the way {x, y, size}")] = None,
    creatures_block: Annotated[bool, Field(description="Whether creatures block sight")] = False,
    lighting: Annotated[Lighting | None, Field(description="Lighting at the target")] = None,
    senses: Annotated[list[Sense] | None, Field(description="Observer senses {kind, range}")] = None,
) -> str:
    """Trace a line of sight. Only total cover blocks it; lesser cover is reported."""
    return _run(
        "check_line_of_sight",
        observer=observer,
        target=target,
        observer_id=observer_id,
        target_id=target_id,
        encounter_id=encounter_id,
        obstacles=obstacles,
        creatures=creatures,
        creatures_block=creatures_block,
        lighting=lighting,
        senses=senses,
    )


@mcp.tool
def check_cover(
    attacker: Annotated[Position | None, Field(description="Attacker position {x, y, z}")] = None,
    target: Annotated[Position | None, Field(description="Target position {x, y, z}")] = None,
    attacker_id: Annotated[str | None, Field(description="Attacker participant (needs encounter_id)")] = None,
    target_id: Annotated[str | None, Field(description="Target participant (needs encounter_id)")] = None,
    encounter_id: Annotated[str | None, Field(description="Encounter whose walls and creatures are considered")] = None,
    obstacles: Annotated[list[Obstacle] | None, Field(description="Point obstacles {x, y, z, kind, height}")] = None,
    creatures: Annotated[list[CreatureBlocker] | None, Field(description="Creatures in the way {x, y, size}")] = None,
    creatures_provide_cover: Annotated[bool, Field(description="Whether creatures give cover")] = True,
) -> str:
    """Work out the cover a target has: none, half (+2), three-quarters (+5) or total."""
    return _run(
        "check_cover",
        attacker=attacker,
        target=target,
        attacker_id=attacker_id,
        target_id=target_id,
        encounter_id=encounter_id,
        obstacles=obstacles,
        creatures=creatures,
        creatures_provide_cover=creatures_provide_cover,
    )


@mcp.tool
def measure_distance(
    from_position: Annotated[Position | None, Field(description="Start {x, y, z}")] = None,
    to_position: Annotated[Position | None, Field(description="End {x, y, z}")] = None,
    from_id: Annotated[str | None, Field(description="Start participant (needs encounter_id)")] = None,
    to_id: Annotated[str | None, Field(description="End participant (needs encounter_id)")] = None,
    encounter_id: Annotated[str | None, Field(description="Encounter for participant lookups")] = None,
    mode: Annotated[DistanceMode, Field(description="grid_5e, euclidean or grid_alt")] = DistanceMode.GRID_5E,
    include_elevation: Annotated[bool, Field(description="Count elevation in the grid modes")] = False,
) -> str:
    """Measure the distance in feet between two points or participants."""
    return _run(
        "measure_distance",
        from_position=from_position,
        to_position=to_position,
        from_id=from_id,
        to_id=to_id,
        encounter_id=encounter_id,
        mode=mode,
        include_elevation=include_elevation,
    )


@mcp.tool
def calculate_aoe(
    shape: Annotated[AoEShapeKind, Field(description="sphere, cube, cone, line or cylinder")],
    size: Annotated[float, Field(description="Radius, side or length in feet", gt=0)],
    origin: Annotated[Position | None, Field(description="Origin {x, y, z}")] = None,
    origin_id: Annotated[str | None, Field(description="Originating participant (needs encounter_id)")] = None,
    direction_degrees: Annotated[float, Field(description="Direction for cones and lines: 0 = east, 90 = south")] = 0.0,
    width: Annotated[float, Field(description="Line width in feet", gt=0)] = 5.0,
    height: Annotated[float, Field(description="Cylinder height in feet", gt=0)] = 20.0,
    encounter_id: Annotated[str | None, Field(description="Encounter whose participants may be caught")] = None,
) -> str:
    """List the squares and creatures an area of effect covers."""
    return _run(
        "calculate_aoe",
        shape=shape,
        size=size,
        origin=origin,
        origin_id=origin_id,
        direction_degrees=direction_degrees,
        width=width,
        height=height,
        encounter_id=encounter_id,
    )


@mcp.tool
def calculate_movement(
    mode: Annotated[MovementMode, Field(description="path (cheapest route to a square), reach (every square within a budget) or adjacent")],
    participant_id: Annotated[str | None, Field(description="Participant to plan for (needs encounter_id)")] = None,
    start_x: Annotated[float | None, Field(description="Start column (instead of participant_id)")] = None,
    start_y: Annotated[float | None, Field(description="Start row")] = None,
    to_x: Annotated[float | None, Field(description="Destination column (path)")] = None,
    to_y: Annotated[float | None, Field(description="Destination row (path)")] = None,
    movement: Annotated[int | None, Field(description="Feet available (reach); defaults to what is left this turn, or 30", ge=0)] = None,
    encounter_id: Annotated[str | None, Field(description="Use this encounter's grid, walls, props and creatures")] = None,
    terrain: Annotated[Terrain | None, Field(description="Grid to plan on without an encounter")] = None,
    creatures_block: Annotated[bool, Field(description="Treat occupied squares as impassable")] = False,
) -> str:
    """Plan movement on the grid without moving anyone.

    Every step, diagonals included, costs 5 ft; difficult terrain and water
    cost 10 ft. Walls and movement-blocking props are impassable.
    """
    start = {"x": start_x, "y": start_y} if start_x is not None and start_y is not None else None
    to = {"x": to_x, "y": to_y} if to_x is not None and to_y is not None else None
    return _run(
        "calculate_movement",
        mode=mode,
        participant_id=participant_id,
        start=start,
        to=to,
        movement=movement,
        encounter_id=encounter_id,
        terrain=terrain,
        creatures_block=creatures_block,
    )


@mcp.tool
def manage_aura(
    operation: Annotated[Literal["create", "list", "remove", "process"], Field(description="Operation")],
    aura_id: Annotated[str | None, Field(description="Aura ID (remove, process)")] = None,
    owner_id: Annotated[str | None, Field(description="Creature the aura surrounds (create, list filter)")] = None,
    spell_name: Annotated[str | None, Field(description="Spell or feature name (create)")] = None,
    radius: Annotated[int | None, Field(description="Radius in feet (create)", ge=1)] = None,
    duration: Annotated[int | None, Field(description="Duration in rounds (create)", ge=1)] = None,
    damage: Annotated[str | None, Field(description="Damage dice per pulse, e.g. '3d8'")] = None,
    damage_type: Annotated[DamageType | None, Field(description="Damage type")] = None,
    healing: Annotated[str | None, Field(description="Healing dice per pulse")] = None,
    effect: Annotated[str | None, Field(description="Free-text effect")] = None,
    condition: Annotated[ConditionTag | None, Field(description="Condition imposed on a failed save")] = None,
    save_dc: Annotated[int | None, Field(description="Save DC", ge=1, le=30)] = None,
    save_ability: Annotated[Ability | None, Field(description="Save ability")] = None,
    half_on_save: Annotated[bool, Field(description="Half damage on a successful save")] = False,
    affects_enemies: Annotated[bool, Field(description="Affects the owner's enemies")] = True,
    affects_allies: Annotated[bool, Field(description="Affects the owner's allies")] = False,
    reason: Annotated[str | None, Field(description="Why the aura ends (remove)")] = None,
    targets: Annotated[list[AuraTarget] | None, Field(description="Targets {target_id, distance, save_modifier} (process)")] = None,
    encounter_id: Annotated[str | None, Field(description="Encounter to pick targets from and apply results to (process)")] = None,
    decrement_duration: Annotated[bool, Field(description="Count this pulse against the duration")] = True,
    manual_damage_rolls: Annotated[list[int] | None, Field(description="Physical damage dice")] = None,
    manual_healing_rolls: Annotated[list[int] | None, Field(description="Physical healing dice")] = None,
    manual_save_rolls: Annotated[list[ManualSaveRoll] | None, Field(description="Physical save d20s {target_id, roll}")] = None,
) -> str:
    """Create, list, remove or process auras such as Spirit Guardians.

    Processing rolls damage or healing once, a save per target in range, and
    decrements the duration; the aura ends at 0.
    """
    return _run(
        "manage_aura",
        operation=operation,
        aura_id=aura_id,
        owner_id=owner_id,
        spell_name=spell_name,
        radius=radius,
        duration=duration,
        damage=damage,
        damage_type=damage_type,
        healing=healing,
        effect=effect,
        condition=condition,
        save_dc=save_dc,
        save_ability=save_ability,
        half_on_save=half_on_save,
        affects_enemies=affects_enemies,
        affects_allies=affects_allies,
        reason=reason,
        targets=targets,
        encounter_id=encounter_id,
        decrement_duration=decrement_duration,
        manual_damage_rolls=manual_damage_rolls,
        manual_healing_rolls=manual_healing_rolls,
        manual_save_rolls=manual_save_rolls,
    )


# Scroll and Spell Synthesis Tools
@mcp.tool
def use_scroll(
    scroll_name: Annotated[str, Field(description="Scroll name, e.g. 'Scroll of Fireball'")],
    spell_level: Annotated[int, Field(description="Level of the spell on the scroll (0 for cantrips)", ge=0, le=9)],
    character_id: Annotated[str | None, Field(description="Reader's character ID (Arcana modifier, caster level)")] = None,
    character_name: Annotated[str | None, Field(description="Reader's character name (if no ID)")] = None,
    caster_level: Annotated[int | None, Field(description="Highest spell level the reader can cast", ge=0, le=9)] = None,
    arcana_bonus: Annotated[int, Field(description="Extra Arcana bonus", ge=-20, le=20)] = 0,
    is_attack_spell: Annotated[bool, Field(description="Show the scroll's spell attack bonus")] = False,
    spell_school: Annotated[SpellSchool | None, Field(description="School of magic")] = None,
    target_id: Annotated[str | None, Field(description="Single target")] = None,
    target_ids: Annotated[list[str] | None, Field(description="Several targets")] = None,
    target_x: Annotated[float | None, Field(description="Target point column")] = None,
    target_y: Annotated[float | None, Field(description="Target point row")] = None,
    advantage: Annotated[bool, Field(description="Roll with advantage")] = False,
    disadvantage: Annotated[bool, Field(description="Roll with disadvantage")] = False,
    manual_roll: Annotated[int | None, Field(description="Physical d20 result", ge=1, le=20)] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Both d20 results for advantage/disadvantage")] = None,
) -> str:
    """Cast a spell from a scroll; the scroll is consumed either way.

    A spell above the reader's caster level needs an Arcana check against
    DC 10 + spell level.
    """
    target_position = {"x": target_x, "y": target_y} if target_x is not None and target_y is not None else None
    return _run(
        "use_scroll",
        scroll_name=scroll_name,
        spell_level=spell_level,
        character_id=character_id,
        character_name=character_name,
        caster_level=caster_level,
        arcana_bonus=arcana_bonus,
        is_attack_spell=is_attack_spell,
        spell_school=spell_school,
        target_id=target_id,
        target_ids=target_ids,
        target_position=target_position,
        advantage=advantage,
        disadvantage=disadvantage,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
    )


@mcp.tool
def synthesize_spell(
    proposed_spell: Annotated[ProposedSpell, Field(description="The spell: name, level 1-9, school, effect {type, damage, ...}, range_feet, area, saving_throw")],
    intent: Annotated[str | None, Field(description="What the caster wants the magic to do")] = None,
    character_id: Annotated[str | None, Field(description="Caster's character ID (Arcana modifier)")] = None,
    character_name: Annotated[str | None, Field(description="Caster's character name (if no ID)")] = None,
    arcana_bonus: Annotated[int, Field(description="Extra Arcana bonus", ge=-20, le=20)] = 0,
    near_ley_line: Annotated[bool, Field(description="DC -2")] = False,
    desperation: Annotated[bool, Field(description="+2 to the roll, but any failure is a mishap")] = False,
    material_component_value: Annotated[int, Field(description="gp value of components: 100+ DC -1, 500+ DC -2, 1000+ DC -3", ge=0)] = 0,
    advantage: Annotated[bool, Field(description="Roll with advantage")] = False,
    disadvantage: Annotated[bool, Field(description="Roll with disadvantage")] = False,
    manual_roll: Annotated[int | None, Field(description="Physical d20 result", ge=1, le=20)] = None,
    manual_rolls: Annotated[list[int] | None, Field(description="Both d20 results for advantage/disadvantage")] = None,
) -> str:
    """Improvise a spell with an Arcana check against DC 10 + 2 x level.

    A natural 1 is always a mishap. A natural 20 success is critical and
    beating the DC by 5 gives an enhanced effect.
    """
    return _run(
        "synthesize_spell",
        proposed_spell=proposed_spell.model_dump(),
        intent=intent,
        character_id=character_id,
        character_name=character_name,
        arcana_bonus=arcana_bonus,
        near_ley_line=near_ley_line,
        desperation=desperation,
        material_component_value=material_component_value,
        advantage=advantage,
        disadvantage=disadvantage,
        manual_roll=manual_roll,
        manual_rolls=manual_rolls,
    )


# Batch Tools
@mcp.tool
def execute_commands(
    commands: Annotated[list[dict[str, Any]], Field(description="Commands, each with an 'action' field and that action's arguments", min_length=1, max_length=MAX_BATCH)],
) -> str:
    """Run up to 20 commands of any kind in order; each succeeds or fails on its own."""
    return _run_batch(commands)


logger.debug("✅ All tools successfully registered. DM20 Rules Engine server running! 🎲")

def main() -> None:
    """Main entry point for the DM20 Rules Engine MCP Server."""
    mcp.run()

if __name__ == "__main__":
    main()
