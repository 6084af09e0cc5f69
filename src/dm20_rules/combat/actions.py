"""
Actions a participant takes in combat: attack, dash, disengage, dodge,
grapple and shove.

Every action has a cost (action, bonus action, reaction or free). Spent
costs are recorded on the participant's ``TurnState`` and refused a second
time until their next turn starts. Dead and incapacitated participants
cannot act. Everything is validated and rolled before any state changes,
so a rejected action spends nothing.

Attack rolls get advantage or disadvantage from both sides' conditions and
from a dodging target. A natural 20 always hits and is critical, a natural
1 always misses; critical damage rolls the damage dice twice (the modifier
once). Grapple and shove are Athletics checks contested by the target's
Athletics or Acrobatics, ties going to the target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..checks import CheckResult, CheckType, ContestedResult, resolve_check, resolve_contested
from ..dice import D20Roll, DiceExpression, DiceRoll, RollMode, parse_dice, resolve_roll_mode, roll_d20, roll_dice
from ..errors import StateError, ValidationError
from ..models import SKILL_ABILITIES, Character, ConditionTag, DamageType, Size, Skill
from ..spatial.positioning import Position, measure_distance
from .conditions import CONDITION_EFFECTS, ConditionEngine
from .encounter import DamageResult, Encounter, EncounterManager, Participant
from .props import PropEngine

if TYPE_CHECKING:
    from ..world import WorldState

logger = logging.getLogger("dm20-rules")

SIZE_ORDER: list[Size] = list(Size)


class ActionKind(str, Enum):
    ATTACK = "attack"
    DASH = "dash"
    DISENGAGE = "disengage"
    DODGE = "dodge"
    GRAPPLE = "grapple"
    SHOVE = "shove"


class ActionCost(str, Enum):
    ACTION = "action"
    BONUS_ACTION = "bonus_action"
    REACTION = "reaction"
    FREE = "free"


class ShoveMode(str, Enum):
    AWAY = "away"
    PRONE = "prone"


_COST_FLAGS: dict[ActionCost, str] = {
    ActionCost.ACTION: "action_used",
    ActionCost.BONUS_ACTION: "bonus_action_used",
    ActionCost.REACTION: "reaction_used",
}


@dataclass
class ActionResult:
    """What an action did."""

    kind: ActionKind
    cost: ActionCost
    actor: Participant
    target: Participant | None = None
    lines: list[str] = field(default_factory=list)
    attack_roll: D20Roll | None = None
    roll_reasons: list[str] = field(default_factory=list)
    hit: bool | None = None
    critical: bool = False
    damage_rolls: list[DiceRoll] = field(default_factory=list)
    damage: DamageResult | None = None
    contest: ContestedResult | None = None
    success: bool | None = None
    pushed_to: Position | None = None
    condition: ConditionTag | None = None

    def describe(self) -> str:
        cost = "" if self.cost == ActionCost.ACTION else f" ({self.cost.value.replace('_', ' ')})"
        header = f"{self.actor.name}: {self.kind.value}{cost}"
        if self.target is not None:
            header += f" -> {self.target.name}"
        return "\n".join([header, *self.lines])

    def to_dict(self) -> dict:
        turn = self.actor.turn
        return {
            "kind": self.kind.value,
            "cost": self.cost.value,
            "actor_id": self.actor.id,
            "target_id": self.target.id if self.target else None,
            "attack_rolls": list(self.attack_roll.rolls) if self.attack_roll else None,
            "attack_total": self.attack_roll.total if self.attack_roll else None,
            "roll_mode": self.attack_roll.mode.value if self.attack_roll else None,
            "roll_reasons": list(self.roll_reasons),
            "hit": self.hit,
            "critical": self.critical,
            "damage_rolls": [r.rolls for r in self.damage_rolls],
            "damage": self.damage.damage if self.damage else None,
            "target_hp": self.target.hp if self.target else None,
            "winner": self.contest.winner if self.contest else None,
            "success": self.success,
            "pushed_to": self.pushed_to.model_dump() if self.pushed_to else None,
            "condition": self.condition.value if self.condition else None,
            "turn": turn.model_dump(),
        }


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


class ActionManager:
    """Resolves combat actions against encounters in a WorldState."""

    def __init__(self, world: "WorldState") -> None:
        self.world = world
        self.encounters = EncounterManager(world)

    # -----------------------------------------------------------------
    # Shared checks
    # -----------------------------------------------------------------

    def _begin(self, encounter_id: str, actor_id: str, cost: ActionCost) -> tuple[Encounter, Participant]:
        encounter = self.encounters.get(encounter_id)
        actor = encounter.participant(actor_id)
        if actor.is_dead:
            raise StateError(f"{actor.name} is dead")
        if cost != ActionCost.FREE:
            if self.encounters.effective_stats(actor).incapacitated:
                raise StateError(f"{actor.name} is incapacitated and cannot take actions or reactions")
            if getattr(actor.turn, _COST_FLAGS[cost]):
                raise StateError(
                    f"{actor.name} has already used their {cost.value.replace('_', ' ')} this turn"
                )
        return encounter, actor

    @staticmethod
    def _target(encounter: Encounter, actor: Participant, target_id: str | None, kind: ActionKind) -> Participant:
        if not target_id:
            raise ValidationError(f"{kind.value} requires a target", field="target_id")
        target = encounter.participant(target_id)
        if target.id == actor.id:
            raise ValidationError(f"{actor.name} cannot {kind.value} themselves", field="target_id")
        if target.is_dead:
            raise StateError(f"{target.name} is already dead")
        return target

    @staticmethod
    def _spend(actor: Participant, cost: ActionCost) -> None:
        if cost != ActionCost.FREE:
            setattr(actor.turn, _COST_FLAGS[cost], True)

    def _character(self, participant: Participant) -> Character | None:
        if participant.character_id is None:
            return None
        return self.world.repository.get(participant.character_id)

    # -----------------------------------------------------------------
    # Attack
    # -----------------------------------------------------------------

    def _attack_modifiers(
        self, actor: Participant, target: Participant, distance: float
    ) -> tuple[bool, bool, bool, list[str]]:
        """Advantage, disadvantage, automatic critical, and why."""
        advantage = disadvantage = auto_critical = False
        reasons: list[str] = []

        stats = self.encounters.effective_stats(actor)
        if "attack rolls" in stats.disadvantage_on:
            disadvantage = True
            reasons.append(f"{actor.name} has disadvantage on attack rolls")
        if "attack rolls" in stats.advantage_on:
            advantage = True
            reasons.append(f"{actor.name} has advantage on attack rolls")

        for active in self.encounters.conditions_of(target):
            if active.condition == ConditionTag.EXHAUSTION:
                continue
            notes = CONDITION_EFFECTS[active.condition].notes
            name = active.condition.value
            if "attacks against have advantage" in notes:
                advantage = True
                reasons.append(f"{target.name} is {name}: advantage")
            if "attacks against have disadvantage" in notes:
                disadvantage = True
                reasons.append(f"{target.name} is {name}: disadvantage")
            if "melee attacks against have advantage" in notes:
                if distance <= 5:
                    advantage = True
                    reasons.append(f"{target.name} is {name} within 5 ft: advantage")
                else:
                    disadvantage = True
                    reasons.append(f"{target.name} is {name} beyond 5 ft: disadvantage")
            if "hits within 5 ft are critical" in notes and distance <= 5:
                auto_critical = True

        if target.turn.dodging:
            disadvantage = True
            reasons.append(f"{target.name} is dodging: disadvantage")
        return advantage, disadvantage, auto_critical, reasons

    def attack(
        self,
        encounter_id: str,
        actor_id: str,
        target_id: str | None,
        cost: ActionCost = ActionCost.ACTION,
        attack_bonus: int = 0,
        damage: str | None = None,
        damage_type: DamageType | None = None,
        range_feet: int | None = None,
        advantage: bool = False,
        disadvantage: bool = False,
        manual_roll: int | None = None,
        manual_rolls: list[int] | None = None,
        manual_damage_rolls: list[int] | None = None,
    ) -> ActionResult:
        """Make one attack roll against the target's AC and apply the damage.

        Raises:
            ValidationError: Missing or self target, bad dice or manual rolls.
            StateError: Cost already spent, actor can't act, target dead or
                out of range.
        """
        encounter, actor = self._begin(encounter_id, actor_id, cost)
        target = self._target(encounter, actor, target_id, ActionKind.ATTACK)
        distance = measure_distance(actor.position, target.position, include_elevation=True).feet
        if range_feet is not None and distance > range_feet:
            raise StateError(f"{target.name} is {distance:g} ft away, beyond {range_feet} ft")
        parsed = parse_dice(damage) if damage else None

        adv, dis, auto_critical, reasons = self._attack_modifiers(actor, target, distance)
        mode = resolve_roll_mode(advantage or adv, disadvantage or dis)
        roll = roll_d20(
            mode=mode,
            modifier=attack_bonus,
            manual_roll=manual_roll,
            manual_rolls=manual_rolls,
            rng=self.world.rng,
        )
        if roll.is_critical:
            hit, critical = True, True
        elif roll.is_fumble:
            hit, critical = False, False
        else:
            hit = roll.total >= target.ac
            critical = hit and auto_critical

        result = ActionResult(
            kind=ActionKind.ATTACK,
            cost=cost,
            actor=actor,
            target=target,
            attack_roll=roll,
            roll_reasons=reasons,
            hit=hit,
            critical=critical,
        )
        result.lines.append(f"Attack roll: {roll.describe()} vs AC {target.ac}")
        result.lines.extend(f"  {reason}" for reason in reasons)

        amount = 0
        if hit and parsed is not None:
            manual = list(manual_damage_rolls or [])
            dice_count = parsed.count * (2 if critical else 1)
            if len(manual) > dice_count:
                raise ValidationError(
                    f"{len(manual)} manual damage rolls given for {dice_count} dice", field="manual_damage_rolls"
                )
            rolls = [roll_dice(parsed, rng=self.world.rng, manual_rolls=manual[:parsed.count])]
            if critical:
                extra = DiceExpression(parsed.count, parsed.sides, parsed.keep_mode, parsed.keep_count)
                rolls.append(roll_dice(extra, rng=self.world.rng, manual_rolls=manual[parsed.count:]))
            result.damage_rolls = rolls
            amount = max(0, sum(r.total for r in rolls))

        self._spend(actor, cost)
        if not hit:
            result.lines.append("Natural 1: automatic miss." if roll.is_fumble else "Miss.")
        else:
            result.lines.append("CRITICAL HIT!" if critical else "Hit.")
            for dice in result.damage_rolls:
                result.lines.append(f"Damage {dice.describe()}")
            if parsed is not None:
                result.damage = self.encounters.apply_damage(
                    encounter.id, target.id, amount, damage_type, critical=critical
                )
                result.lines.append(result.damage.describe())
        logger.info(f"🗡️ {actor.name} attacks {target.name}: {'hit' if hit else 'miss'}")
        return result

    # -----------------------------------------------------------------
    # Dash / Disengage / Dodge
    # -----------------------------------------------------------------

    def dash(self, encounter_id: str, actor_id: str, cost: ActionCost = ActionCost.ACTION) -> ActionResult:
        """Double this turn's movement."""
        _, actor = self._begin(encounter_id, actor_id, cost)
        if actor.turn.dashed:
            raise StateError(f"{actor.name} has already dashed this turn")
        self._spend(actor, cost)
        actor.turn.dashed = True
        budget = self.encounters.effective_stats(actor).speed.effective * 2
        result = ActionResult(kind=ActionKind.DASH, cost=cost, actor=actor)
        result.lines.append(
            f"Movement this turn: {budget} ft ({actor.turn.movement_used:g} ft used)"
        )
        return result

    def disengage(self, encounter_id: str, actor_id: str, cost: ActionCost = ActionCost.ACTION) -> ActionResult:
        """Movement this turn provokes no opportunity attacks."""
        _, actor = self._begin(encounter_id, actor_id, cost)
        self._spend(actor, cost)
        actor.turn.disengaged = True
        result = ActionResult(kind=ActionKind.DISENGAGE, cost=cost, actor=actor)
        result.lines.append("Movement this turn provokes no opportunity attacks.")
        return result

    def dodge(self, encounter_id: str, actor_id: str, cost: ActionCost = ActionCost.ACTION) -> ActionResult:
        """Attacks against the actor have disadvantage until their next turn."""
        _, actor = self._begin(encounter_id, actor_id, cost)
        self._spend(actor, cost)
        actor.turn.dodging = True
        result = ActionResult(kind=ActionKind.DODGE, cost=cost, actor=actor)
        result.lines.append("Attacks against them have disadvantage until their next turn.")
        return result

    # -----------------------------------------------------------------
    # Grapple / Shove
    # -----------------------------------------------------------------

    def _contest(
        self,
        actor: Participant,
        target: Participant,
        athletics_bonus: int,
        defender_bonus: int,
        defender_skill: Skill | None,
        mode: RollMode,
        manual_roll: int | None,
        manual_rolls: list[int] | None,
        defender_manual_roll: int | None,
    ) -> ContestedResult:
        distance = measure_distance(actor.position, target.position, include_elevation=True).feet
        if distance > 5:
            raise StateError(f"{target.name} is {distance:g} ft away, beyond {actor.name}'s 5 ft reach")
        if SIZE_ORDER.index(target.size) > SIZE_ORDER.index(actor.size) + 1:
            raise StateError(f"{target.name} is too large for {actor.name} to grapple or shove")
        defender_character = self._character(target)
        if defender_skill is None:
            defender_skill = Skill.ATHLETICS
            if defender_character is not None and _skill_modifier(
                defender_character, Skill.ACROBATICS
            ) > _skill_modifier(defender_character, Skill.ATHLETICS):
                defender_skill = Skill.ACROBATICS
        elif defender_skill not in (Skill.ATHLETICS, Skill.ACROBATICS):
            raise ValidationError("defender_skill must be athletics or acrobatics", field="defender_skill")

        attack: CheckResult = resolve_check(
            CheckType.SKILL,
            skill=Skill.ATHLETICS,
            character=self._character(actor),
            bonus=athletics_bonus,
            mode=mode,
            manual_roll=manual_roll,
            manual_rolls=manual_rolls,
            rng=self.world.rng,
        )
        defence = resolve_check(
            CheckType.SKILL,
            skill=defender_skill,
            character=defender_character,
            bonus=defender_bonus,
            manual_roll=defender_manual_roll,
            rng=self.world.rng,
        )
        attack.character_name = actor.name
        defence.character_name = target.name
        return resolve_contested(attack, defence)

    def grapple(
        self,
        encounter_id: str,
        actor_id: str,
        target_id: str | None,
        cost: ActionCost = ActionCost.ACTION,
        athletics_bonus: int = 0,
        defender_bonus: int = 0,
        defender_skill: Skill | None = None,
        advantage: bool = False,
        disadvantage: bool = False,
        manual_roll: int | None = None,
        manual_rolls: list[int] | None = None,
        defender_manual_roll: int | None = None,
    ) -> ActionResult:
        """Contested Athletics check; the target is grappled if the actor wins."""
        encounter, actor = self._begin(encounter_id, actor_id, cost)
        target = self._target(encounter, actor, target_id, ActionKind.GRAPPLE)
        if ConditionTag.GRAPPLED in target.condition_immunities:
            raise StateError(f"{target.name} is immune to grappled")
        contest = self._contest(
            actor, target, athletics_bonus, defender_bonus, defender_skill,
            resolve_roll_mode(advantage, disadvantage), manual_roll, manual_rolls, defender_manual_roll,
        )

        self._spend(actor, cost)
        result = ActionResult(kind=ActionKind.GRAPPLE, cost=cost, actor=actor, target=target, contest=contest)
        result.lines.append(contest.describe())
        result.success = contest.winner == "attacker"
        if result.success:
            ConditionEngine.add(
                self.encounters.conditions_of(target),
                target.id,
                ConditionTag.GRAPPLED,
                source=actor.name,
                immunities=target.condition_immunities,
            )
            result.condition = ConditionTag.GRAPPLED
            result.lines.append(f"{target.name} is grappled by {actor.name}.")
        else:
            result.lines.append(f"{target.name} breaks free of the grapple attempt.")
        return result

    def shove(
        self,
        encounter_id: str,
        actor_id: str,
        target_id: str | None,
        mode: ShoveMode = ShoveMode.AWAY,
        cost: ActionCost = ActionCost.ACTION,
        athletics_bonus: int = 0,
        defender_bonus: int = 0,
        defender_skill: Skill | None = None,
        advantage: bool = False,
        disadvantage: bool = False,
        manual_roll: int | None = None,
        manual_rolls: list[int] | None = None,
        defender_manual_roll: int | None = None,
    ) -> ActionResult:
        """Contested Athletics check to push the target 5 ft away or knock it prone.

        A push into a wall, a blocking prop, another creature or off the
        grid leaves the target where it is.
        """
        encounter, actor = self._begin(encounter_id, actor_id, cost)
        target = self._target(encounter, actor, target_id, ActionKind.SHOVE)
        if mode == ShoveMode.PRONE and ConditionTag.PRONE in target.condition_immunities:
            raise StateError(f"{target.name} is immune to prone")
        contest = self._contest(
            actor, target, athletics_bonus, defender_bonus, defender_skill,
            resolve_roll_mode(advantage, disadvantage), manual_roll, manual_rolls, defender_manual_roll,
        )

        self._spend(actor, cost)
        result = ActionResult(kind=ActionKind.SHOVE, cost=cost, actor=actor, target=target, contest=contest)
        result.lines.append(contest.describe())
        result.success = contest.winner == "attacker"
        if not result.success:
            result.lines.append(f"{target.name} holds their ground.")
            return result

        if mode == ShoveMode.PRONE:
            ConditionEngine.add(
                self.encounters.conditions_of(target),
                target.id,
                ConditionTag.PRONE,
                source=actor.name,
                immunities=target.condition_immunities,
            )
            result.condition = ConditionTag.PRONE
            result.lines.append(f"{target.name} is knocked prone.")
            return result

        blocked = self._push_blocker(encounter, actor, target)
        if blocked:
            result.lines.append(f"{target.name} cannot be pushed: {blocked}.")
            return result
        dx = _sign(target.position.x - actor.position.x)
        dy = _sign(target.position.y - actor.position.y)
        old = target.position
        target.position = Position(x=old.x + dx, y=old.y + dy, z=old.z)
        result.pushed_to = target.position
        result.lines.append(f"{target.name} is pushed {old} -> {target.position}.")
        return result

    @staticmethod
    def _push_blocker(encounter: Encounter, actor: Participant, target: Participant) -> str | None:
        dx = _sign(target.position.x - actor.position.x)
        dy = _sign(target.position.y - actor.position.y)
        if dx == 0 and dy == 0:
            return "no direction to push"
        x, y = target.position.cell()
        x, y = x + dx, y + dy
        terrain = encounter.terrain
        if not terrain.in_bounds(x, y):
            return "edge of the battlefield"
        if terrain.is_wall(x, y):
            return f"wall at ({x}, {y})"
        prop = PropEngine.blocking_at(encounter.props, x, y)
        if prop is not None:
            return f"{prop.name} at ({x}, {y})"
        for other in encounter.participants:
            if other.id != target.id and not other.is_dead and other.position.cell() == (x, y):
                return f"{other.name} at ({x}, {y})"
        return None


def _skill_modifier(character: Character, skill: Skill) -> int:
    modifier = character.ability_modifier(SKILL_ABILITIES[skill])
    if skill in character.skill_proficiencies:
        modifier += character.proficiency_bonus
    return modifier
