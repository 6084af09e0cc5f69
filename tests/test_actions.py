"""
Tests for combat actions.

Covers:
- attack: hit/miss against AC, natural 20 and natural 1, critical damage
  dice, advantage and disadvantage from conditions and dodging, automatic
  criticals within 5 ft, range, invalid targets
- action economy: spent costs refused until the next turn, bonus actions,
  incapacitated actors, nothing spent on a rejected action
- dash, disengage, dodge
- grapple and shove: contested Athletics, ties, size limits, immunities,
  pushing into blocked squares, knocking prone
"""

import pytest

from dm20_rules.combat.actions import ActionCost, ActionManager, ShoveMode
from dm20_rules.combat.conditions import ConditionEngine
from dm20_rules.combat.encounter import EncounterManager, ParticipantRef, ParticipantSpec, Terrain
from dm20_rules.combat.props import Prop, PropEngine, PropType
from dm20_rules.dice import RollMode
from dm20_rules.errors import NotFoundError, StateError, ValidationError
from dm20_rules.models import ConditionTag, DamageType, Size, Skill
from dm20_rules.spatial.positioning import Position


def pos(x, y, z=0):
    return Position(x=x, y=y, z=z)


@pytest.fixture
def actions(world) -> ActionManager:
    return ActionManager(world)


@pytest.fixture
def brawl(world, fighter):
    """Aldric (20) toe to toe with an Orc (10); a Giant (5) just behind; Archer ally far off."""
    world.repository.add(fighter)
    encounter, _ = EncounterManager(world).create(
        [
            ParticipantRef(character_id="ftr-1", initiative=20, position=pos(2, 2)),
            ParticipantSpec(id="archer", name="Archer", hp=12, initiative=15, position=pos(8, 8)),
            ParticipantSpec(id="orc", name="Orc", hp=15, ac=13, initiative=10, position=pos(3, 2), is_enemy=True),
            ParticipantSpec(
                id="giant", name="Giant", hp=100, ac=15, initiative=5, position=pos(2, 3), is_enemy=True, size=Size.HUGE
            ),
        ],
        terrain=Terrain(width=10, height=10),
    )
    return encounter


def add_condition(world, participant_id, tag):
    ConditionEngine.add(world.conditions_for(participant_id), participant_id, tag)


# ---------------------------------------------------------------------------
# Attack
# ---------------------------------------------------------------------------

class TestAttack:

    def test_hit_applies_damage(self, actions, brawl):
        result = actions.attack(
            brawl.id, "ftr-1", "orc", attack_bonus=5, damage="1d8+3",
            damage_type=DamageType.SLASHING, manual_roll=15, manual_damage_rolls=[5],
        )
        assert result.hit and not result.critical
        assert brawl.participant("orc").hp == 7
        assert brawl.participant("ftr-1").turn.action_used
        assert "vs AC 13" in result.describe()

    def test_miss(self, actions, brawl):
        result = actions.attack(brawl.id, "ftr-1", "orc", attack_bonus=5, damage="1d8+3", manual_roll=2)
        assert result.hit is False
        assert result.damage is None
        assert brawl.participant("orc").hp == 15
        assert brawl.participant("ftr-1").turn.action_used

    def test_natural_20_doubles_dice_not_modifier(self, actions, brawl):
        result = actions.attack(
            brawl.id, "ftr-1", "orc", damage="1d8+3", manual_roll=20, manual_damage_rolls=[4, 6]
        )
        assert result.critical
        assert len(result.damage_rolls) == 2
        assert brawl.participant("orc").hp == 15 - 13
        assert "CRITICAL HIT!" in result.describe()

    def test_natural_1_always_misses(self, actions, brawl):
        result = actions.attack(brawl.id, "ftr-1", "orc", attack_bonus=30, manual_roll=1)
        assert result.hit is False
        assert "Natural 1" in result.describe()

    def test_attack_without_damage_only_rolls(self, actions, brawl):
        result = actions.attack(brawl.id, "ftr-1", "orc", attack_bonus=5, manual_roll=15)
        assert result.hit
        assert brawl.participant("orc").hp == 15

    def test_dodging_target_imposes_disadvantage(self, actions, brawl):
        brawl.participant("orc").turn.dodging = True
        result = actions.attack(brawl.id, "ftr-1", "orc", attack_bonus=5, manual_rolls=[18, 3])
        assert result.attack_roll.mode == RollMode.DISADVANTAGE
        assert result.attack_roll.natural == 3
        assert "Orc is dodging: disadvantage" in result.roll_reasons
        assert result.hit is False

    def test_restrained_target_grants_advantage(self, world, actions, brawl):
        add_condition(world, "orc", ConditionTag.RESTRAINED)
        result = actions.attack(brawl.id, "ftr-1", "orc", manual_rolls=[3, 17])
        assert result.attack_roll.mode == RollMode.ADVANTAGE
        assert result.attack_roll.natural == 17

    def test_poisoned_attacker_has_disadvantage(self, world, actions, brawl):
        add_condition(world, "ftr-1", ConditionTag.POISONED)
        result = actions.attack(brawl.id, "ftr-1", "orc", manual_rolls=[17, 3])
        assert result.attack_roll.mode == RollMode.DISADVANTAGE

    def test_advantage_and_disadvantage_cancel(self, world, actions, brawl):
        add_condition(world, "ftr-1", ConditionTag.POISONED)
        add_condition(world, "orc", ConditionTag.RESTRAINED)
        result = actions.attack(brawl.id, "ftr-1", "orc", manual_roll=12)
        assert result.attack_roll.mode == RollMode.NORMAL

    def test_prone_target_depends_on_distance(self, world, actions, brawl):
        add_condition(world, "orc", ConditionTag.PRONE)
        close = actions.attack(brawl.id, "ftr-1", "orc", manual_rolls=[3, 17])
        assert close.attack_roll.mode == RollMode.ADVANTAGE
        far = actions.attack(brawl.id, "archer", "orc", manual_rolls=[17, 3])
        assert far.attack_roll.mode == RollMode.DISADVANTAGE

    def test_paralyzed_target_hit_in_melee_is_critical(self, world, actions, brawl):
        add_condition(world, "orc", ConditionTag.PARALYZED)
        result = actions.attack(
            brawl.id, "ftr-1", "orc", attack_bonus=5, damage="1d6", manual_rolls=[2, 12], manual_damage_rolls=[3, 3]
        )
        assert result.hit and result.critical
        assert brawl.participant("orc").hp == 9

    def test_paralyzed_target_hit_from_range_is_not_critical(self, world, actions, brawl):
        add_condition(world, "orc", ConditionTag.PARALYZED)
        result = actions.attack(brawl.id, "archer", "orc", attack_bonus=5, manual_rolls=[2, 12])
        assert result.hit and not result.critical

    def test_out_of_range_spends_nothing(self, actions, brawl):
        with pytest.raises(StateError, match="beyond 5 ft"):
            actions.attack(brawl.id, "archer", "orc", range_feet=5, manual_roll=15)
        assert not brawl.participant("archer").turn.action_used

    def test_cannot_attack_self(self, actions, brawl):
        with pytest.raises(ValidationError):
            actions.attack(brawl.id, "ftr-1", "ftr-1", manual_roll=10)

    def test_dead_target(self, actions, brawl):
        EncounterManager(actions.world).apply_damage(brawl.id, "orc", 50)
        with pytest.raises(StateError, match="already dead"):
            actions.attack(brawl.id, "ftr-1", "orc", manual_roll=10)

    def test_too_many_damage_rolls_spends_nothing(self, actions, brawl):
        with pytest.raises(ValidationError, match="manual damage rolls"):
            actions.attack(brawl.id, "ftr-1", "orc", damage="1d8", manual_roll=15, manual_damage_rolls=[3, 4])
        assert not brawl.participant("ftr-1").turn.action_used
        assert brawl.participant("orc").hp == 15


# ---------------------------------------------------------------------------
# Action economy
# ---------------------------------------------------------------------------

class TestActionEconomy:

    def test_action_spent_once_per_turn(self, actions, brawl):
        actions.attack(brawl.id, "ftr-1", "orc", manual_roll=2)
        with pytest.raises(StateError, match="already used their action"):
            actions.attack(brawl.id, "ftr-1", "orc", manual_roll=2)

    def test_bonus_action_is_separate(self, actions, brawl):
        actions.attack(brawl.id, "ftr-1", "orc", manual_roll=2)
        result = actions.attack(brawl.id, "ftr-1", "orc", cost=ActionCost.BONUS_ACTION, manual_roll=2)
        assert result.actor.turn.bonus_action_used
        assert "(bonus action)" in result.describe()

    def test_free_actions_are_not_tracked(self, actions, brawl):
        actions.dodge(brawl.id, "ftr-1", cost=ActionCost.FREE)
        actions.dodge(brawl.id, "ftr-1")
        assert brawl.participant("ftr-1").turn.action_used

    def test_spent_costs_return_on_next_turn(self, actions, brawl):
        encounters = EncounterManager(actions.world)
        actions.attack(brawl.id, "ftr-1", "orc", manual_roll=2)
        for _ in range(4):
            encounters.advance_turn(brawl.id)
        assert brawl.current.id == "ftr-1"
        result = actions.attack(brawl.id, "ftr-1", "orc", manual_roll=2)
        assert result.actor.turn.action_used

    def test_incapacitated_cannot_act(self, world, actions, brawl):
        add_condition(world, "ftr-1", ConditionTag.STUNNED)
        with pytest.raises(StateError, match="incapacitated"):
            actions.dash(brawl.id, "ftr-1")

    def test_unknown_actor(self, actions, brawl):
        with pytest.raises(NotFoundError, match="nobody"):
            actions.dodge(brawl.id, "nobody")


# ---------------------------------------------------------------------------
# Dash / Disengage / Dodge
# ---------------------------------------------------------------------------

class TestMovementActions:

    def test_dash_doubles_speed(self, actions, brawl):
        result = actions.dash(brawl.id, "ftr-1")
        assert "60 ft" in result.describe()
        move = EncounterManager(actions.world).move_participant(brawl.id, "ftr-1", pos(2, 9))
        assert move.speed == 60

    def test_dash_once_per_turn(self, actions, brawl):
        actions.dash(brawl.id, "ftr-1")
        with pytest.raises(StateError, match="already dashed"):
            actions.dash(brawl.id, "ftr-1", cost=ActionCost.BONUS_ACTION)

    def test_disengage(self, actions, brawl):
        actions.disengage(brawl.id, "ftr-1")
        move = EncounterManager(actions.world).move_participant(brawl.id, "ftr-1", pos(0, 0))
        assert move.opportunity_attacks == []

    def test_without_disengage_leaving_reach_provokes(self, actions, brawl):
        move = EncounterManager(actions.world).move_participant(brawl.id, "ftr-1", pos(0, 0))
        assert move.opportunity_attacks == ["Orc", "Giant"]

    def test_dodge(self, actions, brawl):
        result = actions.dodge(brawl.id, "ftr-1")
        assert result.actor.turn.dodging
        assert "disadvantage" in result.describe()


# ---------------------------------------------------------------------------
# Grapple / Shove
# ---------------------------------------------------------------------------

class TestGrappleAndShove:

    def test_grapple_success(self, world, actions, brawl):
        # Aldric: STR +3, Athletics proficiency +3
        result = actions.grapple(
            brawl.id, "ftr-1", "orc", manual_roll=12, defender_bonus=2, defender_manual_roll=10
        )
        assert result.contest.attacker.total == 18
        assert result.contest.defender.total == 12
        assert result.success
        grappled = world.conditions_for("orc")
        assert grappled[0].condition == ConditionTag.GRAPPLED
        assert grappled[0].source == "Aldric"
        assert "Orc is grappled by Aldric." in result.describe()

    def test_tie_goes_to_defender(self, world, actions, brawl):
        result = actions.grapple(
            brawl.id, "ftr-1", "orc", manual_roll=10, defender_bonus=6, defender_manual_roll=10
        )
        assert result.success is False
        assert world.conditions_for("orc") == []
        assert result.actor.turn.action_used

    def test_target_too_large(self, actions, brawl):
        with pytest.raises(StateError, match="too large"):
            actions.grapple(brawl.id, "ftr-1", "giant", manual_roll=20, defender_manual_roll=1)
        assert not brawl.participant("ftr-1").turn.action_used

    def test_target_out_of_reach(self, actions, brawl):
        brawl.participant("orc").position = pos(5, 2)
        with pytest.raises(StateError, match="15 ft away"):
            actions.shove(brawl.id, "ftr-1", "orc", manual_roll=20, defender_manual_roll=1)
        assert not brawl.participant("ftr-1").turn.action_used

    def test_immune_target(self, actions, brawl):
        brawl.participant("orc").condition_immunities.append(ConditionTag.GRAPPLED)
        with pytest.raises(StateError, match="immune"):
            actions.grapple(brawl.id, "ftr-1", "orc", manual_roll=20, defender_manual_roll=1)

    def test_defender_skill_limited(self, actions, brawl):
        with pytest.raises(ValidationError, match="athletics or acrobatics"):
            actions.grapple(
                brawl.id, "ftr-1", "orc", defender_skill=Skill.STEALTH, manual_roll=20, defender_manual_roll=1
            )

    def test_shove_pushes_away(self, actions, brawl):
        result = actions.shove(brawl.id, "ftr-1", "orc", manual_roll=15, defender_manual_roll=2)
        assert result.success
        assert brawl.participant("orc").position == pos(4, 2)
        assert result.pushed_to == pos(4, 2)

    def test_shove_prone(self, world, actions, brawl):
        result = actions.shove(
            brawl.id, "ftr-1", "orc", mode=ShoveMode.PRONE, manual_roll=15, defender_manual_roll=2
        )
        assert result.condition == ConditionTag.PRONE
        assert ConditionEngine.has(world.conditions_for("orc"), ConditionTag.PRONE)
        assert brawl.participant("orc").position == pos(3, 2)

    def test_shove_into_prop_stays_put(self, actions, brawl):
        PropEngine.place(
            brawl.props, brawl.terrain,
            Prop(name="Barrel", type=PropType.BARREL, position=pos(4, 2), blocks_movement=True),
        )
        result = actions.shove(brawl.id, "ftr-1", "orc", manual_roll=15, defender_manual_roll=2)
        assert result.success
        assert result.pushed_to is None
        assert brawl.participant("orc").position == pos(3, 2)
        assert "cannot be pushed: Barrel at (4, 2)" in result.describe()

    def test_shove_off_the_grid(self, world, actions):
        encounter, _ = EncounterManager(world).create(
            [
                ParticipantSpec(id="a", name="A", hp=10, initiative=10, position=pos(8, 0)),
                ParticipantSpec(id="b", name="B", hp=10, initiative=5, position=pos(9, 0), is_enemy=True),
            ],
            terrain=Terrain(width=10, height=10),
        )
        result = actions.shove(encounter.id, "a", "b", athletics_bonus=5, manual_roll=15, defender_manual_roll=2)
        assert "edge of the battlefield" in result.describe()
        assert encounter.participant("b").position == pos(9, 0)
