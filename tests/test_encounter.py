"""
Tests for encounters and turn orchestration.

Covers:
- Terrain parsing of 'x,y' strings, pairs and objects
- create: initiative order and ties, seeds, pre-rolled initiative,
  character references, duplicate ids, off-grid positions, surprise
- advance_turn: round wrap, skipping dead/stable/surprised, condition
  ticking, concentration duration, death save reminders
- apply_damage: resistances, vulnerabilities, immunity, petrified,
  dropping to 0 (allies vs enemies), massive damage, damage at 0 HP,
  concentration DC and break
- heal and death saves inside an encounter
- move_participant: speed, difficult terrain, walls, occupancy, conditions,
  per-turn movement, dash, blocking props, opportunity attacks
- Encounter HP isolation from character records
"""

import pytest

from dm20_rules.combat.concentration import ConcentrationTracker
from dm20_rules.combat.conditions import ConditionEngine
from dm20_rules.combat.encounter import (
    EncounterManager,
    ParticipantRef,
    ParticipantSpec,
    Terrain,
    TurnState,
    apply_damage_modifiers,
)
from dm20_rules.combat.props import Prop, PropEngine, PropType
from dm20_rules.errors import NotFoundError, StateError, ValidationError
from dm20_rules.models import ConditionTag, DamageType
from dm20_rules.spatial.positioning import Position


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def spec(pid, name, hp, initiative, x=0, y=0, **kwargs):
    return ParticipantSpec(
        id=pid,
        name=name,
        hp=hp,
        initiative=initiative,
        position=Position(x=x, y=y),
        **kwargs,
    )


@pytest.fixture
def manager(world) -> EncounterManager:
    return EncounterManager(world)


@pytest.fixture
def skirmish(manager):
    """Aldric (20), Goblin (15), Elara (10) on an open 10x10 grid."""
    encounter, _ = manager.create(
        [
            spec("elara", "Elara", 20, 10, x=1, y=1),
            spec("aldric", "Aldric", 30, 20, x=2, y=2),
            spec("gob", "Goblin", 7, 15, x=6, y=6, is_enemy=True),
        ],
        terrain=Terrain(width=10, height=10),
    )
    return encounter


def pos(x, y, z=0):
    return Position(x=x, y=y, z=z)


# ---------------------------------------------------------------------------
# Terrain
# ---------------------------------------------------------------------------

class TestTerrain:

    def test_cell_formats(self):
        terrain = Terrain(obstacles=["3,4", [5, 6], {"x": 7, "y": 8}])
        assert terrain.obstacles == [(3, 4), (5, 6), (7, 8)]

    def test_water_counts_as_difficult(self):
        terrain = Terrain(water=["2,2"])
        assert terrain.is_difficult(2, 2)
        assert not terrain.is_wall(2, 2)

    def test_hazard_lookup(self):
        terrain = Terrain(hazards=[{"position": "4,4", "type": "fire", "damage": "1d10", "dc": 12}])
        assert terrain.hazard_at(4, 4).type == "fire"
        assert terrain.hazard_at(0, 0) is None

    def test_size_limits(self):
        with pytest.raises(ValueError):
            Terrain(width=4)
        with pytest.raises(ValueError):
            Terrain(height=101)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

class TestCreate:

    def test_initiative_order(self, skirmish):
        assert [p.id for p in skirmish.participants] == ["aldric", "gob", "elara"]
        assert skirmish.current.id == "aldric"
        assert skirmish.round == 1

    def test_ties_keep_input_order(self, manager):
        encounter, _ = manager.create([spec("a", "A", 5, 12), spec("b", "B", 5, 12), spec("c", "C", 5, 14)])
        assert [p.id for p in encounter.participants] == ["c", "a", "b"]

    def test_seed_reproducible(self, manager):
        roster = [ParticipantSpec(id=f"p{i}", name=f"P{i}", hp=10, initiative_bonus=i) for i in range(5)]
        first, _ = manager.create(roster, seed=99)
        second, _ = manager.create(roster, seed=99)
        assert [p.initiative for p in first.participants] == [p.initiative for p in second.participants]
        assert first.seed == 99

    def test_rolled_initiative_includes_bonus(self, manager):
        encounter, _ = manager.create([ParticipantSpec(name="Quick", hp=5, initiative_bonus=30)], seed=1)
        assert 31 <= encounter.participants[0].initiative <= 50

    def test_generated_ids_and_max_hp(self, manager):
        encounter, _ = manager.create([ParticipantSpec(name="Orc", hp=15)])
        orc = encounter.participants[0]
        assert len(orc.id) == 8
        assert orc.max_hp == 15

    def test_character_reference(self, world, manager, fighter):
        world.repository.add(fighter)
        encounter, warnings = manager.create([ParticipantRef(character_name="aldric", initiative=12)])
        p = encounter.participants[0]
        assert p.id == "ftr-1"
        assert p.character_id == "ftr-1"
        assert (p.hp, p.max_hp, p.ac) == (44, 44, 18)
        assert p.initiative_bonus == 1
        assert warnings == []

    def test_ambiguous_name_warns(self, world, manager, fighter):
        world.repository.add(fighter)
        world.repository.add(fighter.model_copy(update={"id": "ftr-2"}))
        encounter, warnings = manager.create([ParticipantRef(character_name="Aldric", initiative=5)])
        assert encounter.participants[0].id == "ftr-1"
        assert len(warnings) == 1

    def test_unknown_character(self, manager):
        with pytest.raises(NotFoundError):
            manager.create([ParticipantRef(character_id="nobody")])

    def test_reference_needs_id_or_name(self):
        with pytest.raises(ValueError):
            ParticipantRef(is_enemy=True)

    def test_empty_roster(self, manager):
        with pytest.raises(ValidationError):
            manager.create([])

    def test_duplicate_ids(self, manager):
        with pytest.raises(ValidationError, match="Duplicate participant id 'x'"):
            manager.create([spec("x", "A", 5, 10), spec("x", "B", 5, 12)])

    def test_position_out_of_bounds(self, manager):
        with pytest.raises(ValidationError, match="outside the 10x10 grid"):
            manager.create([spec("a", "A", 5, 10, x=10, y=0)], terrain=Terrain(width=10, height=10))

    def test_surprise(self, manager):
        encounter, _ = manager.create(
            [spec("a", "A", 5, 20), spec("b", "B", 5, 10)], surprise=["a"]
        )
        assert encounter.participants[0].surprised
        assert encounter.current.id == "b"

    def test_unknown_surprise_id(self, manager):
        with pytest.raises(NotFoundError):
            manager.create([spec("a", "A", 5, 20)], surprise=["zzz"])

    def test_ally_at_zero_starts_dying(self, world, manager):
        encounter, _ = manager.create([spec("a", "A", 0, 20, max_hp=10), spec("b", "B", 5, 10)])
        a = encounter.participant("a")
        assert a.is_dying
        assert ConditionEngine.has(world.conditions_for("a"), ConditionTag.UNCONSCIOUS)

    def test_participant_lookup_by_name(self, skirmish):
        assert skirmish.participant("goblin").id == "gob"
        with pytest.raises(NotFoundError):
            skirmish.participant("dragon")

    def test_initiative_order_text(self, skirmish):
        lines = skirmish.initiative_order().splitlines()
        assert lines[0] == "▶ 20  Aldric (ally) HP 30/30"
        assert lines[1] == "  15  Goblin (enemy) HP 7/7"

    def test_end(self, world, manager, skirmish):
        manager.end(skirmish.id)
        assert skirmish.id not in world.encounters
        with pytest.raises(NotFoundError):
            manager.get(skirmish.id)


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------

class TestAdvanceTurn:

    def test_cycle_and_round_wrap(self, manager, skirmish):
        order = []
        for _ in range(3):
            result = manager.advance_turn(skirmish.id)
            order.append(result.current.id)
        assert order == ["gob", "elara", "aldric"]
        assert result.new_round
        assert skirmish.round == 2
        assert "=== Round 2 ===" in result.describe()

    def test_dead_are_skipped(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "gob", 50)
        result = manager.advance_turn(skirmish.id)
        assert result.current.id == "elara"
        assert result.skipped == ["Goblin (dead)"]

    def test_surprised_skip_only_round_one(self, manager):
        encounter, _ = manager.create(
            [spec("a", "A", 5, 20), spec("b", "B", 5, 15), spec("c", "C", 5, 10)], surprise=["b"]
        )
        first = manager.advance_turn(encounter.id)
        assert first.current.id == "c"
        assert first.skipped == ["B (surprised)"]
        manager.advance_turn(encounter.id)
        third = manager.advance_turn(encounter.id)
        assert encounter.round == 2
        assert third.current.id == "b"

    def test_conditions_tick_at_end_of_turn(self, world, manager, skirmish):
        ConditionEngine.add(world.conditions_for("aldric"), "aldric", ConditionTag.BLINDED, duration=1)
        result = manager.advance_turn(skirmish.id)
        assert result.expired_conditions == ["Aldric's blinded has worn off."]
        assert world.conditions_for("aldric") == []

    def test_only_ending_participant_ticks(self, world, manager, skirmish):
        ConditionEngine.add(world.conditions_for("elara"), "elara", ConditionTag.BLINDED, duration=2)
        manager.advance_turn(skirmish.id)
        assert world.conditions_for("elara")[0].duration == 2

    def test_concentration_duration_expires(self, world, manager, skirmish):
        ConcentrationTracker.start(world.concentration, "aldric", "Bless", duration=1)
        result = manager.advance_turn(skirmish.id)
        assert "aldric" not in world.concentration
        assert result.notes == ["Aldric's Bless ends (duration expired)."]

    def test_dying_reminder(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        manager.advance_turn(skirmish.id)
        result = manager.advance_turn(skirmish.id)
        assert result.current.id == "elara"
        assert result.death_save_reminders == [
            "Elara is dying: roll a death save (0 successes, 0 failures)"
        ]

    def test_stable_are_skipped(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        for value in (15, 15, 15):
            manager.roll_death_save(skirmish.id, "elara", manual_roll=value)
        manager.advance_turn(skirmish.id)
        result = manager.advance_turn(skirmish.id)
        assert result.current.id == "aldric"
        assert "Elara (stable)" in result.skipped

    def test_nobody_can_act(self, manager):
        encounter, _ = manager.create([spec("g", "Goblin", 5, 10, is_enemy=True)])
        manager.apply_damage(encounter.id, "g", 10)
        with pytest.raises(StateError, match="can act"):
            manager.advance_turn(encounter.id)

    def test_turn_state_resets_when_turn_starts(self, manager, skirmish):
        aldric = skirmish.participant("aldric")
        aldric.turn.action_used = True
        aldric.turn.dodging = True
        aldric.turn.movement_used = 20
        manager.advance_turn(skirmish.id)
        assert aldric.turn.dodging
        manager.advance_turn(skirmish.id)
        manager.advance_turn(skirmish.id)
        assert skirmish.current.id == "aldric"
        assert aldric.turn == TurnState()

    def test_unknown_encounter(self, manager):
        with pytest.raises(NotFoundError):
            manager.advance_turn("missing")


# ---------------------------------------------------------------------------
# Damage and healing
# ---------------------------------------------------------------------------

class TestDamageModifiers:

    def test_resistance_halves_down(self):
        assert apply_damage_modifiers(15, DamageType.FIRE, [DamageType.FIRE], [], []) == (7, True, False, False)

    def test_vulnerability_doubles(self):
        assert apply_damage_modifiers(6, DamageType.COLD, [], [], [DamageType.COLD]) == (12, False, True, False)

    def test_immunity(self):
        assert apply_damage_modifiers(30, DamageType.POISON, [], [DamageType.POISON], []) == (0, False, False, True)

    def test_resistance_and_vulnerability_cancel(self):
        result = apply_damage_modifiers(10, DamageType.FIRE, [DamageType.FIRE], [], [DamageType.FIRE])
        assert result == (10, False, False, False)

    def test_untyped_damage_unmodified(self):
        assert apply_damage_modifiers(10, None, [DamageType.FIRE], [], []) == (10, False, False, False)

    def test_resist_all(self):
        assert apply_damage_modifiers(9, DamageType.SLASHING, [], [], [], resist_all=True)[0] == 4


class TestApplyDamage:

    def test_basic_damage(self, manager, skirmish):
        result = manager.apply_damage(skirmish.id, "aldric", 8, DamageType.SLASHING)
        assert result.participant.hp == 22
        assert result.describe() == "Aldric takes 8 slashing damage. HP 30 -> 22/30"

    def test_negative_rejected(self, manager, skirmish):
        with pytest.raises(ValidationError):
            manager.apply_damage(skirmish.id, "aldric", -1)

    def test_participant_resistance(self, manager):
        encounter, _ = manager.create(
            [spec("e", "Fire Elemental", 50, 10, resistances=["slashing"], immunities=["fire"])]
        )
        assert manager.apply_damage(encounter.id, "e", 11, DamageType.SLASHING).damage == 5
        immune = manager.apply_damage(encounter.id, "e", 20, DamageType.FIRE)
        assert immune.immune
        assert immune.participant.hp == 45

    def test_petrified_resists_everything(self, world, manager, skirmish):
        ConditionEngine.add(world.conditions_for("aldric"), "aldric", ConditionTag.PETRIFIED)
        result = manager.apply_damage(skirmish.id, "aldric", 10, DamageType.BLUDGEONING)
        assert result.resisted
        assert result.damage == 5

    def test_enemy_dies_at_zero(self, manager, skirmish):
        result = manager.apply_damage(skirmish.id, "gob", 7)
        assert result.killed
        assert result.participant.is_dead
        assert "💀 Goblin is dead!" in result.describe()

    def test_damage_to_dead_rejected(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "gob", 7)
        with pytest.raises(StateError, match="already dead"):
            manager.apply_damage(skirmish.id, "gob", 1)

    def test_ally_drops_to_zero(self, world, manager, skirmish):
        result = manager.apply_damage(skirmish.id, "elara", 25)
        p = result.participant
        assert result.dropped_to_zero
        assert not result.killed
        assert p.hp == 0
        assert p.is_dying
        assert ConditionEngine.has(world.conditions_for("elara"), ConditionTag.UNCONSCIOUS)

    def test_massive_damage_kills(self, manager, skirmish):
        result = manager.apply_damage(skirmish.id, "elara", 40)
        assert result.killed
        assert "Massive damage: instant death." in result.notes

    def test_damage_at_zero_adds_failures(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        manager.apply_damage(skirmish.id, "elara", 3)
        result = manager.apply_damage(skirmish.id, "elara", 3, critical=True)
        assert result.killed
        assert result.participant.death_saves.failures == 3

    def test_damage_at_zero_massive(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        result = manager.apply_damage(skirmish.id, "elara", 20)
        assert result.killed

    def test_concentration_dc_reported(self, world, manager, skirmish):
        ConcentrationTracker.start(world.concentration, "elara", "Bless")
        result = manager.apply_damage(skirmish.id, "elara", 4)
        assert result.concentration_dc == 10
        assert "DC 10 concentration save" in result.describe()

    def test_concentration_breaks_at_zero(self, world, manager, skirmish):
        ConcentrationTracker.start(world.concentration, "elara", "Bless")
        result = manager.apply_damage(skirmish.id, "elara", 20)
        assert result.concentration_broken == "Bless"
        assert "elara" not in world.concentration


class TestHealAndDeathSaves:

    def test_heal_capped(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "aldric", 5)
        result = manager.heal(skirmish.id, "aldric", 50)
        assert result.participant.hp == 30
        assert result.describe() == "Aldric heals 5 HP. HP 25 -> 30/30"

    def test_heal_revives(self, world, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        result = manager.heal(skirmish.id, "elara", 4)
        assert result.revived
        assert result.participant.death_saves is None
        assert not ConditionEngine.has(world.conditions_for("elara"), ConditionTag.UNCONSCIOUS)

    def test_cannot_heal_dead(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "gob", 10)
        with pytest.raises(StateError):
            manager.heal(skirmish.id, "gob", 5)

    def test_death_save_progress_stored(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        manager.roll_death_save(skirmish.id, "elara", manual_roll=4)
        p, outcome = manager.roll_death_save(skirmish.id, "elara", manual_roll=12)
        assert outcome.result == "success"
        assert (p.death_saves.successes, p.death_saves.failures) == (1, 1)

    def test_natural_20_restores_one_hp(self, world, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        p, outcome = manager.roll_death_save(skirmish.id, "elara", manual_roll=20)
        assert outcome.revived
        assert p.hp == 1
        assert not ConditionEngine.has(world.conditions_for("elara"), ConditionTag.UNCONSCIOUS)

    def test_death_save_above_zero(self, manager, skirmish):
        with pytest.raises(StateError, match="not at 0 HP"):
            manager.roll_death_save(skirmish.id, "aldric", manual_roll=10)

    def test_enemy_has_no_death_saves(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "gob", 7)
        with pytest.raises(StateError, match="already dead"):
            manager.roll_death_save(skirmish.id, "gob", manual_roll=10)

    def test_three_failures_kill(self, manager, skirmish):
        manager.apply_damage(skirmish.id, "elara", 20)
        manager.roll_death_save(skirmish.id, "elara", manual_roll=1)
        p, outcome = manager.roll_death_save(skirmish.id, "elara", manual_roll=5)
        assert outcome.result == "dead"
        assert p.is_dead


# ---------------------------------------------------------------------------
# Movement
# ---------------------------------------------------------------------------

class TestMovement:

    @pytest.fixture
    def arena(self, manager):
        encounter, _ = manager.create(
            [
                spec("hero", "Hero", 20, 20, x=0, y=0),
                spec("orc", "Orc", 15, 10, x=5, y=0, is_enemy=True),
                spec("ally", "Ally", 15, 5, x=0, y=2),
            ],
            terrain=Terrain(
                width=10,
                height=10,
                obstacles=["3,3"],
                difficult_terrain=["1,0", "2,0"],
                hazards=[{"position": "0,4", "type": "fire", "damage": "1d10", "dc": 12}],
            ),
        )
        return encounter

    def test_simple_move(self, manager, arena):
        result = manager.move_participant(arena.id, "hero", pos(0, 5))
        assert result.cost_feet == 25
        assert result.participant.position == pos(0, 5)

    def test_difficult_terrain_costs_double(self, manager, arena):
        result = manager.move_participant(arena.id, "hero", pos(3, 0))
        assert result.distance_feet == 15
        assert result.difficult_squares == 2
        assert result.cost_feet == 25

    def test_too_far(self, manager, arena):
        with pytest.raises(StateError, match="exceeds Hero's speed 30 ft"):
            manager.move_participant(arena.id, "hero", pos(0, 7))

    def test_ignore_speed(self, manager, arena):
        result = manager.move_participant(arena.id, "hero", pos(0, 9), ignore_speed=True)
        assert result.participant.position == pos(0, 9)

    def test_wall_destination(self, manager, arena):
        with pytest.raises(StateError, match="is a wall"):
            manager.move_participant(arena.id, "hero", pos(3, 3))

    def test_wall_on_path(self, manager, arena):
        with pytest.raises(StateError, match="Path blocked"):
            manager.move_participant(arena.id, "hero", pos(5, 5), ignore_speed=True)

    def test_out_of_bounds(self, manager, arena):
        with pytest.raises(ValidationError):
            manager.move_participant(arena.id, "hero", pos(10, 0))

    def test_enemy_square_blocked(self, manager, arena):
        with pytest.raises(StateError, match="occupied by Orc"):
            manager.move_participant(arena.id, "hero", pos(5, 0), ignore_speed=True)

    def test_ally_square_allowed(self, manager, arena):
        result = manager.move_participant(arena.id, "hero", pos(0, 2))
        assert result.to_position == pos(0, 2)

    def test_grappled_cannot_move(self, world, manager, arena):
        ConditionEngine.add(world.conditions_for("hero"), "hero", ConditionTag.GRAPPLED)
        with pytest.raises(StateError, match="cannot move"):
            manager.move_participant(arena.id, "hero", pos(0, 1))

    def test_prone_crawl_costs_extra(self, world, manager, arena):
        ConditionEngine.add(world.conditions_for("hero"), "hero", ConditionTag.PRONE)
        result = manager.move_participant(arena.id, "hero", pos(0, 1))
        assert result.cost_feet == 10

    def test_hazard_reported(self, manager, arena):
        result = manager.move_participant(arena.id, "hero", pos(0, 5))
        assert result.hazards == ["Hero passes through fire (1d10, DC 12) at (0, 4)"]

    def test_elevation_counts(self, manager, arena):
        result = manager.move_participant(arena.id, "hero", pos(0, 1, 4))
        assert result.distance_feet == 20

    def test_moves_share_one_speed(self, manager, arena):
        first = manager.move_participant(arena.id, "hero", pos(0, 3))
        assert first.remaining_feet == 15
        assert "15 ft left" in first.describe()
        with pytest.raises(StateError, match="remaining movement 15 of 30 ft"):
            manager.move_participant(arena.id, "hero", pos(0, 7))

    def test_dash_doubles_movement(self, manager, arena):
        arena.participant("hero").turn.dashed = True
        result = manager.move_participant(arena.id, "hero", pos(0, 9))
        assert result.speed == 60
        assert result.remaining_feet == 15

    def test_forced_movement_spends_nothing(self, manager, arena):
        manager.move_participant(arena.id, "hero", pos(0, 9), ignore_speed=True)
        assert arena.participant("hero").turn.movement_used == 0

    def test_blocking_prop_on_path(self, manager, arena):
        PropEngine.place(
            arena.props, arena.terrain,
            Prop(name="Crate", type=PropType.CRATE, position=pos(0, 1), blocks_movement=True),
        )
        with pytest.raises(StateError, match=r"Path blocked by Crate at \(0, 1\)"):
            manager.move_participant(arena.id, "hero", pos(0, 3))

    def test_leaving_reach_provokes(self, manager, arena):
        manager.move_participant(arena.id, "hero", pos(4, 0), ignore_speed=True)
        result = manager.move_participant(arena.id, "hero", pos(4, 3))
        assert result.opportunity_attacks == ["Orc"]
        assert "🗡️ Orc can make an opportunity attack against Hero" in result.describe()

    def test_moving_within_reach_does_not_provoke(self, manager, arena):
        manager.move_participant(arena.id, "hero", pos(4, 0), ignore_speed=True)
        assert manager.move_participant(arena.id, "hero", pos(4, 1)).opportunity_attacks == []

    def test_disengage_prevents_opportunity_attacks(self, manager, arena):
        manager.move_participant(arena.id, "hero", pos(4, 0), ignore_speed=True)
        arena.participant("hero").turn.disengaged = True
        assert manager.move_participant(arena.id, "hero", pos(4, 3)).opportunity_attacks == []

    def test_spent_reaction_cannot_punish(self, manager, arena):
        manager.move_participant(arena.id, "hero", pos(4, 0), ignore_speed=True)
        arena.participant("orc").turn.reaction_used = True
        assert manager.move_participant(arena.id, "hero", pos(4, 3)).opportunity_attacks == []


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------

class TestIsolation:

    def test_encounter_damage_does_not_touch_record(self, world, manager, fighter):
        world.repository.add(fighter)
        encounter, _ = manager.create([ParticipantRef(character_id="ftr-1", initiative=10)])
        manager.apply_damage(encounter.id, "ftr-1", 30)
        assert encounter.participant("ftr-1").hp == 14
        assert world.repository.get("ftr-1").hit_points_current == 44
