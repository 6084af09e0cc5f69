"""
Tests for character records and rule enums.

Covers:
- Enum input normalisation (ability abbreviations, skill spellings, "warlock" tier)
- Character: class from a plain name, custom class dicts, ability defaults,
  hit point defaults, custom race merging, save proficiencies
- Custom class resource scaling
- SpellSlotPool level filling
- ordinal() and proficiency bonus
- Errors carry their kind
"""

import pytest

from dm20_rules.errors import NotFoundError, ResourceError, StateError, ValidationError
from dm20_rules.models import (
    Ability,
    Character,
    CustomRace,
    DamageType,
    ResourceScaling,
    Size,
    Skill,
    SpellcastingTier,
    SpellSlotPool,
    calculate_resource_max,
    ordinal,
    proficiency_bonus_for_level,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TestEnums:

    def test_ability_abbreviation(self):
        assert Ability("dex") == Ability.DEXTERITY
        assert Ability(" INT ") == Ability.INTELLIGENCE
        assert Ability.WISDOM.short == "WIS"

    def test_skill_spellings(self):
        assert Skill("Sleight of Hand") == Skill.SLEIGHT_OF_HAND
        assert Skill("animal-handling") == Skill.ANIMAL_HANDLING

    def test_warlock_tier_alias(self):
        assert SpellcastingTier("warlock") == SpellcastingTier.PACT

    def test_unknown_ability(self):
        with pytest.raises(ValueError):
            Ability("luck")


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class TestCharacter:

    def test_known_class_from_name(self, wizard):
        assert wizard.class_name == "Wizard"
        assert wizard.progression.spellcasting == SpellcastingTier.FULL
        assert wizard.progression.spellcasting_ability == Ability.INTELLIGENCE
        assert not wizard.progression.is_custom

    def test_unknown_class_name_rejected(self):
        with pytest.raises(ValueError):
            Character(name="Nobody", character_class="astronaut")

    def test_custom_class(self):
        character = Character(
            name="Brakka",
            character_class={
                "name": "Runesmith",
                "hit_die": 10,
                "spellcasting": "half",
                "save_proficiencies": ["constitution", "intelligence"],
                "resource_name": "Runes",
                "resource_max": 2,
                "resource_scaling": "half",
            },
            level=5,
        )
        progression = character.progression
        assert progression.is_custom
        assert character.class_name == "Runesmith"
        assert progression.resource_max == 4
        assert character.is_save_proficient(Ability.CONSTITUTION)

    def test_abilities_default_to_ten(self, fighter):
        assert fighter.ability_score(Ability.WISDOM) == 10
        assert fighter.ability_modifier(Ability.STRENGTH) == 3

    def test_ability_abbreviations(self, wizard):
        assert wizard.abilities[Ability.STRENGTH].score == 8
        assert wizard.ability_modifier(Ability.STRENGTH) == -1
        assert wizard.ability_modifier(Ability.INTELLIGENCE) == 4

    def test_hit_points_default_to_max(self, wizard):
        assert wizard.hit_points_current == 32

    def test_defaults(self):
        character = Character(name="Plain")
        assert character.speed == 30
        assert character.size == Size.MEDIUM
        assert character.class_name == "Fighter"
        assert len(character.id) == 8

    def test_custom_race_merges(self):
        race = CustomRace(
            name="Frostborn",
            size="large",
            speed=35,
            ability_bonuses={"strength": 2},
            resistances=["cold"],
        )
        character = Character(
            name="Hrolf",
            race=race,
            abilities={"strength": 15},
            damage_resistances=["fire"],
        )
        assert character.race_name == "Frostborn"
        assert character.speed == 35
        assert character.size == Size.LARGE
        assert character.ability_score(Ability.STRENGTH) == 17
        assert character.damage_resistances == [DamageType.FIRE, DamageType.COLD]

    def test_explicit_speed_beats_race(self):
        race = CustomRace(name="Quickling", speed=40)
        assert Character(name="Zip", race=race, speed=25).speed == 25

    def test_save_proficiency_from_class_and_record(self, wizard):
        assert wizard.is_save_proficient(Ability.INTELLIGENCE)
        assert not wizard.is_save_proficient(Ability.DEXTERITY)
        extra = wizard.model_copy(update={"saving_throw_proficiencies": [Ability.DEXTERITY]})
        assert extra.is_save_proficient(Ability.DEXTERITY)

    def test_proficiency_bonus(self, wizard):
        assert wizard.proficiency_bonus == 3

    def test_progression_not_serialised(self, wizard):
        data = wizard.model_dump()
        assert "progression" not in data
        assert Character.model_validate(data).class_name == "Wizard"

    def test_level_bounds(self):
        with pytest.raises(ValueError):
            Character(name="Too High", level=21)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:

    @pytest.mark.parametrize(
        "scaling,expected",
        [
            (None, 3),
            (ResourceScaling.NONE, 3),
            (ResourceScaling.LEVEL, 9),
            (ResourceScaling.HALF, 6),
            (ResourceScaling.THIRD, 5),
            (2, 15),
        ],
    )
    def test_resource_scaling(self, scaling, expected):
        assert calculate_resource_max(3, scaling, 7) == expected

    def test_slot_pool_fills_levels(self):
        pool = SpellSlotPool(levels={1: {"current": 2, "max": 2}})
        assert sorted(pool.levels) == list(range(1, 10))
        assert pool.has_any
        assert not SpellSlotPool().has_any

    @pytest.mark.parametrize(
        "n,text",
        [(1, "1st"), (2, "2nd"), (3, "3rd"), (4, "4th"), (11, "11th"), (12, "12th"), (13, "13th"), (21, "21st")],
    )
    def test_ordinal(self, n, text):
        assert ordinal(n) == text

    def test_proficiency_bonus_table(self):
        assert [proficiency_bonus_for_level(lvl) for lvl in (1, 4, 5, 9, 13, 17, 20)] == [2, 2, 3, 4, 5, 6, 6]

    def test_error_kinds(self):
        assert ValidationError("bad", field="level").field == "level"
        assert NotFoundError("gone", identifier="x").identifier == "x"
        assert ResourceError("empty").kind == "resource"
        assert isinstance(ResourceError("empty"), StateError)
        assert StateError("nope").message == "nope"
