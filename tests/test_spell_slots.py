"""
Tests for spell slot progression and management.

Covers:
- Slot tables for full, half, third and pact casters
- build_pool from known and custom class progressions
- SlotPoolEngine: expend, restore, set overrides, rests, rendering
- Atomic failures: an impossible expend changes nothing
- SpellSlotManager against an in-memory repository: lazy initialisation,
  persistence, lookup by name, rests
"""

import pytest

from dm20_rules.errors import NotFoundError, ResourceError, ValidationError
from dm20_rules.magic.spell_slots import (
    FULL_CASTER_SLOTS,
    PACT_MAGIC_SLOTS,
    RestKind,
    SlotPoolEngine,
    SpellSlotManager,
    build_pool,
    slots_for,
)
from dm20_rules.models import Character, SpellcastingTier
from dm20_rules.repository import InMemoryCharacterRepository


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def repo(wizard, fighter, warlock) -> InMemoryCharacterRepository:
    return InMemoryCharacterRepository([wizard, fighter, warlock])


@pytest.fixture
def manager(repo) -> SpellSlotManager:
    return SpellSlotManager(repo)


@pytest.fixture
def wizard_pool(wizard):
    return build_pool(wizard.progression, wizard.level)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

class TestSlotTables:

    def test_full_caster_level_5(self):
        slots = slots_for(SpellcastingTier.FULL, 5)
        assert [slots[lvl] for lvl in (1, 2, 3, 4)] == [4, 3, 2, 0]

    def test_full_caster_level_20_has_9th(self):
        assert slots_for(SpellcastingTier.FULL, 20)[9] == 1

    def test_every_level_present(self):
        assert set(FULL_CASTER_SLOTS) == set(range(1, 21))
        assert set(PACT_MAGIC_SLOTS) == set(range(1, 21))

    def test_half_caster_starts_at_2(self):
        assert slots_for(SpellcastingTier.HALF, 1)[1] == 0
        assert slots_for(SpellcastingTier.HALF, 2)[1] == 2

    def test_third_caster_starts_at_3(self):
        assert slots_for(SpellcastingTier.THIRD, 2)[1] == 0
        assert slots_for(SpellcastingTier.THIRD, 3)[1] == 2

    def test_non_caster_has_nothing(self):
        assert all(n == 0 for n in slots_for(SpellcastingTier.NONE, 20).values())

    def test_pact_pool(self, warlock):
        pool = build_pool(warlock.progression, warlock.level)
        assert pool.pact.max == 2
        assert pool.pact.slot_level == 3
        assert all(slot.max == 0 for slot in pool.levels.values())

    def test_custom_third_caster(self):
        character = Character(
            name="Hexblade Knight",
            character_class={"name": "Spellsword", "spellcasting": "third"},
            level=7,
        )
        pool = build_pool(character.progression, character.level)
        assert pool.levels[1].max == 4
        assert pool.levels[2].max == 2


# ---------------------------------------------------------------------------
# Pool engine
# ---------------------------------------------------------------------------

class TestSlotPoolEngine:

    def test_expend(self, wizard_pool):
        message = SlotPoolEngine.expend(wizard_pool, 1, owner="Elara")
        assert message == "Expended 1 1st level slot (3/4 left)"
        assert wizard_pool.levels[1].current == 3

    def test_expend_several(self, wizard_pool):
        message = SlotPoolEngine.expend(wizard_pool, 2, count=2)
        assert message == "Expended 2 2nd level slots (1/3 left)"

    def test_expend_too_many_is_atomic(self, wizard_pool):
        with pytest.raises(ResourceError, match="Have 2, need 3"):
            SlotPoolEngine.expend(wizard_pool, 3, count=3)
        assert wizard_pool.levels[3].current == 2

    def test_expend_missing_level(self, wizard_pool):
        with pytest.raises(ResourceError, match="Elara has no 4th level spell slots"):
            SlotPoolEngine.expend(wizard_pool, 4, owner="Elara")

    def test_expend_invalid_level(self, wizard_pool):
        with pytest.raises(ValidationError):
            SlotPoolEngine.expend(wizard_pool, 10)

    def test_expend_pact(self, warlock):
        pool = build_pool(warlock.progression, warlock.level)
        message = SlotPoolEngine.expend_pact(pool)
        assert message == "Expended 1 pact slot (3rd level, 1/2 left)"

    def test_expend_pact_without_pact(self, wizard_pool):
        with pytest.raises(ResourceError, match="does not have pact magic"):
            SlotPoolEngine.expend_pact(wizard_pool, owner="Elara")

    def test_restore_capped_at_max(self, wizard_pool):
        SlotPoolEngine.expend(wizard_pool, 1, count=2)
        message = SlotPoolEngine.restore(wizard_pool, 1, count=5)
        assert message == "1st level slots: 4/4"

    def test_restore_all(self, wizard_pool):
        SlotPoolEngine.expend(wizard_pool, 1, count=4)
        SlotPoolEngine.expend(wizard_pool, 3)
        SlotPoolEngine.restore(wizard_pool)
        assert wizard_pool.levels[1].current == 4
        assert wizard_pool.levels[3].current == 2

    def test_set_overrides_beyond_max(self, wizard_pool):
        message = SlotPoolEngine.set_slots(wizard_pool, {"1": {"current": 6}})
        assert wizard_pool.levels[1].current == 6
        assert wizard_pool.levels[1].max == 6
        assert message == "Set 1st 6/6"

    def test_set_pact(self, wizard_pool):
        SlotPoolEngine.set_slots(wizard_pool, {"pact": {"current": 1, "max": 2, "slot_level": 2}})
        assert wizard_pool.pact.slot_level == 2
        assert wizard_pool.pact.current == 1

    def test_set_rejects_bad_key_without_change(self, wizard_pool):
        with pytest.raises(ValidationError):
            SlotPoolEngine.set_slots(wizard_pool, {"1": {"current": 0}, "tenth": {"current": 1}})
        assert wizard_pool.levels[1].current == 4

    def test_set_requires_current(self, wizard_pool):
        with pytest.raises(ValidationError):
            SlotPoolEngine.set_slots(wizard_pool, {"2": {"max": 3}})

    def test_short_rest_restores_pact_only(self, warlock, wizard_pool):
        pool = build_pool(warlock.progression, warlock.level)
        SlotPoolEngine.expend_pact(pool, count=2)
        assert SlotPoolEngine.rest(pool, RestKind.SHORT) == "Short rest: pact slots restored"
        assert pool.pact.current == 2

        SlotPoolEngine.expend(wizard_pool, 1)
        assert SlotPoolEngine.rest(wizard_pool, RestKind.SHORT) == "Short rest: no pact slots to restore"
        assert wizard_pool.levels[1].current == 3

    def test_long_rest_restores_all(self, wizard_pool):
        SlotPoolEngine.expend(wizard_pool, 2, count=3)
        assert SlotPoolEngine.rest(wizard_pool, RestKind.LONG) == "Long rest: all spell slots restored"
        assert wizard_pool.levels[2].current == 3

    def test_render(self, wizard_pool):
        SlotPoolEngine.expend(wizard_pool, 1, count=2)
        lines = SlotPoolEngine.render(wizard_pool).splitlines()
        assert lines[0] == "1st  ●●○○ (2/4)"
        assert len(lines) == 3

    def test_render_pact(self, warlock):
        pool = build_pool(warlock.progression, warlock.level)
        SlotPoolEngine.expend_pact(pool)
        assert SlotPoolEngine.render(pool) == "Pact (3rd) ◆◇ (1/2)"

    def test_render_empty(self, fighter):
        pool = build_pool(fighter.progression, fighter.level)
        assert SlotPoolEngine.render(pool) == "No spell slots available"


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class TestSpellSlotManager:

    def test_view_initialises_and_persists(self, manager, repo):
        assert repo.get("wiz-1").spell_slots is None
        result = manager.view("wiz-1")
        assert result.pool.levels[3].max == 2
        assert repo.get("wiz-1").spell_slots is not None

    def test_expend_persists(self, manager, repo):
        manager.expend("wiz-1", slot_level=1)
        assert repo.get("wiz-1").spell_slots.levels[1].current == 3

    def test_failed_expend_writes_nothing(self, manager, repo):
        manager.expend("wiz-1", slot_level=3, count=2)
        with pytest.raises(ResourceError):
            manager.expend("wiz-1", slot_level=3)
        assert repo.get("wiz-1").spell_slots.levels[3].current == 0
        assert repo.get("wiz-1").spell_slots.levels[1].current == 4

    def test_expend_requires_level(self, manager):
        with pytest.raises(ValidationError, match="slot_level is required"):
            manager.expend("wiz-1")

    def test_lookup_by_name(self, manager):
        result = manager.expend(character_name="morwen", pact_magic=True)
        assert result.character.id == "wlk-1"
        assert result.pool.pact.current == 1

    def test_unknown_character(self, manager):
        with pytest.raises(NotFoundError):
            manager.view("nobody")

    def test_long_rest(self, manager, repo):
        manager.expend("wiz-1", slot_level=1, count=4)
        result = manager.take_rest(RestKind.LONG, "wiz-1")
        assert result.message == "Long rest: all spell slots restored"
        assert repo.get("wiz-1").spell_slots.levels[1].current == 4

    def test_set_and_restore(self, manager):
        manager.set({"2": {"current": 0}}, "wiz-1")
        result = manager.restore("wiz-1", slot_level=2, count=1)
        assert result.pool.levels[2].current == 1

    def test_result_render_and_dict(self, manager):
        result = manager.expend("wiz-1", slot_level=2)
        assert result.render().startswith("Spell Slots: Elara (Wizard 5)")
        data = result.to_dict()
        assert data["slots"]["2"] == {"current": 2, "max": 3}
        assert data["pact"] is None
        assert "9" not in data["slots"]
