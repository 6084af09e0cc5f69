"""
Tests for concentration tracking.

Covers:
- calculate_dc: minimum 10, half damage above 20
- start: single concentration, previous spell reported
- end: with and without an active spell
- check: success keeps the spell, failure removes it, natural 20/1,
  not concentrating returns None
"""

import pytest

from dm20_rules.combat.concentration import ConcentrationState, ConcentrationTracker
from dm20_rules.dice import RollMode


@pytest.fixture
def store() -> dict[str, ConcentrationState]:
    return {}


# ---------------------------------------------------------------------------
# DC
# ---------------------------------------------------------------------------

class TestConcentrationDC:

    @pytest.mark.parametrize(
        "damage,dc",
        [(0, 10), (5, 10), (20, 10), (21, 10), (22, 11), (45, 22)],
    )
    def test_dc(self, damage, dc):
        assert ConcentrationTracker.calculate_dc(damage) == dc


# ---------------------------------------------------------------------------
# Start / end
# ---------------------------------------------------------------------------

class TestStartEnd:

    def test_start(self, store):
        result = ConcentrationTracker.start(store, "wiz-1", "Bless", targets=["ftr-1"], duration=10)
        assert result["previous_spell"] is None
        assert store["wiz-1"].spell_name == "Bless"
        assert store["wiz-1"].describe() == "Bless on ftr-1 (10 rounds)"

    def test_new_spell_replaces_old(self, store):
        ConcentrationTracker.start(store, "wiz-1", "Bless")
        result = ConcentrationTracker.start(store, "wiz-1", "Haste")
        assert result["previous_spell"] == "Bless"
        assert ConcentrationTracker.get(store, "wiz-1").spell_name == "Haste"
        assert len(store) == 1

    def test_end(self, store):
        ConcentrationTracker.start(store, "wiz-1", "Bless")
        result = ConcentrationTracker.end(store, "wiz-1", reason="voluntary")
        assert result == {"spell_name": "Bless", "reason": "voluntary"}
        assert ConcentrationTracker.get(store, "wiz-1") is None

    def test_end_when_not_concentrating(self, store):
        assert ConcentrationTracker.end(store, "wiz-1")["spell_name"] is None


# ---------------------------------------------------------------------------
# Saves
# ---------------------------------------------------------------------------

class TestConcentrationCheck:

    def test_not_concentrating(self, store):
        assert ConcentrationTracker.check(store, "wiz-1", damage=10, manual_roll=10) is None

    def test_success_keeps_spell(self, store):
        ConcentrationTracker.start(store, "wiz-1", "Bless")
        result = ConcentrationTracker.check(store, "wiz-1", damage=12, con_save_modifier=2, manual_roll=8)
        assert result.success
        assert not result.broke
        assert result.total == 10
        assert "wiz-1" in store
        assert "maintains concentration on Bless" in result.detail

    def test_failure_breaks(self, store):
        ConcentrationTracker.start(store, "wiz-1", "Bless")
        result = ConcentrationTracker.check(
            store, "wiz-1", damage=30, con_save_modifier=2, manual_roll=12, caster_name="Elara"
        )
        assert result.dc == 15
        assert result.broke
        assert "wiz-1" not in store
        assert result.detail.startswith("Elara loses concentration on Bless!")

    def test_natural_20_holds_against_high_dc(self, store):
        ConcentrationTracker.start(store, "wiz-1", "Bless")
        result = ConcentrationTracker.check(store, "wiz-1", damage=100, manual_roll=20)
        assert result.success

    def test_natural_1_breaks_against_low_dc(self, store):
        ConcentrationTracker.start(store, "wiz-1", "Bless")
        result = ConcentrationTracker.check(store, "wiz-1", damage=1, con_save_modifier=15, manual_roll=1)
        assert result.broke

    def test_advantage(self, store):
        ConcentrationTracker.start(store, "wiz-1", "Bless")
        result = ConcentrationTracker.check(
            store, "wiz-1", damage=10, mode=RollMode.ADVANTAGE, manual_rolls=[3, 11]
        )
        assert result.roll.rolls == [3, 11]
        assert result.success
