"""
Tests for the text battlefield renderer.

Covers:
- Symbol assignment for allies, enemies and numbered enemy groups
- Terrain glyphs, stacked and dead squares, visible props
- Coordinate axes on and off
- Viewport cropping, clamping and origin validation
- Focus windows around a participant
- Legend detail levels, conditions, bloodied/unconscious markers, elevation
"""

import pytest

from dm20_rules.combat.battlefield import (
    LegendDetail,
    Viewport,
    assign_symbols,
    render_battlefield,
)
from dm20_rules.combat.conditions import ConditionEngine
from dm20_rules.combat.encounter import EncounterManager, Participant, ParticipantSpec, Terrain
from dm20_rules.combat.props import Prop, PropType
from dm20_rules.errors import ValidationError
from dm20_rules.models import ConditionTag
from dm20_rules.spatial.positioning import Position


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def spec(pid, name, hp, initiative, x=0, y=0, z=0, **kwargs):
    return ParticipantSpec(
        id=pid,
        name=name,
        hp=hp,
        initiative=initiative,
        position=Position(x=x, y=y, z=z),
        **kwargs,
    )


@pytest.fixture
def manager(world) -> EncounterManager:
    return EncounterManager(world)


@pytest.fixture
def small(manager):
    """A 5x5 field with one of every terrain kind."""
    encounter, _ = manager.create(
        [
            spec("aldric", "Aldric", 30, 20, x=0, y=0),
            spec("gob", "Goblin", 7, 10, x=4, y=0, is_enemy=True),
        ],
        terrain=Terrain(
            width=5,
            height=5,
            obstacles=["2,2"],
            difficult_terrain=["3,0"],
            water=["4,4"],
            hazards=[{"position": "0,4", "type": "fire"}],
        ),
    )
    return encounter


@pytest.fixture
def open_field(manager):
    encounter, _ = manager.create(
        [spec("scout", "Scout", 10, 15, x=10, y=10)],
        terrain=Terrain(width=20, height=20),
    )
    return encounter


# ---------------------------------------------------------------------------
# Symbols
# ---------------------------------------------------------------------------

class TestSymbols:

    def test_allies_upper_enemies_lower(self):
        participants = [
            Participant(id="a", name="Aldric", hp=10, max_hp=10),
            Participant(id="o", name="Orc", hp=10, max_hp=10, is_enemy=True),
        ]
        assert assign_symbols(participants) == {"a": "A", "o": "o"}

    def test_shared_initials(self):
        participants = [
            Participant(id="a", name="Aldric", hp=10, max_hp=10),
            Participant(id="b", name="Anya", hp=10, max_hp=10),
            Participant(id="g1", name="Goblin", hp=7, max_hp=7, is_enemy=True),
            Participant(id="g2", name="Goblin Boss", hp=21, max_hp=21, is_enemy=True),
            Participant(id="o", name="Orc", hp=15, max_hp=15, is_enemy=True),
        ]
        assert assign_symbols(participants) == {"a": "A", "b": "N", "g1": "1", "g2": "2", "o": "o"}

    def test_symbols_unique(self):
        participants = [Participant(id=f"p{i}", name="Bandit", hp=5, max_hp=5) for i in range(4)]
        symbols = assign_symbols(participants)
        assert len(set(symbols.values())) == 4


# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------

class TestGrid:

    def test_full_render(self, small):
        lines = render_battlefield(small, show_legend=False).splitlines()
        assert lines[0] == f"Encounter {small.id} | Round 1 | Aldric's turn"
        assert lines[2] == "   0 1 2 3 4"
        assert lines[3] == "0  A · · ▒ g"
        assert lines[5] == "2  · · █ · ·"
        assert lines[7] == "4  ⚠ · · · ≈"
        assert len(lines) == 8

    def test_without_coordinates(self, small):
        lines = render_battlefield(small, show_legend=False, show_coordinates=False).splitlines()
        assert lines[2] == " A · · ▒ g"
        assert len(lines) == 7

    def test_dead_square(self, manager, small):
        manager.apply_damage(small.id, "gob", 7)
        lines = render_battlefield(small, show_legend=False).splitlines()
        assert lines[3] == "0  A · · ▒ †"

    def test_stacked_square(self, manager):
        encounter, _ = manager.create(
            [spec("a", "Aldric", 10, 20, x=1, y=1), spec("b", "Brom", 10, 10, x=1, y=1)],
            terrain=Terrain(width=5, height=5),
        )
        text = render_battlefield(encounter)
        assert "1  · + · · ·" in text
        assert "+ several creatures" in text

    def test_props(self, small):
        small.props.extend(
            [
                Prop(name="Barrel", type=PropType.BARREL, position=Position(x=1, y=3)),
                Prop(name="Pit", type=PropType.TRAP, position=Position(x=3, y=3), hidden=True),
            ]
        )
        text = render_battlefield(small)
        assert "3  · ■ · · ·" in text
        assert "■ prop" in text
        assert "  ■ 1,3: Barrel (barrel)" in text
        assert "Pit" not in text


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

class TestWindow:

    def test_viewport_crop(self, open_field):
        lines = render_battlefield(
            open_field, viewport=Viewport(x=5, y=5, width=3, height=3), show_legend=False
        ).splitlines()
        assert lines[2].split() == ["5", "6", "7"]
        assert [line.split()[0] for line in lines[3:]] == ["5", "6", "7"]

    def test_viewport_clamped_to_grid(self, open_field):
        lines = render_battlefield(
            open_field, viewport=Viewport(x=18, y=0, width=5, height=5), show_legend=False
        ).splitlines()
        assert lines[2].split() == ["15", "16", "17", "18", "19"]

    def test_viewport_origin_outside(self, open_field):
        with pytest.raises(ValidationError):
            render_battlefield(open_field, viewport=Viewport(x=25, y=0, width=5, height=5))

    def test_focus_centres_on_participant(self, open_field):
        lines = render_battlefield(open_field, focus_on="scout", show_legend=False).splitlines()
        header = lines[2].split()
        assert (header[0], header[-1]) == ("5", "15")
        assert len(lines) == 3 + 11

    def test_focus_by_name_near_edge(self, manager):
        encounter, _ = manager.create([spec("s", "Scout", 10, 15, x=0, y=0)], terrain=Terrain(width=20, height=20))
        lines = render_battlefield(encounter, focus_on="Scout", show_legend=False).splitlines()
        assert lines[2].split()[0] == "0"


# ---------------------------------------------------------------------------
# Legend
# ---------------------------------------------------------------------------

class TestLegend:

    def test_standard_legend(self, small):
        text = render_battlefield(small)
        assert "▶ A Aldric (ally) at 0,0 | HP 30/30" in text
        assert "  g Goblin (enemy) at 4,0 | HP 7/7" in text
        assert "Key: █ wall  ▒ difficult terrain  ≈ water  ⚠ hazard" in text
        assert "  ⚠ 0,4: fire" in text

    def test_minimal_legend(self, small):
        text = render_battlefield(small, legend_detail=LegendDetail.MINIMAL)
        assert "▶ A Aldric HP 30/30" in text
        assert "0,4: fire" not in text

    def test_detailed_legend(self, small):
        text = render_battlefield(small, legend_detail=LegendDetail.DETAILED)
        assert "AC 10 | speed 30 ft | init 20" in text

    def test_conditions_listed(self, world, small):
        ConditionEngine.add(world.conditions_for("gob"), "gob", ConditionTag.POISONED, duration=2)
        text = render_battlefield(small, conditions=world.conditions)
        assert "Goblin (enemy) at 4,0 | HP 7/7 | Poisoned (2 rounds)" in text

    def test_bloodied_and_unconscious(self, manager):
        encounter, _ = manager.create(
            [
                spec("a", "Aldric", 30, 20, x=0, y=0),
                spec("b", "Brom", 20, 10, x=1, y=0),
            ],
            terrain=Terrain(width=5, height=5),
        )
        manager.apply_damage(encounter.id, "a", 15)
        manager.apply_damage(encounter.id, "b", 20)
        text = render_battlefield(encounter)
        assert "Aldric (ally) at 0,0 | HP 15/30 | Bloodied" in text
        assert "○ B Brom" in text

    def test_dead_in_legend(self, manager, small):
        manager.apply_damage(small.id, "gob", 7)
        text = render_battlefield(small)
        assert "† g Goblin (enemy) at 4,0 | HP 0/7 | Dead" in text
        assert "† dead" in text

    def test_elevation(self, manager):
        encounter, _ = manager.create(
            [spec("b", "Bat", 3, 10, x=2, y=2, z=2, is_enemy=True)],
            terrain=Terrain(width=5, height=5),
        )
        text = render_battlefield(encounter)
        assert "elevation 10 ft" in text
        assert "Elevation: 1 square = 5 ft above ground" in text
        assert "elevation" not in render_battlefield(encounter, show_elevation=False)
