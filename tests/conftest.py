"""
Pytest configuration and fixtures for dm20-rules tests.
"""

import sys
from pathlib import Path
import pytest

# Add src directory to Python path to allow importing dm20_rules
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from dm20_rules.models import Character
from dm20_rules.world import WorldState


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def world() -> WorldState:
    """A fresh world with an in-memory repository and a fixed seed."""
    return WorldState(seed=42)


@pytest.fixture
def wizard() -> Character:
    """Level 5 wizard: CON 14 (+2), DEX 14 (+2), INT 18, proficient in INT/WIS saves."""
    return Character(
        id="wiz-1",
        name="Elara",
        character_class="wizard",
        level=5,
        race="Elf",
        abilities={"str": 8, "dex": 14, "con": 14, "int": 18, "wis": 12, "cha": 10},
        hit_points_max=32,
        armor_class=12,
        skill_proficiencies=["arcana", "history"],
    )


@pytest.fixture
def fighter() -> Character:
    """Level 5 fighter: STR 16 (+3), DEX 12 (+1), CON 16 (+3)."""
    return Character(
        id="ftr-1",
        name="Aldric",
        character_class="fighter",
        level=5,
        abilities={"strength": 16, "dexterity": 12, "constitution": 16},
        hit_points_max=44,
        armor_class=18,
        skill_proficiencies=["athletics"],
    )


@pytest.fixture
def warlock() -> Character:
    """Level 5 warlock: two 3rd-level pact slots."""
    return Character(
        id="wlk-1",
        name="Morwen",
        character_class="warlock",
        level=5,
        abilities={"cha": 16},
        hit_points_max=33,
    )
