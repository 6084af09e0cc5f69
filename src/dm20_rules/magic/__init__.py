"""
Spell slot pools, auras, spell scrolls and improvised spells.
"""

from .auras import Aura, AuraManager
from .scrolls import ProposedSpell, SpellSchool, synthesize_spell, use_scroll
from .spell_slots import RestKind, SlotPoolEngine, SpellSlotManager, build_pool

__all__ = [
    "Aura",
    "AuraManager",
    "ProposedSpell",
    "RestKind",
    "SlotPoolEngine",
    "SpellSchool",
    "SpellSlotManager",
    "build_pool",
    "synthesize_spell",
    "use_scroll",
]
