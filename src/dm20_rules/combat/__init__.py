"""
Combat mechanics package for the dm20 rules engine.

Provides the condition engine and derived stats, death saves, concentration
tracking, the encounter/turn orchestrator, combat actions, battlefield props
and the text battlefield renderer.
"""

# Conditions and derived stats
from .conditions import ActiveCondition, ConditionEngine, DurationKind, EffectiveStats

# Resource sub-state machines
from .concentration import ConcentrationState, ConcentrationTracker
from .death_saves import DeathSaveState, DeathSaveTracker

# Encounters
from .encounter import Encounter, EncounterManager, Participant, ParticipantRef, ParticipantSpec, Terrain, TurnState
from .actions import ActionCost, ActionKind, ActionManager, ActionResult, ShoveMode
from .props import Prop, PropEngine, PropType
from .battlefield import render_battlefield

__all__ = [
    "ActiveCondition",
    "ConditionEngine",
    "DurationKind",
    "EffectiveStats",
    "ConcentrationState",
    "ConcentrationTracker",
    "DeathSaveState",
    "DeathSaveTracker",
    "Encounter",
    "EncounterManager",
    "Participant",
    "ParticipantRef",
    "ParticipantSpec",
    "Terrain",
    "TurnState",
    "ActionCost",
    "ActionKind",
    "ActionManager",
    "ActionResult",
    "ShoveMode",
    "Prop",
    "PropEngine",
    "PropType",
    "render_battlefield",
]
