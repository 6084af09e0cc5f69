"""
DM20 Rules Engine - D&D 5e combat, magic and spatial rules served over FastMCP.
"""

from .commands import CommandResult, BatchResult, execute, execute_batch
from .errors import NotFoundError, ResourceError, RulesEngineError, StateError, ValidationError
from .world import WorldState

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("dm20-rules-engine")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = [
    "WorldState",
    "execute",
    "execute_batch",
    "CommandResult",
    "BatchResult",
    "RulesEngineError",
    "ValidationError",
    "NotFoundError",
    "StateError",
    "ResourceError",
]
