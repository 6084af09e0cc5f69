"""
Error taxonomy for the rules engine.

Every failure an operation can report is one of four kinds:

- ``ValidationError``: malformed or out-of-range input, rejected before
  any state is touched. Carries the offending field name.
- ``NotFoundError``: an encounter, character, aura or participant id (or a
  character name) that does not resolve. Carries the identifier.
- ``StateError``: the operation is not valid in the current state, e.g. a
  death save rolled while not at 0 HP.
- ``ResourceError``: a resource (spell slots) is exhausted. The dependent
  action is blocked with no partial change.

The command layer turns these into failed results; nothing here is fatal.
"""


class RulesEngineError(Exception):
    """Base class for every error raised by the rules engine."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RulesEngineError):
    """Raised when an input field is missing, malformed or out of range."""

    kind = "validation"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(RulesEngineError):
    """Raised when an identifier does not resolve to a known record."""

    kind = "not_found"

    def __init__(self, message: str, identifier: str | None = None) -> None:
        super().__init__(message)
        self.identifier = identifier


class StateError(RulesEngineError):
    """Raised when an operation is not allowed in the current state."""

    kind = "state"


class ResourceError(StateError):
    """Raised when a consumable resource is exhausted."""

    kind = "resource"
