"""
Character repository: the key-value store character records are read from.

The rules engine only needs two things from persistence: fetch a record by
id or name, and write back a partial update. ``CharacterRepository`` is that
interface; two implementations ship with the engine, an in-memory one for
tests and embedding and a JSON-directory one for the server.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Protocol

from .errors import NotFoundError, ValidationError
from .models import Character

logger = logging.getLogger("dm20-rules")


class CharacterRepository(Protocol):
    """Store of character records keyed by id, searchable by name."""

    def get(self, identifier: str) -> Character:
        """Return the record whose id (or, failing that, name) matches."""
        ...

    def find_by_name(self, name: str) -> list[Character]:
        """Return every record whose name matches, in storage order."""
        ...

    def update(self, identifier: str, fields: dict[str, Any]) -> Character:
        """Apply a partial update and return the stored result."""
        ...

    def add(self, character: Character) -> Character:
        """Insert or replace a record."""
        ...


# ---------------------------------------------------------------------------
# Shared lookup behaviour
# ---------------------------------------------------------------------------

class _RepositoryBase(ABC):
    """Lookup logic shared by the concrete repositories.

    Subclasses provide ``_iter_characters`` (storage order), ``_load`` and
    ``_save``.
    """

    @abstractmethod
    def _iter_characters(self) -> Iterable[Character]:
        """Yield every stored record in storage order."""

    @abstractmethod
    def _load(self, character_id: str) -> Character | None:
        """Return the record stored under exactly this id, if any."""

    @abstractmethod
    def _save(self, character: Character) -> None:
        """Persist a record under its id."""

    def list_characters(self) -> list[Character]:
        return list(self._iter_characters())

    def find_by_name(self, name: str) -> list[Character]:
        wanted = name.strip().lower()
        return [c for c in self._iter_characters() if c.name.lower() == wanted]

    def get(self, identifier: str) -> Character:
        character = self._load(identifier)
        if character is not None:
            return character
        matches = self.find_by_name(identifier)
        if not matches:
            raise NotFoundError(f"Character '{identifier}' not found", identifier=identifier)
        return matches[0]

    def update(self, identifier: str, fields: dict[str, Any]) -> Character:
        current = self.get(identifier)
        data = current.model_dump()
        data.update(fields)
        data["id"] = current.id
        try:
            updated = Character.model_validate(data)
        except ValueError as e:
            raise ValidationError(f"Invalid character update: {e}") from e
        self._save(updated)
        logger.debug(f"💾 Updated character {updated.name} ({updated.id}): {sorted(fields)}")
        return updated

    def add(self, character: Character) -> Character:
        self._save(character)
        logger.debug(f"💾 Stored character {character.name} ({character.id})")
        return character


class InMemoryCharacterRepository(_RepositoryBase):
    """Dict-backed repository. Storage order is insertion order."""

    def __init__(self, characters: Iterable[Character] | None = None) -> None:
        self._characters: dict[str, Character] = {}
        for character in characters or []:
            self._characters[character.id] = character

    def _iter_characters(self) -> Iterable[Character]:
        return list(self._characters.values())

    def _load(self, character_id: str) -> Character | None:
        return self._characters.get(character_id)

    def _save(self, character: Character) -> None:
        self._characters[character.id] = character


class JsonCharacterRepository(_RepositoryBase):
    """One ``<id>.json`` file per character in a directory.

    Storage order is the sorted file-name order.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, character_id: str) -> Path:
        return self.directory / f"{character_id}.json"

    def _read(self, path: Path) -> Character:
        with open(path, "r", encoding="utf-8") as f:
            return Character.model_validate(json.load(f))

    def _iter_characters(self) -> Iterable[Character]:
        characters = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                characters.append(self._read(path))
            except (OSError, ValueError) as e:
                logger.warning(f"❌ Skipping unreadable character file {path.name}: {e}")
        return characters

    def _load(self, character_id: str) -> Character | None:
        if not character_id or "/" in character_id or "\\" in character_id:
            return None
        path = self._path(character_id)
        if not path.exists():
            return None
        return self._read(path)

    def _save(self, character: Character) -> None:
        with open(self._path(character.id), "w", encoding="utf-8") as f:
            json.dump(character.model_dump(mode="json"), f, indent=2)


# ---------------------------------------------------------------------------
# Id-or-name resolution
# ---------------------------------------------------------------------------

@dataclass
class CharacterLookup:
    """A resolved character plus any ambiguity warnings."""

    character: Character
    warnings: list[str] = field(default_factory=list)


def resolve_character(
    repository: CharacterRepository,
    character_id: str | None = None,
    character_name: str | None = None,
) -> CharacterLookup:
    """Resolve a character by id, or by name when no id is given.

    A name that matches several records resolves to the first in storage
    order; the ambiguity is reported as a warning rather than an error.

    Raises:
        ValidationError: If neither id nor name is given.
        NotFoundError: If nothing matches.
    """
    if character_id:
        return CharacterLookup(character=repository.get(character_id))
    if not character_name:
        raise ValidationError("character_id or character_name is required", field="character_id")

    matches = repository.find_by_name(character_name)
    if not matches:
        raise NotFoundError(f"Character '{character_name}' not found", identifier=character_name)

    warnings: list[str] = []
    if len(matches) > 1:
        ids = ", ".join(c.id for c in matches)
        warnings.append(
            f"Name '{character_name}' matches {len(matches)} characters ({ids}); using {matches[0].id}"
        )
        logger.warning(f"⚠️ Ambiguous character name '{character_name}': {ids}")
    return CharacterLookup(character=matches[0], warnings=warnings)
