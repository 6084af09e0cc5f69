"""
Tests for character repositories, id-or-name resolution and settings.

Covers:
- InMemoryCharacterRepository: get by id or name, update, add, listing
- The shared base refuses subclasses missing storage hooks
- JsonCharacterRepository: persistence across instances, sorted listing,
  unreadable files skipped, path-like ids
- resolve_character: ambiguity warnings, missing input, unknown names
- EngineSettings.from_env
"""

import json

import pytest

from dm20_rules.config import EngineSettings
from dm20_rules.errors import NotFoundError, ValidationError
from dm20_rules.repository import (
    InMemoryCharacterRepository,
    _RepositoryBase,
    JsonCharacterRepository,
    resolve_character,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def repo(wizard, fighter) -> InMemoryCharacterRepository:
    return InMemoryCharacterRepository([wizard, fighter])


@pytest.fixture
def json_repo(tmp_path, wizard, fighter) -> JsonCharacterRepository:
    repository = JsonCharacterRepository(tmp_path / "characters")
    repository.add(wizard)
    repository.add(fighter)
    return repository


# ---------------------------------------------------------------------------
# In-memory repository
# ---------------------------------------------------------------------------

class TestInMemoryRepository:

    def test_get_by_id(self, repo):
        assert repo.get("wiz-1").name == "Elara"

    def test_get_falls_back_to_name(self, repo):
        assert repo.get("ALDRIC").id == "ftr-1"

    def test_unknown(self, repo):
        with pytest.raises(NotFoundError) as exc_info:
            repo.get("nobody")
        assert exc_info.value.identifier == "nobody"

    def test_update_revalidates(self, repo):
        updated = repo.update("wiz-1", {"hit_points_current": 10})
        assert updated.hit_points_current == 10
        assert updated.class_name == "Wizard"
        assert repo.get("wiz-1").hit_points_current == 10

    def test_update_keeps_id(self, repo):
        updated = repo.update("wiz-1", {"id": "other"})
        assert updated.id == "wiz-1"

    def test_invalid_update(self, repo):
        with pytest.raises(ValidationError, match="Invalid character update"):
            repo.update("wiz-1", {"level": 25})
        assert repo.get("wiz-1").level == 5

    def test_listing_in_insertion_order(self, repo):
        assert [c.id for c in repo.list_characters()] == ["wiz-1", "ftr-1"]

    def test_base_requires_storage_hooks(self):
        class Partial(_RepositoryBase):
            def _load(self, character_id):
                return None

        with pytest.raises(TypeError):
            Partial()


# ---------------------------------------------------------------------------
# JSON repository
# ---------------------------------------------------------------------------

class TestJsonRepository:

    def test_file_per_character(self, tmp_path, json_repo):
        path = tmp_path / "characters" / "wiz-1.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["name"] == "Elara"
        assert "progression" not in data

    def test_reload_in_new_instance(self, tmp_path, json_repo):
        again = JsonCharacterRepository(tmp_path / "characters")
        wizard = again.get("wiz-1")
        assert wizard.class_name == "Wizard"
        assert wizard.skill_proficiencies[0].value == "arcana"

    def test_sorted_listing(self, json_repo):
        assert [c.id for c in json_repo.list_characters()] == ["ftr-1", "wiz-1"]

    def test_update_persists(self, tmp_path, json_repo):
        json_repo.update("Elara", {"armor_class": 15})
        again = JsonCharacterRepository(tmp_path / "characters")
        assert again.get("wiz-1").armor_class == 15

    def test_unreadable_file_skipped(self, tmp_path, json_repo):
        (tmp_path / "characters" / "broken.json").write_text("{not json", encoding="utf-8")
        assert len(json_repo.list_characters()) == 2
        assert json_repo.find_by_name("aldric")[0].id == "ftr-1"

    def test_path_like_id_is_not_a_file(self, json_repo):
        with pytest.raises(NotFoundError):
            json_repo.get("../wiz-1")


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class TestResolveCharacter:

    def test_by_id(self, repo):
        lookup = resolve_character(repo, character_id="ftr-1")
        assert lookup.character.name == "Aldric"
        assert lookup.warnings == []

    def test_ambiguous_name(self, repo, wizard):
        repo.add(wizard.model_copy(update={"id": "wiz-2"}))
        lookup = resolve_character(repo, character_name="Elara")
        assert lookup.character.id == "wiz-1"
        assert lookup.warnings == ["Name 'Elara' matches 2 characters (wiz-1, wiz-2); using wiz-1"]

    def test_requires_id_or_name(self, repo):
        with pytest.raises(ValidationError):
            resolve_character(repo)

    def test_unknown_name(self, repo):
        with pytest.raises(NotFoundError):
            resolve_character(repo, character_name="Nobody")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestEngineSettings:

    def test_defaults(self, monkeypatch):
        for name in ("DM20_LOG_LEVEL", "DM20_CHARACTERS_DIR", "DM20_SEED"):
            monkeypatch.delenv(name, raising=False)
        settings = EngineSettings.from_env()
        assert settings.log_level == "INFO"
        assert settings.characters_dir is None
        assert settings.seed is None

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DM20_LOG_LEVEL", "debug")
        monkeypatch.setenv("DM20_CHARACTERS_DIR", str(tmp_path))
        monkeypatch.setenv("DM20_SEED", "7")
        settings = EngineSettings.from_env()
        assert settings.log_level == "DEBUG"
        assert settings.characters_dir == tmp_path
        assert settings.seed == 7
