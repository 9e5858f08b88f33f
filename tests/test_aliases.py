from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from linear_resolver.aliases import (
    GLOBAL_SCOPE,
    PROJECT_SCOPE,
    AliasStore,
    find_similar,
    looks_like_linear_id,
    normalize_entity_type,
)
from linear_resolver.validators import Validation


class FakeValidator:
    def __init__(self, known: dict[str, str] | None = None):
        self.known = known or {}
        self.calls: list[tuple[str, str]] = []

    async def validate(self, entity_type: str, entity_id: str) -> Validation:
        self.calls.append((entity_type, entity_id))
        if entity_id in self.known:
            return Validation(valid=True, name=self.known[entity_id])
        return Validation(valid=False, error=f"{entity_type} {entity_id} not found")


@pytest.fixture
def store(tmp_path: Path) -> AliasStore:
    return AliasStore(
        tmp_path / "global" / "aliases.json",
        tmp_path / "project" / "aliases.json",
        validator=FakeValidator({"team_backend": "Backend", "team_other": "Other"}),
    )


def _write(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_add_then_remove_restores_prior_state(store: AliasStore):
    before = store.list_aliases("team")

    added = asyncio.run(store.add("team", "be", "team_backend"))
    assert added.success is True
    assert added.entity_name == "Backend"
    assert store.resolve("team", "be") == "team_backend"

    removed = store.remove("team", "be")
    assert removed.success is True
    assert removed.id == "team_backend"
    assert store.list_aliases("team") == before
    assert store.resolve("team", "be") == "be"


def test_add_rejects_unknown_entity_without_writing(store: AliasStore):
    result = asyncio.run(store.add("team", "ghost", "team_missing"))

    assert result.success is False
    assert "not found" in result.error
    assert not store.global_path.exists()


def test_add_rejects_existing_alias_even_for_same_id(store: AliasStore):
    asyncio.run(store.add("team", "be", "team_backend"))

    same = asyncio.run(store.add("team", "be", "team_backend"))
    other = asyncio.run(store.add("team", "be", "team_other", skip_validation=True))

    assert same.success is False
    assert "already points" in same.error
    assert other.success is False
    assert other.id == "team_backend"


def test_add_rejects_alias_with_spaces(store: AliasStore):
    result = asyncio.run(store.add("team", "back end", "team_backend"))

    assert result.success is False
    assert result.error == "Alias cannot contain spaces"


def test_id_passthrough_reads_no_files(store: AliasStore, monkeypatch: pytest.MonkeyPatch):
    def _boom(path):
        raise AssertionError(f"unexpected read of {path}")

    monkeypatch.setattr(store, "_read", _boom)

    assert store.resolve("team", "team_abc123") == "team_abc123"
    assert store.resolve("project", "0f8fad5b-d9cb-469f-a165-70867728950e") == (
        "0f8fad5b-d9cb-469f-a165-70867728950e"
    )


def test_project_scope_wins_over_global(store: AliasStore):
    _write(store.global_path, {"teams": {"be": "team_global", "fe": "team_frontend"}})
    _write(store.project_path, {"teams": {"be": "team_local"}})

    assert store.resolve("team", "be") == "team_local"
    entity_id, location = store.get("team", "be")
    assert entity_id == "team_local"
    assert location.scope == PROJECT_SCOPE
    assert location.path == store.project_path

    _, fe_location = store.get("team", "fe")
    assert fe_location.scope == GLOBAL_SCOPE


def test_corrupt_file_is_treated_as_empty(store: AliasStore, caplog):
    store.global_path.parent.mkdir(parents=True)
    store.global_path.write_text("{not json", encoding="utf-8")

    with caplog.at_level("WARNING"):
        assert store.list_aliases("team") == {"team": {}}

    assert any("Could not read aliases file" in r.getMessage() for r in caplog.records)


def test_missing_file_is_silent(store: AliasStore, caplog):
    with caplog.at_level("WARNING"):
        assert store.resolve("team", "be") == "be"
    assert not caplog.records


def test_rename_and_update_keep_scope_file(store: AliasStore):
    asyncio.run(store.add("team", "be", "team_backend", scope=PROJECT_SCOPE))

    renamed = store.rename("team", "be", "backend", scope=PROJECT_SCOPE)
    assert renamed.success is True
    assert store.get("team", "be") is None

    updated = asyncio.run(store.update_id("team", "backend", "team_other", scope=PROJECT_SCOPE))
    assert updated.success is True
    assert updated.old_id == "team_backend"
    assert json.loads(store.project_path.read_text())["teams"] == {"backend": "team_other"}
    assert not store.global_path.exists()


def test_update_unknown_alias_fails(store: AliasStore):
    result = asyncio.run(store.update_id("team", "nope", "team_backend"))
    assert result.success is False
    assert "not found" in result.error


def test_clear_preview_does_not_write(store: AliasStore):
    _write(store.global_path, {"teams": {"be": "team_backend", "fe": "team_frontend"}})

    preview = store.clear("team", preview=True)
    assert sorted(preview.aliases) == ["be", "fe"]
    assert store.names("team") == ["be", "fe"]

    cleared = store.clear("team")
    assert cleared.success is True
    assert store.names("team") == []


def test_validate_all_reports_broken_without_mutating(store: AliasStore):
    _write(store.global_path, {"teams": {"be": "team_backend", "old": "team_gone"}})
    before = store.global_path.read_text()

    report = asyncio.run(store.validate_all())

    assert report.total == 2
    assert [b.alias for b in report.broken] == ["old"]
    assert report.broken[0].location.scope == GLOBAL_SCOPE
    assert store.global_path.read_text() == before


def test_suggestion_message_lists_close_aliases(store: AliasStore):
    _write(store.global_path, {"teams": {"backend": "team_backend", "mobile": "team_mobile"}})

    message = store.suggestion_message("team", "backen")

    assert "Did you mean: backend?" in message


def test_find_similar_ranks_substring_first():
    assert find_similar("backen", ["backend", "frontend", "mobile"]) == ["backend"]
    assert find_similar("Mobil", ["mobile", "mobility", "nobile"]) == ["mobile", "mobility", "nobile"]
    assert find_similar("zzz", ["backend"]) == []


def test_entity_type_spellings():
    assert normalize_entity_type("teams") == "team"
    assert normalize_entity_type("projectstatuses") == "project-status"
    assert normalize_entity_type("users") == "member"
    assert normalize_entity_type("widget") is None


def test_id_detection_respects_type_prefix():
    assert looks_like_linear_id("team_abc", "team") is True
    assert looks_like_linear_id("proj_abc", "team") is False
    assert looks_like_linear_id("anything_1", "cycle") is True
    assert looks_like_linear_id("backend", "team") is False


@pytest.mark.parametrize(
    "entity_type,alias",
    [("team", "team_alpha"), ("team", "0f8fad5b-d9cb-469f-a165-70867728950e"), ("cycle", "sprint_4")],
)
def test_id_shaped_alias_names_are_rejected(store: AliasStore, entity_type, alias):
    result = asyncio.run(store.add(entity_type, alias, "cyc_target", skip_validation=True))

    assert result.success is False
    assert result.error == f'Alias "{alias}" looks like a {entity_type} ID'
    assert not store.global_path.exists()


def test_rename_to_id_shaped_name_is_rejected(store: AliasStore):
    asyncio.run(store.add("cycle", "current", "cyc_1", skip_validation=True))

    result = store.rename("cycle", "current", "sprint_4")

    assert result.success is False
    assert "looks like a cycle ID" in result.error
    assert store.resolve("cycle", "current") == "cyc_1"


def test_non_id_alias_resolves_right_after_add(store: AliasStore):
    # prefix of another type is not an ID for this one
    asyncio.run(store.add("team", "proj_alpha", "team_backend", skip_validation=True))

    assert store.resolve("team", "proj_alpha") == "team_backend"


def test_validate_all_checks_shadowed_global_alias(store: AliasStore):
    _write(store.global_path, {"teams": {"be": "team_gone"}})
    _write(store.project_path, {"teams": {"be": "team_missing"}})

    report = asyncio.run(store.validate_all())

    assert report.total == 2
    assert [(b.id, b.location.scope) for b in report.broken] == [
        ("team_gone", GLOBAL_SCOPE),
        ("team_missing", PROJECT_SCOPE),
    ]
    assert report.broken[1].location.path == store.project_path
