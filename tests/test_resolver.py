from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from linear_resolver.aliases import AliasStore
from linear_resolver.persistent_cache import PersistentCache
from linear_resolver.resolver import AmbiguousResolutionError, Resolution, ResolutionError, Resolver
from linear_resolver.session_cache import SessionEntityCache


@pytest.fixture
def resolver(tmp_path: Path, directory) -> Resolver:
    global_path = tmp_path / "global.json"
    global_path.write_text(json.dumps({"teams": {"be": "team_backend", "mobile": "team_mobile"}}))
    aliases = AliasStore(global_path, tmp_path / "project.json")
    session = SessionEntityCache(PersistentCache(tmp_path / "cache.json", directory), directory)
    directory.projects["proj_site"] = {"id": "proj_site", "name": "Website Relaunch"}
    return Resolver(aliases, session, directory)


def test_id_passthrough_skips_lookups(resolver, directory):
    resolution = asyncio.run(resolver.resolve("team", "team_xyz"))

    assert resolution == Resolution(id="team_xyz", source="id")
    assert directory.list_calls == {}


def test_alias_before_name(resolver, directory):
    resolution = asyncio.run(resolver.resolve("teams", "be"))

    assert resolution == Resolution(id="team_backend", source="alias")
    assert directory.calls("teams") == 0


@pytest.mark.parametrize(
    "entity_type,value,expected",
    [
        ("team", "fe", "team_frontend"),
        ("team", "backend", "team_backend"),
        ("member", "ADA@EXAMPLE.COM", "user_ada"),
        ("member", "Ada Lovelace", "user_ada"),
        ("initiative", "q1 goals", "init_q1"),
        ("project-template", "launch", "template_launch"),
        ("workflow-state", "todo", "state_todo"),
        ("project-status", "in progress", "status_started"),
        ("project", "website relaunch", "proj_site"),
    ],
)
def test_name_lookup_per_entity_type(resolver, entity_type, value, expected):
    resolution = asyncio.run(resolver.resolve(entity_type, value))

    assert resolution.id == expected
    assert resolution.source == "name"


def test_template_kind_is_respected(resolver):
    with pytest.raises(ResolutionError):
        asyncio.run(resolver.resolve("issue-template", "Launch"))


def test_miss_suggests_similar_names(resolver):
    with pytest.raises(ResolutionError) as exc_info:
        asyncio.run(resolver.resolve("team", "backen"))

    error = exc_info.value
    assert error.entity_type == "team"
    assert error.suggestions[0] == "Backend"
    assert "Did you mean" in str(error)


def test_cycles_resolve_by_alias_or_id_only(resolver):
    with pytest.raises(ResolutionError) as exc_info:
        asyncio.run(resolver.resolve("cycle", "Sprint 4"))

    assert exc_info.value.suggestions == []
    assert str(exc_info.value) == 'cycle "Sprint 4" not found'


def test_resolve_many_keeps_order_and_drops_duplicates(resolver):
    ids = asyncio.run(resolver.resolve_many("team", "fe, be,backend,,team_frontend"))

    assert ids == ["team_frontend", "team_backend"]


def test_empty_reference_is_rejected(resolver):
    with pytest.raises(ValueError):
        asyncio.run(resolver.resolve("team", "   "))


@pytest.fixture
def shared_state_names(directory):
    directory.data["workflowStates"] = [
        {"id": "state_fe_todo", "name": "Todo", "teamId": "team_frontend"},
        {"id": "state_be_todo", "name": "Todo", "teamId": "team_backend"},
        {"id": "state_be_done", "name": "Done", "teamId": "team_backend"},
    ]


@pytest.mark.usefixtures("shared_state_names")
def test_team_narrows_workflow_state_names(resolver, directory):
    resolution = asyncio.run(resolver.resolve("workflow-state", "todo", team_id="team_backend"))

    assert resolution == Resolution(id="state_be_todo", source="name", name="Todo")
    assert directory.team_calls == [("workflowStates", "team_backend")]


@pytest.mark.usefixtures("shared_state_names")
def test_name_shared_across_teams_is_ambiguous_without_team(resolver):
    with pytest.raises(AmbiguousResolutionError) as exc_info:
        asyncio.run(resolver.resolve("workflow-state", "Todo"))

    error = exc_info.value
    assert isinstance(error, ResolutionError)
    assert [m["id"] for m in error.matches] == ["state_fe_todo", "state_be_todo"]
    assert "state_fe_todo (team team_frontend)" in str(error)
    assert "Pass a team" in str(error)

    # a unique name still resolves without a team
    done = asyncio.run(resolver.resolve("workflow-state", "Done"))
    assert done.id == "state_be_done"


@pytest.mark.usefixtures("shared_state_names")
def test_resolve_many_passes_team_through(resolver):
    ids = asyncio.run(resolver.resolve_many("workflow-state", "Todo,Done", team_id="team_backend"))

    assert ids == ["state_be_todo", "state_be_done"]


def test_team_is_ignored_for_unscoped_types(resolver):
    resolution = asyncio.run(resolver.resolve("team", "fe", team_id="team_backend"))

    assert resolution.id == "team_frontend"
