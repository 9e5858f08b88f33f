from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from linear_resolver.client import LinearApiError, LinearClient


def _client(handler: Callable[[dict[str, Any]], httpx.Response], api_key: str | None = "lin_key"):
    seen: list[dict[str, Any]] = []

    def _handle(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        body["authorization"] = request.headers.get("Authorization")
        seen.append(body)
        return handler(body)

    client = LinearClient(api_key=api_key, transport=httpx.MockTransport(_handle))
    return client, seen


def _run(client: LinearClient, coro):
    async def _scenario():
        try:
            return await coro
        finally:
            await client.aclose()

    return asyncio.run(_scenario())


def test_list_teams_paginates_and_sorts():
    pages = {
        None: {"nodes": [{"id": "t2", "name": "zeta", "key": "Z"}], "pageInfo": {"hasNextPage": True, "endCursor": "c1"}},
        "c1": {"nodes": [{"id": "t1", "name": "Alpha", "key": "A"}], "pageInfo": {"hasNextPage": False, "endCursor": None}},
    }

    def handler(body):
        return httpx.Response(200, json={"data": {"teams": pages[body["variables"]["after"]]}})

    client, seen = _client(handler)
    teams = _run(client, client.list_teams())

    assert [t["id"] for t in teams] == ["t1", "t2"]
    assert [b["variables"]["after"] for b in seen] == [None, "c1"]
    assert seen[0]["variables"]["first"] == 250
    assert seen[0]["authorization"] == "lin_key"
    assert client.call_count == 2


def test_team_members_use_nested_connection():
    def handler(body):
        assert body["variables"]["id"] == "team_1"
        members = {"nodes": [{"id": "u1", "name": "Ada", "email": "ada@example.com"}], "pageInfo": {}}
        return httpx.Response(200, json={"data": {"team": {"members": members}}})

    client, _ = _client(handler)
    members = _run(client, client.list_members(team_id="team_1"))

    assert members[0]["email"] == "ada@example.com"
    assert members[0]["active"] is False


def test_missing_api_key_fails_before_any_request():
    client, seen = _client(lambda body: httpx.Response(200, json={"data": {}}), api_key=None)

    with pytest.raises(LinearApiError) as exc_info:
        _run(client, client.list_teams())

    assert exc_info.value.code == "not_configured"
    assert seen == []


def test_graphql_errors_and_http_errors_are_classified():
    client, _ = _client(lambda body: httpx.Response(200, json={"errors": [{"message": "Argument invalid"}]}))
    with pytest.raises(LinearApiError) as graphql_exc:
        _run(client, client.list_initiatives())
    assert graphql_exc.value.code == "graphql_error"
    assert client.get_health()["failureCount"] == 1
    assert client.get_calls()[0].operation == "ListInitiatives"

    client, _ = _client(lambda body: httpx.Response(502, text="bad gateway"))
    with pytest.raises(LinearApiError) as http_exc:
        _run(client, client.list_initiatives())
    assert http_exc.value.code == "http_error"
    assert "502" in http_exc.value.message


def test_transport_failure_is_unavailable():
    def handler(body):
        raise httpx.ConnectError("refused")

    client, _ = _client(handler)
    with pytest.raises(LinearApiError) as exc_info:
        _run(client, client.get_project("proj_1"))

    assert exc_info.value.code == "unavailable"


def test_point_lookup_returns_none_when_not_found():
    client, _ = _client(
        lambda body: httpx.Response(200, json={"errors": [{"message": "Entity not found: Project"}]})
    )

    assert _run(client, client.get_project("proj_missing")) is None


def test_create_relation_sends_dependency_input():
    relation = {
        "id": "rel_1",
        "anchorType": "end",
        "relatedAnchorType": "start",
        "project": {"id": "p1", "name": "One"},
        "relatedProject": {"id": "p2", "name": "Two"},
    }

    def handler(body):
        return httpx.Response(
            200,
            json={"data": {"projectRelationCreate": {"success": True, "projectRelation": relation}}},
        )

    client, seen = _client(handler)
    created = _run(client, client.create_project_relation("p1", "p2", "end", "start"))

    assert created["id"] == "rel_1"
    assert seen[0]["variables"]["input"] == {
        "type": "dependency",
        "projectId": "p1",
        "relatedProjectId": "p2",
        "anchorType": "end",
        "relatedAnchorType": "start",
    }
    assert client.get_calls()[0].kind == "mutation"


def test_duplicate_relation_error_is_recognized():
    client, _ = _client(
        lambda body: httpx.Response(200, json={"errors": [{"message": "Relation exists already"}]})
    )

    with pytest.raises(LinearApiError) as exc_info:
        _run(client, client.create_project_relation("p1", "p2", "end", "start"))

    assert exc_info.value.is_duplicate


def test_list_relations_merges_inverse_without_duplicates():
    rel = {"id": "rel_1", "project": {"id": "p1"}, "relatedProject": {"id": "p2"}}
    other = {"id": "rel_2", "project": {"id": "p3"}, "relatedProject": {"id": "p1"}}

    def handler(body):
        project = {
            "id": "p1",
            "relations": {"nodes": [rel]},
            "inverseRelations": {"nodes": [rel, other]},
        }
        return httpx.Response(200, json={"data": {"project": project}})

    client, _ = _client(handler)
    relations = _run(client, client.list_project_relations("p1"))

    assert [r["id"] for r in relations] == ["rel_1", "rel_2"]
