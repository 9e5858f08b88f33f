from __future__ import annotations

from typing import Any

import pytest

from linear_resolver.client import LinearApiError


class FakeDirectory:
    """In-memory stand-in for LinearClient that counts list calls."""

    def __init__(self):
        self.data: dict[str, list[dict[str, Any]]] = {
            "teams": [
                {"id": "team_backend", "name": "Backend", "key": "BE"},
                {"id": "team_frontend", "name": "Frontend", "key": "FE"},
            ],
            "initiatives": [{"id": "init_q1", "name": "Q1 Goals"}],
            "members": [
                {
                    "id": "user_ada",
                    "name": "Ada Lovelace",
                    "email": "ada@example.com",
                    "displayName": "ada",
                }
            ],
            "templates": [
                {"id": "template_bug", "name": "Bug", "type": "issue"},
                {"id": "template_launch", "name": "Launch", "type": "project"},
            ],
            "workflowStates": [{"id": "state_todo", "name": "Todo", "teamId": "team_backend"}],
            "issueLabels": [{"id": "label_bug", "name": "bug"}],
            "projectLabels": [{"id": "label_infra", "name": "infra"}],
            "projectStatuses": [{"id": "status_started", "name": "In Progress"}],
        }
        self.projects: dict[str, dict[str, Any]] = {}
        self.list_calls: dict[str, int] = {}
        self.failures: dict[str, Exception] = {}
        self.team_calls: list[tuple[str, str]] = []

    def calls(self, entity_class: str) -> int:
        return self.list_calls.get(entity_class, 0)

    async def _list(self, entity_class: str) -> list[dict[str, Any]]:
        self.list_calls[entity_class] = self.calls(entity_class) + 1
        if entity_class in self.failures:
            raise self.failures[entity_class]
        return [dict(item) for item in self.data[entity_class]]

    async def list_teams(self) -> list[dict[str, Any]]:
        return await self._list("teams")

    async def list_initiatives(self) -> list[dict[str, Any]]:
        return await self._list("initiatives")

    async def list_members(self, team_id: str | None = None) -> list[dict[str, Any]]:
        if team_id:
            self.team_calls.append(("members", team_id))
            return [dict(self.data["members"][0])]
        return await self._list("members")

    async def list_templates(self) -> list[dict[str, Any]]:
        return await self._list("templates")

    async def list_workflow_states(self, team_id: str | None = None) -> list[dict[str, Any]]:
        if team_id:
            self.team_calls.append(("workflowStates", team_id))
            return [s for s in self.data["workflowStates"] if s["teamId"] == team_id]
        return await self._list("workflowStates")

    async def list_issue_labels(self, team_id: str | None = None) -> list[dict[str, Any]]:
        return await self._list("issueLabels")

    async def list_project_labels(self) -> list[dict[str, Any]]:
        return await self._list("projectLabels")

    async def list_project_statuses(self) -> list[dict[str, Any]]:
        return await self._list("projectStatuses")

    async def find_projects_by_name(self, name: str) -> list[dict[str, Any]]:
        return [p for p in self.projects.values() if p["name"].lower() == name.lower()]

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        return self.projects.get(project_id)

    async def get_cycle(self, cycle_id: str) -> dict[str, Any] | None:
        if cycle_id == "cycle_boom":
            raise LinearApiError("unavailable", "connection reset")
        return None


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()
