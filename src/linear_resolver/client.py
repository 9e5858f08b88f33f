"""
Async GraphQL client for the Linear API.

This is the remote entity directory the caches sit in front of: list-all and
get-by-ID for every cached entity class, project-name search, and project
relation mutations. Every call is recorded so callers can check how many
round-trips an operation cost.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .config import DEFAULT_API_URL, DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

PAGE_SIZE = 250
MAX_CALL_RECORDS = 500

_OPERATION_RE = re.compile(r"^\s*(query|mutation)\s+(\w+)")
_DUPLICATE_MARKERS = ("already exists", "relation exists")


class LinearApiError(RuntimeError):
    """Raised when a Linear API call fails."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def is_duplicate(self) -> bool:
        lowered = self.message.lower()
        return any(marker in lowered for marker in _DUPLICATE_MARKERS)


@dataclass
class ApiCall:
    operation: str
    kind: str
    duration_ms: float
    error: str | None = None


class EntityDirectory(Protocol):
    """Remote operations the caches, validators and resolver depend on."""

    async def list_teams(self) -> list[dict[str, Any]]: ...

    async def list_initiatives(self) -> list[dict[str, Any]]: ...

    async def list_members(self, team_id: str | None = None) -> list[dict[str, Any]]: ...

    async def list_templates(self) -> list[dict[str, Any]]: ...

    async def list_workflow_states(self, team_id: str | None = None) -> list[dict[str, Any]]: ...

    async def list_issue_labels(self, team_id: str | None = None) -> list[dict[str, Any]]: ...

    async def list_project_labels(self) -> list[dict[str, Any]]: ...

    async def list_project_statuses(self) -> list[dict[str, Any]]: ...


TEAM_FIELDS = "id name key description"
INITIATIVE_FIELDS = "id name description status"
MEMBER_FIELDS = "id name email active admin displayName avatarUrl"
TEMPLATE_FIELDS = "id name type description"
WORKFLOW_STATE_FIELDS = "id name type color description position team { id }"
ISSUE_LABEL_FIELDS = "id name description color team { id }"
PROJECT_LABEL_FIELDS = "id name description color"
PROJECT_STATUS_FIELDS = "id name type color position"
PROJECT_FIELDS = "id name description icon"
CYCLE_FIELDS = "id name number team { id }"
RELATION_FIELDS = """
    id
    type
    anchorType
    relatedAnchorType
    createdAt
    updatedAt
    project { id name }
    relatedProject { id name }
"""


def _team(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "key": node.get("key"),
        "description": node.get("description") or None,
    }


def _initiative(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "description": node.get("description") or None,
        "status": node.get("status"),
    }


def _member(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "email": node.get("email"),
        "active": bool(node.get("active")),
        "admin": bool(node.get("admin")),
        "displayName": node.get("displayName"),
        "avatarUrl": node.get("avatarUrl"),
    }


def _template(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "type": node.get("type"),
        "description": node.get("description") or None,
    }


def _team_id(node: dict[str, Any]) -> str | None:
    team = node.get("team") or {}
    return team.get("id")


def _workflow_state(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "type": node.get("type"),
        "color": node.get("color"),
        "description": node.get("description") or None,
        "position": node.get("position"),
        "teamId": _team_id(node),
    }


def _issue_label(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "description": node.get("description") or None,
        "color": node.get("color"),
        "teamId": _team_id(node),
    }


def _project_label(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "description": node.get("description") or None,
        "color": node.get("color"),
    }


def _project_status(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "type": node.get("type"),
        "color": node.get("color"),
        "position": node.get("position"),
    }


def _project(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "description": node.get("description") or None,
        "icon": node.get("icon"),
    }


def _cycle(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "number": node.get("number"),
        "teamId": _team_id(node),
    }


def _team_filter(team_id: str | None) -> dict[str, Any] | None:
    if not team_id:
        return None
    return {"team": {"id": {"eq": team_id}}}


class LinearClient:
    """Linear GraphQL client with per-call accounting."""

    def __init__(
        self,
        api_key: str | None = None,
        url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._url = url
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = api_key
        self._http = httpx.AsyncClient(headers=headers, timeout=timeout_seconds, transport=transport)

        self._calls: list[ApiCall] = []
        self._call_count = 0
        self._failure_count = 0
        self._last_error: str | None = None
        self._last_failure_at: float | None = None

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> LinearClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # accounting

    def _record(self, operation: str, kind: str, started: float, error: str | None) -> None:
        self._call_count += 1
        self._calls.append(
            ApiCall(
                operation=operation,
                kind=kind,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=error,
            )
        )
        del self._calls[:-MAX_CALL_RECORDS]
        if error is not None:
            self._failure_count += 1
            self._last_error = error
            self._last_failure_at = time.time()
            logger.warning("Linear API %s %s failed: %s", kind, operation, error)

    def get_calls(self) -> list[ApiCall]:
        return list(self._calls)

    @property
    def call_count(self) -> int:
        return self._call_count

    def get_health(self) -> dict[str, Any]:
        return {
            "url": self._url,
            "hasApiKey": self._api_key is not None,
            "callCount": self._call_count,
            "failureCount": self._failure_count,
            "lastError": self._last_error,
            "lastFailureAt": self._last_failure_at,
        }

    # ------------------------------------------------------------------
    # transport

    @staticmethod
    def _operation_info(query: str) -> tuple[str, str]:
        match = _OPERATION_RE.match(query)
        if not match:
            return "query", "anonymous"
        return match.group(1), match.group(2)

    @staticmethod
    def _error_from_payload(errors: list[Any]) -> LinearApiError:
        messages = [
            str(err.get("message", "unknown error")) if isinstance(err, dict) else str(err)
            for err in errors
        ]
        message = "; ".join(messages) or "unknown GraphQL error"
        if any("not found" in m.lower() for m in messages):
            return LinearApiError("not_found", message)
        return LinearApiError("graphql_error", message)

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run one GraphQL operation and return its ``data`` object."""
        kind, operation = self._operation_info(query)
        if not self._api_key:
            raise LinearApiError("not_configured", "LINEAR_API_KEY is not set")

        started = time.perf_counter()
        try:
            response = await self._http.post(
                self._url, json={"query": query, "variables": variables or {}}
            )
        except httpx.HTTPError as exc:
            error = LinearApiError("unavailable", f"Linear API request failed: {exc}")
            self._record(operation, kind, started, error.message)
            raise error from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and payload.get("errors"):
            error = self._error_from_payload(payload["errors"])
        elif response.status_code >= 400:
            error = LinearApiError(
                "http_error",
                f"Linear API returned HTTP {response.status_code}: {response.text[:200]}",
            )
        elif not isinstance(payload, dict) or payload.get("data") is None:
            error = LinearApiError("graphql_error", "Linear API returned no data")
        else:
            self._record(operation, kind, started, None)
            return payload["data"]

        self._record(operation, kind, started, error.message)
        raise error

    async def _paginate(
        self, query: str, path: str | tuple[str, ...], variables: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        keys = (path,) if isinstance(path, str) else path
        nodes: list[dict[str, Any]] = []
        after: str | None = None
        while True:
            data = await self.execute(query, {**(variables or {}), "first": PAGE_SIZE, "after": after})
            connection: dict[str, Any] = data
            for key in keys:
                connection = connection.get(key) or {}
            nodes.extend(connection.get("nodes") or [])
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage") or not page_info.get("endCursor"):
                return nodes
            after = page_info["endCursor"]

    async def _get_one(self, query: str, root: str, entity_id: str) -> dict[str, Any] | None:
        try:
            data = await self.execute(query, {"id": entity_id})
        except LinearApiError as exc:
            if exc.code == "not_found":
                return None
            raise
        return data.get(root)

    # ------------------------------------------------------------------
    # list operations

    async def list_teams(self) -> list[dict[str, Any]]:
        query = f"""
            query ListTeams($first: Int, $after: String) {{
              teams(first: $first, after: $after) {{
                nodes {{ {TEAM_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        teams = [_team(node) for node in await self._paginate(query, "teams")]
        return sorted(teams, key=lambda team: (team["name"] or "").lower())

    async def list_initiatives(self) -> list[dict[str, Any]]:
        query = f"""
            query ListInitiatives($first: Int, $after: String) {{
              initiatives(first: $first, after: $after) {{
                nodes {{ {INITIATIVE_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        return [_initiative(node) for node in await self._paginate(query, "initiatives")]

    async def list_members(self, team_id: str | None = None) -> list[dict[str, Any]]:
        if team_id:
            query = f"""
                query ListTeamMembers($id: String!, $first: Int, $after: String) {{
                  team(id: $id) {{
                    members(first: $first, after: $after) {{
                      nodes {{ {MEMBER_FIELDS} }}
                      pageInfo {{ hasNextPage endCursor }}
                    }}
                  }}
                }}
            """
            nodes = await self._paginate(query, ("team", "members"), {"id": team_id})
            return [_member(node) for node in nodes]

        query = f"""
            query ListMembers($first: Int, $after: String) {{
              users(first: $first, after: $after) {{
                nodes {{ {MEMBER_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        return [_member(node) for node in await self._paginate(query, "users")]

    async def list_templates(self) -> list[dict[str, Any]]:
        query = f"""
            query ListTemplates {{
              templates {{ {TEMPLATE_FIELDS} }}
            }}
        """
        data = await self.execute(query)
        return [_template(node) for node in data.get("templates") or []]

    async def list_workflow_states(self, team_id: str | None = None) -> list[dict[str, Any]]:
        query = f"""
            query ListWorkflowStates($first: Int, $after: String, $filter: WorkflowStateFilter) {{
              workflowStates(first: $first, after: $after, filter: $filter) {{
                nodes {{ {WORKFLOW_STATE_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        nodes = await self._paginate(query, "workflowStates", {"filter": _team_filter(team_id)})
        return [_workflow_state(node) for node in nodes]

    async def list_issue_labels(self, team_id: str | None = None) -> list[dict[str, Any]]:
        query = f"""
            query ListIssueLabels($first: Int, $after: String, $filter: IssueLabelFilter) {{
              issueLabels(first: $first, after: $after, filter: $filter) {{
                nodes {{ {ISSUE_LABEL_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        nodes = await self._paginate(query, "issueLabels", {"filter": _team_filter(team_id)})
        return [_issue_label(node) for node in nodes]

    async def list_project_labels(self) -> list[dict[str, Any]]:
        query = f"""
            query ListProjectLabels($first: Int, $after: String) {{
              projectLabels(first: $first, after: $after) {{
                nodes {{ {PROJECT_LABEL_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        return [_project_label(node) for node in await self._paginate(query, "projectLabels")]

    async def list_project_statuses(self) -> list[dict[str, Any]]:
        query = f"""
            query ListProjectStatuses($first: Int, $after: String) {{
              projectStatuses(first: $first, after: $after) {{
                nodes {{ {PROJECT_STATUS_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        return [_project_status(node) for node in await self._paginate(query, "projectStatuses")]

    # ------------------------------------------------------------------
    # point lookups

    async def get_team(self, team_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetTeam($id: String!) {{ team(id: $id) {{ {TEAM_FIELDS} }} }}", "team", team_id
        )
        return _team(node) if node else None

    async def get_initiative(self, initiative_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetInitiative($id: String!) {{ initiative(id: $id) {{ {INITIATIVE_FIELDS} }} }}",
            "initiative",
            initiative_id,
        )
        return _initiative(node) if node else None

    async def get_member(self, user_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetMember($id: String!) {{ user(id: $id) {{ {MEMBER_FIELDS} }} }}", "user", user_id
        )
        return _member(node) if node else None

    async def get_template(self, template_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetTemplate($id: String!) {{ template(id: $id) {{ {TEMPLATE_FIELDS} }} }}",
            "template",
            template_id,
        )
        return _template(node) if node else None

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetProject($id: String!) {{ project(id: $id) {{ {PROJECT_FIELDS} }} }}",
            "project",
            project_id,
        )
        return _project(node) if node else None

    async def get_project_status(self, status_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetProjectStatus($id: String!) {{ projectStatus(id: $id) {{ {PROJECT_STATUS_FIELDS} }} }}",
            "projectStatus",
            status_id,
        )
        return _project_status(node) if node else None

    async def get_workflow_state(self, state_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetWorkflowState($id: String!) {{ workflowState(id: $id) {{ {WORKFLOW_STATE_FIELDS} }} }}",
            "workflowState",
            state_id,
        )
        return _workflow_state(node) if node else None

    async def get_issue_label(self, label_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetIssueLabel($id: String!) {{ issueLabel(id: $id) {{ {ISSUE_LABEL_FIELDS} }} }}",
            "issueLabel",
            label_id,
        )
        return _issue_label(node) if node else None

    async def get_project_label(self, label_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetProjectLabel($id: String!) {{ projectLabel(id: $id) {{ {PROJECT_LABEL_FIELDS} }} }}",
            "projectLabel",
            label_id,
        )
        return _project_label(node) if node else None

    async def get_cycle(self, cycle_id: str) -> dict[str, Any] | None:
        node = await self._get_one(
            f"query GetCycle($id: String!) {{ cycle(id: $id) {{ {CYCLE_FIELDS} }} }}", "cycle", cycle_id
        )
        return _cycle(node) if node else None

    async def find_projects_by_name(self, name: str) -> list[dict[str, Any]]:
        query = f"""
            query FindProjects($first: Int, $after: String, $filter: ProjectFilter) {{
              projects(first: $first, after: $after, filter: $filter) {{
                nodes {{ {PROJECT_FIELDS} }}
                pageInfo {{ hasNextPage endCursor }}
              }}
            }}
        """
        nodes = await self._paginate(
            query, "projects", {"filter": {"name": {"eqIgnoreCase": name}}}
        )
        return [_project(node) for node in nodes]

    # ------------------------------------------------------------------
    # project relations

    async def create_project_relation(
        self,
        project_id: str,
        related_project_id: str,
        anchor_type: str,
        related_anchor_type: str,
    ) -> dict[str, Any]:
        mutation = f"""
            mutation CreateProjectRelation($input: ProjectRelationCreateInput!) {{
              projectRelationCreate(input: $input) {{
                success
                projectRelation {{ {RELATION_FIELDS} }}
              }}
            }}
        """
        data = await self.execute(
            mutation,
            {
                "input": {
                    "type": "dependency",
                    "projectId": project_id,
                    "relatedProjectId": related_project_id,
                    "anchorType": anchor_type,
                    "relatedAnchorType": related_anchor_type,
                }
            },
        )
        result = data.get("projectRelationCreate") or {}
        if not result.get("success") or not result.get("projectRelation"):
            raise LinearApiError("mutation_failed", "Failed to create project relation")
        return result["projectRelation"]

    async def delete_project_relation(self, relation_id: str) -> bool:
        mutation = """
            mutation DeleteProjectRelation($id: String!) {
              projectRelationDelete(id: $id) { success }
            }
        """
        data = await self.execute(mutation, {"id": relation_id})
        result = data.get("projectRelationDelete") or {}
        if not result.get("success"):
            raise LinearApiError("mutation_failed", f"Failed to delete project relation {relation_id}")
        return True

    async def list_project_relations(self, project_id: str) -> list[dict[str, Any]]:
        query = f"""
            query GetProjectRelations($id: String!) {{
              project(id: $id) {{
                id
                relations {{ nodes {{ {RELATION_FIELDS} }} }}
                inverseRelations {{ nodes {{ {RELATION_FIELDS} }} }}
              }}
            }}
        """
        data = await self.execute(query, {"id": project_id})
        project = data.get("project") or {}
        merged: dict[str, dict[str, Any]] = {}
        for key in ("relations", "inverseRelations"):
            for node in (project.get(key) or {}).get("nodes") or []:
                merged.setdefault(node["id"], node)
        return list(merged.values())
