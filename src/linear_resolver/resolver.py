"""
Turn user-typed identifiers into Linear IDs.

Resolution order is canonical ID, then alias, then a case-insensitive name
lookup against the cached entity lists. A miss raises ``ResolutionError``
with "did you mean" suggestions drawn from alias names and entity names.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .aliases import AliasStore, find_similar, looks_like_linear_id, require_entity_type
from .client import LinearClient
from .session_cache import SessionEntityCache

logger = logging.getLogger(__name__)

SOURCE_ID = "id"
SOURCE_ALIAS = "alias"
SOURCE_NAME = "name"

# fields compared against the input, in priority order
_MATCH_FIELDS: dict[str, tuple[str, ...]] = {
    "team": ("key", "name"),
    "member": ("email", "name", "displayName"),
}
_DEFAULT_MATCH_FIELDS = ("name",)

# names repeat across teams for these, so lookups take an optional team
TEAM_SCOPED_TYPES = ("workflow-state", "issue-label")


class ResolutionError(LookupError):
    """Raised when an input matches no ID, alias or entity name."""

    def __init__(
        self,
        entity_type: str,
        value: str,
        suggestions: list[str] | None = None,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.value = value
        self.suggestions = list(suggestions or [])
        if message is None:
            message = f'{entity_type} "{value}" not found'
            if self.suggestions:
                message += f". Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)
        self.message = message


class AmbiguousResolutionError(ResolutionError):
    """Raised when a name matches several entities, typically across teams."""

    def __init__(self, entity_type: str, value: str, matches: list[dict[str, Any]]):
        self.matches = matches
        described = ", ".join(
            f"{m['id']} (team {m['teamId']})" if m.get("teamId") else m["id"] for m in matches
        )
        super().__init__(
            entity_type,
            value,
            message=f'{entity_type} "{value}" is ambiguous: matches {described}. Pass a team to choose',
        )


@dataclass(frozen=True)
class Resolution:
    id: str
    source: str
    name: str | None = None


def _matches(entity: dict[str, Any], fields: tuple[str, ...], lowered: str) -> bool:
    return any(str(entity.get(f) or "").lower() == lowered for f in fields)


class Resolver:
    def __init__(
        self,
        aliases: AliasStore,
        session: SessionEntityCache,
        client: LinearClient,
        max_suggestions: int = 3,
    ):
        self._aliases = aliases
        self._session = session
        self._client = client
        self._max_suggestions = max_suggestions

    async def _candidates(
        self, entity_type: str, value: str, team_id: str | None = None
    ) -> list[dict[str, Any]]:
        if entity_type == "team":
            return await self._session.get_teams()
        if entity_type == "member":
            return await self._session.get_members()
        if entity_type == "initiative":
            return await self._session.get_initiatives()
        if entity_type == "issue-template":
            return await self._session.get_templates(kind="issue")
        if entity_type == "project-template":
            return await self._session.get_templates(kind="project")
        if entity_type == "issue-label":
            return await self._session.get_issue_labels(team_id=team_id)
        if entity_type == "project-label":
            return await self._session.get_project_labels()
        if entity_type == "workflow-state":
            return await self._session.get_workflow_states(team_id=team_id)
        if entity_type == "project-status":
            return await self._session.get_project_statuses()
        if entity_type == "project":
            return await self._client.find_projects_by_name(value)
        # cycles resolve by alias or ID only
        return []

    async def resolve(
        self, entity_type: str, value: str, team_id: str | None = None
    ) -> Resolution:
        """
        Resolve ``value`` to an ID.

        ``team_id`` narrows workflow-state and issue-label names to one team and
        is ignored for other types. A name that matches more than one entity
        raises ``AmbiguousResolutionError`` instead of picking one.
        """
        entity_type = require_entity_type(entity_type)
        if entity_type not in TEAM_SCOPED_TYPES:
            team_id = None
        value = value.strip()
        if not value:
            raise ValueError(f"Empty {entity_type} reference")

        if looks_like_linear_id(value, entity_type):
            logger.debug("Passing through %s ID %s", entity_type, value)
            return Resolution(id=value, source=SOURCE_ID)

        aliases = self._aliases.load().for_type(entity_type)
        alias_target = aliases.get(value)
        if alias_target:
            logger.debug("Resolved %s alias %s -> %s", entity_type, value, alias_target)
            return Resolution(id=alias_target, source=SOURCE_ALIAS)

        fields = _MATCH_FIELDS.get(entity_type, _DEFAULT_MATCH_FIELDS)
        candidates = await self._candidates(entity_type, value, team_id=team_id)
        lowered = value.lower()
        matches: dict[str, dict[str, Any]] = {}
        for entity in candidates:
            if entity.get("id") and _matches(entity, fields, lowered):
                matches.setdefault(entity["id"], entity)
        if len(matches) > 1:
            raise AmbiguousResolutionError(entity_type, value, list(matches.values()))
        if matches:
            entity = next(iter(matches.values()))
            return Resolution(id=entity["id"], source=SOURCE_NAME, name=entity.get("name"))

        names = list(aliases)
        for entity in candidates:
            for f in fields:
                candidate = entity.get(f)
                if candidate and candidate not in names:
                    names.append(str(candidate))
        suggestions = find_similar(value, names)[: self._max_suggestions]
        raise ResolutionError(entity_type, value, suggestions)

    async def resolve_id(self, entity_type: str, value: str, team_id: str | None = None) -> str:
        return (await self.resolve(entity_type, value, team_id=team_id)).id

    async def resolve_many(
        self, entity_type: str, values: str | Iterable[str], team_id: str | None = None
    ) -> list[str]:
        """Resolve a comma-separated list (or iterable), keeping first-seen order."""
        if isinstance(values, str):
            values = values.split(",")
        resolved: list[str] = []
        for value in values:
            if not value.strip():
                continue
            entity_id = await self.resolve_id(entity_type, value, team_id=team_id)
            if entity_id not in resolved:
                resolved.append(entity_id)
        return resolved
