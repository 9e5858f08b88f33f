"""
Existence checks for alias targets.

Teams, initiatives, members and templates are looked up in the session cache
so validating many aliases costs one list call per class. The rest use the
client's point lookups.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .aliases import require_entity_type
from .client import LinearClient
from .session_cache import SessionEntityCache

logger = logging.getLogger(__name__)

_LABELS = {
    "initiative": "Initiative",
    "team": "Team",
    "project": "Project",
    "project-status": "Project status",
    "issue-template": "Template",
    "project-template": "Template",
    "member": "Member",
    "issue-label": "Issue label",
    "project-label": "Project label",
    "workflow-state": "Workflow state",
    "cycle": "Cycle",
}


@dataclass
class Validation:
    valid: bool
    name: str | None = None
    error: str | None = None


class EntityValidator:
    def __init__(self, session: SessionEntityCache, client: LinearClient):
        self._session = session
        self._client = client

    async def _lookup(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        if entity_type == "team":
            return await self._session.find_team_by_id(entity_id)
        if entity_type == "initiative":
            return await self._session.find_initiative_by_id(entity_id)
        if entity_type == "member":
            return await self._session.find_member_by_id(entity_id)
        if entity_type in ("issue-template", "project-template"):
            return await self._session.find_template_by_id(entity_id)
        if entity_type == "project":
            return await self._client.get_project(entity_id)
        if entity_type == "project-status":
            return await self._client.get_project_status(entity_id)
        if entity_type == "workflow-state":
            return await self._client.get_workflow_state(entity_id)
        if entity_type == "issue-label":
            return await self._client.get_issue_label(entity_id)
        if entity_type == "project-label":
            return await self._client.get_project_label(entity_id)
        return await self._client.get_cycle(entity_id)

    async def validate(self, entity_type: str, entity_id: str) -> Validation:
        try:
            entity_type = require_entity_type(entity_type)
            entity = await self._lookup(entity_type, entity_id)
        except Exception as exc:
            logger.debug("Validation of %s %s failed: %s", entity_type, entity_id, exc)
            return Validation(valid=False, error=str(exc) or exc.__class__.__name__)

        if entity is None:
            return Validation(
                valid=False, error=f'{_LABELS[entity_type]} with ID "{entity_id}" not found'
            )

        if entity_type in ("issue-template", "project-template"):
            expected = "issue" if entity_type == "issue-template" else "project"
            if entity.get("type") != expected:
                return Validation(
                    valid=False,
                    error=(
                        f'Template "{entity_id}" is a {entity.get("type")} template, '
                        f"but the alias is for {expected} templates"
                    ),
                )

        return Validation(valid=True, name=entity.get("name"))
