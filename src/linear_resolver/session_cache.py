"""
In-process entity cache for one invocation.

Each entity class has one lazily filled slot. The first request for a class
starts a single fetch through the persistent cache; requests that arrive
while it is in flight await the same task instead of issuing their own call.
There is no TTL here: the slot lives as long as the cache object.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from .client import EntityDirectory
from .persistent_cache import ENTITY_CLASSES, PersistentCache, require_entity_class

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    items: list[dict[str, Any]]
    loaded_at: float


class SessionEntityCache:
    """Memoized entity lists shared by everything in one invocation."""

    def __init__(
        self,
        source: PersistentCache,
        directory: EntityDirectory,
        enabled: bool = True,
    ):
        self._source = source
        self._directory = directory
        self._enabled = enabled
        self._slots: dict[str, _Slot] = {}
        self._pending: dict[str, asyncio.Task[list[dict[str, Any]]]] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    def is_cached(self, entity_class: str) -> bool:
        return require_entity_class(entity_class) in self._slots

    async def get(self, entity_class: str) -> list[dict[str, Any]]:
        require_entity_class(entity_class)
        if not self._enabled:
            return await self._source.get(entity_class)

        slot = self._slots.get(entity_class)
        if slot is not None:
            return slot.items

        task = self._pending.get(entity_class)
        if task is None:
            task = asyncio.create_task(self._source.get(entity_class))
            self._pending[entity_class] = task
        try:
            items = await task
        finally:
            if self._pending.get(entity_class) is task:
                del self._pending[entity_class]

        if entity_class not in self._slots:
            self._slots[entity_class] = _Slot(items=items, loaded_at=time.time())
        return self._slots[entity_class].items

    async def get_teams(self) -> list[dict[str, Any]]:
        return await self.get("teams")

    async def get_initiatives(self) -> list[dict[str, Any]]:
        return await self.get("initiatives")

    async def get_members(self, team_id: str | None = None) -> list[dict[str, Any]]:
        # team-filtered lists bypass both caches
        if team_id:
            return await self._directory.list_members(team_id=team_id)
        return await self.get("members")

    async def get_templates(self, kind: str | None = None) -> list[dict[str, Any]]:
        templates = await self.get("templates")
        if kind is None:
            return templates
        return [t for t in templates if t.get("type") == kind]

    async def get_workflow_states(self, team_id: str | None = None) -> list[dict[str, Any]]:
        if team_id:
            return await self._directory.list_workflow_states(team_id=team_id)
        return await self.get("workflowStates")

    async def get_issue_labels(self, team_id: str | None = None) -> list[dict[str, Any]]:
        if team_id:
            return await self._directory.list_issue_labels(team_id=team_id)
        return await self.get("issueLabels")

    async def get_project_labels(self) -> list[dict[str, Any]]:
        return await self.get("projectLabels")

    async def get_project_statuses(self) -> list[dict[str, Any]]:
        return await self.get("projectStatuses")

    async def find_by_id(self, entity_class: str, entity_id: str) -> dict[str, Any] | None:
        items = await self.get(entity_class)
        return next((item for item in items if item.get("id") == entity_id), None)

    async def find_by_name(self, entity_class: str, name: str) -> dict[str, Any] | None:
        lowered = name.strip().lower()
        items = await self.get(entity_class)
        return next(
            (item for item in items if str(item.get("name") or "").lower() == lowered), None
        )

    async def find_team_by_id(self, team_id: str) -> dict[str, Any] | None:
        return await self.find_by_id("teams", team_id)

    async def find_team_by_key(self, key: str) -> dict[str, Any] | None:
        upper = key.strip().upper()
        teams = await self.get_teams()
        return next((team for team in teams if str(team.get("key") or "").upper() == upper), None)

    async def find_initiative_by_id(self, initiative_id: str) -> dict[str, Any] | None:
        return await self.find_by_id("initiatives", initiative_id)

    async def find_member_by_id(self, user_id: str) -> dict[str, Any] | None:
        return await self.find_by_id("members", user_id)

    async def find_member_by_email(self, email: str) -> dict[str, Any] | None:
        lowered = email.strip().lower()
        members = await self.get_members()
        return next(
            (m for m in members if str(m.get("email") or "").lower() == lowered), None
        )

    async def find_template_by_id(self, template_id: str) -> dict[str, Any] | None:
        return await self.find_by_id("templates", template_id)

    def clear_entity(self, entity_class: str) -> None:
        self._slots.pop(require_entity_class(entity_class), None)

    def clear_all(self) -> None:
        self._slots.clear()

    def get_stats(self) -> dict[str, dict[str, Any]]:
        now = time.time()
        stats: dict[str, dict[str, Any]] = {}
        for entity_class in ENTITY_CLASSES:
            slot = self._slots.get(entity_class)
            stats[entity_class] = {
                "cached": slot is not None,
                "count": len(slot.items) if slot else 0,
                "age": int((now - slot.loaded_at) * 1000) if slot else None,
            }
        return stats
