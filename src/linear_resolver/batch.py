"""
Batch prefetching of entity classes into the session cache.

Multi-field operations (creating a project needs a team, a template and
members) warm every class they need in one pass. A failing class is reported
in ``errors`` and never cancels its siblings; callers that needed it notice
its absence from ``results`` when they use it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .config import ResolverConfig
from .session_cache import SessionEntityCache

logger = logging.getLogger(__name__)

BATCH_CLASSES = ("teams", "initiatives", "members", "templates")

CREATE_PRESET = ("teams", "initiatives", "templates", "members")
# templates and initiatives cannot change after creation
UPDATE_PRESET = ("teams", "members")


@dataclass
class BatchResult:
    results: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def get(self, entity_class: str) -> list[dict[str, Any]] | None:
        return self.results.get(entity_class)


class BatchFetcher:
    def __init__(self, session: SessionEntityCache, parallel: bool = True):
        self._session = session
        self._parallel = parallel

    @classmethod
    def from_config(cls, config: ResolverConfig, session: SessionEntityCache) -> BatchFetcher:
        return cls(session, parallel=config.batch_fetching_enabled)

    @property
    def parallel(self) -> bool:
        return self._parallel

    async def batch_fetch(
        self,
        teams: bool = False,
        initiatives: bool = False,
        members: bool = False,
        templates: bool = False,
        members_team_id: str | None = None,
    ) -> BatchResult:
        wanted = {
            "teams": teams,
            "initiatives": initiatives,
            "members": members,
            "templates": templates,
        }
        requested = [name for name in BATCH_CLASSES if wanted[name]]
        result = BatchResult()

        async def _fetch(entity_class: str) -> None:
            try:
                if entity_class == "members":
                    items = await self._session.get_members(team_id=members_team_id)
                else:
                    items = await self._session.get(entity_class)
            except Exception as exc:
                message = f"Failed to fetch {entity_class}: {str(exc) or exc.__class__.__name__}"
                logger.warning("Batch fetch: %s", message)
                result.errors.append(message)
                return
            result.results[entity_class] = items

        if self._parallel:
            await asyncio.gather(*(_fetch(name) for name in requested))
        else:
            for name in requested:
                await _fetch(name)
        return result

    async def prewarm(self, entity_classes: Iterable[str]) -> BatchResult:
        selected = set(entity_classes)
        unknown = selected.difference(BATCH_CLASSES)
        if unknown:
            raise ValueError(
                f"Cannot prewarm {', '.join(sorted(unknown))}. "
                f"Valid classes: {', '.join(BATCH_CLASSES)}"
            )
        return await self.batch_fetch(**{name: True for name in selected})

    async def prewarm_create(self) -> BatchResult:
        return await self.prewarm(CREATE_PRESET)

    async def prewarm_update(self) -> BatchResult:
        return await self.prewarm(UPDATE_PRESET)

    async def refresh(self, entity_classes: Iterable[str]) -> BatchResult:
        """Drop the requested classes from the session cache and fetch them again."""
        selected = list(entity_classes)
        for name in selected:
            if name in BATCH_CLASSES:
                self._session.clear_entity(name)
        return await self.prewarm(selected)

    def status(self) -> dict[str, dict[str, Any]]:
        stats = self._session.get_stats()
        return {name: stats[name] for name in BATCH_CLASSES}
