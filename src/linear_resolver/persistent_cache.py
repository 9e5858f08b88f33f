"""
File-backed entity cache with TTL expiry.

One JSON object on disk, keyed by entity class. Each class is an array of
entity projections that all carry the same ``timestamp`` (epoch ms), because
a class is always refreshed as one batch. A class is usable only while every
entry is younger than the TTL; one stale entry invalidates the whole class.

A missing or corrupt file is a cold cache, never an error.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .client import EntityDirectory, LinearApiError
from .config import DEFAULT_TTL_MINUTES, ResolverConfig

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = DEFAULT_TTL_MINUTES * 60 * 1000

# entity class -> directory list operation
ENTITY_CLASSES: dict[str, str] = {
    "teams": "list_teams",
    "initiatives": "list_initiatives",
    "members": "list_members",
    "templates": "list_templates",
    "workflowStates": "list_workflow_states",
    "issueLabels": "list_issue_labels",
    "projectLabels": "list_project_labels",
    "projectStatuses": "list_project_statuses",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def require_entity_class(entity_class: str) -> str:
    if entity_class not in ENTITY_CLASSES:
        raise ValueError(
            f"Unknown entity class: {entity_class}. Valid classes: {', '.join(ENTITY_CLASSES)}"
        )
    return entity_class


class PersistentCache:
    """TTL cache stored as a single JSON file shared by all entity classes."""

    def __init__(
        self,
        path: Path,
        directory: EntityDirectory,
        ttl_ms: int = DEFAULT_TTL_MS,
        enabled: bool = True,
        clock: Callable[[], int] = now_ms,
    ):
        self._path = Path(path)
        self._directory = directory
        self._ttl_ms = ttl_ms
        self._enabled = enabled
        self._clock = clock

    @classmethod
    def from_config(cls, config: ResolverConfig, directory: EntityDirectory) -> PersistentCache:
        return cls(
            config.cache_path,
            directory,
            ttl_ms=config.ttl_ms,
            enabled=config.persistent_cache_enabled,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            parsed = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", self._path, exc)
            return {}
        if not isinstance(parsed, dict):
            logger.warning("Ignoring cache file %s: top level is not an object", self._path)
            return {}
        return parsed

    def _write(self, cache: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(cache, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write cache file %s: %s", self._path, exc)

    def load(self, entity_class: str) -> list[dict[str, Any]]:
        entries = self._read().get(require_entity_class(entity_class))
        if not isinstance(entries, list):
            return []
        return [entry for entry in entries if isinstance(entry, dict)]

    def is_valid(self, entries: list[dict[str, Any]], now: int | None = None) -> bool:
        if not entries or not self._enabled:
            return False
        current = self._clock() if now is None else now
        for entry in entries:
            timestamp = entry.get("timestamp")
            if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
                return False
            if current - timestamp >= self._ttl_ms:
                return False
        return True

    def save(self, entity_class: str, entries: list[dict[str, Any]]) -> None:
        cache = self._read()
        cache[require_entity_class(entity_class)] = entries
        self._write(cache)

    async def refresh(self, entity_class: str) -> list[dict[str, Any]]:
        """Fetch ``entity_class`` from Linear and stamp it with one timestamp."""
        operation = getattr(self._directory, ENTITY_CLASSES[require_entity_class(entity_class)])
        try:
            items = await operation()
        except LinearApiError as exc:
            raise LinearApiError(
                exc.code, f"Failed to refresh {entity_class} cache: {exc.message}"
            ) from exc

        timestamp = self._clock()
        entries = [{**item, "timestamp": timestamp} for item in items]
        if self._enabled:
            self.save(entity_class, entries)
            logger.info("Refreshed %s cache (%d entries)", entity_class, len(entries))
        return entries

    async def get(self, entity_class: str) -> list[dict[str, Any]]:
        cached = self.load(entity_class)
        if self.is_valid(cached):
            logger.debug("Persistent cache hit for %s", entity_class)
            return cached
        return await self.refresh(entity_class)

    def find_by_id(self, entity_class: str, entity_id: str) -> dict[str, Any] | None:
        return next((e for e in self.load(entity_class) if e.get("id") == entity_id), None)

    def find_by_name(self, entity_class: str, name: str) -> dict[str, Any] | None:
        lowered = name.lower()
        return next(
            (e for e in self.load(entity_class) if str(e.get("name") or "").lower() == lowered),
            None,
        )

    def clear(self, entity_class: str) -> None:
        cache = self._read()
        if cache.pop(require_entity_class(entity_class), None) is not None:
            self._write(cache)
            logger.info("Cleared persistent %s cache", entity_class)

    def clear_all(self) -> None:
        cache = self._read()
        removed = [key for key in ENTITY_CLASSES if cache.pop(key, None) is not None]
        if removed:
            self._write(cache)
            logger.info("Cleared persistent cache for %s", ", ".join(removed))

    def get_stats(self) -> dict[str, dict[str, Any]]:
        cache = self._read()
        current = self._clock()
        stats: dict[str, dict[str, Any]] = {}
        for entity_class in ENTITY_CLASSES:
            entries = cache.get(entity_class)
            entries = entries if isinstance(entries, list) else []
            timestamps = [e.get("timestamp") for e in entries if isinstance(e, dict)]
            timestamps = [t for t in timestamps if isinstance(t, (int, float))]
            stats[entity_class] = {
                "count": len(entries),
                "age": current - min(timestamps) if timestamps else None,
                "valid": self.is_valid(
                    [e for e in entries if isinstance(e, dict)], now=current
                ),
            }
        return stats
