"""
Runtime configuration for entity resolution and caching.

All settings come from environment variables so a single shell profile can
drive the MCP server and ad-hoc scripts alike.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.linear.app/graphql"
DEFAULT_TTL_MINUTES = 60
DEFAULT_TIMEOUT_SECONDS = 30.0

DEFAULT_GLOBAL_ALIASES = Path("~/.config/linear-resolver/aliases.json")
DEFAULT_PROJECT_ALIASES = Path(".linear-resolver/aliases.json")
DEFAULT_CACHE_FILE = Path(".linear-resolver/cache.json")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool_env(var_name: str, default: bool) -> bool:
    raw = os.getenv(var_name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning("Ignoring invalid %s value %r; using %s", var_name, raw, default)
    return default


def _parse_positive_number_env(var_name: str, default: float) -> float:
    raw = os.getenv(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s value %r", var_name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s value %r", var_name, raw)
        return default
    return value


def _path_env(var_name: str, default: Path) -> Path:
    raw = os.getenv(var_name)
    return Path(raw).expanduser() if raw else default.expanduser()


@dataclass
class ResolverConfig:
    """Settings consumed by the client, caches and batch fetcher."""

    api_key: str | None = None
    api_url: str = DEFAULT_API_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    cache_ttl_minutes: float = DEFAULT_TTL_MINUTES
    persistent_cache_enabled: bool = True
    session_cache_enabled: bool = True
    batch_fetching_enabled: bool = True
    global_aliases_path: Path = field(default_factory=DEFAULT_GLOBAL_ALIASES.expanduser)
    project_aliases_path: Path = DEFAULT_PROJECT_ALIASES
    cache_path: Path = DEFAULT_CACHE_FILE

    @property
    def ttl_ms(self) -> int:
        return int(self.cache_ttl_minutes * 60 * 1000)

    @classmethod
    def from_env(cls) -> ResolverConfig:
        return cls(
            api_key=os.getenv("LINEAR_API_KEY") or None,
            api_url=os.getenv("LINEAR_RESOLVER_API_URL", DEFAULT_API_URL),
            timeout_seconds=_parse_positive_number_env(
                "LINEAR_RESOLVER_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS
            ),
            cache_ttl_minutes=_parse_positive_number_env(
                "LINEAR_RESOLVER_CACHE_TTL_MINUTES", DEFAULT_TTL_MINUTES
            ),
            persistent_cache_enabled=_parse_bool_env("LINEAR_RESOLVER_PERSISTENT_CACHE", True),
            session_cache_enabled=_parse_bool_env("LINEAR_RESOLVER_SESSION_CACHE", True),
            batch_fetching_enabled=_parse_bool_env("LINEAR_RESOLVER_BATCH_FETCHING", True),
            global_aliases_path=_path_env("LINEAR_RESOLVER_GLOBAL_ALIASES", DEFAULT_GLOBAL_ALIASES),
            project_aliases_path=_path_env(
                "LINEAR_RESOLVER_PROJECT_ALIASES", DEFAULT_PROJECT_ALIASES
            ),
            cache_path=_path_env("LINEAR_RESOLVER_CACHE_FILE", DEFAULT_CACHE_FILE),
        )

    def describe(self) -> dict[str, object]:
        return {
            "apiUrl": self.api_url,
            "hasApiKey": self.api_key is not None,
            "cacheTtlMinutes": self.cache_ttl_minutes,
            "persistentCache": self.persistent_cache_enabled,
            "sessionCache": self.session_cache_enabled,
            "batchFetching": self.batch_fetching_enabled,
            "globalAliases": str(self.global_aliases_path),
            "projectAliases": str(self.project_aliases_path),
            "cacheFile": str(self.cache_path),
        }
