"""
Per-invocation wiring.

A ``ResolverContext`` owns one HTTP client and one session cache. Build one
per command (or MCP tool call) and close it afterwards; nothing in it is
meant to outlive the invocation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aliases import AliasStore
from .batch import BatchFetcher
from .client import LinearClient
from .config import ResolverConfig
from .persistent_cache import PersistentCache
from .relations import DependencyManager
from .resolver import Resolver
from .session_cache import SessionEntityCache
from .validators import EntityValidator


@dataclass
class ResolverContext:
    config: ResolverConfig
    client: LinearClient
    persistent: PersistentCache
    session: SessionEntityCache
    validator: EntityValidator
    aliases: AliasStore
    batch: BatchFetcher
    resolver: Resolver
    dependencies: DependencyManager
    owns_client: bool = True

    @classmethod
    def create(
        cls, config: ResolverConfig | None = None, client: LinearClient | None = None
    ) -> ResolverContext:
        config = config or ResolverConfig.from_env()
        owns_client = client is None
        if client is None:
            client = LinearClient(
                api_key=config.api_key,
                url=config.api_url,
                timeout_seconds=config.timeout_seconds,
            )
        persistent = PersistentCache.from_config(config, client)
        session = SessionEntityCache(persistent, client, enabled=config.session_cache_enabled)
        validator = EntityValidator(session, client)
        aliases = AliasStore(
            config.global_aliases_path, config.project_aliases_path, validator=validator
        )
        resolver = Resolver(aliases, session, client)
        return cls(
            config=config,
            client=client,
            persistent=persistent,
            session=session,
            validator=validator,
            aliases=aliases,
            batch=BatchFetcher.from_config(config, session),
            resolver=resolver,
            dependencies=DependencyManager(client, resolver),
            owns_client=owns_client,
        )

    def cache_stats(self) -> dict[str, Any]:
        return {
            "session": self.session.get_stats(),
            "persistent": self.persistent.get_stats(),
            "api": self.client.get_health(),
            "config": self.config.describe(),
        }

    async def aclose(self) -> None:
        if self.owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> ResolverContext:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
