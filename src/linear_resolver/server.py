"""
MCP server exposing alias management, entity resolution, cache control and
project dependency tools.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from mcp.server.fastmcp import FastMCP

from .aliases import GLOBAL_SCOPE, AliasResult
from .config import ResolverConfig
from .context import ResolverContext
from .persistent_cache import ENTITY_CLASSES
from .relations import DependencyReport, RemovalReport

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "Linear Resolver",
    instructions=(
        "Resolves Linear aliases, names and emails to IDs with a two-tier cache, "
        "manages scoped alias files and project dependency relations. "
        "Aliases in the project scope override global ones."
    ),
)

_config: ResolverConfig | None = None


def get_config() -> ResolverConfig:
    global _config
    if _config is None:
        _config = ResolverConfig.from_env()
    return _config


@asynccontextmanager
async def _invocation() -> AsyncIterator[ResolverContext]:
    """One tool call is one invocation: a fresh session cache and HTTP client."""
    async with ResolverContext.create(get_config()) as ctx:
        yield ctx


def _split(values: str | None) -> list[str]:
    if not values:
        return []
    return [v.strip() for v in values.split(",") if v.strip()]


def _alias_result(result: AliasResult) -> dict[str, Any]:
    return {key: value for key, value in asdict(result).items() if value not in (None, [])}


def _dependency_report(report: DependencyReport) -> dict[str, Any]:
    return {
        "projectId": report.project_id,
        "counts": report.counts(),
        "outcomes": [asdict(outcome) for outcome in report.outcomes],
    }


def _removal_report(report: RemovalReport) -> dict[str, Any]:
    return {
        "projectId": report.project_id,
        "removed": report.removed,
        "failed": [asdict(outcome) for outcome in report.failed],
    }


@mcp.tool()
async def resolve_entity(entity_type: str, value: str, team: str | None = None) -> dict[str, Any]:
    """Resolve an alias, name, key, email or ID to a Linear ID.

    Args:
        entity_type: One of initiative, team, project, project-status, issue-template,
            project-template, member, issue-label, project-label, workflow-state, cycle.
        value: The user-typed reference.
        team: Team alias, key, name or ID narrowing workflow-state and issue-label names.

    Returns:
        dict with "id", "source" (alias | id | name) and "name" when known.
    """
    async with _invocation() as ctx:
        team_id = await ctx.resolver.resolve_id("team", team) if team else None
        resolution = await ctx.resolver.resolve(entity_type, value, team_id=team_id)
        return asdict(resolution)


@mcp.tool()
async def add_alias(
    entity_type: str,
    alias: str,
    id: str,
    scope: str = GLOBAL_SCOPE,
    skip_validation: bool = False,
) -> dict[str, Any]:
    """Create an alias in the global or project scope. The target is checked in Linear unless skipped."""
    async with _invocation() as ctx:
        result = await ctx.aliases.add(
            entity_type, alias, id, scope=scope, skip_validation=skip_validation
        )
        return _alias_result(result)


@mcp.tool()
async def remove_alias(entity_type: str, alias: str, scope: str = GLOBAL_SCOPE) -> dict[str, Any]:
    """Delete an alias from one scope."""
    async with _invocation() as ctx:
        return _alias_result(ctx.aliases.remove(entity_type, alias, scope=scope))


@mcp.tool()
async def rename_alias(
    entity_type: str, old_alias: str, new_alias: str, scope: str = GLOBAL_SCOPE
) -> dict[str, Any]:
    """Rename an alias in place, keeping its target ID."""
    async with _invocation() as ctx:
        return _alias_result(ctx.aliases.rename(entity_type, old_alias, new_alias, scope=scope))


@mcp.tool()
async def update_alias(
    entity_type: str,
    alias: str,
    id: str,
    scope: str = GLOBAL_SCOPE,
    skip_validation: bool = False,
) -> dict[str, Any]:
    """Point an existing alias at a different ID."""
    async with _invocation() as ctx:
        result = await ctx.aliases.update_id(
            entity_type, alias, id, scope=scope, skip_validation=skip_validation
        )
        return _alias_result(result)


@mcp.tool()
async def list_aliases(entity_type: str | None = None) -> dict[str, Any]:
    """List merged aliases (project scope wins) with the scope each one comes from."""
    async with _invocation() as ctx:
        resolved = ctx.aliases.load()
        listed = ctx.aliases.list_aliases(entity_type)
        return {
            etype: {
                alias: {"id": target, "scope": resolved.locations[etype][alias].scope}
                for alias, target in aliases.items()
            }
            for etype, aliases in listed.items()
        }


@mcp.tool()
async def validate_aliases() -> dict[str, Any]:
    """Check every stored alias against Linear. Nothing is modified."""
    async with _invocation() as ctx:
        report = await ctx.aliases.validate_all()
        return {
            "total": report.total,
            "broken": [
                {
                    "entityType": b.entity_type,
                    "alias": b.alias,
                    "id": b.id,
                    "scope": b.location.scope,
                    "path": str(b.location.path),
                    "error": b.error,
                }
                for b in report.broken
            ],
        }


@mcp.tool()
async def cache_stats() -> dict[str, Any]:
    """Return persistent cache state, settings and API call health."""
    async with _invocation() as ctx:
        return ctx.cache_stats()


@mcp.tool()
async def clear_cache(entity_class: str | None = None) -> dict[str, Any]:
    """Clear the persistent cache for one entity class, or for all of them.

    Args:
        entity_class: teams, initiatives, members, templates, workflowStates,
            issueLabels, projectLabels or projectStatuses. Omit to clear all.
    """
    async with _invocation() as ctx:
        if entity_class is None:
            ctx.persistent.clear_all()
            ctx.session.clear_all()
            return {"cleared": list(ENTITY_CLASSES)}
        ctx.persistent.clear(entity_class)
        ctx.session.clear_entity(entity_class)
        return {"cleared": [entity_class]}


@mcp.tool()
async def prewarm_cache(preset: str = "create", entity_classes: str | None = None) -> dict[str, Any]:
    """Fetch entity lists ahead of a multi-field operation.

    Args:
        preset: "create" (teams, initiatives, templates, members) or "update"
            (teams, members). Ignored when entity_classes is given.
        entity_classes: Comma-separated subset of teams, initiatives, members, templates.

    Returns:
        dict with per-class counts and any fetch errors. Errors never abort the batch.
    """
    async with _invocation() as ctx:
        classes = _split(entity_classes)
        if classes:
            result = await ctx.batch.prewarm(classes)
        elif preset == "create":
            result = await ctx.batch.prewarm_create()
        elif preset == "update":
            result = await ctx.batch.prewarm_update()
        else:
            raise ValueError(f"Unknown preset: {preset}. Use create or update")
        return {
            "counts": {name: len(items) for name, items in result.results.items()},
            "errors": result.errors,
        }


@mcp.tool()
async def add_project_dependencies(
    project: str,
    depends_on: str | None = None,
    blocks: str | None = None,
    specs: str | None = None,
) -> dict[str, Any]:
    """Create dependency relations for a project.

    Args:
        project: Project alias, name or ID.
        depends_on: Comma-separated projects this one waits for (end -> start).
        blocks: Comma-separated projects that wait for this one (start -> end).
        specs: Comma-separated "project:myAnchor:theirAnchor" entries.
    """
    async with _invocation() as ctx:
        report = await ctx.dependencies.add(
            project, depends_on=_split(depends_on), blocks=_split(blocks), specs=_split(specs)
        )
        return _dependency_report(report)


@mcp.tool()
async def list_project_dependencies(project: str, direction: str | None = None) -> dict[str, Any]:
    """List a project's relations grouped into "depends-on" and "blocks"."""
    async with _invocation() as ctx:
        grouped = await ctx.dependencies.list_dependencies(project, direction=direction)
        return {key: [entry.to_dict() for entry in entries] for key, entries in grouped.items()}


@mcp.tool()
async def remove_project_dependencies(
    project: str,
    depends_on: str | None = None,
    blocks: str | None = None,
    relation_id: str | None = None,
    with_project: str | None = None,
) -> dict[str, Any]:
    """Delete selected relations of a project. A relation matched twice is deleted once."""
    async with _invocation() as ctx:
        report = await ctx.dependencies.remove(
            project,
            depends_on=_split(depends_on),
            blocks=_split(blocks),
            relation_id=relation_id,
            with_project=with_project,
        )
        return _removal_report(report)


@mcp.tool()
async def clear_project_dependencies(project: str, direction: str | None = None) -> dict[str, Any]:
    """Delete all of a project's relations, or only one direction."""
    async with _invocation() as ctx:
        report = await ctx.dependencies.clear(project, direction=direction)
        return _removal_report(report)


def main() -> None:
    mcp.run()
