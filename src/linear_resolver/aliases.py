"""
Local alias store.

Two JSON files map short user-chosen names to canonical Linear IDs, one per
scope: a global file in the user's config directory and a project file in
the working directory. When both are loaded the project scope wins.

Resolution is local only. Unknown input is returned unchanged so the caller
gets the remote "not found" later, and input that already looks like a
Linear ID never touches the filesystem.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"
PROJECT_SCOPE = "project"
SCOPES = (GLOBAL_SCOPE, PROJECT_SCOPE)

# entity type -> key in the alias file
ALIAS_KEYS: dict[str, str] = {
    "initiative": "initiatives",
    "team": "teams",
    "project": "projects",
    "project-status": "projectStatuses",
    "issue-template": "issueTemplates",
    "project-template": "projectTemplates",
    "member": "members",
    "issue-label": "issueLabels",
    "project-label": "projectLabels",
    "workflow-state": "workflowStates",
    "cycle": "cycles",
}
ENTITY_TYPES = tuple(ALIAS_KEYS)

# None accepts any prefix
_ID_PREFIXES: dict[str, tuple[str, ...] | None] = {
    "initiative": ("init_",),
    "team": ("team_",),
    "project": ("proj_",),
    "project-status": ("status_",),
    "issue-template": ("template_",),
    "project-template": ("template_",),
    "member": ("user_",),
    "issue-label": ("label_",),
    "project-label": ("label_",),
    "workflow-state": ("state_", "workflow_"),
    "cycle": None,
}

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_PREFIXED_ID_RE = re.compile(r"^[a-z]+_[a-z0-9]+$", re.IGNORECASE)

_TYPE_SYNONYMS: dict[str, str] = {"user": "member", "users": "member"}


def normalize_entity_type(value: str) -> str | None:
    """Map singular, plural and hyphenless spellings onto an entity type."""
    normalized = value.strip().lower()
    if normalized in _TYPE_SYNONYMS:
        return _TYPE_SYNONYMS[normalized]
    for entity_type in ENTITY_TYPES:
        compact = entity_type.replace("-", "")
        plural = "project-statuses" if entity_type == "project-status" else f"{entity_type}s"
        spellings = {entity_type, plural, compact, plural.replace("-", "")}
        if normalized in spellings:
            return entity_type
    return None


def require_entity_type(value: str) -> str:
    entity_type = normalize_entity_type(value)
    if entity_type is None:
        raise ValueError(
            f"Invalid entity type: {value}. Valid types: {', '.join(ENTITY_TYPES)}"
        )
    return entity_type


def looks_like_linear_id(value: str, entity_type: str) -> bool:
    """True for UUIDs, or for ``prefix_xxx`` IDs whose prefix fits the type."""
    if _UUID_RE.match(value):
        return True
    if not _PREFIXED_ID_RE.match(value):
        return False
    prefixes = _ID_PREFIXES.get(entity_type)
    if prefixes is None:
        return True
    return value.lower().startswith(prefixes)


def levenshtein_distance(first: str, second: str) -> int:
    previous = list(range(len(second) + 1))
    for i, left in enumerate(first, start=1):
        current = [i]
        for j, right in enumerate(second, start=1):
            if left == right:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def find_similar(value: str, candidates: list[str], max_distance: int = 2) -> list[str]:
    """
    Rank candidates by closeness to ``value`` for "did you mean" hints.

    Exact matches score 0, substring matches in either direction 0.5, anything
    else its edit distance. Candidates further than ``max_distance`` are
    dropped. Comparison is case-insensitive.
    """
    needle = value.lower()
    scored: list[tuple[float, str]] = []
    for candidate in candidates:
        hay = candidate.lower()
        if hay == needle:
            scored.append((0, candidate))
        elif needle in hay or hay in needle:
            scored.append((0.5, candidate))
        else:
            distance = levenshtein_distance(needle, hay)
            if distance <= max_distance:
                scored.append((distance, candidate))
    scored.sort(key=lambda item: item[0])
    return [candidate for _, candidate in scored]


def validate_alias_name(alias: str, entity_type: str | None = None) -> str | None:
    if not alias or not alias.strip():
        return "Alias cannot be empty"
    if any(ch.isspace() for ch in alias):
        return "Alias cannot contain spaces"
    # resolve() passes ID-shaped input through, so such an alias could never be used
    if entity_type is not None and looks_like_linear_id(alias, entity_type):
        return f'Alias "{alias}" looks like a {entity_type} ID'
    return None


class EntityValidatorLike(Protocol):
    async def validate(self, entity_type: str, entity_id: str) -> Any: ...


@dataclass(frozen=True)
class AliasLocation:
    """Where a merged alias came from."""

    scope: str
    path: Path


@dataclass
class ResolvedAliases:
    """Global and project aliases merged with project precedence."""

    maps: dict[str, dict[str, str]] = field(default_factory=dict)
    locations: dict[str, dict[str, AliasLocation]] = field(default_factory=dict)

    def for_type(self, entity_type: str) -> dict[str, str]:
        return self.maps.get(entity_type, {})


@dataclass
class AliasResult:
    success: bool
    error: str | None = None
    id: str | None = None
    old_id: str | None = None
    entity_name: str | None = None
    aliases: list[str] = field(default_factory=list)


@dataclass
class BrokenAlias:
    entity_type: str
    alias: str
    id: str
    location: AliasLocation
    error: str


@dataclass
class AliasValidationReport:
    broken: list[BrokenAlias]
    total: int


def empty_aliases() -> dict[str, dict[str, str]]:
    return {key: {} for key in ALIAS_KEYS.values()}


class AliasStore:
    """Reads and writes the scoped alias files."""

    def __init__(
        self,
        global_path: Path,
        project_path: Path,
        validator: EntityValidatorLike | None = None,
    ):
        self._global_path = Path(global_path)
        self._project_path = Path(project_path)
        self._validator = validator

    @property
    def global_path(self) -> Path:
        return self._global_path

    @property
    def project_path(self) -> Path:
        return self._project_path

    def path_for(self, scope: str) -> Path:
        if scope == GLOBAL_SCOPE:
            return self._global_path
        if scope == PROJECT_SCOPE:
            return self._project_path
        raise ValueError(f"Invalid alias scope: {scope}. Valid scopes: {', '.join(SCOPES)}")

    def has_scope_file(self, scope: str) -> bool:
        return self.path_for(scope).exists()

    # ------------------------------------------------------------------
    # file access

    def _read(self, path: Path) -> dict[str, dict[str, str]]:
        aliases = empty_aliases()
        if not path.exists():
            logger.debug("Alias file %s does not exist", path)
            return aliases
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(
                "Could not read aliases file %s (%s); continuing with empty aliases. "
                "The file will be recreated on next write.",
                path,
                exc,
            )
            return aliases
        if not isinstance(parsed, dict):
            logger.warning("Aliases file %s is not a JSON object; ignoring it", path)
            return aliases

        for key in aliases:
            value = parsed.get(key)
            if isinstance(value, dict):
                aliases[key] = {str(k): str(v) for k, v in value.items()}
        return aliases

    def _write(self, path: Path, aliases: dict[str, dict[str, str]]) -> str | None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(aliases, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write aliases file %s: %s", path, exc)
            return f"Could not write aliases file {path}: {exc}"
        return None

    # ------------------------------------------------------------------
    # reads

    def load(self) -> ResolvedAliases:
        global_aliases = self._read(self._global_path)
        project_aliases = self._read(self._project_path)

        resolved = ResolvedAliases()
        for entity_type, key in ALIAS_KEYS.items():
            merged: dict[str, str] = {}
            locations: dict[str, AliasLocation] = {}
            for scope, path, source in (
                (GLOBAL_SCOPE, self._global_path, global_aliases),
                (PROJECT_SCOPE, self._project_path, project_aliases),
            ):
                for alias, entity_id in source[key].items():
                    merged[alias] = entity_id
                    locations[alias] = AliasLocation(scope=scope, path=path)
            resolved.maps[entity_type] = merged
            resolved.locations[entity_type] = locations
        return resolved

    def resolve(self, entity_type: str, value: str) -> str:
        """Return the ID for ``value``, or ``value`` itself when unknown."""
        entity_type = require_entity_type(entity_type)
        if looks_like_linear_id(value, entity_type):
            return value
        resolved = self.load().for_type(entity_type).get(value)
        if resolved:
            logger.debug("Resolved %s alias %s -> %s", entity_type, value, resolved)
            return resolved
        return value

    def get(self, entity_type: str, alias: str) -> tuple[str, AliasLocation] | None:
        entity_type = require_entity_type(entity_type)
        resolved = self.load()
        entity_id = resolved.for_type(entity_type).get(alias)
        if not entity_id:
            return None
        return entity_id, resolved.locations[entity_type][alias]

    def list_aliases(self, entity_type: str | None = None) -> dict[str, dict[str, str]]:
        resolved = self.load()
        if entity_type is None:
            return {t: dict(m) for t, m in resolved.maps.items()}
        entity_type = require_entity_type(entity_type)
        return {entity_type: dict(resolved.for_type(entity_type))}

    def names(self, entity_type: str) -> list[str]:
        return list(self.load().for_type(require_entity_type(entity_type)))

    def aliases_for_id(self, entity_type: str, entity_id: str) -> list[str]:
        aliases = self.load().for_type(require_entity_type(entity_type))
        return [alias for alias, target in aliases.items() if target == entity_id]

    def suggestion_message(self, entity_type: str, value: str, max_suggestions: int = 3) -> str:
        entity_type = require_entity_type(entity_type)
        names = self.names(entity_type)
        if not names:
            return (
                f"Alias '{value}' not found for type '{entity_type}'.\n"
                f"No {entity_type} aliases have been created yet."
            )
        message = f"Alias '{value}' not found for type '{entity_type}'."
        similar = find_similar(value, names)
        if similar:
            message += f"\n\nDid you mean: {', '.join(similar[:max_suggestions])}?"
        return message

    # ------------------------------------------------------------------
    # mutations

    async def _validate(self, entity_type: str, entity_id: str) -> tuple[bool, str | None, str | None]:
        if self._validator is None:
            return True, None, None
        validation = await self._validator.validate(entity_type, entity_id)
        return validation.valid, validation.name, validation.error

    async def add(
        self,
        entity_type: str,
        alias: str,
        entity_id: str,
        scope: str = GLOBAL_SCOPE,
        skip_validation: bool = False,
    ) -> AliasResult:
        entity_type = require_entity_type(entity_type)
        path = self.path_for(scope)
        syntax_error = validate_alias_name(alias, entity_type)
        if syntax_error:
            return AliasResult(success=False, error=syntax_error)

        entity_name = None
        if not skip_validation:
            valid, entity_name, error = await self._validate(entity_type, entity_id)
            if not valid:
                return AliasResult(success=False, error=error or f"{entity_type} {entity_id} not found")

        aliases = self._read(path)
        bucket = aliases[ALIAS_KEYS[entity_type]]
        existing = bucket.get(alias)
        if existing is not None:
            if existing == entity_id:
                error = f'Alias "{alias}" already points to this {entity_type}'
            else:
                error = (
                    f'Alias "{alias}" already exists for {entity_type} '
                    "(remove it first or update its ID)"
                )
            return AliasResult(success=False, error=error, id=existing)

        bucket[alias] = entity_id
        write_error = self._write(path, aliases)
        if write_error:
            return AliasResult(success=False, error=write_error)
        return AliasResult(success=True, id=entity_id, entity_name=entity_name)

    def remove(self, entity_type: str, alias: str, scope: str = GLOBAL_SCOPE) -> AliasResult:
        entity_type = require_entity_type(entity_type)
        path = self.path_for(scope)
        aliases = self._read(path)
        bucket = aliases[ALIAS_KEYS[entity_type]]
        if alias not in bucket:
            return AliasResult(
                success=False,
                error=f'Alias "{alias}" not found in {scope} aliases for {entity_type}',
            )
        entity_id = bucket.pop(alias)
        write_error = self._write(path, aliases)
        if write_error:
            return AliasResult(success=False, error=write_error)
        return AliasResult(success=True, id=entity_id)

    def rename(
        self, entity_type: str, old_alias: str, new_alias: str, scope: str = GLOBAL_SCOPE
    ) -> AliasResult:
        entity_type = require_entity_type(entity_type)
        path = self.path_for(scope)
        syntax_error = validate_alias_name(new_alias, entity_type)
        if syntax_error:
            return AliasResult(success=False, error=syntax_error)

        aliases = self._read(path)
        bucket = aliases[ALIAS_KEYS[entity_type]]
        if old_alias not in bucket:
            return AliasResult(
                success=False,
                error=f'Alias "{old_alias}" not found in {scope} aliases for {entity_type}',
            )
        if new_alias in bucket:
            return AliasResult(
                success=False, error=f'Alias "{new_alias}" already exists for {entity_type}'
            )

        entity_id = bucket.pop(old_alias)
        bucket[new_alias] = entity_id
        write_error = self._write(path, aliases)
        if write_error:
            return AliasResult(success=False, error=write_error)
        return AliasResult(success=True, id=entity_id)

    async def update_id(
        self,
        entity_type: str,
        alias: str,
        new_id: str,
        scope: str = GLOBAL_SCOPE,
        skip_validation: bool = False,
    ) -> AliasResult:
        entity_type = require_entity_type(entity_type)
        path = self.path_for(scope)
        aliases = self._read(path)
        bucket = aliases[ALIAS_KEYS[entity_type]]
        if alias not in bucket:
            return AliasResult(
                success=False,
                error=f'Alias "{alias}" not found in {scope} aliases for {entity_type}',
            )
        old_id = bucket[alias]

        entity_name = None
        if not skip_validation:
            valid, entity_name, error = await self._validate(entity_type, new_id)
            if not valid:
                return AliasResult(success=False, error=error or f"{entity_type} {new_id} not found")

        # reread so a slow validation does not clobber edits made meanwhile
        aliases = self._read(path)
        aliases[ALIAS_KEYS[entity_type]][alias] = new_id
        write_error = self._write(path, aliases)
        if write_error:
            return AliasResult(success=False, error=write_error)
        return AliasResult(success=True, id=new_id, old_id=old_id, entity_name=entity_name)

    def clear(self, entity_type: str, scope: str = GLOBAL_SCOPE, preview: bool = False) -> AliasResult:
        entity_type = require_entity_type(entity_type)
        path = self.path_for(scope)
        aliases = self._read(path)
        key = ALIAS_KEYS[entity_type]
        cleared = list(aliases[key])
        if preview or not cleared:
            return AliasResult(success=True, aliases=cleared)
        aliases[key] = {}
        write_error = self._write(path, aliases)
        if write_error:
            return AliasResult(success=False, error=write_error)
        logger.info("Cleared %d %s aliases from %s scope", len(cleared), entity_type, scope)
        return AliasResult(success=True, aliases=cleared)

    async def validate_all(self) -> AliasValidationReport:
        """Check every stored alias against Linear without changing anything."""
        broken: list[BrokenAlias] = []
        total = 0
        # each scope file separately: a shadowed global alias is still stored
        for scope, path in ((GLOBAL_SCOPE, self._global_path), (PROJECT_SCOPE, self._project_path)):
            stored = self._read(path)
            location = AliasLocation(scope=scope, path=path)
            for entity_type, key in ALIAS_KEYS.items():
                for alias, entity_id in stored[key].items():
                    total += 1
                    valid, _name, error = await self._validate(entity_type, entity_id)
                    if not valid:
                        broken.append(
                            BrokenAlias(
                                entity_type=entity_type,
                                alias=alias,
                                id=entity_id,
                                location=location,
                                error=error or "Unknown error",
                            )
                        )
        return AliasValidationReport(broken=broken, total=total)
