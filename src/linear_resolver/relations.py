"""
Project dependency relations.

Linear stores a dependency as an ordered pair of projects plus the anchor
(``start`` or ``end``) each side is attached to. Whether a relation reads as
"depends on" or "blocks" is not stored; it is derived from the project you
look at it from, see ``relation_direction``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .client import LinearApiError, LinearClient
from .resolver import Resolver

logger = logging.getLogger(__name__)

DEPENDS_ON = "depends-on"
BLOCKS = "blocks"
DIRECTIONS = (DEPENDS_ON, BLOCKS)

ANCHOR_START = "start"
ANCHOR_END = "end"
ANCHORS = (ANCHOR_START, ANCHOR_END)

# (anchorType, relatedAnchorType) used when creating from a direction flag
DIRECTION_ANCHORS = {
    DEPENDS_ON: (ANCHOR_END, ANCHOR_START),
    BLOCKS: (ANCHOR_START, ANCHOR_END),
}

STATUS_CREATED = "created"
STATUS_EXISTS = "exists"
STATUS_SELF = "self"
STATUS_FAILED = "failed"
STATUS_REMOVED = "removed"


class InvalidRelationError(ValueError):
    """The project is on neither side of the relation it was asked about."""


class SelfReferenceError(ValueError):
    """A project cannot depend on or block itself."""


@dataclass(frozen=True)
class ProjectRef:
    id: str
    name: str | None = None


@dataclass(frozen=True)
class ProjectRelation:
    id: str
    project: ProjectRef
    related_project: ProjectRef
    anchor_type: str
    related_anchor_type: str

    @classmethod
    def from_dict(cls, node: dict[str, Any]) -> ProjectRelation:
        project = node.get("project") or {}
        related = node.get("relatedProject") or {}
        return cls(
            id=node["id"],
            project=ProjectRef(id=project.get("id", ""), name=project.get("name")),
            related_project=ProjectRef(id=related.get("id", ""), name=related.get("name")),
            anchor_type=node.get("anchorType") or "",
            related_anchor_type=node.get("relatedAnchorType") or "",
        )

    def involves(self, project_id: str) -> bool:
        return project_id in (self.project.id, self.related_project.id)

    def other_project(self, project_id: str) -> ProjectRef:
        if self.project.id == project_id:
            return self.related_project
        if self.related_project.id == project_id:
            return self.project
        raise InvalidRelationError(
            f"Invalid relation: project {project_id} is neither source nor target of {self.id}"
        )


def relation_direction(relation: ProjectRelation, from_project_id: str) -> str:
    """
    Classify ``relation`` as seen from ``from_project_id``.

    From the ``project`` side, ``end -> start`` means the project waits for
    the related one ("depends-on"); every other anchor pair reads as
    "blocks". From the ``relatedProject`` side the answer is inverted, so the
    two sides of one relation always disagree.
    """
    waits = relation.anchor_type == ANCHOR_END and relation.related_anchor_type == ANCHOR_START
    if relation.project.id == from_project_id:
        return DEPENDS_ON if waits else BLOCKS
    if relation.related_project.id == from_project_id:
        return BLOCKS if waits else DEPENDS_ON
    raise InvalidRelationError(
        f"Invalid relation: project {from_project_id} is neither source nor target of {relation.id}"
    )


def validate_anchor_type(value: str) -> str:
    anchor = value.strip().lower()
    if anchor not in ANCHORS:
        raise ValueError(f'Invalid anchor type: {value}. Anchor must be "start" or "end"')
    return anchor


@dataclass(frozen=True)
class DependencySpec:
    related: str
    anchor_type: str
    related_anchor_type: str


def parse_dependency_spec(value: str) -> DependencySpec:
    """Parse ``"project:myAnchor:theirAnchor"``; the project part is left unresolved."""
    parts = value.split(":")
    if len(parts) != 3 or not parts[0].strip():
        raise ValueError(
            f"Invalid dependency format: {value}. "
            'Expected "project:myAnchor:theirAnchor", for example "api-v2:end:start"'
        )
    related, mine, theirs = parts
    return DependencySpec(
        related=related.strip(),
        anchor_type=validate_anchor_type(mine),
        related_anchor_type=validate_anchor_type(theirs),
    )


def describe_anchors(relation: ProjectRelation, project_id: str) -> str:
    if relation.project.id == project_id:
        mine, theirs = relation.anchor_type, relation.related_anchor_type
    else:
        mine, theirs = relation.related_anchor_type, relation.anchor_type
    if mine == theirs:
        return f"Both {mine}s linked"
    if relation_direction(relation, project_id) == DEPENDS_ON:
        return f"My {mine} waits for their {theirs}"
    return f"Their {theirs} waits for my {mine}"


def ensure_not_self(project_id: str, related_project_id: str) -> None:
    if project_id == related_project_id:
        raise SelfReferenceError("A project cannot depend on or block itself")


@dataclass
class DependencyOutcome:
    related_project_id: str
    anchor_type: str
    related_anchor_type: str
    status: str
    relation_id: str | None = None
    error: str | None = None


@dataclass
class DependencyReport:
    project_id: str
    outcomes: list[DependencyOutcome] = field(default_factory=list)

    def with_status(self, status: str) -> list[DependencyOutcome]:
        return [o for o in self.outcomes if o.status == status]

    def counts(self) -> dict[str, int]:
        statuses = (STATUS_CREATED, STATUS_EXISTS, STATUS_SELF, STATUS_FAILED)
        return {status: len(self.with_status(status)) for status in statuses}


@dataclass
class DependencyEntry:
    relation_id: str
    project_id: str
    project_name: str | None
    anchor_type: str
    related_anchor_type: str
    semantics: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "relationId": self.relation_id,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "anchorType": self.anchor_type,
            "relatedAnchorType": self.related_anchor_type,
            "semantics": self.semantics,
        }


@dataclass
class RemovalOutcome:
    relation_id: str
    status: str
    error: str | None = None


@dataclass
class RemovalReport:
    project_id: str
    outcomes: list[RemovalOutcome] = field(default_factory=list)

    @property
    def removed(self) -> list[str]:
        return [o.relation_id for o in self.outcomes if o.status == STATUS_REMOVED]

    @property
    def failed(self) -> list[RemovalOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_FAILED]


def _require_direction(direction: str | None) -> str | None:
    if direction is not None and direction not in DIRECTIONS:
        raise ValueError(f"Invalid direction: {direction}. Valid: {', '.join(DIRECTIONS)}")
    return direction


class DependencyManager:
    """Create, list and delete dependency relations for one project at a time."""

    def __init__(self, client: LinearClient, resolver: Resolver):
        self._client = client
        self._resolver = resolver

    async def relations(self, project_id: str) -> list[ProjectRelation]:
        nodes = await self._client.list_project_relations(project_id)
        return [ProjectRelation.from_dict(node) for node in nodes]

    async def add(
        self,
        project: str,
        depends_on: Iterable[str] = (),
        blocks: Iterable[str] = (),
        specs: Iterable[str] = (),
    ) -> DependencyReport:
        project_id = await self._resolver.resolve_id("project", project)

        # resolve everything first so a typo fails before any relation is created
        planned: list[tuple[str, str, str]] = []
        for direction, targets in ((DEPENDS_ON, depends_on), (BLOCKS, blocks)):
            anchor_type, related_anchor_type = DIRECTION_ANCHORS[direction]
            for target in targets:
                related_id = await self._resolver.resolve_id("project", target)
                planned.append((related_id, anchor_type, related_anchor_type))
        for raw in specs:
            spec = parse_dependency_spec(raw)
            related_id = await self._resolver.resolve_id("project", spec.related)
            planned.append((related_id, spec.anchor_type, spec.related_anchor_type))

        report = DependencyReport(project_id=project_id)
        for related_id, anchor_type, related_anchor_type in planned:
            outcome = DependencyOutcome(
                related_project_id=related_id,
                anchor_type=anchor_type,
                related_anchor_type=related_anchor_type,
                status=STATUS_CREATED,
            )
            report.outcomes.append(outcome)
            try:
                ensure_not_self(project_id, related_id)
            except SelfReferenceError as exc:
                logger.warning("Skipping self-referential dependency on %s", related_id)
                outcome.status, outcome.error = STATUS_SELF, str(exc)
                continue
            try:
                created = await self._client.create_project_relation(
                    project_id, related_id, anchor_type, related_anchor_type
                )
            except LinearApiError as exc:
                outcome.status = STATUS_EXISTS if exc.is_duplicate else STATUS_FAILED
                outcome.error = exc.message
                continue
            outcome.relation_id = created.get("id")
        return report

    async def list_dependencies(
        self, project: str, direction: str | None = None
    ) -> dict[str, list[DependencyEntry]]:
        direction = _require_direction(direction)
        project_id = await self._resolver.resolve_id("project", project)
        grouped: dict[str, list[DependencyEntry]] = {DEPENDS_ON: [], BLOCKS: []}
        for relation in await self.relations(project_id):
            relation_dir = relation_direction(relation, project_id)
            if direction is not None and relation_dir != direction:
                continue
            other = relation.other_project(project_id)
            grouped[relation_dir].append(
                DependencyEntry(
                    relation_id=relation.id,
                    project_id=other.id,
                    project_name=other.name,
                    anchor_type=relation.anchor_type,
                    related_anchor_type=relation.related_anchor_type,
                    semantics=describe_anchors(relation, project_id),
                )
            )
        return grouped

    async def _delete(self, project_id: str, relation_ids: Iterable[str]) -> RemovalReport:
        report = RemovalReport(project_id=project_id)
        for relation_id in relation_ids:
            try:
                await self._client.delete_project_relation(relation_id)
            except LinearApiError as exc:
                report.outcomes.append(
                    RemovalOutcome(relation_id=relation_id, status=STATUS_FAILED, error=exc.message)
                )
                continue
            report.outcomes.append(RemovalOutcome(relation_id=relation_id, status=STATUS_REMOVED))
        return report

    async def remove(
        self,
        project: str,
        depends_on: Iterable[str] = (),
        blocks: Iterable[str] = (),
        relation_id: str | None = None,
        with_project: str | None = None,
    ) -> RemovalReport:
        depends_on, blocks = list(depends_on), list(blocks)
        if not (depends_on or blocks or relation_id or with_project):
            raise ValueError(
                "Provide at least one of depends_on, blocks, relation_id or with_project"
            )
        project_id = await self._resolver.resolve_id("project", project)
        existing = await self.relations(project_id)

        selected: list[str] = []
        if relation_id:
            if not any(r.id == relation_id for r in existing):
                raise LookupError(f"No relation with ID: {relation_id}")
            selected.append(relation_id)

        for direction, targets in ((DEPENDS_ON, depends_on), (BLOCKS, blocks)):
            for target in targets:
                target_id = await self._resolver.resolve_id("project", target)
                selected.extend(
                    r.id
                    for r in existing
                    if relation_direction(r, project_id) == direction
                    and r.other_project(project_id).id == target_id
                )

        if with_project:
            target_id = await self._resolver.resolve_id("project", with_project)
            selected.extend(r.id for r in existing if r.other_project(project_id).id == target_id)

        # a relation picked by several criteria is deleted once
        unique = list(dict.fromkeys(selected))
        if not unique:
            logger.info("No matching dependencies to remove for %s", project_id)
        return await self._delete(project_id, unique)

    async def clear(self, project: str, direction: str | None = None) -> RemovalReport:
        direction = _require_direction(direction)
        project_id = await self._resolver.resolve_id("project", project)
        relation_ids = [
            r.id
            for r in await self.relations(project_id)
            if direction is None or relation_direction(r, project_id) == direction
        ]
        return await self._delete(project_id, relation_ids)
