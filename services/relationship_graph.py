"""
Client-side view of the regression/progression ladder.

Every (exercise, relation type) slot is an OptimisticField holding the linked
exercise id (or None). A mutation commits the forward slot through the field;
the field's persist step also paints the inverse slots it will touch, sends
one atomic call to the backend, and restores every painted slot if that call
fails. The caller therefore never sees a forward edge without its inverse.

Mutations run one at a time. Two links that share an exercise would otherwise
race, and a response that arrives late would overwrite newer slot values.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from core.errors import GuardViolation
from schemas.exercise import DifficultyLevel
from schemas.relations import EdgePair, ExerciseSummary, RelationChange, RelationEdge, RelationProvenance, RelationType
from services.optimistic_field import CommitOutcome, FieldSnapshot, OptimisticField

logger = logging.getLogger(__name__)

_UNSET: Any = object()

DIFFICULTY_WARNINGS = {
    RelationType.REGRESSION: "Regression should be easier than the exercise",
    RelationType.PROGRESSION: "Progression should be harder than the exercise",
}


class RelationBackend(Protocol):
    async def get_neighbourhood(self, exercise_id: str) -> RelationChange: ...

    async def set_relation(
        self,
        source_id: str,
        target_id: str,
        relation_type: RelationType,
        provenance: RelationProvenance = RelationProvenance.HUMAN,
    ) -> RelationChange: ...

    async def remove_relation(self, source_id: str, relation_type: RelationType) -> RelationChange: ...

    async def confirm_relation(self, source_id: str, relation_type: RelationType) -> RelationChange: ...


def _level(exercise: Any) -> DifficultyLevel | None:
    level = exercise if isinstance(exercise, (DifficultyLevel, str)) or exercise is None else exercise.difficulty_level
    if level is None or level == "":
        return None
    return DifficultyLevel(level)


def validate_difficulty(source: Any, target: Any, relation_type: RelationType) -> str | None:
    """
    Soft check: a regression should be strictly easier, a progression strictly harder.
    Accepts snapshots, summaries or bare levels. Missing levels are not flagged.
    """
    source_level, target_level = _level(source), _level(target)
    if source_level is None or target_level is None:
        return None
    if relation_type is RelationType.REGRESSION and target_level.rank >= source_level.rank:
        return DIFFICULTY_WARNINGS[relation_type]
    if relation_type is RelationType.PROGRESSION and target_level.rank <= source_level.rank:
        return DIFFICULTY_WARNINGS[relation_type]
    return None


@dataclass(frozen=True)
class RelationOutcome:
    outcome: CommitOutcome
    edges: EdgePair
    warning: str | None = None
    error: str | None = None
    edge: RelationEdge | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (CommitOutcome.SAVED, CommitOutcome.NOOP)


class RelationshipGraph:
    validate_difficulty = staticmethod(validate_difficulty)

    def __init__(self, backend: RelationBackend, *, success_grace: float | None = None, error_grace: float | None = None):
        self._backend = backend
        self._success_grace = success_grace
        self._error_grace = error_grace
        self._slots: dict[tuple[str, RelationType], OptimisticField[str | None]] = {}
        self._provenance: dict[tuple[str, RelationType], RelationProvenance] = {}
        self._edges: dict[tuple[str, RelationType], RelationEdge] = {}
        self._summaries: dict[str, ExerciseSummary] = {}
        self._lock = asyncio.Lock()

    def _slot(self, exercise_id: str, relation_type: RelationType) -> OptimisticField[str | None]:
        key = (exercise_id, relation_type)
        field = self._slots.get(key)
        if field is None:

            async def persist(value: str | None) -> None:
                await self._persist(exercise_id, relation_type, value)

            field = OptimisticField(
                persist,
                name=f"{exercise_id}.{relation_type.value}",
                success_grace=self._success_grace,
                error_grace=self._error_grace,
            )
            field.reconcile(None)
            self._slots[key] = field
        return field

    def _value(self, exercise_id: str, relation_type: RelationType) -> str | None:
        field = self._slots.get((exercise_id, relation_type))
        return field.current_value if field is not None else None

    def get_edges(self, exercise_id: str) -> EdgePair:
        return EdgePair(
            regression=self._value(exercise_id, RelationType.REGRESSION),
            progression=self._value(exercise_id, RelationType.PROGRESSION),
        )

    def edge_state(self, exercise_id: str, relation_type: RelationType) -> FieldSnapshot[str | None]:
        return self._slot(exercise_id, relation_type).snapshot()

    def local_edges(self) -> set[tuple[str, RelationType, str]]:
        return {(eid, rtype, field.current_value) for (eid, rtype), field in self._slots.items() if field.current_value}

    def summary(self, exercise_id: str) -> ExerciseSummary | None:
        return self._summaries.get(exercise_id)

    def edge(self, exercise_id: str, relation_type: RelationType) -> RelationEdge | None:
        """Provenance and confirmation of the link currently shown in a slot."""
        edge = self._edges.get((exercise_id, relation_type))
        if edge is None or edge.target_id != self._value(exercise_id, relation_type):
            return None
        return edge

    def difficulty_warning(self, exercise_id: str, relation_type: RelationType) -> str | None:
        target_id = self._value(exercise_id, relation_type)
        source, target = self._summaries.get(exercise_id), self._summaries.get(target_id) if target_id else None
        if source is None or target is None:
            return None
        return validate_difficulty(source, target, relation_type)

    async def load(self, exercise_id: str) -> EdgePair:
        async with self._lock:
            self._apply(await self._backend.get_neighbourhood(exercise_id))
        return self.get_edges(exercise_id)

    async def set_relation(
        self,
        source_id: str,
        target_id: str,
        relation_type: RelationType,
        provenance: RelationProvenance = RelationProvenance.HUMAN,
    ) -> RelationOutcome:
        if source_id == target_id:
            raise GuardViolation("An exercise cannot be linked to itself.", exercise_id=source_id)
        async with self._lock:
            if self._value(source_id, relation_type.inverse) == target_id:
                raise GuardViolation(
                    f"{target_id} is already the {relation_type.inverse.value} of {source_id}.",
                    source_id=source_id,
                    target_id=target_id,
                )
            self._provenance[(source_id, relation_type)] = provenance
            return await self._commit(source_id, relation_type, target_id)

    async def remove_relation(self, source_id: str, relation_type: RelationType) -> RelationOutcome:
        async with self._lock:
            return await self._commit(source_id, relation_type, None)

    async def confirm_relation(self, source_id: str, relation_type: RelationType) -> RelationOutcome:
        """Accept a suggested link. Nothing is painted: the slot values do not change."""
        async with self._lock:
            self._apply(await self._backend.confirm_relation(source_id, relation_type))
        return RelationOutcome(
            outcome=CommitOutcome.SAVED,
            edges=self.get_edges(source_id),
            warning=self.difficulty_warning(source_id, relation_type),
            edge=self.edge(source_id, relation_type),
        )

    async def set_relations(self, source_id: str, *, regression: Any = _UNSET, progression: Any = _UNSET) -> dict[RelationType, RelationOutcome]:
        """Apply both ladder slots of one exercise (None clears a slot)."""
        outcomes: dict[RelationType, RelationOutcome] = {}
        for relation_type, target_id in ((RelationType.REGRESSION, regression), (RelationType.PROGRESSION, progression)):
            if target_id is _UNSET:
                continue
            if target_id is None:
                outcomes[relation_type] = await self.remove_relation(source_id, relation_type)
            else:
                outcomes[relation_type] = await self.set_relation(source_id, target_id, relation_type)
        return outcomes

    async def _commit(self, source_id: str, relation_type: RelationType, value: str | None) -> RelationOutcome:
        field = self._slot(source_id, relation_type)
        if not field.is_saving:
            field.begin_edit(field.last_confirmed_value)
        outcome = await field.commit(value)

        warning = error = None
        if outcome in (CommitOutcome.SAVED, CommitOutcome.NOOP) and value is not None:
            warning = self.difficulty_warning(source_id, relation_type)
        elif outcome is CommitOutcome.ROLLED_BACK and field.last_error is not None:
            error = str(field.last_error)
        return RelationOutcome(
            outcome=outcome,
            edges=self.get_edges(source_id),
            warning=warning,
            error=error,
            edge=self.edge(source_id, relation_type),
        )

    async def _persist(self, source_id: str, relation_type: RelationType, target_id: str | None) -> None:
        painted = self._paint_inverse(source_id, relation_type, target_id)
        try:
            if target_id is None:
                change = await self._backend.remove_relation(source_id, relation_type)
            else:
                provenance = self._provenance.get((source_id, relation_type), RelationProvenance.HUMAN)
                change = await self._backend.set_relation(source_id, target_id, relation_type, provenance)
        except BaseException:
            for (eid, rtype), previous in painted.items():
                self._slot(eid, rtype).reconcile(previous)
            logger.warning("restored %d inverse slot(s) after failed %s update of %s", len(painted), relation_type.value, source_id)
            raise
        self._apply(change, skip=(source_id, relation_type))

    def _paint_inverse(self, source_id: str, relation_type: RelationType, target_id: str | None) -> dict:
        """Optimistically update every slot other than the forward one; returns their previous values."""
        inverse = relation_type.inverse
        painted: dict[tuple[str, RelationType], str | None] = {}

        def paint(eid: str, rtype: RelationType, value: str | None) -> None:
            field = self._slot(eid, rtype)
            painted.setdefault((eid, rtype), field.last_confirmed_value)
            field.reconcile(value)

        old_target = self._slot(source_id, relation_type).last_confirmed_value
        if old_target and old_target != target_id and self._value(old_target, inverse) == source_id:
            paint(old_target, inverse, None)

        if target_id is not None:
            displaced = self._value(target_id, inverse)
            if displaced and displaced != source_id and self._value(displaced, relation_type) == target_id:
                paint(displaced, relation_type, None)
            paint(target_id, inverse, source_id)
        return painted

    def _apply(self, change: RelationChange, skip: tuple[str, RelationType] | None = None) -> None:
        self._summaries.update(change.summaries)
        for eid, pair in change.slots.items():
            for rtype in RelationType:
                self._edges.pop((eid, rtype), None)
                if (eid, rtype) == skip:
                    continue
                self._slot(eid, rtype).reconcile(pair.get(rtype))
        for edge in change.edges:
            self._edges[(edge.source_id, edge.relation_type)] = edge
