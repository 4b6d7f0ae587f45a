"""
Server side of the progression/regression ladder.

Each exercise owns one slot per relation type. Setting (A, progression, B) is a
replacement, done in a single transaction:

1. A's old progression target loses its regression edge back to A.
2. B's old regression source (if any) loses its progression edge to B.
3. (A, progression, B) and (B, regression, A) are written together.

The unique constraint on (source_id, relation_type) turns a concurrent double
grant of the same slot into a ConflictError instead of a silent duplicate.
"""

from collections.abc import Iterable

from sqlalchemy.orm import Session

from core.errors import GuardViolation, NotFoundError
from database.session import translate_errors
from models.exercise import Exercise, ExerciseRelation
from schemas.relations import EdgePair, ExerciseSummary, RelationChange, RelationEdge, RelationProvenance, RelationType
from services.exercise_service import get_exercise


def _edge(db: Session, source_id: str, relation_type: RelationType) -> ExerciseRelation | None:
    return (
        db.query(ExerciseRelation)
        .filter(ExerciseRelation.source_id == source_id, ExerciseRelation.relation_type == relation_type.value)
        .first()
    )


def _pair(db: Session, exercise_id: str) -> EdgePair:
    rows = db.query(ExerciseRelation).filter(ExerciseRelation.source_id == exercise_id).all()
    slots = {r.relation_type: r.target_id for r in rows}
    return EdgePair(
        regression=slots.get(RelationType.REGRESSION.value),
        progression=slots.get(RelationType.PROGRESSION.value),
    )


def to_summary(ex: Exercise) -> ExerciseSummary:
    return ExerciseSummary(id=str(ex.id), name=ex.name, difficulty_level=ex.difficulty_level)


def to_edge(row: ExerciseRelation) -> RelationEdge:
    return RelationEdge(
        source_id=row.source_id,
        target_id=row.target_id,
        relation_type=RelationType(row.relation_type),
        provenance=RelationProvenance(row.provenance),
        confirmed=row.confirmed,
    )


def _change(db: Session, exercise_ids: Iterable[str]) -> RelationChange:
    change = RelationChange()
    for exercise_id in exercise_ids:
        ex = db.get(Exercise, exercise_id)
        if ex is None:
            continue
        change.slots[exercise_id] = _pair(db, exercise_id)
        change.summaries[exercise_id] = to_summary(ex)
    if change.slots:
        rows = db.query(ExerciseRelation).filter(ExerciseRelation.source_id.in_(list(change.slots))).all()
        change.edges = [to_edge(r) for r in rows]
    return change


def get_edges(db: Session, exercise_id: str) -> EdgePair:
    with translate_errors(db, "load relations"):
        get_exercise(db, exercise_id)
        return _pair(db, exercise_id)


def get_neighbourhood(db: Session, exercise_id: str) -> RelationChange:
    """Slots and summaries for an exercise plus whatever it links to."""
    with translate_errors(db, "load relations"):
        get_exercise(db, exercise_id)
        pair = _pair(db, exercise_id)
        ids = [exercise_id, *(t for t in (pair.regression, pair.progression) if t)]
        return _change(db, ids)


def set_relation(
    db: Session,
    source_id: str,
    target_id: str,
    relation_type: RelationType,
    provenance: RelationProvenance = RelationProvenance.HUMAN,
    confirmed: bool | None = None,
) -> RelationChange:
    """Suggested links start unconfirmed unless `confirmed` says otherwise."""
    if source_id == target_id:
        raise GuardViolation("An exercise cannot be linked to itself.", exercise_id=source_id)
    inverse = relation_type.inverse
    if confirmed is None:
        confirmed = provenance is RelationProvenance.HUMAN

    with translate_errors(db, "set relation"):
        get_exercise(db, source_id)
        get_exercise(db, target_id)

        other = _edge(db, source_id, inverse)
        if other is not None and other.target_id == target_id:
            raise GuardViolation(
                f"{target_id} is already the {inverse.value} of {source_id}; "
                f"it cannot also be its {relation_type.value}.",
                source_id=source_id,
                target_id=target_id,
            )

        touched = [source_id, target_id]
        forward = _edge(db, source_id, relation_type)
        backward = _edge(db, target_id, inverse)

        if forward is not None and forward.target_id == target_id and backward is not None and backward.target_id == source_id:
            # Already linked; only the metadata may change.
            for row in (forward, backward):
                row.provenance = provenance.value
                row.confirmed = confirmed
            db.commit()
            return _change(db, touched)

        if forward is not None:
            old_target = forward.target_id
            touched.append(old_target)
            db.delete(forward)
            stale = _edge(db, old_target, inverse)
            if stale is not None and stale.target_id == source_id:
                db.delete(stale)
            db.flush()

        backward = _edge(db, target_id, inverse)
        if backward is not None:
            displaced = backward.target_id
            touched.append(displaced)
            db.delete(backward)
            stale = _edge(db, displaced, relation_type)
            if stale is not None and stale.target_id == target_id:
                db.delete(stale)
            db.flush()

        db.add(
            ExerciseRelation(
                source_id=source_id,
                target_id=target_id,
                relation_type=relation_type.value,
                provenance=provenance.value,
                confirmed=confirmed,
            )
        )
        db.add(
            ExerciseRelation(
                source_id=target_id,
                target_id=source_id,
                relation_type=inverse.value,
                provenance=provenance.value,
                confirmed=confirmed,
            )
        )
        db.commit()
        return _change(db, dict.fromkeys(touched))


def remove_relation(db: Session, source_id: str, relation_type: RelationType) -> RelationChange:
    with translate_errors(db, "remove relation"):
        get_exercise(db, source_id)
        forward = _edge(db, source_id, relation_type)
        if forward is None:
            return _change(db, [source_id])

        old_target = forward.target_id
        db.delete(forward)
        back = _edge(db, old_target, relation_type.inverse)
        if back is not None and back.target_id == source_id:
            db.delete(back)
        db.commit()
        return _change(db, [source_id, old_target])


def confirm_relation(db: Session, source_id: str, relation_type: RelationType) -> RelationChange:
    """Accept a suggested link as-is; both directions become confirmed."""
    with translate_errors(db, "confirm relation"):
        get_exercise(db, source_id)
        forward = _edge(db, source_id, relation_type)
        if forward is None:
            raise NotFoundError(
                f"{source_id} has no {relation_type.value} to confirm.",
                exercise_id=source_id,
                relation_type=relation_type.value,
            )
        target_id = forward.target_id
        back = _edge(db, target_id, relation_type.inverse)
        forward.confirmed = True
        if back is not None and back.target_id == source_id:
            back.confirmed = True
        db.commit()
        return _change(db, [source_id, target_id])


def list_edges(db: Session) -> list[tuple[str, RelationType, str]]:
    """Every stored edge as (source, type, target); used for consistency audits."""
    with translate_errors(db, "list relations"):
        rows = db.query(ExerciseRelation).all()
    return [(r.source_id, RelationType(r.relation_type), r.target_id) for r in rows]
