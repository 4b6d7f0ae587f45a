import logging
from typing import Any

import pydantic
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import ConflictError, GuardViolation, NotFoundError, ValidationError
from database.session import translate_errors
from models.exercise import Exercise, ReviewDecision
from schemas.exercise import EDITABLE_FIELDS, Actor, ActorRole, ContentStatus, ExerciseCreate, ExerciseSnapshot
from schemas.verification import DecisionItem, ReviewEvent, TransitionRecord, VerificationStats
from services.content_state_machine import ensure_can_edit

logger = logging.getLogger(__name__)


def get_exercise(db: Session, exercise_id: str) -> Exercise:
    ex = db.get(Exercise, exercise_id)
    if not ex:
        raise NotFoundError(f"Exercise {exercise_id} not found.", exercise_id=exercise_id)
    return ex


def to_snapshot(ex: Exercise) -> ExerciseSnapshot:
    return ExerciseSnapshot.model_validate(ex)


def get_snapshot(db: Session, exercise_id: str) -> ExerciseSnapshot:
    with translate_errors(db, "load exercise"):
        return to_snapshot(get_exercise(db, exercise_id))


def create_exercise(db: Session, payload: ExerciseCreate, owner: Actor) -> ExerciseSnapshot:
    ex = Exercise(
        **payload.model_dump(mode="json"),
        status=ContentStatus.DRAFT.value,
        owner_id=owner.id,
        organization_id=owner.organization_id,
    )
    with translate_errors(db, "create exercise"):
        db.add(ex)
        db.commit()
        db.refresh(ex)
    return to_snapshot(ex)


def _coerce_field(snapshot: ExerciseSnapshot, field: str, value: Any) -> Any:
    if field not in EDITABLE_FIELDS:
        raise GuardViolation(f"Field '{field}' is not editable.", field=field)
    try:
        coerced = snapshot.with_pending({field: value})
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid value for '{field}'.", issues=[e["msg"] for e in exc.errors()]) from exc
    if field == "main_tags" and len(coerced.main_tags) > settings.max_main_tags:
        raise ValidationError(
            f"At most {settings.max_main_tags} main tags are allowed.",
            issues=[f"main_tags has {len(coerced.main_tags)} entries"],
        )
    # Store enums as their raw values, like the rest of the row.
    return coerced.model_dump(mode="json", include={field})[field]


def update_field(
    db: Session,
    exercise_id: str,
    field: str,
    value: Any,
    actor: Actor,
    expected_version: int | None = None,
) -> ExerciseSnapshot:
    with translate_errors(db, f"update {field}"):
        ex = get_exercise(db, exercise_id)
        snapshot = to_snapshot(ex)
        ensure_can_edit(snapshot, actor)
        if expected_version is not None and expected_version != ex.version:
            raise ConflictError(
                f"Exercise {exercise_id} changed since it was loaded.",
                expected_version=expected_version,
                version=ex.version,
            )

        stored = _coerce_field(snapshot, field, value)
        if getattr(ex, field) == stored:
            return snapshot

        setattr(ex, field, stored)
        ex.version = ex.version + 1
        if actor.role is ActorRole.AUTHOR and ex.status == ContentStatus.CHANGES_REQUESTED.value:
            ex.edits_since_feedback = ex.edits_since_feedback + 1
        db.commit()
        db.refresh(ex)
    return to_snapshot(ex)


def _record_from_decision(decision: ReviewDecision, replayed: bool) -> TransitionRecord:
    return TransitionRecord(
        exercise_id=decision.exercise_id,
        event=ReviewEvent(decision.event),
        from_status=ContentStatus(decision.from_status),
        to_status=ContentStatus(decision.to_status),
        version=decision.version_after,
        replayed=replayed,
    )


def _find_decision(db: Session, idempotency_key: str | None) -> ReviewDecision | None:
    if not idempotency_key:
        return None
    return db.query(ReviewDecision).filter(ReviewDecision.idempotency_key == idempotency_key).first()


def apply_transition(
    db: Session,
    exercise_id: str,
    *,
    event: ReviewEvent,
    expected_status: ContentStatus,
    to_status: ContentStatus,
    expected_version: int | None = None,
    actor_id: str | None = None,
    notes: str | None = None,
    reason_code: str | None = None,
    idempotency_key: str | None = None,
    changes: dict[str, Any] | None = None,
) -> TransitionRecord:
    """
    Compare-and-set a status change and log it, in one transaction.
    Nothing is written unless the row still has `expected_status` (and `expected_version`, if given).
    """
    with translate_errors(db, f"{event.value} transition"):
        existing = _find_decision(db, idempotency_key)
        if existing is not None:
            if existing.exercise_id != exercise_id or existing.event != event.value:
                raise ConflictError("Idempotency key reused for a different transition.", idempotency_key=idempotency_key)
            return _record_from_decision(existing, replayed=True)

        conditions = [Exercise.id == exercise_id, Exercise.status == expected_status.value]
        if expected_version is not None:
            conditions.append(Exercise.version == expected_version)
        values = dict(changes or {})
        values.update(status=to_status.value, version=Exercise.version + 1)
        result = db.execute(update(Exercise).where(*conditions).values(**values).execution_options(synchronize_session=False))
        if result.rowcount == 0:
            current = get_exercise(db, exercise_id)
            db.rollback()
            logger.warning(
                "%s on %s lost the race: expected %s/v%s, found %s/v%s",
                event.value,
                exercise_id,
                expected_status.value,
                expected_version,
                current.status,
                current.version,
            )
            raise ConflictError(
                f"Exercise {exercise_id} was changed by someone else.",
                status=current.status,
                version=current.version,
            )

        version_after = db.query(Exercise.version).filter(Exercise.id == exercise_id).scalar()
        decision = ReviewDecision(
            exercise_id=exercise_id,
            event=event.value,
            from_status=expected_status.value,
            to_status=to_status.value,
            actor_id=actor_id,
            reason_code=reason_code,
            notes=notes,
            idempotency_key=idempotency_key,
            version_after=version_after,
        )
        db.add(decision)
        db.commit()
        db.expire_all()
    logger.info("%s: %s -> %s (%s)", exercise_id, expected_status.value, to_status.value, event.value)
    return _record_from_decision(decision, replayed=False)


def list_decisions(db: Session, exercise_id: str) -> list[DecisionItem]:
    with translate_errors(db, "load decisions"):
        get_exercise(db, exercise_id)
        rows = (
            db.query(ReviewDecision)
            .filter(ReviewDecision.exercise_id == exercise_id)
            .order_by(ReviewDecision.created_at.desc())
            .all()
        )
    return [
        DecisionItem(
            id=str(d.id),
            event=ReviewEvent(d.event),
            from_status=ContentStatus(d.from_status),
            to_status=ContentStatus(d.to_status),
            actor_id=d.actor_id,
            reason_code=d.reason_code,
            notes=d.notes,
            created_at=d.created_at,
        )
        for d in rows
    ]


def verification_stats(db: Session) -> VerificationStats:
    with translate_errors(db, "load stats"):
        rows = db.query(Exercise.status, func.count(Exercise.id)).group_by(Exercise.status).all()
    counts = {status: int(n) for status, n in rows}
    return VerificationStats(
        pending_review=counts.get(ContentStatus.PENDING_REVIEW.value, 0),
        changes_requested=counts.get(ContentStatus.CHANGES_REQUESTED.value, 0),
        approved=counts.get(ContentStatus.APPROVED.value, 0),
        published=counts.get(ContentStatus.PUBLISHED.value, 0),
        rejected=counts.get(ContentStatus.REJECTED.value, 0),
        archived=counts.get(ContentStatus.ARCHIVED.value, 0),
        total=sum(counts.values()),
    )
