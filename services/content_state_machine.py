"""
Exercise lifecycle.

    draft ──submit──▶ pending_review ──approve──▶ published ──unpublish──▶ archived
      ▲                 │    │    │
      └────withdraw─────┘    │    └──reject──▶ rejected (terminal)
                             │
         changes_requested ◀─┘ request_changes
                 │
                 └──submit / resubmit──▶ pending_review

Transitions are never applied optimistically: the new status only exists once
persistence has acknowledged it. "approved" is collapsed into "published".
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from core.config import settings
from core.errors import GuardViolation, ValidationError, WorkbenchError
from schemas.exercise import Actor, ActorRole, ContentStatus, ExerciseScope, ExerciseSnapshot
from schemas.verification import (
    BulkOperationResult,
    DispatchPayload,
    RejectionReason,
    ReviewEvent,
    TransitionRecord,
    TransitionResult,
)
from services.collaborators import Authorizer, LoggingNotifier, LoggingSearchIndexer, Notifier, RoleAuthorizer, SearchIndexer
from services.publish_readiness import PublishReadinessEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    event: ReviewEvent
    sources: frozenset[ContentStatus]
    target: ContentStatus
    roles: frozenset[ActorRole]


_AUTHOR = frozenset({ActorRole.AUTHOR})
_REVIEWER = frozenset({ActorRole.REVIEWER})
_ANYONE = frozenset(ActorRole)

TRANSITIONS: dict[ReviewEvent, Transition] = {
    t.event: t
    for t in (
        Transition(
            ReviewEvent.SUBMIT,
            frozenset({ContentStatus.DRAFT, ContentStatus.CHANGES_REQUESTED}),
            ContentStatus.PENDING_REVIEW,
            _ANYONE,
        ),
        Transition(ReviewEvent.APPROVE, frozenset({ContentStatus.PENDING_REVIEW}), ContentStatus.PUBLISHED, _REVIEWER),
        Transition(
            ReviewEvent.REQUEST_CHANGES,
            frozenset({ContentStatus.PENDING_REVIEW}),
            ContentStatus.CHANGES_REQUESTED,
            _REVIEWER,
        ),
        Transition(ReviewEvent.REJECT, frozenset({ContentStatus.PENDING_REVIEW}), ContentStatus.REJECTED, _REVIEWER),
        Transition(
            ReviewEvent.RESUBMIT,
            frozenset({ContentStatus.CHANGES_REQUESTED}),
            ContentStatus.PENDING_REVIEW,
            _ANYONE,
        ),
        Transition(ReviewEvent.UNPUBLISH, frozenset({ContentStatus.PUBLISHED}), ContentStatus.ARCHIVED, _REVIEWER),
        Transition(ReviewEvent.WITHDRAW, frozenset({ContentStatus.PENDING_REVIEW}), ContentStatus.DRAFT, _AUTHOR),
    )
}

AUTHOR_EDITABLE = frozenset({ContentStatus.DRAFT, ContentStatus.CHANGES_REQUESTED})
# A linked global submission in one of these states locks the organization's own copy.
SUBMISSION_LOCKING = frozenset({ContentStatus.PENDING_REVIEW, ContentStatus.APPROVED})


def submission_locked(exercise: ExerciseSnapshot) -> bool:
    return exercise.global_submission_id is not None and exercise.global_submission_status in SUBMISSION_LOCKING


def edit_block_reason(exercise: ExerciseSnapshot, actor: Actor) -> str | None:
    """Why `actor` may not edit `exercise` right now; None when editing is allowed."""
    if actor.role is ActorRole.REVIEWER:
        return None
    if exercise.scope is ExerciseScope.GLOBAL:
        return "Global exercises can only be edited by reviewers."
    if submission_locked(exercise):
        return "The exercise is locked while its global submission is under review."
    if exercise.status not in AUTHOR_EDITABLE:
        return f"The exercise cannot be edited by its author while {exercise.status.value}."
    return None


def can_edit(exercise: ExerciseSnapshot, actor: Actor) -> bool:
    return edit_block_reason(exercise, actor) is None


def ensure_can_edit(exercise: ExerciseSnapshot, actor: Actor) -> None:
    reason = edit_block_reason(exercise, actor)
    if reason is not None:
        raise GuardViolation(reason, exercise_id=exercise.id, status=exercise.status.value)


class ExerciseBackend(Protocol):
    async def apply_transition(
        self,
        exercise_id: str,
        *,
        event: ReviewEvent,
        expected_status: ContentStatus,
        to_status: ContentStatus,
        **kwargs: Any,
    ) -> TransitionRecord: ...

    async def get_snapshot(self, exercise_id: str) -> ExerciseSnapshot: ...


class ContentStateMachine:
    def __init__(
        self,
        backend: ExerciseBackend,
        engine: PublishReadinessEngine | None = None,
        *,
        authorizer: Authorizer | None = None,
        notifier: Notifier | None = None,
        indexer: SearchIndexer | None = None,
    ):
        self.backend = backend
        self.engine = engine or PublishReadinessEngine.from_settings()
        self.authorizer = authorizer or RoleAuthorizer()
        self.notifier = notifier or LoggingNotifier()
        self.indexer = indexer or LoggingSearchIndexer()

    def allowed_events(self, exercise: ExerciseSnapshot, actor: Actor) -> list[ReviewEvent]:
        """Events whose state, role and authorization guards pass (payload guards excluded)."""
        return [
            t.event
            for t in TRANSITIONS.values()
            if exercise.status in t.sources
            and actor.role in t.roles
            and self.authorizer.can_transition(actor, t.event, exercise)
        ]

    def _check_transition(self, event: ReviewEvent, exercise: ExerciseSnapshot, actor: Actor) -> Transition:
        transition = TRANSITIONS.get(event)
        if transition is None:
            raise GuardViolation(f"Unknown event '{event}'.")
        if exercise.status not in transition.sources:
            raise GuardViolation(
                f"Cannot {event.value} an exercise that is {exercise.status.value}.",
                event=event.value,
                status=exercise.status.value,
            )
        if actor.role not in transition.roles:
            raise GuardViolation(f"A {actor.role.value} cannot {event.value} exercises.", event=event.value)
        if not self.authorizer.can_transition(actor, event, exercise):
            raise GuardViolation(f"Not allowed to {event.value} exercise {exercise.id}.", event=event.value)
        return transition

    def _check_payload(self, event: ReviewEvent, exercise: ExerciseSnapshot, payload: DispatchPayload) -> list[str]:
        """Event-specific guards. Returns non-blocking warnings."""
        notes = (payload.notes or "").strip()
        if event is ReviewEvent.APPROVE:
            # Only the stored record is gated; unsaved drafts must be flushed first.
            report = self.engine.report(exercise)
            if not report.can_publish:
                raise ValidationError(
                    f"{len(report.errors)} publish requirement(s) not met.",
                    results=report.errors,
                )
            return [r.rule.description for r in report.warnings]
        if event is ReviewEvent.REQUEST_CHANGES and len(notes) < settings.min_review_notes_length:
            raise ValidationError(
                "Review notes are required.",
                issues=[f"notes must be at least {settings.min_review_notes_length} characters"],
            )
        if event is ReviewEvent.REJECT:
            issues = []
            if payload.reason_code not in {r.value for r in RejectionReason}:
                issues.append("a rejection reason is required")
            if len(notes) < settings.min_reject_notes_length:
                issues.append(f"notes must be at least {settings.min_reject_notes_length} characters")
            if issues:
                raise ValidationError("Rejection is incomplete.", issues=issues)
        if event is ReviewEvent.RESUBMIT and exercise.edits_since_feedback < 1:
            raise ValidationError(
                "Nothing changed since changes were requested.",
                issues=["edit at least one field before resubmitting"],
            )
        return []

    def _column_changes(self, event: ReviewEvent, payload: DispatchPayload) -> dict[str, Any]:
        notes = (payload.notes or "").strip() or None
        if event is ReviewEvent.APPROVE:
            return {"scope": ExerciseScope.GLOBAL.value, "published_at": datetime.now(timezone.utc), "review_notes": notes}
        if event in (ReviewEvent.REQUEST_CHANGES, ReviewEvent.REJECT):
            return {"review_notes": notes, "edits_since_feedback": 0}
        if event in (ReviewEvent.RESUBMIT, ReviewEvent.SUBMIT):
            # Clears the feedback banner shown to the author.
            return {"review_notes": None}
        if event is ReviewEvent.UNPUBLISH:
            return {"review_notes": notes}
        return {}

    async def dispatch(
        self,
        event: ReviewEvent | str,
        exercise: ExerciseSnapshot,
        payload: DispatchPayload | None = None,
        *,
        actor: Actor,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """
        Apply `event` to `exercise` or raise: GuardViolation (illegal from this state or
        for this actor), ValidationError (payload / readiness), ConflictError (someone
        else moved the record), TransientError (storage). The exercise is unchanged on error.
        """
        try:
            event = ReviewEvent(event)
        except ValueError:
            raise GuardViolation(f"Unknown event '{event}'.") from None
        payload = payload or DispatchPayload()

        transition = self._check_transition(event, exercise, actor)
        warnings = self._check_payload(event, exercise, payload)

        record = await self.backend.apply_transition(
            exercise.id,
            event=event,
            expected_status=exercise.status,
            to_status=transition.target,
            expected_version=expected_version,
            actor_id=actor.id,
            notes=(payload.notes or "").strip() or None,
            reason_code=payload.reason_code,
            idempotency_key=payload.idempotency_key,
            changes=self._column_changes(event, payload),
        )

        result = TransitionResult(
            exercise_id=exercise.id,
            event=event,
            previous_status=record.from_status,
            status=record.to_status,
            version=record.version,
            replayed=record.replayed,
            warnings=warnings,
        )
        if not record.replayed:
            result.side_effect_errors = await self._after(event, exercise, payload, actor)
        return result

    async def _after(self, event: ReviewEvent, exercise: ExerciseSnapshot, payload: DispatchPayload, actor: Actor) -> list[str]:
        """Collaborator obligations; failures are reported, the transition stands."""
        calls = []
        author = exercise.owner_id
        if event is ReviewEvent.APPROVE:
            calls.append(("index", self._index(exercise.id)))
        if event is ReviewEvent.UNPUBLISH:
            calls.append(("unindex", self.indexer.remove(exercise.id)))
        if author and author != actor.id and event in (
            ReviewEvent.APPROVE,
            ReviewEvent.REQUEST_CHANGES,
            ReviewEvent.REJECT,
            ReviewEvent.UNPUBLISH,
        ):
            message = (payload.notes or "").strip() or f"Your exercise was {TRANSITIONS[event].target.value}."
            calls.append(("notify", self.notifier.notify(author, event, exercise, message)))

        errors = []
        for name, call in calls:
            try:
                await call
            except Exception as exc:
                logger.exception("%s after %s on %s failed", name, event.value, exercise.id)
                errors.append(f"{name}: {exc}")
        return errors

    async def _index(self, exercise_id: str) -> None:
        await self.indexer.index(await self.backend.get_snapshot(exercise_id))

    async def dispatch_many(
        self,
        event: ReviewEvent | str,
        exercise_ids: list[str],
        payload: DispatchPayload | None = None,
        *,
        actor: Actor,
    ) -> BulkOperationResult:
        result = BulkOperationResult(total_requested=len(exercise_ids))
        for exercise_id in exercise_ids:
            item_payload = payload
            if payload is not None and payload.idempotency_key:
                item_payload = payload.model_copy(update={"idempotency_key": f"{payload.idempotency_key}:{exercise_id}"})
            try:
                snapshot = await self.backend.get_snapshot(exercise_id)
                await self.dispatch(event, snapshot, item_payload, actor=actor)
            except WorkbenchError as exc:
                result.failed_ids.append(exercise_id)
                result.errors.append(f"{exercise_id}: {exc.message}")
            else:
                result.success_count += 1
        return result


def new_idempotency_key() -> str:
    return str(uuid.uuid4())
