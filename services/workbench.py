import logging
from typing import Any

from core.errors import ConflictError
from schemas.exercise import EDITABLE_FIELDS, Actor, ExerciseSnapshot
from schemas.verification import DispatchPayload, ReviewEvent, TransitionResult
from services.content_state_machine import ContentStateMachine, can_edit, ensure_can_edit, new_idempotency_key
from services.gateway import SqlGateway
from services.optimistic_field import CommitOutcome, FieldState, OptimisticField
from services.publish_readiness import ReadinessReport
from services.relationship_graph import RelationshipGraph

logger = logging.getLogger(__name__)


class VerificationSession:
    """
    One actor working on one exercise: inline fields, the relation ladder,
    readiness guidance and the lifecycle buttons.
    """

    def __init__(
        self,
        gateway: SqlGateway,
        snapshot: ExerciseSnapshot,
        actor: Actor,
        machine: ContentStateMachine | None = None,
        graph: RelationshipGraph | None = None,
    ):
        self.gateway = gateway
        self.actor = actor
        self.machine = machine or ContentStateMachine(gateway)
        self.graph = graph or RelationshipGraph(gateway)
        self._snapshot = snapshot
        self._fields: dict[str, OptimisticField] = {}

    @classmethod
    async def open(cls, gateway: SqlGateway, exercise_id: str, actor: Actor, **kwargs: Any) -> "VerificationSession":
        session = cls(gateway, await gateway.get_snapshot(exercise_id), actor, **kwargs)
        await session.graph.load(exercise_id)
        return session

    @property
    def snapshot(self) -> ExerciseSnapshot:
        return self._snapshot

    @property
    def exercise_id(self) -> str:
        return self._snapshot.id

    @property
    def can_edit(self) -> bool:
        return can_edit(self._snapshot, self.actor)

    def field(self, name: str) -> OptimisticField:
        if name not in EDITABLE_FIELDS:
            raise KeyError(name)
        field = self._fields.get(name)
        if field is None:

            async def persist(value: Any) -> None:
                await self._save_field(name, value)

            field = OptimisticField(persist, name=f"{self.exercise_id}.{name}")
            field.reconcile(getattr(self._snapshot, name))
            self._fields[name] = field
        return field

    async def _save_field(self, name: str, value: Any) -> None:
        ensure_can_edit(self._snapshot, self.actor)
        self._snapshot = await self.gateway.update_field(self.exercise_id, name, value, self.actor)

    def pending(self) -> dict[str, Any]:
        """Drafts not yet confirmed by the server."""
        return {
            name: field.current_value
            for name, field in self._fields.items()
            if field.state in (FieldState.EDITING, FieldState.SAVING) and field.current_value != field.last_confirmed_value
        }

    def readiness(self) -> ReadinessReport:
        return self.machine.engine.report(self._snapshot, self.pending())

    def allowed_events(self) -> list[ReviewEvent]:
        return self.machine.allowed_events(self._snapshot, self.actor)

    async def flush(self) -> dict[str, CommitOutcome]:
        outcomes = {}
        for name, field in self._fields.items():
            if field.state is FieldState.EDITING:
                outcomes[name] = await field.commit()
        return outcomes

    async def refresh(self) -> ExerciseSnapshot:
        self._snapshot = await self.gateway.get_snapshot(self.exercise_id)
        for name, field in self._fields.items():
            field.reconcile(getattr(self._snapshot, name))
        await self.graph.load(self.exercise_id)
        return self._snapshot

    async def dispatch(
        self,
        event: ReviewEvent | str,
        *,
        notes: str | None = None,
        reason_code: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Save open drafts, then run the transition against the confirmed record."""
        await self.flush()
        payload = DispatchPayload(
            notes=notes,
            reason_code=reason_code,
            idempotency_key=idempotency_key or new_idempotency_key(),
        )
        try:
            result = await self.machine.dispatch(
                event, self._snapshot, payload, actor=self.actor, expected_version=self._snapshot.version
            )
        except ConflictError:
            logger.info("%s changed underneath the session; reloading", self.exercise_id)
            await self.refresh()
            raise
        self._snapshot = await self.gateway.get_snapshot(self.exercise_id)
        return result
