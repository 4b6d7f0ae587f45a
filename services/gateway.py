from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from schemas.exercise import Actor, ContentStatus, ExerciseSnapshot
from schemas.relations import RelationChange, RelationProvenance, RelationType
from schemas.verification import ReviewEvent, TransitionRecord
from services import exercise_service, relation_service


class SqlGateway:
    """
    Async face of the SQLAlchemy services.

    Every call gets its own session and runs in the threadpool, the way FastAPI
    runs sync endpoints, so awaiting a save never blocks other fields.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def call() -> Any:
            with self._session_factory() as db:
                return fn(db, *args, **kwargs)

        return await run_in_threadpool(call)

    async def get_snapshot(self, exercise_id: str) -> ExerciseSnapshot:
        return await self._run(exercise_service.get_snapshot, exercise_id)

    async def update_field(
        self, exercise_id: str, field: str, value: Any, actor: Actor, expected_version: int | None = None
    ) -> ExerciseSnapshot:
        return await self._run(exercise_service.update_field, exercise_id, field, value, actor, expected_version)

    async def apply_transition(
        self,
        exercise_id: str,
        *,
        event: ReviewEvent,
        expected_status: ContentStatus,
        to_status: ContentStatus,
        **kwargs: Any,
    ) -> TransitionRecord:
        return await self._run(
            exercise_service.apply_transition,
            exercise_id,
            event=event,
            expected_status=expected_status,
            to_status=to_status,
            **kwargs,
        )

    async def get_neighbourhood(self, exercise_id: str) -> RelationChange:
        return await self._run(relation_service.get_neighbourhood, exercise_id)

    async def set_relation(
        self,
        source_id: str,
        target_id: str,
        relation_type: RelationType,
        provenance: RelationProvenance = RelationProvenance.HUMAN,
    ) -> RelationChange:
        return await self._run(relation_service.set_relation, source_id, target_id, relation_type, provenance)

    async def remove_relation(self, source_id: str, relation_type: RelationType) -> RelationChange:
        return await self._run(relation_service.remove_relation, source_id, relation_type)

    async def confirm_relation(self, source_id: str, relation_type: RelationType) -> RelationChange:
        return await self._run(relation_service.confirm_relation, source_id, relation_type)
