"""
External collaborators the lifecycle calls but does not implement.

The defaults only log; deployments swap in their own notification, search and
authorization services.
"""

import logging
from typing import Protocol

from schemas.exercise import Actor, ActorRole, ExerciseSnapshot
from schemas.verification import ReviewEvent

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, recipient_id: str, event: ReviewEvent, exercise: ExerciseSnapshot, message: str) -> None: ...


class SearchIndexer(Protocol):
    async def index(self, exercise: ExerciseSnapshot) -> None: ...

    async def remove(self, exercise_id: str) -> None: ...


class Authorizer(Protocol):
    def can_transition(self, actor: Actor, event: ReviewEvent, exercise: ExerciseSnapshot) -> bool: ...


class LoggingNotifier:
    async def notify(self, recipient_id: str, event: ReviewEvent, exercise: ExerciseSnapshot, message: str) -> None:
        logger.info("notify %s about %s on %s: %s", recipient_id, event.value, exercise.id, message)


class LoggingSearchIndexer:
    async def index(self, exercise: ExerciseSnapshot) -> None:
        logger.info("index %s into the shared catalog", exercise.id)

    async def remove(self, exercise_id: str) -> None:
        logger.info("remove %s from the shared catalog", exercise_id)


class RoleAuthorizer:
    """Authors may only act on exercises of their own organization; reviewers on any."""

    def can_transition(self, actor: Actor, event: ReviewEvent, exercise: ExerciseSnapshot) -> bool:
        if actor.role is ActorRole.REVIEWER:
            return True
        if exercise.owner_id == actor.id:
            return True
        return actor.organization_id is not None and actor.organization_id == exercise.organization_id
