"""
Optimistic inline edits with rollback.

Every editable value in the verification workbench (names, numeric parameters,
tag lists, descriptions, relation slots) goes through one `OptimisticField`:

    field = OptimisticField(lambda value: gateway.update_field(exercise_id, "name", value))
    field.begin_edit(exercise.name)
    field.update_draft("Bird dog")
    outcome = await field.commit()

The displayed value is always either the last confirmed value or the value
currently being saved. A failed save restores the last confirmed value.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from core.config import settings
from core.errors import GuardViolation, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET: Any = object()


class FieldState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"
    SUCCESS = "success"
    ERROR = "error"


class CommitOutcome(str, Enum):
    NOOP = "noop"  # value unchanged, nothing sent
    SAVED = "saved"
    ROLLED_BACK = "rolled_back"
    SUPERSEDED = "superseded"  # queued value replaced by a newer one before it was sent


@dataclass(frozen=True)
class FieldSnapshot(Generic[T]):
    state: FieldState
    current_value: T | None
    last_confirmed_value: T | None
    error: str | None = None


def _discard_result(task: asyncio.Future) -> None:
    # The field already reflects the outcome; nobody is left to receive it.
    if not task.cancelled():
        task.exception()


class OptimisticField(Generic[T]):
    def __init__(
        self,
        persist: Callable[[T], Awaitable[None]],
        *,
        name: str = "field",
        success_grace: float | None = None,
        error_grace: float | None = None,
        on_success: Callable[[T], None] | None = None,
        on_rollback: Callable[[BaseException, T | None], None] | None = None,
    ):
        self.name = name
        self._persist = persist
        self._success_grace = settings.field_success_grace_seconds if success_grace is None else success_grace
        self._error_grace = settings.field_error_grace_seconds if error_grace is None else error_grace
        self._on_success = on_success
        self._on_rollback = on_rollback

        self._state = FieldState.IDLE
        self._current: T | None = None
        self._confirmed: T | None = None
        self._error: str | None = None
        self.last_error: BaseException | None = None
        self._started = False
        # Single-slot queue: only the newest value waiting behind an in-flight save survives.
        self._queued: tuple[T, asyncio.Future] | None = None
        self._settle_handle: asyncio.TimerHandle | None = None

    @property
    def state(self) -> FieldState:
        return self._state

    @property
    def current_value(self) -> T | None:
        return self._current

    @property
    def last_confirmed_value(self) -> T | None:
        return self._confirmed

    @property
    def is_saving(self) -> bool:
        return self._state is FieldState.SAVING

    def snapshot(self) -> FieldSnapshot[T]:
        return FieldSnapshot(
            state=self._state,
            current_value=copy.deepcopy(self._current),
            last_confirmed_value=copy.deepcopy(self._confirmed),
            error=self._error,
        )

    def begin_edit(self, initial: T) -> None:
        if self._state is FieldState.SAVING:
            raise GuardViolation(f"{self.name}: cannot begin a new edit while a save is in flight")
        self._cancel_settle()
        self._confirmed = copy.deepcopy(initial)
        self._current = copy.deepcopy(initial)
        self._error = None
        self._started = True
        self._state = FieldState.EDITING

    def update_draft(self, value: T) -> None:
        if not self._started:
            raise GuardViolation(f"{self.name}: begin_edit() must be called before update_draft()")
        self._current = copy.deepcopy(value)
        if self._state is not FieldState.SAVING:
            self._cancel_settle()
            self._error = None
            self._state = FieldState.EDITING

    def cancel(self) -> None:
        if self._state is FieldState.SAVING:
            raise GuardViolation(f"{self.name}: a save in flight cannot be cancelled")
        self._cancel_settle()
        self._current = copy.deepcopy(self._confirmed)
        self._error = None
        self._state = FieldState.IDLE

    def reconcile(self, value: T | None) -> None:
        """Accept an authoritative value pushed from the server (no network call)."""
        self._confirmed = copy.deepcopy(value)
        self._started = True
        if self._state not in (FieldState.SAVING, FieldState.EDITING):
            self._current = copy.deepcopy(value)

    async def commit(self, value: T = _UNSET) -> CommitOutcome:
        if value is not _UNSET:
            self.update_draft(value)
        if not self._started:
            raise GuardViolation(f"{self.name}: nothing to commit, begin_edit() was never called")

        pending = copy.deepcopy(self._current)
        if self._state is FieldState.SAVING:
            return await self._enqueue(pending)
        if pending == self._confirmed:
            self._cancel_settle()
            self._state = FieldState.IDLE
            return CommitOutcome.NOOP

        # The save belongs to the field, not to the caller: cancelling the caller
        # neither aborts the request nor strands values queued behind it.
        self._mark_saving()
        task = asyncio.ensure_future(self._run(pending))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.debug("%s: caller went away, save continues", self.name)
            task.add_done_callback(_discard_result)
            raise

    async def _enqueue(self, value: T) -> CommitOutcome:
        if self._queued is not None:
            _, previous = self._queued
            if not previous.done():
                previous.set_result(CommitOutcome.SUPERSEDED)
        future = asyncio.get_running_loop().create_future()
        self._queued = (value, future)
        return await future

    async def _run(self, value: T) -> CommitOutcome:
        try:
            outcome = await self._attempt(value)
        except BaseException:
            self._drop_queued()
            raise
        if outcome is CommitOutcome.ROLLED_BACK:
            self._drop_queued()
            return outcome

        if self._queued is not None:
            queued_value, future = self._queued
            self._queued = None
            if queued_value == self._confirmed:
                if not future.done():
                    future.set_result(CommitOutcome.NOOP)
            else:
                try:
                    result = await self._run(queued_value)
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as exc:
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)
        return outcome

    def _mark_saving(self) -> None:
        self._cancel_settle()
        self._state = FieldState.SAVING
        self._error = None

    async def _attempt(self, value: T) -> CommitOutcome:
        self._mark_saving()
        try:
            await self._persist(copy.deepcopy(value))
        except TransientError as exc:
            self._rollback(exc)
            return CommitOutcome.ROLLED_BACK
        except BaseException as exc:
            self._rollback(exc)
            raise

        self._confirmed = value
        if self._current == value or self._queued is not None:
            self._state = FieldState.SUCCESS
            self._schedule_settle(self._success_grace)
        else:
            # The user kept typing while the save was in flight; keep the draft open.
            self._state = FieldState.EDITING
        logger.debug("%s saved", self.name)
        if self._on_success is not None:
            self._on_success(copy.deepcopy(value))
        return CommitOutcome.SAVED

    def _rollback(self, exc: BaseException) -> None:
        self._current = copy.deepcopy(self._confirmed)
        self._state = FieldState.ERROR
        self._error = str(exc) or exc.__class__.__name__
        self.last_error = exc
        logger.warning("%s rolled back: %s", self.name, self._error)
        self._schedule_settle(self._error_grace)
        if self._on_rollback is not None:
            self._on_rollback(exc, copy.deepcopy(self._confirmed))

    def _drop_queued(self) -> None:
        # A queued value was built on top of the value that just failed.
        if self._queued is None:
            return
        _, future = self._queued
        self._queued = None
        if not future.done():
            future.set_result(CommitOutcome.ROLLED_BACK)

    def _schedule_settle(self, delay: float) -> None:
        self._cancel_settle()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._settle(self._state)
            return
        self._settle_handle = loop.call_later(max(0.0, delay), self._settle, self._state)

    def _settle(self, expected: FieldState) -> None:
        self._settle_handle = None
        if self._state is expected:
            self._state = FieldState.IDLE
            self._error = None

    def _cancel_settle(self) -> None:
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None
