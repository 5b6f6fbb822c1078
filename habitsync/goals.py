"""Goal preferences with optimistic local updates.

``set_preference`` changes the observable goals at once, then commits to the
store in the background. A failed or timed-out commit puts the field back to
its last confirmed value and reports a PreferenceCommitError. A newer change
to the same field supersedes an older one still in flight: the older result
is ignored when it arrives, so it can never roll back over a newer value.

Events (all keyed as noted):
- ``Topic.GOALS_CHANGED``          key identity  payload GoalPreference
- ``Topic.PREFERENCE_COMMITTED``   key field     payload PendingMutation
- ``Topic.PREFERENCE_ROLLED_BACK`` key field     payload PreferenceCommitError
- ``Topic.REMINDERS_RESCHEDULE``   key identity  payload GoalPreference
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from habitsync.bus import EventBus, Topic
from habitsync.errors import CommitFailure, PreferenceCommitError, ValidationError
from habitsync.models import GOAL_FIELDS, GoalPreference, MutationStatus, PendingMutation
from habitsync.reminders import needs_reschedule
from habitsync.store import HabitStore, validate_goal_value

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_TIMEOUT = 8.0
GOAL_SOURCES = ("user", "system")

T = TypeVar("T")
A = TypeVar("A")


class OptimisticMutation(Generic[T, A]):
    """Apply a value locally, commit it remotely, revert on failure or timeout.

    Args:
        field: Name of the value being changed
        previous_value: Value shown before the change
        new_value: Value being applied
        apply: Puts a value into the local observable state
        revert: Restores the local state and returns the value restored
        commit: Performs the remote write and returns its acknowledgement
        timeout: Seconds to wait for *commit* before treating it as failed
        on_commit: Called with the ack and whether this mutation was superseded
        on_failure: Called with the error after a revert
    """

    def __init__(
        self,
        field: str,
        previous_value: T,
        new_value: T,
        *,
        apply: Callable[[T], None],
        revert: Callable[[], T],
        commit: Callable[[], Awaitable[A]],
        timeout: float,
        on_commit: Callable[[A, bool], None] | None = None,
        on_failure: Callable[[PreferenceCommitError], None] | None = None,
    ) -> None:
        self.record = PendingMutation(field=field, previous_value=previous_value, new_value=new_value)
        self._apply = apply
        self._revert = revert
        self._commit = commit
        self._timeout = timeout
        self._on_commit = on_commit
        self._on_failure = on_failure

    @property
    def superseded(self) -> bool:
        return self.record.status is MutationStatus.SUPERSEDED

    def apply(self) -> None:
        self._apply(self.record.new_value)

    def supersede(self) -> None:
        if self.record.status is MutationStatus.PENDING:
            self.record.status = MutationStatus.SUPERSEDED

    async def run(self) -> PendingMutation:
        field = self.record.field
        try:
            ack = await asyncio.wait_for(self._commit(), timeout=self._timeout)
        except asyncio.TimeoutError:
            error: CommitFailure = CommitFailure(f"no answer within {self._timeout:g}s")
        except CommitFailure as e:
            error = e
        except ValidationError as e:
            error = CommitFailure(str(e), retryable=False)
        except Exception as e:
            logger.exception("Unexpected error committing %s", field)
            error = CommitFailure(f"unexpected error: {e}", retryable=False)
        else:
            if not self.superseded:
                self.record.status = MutationStatus.COMMITTED
            else:
                logger.debug("Superseded %s mutation committed late; keeping newer value", field)
            if self._on_commit is not None:
                self._on_commit(ack, self.superseded)
            return self.record

        if self.superseded:
            logger.debug("Superseded %s mutation failed late (%s); nothing to roll back", field, error.reason)
            self.record.error = error
            return self.record

        restored = self._revert()
        self.record.status = MutationStatus.FAILED
        self.record.error = PreferenceCommitError(field, self.record.new_value, restored, error.reason)
        logger.warning(
            "Rolled back %s from %r to %r: %s", field, self.record.new_value, restored, error.reason
        )
        if self._on_failure is not None:
            self._on_failure(self.record.error)
        return self.record


class GoalSyncService:
    """Observable goal preferences for one identity."""

    def __init__(self, store: HabitStore, bus: EventBus, *, timeout: float = DEFAULT_COMMIT_TIMEOUT) -> None:
        self._store = store
        self._bus = bus
        self._timeout = timeout
        self._key = store.identity.key
        self._goals = GoalPreference()
        self._confirmed = GoalPreference()
        self._mutations: dict[str, OptimisticMutation[Any, GoalPreference]] = {}
        self._tasks: dict[str, asyncio.Task[PendingMutation]] = {}

    @property
    def goals(self) -> GoalPreference:
        """Goals as the UI should show them right now (may include pending changes)."""
        return self._goals

    @property
    def confirmed(self) -> GoalPreference:
        return self._confirmed

    def pending(self, field: str) -> PendingMutation | None:
        mutation = self._mutations.get(field)
        if mutation is None or mutation.record.resolved:
            return None
        return mutation.record

    async def load(self) -> GoalPreference:
        """Read the authoritative goals; fields with a pending change keep it."""
        authoritative = await self._store.get_current_goals()
        self._confirmed = authoritative
        shown = authoritative
        for field in GOAL_FIELDS:
            if self.pending(field) is not None:
                shown = shown.with_value(
                    field, self._goals.get(field), source=self._goals.source,
                    updated_at=self._goals.updated_at or datetime.now(timezone.utc),
                )
        self._show(shown)
        return shown

    refresh = load

    def set_preference(self, field: str, value: Any, *, source: str = "user") -> PendingMutation:
        """Apply *value* now and commit it in the background.

        Raises ValidationError synchronously for an unknown field, a bad value
        or an unknown source. Must be called from inside a running event loop.
        """
        if source not in GOAL_SOURCES:
            raise ValidationError(f"source must be one of {GOAL_SOURCES}, got {source!r}")
        value = validate_goal_value(field, value)
        stamp = datetime.now(timezone.utc)

        earlier = self._mutations.get(field)
        if earlier is not None and not earlier.record.resolved:
            earlier.supersede()
            logger.debug("New %s change supersedes %r", field, earlier.record.new_value)

        mutation: OptimisticMutation[Any, GoalPreference] = OptimisticMutation(
            field,
            self._goals.get(field),
            value,
            apply=lambda v: self._show(self._goals.with_value(field, v, source=source, updated_at=stamp)),
            revert=lambda: self._revert(field),
            commit=lambda: self._store.update_goal(field, value, source=source, updated_at=stamp),
            timeout=self._timeout,
            on_commit=lambda ack, superseded: self._committed(field, ack, superseded),
            on_failure=lambda error: self._bus.publish(Topic.PREFERENCE_ROLLED_BACK, field, error),
        )
        mutation.apply()
        self._mutations[field] = mutation
        self._tasks[field] = asyncio.get_running_loop().create_task(
            mutation.run(), name=f"goal-{field}"
        )
        return mutation.record

    async def wait(self, field: str) -> PendingMutation | None:
        task = self._tasks.get(field)
        if task is None:
            return None
        return await task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks.values())

    def _show(self, goals: GoalPreference) -> None:
        self._goals = goals
        self._bus.publish(Topic.GOALS_CHANGED, self._key, goals)

    def _revert(self, field: str) -> Any:
        restored = self._confirmed.get(field)
        self._show(
            self._goals.with_value(
                field, restored, source=self._confirmed.source,
                updated_at=self._confirmed.updated_at or datetime.now(timezone.utc),
            )
        )
        return restored

    def _committed(self, field: str, ack: GoalPreference, superseded: bool) -> None:
        before = self._confirmed
        self._confirmed = before.with_value(
            field, ack.get(field), source=ack.source,
            updated_at=ack.updated_at or datetime.now(timezone.utc),
        )
        if superseded:
            # Once the newer change has settled, the late ack is the store's value.
            latest = self._mutations.get(field)
            if latest is not None and latest.record.resolved and ack.get(field) != self._goals.get(field):
                logger.info("Late commit settled %s at %r", field, ack.get(field))
                self._show(self._goals.with_value(field, ack.get(field), source=ack.source,
                                                  updated_at=self._confirmed.updated_at or datetime.now(timezone.utc)))
            return

        # The store may hold a newer write from elsewhere; show what it kept.
        if ack.get(field) != self._goals.get(field):
            logger.info("Store kept %s=%r over local %r", field, ack.get(field), self._goals.get(field))
            self._show(self._goals.with_value(field, ack.get(field), source=ack.source,
                                              updated_at=self._confirmed.updated_at or datetime.now(timezone.utc)))

        mutation = self._mutations[field]
        self._bus.publish(Topic.PREFERENCE_COMMITTED, field, mutation.record)
        if needs_reschedule(before, self._confirmed):
            self._bus.publish(Topic.REMINDERS_RESCHEDULE, self._key, self._confirmed)
