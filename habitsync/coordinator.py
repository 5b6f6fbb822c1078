"""Background save coordinator: compute → persist → notify, off the caller's path.

The caller (a session-end trigger) gets control back immediately and can move
on to the results view; the commit runs as an asyncio task and its result is
published on the event bus under the session id:

    started -> computing -> committed | failed

- ``Topic.OUTCOME_COMMITTED``     payload: SessionOutcome
- ``Topic.OUTCOME_COMMIT_FAILED`` payload: CommitFailure

Repeated submits for a session that is still in flight share one task.
Discarding only tags the published event; the commit always completes.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass

from habitsync.bus import EventBus, Topic
from habitsync.errors import CommitFailure, ValidationError
from habitsync.models import Session, SessionOutcome
from habitsync.scoring import validate_session
from habitsync.store import HabitStore

logger = logging.getLogger(__name__)

# Final states kept for state_of() after a commit has been forgotten
MAX_FINISHED = 256


class SaveState(str, enum.Enum):
    STARTED = "started"
    COMPUTING = "computing"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class CommitResult:
    session_id: str
    state: SaveState
    outcome: SessionOutcome | None = None
    error: CommitFailure | None = None
    discardable: bool = False

    @property
    def ok(self) -> bool:
        return self.state is SaveState.COMMITTED


@dataclass
class _InFlight:
    session: Session
    state: SaveState = SaveState.STARTED
    discardable: bool = False
    task: asyncio.Task[CommitResult] | None = None


class SaveCoordinator:
    def __init__(self, store: HabitStore, bus: EventBus) -> None:
        self._store = store
        self._bus = bus
        self._inflight: dict[str, _InFlight] = {}
        self._finished: OrderedDict[str, SaveState] = OrderedDict()

    def submit(self, session: Session) -> asyncio.Task[CommitResult]:
        """Start committing *session* and return without waiting.

        Raises ValidationError synchronously for malformed input. Must be
        called from inside a running event loop.
        """
        validate_session(session)
        current = self._inflight.get(session.id)
        if current is not None and current.task is not None:
            logger.debug("Coalescing repeated submit for session %s", session.id)
            return current.task

        entry = _InFlight(session=session)
        self._inflight[session.id] = entry
        entry.task = asyncio.get_running_loop().create_task(
            self._commit(entry), name=f"commit-{session.id}"
        )
        logger.debug("Session %s -> %s", session.id, entry.state.value)
        return entry.task

    async def _commit(self, entry: _InFlight) -> CommitResult:
        session_id = entry.session.id
        entry.state = SaveState.COMPUTING
        logger.debug("Session %s -> %s", session_id, entry.state.value)

        outcome: SessionOutcome | None = None
        error: CommitFailure | None = None
        try:
            outcome = await self._store.record_session(entry.session)
        except CommitFailure as e:
            error = e
        except ValidationError as e:
            error = CommitFailure(str(e), retryable=False)
        except Exception as e:
            logger.exception("Unexpected error committing session %s", session_id)
            error = CommitFailure(f"unexpected error: {e}", retryable=False)

        entry.state = SaveState.FAILED if error else SaveState.COMMITTED
        self._inflight.pop(session_id, None)
        self._remember(session_id, entry.state)

        result = CommitResult(
            session_id=session_id,
            state=entry.state,
            outcome=outcome,
            error=error,
            discardable=entry.discardable,
        )
        if error is None:
            logger.info("Session %s committed", session_id)
            self._bus.publish(Topic.OUTCOME_COMMITTED, session_id, outcome, discardable=entry.discardable)
        else:
            logger.warning("Session %s failed to commit: %s", session_id, error.reason)
            self._bus.publish(Topic.OUTCOME_COMMIT_FAILED, session_id, error, discardable=entry.discardable)
        return result

    def _remember(self, session_id: str, state: SaveState) -> None:
        self._finished[session_id] = state
        self._finished.move_to_end(session_id)
        while len(self._finished) > MAX_FINISHED:
            self._finished.popitem(last=False)

    def discard(self, session_id: str) -> bool:
        """Tag an in-flight commit's result as discardable. The commit still runs."""
        entry = self._inflight.get(session_id)
        if entry is None:
            return False
        entry.discardable = True
        logger.debug("Session %s marked discardable", session_id)
        return True

    def state_of(self, session_id: str) -> SaveState | None:
        entry = self._inflight.get(session_id)
        if entry is not None:
            return entry.state
        return self._finished.get(session_id)

    def in_flight(self) -> list[str]:
        return list(self._inflight)

    async def wait(self, session_id: str) -> CommitResult | None:
        entry = self._inflight.get(session_id)
        if entry is None or entry.task is None:
            return None
        return await entry.task

    async def drain(self) -> list[CommitResult]:
        """Wait for every in-flight commit (used on shutdown)."""
        tasks = [e.task for e in self._inflight.values() if e.task is not None]
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))
