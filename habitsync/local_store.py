"""On-device store for guest installs.

Everything a guest has lives in one JSON blob (``data/local_record.json``):
current goal, streak state and a bounded history, newest first. Each write
is a locked read-modify-write of that blob, so a session, its outcome and
the new streak state land together or not at all.

The guest tag lives in ``data/install.json`` and is created once per install.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from habitsync.errors import CommitFailure, ValidationError
from habitsync.fileio import locked_update, read_json
from habitsync.models import (
    GoalPreference,
    Identity,
    LocalRecord,
    Session,
    SessionOutcome,
    SessionRecord,
    StreakState,
)
from habitsync.scoring import DayBoundary, score_session, validate_session
from habitsync.store import apply_goal_update, validate_goal_value
from habitsync.workspace import install_path, local_record_path

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def load_guest_tag(root: Path | None = None) -> str:
    """Return this install's guest tag, creating it on first use."""

    def mutate(doc: dict[str, Any]) -> dict[str, Any] | None:
        if doc.get("guestTag"):
            return None
        doc["guestTag"] = uuid.uuid4().hex
        doc["createdAt"] = datetime.now(timezone.utc).isoformat(timespec="seconds")
        logger.info("Created guest tag %s", doc["guestTag"])
        return doc

    return str(locked_update(install_path(root), mutate)["guestTag"])


def guest_identity(root: Path | None = None) -> Identity:
    return Identity(guest_tag=load_guest_tag(root))


class LocalStore:
    """HabitStore backed by the guest blob."""

    def __init__(
        self,
        identity: Identity,
        root: Path | None = None,
        boundary: DayBoundary | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        if identity.is_durable:
            raise ValueError("LocalStore only serves guest identities")
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self.identity = identity
        self._path = local_record_path(root)
        self._boundary = boundary or DayBoundary()
        self._history_limit = history_limit
        self.last_known_streak = self._read().streak_state

    def _read(self) -> LocalRecord:
        try:
            return LocalRecord.from_dict(read_json(self._path))
        except (OSError, ValueError) as e:
            raise CommitFailure(f"local record unreadable: {e}", retryable=False) from e

    def _update(self, mutate) -> LocalRecord:
        def apply(doc: dict[str, Any]) -> dict[str, Any] | None:
            record = LocalRecord.from_dict(doc)
            if not record.guest_tag:
                record.guest_tag = self.identity.guest_tag or ""
            if mutate(record) is False:
                return None
            return record.to_dict()

        try:
            return LocalRecord.from_dict(locked_update(self._path, apply))
        except ValidationError:
            raise
        except (OSError, ValueError) as e:
            raise CommitFailure(f"local write failed: {e}") from e

    async def record_session(self, session: Session) -> SessionOutcome:
        if session.identity != self.identity:
            raise ValidationError(f"session {session.id} belongs to {session.identity.key}, not {self.identity.key}")
        validate_session(session)

        result: dict[str, SessionOutcome] = {}

        def mutate(record: LocalRecord) -> bool:
            existing = record.find(session.id)
            if existing is not None:
                result["outcome"] = existing.outcome
                return False
            outcome, state = score_session(record.streak_state, session, self._boundary)
            record.streak_state = state
            record.history.insert(0, SessionRecord(session=session, outcome=outcome))
            evicted = len(record.history) - self._history_limit
            if evicted > 0:
                del record.history[self._history_limit:]
                logger.debug("Evicted %d oldest local sessions", evicted)
            result["outcome"] = outcome
            return True

        record = self._update(mutate)
        self.last_known_streak = record.streak_state
        outcome = result["outcome"]
        logger.info(
            "Recorded local session %s: %d points, time streak %d, daily streak %d",
            session.id, outcome.total_points, outcome.time_streak, outcome.daily_streak,
        )
        return outcome

    async def get_current_goals(self) -> GoalPreference:
        return self._read().current_goal

    async def update_goal(
        self,
        field: str,
        value: Any,
        *,
        source: str = "user",
        updated_at: datetime | None = None,
    ) -> GoalPreference:
        validate_goal_value(field, value)
        stamp = updated_at or datetime.now(timezone.utc)

        def mutate(record: LocalRecord) -> None:
            record.current_goal = apply_goal_update(
                record.current_goal, field, value, source=source, updated_at=stamp
            )

        return self._update(mutate).current_goal

    async def get_streak_state(self) -> StreakState:
        state = self._read().streak_state
        self.last_known_streak = state
        return state

    async def get_history(self, limit: int | None = None) -> list[SessionRecord]:
        history = self._read().history
        return history if limit is None else history[:limit]

    async def snapshot(self) -> LocalRecord:
        return self._read()

    async def clear_history(self) -> int:
        """Drop history and streak state (after promotion); goals are kept."""
        removed: dict[str, int] = {}

        def mutate(record: LocalRecord) -> None:
            removed["count"] = len(record.history)
            record.history = []
            record.streak_state = StreakState()

        self.last_known_streak = self._update(mutate).streak_state
        return removed["count"]

    async def aclose(self) -> None:
        return None
