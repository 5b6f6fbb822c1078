"""Per-user JSON documents behind the sync service.

One document per user under ``<root>/remote/<user_id>.json``::

    {
      "userId": "...",
      "goal": {...},
      "streakState": {...},
      "sessions": {"<session id>": {"session": {...}, "outcome": {...}}},
      "order": ["<newest session id>", ...]
    }

Every mutation is a locked read-modify-write of that document.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from habitsync.fileio import locked_update, read_json
from habitsync.models import GoalPreference, SessionOutcome, SessionRecord, StreakState
from habitsync.store import apply_goal_update
from habitsync.workspace import remote_dir, workspace_root

logger = logging.getLogger(__name__)

USER_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


@dataclass(frozen=True)
class CommitResult:
    status: str  # created | exists | conflict
    outcome: SessionOutcome | None
    streak_state: StreakState


class DocumentStore:
    def __init__(self, root: Path | None = None) -> None:
        self.root = root or workspace_root()

    def _path(self, user_id: str) -> Path:
        if not USER_ID_RE.match(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")
        return remote_dir(self.root) / f"{user_id}.json"

    def _read(self, user_id: str) -> dict[str, Any]:
        return read_json(self._path(user_id))

    def get_record(self, user_id: str, session_id: str) -> SessionRecord | None:
        raw = (self._read(user_id).get("sessions") or {}).get(session_id)
        return SessionRecord.from_dict(raw) if raw else None

    def streak(self, user_id: str) -> StreakState:
        return StreakState.from_dict(self._read(user_id).get("streakState"))

    def goal(self, user_id: str) -> GoalPreference:
        return GoalPreference.from_dict(self._read(user_id).get("goal"))

    def history(self, user_id: str, limit: int | None = None) -> list[SessionRecord]:
        doc = self._read(user_id)
        sessions = doc.get("sessions") or {}
        order = doc.get("order") or []
        if limit is not None:
            order = order[:limit]
        return [SessionRecord.from_dict(sessions[sid]) for sid in order if sid in sessions]

    def commit(
        self,
        user_id: str,
        record: SessionRecord,
        streak_state: StreakState,
        base_revision: int,
    ) -> CommitResult:
        """Store a session, its outcome and the new streak state together.

        A known session id returns the stored outcome untouched. A base
        revision that no longer matches returns ``conflict`` with the current
        streak state so the caller can recompute.
        """
        result: dict[str, CommitResult] = {}
        session_id = record.session.id

        def mutate(doc: dict[str, Any]) -> dict[str, Any] | None:
            sessions = doc.setdefault("sessions", {})
            current = StreakState.from_dict(doc.get("streakState"))
            if session_id in sessions:
                stored = SessionRecord.from_dict(sessions[session_id])
                result["r"] = CommitResult("exists", stored.outcome, current)
                return None
            if current.revision != base_revision:
                result["r"] = CommitResult("conflict", None, current)
                return None
            streak_state.revision = base_revision + 1
            doc["userId"] = user_id
            sessions[session_id] = record.to_dict()
            doc["order"] = [session_id] + list(doc.get("order") or [])
            doc["streakState"] = streak_state.to_dict()
            result["r"] = CommitResult("created", record.outcome, streak_state)
            return doc

        locked_update(self._path(user_id), mutate)
        outcome = result["r"]
        logger.debug("Commit %s for %s: %s", session_id, user_id, outcome.status)
        return outcome

    def patch_goal(
        self,
        user_id: str,
        field: str,
        value: Any,
        *,
        source: str,
        updated_at: datetime,
    ) -> GoalPreference:
        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            current = GoalPreference.from_dict(doc.get("goal"))
            doc["userId"] = user_id
            doc["goal"] = apply_goal_update(current, field, value, source=source, updated_at=updated_at).to_dict()
            return doc

        return GoalPreference.from_dict(locked_update(self._path(user_id), mutate).get("goal"))

    def import_records(
        self,
        user_id: str,
        records: list[SessionRecord],
        streak_state: StreakState | None,
        goal: GoalPreference | None,
    ) -> int:
        """Merge promoted guest data; records arrive oldest first."""
        imported: dict[str, int] = {"n": 0, "points": 0}

        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            sessions = doc.setdefault("sessions", {})
            order = list(doc.get("order") or [])
            for record in records:
                if record.session.id in sessions:
                    continue
                sessions[record.session.id] = record.to_dict()
                order.insert(0, record.session.id)
                imported["n"] += 1
                imported["points"] += record.outcome.total_points
            doc["order"] = order
            doc["userId"] = user_id
            current = StreakState.from_dict(doc.get("streakState"))
            if imported["n"]:
                # A fresh account adopts the guest's streaks; an existing one
                # keeps its own and only gains the points.
                if streak_state is not None and current.revision == 0:
                    streak_state.revision = 1
                    doc["streakState"] = streak_state.to_dict()
                else:
                    current.total_points += imported["points"]
                    current.revision += 1
                    doc["streakState"] = current.to_dict()
            if goal is not None and not doc.get("goal"):
                doc["goal"] = goal.to_dict()
            return doc

        locked_update(self._path(user_id), mutate)
        return imported["n"]
