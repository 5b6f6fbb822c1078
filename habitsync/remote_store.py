"""Remote store for signed-in users, talking to the sync service over HTTP.

Connectivity failures (transport errors, 5xx) are retried exactly once and
then surface as CommitFailure. Recording a session is safe to retry: the
service answers a repeated session id with the outcome it already stored.

Streak state on the service carries a revision. A commit names the revision
it was computed from; if another session got there first the service answers
409 with the current state and the outcome is recomputed from it, a bounded
number of times.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from habitsync.errors import CommitFailure, ConflictError, ValidationError
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
from habitsync.store import validate_goal_value

logger = logging.getLogger(__name__)

MAX_CONFLICT_ATTEMPTS = 3


class RemoteStore:
    """HabitStore backed by the sync service."""

    def __init__(
        self,
        identity: Identity,
        *,
        base_url: str,
        boundary: DayBoundary | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        credentials: tuple[str, str] | None = None,
    ) -> None:
        if not identity.is_durable:
            raise ValueError("RemoteStore needs a durable identity")
        self.identity = identity
        self.last_known_streak = StreakState()
        self._boundary = boundary or DayBoundary()
        self._prefix = f"/v1/users/{identity.user_id}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            auth=httpx.BasicAuth(*credentials) if credentials else None,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = self._prefix + path
        for attempt in (1, 2):
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt == 1:
                    logger.warning("%s %s failed (%s), retrying once", method, url, e)
                    continue
                raise CommitFailure(f"{method} {url} failed: {e}") from e
            if response.status_code >= 500:
                if attempt == 1:
                    logger.warning("%s %s returned %d, retrying once", method, url, response.status_code)
                    continue
                raise CommitFailure(f"{method} {url} returned {response.status_code}")
            return response
        raise AssertionError("unreachable")

    @staticmethod
    def _json(response: httpx.Response, *expected: int) -> dict[str, Any]:
        if response.status_code not in expected:
            raise CommitFailure(
                f"{response.request.method} {response.request.url.path} returned "
                f"{response.status_code}: {response.text[:200]}",
                retryable=False,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise CommitFailure(f"malformed response from {response.request.url.path}") from e
        if not isinstance(data, dict):
            raise CommitFailure(f"unexpected response shape from {response.request.url.path}")
        return data

    async def record_session(self, session: Session) -> SessionOutcome:
        if session.identity != self.identity:
            raise ValidationError(f"session {session.id} belongs to {session.identity.key}, not {self.identity.key}")
        validate_session(session)

        response = await self._request("GET", f"/sessions/{session.id}")
        if response.status_code == 200:
            known = SessionRecord.from_dict(self._json(response, 200))
            logger.debug("Session %s already recorded remotely", session.id)
            return known.outcome
        if response.status_code != 404:
            self._json(response, 200, 404)

        prior = await self.get_streak_state()
        for attempt in range(1, MAX_CONFLICT_ATTEMPTS + 1):
            outcome, state = score_session(prior, session, self._boundary)
            payload = SessionRecord(session=session, outcome=outcome).to_dict()
            payload["streakState"] = state.to_dict()
            payload["baseRevision"] = prior.revision

            response = await self._request("PUT", f"/sessions/{session.id}", json=payload)
            if response.status_code == 409:
                prior = StreakState.from_dict(self._json(response, 409).get("streakState"))
                self.last_known_streak = prior
                logger.debug(
                    "Streak revision moved while recording %s (attempt %d), recomputing",
                    session.id, attempt,
                )
                continue

            body = self._json(response, 200, 201)
            self.last_known_streak = StreakState.from_dict(body.get("streakState"))
            stored = SessionOutcome.from_dict(body.get("outcome") or {})
            logger.info(
                "Recorded remote session %s: %d points, time streak %d, daily streak %d",
                session.id, stored.total_points, stored.time_streak, stored.daily_streak,
            )
            return stored

        raise ConflictError(f"streak state kept changing while recording {session.id}")

    async def get_current_goals(self) -> GoalPreference:
        response = await self._request("GET", "/goals")
        return GoalPreference.from_dict(self._json(response, 200))

    async def update_goal(
        self,
        field: str,
        value: Any,
        *,
        source: str = "user",
        updated_at: datetime | None = None,
    ) -> GoalPreference:
        value = validate_goal_value(field, value)
        stamp = updated_at or datetime.now(timezone.utc)
        response = await self._request(
            "PATCH",
            "/goals",
            json={"field": field, "value": value, "source": source, "updatedAt": stamp.isoformat()},
        )
        return GoalPreference.from_dict(self._json(response, 200))

    async def get_streak_state(self) -> StreakState:
        response = await self._request("GET", "/streak")
        state = StreakState.from_dict(self._json(response, 200))
        self.last_known_streak = state
        return state

    async def get_history(self, limit: int | None = None) -> list[SessionRecord]:
        params = {"limit": limit} if limit is not None else None
        response = await self._request("GET", "/history", params=params)
        return [SessionRecord.from_dict(r) for r in self._json(response, 200).get("records") or []]

    async def import_guest(self, record: LocalRecord) -> int:
        """Send a guest's history (oldest first), streak state and goal."""
        payload = {
            "records": [r.to_dict() for r in reversed(record.history)],
            "streakState": record.streak_state.to_dict(),
            "goal": record.current_goal.to_dict(),
        }
        response = await self._request("POST", "/import", json=payload)
        return int(self._json(response, 200).get("imported", 0))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
