"""Store contract and the single place that picks a store for an identity.

A durable identity (signed-in user) gets the remote store; a guest gets the
local, on-device store. The choice is made once, when the client opens, and
business logic only ever sees a ``HabitStore``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from habitsync.errors import ValidationError
from habitsync.models import (
    FIELD_DAILY_FREQUENCY,
    FIELD_TIME_TARGET,
    GoalPreference,
    Identity,
    Session,
    SessionOutcome,
    SessionRecord,
    StreakState,
)

if TYPE_CHECKING:
    import httpx

    from habitsync.config import Settings

logger = logging.getLogger(__name__)


@runtime_checkable
class HabitStore(Protocol):
    identity: Identity
    last_known_streak: StreakState

    async def record_session(self, session: Session) -> SessionOutcome: ...

    async def get_current_goals(self) -> GoalPreference: ...

    async def update_goal(
        self,
        field: str,
        value: Any,
        *,
        source: str = "user",
        updated_at: datetime | None = None,
    ) -> GoalPreference: ...

    async def get_streak_state(self) -> StreakState: ...

    async def get_history(self, limit: int | None = None) -> list[SessionRecord]: ...

    async def aclose(self) -> None: ...


def validate_goal_value(field: str, value: Any) -> float | int:
    """Normalize a goal value, raising ValidationError if it is unusable."""
    if field == FIELD_TIME_TARGET:
        try:
            minutes = float(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{field} must be a number, got {value!r}") from e
        if minutes <= 0:
            raise ValidationError(f"{field} must be positive, got {value!r}")
        return minutes
    if field == FIELD_DAILY_FREQUENCY:
        whole = isinstance(value, int) or (isinstance(value, float) and value.is_integer())
        if isinstance(value, bool) or not whole:
            raise ValidationError(f"{field} must be a whole number, got {value!r}")
        if int(value) < 1:
            raise ValidationError(f"{field} must be at least 1, got {value!r}")
        return int(value)
    raise ValidationError(f"Unknown goal field: {field!r}")


def apply_goal_update(
    current: GoalPreference,
    field: str,
    value: Any,
    *,
    source: str,
    updated_at: datetime,
) -> GoalPreference:
    """Last writer wins on ``updated_at``; an older write leaves *current* as is."""
    value = validate_goal_value(field, value)
    if current.updated_at is not None and updated_at < current.updated_at:
        logger.debug("Ignoring stale %s write from %s", field, updated_at.isoformat())
        return current
    return current.with_value(field, value, source=source, updated_at=updated_at)


def open_store(
    identity: Identity,
    settings: Settings,
    root: Path | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> HabitStore:
    """Resolve the one store implementation for *identity*."""
    if identity.is_durable:
        from habitsync.remote_store import RemoteStore

        logger.debug("Using remote store for %s", identity.key)
        credentials = None
        if settings.remote_username and settings.remote_password:
            credentials = (settings.remote_username, settings.remote_password)
        return RemoteStore(
            identity,
            base_url=settings.remote_url,
            boundary=settings.day_boundary,
            timeout=settings.request_timeout,
            client=http_client,
            credentials=credentials,
        )

    from habitsync.local_store import LocalStore

    logger.debug("Using local store for %s", identity.key)
    return LocalStore(
        identity,
        root=root,
        boundary=settings.day_boundary,
        history_limit=settings.history_limit,
    )
