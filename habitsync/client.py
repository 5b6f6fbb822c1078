"""Presentation-facing entry point.

    client = await HabitClient.open()              # guest on this install
    client = await HabitClient.open(user_id="u1")  # signed-in user

    session_id = client.trigger_session_end(actual_duration_sec=130)
    client.subscribe(Topic.OUTCOME_COMMITTED, session_id, show_outcome)

The session-end call returns as soon as the estimate is published; the
authoritative outcome follows on the bus.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from habitsync.bus import EventBus, Handler, Topic
from habitsync.config import Settings, load_settings
from habitsync.coordinator import SaveCoordinator, SaveState
from habitsync.goals import GoalSyncService
from habitsync.local_store import guest_identity
from habitsync.models import GoalPreference, Identity, PendingMutation, Session, SessionOutcome, SessionRecord
from habitsync.scoring import compute_outcome, validate_session_input
from habitsync.store import HabitStore, open_store

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


class HabitClient:
    def __init__(self, store: HabitStore, bus: EventBus, settings: Settings) -> None:
        self.store = store
        self.bus = bus
        self.settings = settings
        self.coordinator = SaveCoordinator(store, bus)
        self.goal_sync = GoalSyncService(store, bus, timeout=settings.commit_timeout)

    @classmethod
    async def open(
        cls,
        user_id: str | None = None,
        root: Path | None = None,
        bus: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> HabitClient:
        """Resolve the identity, pick its store and load the current goals."""
        settings = load_settings(root)
        identity = Identity(user_id=user_id) if user_id else guest_identity(root)
        store = open_store(identity, settings, root, http_client=http_client)
        client = cls(store, bus or EventBus(settings.bus_cache_size), settings)
        await store.get_streak_state()
        await client.goal_sync.load()
        logger.info("Opened habit client for %s", identity.key)
        return client

    @property
    def identity(self) -> Identity:
        return self.store.identity

    @property
    def goals(self) -> GoalPreference:
        return self.goal_sync.goals

    def estimate(self, session: Session) -> SessionOutcome:
        """Optimistic outcome from the last streak state this client saw."""
        return compute_outcome(session, self.store.last_known_streak, self.settings.day_boundary)

    def trigger_session_end(
        self,
        actual_duration_sec: int,
        target_duration_sec: int | None = None,
        aimed_sessions_per_day: int | None = None,
    ) -> str:
        """Record a finished session in the background and return its id.

        Target and aim default to the current goals. Raises ValidationError
        before anything is published or persisted.
        """
        goals = self.goal_sync.goals
        if target_duration_sec is None:
            target_duration_sec = goals.target_duration_sec
        if aimed_sessions_per_day is None:
            aimed_sessions_per_day = goals.daily_frequency
        validate_session_input(actual_duration_sec, target_duration_sec, aimed_sessions_per_day)

        session = Session(
            id=uuid.uuid4().hex,
            identity=self.identity,
            actual_duration_sec=actual_duration_sec,
            target_duration_sec=target_duration_sec,
            aimed_sessions_per_day=aimed_sessions_per_day,
            occurred_at=datetime.now(self.settings.tz),
        )
        self.bus.publish(Topic.OUTCOME_ESTIMATED, session.id, self.estimate(session))
        self.coordinator.submit(session)
        return session.id

    def subscribe(self, topic: Topic, key: str, handler: Handler) -> Callable[[], None]:
        return self.bus.subscribe(topic, key, handler)

    def set_preference(self, field: str, value: Any, *, source: str = "user") -> PendingMutation:
        return self.goal_sync.set_preference(field, value, source=source)

    async def get_current_goals(self) -> GoalPreference:
        """Re-read goals from the store; pending local changes stay visible."""
        return await self.goal_sync.refresh()

    def discard(self, session_id: str) -> bool:
        return self.coordinator.discard(session_id)

    def save_state(self, session_id: str) -> SaveState | None:
        return self.coordinator.state_of(session_id)

    async def history(self, limit: int | None = None) -> list[SessionRecord]:
        return await self.store.get_history(limit)

    async def aclose(self) -> None:
        """Let in-flight commits finish, then release the store."""
        await self.coordinator.drain()
        await self.goal_sync.drain()
        await self.store.aclose()
