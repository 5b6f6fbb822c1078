"""Shared test fixtures for habitsync tests."""

from __future__ import annotations

import asyncio
import os
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
import yaml

from habitsync.bus import EventBus
from habitsync.models import GoalPreference, Identity, Session, StreakState
from habitsync.remote_store import RemoteStore
from habitsync.scoring import DayBoundary, score_session
from habitsync.store import apply_goal_update
from syncservice.app import create_app

BASE_URL = "http://testserver"
USER = Identity(user_id="u1")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace with a settings file."""
    root = tmp_path / "workspace"
    (root / "data").mkdir(parents=True)

    settings = {
        "timezone": "UTC",
        "day_reset_hour": 3,
        "remote_url": BASE_URL,
        "commit_timeout": 2,
        "history_limit": 100,
    }
    (root / "settings.yaml").write_text(
        yaml.dump(settings, default_flow_style=False), encoding="utf-8"
    )

    # Set env var
    os.environ["HABITSYNC_ROOT"] = str(root)
    yield root
    # Cleanup
    if "HABITSYNC_ROOT" in os.environ:
        del os.environ["HABITSYNC_ROOT"]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


def make_session(
    session_id: str = "s1",
    identity: Identity = USER,
    actual: int = 130,
    target: int = 120,
    aimed: int = 1,
    occurred_at: datetime | None = None,
) -> Session:
    return Session(
        id=session_id,
        identity=identity,
        actual_duration_sec=actual,
        target_duration_sec=target,
        aimed_sessions_per_day=aimed,
        occurred_at=occurred_at or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
    )


# ── In-process sync service ───────────────────────────────────


@pytest.fixture
def service_app(workspace: Path):
    return create_app(workspace)


class FlakyTransport(httpx.AsyncBaseTransport):
    """Wraps a transport and fails the first *failures* requests."""

    def __init__(self, inner: httpx.AsyncBaseTransport, failures: int = 0, status: int | None = None) -> None:
        self.inner = inner
        self.failures = failures
        self.status = status
        self.requests: list[tuple[str, str]] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.failures > 0:
            self.failures -= 1
            if self.status is not None:
                return httpx.Response(self.status, json={"detail": "unavailable"})
            raise httpx.ConnectError("connection refused", request=request)
        return await self.inner.handle_async_request(request)


@pytest.fixture
def transport(service_app) -> FlakyTransport:
    return FlakyTransport(httpx.ASGITransport(app=service_app))


@pytest_asyncio.fixture
async def http_client(transport: FlakyTransport):
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
        yield client


@pytest.fixture
def remote_store(http_client: httpx.AsyncClient) -> RemoteStore:
    return RemoteStore(USER, base_url=BASE_URL, client=http_client)


# ── Scriptable in-memory store ────────────────────────────────


class FakeStore:
    """In-memory HabitStore whose calls can be held open or made to fail.

    Each call pops the next entry of ``record_gates`` / ``goal_gates`` (an
    asyncio.Event to wait on) and of ``record_failures`` / ``goal_failures``
    (an exception to raise, or None).
    """

    def __init__(self, identity: Identity | None = None) -> None:
        self.identity = identity or Identity(guest_tag="fake")
        self.last_known_streak = StreakState()
        self.goal = GoalPreference()
        self.records: dict = {}
        self.calls: list[tuple] = []
        self.record_gates: deque[asyncio.Event | None] = deque()
        self.record_failures: deque[Exception | None] = deque()
        self.goal_gates: deque[asyncio.Event | None] = deque()
        self.goal_failures: deque[Exception | None] = deque()
        self.closed = False

    @staticmethod
    async def _step(gates: deque, failures: deque) -> None:
        gate = gates.popleft() if gates else None
        failure = failures.popleft() if failures else None
        if gate is not None:
            await gate.wait()
        if failure is not None:
            raise failure

    async def record_session(self, session: Session):
        self.calls.append(("record_session", session.id))
        await self._step(self.record_gates, self.record_failures)
        if session.id in self.records:
            return self.records[session.id]
        outcome, state = score_session(self.last_known_streak, session, DayBoundary())
        self.records[session.id] = outcome
        self.last_known_streak = state
        return outcome

    async def get_current_goals(self) -> GoalPreference:
        return self.goal

    async def update_goal(self, field, value, *, source="user", updated_at=None) -> GoalPreference:
        self.calls.append(("update_goal", field, value))
        await self._step(self.goal_gates, self.goal_failures)
        self.goal = apply_goal_update(
            self.goal, field, value, source=source, updated_at=updated_at or datetime.now(timezone.utc)
        )
        return self.goal

    async def get_streak_state(self) -> StreakState:
        return self.last_known_streak

    async def get_history(self, limit=None):
        return []

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()
