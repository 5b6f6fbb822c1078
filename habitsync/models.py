"""Typed dataclasses for the habitsync data model.

All models use from_dict/to_dict for JSON serialization.
camelCase in JSON is mapped to snake_case in Python.
Unknown keys are ignored; missing keys use defaults.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any

FIELD_TIME_TARGET = "timeTargetMinutes"
FIELD_DAILY_FREQUENCY = "dailyFrequency"
GOAL_FIELDS = (FIELD_TIME_TARGET, FIELD_DAILY_FREQUENCY)

DEFAULT_TIME_TARGET_MINUTES = 2.0
DEFAULT_DAILY_FREQUENCY = 2


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif value:
        dt = datetime.fromisoformat(str(value))
    else:
        dt = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


# ── Identity ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Identity:
    """Who owns the data: an authenticated user or an on-device guest."""

    user_id: str | None = None
    guest_tag: str | None = None

    def __post_init__(self) -> None:
        if bool(self.user_id) == bool(self.guest_tag):
            raise ValueError("Identity needs exactly one of user_id or guest_tag")

    @property
    def is_durable(self) -> bool:
        return bool(self.user_id)

    @property
    def key(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}"
        return f"guest:{self.guest_tag}"

    @classmethod
    def from_key(cls, key: str) -> Identity:
        kind, _, value = key.partition(":")
        if kind == "user" and value:
            return cls(user_id=value)
        if kind == "guest" and value:
            return cls(guest_tag=value)
        raise ValueError(f"Invalid identity key: {key!r}")


# ── Sessions ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Session:
    """One completed timed activity. Immutable; ``id`` is the idempotency key."""

    id: str
    identity: Identity
    actual_duration_sec: int
    target_duration_sec: int
    aimed_sessions_per_day: int
    occurred_at: datetime

    @property
    def hit_target(self) -> bool:
        return self.actual_duration_sec >= self.target_duration_sec

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Session:
        return cls(
            id=str(d.get("id", "")),
            identity=Identity.from_key(str(d.get("identity", ""))),
            actual_duration_sec=int(d.get("actualDurationSec", 0)),
            target_duration_sec=int(d.get("targetDurationSec", 0)),
            aimed_sessions_per_day=int(d.get("aimedSessionsPerDay", 1)),
            occurred_at=_parse_datetime(d.get("occurredAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "identity": self.identity.key,
            "actualDurationSec": self.actual_duration_sec,
            "targetDurationSec": self.target_duration_sec,
            "aimedSessionsPerDay": self.aimed_sessions_per_day,
            "occurredAt": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class SessionOutcome:
    session_id: str
    base_points: int
    bonus_points: int
    total_points: int
    time_streak: int
    daily_streak: int

    def __post_init__(self) -> None:
        if self.total_points != self.base_points + self.bonus_points:
            raise ValueError("total_points must equal base_points + bonus_points")

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SessionOutcome:
        base = int(d.get("basePoints", 0))
        bonus = int(d.get("bonusPoints", 0))
        return cls(
            session_id=str(d.get("sessionId", "")),
            base_points=base,
            bonus_points=bonus,
            total_points=int(d.get("totalPoints", base + bonus)),
            time_streak=int(d.get("timeStreak", 0)),
            daily_streak=int(d.get("dailyStreak", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "basePoints": self.base_points,
            "bonusPoints": self.bonus_points,
            "totalPoints": self.total_points,
            "timeStreak": self.time_streak,
            "dailyStreak": self.daily_streak,
        }


@dataclass(frozen=True)
class SessionRecord:
    """A stored history entry."""

    session: Session
    outcome: SessionOutcome

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SessionRecord:
        return cls(
            session=Session.from_dict(d.get("session") or {}),
            outcome=SessionOutcome.from_dict(d.get("outcome") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"session": self.session.to_dict(), "outcome": self.outcome.to_dict()}


# ── Streak state ──────────────────────────────────────────────


@dataclass
class StreakState:
    time_streak: int = 0
    daily_streak: int = 0
    last_qualifying_date: date | None = None
    # target-hitting sessions counted on tally_date (the latest habit day seen)
    tally_date: date | None = None
    tally_count: int = 0
    total_points: int = 0
    best_daily_streak: int = 0
    revision: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> StreakState:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            time_streak=int(d.get("timeStreak", 0) or 0),
            daily_streak=int(d.get("dailyStreak", 0) or 0),
            last_qualifying_date=_parse_date(d.get("lastQualifyingDate")),
            tally_date=_parse_date(d.get("tallyDate")),
            tally_count=int(d.get("tallyCount", 0) or 0),
            total_points=int(d.get("totalPoints", 0) or 0),
            best_daily_streak=int(d.get("bestDailyStreak", 0) or 0),
            revision=int(d.get("revision", 0) or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeStreak": self.time_streak,
            "dailyStreak": self.daily_streak,
            "lastQualifyingDate": self.last_qualifying_date.isoformat() if self.last_qualifying_date else None,
            "tallyDate": self.tally_date.isoformat() if self.tally_date else None,
            "tallyCount": self.tally_count,
            "totalPoints": self.total_points,
            "bestDailyStreak": self.best_daily_streak,
            "revision": self.revision,
        }


# ── Goals ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class GoalPreference:
    time_target_minutes: float = DEFAULT_TIME_TARGET_MINUTES
    daily_frequency: int = DEFAULT_DAILY_FREQUENCY
    updated_at: datetime | None = None
    source: str = "system"  # user | system

    @property
    def target_duration_sec(self) -> int:
        return int(round(self.time_target_minutes * 60))

    def get(self, field_name: str) -> Any:
        if field_name == FIELD_TIME_TARGET:
            return self.time_target_minutes
        if field_name == FIELD_DAILY_FREQUENCY:
            return self.daily_frequency
        raise KeyError(field_name)

    def with_value(self, field_name: str, value: Any, *, source: str, updated_at: datetime) -> GoalPreference:
        if field_name == FIELD_TIME_TARGET:
            return replace(self, time_target_minutes=float(value), source=source, updated_at=updated_at)
        if field_name == FIELD_DAILY_FREQUENCY:
            return replace(self, daily_frequency=int(value), source=source, updated_at=updated_at)
        raise KeyError(field_name)

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> GoalPreference:
        if not d or not isinstance(d, dict):
            return cls()
        updated = d.get("updatedAt")
        return cls(
            time_target_minutes=float(d.get(FIELD_TIME_TARGET, DEFAULT_TIME_TARGET_MINUTES)),
            daily_frequency=int(d.get(FIELD_DAILY_FREQUENCY, DEFAULT_DAILY_FREQUENCY)),
            updated_at=_parse_datetime(updated) if updated else None,
            source=str(d.get("source", "system")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            FIELD_TIME_TARGET: self.time_target_minutes,
            FIELD_DAILY_FREQUENCY: self.daily_frequency,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "source": self.source,
        }


class MutationStatus(str, enum.Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


@dataclass
class PendingMutation:
    field: str
    previous_value: Any
    new_value: Any
    status: MutationStatus = MutationStatus.PENDING
    error: Exception | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def resolved(self) -> bool:
        return self.status is not MutationStatus.PENDING


# ── Local (guest) record ──────────────────────────────────────


@dataclass
class LocalRecord:
    """The single on-device blob for a guest install."""

    guest_tag: str = ""
    current_goal: GoalPreference = field(default_factory=GoalPreference)
    streak_state: StreakState = field(default_factory=StreakState)
    history: list[SessionRecord] = field(default_factory=list)  # newest first

    def find(self, session_id: str) -> SessionRecord | None:
        for record in self.history:
            if record.session.id == session_id:
                return record
        return None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LocalRecord:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            guest_tag=str(d.get("guestTag", "")),
            current_goal=GoalPreference.from_dict(d.get("currentGoal")),
            streak_state=StreakState.from_dict(d.get("streakState")),
            history=[SessionRecord.from_dict(r) for r in (d.get("history") or [])],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "guestTag": self.guest_tag,
            "currentGoal": self.current_goal.to_dict(),
            "streakState": self.streak_state.to_dict(),
            "history": [r.to_dict() for r in self.history],
        }
