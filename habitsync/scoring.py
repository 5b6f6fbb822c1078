"""Session scoring: points, time streak and daily streak.

Everything here is pure and synchronous. Stores call ``score_session`` with
their own streak state and persist both halves of the result together.

Scoring rules:
- base points scale with the completion ratio, capped at BASE_POINTS_MAX
- the time streak counts consecutive sessions that reached their target
- the bonus is a function of the time streak *after* this session
- the daily streak counts consecutive habit days on which the aimed number of
  target-hitting sessions was reached
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo

from habitsync.errors import ValidationError
from habitsync.models import Session, SessionOutcome, StreakState

BASE_POINTS_MAX = 100
BONUS_PER_STREAK = 10
BONUS_STREAK_CAP = 10

# (minimum total points, stage), highest first
STAGE_THRESHOLDS = ((5000, 6), (2500, 5), (1000, 4), (300, 3), (1, 2))

# phase name -> inclusive upper bound of the daily streak
STREAK_PHASES = (
    ("start", 0),
    ("first", 1),
    ("early", 3),
    ("week", 7),
    ("two_weeks", 14),
    ("month", 30),
    ("two_months", 60),
    ("hundred", 100),
)


@dataclass(frozen=True)
class DayBoundary:
    """Where one habit day ends and the next begins."""

    tz: tzinfo = timezone.utc
    reset_hour: int = 3

    def habit_day(self, moment: datetime) -> date:
        """Habit day for *moment*; before ``reset_hour`` still counts as the previous day."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        local = moment.astimezone(self.tz)
        if local.hour < self.reset_hour:
            local -= timedelta(days=1)
        return local.date()


def validate_session_input(actual_duration_sec: int, target_duration_sec: int, aimed_sessions_per_day: int) -> None:
    if actual_duration_sec <= 0:
        raise ValidationError(f"actualDurationSec must be positive, got {actual_duration_sec}")
    if target_duration_sec <= 0:
        raise ValidationError(f"targetDurationSec must be positive, got {target_duration_sec}")
    if aimed_sessions_per_day < 1:
        raise ValidationError(f"aimedSessionsPerDay must be at least 1, got {aimed_sessions_per_day}")


def validate_session(session: Session) -> None:
    if not session.id:
        raise ValidationError("session id is required")
    validate_session_input(
        session.actual_duration_sec,
        session.target_duration_sec,
        session.aimed_sessions_per_day,
    )


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def base_points_for(actual_duration_sec: int, target_duration_sec: int) -> int:
    ratio = min(max(actual_duration_sec / target_duration_sec, 0.0), 1.0)
    return _round_half_up(ratio * BASE_POINTS_MAX)


def bonus_for_streak(time_streak: int) -> int:
    """Monotonic bonus table; zero when there is no streak."""
    if time_streak <= 0:
        return 0
    return BONUS_PER_STREAK * min(time_streak, BONUS_STREAK_CAP)


@dataclass(frozen=True)
class _DayProgress:
    day: date
    tally_count: int
    qualifies: bool
    daily_streak: int


def _day_progress(prior: StreakState, session: Session, boundary: DayBoundary) -> _DayProgress:
    day = boundary.habit_day(session.occurred_at)

    # Late arrival for a day we already moved past: leave the daily streak alone.
    if prior.tally_date is not None and day < prior.tally_date:
        return _DayProgress(prior.tally_date, prior.tally_count, False, prior.daily_streak)

    tally = prior.tally_count if prior.tally_date == day else 0
    if session.hit_target:
        tally += 1

    qualifies = (
        session.hit_target
        and tally >= session.aimed_sessions_per_day
        and prior.last_qualifying_date != day
    )

    daily = prior.daily_streak
    if qualifies:
        last = prior.last_qualifying_date
        if last is not None and (day - last).days == 1:
            daily += 1
        else:
            daily = 1

    return _DayProgress(day, tally, qualifies, daily)


def compute_outcome(
    session: Session,
    prior: StreakState,
    boundary: DayBoundary | None = None,
) -> SessionOutcome:
    """Score one session against the prior streak state.

    Raises ValidationError for non-positive durations or an aim below 1.
    """
    validate_session(session)
    if boundary is None:
        boundary = DayBoundary()

    time_streak = prior.time_streak + 1 if session.hit_target else 0
    base = base_points_for(session.actual_duration_sec, session.target_duration_sec)
    bonus = bonus_for_streak(time_streak)
    progress = _day_progress(prior, session, boundary)

    return SessionOutcome(
        session_id=session.id,
        base_points=base,
        bonus_points=bonus,
        total_points=base + bonus,
        time_streak=time_streak,
        daily_streak=progress.daily_streak,
    )


def advance_streak_state(
    prior: StreakState,
    session: Session,
    outcome: SessionOutcome,
    boundary: DayBoundary | None = None,
) -> StreakState:
    """Streak state after committing *outcome* for *session*."""
    if boundary is None:
        boundary = DayBoundary()
    progress = _day_progress(prior, session, boundary)
    return StreakState(
        time_streak=outcome.time_streak,
        daily_streak=outcome.daily_streak,
        last_qualifying_date=progress.day if progress.qualifies else prior.last_qualifying_date,
        tally_date=progress.day,
        tally_count=progress.tally_count,
        total_points=prior.total_points + outcome.total_points,
        best_daily_streak=max(prior.best_daily_streak, outcome.daily_streak),
        revision=prior.revision + 1,
    )


def score_session(
    prior: StreakState,
    session: Session,
    boundary: DayBoundary | None = None,
) -> tuple[SessionOutcome, StreakState]:
    outcome = compute_outcome(session, prior, boundary)
    return outcome, advance_streak_state(prior, session, outcome, boundary)


# ── Display helpers ───────────────────────────────────────────


def effective_daily_streak(state: StreakState, today: date) -> int:
    """Daily streak as it should be shown on *today* (0 once a day was missed)."""
    last = state.last_qualifying_date
    if last is None or (today - last).days > 1:
        return 0
    return state.daily_streak


def points_stage(total_points: int) -> int:
    for threshold, stage in STAGE_THRESHOLDS:
        if total_points >= threshold:
            return stage
    return 1


def streak_phase(daily_streak: int) -> str:
    for name, upper in STREAK_PHASES:
        if daily_streak <= upper:
            return name
    return "legendary"
