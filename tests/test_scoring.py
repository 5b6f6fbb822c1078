"""Tests for habitsync/scoring.py — points, time streak, daily streak, habit days."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import make_session
from habitsync.errors import ValidationError
from habitsync.models import StreakState
from habitsync.scoring import (
    BASE_POINTS_MAX,
    DayBoundary,
    base_points_for,
    bonus_for_streak,
    compute_outcome,
    effective_daily_streak,
    points_stage,
    score_session,
    streak_phase,
)

NOON = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_target_hit_extends_time_streak():
    """150s against a 120s target after three hits: streak 4, full base, bonus."""
    prior = StreakState(time_streak=3)
    outcome = compute_outcome(make_session(actual=150, target=120), prior)

    assert outcome.time_streak == 4
    assert outcome.base_points == BASE_POINTS_MAX
    assert outcome.bonus_points > 0
    assert outcome.total_points == outcome.base_points + outcome.bonus_points


def test_missed_target_resets_time_streak():
    prior = StreakState(time_streak=3)
    outcome = compute_outcome(make_session(actual=60, target=120), prior)

    assert outcome.time_streak == 0
    assert outcome.base_points == 50
    assert outcome.bonus_points == 0
    assert outcome.total_points == 50


def test_exactly_on_target_counts_as_hit():
    outcome = compute_outcome(make_session(actual=120, target=120), StreakState(time_streak=1))
    assert outcome.time_streak == 2


def test_base_points_round_half_up():
    # 1/8 of 100 = 12.5
    assert base_points_for(15, 120) == 13
    assert base_points_for(1, 3) == 33
    assert base_points_for(500, 120) == BASE_POINTS_MAX


def test_bonus_is_monotonic_and_capped():
    bonuses = [bonus_for_streak(n) for n in range(0, 30)]
    assert bonuses[0] == 0
    assert all(a <= b for a, b in zip(bonuses, bonuses[1:]))
    assert bonus_for_streak(10) == bonus_for_streak(25)


@pytest.mark.parametrize(
    "actual,target,aimed",
    [(0, 120, 1), (-5, 120, 1), (60, 0, 1), (60, -1, 1), (60, 120, 0)],
)
def test_invalid_input_rejected(actual, target, aimed):
    with pytest.raises(ValidationError):
        compute_outcome(make_session(actual=actual, target=target, aimed=aimed), StreakState())


def test_validation_error_is_value_error():
    with pytest.raises(ValueError):
        compute_outcome(make_session(actual=0), StreakState())


def test_missing_session_id_rejected():
    with pytest.raises(ValidationError):
        compute_outcome(make_session(session_id=""), StreakState())


# ── Daily streak ──────────────────────────────────────────────


def test_first_qualifying_session_starts_daily_streak():
    outcome, state = score_session(StreakState(), make_session(occurred_at=NOON))
    assert outcome.daily_streak == 1
    assert state.last_qualifying_date == date(2026, 3, 10)
    assert state.revision == 1


def test_consecutive_day_increments_daily_streak():
    prior = StreakState(daily_streak=4, last_qualifying_date=date(2026, 3, 9), tally_date=date(2026, 3, 9), tally_count=1)
    outcome = compute_outcome(make_session(occurred_at=NOON), prior)
    assert outcome.daily_streak == 5


def test_gap_restarts_daily_streak_at_one():
    prior = StreakState(daily_streak=9, last_qualifying_date=date(2026, 3, 7), tally_date=date(2026, 3, 7), tally_count=1)
    outcome = compute_outcome(make_session(occurred_at=NOON), prior)
    assert outcome.daily_streak == 1


def test_same_day_sessions_leave_daily_streak_unchanged():
    _, state = score_session(StreakState(), make_session("a", occurred_at=NOON))
    outcome, state = score_session(state, make_session("b", occurred_at=NOON + timedelta(hours=2)))
    assert outcome.daily_streak == 1
    assert state.daily_streak == 1
    assert state.tally_count == 2


def test_missed_target_does_not_qualify_day():
    outcome, state = score_session(StreakState(), make_session(actual=30, occurred_at=NOON))
    assert outcome.daily_streak == 0
    assert state.last_qualifying_date is None


def test_aim_of_two_needs_two_hits():
    first, state = score_session(StreakState(), make_session("a", aimed=2, occurred_at=NOON))
    assert first.daily_streak == 0

    second, state = score_session(state, make_session("b", aimed=2, occurred_at=NOON + timedelta(hours=8)))
    assert second.daily_streak == 1
    assert state.last_qualifying_date == date(2026, 3, 10)


def test_late_session_for_earlier_day_keeps_daily_streak():
    prior = StreakState(daily_streak=3, last_qualifying_date=date(2026, 3, 10), tally_date=date(2026, 3, 10), tally_count=1)
    outcome, state = score_session(prior, make_session(occurred_at=NOON - timedelta(days=2)))
    assert outcome.daily_streak == 3
    assert state.last_qualifying_date == date(2026, 3, 10)
    assert state.tally_date == date(2026, 3, 10)


def test_score_session_accumulates_points_and_best_streak():
    prior = StreakState(total_points=200, best_daily_streak=7, revision=4)
    outcome, state = score_session(prior, make_session(occurred_at=NOON))
    assert state.total_points == 200 + outcome.total_points
    assert state.best_daily_streak == 7
    assert state.revision == 5


# ── Habit day boundary ────────────────────────────────────────


def test_before_reset_hour_counts_as_previous_day():
    boundary = DayBoundary(reset_hour=3)
    assert boundary.habit_day(datetime(2026, 3, 10, 2, 30, tzinfo=timezone.utc)) == date(2026, 3, 9)
    assert boundary.habit_day(datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)) == date(2026, 3, 10)


def test_habit_day_uses_configured_timezone():
    boundary = DayBoundary(tz=ZoneInfo("America/New_York"), reset_hour=0)
    # 01:00 UTC on the 10th is still the evening of the 9th in New York
    assert boundary.habit_day(datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc)) == date(2026, 3, 9)


def test_naive_datetime_treated_as_utc():
    boundary = DayBoundary(reset_hour=0)
    assert boundary.habit_day(datetime(2026, 3, 10, 23, 0)) == date(2026, 3, 10)


# ── Display helpers ───────────────────────────────────────────


def test_effective_daily_streak_drops_after_missed_day():
    state = StreakState(daily_streak=6, last_qualifying_date=date(2026, 3, 10))
    assert effective_daily_streak(state, date(2026, 3, 10)) == 6
    assert effective_daily_streak(state, date(2026, 3, 11)) == 6
    assert effective_daily_streak(state, date(2026, 3, 12)) == 0
    assert effective_daily_streak(StreakState(), date(2026, 3, 12)) == 0


def test_points_stage_thresholds():
    assert points_stage(0) == 1
    assert points_stage(1) == 2
    assert points_stage(299) == 2
    assert points_stage(300) == 3
    assert points_stage(1000) == 4
    assert points_stage(2500) == 5
    assert points_stage(10000) == 6


def test_streak_phase_names():
    assert streak_phase(0) == "start"
    assert streak_phase(1) == "first"
    assert streak_phase(7) == "week"
    assert streak_phase(30) == "month"
    assert streak_phase(101) == "legendary"
