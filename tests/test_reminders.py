"""Tests for habitsync/reminders.py — reminder plans and time parsing."""

import pytest

from habitsync.errors import ValidationError
from habitsync.models import GoalPreference
from habitsync.reminders import ReminderTime, needs_reschedule, parse_hhmm, plan_reminder_sync


def test_parse_hhmm():
    assert parse_hhmm("07:30") == (7, 30)
    assert parse_hhmm("7:05") == (7, 5)
    assert parse_hhmm("23:59") == (23, 59)


@pytest.mark.parametrize("bad", ["24:00", "12:60", "noon", "1230", "", "12:5"])
def test_parse_hhmm_rejects(bad):
    with pytest.raises(ValidationError):
        parse_hhmm(bad)


def test_reminder_validates_time():
    with pytest.raises(ValidationError):
        ReminderTime(id="r1", time="25:00")


def test_reminder_from_dict():
    reminder = ReminderTime.from_dict({"id": "r1", "time": "21:15", "label": "Evening", "enabled": False})
    assert reminder.hour == 21
    assert reminder.minute == 15
    assert reminder.enabled is False
    assert reminder.to_dict()["label"] == "Evening"


def test_first_sync_schedules_enabled_only():
    reminders = [
        ReminderTime(id="morning", time="07:30"),
        ReminderTime(id="evening", time="21:00", enabled=False),
    ]
    plan = plan_reminder_sync(reminders, {})
    assert plan.cancel == []
    assert [r.id for r in plan.schedule] == ["morning"]


def test_resync_cancels_before_rescheduling():
    reminders = [ReminderTime(id="morning", time="07:30")]
    plan = plan_reminder_sync(reminders, {"morning": "n-1"})
    assert plan.cancel == ["n-1"]
    assert [r.id for r in plan.schedule] == ["morning"]


def test_removed_and_disabled_reminders_cancelled():
    reminders = [ReminderTime(id="evening", time="21:00", enabled=False)]
    plan = plan_reminder_sync(reminders, {"morning": "n-1", "evening": "n-2"})
    assert sorted(plan.cancel) == ["n-1", "n-2"]
    assert plan.schedule == []


def test_plan_never_duplicates():
    reminders = [ReminderTime(id="a", time="07:00"), ReminderTime(id="b", time="20:00")]
    scheduled = {"a": "n-a", "b": "n-b"}
    plan = plan_reminder_sync(reminders, scheduled)

    # every existing notification is cancelled exactly once, every reminder scheduled once
    assert sorted(plan.cancel) == ["n-a", "n-b"]
    assert len(plan.schedule) == len({r.id for r in plan.schedule}) == 2


def test_duplicate_reminder_ids_rejected():
    with pytest.raises(ValidationError):
        plan_reminder_sync([ReminderTime(id="a", time="07:00"), ReminderTime(id="a", time="08:00")], {})


def test_needs_reschedule_on_frequency_change_only():
    base = GoalPreference()
    assert needs_reschedule(base, GoalPreference(daily_frequency=3)) is True
    assert needs_reschedule(base, GoalPreference(time_target_minutes=5)) is False
