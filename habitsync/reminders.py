"""Reminder scheduling decisions.

Only the decision is made here: which OS notifications to cancel and which
reminders to schedule. Delivering them is the platform's job.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from habitsync.errors import ValidationError
from habitsync.models import GoalPreference

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse a 24-hour ``HH:MM`` string into ``(hour, minute)``."""
    m = _HHMM_RE.match(str(value).strip())
    if not m:
        raise ValidationError(f"Reminder time must be HH:MM, got {value!r}")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"Reminder time out of range: {value!r}")
    return hour, minute


@dataclass(frozen=True)
class ReminderTime:
    id: str
    time: str  # HH:MM, 24-hour
    label: str = ""
    enabled: bool = True

    def __post_init__(self) -> None:
        parse_hhmm(self.time)

    @property
    def hour(self) -> int:
        return parse_hhmm(self.time)[0]

    @property
    def minute(self) -> int:
        return parse_hhmm(self.time)[1]

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ReminderTime:
        return cls(
            id=str(d.get("id", "")),
            time=str(d.get("time", "")),
            label=str(d.get("label", "")),
            enabled=bool(d.get("enabled", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "time": self.time, "label": self.label, "enabled": self.enabled}


@dataclass
class ReminderPlan:
    cancel: list[str] = field(default_factory=list)  # OS notification ids
    schedule: list[ReminderTime] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.cancel and not self.schedule


def plan_reminder_sync(reminders: list[ReminderTime], scheduled: dict[str, str]) -> ReminderPlan:
    """Work out how to bring *scheduled* in line with *reminders*.

    ``scheduled`` maps reminder id to the OS notification id currently
    scheduled for it. Notifications of removed or disabled reminders are
    cancelled. Every enabled reminder is cancelled (if scheduled) and then
    scheduled again, so applying the plan twice never leaves duplicates.
    """
    plan = ReminderPlan()
    current: dict[str, ReminderTime] = {}
    for reminder in reminders:
        if reminder.id in current:
            raise ValidationError(f"Duplicate reminder id: {reminder.id!r}")
        current[reminder.id] = reminder

    for reminder_id, notification_id in scheduled.items():
        reminder = current.get(reminder_id)
        if reminder is None or not reminder.enabled:
            plan.cancel.append(notification_id)

    for reminder in reminders:
        if not reminder.enabled:
            continue
        if reminder.id in scheduled:
            plan.cancel.append(scheduled[reminder.id])
        plan.schedule.append(reminder)
    return plan


def needs_reschedule(old: GoalPreference, new: GoalPreference) -> bool:
    """True when a confirmed goal change means reminders should be replanned."""
    return old.daily_frequency != new.daily_frequency
