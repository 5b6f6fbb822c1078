"""Exception types for habitsync.

Validation problems are raised synchronously to the caller. Commit failures
travel through the event bus (sessions) or the mutation that produced them
(preferences); see ``coordinator`` and ``goals``.
"""

from __future__ import annotations

from typing import Any


class HabitSyncError(Exception):
    """Base class for all habitsync errors."""


class ValidationError(HabitSyncError, ValueError):
    """Malformed input, rejected before any persistence attempt."""


class CommitFailure(HabitSyncError):
    """A store call failed to persist or read data."""

    def __init__(self, reason: str, *, retryable: bool = True) -> None:
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable


class ConflictError(CommitFailure):
    """The remote streak state kept moving under us."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason, retryable=True)


class PreferenceCommitError(CommitFailure):
    """A preference change could not be committed and was rolled back."""

    def __init__(self, field: str, rejected: Any, restored: Any, reason: str) -> None:
        super().__init__(f"{field}: {reason}", retryable=True)
        self.field = field
        self.rejected = rejected
        self.restored = restored
