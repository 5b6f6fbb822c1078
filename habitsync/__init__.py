"""habitsync: session scoring, streaks and goal sync for a habit tracker.

Public API re-exports for convenient imports:
    from habitsync import HabitClient, Topic, compute_outcome, ...
"""

# Workspace & settings
from habitsync.workspace import (
    workspace_root,
    settings_path,
    install_path,
    local_record_path,
    remote_dir,
)
from habitsync.config import Settings, load_settings

# Errors
from habitsync.errors import (
    HabitSyncError,
    ValidationError,
    CommitFailure,
    ConflictError,
    PreferenceCommitError,
)

# Models
from habitsync.models import (
    FIELD_TIME_TARGET,
    FIELD_DAILY_FREQUENCY,
    Identity,
    Session,
    SessionOutcome,
    SessionRecord,
    StreakState,
    GoalPreference,
    MutationStatus,
    PendingMutation,
    LocalRecord,
)

# Scoring
from habitsync.scoring import (
    DayBoundary,
    compute_outcome,
    advance_streak_state,
    score_session,
    effective_daily_streak,
    points_stage,
    streak_phase,
)

# Event bus
from habitsync.bus import BusEvent, EventBus, Topic

# Stores
from habitsync.store import HabitStore, open_store
from habitsync.local_store import LocalStore, guest_identity
from habitsync.remote_store import RemoteStore

# Background work
from habitsync.coordinator import CommitResult, SaveCoordinator, SaveState
from habitsync.goals import GoalSyncService, OptimisticMutation

# Reminders & promotion
from habitsync.reminders import ReminderPlan, ReminderTime, needs_reschedule, parse_hhmm, plan_reminder_sync
from habitsync.migration import promote_guest

# Client
from habitsync.client import HabitClient
