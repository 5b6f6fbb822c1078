"""Promote a guest's on-device history to a signed-in account."""

from __future__ import annotations

import logging

from habitsync.local_store import LocalStore
from habitsync.remote_store import RemoteStore

logger = logging.getLogger(__name__)


async def promote_guest(local: LocalStore, remote: RemoteStore) -> int:
    """Copy guest history, streak state and goals to *remote*; clear local history.

    Stored outcomes are sent as they are, nothing is recomputed. Sessions the
    service already knows are skipped, so running this twice is harmless.
    If the import fails the CommitFailure propagates and local data is kept.

    Returns:
        Number of sessions the service newly imported.
    """
    record = await local.snapshot()
    if not record.history and record.current_goal.updated_at is None:
        logger.debug("Guest %s has nothing to promote", local.identity.key)
        return 0

    imported = await remote.import_guest(record)
    removed = await local.clear_history()
    logger.info(
        "Promoted guest %s to %s: %d of %d sessions imported",
        local.identity.key, remote.identity.key, imported, removed,
    )
    return imported
