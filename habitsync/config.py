"""Settings for habitsync, read from ``<root>/settings.yaml``.

Example::

    timezone: Europe/Berlin
    day_reset_hour: 3
    remote_url: https://sync.example.com
    commit_timeout: 8

``HABITSYNC_REMOTE_URL`` and ``HABITSYNC_TIMEZONE`` override the file;
``HABITSYNC_REMOTE_USERNAME`` / ``HABITSYNC_REMOTE_PASSWORD`` supply the
service credentials.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from habitsync.fileio import read_yaml
from habitsync.scoring import DayBoundary
from habitsync.workspace import settings_path, workspace_root

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    timezone: str = "UTC"
    day_reset_hour: int = 3
    remote_url: str = "http://127.0.0.1:8000"
    request_timeout: float = 10.0
    commit_timeout: float = 8.0
    history_limit: int = 100
    bus_cache_size: int = 512
    # env only, never written back to settings.yaml
    remote_username: str = ""
    remote_password: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Settings:
        if not d or not isinstance(d, dict):
            return cls()
        defaults = cls()
        return cls(
            timezone=str(d.get("timezone", defaults.timezone)),
            day_reset_hour=int(d.get("day_reset_hour", defaults.day_reset_hour)),
            remote_url=str(d.get("remote_url", defaults.remote_url)),
            request_timeout=float(d.get("request_timeout", defaults.request_timeout)),
            commit_timeout=float(d.get("commit_timeout", defaults.commit_timeout)),
            history_limit=int(d.get("history_limit", defaults.history_limit)),
            bus_cache_size=int(d.get("bus_cache_size", defaults.bus_cache_size)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timezone": self.timezone,
            "day_reset_hour": self.day_reset_hour,
            "remote_url": self.remote_url,
            "request_timeout": self.request_timeout,
            "commit_timeout": self.commit_timeout,
            "history_limit": self.history_limit,
            "bus_cache_size": self.bus_cache_size,
        }

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r in settings, using UTC", self.timezone)
            return ZoneInfo("UTC")

    @property
    def day_boundary(self) -> DayBoundary:
        return DayBoundary(tz=self.tz, reset_hour=self.day_reset_hour)


def load_settings(root: Path | None = None) -> Settings:
    """Load settings.yaml (missing file means defaults) plus env overrides."""
    if root is None:
        root = workspace_root()
    settings = Settings.from_dict(read_yaml(settings_path(root)))
    if os.environ.get("HABITSYNC_REMOTE_URL"):
        settings.remote_url = os.environ["HABITSYNC_REMOTE_URL"]
    if os.environ.get("HABITSYNC_TIMEZONE"):
        settings.timezone = os.environ["HABITSYNC_TIMEZONE"]
    settings.remote_username = os.environ.get("HABITSYNC_REMOTE_USERNAME", "")
    settings.remote_password = os.environ.get("HABITSYNC_REMOTE_PASSWORD", "")
    if not 0 <= settings.day_reset_hour <= 23:
        raise ValueError(f"day_reset_hour must be within 0..23, got {settings.day_reset_hour}")
    return settings
