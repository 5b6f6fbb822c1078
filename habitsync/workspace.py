"""Workspace root and path helpers for habitsync."""

from __future__ import annotations

import os
from pathlib import Path


def workspace_root() -> Path:
    """Get the workspace root directory (holds settings.yaml and data/)."""
    return Path(
        os.environ.get("HABITSYNC_ROOT", str(Path.home() / ".habitsync"))
    ).expanduser().resolve()


# ── Path helpers ──────────────────────────────────────────────

def settings_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "settings.yaml"


def install_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data" / "install.json"


def local_record_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data" / "local_record.json"


def remote_dir(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "remote"
