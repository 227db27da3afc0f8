"""Filesystem locations used by the project."""

from __future__ import annotations

import os
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

STATE_ROOT_ENV = "SIGNALPOLL_STATE_ROOT"
CONFIG_FILE_ENV = "SIGNALPOLL_CONFIG"


def get_project_root() -> Path:
    return _PROJECT_ROOT


def get_state_root() -> Path:
    """Root directory for source registry, poll state, and inboxes.

    Honors ``SIGNALPOLL_STATE_ROOT`` when set; otherwise ``<project>/state``.
    """
    override = os.environ.get(STATE_ROOT_ENV)
    if override:
        return Path(override)
    return _PROJECT_ROOT / "state"


def get_inbox_root() -> Path:
    return get_state_root() / "inbox"


def get_config_file() -> Path:
    override = os.environ.get(CONFIG_FILE_ENV)
    if override:
        return Path(override)
    return _PROJECT_ROOT / "config" / "signalpoll.json"


def ensure_directory(path: Path) -> Path:
    """Create ``path`` (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path
