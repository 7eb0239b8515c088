"""Data-directory and default settings for steprunner.

The data home honours ``STEPRUNNER_HOME``, then ``XDG_DATA_HOME/steprunner``,
and otherwise falls back to ``~/.steprunner``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

DEFAULT_STEP_TIMEOUT_MS = 30_000


@lru_cache(maxsize=1)
def get_home_dir() -> Path:
    """Return the steprunner data directory.

    Resolution order:
    1. ``STEPRUNNER_HOME`` environment variable
    2. ``XDG_DATA_HOME/steprunner`` (if ``XDG_DATA_HOME`` is set)
    3. ``~/.steprunner``
    """
    env = os.environ.get("STEPRUNNER_HOME")
    if env:
        return Path(env)
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "steprunner"
    return Path.home() / ".steprunner"


def get_registry_db_path() -> Path:
    return get_home_dir() / "registry.db"


def get_events_log_path() -> Path:
    return get_home_dir() / "events.jsonl"
