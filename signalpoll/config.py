"""Project configuration management."""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from typing import Any, Optional

from signalpoll import paths

logger = logging.getLogger(__name__)

CRON_SECRET_ENV = "SIGNALPOLL_CRON_SECRET"


class ProjectConfig:
    """Access to project configuration values.

    Values come from the JSON config file (see :func:`paths.get_config_file`),
    with environment variables taking precedence where noted.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        config_path = paths.get_config_file()
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    self._data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring unreadable config file %s: %s", config_path, e)
                self._data = {}

        self._loaded = True

    @property
    def cron_secret(self) -> Optional[str]:
        """Shared secret for batch poll invocations. Env var wins over file."""
        self._ensure_loaded()
        return os.environ.get(CRON_SECRET_ENV) or self._data.get("cron_secret")

    @property
    def max_interval_minutes(self) -> int:
        self._ensure_loaded()
        return int(self._data.get("max_interval_minutes", 240))

    @property
    def error_threshold(self) -> int:
        self._ensure_loaded()
        return int(self._data.get("error_threshold", 10))

    @property
    def fetch_timeout_seconds(self) -> float:
        self._ensure_loaded()
        return float(self._data.get("fetch_timeout_seconds", 10.0))

    @property
    def status_ttl_minutes(self) -> int:
        """How long a pipeline run stays readable after its last update."""
        self._ensure_loaded()
        return int(self._data.get("status_ttl_minutes", 10))

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw configuration value."""
        self._ensure_loaded()
        return self._data.get(key, default)


@lru_cache(maxsize=1)
def get_config() -> ProjectConfig:
    """Get the singleton configuration instance."""
    return ProjectConfig()
