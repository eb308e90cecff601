"""Configuration dataclasses for the hachart engine and hub.

Replaces module-level globals with type-safe, testable config objects.
"""

import os
from dataclasses import dataclass, field

from hachart.shared.constants import (
    HISTORY_DEFAULT_CACHE_SECONDS,
    STATISTICS_DEFAULT_CACHE_SECONDS,
)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class HAConfig:
    """Home Assistant connection settings."""
    url: str = "http://homeassistant.local:8123"
    token: str = ""
    timeout: float = 15.0

    @classmethod
    def from_env(cls):
        return cls(
            url=os.environ.get("HA_URL", cls.url).rstrip("/"),
            token=os.environ.get("HA_TOKEN", ""),
        )

    @property
    def ws_url(self) -> str:
        return self.url.replace("http", "ws", 1) + "/api/websocket"


@dataclass
class CacheConfig:
    """Sizes and default TTLs of the time-series caches."""
    history_max_entries: int = 64
    statistics_max_entries: int = 32
    history_cache_seconds: int = HISTORY_DEFAULT_CACHE_SECONDS
    statistics_cache_seconds: int = STATISTICS_DEFAULT_CACHE_SECONDS

    def __post_init__(self):
        if self.history_max_entries < 1 or self.statistics_max_entries < 1:
            raise ValueError("cache sizes must be >= 1")

    @classmethod
    def from_env(cls):
        return cls(
            history_max_entries=_env_int("HACHART_HISTORY_CACHE_SIZE", cls.history_max_entries),
            statistics_max_entries=_env_int("HACHART_STATISTICS_CACHE_SIZE", cls.statistics_max_entries),
        )


@dataclass
class AppConfig:
    """Top-level config composing all sub-configs."""
    ha: HAConfig = field(default_factory=HAConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    @classmethod
    def from_env(cls):
        """Create config from environment variables (for production use)."""
        return cls(
            ha=HAConfig.from_env(),
            cache=CacheConfig.from_env(),
        )
