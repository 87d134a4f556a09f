"""
Runtime configuration schema.

Frozen dataclasses that YAML configuration sets are parsed into.  Defaults
here are the documented fallbacks for keys a set leaves out.
"""

from __future__ import annotations

from dataclasses import dataclass, field

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the proposal store."""

    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"database.max_overflow must be >= 0, got {self.max_overflow}")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in _LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {', '.join(_LOG_LEVELS)}, got {self.level!r}"
            )


@dataclass(frozen=True)
class EventsConfig:
    """Event publisher settings.  ``enabled=False`` drops all events."""

    publisher_workers: int = 4
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.publisher_workers < 1:
            raise ValueError(
                f"events.publisher_workers must be >= 1, got {self.publisher_workers}"
            )


@dataclass(frozen=True)
class GrantsConfig:
    """Complete runtime configuration for one deployment."""

    name: str = "default"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    checksum: str = ""
