"""
Configuration Loader (``grants_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``grants_config.schema`` dataclasses.  Callers use
``grants_config.get_active_config()`` rather than this module.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  No dependency on the kernel.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown top-level sections are rejected; missing keys take the schema
  defaults.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  set, so two deployments can confirm they run the same configuration.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong types or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from grants_config.schema import (
    DatabaseConfig,
    EventsConfig,
    GrantsConfig,
    LoggingConfig,
)

_SECTIONS = frozenset({"name", "database", "logging", "events"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _int(section: str, data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    return value


def _bool(section: str, data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be a boolean, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    defaults = DatabaseConfig()
    return DatabaseConfig(
        url=str(data.get("url", defaults.url)),
        echo=_bool("database", data, "echo", defaults.echo),
        pool_size=_int("database", data, "pool_size", defaults.pool_size),
        max_overflow=_int("database", data, "max_overflow", defaults.max_overflow),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(level=str(data.get("level", LoggingConfig.level)).upper())


def parse_events(data: dict[str, Any]) -> EventsConfig:
    defaults = EventsConfig()
    return EventsConfig(
        publisher_workers=_int(
            "events", data, "publisher_workers", defaults.publisher_workers
        ),
        enabled=_bool("events", data, "enabled", defaults.enabled),
    )


def parse_config(data: dict[str, Any]) -> GrantsConfig:
    """Parse a raw configuration mapping into a ``GrantsConfig``."""
    unknown = set(data) - _SECTIONS
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")
    return GrantsConfig(
        name=str(data.get("name", "default")),
        database=parse_database(_section(data, "database")),
        logging=parse_logging(_section(data, "logging")),
        events=parse_events(_section(data, "events")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Returns a hex-encoded SHA-256 hash string.
        - Identical ``data`` always produces identical checksums, whatever
          the key order.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
