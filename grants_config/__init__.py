"""
grants_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Other components receive a ``GrantsConfig``
    and never read configuration files themselves.

Architecture position:
    Configuration.  Sits beside ``grants_kernel``; the kernel MUST NEVER
    import from ``grants_config``.  ``grants_services.bootstrap`` turns a
    ``GrantsConfig`` into wired services.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- schema or type validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call logs ``GRANTS_CONFIG_TRACE``
    with the set name and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from grants_config.loader import compute_checksum, load_yaml_file, parse_config
from grants_config.schema import (
    DatabaseConfig,
    EventsConfig,
    GrantsConfig,
    LoggingConfig,
)

_logger = logging.getLogger("grants_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> GrantsConfig:
    """Load, validate and return the configuration set at ``path``.

    Args:
        path: YAML file to load.  Defaults to grants_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file fails validation.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(config_path))
    _logger.info(
        "GRANTS_CONFIG_TRACE",
        extra={
            "trace_type": "GRANTS_CONFIG_TRACE",
            "config_name": config.name,
            "config_path": str(config_path),
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "EventsConfig",
    "GrantsConfig",
    "LoggingConfig",
    "compute_checksum",
    "get_active_config",
]
