"""
revshare_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Scripts and the kernel facade receive the
    returned ``RevShareConfig``; nothing else reads configuration files or
    environment variables.

Architecture position:
    Configuration sits above ``revshare_kernel``.  The kernel never imports
    this package at runtime; callers pass the values it needs.

Environment:
    REVSHARE_CONFIG        path of a YAML file replacing the packaged defaults
    REVSHARE_DATABASE_URL  overrides ``database.url``

Failure modes:
    - ``FileNotFoundError`` -- REVSHARE_CONFIG (or ``path``) does not exist.
    - ``ConfigValidationError`` -- unknown keys or out-of-range values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from revshare_config.loader import ConfigValidationError, load_config
from revshare_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    RevShareConfig,
    SettlementConfig,
    SyncConfig,
)

_logger = logging.getLogger("revshare_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "REVSHARE_CONFIG"
DATABASE_URL_ENV_VAR = "REVSHARE_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> RevShareConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``path`` argument, then the
    REVSHARE_CONFIG environment variable, then the packaged defaults.
    REVSHARE_DATABASE_URL, when set, replaces ``database.url``.

    Returns:
        A frozen ``RevShareConfig``.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    config_path = Path(path) if path is not None else Path(env_path) if env_path else DEFAULTS_PATH

    config = load_config(config_path)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "config_loaded",
        extra={
            "config_source": config.source,
            "database_dialect": config.database.url.split(":", 1)[0],
            "sync_page_size": config.sync.page_size,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "ConfigValidationError",
    "RevShareConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "SettlementConfig",
    "SyncConfig",
]
