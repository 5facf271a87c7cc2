"""
Configuration Loader (``revshare_config.loader``).

Responsibility
--------------
Reads a YAML configuration file and parses it into the frozen dataclasses
of ``revshare_config.schema``.  Callers use ``get_active_config()``; this
module is the parsing step behind it.

Invariants enforced
-------------------
* Unknown sections and unknown keys are rejected, never ignored.
* Every parsed object is a frozen dataclass.
* Values are type-checked and range-checked before they reach the kernel.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad keys or values  -> ``ConfigValidationError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from revshare_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    RevShareConfig,
    SettlementConfig,
    SyncConfig,
)
from revshare_kernel.db.types import is_valid_currency

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Gateways cap list pages at 100 objects
_MAX_PAGE_SIZE = 100


class ConfigValidationError(ValueError):
    """The configuration file has an unknown key or an invalid value."""

    def __init__(self, section: str, key: str, message: str):
        self.section = section
        self.key = key
        super().__init__(f"{section}.{key}: {message}")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _check_keys(section: str, data: dict[str, Any], schema: type) -> None:
    allowed = {f.name for f in fields(schema)}
    for key in data:
        if key not in allowed:
            raise ConfigValidationError(section, key, "unknown key")


def _require_type(section: str, key: str, value: Any, expected: type) -> None:
    # bool is an int subclass; never accept it where a number is expected
    if expected is int and isinstance(value, bool):
        raise ConfigValidationError(section, key, "expected int, got bool")
    if not isinstance(value, expected):
        raise ConfigValidationError(
            section, key, f"expected {expected.__name__}, got {type(value).__name__}"
        )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigValidationError(name, "*", "section must be a mapping")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    _check_keys("database", data, DatabaseConfig)
    config = DatabaseConfig(**data)
    _require_type("database", "url", config.url, str)
    _require_type("database", "echo", config.echo, bool)
    _require_type("database", "pool_size", config.pool_size, int)
    _require_type("database", "max_overflow", config.max_overflow, int)
    if config.pool_size < 1:
        raise ConfigValidationError("database", "pool_size", "must be at least 1")
    return config


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    _check_keys("logging", data, LoggingConfig)
    config = LoggingConfig(**data)
    _require_type("logging", "level", config.level, str)
    if config.level.upper() not in _LOG_LEVELS:
        raise ConfigValidationError("logging", "level", f"unknown level {config.level!r}")
    return LoggingConfig(level=config.level.upper())


def parse_settlement(data: dict[str, Any]) -> SettlementConfig:
    _check_keys("settlement", data, SettlementConfig)
    config = SettlementConfig(**data)
    _require_type("settlement", "history_months", config.history_months, int)
    if config.history_months < 1:
        raise ConfigValidationError("settlement", "history_months", "must be at least 1")
    if not is_valid_currency(config.default_currency):
        raise ConfigValidationError(
            "settlement", "default_currency", f"not ISO 4217: {config.default_currency!r}"
        )
    return SettlementConfig(
        history_months=config.history_months,
        default_currency=config.default_currency.upper(),
    )


def parse_sync(data: dict[str, Any]) -> SyncConfig:
    _check_keys("sync", data, SyncConfig)
    config = SyncConfig(**data)
    _require_type("sync", "gateway", config.gateway, str)
    _require_type("sync", "page_size", config.page_size, int)
    _require_type("sync", "lookback_days", config.lookback_days, int)
    if not 1 <= config.page_size <= _MAX_PAGE_SIZE:
        raise ConfigValidationError("sync", "page_size", f"must be in 1..{_MAX_PAGE_SIZE}")
    if config.lookback_days < 0:
        raise ConfigValidationError("sync", "lookback_days", "must not be negative")
    return config


def parse_config(data: dict[str, Any], source: str | None = None) -> RevShareConfig:
    """Build a ``RevShareConfig`` from an already-loaded mapping."""
    known = {"database", "logging", "settlement", "sync"}
    for name in data:
        if name not in known:
            raise ConfigValidationError(name, "*", "unknown section")

    return RevShareConfig(
        database=parse_database(_section(data, "database")),
        logging=parse_logging(_section(data, "logging")),
        settlement=parse_settlement(_section(data, "settlement")),
        sync=parse_sync(_section(data, "sync")),
        source=source,
    )


def load_config(path: Path) -> RevShareConfig:
    """Load and validate one configuration file."""
    return parse_config(load_yaml_file(path), source=str(path))
