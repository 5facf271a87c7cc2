"""
Runtime configuration schema.

Every section is a frozen dataclass.  The loader fills them from YAML and
``get_active_config()`` returns the assembled ``RevShareConfig``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings handed to ``init_engine_from_url``."""

    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class SettlementConfig:
    """Settlement and balance reporting defaults."""

    history_months: int = 12
    default_currency: str = "USD"


@dataclass(frozen=True)
class SyncConfig:
    """Gateway polling defaults."""

    gateway: str = "stripe"
    page_size: int = 100
    lookback_days: int = 30


@dataclass(frozen=True)
class RevShareConfig:
    """The complete, validated runtime configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    source: str | None = None
