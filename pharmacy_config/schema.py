"""
Configuration schema (``pharmacy_config.schema``).

Frozen dataclasses for the returns engine configuration.  Every field has
a default so a YAML set only needs to state what it overrides; values are
validated in ``__post_init__`` and invalid values raise ``ValueError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


@dataclass(frozen=True)
class ReturnPolicyConfig:
    """Operator-facing return rules."""

    reason_min_length: int = 1
    unknown_item_name: str = "Unknown Item"

    def __post_init__(self) -> None:
        if self.reason_min_length < 1:
            raise ValueError("reason_min_length must be at least 1")
        if not self.unknown_item_name.strip():
            raise ValueError("unknown_item_name must be non-empty")


@dataclass(frozen=True)
class StoreCallConfig:
    """Timeout and retry budget for every store call."""

    timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.05
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


@dataclass(frozen=True)
class SequenceConfig:
    """Return document numbering."""

    prefix: str = "RET"
    max_attempts: int = 3
    scope_tag_length: int = 8
    fallback_enabled: bool = True

    def __post_init__(self) -> None:
        if not self.prefix or not self.prefix.isalnum():
            raise ValueError(f"prefix must be alphanumeric, got {self.prefix!r}")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.scope_tag_length < 1:
            raise ValueError("scope_tag_length must be at least 1")


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite+aiosqlite:///pharmacy_returns.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5

    def __post_init__(self) -> None:
        if "://" not in self.url:
            raise ValueError(f"database url is not a URL: {self.url!r}")
        if self.pool_size < 1:
            raise ValueError("pool_size must be at least 1")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level not in VALID_LOG_LEVELS:
            raise ValueError(f"level must be one of {sorted(VALID_LOG_LEVELS)}, got {self.level!r}")


@dataclass(frozen=True)
class EngineConfig:
    """Complete configuration for one deployment of the returns engine."""

    config_id: str
    version: int = 1
    returns: ReturnPolicyConfig = field(default_factory=ReturnPolicyConfig)
    store_calls: StoreCallConfig = field(default_factory=StoreCallConfig)
    sequence: SequenceConfig = field(default_factory=SequenceConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
