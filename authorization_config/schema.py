"""
Authorization kernel configuration schema.

Frozen dataclasses parsed from YAML by the loader.  These are the source
artifact; ``authorization_config.bridges`` turns them into the kernel's own
policy values and the Database handle.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and pool settings for the Database handle."""

    url: str = "sqlite:///authorization.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    busy_timeout_seconds: float = 30.0  # SQLite only


@dataclass(frozen=True)
class UtilizationSettings:
    """Thresholds driving the EXPIRING transition, warnings and overlap checks."""

    expiring_threshold_percent: int = 80
    near_limit_percent: int = 90
    overlap_statuses: tuple[str, ...] = ("active", "approved", "expiring")
    default_expiring_window_days: int = 30


@dataclass(frozen=True)
class RetrySettings:
    """Re-runs of operations that fail with a retryable storage error."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05


@dataclass(frozen=True)
class AuthorizationKernelConfig:
    """Complete runtime configuration."""

    config_id: str = "default"
    version: int = 1
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    utilization: UtilizationSettings = field(default_factory=UtilizationSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    checksum: str = ""
