"""
Kernel policy values.

Responsibility:
    Thresholds and retry limits the services run under.  The configuration
    package builds these from YAML (see ``authorization_config.bridges``);
    the kernel never reads configuration files itself.

Architecture position:
    Kernel > Domain -- pure values, zero I/O.
"""

from dataclasses import dataclass

from authorization_kernel.domain.dtos import AuthorizationStatus

DEFAULT_OVERLAP_STATUSES: frozenset[AuthorizationStatus] = frozenset(
    {
        AuthorizationStatus.ACTIVE,
        AuthorizationStatus.APPROVED,
        AuthorizationStatus.EXPIRING,
    }
)


@dataclass(frozen=True)
class UtilizationPolicy:
    """
    Utilization thresholds.

    Guarantees:
        - expiring_threshold_percent: an ACTIVE authorization whose
          utilization reaches this percentage after a ledger add moves to
          EXPIRING.
        - near_limit_percent: validation warns when a candidate would push
          utilization strictly above this percentage.
        - overlap_statuses: statuses that take part in overlap detection.
    """

    expiring_threshold_percent: int = 80
    near_limit_percent: int = 90
    overlap_statuses: frozenset[AuthorizationStatus] = DEFAULT_OVERLAP_STATUSES
    default_expiring_window_days: int = 30

    def __post_init__(self) -> None:
        for name in ("expiring_threshold_percent", "near_limit_percent"):
            value = getattr(self, name)
            if not 0 < value <= 100:
                raise ValueError(f"{name} must be in (0, 100], got {value}")
        if self.default_expiring_window_days < 0:
            raise ValueError("default_expiring_window_days must be >= 0")


@dataclass(frozen=True)
class RetryPolicy:
    """How often the unit-of-work facade re-runs a retryable failure."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")
