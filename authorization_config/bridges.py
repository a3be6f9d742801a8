"""
Config -> Kernel Bridges.

Functions that convert configuration artifacts into kernel inputs.  These
live in authorization_config (the producer) because the kernel must NEVER
import authorization_config.

Usage:
    from authorization_config import get_active_config
    from authorization_config.bridges import build_authorization_service

    config = get_active_config()
    service = build_authorization_service(config)
"""

from __future__ import annotations

from authorization_config.schema import (
    AuthorizationKernelConfig,
    DatabaseSettings,
    RetrySettings,
    UtilizationSettings,
)
from authorization_kernel.db.engine import Database, init_engine_from_url
from authorization_kernel.domain.clock import Clock
from authorization_kernel.domain.dtos import AuthorizationStatus
from authorization_kernel.domain.policy import RetryPolicy, UtilizationPolicy
from authorization_kernel.services.authorization_service import AuthorizationService


def build_utilization_policy(settings: UtilizationSettings) -> UtilizationPolicy:
    return UtilizationPolicy(
        expiring_threshold_percent=settings.expiring_threshold_percent,
        near_limit_percent=settings.near_limit_percent,
        overlap_statuses=frozenset(
            AuthorizationStatus(s) for s in settings.overlap_statuses
        ),
        default_expiring_window_days=settings.default_expiring_window_days,
    )


def build_retry_policy(settings: RetrySettings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.max_attempts,
        backoff_seconds=settings.backoff_seconds,
    )


def open_database(settings: DatabaseSettings) -> Database:
    """Open a new Database handle.  The caller owns it and must dispose()."""
    return init_engine_from_url(
        settings.url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.pool_recycle,
        busy_timeout_seconds=settings.busy_timeout_seconds,
    )


def build_authorization_service(
    config: AuthorizationKernelConfig,
    database: Database | None = None,
    clock: Clock | None = None,
) -> AuthorizationService:
    """
    Wire the unit-of-work facade from configuration.

    When ``database`` is None a new handle is opened from
    ``config.database``.
    """
    return AuthorizationService(
        database or open_database(config.database),
        policy=build_utilization_policy(config.utilization),
        retry_policy=build_retry_policy(config.retry),
        clock=clock,
    )
