"""
Authorization status lifecycle.

Responsibility:
    The transition table for authorization status and the pure checks the
    status machine service runs before writing.

    requested -> approved | denied | cancelled
    approved  -> active   | denied | cancelled
    active    -> expiring | expired | denied | cancelled
    expiring  -> expired  | denied | cancelled
    expired, denied, cancelled are terminal.

    EXPIRING never returns to ACTIVE, even when units are released later.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from datetime import date
from typing import Any
from uuid import UUID

from authorization_kernel.domain.dtos import AuthorizationStatus, ExpirationStatus
from authorization_kernel.exceptions import InvalidStatusTransitionError

AUTHORIZATION_TRANSITIONS: dict[AuthorizationStatus, frozenset[AuthorizationStatus]] = {
    AuthorizationStatus.REQUESTED: frozenset(
        {
            AuthorizationStatus.APPROVED,
            AuthorizationStatus.DENIED,
            AuthorizationStatus.CANCELLED,
        }
    ),
    AuthorizationStatus.APPROVED: frozenset(
        {
            AuthorizationStatus.ACTIVE,
            AuthorizationStatus.DENIED,
            AuthorizationStatus.CANCELLED,
        }
    ),
    AuthorizationStatus.ACTIVE: frozenset(
        {
            AuthorizationStatus.EXPIRING,
            AuthorizationStatus.EXPIRED,
            AuthorizationStatus.DENIED,
            AuthorizationStatus.CANCELLED,
        }
    ),
    AuthorizationStatus.EXPIRING: frozenset(
        {
            AuthorizationStatus.EXPIRED,
            AuthorizationStatus.DENIED,
            AuthorizationStatus.CANCELLED,
        }
    ),
    AuthorizationStatus.EXPIRED: frozenset(),
    AuthorizationStatus.DENIED: frozenset(),
    AuthorizationStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[AuthorizationStatus] = frozenset(
    status for status, targets in AUTHORIZATION_TRANSITIONS.items() if not targets
)


def is_terminal(status: AuthorizationStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: AuthorizationStatus, target: AuthorizationStatus) -> bool:
    return target in AUTHORIZATION_TRANSITIONS.get(current, frozenset())


def assert_transition(
    authorization_id: Any,
    current: AuthorizationStatus,
    target: AuthorizationStatus,
) -> None:
    """Raise InvalidStatusTransitionError if current -> target is not allowed."""
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            authorization_id, current.value, target.value
        )


def should_mark_expiring(
    status: AuthorizationStatus,
    used_units: int,
    authorized_units: int,
    threshold_percent: int,
) -> bool:
    """ACTIVE authorizations move to EXPIRING once utilization reaches the threshold."""
    if status != AuthorizationStatus.ACTIVE or authorized_units <= 0:
        return False
    return used_units * 100 >= authorized_units * threshold_percent


def expiration_status(
    authorization_id: UUID, end_date: date, today: date, days_threshold: int
) -> ExpirationStatus:
    """Expired once today is past end_date; expiring within days_threshold of it."""
    days_remaining = (end_date - today).days
    is_expired = days_remaining < 0
    return ExpirationStatus(
        authorization_id=authorization_id,
        expiration_date=end_date,
        days_remaining=days_remaining,
        is_expiring=not is_expired and days_remaining <= days_threshold,
        is_expired=is_expired,
    )
