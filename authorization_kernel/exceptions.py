"""
Typed Exception Hierarchy for the Authorization Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from AuthorizationKernelError:

    AuthorizationKernelError (base)
    |
    +-- NotFoundError
    |   +-- AuthorizationNotFoundError
    |   +-- ServiceTypeNotFoundError
    |
    +-- BusinessRuleViolation
    |   +-- UnitsExceededError
    |   +-- InvalidUnitsError
    |   +-- InvalidDateRangeError
    |   +-- DuplicateServiceTypeError
    |   +-- OverlappingAuthorizationError
    |   +-- InvalidStatusTransitionError
    |   +-- CapacityBelowUsageError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- StorageFailure

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                                  | When Raised
-------------|---------------------------------------|-----------------------------
Not found    | authorization.not_found               | Authorization ID unknown
             | authorization.service_type.not_found  | Sub-authorization missing
-------------|---------------------------------------|-----------------------------
Business     | authorization.units.exceeded          | Ledger add would pass cap
             | authorization.units.invalid           | Non-positive delta, bad cap
             | authorization.invalid_date_range      | start_date > end_date
             | duplicate                             | Service type listed twice
             | authorization.overlap                 | Conflicting authorization
             | authorization.status_transition       | Move not in lifecycle table
             | authorization.units.below_usage       | New caps below used units
-------------|---------------------------------------|-----------------------------
Concurrency  | authorization.concurrent_modification | Compare-and-swap lost
-------------|---------------------------------------|-----------------------------
Storage      | storage.failure                       | Any persistence error

===============================================================================
HANDLING PATTERNS
===============================================================================

NotFoundError and BusinessRuleViolation are expected outcomes that a caller
can act on.  StorageFailure is unexpected: it has already been logged with
full context when raised, and should be surfaced as a generic failure.
``StorageFailure.retryable`` and every ConcurrencyError mark operations the
caller may simply run again.

    try:
        ledger.adjust(authorization_id, 4, AdjustDirection.ADD)
    except UnitsExceededError as e:
        reject(code=e.code, remaining=e.authorized_units - e.used_units)
    except StorageFailure as e:
        if e.retryable:
            retry()
        raise
"""

from typing import Any


class AuthorizationKernelError(Exception):
    """
    Base exception for all authorization kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "AUTHORIZATION_KERNEL_ERROR"


# Not found


class NotFoundError(AuthorizationKernelError):
    """Base exception for missing entities."""

    code: str = "not_found"


class AuthorizationNotFoundError(NotFoundError):
    """Authorization with given ID was not found."""

    code: str = "authorization.not_found"

    def __init__(self, authorization_id: Any):
        self.authorization_id = str(authorization_id)
        super().__init__(f"Authorization not found: {authorization_id}")


class ServiceTypeNotFoundError(NotFoundError):
    """Service type is not part of the authorization."""

    code: str = "authorization.service_type.not_found"

    def __init__(self, authorization_id: Any, service_type_id: Any):
        self.authorization_id = str(authorization_id)
        self.service_type_id = str(service_type_id)
        super().__init__(
            f"Service type {service_type_id} not found on authorization "
            f"{authorization_id}"
        )


# Business rules


class BusinessRuleViolation(AuthorizationKernelError):
    """Base exception for rejected operations that broke a business rule."""

    code: str = "business_rule"


class UnitsExceededError(BusinessRuleViolation):
    """Adding units would take utilization past the authorized cap."""

    code: str = "authorization.units.exceeded"

    def __init__(
        self,
        authorization_id: Any,
        used_units: int,
        requested_units: int,
        authorized_units: int,
    ):
        self.authorization_id = str(authorization_id)
        self.used_units = used_units
        self.requested_units = requested_units
        self.authorized_units = authorized_units
        super().__init__(
            f"Adding {requested_units} units would exceed the authorized limit "
            f"of {authorized_units} units (used: {used_units})"
        )


class InvalidUnitsError(BusinessRuleViolation):
    """Unit quantity is not acceptable (non-positive delta, negative cap)."""

    code: str = "authorization.units.invalid"

    def __init__(self, units: Any, reason: str):
        self.units = units
        self.reason = reason
        super().__init__(f"Invalid units {units!r}: {reason}")


class InvalidDateRangeError(BusinessRuleViolation):
    """Start date falls after end date."""

    code: str = "authorization.invalid_date_range"

    def __init__(self, start_date: Any, end_date: Any, subject: str = "authorization"):
        self.start_date = str(start_date)
        self.end_date = str(end_date)
        self.subject = subject
        super().__init__(
            f"Invalid {subject} date range: {start_date} is after {end_date}"
        )


class DuplicateServiceTypeError(BusinessRuleViolation):
    """The same service type appears more than once in one authorization."""

    code: str = "duplicate"

    def __init__(self, service_type_id: Any):
        self.service_type_id = str(service_type_id)
        super().__init__(f"Service type listed more than once: {service_type_id}")


class OverlappingAuthorizationError(BusinessRuleViolation):
    """Another authorization covers the same client, service type and dates."""

    code: str = "authorization.overlap"

    def __init__(
        self,
        client_id: Any,
        start_date: Any,
        end_date: Any,
        conflicting_ids: list[str],
    ):
        self.client_id = str(client_id)
        self.start_date = str(start_date)
        self.end_date = str(end_date)
        self.conflicting_ids = conflicting_ids
        super().__init__(
            f"Overlapping authorization exists for client {client_id} "
            f"between {start_date} and {end_date}: {', '.join(conflicting_ids)}"
        )


class InvalidStatusTransitionError(BusinessRuleViolation):
    """Requested status change is not in the lifecycle table."""

    code: str = "authorization.status_transition"

    def __init__(self, authorization_id: Any, from_status: str, to_status: str):
        self.authorization_id = str(authorization_id)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid status transition for authorization {authorization_id}: "
            f"{from_status} -> {to_status}"
        )


class CapacityBelowUsageError(BusinessRuleViolation):
    """Replacement service-type caps total less than the units already used."""

    code: str = "authorization.units.below_usage"

    def __init__(self, authorization_id: Any, used_units: int, authorized_units: int):
        self.authorization_id = str(authorization_id)
        self.used_units = used_units
        self.authorized_units = authorized_units
        super().__init__(
            f"Authorization {authorization_id} has {used_units} units used; "
            f"new total cap {authorized_units} is too low"
        )


# Concurrency


class ConcurrencyError(AuthorizationKernelError):
    """Base exception for concurrency conflicts.  Always retryable."""

    code: str = "concurrency"
    retryable: bool = True


class ConcurrentModificationError(ConcurrencyError):
    """A compare-and-swap write found the row changed underneath it."""

    code: str = "authorization.concurrent_modification"

    def __init__(self, entity: str, entity_id: Any, expected: Any):
        self.entity = entity
        self.entity_id = str(entity_id)
        self.expected = str(expected)
        super().__init__(
            f"Concurrent modification of {entity} {entity_id} "
            f"(expected {expected})"
        )


# Storage


class StorageFailure(AuthorizationKernelError):
    """
    Wraps an underlying persistence error with operation and entity context.

    ``retryable`` is True when the database reported a transient condition
    (lock or transaction timeout, deadlock, serialization failure).
    """

    code: str = "storage.failure"

    def __init__(
        self,
        operation: str,
        entity: str,
        entity_id: Any = None,
        detail: str = "",
        retryable: bool = False,
    ):
        self.operation = operation
        self.entity = entity
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.detail = detail
        self.retryable = retryable
        target = f"{entity} {entity_id}" if entity_id is not None else entity
        super().__init__(f"Storage failure during {operation} on {target}: {detail}")
