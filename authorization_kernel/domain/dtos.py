"""
Domain DTOs -- immutable value objects crossing the kernel boundary.

Responsibility:
    Frozen dataclasses for everything the kernel accepts from callers
    (headers, service-type entries, candidate services) and everything it
    returns (aggregates, utilization snapshots, validation results).
    Services and selectors never hand ORM instances to callers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class AuthorizationStatus(str, Enum):
    """Lifecycle status of an authorization.

    Happy path: REQUESTED -> APPROVED -> ACTIVE -> EXPIRING -> EXPIRED.
    DENIED and CANCELLED end the lifecycle from any non-terminal state.
    """

    REQUESTED = "requested"
    APPROVED = "approved"
    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    DENIED = "denied"
    CANCELLED = "cancelled"


class AdjustDirection(str, Enum):
    """Direction of a utilization ledger adjustment."""

    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar range."""

    start_date: date
    end_date: date

    @property
    def is_well_formed(self) -> bool:
        return self.start_date <= self.end_date

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def overlaps(self, other: DateRange) -> bool:
        """Closed-interval intersection test."""
        return self.start_date <= other.end_date and self.end_date >= other.start_date


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceTypeEntry:
    """One sub-authorization as supplied by the caller.

    effective_date/end_date default to the parent authorization's range
    when left as None.
    """

    service_type_id: UUID
    authorized_units: int
    daily_limit: int | None = None
    weekly_limit: int | None = None
    monthly_limit: int | None = None
    rate: Decimal | None = None
    effective_date: date | None = None
    end_date: date | None = None


@dataclass(frozen=True)
class AuthorizationHeader:
    """Header fields for a new authorization."""

    client_id: UUID
    program_id: UUID
    authorization_number: str
    start_date: date
    end_date: date
    status: AuthorizationStatus = AuthorizationStatus.APPROVED
    notes: str | None = None

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)


@dataclass(frozen=True)
class AuthorizationPatch:
    """Partial header update.  None means "leave unchanged".

    Notes are the only nullable header field; ``clear_notes=True`` writes
    NULL.  Status is absent: status moves go through the status machine.
    """

    program_id: UUID | None = None
    authorization_number: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    notes: str | None = None
    clear_notes: bool = False

    def __post_init__(self) -> None:
        if self.clear_notes and self.notes is not None:
            raise ValueError("notes and clear_notes are mutually exclusive")

    def changes(self) -> dict[str, Any]:
        changes = {
            name: value
            for name, value in (
                ("program_id", self.program_id),
                ("authorization_number", self.authorization_number),
                ("start_date", self.start_date),
                ("end_date", self.end_date),
                ("notes", self.notes),
            )
            if value is not None
        }
        if self.clear_notes:
            changes["notes"] = None
        return changes


@dataclass(frozen=True)
class CandidateService:
    """A prospective billable service, supplied by the recording workflow."""

    client_id: UUID
    service_type_id: UUID
    service_date: date
    units: int


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceTypeInfo:
    """A persisted sub-authorization, with its window resolved."""

    id: UUID
    authorization_id: UUID
    service_type_id: UUID
    authorized_units: int
    effective_date: date
    end_date: date
    daily_limit: int | None = None
    weekly_limit: int | None = None
    monthly_limit: int | None = None
    rate: Decimal | None = None


@dataclass(frozen=True)
class UtilizationSnapshot:
    """Point-in-time view of an authorization's ledger row.

    remaining_units and utilization_percentage are derived on read.
    """

    authorization_id: UUID
    used_units: int
    authorized_units: int
    remaining_units: int
    utilization_percentage: float
    last_update_amount: int = 0
    last_updated: datetime | None = None
    last_updated_by_id: UUID | None = None


@dataclass(frozen=True)
class AuthorizationInfo:
    """Full authorization aggregate: header, service types, utilization."""

    id: UUID
    client_id: UUID
    program_id: UUID
    authorization_number: str
    start_date: date
    end_date: date
    status: AuthorizationStatus
    notes: str | None
    service_types: tuple[ServiceTypeInfo, ...]
    utilization: UtilizationSnapshot
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)

    @property
    def service_type_ids(self) -> tuple[UUID, ...]:
        return tuple(st.service_type_id for st in self.service_types)

    @property
    def authorized_units(self) -> int:
        return self.utilization.authorized_units

    def service_type(self, service_type_id: UUID) -> ServiceTypeInfo | None:
        for st in self.service_types:
            if st.service_type_id == service_type_id:
                return st
        return None


@dataclass(frozen=True)
class AuthorizationPage:
    """One page of a client's authorizations."""

    items: tuple[AuthorizationInfo, ...]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class ValidationIssue:
    """One error or warning raised by the validation rules."""

    code: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    """Verdict for a candidate service.  Warnings never block."""

    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()

    @property
    def is_authorized(self) -> bool:
        return not self.errors

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(issue.code for issue in self.errors)

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(issue.code for issue in self.warnings)


@dataclass(frozen=True)
class ServiceRecording:
    """Outcome of validating and recording one service in a single unit of work.

    utilization is None when validation rejected the candidate and the
    ledger was left untouched.
    """

    validation: ValidationResult
    utilization: UtilizationSnapshot | None = None

    @property
    def recorded(self) -> bool:
        return self.utilization is not None


@dataclass(frozen=True)
class StatusChange:
    """A status transition that was applied."""

    authorization_id: UUID
    from_status: AuthorizationStatus
    to_status: AuthorizationStatus
    reason: str | None = None


@dataclass(frozen=True)
class ExpirationStatus:
    """Date-based expiry view of one authorization as of a given day.

    days_remaining is 0 on the end date itself, negative once it has passed.
    """

    authorization_id: UUID
    expiration_date: date
    days_remaining: int
    is_expiring: bool
    is_expired: bool


@dataclass(frozen=True)
class ServiceValidation:
    """One entry of a batch validation.

    authorization_id is the authorization the candidate was checked
    against, or None when none was given and none matched.
    """

    candidate: CandidateService
    authorization_id: UUID | None
    validation: ValidationResult
