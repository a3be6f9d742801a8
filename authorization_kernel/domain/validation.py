"""
Candidate service validation rules.

Responsibility:
    Decide whether a prospective billable service fits an authorization.
    Every applicable rule is evaluated so that all problems are reported
    together; business-rule failures are returned as structured issues,
    never raised.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The
    ValidationEngine service loads the aggregate and the current used units,
    then calls ``evaluate_candidate``.

Rules (in report order):
    1. service_date within [start_date, end_date]   -> authorization.date_range
    2. service type among the authorization's types -> authorization.service_type
    3. client matches                               -> authorization.client
    4. units a positive integer                     -> authorization.units.invalid
       else capacity: used + units > cap            -> authorization.units.exceeded
       otherwise used + units above near-limit %    -> warning authorization.units.near_limit
    5. status EXPIRED                               -> authorization.expired
       status EXPIRING                              -> warning authorization.expiring
"""

from collections.abc import Iterable
from uuid import UUID

from authorization_kernel.domain.dtos import (
    AuthorizationInfo,
    AuthorizationStatus,
    CandidateService,
    ValidationIssue,
    ValidationResult,
)
from authorization_kernel.domain.policy import UtilizationPolicy
from authorization_kernel.domain.utilization import above_percent, would_exceed

NOT_FOUND = "authorization.not_found"
NO_MATCH = "authorization.no_match"
DATE_RANGE = "authorization.date_range"
SERVICE_TYPE = "authorization.service_type"
CLIENT = "authorization.client"
UNITS_INVALID = "authorization.units.invalid"
UNITS_EXCEEDED = "authorization.units.exceeded"
UNITS_NEAR_LIMIT = "authorization.units.near_limit"
EXPIRED = "authorization.expired"
EXPIRING = "authorization.expiring"


def is_positive_units(units: object) -> bool:
    """True for a positive int.  bool is rejected even though it subclasses int."""
    return isinstance(units, int) and not isinstance(units, bool) and units > 0


def not_found_result(authorization_id: UUID) -> ValidationResult:
    return ValidationResult(
        errors=(
            ValidationIssue(
                NOT_FOUND, f"Authorization with ID {authorization_id} not found"
            ),
        )
    )


def no_match_result(candidate: CandidateService) -> ValidationResult:
    return ValidationResult(
        errors=(
            ValidationIssue(
                NO_MATCH,
                f"No active authorization covers service type "
                f"{candidate.service_type_id} on {candidate.service_date}",
            ),
        )
    )


def pick_best_match(
    authorizations: Iterable[AuthorizationInfo], candidate: CandidateService
) -> AuthorizationInfo | None:
    """
    The authorization a candidate should draw on, or None.

    Among authorizations of the candidate's client that include its service
    type and contain its service date, the one with the most remaining units
    wins.  Ties go to the one ending first, then to the lower id, so the
    choice does not depend on query order.
    """
    eligible = [
        a
        for a in authorizations
        if a.client_id == candidate.client_id
        and candidate.service_type_id in a.service_type_ids
        and a.date_range.contains(candidate.service_date)
    ]
    if not eligible:
        return None
    return min(
        eligible,
        key=lambda a: (-a.utilization.remaining_units, a.end_date, str(a.id)),
    )


def evaluate_candidate(
    authorization: AuthorizationInfo,
    used_units: int,
    candidate: CandidateService,
    policy: UtilizationPolicy,
) -> ValidationResult:
    """Run every rule against the candidate and collect errors and warnings."""
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    if not authorization.date_range.contains(candidate.service_date):
        errors.append(
            ValidationIssue(
                DATE_RANGE,
                f"Service date {candidate.service_date} is outside authorization "
                f"date range ({authorization.start_date} - {authorization.end_date})",
            )
        )

    if candidate.service_type_id not in authorization.service_type_ids:
        errors.append(
            ValidationIssue(
                SERVICE_TYPE,
                f"Service type {candidate.service_type_id} is not included in "
                f"authorization",
            )
        )

    if candidate.client_id != authorization.client_id:
        errors.append(
            ValidationIssue(
                CLIENT,
                f"Service client ID {candidate.client_id} does not match "
                f"authorization client ID {authorization.client_id}",
            )
        )

    authorized = authorization.authorized_units
    if not is_positive_units(candidate.units):
        errors.append(
            ValidationIssue(
                UNITS_INVALID,
                f"Units must be a positive integer, got {candidate.units!r}",
            )
        )
    elif would_exceed(used_units, candidate.units, authorized):
        errors.append(
            ValidationIssue(
                UNITS_EXCEEDED,
                f"Adding {candidate.units} units would exceed the authorized limit "
                f"(used: {used_units}, authorized: {authorized})",
            )
        )
    elif above_percent(
        used_units + candidate.units, authorized, policy.near_limit_percent
    ):
        warnings.append(
            ValidationIssue(
                UNITS_NEAR_LIMIT,
                f"Adding {candidate.units} units will bring utilization to "
                f"{round((used_units + candidate.units) * 100 / authorized)}% of authorized limit",
            )
        )

    if authorization.status == AuthorizationStatus.EXPIRED:
        errors.append(ValidationIssue(EXPIRED, "Authorization is expired"))
    elif authorization.status == AuthorizationStatus.EXPIRING:
        warnings.append(ValidationIssue(EXPIRING, "Authorization is expiring soon"))

    return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))
