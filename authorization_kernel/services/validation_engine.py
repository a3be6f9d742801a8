"""
ValidationEngine -- pre-commit check of a candidate billable service.

Loads the authorization aggregate and its current used units, then runs the
pure rules in domain/validation.py.  Read-only: it never creates the ledger
row and never reserves capacity.  Business-rule failures come back in the
ValidationResult; only storage errors raise.

A caller that validates and then adjusts the ledger must do both in one
transaction with the header row locked (see
AuthorizationService.record_service), otherwise a concurrent caller can see
the same pre-adjustment capacity.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from authorization_kernel.domain.dtos import (
    CandidateService,
    ServiceValidation,
    ValidationResult,
)
from authorization_kernel.domain.policy import UtilizationPolicy
from authorization_kernel.domain.validation import (
    evaluate_candidate,
    no_match_result,
    not_found_result,
    pick_best_match,
)
from authorization_kernel.logging_config import get_logger
from authorization_kernel.models.authorization import Authorization
from authorization_kernel.selectors.authorization_selector import AuthorizationSelector
from authorization_kernel.services.base import BaseService, storage_operation

logger = get_logger("services.validation_engine")


class ValidationEngine(BaseService[Authorization]):
    """Combines date, service-type, client, capacity and status checks."""

    def __init__(self, session: Session, policy: UtilizationPolicy | None = None):
        super().__init__(session)
        self._policy = policy or UtilizationPolicy()
        self._selector = AuthorizationSelector(session)

    def validate(
        self, candidate: CandidateService, authorization_id: UUID
    ) -> ValidationResult:
        with storage_operation("validate", "authorization", authorization_id):
            authorization = self._selector.get(authorization_id)
            if authorization is None:
                result = not_found_result(authorization_id)
            else:
                result = evaluate_candidate(
                    authorization,
                    authorization.utilization.used_units,
                    candidate,
                    self._policy,
                )

        logger.info(
            "service_validated",
            extra={
                "authorization_id": str(authorization_id),
                "client_id": str(candidate.client_id),
                "service_type_id": str(candidate.service_type_id),
                "service_date": candidate.service_date,
                "units": candidate.units,
                "is_authorized": result.is_authorized,
                "errors": list(result.error_codes),
                "warnings": list(result.warning_codes),
            },
        )
        return result

    def validate_services(
        self, items: Sequence[tuple[CandidateService, UUID | None]]
    ) -> list[ServiceValidation]:
        """
        Validate several candidates, in order.

        Each item pairs a candidate with the authorization to check it
        against.  When that id is None the best matching ACTIVE
        authorization is used (see ``pick_best_match``); with no match the
        entry carries an ``authorization.no_match`` error.  Candidates are
        checked independently: units of earlier entries are not counted
        against later ones.
        """
        results: list[ServiceValidation] = []
        for candidate, authorization_id in items:
            if authorization_id is None:
                with storage_operation("validate_services", "authorization"):
                    match = pick_best_match(
                        self._selector.find_active_for_client(
                            candidate.client_id, candidate.service_date
                        ),
                        candidate,
                    )
                if match is None:
                    logger.info(
                        "service_unmatched",
                        extra={
                            "client_id": str(candidate.client_id),
                            "service_type_id": str(candidate.service_type_id),
                            "service_date": candidate.service_date,
                        },
                    )
                    results.append(
                        ServiceValidation(candidate, None, no_match_result(candidate))
                    )
                    continue
                authorization_id = match.id
            results.append(
                ServiceValidation(
                    candidate, authorization_id, self.validate(candidate, authorization_id)
                )
            )
        return results
