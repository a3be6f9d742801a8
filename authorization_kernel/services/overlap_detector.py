"""
OverlapDetector -- conflicting authorizations for the same client.

Two authorizations overlap when they belong to the same client, both are in
one of the policy's overlap statuses (ACTIVE, APPROVED, EXPIRING by
default), their closed date ranges intersect
(existing.start <= candidate.end and existing.end >= candidate.start), and
they share at least one service type.  An empty service-type list never
overlaps anything.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from authorization_kernel.domain.dtos import DateRange
from authorization_kernel.domain.policy import UtilizationPolicy
from authorization_kernel.exceptions import (
    InvalidDateRangeError,
    OverlappingAuthorizationError,
)
from authorization_kernel.logging_config import get_logger
from authorization_kernel.models.authorization import Authorization
from authorization_kernel.selectors.authorization_selector import AuthorizationSelector
from authorization_kernel.services.base import BaseService, storage_operation

logger = get_logger("services.overlap_detector")


class OverlapDetector(BaseService[Authorization]):
    """Read-only guard run before authorizations are created or updated."""

    def __init__(self, session: Session, policy: UtilizationPolicy | None = None):
        super().__init__(session)
        self._policy = policy or UtilizationPolicy()
        self._selector = AuthorizationSelector(session)

    def find_overlapping(
        self,
        client_id: UUID,
        service_type_ids: Sequence[UUID],
        date_range: DateRange,
        exclude_authorization_id: UUID | None = None,
    ) -> list[UUID]:
        """Ids of the conflicting authorizations, oldest start date first."""
        if not date_range.is_well_formed:
            raise InvalidDateRangeError(date_range.start_date, date_range.end_date)
        if not service_type_ids:
            return []
        with storage_operation("find_overlapping", "authorization"):
            conflicting = self._selector.overlapping_ids(
                client_id,
                list(service_type_ids),
                date_range,
                self._policy.overlap_statuses,
                exclude_authorization_id,
            )
        if conflicting:
            logger.info(
                "overlap_detected",
                extra={
                    "client_id": str(client_id),
                    "start_date": date_range.start_date,
                    "end_date": date_range.end_date,
                    "conflicting_ids": [str(c) for c in conflicting],
                },
            )
        return conflicting

    def overlaps(
        self,
        client_id: UUID,
        service_type_ids: Sequence[UUID],
        date_range: DateRange,
        exclude_authorization_id: UUID | None = None,
    ) -> bool:
        return bool(
            self.find_overlapping(
                client_id, service_type_ids, date_range, exclude_authorization_id
            )
        )

    def ensure_no_overlap(
        self,
        client_id: UUID,
        service_type_ids: Sequence[UUID],
        date_range: DateRange,
        exclude_authorization_id: UUID | None = None,
    ) -> None:
        """
        Raises:
            OverlappingAuthorizationError: If any conflicting authorization exists.
        """
        conflicting = self.find_overlapping(
            client_id, service_type_ids, date_range, exclude_authorization_id
        )
        if conflicting:
            raise OverlappingAuthorizationError(
                client_id,
                date_range.start_date,
                date_range.end_date,
                [str(c) for c in conflicting],
            )
