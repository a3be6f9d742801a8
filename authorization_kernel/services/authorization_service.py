"""
AuthorizationService -- unit-of-work facade over the authorization kernel.

Responsibility:
    The entry point for callers outside the kernel.  Each public method
    opens one transaction on the Database handle, wires the components
    (store, ledger, overlap detector, validation engine, status machine)
    onto that session, runs the operation and commits.

Architecture position:
    Kernel > Services -- the only service that owns transaction boundaries.

Invariants enforced:
    - Overlap guard on create, on update (excluding the authorization
      itself) and on any status change that enters an overlap status.
      On PostgreSQL the guard holds a transaction-scoped advisory lock per
      client so two concurrent creates cannot both pass it.
    - record_service validates and adjusts the ledger in ONE transaction
      with the header row locked; a rejected candidate leaves the ledger
      untouched.
    - A replacement service-type set whose total cap is below the units
      already used is rejected.
    - Operations failing with a retryable StorageFailure or a
      ConcurrencyError are re-run in a fresh transaction up to
      RetryPolicy.max_attempts times.

Usage:
    database = init_engine_from_url("postgresql://...")
    service = AuthorizationService(database, UtilizationPolicy(), RetryPolicy())
    info = service.create_authorization(header, entries, actor_id=user_id)
    recording = service.record_service(candidate, info.id, actor_id=user_id)
    if not recording.recorded:
        reject(recording.validation.errors)
"""

import time
from collections.abc import Callable, Sequence
from datetime import date
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session

from authorization_kernel.db.engine import Database
from authorization_kernel.domain.clock import Clock, SystemClock
from authorization_kernel.domain.dtos import (
    AdjustDirection,
    AuthorizationHeader,
    AuthorizationInfo,
    AuthorizationPage,
    AuthorizationPatch,
    AuthorizationStatus,
    CandidateService,
    DateRange,
    ExpirationStatus,
    ServiceRecording,
    ServiceTypeEntry,
    ServiceValidation,
    StatusChange,
    UtilizationSnapshot,
    ValidationResult,
)
from authorization_kernel.domain.policy import RetryPolicy, UtilizationPolicy
from authorization_kernel.domain.validation import not_found_result
from authorization_kernel.exceptions import (
    AuthorizationNotFoundError,
    CapacityBelowUsageError,
    ConcurrencyError,
    InvalidDateRangeError,
    StorageFailure,
)
from authorization_kernel.logging_config import LogContext, get_logger
from authorization_kernel.services.authorization_store import AuthorizationStore
from authorization_kernel.services.base import storage_operation
from authorization_kernel.services.overlap_detector import OverlapDetector
from authorization_kernel.services.status_machine import AuthorizationStatusMachine
from authorization_kernel.services.utilization_ledger import UtilizationLedger
from authorization_kernel.services.validation_engine import ValidationEngine

logger = get_logger("services.authorization_service")

T = TypeVar("T")


class _Components:
    """The kernel components bound to one session."""

    def __init__(
        self, session: Session, policy: UtilizationPolicy, clock: Clock
    ):
        self.session = session
        self.store = AuthorizationStore(session, clock)
        self.status_machine = AuthorizationStatusMachine(
            session, policy, clock, self.store
        )
        self.ledger = UtilizationLedger(
            session, policy, clock, self.store, self.status_machine
        )
        self.detector = OverlapDetector(session, policy)
        self.validation = ValidationEngine(session, policy)


class AuthorizationService:
    """
    Transactional facade.

    Contract:
        Every public method runs in its own transaction and returns frozen
        DTOs.  Business-rule exceptions propagate unchanged; validation
        outcomes are returned, not raised.
    """

    def __init__(
        self,
        database: Database,
        policy: UtilizationPolicy | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
    ):
        self._database = database
        self._policy = policy or UtilizationPolicy()
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock or SystemClock()

    @property
    def policy(self) -> UtilizationPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[_Components], T],
        authorization_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> T:
        with LogContext.bind(
            correlation_id=uuid4(),
            actor_id=actor_id,
            authorization_id=authorization_id,
        ):
            attempt = 1
            while True:
                try:
                    # Commit errors surface outside the components' own
                    # wrappers; catch them here too.
                    with storage_operation(operation, "authorization", authorization_id):
                        with self._database.session_scope() as session:
                            return work(_Components(session, self._policy, self._clock))
                except (StorageFailure, ConcurrencyError) as exc:
                    if not exc.retryable or attempt >= self._retry.max_attempts:
                        raise
                    logger.warning(
                        "operation_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "max_attempts": self._retry.max_attempts,
                            "error_code": exc.code,
                        },
                    )
                    if self._retry.backoff_seconds:
                        time.sleep(self._retry.backoff_seconds * attempt)
                    attempt += 1

    @staticmethod
    def _lock_client(components: _Components, client_id: UUID) -> None:
        """Serialize overlap checks per client.  SQLite already serializes writers."""
        if components.session.get_bind().dialect.name != "postgresql":
            return
        components.session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"authorization-client:{client_id}"},
        )

    # ------------------------------------------------------------------
    # Authorization lifecycle
    # ------------------------------------------------------------------

    def create_authorization(
        self,
        header: AuthorizationHeader,
        entries: Sequence[ServiceTypeEntry],
        actor_id: UUID | None = None,
    ) -> AuthorizationInfo:
        """
        Create an authorization after checking it conflicts with nothing.

        Raises:
            OverlappingAuthorizationError: If the header status takes part in
                overlap detection and a conflicting authorization exists.
        """

        def work(c: _Components) -> AuthorizationInfo:
            if not header.date_range.is_well_formed:
                raise InvalidDateRangeError(header.start_date, header.end_date)
            if header.status in self._policy.overlap_statuses:
                self._lock_client(c, header.client_id)
                c.detector.ensure_no_overlap(
                    header.client_id,
                    [e.service_type_id for e in entries],
                    header.date_range,
                )
            return c.store.create(header, entries, actor_id)

        with LogContext.bind(client_id=header.client_id):
            return self._run("create_authorization", work, actor_id=actor_id)

    def update_authorization(
        self,
        authorization_id: UUID,
        patch: AuthorizationPatch,
        entries: Sequence[ServiceTypeEntry] | None = None,
        actor_id: UUID | None = None,
    ) -> AuthorizationInfo:
        """
        Patch the header and optionally replace the service-type set.

        Raises:
            OverlappingAuthorizationError: If the new range or set conflicts
                with another authorization of the same client.
            CapacityBelowUsageError: If the replacement caps total less than
                the units already used.
        """

        def work(c: _Components) -> AuthorizationInfo:
            model = c.store.lock(authorization_id)
            changes = patch.changes()
            new_range = DateRange(
                changes.get("start_date", model.start_date),
                changes.get("end_date", model.end_date),
            )
            if not new_range.is_well_formed:
                raise InvalidDateRangeError(new_range.start_date, new_range.end_date)

            if entries is not None:
                service_type_ids = [e.service_type_id for e in entries]
            else:
                service_type_ids = [st.service_type_id for st in model.service_types]

            if model.status in self._policy.overlap_statuses:
                self._lock_client(c, model.client_id)
                c.detector.ensure_no_overlap(
                    model.client_id,
                    service_type_ids,
                    new_range,
                    exclude_authorization_id=authorization_id,
                )

            if entries is not None:
                used = c.store.selector.used_units(authorization_id)
                new_cap = sum(e.authorized_units for e in entries)
                if new_cap < used:
                    raise CapacityBelowUsageError(authorization_id, used, new_cap)

            return c.store.update(authorization_id, patch, entries, actor_id)

        return self._run(
            "update_authorization", work, authorization_id, actor_id=actor_id
        )

    def change_status(
        self,
        authorization_id: UUID,
        target: AuthorizationStatus,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> StatusChange:
        """
        Apply a manual status action.

        Entering an overlap status (e.g. REQUESTED -> APPROVED) runs the
        overlap guard first.
        """

        def work(c: _Components) -> StatusChange:
            model = c.store.lock(authorization_id)
            entering = (
                target in self._policy.overlap_statuses
                and model.status not in self._policy.overlap_statuses
            )
            if entering:
                self._lock_client(c, model.client_id)
                c.detector.ensure_no_overlap(
                    model.client_id,
                    [st.service_type_id for st in model.service_types],
                    DateRange(model.start_date, model.end_date),
                    exclude_authorization_id=authorization_id,
                )
            return c.status_machine.transition(authorization_id, target, actor_id, reason)

        return self._run("change_status", work, authorization_id, actor_id=actor_id)

    # ------------------------------------------------------------------
    # Services against an authorization
    # ------------------------------------------------------------------

    def validate_service(
        self, candidate: CandidateService, authorization_id: UUID
    ) -> ValidationResult:
        """Read-only check.  Does not reserve capacity."""
        return self._run(
            "validate_service",
            lambda c: c.validation.validate(candidate, authorization_id),
            authorization_id,
        )

    def validate_services(
        self, items: Sequence[tuple[CandidateService, UUID | None]]
    ) -> list[ServiceValidation]:
        """Batch read-only check.  A None id means "use the best match"."""
        return self._run(
            "validate_services", lambda c: c.validation.validate_services(items)
        )

    def find_matching_authorization(
        self, candidate: CandidateService
    ) -> AuthorizationInfo | None:
        return self._run(
            "find_matching_authorization",
            lambda c: c.store.find_matching_authorization(candidate),
        )

    def record_service(
        self,
        candidate: CandidateService,
        authorization_id: UUID,
        actor_id: UUID | None = None,
    ) -> ServiceRecording:
        """
        Validate the candidate and, when authorized, add its units to the
        ledger, all under the header row lock in one transaction.
        """

        def work(c: _Components) -> ServiceRecording:
            try:
                c.store.lock(authorization_id)
            except AuthorizationNotFoundError:
                return ServiceRecording(validation=not_found_result(authorization_id))

            validation = c.validation.validate(candidate, authorization_id)
            if not validation.is_authorized:
                logger.info(
                    "service_rejected",
                    extra={
                        "authorization_id": str(authorization_id),
                        "errors": list(validation.error_codes),
                    },
                )
                return ServiceRecording(validation=validation)

            snapshot = c.ledger.adjust(
                authorization_id, candidate.units, AdjustDirection.ADD, actor_id
            )
            return ServiceRecording(validation=validation, utilization=snapshot)

        with LogContext.bind(client_id=candidate.client_id):
            return self._run("record_service", work, authorization_id, actor_id=actor_id)

    def release_service(
        self,
        authorization_id: UUID,
        units: int,
        actor_id: UUID | None = None,
    ) -> UtilizationSnapshot:
        """Give units back to the authorization (ledger remove, clamps at zero)."""
        return self._run(
            "release_service",
            lambda c: c.ledger.adjust(
                authorization_id, units, AdjustDirection.REMOVE, actor_id
            ),
            authorization_id,
            actor_id=actor_id,
        )

    def adjust_utilization(
        self,
        authorization_id: UUID,
        units: int,
        direction: AdjustDirection,
        actor_id: UUID | None = None,
    ) -> UtilizationSnapshot:
        """Raw ledger adjustment for callers that validated on their own."""
        return self._run(
            "adjust_utilization",
            lambda c: c.ledger.adjust(authorization_id, units, direction, actor_id),
            authorization_id,
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_authorization(self, authorization_id: UUID) -> AuthorizationInfo:
        return self._run(
            "get_authorization", lambda c: c.store.get(authorization_id), authorization_id
        )

    def get_utilization(self, authorization_id: UUID) -> UtilizationSnapshot:
        return self._run(
            "get_utilization", lambda c: c.ledger.get(authorization_id), authorization_id
        )

    def find_expiring(
        self, days_threshold: int | None = None, today: date | None = None
    ) -> list[AuthorizationInfo]:
        if days_threshold is None:
            days_threshold = self._policy.default_expiring_window_days
        return self._run(
            "find_expiring", lambda c: c.store.find_expiring(days_threshold, today)
        )

    def check_expiration(
        self,
        authorization_id: UUID,
        days_threshold: int | None = None,
        today: date | None = None,
    ) -> ExpirationStatus:
        if days_threshold is None:
            days_threshold = self._policy.default_expiring_window_days
        return self._run(
            "check_expiration",
            lambda c: c.store.check_expiration(authorization_id, days_threshold, today),
            authorization_id,
        )

    def find_active_for_client(
        self, client_id: UUID, as_of: date | None = None
    ) -> list[AuthorizationInfo]:
        return self._run(
            "find_active_for_client",
            lambda c: c.store.find_active_for_client(client_id, as_of),
        )

    def find_by_number(self, authorization_number: str) -> list[AuthorizationInfo]:
        return self._run(
            "find_by_number", lambda c: c.store.find_by_number(authorization_number)
        )

    def list_for_client(
        self,
        client_id: UUID,
        statuses: list[AuthorizationStatus] | None = None,
        date_range: DateRange | None = None,
        service_type_id: UUID | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> AuthorizationPage:
        return self._run(
            "list_for_client",
            lambda c: c.store.list_for_client(
                client_id, statuses, date_range, service_type_id, page, page_size
            ),
        )

    def overlaps(
        self,
        client_id: UUID,
        service_type_ids: Sequence[UUID],
        date_range: DateRange,
        exclude_authorization_id: UUID | None = None,
    ) -> bool:
        return self._run(
            "overlaps",
            lambda c: c.detector.overlaps(
                client_id, service_type_ids, date_range, exclude_authorization_id
            ),
        )
