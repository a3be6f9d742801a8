"""
AuthorizationStore -- persistence of authorization aggregates.

Responsibility:
    Creates and updates authorization headers together with their
    service-type set and ledger row, and serves the aggregate reads the
    rest of the kernel needs.

Architecture position:
    Kernel > Services -- imperative shell.  Writes through the ORM models,
    reads through AuthorizationSelector.

Invariants enforced:
    - start_date <= end_date on the header and on every sub-authorization
      window that sets both dates.
    - Service type ids are unique within one authorization and caps are
      non-negative.
    - create() inserts header, service types and a zero ledger row inside
      one savepoint: either all rows exist afterwards or none do.
    - update() replaces the service-type set wholesale and never touches
      the ledger row.
    - The header row is locked (SELECT ... FOR UPDATE) before any update.

Failure modes:
    - AuthorizationNotFoundError / ServiceTypeNotFoundError.
    - InvalidDateRangeError, DuplicateServiceTypeError, InvalidUnitsError
      before anything is written.
    - StorageFailure for any database error.
"""

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from authorization_kernel.domain.clock import Clock, SystemClock
from authorization_kernel.domain.dtos import (
    AuthorizationHeader,
    AuthorizationInfo,
    AuthorizationPage,
    AuthorizationPatch,
    AuthorizationStatus,
    CandidateService,
    DateRange,
    ExpirationStatus,
    ServiceTypeEntry,
    ServiceTypeInfo,
)
from authorization_kernel.domain.lifecycle import expiration_status
from authorization_kernel.domain.validation import pick_best_match
from authorization_kernel.exceptions import (
    AuthorizationNotFoundError,
    DuplicateServiceTypeError,
    InvalidDateRangeError,
    InvalidUnitsError,
    ServiceTypeNotFoundError,
)
from authorization_kernel.logging_config import get_logger
from authorization_kernel.models.authorization import (
    Authorization,
    AuthorizationServiceType,
    AuthorizationUtilization,
)
from authorization_kernel.selectors.authorization_selector import AuthorizationSelector
from authorization_kernel.services.base import (
    SYSTEM_ACTOR_ID,
    BaseService,
    storage_operation,
)

logger = get_logger("services.authorization_store")


def validate_entries(entries: Sequence[ServiceTypeEntry]) -> None:
    """Reject duplicate service types, negative caps and inverted windows."""
    seen: set[UUID] = set()
    for entry in entries:
        if entry.service_type_id in seen:
            raise DuplicateServiceTypeError(entry.service_type_id)
        seen.add(entry.service_type_id)

        if entry.authorized_units < 0:
            raise InvalidUnitsError(
                entry.authorized_units, "authorized units must be >= 0"
            )
        for limit in (entry.daily_limit, entry.weekly_limit, entry.monthly_limit):
            if limit is not None and limit < 0:
                raise InvalidUnitsError(limit, "sub-caps must be >= 0")

        if (
            entry.effective_date is not None
            and entry.end_date is not None
            and entry.effective_date > entry.end_date
        ):
            raise InvalidDateRangeError(
                entry.effective_date, entry.end_date, subject="service type"
            )


class AuthorizationStore(BaseService[Authorization]):
    """
    Write side of the authorization aggregate.

    Contract:
        Flush-only.  Every method that returns an aggregate re-reads it
        through the selector so callers always see committed-shape DTOs.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._selector = AuthorizationSelector(session)

    @property
    def selector(self) -> AuthorizationSelector:
        return self._selector

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock(self, authorization_id: UUID) -> Authorization:
        """
        Lock and return the header row.

        Raises:
            AuthorizationNotFoundError: If the id does not exist.
        """
        with storage_operation("lock", "authorization", authorization_id):
            model = self.session.execute(
                select(Authorization)
                .where(Authorization.id == authorization_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if model is None:
            raise AuthorizationNotFoundError(authorization_id)
        return model

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        header: AuthorizationHeader,
        entries: Sequence[ServiceTypeEntry],
        actor_id: UUID | None = None,
    ) -> AuthorizationInfo:
        """
        Insert header, service types and a zero ledger row atomically.

        Returns:
            The full aggregate.
        """
        if not header.date_range.is_well_formed:
            raise InvalidDateRangeError(header.start_date, header.end_date)
        validate_entries(entries)

        actor = actor_id or SYSTEM_ACTOR_ID
        with storage_operation("create", "authorization"):
            with self.session.begin_nested():
                model = Authorization(
                    client_id=header.client_id,
                    program_id=header.program_id,
                    authorization_number=header.authorization_number,
                    start_date=header.start_date,
                    end_date=header.end_date,
                    status=header.status,
                    notes=header.notes,
                    created_by_id=actor,
                )
                model.service_types = [
                    self._service_type_row(entry, actor) for entry in entries
                ]
                self.session.add(model)
                self.session.flush()

                self.session.add(
                    AuthorizationUtilization(
                        authorization_id=model.id,
                        used_units=0,
                        last_update_amount=0,
                    )
                )
                self.session.flush()

        logger.info(
            "authorization_created",
            extra={
                "authorization_id": str(model.id),
                "client_id": str(header.client_id),
                "authorization_number": header.authorization_number,
                "status": header.status.value,
                "service_type_count": len(entries),
                "authorized_units": sum(e.authorized_units for e in entries),
            },
        )
        return self.get(model.id)

    def update(
        self,
        authorization_id: UUID,
        patch: AuthorizationPatch,
        entries: Sequence[ServiceTypeEntry] | None = None,
        actor_id: UUID | None = None,
    ) -> AuthorizationInfo:
        """
        Patch header fields and, when entries is given, replace the whole
        service-type set.  The ledger row is left untouched.
        """
        model = self.lock(authorization_id)
        changes = patch.changes()

        start = changes.get("start_date", model.start_date)
        end = changes.get("end_date", model.end_date)
        if start > end:
            raise InvalidDateRangeError(start, end)
        if entries is not None:
            validate_entries(entries)

        actor = actor_id or SYSTEM_ACTOR_ID
        with storage_operation("update", "authorization", authorization_id):
            with self.session.begin_nested():
                for name, value in changes.items():
                    setattr(model, name, value)
                model.updated_by_id = actor

                if entries is not None:
                    # Deletes must reach the database before the replacement
                    # rows or the (authorization, service type) key collides.
                    model.service_types.clear()
                    self.session.flush()
                    model.service_types.extend(
                        self._service_type_row(entry, actor) for entry in entries
                    )
                self.session.flush()

        logger.info(
            "authorization_updated",
            extra={
                "authorization_id": str(authorization_id),
                "fields": sorted(changes),
                "service_types_replaced": entries is not None,
            },
        )
        return self.get(authorization_id)

    def update_status(
        self,
        authorization_id: UUID,
        status: AuthorizationStatus,
        actor_id: UUID | None = None,
    ) -> AuthorizationInfo:
        """Direct status write.  Lifecycle rules live in the status machine."""
        model = self.lock(authorization_id)
        previous = model.status
        with storage_operation("update_status", "authorization", authorization_id):
            model.status = status
            model.updated_by_id = actor_id or SYSTEM_ACTOR_ID
            self.session.flush()

        logger.info(
            "authorization_status_written",
            extra={
                "authorization_id": str(authorization_id),
                "from_status": previous.value,
                "to_status": status.value,
            },
        )
        return self.get(authorization_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, authorization_id: UUID) -> AuthorizationInfo:
        with storage_operation("get", "authorization", authorization_id):
            info = self._selector.get(authorization_id)
        if info is None:
            raise AuthorizationNotFoundError(authorization_id)
        return info

    def get_service_type(
        self, authorization_id: UUID, service_type_id: UUID
    ) -> ServiceTypeInfo:
        info = self.get(authorization_id)
        service_type = info.service_type(service_type_id)
        if service_type is None:
            raise ServiceTypeNotFoundError(authorization_id, service_type_id)
        return service_type

    def find_active_for_client(
        self, client_id: UUID, as_of: date | None = None
    ) -> list[AuthorizationInfo]:
        with storage_operation("find_active_for_client", "authorization"):
            return self._selector.find_active_for_client(
                client_id, as_of or self._clock.today()
            )

    def find_matching_authorization(
        self, candidate: CandidateService
    ) -> AuthorizationInfo | None:
        """
        The ACTIVE authorization the candidate should be recorded against:
        covering its service type and date, with the most remaining units.
        """
        with storage_operation("find_matching_authorization", "authorization"):
            active = self._selector.find_active_for_client(
                candidate.client_id, candidate.service_date
            )
        match = pick_best_match(active, candidate)
        logger.debug(
            "authorization_match",
            extra={
                "client_id": str(candidate.client_id),
                "service_type_id": str(candidate.service_type_id),
                "service_date": candidate.service_date,
                "candidates": len(active),
                "matched_id": str(match.id) if match else None,
            },
        )
        return match

    def check_expiration(
        self,
        authorization_id: UUID,
        days_threshold: int,
        today: date | None = None,
    ) -> ExpirationStatus:
        if days_threshold < 0:
            raise ValueError("days_threshold must be >= 0")
        info = self.get(authorization_id)
        return expiration_status(
            info.id, info.end_date, today or self._clock.today(), days_threshold
        )

    def find_expiring(
        self, days_threshold: int, today: date | None = None
    ) -> list[AuthorizationInfo]:
        if days_threshold < 0:
            raise ValueError("days_threshold must be >= 0")
        with storage_operation("find_expiring", "authorization"):
            return self._selector.find_expiring(
                today or self._clock.today(), days_threshold
            )

    def find_by_number(self, authorization_number: str) -> list[AuthorizationInfo]:
        with storage_operation("find_by_number", "authorization"):
            return self._selector.find_by_number(authorization_number)

    def list_for_client(
        self,
        client_id: UUID,
        statuses: list[AuthorizationStatus] | None = None,
        date_range: DateRange | None = None,
        service_type_id: UUID | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> AuthorizationPage:
        with storage_operation("list_for_client", "authorization"):
            return self._selector.find_for_client(
                client_id,
                statuses=statuses,
                date_range=date_range,
                service_type_id=service_type_id,
                page=page,
                page_size=page_size,
            )

    @staticmethod
    def _service_type_row(
        entry: ServiceTypeEntry, actor: UUID
    ) -> AuthorizationServiceType:
        return AuthorizationServiceType(
            service_type_id=entry.service_type_id,
            authorized_units=entry.authorized_units,
            daily_limit=entry.daily_limit,
            weekly_limit=entry.weekly_limit,
            monthly_limit=entry.monthly_limit,
            rate=entry.rate,
            effective_date=entry.effective_date,
            end_date=entry.end_date,
            created_by_id=actor,
        )
