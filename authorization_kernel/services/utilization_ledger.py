"""
UtilizationLedger -- the running count of units consumed per authorization.

Responsibility:
    Applies unit deltas to the single ledger row of an authorization and
    hands the post-add utilization to the status machine.

Architecture position:
    Kernel > Services -- imperative shell.  Percentages and snapshots come
    from domain/utilization.py.

Invariants enforced:
    - 0 <= used_units <= authorized units after every adjustment.  The
      authorized units are the sum of the authorization's service-type caps.
    - Read-decide-write is never split: the header row and the ledger row
      are locked (SELECT ... FOR UPDATE) before anything is decided, and
      the add itself is one conditional UPDATE
      (SET used = used + n WHERE used + n <= cap).  A concurrent writer
      therefore cannot pass the same capacity check.
    - remove clamps at zero and is written as a compare-and-swap on the
      observed value.
    - The ledger row is created lazily (zero) on first read or write; a
      concurrent creator is absorbed by a savepoint + IntegrityError retry,
      so there is never more than one row.
    - ACTIVE -> EXPIRING happens inside the same transaction as the add.

Failure modes:
    - InvalidUnitsError if units <= 0.
    - UnitsExceededError if an add would pass the cap.  Nothing is written.
    - AuthorizationNotFoundError, ConcurrentModificationError, StorageFailure.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authorization_kernel.domain.clock import Clock, SystemClock
from authorization_kernel.domain.dtos import AdjustDirection, UtilizationSnapshot
from authorization_kernel.domain.policy import UtilizationPolicy
from authorization_kernel.domain.validation import is_positive_units
from authorization_kernel.exceptions import (
    AuthorizationNotFoundError,
    ConcurrentModificationError,
    InvalidUnitsError,
    UnitsExceededError,
)
from authorization_kernel.logging_config import get_logger
from authorization_kernel.models.authorization import AuthorizationUtilization
from authorization_kernel.services.authorization_store import AuthorizationStore
from authorization_kernel.services.base import (
    SYSTEM_ACTOR_ID,
    BaseService,
    storage_operation,
)
from authorization_kernel.services.status_machine import AuthorizationStatusMachine

logger = get_logger("services.utilization_ledger")


class UtilizationLedger(BaseService[AuthorizationUtilization]):
    """
    Atomic increment/decrement of an authorization's used units.

    Usage:
        with database.session_scope() as session:
            ledger = UtilizationLedger(session, policy, clock)
            snapshot = ledger.adjust(authorization_id, 4, AdjustDirection.ADD)
    """

    def __init__(
        self,
        session: Session,
        policy: UtilizationPolicy | None = None,
        clock: Clock | None = None,
        store: AuthorizationStore | None = None,
        status_machine: AuthorizationStatusMachine | None = None,
    ):
        super().__init__(session)
        self._policy = policy or UtilizationPolicy()
        self._clock = clock or SystemClock()
        self._store = store or AuthorizationStore(session, self._clock)
        self._status_machine = status_machine or AuthorizationStatusMachine(
            session, self._policy, self._clock, self._store
        )

    def adjust(
        self,
        authorization_id: UUID,
        units: int,
        direction: AdjustDirection,
        actor_id: UUID | None = None,
    ) -> UtilizationSnapshot:
        """
        Apply ``units`` to the ledger in ``direction``.

        Preconditions:
            - units > 0; the direction carries the sign.

        Postconditions:
            - add: used_units grew by exactly units, or UnitsExceededError
              was raised and nothing changed.
            - remove: used_units = max(0, used_units - units).

        Returns:
            The snapshot after the adjustment.
        """
        if not is_positive_units(units):
            raise InvalidUnitsError(units, "units must be a positive integer")
        direction = AdjustDirection(direction)

        # Header lock first: ledger writers and status writers for the same
        # authorization queue behind the same row.
        model = self._store.lock(authorization_id)
        row = self._ensure_row(authorization_id, lock=True)
        with storage_operation("adjust", "authorization_utilization", authorization_id):
            authorized = self._store.selector.authorized_units(authorization_id)
        observed = row.used_units
        actor = actor_id or SYSTEM_ACTOR_ID

        if direction == AdjustDirection.ADD:
            new_used = self._apply_add(authorization_id, observed, units, authorized, actor)
            applied = units
        else:
            new_used = max(0, observed - units)
            applied = new_used - observed
            self._apply_remove(authorization_id, observed, new_used, applied, actor)

        self.session.expire(row)

        logger.info(
            "utilization_adjusted",
            extra={
                "authorization_id": str(authorization_id),
                "direction": direction.value,
                "units": units,
                "applied": applied,
                "used_units": new_used,
                "authorized_units": authorized,
            },
        )

        if direction == AdjustDirection.ADD:
            self._status_machine.mark_expiring_if_due(
                model, new_used, authorized, actor_id
            )

        return self.get(authorization_id)

    def get(self, authorization_id: UUID) -> UtilizationSnapshot:
        """Current snapshot, creating a zero ledger row on first access."""
        with storage_operation("get", "authorization_utilization", authorization_id):
            if not self._store.selector.exists(authorization_id):
                raise AuthorizationNotFoundError(authorization_id)
        self._ensure_row(authorization_id, lock=False)
        with storage_operation("get", "authorization_utilization", authorization_id):
            return self._store.selector.utilization(authorization_id)

    def _select_row(self, authorization_id: UUID, lock: bool):
        query = select(AuthorizationUtilization).where(
            AuthorizationUtilization.authorization_id == authorization_id
        )
        if lock:
            query = query.with_for_update()
        return query.execution_options(populate_existing=True)

    def _ensure_row(self, authorization_id: UUID, lock: bool) -> AuthorizationUtilization:
        with storage_operation(
            "ensure_row", "authorization_utilization", authorization_id
        ):
            row = self.session.execute(
                self._select_row(authorization_id, lock)
            ).scalar_one_or_none()
            if row is not None:
                return row

            # Savepoint so a concurrent creator does not roll back the
            # caller's outer transaction.
            try:
                with self.session.begin_nested():
                    row = AuthorizationUtilization(
                        authorization_id=authorization_id,
                        used_units=0,
                        last_update_amount=0,
                    )
                    self.session.add(row)
                    self.session.flush()
                logger.debug(
                    "utilization_row_created",
                    extra={"authorization_id": str(authorization_id)},
                )
                return row
            except IntegrityError:
                logger.debug(
                    "utilization_row_race_retry",
                    extra={"authorization_id": str(authorization_id)},
                )
                return self.session.execute(
                    self._select_row(authorization_id, lock)
                ).scalar_one()

    def _apply_add(
        self,
        authorization_id: UUID,
        observed: int,
        units: int,
        authorized: int,
        actor: UUID,
    ) -> int:
        column = AuthorizationUtilization.used_units
        with storage_operation("add", "authorization_utilization", authorization_id):
            result = self.session.execute(
                update(AuthorizationUtilization)
                .where(
                    AuthorizationUtilization.authorization_id == authorization_id,
                    column + units <= authorized,
                )
                .values(
                    used_units=column + units,
                    last_update_amount=units,
                    last_updated=self._clock.now(),
                    last_updated_by_id=actor,
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            logger.warning(
                "utilization_cap_rejected",
                extra={
                    "authorization_id": str(authorization_id),
                    "used_units": observed,
                    "requested_units": units,
                    "authorized_units": authorized,
                },
            )
            raise UnitsExceededError(authorization_id, observed, units, authorized)
        return observed + units

    def _apply_remove(
        self,
        authorization_id: UUID,
        observed: int,
        new_used: int,
        applied: int,
        actor: UUID,
    ) -> None:
        with storage_operation("remove", "authorization_utilization", authorization_id):
            result = self.session.execute(
                update(AuthorizationUtilization)
                .where(
                    AuthorizationUtilization.authorization_id == authorization_id,
                    AuthorizationUtilization.used_units == observed,
                )
                .values(
                    used_units=new_used,
                    last_update_amount=applied,
                    last_updated=self._clock.now(),
                    last_updated_by_id=actor,
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                "authorization_utilization", authorization_id, observed
            )
