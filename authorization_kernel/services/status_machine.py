"""
AuthorizationStatusMachine -- authorization status transitions.

Responsibility:
    Applies manual status actions (approve, activate, deny, cancel, expire)
    and the one automatic transition, ACTIVE -> EXPIRING once utilization
    reaches the expiring threshold after a ledger add.

Architecture position:
    Kernel > Services -- imperative shell.  The transition table and the
    threshold test are pure functions in domain/lifecycle.py.

Invariants enforced:
    - Only moves listed in AUTHORIZATION_TRANSITIONS are written.
    - Every write is a compare-and-swap on the current status
      (UPDATE ... WHERE status = <observed>), so a status read in one
      transaction can never overwrite a change committed by another.
    - EXPIRING is never demoted to ACTIVE.

Failure modes:
    - InvalidStatusTransitionError for moves outside the table.
    - ConcurrentModificationError if the compare-and-swap matched no row.
    - AuthorizationNotFoundError, StorageFailure.
"""

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from authorization_kernel.domain.clock import Clock, SystemClock
from authorization_kernel.domain.dtos import AuthorizationStatus, StatusChange
from authorization_kernel.domain.lifecycle import assert_transition, should_mark_expiring
from authorization_kernel.domain.policy import UtilizationPolicy
from authorization_kernel.exceptions import ConcurrentModificationError
from authorization_kernel.logging_config import get_logger
from authorization_kernel.models.authorization import Authorization
from authorization_kernel.services.authorization_store import AuthorizationStore
from authorization_kernel.services.base import (
    SYSTEM_ACTOR_ID,
    BaseService,
    storage_operation,
)

logger = get_logger("services.status_machine")


class AuthorizationStatusMachine(BaseService[Authorization]):
    """
    Validated status changes for authorizations.

    Contract:
        Flush-only.  Manual transitions lock the header row first; the
        automatic transition expects the caller (UtilizationLedger) to
        hold that lock already.
    """

    def __init__(
        self,
        session: Session,
        policy: UtilizationPolicy | None = None,
        clock: Clock | None = None,
        store: AuthorizationStore | None = None,
    ):
        super().__init__(session)
        self._policy = policy or UtilizationPolicy()
        self._clock = clock or SystemClock()
        self._store = store or AuthorizationStore(session, self._clock)

    def transition(
        self,
        authorization_id: UUID,
        target: AuthorizationStatus,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> StatusChange:
        """
        Move an authorization to ``target``.

        Raises:
            InvalidStatusTransitionError: If current -> target is not allowed.
        """
        model = self._store.lock(authorization_id)
        current = model.status
        assert_transition(authorization_id, current, target)
        return self._write(
            model, current, target, actor_id, reason=reason, automatic=False
        )

    def approve(self, authorization_id: UUID, actor_id: UUID | None = None) -> StatusChange:
        return self.transition(authorization_id, AuthorizationStatus.APPROVED, actor_id)

    def activate(self, authorization_id: UUID, actor_id: UUID | None = None) -> StatusChange:
        return self.transition(authorization_id, AuthorizationStatus.ACTIVE, actor_id)

    def deny(
        self,
        authorization_id: UUID,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> StatusChange:
        return self.transition(
            authorization_id, AuthorizationStatus.DENIED, actor_id, reason
        )

    def cancel(
        self,
        authorization_id: UUID,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> StatusChange:
        return self.transition(
            authorization_id, AuthorizationStatus.CANCELLED, actor_id, reason
        )

    def expire(self, authorization_id: UUID, actor_id: UUID | None = None) -> StatusChange:
        return self.transition(authorization_id, AuthorizationStatus.EXPIRED, actor_id)

    def mark_expiring_if_due(
        self,
        model: Authorization,
        used_units: int,
        authorized_units: int,
        actor_id: UUID | None = None,
    ) -> StatusChange | None:
        """
        ACTIVE -> EXPIRING when used_units reaches the expiring threshold.

        ``model`` must already be locked by the caller.  Returns None when
        no transition applies.
        """
        current = model.status
        if not should_mark_expiring(
            current,
            used_units,
            authorized_units,
            self._policy.expiring_threshold_percent,
        ):
            return None
        return self._write(
            model,
            current,
            AuthorizationStatus.EXPIRING,
            actor_id,
            reason=f"utilization reached {self._policy.expiring_threshold_percent}%",
            automatic=True,
            extra={"used_units": used_units, "authorized_units": authorized_units},
        )

    def _write(
        self,
        model: Authorization,
        current: AuthorizationStatus,
        target: AuthorizationStatus,
        actor_id: UUID | None,
        reason: str | None,
        automatic: bool,
        extra: dict | None = None,
    ) -> StatusChange:
        authorization_id = model.id
        with storage_operation("transition", "authorization", authorization_id):
            result = self.session.execute(
                update(Authorization)
                .where(
                    Authorization.id == authorization_id,
                    Authorization.status == current,
                )
                .values(
                    status=target,
                    updated_by_id=actor_id or SYSTEM_ACTOR_ID,
                    updated_at=self._clock.now(),
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                "authorization", authorization_id, current.value
            )
        self.session.expire(model, ["status", "updated_by_id", "updated_at"])

        logger.info(
            "authorization_status_changed",
            extra={
                "authorization_id": str(authorization_id),
                "from_status": current.value,
                "to_status": target.value,
                "reason": reason,
                "automatic": automatic,
                **(extra or {}),
            },
        )
        return StatusChange(
            authorization_id=authorization_id,
            from_status=current,
            to_status=target,
            reason=reason,
        )
