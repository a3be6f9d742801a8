"""
Tests for UtilizationLedger.

Invariants tested:
- 0 <= used_units <= authorized units after every adjustment.
- A rejected add changes nothing.
- remove clamps at zero.
- The ledger row is created lazily and only once.
- ACTIVE -> EXPIRING at 80% in the same unit of work; never reversed.
"""

from uuid import uuid4

import pytest
from sqlalchemy import delete, func, select

from authorization_kernel.domain.dtos import AdjustDirection, AuthorizationStatus
from authorization_kernel.exceptions import (
    AuthorizationNotFoundError,
    InvalidUnitsError,
    UnitsExceededError,
)
from authorization_kernel.models.authorization import AuthorizationUtilization

ADD = AdjustDirection.ADD
REMOVE = AdjustDirection.REMOVE


class TestAdd:
    def test_add_within_cap(self, ledger, make_authorization, test_actor_id, deterministic_clock):
        auth = make_authorization(units=100)
        snap = ledger.adjust(auth.id, 25, ADD, actor_id=test_actor_id)
        assert snap.used_units == 25
        assert snap.remaining_units == 75
        assert snap.utilization_percentage == 25.0
        assert snap.last_update_amount == 25
        assert snap.last_updated_by_id == test_actor_id
        assert snap.last_updated is not None

    def test_add_up_to_cap_exactly(self, ledger, make_authorization):
        auth = make_authorization(units=10, status=AuthorizationStatus.APPROVED)
        snap = ledger.adjust(auth.id, 10, ADD)
        assert snap.used_units == 10
        assert snap.remaining_units == 0

    def test_add_past_cap_fails_without_change(self, ledger, make_authorization):
        auth = make_authorization(units=50, used=45, status=AuthorizationStatus.APPROVED)
        with pytest.raises(UnitsExceededError) as exc_info:
            ledger.adjust(auth.id, 10, ADD)

        err = exc_info.value
        assert err.code == "authorization.units.exceeded"
        assert err.used_units == 45
        assert err.requested_units == 10
        assert err.authorized_units == 50
        assert ledger.get(auth.id).used_units == 45

    def test_rejection_is_logged(self, ledger, make_authorization, captured_logs):
        auth = make_authorization(units=5, status=AuthorizationStatus.APPROVED)
        with pytest.raises(UnitsExceededError):
            ledger.adjust(auth.id, 6, ADD)
        assert any(
            r["message"] == "utilization_cap_rejected" and r["requested_units"] == 6
            for r in captured_logs()
        )

    def test_cap_is_sum_of_service_types(self, ledger, make_authorization):
        auth = make_authorization(units=30, service_type_ids=[uuid4(), uuid4()])
        # make_authorization gives extra types a zero cap
        assert auth.authorized_units == 30
        with pytest.raises(UnitsExceededError):
            ledger.adjust(auth.id, 31, ADD)


class TestRemove:
    def test_remove(self, ledger, make_authorization):
        auth = make_authorization(units=100, used=40)
        snap = ledger.adjust(auth.id, 15, REMOVE)
        assert snap.used_units == 25
        assert snap.last_update_amount == -15

    def test_remove_clamps_at_zero(self, ledger, make_authorization):
        auth = make_authorization(units=100, used=5)
        snap = ledger.adjust(auth.id, 50, REMOVE)
        assert snap.used_units == 0
        assert snap.last_update_amount == -5


class TestUnitsValidation:
    @pytest.mark.parametrize("units", [0, -3])
    def test_non_positive_units_rejected(self, ledger, make_authorization, units):
        auth = make_authorization()
        with pytest.raises(InvalidUnitsError):
            ledger.adjust(auth.id, units, ADD)

    def test_unknown_authorization(self, ledger):
        with pytest.raises(AuthorizationNotFoundError):
            ledger.adjust(uuid4(), 1, ADD)
        with pytest.raises(AuthorizationNotFoundError):
            ledger.get(uuid4())


class TestLazyInit:
    def _drop_ledger_row(self, session, authorization_id):
        session.execute(
            delete(AuthorizationUtilization).where(
                AuthorizationUtilization.authorization_id == authorization_id
            )
        )
        session.expire_all()

    def _ledger_rows(self, session, authorization_id) -> int:
        return session.execute(
            select(func.count()).select_from(AuthorizationUtilization).where(
                AuthorizationUtilization.authorization_id == authorization_id
            )
        ).scalar_one()

    def test_get_twice_creates_one_zero_row(self, session, ledger, make_authorization):
        auth = make_authorization(units=100)
        self._drop_ledger_row(session, auth.id)

        first = ledger.get(auth.id)
        second = ledger.get(auth.id)

        assert first.used_units == second.used_units == 0
        assert first.remaining_units == second.remaining_units == 100
        assert self._ledger_rows(session, auth.id) == 1

    def test_adjust_creates_missing_row(self, session, ledger, make_authorization):
        auth = make_authorization(units=100)
        self._drop_ledger_row(session, auth.id)

        snap = ledger.adjust(auth.id, 7, ADD)
        assert snap.used_units == 7
        assert self._ledger_rows(session, auth.id) == 1


class TestExpiringTransition:
    def test_crossing_eighty_percent_marks_expiring(self, ledger, store, make_authorization):
        auth = make_authorization(units=100, used=79)
        assert store.get(auth.id).status == AuthorizationStatus.ACTIVE

        snap = ledger.adjust(auth.id, 1, ADD)

        assert snap.used_units == 80
        assert snap.utilization_percentage == 80.0
        assert store.get(auth.id).status == AuthorizationStatus.EXPIRING

    def test_remove_never_reverts_expiring(self, ledger, store, make_authorization):
        auth = make_authorization(units=100, used=79)
        ledger.adjust(auth.id, 1, ADD)

        snap = ledger.adjust(auth.id, 10, REMOVE)

        assert snap.used_units == 70
        assert store.get(auth.id).status == AuthorizationStatus.EXPIRING

    def test_non_active_status_untouched(self, ledger, store, make_authorization):
        auth = make_authorization(units=100, status=AuthorizationStatus.APPROVED)
        ledger.adjust(auth.id, 95, ADD)
        assert store.get(auth.id).status == AuthorizationStatus.APPROVED

    def test_transition_logged(self, ledger, make_authorization, captured_logs):
        auth = make_authorization(units=10)
        ledger.adjust(auth.id, 8, ADD)
        changes = [
            r for r in captured_logs() if r["message"] == "authorization_status_changed"
        ]
        assert len(changes) == 1
        assert changes[0]["from_status"] == "active"
        assert changes[0]["to_status"] == "expiring"
        assert changes[0]["automatic"] is True
