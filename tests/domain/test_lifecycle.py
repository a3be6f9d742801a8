"""
Tests for the authorization status lifecycle (``authorization_kernel.domain.lifecycle``).

Invariants tested:
- AUTHORIZATION_TRANSITIONS defines the only valid status transitions.
  Terminal states have no outgoing edges.
- EXPIRING never returns to ACTIVE.
- ACTIVE -> EXPIRING fires at >= threshold percent, in integer arithmetic.
"""

from datetime import date
from uuid import uuid4

import pytest

from authorization_kernel.domain.dtos import AuthorizationStatus
from authorization_kernel.domain.lifecycle import (
    AUTHORIZATION_TRANSITIONS,
    TERMINAL_STATUSES,
    assert_transition,
    can_transition,
    expiration_status,
    is_terminal,
    should_mark_expiring,
)
from authorization_kernel.exceptions import InvalidStatusTransitionError

S = AuthorizationStatus


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(AUTHORIZATION_TRANSITIONS) == set(AuthorizationStatus)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {S.EXPIRED, S.DENIED, S.CANCELLED}
        for status in TERMINAL_STATUSES:
            assert is_terminal(status)
            assert not AUTHORIZATION_TRANSITIONS[status]

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.REQUESTED, S.APPROVED),
            (S.APPROVED, S.ACTIVE),
            (S.ACTIVE, S.EXPIRING),
            (S.ACTIVE, S.EXPIRED),
            (S.EXPIRING, S.EXPIRED),
        ],
    )
    def test_forward_path(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current", [S.REQUESTED, S.APPROVED, S.ACTIVE, S.EXPIRING]
    )
    def test_deny_and_cancel_from_any_non_terminal(self, current):
        assert can_transition(current, S.DENIED)
        assert can_transition(current, S.CANCELLED)

    def test_expiring_never_returns_to_active(self):
        assert not can_transition(S.EXPIRING, S.ACTIVE)

    def test_no_skipping_approval(self):
        assert not can_transition(S.REQUESTED, S.ACTIVE)

    @pytest.mark.parametrize("status", list(AuthorizationStatus))
    def test_no_self_transitions(self, status):
        assert not can_transition(status, status)

    def test_assert_transition_raises_with_context(self):
        authorization_id = uuid4()
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            assert_transition(authorization_id, S.DENIED, S.ACTIVE)
        err = exc_info.value
        assert err.code == "authorization.status_transition"
        assert err.from_status == "denied"
        assert err.to_status == "active"
        assert err.authorization_id == str(authorization_id)


class TestShouldMarkExpiring:
    def test_exactly_at_threshold(self):
        assert should_mark_expiring(S.ACTIVE, 80, 100, 80)

    def test_just_below_threshold(self):
        assert not should_mark_expiring(S.ACTIVE, 79, 100, 80)

    def test_threshold_with_uneven_cap(self):
        # 80% of 7 is 5.6: 5 units is below, 6 is above
        assert not should_mark_expiring(S.ACTIVE, 5, 7, 80)
        assert should_mark_expiring(S.ACTIVE, 6, 7, 80)

    @pytest.mark.parametrize(
        "status", [S.REQUESTED, S.APPROVED, S.EXPIRING, S.EXPIRED, S.DENIED, S.CANCELLED]
    )
    def test_only_active_moves(self, status):
        assert not should_mark_expiring(status, 100, 100, 80)

    def test_zero_cap_never_marks(self):
        assert not should_mark_expiring(S.ACTIVE, 0, 0, 80)


class TestExpirationStatus:
    END = date(2024, 6, 30)

    def test_end_date_itself_is_not_expired(self):
        status = expiration_status(uuid4(), self.END, self.END, days_threshold=30)
        assert status.days_remaining == 0
        assert not status.is_expired
        assert status.is_expiring

    def test_day_after_end_is_expired(self):
        status = expiration_status(uuid4(), self.END, date(2024, 7, 1), days_threshold=30)
        assert status.days_remaining == -1
        assert status.is_expired
        assert not status.is_expiring

    def test_threshold_is_inclusive(self):
        at = expiration_status(uuid4(), self.END, date(2024, 5, 31), days_threshold=30)
        beyond = expiration_status(uuid4(), self.END, date(2024, 5, 30), days_threshold=30)
        assert (at.days_remaining, at.is_expiring) == (30, True)
        assert (beyond.days_remaining, beyond.is_expiring) == (31, False)
        assert beyond.expiration_date == self.END
