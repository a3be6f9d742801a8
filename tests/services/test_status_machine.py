"""Tests for AuthorizationStatusMachine manual actions."""

from uuid import uuid4

import pytest

from authorization_kernel.domain.dtos import AuthorizationStatus
from authorization_kernel.exceptions import (
    AuthorizationNotFoundError,
    InvalidStatusTransitionError,
)

S = AuthorizationStatus


class TestManualActions:
    def test_request_to_active(self, status_machine, store, make_authorization, test_actor_id):
        auth = make_authorization(status=S.REQUESTED)

        approved = status_machine.approve(auth.id, test_actor_id)
        activated = status_machine.activate(auth.id, test_actor_id)

        assert (approved.from_status, approved.to_status) == (S.REQUESTED, S.APPROVED)
        assert (activated.from_status, activated.to_status) == (S.APPROVED, S.ACTIVE)
        info = store.get(auth.id)
        assert info.status == S.ACTIVE
        assert info.updated_by_id == test_actor_id

    def test_cancel_records_reason(self, status_machine, store, make_authorization, captured_logs):
        auth = make_authorization()
        change = status_machine.cancel(auth.id, reason="client moved")
        assert change.to_status == S.CANCELLED
        assert change.reason == "client moved"
        assert store.get(auth.id).status == S.CANCELLED
        logged = [r for r in captured_logs() if r["message"] == "authorization_status_changed"]
        assert logged[-1]["reason"] == "client moved"
        assert logged[-1]["automatic"] is False

    def test_deny_and_expire(self, status_machine, make_authorization):
        denied = make_authorization(status=S.APPROVED)
        expiring = make_authorization(status=S.EXPIRING)
        assert status_machine.deny(denied.id).to_status == S.DENIED
        assert status_machine.expire(expiring.id).to_status == S.EXPIRED

    @pytest.mark.parametrize("terminal", [S.EXPIRED, S.DENIED, S.CANCELLED])
    def test_terminal_states_are_final(self, status_machine, make_authorization, terminal):
        auth = make_authorization(status=terminal)
        with pytest.raises(InvalidStatusTransitionError):
            status_machine.activate(auth.id)

    def test_expiring_cannot_be_reactivated(self, status_machine, store, make_authorization):
        auth = make_authorization(status=S.EXPIRING)
        with pytest.raises(InvalidStatusTransitionError):
            status_machine.transition(auth.id, S.ACTIVE)
        assert store.get(auth.id).status == S.EXPIRING

    def test_unknown_authorization(self, status_machine):
        with pytest.raises(AuthorizationNotFoundError):
            status_machine.approve(uuid4())
