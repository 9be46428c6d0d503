import uuid
from datetime import datetime, timezone

import pytest

from app.core.exceptions import (
    InvalidStateTransition,
    ReconciliationPermissionError,
    ReconciliationValidationError,
)
from app.models.stock_reconciliation import ReconciliationStatus as S
from app.models.user import UserRole
from app.schemas.stock_reconciliation import Actor
from app.services import reconciliation_state_machine as sm
from app.services.reconciliation_state_machine import ReconciliationAction as A


def actor(role: UserRole) -> Actor:
    return Actor(user_id=uuid.uuid4(), role=role)


ADMIN = actor(UserRole.ADMIN)
MANAGER = actor(UserRole.MANAGER)
STAFF = actor(UserRole.STAFF)


def test_transition_table_shape():
    assert set(sm.TRANSITIONS) == {
        (A.SUBMIT, S.DRAFT),
        (A.APPROVE, S.PENDING_APPROVAL),
        (A.REJECT, S.PENDING_APPROVAL),
        (A.DELETE, S.DRAFT),
    }
    assert sm.get_transition(A.SUBMIT, "DRAFT").to_status == S.PENDING_APPROVAL
    assert sm.get_transition(A.DELETE, S.DRAFT).to_status is None


@pytest.mark.parametrize("status", [S.APPROVED, S.REJECTED])
def test_terminal_states(status):
    assert sm.is_terminal(status)
    assert not sm.can_edit(status)
    for action in A:
        assert not sm.can_transition(action, status)
    assert sm.get_allowed_actions(status, UserRole.ADMIN) == []


def test_only_drafts_are_editable():
    assert sm.can_edit(S.DRAFT)
    assert not sm.can_edit(S.PENDING_APPROVAL)
    sm.ensure_editable(S.DRAFT)
    with pytest.raises(InvalidStateTransition):
        sm.ensure_editable(S.PENDING_APPROVAL, "add items to")


@pytest.mark.parametrize(
    "status, role, expected",
    [
        (S.DRAFT, UserRole.ADMIN, {A.SUBMIT, A.DELETE}),
        (S.DRAFT, UserRole.MANAGER, {A.SUBMIT, A.DELETE}),
        (S.DRAFT, UserRole.STAFF, set()),
        (S.PENDING_APPROVAL, UserRole.ADMIN, {A.APPROVE, A.REJECT}),
        (S.PENDING_APPROVAL, UserRole.MANAGER, set()),
    ],
)
def test_allowed_actions(status, role, expected):
    assert set(sm.get_allowed_actions(status, role)) == expected


def test_submit_requires_editor_role():
    with pytest.raises(ReconciliationPermissionError):
        sm.validate_transition(A.SUBMIT, S.DRAFT, STAFF, item_count=1)

    transition = sm.validate_transition(A.SUBMIT, S.DRAFT, MANAGER, item_count=1)
    assert transition.to_status == S.PENDING_APPROVAL


def test_submit_requires_items():
    with pytest.raises(ReconciliationValidationError):
        sm.validate_transition(A.SUBMIT, S.DRAFT, ADMIN, item_count=0)


def test_approve_draft_is_illegal():
    with pytest.raises(InvalidStateTransition) as exc:
        sm.validate_transition(A.APPROVE, S.DRAFT, ADMIN)
    assert exc.value.details["allowed_actions"] == ["submit", "delete"]


def test_state_is_checked_before_role():
    # A manager approving a draft is an illegal transition, not a permission problem
    with pytest.raises(InvalidStateTransition):
        sm.validate_transition(A.APPROVE, S.DRAFT, MANAGER)


def test_approve_and_reject_are_admin_only():
    with pytest.raises(ReconciliationPermissionError):
        sm.validate_transition(A.APPROVE, S.PENDING_APPROVAL, MANAGER)
    with pytest.raises(ReconciliationPermissionError):
        sm.validate_transition(A.REJECT, S.PENDING_APPROVAL, MANAGER, reason="bad count")


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_reject_requires_reason(reason):
    with pytest.raises(ReconciliationValidationError):
        sm.validate_transition(A.REJECT, S.PENDING_APPROVAL, ADMIN, reason=reason)


@pytest.mark.parametrize("status", [S.PENDING_APPROVAL, S.APPROVED, S.REJECTED])
def test_delete_only_from_draft(status):
    with pytest.raises(InvalidStateTransition):
        sm.validate_transition(A.DELETE, status, ADMIN)


def test_retry_of_completed_action_is_noop():
    assert sm.validate_transition(A.APPROVE, S.APPROVED, ADMIN) is None
    assert sm.validate_transition(A.SUBMIT, S.PENDING_APPROVAL, MANAGER) is None
    assert sm.validate_transition(A.REJECT, S.REJECTED, ADMIN) is None


def test_retry_still_checks_role():
    with pytest.raises(ReconciliationPermissionError):
        sm.validate_transition(A.APPROVE, S.APPROVED, MANAGER)


def test_rejected_cannot_be_approved():
    with pytest.raises(InvalidStateTransition):
        sm.validate_transition(A.APPROVE, S.REJECTED, ADMIN)


def test_transition_fields():
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)

    submit = sm.transition_fields(sm.TRANSITIONS[(A.SUBMIT, S.DRAFT)], MANAGER, now=now)
    assert submit == {"status": "PENDING_APPROVAL", "submitted_at": now}

    approve = sm.transition_fields(
        sm.TRANSITIONS[(A.APPROVE, S.PENDING_APPROVAL)], ADMIN, notes="ok", now=now
    )
    assert approve == {
        "status": "APPROVED",
        "approved_by": ADMIN.user_id,
        "approved_at": now,
        "approval_notes": "ok",
    }

    reject = sm.transition_fields(
        sm.TRANSITIONS[(A.REJECT, S.PENDING_APPROVAL)], ADMIN, reason="  recount  ", now=now
    )
    assert reject["rejection_reason"] == "recount"
    assert reject["rejected_by"] == ADMIN.user_id


def test_delete_has_no_target_fields():
    with pytest.raises(InvalidStateTransition):
        sm.transition_fields(sm.TRANSITIONS[(A.DELETE, S.DRAFT)], ADMIN)


def test_describe_state_machine_lists_every_status():
    text = sm.describe_state_machine()
    for status in S:
        assert status.value in text
    assert "APPROVED: [TERMINAL STATE]" in text
