"""
Stock Reconciliation State Machine

This module is the SINGLE SOURCE OF TRUTH for reconciliation status
transitions and for who may perform them. All status changes must go
through this module.

    DRAFT --submit--> PENDING_APPROVAL --approve--> APPROVED (terminal)
      |                              \\--reject---> REJECTED (terminal)
      \\--delete--> (removed)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from app.core.exceptions import (
    InvalidStateTransition,
    ReconciliationPermissionError,
    ReconciliationValidationError,
)
from app.models.stock_reconciliation import ReconciliationStatus
from app.models.user import UserRole
from app.schemas.stock_reconciliation import Actor


# =============================================================================
# ACTIONS
# =============================================================================

class ReconciliationAction(str, Enum):
    """Workflow actions."""
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    DELETE = "delete"


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""
    action: ReconciliationAction
    from_status: ReconciliationStatus
    to_status: Optional[ReconciliationStatus]  # None = record is removed
    allowed_roles: FrozenSet[UserRole]
    label: str


# =============================================================================
# TRANSITION RULES
# =============================================================================

_EDITORS = frozenset({UserRole.ADMIN, UserRole.MANAGER})
_APPROVERS = frozenset({UserRole.ADMIN})

# Format: (action, current_status) -> transition
TRANSITIONS: Dict[Tuple[ReconciliationAction, ReconciliationStatus], Transition] = {
    (ReconciliationAction.SUBMIT, ReconciliationStatus.DRAFT): Transition(
        ReconciliationAction.SUBMIT,
        ReconciliationStatus.DRAFT,
        ReconciliationStatus.PENDING_APPROVAL,
        _EDITORS,
        "Submit for Approval",
    ),
    (ReconciliationAction.APPROVE, ReconciliationStatus.PENDING_APPROVAL): Transition(
        ReconciliationAction.APPROVE,
        ReconciliationStatus.PENDING_APPROVAL,
        ReconciliationStatus.APPROVED,
        _APPROVERS,
        "Approve",
    ),
    (ReconciliationAction.REJECT, ReconciliationStatus.PENDING_APPROVAL): Transition(
        ReconciliationAction.REJECT,
        ReconciliationStatus.PENDING_APPROVAL,
        ReconciliationStatus.REJECTED,
        _APPROVERS,
        "Reject",
    ),
    (ReconciliationAction.DELETE, ReconciliationStatus.DRAFT): Transition(
        ReconciliationAction.DELETE,
        ReconciliationStatus.DRAFT,
        None,
        _EDITORS,
        "Delete",
    ),
}

TERMINAL_STATUSES = frozenset({ReconciliationStatus.APPROVED, ReconciliationStatus.REJECTED})

# Roles allowed to create drafts; editing is further limited to creator or admin
CREATOR_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER, UserRole.STAFF})


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _status(value) -> ReconciliationStatus:
    return value if isinstance(value, ReconciliationStatus) else ReconciliationStatus(value)


def get_transition(action: ReconciliationAction, current_status) -> Optional[Transition]:
    """Look up the transition for an action from a status, if any."""
    return TRANSITIONS.get((action, _status(current_status)))


def can_transition(action: ReconciliationAction, current_status) -> bool:
    """Check if an action is legal from the current status (ignores roles)."""
    return get_transition(action, current_status) is not None


def is_terminal(status) -> bool:
    """Is this a terminal (final) state?"""
    return _status(status) in TERMINAL_STATUSES


def can_edit(status) -> bool:
    """Can the header and items be changed?"""
    return _status(status) == ReconciliationStatus.DRAFT


def get_allowed_actions(current_status, role: UserRole) -> List[ReconciliationAction]:
    """Actions the given role may take right now."""
    status = _status(current_status)
    return [
        transition.action
        for (action, from_status), transition in TRANSITIONS.items()
        if from_status == status and role in transition.allowed_roles
    ]


def ensure_editable(current_status, operation: str = "edit") -> None:
    """Raise unless the reconciliation is still a DRAFT."""
    status = _status(current_status)
    if status != ReconciliationStatus.DRAFT:
        raise InvalidStateTransition(
            f"Cannot {operation} a reconciliation in '{status.value}' status. Only drafts can be changed.",
            details={"status": status.value, "operation": operation},
        )


def _find_by_target(action: ReconciliationAction) -> Optional[Transition]:
    for (row_action, _), transition in TRANSITIONS.items():
        if row_action == action:
            return transition
    return None


def validate_transition(
    action: ReconciliationAction,
    current_status,
    actor: Actor,
    *,
    item_count: Optional[int] = None,
    reason: Optional[str] = None,
) -> Optional[Transition]:
    """
    Validate an action against the transition table and its guards.

    Returns the transition to apply, or None when the record is already in
    the action's target status (a retried request); in that case nothing
    must be written again.

    Raises:
        InvalidStateTransition: action not legal from the current status
        ReconciliationPermissionError: actor role not allowed
        ReconciliationValidationError: guard failed (no items, empty reason)
    """
    status = _status(current_status)
    transition = get_transition(action, status)

    if transition is None:
        # Retrying an action that already succeeded is a no-op
        done = _find_by_target(action)
        if done is not None and done.to_status is not None and done.to_status == status:
            if actor.role not in done.allowed_roles:
                raise ReconciliationPermissionError(
                    f"Role '{actor.role.value}' cannot {action.value} reconciliations",
                    details={"action": action.value, "role": actor.role.value},
                )
            return None

        allowed = [t.action.value for t in TRANSITIONS.values() if t.from_status == status]
        if not allowed:
            message = f"Reconciliation in '{status.value}' status cannot be modified. This is a terminal state."
        else:
            message = (
                f"Cannot {action.value} a reconciliation in '{status.value}' status. "
                f"Allowed actions: {', '.join(allowed)}"
            )
        raise InvalidStateTransition(
            message,
            details={"action": action.value, "status": status.value, "allowed_actions": allowed},
        )

    if actor.role not in transition.allowed_roles:
        raise ReconciliationPermissionError(
            f"Role '{actor.role.value}' cannot {action.value} reconciliations",
            details={
                "action": action.value,
                "role": actor.role.value,
                "allowed_roles": sorted(r.value for r in transition.allowed_roles),
            },
        )

    if action == ReconciliationAction.SUBMIT and not item_count:
        raise ReconciliationValidationError(
            "Reconciliation must contain at least one item before it can be submitted",
            details={"item_count": item_count or 0},
        )

    if action == ReconciliationAction.REJECT and not (reason and reason.strip()):
        raise ReconciliationValidationError(
            "A rejection reason is required",
            details={"field": "reason"},
        )

    return transition


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_fields(
    transition: Transition,
    actor: Actor,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, object]:
    """
    Column values implied by a transition (status plus audit fields).

    The store writes these in a single conditional UPDATE so that the
    status flip and its audit fields are never observed separately.
    """
    if transition.to_status is None:
        raise InvalidStateTransition(
            f"'{transition.action.value}' removes the record and has no target status",
            details={"action": transition.action.value},
        )

    now = now or datetime.now(timezone.utc)
    values: Dict[str, object] = {"status": transition.to_status.value}

    if transition.to_status == ReconciliationStatus.PENDING_APPROVAL:
        values["submitted_at"] = now

    elif transition.to_status == ReconciliationStatus.APPROVED:
        values["approved_by"] = actor.user_id
        values["approved_at"] = now
        values["approval_notes"] = notes

    elif transition.to_status == ReconciliationStatus.REJECTED:
        values["rejected_by"] = actor.user_id
        values["rejected_at"] = now
        values["rejection_reason"] = reason.strip() if reason else reason

    return values


# =============================================================================
# VISUALIZATION (for debugging/documentation)
# =============================================================================

def describe_state_machine() -> str:
    """Text representation of the state machine."""
    lines = []
    for status in ReconciliationStatus:
        rows = [t for t in TRANSITIONS.values() if t.from_status == status]
        if not rows:
            lines.append(f"{status.value}: [TERMINAL STATE]")
            continue
        lines.append(f"{status.value}:")
        for t in rows:
            target = t.to_status.value if t.to_status else "(removed)"
            roles = ", ".join(sorted(r.value for r in t.allowed_roles))
            lines.append(f"  -> {target} ({t.label}; {roles})")
    return "\n".join(lines)


if __name__ == "__main__":
    print(describe_state_machine())
