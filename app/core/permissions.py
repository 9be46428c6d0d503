from typing import Iterable

from app.core.exceptions import ReconciliationPermissionError
from app.models.user import UserRole
from app.schemas.stock_reconciliation import Actor


class PermissionChecker:
    """
    Permission checker for the acting user.
    Ownership rules: only the creator or an ADMIN may see or edit a record.
    """

    def __init__(self, actor: Actor):
        self.actor = actor

    def is_admin(self) -> bool:
        return self.actor.role == UserRole.ADMIN

    def owns(self, record) -> bool:
        return getattr(record, "created_by", None) == self.actor.user_id

    def can_view(self, record) -> bool:
        return self.is_admin() or self.owns(record)

    def can_modify(self, record) -> bool:
        return self.is_admin() or self.owns(record)

    def require_role(self, roles: Iterable[UserRole], action: str) -> None:
        allowed = frozenset(roles)
        if self.actor.role not in allowed:
            raise ReconciliationPermissionError(
                f"Role '{self.actor.role.value}' cannot {action}",
                details={
                    "action": action,
                    "role": self.actor.role.value,
                    "allowed_roles": sorted(r.value for r in allowed),
                },
            )

    def require_view(self, record) -> None:
        if not self.can_view(record):
            raise ReconciliationPermissionError(
                "Only the creator or an administrator can view this reconciliation",
                details={"action": "view", "role": self.actor.role.value},
            )

    def require_modify(self, record) -> None:
        if not self.can_modify(record):
            raise ReconciliationPermissionError(
                "Only the creator or an administrator can edit this reconciliation",
                details={"action": "edit", "role": self.actor.role.value},
            )
