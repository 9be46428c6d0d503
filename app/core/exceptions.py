"""
Typed error kinds raised by the stock reconciliation domain.

Each exception carries a stable ``error_kind`` that callers map to their
own user-facing text; the message here is for logs and developers.
"""
from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    error_kind = "ReconciliationError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error_kind": self.error_kind,
            "message": self.message,
            "details": self.details,
        }


class ReconciliationValidationError(ReconciliationError):
    """Empty title, negative counts, no items at submit, unknown reason, ..."""
    error_kind = "ValidationError"


class ReconciliationPermissionError(ReconciliationError):
    """Actor role is not allowed to perform the action."""
    error_kind = "PermissionError"


class InvalidStateTransition(ReconciliationError):
    """Action is not legal from the record's current status."""
    error_kind = "InvalidStateTransition"


class DuplicateItem(ReconciliationError):
    """Product is already present in the reconciliation."""
    error_kind = "DuplicateItem"


class ReconciliationNotFound(ReconciliationError):
    """Unknown reconciliation, item or product id."""
    error_kind = "NotFound"


class ConcurrencyConflict(ReconciliationError):
    """Record changed since the caller last read it."""
    error_kind = "ConcurrencyConflict"
