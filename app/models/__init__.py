from app.models.product import Product
from app.models.stock_reconciliation import (
    StockReconciliation,
    StockReconciliationItem,
    ReconciliationStatus,
)
from app.models.stock_adjustment import StockAdjustment, AdjustmentType
from app.models.audit_log import AuditLog
from app.models.user import UserRole

__all__ = [
    "Product",
    "StockReconciliation",
    "StockReconciliationItem",
    "ReconciliationStatus",
    "StockAdjustment",
    "AdjustmentType",
    "AuditLog",
    "UserRole",
]
