# Services module
from app.services.audit_service import AuditService
from app.services.product_catalog import (
    ProductCatalogLookup,
    SqlProductCatalog,
    InventoryWriter,
    SqlInventoryWriter,
)
from app.services.reconciliation_store import ReconciliationStore
from app.services.stock_reconciliation_service import ReconciliationService

__all__ = [
    "AuditService",
    "ProductCatalogLookup",
    "SqlProductCatalog",
    "InventoryWriter",
    "SqlInventoryWriter",
    "ReconciliationStore",
    "ReconciliationService",
]
