from fastapi import APIRouter

from app.api.v1.endpoints import stock_reconciliations


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Inventory Management ====================
api_router.include_router(
    stock_reconciliations.router,
    prefix="/stock-reconciliations",
    tags=["Stock Reconciliation"]
)
