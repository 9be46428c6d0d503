"""
Product catalog collaborators used by stock reconciliation.

- ProductCatalogLookup: resolves products by id or search term and returns
  immutable ProductSnapshot records.
- InventoryWriter: applies approved discrepancies to live stock.

The SQLAlchemy implementations work on the caller's session so that stock
write-back joins the same transaction as the approval status flip.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ReconciliationNotFound, ReconciliationValidationError
from app.models.product import Product
from app.models.stock_adjustment import StockAdjustment, AdjustmentType
from app.schemas.stock_reconciliation import ProductSnapshot
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _snapshot(product: Product) -> ProductSnapshot:
    if product.stock < 0:
        raise ReconciliationValidationError(
            f"Product {product.sku} has negative stock ({product.stock}) and cannot be counted",
            details={"product_id": str(product.id), "stock": product.stock},
        )
    return ProductSnapshot.model_validate(product)


# ==================== Catalog Lookup ====================

class ProductCatalogLookup(ABC):
    """Abstract product lookup."""

    @abstractmethod
    async def get_product(self, product_id: uuid.UUID) -> ProductSnapshot:
        """Return a snapshot or raise ReconciliationNotFound."""

    @abstractmethod
    async def get_products(self, product_ids: Sequence[uuid.UUID]) -> List[ProductSnapshot]:
        """Return snapshots for all ids or raise ReconciliationNotFound listing the missing ones."""

    @abstractmethod
    async def search(self, term: str, limit: int = 20) -> List[ProductSnapshot]:
        """Match name or SKU."""


class SqlProductCatalog(ProductCatalogLookup):
    """Product lookup over the products table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: uuid.UUID) -> ProductSnapshot:
        product = await self.db.get(Product, product_id, populate_existing=True)
        if product is None or not product.is_active:
            raise ReconciliationNotFound(
                f"Product not found: {product_id}",
                details={"product_ids": [str(product_id)]},
            )
        return _snapshot(product)

    async def get_products(self, product_ids: Sequence[uuid.UUID]) -> List[ProductSnapshot]:
        if not product_ids:
            return []

        result = await self.db.execute(
            select(Product).where(
                Product.id.in_(list(product_ids)),
                Product.is_active == True,  # noqa: E712
            ).execution_options(populate_existing=True)
        )
        found = {p.id: p for p in result.scalars().all()}

        missing = [str(pid) for pid in product_ids if pid not in found]
        if missing:
            raise ReconciliationNotFound(
                f"Products not found: {', '.join(missing)}",
                details={"product_ids": missing},
            )
        return [_snapshot(found[pid]) for pid in product_ids]

    async def search(self, term: str, limit: int = 20) -> List[ProductSnapshot]:
        pattern = f"%{_escape_like(term.strip().lower())}%"
        result = await self.db.execute(
            select(Product)
            .where(
                Product.is_active == True,  # noqa: E712
                Product.stock >= 0,
                or_(
                    func.lower(Product.name).like(pattern, escape="\\"),
                    func.lower(Product.sku).like(pattern, escape="\\"),
                ),
            )
            .order_by(Product.name)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [ProductSnapshot.model_validate(p) for p in result.scalars().all()]


# ==================== Inventory Write-back ====================

class InventoryWriter(ABC):
    """Abstract stock write-back."""

    @abstractmethod
    async def apply_discrepancy(
        self,
        product_id: uuid.UUID,
        discrepancy: int,
        reconciliation_id: uuid.UUID,
        user_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> Optional[StockAdjustment]:
        """Adjust stock by ``discrepancy``; returns the movement record (None if zero)."""


class SqlInventoryWriter(InventoryWriter):
    """
    Applies discrepancies to ``products.stock`` and records a StockAdjustment
    and an audit entry per product. Nothing is committed here.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def apply_discrepancy(
        self,
        product_id: uuid.UUID,
        discrepancy: int,
        reconciliation_id: uuid.UUID,
        user_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> Optional[StockAdjustment]:
        if discrepancy == 0:
            return None

        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise ReconciliationNotFound(
                f"Product not found: {product_id}",
                details={"product_ids": [str(product_id)]},
            )

        previous_stock = product.stock
        new_stock = previous_stock + discrepancy
        if new_stock < 0:
            raise ReconciliationValidationError(
                f"Applying discrepancy {discrepancy} to product {product.sku} would make stock negative",
                details={
                    "product_id": str(product_id),
                    "current_stock": previous_stock,
                    "discrepancy": discrepancy,
                },
            )

        product.stock = new_stock

        adjustment = StockAdjustment(
            adjustment_type=(
                AdjustmentType.RECONCILIATION_ADDITION.value
                if discrepancy > 0
                else AdjustmentType.RECONCILIATION_REDUCTION.value
            ),
            product_id=product_id,
            reconciliation_id=reconciliation_id,
            quantity=abs(discrepancy),
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=f"Stock reconciliation {reconciliation_id}",
            notes=notes or "Stock reconciliation adjustment",
            created_by=user_id,
        )
        self.db.add(adjustment)

        await self.audit.log_stock_reconciliation(
            product_id=product_id,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reconciliation_id=reconciliation_id,
            user_id=user_id,
        )

        logger.info(
            f"Stock write-back for {product.sku}: {previous_stock} -> {new_stock} "
            f"(reconciliation {reconciliation_id})"
        )
        return adjustment
