"""Stock Adjustment model for inventory corrections posted by approved reconciliations."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, ForeignKey, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class AdjustmentType(str, Enum):
    """Adjustment type enum."""
    RECONCILIATION_ADDITION = "RECONCILIATION_ADDITION"  # Counted more than the system showed
    RECONCILIATION_REDUCTION = "RECONCILIATION_REDUCTION"  # Counted less than the system showed


class StockAdjustment(Base):
    """One stock movement applied to a product."""

    __tablename__ = "stock_adjustments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    adjustment_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="RECONCILIATION_ADDITION, RECONCILIATION_REDUCTION"
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    reconciliation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_reconciliations.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Quantities
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # Always positive
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<StockAdjustment {self.adjustment_type} qty={self.quantity}>"
