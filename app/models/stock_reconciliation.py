"""
Stock Reconciliation models.

A reconciliation is a batch stock count: for each product it records the
system (book) count and the physically counted quantity. The header moves
through DRAFT -> PENDING_APPROVAL -> APPROVED | REJECTED; items can only
change while the header is DRAFT.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, Text, Boolean, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, MoneyType, ImpactType


class ReconciliationStatus(str, Enum):
    """Reconciliation workflow status."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"          # Terminal
    REJECTED = "REJECTED"          # Terminal


class StockReconciliation(Base):
    """Stock reconciliation header."""

    __tablename__ = "stock_reconciliations"
    __table_args__ = (
        Index('ix_stock_reconciliation_status_created', 'status', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(50),
        default=ReconciliationStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment="DRAFT, PENDING_APPROVAL, APPROVED, REJECTED"
    )

    # Optimistic lock, bumped by every write to the header or its items
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Users (ids issued by the identity provider)
    created_by: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True, index=True)
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Workflow
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    items: Mapped[List["StockReconciliationItem"]] = relationship(
        "StockReconciliationItem",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        order_by="StockReconciliationItem.line_number",
    )

    def __repr__(self) -> str:
        return f"<StockReconciliation(title='{self.title}', status='{self.status}')>"


class StockReconciliationItem(Base):
    """One counted product inside a reconciliation."""

    __tablename__ = "stock_reconciliation_items"
    __table_args__ = (
        UniqueConstraint('reconciliation_id', 'product_id', name='uq_reconciliation_item_product'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    reconciliation_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("stock_reconciliations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Product snapshot taken when the item was added
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[str] = mapped_column(String(50), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    # Quantities
    system_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # What system shows
    physical_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # What was counted
    discrepancy: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # physical - system

    # Cost impact (can be negative)
    estimated_impact: Mapped[Decimal] = mapped_column(ImpactType, default=Decimal("0"), nullable=False)

    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    discrepancy_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    reconciliation: Mapped["StockReconciliation"] = relationship(
        "StockReconciliation", back_populates="items"
    )

    def __repr__(self) -> str:
        return f"<StockReconciliationItem(sku='{self.product_sku}', discrepancy={self.discrepancy})>"
