"""Stock Reconciliation schemas for API requests/responses."""
from pydantic import BaseModel, Field

from app.schemas.base import BaseResponseSchema, BaseRecordSchema, BaseCreateSchema, BaseUpdateSchema
from typing import Any, Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.models.user import UserRole


# ==================== COLLABORATOR RECORDS ====================

class Actor(BaseRecordSchema):
    """Identity of the caller as asserted by the identity provider."""

    user_id: uuid.UUID
    role: UserRole


class ProductSnapshot(BaseRecordSchema):
    """Read-only product data captured when an item is added."""

    id: uuid.UUID
    name: str
    sku: str
    stock: int = Field(..., ge=0)
    cost: Decimal = Field(Decimal("0"), ge=0)


# ==================== ITEM SCHEMAS ====================

class ReconciliationItemCreate(BaseCreateSchema):
    """Item to add; counts default to the product's current stock."""
    product_id: uuid.UUID
    physical_count: Optional[int] = None
    verified: Optional[bool] = None
    discrepancy_reason: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ReconciliationItemUpdate(BaseUpdateSchema):
    """Item edit; discrepancy and verified are recomputed on save."""
    physical_count: Optional[int] = None
    verified: Optional[bool] = None
    discrepancy_reason: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ReconciliationItemResponse(BaseResponseSchema):
    """Item response schema."""
    id: uuid.UUID
    reconciliation_id: uuid.UUID
    line_number: int
    product_id: uuid.UUID
    product_name: str
    product_sku: str
    system_count: int
    physical_count: int
    discrepancy: int
    unit_cost: Decimal
    estimated_impact: Decimal
    verified: bool
    discrepancy_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ==================== RECONCILIATION SCHEMAS ====================

class StockReconciliationCreate(BaseCreateSchema):
    """Stock reconciliation creation schema."""
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    notes: Optional[str] = None
    items: List[ReconciliationItemCreate] = []


class StockReconciliationUpdate(BaseUpdateSchema):
    """Header update; ``items`` replaces the whole item set when given."""
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    notes: Optional[str] = None
    items: Optional[List[ReconciliationItemCreate]] = None
    expected_version: Optional[int] = None


class ReconciliationApproval(BaseModel):
    """Approval request."""
    notes: Optional[str] = None


class ReconciliationRejection(BaseModel):
    """Rejection request; the reason is mandatory."""
    reason: Optional[str] = None


class StockReconciliationResponse(BaseResponseSchema):
    """Stock reconciliation response schema."""
    id: uuid.UUID
    title: str
    description: Optional[str] = None
    notes: Optional[str] = None
    status: str
    version: int
    created_by: uuid.UUID
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class StockReconciliationDetail(StockReconciliationResponse):
    """Reconciliation with its items and the actions open to the caller."""
    items: List[ReconciliationItemResponse] = []
    allowed_actions: List[str] = []


class StockReconciliationListResponse(BaseModel):
    """Paginated reconciliation list."""
    items: List[StockReconciliationResponse]
    total: int
    page: int
    size: int
    pages: int
    has_next: bool
    has_prev: bool


class ReconciliationSummary(BaseModel):
    """Aggregate discrepancy figures for one reconciliation."""
    reconciliation_id: uuid.UUID
    status: str
    net_units: int
    net_impact: Decimal
    overage_units: int
    overage_impact: Decimal
    shortage_units: int
    shortage_impact: Decimal
    verified_units: int
    verified_item_count: int
    total_items: int


# ==================== RESULT ENVELOPE ====================

class ServiceResult(BaseModel):
    """Envelope returned to the API/UI layer."""
    success: bool
    data: Optional[Any] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    details: Optional[dict] = None
