"""Stock Reconciliation API endpoints."""
import logging
from typing import Optional
from uuid import UUID
from datetime import datetime

from fastapi import APIRouter, Query, status

from app.api.deps import CurrentActor, Reconciliations
from app.config import settings
from app.models.stock_reconciliation import ReconciliationStatus
from app.schemas.stock_reconciliation import (
    ReconciliationApproval,
    ReconciliationItemCreate,
    ReconciliationItemResponse,
    ReconciliationItemUpdate,
    ReconciliationRejection,
    ServiceResult,
    StockReconciliationCreate,
    StockReconciliationDetail,
    StockReconciliationListResponse,
    StockReconciliationResponse,
    StockReconciliationUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _detail(service, reconciliation, actor) -> dict:
    detail = StockReconciliationDetail.model_validate(reconciliation)
    detail.allowed_actions = service.allowed_actions(reconciliation, actor)
    return detail.model_dump(mode="json")


def _ok(data=None, message: Optional[str] = None) -> ServiceResult:
    return ServiceResult(success=True, data=data, message=message)


# ==================== Meta ====================
@router.get("/meta/discrepancy-reasons", response_model=ServiceResult)
async def get_discrepancy_reasons(
    service: Reconciliations,
    actor: CurrentActor,
):
    """Reason codes accepted on reconciliation items."""
    return _ok([
        {"value": reason, "label": reason.replace("_", " ").title()}
        for reason in service.discrepancy_reasons
    ])


@router.get("/products/search", response_model=ServiceResult)
async def search_products(
    service: Reconciliations,
    actor: CurrentActor,
    q: str = Query(..., min_length=1, description="Name or SKU fragment"),
    limit: int = Query(20, ge=1, le=100),
):
    """Search active products to add to a reconciliation."""
    products = await service.search_products(q, limit=limit)
    return _ok([p.model_dump(mode="json") for p in products])


# ==================== Reconciliations ====================
@router.get("", response_model=ServiceResult)
async def list_stock_reconciliations(
    service: Reconciliations,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    size: Optional[int] = Query(None, ge=1, le=settings.RECONCILIATION_MAX_PAGE_SIZE),
    search: Optional[str] = None,
    status: Optional[ReconciliationStatus] = None,
    created_by: Optional[UUID] = None,
    approved_by: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    """List stock reconciliations with filters and pagination."""
    size = size or settings.RECONCILIATION_DEFAULT_PAGE_SIZE
    records, total = await service.list(
        actor,
        search=search,
        status=status,
        created_by=created_by,
        approved_by=approved_by,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        size=size,
    )
    pages = (total + size - 1) // size if total else 0

    listing = StockReconciliationListResponse(
        items=[StockReconciliationResponse.model_validate(r) for r in records],
        total=total,
        page=page,
        size=size,
        pages=pages,
        has_next=page < pages,
        has_prev=page > 1,
    )
    return _ok(listing.model_dump(mode="json"))


@router.post("", response_model=ServiceResult, status_code=status.HTTP_201_CREATED)
async def create_stock_reconciliation(
    data: StockReconciliationCreate,
    service: Reconciliations,
    actor: CurrentActor,
):
    """Create a DRAFT reconciliation, optionally with initial items."""
    reconciliation = await service.create_draft(
        data.title,
        actor,
        description=data.description,
        notes=data.notes,
        items=data.items,
    )
    return _ok(_detail(service, reconciliation, actor), "Stock reconciliation created")


@router.get("/{reconciliation_id}", response_model=ServiceResult)
async def get_stock_reconciliation(
    reconciliation_id: UUID,
    service: Reconciliations,
    actor: CurrentActor,
):
    """Get a reconciliation with its items."""
    reconciliation = await service.get(reconciliation_id, actor)
    return _ok(_detail(service, reconciliation, actor))


@router.put("/{reconciliation_id}", response_model=ServiceResult)
async def update_stock_reconciliation(
    reconciliation_id: UUID,
    data: StockReconciliationUpdate,
    service: Reconciliations,
    actor: CurrentActor,
):
    """Update a DRAFT reconciliation; ``items`` replaces the item set."""
    reconciliation = await service.update(
        reconciliation_id,
        actor,
        title=data.title,
        description=data.description,
        notes=data.notes,
        items=data.items,
        expected_version=data.expected_version,
    )
    return _ok(_detail(service, reconciliation, actor), "Stock reconciliation updated")


@router.delete("/{reconciliation_id}", response_model=ServiceResult)
async def delete_stock_reconciliation(
    reconciliation_id: UUID,
    service: Reconciliations,
    actor: CurrentActor,
    expected_version: Optional[int] = None,
):
    """Delete a DRAFT reconciliation."""
    await service.delete(reconciliation_id, actor, expected_version=expected_version)
    return _ok({"id": str(reconciliation_id)}, "Stock reconciliation deleted")


# ==================== Items ====================
@router.post("/{reconciliation_id}/items", response_model=ServiceResult, status_code=status.HTTP_201_CREATED)
async def add_reconciliation_item(
    reconciliation_id: UUID,
    data: ReconciliationItemCreate,
    service: Reconciliations,
    actor: CurrentActor,
):
    """Add a product to a DRAFT reconciliation."""
    item = await service.add_product(
        reconciliation_id,
        data.product_id,
        actor,
        physical_count=data.physical_count,
        verified=data.verified,
        discrepancy_reason=data.discrepancy_reason,
        notes=data.notes,
        expected_version=data.expected_version,
    )
    return _ok(ReconciliationItemResponse.model_validate(item).model_dump(mode="json"), "Item added")


@router.patch("/{reconciliation_id}/items/{item_id}", response_model=ServiceResult)
async def update_reconciliation_item(
    reconciliation_id: UUID,
    item_id: UUID,
    data: ReconciliationItemUpdate,
    service: Reconciliations,
    actor: CurrentActor,
):
    """Edit a counted line."""
    item = await service.update_item(
        reconciliation_id,
        item_id,
        actor,
        physical_count=data.physical_count,
        discrepancy_reason=data.discrepancy_reason,
        notes=data.notes,
        verified=data.verified,
        expected_version=data.expected_version,
    )
    return _ok(ReconciliationItemResponse.model_validate(item).model_dump(mode="json"), "Item updated")


@router.delete("/{reconciliation_id}/items/{item_id}", response_model=ServiceResult)
async def remove_reconciliation_item(
    reconciliation_id: UUID,
    item_id: UUID,
    service: Reconciliations,
    actor: CurrentActor,
    expected_version: Optional[int] = None,
):
    """Remove a line from a DRAFT reconciliation."""
    await service.remove_item(reconciliation_id, item_id, actor, expected_version=expected_version)
    return _ok({"id": str(item_id)}, "Item removed")


# ==================== Workflow ====================
@router.post("/{reconciliation_id}/submit", response_model=ServiceResult)
async def submit_stock_reconciliation(
    reconciliation_id: UUID,
    service: Reconciliations,
    actor: CurrentActor,
    expected_version: Optional[int] = None,
):
    """Submit a DRAFT reconciliation for approval."""
    reconciliation = await service.submit(reconciliation_id, actor, expected_version=expected_version)
    return _ok(_detail(service, reconciliation, actor), "Submitted for approval")


@router.post("/{reconciliation_id}/approve", response_model=ServiceResult)
async def approve_stock_reconciliation(
    reconciliation_id: UUID,
    service: Reconciliations,
    actor: CurrentActor,
    data: Optional[ReconciliationApproval] = None,
):
    """Approve a pending reconciliation and apply its discrepancies to stock."""
    reconciliation = await service.approve(
        reconciliation_id, actor, notes=data.notes if data else None
    )
    return _ok(_detail(service, reconciliation, actor), "Stock reconciliation approved")


@router.post("/{reconciliation_id}/reject", response_model=ServiceResult)
async def reject_stock_reconciliation(
    reconciliation_id: UUID,
    data: ReconciliationRejection,
    service: Reconciliations,
    actor: CurrentActor,
):
    """Reject a pending reconciliation."""
    reconciliation = await service.reject(reconciliation_id, actor, reason=data.reason)
    return _ok(_detail(service, reconciliation, actor), "Stock reconciliation rejected")


@router.get("/{reconciliation_id}/summary", response_model=ServiceResult)
async def get_reconciliation_summary(
    reconciliation_id: UUID,
    service: Reconciliations,
    actor: CurrentActor,
):
    """Net, overage and shortage figures for a reconciliation."""
    summary = await service.summary(reconciliation_id, actor)
    return _ok(summary.model_dump(mode="json"))
