"""
Reconciliation Store.

Persistence for stock reconciliations and their items. Every write that
depends on the record's state is a conditional UPDATE guarded by the
expected status (and version, when known), so a write that lost a race
changes nothing and is reported as InvalidStateTransition or
ConcurrencyConflict instead of silently overwriting.

The store only flushes; the calling service owns commit/rollback.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, update, or_, asc, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    ConcurrencyConflict,
    DuplicateItem,
    InvalidStateTransition,
    ReconciliationNotFound,
    ReconciliationValidationError,
)
from app.models.stock_reconciliation import (
    ReconciliationStatus,
    StockReconciliation,
    StockReconciliationItem,
)
from app.schemas.stock_reconciliation import Actor
from app.services import reconciliation_state_machine as workflow
from app.services.reconciliation_state_machine import ReconciliationAction, Transition

logger = logging.getLogger(__name__)


SORTABLE_COLUMNS = {
    "created_at": StockReconciliation.created_at,
    "updated_at": StockReconciliation.updated_at,
    "title": StockReconciliation.title,
    "status": StockReconciliation.status,
}

EDITABLE_FIELDS = ("title", "description", "notes")


class ReconciliationStore:
    """Persistence for StockReconciliation records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # READS
    # ========================================================================

    async def list(
        self,
        search: Optional[str] = None,
        status: Optional[ReconciliationStatus] = None,
        created_by: Optional[uuid.UUID] = None,
        approved_by: Optional[uuid.UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[StockReconciliation], int]:
        """List reconciliations with filters; search matches title/description."""
        if sort_by not in SORTABLE_COLUMNS:
            raise ReconciliationValidationError(
                f"Cannot sort by '{sort_by}'",
                details={"field": "sort_by", "allowed": sorted(SORTABLE_COLUMNS)},
            )
        if sort_order not in ("asc", "desc"):
            raise ReconciliationValidationError(
                "sort_order must be 'asc' or 'desc'",
                details={"field": "sort_order"},
            )
        if page < 1 or size < 1:
            raise ReconciliationValidationError(
                "page and size must be positive",
                details={"page": page, "size": size},
            )

        query = select(StockReconciliation)

        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.where(or_(
                StockReconciliation.title.ilike(pattern),
                StockReconciliation.description.ilike(pattern),
            ))
        if status:
            query = query.where(StockReconciliation.status == ReconciliationStatus(status).value)
        if created_by:
            query = query.where(StockReconciliation.created_by == created_by)
        if approved_by:
            query = query.where(StockReconciliation.approved_by == approved_by)
        if start_date:
            query = query.where(StockReconciliation.created_at >= start_date)
        if end_date:
            query = query.where(StockReconciliation.created_at <= end_date)

        # Count
        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        # Paginate
        column = SORTABLE_COLUMNS[sort_by]
        ordering = asc(column) if sort_order == "asc" else desc(column)
        query = query.order_by(ordering, StockReconciliation.id)
        query = query.offset((page - 1) * size).limit(size)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_by_id(self, reconciliation_id: uuid.UUID) -> StockReconciliation:
        """Full record with items, freshly read from the database."""
        result = await self.db.execute(
            select(StockReconciliation)
            .where(StockReconciliation.id == reconciliation_id)
            .options(selectinload(StockReconciliation.items))
            .execution_options(populate_existing=True)
        )
        reconciliation = result.scalar_one_or_none()
        if reconciliation is None:
            raise ReconciliationNotFound(
                f"Stock reconciliation not found: {reconciliation_id}",
                details={"reconciliation_id": str(reconciliation_id)},
            )
        return reconciliation

    async def get_item(self, reconciliation_id: uuid.UUID, item_id: uuid.UUID) -> StockReconciliationItem:
        result = await self.db.execute(
            select(StockReconciliationItem)
            .where(
                StockReconciliationItem.id == item_id,
                StockReconciliationItem.reconciliation_id == reconciliation_id,
            )
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise ReconciliationNotFound(
                f"Item {item_id} not found in reconciliation {reconciliation_id}",
                details={"reconciliation_id": str(reconciliation_id), "item_id": str(item_id)},
            )
        return item

    # ========================================================================
    # WRITES
    # ========================================================================

    async def create(
        self,
        title: str,
        created_by: uuid.UUID,
        description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockReconciliation:
        """Create a new reconciliation; status is always DRAFT."""
        reconciliation = StockReconciliation(
            title=title,
            description=description,
            notes=notes,
            status=ReconciliationStatus.DRAFT.value,
            version=1,
            created_by=created_by,
        )
        self.db.add(reconciliation)
        await self.db.flush()
        return reconciliation

    async def claim_draft(
        self,
        reconciliation_id: uuid.UUID,
        expected_version: Optional[int] = None,
        operation: str = "edit",
        values: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Bump the version of a DRAFT record, optionally writing header values.

        Fails with InvalidStateTransition when the record is no longer a draft
        and with ConcurrencyConflict when ``expected_version`` is stale.
        """
        stmt = (
            update(StockReconciliation)
            .where(
                StockReconciliation.id == reconciliation_id,
                StockReconciliation.status == ReconciliationStatus.DRAFT.value,
            )
            .values(
                version=StockReconciliation.version + 1,
                updated_at=datetime.now(timezone.utc),
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        if expected_version is not None:
            stmt = stmt.where(StockReconciliation.version == expected_version)

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self._raise_guard_failure(
                reconciliation_id, ReconciliationStatus.DRAFT, expected_version, operation
            )

    async def update(
        self,
        reconciliation_id: uuid.UUID,
        fields: Dict[str, Any],
        items: Optional[Sequence[StockReconciliationItem]] = None,
        expected_version: Optional[int] = None,
    ) -> StockReconciliation:
        """
        Update header fields and optionally replace the whole item set.

        Only DRAFT records can be updated.
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ReconciliationValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        await self.claim_draft(reconciliation_id, expected_version, "update", values=fields)

        if items is not None:
            reconciliation = await self.get_by_id(reconciliation_id)
            for old_item in list(reconciliation.items):
                await self.db.delete(old_item)
            # Old rows must be gone before the unique (reconciliation, product) inserts
            await self.db.flush()
            for line_number, item in enumerate(items, start=1):
                item.reconciliation_id = reconciliation_id
                item.line_number = line_number
                self.db.add(item)
            await self._flush_items()

        return await self.get_by_id(reconciliation_id)

    async def delete(self, reconciliation_id: uuid.UUID, expected_version: Optional[int] = None) -> None:
        """Delete a DRAFT reconciliation and its items."""
        # The guarded version bump holds the row for the rest of the transaction
        await self.claim_draft(reconciliation_id, expected_version, "delete")

        reconciliation = await self.get_by_id(reconciliation_id)
        await self.db.delete(reconciliation)  # Items go with it (delete-orphan cascade)
        await self.db.flush()

    async def change_status(
        self,
        reconciliation_id: uuid.UUID,
        action: ReconciliationAction,
        actor: Actor,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[StockReconciliation, Optional[Transition]]:
        """
        Apply a workflow action.

        Legality is decided by the state machine; the status flip and its
        audit fields are written in one UPDATE guarded by the status and
        version that were validated. Returns the fresh record and the
        applied transition (None when the record was already in the target
        status and nothing was written).
        """
        reconciliation = await self.get_by_id(reconciliation_id)
        transition = workflow.validate_transition(
            action,
            reconciliation.status,
            actor,
            item_count=len(reconciliation.items),
            reason=reason,
        )
        if transition is None:
            return reconciliation, None

        guard_version = expected_version if expected_version is not None else reconciliation.version
        values = workflow.transition_fields(transition, actor, reason=reason, notes=notes)

        result = await self.db.execute(
            update(StockReconciliation)
            .where(
                StockReconciliation.id == reconciliation_id,
                StockReconciliation.status == transition.from_status.value,
                StockReconciliation.version == guard_version,
            )
            .values(
                version=StockReconciliation.version + 1,
                updated_at=datetime.now(timezone.utc),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._raise_guard_failure(
                reconciliation_id, transition.from_status, guard_version, action.value
            )

        return await self.get_by_id(reconciliation_id), transition

    # ========================================================================
    # ITEMS
    # ========================================================================

    async def add_item(self, reconciliation_id: uuid.UUID, item: StockReconciliationItem) -> StockReconciliationItem:
        """Append an item; the product must not already be present."""
        existing = await self.db.scalar(
            select(StockReconciliationItem.id).where(
                StockReconciliationItem.reconciliation_id == reconciliation_id,
                StockReconciliationItem.product_id == item.product_id,
            )
        )
        if existing is not None:
            raise DuplicateItem(
                f"Product {item.product_sku} is already in this reconciliation",
                details={"product_id": str(item.product_id), "item_id": str(existing)},
            )

        last_line = await self.db.scalar(
            select(func.max(StockReconciliationItem.line_number)).where(
                StockReconciliationItem.reconciliation_id == reconciliation_id
            )
        )
        item.reconciliation_id = reconciliation_id
        item.line_number = (last_line or 0) + 1
        self.db.add(item)
        await self._flush_items()
        return item

    async def remove_item(self, reconciliation_id: uuid.UUID, item_id: uuid.UUID) -> None:
        item = await self.get_item(reconciliation_id, item_id)
        await self.db.delete(item)
        await self.db.flush()

    async def save_item(self, item: StockReconciliationItem) -> StockReconciliationItem:
        await self.db.flush()
        return item

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _flush_items(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            # Unique (reconciliation_id, product_id) lost a race with another writer
            raise DuplicateItem(
                "Product is already in this reconciliation",
                details={"error": str(e.orig)},
            ) from e

    async def _raise_guard_failure(
        self,
        reconciliation_id: uuid.UUID,
        expected_status: ReconciliationStatus,
        expected_version: Optional[int],
        operation: str,
    ) -> None:
        """Explain why a guarded write matched no rows."""
        row = (await self.db.execute(
            select(StockReconciliation.status, StockReconciliation.version)
            .where(StockReconciliation.id == reconciliation_id)
        )).one_or_none()

        if row is None:
            raise ReconciliationNotFound(
                f"Stock reconciliation not found: {reconciliation_id}",
                details={"reconciliation_id": str(reconciliation_id)},
            )

        current_status, current_version = row
        if current_status != expected_status.value:
            raise InvalidStateTransition(
                f"Cannot {operation} a reconciliation in '{current_status}' status",
                details={
                    "operation": operation,
                    "status": current_status,
                    "expected_status": expected_status.value,
                },
            )

        raise ConcurrencyConflict(
            "Reconciliation was modified by another session. Reload and retry.",
            details={
                "operation": operation,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
