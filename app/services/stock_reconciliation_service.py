"""
Stock Reconciliation Service.

Composition root for the reconciliation workflow: persistence goes through
ReconciliationStore, computed fields through the discrepancy engine and
status changes through the state machine. Every mutating operation is one
unit of work: it commits on success and rolls back on any error, so a
failed operation leaves the record exactly as it was.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    DuplicateItem,
    ReconciliationError,
    ReconciliationValidationError,
)
from app.core.permissions import PermissionChecker
from app.models.stock_reconciliation import (
    ReconciliationStatus,
    StockReconciliation,
    StockReconciliationItem,
)
from app.schemas.stock_reconciliation import (
    Actor,
    ProductSnapshot,
    ReconciliationItemCreate,
    ReconciliationSummary,
)
from app.services import discrepancy_engine
from app.services import reconciliation_state_machine as workflow
from app.services.product_catalog import (
    InventoryWriter,
    ProductCatalogLookup,
    SqlInventoryWriter,
    SqlProductCatalog,
)
from app.services.reconciliation_state_machine import ReconciliationAction
from app.services.reconciliation_store import ReconciliationStore

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Service for stock reconciliation operations."""

    def __init__(
        self,
        db: AsyncSession,
        catalog: Optional[ProductCatalogLookup] = None,
        inventory: Optional[InventoryWriter] = None,
        discrepancy_reasons: Optional[Sequence[str]] = None,
    ):
        self.db = db
        self.store = ReconciliationStore(db)
        self.catalog = catalog or SqlProductCatalog(db)
        self.inventory = inventory or SqlInventoryWriter(db)
        self.discrepancy_reasons = tuple(
            settings.RECONCILIATION_DISCREPANCY_REASONS if discrepancy_reasons is None else discrepancy_reasons
        )

    @asynccontextmanager
    async def _unit_of_work(self, operation: str, reconciliation_id: Optional[uuid.UUID] = None):
        try:
            yield
            await self.db.commit()
        except ReconciliationError as e:
            await self.db.rollback()
            logger.warning(
                f"Reconciliation {operation} refused for {reconciliation_id}: "
                f"{e.error_kind}: {e.message}"
            )
            raise
        except Exception:
            await self.db.rollback()
            raise

    # ========================================================================
    # VALIDATION HELPERS
    # ========================================================================

    @staticmethod
    def _clean_title(title: Optional[str]) -> str:
        if title is None or not title.strip():
            raise ReconciliationValidationError("Title is required", details={"field": "title"})
        return title.strip()

    def _clean_reason(self, reason: Optional[str]) -> Optional[str]:
        if reason is None or not reason.strip():
            return None
        reason = reason.strip()
        if reason not in self.discrepancy_reasons:
            raise ReconciliationValidationError(
                f"Unknown discrepancy reason '{reason}'",
                details={"field": "discrepancy_reason", "allowed": list(self.discrepancy_reasons)},
            )
        return reason

    @staticmethod
    def _recompute(item: StockReconciliationItem, verified: Optional[bool] = None) -> StockReconciliationItem:
        """Refresh the derived fields of an item from its counts."""
        discrepancy = discrepancy_engine.compute_discrepancy(item.system_count, item.physical_count)
        item.discrepancy = discrepancy
        item.verified = discrepancy_engine.resolve_verified(discrepancy, verified, bool(item.verified))
        item.estimated_impact = discrepancy_engine.compute_impact(discrepancy, item.unit_cost)
        return item

    def _build_item(
        self,
        snapshot: ProductSnapshot,
        physical_count: Optional[int] = None,
        verified: Optional[bool] = None,
        discrepancy_reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockReconciliationItem:
        item = StockReconciliationItem(
            product_id=snapshot.id,
            product_name=snapshot.name,
            product_sku=snapshot.sku,
            unit_cost=snapshot.cost,
            system_count=snapshot.stock,
            physical_count=snapshot.stock if physical_count is None else physical_count,
            verified=False,
            discrepancy_reason=self._clean_reason(discrepancy_reason),
            notes=notes,
        )
        return self._recompute(item, verified)

    async def _build_items(self, entries: Sequence[ReconciliationItemCreate]) -> List[StockReconciliationItem]:
        seen = set()
        for entry in entries:
            if entry.product_id in seen:
                raise DuplicateItem(
                    f"Product {entry.product_id} is listed more than once",
                    details={"product_id": str(entry.product_id)},
                )
            seen.add(entry.product_id)

        snapshots = await self.catalog.get_products([entry.product_id for entry in entries])
        return [
            self._build_item(
                snapshot,
                physical_count=entry.physical_count,
                verified=entry.verified,
                discrepancy_reason=entry.discrepancy_reason,
                notes=entry.notes,
            )
            for snapshot, entry in zip(snapshots, entries)
        ]

    async def _load_editable(self, reconciliation_id: uuid.UUID, actor: Actor, operation: str) -> StockReconciliation:
        reconciliation = await self.store.get_by_id(reconciliation_id)
        workflow.ensure_editable(reconciliation.status, operation)
        PermissionChecker(actor).require_modify(reconciliation)
        return reconciliation

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get(self, reconciliation_id: uuid.UUID, actor: Actor) -> StockReconciliation:
        """Get a reconciliation with items (creator or admin only)."""
        reconciliation = await self.store.get_by_id(reconciliation_id)
        PermissionChecker(actor).require_view(reconciliation)
        return reconciliation

    async def list(
        self,
        actor: Actor,
        search: Optional[str] = None,
        status: Optional[ReconciliationStatus] = None,
        created_by: Optional[uuid.UUID] = None,
        approved_by: Optional[uuid.UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        size: Optional[int] = None,
    ) -> Tuple[List[StockReconciliation], int]:
        """List reconciliations; non-admins only see their own."""
        if not PermissionChecker(actor).is_admin():
            created_by = actor.user_id

        size = size or settings.RECONCILIATION_DEFAULT_PAGE_SIZE
        size = min(size, settings.RECONCILIATION_MAX_PAGE_SIZE)

        return await self.store.list(
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

    async def summary(self, reconciliation_id: uuid.UUID, actor: Optional[Actor] = None) -> ReconciliationSummary:
        """Aggregate discrepancy figures; read-only, available in any status."""
        reconciliation = await self.store.get_by_id(reconciliation_id)
        if actor is not None:
            PermissionChecker(actor).require_view(reconciliation)

        totals = discrepancy_engine.aggregate(reconciliation.items)
        return ReconciliationSummary(
            reconciliation_id=reconciliation.id,
            status=reconciliation.status,
            **totals.as_dict(),
        )

    def allowed_actions(self, reconciliation: StockReconciliation, actor: Actor) -> List[str]:
        """Workflow actions the actor may take on the record now."""
        checker = PermissionChecker(actor)
        if not checker.can_view(reconciliation):
            return []
        actions = [a.value for a in workflow.get_allowed_actions(reconciliation.status, actor.role)]
        if workflow.can_edit(reconciliation.status) and checker.can_modify(reconciliation):
            actions.insert(0, "edit")
        return actions

    async def search_products(self, term: str, limit: int = 20) -> List[ProductSnapshot]:
        if not term or not term.strip():
            return []
        return await self.catalog.search(term, limit=limit)

    # ========================================================================
    # DRAFT EDITING
    # ========================================================================

    async def create_draft(
        self,
        title: str,
        actor: Actor,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        items: Optional[Sequence[ReconciliationItemCreate]] = None,
    ) -> StockReconciliation:
        """Create a DRAFT reconciliation, optionally with initial items."""
        async with self._unit_of_work("create"):
            PermissionChecker(actor).require_role(workflow.CREATOR_ROLES, "create reconciliations")
            title = self._clean_title(title)
            new_items = await self._build_items(items or [])

            reconciliation = await self.store.create(
                title=title,
                created_by=actor.user_id,
                description=description,
                notes=notes,
            )
            for item in new_items:
                await self.store.add_item(reconciliation.id, item)

            reconciliation = await self.store.get_by_id(reconciliation.id)

        logger.info(
            f"Reconciliation {reconciliation.id} created by {actor.user_id} "
            f"with {len(reconciliation.items)} items"
        )
        return reconciliation

    async def update(
        self,
        reconciliation_id: uuid.UUID,
        actor: Actor,
        title: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        items: Optional[Sequence[ReconciliationItemCreate]] = None,
        expected_version: Optional[int] = None,
    ) -> StockReconciliation:
        """Update header fields and optionally replace all items (DRAFT only)."""
        async with self._unit_of_work("update", reconciliation_id):
            await self._load_editable(reconciliation_id, actor, "update")

            fields = {}
            if title is not None:
                fields["title"] = self._clean_title(title)
            if description is not None:
                fields["description"] = description
            if notes is not None:
                fields["notes"] = notes

            new_items = await self._build_items(items) if items is not None else None
            reconciliation = await self.store.update(
                reconciliation_id, fields, items=new_items, expected_version=expected_version
            )

        logger.info(f"Reconciliation {reconciliation_id} updated by {actor.user_id}")
        return reconciliation

    async def add_item(
        self,
        reconciliation_id: uuid.UUID,
        product: ProductSnapshot,
        actor: Actor,
        physical_count: Optional[int] = None,
        verified: Optional[bool] = None,
        discrepancy_reason: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> StockReconciliationItem:
        """
        Append a product to a DRAFT reconciliation.

        System and physical counts default to the snapshot's current stock.
        """
        async with self._unit_of_work("add_item", reconciliation_id):
            await self._load_editable(reconciliation_id, actor, "add items to")
            item = self._build_item(
                product,
                physical_count=physical_count,
                verified=verified,
                discrepancy_reason=discrepancy_reason,
                notes=notes,
            )
            await self.store.claim_draft(reconciliation_id, expected_version, "add items to")
            await self.store.add_item(reconciliation_id, item)

        return item

    async def add_product(
        self,
        reconciliation_id: uuid.UUID,
        product_id: uuid.UUID,
        actor: Actor,
        **kwargs,
    ) -> StockReconciliationItem:
        """Look the product up in the catalog and append it."""
        snapshot = await self.catalog.get_product(product_id)
        return await self.add_item(reconciliation_id, snapshot, actor, **kwargs)

    async def update_item(
        self,
        reconciliation_id: uuid.UUID,
        item_id: uuid.UUID,
        actor: Actor,
        physical_count: Optional[int] = None,
        discrepancy_reason: Optional[str] = None,
        notes: Optional[str] = None,
        verified: Optional[bool] = None,
        expected_version: Optional[int] = None,
    ) -> StockReconciliationItem:
        """Edit a counted line; discrepancy and verified are recomputed immediately."""
        async with self._unit_of_work("update_item", reconciliation_id):
            await self._load_editable(reconciliation_id, actor, "edit items of")
            item = await self.store.get_item(reconciliation_id, item_id)

            if physical_count is not None:
                item.physical_count = physical_count
            if discrepancy_reason is not None:
                item.discrepancy_reason = self._clean_reason(discrepancy_reason)
            if notes is not None:
                item.notes = notes
            self._recompute(item, verified)

            await self.store.claim_draft(reconciliation_id, expected_version, "edit items of")
            await self.store.save_item(item)

        return item

    async def remove_item(
        self,
        reconciliation_id: uuid.UUID,
        item_id: uuid.UUID,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> None:
        async with self._unit_of_work("remove_item", reconciliation_id):
            await self._load_editable(reconciliation_id, actor, "remove items from")
            await self.store.claim_draft(reconciliation_id, expected_version, "remove items from")
            await self.store.remove_item(reconciliation_id, item_id)

    # ========================================================================
    # WORKFLOW
    # ========================================================================

    async def submit(
        self,
        reconciliation_id: uuid.UUID,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> StockReconciliation:
        """DRAFT -> PENDING_APPROVAL (ADMIN/MANAGER, at least one item)."""
        async with self._unit_of_work("submit", reconciliation_id):
            reconciliation, transition = await self.store.change_status(
                reconciliation_id,
                ReconciliationAction.SUBMIT,
                actor,
                expected_version=expected_version,
            )

        if transition is not None:
            logger.info(f"Reconciliation {reconciliation_id} submitted by {actor.user_id}")
        return reconciliation

    async def approve(
        self,
        reconciliation_id: uuid.UUID,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> StockReconciliation:
        """
        PENDING_APPROVAL -> APPROVED (ADMIN only).

        Stock write-back happens in the same transaction as the status flip.
        """
        async with self._unit_of_work("approve", reconciliation_id):
            reconciliation, transition = await self.store.change_status(
                reconciliation_id,
                ReconciliationAction.APPROVE,
                actor,
                notes=notes,
            )

            if transition is not None and settings.RECONCILIATION_APPLY_STOCK_ON_APPROVAL:
                for item in reconciliation.items:
                    await self.inventory.apply_discrepancy(
                        product_id=item.product_id,
                        discrepancy=discrepancy_engine.compute_discrepancy(item.system_count, item.physical_count),
                        reconciliation_id=reconciliation.id,
                        user_id=actor.user_id,
                        notes=item.discrepancy_reason,
                    )

        if transition is not None:
            logger.info(f"Reconciliation {reconciliation_id} approved by {actor.user_id}")
        return reconciliation

    async def reject(
        self,
        reconciliation_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str],
    ) -> StockReconciliation:
        """PENDING_APPROVAL -> REJECTED (ADMIN only, reason required)."""
        async with self._unit_of_work("reject", reconciliation_id):
            reconciliation, transition = await self.store.change_status(
                reconciliation_id,
                ReconciliationAction.REJECT,
                actor,
                reason=reason,
            )

        if transition is not None:
            logger.info(f"Reconciliation {reconciliation_id} rejected by {actor.user_id}")
        return reconciliation

    async def delete(
        self,
        reconciliation_id: uuid.UUID,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> None:
        """Delete a DRAFT reconciliation (ADMIN/MANAGER)."""
        async with self._unit_of_work("delete", reconciliation_id):
            reconciliation = await self.store.get_by_id(reconciliation_id)
            workflow.validate_transition(ReconciliationAction.DELETE, reconciliation.status, actor)
            await self.store.delete(reconciliation_id, expected_version=expected_version)

        logger.info(f"Reconciliation {reconciliation_id} deleted by {actor.user_id}")
