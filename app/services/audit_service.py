from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for logging inventory-affecting changes.
    """

    STOCK_RECONCILIATION = "STOCK_RECONCILIATION"

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        table_name: str,
        record_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (STOCK_RECONCILIATION, ...)
            table_name: Table of the affected row
            record_id: ID of the affected row
            user_id: ID of the user performing the action
            old_values: Previous values
            new_values: New values
            description: Human-readable description

        Returns:
            The created AuditLog entry (flushed, not committed)
        """
        audit_log = AuditLog(
            action=action,
            table_name=table_name,
            record_id=record_id,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def log_stock_reconciliation(
        self,
        product_id: uuid.UUID,
        previous_stock: int,
        new_stock: int,
        reconciliation_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> AuditLog:
        """Log a product stock change caused by an approved reconciliation."""
        return await self.log(
            action=self.STOCK_RECONCILIATION,
            table_name="products",
            record_id=product_id,
            user_id=user_id,
            old_values={"stock": previous_stock},
            new_values={"stock": new_stock},
            description=f"Stock reconciliation {reconciliation_id}",
        )

    async def get_entity_history(
        self,
        table_name: str,
        record_id: uuid.UUID,
        limit: int = 50,
    ) -> List[AuditLog]:
        """Get audit history for a specific row."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.table_name == table_name)
            .where(AuditLog.record_id == record_id)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
