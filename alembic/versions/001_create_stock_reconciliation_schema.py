"""Create stock reconciliation schema

Revision ID: 001_stock_reconciliation
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_stock_reconciliation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create product, reconciliation, adjustment and audit tables"""

    # ====================
    # PRODUCTS TABLE
    # ====================
    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(50), unique=True, nullable=False),
        sa.Column('stock', sa.Integer, server_default='0', nullable=False),
        sa.Column('cost', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_products_sku', 'products', ['sku'])

    # ====================
    # STOCK RECONCILIATIONS TABLE
    # ====================
    op.create_table(
        'stock_reconciliations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('status', sa.String(50), server_default='DRAFT', nullable=False,
                  comment='DRAFT, PENDING_APPROVAL, APPROVED, REJECTED'),
        sa.Column('version', sa.Integer, server_default='1', nullable=False),
        sa.Column('created_by', UUID(as_uuid=True), nullable=False),
        sa.Column('approved_by', UUID(as_uuid=True), nullable=True),
        sa.Column('rejected_by', UUID(as_uuid=True), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_notes', sa.Text, nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_stock_reconciliations_status', 'stock_reconciliations', ['status'])
    op.create_index('ix_stock_reconciliations_created_by', 'stock_reconciliations', ['created_by'])
    op.create_index('ix_stock_reconciliations_approved_by', 'stock_reconciliations', ['approved_by'])
    op.create_index('ix_stock_reconciliation_status_created', 'stock_reconciliations', ['status', 'created_at'])

    # ====================
    # STOCK RECONCILIATION ITEMS TABLE
    # ====================
    op.create_table(
        'stock_reconciliation_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('reconciliation_id', UUID(as_uuid=True),
                  sa.ForeignKey('stock_reconciliations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, server_default='1', nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_sku', sa.String(50), nullable=False),
        sa.Column('unit_cost', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('system_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('physical_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('discrepancy', sa.Integer, server_default='0', nullable=False),
        sa.Column('estimated_impact', sa.Numeric(14, 2), server_default='0', nullable=False),
        sa.Column('verified', sa.Boolean, server_default='false', nullable=False),
        sa.Column('discrepancy_reason', sa.String(50), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('reconciliation_id', 'product_id', name='uq_reconciliation_item_product'),
    )

    op.create_index('ix_stock_reconciliation_items_reconciliation_id', 'stock_reconciliation_items', ['reconciliation_id'])
    op.create_index('ix_stock_reconciliation_items_product_id', 'stock_reconciliation_items', ['product_id'])

    # ====================
    # STOCK ADJUSTMENTS TABLE
    # ====================
    op.create_table(
        'stock_adjustments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('adjustment_type', sa.String(50), nullable=False,
                  comment='RECONCILIATION_ADDITION, RECONCILIATION_REDUCTION'),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('reconciliation_id', UUID(as_uuid=True),
                  sa.ForeignKey('stock_reconciliations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('previous_stock', sa.Integer, nullable=False),
        sa.Column('new_stock', sa.Integer, nullable=False),
        sa.Column('reason', sa.Text, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_stock_adjustments_adjustment_type', 'stock_adjustments', ['adjustment_type'])
    op.create_index('ix_stock_adjustments_product_id', 'stock_adjustments', ['product_id'])
    op.create_index('ix_stock_adjustments_reconciliation_id', 'stock_adjustments', ['reconciliation_id'])

    # ====================
    # AUDIT LOGS TABLE
    # ====================
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('table_name', sa.String(50), nullable=False),
        sa.Column('record_id', UUID(as_uuid=True), nullable=True),
        sa.Column('old_values', JSONB, nullable=True),
        sa.Column('new_values', JSONB, nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_table_name', 'audit_logs', ['table_name'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    """Drop stock reconciliation tables"""
    op.drop_table('audit_logs')
    op.drop_table('stock_adjustments')
    op.drop_table('stock_reconciliation_items')
    op.drop_table('stock_reconciliations')
    op.drop_table('products')
