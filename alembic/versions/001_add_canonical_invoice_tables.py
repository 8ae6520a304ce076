"""Add canonical invoice tables and backfill jobs

Revision ID: 001
Revises:
Create Date: 2026-01-12

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    'canonicalsource': ('OCR', 'XERO', 'MANUAL'),
    'unitcategory': ('WEIGHT', 'VOLUME', 'UNIT', 'UNKNOWN'),
    'adjustmentstatus': ('NONE', 'MODIFIED', 'CREDITED'),
    'qualitystatus': ('OK', 'WARN'),
    'jobstatus': ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'RETRYING'),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # Create enums
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name, create_type=True).create(op.get_bind(), checkfirst=True)

    # Canonical headers
    op.create_table(
        'canonical_invoices',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('organisation_id', sa.String(64), nullable=False),
        sa.Column('location_id', sa.String(64), nullable=False),
        sa.Column('supplier_id', sa.String(64), nullable=True),
        sa.Column('source', _enum('canonicalsource'), nullable=False),

        # Legacy pointers (exactly one set)
        sa.Column('legacy_invoice_id', sa.String(64), nullable=True),
        sa.Column('legacy_xero_invoice_id', sa.String(64), nullable=True),
        sa.Column('source_invoice_ref', sa.String(255), nullable=False),

        sa.Column('date', sa.DateTime(), nullable=True),
        sa.Column('currency_code', sa.String(16), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('source_line_count', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('legacy_invoice_id'),
        sa.UniqueConstraint('legacy_xero_invoice_id'),
        sa.CheckConstraint(
            '(legacy_invoice_id IS NULL) <> (legacy_xero_invoice_id IS NULL)',
            name='ck_canonical_invoices_one_legacy_pointer',
        ),
    )
    op.create_index('ix_canonical_invoices_org_loc', 'canonical_invoices', ['organisation_id', 'location_id'])
    op.create_index(
        'ix_canonical_invoices_org_loc_supplier', 'canonical_invoices',
        ['organisation_id', 'location_id', 'supplier_id'],
    )
    op.create_index('ix_canonical_invoices_deleted_at', 'canonical_invoices', ['deleted_at'])

    # Canonical lines
    op.create_table(
        'canonical_invoice_line_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('canonical_invoice_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('organisation_id', sa.String(64), nullable=False),
        sa.Column('location_id', sa.String(64), nullable=False),
        sa.Column('supplier_id', sa.String(64), nullable=True),
        sa.Column('source', _enum('canonicalsource'), nullable=False),
        sa.Column('source_line_ref', sa.String(255), nullable=False),
        sa.Column('normalization_version', sa.String(32), nullable=False),

        # Verbatim captured text
        sa.Column('raw_description', sa.Text(), nullable=False),
        sa.Column('raw_quantity_text', sa.Text(), nullable=True),
        sa.Column('raw_unit_text', sa.Text(), nullable=True),
        sa.Column('raw_delivered_text', sa.Text(), nullable=True),
        sa.Column('raw_size_text', sa.Text(), nullable=True),
        sa.Column('product_code', sa.String(255), nullable=True),

        sa.Column('quantity', sa.Numeric(19, 4), nullable=True),
        sa.Column('unit_price', sa.Numeric(19, 4), nullable=True),
        sa.Column('line_total', sa.Numeric(19, 4), nullable=True),
        sa.Column('tax_amount', sa.Numeric(19, 4), nullable=True),

        # Derived
        sa.Column('normalized_description', sa.Text(), nullable=False),
        sa.Column('unit_label', sa.String(32), nullable=True),
        sa.Column('unit_category', _enum('unitcategory'), nullable=False),
        sa.Column('currency_code', sa.String(16), nullable=True),
        sa.Column('adjustment_status', _enum('adjustmentstatus'), nullable=False, server_default='NONE'),
        sa.Column('quality_status', _enum('qualitystatus'), nullable=False, server_default='OK'),
        sa.Column('warn_reasons', postgresql.ARRAY(sa.Text()), nullable=False, server_default='{}'),
        sa.Column('confidence_score', sa.Float(), nullable=True),

        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['canonical_invoice_id'], ['canonical_invoices.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('canonical_invoice_id', 'source_line_ref', name='uq_canonical_line_source_ref'),
    )
    op.create_index(
        'ix_canonical_invoice_line_items_canonical_invoice_id', 'canonical_invoice_line_items',
        ['canonical_invoice_id'],
    )
    op.create_index(
        'ix_canonical_lines_org_loc_quality', 'canonical_invoice_line_items',
        ['organisation_id', 'location_id', 'quality_status'],
    )
    op.create_index(
        'ix_canonical_lines_org_loc_unit_quality', 'canonical_invoice_line_items',
        ['organisation_id', 'location_id', 'unit_category', 'quality_status'],
    )
    op.create_index(
        'ix_canonical_lines_org_loc_version', 'canonical_invoice_line_items',
        ['organisation_id', 'location_id', 'normalization_version'],
    )

    # Backfill jobs
    op.create_table(
        'canonical_backfill_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('celery_task_id', sa.String(255), nullable=True),
        sa.Column('status', _enum('jobstatus'), nullable=False, server_default='PENDING'),
        sa.Column('organisation_id', sa.String(64), nullable=False),
        sa.Column('location_id', sa.String(64), nullable=False),
        sa.Column('triggered_by', sa.String(64), nullable=True),

        # Progress tracking
        sa.Column('progress', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('current_step', sa.String(255), nullable=True),

        # Input/Output
        sa.Column('input_data', postgresql.JSONB(), nullable=True),
        sa.Column('result_data', postgresql.JSONB(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),

        # Retry tracking
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),

        # Timestamps
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_canonical_backfill_jobs_celery_task_id', 'canonical_backfill_jobs', ['celery_task_id'], unique=True)
    op.create_index('ix_canonical_backfill_jobs_organisation_id', 'canonical_backfill_jobs', ['organisation_id'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('ix_canonical_backfill_jobs_organisation_id', 'canonical_backfill_jobs')
    op.drop_index('ix_canonical_backfill_jobs_celery_task_id', 'canonical_backfill_jobs')
    op.drop_index('ix_canonical_lines_org_loc_version', 'canonical_invoice_line_items')
    op.drop_index('ix_canonical_lines_org_loc_unit_quality', 'canonical_invoice_line_items')
    op.drop_index('ix_canonical_lines_org_loc_quality', 'canonical_invoice_line_items')
    op.drop_index('ix_canonical_invoice_line_items_canonical_invoice_id', 'canonical_invoice_line_items')
    op.drop_index('ix_canonical_invoices_deleted_at', 'canonical_invoices')
    op.drop_index('ix_canonical_invoices_org_loc_supplier', 'canonical_invoices')
    op.drop_index('ix_canonical_invoices_org_loc', 'canonical_invoices')

    # Drop tables
    op.drop_table('canonical_backfill_jobs')
    op.drop_table('canonical_invoice_line_items')
    op.drop_table('canonical_invoices')

    # Drop enums
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
