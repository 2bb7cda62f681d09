"""Accounting integrity core tables

Revision ID: 20261019_0900
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates tables for:
- tenants / clients: issuers and their customers
- invoices / invoice_items: sequential, hash-chained invoices
- credit_notes / credit_note_items: hash-chained corrections of invoices
- invoice_audit_logs: signed, append-only audit entries
- document_sequences: per-tenant numbering counters

Sealed documents and audit entries are protected by ORM guards;
foreign keys pointing at them use RESTRICT.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '20261019_0900_accounting_integrity_core'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _line_columns():
    return [
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('quantity', sa.Numeric(15, 2), nullable=False),
        sa.Column('unit_price', sa.Numeric(15, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='20.00'),
        sa.Column('subtotal', sa.Numeric(15, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('total', sa.Numeric(15, 2), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='1'),
    ]


def upgrade() -> None:
    # ===========================================
    # TENANTS & CLIENTS
    # ===========================================
    op.create_table(
        'tenants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('company_name', sa.String(255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('postal_code', sa.String(20), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('siret', sa.String(14), nullable=True),
        sa.Column('vat_number', sa.String(20), nullable=True),
        sa.Column('legal_form', sa.String(50), nullable=True),
        sa.Column('capital', sa.Numeric(15, 2), nullable=True),
        sa.Column('rcs_number', sa.String(50), nullable=True),
        sa.Column('rcs_city', sa.String(100), nullable=True),
        sa.Column('rm_number', sa.String(50), nullable=True),
        sa.Column('vat_subject', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('vat_exemption_reason', sa.String(255), nullable=True),
        sa.Column('is_auto_entrepreneur', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('iban', sa.String(34), nullable=True),
        sa.Column('bic', sa.String(11), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'clients',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('postal_code', sa.String(20), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('vat_number', sa.String(20), nullable=True),
        sa.Column('is_company', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # ===========================================
    # INVOICES
    # ===========================================
    op.create_table(
        'invoices',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('tenants.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('client_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('invoice_number', sa.String(50), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('subtotal', sa.Numeric(15, 2), nullable=False, server_default='0.00'),
        sa.Column('tax_amount', sa.Numeric(15, 2), nullable=False, server_default='0.00'),
        sa.Column('total', sa.Numeric(15, 2), nullable=False, server_default='0.00'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='EUR'),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft', index=True),
        sa.Column('hash', sa.String(64), nullable=True),
        sa.Column('previous_hash', sa.String(64), nullable=True),
        sa.Column('hash_version', sa.Integer(), nullable=True),
        sa.Column('signature', sa.String(128), nullable=True),
        sa.Column('document_hash', sa.String(64), nullable=True,
                  comment='SHA-256 of the rendered document bytes'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('payment_conditions', sa.Text(), nullable=True),
        sa.Column('late_payment_penalty_rate', sa.Numeric(5, 2), nullable=True),
        sa.Column('recovery_indemnity', sa.Numeric(15, 2), nullable=True),
        sa.Column('early_payment_discount', sa.String(255), nullable=True),
        sa.Column('purchase_order_number', sa.String(100), nullable=True),
        sa.Column('contract_reference', sa.String(100), nullable=True),
        sa.Column('electronic_format', sa.String(20), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'invoice_number', name='uq_invoices_tenant_number'),
        sa.UniqueConstraint('tenant_id', 'sequence_number', name='uq_invoices_tenant_sequence'),
    )

    op.create_table(
        'invoice_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True),
        *_line_columns(),
        *_timestamps(),
    )

    # ===========================================
    # CREDIT NOTES
    # ===========================================
    op.create_table(
        'credit_notes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('tenants.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('client_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('credit_note_number', sa.String(50), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('credit_note_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('subtotal', sa.Numeric(15, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('total', sa.Numeric(15, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='EUR'),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft', index=True),
        sa.Column('hash', sa.String(64), nullable=False),
        sa.Column('previous_hash', sa.String(64), nullable=True),
        sa.Column('hash_version', sa.Integer(), nullable=False),
        sa.Column('signature', sa.String(128), nullable=True),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'credit_note_number', name='uq_credit_notes_tenant_number'),
        sa.UniqueConstraint('tenant_id', 'sequence_number', name='uq_credit_notes_tenant_sequence'),
    )

    op.create_table(
        'credit_note_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('credit_note_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('credit_notes.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('invoice_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('invoice_items.id', ondelete='SET NULL'), nullable=True),
        *_line_columns(),
        *_timestamps(),
    )

    # ===========================================
    # AUDIT LOGS & SEQUENCES
    # ===========================================
    op.create_table(
        'invoice_audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('tenants.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('signature', sa.String(64), nullable=False,
                  comment='SHA-256 of invoice id, action, changes and timestamp'),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('changes', postgresql.JSONB, nullable=True),
    )
    op.create_index(
        'ix_invoice_audit_logs_invoice_timestamp',
        'invoice_audit_logs',
        ['invoice_id', 'timestamp'],
    )

    op.create_table(
        'document_sequences',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('family', sa.String(20), nullable=False),
        sa.Column('last_sequence', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'family', name='uq_document_sequences_tenant_family'),
    )


def downgrade() -> None:
    op.drop_table('document_sequences')
    op.drop_index('ix_invoice_audit_logs_invoice_timestamp', table_name='invoice_audit_logs')
    op.drop_table('invoice_audit_logs')
    op.drop_table('credit_note_items')
    op.drop_table('credit_notes')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('clients')
    op.drop_table('tenants')
