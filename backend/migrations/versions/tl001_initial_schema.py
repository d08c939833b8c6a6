"""initial schema: units, invoices, installments, purchasing, journal

Revision ID: tl001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete TradeLedger schema:
- units / unit_status_changes / inventory_movements: lifecycle and physical receipts
- customers / invoices / invoice_lines / payments / customer_ledger_entries
- installment_plans / installments
- vendors / purchase_orders / purchase_order_lines / bills / vendor_ledger_entries
- accounts / journal_entries: double-entry postings
- document_sequences / automation_logs

Rows guarded by optimistic locking carry version_id (units, customers,
invoices, installments, vendors, accounts).
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'tl001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # units: one serialized item, two status axes
    # ============================================================================
    op.create_table(
        'units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('inventory_status', sa.String(length=16), nullable=False, server_default='AVAILABLE'),
        sa.Column('physical_status', sa.String(length=32), nullable=False, server_default='IN_STORE'),
        sa.Column('reserved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reserved_by', sa.String(length=64), nullable=True),
        sa.Column('reserved_for_type', sa.String(length=32), nullable=True),
        sa.Column('reserved_for_id', sa.String(length=64), nullable=True),
        sa.Column('reservation_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('purchase_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('selling_price_cents', sa.Integer(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('outbound_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('handover_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('handover_by', sa.String(length=64), nullable=True),
        sa.Column('handover_to', sa.String(length=255), nullable=True),
        sa.Column('handover_to_id_number', sa.String(length=64), nullable=True),
        sa.Column('handover_to_phone', sa.String(length=32), nullable=True),
        sa.Column('handover_details', sa.Text(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('serial_number'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_units_inventory_status'), 'units', ['inventory_status'])
    op.create_index(op.f('ix_units_physical_status'), 'units', ['physical_status'])
    op.create_index(op.f('ix_units_deleted_at'), 'units', ['deleted_at'])
    op.create_index('ix_units_holder_status', 'units', ['reserved_for_type', 'reserved_for_id', 'inventory_status'])
    op.create_index('ix_units_status_expiry', 'units', ['inventory_status', 'reservation_expiry'])

    # ============================================================================
    # unit_status_changes: append-only audit of every inventory_status move
    # ============================================================================
    op.create_table(
        'unit_status_changes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=16), nullable=True),
        sa.Column('to_status', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('changed_by', sa.String(length=64), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_unit_status_changes_unit_id'), 'unit_status_changes', ['unit_id'])
    op.create_index(op.f('ix_unit_status_changes_reason'), 'unit_status_changes', ['reason'])
    op.create_index(op.f('ix_unit_status_changes_changed_at'), 'unit_status_changes', ['changed_at'])
    op.create_index('ix_unit_status_changes_unit_changed', 'unit_status_changes', ['unit_id', 'changed_at'])
    op.create_index('ix_unit_status_changes_reference', 'unit_status_changes', ['reference_type', 'reference_id'])

    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('actor', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_inventory_movements_unit_id'), 'inventory_movements', ['unit_id'])
    op.create_index('ix_inventory_movements_type_created', 'inventory_movements', ['movement_type', 'created_at'])

    # ============================================================================
    # customers / invoices / invoice_lines
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('current_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='SENT'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.String(length=32), nullable=True),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.String(length=16), nullable=True),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('has_installment', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('cancelled_by', sa.String(length=64), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_invoices_customer_id'), 'invoices', ['customer_id'])
    op.create_index(op.f('ix_invoices_status'), 'invoices', ['status'])
    op.create_index('ix_invoices_customer_status', 'invoices', ['customer_id', 'status'])

    op.create_table(
        'invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', 'unit_id', name='uq_invoice_lines_invoice_unit'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_invoice_lines_invoice_id'), 'invoice_lines', ['invoice_id'])
    op.create_index(op.f('ix_invoice_lines_unit_id'), 'invoice_lines', ['unit_id'])

    # ============================================================================
    # installment_plans / installments (before payments: payments reference them)
    # ============================================================================
    op.create_table(
        'installment_plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('down_payment_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('number_of_installments', sa.Integer(), nullable=False),
        sa.Column('interval_type', sa.String(length=16), nullable=False, server_default='MONTHLY'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', name='uq_installment_plans_invoice'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_installment_plans_invoice_id'), 'installment_plans', ['invoice_id'])

    op.create_table(
        'installments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('late_charges_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['plan_id'], ['installment_plans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'installment_number', name='uq_installments_plan_number'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_installments_plan_id'), 'installments', ['plan_id'])
    op.create_index(op.f('ix_installments_status'), 'installments', ['status'])
    op.create_index('ix_installments_due_status', 'installments', ['due_date', 'status'])

    # ============================================================================
    # payments / customer_ledger_entries
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_number', sa.String(length=32), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('installment_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recorded_by', sa.String(length=64), nullable=False),
        sa.Column('voided_by', sa.String(length=64), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['installment_id'], ['installments.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_number'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_payments_invoice_id'), 'payments', ['invoice_id'])
    op.create_index(op.f('ix_payments_installment_id'), 'payments', ['installment_id'])
    op.create_index(op.f('ix_payments_customer_id'), 'payments', ['customer_id'])
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'])

    op.create_table(
        'customer_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('entry_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('debit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_customer_ledger_entries_customer_id'), 'customer_ledger_entries', ['customer_id'])
    op.create_index(op.f('ix_customer_ledger_entries_invoice_id'), 'customer_ledger_entries', ['invoice_id'])
    op.create_index(op.f('ix_customer_ledger_entries_payment_id'), 'customer_ledger_entries', ['payment_id'])
    op.create_index('ix_customer_ledger_customer_id', 'customer_ledger_entries', ['customer_id', 'id'])

    # ============================================================================
    # vendors / purchase orders / bills / vendor ledger
    # ============================================================================
    op.create_table(
        'vendors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('contact_phone', sa.String(length=64), nullable=True),
        sa.Column('current_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expense_account_code', sa.String(length=16), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('po_number', sa.String(length=32), nullable=False),
        sa.Column('vendor_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('order_date', sa.Date(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.String(length=16), nullable=True),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_by', sa.String(length=64), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('po_number'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_purchase_orders_vendor_id'), 'purchase_orders', ['vendor_id'])
    op.create_index(op.f('ix_purchase_orders_status'), 'purchase_orders', ['status'])

    op.create_table(
        'purchase_order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_purchase_order_lines_purchase_order_id'), 'purchase_order_lines', ['purchase_order_id'])
    op.create_index(op.f('ix_purchase_order_lines_unit_id'), 'purchase_order_lines', ['unit_id'])

    op.create_table(
        'bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_number', sa.String(length=32), nullable=False),
        sa.Column('vendor_id', sa.Integer(), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), nullable=True),
        sa.Column('bill_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='UNPAID'),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_number'),
        sa.UniqueConstraint('purchase_order_id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_bills_vendor_id'), 'bills', ['vendor_id'])
    op.create_index(op.f('ix_bills_status'), 'bills', ['status'])

    op.create_table(
        'vendor_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vendor_id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=True),
        sa.Column('entry_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('debit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_vendor_ledger_entries_vendor_id'), 'vendor_ledger_entries', ['vendor_id'])
    op.create_index(op.f('ix_vendor_ledger_entries_bill_id'), 'vendor_ledger_entries', ['bill_id'])
    op.create_index('ix_vendor_ledger_vendor_id', 'vendor_ledger_entries', ['vendor_id', 'id'])

    # ============================================================================
    # accounts / journal_entries
    # ============================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('account_type', sa.String(length=16), nullable=False),
        sa.Column('current_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'journal_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('debit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('posting_kind', sa.String(length=32), nullable=False),
        sa.Column('posted_by', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_journal_entries_account_id'), 'journal_entries', ['account_id'])
    op.create_index('ix_journal_entries_source', 'journal_entries', ['source_type', 'source_id', 'posting_kind'])

    # ============================================================================
    # document_sequences / automation_logs
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_doc_sequences_type'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_document_sequences_document_type'), 'document_sequences', ['document_type'])

    op.create_table(
        'automation_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=48), nullable=False),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='IN_PROGRESS'),
        sa.Column('affected_records', sa.JSON(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('actor', sa.String(length=64), nullable=False),
        sa.Column('retry_of_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['retry_of_id'], ['automation_logs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(op.f('ix_automation_logs_action'), 'automation_logs', ['action'])
    op.create_index('ix_automation_logs_source', 'automation_logs', ['source_type', 'source_id'])
    op.create_index('ix_automation_logs_status_created', 'automation_logs', ['status', 'created_at'])


def downgrade():
    for table in (
        'automation_logs',
        'document_sequences',
        'journal_entries',
        'accounts',
        'vendor_ledger_entries',
        'bills',
        'purchase_order_lines',
        'purchase_orders',
        'vendors',
        'customer_ledger_entries',
        'payments',
        'installments',
        'installment_plans',
        'invoice_lines',
        'invoices',
        'customers',
        'inventory_movements',
        'unit_status_changes',
        'units',
    ):
        op.drop_table(table)
