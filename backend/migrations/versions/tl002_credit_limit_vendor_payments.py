"""Add customer credit limits and vendor bill payments

Revision ID: tl002_credit_limit_vendor_payments
Revises: tl001_initial_schema
Create Date: 2026-10-19

- customers.credit_limit_cents (0 means no limit)
- bills.paid_cents and bills.version_id (bills are paid under optimistic locking)
- vendor_payments table
- vendor_ledger_entries.vendor_payment_id
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "tl002_credit_limit_vendor_payments"
down_revision = "tl001_initial_schema"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("credit_limit_cents", sa.Integer(), nullable=False, server_default="0")
        )

    with op.batch_alter_table("bills", schema=None) as batch_op:
        batch_op.add_column(sa.Column("paid_cents", sa.Integer(), nullable=False, server_default="0"))
        batch_op.add_column(sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"))

    op.create_table(
        "vendor_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_number", sa.String(length=32), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=False),
        sa.Column("vendor_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="COMPLETED"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recorded_by", sa.String(length=64), nullable=False),
        sa.Column("voided_by", sa.String(length=64), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"], ),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"], ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_number"),
        sqlite_autoincrement=True
    )
    op.create_index(op.f("ix_vendor_payments_bill_id"), "vendor_payments", ["bill_id"])
    op.create_index(op.f("ix_vendor_payments_vendor_id"), "vendor_payments", ["vendor_id"])
    op.create_index(op.f("ix_vendor_payments_status"), "vendor_payments", ["status"])

    with op.batch_alter_table("vendor_ledger_entries", schema=None) as batch_op:
        batch_op.add_column(sa.Column("vendor_payment_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_vendor_ledger_entries_vendor_payment",
            "vendor_payments",
            ["vendor_payment_id"],
            ["id"],
        )
        batch_op.create_index(
            "ix_vendor_ledger_entries_vendor_payment_id", ["vendor_payment_id"], unique=False
        )


def downgrade():
    with op.batch_alter_table("vendor_ledger_entries", schema=None) as batch_op:
        batch_op.drop_index("ix_vendor_ledger_entries_vendor_payment_id")
        batch_op.drop_constraint("fk_vendor_ledger_entries_vendor_payment", type_="foreignkey")
        batch_op.drop_column("vendor_payment_id")

    op.drop_index(op.f("ix_vendor_payments_status"), table_name="vendor_payments")
    op.drop_index(op.f("ix_vendor_payments_vendor_id"), table_name="vendor_payments")
    op.drop_index(op.f("ix_vendor_payments_bill_id"), table_name="vendor_payments")
    op.drop_table("vendor_payments")

    with op.batch_alter_table("bills", schema=None) as batch_op:
        batch_op.drop_column("version_id")
        batch_op.drop_column("paid_cents")

    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.drop_column("credit_limit_cents")
