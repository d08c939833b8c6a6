from __future__ import annotations

from ..extensions import db
from tradeledger.time_utils import to_utc_z, to_iso_date


class Customer(db.Model):
    """
    Customer master data.

    current_balance_cents is the outstanding amount owed. It is only changed
    together with a CustomerLedgerEntry carrying the resulting balance.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    # 0 means no limit
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "current_balance_cents": self.current_balance_cents,
            "credit_limit_cents": self.credit_limit_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class Invoice(db.Model):
    """
    Sales invoice.

    PAYMENT TRACKING:
    paid_cents and status are DERIVED (see invoice_service.recompute_invoice_payment_status):
    paid_cents = non-voided direct payments + every installment's paid_cents.
    They are never incremented in place.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    # Lifecycle status: DRAFT, SENT, PARTIAL, PAID, OVERDUE, CANCELLED
    status = db.Column(db.String(16), nullable=False, default="SENT", index=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=True)  # FIXED, PERCENTAGE
    discount_value = db.Column(db.String(32), nullable=True)  # as entered (cents for FIXED, percent for PERCENTAGE)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate = db.Column(db.String(16), nullable=True)  # percent, as entered
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    has_installment = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    cancelled_by = db.Column(db.String(64), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return self.total_cents - self.paid_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "tax_rate": self.tax_rate,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "has_installment": self.has_installment,
            "notes": self.notes,
            "created_by": self.created_by,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceLine(db.Model):
    """Individual line items on an invoice; each line references one unit."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "unit_id", name="uq_invoice_lines_invoice_unit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", backref=db.backref("lines", lazy=True, order_by="InvoiceLine.id"))
    unit = db.relationship("Unit", backref=db.backref("invoice_lines", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "unit_id": self.unit_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Customer payment against an invoice.

    installment_id is NULL for direct payments (including down payments).
    Voided payments stay in place (status VOIDED) for the audit trail.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(32), nullable=False, unique=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    installment_id = db.Column(db.Integer, db.ForeignKey("installments.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)  # COMPLETED, VOIDED

    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    recorded_by = db.Column(db.String(64), nullable=False)
    voided_by = db.Column(db.String(64), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True))
    installment = db.relationship("Installment", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "invoice_id": self.invoice_id,
            "installment_id": self.installment_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "notes": self.notes,
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at),
            "recorded_by": self.recorded_by,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
        }


class CustomerLedgerEntry(db.Model):
    """
    Append-only running-balance ledger per customer.

    balance_cents = previous balance + debit - credit, computed at write time
    under a row lock on the customer. IMMUTABLE once written.
    """
    __tablename__ = "customer_ledger_entries"
    __table_args__ = (
        db.Index("ix_customer_ledger_customer_id", "customer_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    entry_date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    debit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False)

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "invoice_id": self.invoice_id,
            "payment_id": self.payment_id,
            "entry_date": to_utc_z(self.entry_date),
            "description": self.description,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "balance_cents": self.balance_cents,
        }
