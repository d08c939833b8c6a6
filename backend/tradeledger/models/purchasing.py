from __future__ import annotations

from ..extensions import db
from tradeledger.time_utils import to_utc_z, to_iso_date


class Vendor(db.Model):
    """
    Supplier of units.

    current_balance_cents is the amount owed to the vendor. Every change is
    written together with a VendorLedgerEntry under a row lock on the vendor,
    so concurrent bills against one vendor are serialized.
    """
    __tablename__ = "vendors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True, unique=True)

    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)

    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    # Optional chart-of-accounts override for supplier expense postings
    expense_account_code = db.Column(db.String(16), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Vendor id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "current_balance_cents": self.current_balance_cents,
            "expense_account_code": self.expense_account_code,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    """
    Purchase order header.

    LIFECYCLE: OPEN -> RECEIVED (or CANCELLED).
    Receiving is handled by automation_service.handle_purchase_order_completion.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(32), nullable=False, unique=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)
    order_date = db.Column(db.Date, nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate = db.Column(db.String(16), nullable=True)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(64), nullable=False)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    vendor = db.relationship("Vendor", backref=db.backref("purchase_orders", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "po_number": self.po_number,
            "vendor_id": self.vendor_id,
            "status": self.status,
            "order_date": to_iso_date(self.order_date),
            "subtotal_cents": self.subtotal_cents,
            "tax_rate": self.tax_rate,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "created_by": self.created_by,
            "received_at": to_utc_z(self.received_at),
            "received_by": self.received_by,
        }


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    purchase_order = db.relationship(
        "PurchaseOrder",
        backref=db.backref("lines", lazy=True, order_by="PurchaseOrderLine.id"),
    )
    unit = db.relationship("Unit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "unit_id": self.unit_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }


class Bill(db.Model):
    """Vendor bill (supplier invoice), usually mirrored from a purchase order."""
    __tablename__ = "bills"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_number = db.Column(db.String(32), nullable=False, unique=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, unique=True)

    bill_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    # Sum of non-voided vendor payments; status is derived from it (UNPAID, PARTIAL, PAID)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    vendor = db.relationship("Vendor", backref=db.backref("bills", lazy=True))
    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("bill", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return max(0, (self.total_cents or 0) - (self.paid_cents or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_number": self.bill_number,
            "vendor_id": self.vendor_id,
            "purchase_order_id": self.purchase_order_id,
            "bill_date": to_iso_date(self.bill_date),
            "due_date": to_iso_date(self.due_date),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "status": self.status,
            "version_id": self.version_id,
            "created_by": self.created_by,
        }


class VendorPayment(db.Model):
    """
    Payment made to a vendor against a bill.

    Voided payments stay in place (status VOIDED); the void writes a
    compensating vendor ledger debit.
    """
    __tablename__ = "vendor_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(32), nullable=False, unique=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)

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

    bill = db.relationship("Bill", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "bill_id": self.bill_id,
            "vendor_id": self.vendor_id,
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


class VendorLedgerEntry(db.Model):
    """
    Append-only running-balance ledger per vendor.

    balance_cents is the vendor's balance AFTER this entry, read from the
    locked vendor row at write time. IMMUTABLE once written.
    """
    __tablename__ = "vendor_ledger_entries"
    __table_args__ = (
        db.Index("ix_vendor_ledger_vendor_id", "vendor_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    vendor_payment_id = db.Column(db.Integer, db.ForeignKey("vendor_payments.id"), nullable=True, index=True)

    entry_date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    debit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False)

    vendor = db.relationship("Vendor", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "bill_id": self.bill_id,
            "vendor_payment_id": self.vendor_payment_id,
            "entry_date": to_utc_z(self.entry_date),
            "description": self.description,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "balance_cents": self.balance_cents,
        }
