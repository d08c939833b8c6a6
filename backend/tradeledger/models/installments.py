from __future__ import annotations

from ..extensions import db
from tradeledger.time_utils import to_utc_z, to_iso_date


class InstallmentPlan(db.Model):
    """
    Payment schedule attached to exactly one invoice.

    Installments are created atomically with the plan and never re-created.
    Sum of installment amounts == total_cents - down_payment_cents (exact).
    """
    __tablename__ = "installment_plans"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", name="uq_installment_plans_invoice"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False)
    down_payment_cents = db.Column(db.Integer, nullable=False, default=0)
    number_of_installments = db.Column(db.Integer, nullable=False)
    interval_type = db.Column(db.String(16), nullable=False, default="MONTHLY")  # WEEKLY, MONTHLY, QUARTERLY
    start_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("installment_plan", uselist=False, lazy=True))

    @property
    def financed_cents(self) -> int:
        return self.total_cents - self.down_payment_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "total_cents": self.total_cents,
            "down_payment_cents": self.down_payment_cents,
            "financed_cents": self.financed_cents,
            "number_of_installments": self.number_of_installments,
            "interval_type": self.interval_type,
            "start_date": to_iso_date(self.start_date),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class Installment(db.Model):
    """
    One scheduled partial payment.

    STATUS: PENDING -> PARTIAL -> PAID, with OVERDUE once a late charge applies.
    late_charges_cents only ever increases.
    """
    __tablename__ = "installments"
    __table_args__ = (
        db.UniqueConstraint("plan_id", "installment_number", name="uq_installments_plan_number"),
        db.Index("ix_installments_due_status", "due_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("installment_plans.id"), nullable=False, index=True)
    installment_number = db.Column(db.Integer, nullable=False)

    due_date = db.Column(db.Date, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    late_charges_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    plan = db.relationship(
        "InstallmentPlan",
        backref=db.backref("installments", lazy=True, order_by="Installment.installment_number"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_cents(self) -> int:
        return self.amount_cents - self.paid_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "installment_number": self.installment_number,
            "due_date": to_iso_date(self.due_date),
            "amount_cents": self.amount_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "status": self.status,
            "late_charges_cents": self.late_charges_cents,
            "paid_date": to_iso_date(self.paid_date),
        }
