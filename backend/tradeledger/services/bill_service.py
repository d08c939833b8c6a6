# Overview: Vendor bill payments and voids, with bill status derived from stored payments.

"""
Bill Service

Bills are created by automation (bill from purchase order) and debit the
vendor ledger. Paying one credits the vendor ledger in the same
transaction; voiding a payment writes the compensating debit.

paid_cents is the sum of COMPLETED vendor payments, re-derived after every
change. Status follows it: nothing paid is UNPAID, something paid is
PARTIAL, the full total paid is PAID.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..models import Bill, VendorPayment
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    require_actor,
    require_iso_datetime,
)
from tradeledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, DOC_VENDOR_PAYMENT
from .ledger_service import append_vendor_entry


class BillError(Exception):
    """Raised when a bill payment operation fails."""
    pass


class BillNotFoundError(BillError, NotFoundError):
    pass


class VendorOverpaymentError(BillError, ConflictError):
    def __init__(self, bill_id: int, amount_cents: int, remaining_cents: int):
        self.bill_id = bill_id
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents
        super().__init__(
            f"Payment of {amount_cents} cents exceeds remaining {remaining_cents} cents on bill {bill_id}"
        )

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "bill_id": self.bill_id,
            "amount_cents": self.amount_cents,
            "remaining_cents": self.remaining_cents,
        }


BILL_UNPAID = "UNPAID"
BILL_PARTIAL = "PARTIAL"
BILL_PAID = "PAID"

VENDOR_PAYMENT_COMPLETED = "COMPLETED"
VENDOR_PAYMENT_VOIDED = "VOIDED"

VENDOR_PAYMENT_METHODS = ["CASH", "BANK_TRANSFER", "CHECK"]


def derive_bill_status(paid_cents: int, total_cents: int) -> str:
    if paid_cents <= 0:
        return BILL_UNPAID
    if paid_cents >= total_cents:
        return BILL_PAID
    return BILL_PARTIAL


def compute_bill_paid_cents(session, bill_id: int) -> int:
    total = (
        session.query(func.coalesce(func.sum(VendorPayment.amount_cents), 0))
        .filter(
            VendorPayment.bill_id == bill_id,
            VendorPayment.status == VENDOR_PAYMENT_COMPLETED,
        )
        .scalar()
    )
    return int(total or 0)


def recompute_bill_payment_status(session, bill: Bill) -> Bill:
    """Re-derive paid_cents and status from stored payments. Caller commits."""
    bill.paid_cents = compute_bill_paid_cents(session, bill.id)
    bill.status = derive_bill_status(bill.paid_cents, bill.total_cents)
    return bill


def get_bill(session, bill_id: int) -> Bill | None:
    return session.query(Bill).filter_by(id=bill_id).first()


def list_bill_payments(session, bill_id: int) -> list[VendorPayment]:
    return (
        session.query(VendorPayment)
        .filter_by(bill_id=bill_id)
        .order_by(VendorPayment.id.asc())
        .all()
    )


def _require_bill_locked(session, bill_id: int) -> Bill:
    bill = lock_for_update(session.query(Bill).filter_by(id=bill_id)).first()
    if not bill:
        raise BillNotFoundError(f"Bill {bill_id} not found")
    return bill


def record_vendor_payment(
    session,
    bill_id: int,
    amount_cents,
    method: str,
    actor: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    paid_at=None,
) -> dict:
    """
    Pay (part of) a bill.

    The bill row is locked first, then the vendor row inside
    append_vendor_entry, so two payments on one bill cannot both pass the
    remaining-balance check.
    """
    actor = require_actor(actor)
    amount = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    method = (method or "").strip().upper()
    if method not in VENDOR_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method or None}")
    paid_dt = require_iso_datetime(paid_at, "paid_at")

    def _op():
        bill = _require_bill_locked(session, bill_id)
        recompute_bill_payment_status(session, bill)
        if amount > bill.balance_due_cents:
            raise VendorOverpaymentError(bill.id, amount, bill.balance_due_cents)

        payment = VendorPayment(
            payment_number=next_document_number(session, *DOC_VENDOR_PAYMENT),
            bill_id=bill.id,
            vendor_id=bill.vendor_id,
            amount_cents=amount,
            method=method,
            reference=reference,
            notes=notes,
            status=VENDOR_PAYMENT_COMPLETED,
            paid_at=paid_dt or utcnow(),
            recorded_by=actor,
        )
        session.add(payment)
        session.flush()

        append_vendor_entry(
            session,
            vendor_id=bill.vendor_id,
            bill_id=bill.id,
            vendor_payment_id=payment.id,
            description=f"Payment {payment.payment_number} on bill {bill.bill_number}",
            credit_cents=amount,
        )
        recompute_bill_payment_status(session, bill)
        session.commit()
        return payment, bill

    payment, bill = run_with_retry(session, _op)
    current_app.logger.info(
        "Vendor payment %s of %d cents recorded on %s by %s",
        payment.payment_number, amount, bill.bill_number, actor,
    )
    return {"payment": payment, "bill": bill, "bill_fully_paid": bill.status == BILL_PAID}


def void_vendor_payment(session, payment_id: int, actor: str, reason: str) -> dict:
    actor = require_actor(actor)
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op():
        payment = lock_for_update(session.query(VendorPayment).filter_by(id=payment_id)).first()
        if not payment:
            raise BillNotFoundError(f"Vendor payment {payment_id} not found")
        if payment.status == VENDOR_PAYMENT_VOIDED:
            raise BillError("Vendor payment already voided")

        bill = _require_bill_locked(session, payment.bill_id)
        payment.status = VENDOR_PAYMENT_VOIDED
        payment.voided_by = actor
        payment.voided_at = utcnow()
        payment.void_reason = str(reason).strip()

        append_vendor_entry(
            session,
            vendor_id=payment.vendor_id,
            bill_id=bill.id,
            vendor_payment_id=payment.id,
            description=f"Void of vendor payment {payment.payment_number}",
            debit_cents=payment.amount_cents,
        )
        recompute_bill_payment_status(session, bill)
        session.commit()
        return payment, bill

    payment, bill = run_with_retry(session, _op)
    current_app.logger.info("Vendor payment %s voided by %s", payment.payment_number, actor)
    return {"payment": payment, "bill": bill}
