# Overview: Sales invoices: creation with unit reservation, payments, voids, cancellation and delivery.

"""
Invoice Service

WHY: An invoice is where money owed and goods held meet. Creating one
reserves its units and debits the customer in the same transaction;
cancelling it releases the units and credits back what was never paid.

DESIGN PRINCIPLES:
- paid_cents and status are always re-derived from stored payments and
  installments (recompute_invoice_payment_status), never incremented
- Every change to a customer's balance is paired with a ledger row
- Overpayment is rejected, never spilled onto another document
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app
from sqlalchemy import func

from ..models import Customer, Invoice, InvoiceLine, Payment, Unit, Installment, InstallmentPlan
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    require_actor,
    require_iso_date,
    require_iso_datetime,
    require_positive_int,
)
from tradeledger.time_utils import utcnow, utctoday
from . import amounts
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, DOC_INVOICE, DOC_PAYMENT
from .ledger_service import append_customer_entry
from . import lifecycle_service


class InvoiceError(Exception):
    """Raised for invoice operation errors."""
    pass


class InvoiceNotFoundError(InvoiceError, NotFoundError):
    """Invoice, customer or payment does not exist."""


class InvoiceOverpaymentError(InvoiceError, ConflictError):
    def __init__(self, invoice_id: int, amount_cents: int, balance_due_cents: int):
        self.invoice_id = invoice_id
        self.amount_cents = amount_cents
        self.balance_due_cents = balance_due_cents
        super().__init__(f"Payment of {amount_cents} exceeds balance due {balance_due_cents}")

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "balance_due_cents": self.balance_due_cents,
        }


class CreditLimitExceededError(InvoiceError, ConflictError):
    def __init__(self, customer_id: int, credit_limit_cents: int, balance_cents: int, total_cents: int):
        self.customer_id = customer_id
        self.credit_limit_cents = credit_limit_cents
        self.balance_cents = balance_cents
        self.total_cents = total_cents
        super().__init__(
            f"Invoice total {total_cents} would take customer {customer_id} past the credit limit "
            f"{credit_limit_cents} (current balance {balance_cents})"
        )

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "customer_id": self.customer_id,
            "credit_limit_cents": self.credit_limit_cents,
            "balance_cents": self.balance_cents,
            "total_cents": self.total_cents,
        }


# =============================================================================
# STATUS / METHOD CONSTANTS
# =============================================================================

INVOICE_DRAFT = "DRAFT"
INVOICE_SENT = "SENT"
INVOICE_PARTIAL = "PARTIAL"
INVOICE_PAID = "PAID"
INVOICE_OVERDUE = "OVERDUE"
INVOICE_CANCELLED = "CANCELLED"

# Statuses the payment derivation never overrides
STICKY_STATUSES = {INVOICE_DRAFT, INVOICE_CANCELLED}

PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_VOIDED = "VOIDED"

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_CHECK = "CHECK"
METHOD_MOBILE = "MOBILE"
METHOD_DOWN_PAYMENT = "DOWN_PAYMENT"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_CHECK,
    METHOD_MOBILE,
]


def validate_payment_method(method: str) -> str:
    value = (method or "").strip().upper() if isinstance(method, str) else ""
    if value not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}")
    return value


# =============================================================================
# STATUS DERIVATION
# =============================================================================

def derive_invoice_status(current_status: str, paid_cents: int, total_cents: int) -> str:
    """
    paid >= total -> PAID
    paid > 0      -> PARTIAL
    otherwise     -> SENT

    DRAFT and CANCELLED are kept as they are. OVERDUE (set by
    refresh_overdue_invoices) is kept until the invoice is fully paid.
    """
    if current_status in STICKY_STATUSES:
        return current_status
    if paid_cents >= total_cents:
        return INVOICE_PAID
    if current_status == INVOICE_OVERDUE:
        return INVOICE_OVERDUE
    if paid_cents > 0:
        return INVOICE_PARTIAL
    return INVOICE_SENT


def compute_invoice_paid_cents(session, invoice_id: int) -> int:
    """Non-voided direct payments plus every installment's paid amount."""
    direct = (
        session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(
            Payment.invoice_id == invoice_id,
            Payment.installment_id.is_(None),
            Payment.status == PAYMENT_COMPLETED,
        )
        .scalar()
    )
    via_installments = (
        session.query(func.coalesce(func.sum(Installment.paid_cents), 0))
        .join(InstallmentPlan, InstallmentPlan.id == Installment.plan_id)
        .filter(InstallmentPlan.invoice_id == invoice_id)
        .scalar()
    )
    return int(direct or 0) + int(via_installments or 0)


def recompute_invoice_payment_status(session, invoice: Invoice) -> Invoice:
    """
    Re-derive paid_cents and status from scratch. Idempotent.

    Runs inside the caller's transaction (flush only).
    """
    session.flush()
    invoice.paid_cents = compute_invoice_paid_cents(session, invoice.id)
    invoice.status = derive_invoice_status(invoice.status, invoice.paid_cents, invoice.total_cents)
    session.flush()
    return invoice


def refresh_invoice_status(session, invoice_id: int) -> Invoice:
    def _op():
        invoice = lock_for_update(session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        recompute_invoice_payment_status(session, invoice)
        session.commit()
        return invoice

    return run_with_retry(session, _op)


def refresh_overdue_invoices(session, today: date | None = None) -> int:
    """
    Daily pass: SENT or PARTIAL invoices past their due date that are still
    not fully paid become OVERDUE. Returns how many changed.
    """
    today = today or utctoday()

    def _op():
        changed = 0
        invoices = lock_for_update(
            session.query(Invoice)
            .filter(
                Invoice.status.in_([INVOICE_SENT, INVOICE_PARTIAL]),
                Invoice.due_date.isnot(None),
                Invoice.due_date < today,
            )
            .order_by(Invoice.id.asc())
        ).all()
        for invoice in invoices:
            recompute_invoice_payment_status(session, invoice)
            if invoice.status in (INVOICE_SENT, INVOICE_PARTIAL):
                invoice.status = INVOICE_OVERDUE
                changed += 1
        session.commit()
        return changed

    changed = run_with_retry(session, _op)
    if changed:
        current_app.logger.info("Marked %d invoices overdue", changed)
    return changed


# =============================================================================
# PAYMENTS (shared with installment_service)
# =============================================================================

def _create_payment_locked(
    session,
    invoice: Invoice,
    *,
    amount_cents: int,
    method: str,
    actor: str,
    installment_id: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    paid_at: datetime | None = None,
) -> Payment:
    """Payment row + customer ledger credit. Caller recomputes the invoice and commits."""
    payment = Payment(
        payment_number=next_document_number(session, *DOC_PAYMENT),
        invoice_id=invoice.id,
        installment_id=installment_id,
        customer_id=invoice.customer_id,
        amount_cents=amount_cents,
        method=method,
        reference=reference,
        notes=notes,
        status=PAYMENT_COMPLETED,
        paid_at=paid_at or utcnow(),
        recorded_by=actor,
    )
    session.add(payment)
    session.flush()

    append_customer_entry(
        session,
        customer_id=invoice.customer_id,
        invoice_id=invoice.id,
        payment_id=payment.id,
        description=f"Payment {payment.payment_number} for {invoice.invoice_number}",
        credit_cents=amount_cents,
        entry_date=payment.paid_at,
    )
    return payment


# =============================================================================
# CUSTOMERS
# =============================================================================

def create_customer(
    session,
    *,
    name: str,
    actor: str,
    email: str | None = None,
    phone: str | None = None,
    credit_limit_cents=0,
) -> Customer:
    actor = require_actor(actor)
    if not name or not str(name).strip():
        raise ValidationError("name is required")
    limit = coerce_cents(credit_limit_cents or 0, "credit_limit_cents")

    def _op():
        customer = Customer(
            name=str(name).strip(), email=email, phone=phone,
            current_balance_cents=0, credit_limit_cents=limit,
        )
        session.add(customer)
        session.commit()
        return customer

    customer = run_with_retry(session, _op)
    current_app.logger.info("Customer %s created by %s", customer.id, actor)
    return customer


# =============================================================================
# INVOICE CREATION
# =============================================================================

def _normalize_lines(session, lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")
    normalized = []
    seen = set()
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError(f"lines[{idx}] must be an object")
        unit_id = require_positive_int(line.get("unit_id"), f"lines[{idx}].unit_id")
        if unit_id in seen:
            raise ValidationError(f"Unit {unit_id} appears more than once")
        seen.add(unit_id)
        quantity = require_positive_int(line.get("quantity", 1), f"lines[{idx}].quantity")
        price = line.get("unit_price_cents")
        if price is None:
            unit = session.query(Unit).filter_by(id=unit_id).first()
            price = unit.selling_price_cents if unit else None
            if price is None:
                raise ValidationError(f"lines[{idx}].unit_price_cents is required")
        normalized.append({
            "unit_id": unit_id,
            "quantity": quantity,
            "unit_price_cents": coerce_cents(price, f"lines[{idx}].unit_price_cents"),
        })
    return normalized


def _check_credit_limit(customer: Customer, total_cents: int) -> None:
    """A positive credit limit caps what the customer may owe after this invoice."""
    limit = customer.credit_limit_cents or 0
    if limit <= 0:
        return
    if customer.current_balance_cents + total_cents > limit:
        raise CreditLimitExceededError(customer.id, limit, customer.current_balance_cents, total_cents)


def create_invoice(
    session,
    *,
    customer_id: int,
    lines: list[dict],
    actor: str,
    invoice_date=None,
    due_date=None,
    discount_type: str | None = None,
    discount_value=None,
    tax_rate=None,
    notes: str | None = None,
) -> Invoice:
    """
    Create a SENT invoice and reserve its units, all in one transaction.

    lines: [{"unit_id": int, "unit_price_cents": int (defaults to the unit's selling price), "quantity": int}]

    Raises:
        ValidationError: bad input
        InvoiceNotFoundError: customer not found
        CreditLimitExceededError: balance + total would pass a positive credit limit
        UnitNotFoundError / UnitNotAvailableError: from the reservation
    """
    actor = require_actor(actor)
    inv_date = require_iso_date(invoice_date, "invoice_date") or utctoday()
    inv_due = require_iso_date(due_date, "due_date")
    if inv_due is not None and inv_due < inv_date:
        raise ValidationError("due_date cannot be before invoice_date")
    if discount_type and str(discount_type).upper() not in (amounts.DISCOUNT_FIXED, amounts.DISCOUNT_PERCENTAGE):
        raise ValidationError("discount_type must be FIXED or PERCENTAGE")

    def _op():
        customer = lock_for_update(session.query(Customer).filter_by(id=customer_id)).first()
        if not customer:
            raise InvoiceNotFoundError(f"Customer {customer_id} not found")

        normalized = _normalize_lines(session, lines)
        totals = amounts.compute_invoice_totals(normalized, discount_type, discount_value, tax_rate)
        _check_credit_limit(customer, totals["total_cents"])

        invoice = Invoice(
            invoice_number=next_document_number(session, *DOC_INVOICE),
            customer_id=customer_id,
            invoice_date=inv_date,
            due_date=inv_due,
            status=INVOICE_SENT,
            subtotal_cents=totals["subtotal_cents"],
            discount_type=str(discount_type).upper() if discount_type else None,
            discount_value=None if discount_value in (None, "") else str(discount_value),
            discount_cents=totals["discount_cents"],
            tax_rate=None if tax_rate in (None, "") else str(tax_rate),
            tax_cents=totals["tax_cents"],
            total_cents=totals["total_cents"],
            paid_cents=0,
            notes=notes,
            created_by=actor,
        )
        session.add(invoice)
        session.flush()

        for line in normalized:
            session.add(InvoiceLine(
                invoice_id=invoice.id,
                unit_id=line["unit_id"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                line_total_cents=amounts.line_total_cents(line["quantity"], line["unit_price_cents"]),
            ))

        lifecycle_service._reserve_units_locked(
            session,
            sorted(line["unit_id"] for line in normalized),
            holder_type=lifecycle_service.HOLDER_INVOICE,
            holder_id=str(invoice.id),
            actor=actor,
            reason=lifecycle_service.REASON_INVOICE_CREATED,
        )

        if invoice.total_cents > 0:
            append_customer_entry(
                session,
                customer_id=customer_id,
                invoice_id=invoice.id,
                description=f"Invoice {invoice.invoice_number}",
                debit_cents=invoice.total_cents,
            )

        session.commit()
        return invoice

    invoice = run_with_retry(session, _op)
    current_app.logger.info(
        "Invoice %s created for customer %s (%d cents) by %s",
        invoice.invoice_number, customer_id, invoice.total_cents, actor,
    )
    return invoice


def get_invoice(session, invoice_id: int) -> Invoice | None:
    return session.query(Invoice).filter_by(id=invoice_id).first()


def _require_invoice_locked(session, invoice_id: int) -> Invoice:
    invoice = lock_for_update(session.query(Invoice).filter_by(id=invoice_id)).first()
    if not invoice:
        raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
    return invoice


# =============================================================================
# DIRECT PAYMENTS
# =============================================================================

def record_payment(
    session,
    invoice_id: int,
    amount_cents,
    method: str,
    actor: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    paid_at=None,
) -> dict:
    """
    Record a direct (non-installment) payment.

    Returns {"payment", "invoice", "invoice_fully_paid"}. The caller triggers
    automation_service.handle_invoice_paid when invoice_fully_paid is True.
    """
    actor = require_actor(actor)
    amount = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    method = validate_payment_method(method)
    paid_dt = require_iso_datetime(paid_at, "paid_at")

    def _op():
        invoice = _require_invoice_locked(session, invoice_id)
        if invoice.status in STICKY_STATUSES:
            raise InvoiceError(f"Cannot add payment to invoice with status {invoice.status}")
        if invoice.has_installment:
            raise InvoiceError("Invoice is on an installment plan; pay the installments instead")

        recompute_invoice_payment_status(session, invoice)
        if amount > invoice.balance_due_cents:
            raise InvoiceOverpaymentError(invoice.id, amount, invoice.balance_due_cents)

        payment = _create_payment_locked(
            session, invoice,
            amount_cents=amount, method=method, actor=actor,
            reference=reference, notes=notes, paid_at=paid_dt,
        )
        recompute_invoice_payment_status(session, invoice)
        session.commit()
        return payment, invoice

    payment, invoice = run_with_retry(session, _op)
    current_app.logger.info(
        "Payment %s of %d cents recorded on %s by %s",
        payment.payment_number, amount, invoice.invoice_number, actor,
    )
    return {
        "payment": payment,
        "invoice": invoice,
        "invoice_fully_paid": invoice.status == INVOICE_PAID,
    }


def void_payment(session, payment_id: int, actor: str, reason: str) -> dict:
    """
    Void a payment: the row stays (VOIDED), the customer is debited back,
    the installment (if any) and the invoice are re-derived.
    """
    actor = require_actor(actor)
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op():
        from .installment_service import _refresh_installment_status

        payment = lock_for_update(session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise InvoiceNotFoundError(f"Payment {payment_id} not found")
        if payment.status == PAYMENT_VOIDED:
            raise InvoiceError("Payment already voided")

        invoice = _require_invoice_locked(session, payment.invoice_id)
        if invoice.status == INVOICE_CANCELLED:
            raise InvoiceError("Cannot void a payment on a cancelled invoice")

        payment.status = PAYMENT_VOIDED
        payment.voided_by = actor
        payment.voided_at = utcnow()
        payment.void_reason = str(reason).strip()

        if payment.installment_id is not None:
            installment = lock_for_update(
                session.query(Installment).filter_by(id=payment.installment_id)
            ).first()
            installment.paid_cents = max(0, installment.paid_cents - payment.amount_cents)
            _refresh_installment_status(installment)

        append_customer_entry(
            session,
            customer_id=payment.customer_id,
            invoice_id=invoice.id,
            payment_id=payment.id,
            description=f"Void of payment {payment.payment_number}",
            debit_cents=payment.amount_cents,
        )
        recompute_invoice_payment_status(session, invoice)
        session.commit()
        return payment, invoice

    payment, invoice = run_with_retry(session, _op)
    current_app.logger.info("Payment %s voided by %s", payment.payment_number, actor)
    return {"payment": payment, "invoice": invoice}


# =============================================================================
# CANCELLATION / DELIVERY
# =============================================================================

def cancel_invoice(session, invoice_id: int, actor: str, reason: str | None = None) -> dict:
    """
    Cancel an unpaid or partly paid invoice.

    Reserved units go back to AVAILABLE and the unpaid remainder is credited
    back to the customer. Invoices with sold or delivered units cannot be
    cancelled.
    """
    actor = require_actor(actor)

    def _op():
        invoice = _require_invoice_locked(session, invoice_id)
        if invoice.status == INVOICE_CANCELLED:
            raise InvoiceError("Invoice already cancelled")
        if invoice.status == INVOICE_PAID:
            raise InvoiceError("Cannot cancel a paid invoice")

        sold = (
            session.query(Unit.id)
            .filter(
                Unit.reserved_for_type == lifecycle_service.HOLDER_INVOICE,
                Unit.reserved_for_id == str(invoice.id),
                Unit.inventory_status.in_([lifecycle_service.STATUS_SOLD, lifecycle_service.STATUS_DELIVERED]),
            )
            .count()
        )
        if sold:
            raise InvoiceError("Cannot cancel an invoice whose units are already sold")

        released = lifecycle_service._release_units_locked(
            session,
            holder_type=lifecycle_service.HOLDER_INVOICE,
            holder_id=str(invoice.id),
            actor=actor,
            reason=lifecycle_service.REASON_INVOICE_CANCELLED,
            notes=reason,
        )

        recompute_invoice_payment_status(session, invoice)
        unpaid = invoice.total_cents - invoice.paid_cents
        if unpaid > 0:
            append_customer_entry(
                session,
                customer_id=invoice.customer_id,
                invoice_id=invoice.id,
                description=f"Cancellation of {invoice.invoice_number}",
                credit_cents=unpaid,
            )

        invoice.status = INVOICE_CANCELLED
        invoice.cancelled_by = actor
        invoice.cancelled_at = utcnow()
        session.commit()
        return invoice, released

    invoice, released = run_with_retry(session, _op)
    if released.count == 0:
        current_app.logger.warning("Invoice %s cancelled with no reserved units", invoice.invoice_number)
    current_app.logger.info("Invoice %s cancelled by %s", invoice.invoice_number, actor)
    return {"invoice": invoice, "released": released}


def deliver_invoice(session, invoice_id: int, actor: str, delivery_info: dict | None = None) -> dict:
    """Hand over the SOLD units of an invoice (SOLD -> DELIVERED)."""
    actor = require_actor(actor)

    def _op():
        invoice = _require_invoice_locked(session, invoice_id)
        if invoice.status == INVOICE_CANCELLED:
            raise InvoiceError("Cannot deliver a cancelled invoice")
        result = lifecycle_service._mark_units_delivered_locked(session, invoice.id, actor, delivery_info)
        invoice.delivered_at = utcnow()
        session.commit()
        return invoice, result

    invoice, result = run_with_retry(session, _op)
    current_app.logger.info("Invoice %s delivered (%d units) by %s", invoice.invoice_number, result.count, actor)
    return {"invoice": invoice, "delivered": result}


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice_summary(session, invoice_id: int) -> dict:
    invoice = get_invoice(session, invoice_id)
    if not invoice:
        raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")

    plan = invoice.installment_plan
    payments = sorted(invoice.payments, key=lambda p: p.id)
    return {
        "invoice": invoice.to_dict(),
        "lines": [line.to_dict() for line in invoice.lines],
        "payments": [p.to_dict() for p in payments],
        "installment_plan": plan.to_dict() if plan else None,
        "inventory": lifecycle_service.get_invoice_inventory_status(session, invoice.id),
    }
