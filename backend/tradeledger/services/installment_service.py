# Overview: Installment plans for invoices: schedule creation, installment payments, late charges and queries.

"""
Installment Service

WHY: Customers may pay an invoice over time. A plan splits what is left
after the down payment into scheduled installments; payments are applied to
one installment at a time and the invoice's paid amount is re-derived after
each one.

RULES:
- Sum of installment amounts == total - down payment, exactly (last one
  absorbs the rounding remainder)
- One plan per invoice
- A payment may not exceed what is left on its installment (no spill-over)
- Late charges only ever go up; a nonzero charge on an unpaid installment
  makes it OVERDUE
"""

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy.orm import joinedload

from ..models import Invoice, InstallmentPlan, Installment
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    require_actor,
    require_iso_date,
    require_iso_datetime,
)
from tradeledger.time_utils import utctoday, add_months, to_iso_date
from . import amounts
from .concurrency import lock_for_update, run_with_retry
from .invoice_service import (
    INVOICE_CANCELLED,
    INVOICE_DRAFT,
    INVOICE_PAID,
    METHOD_DOWN_PAYMENT,
    _create_payment_locked,
    recompute_invoice_payment_status,
    validate_payment_method,
)


# =============================================================================
# CONSTANTS
# =============================================================================

INTERVAL_WEEKLY = "WEEKLY"
INTERVAL_MONTHLY = "MONTHLY"
INTERVAL_QUARTERLY = "QUARTERLY"
VALID_INTERVALS = {INTERVAL_WEEKLY, INTERVAL_MONTHLY, INTERVAL_QUARTERLY}

INSTALLMENT_PENDING = "PENDING"
INSTALLMENT_PARTIAL = "PARTIAL"
INSTALLMENT_PAID = "PAID"
INSTALLMENT_OVERDUE = "OVERDUE"

OPEN_STATUSES = [INSTALLMENT_PENDING, INSTALLMENT_PARTIAL]
UNPAID_STATUSES = [INSTALLMENT_PENDING, INSTALLMENT_PARTIAL, INSTALLMENT_OVERDUE]


# =============================================================================
# ERRORS
# =============================================================================

class InstallmentError(ValueError):
    """Raised when an installment operation violates business rules."""

    def to_dict(self) -> dict:
        return {"error": str(self), "type": type(self).__name__}


class InstallmentNotFoundError(InstallmentError, NotFoundError):
    pass


class PlanAlreadyExistsError(InstallmentError, ConflictError):
    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} already has an installment plan")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["invoice_id"] = self.invoice_id
        return data


class InvalidDownPaymentError(InstallmentError):
    def __init__(self, down_payment_cents: int, total_cents: int):
        self.down_payment_cents = down_payment_cents
        self.total_cents = total_cents
        super().__init__(
            f"Down payment {down_payment_cents} must be >= 0 and less than the total {total_cents}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"down_payment_cents": self.down_payment_cents, "total_cents": self.total_cents})
        return data


class OverpaymentRejectedError(InstallmentError, ConflictError):
    def __init__(self, installment_id: int, amount_cents: int, remaining_cents: int):
        self.installment_id = installment_id
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents
        super().__init__(
            f"Payment of {amount_cents} exceeds the {remaining_cents} remaining on installment {installment_id}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "installment_id": self.installment_id,
            "amount_cents": self.amount_cents,
            "remaining_cents": self.remaining_cents,
        })
        return data


# =============================================================================
# HELPERS
# =============================================================================

def normalize_interval(interval_type: str | None) -> str:
    """Unknown or empty interval types fall back to MONTHLY."""
    value = (interval_type or "").strip().upper() if isinstance(interval_type, str) else ""
    if value in VALID_INTERVALS:
        return value
    if value:
        current_app.logger.warning("Unknown installment interval %r, using MONTHLY", interval_type)
    return INTERVAL_MONTHLY


def installment_due_date(start_date: date, number: int, interval_type: str) -> date:
    if interval_type == INTERVAL_WEEKLY:
        return start_date + timedelta(days=7 * number)
    if interval_type == INTERVAL_QUARTERLY:
        return add_months(start_date, 3 * number)
    return add_months(start_date, number)


def _late_charge_rate_bps() -> int:
    return int(current_app.config.get("LATE_CHARGE_RATE_BPS", 200))


def _refresh_installment_status(installment: Installment, today: date | None = None) -> None:
    """Derive status from paid amount and late charges (used after payments and voids)."""
    if installment.paid_cents >= installment.amount_cents:
        installment.status = INSTALLMENT_PAID
        if installment.paid_date is None:
            installment.paid_date = today or utctoday()
        return
    installment.paid_date = None
    if installment.late_charges_cents > 0:
        installment.status = INSTALLMENT_OVERDUE
    elif installment.paid_cents > 0:
        installment.status = INSTALLMENT_PARTIAL
    else:
        installment.status = INSTALLMENT_PENDING


def _apply_late_charges_locked(installment: Installment, today: date, rate_bps: int) -> bool:
    """
    Raise late_charges_cents to the computed charge if it is higher.

    Returns True when the installment changed.
    """
    if installment.status == INSTALLMENT_PAID:
        return False
    days_late = (today - installment.due_date).days
    charge = amounts.late_charge_cents(installment.amount_cents, rate_bps, days_late)
    changed = False
    if charge > installment.late_charges_cents:
        installment.late_charges_cents = charge
        changed = True
    if installment.late_charges_cents > 0 and installment.status != INSTALLMENT_OVERDUE:
        installment.status = INSTALLMENT_OVERDUE
        changed = True
    return changed


def get_plan_summary(plan: InstallmentPlan) -> dict:
    installments = list(plan.installments)
    paid = sum(i.paid_cents for i in installments)
    unpaid = [i for i in installments if i.status != INSTALLMENT_PAID]
    return {
        "plan_id": plan.id,
        "invoice_id": plan.invoice_id,
        "total_cents": plan.total_cents,
        "down_payment_cents": plan.down_payment_cents,
        "financed_cents": plan.financed_cents,
        "installments_paid_cents": paid,
        "remaining_cents": plan.financed_cents - paid,
        "late_charges_cents": sum(i.late_charges_cents for i in installments),
        "number_of_installments": plan.number_of_installments,
        "installments_paid": len(installments) - len(unpaid),
        "next_due_date": to_iso_date(unpaid[0].due_date) if unpaid else None,
    }


# =============================================================================
# PLAN CREATION
# =============================================================================

def create_plan(
    session,
    invoice_id: int,
    *,
    number_of_installments: int,
    actor: str,
    down_payment_cents=0,
    interval_type: str = INTERVAL_MONTHLY,
    start_date=None,
    down_payment_method: str | None = None,
    notes: str | None = None,
) -> dict:
    """
    Create an installment plan for an invoice, with its full schedule.

    Installment i (1-based) is due start_date + i * interval. A down payment
    is recorded as a DOWN_PAYMENT payment straight away.

    Returns {"plan", "installments", "down_payment", "summary"}.

    Raises:
        PlanAlreadyExistsError: the invoice already has a plan
        InvalidDownPaymentError: down payment negative or >= invoice total
        ValidationError: fewer than one installment, or a split that would
            leave an installment at zero or below
    """
    actor = require_actor(actor)
    if isinstance(number_of_installments, bool) or not isinstance(number_of_installments, int):
        raise ValidationError("number_of_installments must be an integer")
    if number_of_installments < 1:
        raise ValidationError("number_of_installments must be at least 1")
    if isinstance(down_payment_cents, int) and not isinstance(down_payment_cents, bool) and down_payment_cents < 0:
        down_payment = down_payment_cents
    else:
        down_payment = coerce_cents(down_payment_cents or 0, "down_payment_cents")
    interval = normalize_interval(interval_type)
    start = require_iso_date(start_date, "start_date") or utctoday()
    method = METHOD_DOWN_PAYMENT if down_payment_method is None else validate_payment_method(down_payment_method)

    def _op():
        invoice = lock_for_update(session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise InstallmentNotFoundError(f"Invoice {invoice_id} not found")
        if invoice.has_installment or session.query(InstallmentPlan.id).filter_by(invoice_id=invoice_id).first():
            raise PlanAlreadyExistsError(invoice_id)
        if invoice.status in (INVOICE_CANCELLED, INVOICE_DRAFT):
            raise InstallmentError(f"Cannot create a plan for an invoice with status {invoice.status}")
        if invoice.paid_cents:
            raise InstallmentError("Invoice already has payments; a plan must cover the full total")

        total = invoice.total_cents
        if down_payment < 0 or down_payment >= total:
            raise InvalidDownPaymentError(down_payment, total)

        remaining = total - down_payment
        split = amounts.split_installments(remaining, number_of_installments)
        if any(amount <= 0 for amount in split):
            raise ValidationError(
                f"{remaining} cents cannot be split into {number_of_installments} positive installments"
            )

        plan = InstallmentPlan(
            invoice_id=invoice.id,
            total_cents=total,
            down_payment_cents=down_payment,
            number_of_installments=number_of_installments,
            interval_type=interval,
            start_date=start,
            notes=notes,
            created_by=actor,
        )
        session.add(plan)
        session.flush()

        installments = []
        for number, amount in enumerate(split, start=1):
            installment = Installment(
                plan_id=plan.id,
                installment_number=number,
                due_date=installment_due_date(start, number, interval),
                amount_cents=amount,
                paid_cents=0,
                status=INSTALLMENT_PENDING,
                late_charges_cents=0,
            )
            session.add(installment)
            installments.append(installment)

        invoice.has_installment = True
        # The invoice falls due with its last installment
        invoice.due_date = installments[-1].due_date
        session.flush()

        down = None
        if down_payment > 0:
            down = _create_payment_locked(
                session, invoice,
                amount_cents=down_payment, method=method, actor=actor,
                notes="Down payment",
            )
        recompute_invoice_payment_status(session, invoice)
        session.commit()
        return plan, installments, down

    plan, installments, down = run_with_retry(session, _op)
    current_app.logger.info(
        "Installment plan %s created for invoice %s: %d x %s by %s",
        plan.id, invoice_id, number_of_installments, interval, actor,
    )
    summary = get_plan_summary(plan)
    summary["installment_amount_cents"] = installments[0].amount_cents
    return {
        "plan": plan,
        "installments": installments,
        "down_payment": down,
        "summary": summary,
    }


# =============================================================================
# PAYMENTS
# =============================================================================

def record_installment_payment(
    session,
    installment_id: int,
    amount_cents,
    method: str,
    actor: str,
    reference: str | None = None,
    paid_at=None,
) -> dict:
    """
    Apply a payment to one installment.

    Returns {"payment", "installment", "invoice", "plan_summary", "invoice_fully_paid"}.
    The caller triggers automation_service.handle_invoice_paid when
    invoice_fully_paid is True.
    """
    actor = require_actor(actor)
    amount = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    method = validate_payment_method(method)
    paid_dt = require_iso_datetime(paid_at, "paid_at")

    def _op():
        today = utctoday()
        found = session.query(Installment).filter_by(id=installment_id).first()
        if not found:
            raise InstallmentNotFoundError(f"Installment {installment_id} not found")

        invoice = lock_for_update(session.query(Invoice).filter_by(id=found.plan.invoice_id)).first()
        installment = lock_for_update(session.query(Installment).filter_by(id=installment_id)).first()
        if invoice.status == INVOICE_CANCELLED:
            raise InstallmentError("Cannot pay an installment of a cancelled invoice")

        remaining = installment.amount_cents - installment.paid_cents
        if amount > remaining:
            raise OverpaymentRejectedError(installment.id, amount, remaining)

        payment = _create_payment_locked(
            session, invoice,
            amount_cents=amount, method=method, actor=actor,
            installment_id=installment.id, reference=reference,
            notes=f"Installment {installment.installment_number}", paid_at=paid_dt,
        )

        installment.paid_cents += amount
        if installment.paid_cents >= installment.amount_cents:
            installment.status = INSTALLMENT_PAID
            installment.paid_date = today
        else:
            installment.status = INSTALLMENT_PARTIAL
            _apply_late_charges_locked(installment, today, _late_charge_rate_bps())

        recompute_invoice_payment_status(session, invoice)
        session.commit()
        return payment, installment, invoice

    payment, installment, invoice = run_with_retry(session, _op)
    current_app.logger.info(
        "Installment %s paid %d cents (payment %s) by %s",
        installment.id, amount, payment.payment_number, actor,
    )
    return {
        "payment": payment,
        "installment": installment,
        "invoice": invoice,
        "plan_summary": get_plan_summary(installment.plan),
        "invoice_fully_paid": invoice.status == INVOICE_PAID,
    }


# =============================================================================
# LATE CHARGES
# =============================================================================

def apply_late_charges(session, installment_id: int, today: date | None = None) -> Installment:
    """Re-evaluate late charges on one installment (never lowers them)."""
    def _op():
        installment = lock_for_update(session.query(Installment).filter_by(id=installment_id)).first()
        if not installment:
            raise InstallmentNotFoundError(f"Installment {installment_id} not found")
        _apply_late_charges_locked(installment, today or utctoday(), _late_charge_rate_bps())
        session.commit()
        return installment

    return run_with_retry(session, _op)


def process_late_charges(session, today: date | None = None) -> dict:
    """
    Daily batch: re-evaluate every unpaid installment past its due date.

    Each installment is its own transaction; a failure is logged and
    reported in the results without stopping the batch.
    """
    today = today or utctoday()
    candidate_ids = [
        row.id for row in (
            session.query(Installment.id)
            .filter(Installment.due_date < today, Installment.status.in_(UNPAID_STATUSES))
            .order_by(Installment.due_date.asc(), Installment.id.asc())
            .all()
        )
    ]

    results = []
    for installment_id in candidate_ids:
        try:
            installment = apply_late_charges(session, installment_id, today)
            results.append({
                "installment_id": installment_id,
                "status": "SUCCESS",
                "late_charges_cents": installment.late_charges_cents,
                "message": "Late charges updated",
            })
        except Exception as exc:
            current_app.logger.exception("Late charge update failed for installment %s", installment_id)
            results.append({
                "installment_id": installment_id,
                "status": "FAILED",
                "late_charges_cents": None,
                "message": str(exc),
            })

    failed = sum(1 for r in results if r["status"] == "FAILED")
    current_app.logger.info("Late charge batch: %d processed, %d failed", len(results), failed)
    return {"processed": len(results), "failed": failed, "results": results}


# =============================================================================
# QUERIES
# =============================================================================

def _installment_row(installment: Installment, today: date) -> dict:
    invoice = installment.plan.invoice
    return {
        "installment_id": installment.id,
        "installment_number": installment.installment_number,
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "due_date": to_iso_date(installment.due_date),
        "amount_cents": installment.remaining_cents,
        "late_charges_cents": installment.late_charges_cents,
        "status": installment.status,
        "days_until_due": (installment.due_date - today).days,
    }


def get_overdue_installments(session, today: date | None = None) -> list[Installment]:
    """Past-due installments that are still PENDING or PARTIAL, oldest first."""
    today = today or utctoday()
    return (
        session.query(Installment)
        .options(joinedload(Installment.plan).joinedload(InstallmentPlan.invoice))
        .filter(Installment.due_date < today, Installment.status.in_(OPEN_STATUSES))
        .order_by(Installment.due_date.asc(), Installment.id.asc())
        .all()
    )


def get_customer_installment_summary(
    session,
    customer_id: int,
    today: date | None = None,
    window_days: int | None = None,
) -> dict:
    today = today or utctoday()
    if window_days is None:
        window_days = int(current_app.config.get("UPCOMING_WINDOW_DAYS", 7))
    horizon = today + timedelta(days=window_days)

    plans = (
        session.query(InstallmentPlan)
        .join(Invoice, Invoice.id == InstallmentPlan.invoice_id)
        .filter(Invoice.customer_id == customer_id)
        .order_by(InstallmentPlan.id.asc())
        .all()
    )

    summary = {
        "customer_id": customer_id,
        "total_plans": len(plans),
        "total_cents": 0,
        "total_paid_cents": 0,
        "total_overdue_cents": 0,
        "total_late_charges_cents": 0,
        "overdue": [],
        "upcoming": [],
    }
    for plan in plans:
        summary["total_cents"] += plan.total_cents
        for installment in plan.installments:
            summary["total_paid_cents"] += installment.paid_cents
            summary["total_late_charges_cents"] += installment.late_charges_cents
            if installment.status == INSTALLMENT_PAID:
                continue
            if installment.due_date < today:
                summary["total_overdue_cents"] += installment.remaining_cents
                summary["overdue"].append(_installment_row(installment, today))
            elif installment.due_date <= horizon:
                summary["upcoming"].append(_installment_row(installment, today))
    return summary


def generate_installment_reminders(session, days_ahead: int | None = None, today: date | None = None) -> list[dict]:
    """Open installments due between today and today + days_ahead (inclusive)."""
    today = today or utctoday()
    if days_ahead is None:
        days_ahead = int(current_app.config.get("REMINDER_DAYS_AHEAD", 7))
    installments = (
        session.query(Installment)
        .options(joinedload(Installment.plan).joinedload(InstallmentPlan.invoice))
        .filter(
            Installment.due_date >= today,
            Installment.due_date <= today + timedelta(days=days_ahead),
            Installment.status.in_(OPEN_STATUSES),
        )
        .order_by(Installment.due_date.asc(), Installment.id.asc())
        .all()
    )
    reminders = []
    for installment in installments:
        customer = installment.plan.invoice.customer
        row = _installment_row(installment, today)
        row.update({
            "customer_id": customer.id,
            "customer_name": customer.name,
            "customer_phone": customer.phone,
            "customer_email": customer.email,
        })
        reminders.append(row)
    return reminders


def get_installment_plan(session, plan_id: int) -> dict:
    plan = session.query(InstallmentPlan).filter_by(id=plan_id).first()
    if not plan:
        raise InstallmentNotFoundError(f"Installment plan {plan_id} not found")
    return {
        "plan": plan.to_dict(),
        "installments": [i.to_dict() for i in plan.installments],
        "invoice": plan.invoice.to_dict(),
        "summary": get_plan_summary(plan),
    }
