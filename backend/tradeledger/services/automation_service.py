# Overview: Business-event automations (purchase receipt, bills, expense and sales postings) with durable run logs.

"""
Automation Service

WHY: A business event (goods received, bill arrived, invoice paid) fans out
into inventory, ledger and journal writes. Each run is recorded in an
AutomationLog so a failure is visible and can be retried by hand.

RUN PROTOCOL:
1. Open the log as IN_PROGRESS and commit it (survives a failed effect)
2. Perform the effect and close the log as SUCCESS in ONE transaction,
   listing every affected record
3. On failure: roll back the effect, close the log as FAILED with the error,
   log the exception and re-raise it to the caller

Journal postings are keyed by (source_type, source_id, posting_kind), so a
retried run never posts twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from flask import current_app

from ..models import (
    AutomationLog,
    Bill,
    Invoice,
    InventoryMovement,
    PurchaseOrder,
    Unit,
    Vendor,
)
from ..validation import ConflictError, NotFoundError, ValidationError, require_actor, require_iso_date
from tradeledger.time_utils import utcnow, utctoday, to_iso_date
from .accounting_service import (
    ROLE_ACCOUNTS_PAYABLE,
    ROLE_ACCOUNTS_RECEIVABLE,
    ROLE_COGS,
    ROLE_EXPENSE,
    ROLE_INVENTORY,
    ROLE_SALES_REVENUE,
    account_code_for,
    get_account_by_code,
    post_journal_pair,
)
from .bill_service import BILL_UNPAID
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, DOC_BILL
from .invoice_service import INVOICE_PAID, recompute_invoice_payment_status
from .ledger_service import append_vendor_entry
from .lifecycle_service import _mark_units_sold_locked
from .purchasing_service import PO_CANCELLED, PO_RECEIVED, PHYSICAL_IN_STORE


ACTION_PURCHASE_ORDER_COMPLETION = "PURCHASE_ORDER_COMPLETION"
ACTION_BILL_FROM_PURCHASE_ORDER = "BILL_FROM_PURCHASE_ORDER"
ACTION_SUPPLIER_EXPENSE_POSTING = "SUPPLIER_EXPENSE_POSTING"
ACTION_INVOICE_PAID = "INVOICE_PAID"

LOG_IN_PROGRESS = "IN_PROGRESS"
LOG_SUCCESS = "SUCCESS"
LOG_FAILED = "FAILED"

SOURCE_PURCHASE_ORDER = "PurchaseOrder"
SOURCE_BILL = "Bill"
SOURCE_INVOICE = "Invoice"

POSTING_PURCHASE_RECEIPT = "PURCHASE_RECEIPT"
POSTING_SUPPLIER_EXPENSE = "SUPPLIER_EXPENSE"
POSTING_SALE = "SALE"
POSTING_COGS = "COGS"


class AutomationError(Exception):
    """Raised when an automation cannot run against its source record."""
    pass


class AutomationNotFoundError(AutomationError, NotFoundError):
    pass


@dataclass
class AutomationResult:
    success: bool
    message: str
    affected_records: list = field(default_factory=list)
    log_id: Optional[int] = None
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "affected_records": self.affected_records,
            "log_id": self.log_id,
            "data": self.data,
        }


def _record(model: str, record_id, action: str) -> dict:
    return {"model": model, "id": record_id, "action": action}


# =============================================================================
# LOG PROTOCOL
# =============================================================================

def _open_log(
    session,
    *,
    action: str,
    source_type: str,
    source_id: int,
    description: str,
    actor: str,
    payload: dict | None,
    retry_of_id: int | None,
) -> int:
    def _op():
        log = AutomationLog(
            action=action,
            source_type=source_type,
            source_id=source_id,
            description=description,
            status=LOG_IN_PROGRESS,
            affected_records=[],
            payload=payload,
            actor=actor,
            retry_of_id=retry_of_id,
            created_at=utcnow(),
        )
        session.add(log)
        session.commit()
        return log.id

    return run_with_retry(session, _op)


def _close_failed(session, log_id: int, error_message: str) -> None:
    def _op():
        log = session.query(AutomationLog).filter_by(id=log_id).first()
        log.status = LOG_FAILED
        log.error_message = error_message
        log.executed_at = utcnow()
        session.commit()

    run_with_retry(session, _op)


def _run_automation(
    session,
    *,
    action: str,
    source_type: str,
    source_id: int,
    description: str,
    actor: str,
    effect: Callable[[list], tuple[str, dict]],
    payload: dict | None = None,
    retry_of_id: int | None = None,
) -> AutomationResult:
    log_id = _open_log(
        session,
        action=action,
        source_type=source_type,
        source_id=source_id,
        description=description,
        actor=actor,
        payload=payload,
        retry_of_id=retry_of_id,
    )

    def _op():
        affected: list[dict] = []
        message, data = effect(affected)
        log = session.query(AutomationLog).filter_by(id=log_id).first()
        log.status = LOG_SUCCESS
        log.affected_records = affected
        log.executed_at = utcnow()
        session.commit()
        return AutomationResult(True, message, affected, log_id, data)

    try:
        result = run_with_retry(session, _op)
    except Exception as exc:
        _close_failed(session, log_id, str(exc))
        current_app.logger.exception("Automation %s failed for %s %s (log %s)", action, source_type, source_id, log_id)
        raise

    current_app.logger.info(
        "Automation %s succeeded for %s %s (log %s, %d records)",
        action, source_type, source_id, log_id, len(result.affected_records),
    )
    return result


def _legs_records(legs, action: str) -> list[dict]:
    return [_record("JournalEntry", leg.id, action) for leg in legs]


# =============================================================================
# PURCHASE ORDER COMPLETION
# =============================================================================

def handle_purchase_order_completion(session, po_id: int, actor: str, *, retry_of_id: int | None = None) -> AutomationResult:
    """
    Goods on a purchase order arrived: units go IN_STORE (physical axis only),
    one PURCHASE_RECEIPT movement each, PO marked RECEIVED, then
    debit Inventory / credit Accounts Payable for the PO total.

    Units already IN_STORE are skipped, so a re-run does not duplicate receipts.
    """
    actor = require_actor(actor)

    def _effect(affected: list) -> tuple[str, dict]:
        po = lock_for_update(session.query(PurchaseOrder).filter_by(id=po_id)).first()
        if not po:
            raise AutomationNotFoundError(f"Purchase order {po_id} not found")
        if po.status == PO_CANCELLED:
            raise AutomationError(f"Purchase order {po.po_number} is cancelled")

        now = utcnow()
        received = 0
        for line in po.lines:
            unit = lock_for_update(session.query(Unit).filter_by(id=line.unit_id)).first()
            if unit.physical_status == PHYSICAL_IN_STORE:
                continue
            movement = InventoryMovement(
                unit_id=unit.id,
                movement_type="PURCHASE_RECEIPT",
                from_status=unit.physical_status,
                to_status=PHYSICAL_IN_STORE,
                quantity=line.quantity,
                reference=po.po_number,
                notes=f"Received on {po.po_number}",
                actor=actor,
            )
            unit.physical_status = PHYSICAL_IN_STORE
            unit.received_at = now
            session.add(movement)
            session.flush()
            affected.append(_record("Unit", unit.id, "status_updated_to_in_store"))
            affected.append(_record("InventoryMovement", movement.id, "created_purchase_receipt"))
            received += 1

        if po.status != PO_RECEIVED:
            po.status = PO_RECEIVED
            po.received_at = now
            po.received_by = actor
            affected.append(_record("PurchaseOrder", po.id, "status_updated_to_received"))

        legs = []
        if po.total_cents > 0:
            vendor_name = po.vendor.name
            legs = post_journal_pair(
                session,
                debit_code=account_code_for(ROLE_INVENTORY),
                credit_code=account_code_for(ROLE_ACCOUNTS_PAYABLE),
                amount_cents=po.total_cents,
                source_type=SOURCE_PURCHASE_ORDER,
                source_id=po.id,
                posting_kind=POSTING_PURCHASE_RECEIPT,
                description=f"Inventory Purchase - {vendor_name} - {po.po_number}",
                actor=actor,
                reference=po.po_number,
            )
            affected.extend(_legs_records(legs, "created_purchase_accounting_entries"))

        return (
            f"Received {received} units on {po.po_number}",
            {"purchase_order_id": po.id, "units_received": received, "journal_entry_ids": [l.id for l in legs]},
        )

    return _run_automation(
        session,
        action=ACTION_PURCHASE_ORDER_COMPLETION,
        source_type=SOURCE_PURCHASE_ORDER,
        source_id=po_id,
        description=f"Purchase order {po_id} completion",
        actor=actor,
        effect=_effect,
        retry_of_id=retry_of_id,
    )


# =============================================================================
# BILL FROM PURCHASE ORDER
# =============================================================================

def create_bill_from_purchase_order(
    session,
    po_id: int,
    actor: str,
    bill_number: str | None = None,
    bill_date=None,
    due_date=None,
    *,
    retry_of_id: int | None = None,
) -> AutomationResult:
    """
    Mirror a purchase order into a vendor bill, raise the vendor's balance
    and append the vendor ledger row carrying the balance after this bill.

    Raises:
        ConflictError: the purchase order already has a bill
    """
    actor = require_actor(actor)
    b_date = require_iso_date(bill_date, "bill_date") or utctoday()
    b_due = require_iso_date(due_date, "due_date")
    if b_due is not None and b_due < b_date:
        raise ValidationError("due_date cannot be before bill_date")
    payload = {
        "bill_number": bill_number,
        "bill_date": to_iso_date(b_date),
        "due_date": to_iso_date(b_due),
    }

    def _effect(affected: list) -> tuple[str, dict]:
        po = lock_for_update(session.query(PurchaseOrder).filter_by(id=po_id)).first()
        if not po:
            raise AutomationNotFoundError(f"Purchase order {po_id} not found")
        if po.status == PO_CANCELLED:
            raise AutomationError(f"Purchase order {po.po_number} is cancelled")
        if session.query(Bill.id).filter_by(purchase_order_id=po.id).first():
            raise ConflictError(f"Purchase order {po.po_number} already has a bill")

        number = bill_number or next_document_number(session, *DOC_BILL)
        if session.query(Bill.id).filter_by(bill_number=number).first():
            raise ConflictError(f"Bill number {number} already exists")

        bill = Bill(
            bill_number=number,
            vendor_id=po.vendor_id,
            purchase_order_id=po.id,
            bill_date=b_date,
            due_date=b_due,
            subtotal_cents=po.subtotal_cents,
            tax_cents=po.tax_cents,
            total_cents=po.total_cents,
            status=BILL_UNPAID,
            created_by=actor,
        )
        session.add(bill)
        session.flush()
        affected.append(_record("Bill", bill.id, "created"))

        entry = None
        if bill.total_cents > 0:
            entry = append_vendor_entry(
                session,
                vendor_id=po.vendor_id,
                bill_id=bill.id,
                description=f"Bill {bill.bill_number} - {po.po_number}",
                debit_cents=bill.total_cents,
            )
            affected.append(_record("Vendor", po.vendor_id, "balance_updated"))
            affected.append(_record("VendorLedgerEntry", entry.id, "entry_created"))

        return (
            f"Bill {bill.bill_number} created from {po.po_number}",
            {
                "bill_id": bill.id,
                "bill_number": bill.bill_number,
                "vendor_balance_cents": entry.balance_cents if entry else None,
            },
        )

    return _run_automation(
        session,
        action=ACTION_BILL_FROM_PURCHASE_ORDER,
        source_type=SOURCE_PURCHASE_ORDER,
        source_id=po_id,
        description=f"Bill from purchase order {po_id}",
        actor=actor,
        effect=_effect,
        payload=payload,
        retry_of_id=retry_of_id,
    )


# =============================================================================
# SUPPLIER EXPENSE POSTING
# =============================================================================

def handle_supplier_expense_posting(session, bill_id: int, actor: str, *, retry_of_id: int | None = None) -> AutomationResult:
    """Debit Expense (vendor override or default) / credit Accounts Payable for a bill."""
    actor = require_actor(actor)

    def _effect(affected: list) -> tuple[str, dict]:
        bill = session.query(Bill).filter_by(id=bill_id).first()
        if not bill:
            raise AutomationNotFoundError(f"Bill {bill_id} not found")
        if bill.total_cents <= 0:
            return f"Bill {bill.bill_number} has nothing to post", {"bill_id": bill.id, "journal_entry_ids": []}

        vendor = session.query(Vendor).filter_by(id=bill.vendor_id).first()
        expense_code = vendor.expense_account_code or account_code_for(ROLE_EXPENSE)
        payable_code = account_code_for(ROLE_ACCOUNTS_PAYABLE)

        legs = post_journal_pair(
            session,
            debit_code=expense_code,
            credit_code=payable_code,
            amount_cents=bill.total_cents,
            source_type=SOURCE_BILL,
            source_id=bill.id,
            posting_kind=POSTING_SUPPLIER_EXPENSE,
            description=f"Expense - {vendor.name} - {bill.bill_number}",
            actor=actor,
            reference=bill.bill_number,
        )
        affected.append(_record("JournalEntry", legs[0].id, "expense_entry_created"))
        affected.append(_record("JournalEntry", legs[1].id, "payable_entry_created"))
        affected.append(_record("Account", get_account_by_code(session, expense_code).id, "balance_updated"))
        affected.append(_record("Account", get_account_by_code(session, payable_code).id, "balance_updated"))

        return (
            f"Expense posted for bill {bill.bill_number}",
            {"bill_id": bill.id, "expense_account_code": expense_code, "journal_entry_ids": [l.id for l in legs]},
        )

    return _run_automation(
        session,
        action=ACTION_SUPPLIER_EXPENSE_POSTING,
        source_type=SOURCE_BILL,
        source_id=bill_id,
        description=f"Supplier expense posting for bill {bill_id}",
        actor=actor,
        effect=_effect,
        retry_of_id=retry_of_id,
    )


# =============================================================================
# INVOICE PAID
# =============================================================================

def calculate_invoice_cogs(invoice: Invoice) -> int:
    """Sum of unit purchase price * line quantity over the invoice lines."""
    return sum((line.unit.purchase_price_cents or 0) * line.quantity for line in invoice.lines)


def handle_invoice_paid(session, invoice_id: int, actor: str, *, retry_of_id: int | None = None) -> AutomationResult:
    """
    A fully paid invoice: reserved units become SOLD, then
    debit Accounts Receivable / credit Sales Revenue for the total and
    debit COGS / credit Inventory for the cost of the units (when nonzero).
    """
    actor = require_actor(actor)

    def _effect(affected: list) -> tuple[str, dict]:
        invoice = lock_for_update(session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise AutomationNotFoundError(f"Invoice {invoice_id} not found")
        recompute_invoice_payment_status(session, invoice)
        if invoice.status != INVOICE_PAID:
            raise AutomationError(f"Invoice {invoice.invoice_number} is not fully paid ({invoice.status})")

        sold = _mark_units_sold_locked(session, invoice.id, actor)
        if sold.count == 0:
            current_app.logger.warning("No reserved units to mark sold for invoice %s", invoice.id)
        for unit in sold.units:
            affected.append(_record("Unit", unit.id, "status_updated_to_sold"))

        customer_name = invoice.customer.name
        journal_ids = []
        if invoice.total_cents > 0:
            legs = post_journal_pair(
                session,
                debit_code=account_code_for(ROLE_ACCOUNTS_RECEIVABLE),
                credit_code=account_code_for(ROLE_SALES_REVENUE),
                amount_cents=invoice.total_cents,
                source_type=SOURCE_INVOICE,
                source_id=invoice.id,
                posting_kind=POSTING_SALE,
                description=f"Sales - {customer_name} - {invoice.invoice_number}",
                actor=actor,
                reference=invoice.invoice_number,
            )
            affected.extend(_legs_records(legs, "created_sales_accounting_entries"))
            journal_ids.extend(l.id for l in legs)

        cogs = calculate_invoice_cogs(invoice)
        if cogs > 0:
            legs = post_journal_pair(
                session,
                debit_code=account_code_for(ROLE_COGS),
                credit_code=account_code_for(ROLE_INVENTORY),
                amount_cents=cogs,
                source_type=SOURCE_INVOICE,
                source_id=invoice.id,
                posting_kind=POSTING_COGS,
                description=f"COGS - {customer_name} - {invoice.invoice_number}",
                actor=actor,
                reference=invoice.invoice_number,
            )
            affected.extend(_legs_records(legs, "created_cogs_accounting_entries"))
            journal_ids.extend(l.id for l in legs)

        return (
            f"Invoice {invoice.invoice_number} settled: {sold.count} units sold",
            {"invoice_id": invoice.id, "units_sold": sold.count, "cogs_cents": cogs, "journal_entry_ids": journal_ids},
        )

    return _run_automation(
        session,
        action=ACTION_INVOICE_PAID,
        source_type=SOURCE_INVOICE,
        source_id=invoice_id,
        description=f"Invoice {invoice_id} paid",
        actor=actor,
        effect=_effect,
        retry_of_id=retry_of_id,
    )


# =============================================================================
# RETRY / QUERIES
# =============================================================================

def retry_automation(session, log_id: int, actor: str) -> AutomationResult:
    """Replay a FAILED run against the same source with its stored payload."""
    actor = require_actor(actor)
    log = session.query(AutomationLog).filter_by(id=log_id).first()
    if not log:
        raise AutomationNotFoundError(f"Automation log {log_id} not found")
    if log.status != LOG_FAILED:
        raise AutomationError(f"Only failed automations can be retried (log {log_id} is {log.status})")

    payload: dict[str, Any] = dict(log.payload or {})
    current_app.logger.info("Retrying automation log %s (%s) by %s", log.id, log.action, actor)

    if log.action == ACTION_PURCHASE_ORDER_COMPLETION:
        return handle_purchase_order_completion(session, log.source_id, actor, retry_of_id=log.id)
    if log.action == ACTION_BILL_FROM_PURCHASE_ORDER:
        return create_bill_from_purchase_order(
            session, log.source_id, actor,
            bill_number=payload.get("bill_number"),
            bill_date=payload.get("bill_date"),
            due_date=payload.get("due_date"),
            retry_of_id=log.id,
        )
    if log.action == ACTION_SUPPLIER_EXPENSE_POSTING:
        return handle_supplier_expense_posting(session, log.source_id, actor, retry_of_id=log.id)
    if log.action == ACTION_INVOICE_PAID:
        return handle_invoice_paid(session, log.source_id, actor, retry_of_id=log.id)
    raise AutomationError(f"Unknown automation action {log.action}")


def get_automation_log(session, log_id: int) -> AutomationLog | None:
    return session.query(AutomationLog).filter_by(id=log_id).first()


def list_automation_logs(
    session,
    *,
    status: str | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[AutomationLog]:
    query = session.query(AutomationLog)
    if status:
        query = query.filter(AutomationLog.status == status)
    if action:
        query = query.filter(AutomationLog.action == action)
    limit = max(1, min(int(limit), 500))
    return query.order_by(AutomationLog.id.desc()).limit(limit).all()
