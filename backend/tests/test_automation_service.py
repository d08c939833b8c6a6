"""
Automation engine tests.

Each automation is checked for its effect, its durable log, idempotent
journal postings on re-run, and failure + manual retry.
"""

import pytest

from tradeledger.models import (
    Account,
    AutomationLog,
    Bill,
    InventoryMovement,
    JournalEntry,
    PurchaseOrder,
    Unit,
    Vendor,
)
from tradeledger.services import accounting_service, automation_service, invoice_service, purchasing_service
from tradeledger.services.automation_service import AutomationError
from tradeledger.validation import ConflictError


ACTOR = "tester"


def _balance(db_session, code):
    return db_session.query(Account).filter_by(code=code).one().current_balance_cents


def test_purchase_order_completion(db_session, purchase_order):
    result = automation_service.handle_purchase_order_completion(db_session, purchase_order.id, ACTOR)

    assert result.success is True
    assert result.data["units_received"] == 2
    db_session.expire_all()

    units = db_session.query(Unit).filter(Unit.serial_number.in_(["PO-UNIT-1", "PO-UNIT-2"])).all()
    assert {u.physical_status for u in units} == {"IN_STORE"}
    assert {u.inventory_status for u in units} == {"AVAILABLE"}
    assert all(u.received_at is not None for u in units)

    movements = db_session.query(InventoryMovement).filter_by(movement_type="PURCHASE_RECEIPT").all()
    assert len(movements) == 2
    assert {m.reference for m in movements} == {purchase_order.po_number}

    po = db_session.query(PurchaseOrder).filter_by(id=purchase_order.id).one()
    assert po.status == "RECEIVED"
    assert po.received_by == ACTOR

    legs = accounting_service.find_posting(db_session, "PurchaseOrder", po.id, "PURCHASE_RECEIPT")
    assert [(l.debit_cents, l.credit_cents) for l in legs] == [(50000, 0), (0, 50000)]
    assert _balance(db_session, "1200") == 50000
    assert _balance(db_session, "2000") == -50000

    log = db_session.query(AutomationLog).filter_by(id=result.log_id).one()
    assert log.status == "SUCCESS"
    assert log.executed_at is not None
    actions = {r["action"] for r in log.affected_records}
    assert {"status_updated_to_in_store", "created_purchase_receipt",
            "status_updated_to_received", "created_purchase_accounting_entries"} <= actions


def test_purchase_order_completion_rerun_does_not_duplicate(db_session, purchase_order):
    first = automation_service.handle_purchase_order_completion(db_session, purchase_order.id, ACTOR)
    second = automation_service.handle_purchase_order_completion(db_session, purchase_order.id, ACTOR)

    assert second.success is True
    assert second.data["units_received"] == 0
    assert second.data["journal_entry_ids"] == first.data["journal_entry_ids"]
    assert db_session.query(InventoryMovement).count() == 2
    assert db_session.query(JournalEntry).count() == 2
    assert _balance(db_session, "1200") == 50000


def test_purchase_order_completion_missing_po_is_logged(db_session):
    with pytest.raises(AutomationError):
        automation_service.handle_purchase_order_completion(db_session, 999999, ACTOR)

    log = db_session.query(AutomationLog).one()
    assert log.status == "FAILED"
    assert "not found" in log.error_message


def test_bill_from_purchase_order(db_session, vendor, purchase_order):
    result = automation_service.create_bill_from_purchase_order(
        db_session, purchase_order.id, ACTOR, bill_date="2024-05-01", due_date="2024-05-31"
    )

    assert result.data["bill_number"] == "BILL-00001"
    assert result.data["vendor_balance_cents"] == 50000

    db_session.expire_all()
    bill = db_session.query(Bill).one()
    assert bill.total_cents == 50000
    assert bill.vendor_id == vendor.id
    assert bill.status == "UNPAID"
    assert db_session.query(Vendor).filter_by(id=vendor.id).one().current_balance_cents == 50000

    log = db_session.query(AutomationLog).filter_by(id=result.log_id).one()
    assert log.payload == {"bill_number": None, "bill_date": "2024-05-01", "due_date": "2024-05-31"}
    assert {r["model"] for r in log.affected_records} == {"Bill", "Vendor", "VendorLedgerEntry"}


def test_second_bill_for_same_purchase_order_fails(db_session, vendor, purchase_order):
    automation_service.create_bill_from_purchase_order(db_session, purchase_order.id, ACTOR)

    with pytest.raises(ConflictError):
        automation_service.create_bill_from_purchase_order(db_session, purchase_order.id, ACTOR)

    assert db_session.query(Bill).count() == 1
    failed = automation_service.list_automation_logs(db_session, status="FAILED")
    assert len(failed) == 1
    assert "already has a bill" in failed[0].error_message
    db_session.expire_all()
    assert db_session.query(Vendor).filter_by(id=vendor.id).one().current_balance_cents == 50000


def test_bill_dates_are_validated(db_session, purchase_order):
    from tradeledger.validation import ValidationError

    with pytest.raises(ValidationError):
        automation_service.create_bill_from_purchase_order(
            db_session, purchase_order.id, ACTOR, bill_date="2024-05-10", due_date="2024-05-01"
        )
    assert db_session.query(AutomationLog).count() == 0


def test_supplier_expense_uses_default_account(db_session, purchase_order):
    bill = automation_service.create_bill_from_purchase_order(db_session, purchase_order.id, ACTOR)

    result = automation_service.handle_supplier_expense_posting(db_session, bill.data["bill_id"], ACTOR)

    assert result.data["expense_account_code"] == "6000"
    assert _balance(db_session, "6000") == 50000
    assert _balance(db_session, "2000") == -50000


def test_supplier_expense_fails_then_succeeds_on_retry(db_session):
    freight = purchasing_service.create_vendor(
        db_session, name="Freight Co", actor=ACTOR, code="FRT", expense_account_code="6100"
    )
    po = purchasing_service.create_purchase_order(
        db_session, vendor_id=freight.id, actor=ACTOR,
        lines=[{"serial_number": "FRT-1", "unit_cost_cents": 7500}],
    )
    bill = automation_service.create_bill_from_purchase_order(db_session, po.id, ACTOR)

    with pytest.raises(accounting_service.AccountNotConfiguredError):
        automation_service.handle_supplier_expense_posting(db_session, bill.data["bill_id"], ACTOR)

    failed = automation_service.list_automation_logs(
        db_session, status="FAILED", action=automation_service.ACTION_SUPPLIER_EXPENSE_POSTING
    )
    assert len(failed) == 1
    assert "6100" in failed[0].error_message
    assert db_session.query(JournalEntry).filter_by(source_type="Bill").count() == 0

    db_session.add(Account(code="6100", name="Freight Expense", account_type="EXPENSE", current_balance_cents=0))
    db_session.commit()

    retried = automation_service.retry_automation(db_session, failed[0].id, "manager")

    assert retried.success is True
    log = db_session.query(AutomationLog).filter_by(id=retried.log_id).one()
    assert log.retry_of_id == failed[0].id
    assert log.actor == "manager"
    assert _balance(db_session, "6100") == 7500


def test_invoice_paid_rejects_unpaid_invoice_then_retry_succeeds(db_session, make_invoice):
    invoice, units = make_invoice((100000,))

    with pytest.raises(AutomationError):
        automation_service.handle_invoice_paid(db_session, invoice.id, ACTOR)

    failed = automation_service.list_automation_logs(db_session, status="FAILED")
    assert len(failed) == 1
    db_session.expire_all()
    assert db_session.query(Unit).filter_by(id=units[0].id).one().inventory_status == "RESERVED"

    invoice_service.record_payment(db_session, invoice.id, 100000, "CASH", ACTOR)
    result = automation_service.retry_automation(db_session, failed[0].id, ACTOR)

    assert result.success is True
    assert result.data["units_sold"] == 1
    assert result.data["cogs_cents"] == 50000
    db_session.expire_all()
    assert db_session.query(Unit).filter_by(id=units[0].id).one().inventory_status == "SOLD"


def test_invoice_paid_postings_balance_and_are_idempotent(db_session, make_invoice):
    invoice, _ = make_invoice((100000, 60000))
    invoice_service.record_payment(db_session, invoice.id, 160000, "CARD", ACTOR)

    first = automation_service.handle_invoice_paid(db_session, invoice.id, ACTOR)
    second = automation_service.handle_invoice_paid(db_session, invoice.id, ACTOR)

    assert first.data["units_sold"] == 2
    assert second.data["units_sold"] == 0
    assert second.data["journal_entry_ids"] == first.data["journal_entry_ids"]
    assert db_session.query(JournalEntry).filter_by(source_type="Invoice").count() == 4

    assert _balance(db_session, "1100") == 160000
    assert _balance(db_session, "4000") == -160000
    assert _balance(db_session, "5000") == 100000
    assert _balance(db_session, "1200") == -100000

    tb = accounting_service.trial_balance(db_session)
    assert tb["balanced"] is True
    assert tb["total_debit_cents"] == 260000


def test_invoice_cogs_skipped_for_zero_cost_units(db_session, customer, make_unit):
    unit = make_unit(purchase_price_cents=0, selling_price_cents=30000)
    invoice = invoice_service.create_invoice(
        db_session, customer_id=customer.id, lines=[{"unit_id": unit.id}], actor=ACTOR
    )
    invoice_service.record_payment(db_session, invoice.id, 30000, "CASH", ACTOR)

    result = automation_service.handle_invoice_paid(db_session, invoice.id, ACTOR)

    assert result.data["cogs_cents"] == 0
    assert db_session.query(JournalEntry).filter_by(posting_kind="COGS").count() == 0
    assert db_session.query(JournalEntry).filter_by(posting_kind="SALE").count() == 2


def test_retry_only_failed_logs(db_session, purchase_order):
    result = automation_service.handle_purchase_order_completion(db_session, purchase_order.id, ACTOR)

    with pytest.raises(AutomationError):
        automation_service.retry_automation(db_session, result.log_id, ACTOR)
    with pytest.raises(AutomationError):
        automation_service.retry_automation(db_session, 999999, ACTOR)


def test_list_automation_logs_filters_and_orders(db_session, purchase_order):
    automation_service.handle_purchase_order_completion(db_session, purchase_order.id, ACTOR)
    automation_service.create_bill_from_purchase_order(db_session, purchase_order.id, ACTOR)
    with pytest.raises(ConflictError):
        automation_service.create_bill_from_purchase_order(db_session, purchase_order.id, ACTOR)

    logs = automation_service.list_automation_logs(db_session)
    assert [log.action for log in logs] == [
        "BILL_FROM_PURCHASE_ORDER", "BILL_FROM_PURCHASE_ORDER", "PURCHASE_ORDER_COMPLETION",
    ]
    assert len(automation_service.list_automation_logs(db_session, action="PURCHASE_ORDER_COMPLETION")) == 1
    assert len(automation_service.list_automation_logs(db_session, status="SUCCESS")) == 2
    assert len(automation_service.list_automation_logs(db_session, limit=1)) == 1
