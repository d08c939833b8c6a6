"""
Invoice tests: creation with reservation, direct payments, voids,
cancellation, delivery and the paid/status derivation.
"""

from datetime import date

import pytest

from tradeledger.models import Customer, CustomerLedgerEntry, Invoice, Unit
from tradeledger.services import installment_service, invoice_service, lifecycle_service
from tradeledger.services.invoice_service import CreditLimitExceededError, InvoiceError
from tradeledger.services.lifecycle_service import UnitNotAvailableError
from tradeledger.validation import ConflictError, ValidationError


ACTOR = "tester"


def _reload(db_session, model, obj_id):
    db_session.expire_all()
    return db_session.query(model).filter_by(id=obj_id).one()


@pytest.mark.parametrize("current,paid,total,expected", [
    ("SENT", 0, 1000, "SENT"),
    ("SENT", 400, 1000, "PARTIAL"),
    ("PARTIAL", 1000, 1000, "PAID"),
    ("PAID", 400, 1000, "PARTIAL"),
    ("OVERDUE", 400, 1000, "OVERDUE"),
    ("OVERDUE", 1000, 1000, "PAID"),
    ("CANCELLED", 1000, 1000, "CANCELLED"),
    ("DRAFT", 0, 1000, "DRAFT"),
])
def test_derive_invoice_status(current, paid, total, expected):
    assert invoice_service.derive_invoice_status(current, paid, total) == expected


def test_create_invoice_reserves_units_and_debits_customer(db_session, customer, make_unit):
    u1, u2 = make_unit(selling_price_cents=100000), make_unit(selling_price_cents=50000)

    invoice = invoice_service.create_invoice(
        db_session,
        customer_id=customer.id,
        lines=[{"unit_id": u1.id}, {"unit_id": u2.id, "unit_price_cents": 40000}],
        actor=ACTOR,
        discount_type="FIXED",
        discount_value=10000,
        tax_rate="10",
    )

    assert invoice.invoice_number == "INV-00001"
    assert invoice.status == "SENT"
    assert invoice.subtotal_cents == 140000
    assert invoice.discount_cents == 10000
    assert invoice.tax_cents == 13000
    assert invoice.total_cents == 143000

    for unit_id in (u1.id, u2.id):
        unit = _reload(db_session, Unit, unit_id)
        assert unit.inventory_status == "RESERVED"
        assert unit.reserved_for_id == str(invoice.id)

    assert _reload(db_session, Customer, customer.id).current_balance_cents == 143000
    entry = db_session.query(CustomerLedgerEntry).filter_by(invoice_id=invoice.id).one()
    assert entry.debit_cents == 143000
    assert entry.balance_cents == 143000


def test_create_invoice_rolls_back_when_a_unit_is_taken(db_session, customer, make_unit):
    free, taken = make_unit(), make_unit()
    lifecycle_service.reserve_units(db_session, [taken.id], 999, ACTOR)

    with pytest.raises(UnitNotAvailableError):
        invoice_service.create_invoice(
            db_session,
            customer_id=customer.id,
            lines=[{"unit_id": free.id}, {"unit_id": taken.id}],
            actor=ACTOR,
        )

    assert db_session.query(Invoice).count() == 0
    assert _reload(db_session, Unit, free.id).inventory_status == "AVAILABLE"
    assert _reload(db_session, Customer, customer.id).current_balance_cents == 0


def test_create_invoice_validates_lines(db_session, customer, make_unit):
    unit = make_unit(selling_price_cents=None)
    with pytest.raises(ValidationError):
        invoice_service.create_invoice(db_session, customer_id=customer.id, lines=[], actor=ACTOR)
    with pytest.raises(ValidationError):
        invoice_service.create_invoice(
            db_session, customer_id=customer.id, lines=[{"unit_id": unit.id}], actor=ACTOR
        )
    with pytest.raises(ValidationError):
        invoice_service.create_invoice(
            db_session, customer_id=customer.id,
            lines=[{"unit_id": unit.id, "unit_price_cents": 10}, {"unit_id": unit.id, "unit_price_cents": 10}],
            actor=ACTOR,
        )


def test_create_invoice_unknown_customer(db_session, make_unit):
    unit = make_unit()
    with pytest.raises(InvoiceError):
        invoice_service.create_invoice(db_session, customer_id=424242, lines=[{"unit_id": unit.id}], actor=ACTOR)


def test_partial_then_full_payment(db_session, customer, make_invoice):
    invoice, _ = make_invoice((100000,))

    first = invoice_service.record_payment(db_session, invoice.id, 40000, "cash", ACTOR)
    assert first["invoice"].status == "PARTIAL"
    assert first["invoice"].paid_cents == 40000
    assert first["invoice_fully_paid"] is False

    second = invoice_service.record_payment(db_session, invoice.id, 60000, "CARD", ACTOR)
    assert second["invoice"].status == "PAID"
    assert second["invoice_fully_paid"] is True
    assert second["payment"].payment_number == "PAY-00002"

    assert _reload(db_session, Customer, customer.id).current_balance_cents == 0


def test_overpayment_rejected(db_session, make_invoice):
    invoice, _ = make_invoice((100000,))

    with pytest.raises(InvoiceError):
        invoice_service.record_payment(db_session, invoice.id, 100001, "CASH", ACTOR)

    assert _reload(db_session, Invoice, invoice.id).paid_cents == 0


def test_payment_input_validation(db_session, make_invoice):
    invoice, _ = make_invoice((100000,))
    with pytest.raises(ValidationError):
        invoice_service.record_payment(db_session, invoice.id, 0, "CASH", ACTOR)
    with pytest.raises(ValidationError):
        invoice_service.record_payment(db_session, invoice.id, "12.50", "CASH", ACTOR)
    with pytest.raises(ValidationError):
        invoice_service.record_payment(db_session, invoice.id, 100, "BARTER", ACTOR)


def test_void_payment_rederives_invoice(db_session, customer, make_invoice):
    invoice, _ = make_invoice((100000,))
    paid = invoice_service.record_payment(db_session, invoice.id, 100000, "CASH", ACTOR)

    result = invoice_service.void_payment(db_session, paid["payment"].id, ACTOR, "Card declined")

    assert result["payment"].status == "VOIDED"
    assert result["invoice"].status == "SENT"
    assert result["invoice"].paid_cents == 0
    assert _reload(db_session, Customer, customer.id).current_balance_cents == 100000

    with pytest.raises(InvoiceError):
        invoice_service.void_payment(db_session, paid["payment"].id, ACTOR, "again")


def test_cancel_releases_units_and_credits_unpaid(db_session, customer, make_invoice):
    invoice, units = make_invoice((70000, 30000))
    invoice_service.record_payment(db_session, invoice.id, 25000, "CASH", ACTOR)

    result = invoice_service.cancel_invoice(db_session, invoice.id, ACTOR, "Customer changed mind")

    assert result["invoice"].status == "CANCELLED"
    assert result["released"].count == 2
    for unit in units:
        assert _reload(db_session, Unit, unit.id).inventory_status == "AVAILABLE"
    # 100000 debited, 25000 paid, 75000 credited back
    assert _reload(db_session, Customer, customer.id).current_balance_cents == 0

    with pytest.raises(InvoiceError):
        invoice_service.record_payment(db_session, invoice.id, 100, "CASH", ACTOR)
    with pytest.raises(InvoiceError):
        invoice_service.cancel_invoice(db_session, invoice.id, ACTOR)


def test_cannot_cancel_paid_invoice(db_session, make_invoice):
    invoice, _ = make_invoice((50000,))
    invoice_service.record_payment(db_session, invoice.id, 50000, "CASH", ACTOR)

    with pytest.raises(InvoiceError):
        invoice_service.cancel_invoice(db_session, invoice.id, ACTOR)


def test_deliver_invoice_after_sale(db_session, make_invoice):
    invoice, units = make_invoice((50000,))
    invoice_service.record_payment(db_session, invoice.id, 50000, "CASH", ACTOR)
    lifecycle_service.mark_units_sold(db_session, invoice.id, ACTOR)

    result = invoice_service.deliver_invoice(db_session, invoice.id, ACTOR, {"handover_to": "Jane Buyer"})

    assert result["delivered"].count == 1
    assert result["invoice"].delivered_at is not None
    assert _reload(db_session, Unit, units[0].id).inventory_status == "DELIVERED"


def test_refresh_overdue_invoices(db_session, make_invoice):
    invoice, _ = make_invoice((50000,), invoice_date="2024-01-01", due_date="2024-01-31")
    invoice_service.record_payment(db_session, invoice.id, 10000, "CASH", ACTOR)

    assert invoice_service.refresh_overdue_invoices(db_session, today=date(2024, 1, 31)) == 0
    assert invoice_service.refresh_overdue_invoices(db_session, today=date(2024, 2, 1)) == 1
    assert _reload(db_session, Invoice, invoice.id).status == "OVERDUE"

    # Still overdue after another partial payment, PAID once settled
    invoice_service.record_payment(db_session, invoice.id, 10000, "CASH", ACTOR)
    assert _reload(db_session, Invoice, invoice.id).status == "OVERDUE"
    result = invoice_service.record_payment(db_session, invoice.id, 30000, "CASH", ACTOR)
    assert result["invoice"].status == "PAID"


def test_invoice_summary(db_session, make_invoice):
    invoice, units = make_invoice((50000, 25000))

    summary = invoice_service.get_invoice_summary(db_session, invoice.id)

    assert summary["invoice"]["total_cents"] == 75000
    assert len(summary["lines"]) == 2
    assert summary["installment_plan"] is None
    assert summary["inventory"]["total_units"] == 2


def test_credit_limit_accepts_up_to_the_limit(db_session, make_invoice):
    limited = invoice_service.create_customer(
        db_session, name="Kim Limited", actor=ACTOR, credit_limit_cents=100000
    )
    make_invoice((60000,), customer_id=limited.id)

    invoice, _ = make_invoice((40000,), customer_id=limited.id)

    assert invoice.total_cents == 40000
    assert _reload(db_session, Customer, limited.id).current_balance_cents == 100000


def test_credit_limit_rejects_invoice_past_the_limit(db_session, make_unit, make_invoice):
    limited = invoice_service.create_customer(
        db_session, name="Kim Limited", actor=ACTOR, credit_limit_cents=100000
    )
    make_invoice((90000,), customer_id=limited.id)
    unit = make_unit(selling_price_cents=10001)
    entries_before = db_session.query(CustomerLedgerEntry).filter_by(customer_id=limited.id).count()

    with pytest.raises(CreditLimitExceededError) as excinfo:
        invoice_service.create_invoice(
            db_session, customer_id=limited.id, lines=[{"unit_id": unit.id}], actor=ACTOR
        )

    assert isinstance(excinfo.value, ConflictError)
    body = excinfo.value.to_dict()
    assert body["credit_limit_cents"] == 100000
    assert body["balance_cents"] == 90000
    assert body["total_cents"] == 10001

    assert _reload(db_session, Unit, unit.id).inventory_status == "AVAILABLE"
    assert db_session.query(Invoice).filter_by(customer_id=limited.id).count() == 1
    assert db_session.query(CustomerLedgerEntry).filter_by(customer_id=limited.id).count() == entries_before
    assert _reload(db_session, Customer, limited.id).current_balance_cents == 90000


def test_zero_credit_limit_means_unlimited(db_session, customer, make_invoice):
    assert customer.credit_limit_cents == 0

    invoice, _ = make_invoice((5_000_000, 5_000_000))

    assert invoice.total_cents == 10_000_000
    assert _reload(db_session, Customer, customer.id).current_balance_cents == 10_000_000


def test_payment_lowers_balance_under_the_credit_limit(db_session, make_invoice):
    limited = invoice_service.create_customer(
        db_session, name="Kim Limited", actor=ACTOR, credit_limit_cents=100000
    )
    first, _ = make_invoice((100000,), customer_id=limited.id)
    invoice_service.record_payment(db_session, first.id, 30000, "CASH", ACTOR)

    second, _ = make_invoice((30000,), customer_id=limited.id)

    assert second.status == "SENT"
    assert _reload(db_session, Customer, limited.id).current_balance_cents == 100000


def test_recompute_is_idempotent_after_mixed_payments(db_session, make_invoice):
    # Installment invoice: down payment, one installment paid, one payment voided
    financed, _ = make_invoice((120000,))
    plan = installment_service.create_plan(
        db_session, financed.id,
        number_of_installments=2, actor=ACTOR, down_payment_cents=20000,
    )
    first, second = plan["installments"]
    installment_service.record_installment_payment(db_session, first.id, 50000, "CASH", ACTOR)
    partial = installment_service.record_installment_payment(db_session, second.id, 10000, "CARD", ACTOR)
    invoice_service.void_payment(db_session, partial["payment"].id, ACTOR, "Card declined")

    # Direct invoice: two payments, one voided
    direct, _ = make_invoice((50000,))
    invoice_service.record_payment(db_session, direct.id, 20000, "CASH", ACTOR)
    voided = invoice_service.record_payment(db_session, direct.id, 10000, "CARD", ACTOR)
    invoice_service.void_payment(db_session, voided["payment"].id, ACTOR, "Entered twice")

    for invoice_id, expected in ((financed.id, (70000, "PARTIAL")), (direct.id, (20000, "PARTIAL"))):
        invoice = _reload(db_session, Invoice, invoice_id)
        once = invoice_service.recompute_invoice_payment_status(db_session, invoice)
        after_first = (once.paid_cents, once.status)
        twice = invoice_service.recompute_invoice_payment_status(db_session, invoice)
        db_session.commit()

        assert after_first == expected
        assert (twice.paid_cents, twice.status) == after_first
        assert invoice_service.compute_invoice_paid_cents(db_session, invoice_id) == expected[0]
