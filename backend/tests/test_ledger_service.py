"""
Running-balance ledger tests.
"""

import pytest

from tradeledger.models import Customer
from tradeledger.services import ledger_service
from tradeledger.services.ledger_service import LedgerError


def test_customer_entries_carry_running_balance(db_session, customer):
    ledger_service.append_customer_entry(db_session, customer_id=customer.id, description="Invoice", debit_cents=5000)
    ledger_service.append_customer_entry(db_session, customer_id=customer.id, description="Payment", credit_cents=1500)
    ledger_service.append_customer_entry(db_session, customer_id=customer.id, description="Payment", credit_cents=3500)
    db_session.commit()

    entries = ledger_service.list_customer_entries(db_session, customer.id)
    assert [e.balance_cents for e in entries] == [5000, 3500, 0]

    report = ledger_service.verify_customer_ledger(db_session, customer.id)
    assert report["entries"] == 3
    assert report["mismatches"] == []
    assert report["balance_matches_ledger"] is True


@pytest.mark.parametrize("debit,credit", [(0, 0), (100, 100), (-5, 0)])
def test_entry_must_be_a_single_positive_movement(db_session, customer, debit, credit):
    with pytest.raises(LedgerError):
        ledger_service.append_customer_entry(
            db_session, customer_id=customer.id, description="bad", debit_cents=debit, credit_cents=credit
        )


def test_unknown_owner(db_session):
    with pytest.raises(LedgerError):
        ledger_service.append_customer_entry(db_session, customer_id=999999, description="x", debit_cents=1)
    with pytest.raises(LedgerError):
        ledger_service.append_vendor_entry(db_session, vendor_id=999999, description="x", debit_cents=1)


def test_tampered_balance_is_detected(db_session, customer):
    ledger_service.append_customer_entry(db_session, customer_id=customer.id, description="Invoice", debit_cents=8000)
    second = ledger_service.append_customer_entry(
        db_session, customer_id=customer.id, description="Payment", credit_cents=3000
    )
    second.balance_cents = 4000
    db_session.commit()

    report = ledger_service.verify_customer_ledger(db_session, customer.id)

    assert report["mismatches"] == [{
        "entry_id": second.id,
        "stored_balance_cents": 4000,
        "expected_balance_cents": 5000,
    }]
    # Owner row still says 5000, last entry says 4000
    assert report["balance_matches_ledger"] is False


def test_owner_balance_drift_is_detected(db_session, customer):
    ledger_service.append_customer_entry(db_session, customer_id=customer.id, description="Invoice", debit_cents=8000)
    db_session.commit()
    db_session.query(Customer).filter_by(id=customer.id).update({"current_balance_cents": 1})
    db_session.commit()

    report = ledger_service.verify_customer_ledger(db_session, customer.id)

    assert report["mismatches"] == []
    assert report["balance_matches_ledger"] is False


def test_vendor_ledger(db_session, vendor):
    ledger_service.append_vendor_entry(db_session, vendor_id=vendor.id, description="Bill", debit_cents=12000)
    ledger_service.append_vendor_entry(db_session, vendor_id=vendor.id, description="Paid", credit_cents=2000)
    db_session.commit()

    report = ledger_service.verify_vendor_ledger(db_session, vendor.id)

    assert report["entries"] == 2
    assert report["current_balance_cents"] == 10000
    assert report["balance_matches_ledger"] is True


def test_empty_ledger_is_consistent(db_session, customer):
    report = ledger_service.verify_customer_ledger(db_session, customer.id)
    assert report["entries"] == 0
    assert report["balance_matches_ledger"] is True
