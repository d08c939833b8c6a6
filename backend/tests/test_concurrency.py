"""
Concurrent reservation, billing and payment tests.

Each worker runs in its own thread and app context (own session and
connection) against a file-backed SQLite database. Two racers over the same
unit: exactly one wins, the loser gets UnitNotAvailableError and nothing is
half-applied. Racers over disjoint units all win. Bills racing on one vendor
leave a gap-free running balance; payments racing on one invoice have a
single winner.
"""

import threading

from tradeledger.extensions import db
from tradeledger.models import Bill, Customer, Invoice, Payment, Unit, UnitStatusChange
from tradeledger.services import (
    automation_service,
    inventory_service,
    invoice_service,
    ledger_service,
    lifecycle_service,
    purchasing_service,
)
from tradeledger.services.invoice_service import InvoiceOverpaymentError
from tradeledger.services.lifecycle_service import UnitNotAvailableError


def _create_units(app, count):
    with app.app_context():
        ids = [
            inventory_service.create_unit(db.session, serial_number=f"RACE-{i}", actor="setup").id
            for i in range(count)
        ]
        db.session.remove()
    return ids


def _race(app, jobs):
    """Run reserve_units for every (unit_ids, invoice_id) job at once. Returns outcome per job."""
    barrier = threading.Barrier(len(jobs))
    outcomes = [None] * len(jobs)

    def worker(index, unit_ids, invoice_id):
        with app.app_context():
            try:
                barrier.wait()
                result = lifecycle_service.reserve_units(db.session, unit_ids, invoice_id, f"clerk-{index}")
                outcomes[index] = ("ok", result.count)
            except UnitNotAvailableError as exc:
                outcomes[index] = ("conflict", [c["unit_id"] for c in exc.conflicts])
            except Exception as exc:
                outcomes[index] = ("error", repr(exc))
            finally:
                db.session.remove()

    threads = [
        threading.Thread(target=worker, args=(i, unit_ids, invoice_id))
        for i, (unit_ids, invoice_id) in enumerate(jobs)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_overlapping_reservations_have_one_winner(file_app):
    shared, = _create_units(file_app, 1)

    outcomes = _race(file_app, [([shared], 100 + i) for i in range(4)])

    winners = [o for o in outcomes if o[0] == "ok"]
    losers = [o for o in outcomes if o[0] == "conflict"]
    assert len(winners) == 1, outcomes
    assert len(losers) == 3, outcomes
    assert all(o[1] == [shared] for o in losers)

    with file_app.app_context():
        unit = db.session.query(Unit).filter_by(id=shared).one()
        assert unit.inventory_status == "RESERVED"
        # Exactly one audit row: the losers left nothing behind
        assert db.session.query(UnitStatusChange).filter_by(unit_id=shared).count() == 1
        db.session.remove()


def test_partially_overlapping_sets_do_not_half_apply(file_app):
    a, b, c = _create_units(file_app, 3)

    outcomes = _race(file_app, [([a, b], 201), ([b, c], 202)])

    assert sorted(o[0] for o in outcomes) == ["conflict", "ok"], outcomes

    with file_app.app_context():
        units = {u.id: u for u in db.session.query(Unit).all()}
        winner_invoice = "201" if outcomes[0][0] == "ok" else "202"
        winner_ids = {a, b} if winner_invoice == "201" else {b, c}
        for unit_id, unit in units.items():
            if unit_id in winner_ids:
                assert unit.inventory_status == "RESERVED"
                assert unit.reserved_for_id == winner_invoice
            else:
                assert unit.inventory_status == "AVAILABLE"
                assert unit.reserved_for_id is None
        db.session.remove()


def test_disjoint_reservations_all_succeed(file_app):
    ids = _create_units(file_app, 4)

    outcomes = _race(file_app, [([unit_id], 300 + i) for i, unit_id in enumerate(ids)])

    assert outcomes == [("ok", 1)] * 4

    with file_app.app_context():
        statuses = {u.inventory_status for u in db.session.query(Unit).all()}
        assert statuses == {"RESERVED"}
        db.session.remove()


def _run_all(app, jobs):
    """Start every job(session) at once in its own thread. Returns ("ok", value) or (exception name, message)."""
    barrier = threading.Barrier(len(jobs))
    outcomes = [None] * len(jobs)

    def worker(index, job):
        with app.app_context():
            try:
                barrier.wait()
                outcomes[index] = ("ok", job(db.session))
            except Exception as exc:
                outcomes[index] = (type(exc).__name__, str(exc))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i, job)) for i, job in enumerate(jobs)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_concurrent_bills_keep_vendor_ledger_consistent(file_app):
    costs = [10000, 20000, 30000, 40000, 50000]
    with file_app.app_context():
        vendor = purchasing_service.create_vendor(db.session, name="Race Supply", actor="setup")
        vendor_id = vendor.id
        po_ids = [
            purchasing_service.create_purchase_order(
                db.session,
                vendor_id=vendor_id,
                actor="setup",
                lines=[{"serial_number": f"PO-RACE-{i}", "unit_cost_cents": cost}],
            ).id
            for i, cost in enumerate(costs)
        ]
        # First bill serially so the racers find the bill number sequence in place
        automation_service.create_bill_from_purchase_order(db.session, po_ids[0], "setup")
        db.session.remove()

    def bill(po_id, index):
        return lambda session: automation_service.create_bill_from_purchase_order(
            session, po_id, f"clerk-{index}"
        ).data["bill_id"]

    outcomes = _run_all(file_app, [bill(po_id, i) for i, po_id in enumerate(po_ids[1:])])

    assert [o[0] for o in outcomes] == ["ok"] * 4, outcomes

    with file_app.app_context():
        report = ledger_service.verify_vendor_ledger(db.session, vendor_id)
        assert report["entries"] == 5
        assert report["mismatches"] == []
        assert report["balance_matches_ledger"] is True
        assert report["current_balance_cents"] == sum(costs)

        numbers = [b.bill_number for b in db.session.query(Bill).all()]
        assert len(set(numbers)) == 5
        db.session.remove()


def test_concurrent_full_payments_have_one_winner(file_app):
    with file_app.app_context():
        customer = invoice_service.create_customer(db.session, name="Race Buyer", actor="setup")
        unit = inventory_service.create_unit(
            db.session, serial_number="PAY-RACE", actor="setup", selling_price_cents=80000
        )
        invoice = invoice_service.create_invoice(
            db.session, customer_id=customer.id, lines=[{"unit_id": unit.id}], actor="setup"
        )
        customer_id, invoice_id = customer.id, invoice.id
        db.session.remove()

    def pay(index):
        return lambda session: invoice_service.record_payment(
            session, invoice_id, 80000, "CASH", f"clerk-{index}"
        )["payment"].id

    outcomes = _run_all(file_app, [pay(i) for i in range(4)])

    winners = [o for o in outcomes if o[0] == "ok"]
    losers = [o for o in outcomes if o[0] == InvoiceOverpaymentError.__name__]
    assert len(winners) == 1, outcomes
    assert len(losers) == 3, outcomes

    with file_app.app_context():
        invoice = db.session.query(Invoice).filter_by(id=invoice_id).one()
        assert invoice.status == "PAID"
        assert invoice.paid_cents == 80000
        assert db.session.query(Payment).filter_by(invoice_id=invoice_id).count() == 1
        assert db.session.query(Customer).filter_by(id=customer_id).one().current_balance_cents == 0
        report = ledger_service.verify_customer_ledger(db.session, customer_id)
        assert report["entries"] == 2
        assert report["mismatches"] == []
        db.session.remove()
