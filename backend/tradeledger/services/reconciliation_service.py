# Overview: Scheduled reconciliation: reservation expiry, consistency audit and the daily inventory report.

"""
Reconciliation Sweep

The sweep only ever REPAIRS one thing: reservations whose expiry passed go
back to AVAILABLE. Everything else it finds (orphaned reservations, sold
units with no invoice line, customer ledgers that disagree with the stored
balance) is logged as a warning and returned for a human to look at.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..models import Customer, CustomerLedgerEntry, Invoice, InvoiceLine, Unit, UnitStatusChange
from tradeledger.time_utils import utcnow, utctoday, to_iso_date, to_utc_z
from . import lifecycle_service


def expire_reservations(session, now: datetime | None = None) -> dict:
    result = lifecycle_service.expire_reservations(session, now)
    if result.count == 0:
        current_app.logger.debug("No expired reservations found")
    return {
        "expired_count": result.count,
        "unit_ids": [u.id for u in result.units],
    }


def _orphaned_reservations(session) -> list[dict]:
    units = (
        session.query(Unit)
        .filter(
            Unit.inventory_status == lifecycle_service.STATUS_RESERVED,
            Unit.reserved_for_type == lifecycle_service.HOLDER_INVOICE,
            Unit.reserved_for_id.isnot(None),
            Unit.deleted_at.is_(None),
        )
        .order_by(Unit.id.asc())
        .all()
    )
    orphans = []
    for unit in units:
        try:
            invoice_id = int(unit.reserved_for_id)
        except (TypeError, ValueError):
            invoice_id = None

        reason = None
        if invoice_id is None or not session.query(Invoice.id).filter_by(id=invoice_id).first():
            reason = "INVOICE_MISSING"
        elif not session.query(InvoiceLine.id).filter_by(invoice_id=invoice_id, unit_id=unit.id).first():
            reason = "NO_INVOICE_LINE"

        if reason:
            orphans.append({
                "unit_id": unit.id,
                "serial_number": unit.serial_number,
                "reserved_for_id": unit.reserved_for_id,
                "reason": reason,
            })
    return orphans


def _orphaned_sales(session) -> list[dict]:
    has_line = session.query(InvoiceLine.id).filter(InvoiceLine.unit_id == Unit.id).exists()
    units = (
        session.query(Unit)
        .filter(
            Unit.inventory_status == lifecycle_service.STATUS_SOLD,
            Unit.deleted_at.is_(None),
            ~has_line,
        )
        .order_by(Unit.id.asc())
        .all()
    )
    return [
        {"unit_id": u.id, "serial_number": u.serial_number, "outbound_at": to_utc_z(u.outbound_at)}
        for u in units
    ]


def _ledger_divergences(session) -> list[dict]:
    """Customers whose stored balance differs from their last ledger row."""
    last_entry_ids = (
        session.query(
            CustomerLedgerEntry.customer_id.label("customer_id"),
            func.max(CustomerLedgerEntry.id).label("entry_id"),
        )
        .group_by(CustomerLedgerEntry.customer_id)
        .subquery()
    )
    rows = (
        session.query(Customer, CustomerLedgerEntry.balance_cents)
        .outerjoin(last_entry_ids, last_entry_ids.c.customer_id == Customer.id)
        .outerjoin(CustomerLedgerEntry, CustomerLedgerEntry.id == last_entry_ids.c.entry_id)
        .order_by(Customer.id.asc())
        .all()
    )
    divergences = []
    for customer, ledger_balance in rows:
        expected = ledger_balance if ledger_balance is not None else 0
        if (customer.current_balance_cents or 0) != expected:
            divergences.append({
                "customer_id": customer.id,
                "current_balance_cents": customer.current_balance_cents,
                "ledger_balance_cents": expected,
            })
    return divergences


def check_consistency(session) -> dict:
    """
    Audit units and ledgers. Nothing is corrected here.

    Returns counts plus the offending rows.
    """
    orphaned_reservations = _orphaned_reservations(session)
    orphaned_sales = _orphaned_sales(session)
    ledger_divergences = _ledger_divergences(session)

    if orphaned_reservations:
        current_app.logger.warning(
            "Found %d orphaned reservations: %s", len(orphaned_reservations), orphaned_reservations
        )
    if orphaned_sales:
        current_app.logger.warning(
            "Found %d units marked sold but not on any invoice: %s", len(orphaned_sales), orphaned_sales
        )
    if ledger_divergences:
        current_app.logger.warning(
            "Found %d customer balances that disagree with their ledger: %s",
            len(ledger_divergences), ledger_divergences,
        )

    return {
        "orphaned_reservations": len(orphaned_reservations),
        "orphaned_sales": len(orphaned_sales),
        "ledger_divergences": len(ledger_divergences),
        "total_inconsistencies": len(orphaned_reservations) + len(orphaned_sales) + len(ledger_divergences),
        "details": {
            "orphaned_reservations": orphaned_reservations,
            "orphaned_sales": orphaned_sales,
            "ledger_divergences": ledger_divergences,
        },
    }


def generate_daily_report(session, day: date | None = None) -> dict:
    """
    Status-change counts for one day (default: yesterday) grouped by
    "FROM -> TO", plus the current status distribution.
    """
    day = day or (utctoday() - timedelta(days=1))
    start = datetime(day.year, day.month, day.day)
    end = start + timedelta(days=1)

    changes = (
        session.query(UnitStatusChange.from_status, UnitStatusChange.to_status, func.count(UnitStatusChange.id))
        .filter(UnitStatusChange.changed_at >= start, UnitStatusChange.changed_at < end)
        .group_by(UnitStatusChange.from_status, UnitStatusChange.to_status)
        .all()
    )
    by_type = {}
    total_changes = 0
    for from_status, to_status, count in changes:
        by_type[f"{from_status or 'NEW'} -> {to_status}"] = count
        total_changes += count

    distribution = dict(
        session.query(Unit.inventory_status, func.count(Unit.id))
        .filter(Unit.deleted_at.is_(None))
        .group_by(Unit.inventory_status)
        .all()
    )

    report = {
        "date": to_iso_date(day),
        "status_changes": {"total": total_changes, "by_type": by_type},
        "current_inventory": distribution,
        "summary": {
            "total_units": sum(distribution.values()),
            "available_units": distribution.get(lifecycle_service.STATUS_AVAILABLE, 0),
            "reserved_units": distribution.get(lifecycle_service.STATUS_RESERVED, 0),
            "sold_units": distribution.get(lifecycle_service.STATUS_SOLD, 0),
            "delivered_units": distribution.get(lifecycle_service.STATUS_DELIVERED, 0),
        },
        "generated_at": to_utc_z(utcnow()),
    }
    current_app.logger.info(
        "Daily inventory report for %s: %d status changes, %s", report["date"], total_changes, report["summary"]
    )
    return report


def run_cleanup_now(session) -> dict:
    """Manual trigger: expiry then consistency audit."""
    current_app.logger.info("Running manual cleanup")
    results = {
        "expired_reservations": expire_reservations(session),
        "consistency_check": check_consistency(session),
    }
    current_app.logger.info(
        "Manual cleanup completed: %d expired, %d inconsistencies",
        results["expired_reservations"]["expired_count"],
        results["consistency_check"]["total_inconsistencies"],
    )
    return results
