# Overview: Running-balance customer and vendor ledgers; writes happen inside the caller's transaction.

"""
Ledger invariants (authoritative)

- Append-only: entries are never updated or deleted.
- Each entry's balance_cents = previous stored balance + debit - credit,
  read from the owner row (customer/vendor) under a row lock.
- The owner's current_balance_cents and the new entry are written in the
  same DB transaction; the caller commits.
- Replaying the deltas from 0 reproduces every stored balance.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..models import Customer, CustomerLedgerEntry, Vendor, VendorLedgerEntry
from ..validation import NotFoundError
from tradeledger.time_utils import utcnow
from .amounts import next_balance, replay_balances
from .concurrency import lock_for_update


class LedgerError(Exception):
    """Raised when a ledger write cannot be performed."""
    pass


class LedgerNotFoundError(LedgerError, NotFoundError):
    pass


def _validate_amounts(debit_cents: int, credit_cents: int) -> None:
    if debit_cents < 0 or credit_cents < 0:
        raise LedgerError("Ledger amounts must be >= 0")
    if debit_cents and credit_cents:
        raise LedgerError("A ledger entry is either a debit or a credit")
    if not debit_cents and not credit_cents:
        raise LedgerError("A ledger entry must move the balance")


def append_customer_entry(
    session,
    *,
    customer_id: int,
    description: str,
    debit_cents: int = 0,
    credit_cents: int = 0,
    invoice_id: int | None = None,
    payment_id: int | None = None,
    entry_date: Optional[datetime] = None,
) -> CustomerLedgerEntry:
    """
    Debit raises what the customer owes (new invoice), credit lowers it
    (payment, cancellation).
    """
    _validate_amounts(debit_cents, credit_cents)
    customer = lock_for_update(session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise LedgerNotFoundError(f"Customer {customer_id} not found")

    balance = next_balance(customer.current_balance_cents or 0, debit_cents, credit_cents)
    customer.current_balance_cents = balance

    entry = CustomerLedgerEntry(
        customer_id=customer_id,
        invoice_id=invoice_id,
        payment_id=payment_id,
        entry_date=entry_date or utcnow(),
        description=description,
        debit_cents=debit_cents,
        credit_cents=credit_cents,
        balance_cents=balance,
    )
    session.add(entry)
    session.flush()
    return entry


def append_vendor_entry(
    session,
    *,
    vendor_id: int,
    description: str,
    debit_cents: int = 0,
    credit_cents: int = 0,
    bill_id: int | None = None,
    vendor_payment_id: int | None = None,
    entry_date: Optional[datetime] = None,
) -> VendorLedgerEntry:
    """Debit raises what we owe the vendor (new bill); credit lowers it (payment)."""
    _validate_amounts(debit_cents, credit_cents)
    vendor = lock_for_update(session.query(Vendor).filter_by(id=vendor_id)).first()
    if not vendor:
        raise LedgerNotFoundError(f"Vendor {vendor_id} not found")

    balance = next_balance(vendor.current_balance_cents or 0, debit_cents, credit_cents)
    vendor.current_balance_cents = balance

    entry = VendorLedgerEntry(
        vendor_id=vendor_id,
        bill_id=bill_id,
        vendor_payment_id=vendor_payment_id,
        entry_date=entry_date or utcnow(),
        description=description,
        debit_cents=debit_cents,
        credit_cents=credit_cents,
        balance_cents=balance,
    )
    session.add(entry)
    session.flush()
    return entry


def list_customer_entries(session, customer_id: int) -> list[CustomerLedgerEntry]:
    return (
        session.query(CustomerLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerLedgerEntry.id.asc())
        .all()
    )


def list_vendor_entries(session, vendor_id: int) -> list[VendorLedgerEntry]:
    return (
        session.query(VendorLedgerEntry)
        .filter_by(vendor_id=vendor_id)
        .order_by(VendorLedgerEntry.id.asc())
        .all()
    )


def verify_running_balances(entries, opening_cents: int = 0) -> list[dict]:
    """
    Replay debit/credit deltas and report every entry whose stored balance
    disagrees with the replayed one. Empty list means the ledger is consistent.
    """
    entries = list(entries)
    mismatches = []
    for entry, expected in zip(entries, replay_balances(opening_cents, entries)):
        if entry.balance_cents != expected:
            mismatches.append({
                "entry_id": entry.id,
                "stored_balance_cents": entry.balance_cents,
                "expected_balance_cents": expected,
            })
    return mismatches


def verify_customer_ledger(session, customer_id: int) -> dict:
    entries = list_customer_entries(session, customer_id)
    customer = session.query(Customer).filter_by(id=customer_id).first()
    if not customer:
        raise LedgerNotFoundError(f"Customer {customer_id} not found")
    mismatches = verify_running_balances(entries)
    last_balance = entries[-1].balance_cents if entries else 0
    return {
        "customer_id": customer_id,
        "entries": len(entries),
        "mismatches": mismatches,
        "current_balance_cents": customer.current_balance_cents,
        "balance_matches_ledger": customer.current_balance_cents == last_balance,
    }


def verify_vendor_ledger(session, vendor_id: int) -> dict:
    entries = list_vendor_entries(session, vendor_id)
    vendor = session.query(Vendor).filter_by(id=vendor_id).first()
    if not vendor:
        raise LedgerNotFoundError(f"Vendor {vendor_id} not found")
    mismatches = verify_running_balances(entries)
    last_balance = entries[-1].balance_cents if entries else 0
    return {
        "vendor_id": vendor_id,
        "entries": len(entries),
        "mismatches": mismatches,
        "current_balance_cents": vendor.current_balance_cents,
        "balance_matches_ledger": vendor.current_balance_cents == last_balance,
    }
