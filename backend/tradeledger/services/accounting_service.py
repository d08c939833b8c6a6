# Overview: Chart of accounts and double-entry journal postings; writes happen inside the caller's transaction.

"""
Posting invariants (authoritative)

- A posting is one debit leg and one credit leg of the same amount,
  identified by (source_type, source_id, posting_kind).
- Re-posting the same triple is a no-op that returns the existing legs, so
  automation retries never double-post.
- Accounts are resolved by code through Config.ACCOUNT_CODES; ids are never
  hard-coded.
- Account balances move +debit / -credit, under a row lock, in the same
  transaction as the legs.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..models import Account, JournalEntry
from tradeledger.time_utils import utctoday
from .concurrency import lock_for_update, run_with_retry


ROLE_ACCOUNTS_RECEIVABLE = "ACCOUNTS_RECEIVABLE"
ROLE_INVENTORY = "INVENTORY"
ROLE_ACCOUNTS_PAYABLE = "ACCOUNTS_PAYABLE"
ROLE_SALES_REVENUE = "SALES_REVENUE"
ROLE_COGS = "COGS"
ROLE_EXPENSE = "EXPENSE"

# role -> (name, account_type) used when seeding
DEFAULT_ACCOUNTS = {
    ROLE_ACCOUNTS_RECEIVABLE: ("Accounts Receivable", "ASSET"),
    ROLE_INVENTORY: ("Inventory", "ASSET"),
    ROLE_ACCOUNTS_PAYABLE: ("Accounts Payable", "LIABILITY"),
    ROLE_SALES_REVENUE: ("Sales Revenue", "INCOME"),
    ROLE_COGS: ("Cost of Goods Sold", "EXPENSE"),
    ROLE_EXPENSE: ("General Expenses", "EXPENSE"),
}


class AccountingError(Exception):
    """Raised for posting errors."""
    pass


class AccountNotConfiguredError(AccountingError):
    def __init__(self, code: str, role: str | None = None):
        self.code = code
        self.role = role
        label = f"{role} ({code})" if role else code
        super().__init__(f"Account {label} is not configured")


def account_code_for(role: str) -> str:
    codes = current_app.config.get("ACCOUNT_CODES") or {}
    code = codes.get(role)
    if not code:
        raise AccountNotConfiguredError("?", role)
    return str(code)


def get_account_by_code(session, code: str, *, lock: bool = False, role: str | None = None) -> Account:
    query = session.query(Account).filter_by(code=str(code), is_active=True)
    if lock:
        query = lock_for_update(query)
    account = query.first()
    if not account:
        raise AccountNotConfiguredError(str(code), role)
    return account


def ensure_default_accounts(session) -> list[Account]:
    """Create any missing default account. Idempotent; returns the created ones."""
    def _op():
        created = []
        for role, (name, account_type) in DEFAULT_ACCOUNTS.items():
            code = account_code_for(role)
            if session.query(Account.id).filter_by(code=code).first():
                continue
            account = Account(code=code, name=name, account_type=account_type, current_balance_cents=0)
            session.add(account)
            created.append(account)
        session.commit()
        return created

    created = run_with_retry(session, _op)
    if created:
        current_app.logger.info("Seeded %d accounts: %s", len(created), ", ".join(a.code for a in created))
    return created


def find_posting(session, source_type: str, source_id: int, posting_kind: str) -> list[JournalEntry]:
    return (
        session.query(JournalEntry)
        .filter_by(source_type=source_type, source_id=source_id, posting_kind=posting_kind)
        .order_by(JournalEntry.id.asc())
        .all()
    )


def post_journal_pair(
    session,
    *,
    debit_code: str,
    credit_code: str,
    amount_cents: int,
    source_type: str,
    source_id: int,
    posting_kind: str,
    description: str,
    actor: str,
    reference: str | None = None,
    entry_date: date | None = None,
) -> list[JournalEntry]:
    """
    Post one balanced debit/credit pair. Caller commits.

    Returns the two legs, or the existing legs when this posting was
    already made.
    """
    if amount_cents <= 0:
        raise AccountingError("Posting amount must be positive")

    existing = find_posting(session, source_type, source_id, posting_kind)
    if existing:
        current_app.logger.info(
            "Posting %s for %s %s already exists; skipping", posting_kind, source_type, source_id
        )
        return existing

    # Lock in a fixed order so two postings over the same accounts cannot deadlock
    codes = sorted({str(debit_code), str(credit_code)})
    locked = {code: get_account_by_code(session, code, lock=True) for code in codes}
    debit_account = locked[str(debit_code)]
    credit_account = locked[str(credit_code)]

    when = entry_date or utctoday()
    legs = [
        JournalEntry(
            account_id=debit_account.id,
            entry_date=when,
            reference=reference,
            description=description,
            debit_cents=amount_cents,
            credit_cents=0,
            source_type=source_type,
            source_id=source_id,
            posting_kind=posting_kind,
            posted_by=actor,
        ),
        JournalEntry(
            account_id=credit_account.id,
            entry_date=when,
            reference=reference,
            description=description,
            debit_cents=0,
            credit_cents=amount_cents,
            source_type=source_type,
            source_id=source_id,
            posting_kind=posting_kind,
            posted_by=actor,
        ),
    ]
    debit_account.current_balance_cents += amount_cents
    credit_account.current_balance_cents -= amount_cents
    session.add_all(legs)
    session.flush()
    return legs


def list_journal_entries(session, *, source_type: str | None = None, source_id: int | None = None) -> list[JournalEntry]:
    query = session.query(JournalEntry)
    if source_type:
        query = query.filter(JournalEntry.source_type == source_type)
    if source_id is not None:
        query = query.filter(JournalEntry.source_id == source_id)
    return query.order_by(JournalEntry.id.asc()).all()


def trial_balance(session) -> dict:
    """Per-account debit/credit totals; a healthy journal has equal grand totals."""
    rows = (
        session.query(
            Account.code,
            Account.name,
            func.coalesce(func.sum(JournalEntry.debit_cents), 0),
            func.coalesce(func.sum(JournalEntry.credit_cents), 0),
        )
        .outerjoin(JournalEntry, JournalEntry.account_id == Account.id)
        .group_by(Account.id, Account.code, Account.name)
        .order_by(Account.code.asc())
        .all()
    )
    accounts = [
        {"code": code, "name": name, "debit_cents": int(debit), "credit_cents": int(credit)}
        for code, name, debit, credit in rows
    ]
    total_debit = sum(a["debit_cents"] for a in accounts)
    total_credit = sum(a["credit_cents"] for a in accounts)
    return {
        "accounts": accounts,
        "total_debit_cents": total_debit,
        "total_credit_cents": total_credit,
        "balanced": total_debit == total_credit,
    }
