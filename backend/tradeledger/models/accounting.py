from __future__ import annotations

from ..extensions import db
from tradeledger.time_utils import to_utc_z, to_iso_date


class Account(db.Model):
    """
    Chart of accounts.

    Postings resolve accounts by code (see Config.ACCOUNT_CODES), never by
    hard-coded ids. current_balance_cents moves +debit / -credit.
    """
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    account_type = db.Column(db.String(16), nullable=False)  # ASSET, LIABILITY, EQUITY, INCOME, EXPENSE

    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Account code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "account_type": self.account_type,
            "current_balance_cents": self.current_balance_cents,
            "is_active": self.is_active,
        }


class JournalEntry(db.Model):
    """
    One leg (debit OR credit) of a posting.

    A posting is the set of legs sharing (source_type, source_id, posting_kind);
    that triple is what makes re-posting detectable on retry.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "journal_entries"
    __table_args__ = (
        db.Index("ix_journal_entries_source", "source_type", "source_id", "posting_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    entry_date = db.Column(db.Date, nullable=False)
    reference = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=False)

    debit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)

    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.Integer, nullable=False)
    posting_kind = db.Column(db.String(32), nullable=False)

    posted_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("Account", backref=db.backref("journal_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "account_code": self.account.code if self.account else None,
            "entry_date": to_iso_date(self.entry_date),
            "reference": self.reference,
            "description": self.description,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "posting_kind": self.posting_kind,
            "posted_by": self.posted_by,
        }
