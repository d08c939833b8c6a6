from __future__ import annotations

from ..extensions import db
from tradeledger.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating display numbers
    (invoices, payments, purchase orders, bills). Numbers are never used
    for identity or concurrency control.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class AutomationLog(db.Model):
    """
    Durable record of one business-event automation run.

    Opened IN_PROGRESS before the effect, closed once as SUCCESS (with every
    affected record) or FAILED (with the error). Used for observability and
    manual retry, never for control flow.
    """
    __tablename__ = "automation_logs"
    __table_args__ = (
        db.Index("ix_automation_logs_source", "source_type", "source_id"),
        db.Index("ix_automation_logs_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(48), nullable=False, index=True)
    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="IN_PROGRESS")  # IN_PROGRESS, SUCCESS, FAILED
    affected_records = db.Column(db.JSON, nullable=False, default=list)
    payload = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    actor = db.Column(db.String(64), nullable=False)
    retry_of_id = db.Column(db.Integer, db.ForeignKey("automation_logs.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    executed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "description": self.description,
            "status": self.status,
            "affected_records": self.affected_records or [],
            "payload": self.payload,
            "error_message": self.error_message,
            "actor": self.actor,
            "retry_of_id": self.retry_of_id,
            "created_at": to_utc_z(self.created_at),
            "executed_at": to_utc_z(self.executed_at),
        }
