# Overview: Display-number allocation for invoices, payments, purchase orders, bills and vendor payments.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..models import DocumentSequence


DOC_INVOICE = ("INVOICE", "INV")
DOC_PAYMENT = ("PAYMENT", "PAY")
DOC_PURCHASE_ORDER = ("PURCHASE_ORDER", "PO")
DOC_BILL = ("BILL", "BILL")
DOC_VENDOR_PAYMENT = ("VENDOR_PAYMENT", "VPAY")


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(session, document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(session, document_type: str, prefix: str, pad: int = 5) -> str:
    """
    Allocate the next display number for a document type (INV-00001, ...).

    Runs inside the caller's transaction: the UPDATE takes the row lock and
    the number is only consumed if the caller commits. The first allocation
    for a type inserts the sequence row inside a savepoint, so losing the
    insert race does not discard the caller's pending work.

    Numbers are for display only; ids remain the identity.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not prefix:
        raise DocumentSequenceError("prefix is required")

    next_num = _bump(session, document_type)
    if next_num is None:
        try:
            with session.begin_nested():
                session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(session, document_type)
            if next_num is None:
                raise DocumentSequenceError(f"Could not allocate a {document_type} number")

    return f"{prefix}-{next_num:0{pad}d}"
