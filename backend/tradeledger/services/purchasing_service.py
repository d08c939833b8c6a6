# Overview: Vendors and purchase orders; units enter the system here with physical status ORDERED.

from __future__ import annotations

from flask import current_app

from ..models import Vendor, PurchaseOrder, PurchaseOrderLine, Unit
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    require_actor,
    require_iso_date,
    require_positive_int,
)
from tradeledger.time_utils import utctoday
from . import amounts
from .concurrency import run_with_retry
from .document_service import next_document_number, DOC_PURCHASE_ORDER
from .inventory_service import _build_unit


PO_OPEN = "OPEN"
PO_RECEIVED = "RECEIVED"
PO_CANCELLED = "CANCELLED"

PHYSICAL_ORDERED = "ORDERED"
PHYSICAL_IN_STORE = "IN_STORE"


class PurchasingError(Exception):
    """Raised for vendor / purchase order errors."""
    pass


class PurchasingNotFoundError(PurchasingError, NotFoundError):
    pass


def create_vendor(
    session,
    *,
    name: str,
    actor: str,
    code: str | None = None,
    contact_email: str | None = None,
    contact_phone: str | None = None,
    expense_account_code: str | None = None,
) -> Vendor:
    actor = require_actor(actor)
    if not name or not str(name).strip():
        raise ValidationError("name is required")

    def _op():
        if code and session.query(Vendor.id).filter_by(code=code).first():
            raise ConflictError(f"Vendor code {code} already exists")
        vendor = Vendor(
            name=str(name).strip(),
            code=code,
            contact_email=contact_email,
            contact_phone=contact_phone,
            expense_account_code=expense_account_code,
            current_balance_cents=0,
        )
        session.add(vendor)
        session.commit()
        return vendor

    vendor = run_with_retry(session, _op)
    current_app.logger.info("Vendor %s (%s) created by %s", vendor.id, vendor.name, actor)
    return vendor


def create_purchase_order(
    session,
    *,
    vendor_id: int,
    lines: list[dict],
    actor: str,
    order_date=None,
    tax_rate=None,
) -> PurchaseOrder:
    """
    Create an OPEN purchase order.

    Each line either references an existing unit ({"unit_id", "unit_cost_cents"})
    or brings a new one in ({"serial_number", "unit_cost_cents", "description",
    "selling_price_cents"}); new units are created AVAILABLE with physical
    status ORDERED.
    """
    actor = require_actor(actor)
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")
    po_date = require_iso_date(order_date, "order_date") or utctoday()

    def _op():
        vendor = session.query(Vendor).filter_by(id=vendor_id).first()
        if not vendor:
            raise PurchasingNotFoundError(f"Vendor {vendor_id} not found")

        po = PurchaseOrder(
            po_number=next_document_number(session, *DOC_PURCHASE_ORDER),
            vendor_id=vendor.id,
            status=PO_OPEN,
            order_date=po_date,
            tax_rate=None if tax_rate in (None, "") else str(tax_rate),
            created_by=actor,
        )
        session.add(po)
        session.flush()

        subtotal = 0
        for idx, line in enumerate(lines):
            if not isinstance(line, dict):
                raise ValidationError(f"lines[{idx}] must be an object")
            cost = coerce_cents(line.get("unit_cost_cents"), f"lines[{idx}].unit_cost_cents")
            quantity = require_positive_int(line.get("quantity", 1), f"lines[{idx}].quantity")

            if line.get("unit_id") is not None:
                unit = session.query(Unit).filter_by(id=line["unit_id"]).first()
                if not unit:
                    raise PurchasingNotFoundError(f"Unit {line['unit_id']} not found")
            else:
                unit = _build_unit(
                    session,
                    serial_number=line.get("serial_number"),
                    purchase_price_cents=cost,
                    selling_price_cents=line.get("selling_price_cents"),
                    description=line.get("description"),
                    physical_status=PHYSICAL_ORDERED,
                )

            line_total = amounts.line_total_cents(quantity, cost)
            subtotal += line_total
            session.add(PurchaseOrderLine(
                purchase_order_id=po.id,
                unit_id=unit.id,
                quantity=quantity,
                unit_cost_cents=cost,
                line_total_cents=line_total,
            ))

        po.subtotal_cents = subtotal
        po.tax_cents = amounts.tax_cents(subtotal, tax_rate)
        po.total_cents = subtotal + po.tax_cents
        session.commit()
        return po

    po = run_with_retry(session, _op)
    current_app.logger.info(
        "Purchase order %s created for vendor %s (%d cents) by %s",
        po.po_number, vendor_id, po.total_cents, actor,
    )
    return po


def get_purchase_order(session, po_id: int) -> PurchaseOrder | None:
    return session.query(PurchaseOrder).filter_by(id=po_id).first()


def get_vendor(session, vendor_id: int) -> Vendor | None:
    return session.query(Vendor).filter_by(id=vendor_id).first()
