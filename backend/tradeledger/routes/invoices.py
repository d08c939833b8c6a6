# backend/tradeledger/routes/invoices.py
"""
Invoice API routes.

- POST /api/invoices/customers                       - Create a customer
- GET  /api/invoices/customers/<id>/ledger           - Customer ledger with replay check
- POST /api/invoices                                 - Create an invoice (reserves its units)
- GET  /api/invoices/<id>                            - Invoice summary
- POST /api/invoices/<id>/payments                   - Direct payment
- POST /api/invoices/payments/<id>/void              - Void a payment
- POST /api/invoices/<id>/cancel                     - Cancel (releases units)
- POST /api/invoices/<id>/deliver                    - Hand over sold units
- POST /api/invoices/<id>/refresh-status             - Recompute paid amount and status

A payment that fully pays an invoice triggers the invoice-paid automation.
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..services import invoice_service, ledger_service
from ..validation import require_fields
from ..decorators import require_actor, handle_service_errors
from .automation import run_invoice_paid_automation


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("/customers")
@require_actor
@handle_service_errors
def create_customer_route():
    payload = require_fields(request.get_json(silent=True), ["name"])
    customer = invoice_service.create_customer(
        db.session,
        name=payload["name"],
        actor=g.actor,
        email=payload.get("email"),
        phone=payload.get("phone"),
        credit_limit_cents=payload.get("credit_limit_cents", 0),
    )
    return jsonify({"customer": customer.to_dict()}), 201


@invoices_bp.get("/customers/<int:customer_id>/ledger")
@handle_service_errors
def customer_ledger_route(customer_id: int):
    entries = ledger_service.list_customer_entries(db.session, customer_id)
    check = ledger_service.verify_customer_ledger(db.session, customer_id)
    return jsonify({"entries": [e.to_dict() for e in entries], "verification": check}), 200


@invoices_bp.post("")
@require_actor
@handle_service_errors
def create_invoice_route():
    """
    Request body:
        {
            "customer_id": 1,
            "lines": [{"unit_id": 3, "unit_price_cents": 150000}],
            "invoice_date": "2024-01-15",      // optional
            "due_date": "2024-02-15",          // optional
            "discount_type": "PERCENTAGE",     // optional, FIXED | PERCENTAGE
            "discount_value": "10",            // optional
            "tax_rate": "5",                   // optional, percent
            "notes": "..."                     // optional
        }
    """
    payload = require_fields(request.get_json(silent=True), ["customer_id", "lines"])
    invoice = invoice_service.create_invoice(
        db.session,
        customer_id=payload["customer_id"],
        lines=payload["lines"],
        actor=g.actor,
        invoice_date=payload.get("invoice_date"),
        due_date=payload.get("due_date"),
        discount_type=payload.get("discount_type"),
        discount_value=payload.get("discount_value"),
        tax_rate=payload.get("tax_rate"),
        notes=payload.get("notes"),
    )
    return jsonify({"invoice": invoice.to_dict()}), 201


@invoices_bp.get("/<int:invoice_id>")
@handle_service_errors
def get_invoice_route(invoice_id: int):
    return jsonify(invoice_service.get_invoice_summary(db.session, invoice_id)), 200


@invoices_bp.post("/<int:invoice_id>/payments")
@require_actor
@handle_service_errors
def record_payment_route(invoice_id: int):
    payload = require_fields(request.get_json(silent=True), ["amount_cents", "method"])
    result = invoice_service.record_payment(
        db.session,
        invoice_id,
        payload["amount_cents"],
        payload["method"],
        g.actor,
        reference=payload.get("reference"),
        notes=payload.get("notes"),
        paid_at=payload.get("paid_at"),
    )
    response = {
        "payment": result["payment"].to_dict(),
        "invoice": result["invoice"].to_dict(),
        "invoice_fully_paid": result["invoice_fully_paid"],
    }
    if result["invoice_fully_paid"]:
        response["automation"] = run_invoice_paid_automation(invoice_id, g.actor)
    return jsonify(response), 201


@invoices_bp.post("/payments/<int:payment_id>/void")
@require_actor
@handle_service_errors
def void_payment_route(payment_id: int):
    payload = require_fields(request.get_json(silent=True), ["reason"])
    result = invoice_service.void_payment(db.session, payment_id, g.actor, payload["reason"])
    return jsonify({
        "payment": result["payment"].to_dict(),
        "invoice": result["invoice"].to_dict(),
    }), 200


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_actor
@handle_service_errors
def cancel_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    result = invoice_service.cancel_invoice(db.session, invoice_id, g.actor, payload.get("reason"))
    return jsonify({
        "invoice": result["invoice"].to_dict(),
        "released": result["released"].to_dict(),
    }), 200


@invoices_bp.post("/<int:invoice_id>/deliver")
@require_actor
@handle_service_errors
def deliver_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    result = invoice_service.deliver_invoice(db.session, invoice_id, g.actor, payload.get("delivery_info"))
    return jsonify({
        "invoice": result["invoice"].to_dict(),
        "delivered": result["delivered"].to_dict(),
    }), 200


@invoices_bp.post("/<int:invoice_id>/refresh-status")
@require_actor
@handle_service_errors
def refresh_status_route(invoice_id: int):
    """Recompute paid amount and status from the non-voided payments."""
    invoice = invoice_service.refresh_invoice_status(db.session, invoice_id)
    return jsonify({"invoice": invoice.to_dict()}), 200
