# backend/tradeledger/routes/automation.py
"""
Automation API routes.

- POST /api/automation/purchase-orders/<id>/complete     - Receive a purchase order
- POST /api/automation/purchase-orders/<id>/bill         - Create the vendor bill
- POST /api/automation/bills/<id>/expense                - Post the supplier expense
- POST /api/automation/invoices/<id>/paid                - Settle a fully paid invoice
- GET  /api/automation/logs                              - List runs (?status=, ?action=, ?limit=)
- GET  /api/automation/logs/<id>                         - One run
- POST /api/automation/logs/<id>/retry                   - Retry a FAILED run
- POST /api/automation/vendors                           - Create a vendor
- POST /api/automation/purchase-orders                   - Create a purchase order
- GET  /api/automation/vendors/<id>                      - One vendor
- GET  /api/automation/purchase-orders/<id>              - One purchase order with lines
- GET  /api/automation/journal-entries                   - Journal legs (?source_type=, ?source_id=)
- GET  /api/automation/bills/<id>                         - One bill with its payments
- POST /api/automation/bills/<id>/payments                - Pay (part of) a bill
- POST /api/automation/vendor-payments/<id>/void          - Void a vendor payment
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import accounting_service, automation_service, bill_service, purchasing_service
from ..validation import require_fields
from ..decorators import require_actor, handle_service_errors


automation_bp = Blueprint("automation", __name__, url_prefix="/api/automation")


def run_invoice_paid_automation(invoice_id: int, actor: str) -> dict:
    """
    Settle an invoice after the payment that fully paid it was committed.

    The payment stands even if settlement fails: the failed run is logged
    (status FAILED) and can be retried from /logs/<id>/retry.
    """
    try:
        return automation_service.handle_invoice_paid(db.session, invoice_id, actor).to_dict()
    except Exception as exc:
        current_app.logger.warning("Invoice %s paid but settlement failed: %s", invoice_id, exc)
        return {"success": False, "message": str(exc)}


@automation_bp.post("/vendors")
@require_actor
@handle_service_errors
def create_vendor_route():
    payload = require_fields(request.get_json(silent=True), ["name"])
    vendor = purchasing_service.create_vendor(
        db.session,
        name=payload["name"],
        actor=g.actor,
        code=payload.get("code"),
        contact_email=payload.get("contact_email"),
        contact_phone=payload.get("contact_phone"),
        expense_account_code=payload.get("expense_account_code"),
    )
    return jsonify({"vendor": vendor.to_dict()}), 201


@automation_bp.post("/purchase-orders")
@require_actor
@handle_service_errors
def create_purchase_order_route():
    payload = require_fields(request.get_json(silent=True), ["vendor_id", "lines"])
    po = purchasing_service.create_purchase_order(
        db.session,
        vendor_id=payload["vendor_id"],
        lines=payload["lines"],
        actor=g.actor,
        order_date=payload.get("order_date"),
        tax_rate=payload.get("tax_rate"),
    )
    return jsonify({
        "purchase_order": po.to_dict(),
        "lines": [line.to_dict() for line in po.lines],
    }), 201


@automation_bp.post("/purchase-orders/<int:po_id>/complete")
@require_actor
@handle_service_errors
def purchase_order_completion_route(po_id: int):
    result = automation_service.handle_purchase_order_completion(db.session, po_id, g.actor)
    return jsonify(result.to_dict()), 200


@automation_bp.post("/purchase-orders/<int:po_id>/bill")
@require_actor
@handle_service_errors
def bill_from_purchase_order_route(po_id: int):
    payload = request.get_json(silent=True) or {}
    result = automation_service.create_bill_from_purchase_order(
        db.session,
        po_id,
        g.actor,
        bill_number=payload.get("bill_number"),
        bill_date=payload.get("bill_date"),
        due_date=payload.get("due_date"),
    )
    return jsonify(result.to_dict()), 201


@automation_bp.post("/bills/<int:bill_id>/expense")
@require_actor
@handle_service_errors
def supplier_expense_route(bill_id: int):
    result = automation_service.handle_supplier_expense_posting(db.session, bill_id, g.actor)
    return jsonify(result.to_dict()), 200


@automation_bp.post("/invoices/<int:invoice_id>/paid")
@require_actor
@handle_service_errors
def invoice_paid_route(invoice_id: int):
    result = automation_service.handle_invoice_paid(db.session, invoice_id, g.actor)
    return jsonify(result.to_dict()), 200


@automation_bp.get("/logs")
@handle_service_errors
def list_logs_route():
    logs = automation_service.list_automation_logs(
        db.session,
        status=request.args.get("status"),
        action=request.args.get("action"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"logs": [log.to_dict() for log in logs]}), 200


@automation_bp.get("/logs/<int:log_id>")
def get_log_route(log_id: int):
    log = automation_service.get_automation_log(db.session, log_id)
    if not log:
        return jsonify({"error": f"Automation log {log_id} not found"}), 404
    return jsonify({"log": log.to_dict()}), 200


@automation_bp.post("/logs/<int:log_id>/retry")
@require_actor
@handle_service_errors
def retry_route(log_id: int):
    result = automation_service.retry_automation(db.session, log_id, g.actor)
    return jsonify(result.to_dict()), 200


@automation_bp.get("/vendors/<int:vendor_id>")
def get_vendor_route(vendor_id: int):
    vendor = purchasing_service.get_vendor(db.session, vendor_id)
    if not vendor:
        return jsonify({"error": f"Vendor {vendor_id} not found"}), 404
    return jsonify({"vendor": vendor.to_dict()}), 200


@automation_bp.get("/purchase-orders/<int:po_id>")
def get_purchase_order_route(po_id: int):
    po = purchasing_service.get_purchase_order(db.session, po_id)
    if not po:
        return jsonify({"error": f"Purchase order {po_id} not found"}), 404
    return jsonify({
        "purchase_order": po.to_dict(),
        "lines": [line.to_dict() for line in po.lines],
    }), 200


@automation_bp.get("/journal-entries")
def list_journal_entries_route():
    entries = accounting_service.list_journal_entries(
        db.session,
        source_type=request.args.get("source_type"),
        source_id=request.args.get("source_id", type=int),
    )
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200


@automation_bp.get("/bills/<int:bill_id>")
def get_bill_route(bill_id: int):
    bill = bill_service.get_bill(db.session, bill_id)
    if not bill:
        return jsonify({"error": f"Bill {bill_id} not found"}), 404
    payments = bill_service.list_bill_payments(db.session, bill_id)
    return jsonify({"bill": bill.to_dict(), "payments": [p.to_dict() for p in payments]}), 200


@automation_bp.post("/bills/<int:bill_id>/payments")
@require_actor
@handle_service_errors
def bill_payment_route(bill_id: int):
    """
    Request body:
        {"amount_cents": 20000, "method": "BANK_TRANSFER", "reference": "...", "paid_at": "..."}

    Error responses:
        404: unknown bill
        409: amount exceeds what is still owed on the bill
    """
    payload = require_fields(request.get_json(silent=True), ["amount_cents", "method"])
    result = bill_service.record_vendor_payment(
        db.session,
        bill_id,
        payload["amount_cents"],
        payload["method"],
        g.actor,
        reference=payload.get("reference"),
        notes=payload.get("notes"),
        paid_at=payload.get("paid_at"),
    )
    return jsonify({
        "payment": result["payment"].to_dict(),
        "bill": result["bill"].to_dict(),
    }), 201


@automation_bp.post("/vendor-payments/<int:payment_id>/void")
@require_actor
@handle_service_errors
def void_vendor_payment_route(payment_id: int):
    payload = require_fields(request.get_json(silent=True), ["reason"])
    result = bill_service.void_vendor_payment(db.session, payment_id, g.actor, payload["reason"])
    return jsonify({
        "payment": result["payment"].to_dict(),
        "bill": result["bill"].to_dict(),
    }), 200
