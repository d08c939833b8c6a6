# backend/tradeledger/routes/installments.py
"""
Installment API routes.

- POST /api/installments/plans                       - Create a plan for an invoice
- GET  /api/installments/plans/<id>                  - Plan with schedule and summary
- POST /api/installments/<id>/payments               - Pay one installment
- GET  /api/installments/overdue                     - Past-due open installments
- GET  /api/installments/customers/<id>/summary      - Customer summary (?window_days=)
- GET  /api/installments/reminders                   - Upcoming installments (?days_ahead=)
- POST /api/installments/late-charges                - Run the late-charge batch now
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..services import installment_service
from ..validation import require_fields
from ..decorators import require_actor, handle_service_errors
from .automation import run_invoice_paid_automation


installments_bp = Blueprint("installments", __name__, url_prefix="/api/installments")


@installments_bp.post("/plans")
@require_actor
@handle_service_errors
def create_plan_route():
    """
    Request body:
        {
            "invoice_id": 1,
            "number_of_installments": 6,
            "down_payment_cents": 200000,     // optional
            "interval_type": "MONTHLY",       // optional, WEEKLY | MONTHLY | QUARTERLY
            "start_date": "2024-01-01",       // optional, defaults to today
            "notes": "..."                    // optional
        }
    """
    payload = require_fields(request.get_json(silent=True), ["invoice_id", "number_of_installments"])
    result = installment_service.create_plan(
        db.session,
        payload["invoice_id"],
        number_of_installments=payload["number_of_installments"],
        actor=g.actor,
        down_payment_cents=payload.get("down_payment_cents", 0),
        interval_type=payload.get("interval_type", installment_service.INTERVAL_MONTHLY),
        start_date=payload.get("start_date"),
        notes=payload.get("notes"),
    )
    down = result["down_payment"]
    return jsonify({
        "plan": result["plan"].to_dict(),
        "installments": [i.to_dict() for i in result["installments"]],
        "down_payment": down.to_dict() if down else None,
        "summary": result["summary"],
    }), 201


@installments_bp.get("/plans/<int:plan_id>")
@handle_service_errors
def get_plan_route(plan_id: int):
    return jsonify(installment_service.get_installment_plan(db.session, plan_id)), 200


@installments_bp.post("/<int:installment_id>/payments")
@require_actor
@handle_service_errors
def pay_installment_route(installment_id: int):
    payload = require_fields(request.get_json(silent=True), ["amount_cents", "method"])
    result = installment_service.record_installment_payment(
        db.session,
        installment_id,
        payload["amount_cents"],
        payload["method"],
        g.actor,
        reference=payload.get("reference"),
        paid_at=payload.get("paid_at"),
    )
    response = {
        "payment": result["payment"].to_dict(),
        "installment": result["installment"].to_dict(),
        "plan_summary": result["plan_summary"],
        "invoice_fully_paid": result["invoice_fully_paid"],
    }
    if result["invoice_fully_paid"]:
        response["automation"] = run_invoice_paid_automation(result["invoice"].id, g.actor)
    return jsonify(response), 201


@installments_bp.get("/overdue")
@handle_service_errors
def overdue_route():
    installments = installment_service.get_overdue_installments(db.session)
    return jsonify({
        "installments": [
            dict(i.to_dict(), invoice_id=i.plan.invoice_id, invoice_number=i.plan.invoice.invoice_number)
            for i in installments
        ]
    }), 200


@installments_bp.get("/customers/<int:customer_id>/summary")
@handle_service_errors
def customer_summary_route(customer_id: int):
    summary = installment_service.get_customer_installment_summary(
        db.session, customer_id, window_days=request.args.get("window_days", type=int)
    )
    return jsonify(summary), 200


@installments_bp.get("/reminders")
@handle_service_errors
def reminders_route():
    reminders = installment_service.generate_installment_reminders(
        db.session, days_ahead=request.args.get("days_ahead", type=int)
    )
    return jsonify({"reminders": reminders}), 200


@installments_bp.post("/late-charges")
@require_actor
@handle_service_errors
def late_charges_route():
    return jsonify(installment_service.process_late_charges(db.session)), 200
