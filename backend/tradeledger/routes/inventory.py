# backend/tradeledger/routes/inventory.py
"""
Unit lifecycle API routes.

- POST /api/inventory/units                      - Register a unit
- GET  /api/inventory/units                      - List units (?inventory_status=, ?physical_status=)
- GET  /api/inventory/units/<id>                 - One unit
- DELETE /api/inventory/units/<id>               - Soft delete an AVAILABLE unit
- POST /api/inventory/reserve                    - Reserve units for an invoice
- POST /api/inventory/release                    - Release an invoice's reservations
- POST /api/inventory/sold                       - Mark an invoice's units SOLD
- POST /api/inventory/delivered                  - Mark an invoice's units DELIVERED
- POST /api/inventory/holds                      - Place a temporary hold
- DELETE /api/inventory/holds/<hold_id>          - Release a temporary hold
- GET  /api/inventory/invoices/<id>/status       - Unit status for an invoice
- GET  /api/inventory/units/<id>/history         - Status history of a unit

Actors come from the X-Actor-Id header, never from the request body.
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..services import inventory_service, lifecycle_service
from ..validation import require_fields
from ..decorators import require_actor, handle_service_errors


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/units")
@require_actor
@handle_service_errors
def create_unit_route():
    payload = require_fields(request.get_json(silent=True), ["serial_number"])
    unit = inventory_service.create_unit(
        db.session,
        serial_number=payload["serial_number"],
        actor=g.actor,
        purchase_price_cents=payload.get("purchase_price_cents", 0),
        selling_price_cents=payload.get("selling_price_cents"),
        description=payload.get("description"),
        physical_status=payload.get("physical_status", "IN_STORE"),
    )
    return jsonify({"unit": unit.to_dict()}), 201


@inventory_bp.get("/units")
@handle_service_errors
def list_units_route():
    units = inventory_service.list_units(
        db.session,
        inventory_status=request.args.get("inventory_status"),
        physical_status=request.args.get("physical_status"),
        include_deleted=request.args.get("include_deleted") == "true",
    )
    return jsonify({"units": [u.to_dict() for u in units]}), 200


@inventory_bp.get("/units/<int:unit_id>")
def get_unit_route(unit_id: int):
    unit = inventory_service.get_unit(db.session, unit_id)
    if not unit:
        return jsonify({"error": f"Unit {unit_id} not found"}), 404
    return jsonify({"unit": unit.to_dict()}), 200


@inventory_bp.delete("/units/<int:unit_id>")
@require_actor
@handle_service_errors
def delete_unit_route(unit_id: int):
    unit = inventory_service.soft_delete_unit(db.session, unit_id, g.actor)
    return jsonify({"unit": unit.to_dict()}), 200


@inventory_bp.post("/reserve")
@require_actor
@handle_service_errors
def reserve_route():
    """
    Request body:
        {"unit_ids": [1, 2], "invoice_id": 7}

    Error responses:
        404: unknown unit ids
        409: units not AVAILABLE (body lists one conflict per unit)
    """
    payload = require_fields(request.get_json(silent=True), ["unit_ids", "invoice_id"])
    result = lifecycle_service.reserve_units(db.session, payload["unit_ids"], payload["invoice_id"], g.actor)
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/release")
@require_actor
@handle_service_errors
def release_route():
    payload = require_fields(request.get_json(silent=True), ["invoice_id"])
    result = lifecycle_service.release_units(db.session, payload["invoice_id"], g.actor)
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/sold")
@require_actor
@handle_service_errors
def sold_route():
    payload = require_fields(request.get_json(silent=True), ["invoice_id"])
    result = lifecycle_service.mark_units_sold(db.session, payload["invoice_id"], g.actor)
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/delivered")
@require_actor
@handle_service_errors
def delivered_route():
    payload = require_fields(request.get_json(silent=True), ["invoice_id"])
    result = lifecycle_service.mark_units_delivered(
        db.session, payload["invoice_id"], g.actor, payload.get("delivery_info")
    )
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/holds")
@require_actor
@handle_service_errors
def place_hold_route():
    payload = require_fields(request.get_json(silent=True), ["unit_ids"])
    result = lifecycle_service.place_temporary_hold(
        db.session, payload["unit_ids"], g.actor, payload.get("minutes")
    )
    return jsonify(result.to_dict()), 201


@inventory_bp.delete("/holds/<hold_id>")
@require_actor
@handle_service_errors
def release_hold_route(hold_id: str):
    result = lifecycle_service.release_hold(db.session, hold_id, g.actor)
    return jsonify(result.to_dict()), 200


@inventory_bp.get("/invoices/<int:invoice_id>/status")
@handle_service_errors
def invoice_status_route(invoice_id: int):
    return jsonify(lifecycle_service.get_invoice_inventory_status(db.session, invoice_id)), 200


@inventory_bp.get("/units/<int:unit_id>/history")
@handle_service_errors
def unit_history_route(unit_id: int):
    history = lifecycle_service.get_unit_status_history(db.session, unit_id)
    return jsonify({"unit_id": unit_id, "history": [h.to_dict() for h in history]}), 200
