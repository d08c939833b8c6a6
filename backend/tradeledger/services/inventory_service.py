# Overview: Unit intake, lookup and soft delete; never changes inventory_status.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..models import Unit
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_cents, require_actor
from tradeledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import STATUS_AVAILABLE, VALID_STATUSES


class InventoryError(Exception):
    """Raised for unit intake / maintenance errors."""
    pass


class InventoryNotFoundError(InventoryError, NotFoundError):
    pass


def _normalize_serial(serial_number) -> str:
    serial = (serial_number or "").strip() if isinstance(serial_number, str) else ""
    if not serial:
        raise ValidationError("serial_number is required")
    return serial


def _build_unit(
    session,
    *,
    serial_number: str,
    purchase_price_cents=0,
    selling_price_cents=None,
    description: str | None = None,
    physical_status: str = "IN_STORE",
) -> Unit:
    """Adds a new AVAILABLE unit to the session (caller commits)."""
    serial = _normalize_serial(serial_number)
    if session.query(Unit.id).filter_by(serial_number=serial).first():
        raise ConflictError(f"Serial number {serial} already exists")

    unit = Unit(
        serial_number=serial,
        description=description,
        inventory_status=STATUS_AVAILABLE,
        physical_status=physical_status or "IN_STORE",
        purchase_price_cents=coerce_cents(purchase_price_cents, "purchase_price_cents"),
        selling_price_cents=(
            None if selling_price_cents is None
            else coerce_cents(selling_price_cents, "selling_price_cents")
        ),
        received_at=utcnow() if physical_status == "IN_STORE" else None,
    )
    session.add(unit)
    session.flush()
    return unit


def create_unit(
    session,
    *,
    serial_number: str,
    actor: str,
    purchase_price_cents=0,
    selling_price_cents=None,
    description: str | None = None,
    physical_status: str = "IN_STORE",
) -> Unit:
    """Register a unit at intake. Serial numbers are unique."""
    actor = require_actor(actor)

    def _op():
        try:
            unit = _build_unit(
                session,
                serial_number=serial_number,
                purchase_price_cents=purchase_price_cents,
                selling_price_cents=selling_price_cents,
                description=description,
                physical_status=physical_status,
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError(f"Serial number {serial_number} already exists")
        return unit

    unit = run_with_retry(session, _op)
    current_app.logger.info("Unit %s (%s) registered by %s", unit.id, unit.serial_number, actor)
    return unit


def get_unit(session, unit_id: int) -> Unit | None:
    return session.query(Unit).filter_by(id=unit_id).first()


def list_units(
    session,
    *,
    inventory_status: str | None = None,
    physical_status: str | None = None,
    include_deleted: bool = False,
) -> list[Unit]:
    query = session.query(Unit)
    if inventory_status:
        if inventory_status not in VALID_STATUSES:
            raise ValidationError(f"Unknown inventory status {inventory_status}")
        query = query.filter(Unit.inventory_status == inventory_status)
    if physical_status:
        query = query.filter(Unit.physical_status == physical_status)
    if not include_deleted:
        query = query.filter(Unit.deleted_at.is_(None))
    return query.order_by(Unit.id.asc()).all()


def soft_delete_unit(session, unit_id: int, actor: str) -> Unit:
    """
    Mark a unit deleted. Only AVAILABLE units can be removed; anything held
    or sold stays visible to the lifecycle and the sweep.
    """
    actor = require_actor(actor)

    def _op():
        unit = lock_for_update(session.query(Unit).filter_by(id=unit_id)).first()
        if not unit:
            raise InventoryNotFoundError(f"Unit {unit_id} not found")
        if unit.deleted_at is not None:
            raise ConflictError(f"Unit {unit_id} is already deleted")
        if unit.inventory_status != STATUS_AVAILABLE:
            raise ConflictError(
                f"Unit {unit.serial_number} is {unit.inventory_status} and cannot be deleted"
            )
        unit.deleted_at = utcnow()
        session.commit()
        return unit

    unit = run_with_retry(session, _op)
    current_app.logger.info("Unit %s soft-deleted by %s", unit_id, actor)
    return unit
