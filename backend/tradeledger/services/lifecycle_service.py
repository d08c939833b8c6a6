# Overview: Service-layer operations for the unit sale lifecycle; the only writer of Unit.inventory_status.

"""
TradeLedger Unit Lifecycle Service

================================================================================
PURPOSE: Enforce Available -> Reserved -> Sold -> Delivered for physical units
================================================================================

WHY THIS EXISTS:
- Two concurrent sales must never claim the same unit
- Every status change leaves an auditable StatusChange row
- Reservation metadata always names exactly one holder

STATE MACHINE:
    AVAILABLE -> RESERVED     (invoice created, temporary hold)
    AVAILABLE -> SOLD         (direct sale)
    RESERVED  -> AVAILABLE    (invoice cancelled, hold expired)
    RESERVED  -> SOLD         (invoice paid)
    SOLD      -> DELIVERED    (handover)

    DELIVERED is terminal. Anything else raises InvalidTransitionError.

RULES (NON-NEGOTIABLE):
1. All-or-nothing: a multi-unit operation commits every unit or none
2. Units are locked and processed in ascending id order
3. A UnitStatusChange is written in the same transaction as each unit update
4. Invoice reservations never expire; only temporary holds carry an expiry
5. Lock/version conflicts are retried from scratch, so a race loser is
   re-validated and fails with UnitNotAvailableError

COMPOSITION:
The public functions own their transaction. Other services that need a
transition inside a larger transaction call the *_locked helpers, which
flush but never commit.

================================================================================
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from ..models import Unit, UnitStatusChange
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    require_actor,
    require_id_list,
    require_iso_datetime,
    require_positive_int,
)
from tradeledger.time_utils import utcnow, to_utc_z
from .concurrency import lock_for_update, run_with_retry


# Inventory statuses
STATUS_AVAILABLE = "AVAILABLE"
STATUS_RESERVED = "RESERVED"
STATUS_SOLD = "SOLD"
STATUS_DELIVERED = "DELIVERED"

VALID_STATUSES = {STATUS_AVAILABLE, STATUS_RESERVED, STATUS_SOLD, STATUS_DELIVERED}

VALID_TRANSITIONS = {
    (STATUS_AVAILABLE, STATUS_RESERVED),
    (STATUS_AVAILABLE, STATUS_SOLD),
    (STATUS_RESERVED, STATUS_AVAILABLE),
    (STATUS_RESERVED, STATUS_SOLD),
    (STATUS_SOLD, STATUS_DELIVERED),
}

# Reason codes
REASON_INVOICE_CREATED = "INVOICE_CREATED"
REASON_INVOICE_CANCELLED = "INVOICE_CANCELLED"
REASON_INVOICE_PAID = "INVOICE_PAID"
REASON_INVOICE_DELIVERED = "INVOICE_DELIVERED"
REASON_MANUAL = "MANUAL"
REASON_SYSTEM_CLEANUP = "SYSTEM_CLEANUP"

# Holder types
HOLDER_INVOICE = "INVOICE"
HOLDER_HOLD = "HOLD"

SYSTEM_ACTOR = "system"


class LifecycleError(ValueError):
    """
    Raised when a unit lifecycle operation violates business rules.

    This is a domain error, not a technical error.
    """

    def to_dict(self) -> dict:
        return {"error": str(self), "type": type(self).__name__}


class InvalidTransitionError(LifecycleError, ConflictError):
    def __init__(self, from_status: str | None, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"from_status": self.from_status, "to_status": self.to_status})
        return data


class UnitNotFoundError(LifecycleError, NotFoundError):
    def __init__(self, missing_ids: list[int]):
        self.missing_ids = list(missing_ids)
        super().__init__(f"Units not found: {', '.join(str(i) for i in self.missing_ids)}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["missing_ids"] = self.missing_ids
        return data


class UnitNotAvailableError(LifecycleError, ConflictError):
    def __init__(self, conflicts: list[dict]):
        self.conflicts = conflicts
        serials = ", ".join(str(c["serial_number"]) for c in conflicts)
        super().__init__(f"Units not available: {serials}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["conflicts"] = self.conflicts
        return data


class NoSoldItemsError(LifecycleError, ConflictError):
    def __init__(self, invoice_id):
        self.invoice_id = invoice_id
        super().__init__(f"No sold units found for invoice {invoice_id}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["invoice_id"] = self.invoice_id
        return data


@dataclass
class TransitionResult:
    """Outcome of one lifecycle operation (count may be 0 for the allowed no-ops)."""
    units: list = field(default_factory=list)
    status_changes: list = field(default_factory=list)
    holder_id: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.units)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "holder_id": self.holder_id,
            "units": [u.to_dict() for u in self.units],
            "status_changes": [c.to_dict() for c in self.status_changes],
        }


# =============================================================================
# TRANSITION PRIMITIVES
# =============================================================================

def can_transition(from_status: str | None, to_status: str) -> bool:
    return (from_status, to_status) in VALID_TRANSITIONS


def validate_transition(from_status: str | None, to_status: str) -> None:
    """Raises InvalidTransitionError naming the pair. Never coerces."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)


def _apply_transition(
    session,
    unit: Unit,
    to_status: str,
    *,
    reason: str,
    actor: str,
    reference_type: str | None,
    reference_id: str | None,
    changed_at: datetime,
    notes: str | None = None,
) -> UnitStatusChange:
    from_status = unit.inventory_status
    validate_transition(from_status, to_status)
    unit.inventory_status = to_status
    change = UnitStatusChange(
        unit_id=unit.id,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        changed_by=actor,
        changed_at=changed_at,
        notes=notes,
    )
    session.add(change)
    return change


def _clear_reservation(unit: Unit) -> None:
    unit.reserved_at = None
    unit.reserved_by = None
    unit.reserved_for_type = None
    unit.reserved_for_id = None
    unit.reservation_expiry = None


def _lock_units_by_ids(session, unit_ids: list[int]) -> list[Unit]:
    """Lock live units in ascending id order; raises UnitNotFoundError for any gap."""
    units = lock_for_update(
        session.query(Unit)
        .filter(Unit.id.in_(unit_ids), Unit.deleted_at.is_(None))
        .order_by(Unit.id.asc())
    ).all()
    found = {u.id for u in units}
    missing = [uid for uid in unit_ids if uid not in found]
    if missing:
        raise UnitNotFoundError(missing)
    return units


def _require_available(units: list[Unit]) -> None:
    conflicts = [
        {
            "unit_id": u.id,
            "serial_number": u.serial_number,
            "current_status": u.inventory_status,
            "reserved_for_type": u.reserved_for_type,
            "reserved_for_id": u.reserved_for_id,
        }
        for u in units
        if u.inventory_status != STATUS_AVAILABLE
    ]
    if conflicts:
        raise UnitNotAvailableError(conflicts)


def _lock_units_for_holder(session, holder_type: str, holder_id: str, status: str) -> list[Unit]:
    return lock_for_update(
        session.query(Unit)
        .filter(
            Unit.reserved_for_type == holder_type,
            Unit.reserved_for_id == holder_id,
            Unit.inventory_status == status,
            Unit.deleted_at.is_(None),
        )
        .order_by(Unit.id.asc())
    ).all()


# =============================================================================
# LOCKED HELPERS (caller owns the transaction)
# =============================================================================

def _reserve_units_locked(
    session,
    unit_ids: list[int],
    *,
    holder_type: str,
    holder_id: str,
    actor: str,
    reason: str,
    expiry: datetime | None = None,
    notes: str | None = None,
) -> TransitionResult:
    now = utcnow()
    units = _lock_units_by_ids(session, unit_ids)
    _require_available(units)

    result = TransitionResult(holder_id=holder_id)
    for unit in units:
        change = _apply_transition(
            session, unit, STATUS_RESERVED,
            reason=reason, actor=actor,
            reference_type=holder_type, reference_id=holder_id,
            changed_at=now, notes=notes,
        )
        unit.reserved_at = now
        unit.reserved_by = actor
        unit.reserved_for_type = holder_type
        unit.reserved_for_id = holder_id
        unit.reservation_expiry = expiry
        result.units.append(unit)
        result.status_changes.append(change)
    session.flush()
    return result


def _release_units_locked(
    session,
    *,
    holder_type: str,
    holder_id: str,
    actor: str,
    reason: str,
    notes: str | None = None,
) -> TransitionResult:
    now = utcnow()
    result = TransitionResult(holder_id=holder_id)
    for unit in _lock_units_for_holder(session, holder_type, holder_id, STATUS_RESERVED):
        change = _apply_transition(
            session, unit, STATUS_AVAILABLE,
            reason=reason, actor=actor,
            reference_type=holder_type, reference_id=holder_id,
            changed_at=now, notes=notes,
        )
        _clear_reservation(unit)
        result.units.append(unit)
        result.status_changes.append(change)
    session.flush()
    return result


def _mark_units_sold_locked(session, invoice_id: int, actor: str) -> TransitionResult:
    now = utcnow()
    holder_id = str(invoice_id)
    result = TransitionResult(holder_id=holder_id)
    for unit in _lock_units_for_holder(session, HOLDER_INVOICE, holder_id, STATUS_RESERVED):
        change = _apply_transition(
            session, unit, STATUS_SOLD,
            reason=REASON_INVOICE_PAID, actor=actor,
            reference_type=HOLDER_INVOICE, reference_id=holder_id,
            changed_at=now,
        )
        # Holder stays on the unit so delivery can find it
        unit.reservation_expiry = None
        unit.outbound_at = now
        unit.physical_status = "SOLD"
        result.units.append(unit)
        result.status_changes.append(change)
    session.flush()
    return result


def _sell_units_directly_locked(session, unit_ids: list[int], invoice_id: int, actor: str) -> TransitionResult:
    now = utcnow()
    holder_id = str(invoice_id)
    units = _lock_units_by_ids(session, unit_ids)
    _require_available(units)

    result = TransitionResult(holder_id=holder_id)
    for unit in units:
        change = _apply_transition(
            session, unit, STATUS_SOLD,
            reason=REASON_INVOICE_PAID, actor=actor,
            reference_type=HOLDER_INVOICE, reference_id=holder_id,
            changed_at=now, notes="Direct sale",
        )
        unit.reserved_at = now
        unit.reserved_by = actor
        unit.reserved_for_type = HOLDER_INVOICE
        unit.reserved_for_id = holder_id
        unit.reservation_expiry = None
        unit.outbound_at = now
        unit.physical_status = "SOLD"
        result.units.append(unit)
        result.status_changes.append(change)
    session.flush()
    return result


def _mark_units_delivered_locked(
    session,
    invoice_id: int,
    actor: str,
    delivery_info: dict | None = None,
) -> TransitionResult:
    info = delivery_info or {}
    handover_at = require_iso_datetime(info.get("handover_at"), "handover_at")
    now = utcnow()
    handover_at = handover_at or now

    holder_id = str(invoice_id)
    units = _lock_units_for_holder(session, HOLDER_INVOICE, holder_id, STATUS_SOLD)
    if not units:
        raise NoSoldItemsError(invoice_id)

    result = TransitionResult(holder_id=holder_id)
    for unit in units:
        change = _apply_transition(
            session, unit, STATUS_DELIVERED,
            reason=REASON_INVOICE_DELIVERED, actor=actor,
            reference_type=HOLDER_INVOICE, reference_id=holder_id,
            changed_at=now, notes=info.get("notes"),
        )
        unit.physical_status = "DELIVERED"
        unit.handover_at = handover_at
        unit.handover_by = actor
        unit.handover_to = info.get("handover_to")
        unit.handover_to_id_number = info.get("handover_to_id_number")
        unit.handover_to_phone = info.get("handover_to_phone")
        unit.handover_details = info.get("handover_details")
        result.units.append(unit)
        result.status_changes.append(change)
    session.flush()
    return result


# =============================================================================
# PUBLIC OPERATIONS (one transaction each)
# =============================================================================

def reserve_units(session, unit_ids, invoice_id: int, actor: str) -> TransitionResult:
    """
    Reserve AVAILABLE units for an invoice (AVAILABLE -> RESERVED).

    Raises:
        UnitNotFoundError: any id does not resolve to a live unit
        UnitNotAvailableError: any unit is not AVAILABLE (one conflict per unit)
    """
    actor = require_actor(actor)
    ids = require_id_list(unit_ids, "unit_ids")
    invoice_id = require_positive_int(invoice_id, "invoice_id")

    def _op():
        result = _reserve_units_locked(
            session, ids,
            holder_type=HOLDER_INVOICE, holder_id=str(invoice_id),
            actor=actor, reason=REASON_INVOICE_CREATED,
        )
        session.commit()
        return result

    result = run_with_retry(session, _op)
    current_app.logger.info("Reserved %d units for invoice %s by %s", result.count, invoice_id, actor)
    return result


def release_units(session, invoice_id: int, actor: str) -> TransitionResult:
    """RESERVED units of the invoice return to AVAILABLE. Zero matches is a zero-count success."""
    actor = require_actor(actor)

    def _op():
        result = _release_units_locked(
            session,
            holder_type=HOLDER_INVOICE, holder_id=str(invoice_id),
            actor=actor, reason=REASON_INVOICE_CANCELLED,
        )
        session.commit()
        return result

    result = run_with_retry(session, _op)
    if result.count == 0:
        current_app.logger.warning("No reserved units to release for invoice %s", invoice_id)
    else:
        current_app.logger.info("Released %d units from invoice %s by %s", result.count, invoice_id, actor)
    return result


def mark_units_sold(session, invoice_id: int, actor: str) -> TransitionResult:
    """RESERVED units of the invoice become SOLD. Zero matches is a no-op (already sold or never reserved)."""
    actor = require_actor(actor)

    def _op():
        result = _mark_units_sold_locked(session, invoice_id, actor)
        session.commit()
        return result

    result = run_with_retry(session, _op)
    if result.count == 0:
        current_app.logger.warning("No reserved units to mark sold for invoice %s", invoice_id)
    else:
        current_app.logger.info("Marked %d units sold for invoice %s by %s", result.count, invoice_id, actor)
    return result


def mark_units_delivered(session, invoice_id: int, actor: str, delivery_info: dict | None = None) -> TransitionResult:
    """
    SOLD units of the invoice become DELIVERED with handover details.

    delivery_info keys: handover_to, handover_to_id_number, handover_to_phone,
    handover_details, handover_at (ISO string or datetime), notes.

    Raises:
        NoSoldItemsError: nothing SOLD is held by the invoice
    """
    actor = require_actor(actor)
    if delivery_info is not None and not isinstance(delivery_info, dict):
        raise ValidationError("delivery_info must be an object")

    def _op():
        result = _mark_units_delivered_locked(session, invoice_id, actor, delivery_info)
        session.commit()
        return result

    result = run_with_retry(session, _op)
    current_app.logger.info("Delivered %d units for invoice %s by %s", result.count, invoice_id, actor)
    return result


def sell_units_directly(session, unit_ids, invoice_id: int, actor: str) -> TransitionResult:
    """AVAILABLE -> SOLD without a reservation step (same validation as reserve_units)."""
    actor = require_actor(actor)
    ids = require_id_list(unit_ids, "unit_ids")
    invoice_id = require_positive_int(invoice_id, "invoice_id")

    def _op():
        result = _sell_units_directly_locked(session, ids, invoice_id, actor)
        session.commit()
        return result

    result = run_with_retry(session, _op)
    current_app.logger.info("Sold %d units directly on invoice %s by %s", result.count, invoice_id, actor)
    return result


def place_temporary_hold(session, unit_ids, actor: str, minutes: int | None = None) -> TransitionResult:
    """
    Hold AVAILABLE units for a short time (e.g. while a sale is being keyed in).

    The hold gets a generated id and an expiry; the sweep releases it once
    the expiry passes. result.holder_id is the hold id.
    """
    actor = require_actor(actor)
    ids = require_id_list(unit_ids, "unit_ids")
    if minutes is None:
        minutes = current_app.config.get("TEMPORARY_HOLD_MINUTES", 30)
    minutes = require_positive_int(minutes, "minutes")
    hold_id = uuid.uuid4().hex

    def _op():
        expiry = utcnow() + timedelta(minutes=minutes)
        result = _reserve_units_locked(
            session, ids,
            holder_type=HOLDER_HOLD, holder_id=hold_id,
            actor=actor, reason=REASON_MANUAL, expiry=expiry,
            notes="Temporary hold",
        )
        session.commit()
        return result

    result = run_with_retry(session, _op)
    current_app.logger.info("Placed hold %s on %d units for %d minutes by %s", hold_id, result.count, minutes, actor)
    return result


def release_hold(session, hold_id: str, actor: str) -> TransitionResult:
    actor = require_actor(actor)
    if not hold_id:
        raise ValidationError("hold_id is required")

    def _op():
        result = _release_units_locked(
            session,
            holder_type=HOLDER_HOLD, holder_id=str(hold_id),
            actor=actor, reason=REASON_MANUAL, notes="Hold released",
        )
        session.commit()
        return result

    result = run_with_retry(session, _op)
    if result.count == 0:
        current_app.logger.warning("No units held under %s", hold_id)
    return result


def expire_reservations(session, now: datetime | None = None) -> TransitionResult:
    """
    Release every reservation whose expiry has passed (RESERVED -> AVAILABLE).

    Invoice reservations carry no expiry and are never touched here.
    """
    def _op():
        cutoff = now or utcnow()
        units = lock_for_update(
            session.query(Unit)
            .filter(
                Unit.inventory_status == STATUS_RESERVED,
                Unit.reservation_expiry.isnot(None),
                Unit.reservation_expiry <= cutoff,
                Unit.deleted_at.is_(None),
            )
            .order_by(Unit.id.asc())
        ).all()

        result = TransitionResult()
        for unit in units:
            change = _apply_transition(
                session, unit, STATUS_AVAILABLE,
                reason=REASON_SYSTEM_CLEANUP, actor=SYSTEM_ACTOR,
                reference_type=unit.reserved_for_type, reference_id=unit.reserved_for_id,
                changed_at=cutoff,
                notes=f"Reservation expired at {to_utc_z(unit.reservation_expiry)}",
            )
            _clear_reservation(unit)
            result.units.append(unit)
            result.status_changes.append(change)
        session.commit()
        return result

    result = run_with_retry(session, _op)
    if result.count:
        current_app.logger.info("Expired %d reservations", result.count)
    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice_inventory_status(session, invoice_id: int) -> dict:
    units = (
        session.query(Unit)
        .filter(
            Unit.reserved_for_type == HOLDER_INVOICE,
            Unit.reserved_for_id == str(invoice_id),
            Unit.deleted_at.is_(None),
        )
        .order_by(Unit.id.asc())
        .all()
    )
    summary: dict[str, int] = {}
    rows = []
    for unit in units:
        summary[unit.inventory_status] = summary.get(unit.inventory_status, 0) + 1
        last_change = (
            session.query(UnitStatusChange)
            .filter_by(unit_id=unit.id)
            .order_by(UnitStatusChange.changed_at.desc(), UnitStatusChange.id.desc())
            .first()
        )
        rows.append({
            "id": unit.id,
            "serial_number": unit.serial_number,
            "description": unit.description,
            "inventory_status": unit.inventory_status,
            "physical_status": unit.physical_status,
            "reserved_at": to_utc_z(unit.reserved_at),
            "last_status_change": to_utc_z(last_change.changed_at) if last_change else to_utc_z(unit.updated_at),
        })
    return {
        "invoice_id": invoice_id,
        "total_units": len(units),
        "status_summary": summary,
        "units": rows,
    }


def get_unit_status_history(session, unit_id: int) -> list[UnitStatusChange]:
    unit = session.query(Unit).filter_by(id=unit_id).first()
    if not unit:
        raise UnitNotFoundError([unit_id])
    return (
        session.query(UnitStatusChange)
        .filter_by(unit_id=unit_id)
        .order_by(UnitStatusChange.changed_at.asc(), UnitStatusChange.id.asc())
        .all()
    )
