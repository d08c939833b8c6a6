from __future__ import annotations

from ..extensions import db
from tradeledger.time_utils import to_utc_z


class Unit(db.Model):
    """
    One physically trackable item, identified by serial number.

    TWO INDEPENDENT STATUS AXES:
    - inventory_status: sale lifecycle (AVAILABLE, RESERVED, SOLD, DELIVERED).
      Written ONLY by lifecycle_service; every write appends a UnitStatusChange.
    - physical_status: user-facing condition/location tag (ORDERED, IN_STORE, ...).
      Purchasing and delivery flows update it; it never drives the sale lifecycle.

    RESERVATION METADATA:
    reserved_for_type/reserved_for_id name the single holder of the unit.
    Invoice reservations have reservation_expiry = NULL (indefinite);
    temporary holds carry an expiry and are released by the sweep.

    Units are never physically deleted (deleted_at marks a soft delete).
    """
    __tablename__ = "units"
    __table_args__ = (
        db.Index("ix_units_holder_status", "reserved_for_type", "reserved_for_id", "inventory_status"),
        db.Index("ix_units_status_expiry", "inventory_status", "reservation_expiry"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    inventory_status = db.Column(db.String(16), nullable=False, default="AVAILABLE", index=True)
    physical_status = db.Column(db.String(32), nullable=False, default="IN_STORE", index=True)

    # Reservation metadata (all NULL unless RESERVED, holder kept after sale for delivery lookup)
    reserved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reserved_by = db.Column(db.String(64), nullable=True)
    reserved_for_type = db.Column(db.String(32), nullable=True)
    reserved_for_id = db.Column(db.String(64), nullable=True)
    reservation_expiry = db.Column(db.DateTime(timezone=True), nullable=True)

    # Authoritative storage in cents
    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    outbound_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Handover (delivery) details
    handover_at = db.Column(db.DateTime(timezone=True), nullable=True)
    handover_by = db.Column(db.String(64), nullable=True)
    handover_to = db.Column(db.String(255), nullable=True)
    handover_to_id_number = db.Column(db.String(64), nullable=True)
    handover_to_phone = db.Column(db.String(32), nullable=True)
    handover_details = db.Column(db.Text, nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Unit id={self.id} serial={self.serial_number!r} status={self.inventory_status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "description": self.description,
            "inventory_status": self.inventory_status,
            "physical_status": self.physical_status,
            "reserved_at": to_utc_z(self.reserved_at),
            "reserved_by": self.reserved_by,
            "reserved_for_type": self.reserved_for_type,
            "reserved_for_id": self.reserved_for_id,
            "reservation_expiry": to_utc_z(self.reservation_expiry),
            "purchase_price_cents": self.purchase_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "received_at": to_utc_z(self.received_at),
            "outbound_at": to_utc_z(self.outbound_at),
            "handover_at": to_utc_z(self.handover_at),
            "handover_by": self.handover_by,
            "handover_to": self.handover_to,
            "handover_to_id_number": self.handover_to_id_number,
            "handover_to_phone": self.handover_to_phone,
            "handover_details": self.handover_details,
            "deleted_at": to_utc_z(self.deleted_at),
            "version_id": self.version_id,
        }


class UnitStatusChange(db.Model):
    """
    Append-only audit trail of inventory_status transitions.

    Written in the same transaction as the unit update it records.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "unit_status_changes"
    __table_args__ = (
        db.Index("ix_unit_status_changes_unit_changed", "unit_id", "changed_at"),
        db.Index("ix_unit_status_changes_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)

    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    changed_by = db.Column(db.String(64), nullable=False)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    notes = db.Column(db.String(255), nullable=True)

    unit = db.relationship("Unit", backref=db.backref("status_changes", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "changed_by": self.changed_by,
            "changed_at": to_utc_z(self.changed_at),
            "notes": self.notes,
        }


class InventoryMovement(db.Model):
    """
    Physical-axis movement of a unit (receipt, transfer, adjustment).

    Distinct from UnitStatusChange: receiving goods is not a sale transition.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_type_created", "movement_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False)  # PURCHASE_RECEIPT, SALE, ADJUSTMENT, TRANSFER
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    reference = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    actor = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    unit = db.relationship("Unit", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "movement_type": self.movement_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "quantity": self.quantity,
            "reference": self.reference,
            "notes": self.notes,
            "actor": self.actor,
            "created_at": to_utc_z(self.created_at),
        }
