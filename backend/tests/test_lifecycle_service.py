"""
Unit lifecycle tests.

Covers the transition table, all-or-nothing reservation, per-unit conflict
reporting, sale and delivery, temporary holds and their expiry, and the
status-change audit trail.
"""

from datetime import timedelta

import pytest

from tradeledger.models import Unit, UnitStatusChange
from tradeledger.services import lifecycle_service
from tradeledger.services.lifecycle_service import (
    InvalidTransitionError,
    NoSoldItemsError,
    UnitNotAvailableError,
    UnitNotFoundError,
)
from tradeledger.time_utils import utcnow
from tradeledger.validation import ValidationError


ACTOR = "tester"


def _reload(db_session, unit_id):
    db_session.expire_all()
    return db_session.query(Unit).filter_by(id=unit_id).one()


@pytest.mark.parametrize("from_status,to_status", [
    ("AVAILABLE", "RESERVED"),
    ("AVAILABLE", "SOLD"),
    ("RESERVED", "AVAILABLE"),
    ("RESERVED", "SOLD"),
    ("SOLD", "DELIVERED"),
])
def test_allowed_transitions(from_status, to_status):
    assert lifecycle_service.can_transition(from_status, to_status)
    lifecycle_service.validate_transition(from_status, to_status)


@pytest.mark.parametrize("from_status,to_status", [
    ("DELIVERED", "AVAILABLE"),
    ("DELIVERED", "SOLD"),
    ("SOLD", "AVAILABLE"),
    ("SOLD", "RESERVED"),
    ("AVAILABLE", "DELIVERED"),
    ("RESERVED", "DELIVERED"),
])
def test_forbidden_transitions_name_the_pair(from_status, to_status):
    with pytest.raises(InvalidTransitionError) as exc_info:
        lifecycle_service.validate_transition(from_status, to_status)
    assert exc_info.value.from_status == from_status
    assert exc_info.value.to_status == to_status


def test_reserve_units_stamps_holder_and_audit(db_session, make_unit):
    u1, u2 = make_unit(), make_unit()

    result = lifecycle_service.reserve_units(db_session, [u2.id, u1.id], 7, ACTOR)

    assert result.count == 2
    assert [u.id for u in result.units] == sorted([u1.id, u2.id])
    for unit_id in (u1.id, u2.id):
        unit = _reload(db_session, unit_id)
        assert unit.inventory_status == "RESERVED"
        assert unit.reserved_for_type == "INVOICE"
        assert unit.reserved_for_id == "7"
        assert unit.reserved_by == ACTOR
        assert unit.reservation_expiry is None

    changes = db_session.query(UnitStatusChange).filter_by(reason="INVOICE_CREATED").all()
    assert len(changes) == 2
    assert {c.from_status for c in changes} == {"AVAILABLE"}
    assert {c.reference_id for c in changes} == {"7"}


def test_reserve_is_all_or_nothing(db_session, make_unit):
    free, taken = make_unit(), make_unit()
    lifecycle_service.reserve_units(db_session, [taken.id], 1, ACTOR)

    with pytest.raises(UnitNotAvailableError) as exc_info:
        lifecycle_service.reserve_units(db_session, [free.id, taken.id], 2, ACTOR)

    conflicts = exc_info.value.conflicts
    assert len(conflicts) == 1
    assert conflicts[0]["unit_id"] == taken.id
    assert conflicts[0]["current_status"] == "RESERVED"
    assert conflicts[0]["reserved_for_id"] == "1"
    assert conflicts[0]["serial_number"] == taken.serial_number

    assert _reload(db_session, free.id).inventory_status == "AVAILABLE"
    assert db_session.query(UnitStatusChange).filter_by(unit_id=free.id).count() == 0


def test_reserve_reports_missing_units(db_session, make_unit):
    unit = make_unit()

    with pytest.raises(UnitNotFoundError) as exc_info:
        lifecycle_service.reserve_units(db_session, [unit.id, 999999], 3, ACTOR)

    assert exc_info.value.missing_ids == [999999]
    assert _reload(db_session, unit.id).inventory_status == "AVAILABLE"


def test_reserve_skips_soft_deleted_units(db_session, make_unit):
    from tradeledger.services import inventory_service

    unit = make_unit()
    inventory_service.soft_delete_unit(db_session, unit.id, ACTOR)

    with pytest.raises(UnitNotFoundError):
        lifecycle_service.reserve_units(db_session, [unit.id], 3, ACTOR)


def test_reserve_validates_input(db_session, make_unit):
    unit = make_unit()
    with pytest.raises(ValidationError):
        lifecycle_service.reserve_units(db_session, [], 1, ACTOR)
    with pytest.raises(ValidationError):
        lifecycle_service.reserve_units(db_session, [unit.id], 1, "  ")
    with pytest.raises(ValidationError):
        lifecycle_service.reserve_units(db_session, ["x"], 1, ACTOR)


def test_release_returns_units_and_clears_metadata(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.reserve_units(db_session, [unit.id], 11, ACTOR)

    result = lifecycle_service.release_units(db_session, 11, ACTOR)

    assert result.count == 1
    unit = _reload(db_session, unit.id)
    assert unit.inventory_status == "AVAILABLE"
    assert unit.reserved_for_id is None
    assert unit.reserved_at is None
    assert result.status_changes[0].reason == "INVOICE_CANCELLED"


def test_release_with_nothing_reserved_is_zero_count(db_session):
    result = lifecycle_service.release_units(db_session, 424242, ACTOR)
    assert result.count == 0


def test_mark_sold_keeps_holder_and_is_idempotent(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.reserve_units(db_session, [unit.id], 21, ACTOR)

    first = lifecycle_service.mark_units_sold(db_session, 21, ACTOR)
    second = lifecycle_service.mark_units_sold(db_session, 21, ACTOR)

    assert first.count == 1
    assert second.count == 0
    unit = _reload(db_session, unit.id)
    assert unit.inventory_status == "SOLD"
    assert unit.reserved_for_id == "21"
    assert unit.outbound_at is not None


def test_deliver_records_handover(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.reserve_units(db_session, [unit.id], 31, ACTOR)
    lifecycle_service.mark_units_sold(db_session, 31, ACTOR)

    result = lifecycle_service.mark_units_delivered(
        db_session, 31, ACTOR,
        {"handover_to": "John Doe", "handover_to_phone": "555-0199", "handover_at": "2024-03-01T10:00:00Z"},
    )

    assert result.count == 1
    unit = _reload(db_session, unit.id)
    assert unit.inventory_status == "DELIVERED"
    assert unit.physical_status == "DELIVERED"
    assert unit.handover_to == "John Doe"
    assert unit.handover_by == ACTOR
    assert unit.handover_at.year == 2024


def test_deliver_without_sold_units_fails(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.reserve_units(db_session, [unit.id], 41, ACTOR)

    with pytest.raises(NoSoldItemsError):
        lifecycle_service.mark_units_delivered(db_session, 41, ACTOR)

    assert _reload(db_session, unit.id).inventory_status == "RESERVED"


def test_delivered_units_are_terminal(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.sell_units_directly(db_session, [unit.id], 51, ACTOR)
    lifecycle_service.mark_units_delivered(db_session, 51, ACTOR)

    with pytest.raises(UnitNotAvailableError):
        lifecycle_service.reserve_units(db_session, [unit.id], 52, ACTOR)
    assert lifecycle_service.release_units(db_session, 51, ACTOR).count == 0
    assert _reload(db_session, unit.id).inventory_status == "DELIVERED"


def test_direct_sale_requires_available(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.reserve_units(db_session, [unit.id], 61, ACTOR)

    with pytest.raises(UnitNotAvailableError):
        lifecycle_service.sell_units_directly(db_session, [unit.id], 62, ACTOR)


def test_temporary_hold_expires(db_session, make_unit):
    unit = make_unit()
    hold = lifecycle_service.place_temporary_hold(db_session, [unit.id], ACTOR, minutes=15)

    held = _reload(db_session, unit.id)
    assert held.inventory_status == "RESERVED"
    assert held.reserved_for_type == "HOLD"
    assert held.reserved_for_id == hold.holder_id
    assert held.reservation_expiry is not None

    # Not yet expired
    assert lifecycle_service.expire_reservations(db_session).count == 0

    expired = lifecycle_service.expire_reservations(db_session, utcnow() + timedelta(minutes=16))
    assert expired.count == 1
    assert expired.status_changes[0].reason == "SYSTEM_CLEANUP"
    assert expired.status_changes[0].changed_by == "system"
    assert _reload(db_session, unit.id).inventory_status == "AVAILABLE"


def test_invoice_reservations_never_expire(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.reserve_units(db_session, [unit.id], 71, ACTOR)

    result = lifecycle_service.expire_reservations(db_session, utcnow() + timedelta(days=365))

    assert result.count == 0
    assert _reload(db_session, unit.id).inventory_status == "RESERVED"


def test_release_hold(db_session, make_unit):
    unit = make_unit()
    hold = lifecycle_service.place_temporary_hold(db_session, [unit.id], ACTOR)

    result = lifecycle_service.release_hold(db_session, hold.holder_id, ACTOR)

    assert result.count == 1
    assert _reload(db_session, unit.id).inventory_status == "AVAILABLE"


def test_status_history_is_ordered(db_session, make_unit):
    unit = make_unit()
    lifecycle_service.reserve_units(db_session, [unit.id], 81, ACTOR)
    lifecycle_service.mark_units_sold(db_session, 81, ACTOR)
    lifecycle_service.mark_units_delivered(db_session, 81, ACTOR)

    history = lifecycle_service.get_unit_status_history(db_session, unit.id)

    assert [(h.from_status, h.to_status) for h in history] == [
        ("AVAILABLE", "RESERVED"),
        ("RESERVED", "SOLD"),
        ("SOLD", "DELIVERED"),
    ]


def test_status_history_unknown_unit(db_session):
    with pytest.raises(UnitNotFoundError):
        lifecycle_service.get_unit_status_history(db_session, 999999)


def test_invoice_inventory_status_summary(db_session, make_unit):
    u1, u2 = make_unit(), make_unit()
    lifecycle_service.reserve_units(db_session, [u1.id, u2.id], 91, ACTOR)

    status = lifecycle_service.get_invoice_inventory_status(db_session, 91)

    assert status["total_units"] == 2
    assert status["status_summary"] == {"RESERVED": 2}
    assert all(row["last_status_change"] for row in status["units"])
