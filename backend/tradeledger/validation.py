from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable

from .time_utils import parse_iso_date, parse_iso_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate serial number)."""


class NotFoundError(ValueError):
    """404-level: a referenced record does not exist."""


def require_actor(actor: Any) -> str:
    """
    Every mutating call carries the authenticated actor identifier.

    The identifier is opaque here; it only has to be present.
    """
    if actor is None:
        raise ValidationError("actor is required")
    value = str(actor).strip()
    if not value:
        raise ValidationError("actor is required")
    return value


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    """
    Strict integer-cents validation.

    Rejects floats, booleans, decimal strings and scientific notation so that
    amounts are never silently truncated.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer amount in cents")

    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer amount in cents")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer amount in cents")
    else:
        raise ValidationError(f"{field} must be an integer amount in cents")

    if cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not allow_zero and cents == 0:
        raise ValidationError(f"{field} must be > 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def require_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 1:
        raise ValidationError(f"{field} must be at least 1")
    return value


def require_id_list(values: Any, field: str) -> list[int]:
    """Validates a non-empty list of integer ids and returns it de-duplicated and sorted."""
    if not isinstance(values, (list, tuple, set)) or not values:
        raise ValidationError(f"{field} must be a non-empty list of ids")
    ids: set[int] = set()
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field} must contain integer ids")
        ids.add(value)
    return sorted(ids)


def require_fields(payload: dict | None, fields: Iterable[str]) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


def require_iso_date(value: Any, field: str) -> date | None:
    """Parse an optional ISO date; None/"" -> None, anything unparseable -> ValidationError."""
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def require_iso_datetime(value: Any, field: str) -> datetime | None:
    """Like require_iso_date but keeps the time; datetimes pass through unchanged."""
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO datetime")
