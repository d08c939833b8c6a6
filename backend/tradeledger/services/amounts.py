# Overview: Pure money arithmetic for invoices, installments and ledgers (no database access).

"""
Money arithmetic

All amounts are integer cents. Anything fractional (percent discounts, tax,
installment splits, late charges) is computed with Decimal and rounded
half-up to the cent before it is used in the next step, so totals computed
here and totals recomputed later always agree.
"""

from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable

from ..validation import ValidationError


DISCOUNT_FIXED = "FIXED"
DISCOUNT_PERCENTAGE = "PERCENTAGE"

_CENT = Decimal("1")
_HUNDRED = Decimal("100")
_BPS = Decimal("10000")


def _decimal(value, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be numeric")


def round_half_up(value: Decimal) -> int:
    """Round a Decimal amount of cents to an int, halves away from zero."""
    return int(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def to_cents(amount) -> int:
    """12.345 / "12.345" / 12 -> 1235 / 1235 / 1200 (half-up)."""
    if amount is None:
        raise ValidationError("amount is required")
    return round_half_up(_decimal(amount, "amount") * _HUNDRED)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / _HUNDRED).quantize(Decimal("0.01"))


def line_total_cents(quantity: int, unit_price_cents: int) -> int:
    return int(quantity) * int(unit_price_cents)


def discount_cents(subtotal_cents: int, value, discount_type: str | None) -> int:
    """
    FIXED: value is cents, silently capped at the subtotal.
    PERCENTAGE: subtotal * value / 100, half-up.
    Unknown or empty type means no discount.
    """
    if not discount_type or value in (None, ""):
        return 0
    kind = str(discount_type).upper()
    amount = _decimal(value, "discount_value")
    if amount < 0:
        raise ValidationError("discount_value must be >= 0")
    if kind == DISCOUNT_FIXED:
        return min(round_half_up(amount), subtotal_cents)
    if kind == DISCOUNT_PERCENTAGE:
        return round_half_up(Decimal(subtotal_cents) * amount / _HUNDRED)
    return 0


def tax_cents(taxable_cents: int, rate) -> int:
    if rate in (None, ""):
        return 0
    pct = _decimal(rate, "tax_rate")
    if pct < 0:
        raise ValidationError("tax_rate must be >= 0")
    return round_half_up(Decimal(taxable_cents) * pct / _HUNDRED)


def compute_invoice_totals(
    lines: Iterable[dict],
    discount_type: str | None = None,
    discount_value=None,
    tax_rate=None,
) -> dict:
    """
    lines: [{"quantity": int, "unit_price_cents": int}, ...]

    Each step is rounded before the next one:
    subtotal -> discount -> taxable -> tax -> total.
    """
    subtotal = sum(line_total_cents(l["quantity"], l["unit_price_cents"]) for l in lines)
    discount = discount_cents(subtotal, discount_value, discount_type)
    taxable = subtotal - discount
    tax = tax_cents(taxable, tax_rate)
    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "taxable_cents": taxable,
        "tax_cents": tax,
        "total_cents": taxable + tax,
    }


def split_installments(remaining_cents: int, count: int) -> list[int]:
    """
    Split remaining_cents into count installments.

    base = round_half_up(remaining / count) for the first count-1,
    the last one absorbs the difference so the sum is exact.
    """
    if count < 1:
        raise ValidationError("number_of_installments must be at least 1")
    base = round_half_up(Decimal(remaining_cents) / Decimal(count))
    last = remaining_cents - base * (count - 1)
    return [base] * (count - 1) + [last]


def late_charge_cents(amount_cents: int, rate_bps: int, days_late: int) -> int:
    """amount * rate * ceil(days_late / 30); every started 30-day period counts."""
    if days_late <= 0 or rate_bps <= 0:
        return 0
    periods = math.ceil(days_late / 30)
    return round_half_up(Decimal(amount_cents) * Decimal(rate_bps) / _BPS * periods)


def next_balance(previous_cents: int, debit_cents: int, credit_cents: int) -> int:
    return previous_cents + debit_cents - credit_cents


def replay_balances(opening_cents: int, entries: Iterable) -> list[int]:
    """
    Running balances reproduced from debit/credit deltas.

    entries may be ledger rows or dicts carrying debit_cents/credit_cents.
    """
    balances = []
    balance = opening_cents
    for entry in entries:
        if isinstance(entry, dict):
            debit, credit = entry.get("debit_cents", 0), entry.get("credit_cents", 0)
        else:
            debit, credit = entry.debit_cents, entry.credit_cents
        balance = next_balance(balance, debit, credit)
        balances.append(balance)
    return balances
