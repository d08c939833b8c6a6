"""
Money arithmetic tests.

Covers half-up rounding, discount and tax ordering, the installment split
remainder rule, the late-charge formula and running-balance replay.
"""

from decimal import Decimal

import pytest

from tradeledger.services import amounts
from tradeledger.validation import ValidationError


def test_round_half_up_rounds_halves_away_from_zero():
    assert amounts.round_half_up(Decimal("0.5")) == 1
    assert amounts.round_half_up(Decimal("1.5")) == 2
    assert amounts.round_half_up(Decimal("2.5")) == 3
    assert amounts.round_half_up(Decimal("2.4999")) == 2


def test_to_cents_accepts_strings_and_numbers():
    assert amounts.to_cents("12.345") == 1235
    assert amounts.to_cents(12) == 1200
    assert amounts.to_cents("0.01") == 1
    assert str(amounts.from_cents(1235)) == "12.35"


def test_to_cents_rejects_garbage():
    with pytest.raises(ValidationError):
        amounts.to_cents("abc")
    with pytest.raises(ValidationError):
        amounts.to_cents(None)


def test_fixed_discount_is_capped_at_subtotal():
    assert amounts.discount_cents(10000, 2500, "FIXED") == 2500
    assert amounts.discount_cents(10000, 25000, "FIXED") == 10000


def test_percentage_discount_rounds_half_up():
    # 10% of 12345 = 1234.5 -> 1235
    assert amounts.discount_cents(12345, "10", "PERCENTAGE") == 1235


def test_unknown_discount_type_means_no_discount():
    assert amounts.discount_cents(10000, 50, "BOGUS") == 0
    assert amounts.discount_cents(10000, None, "FIXED") == 0
    assert amounts.discount_cents(10000, 50, None) == 0


def test_invoice_totals_apply_discount_before_tax():
    lines = [
        {"quantity": 1, "unit_price_cents": 10000},
        {"quantity": 2, "unit_price_cents": 2550},
    ]
    totals = amounts.compute_invoice_totals(lines, "PERCENTAGE", "10", "7.5")

    assert totals["subtotal_cents"] == 15100
    assert totals["discount_cents"] == 1510
    assert totals["taxable_cents"] == 13590
    # 7.5% of 13590 = 1019.25 -> 1019
    assert totals["tax_cents"] == 1019
    assert totals["total_cents"] == 14609


def test_negative_tax_rate_rejected():
    with pytest.raises(ValidationError):
        amounts.tax_cents(10000, "-1")


def test_split_last_installment_absorbs_remainder():
    split = amounts.split_installments(1_000_000, 6)

    assert split == [166667, 166667, 166667, 166667, 166667, 166665]
    assert sum(split) == 1_000_000


def test_split_remainder_can_be_positive():
    split = amounts.split_installments(100000, 3)

    assert split == [33333, 33333, 33334]
    assert sum(split) == 100000


def test_split_single_installment_takes_everything():
    assert amounts.split_installments(4321, 1) == [4321]


def test_split_requires_at_least_one_installment():
    with pytest.raises(ValidationError):
        amounts.split_installments(1000, 0)


def test_late_charge_counts_started_months():
    # 2% of 10000 = 200 per started 30-day period
    assert amounts.late_charge_cents(10000, 200, 0) == 0
    assert amounts.late_charge_cents(10000, 200, 1) == 200
    assert amounts.late_charge_cents(10000, 200, 30) == 200
    assert amounts.late_charge_cents(10000, 200, 31) == 400
    assert amounts.late_charge_cents(10000, 0, 90) == 0


def test_replay_balances_from_rows_or_dicts():
    entries = [
        {"debit_cents": 5000, "credit_cents": 0},
        {"debit_cents": 0, "credit_cents": 1500},
        {"debit_cents": 0, "credit_cents": 3500},
    ]
    assert amounts.replay_balances(0, entries) == [5000, 3500, 0]
    assert amounts.replay_balances(100, entries[:1]) == [5100]
