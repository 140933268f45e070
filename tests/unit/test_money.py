"""
Unit tests for money and discount math.
"""

from decimal import Decimal

import pytest

from cassa.exceptions import ValidationError
from cassa.services.money import (
    to_decimal, round2, round_percent, discounted_unit_price, discount_from_prices,
    vat_from_gross, amount_due, amounts_match,
    ROUNDING_TOLERANCE, PAYMENT_RECONCILIATION_TOLERANCE, PARTIAL_PAYMENT_THRESHOLD
)


class TestRounding:
    """Tests for cent and percentage rounding."""

    def test_round2_half_up(self):
        assert round2('0.125') == Decimal('0.13')
        assert round2('2.675') == Decimal('2.68')
        assert round2('1.004') == Decimal('1.00')

    def test_round2_accepts_floats_without_binary_artefacts(self):
        assert round2(1.005) == Decimal('1.01')

    def test_round_percent_keeps_fifteen_places(self):
        value = round_percent(Decimal(70) / Decimal(3))
        assert value == Decimal('23.333333333333333')


class TestDiscountMath:
    """Tests for price/discount conversions."""

    def test_discounted_unit_price(self):
        assert discounted_unit_price('10.00', '10') == Decimal('9.00')
        assert discounted_unit_price('10.00', '100') == Decimal('0')

    def test_discount_from_prices(self):
        assert discount_from_prices('30.00', '27.00') == Decimal('10')

    def test_same_cent_yields_zero(self):
        assert discount_from_prices('10.004', '10.001') == Decimal('0')

    def test_zero_original_yields_zero(self):
        assert discount_from_prices('0', '5') == Decimal('0')

    def test_clamped_to_range(self):
        assert discount_from_prices('10', '-5') == Decimal('100')
        assert discount_from_prices('10', '15') == Decimal('0')

    def test_vat_from_gross(self):
        assert round2(vat_from_gross('122.00')) == Decimal('22.00')
        assert round2(vat_from_gross('30.00')) == Decimal('5.41')


class TestTolerances:
    """The three tolerances are distinct values."""

    def test_named_constants(self):
        assert ROUNDING_TOLERANCE == Decimal('0.05')
        assert PAYMENT_RECONCILIATION_TOLERANCE == Decimal('0.01')
        assert PARTIAL_PAYMENT_THRESHOLD == Decimal('0.02')

    def test_amount_due_rounds_small_shortfall_to_zero(self):
        assert amount_due('100.00', '99.96') == Decimal('0')
        assert amount_due('100.00', '99.95') == Decimal('0')
        assert amount_due('100.00', '99.90') == Decimal('0.10')

    def test_amount_due_never_negative(self):
        assert amount_due('100.00', '120.00') == Decimal('0')

    def test_amounts_match(self):
        assert amounts_match('100.00', '99.99', PAYMENT_RECONCILIATION_TOLERANCE)
        assert not amounts_match('100.00', '99.97', PAYMENT_RECONCILIATION_TOLERANCE)


class TestToDecimal:
    """Tests for numeric input conversion."""

    def test_float_without_artefacts(self):
        assert to_decimal(0.1) == Decimal('0.1')

    def test_none_is_zero(self):
        assert to_decimal(None) == Decimal('0')

    @pytest.mark.parametrize('value', ['NaN', 'Infinity', '-inf', float('nan'), Decimal('sNaN'), 'dieci'])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value)
