"""
Money and discount math.

Pure helpers shared by the cart, promotions and the order lifecycle.
All amounts are Decimal; percentages are kept at 15 decimal places and only
rounded to cents at display/persist boundaries.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from cassa.exceptions import ValidationError

Number = Union[Decimal, int, float, str]

ZERO = Decimal('0')
HUNDRED = Decimal('100')
CENT = Decimal('0.01')
PERCENT_PRECISION = Decimal('1e-15')

VAT_RATE = Decimal('1.22')

# A due amount whose magnitude is within this is shown (and treated) as fully paid.
ROUNDING_TOLERANCE = Decimal('0.05')
# Completion check when a reservation collects further payments.
PAYMENT_RECONCILIATION_TOLERANCE = Decimal('0.01')
# Below this shortfall a checkout is not considered a partial payment.
PARTIAL_PAYMENT_THRESHOLD = Decimal('0.02')


def to_decimal(value: Number) -> Decimal:
    """
    Convert any numeric input to Decimal without float artefacts.

    Raises:
        ValidationError: If the value is not a finite number (NaN, Infinity, text)
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"Valore numerico non valido: {value!r}")
    if not value.is_finite():
        raise ValidationError(f"Valore numerico non valido: {value}")
    return value


def round2(value: Number) -> Decimal:
    """Round half-up to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Number) -> Decimal:
    """Keep a percentage at 15 decimal places."""
    return to_decimal(value).quantize(PERCENT_PRECISION, rounding=ROUND_HALF_UP)


def clamp_percent(value: Number) -> Decimal:
    value = to_decimal(value)
    if value < ZERO:
        return ZERO
    if value > HUNDRED:
        return HUNDRED
    return value


def discounted_unit_price(list_price: Number, discount_percent: Number) -> Decimal:
    """Unit price after a percentage discount (unrounded)."""
    return to_decimal(list_price) * (1 - to_decimal(discount_percent) / HUNDRED)


def discount_from_prices(original: Number, discounted: Number) -> Decimal:
    """
    Percentage that turns `original` into `discounted`.

    Returns 0 when both round to the same cent or when original is 0;
    otherwise the percentage clamped to [0, 100] at 15 decimal places.
    """
    original = to_decimal(original)
    discounted = to_decimal(discounted)
    if round2(original) == round2(discounted) or original == ZERO:
        return ZERO
    return round_percent(clamp_percent((original - discounted) / original * HUNDRED))


def vat_from_gross(amount: Number) -> Decimal:
    """VAT contained in a VAT-inclusive amount (22%)."""
    amount = to_decimal(amount)
    return amount - amount / VAT_RATE


def amounts_match(a: Number, b: Number, tolerance: Decimal) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= tolerance


def amount_due(total: Number, paid: Number) -> Decimal:
    """
    Remaining amount to pay, never negative.

    Shortfalls within ROUNDING_TOLERANCE collapse to zero.
    """
    remaining = to_decimal(total) - to_decimal(paid)
    if remaining < ZERO:
        remaining = ZERO
    if abs(remaining) <= ROUNDING_TOLERANCE:
        return ZERO
    return remaining
