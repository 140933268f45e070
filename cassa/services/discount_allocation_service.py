"""
Discount Allocation Service.

Distributes discount percentages across the units of a cart so that unit,
row and order totals stay consistent after every edit:
- Row discount (uniform overwrite or proportional rescale)
- Single unit discount
- Typed row total
- Typed order total / order discount

Every entry point validates its input before touching the line and builds
the new unit vector aside, so a rejected edit never leaves a line half
updated.
"""
import logging
from decimal import Decimal
from typing import List

from cassa.exceptions import ValidationError
from cassa.services.cart import Cart, CartLine
from cassa.services.money import (
    ZERO, HUNDRED,
    to_decimal, round_percent, clamp_percent, discount_from_prices
)

logger = logging.getLogger(__name__)

# Residual discount amount left unallocated after the 100% cap.
ALLOCATION_TOLERANCE = Decimal('0.01')


def _validate_percent(value) -> Decimal:
    value = to_decimal(value)
    if value < ZERO or value > HUNDRED:
        raise ValidationError(f'Lo sconto deve essere compreso tra 0 e 100 (ricevuto {value}).')
    return value


def _ensure_editable(line: CartLine) -> None:
    if line.is_from_reservation:
        raise ValidationError('Le righe di una prenotazione sono in sola lettura.')


def _is_uniform(discounts: List[Decimal]) -> bool:
    return len(set(discounts)) <= 1


def _rescaled(line: CartLine, target_percent: Decimal) -> List[Decimal]:
    """
    Unit discounts giving the line an average of `target_percent`.

    Uniform lines are overwritten; hand-edited lines keep their proportions.
    """
    current_amount = line.discount_amount
    if _is_uniform(line.unit_discounts) or current_amount == ZERO:
        return [round_percent(target_percent)] * line.quantity

    target_amount = line.base_total * target_percent / HUNDRED
    scale_factor = target_amount / current_amount
    return [round_percent(clamp_percent(d * scale_factor)) for d in line.unit_discounts]


def apply_row_discount(line: CartLine, new_percent) -> CartLine:
    """Set the row-level discount of a line."""
    _ensure_editable(line)
    new_percent = _validate_percent(new_percent)
    line.unit_discounts = _rescaled(line, new_percent)
    return line


def apply_unit_discount(line: CartLine, unit_index: int, new_percent) -> CartLine:
    """Set the discount of a single unit; row figures follow from the units."""
    _ensure_editable(line)
    new_percent = _validate_percent(new_percent)
    if unit_index < 0 or unit_index >= line.quantity:
        raise ValidationError(f'Unità {unit_index} inesistente (quantità {line.quantity}).')
    discounts = list(line.unit_discounts)
    discounts[unit_index] = round_percent(new_percent)
    line.unit_discounts = discounts
    return line


def apply_row_total(line: CartLine, new_total) -> CartLine:
    """Set the discounted total of a line, deriving the average discount."""
    _ensure_editable(line)
    new_total = to_decimal(new_total)
    if new_total < ZERO:
        raise ValidationError('Il totale non può essere negativo.')
    target_percent = discount_from_prices(line.base_total, new_total)
    line.unit_discounts = _rescaled(line, target_percent)
    return line


def apply_order_total(cart: Cart, new_order_total) -> Cart:
    """
    Spread a typed order total over the editable lines.

    Reservation lines are fixed: their totals are taken off the requested
    amount and they are never modified. With no discount in place the same
    percentage goes on every line; otherwise every unit discount is scaled by
    one global factor and whatever the 100% cap leaves over is pushed onto
    the units that still have room, highest discount first.
    """
    new_order_total = to_decimal(new_order_total)
    if new_order_total < ZERO:
        raise ValidationError('Il totale non può essere negativo.')

    editable = [line for line in cart.lines if not line.is_from_reservation]
    fixed_total = sum((line.row_total for line in cart.lines if line.is_from_reservation), ZERO)
    base_price = sum((line.base_total for line in editable), ZERO)
    if base_price == ZERO:
        return cart

    target_total = min(max(new_order_total - fixed_total, ZERO), base_price)
    target_discount_amount = base_price - target_total
    current_discount_amount = sum((line.discount_amount for line in editable), ZERO)

    if current_discount_amount == ZERO:
        target_percent = round_percent(target_discount_amount / base_price * HUNDRED)
        for line in editable:
            line.unit_discounts = [target_percent] * line.quantity
        return cart

    scale_factor = target_discount_amount / current_discount_amount
    # (line, unit index, initial discount, new discount)
    units = []
    for line in editable:
        for index, initial in enumerate(line.unit_discounts):
            units.append([line, index, initial, clamp_percent(initial * scale_factor)])

    remaining = target_discount_amount - sum(
        (u[0].unit_list_price * u[3] / HUNDRED for u in units), ZERO
    )
    candidates = sorted(
        (u for u in units if u[0].unit_list_price > ZERO),
        key=lambda u: u[2],
        reverse=True,
    )
    for unit in candidates:
        if abs(remaining) <= ALLOCATION_TOLERANCE:
            break
        line, _, _, discount = unit
        room = HUNDRED - discount
        if room <= ZERO:
            continue
        extra = min(room, remaining / line.unit_list_price * HUNDRED)
        unit[3] = clamp_percent(discount + extra)
        remaining -= line.unit_list_price * (unit[3] - discount) / HUNDRED

    new_vectors = {id(line): list(line.unit_discounts) for line in editable}
    for line, index, _, discount in units:
        new_vectors[id(line)][index] = round_percent(discount)
    for line in editable:
        line.unit_discounts = new_vectors[id(line)]

    logger.debug(f"[DISCOUNT] Order total set to {new_order_total} (scale {scale_factor})")
    return cart


def apply_order_discount(cart: Cart, new_percent) -> Cart:
    """Set the order-level discount percentage."""
    new_percent = _validate_percent(new_percent)
    editable_base = sum((line.base_total for line in cart.lines if not line.is_from_reservation), ZERO)
    fixed_total = sum((line.row_total for line in cart.lines if line.is_from_reservation), ZERO)
    target = editable_base * (1 - new_percent / HUNDRED) + fixed_total
    return apply_order_total(cart, target)
