"""
Order Lifecycle Service.

State machine of a POS order:

    DRAFT -> PARTIALLY_PAID -> SETTLED -> RETURNED | PARTIALLY_RETURNED
    DRAFT | PARTIALLY_PAID -> CANCELLED

plus the terminal-side operations around it: freezing carts, loading a
reservation back into the cart, applying vouchers and splitting a payment
across methods.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

from cassa.collaborators import OrderItemRecord, OrderRecord, PaymentRecord, VoucherRecord
from cassa.exceptions import (
    BusinessLogicError, FrozenOrderLimitError, InvalidTransitionError, ValidationError
)
from cassa.models import OrderStatus, PaymentStatus, VoucherStatus
from cassa.services.cart import AppliedVoucher, Cart, CartLine, FrozenOrder, Terminal
from cassa.services.money import (
    ZERO, PARTIAL_PAYMENT_THRESHOLD, PAYMENT_RECONCILIATION_TOLERANCE,
    to_decimal, round2, round_percent, amounts_match
)

logger = logging.getLogger(__name__)

DEFAULT_FROZEN_ORDERS_LIMIT = 3

TRANSITIONS = {
    OrderStatus.DRAFT: {OrderStatus.PARTIALLY_PAID, OrderStatus.SETTLED, OrderStatus.CANCELLED},
    OrderStatus.PARTIALLY_PAID: {OrderStatus.PARTIALLY_PAID, OrderStatus.SETTLED, OrderStatus.CANCELLED},
    OrderStatus.SETTLED: {OrderStatus.RETURNED, OrderStatus.PARTIALLY_RETURNED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.RETURNED: set(),
    OrderStatus.PARTIALLY_RETURNED: set(),
    OrderStatus.CANCELLED_PAYMENT_VOID: set(),
}

CANCELLABLE = {OrderStatus.DRAFT, OrderStatus.PARTIALLY_PAID}
RETURNABLE = {OrderStatus.SETTLED}


# Transitions

def can_transition(current, target) -> bool:
    try:
        current, target = OrderStatus(current), OrderStatus(target)
    except ValueError:
        return False
    return target in TRANSITIONS[current]


def assert_transition(current, target) -> None:
    """
    Reject a status change that the lifecycle graph does not allow.

    Raises:
        InvalidTransitionError: If current -> target is not an edge of the graph
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(_as_status(current), _as_status(target))


def _as_status(value):
    try:
        return OrderStatus(value)
    except ValueError:
        return value


# Payment status rules

def is_partial_payment(selected, remaining) -> bool:
    """Checkout is partial when the selected amount leaves more than 0.02 to pay."""
    selected, remaining = to_decimal(selected), to_decimal(remaining)
    return selected < remaining and (remaining - selected) > PARTIAL_PAYMENT_THRESHOLD


def resolve_checkout_status(collected, final_total, is_partial: Optional[bool] = None) -> OrderStatus:
    """
    Target status of a new order at checkout.

    Args:
        collected: Amount collected in this checkout (payments plus vouchers)
        final_total: Order final total
        is_partial: Operator's partial flag; derived from the amounts when None

    Returns:
        SETTLED when the order is paid or not flagged partial, else PARTIALLY_PAID
    """
    collected, final_total = to_decimal(collected), to_decimal(final_total)
    if is_partial is None:
        is_partial = is_partial_payment(collected, final_total)
    if collected >= final_total or not is_partial:
        return OrderStatus.SETTLED
    return OrderStatus.PARTIALLY_PAID


def is_reservation_settled(previous_payments, current_payment, final_total) -> bool:
    collected = to_decimal(previous_payments) + to_decimal(current_payment)
    final_total = to_decimal(final_total)
    return collected >= final_total or amounts_match(collected, final_total, PAYMENT_RECONCILIATION_TOLERANCE)


def resolve_reservation_status(previous_payments, current_payment, final_total) -> OrderStatus:
    """Status of a reopened reservation after another payment, on cumulative amounts."""
    if is_reservation_settled(previous_payments, current_payment, final_total):
        return OrderStatus.SETTLED
    return OrderStatus.PARTIALLY_PAID


# Cancellation and returns

def assert_cancellable(status_id) -> None:
    if _as_status(status_id) not in CANCELLABLE:
        raise InvalidTransitionError(_as_status(status_id), OrderStatus.CANCELLED)


def assert_returnable(status_id) -> None:
    if _as_status(status_id) not in RETURNABLE:
        raise InvalidTransitionError(_as_status(status_id), OrderStatus.RETURNED)


def validate_return_quantities(items: Iterable[OrderItemRecord],
                               return_quantities: Mapping[int, int]) -> Dict[int, int]:
    """
    Check a return request against the order items.

    Args:
        items: Live items of the order
        return_quantities: item_id -> units to return

    Returns:
        item_id -> units to return, without zero entries

    Raises:
        ValidationError: Unknown item, negative or excessive quantity, or nothing to return
    """
    by_id = {item.id: item for item in items}
    cleaned = {}
    for item_id, qty in return_quantities.items():
        item = by_id.get(int(item_id))
        if item is None:
            raise ValidationError(f'Riga ordine {item_id} non appartiene all\'ordine.')
        qty = int(qty)
        if qty < 0:
            raise ValidationError('La quantità da rendere non può essere negativa.')
        if qty > item.quantity:
            raise ValidationError(
                f'Quantità da rendere ({qty}) superiore alla quantità venduta ({item.quantity}).'
            )
        if qty:
            cleaned[item.id] = qty

    if not cleaned:
        raise ValidationError('Nessun articolo selezionato per il reso.')
    return cleaned


def is_partial_return(items: Iterable[OrderItemRecord], return_quantities: Mapping[int, int]) -> bool:
    """Partial when fewer units are returned than the order holds in total."""
    ordered = sum(item.quantity for item in items)
    returned = sum(return_quantities.values())
    return returned < ordered


def resolve_return_status(items, return_quantities) -> OrderStatus:
    if is_partial_return(items, return_quantities):
        return OrderStatus.PARTIALLY_RETURNED
    return OrderStatus.RETURNED


# Frozen orders

def freeze_cart(terminal: Terminal, limit: int = DEFAULT_FROZEN_ORDERS_LIMIT) -> FrozenOrder:
    """
    Park the working cart and start a new empty one.

    Raises:
        ValidationError: If the cart is empty
        FrozenOrderLimitError: If `limit` orders are already frozen
    """
    if terminal.cart.is_empty:
        raise ValidationError('Il carrello è vuoto: niente da congelare.')
    if len(terminal.frozen_orders) >= limit:
        raise FrozenOrderLimitError(limit)

    frozen = FrozenOrder(
        id=f"FROZEN-{uuid.uuid4().hex}",
        cart=terminal.cart,
        frozen_at=datetime.now(),
    )
    terminal.frozen_orders.append(frozen)
    terminal.cart = Cart()
    logger.info(f"[FROZEN] Froze order {frozen.cart.order_number} as {frozen.id}")
    return frozen


def unfreeze_cart(terminal: Terminal, frozen_id: str) -> Cart:
    """
    Restore a frozen cart verbatim.

    Raises:
        ValidationError: If the working cart is not empty
        BusinessLogicError: If no frozen order has that id
    """
    if not terminal.cart.is_empty:
        raise ValidationError('Svuota o congela il carrello corrente prima di riprendere un ordine congelato.')

    for frozen in terminal.frozen_orders:
        if frozen.id == frozen_id:
            terminal.frozen_orders.remove(frozen)
            terminal.cart = frozen.cart
            logger.info(f"[FROZEN] Restored {frozen_id}")
            return terminal.cart

    raise BusinessLogicError(f'Ordine congelato {frozen_id} non trovato.', status_code=404)


# Reservations

def load_reservation(cart: Cart, order: OrderRecord, items: Iterable[OrderItemRecord],
                     payments: Iterable[PaymentRecord]) -> Cart:
    """
    Load an open reservation into an empty cart as read-only lines.

    Completed payments become the previous payments; their sum is the deposit.

    Raises:
        ValidationError: If the cart is not empty
        InvalidTransitionError: If the order can no longer take payments
    """
    if not cart.is_empty:
        raise ValidationError('Il carrello deve essere vuoto per caricare una prenotazione.')
    if not can_transition(order.status_id, OrderStatus.SETTLED):
        raise InvalidTransitionError(_as_status(order.status_id), OrderStatus.SETTLED)

    lines: List[CartLine] = []
    for item in items:
        lines.append(CartLine(
            product_id=item.product_id,
            unit_list_price=item.unit_cost,
            unit_discounts=[round_percent(item.discount)] * item.quantity,
            is_from_reservation=True,
            status_id=order.status_id,
        ))

    previous = [p.amount for p in payments if p.status_id == PaymentStatus.COMPLETED]

    cart.lines = lines
    cart.current_order_id = order.id
    cart.order_number = order.code
    cart.order_date = datetime.now()
    cart.status_id = order.status_id
    cart.previous_payments = previous
    cart.deposit = round2(sum(previous, ZERO))
    logger.info(f"[RESERVATION] Loaded order {order.code} with deposit {cart.deposit}")
    return cart


# Vouchers

def _now_for(reference: datetime) -> datetime:
    if reference.tzinfo is not None:
        return datetime.now(reference.tzinfo)
    return datetime.now()


def apply_voucher(cart: Cart, voucher: VoucherRecord, now: Optional[datetime] = None) -> AppliedVoucher:
    """
    Attach a voucher to the cart; its remaining credit counts as paid.

    Raises:
        ValidationError: Expired, not yet valid, fully used or already applied
    """
    now = now or _now_for(voucher.validity_end_date)
    if any(v.voucher_id == voucher.id for v in cart.applied_vouchers):
        raise ValidationError(f'Buono {voucher.code} già applicato.')
    if voucher.validity_start_date and now < voucher.validity_start_date:
        raise ValidationError(f'Buono {voucher.code} non ancora valido.')
    if voucher.validity_end_date and now > voucher.validity_end_date:
        raise ValidationError(f'Buono {voucher.code} scaduto.')
    if voucher.status_id == VoucherStatus.FULLY_USED or voucher.remaining_amount <= ZERO:
        raise ValidationError(f'Buono {voucher.code} già utilizzato.')

    applied = AppliedVoucher(
        voucher_id=voucher.id,
        code=voucher.code,
        total_amount=voucher.total_amount,
        used_amount=voucher.used_amount,
    )
    cart.applied_vouchers.append(applied)
    return applied


def remove_voucher(cart: Cart, voucher_id: int) -> None:
    cart.applied_vouchers = [v for v in cart.applied_vouchers if v.voucher_id != voucher_id]


# Payment split

def split_payment_amounts(remaining, methods: List[int],
                          edited_method: Optional[int] = None, edited_amount=None) -> Dict[int, Decimal]:
    """
    Distribute the amount to pay across the selected payment methods.

    One method takes the whole remaining amount, two methods split it
    evenly. When the operator types an amount on one of two methods the
    other one gets the difference.

    Raises:
        ValidationError: With no method, more than two, or an edited amount out of range
    """
    remaining = round2(max(to_decimal(remaining), ZERO))
    if not methods or len(methods) > 2:
        raise ValidationError('Seleziona uno o due metodi di pagamento.')

    if len(methods) == 1:
        return {methods[0]: remaining}

    first, second = methods
    if edited_method is not None:
        if edited_method not in methods:
            raise ValidationError(f'Metodo di pagamento {edited_method} non selezionato.')
        amount = round2(to_decimal(edited_amount))
        if amount < ZERO or amount > remaining:
            raise ValidationError('Importo non valido per il metodo di pagamento.')
        other = second if edited_method == first else first
        return {edited_method: amount, other: remaining - amount}

    half = round2(remaining / 2)
    return {first: half, second: remaining - half}
