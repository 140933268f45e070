"""
Checkout Service - turns the working cart into an order.

Two paths:
- New cart: order, unit-exploded items, payments, stock decrement and
  voucher redemption, then the status the lifecycle picks.
- Reopened reservation: new payments on the existing order, settled when
  the cumulative amount reaches the total.

Stock is checked before anything is written. Store calls run as a saga:
stock decrements and payments are compensated when a later call fails.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from itertools import groupby
from typing import Dict, List, Mapping, Optional, Tuple

from cassa.collaborators import OrderBackend
from cassa.exceptions import InsufficientStockError, ValidationError
from cassa.models import OrderStatus, PaymentStatus, StockDirection
from cassa.services.cart import Cart, CartLine, generate_order_number
from cassa.services.money import (
    ZERO, to_decimal, round2, round_percent, discounted_unit_price, vat_from_gross, amount_due
)
from cassa.services.order_lifecycle_service import (
    assert_transition, is_partial_payment, resolve_checkout_status, resolve_reservation_status
)
from cassa.services.saga import Saga

logger = logging.getLogger(__name__)

FINAL_COST_PRECISION = Decimal('0.0001')


@dataclass
class CheckoutResult:
    order_id: int
    code: str
    status: OrderStatus
    final_total: Decimal
    collected: Decimal
    amount_due: Decimal

    def to_dict(self):
        return {
            'order_id': self.order_id,
            'code': self.code,
            'status_id': int(self.status),
            'status': self.status.name,
            'final_total': str(self.final_total),
            'collected': str(self.collected),
            'amount_due': str(self.amount_due),
        }


@dataclass(frozen=True)
class ItemDraft:
    """Units of a cart line sharing the same discount."""
    product_id: int
    quantity: int
    unit_cost: Decimal
    discount: Decimal
    final_cost: Decimal

    @property
    def total(self) -> Decimal:
        return round2(self.final_cost * self.quantity)

    @property
    def tax(self) -> Decimal:
        return round2(vat_from_gross(self.total))


def explode_line(line: CartLine) -> List[ItemDraft]:
    """Group a line's units by discount, keeping the order they appear in."""
    drafts = []
    for discount, units in groupby(round_percent(d) for d in line.unit_discounts):
        drafts.append(ItemDraft(
            product_id=line.product_id,
            quantity=len(list(units)),
            unit_cost=line.unit_list_price,
            discount=discount,
            final_cost=discounted_unit_price(line.unit_list_price, discount).quantize(FINAL_COST_PRECISION),
        ))
    return drafts


def _clean_payments(payments: Mapping[int, object]) -> Dict[int, Decimal]:
    cleaned = {}
    for method_id, amount in payments.items():
        amount = round2(to_decimal(amount))
        if amount < ZERO:
            raise ValidationError('Gli importi dei pagamenti non possono essere negativi.')
        if amount > ZERO:
            cleaned[int(method_id)] = amount
    return cleaned


def _required_stock(cart: Cart) -> Dict[int, int]:
    required: Dict[int, int] = {}
    for line in cart.lines:
        if not line.is_from_reservation:
            required[line.product_id] = required.get(line.product_id, 0) + line.quantity
    return required


def check_stock(backend: OrderBackend, cart: Cart, warehouse_id: int) -> None:
    """
    Raises:
        InsufficientStockError: For the first product without enough stock
    """
    for product_id, qty in _required_stock(cart).items():
        available = backend.get_stock(product_id, warehouse_id)
        if available < qty:
            raise InsufficientStockError(product_id, qty, available)


def _voucher_redemptions(cart: Cart, to_cover: Decimal) -> List[Tuple[int, Decimal]]:
    """Spend applied vouchers in order until `to_cover` is reached."""
    redemptions = []
    left = max(to_cover, ZERO)
    for voucher in cart.applied_vouchers:
        if left <= ZERO:
            break
        amount = min(voucher.remaining, left)
        if amount > ZERO:
            redemptions.append((voucher.voucher_id, amount))
            left -= amount
    return redemptions


def _add_payment_steps(saga: Saga, backend: OrderBackend, state: dict, payments: Dict[int, Decimal]) -> None:
    """One step per payment; rollback voids only the payments this saga created."""
    def record_payment(method_id, amount):
        now = datetime.now()
        payment_id = backend.create_payment(
            state['order_id'], method_id, amount, round2(vat_from_gross(amount)),
            now, now, PaymentStatus.COMPLETED.value
        )
        state.setdefault('payment_ids', {})[method_id] = payment_id

    def void_payment(method_id):
        backend.update_payment_status(state['payment_ids'][method_id], PaymentStatus.CANCELLED.value)

    for method_id, amount in payments.items():
        saga.add_step(
            f'payment:{method_id}',
            lambda method_id=method_id, amount=amount: record_payment(method_id, amount),
            lambda method_id=method_id: void_payment(method_id),
        )


def _add_voucher_steps(saga: Saga, backend: OrderBackend, state: dict,
                       redemptions: List[Tuple[int, Decimal]]) -> None:
    for voucher_id, amount in redemptions:
        saga.add_step(
            f'voucher:{voucher_id}',
            lambda voucher_id=voucher_id, amount=amount: backend.redeem_voucher(
                voucher_id, amount, state['order_id']
            ),
            lambda voucher_id=voucher_id, amount=amount: backend.restore_voucher(voucher_id, amount),
        )


def checkout(backend: OrderBackend, cart: Cart, payments: Mapping[int, object], warehouse_id: int,
             is_partial: Optional[bool] = None, client_id: Optional[int] = None) -> CheckoutResult:
    """
    Close the working cart.

    Args:
        backend: Order/payment/stock/voucher stores
        cart: Working cart (reset on success)
        payments: payment_method_id -> amount
        warehouse_id: Warehouse the goods leave from
        is_partial: Operator's partial-payment flag; derived from the amounts when None
        client_id: Optional customer

    Returns:
        CheckoutResult

    Raises:
        ValidationError: Empty cart or negative amounts
        InsufficientStockError: Before any write
        CollaboratorCallFailure / CompensationFailure: From the store calls
    """
    if cart.is_empty:
        raise ValidationError('Il carrello è vuoto.')
    if cart.is_reservation:
        return pay_reservation(backend, cart, payments)

    cleaned = _clean_payments(payments)
    check_stock(backend, cart, warehouse_id)

    final_total = round2(cart.final_total)
    voucher_credit = min(cart.vouchers_total, final_total)
    selected = sum(cleaned.values(), ZERO)
    remaining = final_total - voucher_credit
    if is_partial is None:
        is_partial = is_partial_payment(selected, remaining)
    collected = selected + voucher_credit
    status = resolve_checkout_status(collected, final_total, is_partial)

    code = cart.order_number or generate_order_number()
    drafts = [draft for line in cart.lines for draft in explode_line(line)]
    state = {}
    saga = Saga(f'checkout:{code}')

    # Step 1: Order in DRAFT, cancelled if anything after fails
    def create_order():
        state['order_id'] = backend.create_order(
            code=code,
            status_id=OrderStatus.DRAFT.value,
            total_price=round2(cart.base_total),
            final_total=final_total,
            tax_amount=round2(vat_from_gross(final_total)),
            discount=round_percent(cart.total_discount),
            warehouse_id=warehouse_id,
            client_id=client_id,
        )

    saga.add_step('order', create_order,
                  lambda: backend.update_order_status(state['order_id'], OrderStatus.CANCELLED.value))

    # Step 2: Unit-exploded items
    def create_items():
        for draft in drafts:
            backend.create_order_item(
                state['order_id'], draft.product_id, draft.quantity, draft.unit_cost,
                draft.discount, draft.final_cost, draft.total, draft.tax
            )

    saga.add_step('order_items', create_items, lambda: backend.soft_delete_order_items(state['order_id']))

    # Step 3: Payments
    _add_payment_steps(saga, backend, state, cleaned)

    # Step 4: Stock decrement per product
    for product_id, qty in _required_stock(cart).items():
        saga.add_step(
            f'stock_subtract:{product_id}',
            lambda product_id=product_id, qty=qty: backend.adjust_stock(
                product_id, warehouse_id, qty, StockDirection.SUBTRACT
            ),
            lambda product_id=product_id, qty=qty: backend.adjust_stock(
                product_id, warehouse_id, qty, StockDirection.ADD
            ),
        )

    # Step 5: Vouchers
    _add_voucher_steps(saga, backend, state, _voucher_redemptions(cart, final_total))

    # Step 6: Final status
    if status != OrderStatus.DRAFT:
        assert_transition(OrderStatus.DRAFT, status)
        saga.add_step('order_status', lambda: backend.update_order_status(state['order_id'], status.value))

    logger.info(f"[CHECKOUT] {code}: total {final_total}, collected {collected}, status {status.name}")
    saga.run()

    result = CheckoutResult(
        order_id=state['order_id'],
        code=code,
        status=status,
        final_total=final_total,
        collected=collected,
        amount_due=amount_due(final_total, collected),
    )
    cart.reset()
    return result


def pay_reservation(backend: OrderBackend, cart: Cart, payments: Mapping[int, object]) -> CheckoutResult:
    """
    Record a further payment on a reopened reservation.

    The status is decided on previous plus current payments, with the
    reconciliation tolerance.

    Raises:
        ValidationError: If the cart holds no reservation or nothing is paid
        InvalidTransitionError: If the order no longer accepts payments
    """
    if not cart.is_reservation:
        raise ValidationError('Nessuna prenotazione caricata nel carrello.')

    cleaned = _clean_payments(payments)
    order_id = cart.current_order_id
    order = backend.get_order(order_id)
    previous = sum(
        (p.amount for p in backend.get_order_payments(order_id) if p.status_id == PaymentStatus.COMPLETED),
        ZERO,
    )

    still_due = max(order.final_total - previous, ZERO)
    voucher_credit = min(cart.vouchers_total, still_due)
    current = sum(cleaned.values(), ZERO) + voucher_credit
    if current <= ZERO:
        raise ValidationError('Inserisci un importo da incassare.')

    status = resolve_reservation_status(previous, current, order.final_total)
    assert_transition(order.status_id, status)

    state = {'order_id': order_id}
    saga = Saga(f'pay_reservation:{order.code}')
    _add_payment_steps(saga, backend, state, cleaned)
    _add_voucher_steps(saga, backend, state, _voucher_redemptions(cart, still_due))
    if status != order.status_id:
        saga.add_step('order_status', lambda: backend.update_order_status(order_id, status.value))

    logger.info(
        f"[CHECKOUT] Reservation {order.code}: previous {previous}, current {current}, "
        f"total {order.final_total}, status {status.name}"
    )
    saga.run()

    collected = previous + current
    result = CheckoutResult(
        order_id=order_id,
        code=order.code,
        status=status,
        final_total=order.final_total,
        collected=collected,
        amount_due=amount_due(order.final_total, collected),
    )
    cart.reset()
    return result
