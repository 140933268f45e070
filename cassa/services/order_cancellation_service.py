"""
Order Cancellation Service - reservation cancellation and returns.

Both workflows touch the order store, the payment store, the stock ledger
and the voucher store with no shared transaction. They run as sagas:
stock deltas are compensated by the inverse delta when a later step
fails, while status and total updates stay applied.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Mapping, Optional

from cassa.collaborators import OrderBackend
from cassa.exceptions import ValidationError
from cassa.models import OrderStatus, PaymentStatus, StockDirection
from cassa.services.money import ZERO, to_decimal, round2, vat_from_gross
from cassa.services.order_lifecycle_service import (
    assert_cancellable, assert_returnable, validate_return_quantities, is_partial_return
)
from cassa.services.saga import Saga

logger = logging.getLogger(__name__)

REFUND_METHODS = ('electronic', 'cash', 'voucher')
DEFAULT_VOUCHER_VALIDITY_DAYS = 365
# Card payment recording what is left of a partially returned order
DEFAULT_RETURN_PAYMENT_METHOD_ID = 6


@dataclass
class CancellationResult:
    order_id: int
    status: OrderStatus
    voucher_id: Optional[int] = None
    voucher_amount: Decimal = ZERO
    restocked: Dict[int, int] = field(default_factory=dict)
    new_order_total: Optional[Decimal] = None

    def to_dict(self):
        return {
            'order_id': self.order_id,
            'status_id': int(self.status),
            'status': self.status.name,
            'voucher_id': self.voucher_id,
            'voucher_amount': str(self.voucher_amount),
            'restocked': {str(k): v for k, v in self.restocked.items()},
            'new_order_total': str(self.new_order_total) if self.new_order_total is not None else None,
        }


def _validate_refund_method(refund_method: str) -> None:
    if refund_method not in REFUND_METHODS:
        raise ValidationError(f'Metodo di rimborso non valido: {refund_method}')


def _voucher_window(validity_days: int):
    valid_from = datetime.now()
    return valid_from, valid_from + timedelta(days=validity_days)


def _add_stock_step(saga: Saga, backend: OrderBackend, product_id: int, warehouse_id: int,
                    quantity: int, restocked: Dict[int, int]) -> None:
    """Stock add compensated by the matching subtract."""
    def forward():
        backend.adjust_stock(product_id, warehouse_id, quantity, StockDirection.ADD)
        restocked[product_id] = restocked.get(product_id, 0) + quantity

    def compensate():
        backend.adjust_stock(product_id, warehouse_id, quantity, StockDirection.SUBTRACT)
        restocked[product_id] -= quantity

    saga.add_step(f'stock_add:{product_id}', forward, compensate)


def cancel_reservation(backend: OrderBackend, order_id: int, warehouse_id: int,
                       refund_method: str, deposit_amount,
                       voucher_validity_days: int = DEFAULT_VOUCHER_VALIDITY_DAYS) -> CancellationResult:
    """
    Cancel an open reservation and put its goods back in stock.

    Args:
        backend: Order/payment/stock/voucher stores
        order_id: Reservation to cancel
        warehouse_id: Warehouse receiving the goods
        refund_method: 'electronic', 'cash' or 'voucher'
        deposit_amount: Deposit to refund; issued as a voucher when refund_method is 'voucher'
        voucher_validity_days: Voucher validity from today

    Returns:
        CancellationResult with the voucher id when one was issued

    Raises:
        ValidationError: Bad refund method or negative deposit
        InvalidTransitionError: If the order is not DRAFT or PARTIALLY_PAID
        CollaboratorCallFailure: A store call failed (stock already rolled back)
        CompensationFailure: A store call failed and the stock rollback did too
    """
    _validate_refund_method(refund_method)
    deposit_amount = round2(to_decimal(deposit_amount))
    if deposit_amount < ZERO:
        raise ValidationError('L\'acconto non può essere negativo.')

    # Step 1: Read the order before changing anything
    order = backend.get_order(order_id)
    assert_cancellable(order.status_id)
    items = backend.get_order_items(order_id)

    result = CancellationResult(order_id=order_id, status=OrderStatus.CANCELLED)
    saga = Saga(f'cancel_reservation:{order_id}')

    # Step 2-4: Order status, items, payments (not compensated)
    saga.add_step('order_status', lambda: backend.update_order_status(order_id, OrderStatus.CANCELLED.value))
    saga.add_step('order_items', lambda: backend.soft_delete_order_items(order_id))
    saga.add_step('payments', lambda: backend.update_payments_status(
        order_id, PaymentStatus.COMPLETED.value, PaymentStatus.CANCELLED.value
    ))

    # Step 5: Goods back in stock
    for item in items:
        _add_stock_step(saga, backend, item.product_id, warehouse_id, item.quantity, result.restocked)

    # Step 6: Deposit refunded as store credit
    if refund_method == 'voucher' and deposit_amount > ZERO:
        valid_from, valid_to = _voucher_window(voucher_validity_days)

        def issue_voucher():
            result.voucher_id = backend.create_voucher(order_id, deposit_amount, valid_from, valid_to)
            result.voucher_amount = deposit_amount

        saga.add_step('voucher', issue_voucher)

    logger.info(f"[SAGA] Cancelling reservation {order.code} ({len(items)} item(s), refund={refund_method})")
    saga.run()
    return result


def process_return(backend: OrderBackend, order_id: int, warehouse_id: int, refund_method: str,
                   return_quantities: Mapping[int, int], is_partial_return_flag: Optional[bool] = None,
                   voucher_validity_days: int = DEFAULT_VOUCHER_VALIDITY_DAYS,
                   return_payment_method_id: int = DEFAULT_RETURN_PAYMENT_METHOD_ID) -> CancellationResult:
    """
    Take back goods from a settled order.

    Args:
        backend: Order/payment/stock/voucher stores
        order_id: Settled order
        warehouse_id: Warehouse receiving the goods
        refund_method: 'electronic', 'cash' or 'voucher'
        return_quantities: item_id -> units returned
        is_partial_return_flag: Partial or full return; computed on the whole order when None
        voucher_validity_days: Voucher validity from today
        return_payment_method_id: Method of the payment recording the remaining total

    Returns:
        CancellationResult with the new order total and the refunded amount

    Raises:
        ValidationError: Bad refund method or return quantities
        InvalidTransitionError: If the order is not SETTLED
        CollaboratorCallFailure: A store call failed (stock already rolled back)
        CompensationFailure: A store call failed and the stock rollback did too
    """
    _validate_refund_method(refund_method)

    # Step 1: Read and validate
    order = backend.get_order(order_id)
    assert_returnable(order.status_id)
    items = backend.get_order_items(order_id)
    quantities = validate_return_quantities(items, return_quantities)

    partial = is_partial_return_flag
    if partial is None:
        partial = is_partial_return(items, quantities)
    status = OrderStatus.PARTIALLY_RETURNED if partial else OrderStatus.RETURNED

    # Step 2: Totals
    new_order_total = round2(sum(
        ((item.quantity - quantities.get(item.id, 0)) * item.final_cost for item in items), ZERO
    ))
    voucher_amount = round2(sum(
        (quantities.get(item.id, 0) * item.final_cost for item in items), ZERO
    ))

    result = CancellationResult(
        order_id=order_id,
        status=status,
        voucher_amount=voucher_amount,
        new_order_total=new_order_total,
    )
    saga = Saga(f'process_return:{order_id}')

    # Step A: Order total and return status (not compensated)
    def update_order():
        backend.update_order_total(order_id, new_order_total, round2(vat_from_gross(new_order_total)))
        backend.update_order_status(order_id, status.value)

    saga.add_step('order_status', update_order)

    # Step A2: Void payments, record what is still paid on a partial return
    def update_payments():
        backend.update_payments_status(order_id, PaymentStatus.COMPLETED.value, PaymentStatus.CANCELLED.value)
        if partial and new_order_total > ZERO:
            now = datetime.now()
            backend.create_payment(
                order_id, return_payment_method_id, new_order_total,
                round2(vat_from_gross(new_order_total)), now, now, PaymentStatus.COMPLETED.value
            )

    saga.add_step('payments', update_payments)

    # Step B: Refund as store credit
    if refund_method == 'voucher' and voucher_amount > ZERO:
        valid_from, valid_to = _voucher_window(voucher_validity_days)

        def issue_voucher():
            result.voucher_id = backend.create_voucher(order_id, voucher_amount, valid_from, valid_to)

        saga.add_step('voucher', issue_voucher)

    returned_items = [item for item in items if quantities.get(item.id)]

    # Step C: Goods back in stock
    for item in returned_items:
        _add_stock_step(saga, backend, item.product_id, warehouse_id, quantities[item.id], result.restocked)

    # Step D: Shrink or soft delete the returned items
    for item in returned_items:
        saga.add_step(
            f'order_item:{item.id}',
            lambda item=item: backend.update_order_item_quantity(item.id, item.quantity - quantities[item.id]),
        )

    logger.info(
        f"[SAGA] Return on order {order.code}: {sum(quantities.values())} unit(s), "
        f"{'partial' if partial else 'full'}, refund {voucher_amount} via {refund_method}"
    )
    saga.run()
    return result
