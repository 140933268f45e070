"""
SQL Order Backend - order, payment, stock and voucher stores on SQLAlchemy.

Each call runs in its own transaction and commits before returning, so a
saga step that succeeded stays applied even when a later step fails.
"""
import functools
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cassa.collaborators import (
    OrderBackend, OrderRecord, OrderItemRecord, PaymentRecord, VoucherRecord, PromotionRecord
)
from cassa.exceptions import CollaboratorCallFailure, NotFoundError
from cassa.models import (
    Order, OrderItem, OrderPayment, Voucher, VoucherStatus,
    ProductStock, StockMove, StockDirection, Promotion
)

logger = logging.getLogger(__name__)


def _sql_call(method):
    """Run a backend call, turning database errors into CollaboratorCallFailure."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"[SQL] {method.__name__} failed: {e}")
            raise CollaboratorCallFailure(method.__name__) from e
    return wrapper


def _order_record(order: Order) -> OrderRecord:
    return OrderRecord(
        id=order.id,
        code=order.code,
        status_id=order.status_id,
        total_price=Decimal(order.total_price),
        final_total=Decimal(order.final_total),
        tax_amount=Decimal(order.tax_amount),
        warehouse_id=order.warehouse_id,
    )


def _voucher_record(voucher: Voucher) -> VoucherRecord:
    return VoucherRecord(
        id=voucher.id,
        code=voucher.code,
        total_amount=Decimal(voucher.total_amount),
        used_amount=Decimal(voucher.used_amount or 0),
        status_id=voucher.status_id,
        validity_start_date=voucher.validity_start_date,
        validity_end_date=voucher.validity_end_date,
        origin_order_id=voucher.origin_order_id,
        destination_order_id=voucher.destination_order_id,
    )


class SqlOrderBackend(OrderBackend):
    """OrderBackend over the local database."""

    def __init__(self, session: Session):
        self.session = session

    def _get_order(self, order_id: int, lock: bool = False) -> Order:
        query = self.session.query(Order).filter(Order.id == order_id)
        if lock:
            query = query.with_for_update()
        order = query.first()
        if not order:
            raise NotFoundError(f'Ordine {order_id} non trovato')
        return order

    # Order store

    @_sql_call
    def get_order(self, order_id: int) -> OrderRecord:
        return _order_record(self._get_order(order_id))

    @_sql_call
    def get_order_items(self, order_id: int) -> List[OrderItemRecord]:
        items = self.session.query(OrderItem).filter(
            OrderItem.order_id == order_id,
            OrderItem.deleted.is_(False)
        ).order_by(OrderItem.id).all()

        return [
            OrderItemRecord(
                id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_cost=Decimal(item.unit_cost),
                discount=Decimal(item.discount),
                final_cost=Decimal(item.final_cost),
            )
            for item in items
        ]

    @_sql_call
    def create_order(self, code: str, status_id: int, total_price: Decimal, final_total: Decimal,
                     tax_amount: Decimal, discount: Decimal, warehouse_id: int,
                     client_id: Optional[int] = None) -> int:
        order = Order(
            code=code,
            status_id=status_id,
            total_price=total_price,
            final_total=final_total,
            tax_amount=tax_amount,
            discount=discount,
            warehouse_id=warehouse_id,
            client_id=client_id,
        )
        self.session.add(order)
        self.session.commit()
        return order.id

    @_sql_call
    def create_order_item(self, order_id: int, product_id: int, quantity: int, unit_cost: Decimal,
                          discount: Decimal, final_cost: Decimal, total: Decimal, tax: Decimal) -> int:
        item = OrderItem(
            order_id=order_id,
            product_id=product_id,
            quantity=quantity,
            unit_cost=unit_cost,
            discount=discount,
            final_cost=final_cost,
            total=total,
            tax=tax,
        )
        self.session.add(item)
        self.session.commit()
        return item.id

    @_sql_call
    def update_order_status(self, order_id: int, status_id: int) -> None:
        order = self._get_order(order_id, lock=True)
        order.status_id = status_id
        self.session.commit()

    @_sql_call
    def update_order_total(self, order_id: int, final_total: Decimal, tax_amount: Decimal) -> None:
        order = self._get_order(order_id, lock=True)
        order.final_total = final_total
        order.tax_amount = tax_amount
        self.session.commit()

    @_sql_call
    def soft_delete_order_items(self, order_id: int) -> None:
        self.session.query(OrderItem).filter(
            OrderItem.order_id == order_id
        ).update({OrderItem.deleted: True}, synchronize_session=False)
        self.session.commit()

    @_sql_call
    def update_order_item_quantity(self, item_id: int, new_quantity: int) -> None:
        item = self.session.query(OrderItem).filter(
            OrderItem.id == item_id
        ).with_for_update().first()
        if not item:
            raise NotFoundError(f'Riga ordine {item_id} non trovata')

        if new_quantity <= 0:
            item.deleted = True
        else:
            item.quantity = new_quantity
            item.total = (Decimal(item.final_cost) * new_quantity).quantize(Decimal('0.01'))
        self.session.commit()

    # Payment store

    @_sql_call
    def get_order_payments(self, order_id: int) -> List[PaymentRecord]:
        payments = self.session.query(OrderPayment).filter(
            OrderPayment.order_id == order_id
        ).order_by(OrderPayment.id).all()

        return [
            PaymentRecord(
                id=p.id,
                amount=Decimal(p.amount),
                status_id=p.status_id,
                payment_method_id=p.payment_method_id,
            )
            for p in payments
        ]

    @_sql_call
    def create_payment(self, order_id: int, method_id: int, amount: Decimal, tax: Decimal,
                       payment_date: datetime, charge_date: datetime, status_id: int) -> int:
        payment = OrderPayment(
            internal_code=f"PAY-{uuid.uuid4().hex[:16].upper()}",
            order_id=order_id,
            payment_method_id=method_id,
            amount=amount,
            tax=tax,
            status_id=status_id,
            payment_date=payment_date,
            charge_date=charge_date,
        )
        self.session.add(payment)
        self.session.commit()
        return payment.id

    @_sql_call
    def update_payments_status(self, order_id: int, from_status: int, to_status: int) -> None:
        self.session.query(OrderPayment).filter(
            OrderPayment.order_id == order_id,
            OrderPayment.status_id == from_status
        ).update({OrderPayment.status_id: to_status}, synchronize_session=False)
        self.session.commit()

    @_sql_call
    def update_payment_status(self, payment_id: int, status_id: int) -> None:
        payment = self.session.query(OrderPayment).filter(
            OrderPayment.id == payment_id
        ).with_for_update().first()
        if not payment:
            raise NotFoundError(f'Pagamento {payment_id} non trovato')
        payment.status_id = status_id
        self.session.commit()

    # Stock ledger

    @_sql_call
    def get_stock(self, product_id: int, warehouse_id: int) -> int:
        stock = self.session.query(ProductStock).filter(
            ProductStock.product_id == product_id,
            ProductStock.warehouse_id == warehouse_id
        ).first()
        return stock.on_hand_qty if stock else 0

    @_sql_call
    def adjust_stock(self, product_id: int, warehouse_id: int, quantity: int,
                     direction: StockDirection, reference_order_id: Optional[int] = None) -> None:
        """
        Apply a signed delta to a stock counter under a row lock.

        Raises:
            CollaboratorCallFailure: If a subtraction would drive the counter negative
        """
        stock = self.session.query(ProductStock).filter(
            ProductStock.product_id == product_id,
            ProductStock.warehouse_id == warehouse_id
        ).with_for_update().first()

        if not stock:
            stock = ProductStock(product_id=product_id, warehouse_id=warehouse_id, on_hand_qty=0)
            self.session.add(stock)

        delta = quantity if direction == StockDirection.ADD else -quantity
        if (stock.on_hand_qty or 0) + delta < 0:
            self.session.rollback()
            raise CollaboratorCallFailure(
                'adjust_stock',
                f'Giacenza insufficiente per prodotto {product_id} nel magazzino {warehouse_id}'
            )

        stock.on_hand_qty = (stock.on_hand_qty or 0) + delta
        self.session.add(StockMove(
            product_id=product_id,
            warehouse_id=warehouse_id,
            qty=delta,
            direction=direction,
            reference_order_id=reference_order_id,
        ))
        self.session.commit()
        logger.debug(f"[STOCK] product={product_id} warehouse={warehouse_id} delta={delta}")

    # Voucher store

    @_sql_call
    def create_voucher(self, origin_order_id: int, amount: Decimal,
                       valid_from: datetime, valid_to: datetime) -> int:
        voucher = Voucher(
            code=f"BV{uuid.uuid4().hex[:10].upper()}",
            origin_order_id=origin_order_id,
            total_amount=amount,
            used_amount=Decimal('0.00'),
            status_id=VoucherStatus.VALID.value,
            validity_start_date=valid_from,
            validity_end_date=valid_to,
        )
        self.session.add(voucher)
        self.session.commit()
        return voucher.id

    @_sql_call
    def get_voucher(self, code: str) -> VoucherRecord:
        voucher = self.session.query(Voucher).filter(Voucher.code == code).first()
        if not voucher:
            raise NotFoundError(f'Buono {code} non trovato')
        return _voucher_record(voucher)

    @_sql_call
    def redeem_voucher(self, voucher_id: int, amount: Decimal, destination_order_id: int) -> None:
        voucher = self.session.query(Voucher).filter(
            Voucher.id == voucher_id
        ).with_for_update().first()
        if not voucher:
            raise NotFoundError(f'Buono {voucher_id} non trovato')

        used = Decimal(voucher.used_amount or 0) + amount
        if used > Decimal(voucher.total_amount):
            self.session.rollback()
            raise CollaboratorCallFailure('redeem_voucher', f'Credito residuo insufficiente sul buono {voucher.code}')

        voucher.used_amount = used
        voucher.status_id = (
            VoucherStatus.FULLY_USED.value if used == Decimal(voucher.total_amount)
            else VoucherStatus.PARTIALLY_USED.value
        )
        voucher.destination_order_id = destination_order_id
        voucher.date_of_use = datetime.now()
        self.session.commit()

    @_sql_call
    def restore_voucher(self, voucher_id: int, amount: Decimal) -> None:
        voucher = self.session.query(Voucher).filter(
            Voucher.id == voucher_id
        ).with_for_update().first()
        if not voucher:
            raise NotFoundError(f'Buono {voucher_id} non trovato')

        used = max(Decimal(voucher.used_amount or 0) - amount, Decimal('0.00'))
        voucher.used_amount = used
        if used == 0:
            voucher.status_id = VoucherStatus.VALID.value
            voucher.destination_order_id = None
            voucher.date_of_use = None
        else:
            voucher.status_id = VoucherStatus.PARTIALLY_USED.value
        self.session.commit()

    # Promotions

    @_sql_call
    def list_promotions(self) -> List[PromotionRecord]:
        promotions = self.session.query(Promotion).filter(
            Promotion.active.is_(True)
        ).order_by(Promotion.id).all()
        return [PromotionRecord(id=p.id, description=p.description, rule=p.rule) for p in promotions]
