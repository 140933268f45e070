import itertools
from decimal import Decimal

import pytest

from cassa import create_app
from cassa import database
from cassa.collaborators import (
    OrderBackend, OrderRecord, OrderItemRecord, PaymentRecord, VoucherRecord, PromotionRecord
)
from cassa.database import Base, get_session
from cassa.exceptions import CollaboratorCallFailure, NotFoundError
from cassa.models import OrderStatus, PaymentStatus, StockDirection, VoucherStatus
from cassa.services.cart import Cart


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    with app.app_context():
        database.create_all()
    return app


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session; every table is emptied afterwards."""
    session = get_session()
    yield session
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.remove()


class FakeBackend(OrderBackend):
    """
    In-memory OrderBackend recording every call.

    `fail('adjust_stock', 2)` makes the second adjust_stock call raise
    CollaboratorCallFailure; several call numbers may be given.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.orders = {}
        self.items = {}
        self.payments = {}
        self.vouchers = {}
        self.stock = {}
        self.promotions = []
        self.calls = []
        self._counts = {}
        self._failures = {}

    def fail(self, operation, *call_numbers):
        self._failures[operation] = set(call_numbers or (1,))

    def _call(self, operation, *args):
        self._counts[operation] = self._counts.get(operation, 0) + 1
        if self._counts[operation] in self._failures.get(operation, ()):
            raise CollaboratorCallFailure(operation)
        self.calls.append((operation,) + args)

    def called(self, operation):
        return [c for c in self.calls if c[0] == operation]

    # Seeding helpers

    def add_order(self, status_id=OrderStatus.SETTLED, items=(), payments=(), code=None):
        """items: (product_id, quantity, unit_cost, discount); payments: amounts (COMPLETED)."""
        order_id = next(self._ids)
        final_total = Decimal('0')
        for product_id, quantity, unit_cost, discount in items:
            unit_cost, discount = Decimal(str(unit_cost)), Decimal(str(discount))
            final_cost = unit_cost * (1 - discount / 100)
            item_id = next(self._ids)
            self.items[item_id] = {
                'id': item_id, 'order_id': order_id, 'product_id': product_id, 'quantity': quantity,
                'unit_cost': unit_cost, 'discount': discount, 'final_cost': final_cost, 'deleted': False,
            }
            final_total += final_cost * quantity
        self.orders[order_id] = {
            'id': order_id, 'code': code or f'CS{order_id}', 'status_id': int(status_id),
            'total_price': final_total, 'final_total': final_total, 'tax_amount': Decimal('0'),
            'warehouse_id': 1,
        }
        for amount in payments:
            payment_id = next(self._ids)
            self.payments[payment_id] = {
                'id': payment_id, 'order_id': order_id, 'amount': Decimal(str(amount)),
                'status_id': PaymentStatus.COMPLETED.value, 'payment_method_id': 1,
            }
        return order_id

    def items_of(self, order_id, include_deleted=False):
        return [i for i in self.items.values()
                if i['order_id'] == order_id and (include_deleted or not i['deleted'])]

    def payments_of(self, order_id):
        return [p for p in self.payments.values() if p['order_id'] == order_id]

    # Order store

    def get_order(self, order_id):
        self._call('get_order', order_id)
        if order_id not in self.orders:
            raise NotFoundError(f'Ordine {order_id} non trovato')
        o = self.orders[order_id]
        return OrderRecord(o['id'], o['code'], o['status_id'], o['total_price'], o['final_total'],
                           o['tax_amount'], o['warehouse_id'])

    def get_order_items(self, order_id):
        self._call('get_order_items', order_id)
        return [
            OrderItemRecord(i['id'], i['product_id'], i['quantity'], i['unit_cost'], i['discount'], i['final_cost'])
            for i in self.items_of(order_id)
        ]

    def create_order(self, code, status_id, total_price, final_total, tax_amount, discount,
                     warehouse_id, client_id=None):
        self._call('create_order', code, status_id, final_total)
        order_id = next(self._ids)
        self.orders[order_id] = {
            'id': order_id, 'code': code, 'status_id': status_id, 'total_price': total_price,
            'final_total': final_total, 'tax_amount': tax_amount, 'warehouse_id': warehouse_id,
            'discount': discount,
        }
        return order_id

    def create_order_item(self, order_id, product_id, quantity, unit_cost, discount, final_cost, total, tax):
        self._call('create_order_item', order_id, product_id, quantity, discount)
        item_id = next(self._ids)
        self.items[item_id] = {
            'id': item_id, 'order_id': order_id, 'product_id': product_id, 'quantity': quantity,
            'unit_cost': unit_cost, 'discount': discount, 'final_cost': final_cost, 'deleted': False,
        }
        return item_id

    def update_order_status(self, order_id, status_id):
        self._call('update_order_status', order_id, status_id)
        self.orders[order_id]['status_id'] = int(status_id)

    def update_order_total(self, order_id, final_total, tax_amount):
        self._call('update_order_total', order_id, final_total, tax_amount)
        self.orders[order_id]['final_total'] = final_total
        self.orders[order_id]['tax_amount'] = tax_amount

    def soft_delete_order_items(self, order_id):
        self._call('soft_delete_order_items', order_id)
        for item in self.items_of(order_id):
            item['deleted'] = True

    def update_order_item_quantity(self, item_id, new_quantity):
        self._call('update_order_item_quantity', item_id, new_quantity)
        if new_quantity <= 0:
            self.items[item_id]['deleted'] = True
        else:
            self.items[item_id]['quantity'] = new_quantity

    # Payment store

    def get_order_payments(self, order_id):
        self._call('get_order_payments', order_id)
        return [PaymentRecord(p['id'], p['amount'], p['status_id'], p['payment_method_id'])
                for p in self.payments_of(order_id)]

    def create_payment(self, order_id, method_id, amount, tax, payment_date, charge_date, status_id):
        self._call('create_payment', order_id, method_id, amount, tax, status_id)
        payment_id = next(self._ids)
        self.payments[payment_id] = {
            'id': payment_id, 'order_id': order_id, 'amount': amount, 'tax': tax,
            'status_id': status_id, 'payment_method_id': method_id,
        }
        return payment_id

    def update_payments_status(self, order_id, from_status, to_status):
        self._call('update_payments_status', order_id, from_status, to_status)
        for p in self.payments_of(order_id):
            if p['status_id'] == from_status:
                p['status_id'] = to_status

    def update_payment_status(self, payment_id, status_id):
        self._call('update_payment_status', payment_id, status_id)
        self.payments[payment_id]['status_id'] = status_id

    # Stock ledger

    def get_stock(self, product_id, warehouse_id):
        self._call('get_stock', product_id, warehouse_id)
        return self.stock.get((product_id, warehouse_id), 0)

    def adjust_stock(self, product_id, warehouse_id, quantity, direction, reference_order_id=None):
        self._call('adjust_stock', product_id, warehouse_id, quantity, direction)
        delta = quantity if direction == StockDirection.ADD else -quantity
        key = (product_id, warehouse_id)
        self.stock[key] = self.stock.get(key, 0) + delta

    # Voucher store

    def create_voucher(self, origin_order_id, amount, valid_from, valid_to):
        self._call('create_voucher', origin_order_id, amount)
        voucher_id = next(self._ids)
        self.vouchers[voucher_id] = {
            'id': voucher_id, 'code': f'BV{voucher_id}', 'total_amount': amount,
            'used_amount': Decimal('0'), 'status_id': VoucherStatus.VALID.value,
            'validity_start_date': valid_from, 'validity_end_date': valid_to,
            'origin_order_id': origin_order_id, 'destination_order_id': None,
        }
        return voucher_id

    def get_voucher(self, code):
        self._call('get_voucher', code)
        for v in self.vouchers.values():
            if v['code'] == code:
                return VoucherRecord(**v)
        raise NotFoundError(f'Buono {code} non trovato')

    def redeem_voucher(self, voucher_id, amount, destination_order_id):
        self._call('redeem_voucher', voucher_id, amount, destination_order_id)
        v = self.vouchers[voucher_id]
        v['used_amount'] += amount
        v['destination_order_id'] = destination_order_id
        v['status_id'] = (VoucherStatus.FULLY_USED.value if v['used_amount'] >= v['total_amount']
                          else VoucherStatus.PARTIALLY_USED.value)

    def restore_voucher(self, voucher_id, amount):
        self._call('restore_voucher', voucher_id, amount)
        v = self.vouchers[voucher_id]
        v['used_amount'] = max(v['used_amount'] - amount, Decimal('0'))
        if v['used_amount'] == 0:
            v['status_id'] = VoucherStatus.VALID.value
            v['destination_order_id'] = None
        else:
            v['status_id'] = VoucherStatus.PARTIALLY_USED.value

    # Promotions

    def list_promotions(self):
        self._call('list_promotions')
        return [PromotionRecord(i, 'promo', rule) for i, rule in enumerate(self.promotions, 1)]


@pytest.fixture
def backend():
    """In-memory order/payment/stock/voucher stores."""
    return FakeBackend()


@pytest.fixture
def cart():
    return Cart()
