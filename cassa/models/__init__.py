"""Models package - exports all SQLAlchemy models."""
from cassa.models.order import Order, OrderStatus
from cassa.models.order_item import OrderItem
from cassa.models.order_payment import OrderPayment, PaymentStatus
from cassa.models.voucher import Voucher, VoucherStatus
from cassa.models.product_stock import ProductStock
from cassa.models.stock_move import StockMove, StockDirection
from cassa.models.promotion import Promotion
from cassa.models.cart_draft import CartDraft

__all__ = [
    'Order', 'OrderStatus', 'OrderItem', 'OrderPayment', 'PaymentStatus',
    'Voucher', 'VoucherStatus', 'ProductStock', 'StockMove', 'StockDirection',
    'Promotion', 'CartDraft',
]
