"""
Order, payment, stock and voucher stores consumed by the POS engine.

`OrderBackend` is the contract; `SqlOrderBackend` talks to the local
database and `HttpOrderBackend` to the REST order service. Every call that
does not succeed raises CollaboratorCallFailure. Calls are not idempotent:
callers submit each one at most once.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from cassa.models import StockDirection


@dataclass(frozen=True)
class OrderRecord:
    id: int
    code: str
    status_id: int
    total_price: Decimal
    final_total: Decimal
    tax_amount: Decimal
    warehouse_id: Optional[int] = None


@dataclass(frozen=True)
class OrderItemRecord:
    id: int
    product_id: int
    quantity: int
    unit_cost: Decimal
    discount: Decimal
    final_cost: Decimal


@dataclass(frozen=True)
class PaymentRecord:
    id: int
    amount: Decimal
    status_id: int
    payment_method_id: int


@dataclass(frozen=True)
class VoucherRecord:
    id: int
    code: str
    total_amount: Decimal
    used_amount: Decimal
    status_id: int
    validity_start_date: datetime
    validity_end_date: datetime
    origin_order_id: Optional[int] = None
    destination_order_id: Optional[int] = None

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.used_amount


@dataclass(frozen=True)
class PromotionRecord:
    id: int
    description: str
    rule: str


class OrderBackend(ABC):
    """External stores the order lifecycle depends on."""

    # Order store

    @abstractmethod
    def get_order(self, order_id: int) -> OrderRecord:
        ...

    @abstractmethod
    def get_order_items(self, order_id: int) -> List[OrderItemRecord]:
        """Live (not soft deleted) items of an order."""

    @abstractmethod
    def create_order(self, code: str, status_id: int, total_price: Decimal, final_total: Decimal,
                     tax_amount: Decimal, discount: Decimal, warehouse_id: int,
                     client_id: Optional[int] = None) -> int:
        ...

    @abstractmethod
    def create_order_item(self, order_id: int, product_id: int, quantity: int, unit_cost: Decimal,
                          discount: Decimal, final_cost: Decimal, total: Decimal, tax: Decimal) -> int:
        ...

    @abstractmethod
    def update_order_status(self, order_id: int, status_id: int) -> None:
        ...

    @abstractmethod
    def update_order_total(self, order_id: int, final_total: Decimal, tax_amount: Decimal) -> None:
        ...

    @abstractmethod
    def soft_delete_order_items(self, order_id: int) -> None:
        ...

    @abstractmethod
    def update_order_item_quantity(self, item_id: int, new_quantity: int) -> None:
        """Set an item's quantity; an item left at zero is soft deleted."""

    # Payment store

    @abstractmethod
    def get_order_payments(self, order_id: int) -> List[PaymentRecord]:
        ...

    @abstractmethod
    def create_payment(self, order_id: int, method_id: int, amount: Decimal, tax: Decimal,
                       payment_date: datetime, charge_date: datetime, status_id: int) -> int:
        ...

    @abstractmethod
    def update_payments_status(self, order_id: int, from_status: int, to_status: int) -> None:
        ...

    @abstractmethod
    def update_payment_status(self, payment_id: int, status_id: int) -> None:
        """Change the status of a single payment."""

    # Stock ledger

    @abstractmethod
    def get_stock(self, product_id: int, warehouse_id: int) -> int:
        ...

    @abstractmethod
    def adjust_stock(self, product_id: int, warehouse_id: int, quantity: int,
                     direction: StockDirection) -> None:
        """Apply a signed delta to the (product, warehouse) counter."""

    # Voucher store

    @abstractmethod
    def create_voucher(self, origin_order_id: int, amount: Decimal,
                       valid_from: datetime, valid_to: datetime) -> int:
        ...

    @abstractmethod
    def get_voucher(self, code: str) -> VoucherRecord:
        ...

    @abstractmethod
    def redeem_voucher(self, voucher_id: int, amount: Decimal, destination_order_id: int) -> None:
        ...

    @abstractmethod
    def restore_voucher(self, voucher_id: int, amount: Decimal) -> None:
        """Give back credit taken by redeem_voucher."""

    # Promotions

    @abstractmethod
    def list_promotions(self) -> List[PromotionRecord]:
        ...
