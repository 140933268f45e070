"""
Working cart of a POS terminal.

The cart lives in memory while the operator edits it and is persisted
through a CartRepository between requests. A line covers one or more
physical units; each unit carries its own discount percentage.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from cassa.exceptions import NotFoundError, ValidationError
from cassa.services.money import (
    ZERO, HUNDRED, to_decimal, round2, round_percent, discounted_unit_price, discount_from_prices
)


@dataclass
class CartLine:
    """One product line in the working cart."""
    product_id: int
    unit_list_price: Decimal
    unit_discounts: List[Decimal] = field(default_factory=list)
    row_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    is_from_reservation: bool = False
    status_id: Optional[int] = None
    article_code: Optional[str] = None
    variant_code: Optional[str] = None
    size: Optional[str] = None
    brand_id: Optional[int] = None

    @property
    def quantity(self) -> int:
        return len(self.unit_discounts)

    @property
    def base_total(self) -> Decimal:
        """List value of the line before discounts."""
        return self.unit_list_price * self.quantity

    @property
    def row_discount(self) -> Decimal:
        """Mean of the unit discounts, rounded to 2 decimals."""
        if not self.unit_discounts:
            return ZERO
        return round2(sum(self.unit_discounts, ZERO) / self.quantity)

    @property
    def row_total(self) -> Decimal:
        """Sum of per-unit discounted prices (unrounded)."""
        return sum(
            (discounted_unit_price(self.unit_list_price, d) for d in self.unit_discounts),
            ZERO,
        )

    @property
    def discount_amount(self) -> Decimal:
        return sum((self.unit_list_price * d / HUNDRED for d in self.unit_discounts), ZERO)

    def has_discount(self) -> bool:
        return any(d > ZERO for d in self.unit_discounts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'row_id': self.row_id,
            'product_id': self.product_id,
            'quantity': self.quantity,
            'unit_list_price': str(self.unit_list_price),
            'unit_discounts': [str(d) for d in self.unit_discounts],
            'row_discount': str(self.row_discount),
            'row_total': str(round2(self.row_total)),
            'is_from_reservation': self.is_from_reservation,
            'status_id': self.status_id,
            'article_code': self.article_code,
            'variant_code': self.variant_code,
            'size': self.size,
            'brand_id': self.brand_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLine':
        return cls(
            row_id=data['row_id'],
            product_id=int(data['product_id']),
            unit_list_price=to_decimal(data['unit_list_price']),
            unit_discounts=[to_decimal(d) for d in data.get('unit_discounts', [])],
            is_from_reservation=bool(data.get('is_from_reservation', False)),
            status_id=data.get('status_id'),
            article_code=data.get('article_code'),
            variant_code=data.get('variant_code'),
            size=data.get('size'),
            brand_id=data.get('brand_id'),
        )


@dataclass
class AppliedVoucher:
    """Store credit attached to the cart, redeemed at checkout."""
    voucher_id: int
    code: str
    total_amount: Decimal
    used_amount: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return self.total_amount - self.used_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'voucher_id': self.voucher_id,
            'code': self.code,
            'total_amount': str(self.total_amount),
            'used_amount': str(self.used_amount),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppliedVoucher':
        return cls(
            voucher_id=int(data['voucher_id']),
            code=data['code'],
            total_amount=to_decimal(data['total_amount']),
            used_amount=to_decimal(data.get('used_amount', '0')),
        )


@dataclass
class Cart:
    """Cart plus the order-level state that travels with it."""
    lines: List[CartLine] = field(default_factory=list)
    order_number: Optional[str] = None
    order_date: Optional[datetime] = None
    current_order_id: Optional[int] = None
    status_id: Optional[int] = None
    deposit: Decimal = ZERO
    previous_payments: List[Decimal] = field(default_factory=list)
    applied_vouchers: List[AppliedVoucher] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def is_reservation(self) -> bool:
        return self.current_order_id is not None

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def base_total(self) -> Decimal:
        return sum((line.base_total for line in self.lines), ZERO)

    @property
    def final_total(self) -> Decimal:
        return sum((line.row_total for line in self.lines), ZERO)

    @property
    def discount_amount(self) -> Decimal:
        return sum((line.discount_amount for line in self.lines), ZERO)

    @property
    def total_discount(self) -> Decimal:
        """Effective order-level discount percentage."""
        return discount_from_prices(self.base_total, self.final_total)

    @property
    def vouchers_total(self) -> Decimal:
        return sum((v.remaining for v in self.applied_vouchers), ZERO)

    @property
    def previous_payments_total(self) -> Decimal:
        return round2(sum(self.previous_payments, ZERO))

    def get_line(self, row_id: str) -> CartLine:
        for line in self.lines:
            if line.row_id == row_id:
                return line
        raise NotFoundError(f'Riga {row_id} non presente nel carrello.')

    def find_line(self, product_id: int) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id and not line.is_from_reservation:
                return line
        return None

    def add_product(self, product_id: int, list_price, discounted_price=None, **attributes) -> CartLine:
        """
        Scan a product into the cart.

        An existing editable line for the product gains a unit; otherwise a new
        line is created, seeded with the discount implied by a catalog
        promotional price when one is given.
        """
        list_price = to_decimal(list_price)
        if list_price < ZERO:
            raise ValidationError('Il prezzo di listino non può essere negativo.')
        if self.is_empty and not self.order_number:
            self.order_number = generate_order_number()
            self.order_date = datetime.now()

        line = self.find_line(product_id)
        if line:
            change_quantity(line, line.quantity + 1)
            return line

        seed = ZERO
        if discounted_price is not None:
            seed = discount_from_prices(list_price, discounted_price)
        line = CartLine(
            product_id=product_id,
            unit_list_price=list_price,
            unit_discounts=[seed],
            **attributes,
        )
        self.lines.append(line)
        return line

    def remove_line(self, row_id: str) -> None:
        line = self.get_line(row_id)
        if line.is_from_reservation:
            raise ValidationError('Le righe di una prenotazione non possono essere rimosse.')
        self.lines.remove(line)
        if self.is_empty:
            self.reset()

    def set_quantity(self, row_id: str, quantity: int) -> Optional[CartLine]:
        """Change a line quantity; zero removes the line."""
        line = self.get_line(row_id)
        if quantity == 0:
            self.remove_line(row_id)
            return None
        change_quantity(line, quantity)
        return line

    def reset(self) -> None:
        self.lines = []
        self.order_number = None
        self.order_date = None
        self.current_order_id = None
        self.status_id = None
        self.deposit = ZERO
        self.previous_payments = []
        self.applied_vouchers = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lines': [line.to_dict() for line in self.lines],
            'order_number': self.order_number,
            'order_date': self.order_date.isoformat() if self.order_date else None,
            'current_order_id': self.current_order_id,
            'status_id': self.status_id,
            'deposit': str(self.deposit),
            'previous_payments': [str(p) for p in self.previous_payments],
            'applied_vouchers': [v.to_dict() for v in self.applied_vouchers],
            'base_total': str(round2(self.base_total)),
            'final_total': str(round2(self.final_total)),
            'total_discount': str(round2(self.total_discount)),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Cart':
        order_date = data.get('order_date')
        return cls(
            lines=[CartLine.from_dict(d) for d in data.get('lines', [])],
            order_number=data.get('order_number'),
            order_date=datetime.fromisoformat(order_date) if order_date else None,
            current_order_id=data.get('current_order_id'),
            status_id=data.get('status_id'),
            deposit=to_decimal(data.get('deposit', '0')),
            previous_payments=[to_decimal(p) for p in data.get('previous_payments', [])],
            applied_vouchers=[AppliedVoucher.from_dict(v) for v in data.get('applied_vouchers', [])],
        )


@dataclass
class FrozenOrder:
    """Verbatim snapshot of a parked cart."""
    id: str
    cart: Cart
    frozen_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'cart': self.cart.to_dict(),
            'frozen_at': self.frozen_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FrozenOrder':
        return cls(
            id=data['id'],
            cart=Cart.from_dict(data['cart']),
            frozen_at=datetime.fromisoformat(data['frozen_at']),
        )


@dataclass
class Terminal:
    """Everything a POS terminal keeps between requests."""
    cart: Cart = field(default_factory=Cart)
    frozen_orders: List[FrozenOrder] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cart': self.cart.to_dict(),
            'frozen_orders': [f.to_dict() for f in self.frozen_orders],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Terminal':
        return cls(
            cart=Cart.from_dict(data.get('cart', {})),
            frozen_orders=[FrozenOrder.from_dict(f) for f in data.get('frozen_orders', [])],
        )


def change_quantity(line: CartLine, quantity: int) -> None:
    """Grow or shrink the unit vector; new units inherit the row discount."""
    if line.is_from_reservation:
        raise ValidationError('Le righe di una prenotazione sono in sola lettura.')
    if quantity < 1:
        raise ValidationError('La quantità deve essere maggiore di 0.')
    current = line.quantity
    if quantity > current:
        seed = round_percent(sum(line.unit_discounts, ZERO) / current) if current else ZERO
        line.unit_discounts.extend([seed] * (quantity - current))
    else:
        del line.unit_discounts[quantity:]


def generate_order_number() -> str:
    return f"CS{int(datetime.now().timestamp() * 1000)}{uuid.uuid4().hex[:4]}"
