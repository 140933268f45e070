"""Order model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cassa.database import Base, BigIntPK
import enum


class OrderStatus(enum.IntEnum):
    """Order status ids as stored by the order store."""
    DRAFT = 16
    PARTIALLY_PAID = 17
    SETTLED = 18
    CANCELLED = 19
    RETURNED = 20
    CANCELLED_PAYMENT_VOID = 21
    PARTIALLY_RETURNED = 26


class Order(Base):
    """Order (ordine / prenotazione)."""

    __tablename__ = 'pos_order'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(40), unique=True, nullable=False, index=True)
    status_id = Column(Integer, nullable=False, default=OrderStatus.DRAFT.value)
    warehouse_id = Column(BigInteger, nullable=True)
    client_id = Column(BigInteger, nullable=True)

    total_price = Column(Numeric(10, 2), nullable=False, default=0)
    final_total = Column(Numeric(10, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    # Effective order-level discount percentage
    discount = Column(Numeric(18, 15), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan')
    payments = relationship('OrderPayment', back_populates='order', cascade='all, delete-orphan')

    @property
    def status(self):
        return OrderStatus(self.status_id)

    def __repr__(self):
        return f"<Order(id={self.id}, code={self.code}, status={self.status.name})>"
