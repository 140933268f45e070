"""Order Payment model for mixed payment methods."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cassa.database import Base, BigIntPK
import enum


class PaymentStatus(enum.IntEnum):
    """Payment status ids."""
    COMPLETED = 6
    CANCELLED = 21


class OrderPayment(Base):
    """
    Order Payment - one settlement event.

    An order may collect several payments (deposits, then the balance) and
    several methods in the same checkout.
    """

    __tablename__ = 'pos_order_payment'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    internal_code = Column(String(64), nullable=False, unique=True)
    order_id = Column(BigInteger, ForeignKey('pos_order.id', ondelete='CASCADE'), nullable=False, index=True)
    payment_method_id = Column(Integer, nullable=False)

    amount = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    status_id = Column(Integer, nullable=False, default=PaymentStatus.COMPLETED.value)

    payment_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    charge_date = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    order = relationship('Order', back_populates='payments')

    def __repr__(self):
        return f"<OrderPayment(id={self.id}, order_id={self.order_id}, amount={self.amount}, status={self.status_id})>"
