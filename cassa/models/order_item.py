"""Order Item model."""
from sqlalchemy import Column, BigInteger, Integer, Numeric, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from cassa.database import Base, BigIntPK


class OrderItem(Base):
    """
    Order Item - units of one product sharing the same discount.

    A cart line whose units carry different discounts is exploded into one
    item per distinct discount.
    """

    __tablename__ = 'pos_order_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('pos_order.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigInteger, nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(18, 15), nullable=False, default=0)
    final_cost = Column(Numeric(12, 4), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    deleted = Column(Boolean, nullable=False, default=False)

    # Relationships
    order = relationship('Order', back_populates='items')

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
