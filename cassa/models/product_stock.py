"""Product Stock model."""
from sqlalchemy import Column, BigInteger, Integer, DateTime
from sqlalchemy.sql import func
from cassa.database import Base


class ProductStock(Base):
    """Product Stock - availability counter per (product, warehouse)."""

    __tablename__ = 'pos_product_stock'

    product_id = Column(BigInteger, primary_key=True)
    warehouse_id = Column(BigInteger, primary_key=True)
    on_hand_qty = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<ProductStock(product_id={self.product_id}, warehouse_id={self.warehouse_id}, on_hand_qty={self.on_hand_qty})>"
