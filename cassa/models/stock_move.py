"""Stock Move model."""
from sqlalchemy import Column, BigInteger, Integer, DateTime, Text, Enum
from sqlalchemy.sql import func
from cassa.database import Base, BigIntPK
import enum


class StockDirection(enum.Enum):
    """Direction of a stock delta."""
    ADD = "add"
    SUBTRACT = "subtract"


class StockMove(Base):
    """
    Stock Move - one signed delta applied to a (product, warehouse) counter.

    `qty` is positive for ADD and negative for SUBTRACT, so summing moves
    gives the net effect of a workflow.
    """

    __tablename__ = 'pos_stock_move'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    product_id = Column(BigInteger, nullable=False, index=True)
    warehouse_id = Column(BigInteger, nullable=False)
    qty = Column(Integer, nullable=False)
    direction = Column(Enum(StockDirection, name='stock_direction'), nullable=False)
    reference_order_id = Column(BigInteger, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<StockMove(id={self.id}, product_id={self.product_id}, qty={self.qty})>"
