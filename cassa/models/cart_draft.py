"""Cart Draft model for persistent terminal state."""
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from cassa.database import Base, BigIntPK


class CartDraft(Base):
    """
    Cart Draft - persisted working cart and frozen orders of a terminal.

    Lets the cart survive page refreshes and restarts. One draft per
    terminal (enforced by UNIQUE constraint).
    """

    __tablename__ = 'pos_cart_draft'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    terminal_id = Column(String(64), unique=True, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<CartDraft(id={self.id}, terminal_id={self.terminal_id})>"
