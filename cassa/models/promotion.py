"""Promotion model."""
from sqlalchemy import Column, Boolean, String, Text, DateTime
from sqlalchemy.sql import func
from cassa.database import Base, BigIntPK


class Promotion(Base):
    """Promotion record; `rule` holds the WHERE ... THEN ... text."""

    __tablename__ = 'pos_promotion'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    description = Column(String(200), nullable=False)
    rule = Column('query', Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Promotion(id={self.id}, description={self.description!r})>"
