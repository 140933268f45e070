"""Voucher (buono) model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.sql import func
from cassa.database import Base, BigIntPK
import enum


class VoucherStatus(enum.IntEnum):
    """Voucher status ids."""
    VALID = 23
    FULLY_USED = 24
    PARTIALLY_USED = 25


class Voucher(Base):
    """Store credit issued on cancellation/return and spent at checkout."""

    __tablename__ = 'pos_voucher'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(40), unique=True, nullable=False, index=True)
    origin_order_id = Column(BigInteger, nullable=True)
    destination_order_id = Column(BigInteger, nullable=True)

    total_amount = Column(Numeric(10, 2), nullable=False)
    used_amount = Column(Numeric(10, 2), nullable=False, default=0)
    status_id = Column(Integer, nullable=False, default=VoucherStatus.VALID.value)

    validity_start_date = Column(DateTime(timezone=True), nullable=False)
    validity_end_date = Column(DateTime(timezone=True), nullable=False)
    date_of_use = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @hybrid_property
    def remaining_amount(self):
        return (self.total_amount or 0) - (self.used_amount or 0)

    def __repr__(self):
        return f"<Voucher(id={self.id}, code={self.code}, total={self.total_amount}, used={self.used_amount})>"
