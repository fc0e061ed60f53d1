from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from app.models.database import Base


class RefundReason(str, Enum):
    DECLINED_BY_SELLER = "declined_by_seller"
    OVERDUE_COMMIT = "overdue_commit"


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    # One refund per order: the unique constraint backs the at-most-once guarantee.
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)
    payment_reference = Column(String(128), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(String(32), nullable=False)
    note = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="pending")  # pending | processed | failed
    gateway_reference = Column(String(128), nullable=True)
    failure_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    attempted_at = Column(DateTime(timezone=True), nullable=True)  # last time a gateway call was started
    processed_at = Column(DateTime(timezone=True), nullable=True)
