from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.sql import func

from app.models.database import Base


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(128), unique=True, index=True, nullable=False)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    buyer_email = Column(String(255), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String(32), nullable=False, default="pending")  # pending | success | failed | reversed | reversal_failed
    items = Column(JSON, nullable=True)  # cart snapshot used to complete checkout from the reference
    shipping_address = Column(JSON, nullable=True)
    authorization_url = Column(String(1024), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
