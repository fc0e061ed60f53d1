from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.models.database import Base


class User(Base):
    """Marketplace profile. Accounts are managed by the auth service; this core only reads them."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    pickup_address = Column(JSON, nullable=True)
    subaccount_code = Column(String(64), nullable=True)  # Paystack split subaccount
    created_at = Column(DateTime(timezone=True), server_default=func.now())
