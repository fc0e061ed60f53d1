from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from app.models.database import Base


class OrderStatus(str, Enum):
    PENDING = "pending"  # legacy rows created before the commit window existed
    PENDING_COMMIT = "pending_commit"
    COMMITTED = "committed"
    COURIER_SCHEDULED = "courier_scheduled"
    COLLECTED = "collected"
    DELIVERED = "delivered"
    DECLINED = "declined"
    EXPIRED = "expired"


class Order(Base):
    __tablename__ = "orders"
    # One order per seller per payment; a second completion of the same checkout cannot insert again.
    __table_args__ = (UniqueConstraint("payment_reference", "seller_id", name="uq_orders_payment_reference_seller"),)

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    buyer_email = Column(String(255), nullable=False)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING_COMMIT.value, index=True)
    items = Column(JSON, nullable=False)  # [{book_id, title, price, quantity}]
    total_amount = Column(Numeric(10, 2), nullable=False)
    payment_reference = Column(String(128), nullable=False, index=True)
    shipping_address = Column(JSON, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    committed_at = Column(DateTime(timezone=True), nullable=True)
    courier_provider = Column(String(50), nullable=True)
    courier_tracking_number = Column(String(128), nullable=True)
    courier_pickup_date = Column(String(32), nullable=True)
    courier_pickup_window = Column(String(64), nullable=True)
    shipping_label_url = Column(String(1024), nullable=True)
    collected_at = Column(DateTime(timezone=True), nullable=True)
    collected_by = Column(String(100), nullable=True)
    collection_notes = Column(Text, nullable=True)
    tracking_reference = Column(String(128), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    decline_reason = Column(Text, nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def book_ids(self) -> list[int]:
        return [int(item["book_id"]) for item in self.items or [] if item.get("book_id") is not None]
