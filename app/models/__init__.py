from app.models.database import Base, get_db
from app.models.user import User
from app.models.book import Book
from app.models.order import Order, OrderStatus
from app.models.payment_transaction import PaymentTransaction
from app.models.refund import Refund, RefundReason

__all__ = [
    "Base",
    "get_db",
    "User",
    "Book",
    "Order",
    "OrderStatus",
    "PaymentTransaction",
    "Refund",
    "RefundReason",
]
