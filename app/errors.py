"""Order lifecycle error taxonomy.

Every error carries a stable ``code`` (used by the HTTP layer and in logs) and
a human readable ``detail``. Best-effort failures (refunds, notifications) are
defined here too so they can be logged uniformly, but the orchestrator never
lets them escape a committed status transition.
"""


class MarketplaceError(Exception):
    code = "marketplace_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class ValidationError(MarketplaceError):
    code = "validation_error"


class InventoryConflictError(MarketplaceError):
    code = "inventory_conflict"

    def __init__(self, unavailable_book_ids: list[int], detail: str | None = None):
        super().__init__(detail or "Some books are no longer available")
        self.unavailable_book_ids = list(unavailable_book_ids)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "unavailable_books": self.unavailable_book_ids}


class SelfPurchaseError(MarketplaceError):
    code = "self_purchase"

    def __init__(self, own_book_ids: list[int]):
        super().__init__("Cannot purchase your own books")
        self.own_book_ids = list(own_book_ids)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "own_books": self.own_book_ids}


class PaymentFailedError(MarketplaceError):
    code = "payment_failed"


class OrderNotFoundError(MarketplaceError):
    code = "order_not_found"

    def __init__(self, order_id: int):
        super().__init__("Order not found or access denied")
        self.order_id = order_id


class InvalidTransitionError(MarketplaceError):
    code = "invalid_transition"

    def __init__(self, order_id: int, status: str, action: str):
        super().__init__(f"Order cannot be {action} in status '{status}'")
        self.order_id = order_id
        self.status = status


class CommitWindowClosedError(InvalidTransitionError):
    code = "commit_window_closed"

    def __init__(self, order_id: int):
        MarketplaceError.__init__(self, "Commitment deadline has passed for this order")
        self.order_id = order_id
        self.status = "pending_commit"


class CourierBookingFailedError(MarketplaceError):
    code = "courier_booking_failed"

    def __init__(self, provider_errors: dict[str, str], order_id: int | None = None):
        summary = "; ".join(f"{name}: {message}" for name, message in provider_errors.items())
        super().__init__(f"Failed to book courier pickup ({summary or 'no providers configured'})")
        self.provider_errors = dict(provider_errors)
        self.order_id = order_id

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "order_id": self.order_id,
            "order_status": "committed",
            "providers": self.provider_errors,
        }


class RefundFailedError(MarketplaceError):
    code = "refund_failed"


class NotificationFailedError(MarketplaceError):
    code = "notification_failed"
