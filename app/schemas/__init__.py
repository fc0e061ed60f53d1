from app.schemas.orders import (
    CheckoutCompleteRequest,
    CheckoutCompleteResponse,
    CheckoutCreateRequest,
    CheckoutStartRequest,
    CheckoutStartResponse,
    CollectRequest,
    CourierQuoteResponse,
    DeclineRequest,
    OrderResponse,
    QuoteRequest,
    RefundResponse,
    SellerQuotesResponse,
    SweepReportResponse,
)

__all__ = [
    "CheckoutCompleteRequest",
    "CheckoutCompleteResponse",
    "CheckoutCreateRequest",
    "CheckoutStartRequest",
    "CheckoutStartResponse",
    "CollectRequest",
    "CourierQuoteResponse",
    "DeclineRequest",
    "OrderResponse",
    "QuoteRequest",
    "RefundResponse",
    "SellerQuotesResponse",
    "SweepReportResponse",
]
