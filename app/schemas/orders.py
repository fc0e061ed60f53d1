from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer


class _MoneyResponse(BaseModel):
    @field_serializer(
        "total_amount", "amount", "subtotal", "platform_fee", "seller_amount", "total_refunded", check_fields=False
    )
    def serialize_money(self, value: Decimal) -> str:
        return format(value, "f")


class ShippingAddress(BaseModel):
    street: str
    city: str
    province: str | None = None
    postal_code: str
    country: str = "ZA"
    phone: str | None = None
    name: str | None = None


class CartItemRequest(BaseModel):
    book_id: int
    seller_id: int
    price: Decimal
    quantity: int = Field(default=1, ge=1)
    title: str | None = None


class CheckoutStartRequest(BaseModel):
    book_ids: list[int] = Field(min_length=1)
    shipping_address: ShippingAddress
    delivery_fee: Decimal = Decimal("0")
    callback_url: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "book_ids": [101, 102],
                    "shipping_address": {
                        "street": "1 Main Rd",
                        "city": "Cape Town",
                        "province": "Western Cape",
                        "postal_code": "8001",
                    },
                    "delivery_fee": "95.00",
                    "callback_url": "https://frontend.example.com/payment/callback",
                }
            ]
        }
    }


class SellerSplitResponse(_MoneyResponse):
    seller_id: int
    subtotal: Decimal
    platform_fee: Decimal
    seller_amount: Decimal


class CheckoutStartResponse(_MoneyResponse):
    reference: str
    authorization_url: str
    total_amount: Decimal
    splits: list[SellerSplitResponse]


class CheckoutCompleteRequest(BaseModel):
    reference: str = Field(min_length=1)


class CheckoutCreateRequest(BaseModel):
    """Order creation for a payment already captured elsewhere (e.g. a mobile checkout)."""

    items: list[CartItemRequest] = Field(min_length=1)
    shipping_address: ShippingAddress
    payment_reference: str = Field(min_length=1)
    total_amount: Decimal
    delivery_fee: Decimal = Decimal("0")


class OrderItemResponse(BaseModel):
    book_id: int
    title: str | None = None
    price: str
    quantity: int = 1


class OrderResponse(_MoneyResponse):
    id: int
    buyer_id: int
    seller_id: int
    status: str
    items: list[OrderItemResponse]
    total_amount: Decimal
    payment_reference: str
    expires_at: datetime | None = None
    committed_at: datetime | None = None
    courier_provider: str | None = None
    courier_tracking_number: str | None = None
    courier_pickup_date: str | None = None
    courier_pickup_window: str | None = None
    shipping_label_url: str | None = None
    collected_at: datetime | None = None
    delivered_at: datetime | None = None
    declined_at: datetime | None = None
    decline_reason: str | None = None
    expired_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CheckoutCompleteResponse(BaseModel):
    reference: str
    orders: list[OrderResponse]


class DeclineRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class CollectRequest(BaseModel):
    collected_by: str = "courier"
    tracking_reference: str | None = None
    notes: str | None = None


class RefundResponse(_MoneyResponse):
    order_id: int
    payment_reference: str
    amount: Decimal
    reason: str
    status: str
    gateway_reference: str | None = None
    failure_message: str | None = None
    processed_at: datetime | None = None

    model_config = {"from_attributes": True}


class SweepReportResponse(_MoneyResponse):
    processed: int
    skipped: int
    errors: list[dict]
    total_refunded: Decimal
    reminders_sent: int = 0

    model_config = {"from_attributes": True}


class QuoteRequest(BaseModel):
    book_ids: list[int] = Field(min_length=1)
    shipping_address: ShippingAddress


class CourierQuoteResponse(BaseModel):
    provider: str
    price: Decimal
    service_level: str
    estimated_delivery_days: int
    mock: bool = False

    model_config = {"from_attributes": True}

    @field_serializer("price")
    def serialize_price(self, value: Decimal) -> str:
        return format(value, "f")


class SellerQuotesResponse(BaseModel):
    seller_id: int
    quotes: list[CourierQuoteResponse]
