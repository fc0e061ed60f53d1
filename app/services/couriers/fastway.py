import logging
from decimal import Decimal

from app.config import settings
from app.services.clock import next_business_day, utcnow
from app.services.couriers.base import (
    CourierBooking,
    CourierError,
    CourierProvider,
    CourierQuote,
    Parcel,
    address_field,
    post_json,
)

logger = logging.getLogger(__name__)

NAME = "fastway"
PICKUP_WINDOW = "08:00 - 17:00"


def _address(address: dict) -> dict:
    return {
        "company_name": address_field(address, "name"),
        "contact_name": address_field(address, "name"),
        "phone": address_field(address, "phone"),
        "email": address_field(address, "email"),
        "address_line_1": address_field(address, "street", "streetAddress", "street_address"),
        "suburb": address_field(address, "suburb"),
        "city": address_field(address, "city"),
        "province": address_field(address, "province"),
        "postal_code": address_field(address, "postal_code", "postalCode"),
        "country": "ZA",
    }


def _parcel(parcel: Parcel) -> dict:
    return {
        "weight_kg": float(parcel.weight_kg),
        "length_cm": parcel.length_cm,
        "width_cm": parcel.width_cm,
        "height_cm": parcel.height_cm,
        "description": parcel.description,
        "declared_value": float(parcel.declared_value),
    }


def book_pickup(pickup_address: dict, delivery_address: dict, parcel: Parcel, reference: str) -> CourierBooking:
    collection_date = next_business_day(utcnow())
    payload = {
        "pickup_address": _address(pickup_address),
        "delivery_address": _address(delivery_address),
        "parcel": _parcel(parcel),
        "service_level": "standard",
        "reference_number": reference,
        "collection_date": collection_date.isoformat(),
        "special_instructions": "Handle with care - contains books",
    }
    result = post_json(
        f"{settings.FASTWAY_BASE_URL.rstrip('/')}/shipments",
        settings.FASTWAY_API_KEY,
        payload,
        settings.HTTP_TIMEOUT_SECONDS,
    )
    shipment = result.get("data") or result
    tracking_number = shipment.get("waybill_number") or shipment.get("tracking_number")
    if not tracking_number:
        raise CourierError("response has no waybill or tracking number")

    booking = CourierBooking(
        provider=NAME,
        tracking_number=str(tracking_number),
        pickup_date=shipment.get("collection_date") or collection_date.isoformat(),
        pickup_window=PICKUP_WINDOW,
        label_url=shipment.get("label_url") or shipment.get("waybill_url"),
        cost=Decimal(str(shipment.get("total_cost") or shipment.get("cost") or 0)),
    )
    logger.info("Fastway shipment booked: reference=%s waybill=%s", reference, booking.tracking_number)
    return booking


def quote(pickup_address: dict, delivery_address: dict, parcel: Parcel) -> list[CourierQuote]:
    payload = {
        "pickup_address": _address(pickup_address),
        "delivery_address": _address(delivery_address),
        "parcel": _parcel(parcel),
        "service_level": "standard",
    }
    result = post_json(
        f"{settings.FASTWAY_BASE_URL.rstrip('/')}/quotes",
        settings.FASTWAY_API_KEY,
        payload,
        settings.HTTP_TIMEOUT_SECONDS,
    )
    rows = result.get("data") if isinstance(result, dict) else result
    if isinstance(rows, dict):
        rows = [rows]
    if not rows:
        raise CourierError("no quotes available for this route")
    return [
        CourierQuote(
            provider=NAME,
            price=Decimal(str(row.get("total_cost") or row.get("cost") or row.get("price") or 0)),
            service_level=row.get("service_level") or "standard",
            estimated_delivery_days=int(row.get("estimated_delivery_days") or 2),
        )
        for row in rows
    ]


def get_provider() -> CourierProvider:
    return CourierProvider(
        name=NAME,
        book_pickup=book_pickup,
        quote=quote,
        enabled=bool(settings.FASTWAY_API_KEY),
    )
