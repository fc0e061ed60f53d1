import logging
from datetime import date
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
    parcel_size,
    post_json,
)

logger = logging.getLogger(__name__)

NAME = "courier-guy"
PICKUP_WINDOW = "09:00 - 17:00"


def _address(address: dict) -> dict:
    return {
        "type": "residential",
        "company": address_field(address, "name"),
        "street_address": address_field(address, "street", "streetAddress", "street_address"),
        "local_area": address_field(address, "suburb"),
        "city": address_field(address, "city"),
        "zone": address_field(address, "province"),
        "country": "ZA",
        "code": address_field(address, "postal_code", "postalCode"),
        "contact": address_field(address, "name"),
        "phone": address_field(address, "phone"),
        "email": address_field(address, "email"),
    }


def _parcels(parcel: Parcel) -> list[dict]:
    return [
        {
            "parcel_size": parcel_size(parcel),
            "parcel_weight": float(parcel.weight_kg),
            "submitted_length_cm": parcel.length_cm,
            "submitted_width_cm": parcel.width_cm,
            "submitted_height_cm": parcel.height_cm,
            "submitted_weight_kg": float(parcel.weight_kg),
            "parcel_description": parcel.description,
        }
    ]


def build_shipment_request(
    pickup_address: dict, delivery_address: dict, parcel: Parcel, reference: str, collection_date: date
) -> dict:
    return {
        "collection_address": _address(pickup_address),
        "delivery_address": _address(delivery_address),
        "parcels": _parcels(parcel),
        "declared_value": float(parcel.declared_value),
        "special_instructions_collection": "Handle with care - contains books",
        "special_instructions_delivery": "Handle with care - contains books",
        "custom_tracking_reference": reference,
        "service_level": "standard",
        "collection_date": collection_date.isoformat(),
    }


def book_pickup(pickup_address: dict, delivery_address: dict, parcel: Parcel, reference: str) -> CourierBooking:
    collection_date = next_business_day(utcnow())
    payload = build_shipment_request(pickup_address, delivery_address, parcel, reference, collection_date)
    result = post_json(
        f"{settings.COURIER_GUY_BASE_URL.rstrip('/')}/shipments",
        settings.COURIER_GUY_API_KEY,
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
    logger.info("Courier Guy shipment booked: reference=%s waybill=%s", reference, booking.tracking_number)
    return booking


def quote(pickup_address: dict, delivery_address: dict, parcel: Parcel) -> list[CourierQuote]:
    payload = {
        "collection_address": _address(pickup_address),
        "delivery_address": _address(delivery_address),
        "parcels": _parcels(parcel),
        "declared_value": float(parcel.declared_value),
        "service_level": "standard",
    }
    result = post_json(
        f"{settings.COURIER_GUY_BASE_URL.rstrip('/')}/quotes",
        settings.COURIER_GUY_API_KEY,
        payload,
        settings.HTTP_TIMEOUT_SECONDS,
    )
    rows = result.get("data") if isinstance(result, dict) else result
    if not rows:
        raise CourierError("no quotes available for this route")
    return [
        CourierQuote(
            provider=NAME,
            price=Decimal(str(row.get("total_cost") or row.get("cost") or 0)),
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
        enabled=bool(settings.COURIER_GUY_API_KEY),
    )
