import logging
from decimal import Decimal

from app.errors import CourierBookingFailedError
from app.services.couriers import courier_guy, fastway
from app.services.couriers.base import CourierBooking, CourierProvider, CourierQuote, Parcel

logger = logging.getLogger(__name__)

# Rough distances (km) from Cape Town, used only for offline quote estimates.
_CITY_DISTANCES = {
    "cape town": 0,
    "port elizabeth": 400,
    "gqeberha": 400,
    "durban": 600,
    "johannesburg": 1000,
    "pretoria": 1050,
}
_MOCK_BASE_COST = Decimal("45")


def get_courier_providers() -> list[CourierProvider]:
    """Providers in fallback order. Add a provider by appending it here."""
    return [courier_guy.get_provider(), fastway.get_provider()]


def book_with_fallback(
    providers: list[CourierProvider],
    pickup_address: dict,
    delivery_address: dict,
    parcel: Parcel,
    reference: str,
) -> CourierBooking:
    """Try each provider in order and return the first booking.

    Raises CourierBookingFailedError carrying every provider's message when none
    succeeds. There is deliberately no offline fallback here: a booking binds a
    real shipment.
    """
    errors: dict[str, str] = {}
    for provider in providers:
        if not provider.enabled:
            errors[provider.name] = "provider not configured"
            logger.warning("Skipping courier %s for %s: not configured", provider.name, reference)
            continue
        try:
            booking = provider.book_pickup(pickup_address, delivery_address, parcel, reference)
        except Exception as exc:
            errors[provider.name] = str(exc) or exc.__class__.__name__
            logger.warning("Courier %s booking failed for %s: %s", provider.name, reference, errors[provider.name])
            continue
        if not booking.tracking_number:
            errors[provider.name] = "booking returned no tracking number"
            logger.warning("Courier %s returned an empty booking for %s", provider.name, reference)
            continue
        return booking

    raise CourierBookingFailedError(errors)


def estimate_quote(provider_name: str, pickup_address: dict, delivery_address: dict) -> CourierQuote:
    pickup_city = (pickup_address.get("city") or "cape town").strip().lower()
    delivery_city = (delivery_address.get("city") or "johannesburg").strip().lower()
    if pickup_city == delivery_city:
        distance = 50
    else:
        distance = abs(_CITY_DISTANCES.get(pickup_city, 500) - _CITY_DISTANCES.get(delivery_city, 500))
    price = (_MOCK_BASE_COST + Decimal(distance) * Decimal("0.5")).quantize(Decimal("1"))
    return CourierQuote(provider=provider_name, price=price, estimated_delivery_days=3, mock=True)


def get_quotes(
    providers: list[CourierProvider],
    pickup_address: dict,
    delivery_address: dict,
    parcel: Parcel,
) -> list[CourierQuote]:
    """Collect delivery quotes, cheapest first.

    A provider that cannot be reached is represented by an estimate flagged
    ``mock=True``. Estimates are for pricing the cart only, never for booking.
    """
    quotes: list[CourierQuote] = []
    for provider in providers:
        try:
            if not provider.enabled:
                raise RuntimeError("provider not configured")
            quotes.extend(provider.quote(pickup_address, delivery_address, parcel))
        except Exception as exc:
            logger.warning("Courier %s quote unavailable, using estimate: %s", provider.name, exc)
            quotes.append(estimate_quote(provider.name, pickup_address, delivery_address))
    return sorted(quotes, key=lambda quote: quote.price)
