from app.services.couriers.base import CourierBooking, CourierError, CourierProvider, CourierQuote, Parcel
from app.services.couriers.booking import book_with_fallback, get_courier_providers, get_quotes

__all__ = [
    "CourierBooking",
    "CourierError",
    "CourierProvider",
    "CourierQuote",
    "Parcel",
    "book_with_fallback",
    "get_courier_providers",
    "get_quotes",
]
