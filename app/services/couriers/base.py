import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

import requests

logger = logging.getLogger(__name__)

DEFAULT_LENGTH_CM = 25
DEFAULT_WIDTH_CM = 20
DEFAULT_HEIGHT_CM = 5
DEFAULT_WEIGHT_KG = Decimal("0.5")


class CourierError(Exception):
    """A single provider could not complete the request."""


@dataclass(frozen=True)
class Parcel:
    weight_kg: Decimal = DEFAULT_WEIGHT_KG
    length_cm: int = DEFAULT_LENGTH_CM
    width_cm: int = DEFAULT_WIDTH_CM
    height_cm: int = DEFAULT_HEIGHT_CM
    declared_value: Decimal = Decimal("100")
    description: str = "Textbook"


@dataclass(frozen=True)
class CourierBooking:
    provider: str
    tracking_number: str
    pickup_date: str
    pickup_window: str
    label_url: str | None = None
    cost: Decimal | None = None


@dataclass(frozen=True)
class CourierQuote:
    provider: str
    price: Decimal
    service_level: str = "standard"
    estimated_delivery_days: int = 3
    mock: bool = False


@dataclass(frozen=True)
class CourierProvider:
    name: str
    book_pickup: Callable[[dict, dict, Parcel, str], CourierBooking]
    quote: Callable[[dict, dict, Parcel], list[CourierQuote]]
    enabled: bool = True
    options: dict = field(default_factory=dict)


def address_field(address: dict, *names: str, default: str = "") -> str:
    """Addresses arrive in both snake_case and camelCase; return the first populated key."""
    for name in names:
        value = address.get(name)
        if value:
            return str(value)
    return default


def post_json(url: str, api_key: str, payload: dict, timeout: int) -> dict:
    if not api_key:
        raise CourierError("API key not configured")
    try:
        response = requests.post(
            url,
            json=payload,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise CourierError(f"provider unreachable: {exc}") from exc

    try:
        body = response.json()
    except ValueError as exc:
        raise CourierError(f"malformed response (HTTP {response.status_code})") from exc

    if not response.ok:
        message = body.get("message") if isinstance(body, dict) else None
        raise CourierError(message or f"HTTP {response.status_code}")
    if isinstance(body, dict) and body.get("success") is False:
        raise CourierError(body.get("error") or body.get("message") or "provider reported failure")
    return body


def parcel_size(parcel: Parcel) -> int:
    volume = parcel.length_cm * parcel.width_cm * parcel.height_cm
    if parcel.weight_kg <= 1 and volume <= 10_000:
        return 1
    if parcel.weight_kg <= 5 and volume <= 50_000:
        return 2
    if parcel.weight_kg <= 10 and volume <= 100_000:
        return 3
    return 4
