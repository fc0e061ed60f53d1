from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from app.errors import CourierBookingFailedError
from app.services.couriers import CourierError, Parcel, book_with_fallback, courier_guy, fastway, get_quotes
from app.services.couriers.base import parcel_size, post_json

from conftest import make_courier

PICKUP = {"name": "Seller A", "street": "12 Long St", "city": "Cape Town", "postal_code": "8001", "phone": "0820000002"}
DELIVERY = {"name": "Buyer", "streetAddress": "1 Main Rd", "city": "Johannesburg", "postalCode": "2001"}


def _response(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    return response


def test_book_with_fallback_returns_first_success():
    first = make_courier("courier-guy", tracking_number="CG-1")
    second = make_courier("fastway", tracking_number="FW-1")

    booking = book_with_fallback([first, second], PICKUP, DELIVERY, Parcel(), reference="42")

    assert booking.provider == "courier-guy"
    assert booking.tracking_number == "CG-1"
    assert second.options["calls"] == []


def test_book_with_fallback_collects_every_error():
    providers = [make_courier("courier-guy", error="timeout"), make_courier("fastway", error="bad address")]

    with pytest.raises(CourierBookingFailedError) as exc_info:
        book_with_fallback(providers, PICKUP, DELIVERY, Parcel(), reference="42")

    assert exc_info.value.provider_errors == {"courier-guy": "timeout", "fastway": "bad address"}
    assert "courier-guy: timeout" in exc_info.value.detail


def test_book_with_fallback_skips_disabled_and_empty_bookings(monkeypatch):
    monkeypatch.setenv("COURIER_GUY_API_KEY", "")
    disabled = courier_guy.get_provider()
    empty = make_courier("fastway", tracking_number="")

    with pytest.raises(CourierBookingFailedError) as exc_info:
        book_with_fallback([disabled, empty], PICKUP, DELIVERY, Parcel(), reference="42")

    assert exc_info.value.provider_errors == {
        "courier-guy": "provider not configured",
        "fastway": "booking returned no tracking number",
    }


def test_book_with_fallback_without_providers():
    with pytest.raises(CourierBookingFailedError, match="no providers configured"):
        book_with_fallback([], PICKUP, DELIVERY, Parcel(), reference="42")


def test_get_quotes_sorts_and_flags_estimates():
    live = make_courier("courier-guy")
    down = make_courier("fastway", error="unreachable")

    quotes = get_quotes([live, down], PICKUP, DELIVERY, Parcel())

    assert [quote.provider for quote in quotes] == ["courier-guy", "fastway"]
    assert quotes[0].price == Decimal("89.00")
    assert quotes[0].mock is False
    # Cape Town -> Johannesburg estimate: 45 + 1000 km * 0.5
    assert quotes[1].price == Decimal("545")
    assert quotes[1].mock is True


def test_get_quotes_same_city_estimate(monkeypatch):
    monkeypatch.setenv("COURIER_GUY_API_KEY", "")
    quotes = get_quotes([courier_guy.get_provider()], PICKUP, {"city": "Cape Town"}, Parcel())

    assert quotes[0].price == Decimal("70")
    assert quotes[0].mock is True


def test_parcel_size_buckets():
    assert parcel_size(Parcel(weight_kg=Decimal("0.5"))) == 1
    assert parcel_size(Parcel(weight_kg=Decimal("3"))) == 2
    assert parcel_size(Parcel(weight_kg=Decimal("8"))) == 3
    assert parcel_size(Parcel(weight_kg=Decimal("20"))) == 4


def test_post_json_requires_api_key():
    with pytest.raises(CourierError, match="API key"):
        post_json("https://courier.test/shipments", "", {}, timeout=5)


def test_post_json_maps_transport_and_provider_errors():
    with patch("app.services.couriers.base.requests.post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(CourierError, match="unreachable"):
            post_json("https://courier.test/shipments", "key", {}, timeout=5)

    with patch("app.services.couriers.base.requests.post", return_value=_response({"message": "Invalid zone"}, 422)):
        with pytest.raises(CourierError, match="Invalid zone"):
            post_json("https://courier.test/shipments", "key", {}, timeout=5)

    with patch("app.services.couriers.base.requests.post", return_value=_response({"success": False, "error": "No rates"})):
        with pytest.raises(CourierError, match="No rates"):
            post_json("https://courier.test/shipments", "key", {}, timeout=5)


def test_courier_guy_book_pickup(monkeypatch):
    monkeypatch.setenv("COURIER_GUY_API_KEY", "cg-key")
    body = {"data": {"waybill_number": "WB123", "collection_date": "2026-03-03", "label_url": "https://cg.test/l.pdf", "total_cost": 95}}

    with patch("app.services.couriers.base.requests.post", return_value=_response(body)) as mock_post:
        booking = courier_guy.book_pickup(PICKUP, DELIVERY, Parcel(weight_kg=Decimal("1.7")), reference="42")

    assert booking.provider == "courier-guy"
    assert booking.tracking_number == "WB123"
    assert booking.pickup_date == "2026-03-03"
    assert booking.label_url == "https://cg.test/l.pdf"
    assert booking.cost == Decimal("95")

    url = mock_post.call_args[0][0]
    payload = mock_post.call_args[1]["json"]
    headers = mock_post.call_args[1]["headers"]
    assert url.endswith("/shipments")
    assert headers["Authorization"] == "Bearer cg-key"
    assert payload["custom_tracking_reference"] == "42"
    assert payload["collection_address"]["city"] == "Cape Town"
    assert payload["delivery_address"]["street_address"] == "1 Main Rd"
    assert payload["delivery_address"]["code"] == "2001"
    assert payload["parcels"][0]["parcel_size"] == 2


def test_courier_guy_booking_without_waybill_fails(monkeypatch):
    monkeypatch.setenv("COURIER_GUY_API_KEY", "cg-key")

    with patch("app.services.couriers.base.requests.post", return_value=_response({"data": {"status": "queued"}})):
        with pytest.raises(CourierError, match="waybill"):
            courier_guy.book_pickup(PICKUP, DELIVERY, Parcel(), reference="42")


def test_fastway_quote(monkeypatch):
    monkeypatch.setenv("FASTWAY_API_KEY", "fw-key")
    body = {"data": {"price": "72.50", "service_level": "economy", "estimated_delivery_days": 4}}

    with patch("app.services.couriers.base.requests.post", return_value=_response(body)) as mock_post:
        quotes = fastway.quote(PICKUP, DELIVERY, Parcel())

    assert len(quotes) == 1
    assert quotes[0].provider == "fastway"
    assert quotes[0].price == Decimal("72.50")
    assert quotes[0].service_level == "economy"
    assert quotes[0].estimated_delivery_days == 4
    assert mock_post.call_args[1]["json"]["pickup_address"]["address_line_1"] == "12 Long St"


def test_providers_are_enabled_by_api_keys(monkeypatch):
    monkeypatch.setenv("COURIER_GUY_API_KEY", "")
    monkeypatch.setenv("FASTWAY_API_KEY", "fw-key")

    assert courier_guy.get_provider().enabled is False
    assert fastway.get_provider().enabled is True
