import hashlib
import hmac
from unittest.mock import MagicMock, patch

import pytest

from app.services import paystack_service
from app.services.payment_gateways import (
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_SUCCESS,
    get_enabled_payment_methods,
    get_payment_gateway,
)


def _paystack_response(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    return response


def test_paystack_charge_with_single_subaccount():
    body = {"status": True, "data": {"reference": "ps_ref_1", "authorization_url": "https://checkout.paystack.test/x"}}
    metadata = {
        "buyer_id": 1,
        "subaccounts": [{"subaccount": "ACCT_a", "share": 9000}],
        "callback_url": "https://books.test/payment/callback",
    }

    with patch("app.services.paystack_service.requests.request", return_value=_paystack_response(body)) as mock_request:
        charge = get_payment_gateway("paystack").charge("buyer@example.com", 15000, metadata)

    assert charge.reference == "ps_ref_1"
    assert charge.authorization_url == "https://checkout.paystack.test/x"

    method, url = mock_request.call_args[0]
    payload = mock_request.call_args[1]["json"]
    assert method == "POST"
    assert url.endswith("/transaction/initialize")
    assert mock_request.call_args[1]["headers"]["Authorization"] == "Bearer sk_test_paystack"
    assert payload["amount"] == 15000
    assert payload["currency"] == "ZAR"
    assert payload["callback_url"] == "https://books.test/payment/callback"
    assert payload["subaccount"] == "ACCT_a"
    assert payload["transaction_charge"] == 6000
    assert payload["bearer"] == "account"


def test_paystack_charge_with_several_subaccounts_uses_split():
    body = {"status": True, "data": {"reference": "ps_ref_2", "authorization_url": "https://checkout.paystack.test/y"}}
    subaccounts = [{"subaccount": "ACCT_a", "share": 9000}, {"subaccount": "ACCT_b", "share": 4500}]

    with patch("app.services.paystack_service.requests.request", return_value=_paystack_response(body)) as mock_request:
        get_payment_gateway("paystack").charge("buyer@example.com", 15000, {"subaccounts": subaccounts})

    payload = mock_request.call_args[1]["json"]
    assert "subaccount" not in payload
    assert payload["split"]["type"] == "flat"
    assert payload["split"]["subaccounts"] == subaccounts


def test_paystack_charge_missing_authorization_url():
    body = {"status": True, "data": {"reference": "ps_ref_3"}}

    with patch("app.services.paystack_service.requests.request", return_value=_paystack_response(body)):
        with pytest.raises(paystack_service.PaystackError):
            get_payment_gateway("paystack").charge("buyer@example.com", 15000, {})


@pytest.mark.parametrize(
    ("paystack_status", "expected"),
    [("success", PAYMENT_SUCCESS), ("abandoned", PAYMENT_FAILED), ("ongoing", PAYMENT_PENDING)],
)
def test_paystack_verify_maps_status(paystack_status, expected):
    body = {"status": True, "data": {"status": paystack_status, "amount": 15000}}

    with patch("app.services.paystack_service.requests.request", return_value=_paystack_response(body)) as mock_request:
        result = get_payment_gateway("paystack").verify("ps_ref_1")

    assert result.status == expected
    assert result.amount_minor == 15000
    assert mock_request.call_args[0] == ("GET", "https://api.paystack.co/transaction/verify/ps_ref_1")


def test_paystack_refund():
    body = {"status": True, "data": {"id": 77, "status": "processed"}}

    with patch("app.services.paystack_service.requests.request", return_value=_paystack_response(body)) as mock_request:
        result = get_payment_gateway("paystack").refund("ps_ref_1", 10000, "Seller declined")

    assert result.status == "processed"
    assert result.reference == "77"
    payload = mock_request.call_args[1]["json"]
    assert payload["transaction"] == "ps_ref_1"
    assert payload["amount"] == 10000
    assert payload["customer_note"] == "Seller declined"


def test_paystack_error_response_raises():
    body = {"status": False, "message": "Invalid key"}

    with patch("app.services.paystack_service.requests.request", return_value=_paystack_response(body, 401)):
        with pytest.raises(paystack_service.PaystackError, match="Invalid key"):
            paystack_service.verify_transaction("ps_ref_1")


def test_paystack_webhook_signature():
    raw_body = b'{"event":"charge.success"}'
    signature = hmac.new(b"sk_test_paystack", raw_body, hashlib.sha512).hexdigest()

    assert paystack_service.verify_webhook_signature(raw_body, signature) is True
    assert paystack_service.verify_webhook_signature(raw_body, "0" * 128) is False
    assert paystack_service.verify_webhook_signature(raw_body, None) is False


def test_stripe_charge_creates_checkout_session():
    with patch("app.services.stripe_service.stripe") as mock_stripe:
        mock_session = MagicMock()
        mock_session.url = "https://checkout.stripe.com/test"
        mock_session.id = "cs_test_123"
        mock_stripe.checkout.Session.create.return_value = mock_session

        charge = get_payment_gateway("stripe").charge(
            "buyer@example.com",
            15000,
            {"buyer_id": 1, "item_count": 3, "items": [{"book_id": 1}], "subaccounts": [], "callback_url": "https://books.test/done"},
        )

    assert charge.reference == "cs_test_123"
    assert charge.authorization_url == "https://checkout.stripe.com/test"
    call_kwargs = mock_stripe.checkout.Session.create.call_args[1]
    assert call_kwargs["mode"] == "payment"
    assert call_kwargs["customer_email"] == "buyer@example.com"
    assert call_kwargs["line_items"][0]["price_data"]["unit_amount"] == 15000
    assert call_kwargs["line_items"][0]["price_data"]["currency"] == "zar"
    assert call_kwargs["success_url"] == "https://books.test/done?reference={CHECKOUT_SESSION_ID}"
    assert call_kwargs["metadata"] == {"buyer_id": "1", "item_count": "3", "callback_url": "https://books.test/done"}


@pytest.mark.parametrize(
    ("payment_status", "session_status", "expected"),
    [("paid", "complete", PAYMENT_SUCCESS), ("unpaid", "open", PAYMENT_PENDING), ("unpaid", "expired", PAYMENT_FAILED)],
)
def test_stripe_verify_maps_status(payment_status, session_status, expected):
    with patch("app.services.stripe_service.stripe") as mock_stripe:
        session = MagicMock(payment_status=payment_status, status=session_status, amount_total=15000)
        mock_stripe.checkout.Session.retrieve.return_value = session

        result = get_payment_gateway("stripe").verify("cs_test_123")

    assert result.status == expected
    assert result.amount_minor == 15000


def test_stripe_refund_uses_payment_intent():
    with patch("app.services.stripe_service.stripe") as mock_stripe:
        mock_stripe.checkout.Session.retrieve.return_value = MagicMock(payment_intent="pi_123")
        mock_stripe.Refund.create.return_value = MagicMock(id="re_1", status="succeeded")

        result = get_payment_gateway("stripe").refund("cs_test_123", 5000, "Order expired")

    assert result.status == "processed"
    assert result.reference == "re_1"
    call_kwargs = mock_stripe.Refund.create.call_args[1]
    assert call_kwargs["payment_intent"] == "pi_123"
    assert call_kwargs["amount"] == 5000


def test_stripe_refund_without_payment_intent():
    with patch("app.services.stripe_service.stripe") as mock_stripe:
        mock_stripe.checkout.Session.retrieve.return_value = MagicMock(payment_intent=None)

        with pytest.raises(ValueError, match="no payment intent"):
            get_payment_gateway("stripe").refund("cs_test_123", 5000, "Order expired")


def test_stripe_requires_secret_key(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "")

    with pytest.raises(ValueError, match="STRIPE_SECRET_KEY"):
        get_payment_gateway("stripe").verify("cs_test_123")


def test_gateway_registry(monkeypatch):
    assert get_enabled_payment_methods() == ["paystack", "stripe"]
    assert get_payment_gateway().method == "paystack"

    monkeypatch.setenv("STRIPE_SECRET_KEY", "")
    assert get_enabled_payment_methods() == ["paystack"]

    with pytest.raises(ValueError, match="Unsupported payment provider"):
        get_payment_gateway("cash")
