import hashlib
import hmac
import logging

import requests

logger = logging.getLogger(__name__)


class PaystackError(Exception):
    """Paystack rejected the request or could not be reached."""


def _secret_key() -> str:
    from app.config import settings

    if not settings.PAYSTACK_SECRET_KEY:
        raise ValueError("PAYSTACK_SECRET_KEY is not set")
    return settings.PAYSTACK_SECRET_KEY


def _request(method: str, path: str, payload: dict | None = None) -> dict:
    from app.config import settings

    url = f"{settings.PAYSTACK_BASE_URL.rstrip('/')}/{path.lstrip('/')}"
    headers = {
        "Authorization": f"Bearer {_secret_key()}",
        "Content-Type": "application/json",
    }
    try:
        response = requests.request(
            method,
            url,
            json=payload,
            headers=headers,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        raise PaystackError(f"Paystack unreachable: {exc}") from exc

    try:
        body = response.json()
    except ValueError as exc:
        raise PaystackError(f"Paystack returned invalid JSON (HTTP {response.status_code})") from exc

    if not response.ok or not body.get("status"):
        raise PaystackError(body.get("message") or f"Paystack request failed (HTTP {response.status_code})")
    return body.get("data") or {}


def initialize_transaction(
    email: str,
    amount_minor: int,
    metadata: dict,
    callback_url: str,
    currency: str = "ZAR",
    subaccounts: list[dict] | None = None,
) -> dict:
    """Initialize a Paystack transaction; returns ``{reference, authorization_url, access_code}``.

    ``subaccounts`` is a list of ``{"subaccount": code, "share": amount_minor}``. One
    subaccount is attached directly, several become a flat split; the platform account
    keeps whatever is not shared out (its fee).
    """
    payload = {
        "email": email,
        "amount": amount_minor,
        "currency": currency,
        "callback_url": callback_url,
        "metadata": metadata,
    }
    subaccounts = [entry for entry in subaccounts or [] if entry.get("subaccount")]
    if len(subaccounts) == 1:
        payload["subaccount"] = subaccounts[0]["subaccount"]
        payload["transaction_charge"] = amount_minor - subaccounts[0]["share"]
        payload["bearer"] = "account"
    elif len(subaccounts) > 1:
        payload["split"] = {
            "type": "flat",
            "currency": currency,
            "subaccounts": subaccounts,
            "bearer_type": "account",
        }
    return _request("POST", "/transaction/initialize", payload)


def verify_transaction(reference: str) -> dict:
    return _request("GET", f"/transaction/verify/{reference}")


def create_refund(reference: str, amount_minor: int, reason: str, currency: str = "ZAR") -> dict:
    return _request(
        "POST",
        "/refund",
        {
            "transaction": reference,
            "amount": amount_minor,
            "currency": currency,
            "customer_note": reason,
            "merchant_note": f"Refund for transaction {reference}: {reason}",
        },
    )


def verify_webhook_signature(raw_body: bytes, signature: str | None) -> bool:
    """Paystack signs webhook bodies with HMAC SHA-512 using the secret key."""
    if not signature:
        return False
    expected = hmac.new(_secret_key().encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(signature, expected)
