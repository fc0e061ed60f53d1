import logging
from dataclasses import dataclass
from typing import Callable

from app.config import settings
from app.services import paystack_service, stripe_service

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS = "success"
PAYMENT_FAILED = "failed"
PAYMENT_PENDING = "pending"


@dataclass(frozen=True)
class ChargeResult:
    reference: str
    authorization_url: str


@dataclass(frozen=True)
class VerificationResult:
    reference: str
    status: str  # success | failed | pending
    amount_minor: int


@dataclass(frozen=True)
class RefundResult:
    status: str  # processed | pending
    reference: str | None = None


@dataclass(frozen=True)
class PaymentGateway:
    method: str
    charge: Callable[[str, int, dict], ChargeResult]
    verify: Callable[[str], VerificationResult]
    refund: Callable[[str, int, str], RefundResult]
    enabled: bool


def _paystack_charge(email: str, amount_minor: int, metadata: dict) -> ChargeResult:
    data = paystack_service.initialize_transaction(
        email=email,
        amount_minor=amount_minor,
        metadata=metadata,
        callback_url=metadata.get("callback_url") or settings.PAYSTACK_CALLBACK_URL,
        currency=settings.CURRENCY,
        subaccounts=metadata.get("subaccounts"),
    )
    if not data.get("reference") or not data.get("authorization_url"):
        raise paystack_service.PaystackError("Paystack response is missing reference or authorization_url")
    return ChargeResult(reference=data["reference"], authorization_url=data["authorization_url"])


def _paystack_verify(reference: str) -> VerificationResult:
    data = paystack_service.verify_transaction(reference)
    status = PAYMENT_SUCCESS if data.get("status") == "success" else PAYMENT_FAILED
    if data.get("status") in {"ongoing", "pending", "processing", "queued"}:
        status = PAYMENT_PENDING
    return VerificationResult(reference=reference, status=status, amount_minor=int(data.get("amount") or 0))


def _paystack_refund(reference: str, amount_minor: int, reason: str) -> RefundResult:
    data = paystack_service.create_refund(reference, amount_minor, reason, currency=settings.CURRENCY)
    status = "processed" if data.get("status") == "processed" else "pending"
    refund_id = data.get("id")
    return RefundResult(status=status, reference=str(refund_id) if refund_id is not None else None)


def _stripe_charge(email: str, amount_minor: int, metadata: dict) -> ChargeResult:
    checkout_url, session_id = stripe_service.create_checkout_session(
        email=email,
        amount_minor=amount_minor,
        description=f"Textbook order ({metadata.get('item_count', 1)} item(s))",
        metadata={key: value for key, value in metadata.items() if key not in {"items", "subaccounts"}},
        success_url=metadata.get("callback_url") or settings.STRIPE_SUCCESS_URL,
        cancel_url=settings.STRIPE_CANCEL_URL,
        currency=settings.CURRENCY,
    )
    return ChargeResult(reference=session_id, authorization_url=checkout_url)


def _stripe_verify(reference: str) -> VerificationResult:
    session = stripe_service.retrieve_checkout_session(reference)
    if session.payment_status == "paid":
        status = PAYMENT_SUCCESS
    elif session.status == "open":
        status = PAYMENT_PENDING
    else:
        status = PAYMENT_FAILED
    return VerificationResult(reference=reference, status=status, amount_minor=int(session.amount_total or 0))


def _stripe_refund(reference: str, amount_minor: int, reason: str) -> RefundResult:
    refund = stripe_service.refund_checkout_session(reference, amount_minor, reason)
    status = "processed" if refund.status == "succeeded" else "pending"
    return RefundResult(status=status, reference=refund.id)


def get_payment_gateways() -> dict[str, PaymentGateway]:
    return {
        "paystack": PaymentGateway(
            method="paystack",
            charge=_paystack_charge,
            verify=_paystack_verify,
            refund=_paystack_refund,
            enabled=bool(settings.PAYSTACK_SECRET_KEY),
        ),
        "stripe": PaymentGateway(
            method="stripe",
            charge=_stripe_charge,
            verify=_stripe_verify,
            refund=_stripe_refund,
            enabled=bool(settings.STRIPE_SECRET_KEY),
        ),
    }


def get_enabled_payment_methods() -> list[str]:
    return [method for method, gateway in get_payment_gateways().items() if gateway.enabled]


def get_payment_gateway(method: str | None = None) -> PaymentGateway:
    method = method or settings.PAYMENT_PROVIDER
    gateways = get_payment_gateways()
    if method not in gateways:
        raise ValueError(f"Unsupported payment provider: {method}")
    gateway = gateways[method]
    if not gateway.enabled:
        logger.warning("Payment provider %s is selected but not configured", method)
    return gateway
