import stripe

from app.services.url_utils import append_template_param


def _configure() -> None:
    from app.config import settings

    if not settings.STRIPE_SECRET_KEY:
        raise ValueError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def create_checkout_session(
    email: str,
    amount_minor: int,
    description: str,
    metadata: dict,
    success_url: str,
    cancel_url: str,
    currency: str = "zar",
) -> tuple[str, str]:
    """Create Stripe Checkout Session and return (checkout URL, session ID)."""
    _configure()
    session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        customer_email=email,
        line_items=[
            {
                "price_data": {
                    "currency": currency.lower(),
                    "product_data": {"name": description},
                    "unit_amount": amount_minor,
                },
                "quantity": 1,
            }
        ],
        mode="payment",
        success_url=append_template_param(success_url, "reference", "{CHECKOUT_SESSION_ID}"),
        cancel_url=cancel_url,
        metadata={key: str(value) for key, value in metadata.items()},
    )
    return session.url, session.id


def retrieve_checkout_session(session_id: str):
    _configure()
    return stripe.checkout.Session.retrieve(session_id)


def refund_checkout_session(session_id: str, amount_minor: int, reason: str):
    session = retrieve_checkout_session(session_id)
    if not session.payment_intent:
        raise ValueError(f"Checkout session {session_id} has no payment intent to refund")
    return stripe.Refund.create(
        payment_intent=session.payment_intent,
        amount=amount_minor,
        metadata={"reason": reason},
    )
