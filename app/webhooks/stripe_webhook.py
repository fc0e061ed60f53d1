import logging
from typing import Annotated

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from app.config import settings
from app.dependencies import get_orchestrator
from app.errors import MarketplaceError
from app.services.order_orchestrator import OrderOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/stripe",
    summary="Stripe webhook",
)
async def stripe_webhook(
    request: Request,
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """
    Stripe sends events here. We handle checkout.session.completed: the
    session id is the payment reference of the checkout.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set, ignoring webhook")
        return {"received": True}

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error("Invalid payload: %s", e)
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.error("Invalid signature: %s", e)
        raise HTTPException(status_code=400, detail="Invalid signature")

    if event["type"] != "checkout.session.completed":
        return {"received": True}

    session = event["data"]["object"]
    reference = session.get("id")
    if not reference:
        logger.warning("checkout.session.completed without session id")
        return {"received": True}

    try:
        orders = await run_in_threadpool(orchestrator.complete_checkout, reference)
    except MarketplaceError as exc:
        logger.warning("Stripe session %s not turned into orders: %s (%s)", reference, exc.detail, exc.code)
        return {"received": True}

    logger.info("Stripe session %s completed orders %s", reference, [order.id for order in orders])
    return {"received": True}
