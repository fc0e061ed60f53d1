import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from app.config import settings
from app.dependencies import get_orchestrator
from app.errors import MarketplaceError
from app.services import paystack_service
from app.services.order_orchestrator import OrderOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


def _verify_paystack_signature(raw_body: bytes, signature: str | None) -> None:
    if not settings.PAYSTACK_SECRET_KEY:
        logger.error("PAYSTACK_SECRET_KEY is not set, rejecting webhook")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Paystack is not configured")
    if not paystack_service.verify_webhook_signature(raw_body, signature):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")


@router.post(
    "/paystack",
    summary="Paystack webhook",
)
async def paystack_webhook(
    request: Request,
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """
    Paystack sends events here. We handle ``charge.success`` by completing the
    checkout for the transaction reference. Idempotent: a repeated event
    returns the orders that already exist.
    """
    raw_body = await request.body()
    _verify_paystack_signature(raw_body, request.headers.get("x-paystack-signature"))

    try:
        body = json.loads(raw_body)
    except ValueError as exc:
        logger.error("Invalid JSON in Paystack webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    event = body.get("event")
    if event != "charge.success":
        logger.info("Ignoring Paystack event %s", event)
        return {"received": True}

    reference = (body.get("data") or {}).get("reference")
    if not reference:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="reference required")

    try:
        orders = await run_in_threadpool(orchestrator.complete_checkout, reference)
    except MarketplaceError as exc:
        # Business rejections are final; answering 200 stops Paystack from retrying.
        logger.warning("Paystack charge %s not turned into orders: %s (%s)", reference, exc.detail, exc.code)
        return {"received": True}

    logger.info("Paystack charge %s completed orders %s", reference, [order.id for order in orders])
    return {"received": True}
