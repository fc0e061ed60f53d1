from typing import Annotated

from fastapi import APIRouter, Depends

from app.dependencies import get_current_user, get_orchestrator
from app.errors import OrderNotFoundError
from app.models import User
from app.schemas.orders import (
    CheckoutCompleteRequest,
    CheckoutCompleteResponse,
    CheckoutCreateRequest,
    CheckoutStartRequest,
    CheckoutStartResponse,
    CourierQuoteResponse,
    OrderResponse,
    QuoteRequest,
    SellerQuotesResponse,
    SellerSplitResponse,
)
from app.services.order_orchestrator import CartItem, CheckoutIntent, CheckoutRequest, OrderOrchestrator
from app.services.url_utils import validate_callback_url

router = APIRouter()


@router.post(
    "/quotes",
    response_model=list[SellerQuotesResponse],
    summary="Delivery quotes per seller",
)
def delivery_quotes(
    body: QuoteRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """Cheapest first. Quotes with ``mock: true`` are offline estimates."""
    quotes = orchestrator.quote_delivery(body.book_ids, body.shipping_address.model_dump())
    return [
        SellerQuotesResponse(
            seller_id=seller_id,
            quotes=[CourierQuoteResponse.model_validate(quote) for quote in seller_quotes],
        )
        for seller_id, seller_quotes in quotes.items()
    ]


@router.post(
    "",
    response_model=CheckoutStartResponse,
    summary="Start checkout and get the payment URL",
)
def start_checkout(
    body: CheckoutStartRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """
    Hold the books in the cart for a few minutes and open a payment with the
    configured gateway. Redirect the buyer to ``authorization_url``.
    """
    callback_url = validate_callback_url(body.callback_url, "callback_url") if body.callback_url else None
    session = orchestrator.start_checkout(
        CheckoutIntent(
            buyer_id=current_user.id,
            buyer_email=current_user.email,
            book_ids=body.book_ids,
            shipping_address=body.shipping_address.model_dump(),
            delivery_fee=body.delivery_fee,
            callback_url=callback_url,
        )
    )
    return CheckoutStartResponse(
        reference=session.reference,
        authorization_url=session.authorization_url,
        total_amount=session.total_amount,
        splits=[
            SellerSplitResponse(
                seller_id=split.seller_id,
                subtotal=split.subtotal,
                platform_fee=split.platform_fee,
                seller_amount=split.seller_amount,
            )
            for split in session.splits
        ],
    )


@router.post(
    "/complete",
    response_model=CheckoutCompleteResponse,
    summary="Complete checkout after payment",
)
def complete_checkout(
    body: CheckoutCompleteRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """Called from the payment return page. Safe to call again; existing orders are returned."""
    orders = orchestrator.complete_checkout(body.reference)
    if any(order.buyer_id != current_user.id for order in orders):
        raise OrderNotFoundError(orders[0].id)
    return CheckoutCompleteResponse(
        reference=body.reference,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@router.post(
    "/orders",
    response_model=CheckoutCompleteResponse,
    summary="Create orders for a captured payment",
)
def create_orders(
    body: CheckoutCreateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    orders = orchestrator.create_orders(
        CheckoutRequest(
            buyer_id=current_user.id,
            buyer_email=current_user.email,
            items=[
                CartItem(
                    book_id=item.book_id,
                    seller_id=item.seller_id,
                    price=item.price,
                    quantity=item.quantity,
                    title=item.title,
                )
                for item in body.items
            ],
            shipping_address=body.shipping_address.model_dump(),
            payment_reference=body.payment_reference,
            total_amount=body.total_amount,
            delivery_fee=body.delivery_fee,
        )
    )
    return CheckoutCompleteResponse(
        reference=body.payment_reference,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )
