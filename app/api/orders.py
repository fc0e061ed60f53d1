from typing import Annotated

from fastapi import APIRouter, Depends

from app.dependencies import get_current_user, get_orchestrator, require_ops_key
from app.models import User
from app.schemas.orders import CollectRequest, DeclineRequest, OrderResponse, RefundResponse
from app.services.order_orchestrator import OrderOrchestrator

router = APIRouter()


@router.get(
    "/me",
    response_model=list[OrderResponse],
    summary="List my purchases",
)
def my_orders(
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """Returns the orders where the current user is the buyer, newest first."""
    return [OrderResponse.model_validate(order) for order in orchestrator.orders_for_buyer(current_user.id)]


@router.get(
    "/selling",
    response_model=list[OrderResponse],
    summary="List orders to fulfil",
)
def my_sales(
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    return [OrderResponse.model_validate(order) for order in orchestrator.orders_for_seller(current_user.id)]


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order status",
)
def order_status(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """Visible to the buyer and the seller of the order only."""
    return OrderResponse.model_validate(orchestrator.get_order(order_id, user_id=current_user.id))


@router.post(
    "/{order_id}/commit",
    response_model=OrderResponse,
    summary="Seller commits to the order",
)
def commit_order(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """
    Accept the order before the commit deadline and book the courier pickup.
    Responds 502 when no courier could be booked; the order stays committed.
    """
    return OrderResponse.model_validate(orchestrator.commit(order_id, current_user.id))


@router.post(
    "/{order_id}/decline",
    response_model=OrderResponse,
    summary="Seller declines the order",
)
def decline_order(
    order_id: int,
    body: DeclineRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """Cancels the order, relists its books and refunds the buyer."""
    return OrderResponse.model_validate(orchestrator.decline(order_id, current_user.id, body.reason))


@router.post(
    "/{order_id}/book-courier",
    response_model=OrderResponse,
    summary="Retry courier booking",
    dependencies=[Depends(require_ops_key)],
)
def book_courier(
    order_id: int,
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    return OrderResponse.model_validate(orchestrator.book_courier(order_id))


@router.post(
    "/{order_id}/collect",
    response_model=OrderResponse,
    summary="Mark order collected",
    dependencies=[Depends(require_ops_key)],
)
def collect_order(
    order_id: int,
    body: CollectRequest,
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    """Called by ops or a courier integration once the parcel was picked up."""
    order = orchestrator.collect(
        order_id,
        collected_by=body.collected_by,
        tracking_reference=body.tracking_reference,
        notes=body.notes,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/deliver",
    response_model=OrderResponse,
    summary="Mark order delivered",
    dependencies=[Depends(require_ops_key)],
)
def deliver_order(
    order_id: int,
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    return OrderResponse.model_validate(orchestrator.mark_delivered(order_id))


@router.post(
    "/{order_id}/refund/retry",
    response_model=RefundResponse,
    summary="Retry a failed or stalled refund",
    dependencies=[Depends(require_ops_key)],
)
def retry_refund(
    order_id: int,
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
):
    return RefundResponse.model_validate(orchestrator.retry_refund(order_id))
