from typing import Annotated

from fastapi import APIRouter, Depends

from app.dependencies import get_orchestrator, require_ops_key
from app.schemas.orders import SweepReportResponse
from app.services.deadline_sweeper import run_expiry_sweep, run_reminder_sweep
from app.services.order_orchestrator import OrderOrchestrator

router = APIRouter(dependencies=[Depends(require_ops_key)])


@router.post(
    "/expire-overdue",
    response_model=SweepReportResponse,
    summary="Expire orders past the commit deadline",
)
def expire_overdue(orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)]):
    """Runs the same sweep as the background scheduler. Safe to call at any time."""
    return SweepReportResponse.model_validate(run_expiry_sweep(orchestrator))


@router.post(
    "/send-reminders",
    response_model=SweepReportResponse,
    summary="Remind sellers of pending commitments",
)
def send_reminders(orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)]):
    return SweepReportResponse.model_validate(run_reminder_sweep(orchestrator))
