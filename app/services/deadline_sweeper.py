"""Periodic enforcement of the seller commit deadline.

Expiry is a pure function of ``expires_at`` and the current time; this module
only decides when to evaluate it. Running the sweep twice, or concurrently on
two workers, is safe because every expiry goes through the orchestrator's
compare-and-swap transition.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable

from app.models.database import SessionLocal
from app.services.order_orchestrator import OrderOrchestrator, build_orchestrator
from app.services.splits import quantize, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    processed: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)
    total_refunded: Decimal = Decimal("0.00")
    reminders_sent: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "total_refunded": str(self.total_refunded),
            "reminders_sent": self.reminders_sent,
        }


def run_expiry_sweep(orchestrator: OrderOrchestrator, now: datetime | None = None) -> SweepReport:
    """Expire every overdue order. One failing order never stops the others."""
    now = now or orchestrator.now()
    report = SweepReport()
    overdue = orchestrator.overdue_orders(now)
    for order in overdue:
        order_id = order.id
        try:
            expired = orchestrator.expire(order_id, now=now)
        except Exception as exc:
            logger.exception("Failed to expire order %s", order_id)
            report.errors.append({"order_id": order_id, "error": str(exc)})
            continue
        if expired is None:
            report.skipped += 1
            continue
        report.processed += 1
        report.total_refunded = quantize(report.total_refunded + to_decimal(expired.total_amount))

    logger.info(
        "Expiry sweep finished: candidates=%s processed=%s skipped=%s errors=%s refunded=%s",
        len(overdue),
        report.processed,
        report.skipped,
        len(report.errors),
        report.total_refunded,
    )
    if report.processed or report.errors:
        _send_ops_report(orchestrator, report, now)
    return report


def _send_ops_report(orchestrator: OrderOrchestrator, report: SweepReport, now: datetime) -> None:
    details = "\n".join(f"- order {error['order_id']}: {error['error']}" for error in report.errors) or "No errors."
    orchestrator.notifier.send(
        orchestrator.config.ops_email,
        "admin-auto-expire-report",
        {
            "processedCount": report.processed,
            "errorCount": len(report.errors),
            "totalRefundAmount": report.total_refunded,
            "reportDate": now.isoformat(),
            "details": details,
        },
    )


def run_reminder_sweep(orchestrator: OrderOrchestrator, now: datetime | None = None) -> SweepReport:
    now = now or orchestrator.now()
    report = SweepReport()
    for order in orchestrator.reminder_candidates(now):
        try:
            sent = orchestrator.send_reminder(order, now=now)
        except Exception as exc:
            logger.exception("Failed to send commit reminder for order %s", order.id)
            report.errors.append({"order_id": order.id, "error": str(exc)})
            continue
        if sent:
            report.reminders_sent += 1
        else:
            report.skipped += 1
    logger.info("Reminder sweep finished: sent=%s skipped=%s errors=%s", report.reminders_sent, report.skipped, len(report.errors))
    return report


def run_scheduled_sweep(session_factory: Callable = SessionLocal) -> SweepReport:
    """Expire overdue orders, then remind sellers, using a fresh database session."""
    db = session_factory()
    try:
        orchestrator = build_orchestrator(db)
        report = run_expiry_sweep(orchestrator)
        reminders = run_reminder_sweep(orchestrator)
        report.reminders_sent = reminders.reminders_sent
        report.errors.extend(reminders.errors)
        return report
    finally:
        db.close()


class DeadlineSweeper:
    """Runs ``run_scheduled_sweep`` every ``interval_seconds`` on a worker thread."""

    def __init__(self, interval_seconds: int, sweep: Callable[[], SweepReport] = run_scheduled_sweep):
        self.interval_seconds = interval_seconds
        self._sweep = sweep
        self._task: asyncio.Task | None = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self._sweep)
            except Exception:
                logger.exception("Deadline sweep failed; retrying in %ss", self.interval_seconds)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("Deadline sweeper started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Deadline sweeper stopped")
