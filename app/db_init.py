import logging
import time
from datetime import timedelta
from pathlib import Path

from sqlalchemy import func, text
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.models.database import Base, SessionLocal, _normalize_database_url, engine
from app.models import Book, Order, OrderStatus, PaymentTransaction, Refund, User  # noqa: F401 - register models
from app.services.clock import utcnow

logger = logging.getLogger(__name__)


def wait_for_db(retries: int, retry_delay_seconds: int) -> None:
    """Block until the ledger database answers ``SELECT 1`` or the retries run out."""
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as exc:
            last_error = exc
            logger.warning("Ledger database unavailable (attempt %s/%s): %s", attempt, retries, exc)
            if attempt < retries:
                time.sleep(retry_delay_seconds)
            continue
        logger.info("Ledger database reachable after %s attempt(s)", attempt)
        return

    raise RuntimeError(
        f"Database is unreachable after {retries} attempts. Check DATABASE_URL and that the server is running."
    ) from last_error


def report_order_backlog(session_factory=SessionLocal) -> dict[str, int]:
    """Log how much lifecycle work is waiting at startup: overdue orders and refunds needing a retry."""
    db = session_factory()
    try:
        now = utcnow()
        if engine.dialect.name == "sqlite":
            now = now.replace(tzinfo=None)
        overdue = (
            db.query(func.count(Order.id))
            .filter(Order.status == OrderStatus.PENDING_COMMIT.value, Order.expires_at <= now)
            .scalar()
        )
        failed_refunds = db.query(func.count(Refund.id)).filter(Refund.status == "failed").scalar()
        stale_before = now - timedelta(minutes=settings.STALE_REFUND_MINUTES)
        stale_refunds = (
            db.query(func.count(Refund.id))
            .filter(
                Refund.status == "pending",
                func.coalesce(Refund.attempted_at, Refund.created_at) <= stale_before,
            )
            .scalar()
        )
    finally:
        db.close()

    backlog = {
        "overdue_orders": overdue or 0,
        "failed_refunds": failed_refunds or 0,
        "stale_pending_refunds": stale_refunds or 0,
    }
    if backlog["overdue_orders"]:
        logger.warning("%s order(s) are past the commit deadline; the next sweep will expire them", backlog["overdue_orders"])
    if backlog["failed_refunds"]:
        logger.warning("%s refund(s) failed and need a retry", backlog["failed_refunds"])
    if backlog["stale_pending_refunds"]:
        logger.warning(
            "%s refund(s) have been pending for over %s minutes; retry them from the ops refund endpoint",
            backlog["stale_pending_refunds"],
            settings.STALE_REFUND_MINUTES,
        )
    return backlog


def init_db() -> None:
    wait_for_db(
        retries=settings.DB_CONNECT_RETRIES,
        retry_delay_seconds=settings.DB_CONNECT_RETRY_DELAY_SECONDS,
    )
    if not settings.DATABASE_URL.startswith("sqlite://"):
        run_migrations()
    Base.metadata.create_all(bind=engine)
    report_order_backlog()


def run_migrations() -> None:
    """Upgrade the ledger schema to the latest Alembic revision."""
    try:
        from alembic import command
        from alembic.config import Config
    except ImportError as exc:  # pragma: no cover - broken install
        raise RuntimeError("Alembic is required for non-sqlite databases. Run pip install -e .") from exc

    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    script_location = project_root / "alembic"
    if not alembic_ini.exists() or not script_location.exists():
        raise RuntimeError(f"Alembic configuration not found under {project_root}")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", _normalize_database_url(settings.DATABASE_URL))
    command.upgrade(config, "head")
