"""Ledger store: transactional persistence for books, orders, payments and refunds.

All inventory and status mutations are conditional ``UPDATE ... WHERE`` statements
whose row counts decide the outcome, so two workers racing on the same row
resolve to exactly one winner without read-then-write windows.
"""
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models import Book, Order, OrderStatus, PaymentTransaction, Refund, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationResult:
    ok: bool
    unavailable: list[int] = field(default_factory=list)


class Ledger(ABC):
    @abstractmethod
    def atomic(self):
        """Context manager: commit the enclosed unit of work or roll it back on error."""

    @abstractmethod
    def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    def get_books(self, book_ids: Iterable[int]) -> list[Book]: ...

    @abstractmethod
    def hold_books(self, book_ids: list[int], buyer_id: int, until: datetime, now: datetime) -> ReservationResult: ...

    @abstractmethod
    def release_hold(self, book_ids: list[int], buyer_id: int) -> int: ...

    @abstractmethod
    def reserve_books(self, book_ids: list[int], buyer_id: int, now: datetime) -> ReservationResult:
        """Mark books sold to ``buyer_id`` in one conditional batch update."""

    @abstractmethod
    def release_books(self, book_ids: list[int], buyer_id: int) -> int: ...

    @abstractmethod
    def add_orders(self, orders: list[Order]) -> list[Order]: ...

    @abstractmethod
    def get_order(self, order_id: int) -> Order | None: ...

    @abstractmethod
    def orders_for_reference(self, reference: str) -> list[Order]: ...

    @abstractmethod
    def orders_for_buyer(self, buyer_id: int) -> list[Order]: ...

    @abstractmethod
    def orders_for_seller(self, seller_id: int) -> list[Order]: ...

    @abstractmethod
    def update_order_status(
        self,
        order_id: int,
        expected: str | Iterable[str],
        new_status: str,
        fields: dict | None = None,
        *,
        seller_id: int | None = None,
        open_at: datetime | None = None,
        overdue_at: datetime | None = None,
    ) -> bool:
        """Compare-and-swap on ``Order.status``. Returns False on conflict."""

    @abstractmethod
    def list_overdue_orders(self, now: datetime) -> list[Order]: ...

    @abstractmethod
    def list_reminder_candidates(self, now: datetime, created_before: datetime) -> list[Order]: ...

    @abstractmethod
    def claim_reminder(self, order_id: int, now: datetime) -> bool: ...

    @abstractmethod
    def add_payment_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction: ...

    @abstractmethod
    def get_payment_transaction(self, reference: str) -> PaymentTransaction | None: ...

    @abstractmethod
    def update_payment_transaction(self, reference: str, fields: dict) -> None: ...

    @abstractmethod
    def add_refund(self, refund: Refund) -> Refund: ...

    @abstractmethod
    def get_refund(self, order_id: int) -> Refund | None: ...

    @abstractmethod
    def update_refund(self, refund_id: int, fields: dict, expected_status: str | None = None) -> bool: ...

    @abstractmethod
    def reclaim_stale_refund(self, refund_id: int, stale_before: datetime, now: datetime) -> bool:
        """Take over a ``pending`` refund whose last attempt started before ``stale_before``."""


class SqlLedger(Ledger):
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _db_datetime(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        bind = self.db.get_bind()
        if bind and bind.dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def _prepare(self, fields: dict) -> dict:
        return {key: self._db_datetime(value) if isinstance(value, datetime) else value for key, value in fields.items()}

    # Users and books

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def get_books(self, book_ids: Iterable[int]) -> list[Book]:
        ids = list(dict.fromkeys(book_ids))
        if not ids:
            return []
        return (
            self.db.query(Book)
            .filter(Book.id.in_(ids))
            .populate_existing()
            .all()
        )

    def _reservation_free(self, buyer_id: int, now: datetime):
        db_now = self._db_datetime(now)
        return or_(
            Book.reserved_until.is_(None),
            Book.reserved_until <= db_now,
            Book.reserved_by == buyer_id,
        )

    def _available_ids(self, ids: list[int], buyer_id: int, now: datetime) -> set[int]:
        rows = (
            self.db.query(Book.id)
            .filter(Book.id.in_(ids), Book.sold.is_(False), self._reservation_free(buyer_id, now))
            .all()
        )
        return {row[0] for row in rows}

    def hold_books(self, book_ids: list[int], buyer_id: int, until: datetime, now: datetime) -> ReservationResult:
        ids = list(dict.fromkeys(book_ids))
        available = self._available_ids(ids, buyer_id, now)
        if len(available) != len(ids):
            return ReservationResult(ok=False, unavailable=[book_id for book_id in ids if book_id not in available])

        updated = (
            self.db.query(Book)
            .filter(Book.id.in_(ids), Book.sold.is_(False), self._reservation_free(buyer_id, now))
            .update(
                {Book.reserved_until: self._db_datetime(until), Book.reserved_by: buyer_id},
                synchronize_session=False,
            )
        )
        if updated != len(ids):
            held = {
                row[0]
                for row in self.db.query(Book.id).filter(Book.id.in_(ids), Book.reserved_by == buyer_id).all()
            }
            return ReservationResult(ok=False, unavailable=[book_id for book_id in ids if book_id not in held])
        return ReservationResult(ok=True)

    def release_hold(self, book_ids: list[int], buyer_id: int) -> int:
        if not book_ids:
            return 0
        return (
            self.db.query(Book)
            .filter(Book.id.in_(book_ids), Book.sold.is_(False), Book.reserved_by == buyer_id)
            .update({Book.reserved_until: None, Book.reserved_by: None}, synchronize_session=False)
        )

    def reserve_books(self, book_ids: list[int], buyer_id: int, now: datetime) -> ReservationResult:
        ids = list(dict.fromkeys(book_ids))
        available = self._available_ids(ids, buyer_id, now)
        if len(available) != len(ids):
            return ReservationResult(ok=False, unavailable=[book_id for book_id in ids if book_id not in available])

        updated = (
            self.db.query(Book)
            .filter(Book.id.in_(ids), Book.sold.is_(False), self._reservation_free(buyer_id, now))
            .update(
                {
                    Book.sold: True,
                    Book.sold_at: self._db_datetime(now),
                    Book.buyer_id: buyer_id,
                    Book.reserved_until: None,
                    Book.reserved_by: None,
                },
                synchronize_session=False,
            )
        )
        if updated != len(ids):
            # A concurrent checkout won some rows; the caller must roll back the partial update.
            mine = {
                row[0]
                for row in self.db.query(Book.id).filter(Book.id.in_(ids), Book.buyer_id == buyer_id).all()
            }
            logger.warning("Inventory race lost: buyer=%s expected=%s updated=%s", buyer_id, len(ids), updated)
            return ReservationResult(ok=False, unavailable=[book_id for book_id in ids if book_id not in mine])
        return ReservationResult(ok=True)

    def release_books(self, book_ids: list[int], buyer_id: int) -> int:
        if not book_ids:
            return 0
        return (
            self.db.query(Book)
            .filter(Book.id.in_(book_ids), Book.buyer_id == buyer_id)
            .update(
                {
                    Book.sold: False,
                    Book.sold_at: None,
                    Book.buyer_id: None,
                    Book.reserved_until: None,
                    Book.reserved_by: None,
                },
                synchronize_session=False,
            )
        )

    # Orders

    def add_orders(self, orders: list[Order]) -> list[Order]:
        self.db.add_all(orders)
        self.db.flush()
        return orders

    def get_order(self, order_id: int) -> Order | None:
        return self.db.get(Order, order_id, populate_existing=True)

    def orders_for_reference(self, reference: str) -> list[Order]:
        return (
            self.db.query(Order)
            .filter(Order.payment_reference == reference)
            .order_by(Order.id)
            .populate_existing()
            .all()
        )

    def orders_for_buyer(self, buyer_id: int) -> list[Order]:
        return self.db.query(Order).filter(Order.buyer_id == buyer_id).order_by(Order.id.desc()).all()

    def orders_for_seller(self, seller_id: int) -> list[Order]:
        return self.db.query(Order).filter(Order.seller_id == seller_id).order_by(Order.id.desc()).all()

    def update_order_status(
        self,
        order_id: int,
        expected: str | Iterable[str],
        new_status: str,
        fields: dict | None = None,
        *,
        seller_id: int | None = None,
        open_at: datetime | None = None,
        overdue_at: datetime | None = None,
    ) -> bool:
        expected_statuses = [expected] if isinstance(expected, str) else list(expected)
        query = self.db.query(Order).filter(Order.id == order_id, Order.status.in_(expected_statuses))
        if seller_id is not None:
            query = query.filter(Order.seller_id == seller_id)
        if open_at is not None:
            query = query.filter(Order.expires_at.isnot(None), Order.expires_at > self._db_datetime(open_at))
        if overdue_at is not None:
            query = query.filter(Order.expires_at.isnot(None), Order.expires_at <= self._db_datetime(overdue_at))

        values = {"status": new_status, **self._prepare(fields or {})}
        updated = query.update(values, synchronize_session=False)
        if updated != 1:
            logger.info(
                "Order status update rejected: order=%s expected=%s new=%s",
                order_id,
                expected_statuses,
                new_status,
            )
            return False
        return True

    def list_overdue_orders(self, now: datetime) -> list[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.status == OrderStatus.PENDING_COMMIT.value,
                Order.expires_at.isnot(None),
                Order.expires_at <= self._db_datetime(now),
            )
            .order_by(Order.expires_at)
            .all()
        )

    def list_reminder_candidates(self, now: datetime, created_before: datetime) -> list[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.status == OrderStatus.PENDING_COMMIT.value,
                Order.created_at < self._db_datetime(created_before),
                Order.expires_at > self._db_datetime(now),
                Order.reminder_sent_at.is_(None),
            )
            .order_by(Order.expires_at)
            .all()
        )

    def claim_reminder(self, order_id: int, now: datetime) -> bool:
        updated = (
            self.db.query(Order)
            .filter(
                Order.id == order_id,
                Order.status == OrderStatus.PENDING_COMMIT.value,
                Order.reminder_sent_at.is_(None),
            )
            .update({Order.reminder_sent_at: self._db_datetime(now)}, synchronize_session=False)
        )
        return updated == 1

    # Payments and refunds

    def add_payment_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction:
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get_payment_transaction(self, reference: str) -> PaymentTransaction | None:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.reference == reference)
            .populate_existing()
            .first()
        )

    def update_payment_transaction(self, reference: str, fields: dict) -> None:
        (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.reference == reference)
            .update(self._prepare(fields), synchronize_session=False)
        )

    def add_refund(self, refund: Refund) -> Refund:
        self.db.add(refund)
        self.db.flush()
        return refund

    def get_refund(self, order_id: int) -> Refund | None:
        return self.db.query(Refund).filter(Refund.order_id == order_id).populate_existing().first()

    def update_refund(self, refund_id: int, fields: dict, expected_status: str | None = None) -> bool:
        query = self.db.query(Refund).filter(Refund.id == refund_id)
        if expected_status is not None:
            query = query.filter(Refund.status == expected_status)
        return query.update(self._prepare(fields), synchronize_session=False) == 1

    def reclaim_stale_refund(self, refund_id: int, stale_before: datetime, now: datetime) -> bool:
        cutoff = self._db_datetime(stale_before)
        attempt_started = func.coalesce(Refund.attempted_at, Refund.created_at)
        return (
            self.db.query(Refund)
            .filter(Refund.id == refund_id, Refund.status == "pending", attempt_started <= cutoff)
            .update({"attempted_at": self._db_datetime(now), "failure_message": None}, synchronize_session=False)
            == 1
        )
