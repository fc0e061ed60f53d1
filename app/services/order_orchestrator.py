"""Order lifecycle orchestration.

Checkout turns one buyer payment into one ``pending_commit`` order per seller.
From there each sibling order moves independently:

    pending_commit -> committed -> courier_scheduled -> collected -> delivered
    pending_commit -> declined   (seller)  -> refund + inventory release
    pending_commit -> expired    (sweeper) -> refund + inventory release

Every transition is a compare-and-swap on the order status performed by the
ledger, so concurrent actors (seller, sweeper, webhook retries) resolve to a
single winner. External side effects run only after the winning transition
is committed; best-effort ones (email, label storage, refunds) never undo it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import (
    CommitWindowClosedError,
    CourierBookingFailedError,
    InvalidTransitionError,
    InventoryConflictError,
    OrderNotFoundError,
    PaymentFailedError,
    RefundFailedError,
    SelfPurchaseError,
    ValidationError,
)
from app.ledger import Ledger, SqlLedger
from app.models import Book, Order, OrderStatus, PaymentTransaction, Refund, RefundReason, User
from app.services.clock import as_utc, utcnow
from app.services.couriers import (
    CourierProvider,
    CourierQuote,
    Parcel,
    book_with_fallback,
    get_courier_providers,
    get_quotes,
)
from app.services.couriers.base import DEFAULT_WEIGHT_KG
from app.services.label_storage import LabelStore, get_label_store, persist_label
from app.services.notifications import Notifier, get_notification_executor
from app.services.payment_gateways import PAYMENT_SUCCESS, PaymentGateway, get_payment_gateway
from app.services.splits import SellerSplit, compute_seller_splits, items_total, quantize, to_decimal, to_minor_units

logger = logging.getLogger(__name__)

DECLINABLE_STATUSES = (OrderStatus.PENDING_COMMIT.value, OrderStatus.PENDING.value)
COLLECTABLE_STATUSES = (OrderStatus.COMMITTED.value, OrderStatus.COURIER_SCHEDULED.value)


@dataclass(frozen=True)
class CartItem:
    book_id: int
    seller_id: int
    price: Decimal
    quantity: int = 1
    title: str | None = None


@dataclass(frozen=True)
class CheckoutRequest:
    buyer_id: int
    buyer_email: str
    items: list[CartItem]
    shipping_address: dict
    payment_reference: str
    total_amount: Decimal
    delivery_fee: Decimal = Decimal("0")


@dataclass(frozen=True)
class CheckoutIntent:
    buyer_id: int
    buyer_email: str
    book_ids: list[int]
    shipping_address: dict
    delivery_fee: Decimal = Decimal("0")
    callback_url: str | None = None


@dataclass(frozen=True)
class CheckoutSession:
    reference: str
    authorization_url: str
    total_amount: Decimal
    splits: list[SellerSplit] = field(default_factory=list)


@dataclass(frozen=True)
class OrchestratorConfig:
    commit_window_hours: int = 48
    reminder_after_hours: int = 24
    urgent_reminder_hours: int = 12
    hold_minutes: int = 15
    platform_fee_percent: int = 10
    delivery_check_days: int = 5
    stale_refund_minutes: int = 15
    frontend_url: str = "http://localhost:3000"
    ops_email: str = "ops@example.com"

    @classmethod
    def from_settings(cls) -> "OrchestratorConfig":
        return cls(
            commit_window_hours=settings.COMMIT_WINDOW_HOURS,
            reminder_after_hours=settings.REMINDER_AFTER_HOURS,
            urgent_reminder_hours=settings.URGENT_REMINDER_HOURS,
            hold_minutes=settings.BOOK_HOLD_MINUTES,
            platform_fee_percent=settings.PLATFORM_FEE_PERCENT,
            delivery_check_days=settings.DELIVERY_CHECK_DAYS,
            stale_refund_minutes=settings.STALE_REFUND_MINUTES,
            frontend_url=settings.FRONTEND_URL.rstrip("/"),
            ops_email=settings.OPS_EMAIL,
        )


def _display_name(user: User | None, fallback: str) -> str:
    if user is None:
        return fallback
    return user.name or user.email or fallback


class OrderOrchestrator:
    def __init__(
        self,
        ledger: Ledger,
        payment_gateway: PaymentGateway,
        couriers: list[CourierProvider],
        notifier: Notifier,
        label_store: LabelStore | None = None,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.payment_gateway = payment_gateway
        self.couriers = couriers
        self.notifier = notifier
        self.label_store = label_store
        self.config = config or OrchestratorConfig()
        self.now = clock

    # Checkout

    def start_checkout(self, intent: CheckoutIntent) -> CheckoutSession:
        """Hold the books for a short window and open a payment with the gateway."""
        if not intent.book_ids:
            raise ValidationError("Cart must contain at least one book")
        if len(set(intent.book_ids)) != len(intent.book_ids):
            raise ValidationError("Each book can only appear once in the cart")
        if not intent.buyer_email:
            raise ValidationError("Buyer email is required")
        if to_decimal(intent.delivery_fee) < 0:
            raise ValidationError("Delivery fee cannot be negative")

        now = self.now()
        books = self._load_sellable_books(intent.book_ids, intent.buyer_id, now)
        lines = [self._line_from_book(book, quantity=1) for book in books]
        splits = compute_seller_splits(lines, self.config.platform_fee_percent)
        total = items_total(lines) + quantize(to_decimal(intent.delivery_fee))

        with self.ledger.atomic():
            hold = self.ledger.hold_books(
                intent.book_ids,
                intent.buyer_id,
                until=now + timedelta(minutes=self.config.hold_minutes),
                now=now,
            )
            if not hold.ok:
                raise InventoryConflictError(hold.unavailable)

        metadata = {
            "buyer_id": intent.buyer_id,
            "item_count": len(lines),
            "seller_count": len(splits),
            "items": [{"book_id": line["book_id"], "seller_id": line["seller_id"]} for line in lines],
            "subaccounts": self._split_subaccounts(splits),
        }
        if intent.callback_url:
            metadata["callback_url"] = intent.callback_url

        try:
            charge = self.payment_gateway.charge(intent.buyer_email, to_minor_units(total), metadata)
        except Exception as exc:
            logger.warning("Payment initialization failed for buyer %s: %s", intent.buyer_id, exc)
            with self.ledger.atomic():
                self.ledger.release_hold(intent.book_ids, intent.buyer_id)
            raise PaymentFailedError(f"Payment initialization failed: {exc}") from exc

        with self.ledger.atomic():
            self.ledger.add_payment_transaction(
                PaymentTransaction(
                    reference=charge.reference,
                    buyer_id=intent.buyer_id,
                    buyer_email=intent.buyer_email,
                    amount=total,
                    delivery_fee=quantize(to_decimal(intent.delivery_fee)),
                    status="pending",
                    items=lines,
                    shipping_address=intent.shipping_address,
                    authorization_url=charge.authorization_url,
                    created_at=now,
                )
            )

        logger.info(
            "Checkout started: reference=%s buyer=%s total=%s sellers=%s",
            charge.reference,
            intent.buyer_id,
            total,
            len(splits),
        )
        return CheckoutSession(
            reference=charge.reference,
            authorization_url=charge.authorization_url,
            total_amount=total,
            splits=list(splits.values()),
        )

    def complete_checkout(self, reference: str) -> list[Order]:
        """Create the orders for a paid checkout started with ``start_checkout``.

        Safe to call from both the payment callback and the gateway webhook.
        """
        existing = self.ledger.orders_for_reference(reference)
        if existing:
            return existing

        transaction = self.ledger.get_payment_transaction(reference)
        if transaction is None:
            raise ValidationError(f"Unknown payment reference: {reference}")

        items = [
            CartItem(
                book_id=int(line["book_id"]),
                seller_id=int(line["seller_id"]),
                price=to_decimal(line["price"]),
                quantity=int(line.get("quantity") or 1),
                title=line.get("title"),
            )
            for line in transaction.items or []
        ]
        return self.create_orders(
            CheckoutRequest(
                buyer_id=transaction.buyer_id,
                buyer_email=transaction.buyer_email,
                items=items,
                shipping_address=transaction.shipping_address or {},
                payment_reference=reference,
                total_amount=to_decimal(transaction.amount),
                delivery_fee=to_decimal(transaction.delivery_fee or 0),
            )
        )

    def create_orders(self, request: CheckoutRequest) -> list[Order]:
        """Verify the payment, mark the books sold and create one order per seller."""
        self._validate_checkout_request(request)
        self._check_payment_owner(request)

        existing = self.ledger.orders_for_reference(request.payment_reference)
        if existing:
            logger.info("Orders already exist for payment %s, returning them", request.payment_reference)
            return existing

        lines = self._priced_lines(request)
        self._verify_payment(request)

        try:
            orders = self._persist_orders(request, lines, self.now())
        except (InventoryConflictError, IntegrityError) as exc:
            # A concurrent completion of the same payment may have created the orders first.
            existing = self.ledger.orders_for_reference(request.payment_reference)
            if existing:
                logger.info("Payment %s was completed concurrently, returning existing orders", request.payment_reference)
                return existing
            if isinstance(exc, IntegrityError):
                raise
            self._reverse_payment(request, exc)
            raise

        self._notify_orders_created(orders)
        logger.info(
            "Checkout completed: reference=%s orders=%s total=%s",
            request.payment_reference,
            [order.id for order in orders],
            request.total_amount,
        )
        return orders

    def _validate_checkout_request(self, request: CheckoutRequest) -> None:
        if not request.payment_reference:
            raise ValidationError("payment_reference is required")
        if not request.buyer_email:
            raise ValidationError("buyer_email is required")
        if not request.items:
            raise ValidationError("Cart must contain at least one book")
        book_ids = [item.book_id for item in request.items]
        if len(set(book_ids)) != len(book_ids):
            raise ValidationError("Each book can only appear once in the cart")
        for item in request.items:
            if item.quantity < 1:
                raise ValidationError(f"Invalid quantity for book {item.book_id}")
            if to_decimal(item.price) < 0:
                raise ValidationError(f"Invalid price for book {item.book_id}")
        if to_decimal(request.delivery_fee) < 0:
            raise ValidationError("Delivery fee cannot be negative")

    def _check_payment_owner(self, request: CheckoutRequest) -> None:
        """A known payment reference may only complete the checkout it was started for."""
        transaction = self.ledger.get_payment_transaction(request.payment_reference)
        if transaction is None:
            return
        if int(transaction.buyer_id) != int(request.buyer_id):
            logger.warning(
                "Buyer %s tried to use payment %s started by buyer %s",
                request.buyer_id,
                request.payment_reference,
                transaction.buyer_id,
            )
            raise PaymentFailedError("Payment reference belongs to another checkout")
        snapshot_ids = sorted(int(line["book_id"]) for line in transaction.items or [])
        if snapshot_ids and snapshot_ids != sorted(item.book_id for item in request.items):
            raise ValidationError("Cart does not match the checkout this payment was started for")

    def _verify_payment(self, request: CheckoutRequest) -> None:
        reference = request.payment_reference
        try:
            verification = self.payment_gateway.verify(reference)
        except Exception as exc:
            logger.warning("Payment verification failed for %s: %s", reference, exc)
            raise PaymentFailedError(f"Payment verification failed: {exc}") from exc

        if verification.status != PAYMENT_SUCCESS:
            with self.ledger.atomic():
                self._record_payment_status(request, verification.status)
            raise PaymentFailedError(f"Payment was not successful (status: {verification.status})")

        expected_minor = to_minor_units(request.total_amount)
        if verification.amount_minor != expected_minor:
            logger.error(
                "Payment amount mismatch for %s: expected=%s received=%s",
                reference,
                expected_minor,
                verification.amount_minor,
            )
            raise PaymentFailedError("Paid amount does not match the order total")

    def _priced_lines(self, request: CheckoutRequest) -> list[dict]:
        """Check the cart against the catalog without touching any state."""
        book_ids = [item.book_id for item in request.items]
        books_by_id = {book.id: book for book in self.ledger.get_books(book_ids)}
        missing = [book_id for book_id in book_ids if book_id not in books_by_id]
        if missing:
            raise InventoryConflictError(missing, "Some books were not found")
        own = [book.id for book in books_by_id.values() if int(book.seller_id) == int(request.buyer_id)]
        if own:
            raise SelfPurchaseError(own)

        lines = []
        for item in request.items:
            book = books_by_id[item.book_id]
            if int(book.seller_id) != int(item.seller_id):
                raise ValidationError(f"Book {book.id} does not belong to seller {item.seller_id}")
            if quantize(to_decimal(book.price)) != quantize(to_decimal(item.price)):
                raise ValidationError(f"Price of book {book.id} has changed")
            lines.append(self._line_from_book(book, quantity=item.quantity))

        expected_total = items_total(lines) + quantize(to_decimal(request.delivery_fee))
        if quantize(to_decimal(request.total_amount)) != expected_total:
            raise ValidationError(f"Total amount {request.total_amount} does not match cart total {expected_total}")
        return lines

    def _persist_orders(self, request: CheckoutRequest, lines: list[dict], now: datetime) -> list[Order]:
        book_ids = [item.book_id for item in request.items]
        with self.ledger.atomic():
            unavailable = [
                book.id for book in self.ledger.get_books(book_ids) if not self._is_sellable(book, request.buyer_id, now)
            ]
            if unavailable:
                raise InventoryConflictError(unavailable)

            reservation = self.ledger.reserve_books(book_ids, request.buyer_id, now)
            if not reservation.ok:
                raise InventoryConflictError(reservation.unavailable)

            splits = compute_seller_splits(lines, self.config.platform_fee_percent)
            expires_at = now + timedelta(hours=self.config.commit_window_hours)
            orders = [
                Order(
                    buyer_id=request.buyer_id,
                    buyer_email=request.buyer_email,
                    seller_id=split.seller_id,
                    status=OrderStatus.PENDING_COMMIT.value,
                    items=[
                        {
                            "book_id": line["book_id"],
                            "title": line["title"],
                            "price": line["price"],
                            "quantity": line["quantity"],
                        }
                        for line in split.items
                    ],
                    total_amount=split.subtotal,
                    payment_reference=request.payment_reference,
                    shipping_address=request.shipping_address,
                    expires_at=expires_at,
                    created_at=now,
                    updated_at=now,
                )
                for split in splits.values()
            ]
            self.ledger.add_orders(orders)
            self._record_payment_status(request, PAYMENT_SUCCESS, verified_at=now)
        return orders

    def _record_payment_status(self, request: CheckoutRequest, status: str, verified_at: datetime | None = None) -> None:
        fields = {"status": status}
        if verified_at is not None:
            fields["verified_at"] = verified_at
        if self.ledger.get_payment_transaction(request.payment_reference) is None:
            self.ledger.add_payment_transaction(
                PaymentTransaction(
                    reference=request.payment_reference,
                    buyer_id=request.buyer_id,
                    buyer_email=request.buyer_email,
                    amount=quantize(to_decimal(request.total_amount)),
                    delivery_fee=quantize(to_decimal(request.delivery_fee)),
                    items=[
                        {
                            "book_id": item.book_id,
                            "seller_id": item.seller_id,
                            "title": item.title,
                            "price": str(quantize(to_decimal(item.price))),
                            "quantity": item.quantity,
                        }
                        for item in request.items
                    ],
                    shipping_address=request.shipping_address,
                    created_at=self.now(),
                )
            )
        self.ledger.update_payment_transaction(request.payment_reference, fields)

    def _reverse_payment(self, request: CheckoutRequest, conflict: InventoryConflictError) -> None:
        """Return a captured payment that could not be turned into orders."""
        reference = request.payment_reference
        try:
            self.payment_gateway.refund(reference, to_minor_units(request.total_amount), "Checkout could not be completed")
            reversal_status = "reversed"
        except Exception as exc:
            reversal_status = "reversal_failed"
            logger.error("Payment %s captured without orders and reversal failed: %s", reference, exc)
        else:
            logger.error("Payment %s captured without orders, reversed: %s", reference, conflict.detail)

        with self.ledger.atomic():
            self._record_payment_status(request, reversal_status)
        self.notifier.send(
            self.config.ops_email,
            "admin-checkout-reversal",
            {
                "reference": reference,
                "amount": request.total_amount,
                "unavailableBooks": ", ".join(str(book_id) for book_id in conflict.unavailable_book_ids) or "-",
                "reversalStatus": reversal_status,
            },
        )

    def _notify_orders_created(self, orders: list[Order]) -> None:
        for order in orders:
            buyer, seller = self._parties(order)
            base = {
                "orderId": order.id,
                "buyerName": _display_name(buyer, "Customer"),
                "sellerName": _display_name(seller, "Seller"),
                "totalAmount": order.total_amount,
                "itemSummary": ", ".join(item.get("title") or "Book" for item in order.items),
                "expiresAt": order.expires_at.isoformat() if order.expires_at else "",
            }
            self.notifier.send(
                order.buyer_email,
                "buyer-order-pending",
                {**base, "statusUrl": f"{self.config.frontend_url}/orders/{order.id}"},
            )
            self.notifier.send(
                seller.email if seller else None,
                "seller-new-order",
                {**base, "commitUrl": f"{self.config.frontend_url}/activity"},
            )

    # Seller actions

    def commit(self, order_id: int, seller_id: int) -> Order:
        """Seller accepts the order; then a courier pickup is booked.

        Raises CourierBookingFailedError after the commit is persisted when no
        courier could be booked; the order stays ``committed`` for a redrive.
        """
        now = self.now()
        with self.ledger.atomic():
            committed = self.ledger.update_order_status(
                order_id,
                OrderStatus.PENDING_COMMIT.value,
                OrderStatus.COMMITTED.value,
                {"expires_at": None, "committed_at": now, "updated_at": now},
                seller_id=seller_id,
                open_at=now,
            )
        if not committed:
            raise self._commit_rejection(order_id, seller_id)

        order = self.ledger.get_order(order_id)
        logger.info("Order %s committed by seller %s", order_id, seller_id)
        buyer, seller = self._parties(order)
        self.notifier.send(
            order.buyer_email,
            "buyer-order-confirmed",
            {
                "orderId": order.id,
                "buyerName": _display_name(buyer, "Customer"),
                "sellerName": _display_name(seller, "Seller"),
                "expectedDelivery": "3-5 business days",
            },
        )
        return self._book_courier(order)

    def _commit_rejection(self, order_id: int, seller_id: int) -> Exception:
        order = self.ledger.get_order(order_id)
        if order is None or int(order.seller_id) != int(seller_id):
            return OrderNotFoundError(order_id)
        if order.status == OrderStatus.PENDING_COMMIT.value:
            return CommitWindowClosedError(order_id)
        if order.status in (OrderStatus.COMMITTED.value, OrderStatus.COURIER_SCHEDULED.value):
            return InvalidTransitionError(order_id, order.status, "committed again")
        return InvalidTransitionError(order_id, order.status, "committed")

    def book_courier(self, order_id: int) -> Order:
        """Redrive courier booking for a committed order whose booking failed."""
        order = self.ledger.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status != OrderStatus.COMMITTED.value:
            raise InvalidTransitionError(order_id, order.status, "booked for pickup")
        return self._book_courier(order)

    def _book_courier(self, order: Order) -> Order:
        buyer, seller = self._parties(order)
        pickup_address = {
            **(seller.pickup_address or {} if seller else {}),
            "name": _display_name(seller, "Seller"),
            "phone": seller.phone if seller else "",
            "email": seller.email if seller else "",
        }
        delivery_address = {
            "name": _display_name(buyer, "Customer"),
            "email": order.buyer_email,
            **(order.shipping_address or {}),
        }

        try:
            booking = book_with_fallback(
                self.couriers,
                pickup_address,
                delivery_address,
                self._parcel_for(order),
                reference=str(order.id),
            )
        except CourierBookingFailedError as exc:
            exc.order_id = order.id
            logger.error("Courier booking failed for order %s: %s", order.id, exc.detail)
            self.notifier.send(
                seller.email if seller else None,
                "commit-confirmation-basic",
                {
                    "orderId": order.id,
                    "sellerName": _display_name(seller, "Seller"),
                    "bookingError": exc.detail,
                },
            )
            raise

        label_url = persist_label(booking.label_url, order.id, self.label_store)
        now = self.now()
        with self.ledger.atomic():
            scheduled = self.ledger.update_order_status(
                order.id,
                OrderStatus.COMMITTED.value,
                OrderStatus.COURIER_SCHEDULED.value,
                {
                    "courier_provider": booking.provider,
                    "courier_tracking_number": booking.tracking_number,
                    "courier_pickup_date": booking.pickup_date,
                    "courier_pickup_window": booking.pickup_window,
                    "shipping_label_url": label_url,
                    "updated_at": now,
                },
            )
        if not scheduled:
            # Another actor moved the order on (e.g. collected) while the courier call was in flight.
            logger.error(
                "Order %s left committed during booking; shipment %s/%s needs manual review",
                order.id,
                booking.provider,
                booking.tracking_number,
            )
            return self.ledger.get_order(order.id)

        logger.info("Courier scheduled for order %s via %s (%s)", order.id, booking.provider, booking.tracking_number)
        self.notifier.send(
            seller.email if seller else None,
            "seller-pickup-notification",
            {
                "orderId": order.id,
                "sellerName": _display_name(seller, "Seller"),
                "pickupDate": booking.pickup_date,
                "pickupTimeWindow": booking.pickup_window,
                "courierProvider": booking.provider,
                "trackingNumber": booking.tracking_number,
                "shippingLabelUrl": label_url or "",
            },
        )
        return self.ledger.get_order(order.id)

    def _parcel_for(self, order: Order) -> Parcel:
        quantities = {int(item["book_id"]): int(item.get("quantity") or 1) for item in order.items}
        weight = sum(
            (to_decimal(book.weight_kg or DEFAULT_WEIGHT_KG) * quantities.get(book.id, 1)
             for book in self.ledger.get_books(quantities.keys())),
            Decimal("0"),
        )
        titles = ", ".join(item.get("title") or "Textbook" for item in order.items)
        return Parcel(
            weight_kg=weight or DEFAULT_WEIGHT_KG,
            declared_value=to_decimal(order.total_amount),
            description=f"Books: {titles}"[:120],
        )

    def decline(self, order_id: int, seller_id: int, reason: str | None = None) -> Order:
        reason = (reason or "").strip() or "Seller declined"
        now = self.now()
        with self.ledger.atomic():
            declined = self.ledger.update_order_status(
                order_id,
                DECLINABLE_STATUSES,
                OrderStatus.DECLINED.value,
                {"declined_at": now, "decline_reason": reason, "expires_at": None, "updated_at": now},
                seller_id=seller_id,
            )
            if not declined:
                order = self.ledger.get_order(order_id)
                if order is None or int(order.seller_id) != int(seller_id):
                    raise OrderNotFoundError(order_id)
                raise InvalidTransitionError(order_id, order.status, "declined")
            order = self.ledger.get_order(order_id)
            refund = self._stage_compensation(order, RefundReason.DECLINED_BY_SELLER, reason)

        logger.info("Order %s declined by seller %s: %s", order_id, seller_id, reason)
        refund = self._issue_refund(refund)
        buyer, seller = self._parties(order)
        self.notifier.send(
            order.buyer_email,
            "buyer-order-declined",
            {
                "orderId": order.id,
                "buyerName": _display_name(buyer, "Customer"),
                "sellerName": _display_name(seller, "Seller"),
                "reason": reason,
                "refundAmount": refund.amount,
                "refundStatus": refund.status,
            },
        )
        self.notifier.send(
            seller.email if seller else None,
            "seller-decline-confirmation",
            {"orderId": order.id, "sellerName": _display_name(seller, "Seller"), "reason": reason},
        )
        return order

    # System actions

    def expire(self, order_id: int, now: datetime | None = None) -> Order | None:
        """Expire an overdue ``pending_commit`` order. Returns None when there is nothing to do."""
        now = now or self.now()
        note = f"Order expired - seller did not commit within {self.config.commit_window_hours} hours"
        with self.ledger.atomic():
            expired = self.ledger.update_order_status(
                order_id,
                OrderStatus.PENDING_COMMIT.value,
                OrderStatus.EXPIRED.value,
                {"expired_at": now, "expires_at": None, "updated_at": now},
                overdue_at=now,
            )
            if not expired:
                return None
            order = self.ledger.get_order(order_id)
            refund = self._stage_compensation(order, RefundReason.OVERDUE_COMMIT, note)

        logger.info("Order %s expired, refunding %s", order_id, refund.amount)
        refund = self._issue_refund(refund)
        buyer, seller = self._parties(order)
        data = {
            "orderId": order.id,
            "buyerName": _display_name(buyer, "Customer"),
            "sellerName": _display_name(seller, "Seller"),
            "commitWindowHours": self.config.commit_window_hours,
            "refundAmount": refund.amount,
            "refundStatus": refund.status,
        }
        self.notifier.send(order.buyer_email, "buyer-order-expired", data)
        self.notifier.send(seller.email if seller else None, "seller-order-expired", data)
        return order

    def overdue_orders(self, now: datetime | None = None) -> list[Order]:
        return self.ledger.list_overdue_orders(now or self.now())

    def collect(
        self,
        order_id: int,
        collected_by: str = "courier",
        tracking_reference: str | None = None,
        notes: str | None = None,
        collected_at: datetime | None = None,
    ) -> Order:
        now = self.now()
        collected_at = collected_at or now
        with self.ledger.atomic():
            collected = self.ledger.update_order_status(
                order_id,
                COLLECTABLE_STATUSES,
                OrderStatus.COLLECTED.value,
                {
                    "collected_at": collected_at,
                    "collected_by": collected_by,
                    "collection_notes": notes or "",
                    "tracking_reference": tracking_reference or "",
                    "updated_at": now,
                },
            )
        if not collected:
            order = self.ledger.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            raise InvalidTransitionError(order_id, order.status, "collected")

        order = self.ledger.get_order(order_id)
        delivery_check_at = now + timedelta(days=self.config.delivery_check_days)
        logger.info(
            "Order %s collected by %s (tracking=%s); delivery check due %s",
            order_id,
            collected_by,
            tracking_reference or order.courier_tracking_number,
            delivery_check_at.isoformat(),
        )
        buyer, seller = self._parties(order)
        data = {
            "orderId": order.id,
            "buyerName": _display_name(buyer, "Customer"),
            "sellerName": _display_name(seller, "Seller"),
            "collectedAt": collected_at.isoformat(),
            "collectedBy": collected_by,
            "trackingReference": tracking_reference or order.courier_tracking_number or "",
            "estimatedDelivery": "3-5 business days",
        }
        self.notifier.send(order.buyer_email, "buyer-order-collected", data)
        self.notifier.send(seller.email if seller else None, "seller-order-collected", data)
        return order

    def mark_delivered(self, order_id: int) -> Order:
        now = self.now()
        with self.ledger.atomic():
            delivered = self.ledger.update_order_status(
                order_id,
                OrderStatus.COLLECTED.value,
                OrderStatus.DELIVERED.value,
                {"delivered_at": now, "updated_at": now},
            )
        if not delivered:
            order = self.ledger.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            raise InvalidTransitionError(order_id, order.status, "delivered")

        order = self.ledger.get_order(order_id)
        buyer, _ = self._parties(order)
        self.notifier.send(
            order.buyer_email,
            "buyer-order-delivered",
            {"orderId": order.id, "buyerName": _display_name(buyer, "Customer"), "deliveredAt": now.isoformat()},
        )
        return order

    def reminder_candidates(self, now: datetime | None = None) -> list[Order]:
        now = now or self.now()
        created_before = now - timedelta(hours=self.config.reminder_after_hours)
        return self.ledger.list_reminder_candidates(now, created_before)

    def send_reminder(self, order: Order, now: datetime | None = None) -> bool:
        """Send the single commit reminder for ``order``. Returns False if it was already claimed."""
        now = now or self.now()
        with self.ledger.atomic():
            claimed = self.ledger.claim_reminder(order.id, now)
        if not claimed:
            return False

        seconds_left = (as_utc(order.expires_at) - now).total_seconds() if order.expires_at else 0
        hours_left = max(0, int(seconds_left // 3600))
        urgent = hours_left <= self.config.urgent_reminder_hours
        buyer, seller = self._parties(order)
        self.notifier.send(
            seller.email if seller else None,
            "seller-commit-reminder",
            {
                "orderId": order.id,
                "sellerName": _display_name(seller, "Seller"),
                "buyerName": _display_name(buyer, "Customer"),
                "totalAmount": order.total_amount,
                "timeLeft": hours_left,
                "urgencyPrefix": "URGENT: " if urgent else "Reminder: ",
                "expiresAt": as_utc(order.expires_at).isoformat() if order.expires_at else "",
                "commitUrl": f"{self.config.frontend_url}/activity",
            },
        )
        logger.info("Commit reminder sent for order %s (%sh left, urgent=%s)", order.id, hours_left, urgent)
        return True

    # Compensation

    def _stage_compensation(self, order: Order, reason: RefundReason, note: str) -> Refund:
        """Release this order's books and record the refund, inside the caller's transaction."""
        released = self.ledger.release_books(order.book_ids, order.buyer_id)
        if released != len(order.book_ids):
            logger.warning(
                "Order %s released %s of %s books", order.id, released, len(order.book_ids)
            )
        existing = self.ledger.get_refund(order.id)
        if existing is not None:
            return existing
        return self.ledger.add_refund(
            Refund(
                order_id=order.id,
                payment_reference=order.payment_reference,
                amount=quantize(to_decimal(order.total_amount)),
                reason=reason.value,
                note=note,
                status="pending",
                created_at=self.now(),
                attempted_at=self.now(),
            )
        )

    def _issue_refund(self, refund: Refund) -> Refund:
        if refund.status == "processed":
            return refund
        order_id = refund.order_id
        try:
            result = self.payment_gateway.refund(
                refund.payment_reference,
                to_minor_units(refund.amount),
                refund.note or refund.reason,
            )
        except Exception as exc:
            error = RefundFailedError(f"Refund for order {order_id} failed: {exc}")
            logger.error("%s; recorded for manual follow-up", error.detail)
            with self.ledger.atomic():
                self.ledger.update_refund(refund.id, {"status": "failed", "failure_message": str(exc)[:1000]})
        else:
            with self.ledger.atomic():
                self.ledger.update_refund(
                    refund.id,
                    {"status": "processed", "gateway_reference": result.reference, "processed_at": self.now()},
                )
            logger.info("Refund processed for order %s: %s (%s)", order_id, refund.amount, result.status)
        return self.ledger.get_refund(order_id)

    def retry_refund(self, order_id: int) -> Refund:
        """Re-attempt a failed refund, or one left ``pending`` by an interrupted attempt.

        A ``pending`` refund is only taken over once its last attempt is older than
        ``stale_refund_minutes``; fresher ones are in flight and returned unchanged.
        """
        refund = self.ledger.get_refund(order_id)
        if refund is None:
            raise OrderNotFoundError(order_id)
        now = self.now()
        if refund.status == "failed":
            with self.ledger.atomic():
                claimed = self.ledger.update_refund(
                    refund.id,
                    {"status": "pending", "failure_message": None, "attempted_at": now},
                    expected_status="failed",
                )
        elif refund.status == "pending":
            with self.ledger.atomic():
                claimed = self.ledger.reclaim_stale_refund(
                    refund.id, stale_before=now - timedelta(minutes=self.config.stale_refund_minutes), now=now
                )
            if claimed:
                logger.warning("Refund for order %s was left pending; retrying", order_id)
        else:
            return refund
        if not claimed:
            return self.ledger.get_refund(order_id)
        return self._issue_refund(self.ledger.get_refund(order_id))

    # Helpers

    def _load_sellable_books(self, book_ids: list[int], buyer_id: int, now: datetime) -> list[Book]:
        books = self.ledger.get_books(book_ids)
        found = {book.id for book in books}
        missing = [book_id for book_id in book_ids if book_id not in found]
        if missing:
            raise InventoryConflictError(missing, "Some books were not found")

        own = [book.id for book in books if int(book.seller_id) == int(buyer_id)]
        if own:
            raise SelfPurchaseError(own)

        unavailable = [book.id for book in books if not self._is_sellable(book, buyer_id, now)]
        if unavailable:
            raise InventoryConflictError(unavailable)
        order = {book_id: index for index, book_id in enumerate(book_ids)}
        return sorted(books, key=lambda book: order[book.id])

    @staticmethod
    def _is_sellable(book: Book, buyer_id: int, now: datetime) -> bool:
        if book.sold:
            return False
        if book.reserved_until is None or book.reserved_by == buyer_id:
            return True
        return as_utc(book.reserved_until) <= now

    @staticmethod
    def _line_from_book(book: Book, quantity: int) -> dict:
        return {
            "book_id": book.id,
            "seller_id": book.seller_id,
            "title": book.title,
            "price": str(quantize(to_decimal(book.price))),
            "quantity": quantity,
        }

    def _split_subaccounts(self, splits: dict[int, SellerSplit]) -> list[dict]:
        entries = []
        for split in splits.values():
            seller = self.ledger.get_user(split.seller_id)
            if seller is not None and seller.subaccount_code:
                entries.append({"subaccount": seller.subaccount_code, "share": to_minor_units(split.seller_amount)})
        return entries

    def _parties(self, order: Order) -> tuple[User | None, User | None]:
        return self.ledger.get_user(order.buyer_id), self.ledger.get_user(order.seller_id)

    # Queries

    def quote_delivery(self, book_ids: list[int], shipping_address: dict) -> dict[int, list[CourierQuote]]:
        """Delivery quotes per seller, cheapest first. Estimates are flagged ``mock``."""
        books = self.ledger.get_books(book_ids)
        if len(books) != len(set(book_ids)):
            found = {book.id for book in books}
            raise InventoryConflictError([book_id for book_id in book_ids if book_id not in found], "Some books were not found")

        weights: dict[int, Decimal] = {}
        for book in books:
            weights[book.seller_id] = weights.get(book.seller_id, Decimal("0")) + to_decimal(book.weight_kg or DEFAULT_WEIGHT_KG)

        quotes = {}
        for seller_id, weight in weights.items():
            seller = self.ledger.get_user(seller_id)
            pickup_address = (seller.pickup_address or {}) if seller else {}
            quotes[seller_id] = get_quotes(self.couriers, pickup_address, shipping_address, Parcel(weight_kg=weight))
        return quotes

    def get_order(self, order_id: int, user_id: int | None = None) -> Order:
        order = self.ledger.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if user_id is not None and user_id not in (order.buyer_id, order.seller_id):
            raise OrderNotFoundError(order_id)
        return order

    def orders_for_buyer(self, buyer_id: int) -> list[Order]:
        return self.ledger.orders_for_buyer(buyer_id)

    def orders_for_seller(self, seller_id: int) -> list[Order]:
        return self.ledger.orders_for_seller(seller_id)


def build_orchestrator(db: Session) -> OrderOrchestrator:
    return OrderOrchestrator(
        ledger=SqlLedger(db),
        payment_gateway=get_payment_gateway(),
        couriers=get_courier_providers(),
        notifier=Notifier(executor=get_notification_executor()),
        label_store=get_label_store(),
        config=OrchestratorConfig.from_settings(),
    )
