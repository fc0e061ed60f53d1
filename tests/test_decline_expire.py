from decimal import Decimal

import pytest

from app.errors import InvalidTransitionError, OrderNotFoundError
from app.models import OrderStatus, Refund, RefundReason


def test_decline_refunds_and_releases_books(orchestrator, gateway, notifier, placed_orders, seller_a, seller_b, buyer, books_a, book_b):
    order = placed_orders[seller_a.id]
    notifier.sent.clear()

    declined = orchestrator.decline(order.id, seller_a.id, "  Book is damaged  ")

    assert declined.status == OrderStatus.DECLINED.value
    assert declined.decline_reason == "Book is damaged"
    assert declined.expires_at is None

    assert [(reference, amount) for reference, amount, _ in gateway.refunds] == [("PAY_1", 10000)]
    refund = orchestrator.ledger.get_refund(order.id)
    assert refund.status == "processed"
    assert refund.reason == RefundReason.DECLINED_BY_SELLER.value
    assert refund.amount == Decimal("100.00")
    assert refund.gateway_reference == "RF_1"

    for book in orchestrator.ledger.get_books([book.id for book in books_a]):
        assert book.sold is False
        assert book.buyer_id is None
    assert orchestrator.ledger.get_books([book_b.id])[0].sold is True
    assert orchestrator.get_order(placed_orders[seller_b.id].id).status == OrderStatus.PENDING_COMMIT.value

    assert notifier.sent_to(buyer.email) == ["buyer-order-declined"]
    assert notifier.sent_to(seller_a.email) == ["seller-decline-confirmation"]
    assert notifier.sent[0][2]["refundStatus"] == "processed"


def test_decline_without_reason_uses_default(orchestrator, placed_orders, seller_a):
    declined = orchestrator.decline(placed_orders[seller_a.id].id, seller_a.id)

    assert declined.decline_reason == "Seller declined"


def test_decline_twice_refunds_once(orchestrator, gateway, db, placed_orders, seller_a):
    order_id = placed_orders[seller_a.id].id
    orchestrator.decline(order_id, seller_a.id, "Sold elsewhere")

    with pytest.raises(InvalidTransitionError):
        orchestrator.decline(order_id, seller_a.id, "Sold elsewhere")

    assert len(gateway.refunds) == 1
    assert db.query(Refund).filter(Refund.order_id == order_id).count() == 1


def test_decline_by_other_seller_looks_like_missing_order(orchestrator, gateway, placed_orders, seller_a, seller_b):
    with pytest.raises(OrderNotFoundError):
        orchestrator.decline(placed_orders[seller_a.id].id, seller_b.id)

    assert orchestrator.get_order(placed_orders[seller_a.id].id).status == OrderStatus.PENDING_COMMIT.value
    assert gateway.refunds == []


def test_decline_after_commit_is_invalid(orchestrator, gateway, placed_orders, seller_a):
    order_id = placed_orders[seller_a.id].id
    orchestrator.commit(order_id, seller_a.id)

    with pytest.raises(InvalidTransitionError):
        orchestrator.decline(order_id, seller_a.id)
    assert gateway.refunds == []


def test_failed_refund_is_recorded_and_retried(orchestrator, gateway, placed_orders, seller_a, books_a):
    order_id = placed_orders[seller_a.id].id
    gateway.refund_error = RuntimeError("gateway timeout")

    declined = orchestrator.decline(order_id, seller_a.id, "Lost the book")

    assert declined.status == OrderStatus.DECLINED.value
    refund = orchestrator.ledger.get_refund(order_id)
    assert refund.status == "failed"
    assert "gateway timeout" in refund.failure_message
    assert all(not book.sold for book in orchestrator.ledger.get_books([book.id for book in books_a]))

    gateway.refund_error = None
    retried = orchestrator.retry_refund(order_id)

    assert retried.status == "processed"
    assert retried.failure_message is None
    assert len(gateway.refunds) == 1

    assert orchestrator.retry_refund(order_id).status == "processed"
    assert len(gateway.refunds) == 1


def test_refund_left_pending_is_retried_once_stale(orchestrator, clock, gateway, monkeypatch, placed_orders, seller_a):
    order_id = placed_orders[seller_a.id].id
    # Worker dies after staging the refund but before calling the gateway.
    monkeypatch.setattr(orchestrator, "_issue_refund", lambda refund: refund)
    orchestrator.decline(order_id, seller_a.id, "Lost the book")
    monkeypatch.undo()

    assert orchestrator.ledger.get_refund(order_id).status == "pending"

    assert orchestrator.retry_refund(order_id).status == "pending"
    assert gateway.refunds == []

    clock.advance(minutes=16)
    retried = orchestrator.retry_refund(order_id)

    assert retried.status == "processed"
    assert [(reference, amount) for reference, amount, _ in gateway.refunds] == [("PAY_1", 10000)]

    assert orchestrator.retry_refund(order_id).status == "processed"
    assert len(gateway.refunds) == 1


def test_retry_refund_without_refund(orchestrator, placed_orders, seller_a):
    with pytest.raises(OrderNotFoundError):
        orchestrator.retry_refund(placed_orders[seller_a.id].id)


def test_expire_overdue_order(orchestrator, clock, gateway, notifier, placed_orders, seller_a, buyer, books_a):
    order = placed_orders[seller_a.id]
    clock.advance(hours=48, minutes=1)
    notifier.sent.clear()

    expired = orchestrator.expire(order.id)

    assert expired.status == OrderStatus.EXPIRED.value
    assert expired.expires_at is None
    refund = orchestrator.ledger.get_refund(order.id)
    assert refund.reason == RefundReason.OVERDUE_COMMIT.value
    assert refund.status == "processed"
    assert "48 hours" in refund.note
    assert [(reference, amount) for reference, amount, _ in gateway.refunds] == [("PAY_1", 10000)]
    assert all(not book.sold for book in orchestrator.ledger.get_books([book.id for book in books_a]))
    assert notifier.sent_to(buyer.email) == ["buyer-order-expired"]
    assert notifier.sent_to(seller_a.email) == ["seller-order-expired"]


def test_expire_before_deadline_does_nothing(orchestrator, clock, gateway, placed_orders, seller_a):
    clock.advance(hours=47)

    assert orchestrator.expire(placed_orders[seller_a.id].id) is None
    assert orchestrator.get_order(placed_orders[seller_a.id].id).status == OrderStatus.PENDING_COMMIT.value
    assert gateway.refunds == []


def test_expire_is_idempotent(orchestrator, clock, gateway, placed_orders, seller_a):
    clock.advance(hours=49)
    order_id = placed_orders[seller_a.id].id

    assert orchestrator.expire(order_id) is not None
    assert orchestrator.expire(order_id) is None
    assert len(gateway.refunds) == 1


def test_committed_order_is_never_expired(orchestrator, clock, gateway, placed_orders, seller_a):
    order_id = placed_orders[seller_a.id].id
    orchestrator.commit(order_id, seller_a.id)
    clock.advance(hours=72)

    assert orchestrator.expire(order_id) is None
    assert orchestrator.get_order(order_id).status == OrderStatus.COURIER_SCHEDULED.value
    assert gateway.refunds == []


def test_declined_order_is_not_expired_later(orchestrator, clock, gateway, placed_orders, seller_a):
    order_id = placed_orders[seller_a.id].id
    orchestrator.decline(order_id, seller_a.id)
    clock.advance(hours=49)

    assert orchestrator.expire(order_id) is None
    assert orchestrator.get_order(order_id).status == OrderStatus.DECLINED.value
    assert len(gateway.refunds) == 1
