from decimal import Decimal

from app.services.splits import compute_seller_splits, items_total, to_minor_units


def _item(book_id, seller_id, price, quantity=1):
    return {"book_id": book_id, "seller_id": seller_id, "price": price, "quantity": quantity}


def test_splits_group_items_per_seller_in_cart_order():
    items = [_item(1, 7, "60.00"), _item(2, 9, "50.00"), _item(3, 7, "40.00")]

    splits = compute_seller_splits(items)

    assert list(splits) == [7, 9]
    assert [item["book_id"] for item in splits[7].items] == [1, 3]
    assert splits[7].subtotal == Decimal("100.00")
    assert splits[9].subtotal == Decimal("50.00")


def test_split_fee_and_seller_share_add_up_to_subtotal():
    splits = compute_seller_splits([_item(1, 7, "33.35"), _item(2, 7, "10.00", quantity=2)])
    split = splits[7]

    assert split.subtotal == Decimal("53.35")
    assert split.platform_fee == Decimal("5.34")
    assert split.seller_amount == Decimal("48.01")
    assert split.platform_fee + split.seller_amount == split.subtotal


def test_split_fee_rate_is_configurable():
    split = compute_seller_splits([_item(1, 7, "200.00")], fee_percent=15)[7]

    assert split.platform_fee == Decimal("30.00")
    assert split.seller_amount == Decimal("170.00")


def test_items_total_multiplies_quantity():
    assert items_total([_item(1, 7, "19.99", quantity=3), _item(2, 8, "0.03")]) == Decimal("60.00")


def test_to_minor_units_rounds_half_up():
    assert to_minor_units(Decimal("150")) == 15000
    assert to_minor_units("10.005") == 1001
    assert to_minor_units(Decimal("0.01")) == 1
