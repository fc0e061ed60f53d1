from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    return Decimal(str(value))


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Rand -> cents, as expected by the payment gateways."""
    return int(quantize(to_decimal(amount)) * 100)


def line_total(item: dict) -> Decimal:
    return to_decimal(item["price"]) * int(item.get("quantity") or 1)


def items_total(items: list[dict]) -> Decimal:
    return quantize(sum((line_total(item) for item in items), Decimal("0")))


@dataclass
class SellerSplit:
    seller_id: int
    items: list[dict] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    platform_fee: Decimal = Decimal("0.00")
    seller_amount: Decimal = Decimal("0.00")


def compute_seller_splits(items: list[dict], fee_percent: int = 10) -> dict[int, SellerSplit]:
    """Group cart items per seller and split each subtotal into platform fee and seller share.

    Sellers keep the order in which they first appear in the cart, so the result is
    deterministic for the same input. The seller share is derived as
    ``subtotal - platform_fee`` so the two parts always add up to the subtotal.
    """
    splits: dict[int, SellerSplit] = {}
    for item in items:
        seller_id = int(item["seller_id"])
        split = splits.setdefault(seller_id, SellerSplit(seller_id=seller_id))
        split.items.append(item)

    rate = Decimal(fee_percent) / Decimal(100)
    for split in splits.values():
        split.subtotal = items_total(split.items)
        split.platform_fee = quantize(split.subtotal * rate)
        split.seller_amount = split.subtotal - split.platform_fee
    return splits
