"""Price, fee, and discount arithmetic on ``Decimal`` amounts."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .rules import GOODWILL_CREDIT_RATE, MIN_DISCOUNT_RATE, PLATFORM_FEE_RATE

_CENTS = Decimal("0.01")


def to_money(value: Decimal | float | int | str) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def discount_rate(original_price: Decimal, promotional_price: Decimal) -> Decimal:
    """Fractional discount, e.g. ``Decimal("0.5")`` for half price."""

    if original_price <= 0:
        return Decimal("0")
    return (original_price - promotional_price) / original_price


def meets_minimum_discount(original_price: Decimal, promotional_price: Decimal) -> bool:
    return discount_rate(original_price, promotional_price) >= MIN_DISCOUNT_RATE


def discount_percent(original_price: Decimal, promotional_price: Decimal) -> Decimal:
    return to_money(discount_rate(original_price, promotional_price) * 100)


@dataclass(frozen=True, slots=True)
class OrderPricing:
    """Price snapshot frozen onto an order at reservation time."""

    original_price: Decimal
    promotional_price: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    restaurant_amount: Decimal


def price_order(original_unit_price: Decimal, promotional_unit_price: Decimal, quantity: int) -> OrderPricing:
    total = to_money(Decimal(promotional_unit_price) * quantity)
    fee = to_money(total * PLATFORM_FEE_RATE)
    return OrderPricing(
        original_price=to_money(Decimal(original_unit_price) * quantity),
        promotional_price=to_money(promotional_unit_price),
        total_amount=total,
        platform_fee=fee,
        restaurant_amount=total - fee,
    )


def goodwill_credit(total_amount: Decimal) -> Decimal:
    return to_money(Decimal(total_amount) * GOODWILL_CREDIT_RATE)
