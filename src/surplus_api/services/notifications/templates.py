"""Notification copy for marketplace events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from surplus_api.core.settings import settings
from surplus_api.domain.marketplace.rules import NO_SHOW_BLOCK_THRESHOLD


@dataclass
class RenderedNotification:
    title: str
    message: str


def _format_currency(amount: Decimal, currency: str | None = None) -> str:
    currency = (currency or settings.currency).upper()
    symbols = {
        "BRL": "R$",
        "USD": "$",
        "EUR": "€",
    }
    symbol = symbols.get(currency, "")
    numeric = f"{Decimal(amount):.2f}"
    return f"{symbol} {numeric}" if symbol else f"{numeric} {currency}"


def _format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def render_order_confirmed(*, pickup_code: str, package_type: str, pickup_start: datetime, pickup_end: datetime) -> RenderedNotification:
    return RenderedNotification(
        title="Order confirmed",
        message=(
            f"Your {package_type} is reserved. Show pickup code {pickup_code} between "
            f"{_format_time(pickup_start)} and {_format_time(pickup_end)}."
        ),
    )


def render_new_order(*, quantity: int, package_type: str, restaurant_amount: Decimal) -> RenderedNotification:
    return RenderedNotification(
        title="New order",
        message=f"{quantity} x {package_type} reserved. You will receive {_format_currency(restaurant_amount)}.",
    )


def render_order_cancelled(*, package_type: str, reason: str, credit: Decimal | None = None) -> RenderedNotification:
    message = f"Your order for {package_type} was cancelled ({reason})."
    if credit:
        message += f" We added {_format_currency(credit)} in credit to your account."
    return RenderedNotification(title="Order cancelled", message=message)


def render_order_cancelled_for_restaurant(*, quantity: int, package_type: str) -> RenderedNotification:
    return RenderedNotification(
        title="Order cancelled",
        message=f"An order for {quantity} x {package_type} was cancelled and the units returned to the offer.",
    )


def render_payment_refused(*, package_type: str) -> RenderedNotification:
    return RenderedNotification(
        title="Payment refused",
        message=f"The payment for {package_type} was not approved and the reservation was released.",
    )


def render_no_show_warning(*, failed_pickups: int) -> RenderedNotification:
    return RenderedNotification(
        title="Missed pickup",
        message=(
            f"You missed a pickup ({failed_pickups}/{NO_SHOW_BLOCK_THRESHOLD}). "
            f"Reaching {NO_SHOW_BLOCK_THRESHOLD} missed pickups blocks new reservations for 30 days."
        ),
    )


def render_account_blocked(*, blocked_until: datetime) -> RenderedNotification:
    return RenderedNotification(
        title="Account blocked",
        message=f"New reservations are blocked until {_format_time(blocked_until)} after repeated missed pickups.",
    )


def render_order_no_show(*, quantity: int, package_type: str) -> RenderedNotification:
    return RenderedNotification(
        title="Order not collected",
        message=f"{quantity} x {package_type} was not picked up before the window closed.",
    )


def render_pickup_reminder(*, pickup_code: str, pickup_start: datetime) -> RenderedNotification:
    return RenderedNotification(
        title="Pickup starts soon",
        message=f"Your pickup window opens at {_format_time(pickup_start)}. Pickup code: {pickup_code}.",
    )


def render_review_request(*, package_type: str) -> RenderedNotification:
    return RenderedNotification(
        title="How was your food?",
        message=f"Tell us how the {package_type} was. Your review helps other consumers.",
    )


def render_payout_sent(*, amount: Decimal, orders: int) -> RenderedNotification:
    return RenderedNotification(
        title="Payout sent",
        message=f"{_format_currency(amount)} for {orders} completed order(s) is on its way.",
    )


def render_low_rating_alert(*, average_rating: float, total_ratings: int) -> RenderedNotification:
    return RenderedNotification(
        title="Low rating alert",
        message=f"Your average rating is {average_rating:.1f} across {total_ratings} reviews.",
    )


__all__ = [
    "RenderedNotification",
    "render_account_blocked",
    "render_low_rating_alert",
    "render_new_order",
    "render_no_show_warning",
    "render_order_cancelled",
    "render_order_cancelled_for_restaurant",
    "render_order_confirmed",
    "render_order_no_show",
    "render_payment_refused",
    "render_payout_sent",
    "render_pickup_reminder",
    "render_review_request",
]
