"""Marketplace error taxonomy.

Every business failure raised by the services derives from ``MarketplaceError``
and carries a stable ``code`` plus structured ``details`` that the HTTP layer
forwards verbatim. ``kind`` groups errors the way callers need to react to them:

* ``validation`` - malformed business input, fix the request and resend
* ``conflict`` - inventory or uniqueness conflict, retry with fresh data
* ``state`` - the order/offer is in a state that forbids the operation
* ``authorization`` - wrong tenant, blocked consumer, unapproved restaurant
* ``not_found`` - the referenced entity does not exist for this caller
* ``transient`` - an external dependency failed; safe to retry later
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class MarketplaceError(Exception):
    """Base class for business-level failures."""

    kind: str = "validation"
    code: str = "marketplace_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": {key: _jsonable(value) for key, value in self.details.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


# validation


class DiscountTooLowError(MarketplaceError):
    code = "discount_too_low"


class InvalidPickupWindowError(MarketplaceError):
    code = "invalid_pickup_window"


class InvalidQuantityError(MarketplaceError):
    code = "invalid_quantity"


class InvalidReviewError(MarketplaceError):
    code = "invalid_review"


# conflict


class InsufficientQuantityError(MarketplaceError):
    kind = "conflict"
    code = "insufficient_quantity"


class OfferUnavailableError(MarketplaceError):
    kind = "conflict"
    code = "offer_unavailable"


class OfferExpiredError(MarketplaceError):
    kind = "conflict"
    code = "offer_expired"


class DuplicateReviewError(MarketplaceError):
    kind = "conflict"
    code = "duplicate_review"


# state machine


class InvalidOrderTransitionError(MarketplaceError):
    kind = "state"
    code = "invalid_order_transition"


class NotReadyForPickupError(MarketplaceError):
    kind = "state"
    code = "not_ready_for_pickup"


class OutsidePickupWindowError(MarketplaceError):
    kind = "state"
    code = "outside_pickup_window"


class CancellationWindowClosedError(MarketplaceError):
    kind = "state"
    code = "cancellation_window_closed"


# authorization


class BlockedConsumerError(MarketplaceError):
    kind = "authorization"
    code = "blocked_consumer"


class RestaurantNotApprovedError(MarketplaceError):
    kind = "authorization"
    code = "restaurant_not_approved"


class ForbiddenError(MarketplaceError):
    kind = "authorization"
    code = "forbidden"


# not found


class NotFoundError(MarketplaceError):
    kind = "not_found"
    code = "not_found"


class OfferNotFoundError(NotFoundError):
    code = "offer_not_found"


class OrderNotFoundError(NotFoundError):
    code = "order_not_found"


class ConsumerNotFoundError(NotFoundError):
    code = "consumer_not_found"


class RestaurantNotFoundError(NotFoundError):
    code = "restaurant_not_found"


class PickupCodeNotFoundError(NotFoundError):
    code = "pickup_code_not_found"


class NotificationNotFoundError(NotFoundError):
    code = "notification_not_found"


# external dependencies


class GatewayUnavailableError(MarketplaceError):
    """Payment gateway timed out or failed after bounded retries."""

    kind = "transient"
    code = "gateway_unavailable"


class GatewayRequestError(MarketplaceError):
    """Payment gateway rejected the request; retrying will not help."""

    kind = "transient"
    code = "gateway_request_rejected"


__all__ = [
    "BlockedConsumerError",
    "CancellationWindowClosedError",
    "ConsumerNotFoundError",
    "DiscountTooLowError",
    "DuplicateReviewError",
    "ForbiddenError",
    "GatewayRequestError",
    "GatewayUnavailableError",
    "InsufficientQuantityError",
    "InvalidOrderTransitionError",
    "InvalidPickupWindowError",
    "InvalidQuantityError",
    "InvalidReviewError",
    "MarketplaceError",
    "NotFoundError",
    "NotReadyForPickupError",
    "NotificationNotFoundError",
    "OfferExpiredError",
    "OfferNotFoundError",
    "OfferUnavailableError",
    "OrderNotFoundError",
    "OutsidePickupWindowError",
    "PickupCodeNotFoundError",
    "RestaurantNotApprovedError",
    "RestaurantNotFoundError",
]
