"""Order lifecycle services."""

from .pickup import PickupCheck, PickupRedemption, PickupVerifier
from .queries import OrderPage, OrderQueries, SalesSummary
from .reservations import ReservationService
from .state_machine import OfferCancellation, OrderStateMachine

__all__ = [
    "OfferCancellation",
    "OrderPage",
    "OrderQueries",
    "OrderStateMachine",
    "PickupCheck",
    "PickupRedemption",
    "PickupVerifier",
    "ReservationService",
    "SalesSummary",
]
