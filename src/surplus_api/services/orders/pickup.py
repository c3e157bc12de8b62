"""Pickup code validation and redemption, gated by the offer's pickup window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import ensure_utc, resolve_now
from surplus_api.domain.marketplace.errors import (
    NotReadyForPickupError,
    OutsidePickupWindowError,
    PickupCodeNotFoundError,
)
from surplus_api.models.consumer import Consumer
from surplus_api.models.offer import Offer
from surplus_api.models.order import Order, OrderStatusEnum

from .pickup_codes import normalize_pickup_code
from .state_machine import OrderStateMachine

_REDEEMABLE = (OrderStatusEnum.CONFIRMED, OrderStatusEnum.READY_FOR_PICKUP)


@dataclass(slots=True)
class PickupCheck:
    order: Order
    offer: Offer
    consumer_name: str | None


@dataclass(slots=True)
class PickupRedemption:
    order: Order
    already_redeemed: bool


class PickupVerifier:
    """Restaurant-side pickup desk.

    Codes are looked up within the calling restaurant only, so a code from
    another restaurant reads as not found.
    """

    def __init__(self, session: AsyncSession, *, state_machine: OrderStateMachine | None = None) -> None:
        self._session = session
        self._state_machine = state_machine or OrderStateMachine(session)

    async def validate(self, restaurant_id: UUID, pickup_code: str, *, now: datetime | None = None) -> PickupCheck:
        current = resolve_now(now)
        order = await self._find(restaurant_id, pickup_code)
        offer = await self._session.get(Offer, order.offer_id)
        self._check(order, offer, current)
        consumer = await self._session.get(Consumer, order.consumer_id)
        return PickupCheck(order=order, offer=offer, consumer_name=consumer.name if consumer else None)

    async def redeem(self, restaurant_id: UUID, pickup_code: str, *, now: datetime | None = None) -> PickupRedemption:
        """Complete the order; redeeming an already completed order is a no-op."""

        current = resolve_now(now)
        order = await self._find(restaurant_id, pickup_code)
        if order.status == OrderStatusEnum.COMPLETED:
            return PickupRedemption(order=order, already_redeemed=True)

        offer = await self._session.get(Offer, order.offer_id)
        self._check(order, offer, current)

        completed = await self._state_machine.complete_pickup(order, restaurant_id=restaurant_id, now=current)
        if not completed:
            await self._session.rollback()
            await self._session.refresh(order)
            if order.status == OrderStatusEnum.COMPLETED:
                return PickupRedemption(order=order, already_redeemed=True)
            raise NotReadyForPickupError(
                "Order is not ready for pickup",
                order_id=str(order.id),
                status=order.status,
            )

        await self._session.commit()
        logger.info("Pickup redeemed", order_id=str(order.id), restaurant_id=str(restaurant_id))
        return PickupRedemption(order=order, already_redeemed=False)

    async def _find(self, restaurant_id: UUID, pickup_code: str) -> Order:
        code = normalize_pickup_code(pickup_code)
        order = await self._session.scalar(
            select(Order).where(Order.restaurant_id == restaurant_id, Order.pickup_code == code)
        )
        if order is None:
            raise PickupCodeNotFoundError("Pickup code not found", pickup_code=code)
        return order

    @staticmethod
    def _check(order: Order, offer: Offer, current: datetime) -> None:
        if order.status not in _REDEEMABLE:
            raise NotReadyForPickupError(
                "Order is not ready for pickup",
                order_id=str(order.id),
                status=order.status,
            )
        start = ensure_utc(offer.pickup_start_time)
        end = ensure_utc(offer.pickup_end_time)
        if not start <= current <= end:
            raise OutsidePickupWindowError(
                "Pickup is only possible within the pickup window",
                order_id=str(order.id),
                pickup_start_time=start,
                pickup_end_time=end,
            )


__all__ = ["PickupCheck", "PickupRedemption", "PickupVerifier"]
