"""Offer quantity and status lifecycle.

All quantity changes are single conditional ``UPDATE`` statements so two
concurrent reservations against the last unit can never both succeed, and the
SOLD_OUT flip happens in the same statement as the decrement. Callers own the
transaction: ``reserve`` and ``release`` only flush into the current unit of
work so order rows and inventory commit (or roll back) together.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, case, literal, update
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import ensure_utc, resolve_now
from surplus_api.domain.marketplace.errors import (
    DiscountTooLowError,
    ForbiddenError,
    InsufficientQuantityError,
    InvalidPickupWindowError,
    InvalidQuantityError,
    OfferExpiredError,
    OfferNotFoundError,
    OfferUnavailableError,
    RestaurantNotApprovedError,
    RestaurantNotFoundError,
)
from surplus_api.domain.marketplace.pricing import discount_percent, discount_rate, meets_minimum_discount, to_money
from surplus_api.domain.marketplace.rules import (
    MAX_OFFER_QUANTITY,
    MAX_PICKUP_WINDOW,
    MIN_DISCOUNT_RATE,
    MIN_OFFER_QUANTITY,
    MIN_PICKUP_WINDOW,
)
from surplus_api.models.offer import Offer, OfferStatusEnum
from surplus_api.models.restaurant import Restaurant


@dataclass(slots=True)
class OfferDraft:
    """Restaurant-supplied fields for a new offer."""

    package_type: str
    quantity: int
    original_price: Decimal
    promotional_price: Decimal
    pickup_start_time: datetime
    pickup_end_time: datetime
    description: str | None = None
    is_vegetarian: bool = False
    is_vegan: bool = False


def _status_literal(status: OfferStatusEnum):
    return literal(status, type_=Offer.__table__.c.status.type)


class OfferInventoryManager:
    """Owns offer creation, reservation, release, cancellation and expiry."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_offer(self, restaurant_id: UUID, draft: OfferDraft, *, now: datetime | None = None) -> Offer:
        current = resolve_now(now)
        restaurant = await self._session.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError("Restaurant not found", restaurant_id=str(restaurant_id))
        if not restaurant.is_approved or not restaurant.is_active:
            raise RestaurantNotApprovedError(
                "Restaurant must be approved before publishing offers",
                restaurant_id=str(restaurant_id),
            )

        if not MIN_OFFER_QUANTITY <= draft.quantity <= MAX_OFFER_QUANTITY:
            raise InvalidQuantityError(
                f"Quantity must be between {MIN_OFFER_QUANTITY} and {MAX_OFFER_QUANTITY}",
                quantity=draft.quantity,
                minimum=MIN_OFFER_QUANTITY,
                maximum=MAX_OFFER_QUANTITY,
            )

        original = to_money(draft.original_price)
        promotional = to_money(draft.promotional_price)
        if original <= 0 or promotional <= 0 or promotional > original:
            raise DiscountTooLowError(
                "Prices must be positive and the promotional price cannot exceed the original",
                original_price=str(original),
                promotional_price=str(promotional),
            )
        if not meets_minimum_discount(original, promotional):
            raise DiscountTooLowError(
                "Discount must be at least 30%",
                discount=str(discount_percent(original, promotional)),
                minimum=str(to_money(MIN_DISCOUNT_RATE * 100)),
            )

        start = ensure_utc(draft.pickup_start_time)
        end = ensure_utc(draft.pickup_end_time)
        duration = end - start
        if not MIN_PICKUP_WINDOW <= duration <= MAX_PICKUP_WINDOW:
            raise InvalidPickupWindowError(
                "Pickup window must last between 1 and 3 hours",
                pickup_start_time=start,
                pickup_end_time=end,
                duration_minutes=int(duration.total_seconds() // 60),
            )
        if end <= current:
            raise InvalidPickupWindowError(
                "Pickup window must end in the future",
                pickup_start_time=start,
                pickup_end_time=end,
            )

        offer = Offer(
            restaurant_id=restaurant.id,
            package_type=draft.package_type,
            description=draft.description,
            quantity=draft.quantity,
            available_quantity=draft.quantity,
            original_price=original,
            promotional_price=promotional,
            discount_percent=discount_percent(original, promotional),
            pickup_start_time=start,
            pickup_end_time=end,
            is_vegetarian=draft.is_vegetarian,
            is_vegan=draft.is_vegan,
            status=OfferStatusEnum.ACTIVE,
            created_at=current,
            updated_at=current,
        )
        self._session.add(offer)
        await self._session.commit()
        logger.info(
            "Offer published",
            offer_id=str(offer.id),
            restaurant_id=str(restaurant.id),
            quantity=offer.quantity,
            discount_rate=str(discount_rate(original, promotional)),
        )
        return offer

    async def reserve(self, offer_id: UUID, quantity: int, *, now: datetime | None = None) -> Offer:
        """Take ``quantity`` units in one conditional update, flipping to SOLD_OUT on zero."""

        if quantity < 1:
            raise InvalidQuantityError("Quantity must be at least 1", quantity=quantity)
        current = resolve_now(now)
        remaining = Offer.available_quantity - quantity
        stmt = (
            update(Offer)
            .where(
                Offer.id == offer_id,
                Offer.status == OfferStatusEnum.ACTIVE,
                Offer.pickup_end_time > current,
                Offer.available_quantity >= quantity,
            )
            .values(
                available_quantity=remaining,
                status=case(
                    (remaining == 0, _status_literal(OfferStatusEnum.SOLD_OUT)),
                    else_=Offer.status,
                ),
                updated_at=current,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 1:
            offer = await self._reload(offer_id)
            logger.info(
                "Offer units reserved",
                offer_id=str(offer_id),
                quantity=quantity,
                available_quantity=offer.available_quantity,
                status=offer.status.value,
            )
            return offer

        raise await self._reserve_failure(offer_id, quantity, current)

    async def _reserve_failure(self, offer_id: UUID, quantity: int, current: datetime) -> Exception:
        """Explain why the conditional update matched nothing."""

        offer = await self._session.get(Offer, offer_id, populate_existing=True)
        if offer is None:
            return OfferNotFoundError("Offer not found", offer_id=str(offer_id))
        status = offer.status
        if status == OfferStatusEnum.ACTIVE and ensure_utc(offer.pickup_end_time) <= current:
            await self._session.execute(
                update(Offer)
                .where(Offer.id == offer_id, Offer.status == OfferStatusEnum.ACTIVE)
                .values(status=OfferStatusEnum.EXPIRED, updated_at=current)
                .execution_options(synchronize_session=False)
            )
            status = OfferStatusEnum.EXPIRED
        if status == OfferStatusEnum.EXPIRED:
            return OfferExpiredError(
                "Offer pickup window has ended",
                offer_id=str(offer_id),
                pickup_end_time=ensure_utc(offer.pickup_end_time),
            )
        if status != OfferStatusEnum.ACTIVE:
            return OfferUnavailableError(
                "Offer is not available",
                offer_id=str(offer_id),
                status=status,
            )
        return InsufficientQuantityError(
            "Not enough units available",
            offer_id=str(offer_id),
            requested=quantity,
            available=offer.available_quantity,
        )

    async def release(self, offer_id: UUID, quantity: int, *, now: datetime | None = None) -> Offer | None:
        """Return units to the offer, reopening SOLD_OUT/EXPIRED offers whose window is still open.

        Cancelled offers take the units back but stay cancelled.
        """

        current = resolve_now(now)
        reopen = and_(
            Offer.status.in_([OfferStatusEnum.SOLD_OUT, OfferStatusEnum.EXPIRED]),
            Offer.pickup_end_time > current,
        )
        stmt = (
            update(Offer)
            .where(
                Offer.id == offer_id,
                Offer.available_quantity + quantity <= Offer.quantity,
            )
            .values(
                available_quantity=Offer.available_quantity + quantity,
                status=case(
                    (reopen, _status_literal(OfferStatusEnum.ACTIVE)),
                    else_=Offer.status,
                ),
                updated_at=current,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            logger.error(
                "Offer release skipped; quantity would exceed published units",
                offer_id=str(offer_id),
                quantity=quantity,
            )
            return None
        offer = await self._reload(offer_id)
        logger.info(
            "Offer units released",
            offer_id=str(offer_id),
            quantity=quantity,
            available_quantity=offer.available_quantity,
            status=offer.status.value,
        )
        return offer

    async def cancel(self, offer_id: UUID, restaurant_id: UUID, *, now: datetime | None = None) -> tuple[Offer, bool]:
        """Mark the offer CANCELLED; returns ``(offer, changed)``.

        Cancelling an already-cancelled offer is a no-op. Orders against the
        offer are handled by the order state machine.
        """

        current = resolve_now(now)
        offer = await self._session.get(Offer, offer_id)
        if offer is None:
            raise OfferNotFoundError("Offer not found", offer_id=str(offer_id))
        if offer.restaurant_id != restaurant_id:
            raise ForbiddenError("Offer belongs to another restaurant", offer_id=str(offer_id))
        if offer.status == OfferStatusEnum.CANCELLED:
            return offer, False

        result = await self._session.execute(
            update(Offer)
            .where(
                Offer.id == offer_id,
                Offer.status.in_([OfferStatusEnum.ACTIVE, OfferStatusEnum.SOLD_OUT]),
            )
            .values(status=OfferStatusEnum.CANCELLED, cancelled_at=current, updated_at=current)
            .execution_options(synchronize_session=False)
        )
        offer = await self._reload(offer_id)
        if result.rowcount != 1:
            if offer.status == OfferStatusEnum.CANCELLED:
                return offer, False
            raise OfferUnavailableError(
                "Only active or sold out offers can be cancelled",
                offer_id=str(offer_id),
                status=offer.status,
            )
        logger.info("Offer cancelled", offer_id=str(offer_id), restaurant_id=str(restaurant_id))
        return offer, True

    async def expire_due(self, *, now: datetime | None = None) -> int:
        """Flip ACTIVE offers whose pickup window has ended to EXPIRED."""

        current = resolve_now(now)
        result = await self._session.execute(
            update(Offer)
            .where(Offer.status == OfferStatusEnum.ACTIVE, Offer.pickup_end_time < current)
            .values(status=OfferStatusEnum.EXPIRED, updated_at=current)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def _reload(self, offer_id: UUID) -> Offer:
        offer = await self._session.get(Offer, offer_id, populate_existing=True)
        if offer is None:  # pragma: no cover - row was just updated
            raise OfferNotFoundError("Offer not found", offer_id=str(offer_id))
        return offer


__all__ = ["OfferDraft", "OfferInventoryManager"]
