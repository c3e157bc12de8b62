from datetime import timedelta
from decimal import Decimal

import pytest

from surplus_api.domain.marketplace.errors import (
    DiscountTooLowError,
    ForbiddenError,
    InsufficientQuantityError,
    InvalidPickupWindowError,
    InvalidQuantityError,
    OfferUnavailableError,
    RestaurantNotApprovedError,
)
from surplus_api.models.offer import Offer, OfferStatusEnum
from surplus_api.services.offers import OfferDraft, OfferInventoryManager

from conftest import NOW, create_offer, create_restaurant


def _draft(**overrides) -> OfferDraft:
    values = {
        "package_type": "Bread basket",
        "quantity": 10,
        "original_price": Decimal("10.00"),
        "promotional_price": Decimal("7.00"),
        "pickup_start_time": NOW + timedelta(hours=2),
        "pickup_end_time": NOW + timedelta(hours=4),
    }
    values.update(overrides)
    return OfferDraft(**values)


@pytest.mark.asyncio
async def test_create_offer_accepts_exact_minimum_discount(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)

    async with session_factory() as session:
        offer = await OfferInventoryManager(session).create_offer(restaurant.id, _draft(), now=NOW)

    assert offer.status == OfferStatusEnum.ACTIVE
    assert offer.available_quantity == 10
    assert offer.discount_percent == Decimal("30.00")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "error"),
    [
        ({"promotional_price": Decimal("7.01")}, DiscountTooLowError),
        ({"promotional_price": Decimal("12.00")}, DiscountTooLowError),
        ({"original_price": Decimal("0.00"), "promotional_price": Decimal("0.00")}, DiscountTooLowError),
        ({"quantity": 0}, InvalidQuantityError),
        ({"quantity": 51}, InvalidQuantityError),
        ({"pickup_end_time": NOW + timedelta(hours=2, minutes=59)}, InvalidPickupWindowError),
        ({"pickup_end_time": NOW + timedelta(hours=5, minutes=1)}, InvalidPickupWindowError),
        (
            {"pickup_start_time": NOW - timedelta(hours=3), "pickup_end_time": NOW - timedelta(hours=1)},
            InvalidPickupWindowError,
        ),
    ],
)
async def test_create_offer_rejects_invalid_drafts(session_factory, overrides, error) -> None:
    restaurant = await create_restaurant(session_factory)

    async with session_factory() as session:
        with pytest.raises(error):
            await OfferInventoryManager(session).create_offer(restaurant.id, _draft(**overrides), now=NOW)


@pytest.mark.asyncio
async def test_create_offer_accepts_window_bounds(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)

    async with session_factory() as session:
        manager = OfferInventoryManager(session)
        one_hour = await manager.create_offer(
            restaurant.id,
            _draft(pickup_end_time=NOW + timedelta(hours=3)),
            now=NOW,
        )
        three_hours = await manager.create_offer(
            restaurant.id,
            _draft(pickup_end_time=NOW + timedelta(hours=5), quantity=50),
            now=NOW,
        )

    assert one_hour.quantity == 10
    assert three_hours.quantity == 50


@pytest.mark.asyncio
async def test_unapproved_restaurant_cannot_publish(session_factory) -> None:
    restaurant = await create_restaurant(session_factory, is_approved=False)

    async with session_factory() as session:
        with pytest.raises(RestaurantNotApprovedError):
            await OfferInventoryManager(session).create_offer(restaurant.id, _draft(), now=NOW)


@pytest.mark.asyncio
async def test_reserving_last_units_marks_sold_out_and_release_reopens(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    offer = await create_offer(session_factory, restaurant, quantity=3)

    async with session_factory() as session:
        manager = OfferInventoryManager(session)
        partial = await manager.reserve(offer.id, 2, now=NOW)
        assert partial.available_quantity == 1
        assert partial.status == OfferStatusEnum.ACTIVE

        sold_out = await manager.reserve(offer.id, 1, now=NOW)
        assert sold_out.available_quantity == 0
        assert sold_out.status == OfferStatusEnum.SOLD_OUT

        with pytest.raises(OfferUnavailableError):
            await manager.reserve(offer.id, 1, now=NOW)

        reopened = await manager.release(offer.id, 2, now=NOW)
        assert reopened is not None
        assert reopened.available_quantity == 2
        assert reopened.status == OfferStatusEnum.ACTIVE
        await session.commit()


@pytest.mark.asyncio
async def test_release_after_pickup_window_keeps_offer_sold_out(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    offer = await create_offer(session_factory, restaurant, quantity=1)
    after_window = NOW + timedelta(hours=5, minutes=1)

    async with session_factory() as session:
        manager = OfferInventoryManager(session)
        sold_out = await manager.reserve(offer.id, 1, now=NOW)
        assert sold_out.status == OfferStatusEnum.SOLD_OUT

        released = await manager.release(offer.id, 1, now=after_window)
        await session.commit()

    assert released is not None
    assert released.available_quantity == 1
    assert released.status == OfferStatusEnum.SOLD_OUT


@pytest.mark.asyncio
async def test_reserve_more_than_available_reports_remaining_units(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    offer = await create_offer(session_factory, restaurant, quantity=2)

    async with session_factory() as session:
        manager = OfferInventoryManager(session)
        with pytest.raises(InsufficientQuantityError) as excinfo:
            await manager.reserve(offer.id, 3, now=NOW)
        with pytest.raises(InvalidQuantityError):
            await manager.reserve(offer.id, 0, now=NOW)

    assert excinfo.value.details["available"] == 2
    assert excinfo.value.details["requested"] == 3


@pytest.mark.asyncio
async def test_release_never_exceeds_published_quantity(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    offer = await create_offer(session_factory, restaurant, quantity=4)

    async with session_factory() as session:
        manager = OfferInventoryManager(session)
        await manager.reserve(offer.id, 1, now=NOW)
        assert await manager.release(offer.id, 2, now=NOW) is None
        restored = await manager.release(offer.id, 1, now=NOW)
        await session.commit()

    assert restored is not None
    assert restored.available_quantity == 4


@pytest.mark.asyncio
async def test_expire_due_uses_strict_end_comparison(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    ended = await create_offer(
        session_factory,
        restaurant,
        pickup_start_time=NOW - timedelta(hours=2),
        pickup_end_time=NOW - timedelta(minutes=1),
    )
    ending_now = await create_offer(
        session_factory,
        restaurant,
        pickup_start_time=NOW - timedelta(hours=1),
        pickup_end_time=NOW,
    )

    async with session_factory() as session:
        expired = await OfferInventoryManager(session).expire_due(now=NOW)
        await session.commit()

    assert expired == 1
    async with session_factory() as session:
        assert (await session.get(Offer, ended.id)).status == OfferStatusEnum.EXPIRED
        assert (await session.get(Offer, ending_now.id)).status == OfferStatusEnum.ACTIVE


@pytest.mark.asyncio
async def test_cancel_is_restricted_to_owner_and_idempotent(session_factory) -> None:
    owner = await create_restaurant(session_factory)
    other = await create_restaurant(session_factory)
    offer = await create_offer(session_factory, owner)

    async with session_factory() as session:
        manager = OfferInventoryManager(session)
        with pytest.raises(ForbiddenError):
            await manager.cancel(offer.id, other.id, now=NOW)

        cancelled, changed = await manager.cancel(offer.id, owner.id, now=NOW)
        await session.commit()
        assert changed is True
        assert cancelled.status == OfferStatusEnum.CANCELLED

        again, changed_again = await manager.cancel(offer.id, owner.id, now=NOW)
        assert changed_again is False
        assert again.status == OfferStatusEnum.CANCELLED
