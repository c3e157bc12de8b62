from datetime import timedelta

import pytest
from sqlalchemy import select

from surplus_api.domain.marketplace.clock import ensure_utc
from surplus_api.domain.marketplace.errors import (
    NotReadyForPickupError,
    OutsidePickupWindowError,
    PickupCodeNotFoundError,
)
from surplus_api.models.notification import Notification, NotificationTypeEnum
from surplus_api.models.order import OrderStatusEnum
from surplus_api.models.transaction import Transaction, TransactionStatusEnum
from surplus_api.services.orders import OrderQueries, PickupVerifier

from conftest import NOW, confirm_order, create_consumer, create_offer, create_restaurant, reserve_order

IN_WINDOW = NOW + timedelta(hours=3, minutes=30)


@pytest.mark.asyncio
async def test_pickup_is_only_valid_inside_the_window(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory, name="Bruno Lima")
    offer = await create_offer(session_factory, restaurant)
    order = await confirm_order(session_factory, await reserve_order(session_factory, consumer, offer))

    async with session_factory() as session:
        verifier = PickupVerifier(session)
        with pytest.raises(OutsidePickupWindowError):
            await verifier.validate(restaurant.id, order.pickup_code, now=NOW)
        with pytest.raises(OutsidePickupWindowError):
            await verifier.validate(restaurant.id, order.pickup_code, now=NOW + timedelta(hours=5, seconds=1))

        check = await verifier.validate(restaurant.id, f"  {order.pickup_code.lower()} ", now=IN_WINDOW)

    assert check.order.id == order.id
    assert check.consumer_name == "Bruno Lima"
    assert check.offer.package_type == offer.package_type


@pytest.mark.asyncio
async def test_redeem_completes_once_and_settles_transaction(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant)
    order = await confirm_order(session_factory, await reserve_order(session_factory, consumer, offer, quantity=2))

    async with session_factory() as session:
        first = await PickupVerifier(session).redeem(restaurant.id, order.pickup_code, now=IN_WINDOW)

    assert first.already_redeemed is False
    assert first.order.status == OrderStatusEnum.COMPLETED

    async with session_factory() as session:
        second = await PickupVerifier(session).redeem(
            restaurant.id,
            order.pickup_code,
            now=IN_WINDOW + timedelta(minutes=5),
        )
        transaction = await session.scalar(select(Transaction).where(Transaction.order_id == order.id))
        review_request = await session.scalar(
            select(Notification).where(
                Notification.related_id == order.id,
                Notification.type == NotificationTypeEnum.REVIEW_REQUEST,
            )
        )
        summary = await OrderQueries(session).sales_summary(restaurant.id)

    assert second.already_redeemed is True
    assert ensure_utc(second.order.pickup_time) == IN_WINDOW
    assert transaction.status == TransactionStatusEnum.PROCESSED
    assert ensure_utc(review_request.deliver_after) == IN_WINDOW + timedelta(hours=1)
    assert summary.orders == 1
    assert summary.units == 2
    assert str(summary.gross_amount) == "45.00"
    assert str(summary.net_amount) == "38.25"


@pytest.mark.asyncio
async def test_codes_from_other_restaurants_are_not_found(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    rival = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant)
    order = await confirm_order(session_factory, await reserve_order(session_factory, consumer, offer))

    async with session_factory() as session:
        verifier = PickupVerifier(session)
        with pytest.raises(PickupCodeNotFoundError):
            await verifier.validate(rival.id, order.pickup_code, now=IN_WINDOW)
        with pytest.raises(PickupCodeNotFoundError):
            await verifier.redeem(rival.id, order.pickup_code, now=IN_WINDOW)
        with pytest.raises(PickupCodeNotFoundError):
            await verifier.validate(restaurant.id, "ZZZZZZZZZZ", now=IN_WINDOW)


@pytest.mark.asyncio
async def test_unpaid_order_cannot_be_redeemed(session_factory) -> None:
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant)
    order = await reserve_order(session_factory, consumer, offer)

    async with session_factory() as session:
        with pytest.raises(NotReadyForPickupError):
            await PickupVerifier(session).redeem(restaurant.id, order.pickup_code, now=IN_WINDOW)
