from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from surplus_api.domain.marketplace.errors import GatewayUnavailableError
from surplus_api.jobs.payments import release_stale_reservations, retry_payment_notifications
from surplus_api.models.offer import Offer
from surplus_api.models.order import Order, OrderStatusEnum, PaymentStatusEnum
from surplus_api.models.order_state_event import OrderStateEvent, OrderStateEventTypeEnum
from surplus_api.models.payment_notification import PaymentNotificationRecord, PaymentNotificationStatusEnum
from surplus_api.models.transaction import Transaction
from surplus_api.observability.payments import get_payment_store
from surplus_api.services.orders import OrderStateMachine
from surplus_api.services.payments import GatewayPayment, PaymentNotification, UnrecognizedNotification
from surplus_api.services.payments.reconciliation import (
    PaymentReconciler,
    ReconciliationOutcome,
    map_gateway_status,
)

from conftest import NOW, create_consumer, create_offer, create_restaurant, reserve_order


async def _pending_pix_order(session_factory, stub_gateway, *, quantity: int = 1):
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant, quantity=10)
    order = await reserve_order(
        session_factory,
        consumer,
        offer,
        quantity=quantity,
        gateway=stub_gateway,
        initiate_payment=True,
    )
    return offer, order


async def _ingest(session_factory, gateway, payment_id: str):
    async with session_factory() as session:
        return await PaymentReconciler(session, gateway=gateway).ingest(
            PaymentNotification(payment_id=payment_id, action="payment.updated"),
            now=NOW,
        )


def test_status_table_maps_gateway_statuses() -> None:
    assert map_gateway_status("approved") == (PaymentStatusEnum.APPROVED, OrderStatusEnum.CONFIRMED)
    assert map_gateway_status("REJECTED") == (PaymentStatusEnum.REFUSED, OrderStatusEnum.CANCELLED)
    assert map_gateway_status("refunded") == (PaymentStatusEnum.REFUNDED, OrderStatusEnum.CANCELLED)
    assert map_gateway_status("in_process") == (PaymentStatusEnum.PENDING, OrderStatusEnum.PENDING_PAYMENT)
    assert map_gateway_status(None) == (PaymentStatusEnum.PENDING, OrderStatusEnum.PENDING_PAYMENT)


@pytest.mark.asyncio
async def test_approved_notification_is_idempotent(session_factory, stub_gateway) -> None:
    _, order = await _pending_pix_order(session_factory, stub_gateway)
    stub_gateway.set_status(order.payment_id, "approved")

    first = await _ingest(session_factory, stub_gateway, order.payment_id)
    second = await _ingest(session_factory, stub_gateway, order.payment_id)

    assert first.outcome == ReconciliationOutcome.APPLIED
    assert second.outcome == ReconciliationOutcome.NOOP

    async with session_factory() as session:
        stored = await session.get(Order, order.id)
        transactions = await session.scalar(
            select(func.count()).select_from(Transaction).where(Transaction.order_id == order.id)
        )
        records = (await session.execute(select(PaymentNotificationRecord))).scalars().all()

    assert stored.status == OrderStatusEnum.CONFIRMED
    assert stored.payment_status == PaymentStatusEnum.APPROVED
    assert transactions == 1
    assert len(records) == 2
    assert {record.status for record in records} == {PaymentNotificationStatusEnum.PROCESSED}

    totals = get_payment_store().snapshot().as_dict()["webhooks"]["totals"]
    assert totals["received"]["payment"] == 2
    assert totals["processed"]["payment"] == 2


@pytest.mark.asyncio
async def test_pending_after_approved_does_not_regress(session_factory, stub_gateway) -> None:
    _, order = await _pending_pix_order(session_factory, stub_gateway)
    stub_gateway.set_status(order.payment_id, "approved")
    await _ingest(session_factory, stub_gateway, order.payment_id)

    stub_gateway.set_status(order.payment_id, "pending")
    late = await _ingest(session_factory, stub_gateway, order.payment_id)

    assert late.outcome == ReconciliationOutcome.IGNORED
    async with session_factory() as session:
        stored = await session.get(Order, order.id)
    assert stored.status == OrderStatusEnum.CONFIRMED
    assert stored.payment_status == PaymentStatusEnum.APPROVED


@pytest.mark.asyncio
async def test_rejected_payment_releases_units(session_factory, stub_gateway) -> None:
    offer, order = await _pending_pix_order(session_factory, stub_gateway, quantity=3)
    stub_gateway.set_status(order.payment_id, "rejected")

    result = await _ingest(session_factory, stub_gateway, order.payment_id)

    assert result.outcome == ReconciliationOutcome.APPLIED
    async with session_factory() as session:
        stored = await session.get(Order, order.id)
        stored_offer = await session.get(Offer, offer.id)
    assert stored.status == OrderStatusEnum.CANCELLED
    assert stored.payment_status == PaymentStatusEnum.REFUSED
    assert stored_offer.available_quantity == 10

    # An approval arriving after the cancellation is refunded, not applied.
    stub_gateway.set_status(order.payment_id, "approved")
    late = await _ingest(session_factory, stub_gateway, order.payment_id)
    assert late.outcome == ReconciliationOutcome.REFUND_REQUESTED
    assert (await stub_gateway.get_payment(order.payment_id)).status == "refunded"


@pytest.mark.asyncio
async def test_approval_after_offer_cancellation_is_refunded_once(session_factory, stub_gateway) -> None:
    offer, order = await _pending_pix_order(session_factory, stub_gateway)
    async with session_factory() as session:
        await OrderStateMachine(session, gateway=stub_gateway).cancel_offer(offer.restaurant_id, offer.id, now=NOW)

    stub_gateway.set_status(order.payment_id, "approved")
    late = await _ingest(session_factory, stub_gateway, order.payment_id)

    assert late.outcome == ReconciliationOutcome.REFUND_REQUESTED
    assert (await stub_gateway.get_payment(order.payment_id)).status == "refunded"

    # A replayed approval does not trigger a second refund.
    stub_gateway.set_status(order.payment_id, "approved")
    replay = await _ingest(session_factory, stub_gateway, order.payment_id)
    assert replay.outcome == ReconciliationOutcome.NOOP

    async with session_factory() as session:
        stored = await session.get(Order, order.id)
        refund_events = await session.scalar(
            select(func.count())
            .select_from(OrderStateEvent)
            .where(
                OrderStateEvent.order_id == order.id,
                OrderStateEvent.event_type == OrderStateEventTypeEnum.REFUND_REQUESTED,
            )
        )
        outcomes = (await session.execute(select(PaymentNotificationRecord.outcome))).scalars().all()

    assert stored.status == OrderStatusEnum.CANCELLED
    assert stored.payment_status == PaymentStatusEnum.REFUSED
    assert refund_events == 1
    assert sorted(outcomes) == ["noop", "refund_requested"]


@pytest.mark.asyncio
async def test_unknown_payment_and_unrecognized_topics_are_acknowledged(session_factory, stub_gateway) -> None:
    stub_gateway.set_status("orphan-payment", "approved")
    orphan = await _ingest(session_factory, stub_gateway, "orphan-payment")
    assert orphan.outcome == ReconciliationOutcome.IGNORED

    async with session_factory() as session:
        other = await PaymentReconciler(session, gateway=stub_gateway).ingest(
            UnrecognizedNotification(kind="merchant_order", raw={"body": {"topic": "merchant_order"}}),
            now=NOW,
        )
        record = await session.scalar(
            select(PaymentNotificationRecord).where(PaymentNotificationRecord.kind == "merchant_order")
        )

    assert other.outcome == ReconciliationOutcome.UNRECOGNIZED
    assert record.status == PaymentNotificationStatusEnum.IGNORED


@pytest.mark.asyncio
async def test_gateway_failure_is_stored_and_retried(session_factory, stub_gateway) -> None:
    _, order = await _pending_pix_order(session_factory, stub_gateway)

    gateway = AsyncMock()
    gateway.get_payment.side_effect = [
        GatewayUnavailableError("Payment gateway unavailable", operation="get_payment"),
        GatewayPayment(payment_id=order.payment_id, status="approved", order_id=str(order.id)),
    ]

    failed = await _ingest(session_factory, gateway, order.payment_id)
    assert failed.outcome == ReconciliationOutcome.FAILED

    async with session_factory() as session:
        record = await session.scalar(select(PaymentNotificationRecord))
    assert record.status == PaymentNotificationStatusEnum.FAILED
    assert record.attempts == 1
    assert "GatewayUnavailableError" in record.last_error

    summary = await retry_payment_notifications(
        session_factory=session_factory,
        now=NOW + timedelta(minutes=5),
        gateway=gateway,
        max_attempts=5,
        batch_size=10,
    )
    assert summary == {"retried": 1, "recovered": 1, "still_failing": 0}

    async with session_factory() as session:
        record = await session.get(PaymentNotificationRecord, record.id)
        stored = await session.get(Order, order.id)
    assert record.status == PaymentNotificationStatusEnum.PROCESSED
    assert record.attempts == 2
    assert stored.status == OrderStatusEnum.CONFIRMED

    assert get_payment_store().snapshot().webhook_totals["failed"]["payment"] == 1


@pytest.mark.asyncio
async def test_stale_reservations_are_released(session_factory, stub_gateway) -> None:
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant, quantity=10)
    unpaid = await reserve_order(session_factory, consumer, offer, quantity=2)
    awaiting = await reserve_order(
        session_factory,
        consumer,
        offer,
        quantity=1,
        gateway=stub_gateway,
        initiate_payment=True,
    )
    fresh = await reserve_order(session_factory, consumer, offer, now=NOW + timedelta(minutes=30))

    summary = await release_stale_reservations(
        session_factory=session_factory,
        now=NOW + timedelta(minutes=40),
        gateway=stub_gateway,
        hold_minutes=30,
    )

    assert summary == {"candidates": 2, "reconciled": 0, "cancelled": 1, "failures": 0}

    async with session_factory() as session:
        statuses = {
            order_id: status
            for order_id, status in (
                await session.execute(
                    select(Order.id, Order.status).where(Order.id.in_([unpaid.id, awaiting.id, fresh.id]))
                )
            ).all()
        }
        stored_offer = await session.get(Offer, offer.id)

    assert statuses[unpaid.id] == OrderStatusEnum.CANCELLED
    assert statuses[awaiting.id] == OrderStatusEnum.PENDING_PAYMENT
    assert statuses[fresh.id] == OrderStatusEnum.PENDING_PAYMENT
    assert stored_offer.available_quantity == 8
