"""Internal payment retries: failed webhook deliveries and stale reservations."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict

from loguru import logger
from sqlalchemy import select

from surplus_api.core.settings import settings
from surplus_api.domain.marketplace.clock import ensure_utc, resolve_now
from surplus_api.models.offer import Offer
from surplus_api.models.order import Order, OrderStatusEnum
from surplus_api.models.order_state_event import OrderStateActorTypeEnum
from surplus_api.models.payment_notification import (
    PaymentNotificationRecord,
    PaymentNotificationStatusEnum,
)
from surplus_api.services.orders import OrderStateMachine
from surplus_api.services.payments import PaymentGateway, build_payment_gateway
from surplus_api.services.payments.reconciliation import PaymentReconciler, ReconciliationOutcome

from ._session import SessionFactory, open_session


async def retry_payment_notifications(
    *,
    session_factory: SessionFactory,
    now: datetime | None = None,
    gateway: PaymentGateway | None = None,
    max_attempts: int | None = None,
    batch_size: int | None = None,
) -> Dict[str, Any]:
    """Re-process inbox rows whose reconciliation failed, up to the attempt limit."""

    current = resolve_now(now)
    attempt_limit = max_attempts or settings.payment_notification_max_attempts
    limit = batch_size or settings.payment_notification_retry_batch_size
    session = await open_session(session_factory)
    async with session as managed_session:
        reconciler = PaymentReconciler(managed_session, gateway=gateway or build_payment_gateway())
        records = (
            await managed_session.execute(
                select(PaymentNotificationRecord)
                .where(
                    PaymentNotificationRecord.status == PaymentNotificationStatusEnum.FAILED,
                    PaymentNotificationRecord.attempts < attempt_limit,
                )
                .order_by(PaymentNotificationRecord.received_at.asc())
                .limit(limit)
            )
        ).scalars().all()

        recovered = 0
        still_failing = 0
        for record in records:
            result = await reconciler.process_record(record, now=current)
            if result.outcome == ReconciliationOutcome.FAILED:
                still_failing += 1
            else:
                recovered += 1

    summary = {"retried": len(records), "recovered": recovered, "still_failing": still_failing}
    logger.bind(summary=summary).info("Payment notification retry completed")
    return summary


async def release_stale_reservations(
    *,
    session_factory: SessionFactory,
    now: datetime | None = None,
    gateway: PaymentGateway | None = None,
    hold_minutes: int | None = None,
    batch_size: int = 200,
) -> Dict[str, Any]:
    """Re-check PENDING_PAYMENT orders older than the payment hold.

    Orders the gateway never heard of, or whose pickup window already closed,
    are cancelled and their units released.
    """

    current = resolve_now(now)
    cutoff = current - timedelta(minutes=hold_minutes or settings.payment_hold_minutes)
    session = await open_session(session_factory)
    async with session as managed_session:
        resolved_gateway = gateway or build_payment_gateway()
        machine = OrderStateMachine(managed_session, gateway=resolved_gateway)
        reconciler = PaymentReconciler(managed_session, gateway=resolved_gateway, state_machine=machine)
        order_ids = (
            await managed_session.execute(
                select(Order.id)
                .where(Order.status == OrderStatusEnum.PENDING_PAYMENT, Order.created_at < cutoff)
                .order_by(Order.created_at.asc())
                .limit(batch_size)
            )
        ).scalars().all()

        reconciled = 0
        cancelled = 0
        failures = 0
        for order_id in order_ids:
            try:
                order = await managed_session.get(Order, order_id, populate_existing=True)
                if order is None or order.status != OrderStatusEnum.PENDING_PAYMENT:
                    continue
                if order.payment_id:
                    result = await reconciler.reconcile_payment(order.payment_id, now=current)
                    if result.outcome == ReconciliationOutcome.APPLIED:
                        reconciled += 1
                    await managed_session.refresh(order)
                    if order.status != OrderStatusEnum.PENDING_PAYMENT:
                        continue

                offer = await managed_session.get(Offer, order.offer_id)
                window_closed = offer is None or ensure_utc(offer.pickup_end_time) <= current
                if order.payment_id and not window_closed:
                    continue
                if await machine.refuse_payment(
                    order,
                    now=current,
                    actor_type=OrderStateActorTypeEnum.SCHEDULER,
                    notes="Payment hold expired",
                ):
                    cancelled += 1
                await managed_session.commit()
            except Exception as exc:
                await managed_session.rollback()
                failures += 1
                logger.exception("Stale reservation check failed", order_id=str(order_id), error=str(exc))

    summary = {
        "candidates": len(order_ids),
        "reconciled": reconciled,
        "cancelled": cancelled,
        "failures": failures,
    }
    logger.bind(summary=summary).info("Stale reservation sweep completed")
    return summary


__all__ = ["release_stale_reservations", "retry_payment_notifications"]
