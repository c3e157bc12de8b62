"""Time-driven order sweeps: pickup windows opening, reminders and no-shows.

Each order is handled in its own transaction; a failure on one order is
logged and counted and the sweep moves on.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import ensure_utc, resolve_now
from surplus_api.domain.marketplace.rules import PICKUP_REMINDER_LEAD
from surplus_api.models.notification import NotificationTypeEnum, RecipientTypeEnum
from surplus_api.models.offer import Offer
from surplus_api.models.order import Order, OrderStatusEnum
from surplus_api.services.notifications import NotificationService
from surplus_api.services.notifications.templates import render_pickup_reminder
from surplus_api.services.orders import OrderStateMachine

from ._session import SessionFactory, open_session

OrderHandler = Callable[[AsyncSession, Order], Awaitable[bool]]


async def _candidate_ids(session: AsyncSession, *conditions: Any, limit: int) -> Sequence[UUID]:
    stmt = (
        select(Order.id)
        .join(Offer, Offer.id == Order.offer_id)
        .where(*conditions)
        .order_by(Offer.pickup_end_time.asc())
        .limit(limit)
    )
    return (await session.execute(stmt)).scalars().all()


async def _process_each(session: AsyncSession, order_ids: Sequence[UUID], handler: OrderHandler, *, job: str) -> Dict[str, int]:
    changed = 0
    skipped = 0
    failures = 0
    for order_id in order_ids:
        try:
            order = await session.get(Order, order_id, populate_existing=True)
            if order is None:
                skipped += 1
                continue
            if await handler(session, order):
                changed += 1
            else:
                skipped += 1
            await session.commit()
        except Exception as exc:
            await session.rollback()
            failures += 1
            logger.exception("Order sweep item failed", job=job, order_id=str(order_id), error=str(exc))
    return {"candidates": len(order_ids), "changed": changed, "skipped": skipped, "failures": failures}


async def open_pickup_windows(
    *,
    session_factory: SessionFactory,
    now: datetime | None = None,
    batch_size: int = 500,
) -> Dict[str, Any]:
    """Move CONFIRMED orders whose pickup window has opened to READY_FOR_PICKUP."""

    current = resolve_now(now)
    session = await open_session(session_factory)
    async with session as managed_session:
        machine = OrderStateMachine(managed_session)
        order_ids = await _candidate_ids(
            managed_session,
            Order.status == OrderStatusEnum.CONFIRMED,
            Offer.pickup_start_time <= current,
            Offer.pickup_end_time >= current,
            limit=batch_size,
        )

        async def _handle(_: AsyncSession, order: Order) -> bool:
            return await machine.mark_ready_for_pickup(order, now=current)

        summary = await _process_each(managed_session, order_ids, _handle, job="open_pickup_windows")

    logger.bind(summary=summary).info("Pickup window sweep completed")
    return summary


async def sweep_no_shows(
    *,
    session_factory: SessionFactory,
    now: datetime | None = None,
    batch_size: int = 500,
) -> Dict[str, Any]:
    """Mark unredeemed orders as NO_SHOW once the pickup window has closed."""

    current = resolve_now(now)
    session = await open_session(session_factory)
    async with session as managed_session:
        machine = OrderStateMachine(managed_session)
        order_ids = await _candidate_ids(
            managed_session,
            Order.status.in_([OrderStatusEnum.CONFIRMED, OrderStatusEnum.READY_FOR_PICKUP]),
            Offer.pickup_end_time < current,
            limit=batch_size,
        )

        async def _handle(_: AsyncSession, order: Order) -> bool:
            return await machine.mark_no_show(order, now=current)

        summary = await _process_each(managed_session, order_ids, _handle, job="sweep_no_shows")

    logger.bind(summary=summary).info("No-show sweep completed")
    return summary


async def send_pickup_reminders(
    *,
    session_factory: SessionFactory,
    now: datetime | None = None,
    batch_size: int = 500,
) -> Dict[str, Any]:
    """Remind consumers whose pickup window opens within the reminder lead time."""

    current = resolve_now(now)
    horizon = current + PICKUP_REMINDER_LEAD
    session = await open_session(session_factory)
    async with session as managed_session:
        notifications = NotificationService(managed_session)
        order_ids = await _candidate_ids(
            managed_session,
            Order.status == OrderStatusEnum.CONFIRMED,
            Offer.pickup_start_time > current,
            Offer.pickup_start_time <= horizon,
            limit=batch_size,
        )

        async def _handle(session: AsyncSession, order: Order) -> bool:
            offer = await session.get(Offer, order.offer_id)
            return await notifications.emit(
                recipient_type=RecipientTypeEnum.CONSUMER,
                recipient_id=order.consumer_id,
                notification_type=NotificationTypeEnum.PICKUP_REMINDER,
                rendered=render_pickup_reminder(
                    pickup_code=order.pickup_code,
                    pickup_start=ensure_utc(offer.pickup_start_time),
                ),
                related_id=order.id,
                dedup_key=f"pickup-reminder:{order.id}",
                now=current,
            )

        summary = await _process_each(managed_session, order_ids, _handle, job="send_pickup_reminders")

    logger.bind(summary=summary).info("Pickup reminder sweep completed")
    return summary


__all__ = ["open_pickup_windows", "send_pickup_reminders", "sweep_no_shows"]
