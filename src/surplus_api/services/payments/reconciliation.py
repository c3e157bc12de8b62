"""Reconcile gateway payment notifications with order state.

Notification bodies are never trusted: each delivery only names a payment id,
and the authoritative status is fetched from the gateway before anything is
applied. Transitions are monotonic, so duplicated or out-of-order deliveries
settle on the same final state. ``ingest`` never raises; failures are stored
on the inbox row and retried by the notification retry job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.models.order import Order, OrderStatusEnum, PaymentStatusEnum
from surplus_api.models.order_state_event import OrderStateEvent, OrderStateEventTypeEnum
from surplus_api.models.payment_notification import (
    PaymentNotificationRecord,
    PaymentNotificationStatusEnum,
)
from surplus_api.observability.payments import get_payment_store
from surplus_api.services.orders.state_machine import OrderStateMachine

from .mercadopago import GatewayPayment, PaymentGateway, build_payment_gateway
from .webhooks import GatewayNotification, PaymentNotification, UnrecognizedNotification

STATUS_TABLE: dict[str, tuple[PaymentStatusEnum, OrderStatusEnum]] = {
    "approved": (PaymentStatusEnum.APPROVED, OrderStatusEnum.CONFIRMED),
    "pending": (PaymentStatusEnum.PENDING, OrderStatusEnum.PENDING_PAYMENT),
    "rejected": (PaymentStatusEnum.REFUSED, OrderStatusEnum.CANCELLED),
    "cancelled": (PaymentStatusEnum.REFUNDED, OrderStatusEnum.CANCELLED),
    "refunded": (PaymentStatusEnum.REFUNDED, OrderStatusEnum.CANCELLED),
}
_UNRECOGNIZED = (PaymentStatusEnum.PENDING, OrderStatusEnum.PENDING_PAYMENT)

_CONFIRMED_OR_LATER = (
    OrderStatusEnum.CONFIRMED,
    OrderStatusEnum.READY_FOR_PICKUP,
    OrderStatusEnum.COMPLETED,
)
_CAPTURED_PAYMENT_STATUSES = (PaymentStatusEnum.APPROVED, PaymentStatusEnum.REFUNDED)


def map_gateway_status(status: str | None) -> tuple[PaymentStatusEnum, OrderStatusEnum]:
    return STATUS_TABLE.get((status or "").strip().lower(), _UNRECOGNIZED)


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    IGNORED = "ignored"
    REFUND_REQUESTED = "refund_requested"
    UNRECOGNIZED = "unrecognized"
    FAILED = "failed"


@dataclass(slots=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    payment_id: str | None = None
    order_id: UUID | None = None
    gateway_status: str | None = None
    detail: str | None = None


class PaymentReconciler:
    def __init__(
        self,
        session: AsyncSession,
        *,
        gateway: PaymentGateway | None = None,
        state_machine: OrderStateMachine | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway or build_payment_gateway()
        self._state_machine = state_machine or OrderStateMachine(session, gateway=self._gateway)
        self._observability = get_payment_store()

    async def ingest(self, notification: GatewayNotification, *, now: datetime | None = None) -> ReconciliationResult:
        """Record a delivery in the inbox and process it; never raises on processing failures."""

        current = resolve_now(now)
        if isinstance(notification, PaymentNotification):
            record = PaymentNotificationRecord(
                kind="payment",
                payment_id=notification.payment_id,
                action=notification.action,
                payload={"action": notification.action},
                received_at=current,
            )
        elif isinstance(notification, UnrecognizedNotification):
            record = PaymentNotificationRecord(
                kind=notification.kind,
                payload=dict(notification.raw),
                status=PaymentNotificationStatusEnum.IGNORED,
                outcome=ReconciliationOutcome.UNRECOGNIZED.value,
                received_at=current,
                processed_at=current,
            )
        else:  # pragma: no cover - exhaustive over GatewayNotification
            raise TypeError(f"Unsupported notification {notification!r}")

        self._session.add(record)
        await self._session.commit()
        self._observability.record_webhook_received(record.kind, record.payment_id)

        if isinstance(notification, UnrecognizedNotification):
            self._observability.record_webhook_outcome(record.kind, "ignored")
            logger.info("Unrecognized gateway notification acknowledged", kind=notification.kind)
            return ReconciliationResult(outcome=ReconciliationOutcome.UNRECOGNIZED, detail=notification.kind)

        return await self.process_record(record, now=current)

    async def process_record(self, record: PaymentNotificationRecord, *, now: datetime | None = None) -> ReconciliationResult:
        """Reconcile the payment named by an inbox row and store the outcome on it."""

        current = resolve_now(now)
        record_id = record.id
        payment_id = record.payment_id or ""
        try:
            result = await self.reconcile_payment(payment_id, now=current)
        except Exception as exc:
            await self._session.rollback()
            error = f"{exc.__class__.__name__}: {exc}"
            failed = await self._session.get(PaymentNotificationRecord, record_id)
            if failed is not None:
                failed.attempts = (failed.attempts or 0) + 1
                failed.status = PaymentNotificationStatusEnum.FAILED
                failed.outcome = ReconciliationOutcome.FAILED.value
                failed.last_error = error[:1000]
                await self._session.commit()
            self._observability.record_webhook_outcome("payment", "failed", error)
            logger.exception("Payment reconciliation failed", payment_id=payment_id, error=error)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.FAILED,
                payment_id=payment_id,
                detail=error,
            )

        stored = await self._session.get(PaymentNotificationRecord, record_id)
        if stored is not None:
            stored.attempts = (stored.attempts or 0) + 1
            stored.status = (
                PaymentNotificationStatusEnum.IGNORED
                if result.outcome == ReconciliationOutcome.IGNORED
                else PaymentNotificationStatusEnum.PROCESSED
            )
            stored.outcome = result.outcome.value
            stored.last_error = None
            stored.processed_at = current
            await self._session.commit()
        bucket = "ignored" if result.outcome == ReconciliationOutcome.IGNORED else "processed"
        self._observability.record_webhook_outcome("payment", bucket)
        return result

    async def reconcile_payment(self, payment_id: str, *, now: datetime | None = None) -> ReconciliationResult:
        """Fetch the authoritative payment and apply it to its order. Gateway errors propagate."""

        current = resolve_now(now)
        payment = await self._gateway.get_payment(payment_id)
        order = await self._find_order(payment)
        if order is None:
            logger.warning(
                "No order matches gateway payment",
                payment_id=payment_id,
                external_reference=payment.external_reference,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.IGNORED,
                payment_id=payment_id,
                gateway_status=payment.status,
                detail="order_not_found",
            )

        outcome = await self._apply(order, payment, now=current)
        await self._session.commit()
        logger.info(
            "Gateway payment reconciled",
            payment_id=payment_id,
            order_id=str(order.id),
            gateway_status=payment.status,
            order_status=order.status.value,
            outcome=outcome.value,
        )
        return ReconciliationResult(
            outcome=outcome,
            payment_id=payment_id,
            order_id=order.id,
            gateway_status=payment.status,
        )

    async def _apply(self, order: Order, payment: GatewayPayment, *, now: datetime) -> ReconciliationOutcome:
        payment_status, order_status = map_gateway_status(payment.status)
        machine = self._state_machine

        if order_status == OrderStatusEnum.CONFIRMED:
            if order.status == OrderStatusEnum.PENDING_PAYMENT:
                applied = await machine.confirm_payment(order, payment_id=payment.payment_id, now=now)
                return ReconciliationOutcome.APPLIED if applied else ReconciliationOutcome.NOOP
            if order.status in _CONFIRMED_OR_LATER:
                return ReconciliationOutcome.NOOP
            if order.payment_status not in _CAPTURED_PAYMENT_STATUSES:
                return await self._refund_late_approval(order, payment, now=now)
            logger.warning(
                "Approved payment for a closed order",
                order_id=str(order.id),
                order_status=order.status.value,
                payment_id=payment.payment_id,
            )
            return ReconciliationOutcome.IGNORED

        if payment_status == PaymentStatusEnum.REFUSED:
            if order.status == OrderStatusEnum.PENDING_PAYMENT:
                await self._attach_payment_id(order, payment)
                applied = await machine.refuse_payment(order, now=now)
                return ReconciliationOutcome.APPLIED if applied else ReconciliationOutcome.NOOP
            return ReconciliationOutcome.IGNORED

        if payment_status == PaymentStatusEnum.REFUNDED:
            if order.status == OrderStatusEnum.CANCELLED and order.payment_status in (
                PaymentStatusEnum.REFUNDED,
                PaymentStatusEnum.REFUSED,
            ):
                return ReconciliationOutcome.NOOP
            applied = await machine.cancel_refunded_payment(order, now=now)
            return ReconciliationOutcome.APPLIED if applied else ReconciliationOutcome.IGNORED

        # pending or unrecognized: nothing moves forward from here
        if order.status == OrderStatusEnum.PENDING_PAYMENT:
            await self._attach_payment_id(order, payment)
            return ReconciliationOutcome.NOOP
        return ReconciliationOutcome.IGNORED

    async def _refund_late_approval(
        self, order: Order, payment: GatewayPayment, *, now: datetime
    ) -> ReconciliationOutcome:
        """Return money captured for an order that was closed before the approval arrived.

        The order keeps its terminal status. A charge that already has a refund on
        record is not refunded twice.
        """

        await self._attach_payment_id(order, payment)
        already_requested = await self._session.scalar(
            select(OrderStateEvent.id)
            .where(
                OrderStateEvent.order_id == order.id,
                OrderStateEvent.event_type == OrderStateEventTypeEnum.REFUND_REQUESTED,
            )
            .limit(1)
        )
        if already_requested is not None:
            return ReconciliationOutcome.NOOP

        logger.warning(
            "Approved payment for a closed order; requesting refund",
            order_id=str(order.id),
            order_status=order.status.value,
            payment_id=payment.payment_id,
        )
        await self._state_machine.request_refunds([order], now=now)
        return ReconciliationOutcome.REFUND_REQUESTED

    async def _attach_payment_id(self, order: Order, payment: GatewayPayment) -> None:
        if order.payment_id is None and payment.payment_id:
            order.payment_id = payment.payment_id

    async def _find_order(self, payment: GatewayPayment) -> Order | None:
        clauses = [Order.payment_id == payment.payment_id]
        for reference in (payment.external_reference, payment.order_id):
            try:
                clauses.append(Order.id == UUID(str(reference)))
            except ValueError:
                continue
        return await self._session.scalar(select(Order).where(or_(*clauses)).limit(1))


__all__ = [
    "PaymentReconciler",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "STATUS_TABLE",
    "map_gateway_status",
]
