"""Order state machine orchestration and audit logging.

Every transition is a compare-and-swap ``UPDATE ... WHERE status = <loaded>``
so a webhook, a sweep and a request racing on the same order apply at most
one change. Transition helpers run inside the caller's transaction. The
request-level operations (``cancel_by_consumer``, ``cancel_offer``) commit and
then ask the gateway for refunds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import ensure_utc, resolve_now
from surplus_api.domain.marketplace.errors import (
    CancellationWindowClosedError,
    ForbiddenError,
    GatewayRequestError,
    GatewayUnavailableError,
    InvalidOrderTransitionError,
    OrderNotFoundError,
)
from surplus_api.domain.marketplace.pricing import goodwill_credit
from surplus_api.domain.marketplace.rules import CANCELLATION_LOCKOUT, REVIEW_REQUEST_DELAY
from surplus_api.models.consumer import Consumer
from surplus_api.models.notification import NotificationTypeEnum, RecipientTypeEnum
from surplus_api.models.offer import Offer
from surplus_api.models.order import Order, OrderStatusEnum, PaymentStatusEnum
from surplus_api.models.order_state_event import (
    OrderStateActorTypeEnum,
    OrderStateEvent,
    OrderStateEventTypeEnum,
)
from surplus_api.models.transaction import Transaction, TransactionStatusEnum
from surplus_api.services.notifications import NotificationService
from surplus_api.services.notifications.templates import (
    render_new_order,
    render_order_cancelled,
    render_order_cancelled_for_restaurant,
    render_order_confirmed,
    render_order_no_show,
    render_payment_refused,
    render_review_request,
)
from surplus_api.services.offers.inventory import OfferInventoryManager
from surplus_api.services.payments.mercadopago import PaymentGateway, build_payment_gateway
from surplus_api.services.penalties import PenaltyService

_ACTIVE_STATUSES = (OrderStatusEnum.CONFIRMED, OrderStatusEnum.READY_FOR_PICKUP)


@dataclass(slots=True)
class OfferCancellation:
    """Outcome of a restaurant cancelling an offer."""

    offer: Offer
    cancelled_orders: list[Order] = field(default_factory=list)
    credited_total: Decimal = Decimal("0.00")


class OrderStateMachine:
    """Encapsulates order state transitions, their side effects and audit logging."""

    _ALLOWED_TRANSITIONS: dict[OrderStatusEnum, set[OrderStatusEnum]] = {
        OrderStatusEnum.PENDING_PAYMENT: {
            OrderStatusEnum.CONFIRMED,
            OrderStatusEnum.CANCELLED,
        },
        OrderStatusEnum.CONFIRMED: {
            OrderStatusEnum.READY_FOR_PICKUP,
            OrderStatusEnum.COMPLETED,
            OrderStatusEnum.CANCELLED,
            OrderStatusEnum.NO_SHOW,
        },
        OrderStatusEnum.READY_FOR_PICKUP: {
            OrderStatusEnum.COMPLETED,
            OrderStatusEnum.CANCELLED,
            OrderStatusEnum.NO_SHOW,
        },
        OrderStatusEnum.COMPLETED: set(),
        OrderStatusEnum.CANCELLED: set(),
        OrderStatusEnum.NO_SHOW: set(),
    }

    def __init__(
        self,
        session: AsyncSession,
        *,
        inventory: OfferInventoryManager | None = None,
        notifications: NotificationService | None = None,
        penalties: PenaltyService | None = None,
        gateway: PaymentGateway | None = None,
    ) -> None:
        self._session = session
        self._inventory = inventory or OfferInventoryManager(session)
        self._notifications = notifications or NotificationService(session)
        self._penalties = penalties or PenaltyService(session, notifications=self._notifications)
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = build_payment_gateway()
        return self._gateway

    @classmethod
    def can_transition(cls, current: OrderStatusEnum, target: OrderStatusEnum) -> bool:
        return target in cls._ALLOWED_TRANSITIONS.get(current, set())

    async def transition(
        self,
        order: Order,
        target_status: OrderStatusEnum,
        *,
        actor_type: OrderStateActorTypeEnum,
        actor_id: str | None = None,
        notes: str | None = None,
        metadata: dict | None = None,
        now: datetime | None = None,
        **values: Any,
    ) -> bool:
        """Move ``order`` to ``target_status`` if it still holds the status we loaded.

        Raises when the state machine forbids the move; returns ``False`` when a
        concurrent writer changed the order first (``order`` is refreshed).
        """

        current_status = order.status
        if not self.can_transition(current_status, target_status):
            raise InvalidOrderTransitionError(
                f"Cannot transition order from {current_status.value} to {target_status.value}",
                order_id=str(order.id),
                current_status=current_status,
                requested_status=target_status,
            )

        current = resolve_now(now)
        result = await self._session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current_status)
            .values(status=target_status, updated_at=current, **values)
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(order)
        if result.rowcount != 1:
            logger.info(
                "Order transition lost race",
                order_id=str(order.id),
                expected_status=current_status.value,
                actual_status=order.status.value,
                requested_status=target_status.value,
            )
            return False

        self._session.add(
            OrderStateEvent(
                order_id=order.id,
                event_type=OrderStateEventTypeEnum.STATE_CHANGE,
                actor_type=actor_type,
                actor_id=actor_id,
                notes=notes,
                metadata_json=metadata or {},
                from_status=current_status.value,
                to_status=target_status.value,
                created_at=current,
            )
        )
        logger.info(
            "Order status transitioned",
            order_id=str(order.id),
            from_status=current_status.value,
            to_status=target_status.value,
            actor_type=actor_type.value,
        )
        return True

    def record_event(
        self,
        *,
        order_id: UUID,
        event_type: OrderStateEventTypeEnum,
        actor_type: OrderStateActorTypeEnum | None,
        actor_id: str | None = None,
        notes: str | None = None,
        metadata: dict | None = None,
        now: datetime | None = None,
    ) -> OrderStateEvent:
        """Insert a non-state-change audit entry (payment update, refund, credit)."""

        event = OrderStateEvent(
            order_id=order_id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            notes=notes,
            metadata_json=metadata or {},
            created_at=resolve_now(now),
        )
        self._session.add(event)
        return event

    # payment driven

    async def confirm_payment(self, order: Order, *, payment_id: str | None = None, now: datetime | None = None) -> bool:
        """PENDING_PAYMENT -> CONFIRMED; creates the transaction and both confirmations once."""

        if order.status != OrderStatusEnum.PENDING_PAYMENT:
            return False
        current = resolve_now(now)
        changed = await self.transition(
            order,
            OrderStatusEnum.CONFIRMED,
            actor_type=OrderStateActorTypeEnum.GATEWAY,
            actor_id=payment_id or order.payment_id,
            now=current,
            payment_status=PaymentStatusEnum.APPROVED,
            payment_id=payment_id or order.payment_id,
        )
        if not changed:
            return False

        self._session.add(
            Transaction(
                order_id=order.id,
                restaurant_id=order.restaurant_id,
                amount=order.total_amount,
                platform_fee=order.platform_fee,
                restaurant_amount=order.restaurant_amount,
                status=TransactionStatusEnum.PENDING,
                created_at=current,
            )
        )
        offer = await self._get_offer(order)
        await self._notifications.emit(
            recipient_type=RecipientTypeEnum.CONSUMER,
            recipient_id=order.consumer_id,
            notification_type=NotificationTypeEnum.ORDER_CONFIRMED,
            rendered=render_order_confirmed(
                pickup_code=order.pickup_code,
                package_type=offer.package_type,
                pickup_start=ensure_utc(offer.pickup_start_time),
                pickup_end=ensure_utc(offer.pickup_end_time),
            ),
            related_id=order.id,
            dedup_key=f"order-confirmed:{order.id}",
            now=current,
        )
        await self._notifications.emit(
            recipient_type=RecipientTypeEnum.RESTAURANT,
            recipient_id=order.restaurant_id,
            notification_type=NotificationTypeEnum.NEW_ORDER,
            rendered=render_new_order(
                quantity=order.quantity,
                package_type=offer.package_type,
                restaurant_amount=order.restaurant_amount,
            ),
            related_id=order.id,
            dedup_key=f"new-order:{order.id}",
            now=current,
        )
        return True

    async def refuse_payment(
        self,
        order: Order,
        *,
        now: datetime | None = None,
        actor_type: OrderStateActorTypeEnum = OrderStateActorTypeEnum.GATEWAY,
        notes: str | None = None,
    ) -> bool:
        """PENDING_PAYMENT -> CANCELLED with payment REFUSED; units go back to the offer."""

        if order.status != OrderStatusEnum.PENDING_PAYMENT:
            return False
        current = resolve_now(now)
        changed = await self.transition(
            order,
            OrderStatusEnum.CANCELLED,
            actor_type=actor_type,
            notes=notes,
            now=current,
            payment_status=PaymentStatusEnum.REFUSED,
            cancelled_at=current,
        )
        if not changed:
            return False
        await self._inventory.release(order.offer_id, order.quantity, now=current)
        offer = await self._get_offer(order)
        await self._notifications.emit(
            recipient_type=RecipientTypeEnum.CONSUMER,
            recipient_id=order.consumer_id,
            notification_type=NotificationTypeEnum.PAYMENT_REFUSED,
            rendered=render_payment_refused(package_type=offer.package_type),
            related_id=order.id,
            dedup_key=f"payment-refused:{order.id}",
            now=current,
        )
        return True

    async def cancel_refunded_payment(self, order: Order, *, now: datetime | None = None) -> bool:
        """Apply a gateway-side refund or cancellation.

        Open orders are cancelled and their units released. Completed orders
        only have their payment marked REFUNDED; their status never regresses.
        """

        current = resolve_now(now)
        if order.status == OrderStatusEnum.COMPLETED:
            if order.payment_status == PaymentStatusEnum.REFUNDED:
                return False
            order.payment_status = PaymentStatusEnum.REFUNDED
            self.record_event(
                order_id=order.id,
                event_type=OrderStateEventTypeEnum.PAYMENT_UPDATE,
                actor_type=OrderStateActorTypeEnum.GATEWAY,
                notes="Payment refunded after pickup",
                metadata={"payment_status": PaymentStatusEnum.REFUNDED.value},
                now=current,
            )
            return True

        if order.status not in (OrderStatusEnum.PENDING_PAYMENT, *_ACTIVE_STATUSES):
            return False
        was_confirmed = order.status in _ACTIVE_STATUSES
        changed = await self.transition(
            order,
            OrderStatusEnum.CANCELLED,
            actor_type=OrderStateActorTypeEnum.GATEWAY,
            notes="Payment refunded or cancelled at the gateway",
            now=current,
            payment_status=PaymentStatusEnum.REFUNDED,
            cancelled_at=current,
        )
        if not changed:
            return False
        await self._inventory.release(order.offer_id, order.quantity, now=current)
        await self._notify_cancelled(order, reason="payment refunded", notify_restaurant=was_confirmed, now=current)
        return True

    # time driven

    async def mark_ready_for_pickup(self, order: Order, *, now: datetime | None = None) -> bool:
        if order.status != OrderStatusEnum.CONFIRMED:
            return False
        return await self.transition(
            order,
            OrderStatusEnum.READY_FOR_PICKUP,
            actor_type=OrderStateActorTypeEnum.SCHEDULER,
            now=now,
        )

    async def mark_no_show(self, order: Order, *, now: datetime | None = None) -> bool:
        """CONFIRMED/READY_FOR_PICKUP -> NO_SHOW; penalise the consumer and release the units."""

        if order.status not in _ACTIVE_STATUSES:
            return False
        current = resolve_now(now)
        changed = await self.transition(
            order,
            OrderStatusEnum.NO_SHOW,
            actor_type=OrderStateActorTypeEnum.SCHEDULER,
            notes="Pickup window closed without redemption",
            now=current,
        )
        if not changed:
            return False
        await self._inventory.release(order.offer_id, order.quantity, now=current)
        await self._penalties.record_no_show(order.consumer_id, order_id=order.id, now=current)
        offer = await self._get_offer(order)
        await self._notifications.emit(
            recipient_type=RecipientTypeEnum.RESTAURANT,
            recipient_id=order.restaurant_id,
            notification_type=NotificationTypeEnum.ORDER_NO_SHOW,
            rendered=render_order_no_show(quantity=order.quantity, package_type=offer.package_type),
            related_id=order.id,
            dedup_key=f"order-no-show:{order.id}",
            now=current,
        )
        return True

    async def complete_pickup(self, order: Order, *, restaurant_id: UUID, now: datetime | None = None) -> bool:
        """CONFIRMED/READY_FOR_PICKUP -> COMPLETED; settle the transaction and queue the review request."""

        current = resolve_now(now)
        changed = await self.transition(
            order,
            OrderStatusEnum.COMPLETED,
            actor_type=OrderStateActorTypeEnum.RESTAURANT,
            actor_id=str(restaurant_id),
            now=current,
            pickup_time=current,
        )
        if not changed:
            return False
        await self._session.execute(
            update(Transaction)
            .where(Transaction.order_id == order.id, Transaction.status == TransactionStatusEnum.PENDING)
            .values(status=TransactionStatusEnum.PROCESSED, processed_at=current)
            .execution_options(synchronize_session=False)
        )
        offer = await self._get_offer(order)
        await self._notifications.emit(
            recipient_type=RecipientTypeEnum.CONSUMER,
            recipient_id=order.consumer_id,
            notification_type=NotificationTypeEnum.REVIEW_REQUEST,
            rendered=render_review_request(package_type=offer.package_type),
            related_id=order.id,
            dedup_key=f"review-request:{order.id}",
            deliver_after=current + REVIEW_REQUEST_DELAY,
            now=current,
        )
        return True

    # request level

    async def cancel_by_consumer(self, consumer_id: UUID, order_id: UUID, *, now: datetime | None = None) -> Order:
        """Cancel a confirmed order at least two hours before pickup starts and refund it."""

        current = resolve_now(now)
        order = await self._session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        if order.consumer_id != consumer_id:
            raise ForbiddenError("Order belongs to another consumer", order_id=str(order_id))
        if order.status != OrderStatusEnum.CONFIRMED:
            raise InvalidOrderTransitionError(
                "Only confirmed orders can be cancelled",
                order_id=str(order_id),
                current_status=order.status,
                requested_status=OrderStatusEnum.CANCELLED,
            )

        offer = await self._get_offer(order)
        deadline = ensure_utc(offer.pickup_start_time) - CANCELLATION_LOCKOUT
        if current > deadline:
            raise CancellationWindowClosedError(
                "Orders can only be cancelled up to 2 hours before pickup starts",
                order_id=str(order_id),
                deadline=deadline,
            )

        changed = await self.transition(
            order,
            OrderStatusEnum.CANCELLED,
            actor_type=OrderStateActorTypeEnum.CONSUMER,
            actor_id=str(consumer_id),
            now=current,
            payment_status=PaymentStatusEnum.REFUNDED,
            cancelled_at=current,
        )
        if not changed:
            await self._session.rollback()
            raise InvalidOrderTransitionError(
                "Order changed while cancelling",
                order_id=str(order_id),
                current_status=order.status,
                requested_status=OrderStatusEnum.CANCELLED,
            )
        await self._inventory.release(order.offer_id, order.quantity, now=current)
        await self._notify_cancelled(order, reason="cancelled by you", notify_restaurant=True, now=current)
        await self._session.commit()

        await self.request_refunds([order], now=current)
        return order

    async def cancel_offer(self, restaurant_id: UUID, offer_id: UUID, *, now: datetime | None = None) -> OfferCancellation:
        """Cancel an offer, refund its open orders and credit each consumer 10% goodwill."""

        current = resolve_now(now)
        offer, changed = await self._inventory.cancel(offer_id, restaurant_id, now=current)
        outcome = OfferCancellation(offer=offer)
        if not changed:
            return outcome

        orders = (
            await self._session.execute(
                select(Order).where(
                    Order.offer_id == offer_id,
                    Order.status.in_([OrderStatusEnum.PENDING_PAYMENT, *_ACTIVE_STATUSES]),
                )
            )
        ).scalars().all()

        refundable: list[Order] = []
        for order in orders:
            if order.status == OrderStatusEnum.PENDING_PAYMENT:
                await self.refuse_payment(
                    order,
                    now=current,
                    actor_type=OrderStateActorTypeEnum.RESTAURANT,
                    notes="Offer cancelled before payment",
                )
                continue

            cancelled = await self.transition(
                order,
                OrderStatusEnum.CANCELLED,
                actor_type=OrderStateActorTypeEnum.RESTAURANT,
                actor_id=str(restaurant_id),
                notes="Offer cancelled by restaurant",
                now=current,
                payment_status=PaymentStatusEnum.REFUNDED,
                cancelled_at=current,
            )
            if not cancelled:
                continue
            await self._inventory.release(order.offer_id, order.quantity, now=current)
            credit = await self._grant_goodwill_credit(order, now=current)
            await self._notify_cancelled(
                order,
                reason="the restaurant cancelled the offer",
                credit=credit,
                notify_restaurant=False,
                now=current,
            )
            outcome.cancelled_orders.append(order)
            outcome.credited_total += credit
            refundable.append(order)

        await self._session.commit()
        logger.info(
            "Offer cancellation refunded orders",
            offer_id=str(offer_id),
            orders=len(outcome.cancelled_orders),
            credited_total=str(outcome.credited_total),
        )
        await self.request_refunds(refundable, now=current)
        return outcome

    async def request_refunds(self, orders: Iterable[Order], *, now: datetime | None = None) -> None:
        """Ask the gateway to refund each paid order; failures are audited, never rolled back."""

        for order in orders:
            if not order.payment_id:
                continue
            try:
                refund = await self.gateway.refund_payment(order.payment_id, order.total_amount)
            except (GatewayUnavailableError, GatewayRequestError) as exc:
                logger.error(
                    "Refund request failed",
                    order_id=str(order.id),
                    payment_id=order.payment_id,
                    error=exc.message,
                )
                self.record_event(
                    order_id=order.id,
                    event_type=OrderStateEventTypeEnum.REFUND_FAILED,
                    actor_type=OrderStateActorTypeEnum.SYSTEM,
                    notes=exc.message,
                    metadata={"payment_id": order.payment_id, "error": exc.code},
                    now=now,
                )
            else:
                self.record_event(
                    order_id=order.id,
                    event_type=OrderStateEventTypeEnum.REFUND_REQUESTED,
                    actor_type=OrderStateActorTypeEnum.SYSTEM,
                    metadata={"payment_id": order.payment_id, "refund_id": refund.refund_id},
                    now=now,
                )
            await self._session.commit()

    async def _grant_goodwill_credit(self, order: Order, *, now: datetime) -> Decimal:
        credit = goodwill_credit(order.total_amount)
        await self._session.execute(
            update(Consumer)
            .where(Consumer.id == order.consumer_id)
            .values(credit_balance=Consumer.credit_balance + credit, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.record_event(
            order_id=order.id,
            event_type=OrderStateEventTypeEnum.CREDIT_GRANTED,
            actor_type=OrderStateActorTypeEnum.SYSTEM,
            metadata={"amount": str(credit)},
            now=now,
        )
        return credit

    async def _notify_cancelled(
        self,
        order: Order,
        *,
        reason: str,
        notify_restaurant: bool,
        credit: Decimal | None = None,
        now: datetime,
    ) -> None:
        offer = await self._get_offer(order)
        await self._notifications.emit(
            recipient_type=RecipientTypeEnum.CONSUMER,
            recipient_id=order.consumer_id,
            notification_type=NotificationTypeEnum.ORDER_CANCELLED,
            rendered=render_order_cancelled(package_type=offer.package_type, reason=reason, credit=credit),
            related_id=order.id,
            dedup_key=f"order-cancelled:{order.id}:consumer",
            now=now,
        )
        if notify_restaurant:
            await self._notifications.emit(
                recipient_type=RecipientTypeEnum.RESTAURANT,
                recipient_id=order.restaurant_id,
                notification_type=NotificationTypeEnum.ORDER_CANCELLED,
                rendered=render_order_cancelled_for_restaurant(
                    quantity=order.quantity,
                    package_type=offer.package_type,
                ),
                related_id=order.id,
                dedup_key=f"order-cancelled:{order.id}:restaurant",
                now=now,
            )

    async def _get_offer(self, order: Order) -> Offer:
        offer = await self._session.get(Offer, order.offer_id)
        if offer is None:  # pragma: no cover - foreign key guarantees presence
            raise OrderNotFoundError("Offer for order not found", order_id=str(order.id))
        return offer


__all__ = ["OfferCancellation", "OrderStateMachine"]
