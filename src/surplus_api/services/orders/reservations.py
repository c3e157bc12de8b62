"""Reservation flow: block check, atomic inventory decrement, order snapshot, payment initiation."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.domain.marketplace.errors import (
    GatewayRequestError,
    GatewayUnavailableError,
    MarketplaceError,
    OfferExpiredError,
)
from surplus_api.domain.marketplace.pricing import price_order
from surplus_api.models.consumer import Consumer
from surplus_api.models.offer import Offer
from surplus_api.models.order import Order, OrderStatusEnum, PaymentMethodEnum, PaymentStatusEnum
from surplus_api.models.order_state_event import (
    OrderStateActorTypeEnum,
    OrderStateEvent,
    OrderStateEventTypeEnum,
)
from surplus_api.services.offers.inventory import OfferInventoryManager
from surplus_api.services.payments.mercadopago import PaymentGateway, build_payment_gateway
from surplus_api.services.penalties import PenaltyService

from .pickup_codes import allocate_pickup_code, render_pickup_qr


def _is_pickup_code_conflict(exc: IntegrityError) -> bool:
    return "pickup_code" in str(exc.orig)


class ReservationService:
    """Create orders against offers.

    The inventory decrement and the order insert share one transaction. A
    pickup-code collision on the unique index rolls everything back and the
    whole reservation is retried with a fresh code.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        inventory: OfferInventoryManager | None = None,
        penalties: PenaltyService | None = None,
        gateway: PaymentGateway | None = None,
        max_attempts: int = 3,
    ) -> None:
        self._session = session
        self._inventory = inventory or OfferInventoryManager(session)
        self._penalties = penalties or PenaltyService(session)
        self._gateway = gateway
        self._max_attempts = max(max_attempts, 1)

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = build_payment_gateway()
        return self._gateway

    async def create_reservation(
        self,
        consumer_id: UUID,
        offer_id: UUID,
        quantity: int,
        payment_method: PaymentMethodEnum,
        *,
        now: datetime | None = None,
        initiate_payment: bool = True,
    ) -> Order:
        current = resolve_now(now)
        attempt = 0
        while True:
            attempt += 1
            try:
                order = await self._reserve_once(consumer_id, offer_id, quantity, payment_method, now=current)
            except OfferExpiredError:
                # Keep the EXPIRED flip made while diagnosing the failed reserve.
                await self._session.commit()
                raise
            except MarketplaceError:
                await self._session.rollback()
                raise
            except IntegrityError as exc:
                await self._session.rollback()
                if not _is_pickup_code_conflict(exc) or attempt >= self._max_attempts:
                    raise
                logger.warning("Pickup code collision, retrying reservation", offer_id=str(offer_id), attempt=attempt)
                continue

            if initiate_payment:
                await self.start_payment(order, now=current)
            return order

    async def _reserve_once(
        self,
        consumer_id: UUID,
        offer_id: UUID,
        quantity: int,
        payment_method: PaymentMethodEnum,
        *,
        now: datetime,
    ) -> Order:
        consumer = await self._penalties.ensure_can_reserve(consumer_id, now=now)
        offer = await self._inventory.reserve(offer_id, quantity, now=now)

        pricing = price_order(offer.original_price, offer.promotional_price, quantity)
        pickup_code = await allocate_pickup_code(self._session)
        order = Order(
            id=uuid4(),
            consumer_id=consumer.id,
            offer_id=offer.id,
            restaurant_id=offer.restaurant_id,
            quantity=quantity,
            original_price=pricing.original_price,
            promotional_price=pricing.promotional_price,
            total_amount=pricing.total_amount,
            platform_fee=pricing.platform_fee,
            restaurant_amount=pricing.restaurant_amount,
            payment_method=payment_method,
            payment_status=PaymentStatusEnum.PENDING,
            pickup_code=pickup_code,
            qr_code_data_url=render_pickup_qr(pickup_code),
            status=OrderStatusEnum.PENDING_PAYMENT,
            created_at=now,
            updated_at=now,
        )
        self._session.add(order)
        await self._session.flush()
        self._session.add(
            OrderStateEvent(
                order_id=order.id,
                event_type=OrderStateEventTypeEnum.STATE_CHANGE,
                actor_type=OrderStateActorTypeEnum.CONSUMER,
                actor_id=str(consumer.id),
                to_status=OrderStatusEnum.PENDING_PAYMENT.value,
                metadata_json={"quantity": quantity, "payment_method": payment_method.value},
                created_at=now,
            )
        )
        await self._session.commit()
        logger.info(
            "Reservation created",
            order_id=str(order.id),
            offer_id=str(offer.id),
            consumer_id=str(consumer.id),
            quantity=quantity,
            total_amount=str(order.total_amount),
        )
        return order

    async def start_payment(self, order: Order, *, now: datetime | None = None) -> Order:
        """Open the gateway charge for a fresh order.

        Runs after the reservation commits. A gateway failure leaves the order in
        PENDING_PAYMENT; the stale reservation sweep releases it later.
        """

        consumer = await self._session.get(Consumer, order.consumer_id)
        offer = await self._session.get(Offer, order.offer_id)
        payer_email = consumer.email if consumer else ""
        title = offer.package_type if offer else "Surplus food"
        try:
            if order.payment_method == PaymentMethodEnum.PIX:
                charge = await self.gateway.create_pix_payment(
                    order_id=order.id,
                    amount=order.total_amount,
                    description=title,
                    payer_email=payer_email,
                )
                order.payment_id = charge.payment_id
                order.pix_qr_code = charge.qr_code
            else:
                preference = await self.gateway.create_checkout_preference(
                    order_id=order.id,
                    amount=order.total_amount,
                    title=title,
                    quantity=order.quantity,
                    payer_email=payer_email,
                )
                order.payment_checkout_url = preference.checkout_url
        except (GatewayUnavailableError, GatewayRequestError) as exc:
            logger.error(
                "Payment initiation failed",
                order_id=str(order.id),
                payment_method=order.payment_method.value,
                error=exc.message,
            )
            self._session.add(
                OrderStateEvent(
                    order_id=order.id,
                    event_type=OrderStateEventTypeEnum.PAYMENT_INITIATION_FAILED,
                    actor_type=OrderStateActorTypeEnum.SYSTEM,
                    notes=exc.message,
                    metadata_json={"error": exc.code},
                    created_at=resolve_now(now),
                )
            )
        await self._session.commit()
        return order


__all__ = ["ReservationService"]
