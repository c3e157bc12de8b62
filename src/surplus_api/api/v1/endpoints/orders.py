from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.api.dependencies.identity import Actor, require_consumer
from surplus_api.api.dependencies.payments import get_payment_gateway
from surplus_api.db.session import get_session
from surplus_api.models.order import OrderStatusEnum
from surplus_api.schemas.order import OrderListResponse, OrderResponse, ReservationRequest
from surplus_api.services.orders import OrderQueries, OrderStateMachine, ReservationService
from surplus_api.services.payments import PaymentGateway

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def reserve(
    payload: ReservationRequest,
    actor: Actor = Depends(require_consumer),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> OrderResponse:
    """Reserve units of an offer and start the payment with the gateway.

    The order is returned in ``pending_payment``; it is confirmed once the
    gateway notifies an approved payment.
    """

    service = ReservationService(session, gateway=gateway)
    order = await service.create_reservation(
        actor.id,
        payload.offer_id,
        payload.quantity,
        payload.payment_method,
    )
    return OrderResponse.model_validate(order)


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    status_filter: OrderStatusEnum | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_consumer),
    session: AsyncSession = Depends(get_session),
) -> OrderListResponse:
    page = await OrderQueries(session).list_for_consumer(actor.id, status=status_filter, limit=limit, offset=offset)
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    actor: Actor = Depends(require_consumer),
    session: AsyncSession = Depends(get_session),
) -> OrderResponse:
    order = await OrderQueries(session).get_for_consumer(actor.id, order_id)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    actor: Actor = Depends(require_consumer),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> OrderResponse:
    """Cancel a confirmed order up to two hours before pickup opens."""

    order = await OrderStateMachine(session, gateway=gateway).cancel_by_consumer(actor.id, order_id)
    return OrderResponse.model_validate(order)
