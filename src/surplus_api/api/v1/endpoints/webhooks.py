"""Inbound MercadoPago notifications.

Deliveries are always acknowledged once processing has been attempted; failed
notifications stay in the inbox for the internal retry job instead of making
the gateway redeliver.
"""

from __future__ import annotations

import json
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.api.dependencies.payments import get_payment_gateway
from surplus_api.api.dependencies.security import require_operator_api_key
from surplus_api.core.settings import settings
from surplus_api.db.session import get_session
from surplus_api.observability.payments import get_payment_store
from surplus_api.services.payments import (
    PaymentGateway,
    PaymentNotification,
    SignatureCheck,
    StubMercadoPagoClient,
    parse_notification,
    verify_webhook_signature,
)
from surplus_api.services.payments.reconciliation import PaymentReconciler

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str | None = Field(None, description="Reconciliation outcome, when processing ran")


class TestPaymentEvent(BaseModel):
    payment_id: str = Field(..., min_length=1)
    status: str = Field(..., description="Gateway status to simulate, e.g. approved or rejected")
    order_id: UUID | None = Field(None, description="Order to bind when the payment is new to the stub")


async def _read_json(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("MercadoPago webhook body is not JSON", size=len(raw))
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/mercadopago", response_model=WebhookAck)
async def mercadopago_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> WebhookAck:
    body = await _read_json(request)
    query = dict(request.query_params)
    notification = parse_notification(body, query)

    data_id = notification.payment_id if isinstance(notification, PaymentNotification) else query.get("data.id")
    check = verify_webhook_signature(request.headers, data_id, settings.mercadopago_webhook_secret)
    if check != SignatureCheck.VALID:
        if settings.is_production:
            logger.warning("Rejected MercadoPago webhook", signature=check.value)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
        logger.warning(
            "Accepting MercadoPago webhook without a valid signature outside production",
            signature=check.value,
            environment=settings.environment,
        )

    try:
        result = await PaymentReconciler(session, gateway=gateway).ingest(notification)
    except Exception as exc:
        # Inbox write failed; acknowledge anyway and let the gateway's status be re-read later.
        get_payment_store().record_webhook_outcome("payment", "failed", str(exc))
        logger.exception("MercadoPago webhook processing failed", error=str(exc))
        return WebhookAck(received=True)

    return WebhookAck(received=True, outcome=result.outcome.value)


@router.post(
    "/mercadopago/test",
    response_model=WebhookAck,
    dependencies=[Depends(require_operator_api_key)],
)
async def simulate_mercadopago_webhook(
    event: TestPaymentEvent,
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> WebhookAck:
    """Push a payment status into the stub gateway and run reconciliation (development only)."""

    if settings.is_production or not isinstance(gateway, StubMercadoPagoClient):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    gateway.set_status(event.payment_id, event.status, order_id=event.order_id)
    result = await PaymentReconciler(session, gateway=gateway).ingest(
        PaymentNotification(payment_id=event.payment_id, action="payment.updated")
    )
    return WebhookAck(received=True, outcome=result.outcome.value)
