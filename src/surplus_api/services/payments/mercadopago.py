"""MercadoPago REST client used for PIX charges, card checkouts, lookups and refunds."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Protocol
from uuid import UUID, uuid4

import httpx
from loguru import logger
from opentelemetry import trace

from surplus_api.core.settings import Settings, settings as default_settings
from surplus_api.domain.marketplace.errors import GatewayRequestError, GatewayUnavailableError
from surplus_api.observability.payments import get_payment_store

_tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class GatewayPayment:
    """Authoritative payment state as reported by the gateway."""

    payment_id: str
    status: str
    status_detail: str | None = None
    external_reference: str | None = None
    order_id: str | None = None
    amount: Decimal | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PixCharge:
    payment_id: str
    status: str
    qr_code: str | None
    ticket_url: str | None = None


@dataclass(slots=True)
class CheckoutPreference:
    preference_id: str
    checkout_url: str


@dataclass(slots=True)
class GatewayRefund:
    refund_id: str
    payment_id: str
    status: str


class PaymentGateway(Protocol):
    async def create_pix_payment(
        self, *, order_id: UUID, amount: Decimal, description: str, payer_email: str
    ) -> PixCharge:
        ...

    async def create_checkout_preference(
        self, *, order_id: UUID, amount: Decimal, title: str, quantity: int, payer_email: str
    ) -> CheckoutPreference:
        ...

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        ...

    async def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> GatewayRefund:
        ...


def _parse_payment(payload: Mapping[str, Any]) -> GatewayPayment:
    metadata = payload.get("metadata") or {}
    amount = payload.get("transaction_amount")
    return GatewayPayment(
        payment_id=str(payload.get("id")),
        status=str(payload.get("status") or "").lower(),
        status_detail=payload.get("status_detail"),
        external_reference=payload.get("external_reference"),
        order_id=metadata.get("order_id") if isinstance(metadata, Mapping) else None,
        amount=Decimal(str(amount)) if amount is not None else None,
        raw=payload,
    )


class MercadoPagoClient:
    """Thin async client over the MercadoPago REST API.

    Every call is bounded by ``timeout_seconds``. Timeouts, transport errors and
    5xx responses are retried up to ``max_attempts`` with exponential backoff and
    then surface as :class:`GatewayUnavailableError`; 4xx responses raise
    :class:`GatewayRequestError` immediately.
    """

    def __init__(
        self,
        *,
        access_token: str,
        base_url: str = "https://api.mercadopago.com",
        timeout_seconds: float = 5.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        notification_url: str | None = None,
        currency: str = "BRL",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max(max_attempts, 1)
        self._backoff_seconds = max(backoff_seconds, 0.0)
        self._notification_url = notification_url
        self._currency = currency
        self._transport = transport
        self._observability = get_payment_store()

    async def create_pix_payment(
        self, *, order_id: UUID, amount: Decimal, description: str, payer_email: str
    ) -> PixCharge:
        body: dict[str, Any] = {
            "transaction_amount": float(amount),
            "description": description,
            "payment_method_id": "pix",
            "payer": {"email": payer_email},
            "external_reference": str(order_id),
            "metadata": {"order_id": str(order_id)},
        }
        if self._notification_url:
            body["notification_url"] = self._notification_url
        payload = await self._request(
            "create_pix_payment",
            "POST",
            "/v1/payments",
            json=body,
            idempotency_key=f"pix-{order_id}",
        )
        transaction_data = (payload.get("point_of_interaction") or {}).get("transaction_data") or {}
        return PixCharge(
            payment_id=str(payload.get("id")),
            status=str(payload.get("status") or "pending"),
            qr_code=transaction_data.get("qr_code"),
            ticket_url=transaction_data.get("ticket_url"),
        )

    async def create_checkout_preference(
        self, *, order_id: UUID, amount: Decimal, title: str, quantity: int, payer_email: str
    ) -> CheckoutPreference:
        unit_price = (Decimal(amount) / quantity).quantize(Decimal("0.01"))
        body: dict[str, Any] = {
            "items": [
                {
                    "id": str(order_id),
                    "title": title,
                    "quantity": quantity,
                    "unit_price": float(unit_price),
                    "currency_id": self._currency,
                }
            ],
            "payer": {"email": payer_email},
            "external_reference": str(order_id),
            "metadata": {"order_id": str(order_id)},
            "payment_methods": {"excluded_payment_types": [{"id": "ticket"}]},
        }
        if self._notification_url:
            body["notification_url"] = self._notification_url
        payload = await self._request(
            "create_checkout_preference",
            "POST",
            "/checkout/preferences",
            json=body,
            idempotency_key=f"checkout-{order_id}",
        )
        return CheckoutPreference(
            preference_id=str(payload.get("id")),
            checkout_url=str(payload.get("init_point") or ""),
        )

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        payload = await self._request("get_payment", "GET", f"/v1/payments/{payment_id}")
        return _parse_payment(payload)

    async def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> GatewayRefund:
        body = {"amount": float(amount)} if amount is not None else {}
        payload = await self._request(
            "refund_payment",
            "POST",
            f"/v1/payments/{payment_id}/refunds",
            json=body,
            idempotency_key=f"refund-{payment_id}",
        )
        return GatewayRefund(
            refund_id=str(payload.get("id")),
            payment_id=payment_id,
            status=str(payload.get("status") or "approved"),
        )

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key

        last_error = "no attempt made"
        with _tracer.start_as_current_span(f"mercadopago.{operation}") as span:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                for attempt in range(1, self._max_attempts + 1):
                    span.set_attribute("mercadopago.attempt", attempt)
                    try:
                        response = await client.request(method, path, json=json, headers=headers)
                    except httpx.TransportError as exc:
                        last_error = f"{exc.__class__.__name__}: {exc}"
                    else:
                        if response.status_code >= 500:
                            last_error = f"HTTP {response.status_code}"
                        elif response.status_code >= 400:
                            self._observability.record_gateway_call(operation, "failed", response.text[:200])
                            logger.warning(
                                "MercadoPago rejected request",
                                operation=operation,
                                status_code=response.status_code,
                            )
                            raise GatewayRequestError(
                                "Payment gateway rejected the request",
                                operation=operation,
                                status_code=response.status_code,
                            )
                        else:
                            self._observability.record_gateway_call(operation, "succeeded")
                            return response.json()

                    if attempt < self._max_attempts:
                        delay = self._backoff_seconds * (2 ** (attempt - 1))
                        self._observability.record_gateway_call(operation, "retried")
                        logger.warning(
                            "MercadoPago call failed, retrying",
                            operation=operation,
                            attempt=attempt,
                            delay_seconds=delay,
                            error=last_error,
                        )
                        if delay:
                            await asyncio.sleep(delay)

        self._observability.record_gateway_call(operation, "failed", last_error)
        logger.error(
            "MercadoPago unavailable after retries",
            operation=operation,
            attempts=self._max_attempts,
            error=last_error,
        )
        raise GatewayUnavailableError(
            "Payment gateway unavailable",
            operation=operation,
            attempts=self._max_attempts,
            error=last_error,
        )


class StubMercadoPagoClient:
    """Development stand-in used when no access token is configured.

    Payments stay ``pending`` until a status is pushed through
    :meth:`set_status` (the development test webhook does this).
    """

    def __init__(self) -> None:
        self._payments: dict[str, GatewayPayment] = {}

    async def create_pix_payment(
        self, *, order_id: UUID, amount: Decimal, description: str, payer_email: str
    ) -> PixCharge:
        payment_id = f"stub-{uuid4().hex[:12]}"
        self._payments[payment_id] = GatewayPayment(
            payment_id=payment_id,
            status="pending",
            external_reference=str(order_id),
            order_id=str(order_id),
            amount=amount,
        )
        logger.info("Stub PIX payment created", payment_id=payment_id, order_id=str(order_id))
        return PixCharge(payment_id=payment_id, status="pending", qr_code=f"00020126STUB{payment_id}")

    async def create_checkout_preference(
        self, *, order_id: UUID, amount: Decimal, title: str, quantity: int, payer_email: str
    ) -> CheckoutPreference:
        preference_id = f"stub-pref-{uuid4().hex[:12]}"
        return CheckoutPreference(
            preference_id=preference_id,
            checkout_url=f"{default_settings.frontend_url}/checkout/stub/{preference_id}",
        )

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise GatewayRequestError("Unknown stub payment", payment_id=payment_id, status_code=404)
        return payment

    async def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> GatewayRefund:
        payment = await self.get_payment(payment_id)
        payment.status = "refunded"
        return GatewayRefund(refund_id=f"stub-refund-{payment_id}", payment_id=payment_id, status="approved")

    def set_status(self, payment_id: str, status: str, *, order_id: UUID | None = None) -> GatewayPayment:
        payment = self._payments.get(payment_id)
        if payment is None:
            payment = GatewayPayment(
                payment_id=payment_id,
                status=status,
                external_reference=str(order_id) if order_id else None,
                order_id=str(order_id) if order_id else None,
            )
            self._payments[payment_id] = payment
        payment.status = status
        return payment


_STUB_GATEWAY: StubMercadoPagoClient | None = None


def build_payment_gateway(config: Settings | None = None) -> PaymentGateway:
    """Return the live client, or the shared stub in development without a token."""

    global _STUB_GATEWAY
    config = config or default_settings
    if config.mercadopago_access_token:
        return MercadoPagoClient(
            access_token=config.mercadopago_access_token,
            base_url=config.mercadopago_base_url,
            timeout_seconds=config.mercadopago_timeout_seconds,
            max_attempts=config.mercadopago_max_attempts,
            backoff_seconds=config.mercadopago_backoff_seconds,
            notification_url=f"{config.api_base_url.rstrip('/')}/api/v1/webhooks/mercadopago",
            currency=config.currency,
        )
    if config.is_production:
        raise RuntimeError("MERCADOPAGO_ACCESS_TOKEN must be configured in production")
    if _STUB_GATEWAY is None:
        logger.warning("MercadoPago access token missing; using stub gateway")
        _STUB_GATEWAY = StubMercadoPagoClient()
    return _STUB_GATEWAY


__all__ = [
    "CheckoutPreference",
    "GatewayPayment",
    "GatewayRefund",
    "MercadoPagoClient",
    "PaymentGateway",
    "PixCharge",
    "StubMercadoPagoClient",
    "build_payment_gateway",
]
