import hashlib
import hmac

import pytest
from httpx import ASGITransport, AsyncClient

from surplus_api.core.settings import settings
from surplus_api.models.order import Order, OrderStatusEnum
from surplus_api.services.payments import (
    PaymentNotification,
    SignatureCheck,
    UnrecognizedNotification,
    parse_notification,
    verify_webhook_signature,
)
from surplus_api.services.payments.webhooks import signature_manifest

from conftest import create_consumer, create_offer, create_restaurant, reserve_order

SECRET = "whsec-test"


def _signed_headers(data_id: str, *, secret: str = SECRET, request_id: str = "req-1", ts: str = "1700000000") -> dict:
    digest = hmac.new(secret.encode(), signature_manifest(data_id, request_id, ts).encode(), hashlib.sha256).hexdigest()
    return {"x-signature": f"ts={ts},v1={digest}", "x-request-id": request_id}


def test_parse_notification_shapes() -> None:
    assert parse_notification({"type": "payment", "action": "payment.updated", "data": {"id": "123"}}) == (
        PaymentNotification(payment_id="123", action="payment.updated")
    )
    assert parse_notification({}, {"topic": "payment", "id": "456"}) == PaymentNotification(payment_id="456")
    assert parse_notification(
        {"topic": "payment", "resource": "https://api.mercadopago.com/v1/payments/789"}
    ) == PaymentNotification(payment_id="789")

    merchant = parse_notification({"topic": "merchant_order", "resource": "x"})
    assert isinstance(merchant, UnrecognizedNotification)
    assert merchant.kind == "merchant_order"

    missing = parse_notification({"type": "payment", "data": {}})
    assert isinstance(missing, UnrecognizedNotification)
    assert missing.kind == "payment_without_id"


def test_signature_verification() -> None:
    headers = _signed_headers("123")

    assert verify_webhook_signature(headers, "123", SECRET) == SignatureCheck.VALID
    assert verify_webhook_signature(headers, "124", SECRET) == SignatureCheck.INVALID
    assert verify_webhook_signature(headers, "123", "other-secret") == SignatureCheck.INVALID
    assert verify_webhook_signature({"x-signature": "v1=abc", "x-request-id": "r"}, "123", SECRET) == (
        SignatureCheck.INVALID
    )
    assert verify_webhook_signature({}, "123", SECRET) == SignatureCheck.MISSING
    assert verify_webhook_signature(headers, "123", "") == SignatureCheck.MISSING
    assert verify_webhook_signature(headers, None, SECRET) == SignatureCheck.MISSING


def test_signature_uses_lowercase_data_id() -> None:
    headers = _signed_headers("abc123")
    assert verify_webhook_signature(headers, "ABC123", SECRET) == SignatureCheck.VALID


@pytest.mark.asyncio
async def test_webhook_confirms_order_and_is_idempotent(app_with_db, stub_gateway) -> None:
    app, session_factory = app_with_db
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant)
    order = await reserve_order(session_factory, consumer, offer, gateway=stub_gateway, initiate_payment=True)
    stub_gateway.set_status(order.payment_id, "approved")

    body = {"type": "payment", "action": "payment.updated", "data": {"id": order.payment_id}}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/api/v1/webhooks/mercadopago", json=body)
        second = await client.post("/api/v1/webhooks/mercadopago", json=body)

    assert first.status_code == 200
    assert first.json() == {"received": True, "outcome": "applied"}
    assert second.json() == {"received": True, "outcome": "noop"}

    async with session_factory() as session:
        stored = await session.get(Order, order.id)
    assert stored.status == OrderStatusEnum.CONFIRMED


@pytest.mark.asyncio
async def test_webhook_acknowledges_unrecognized_and_malformed_bodies(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        merchant = await client.post("/api/v1/webhooks/mercadopago", json={"topic": "merchant_order", "id": "1"})
        garbage = await client.post(
            "/api/v1/webhooks/mercadopago",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

    assert merchant.status_code == 200
    assert merchant.json()["outcome"] == "unrecognized"
    assert garbage.status_code == 200
    assert garbage.json()["outcome"] == "unrecognized"


@pytest.mark.asyncio
async def test_production_rejects_unsigned_webhooks(app_with_db, stub_gateway, monkeypatch) -> None:
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "mercadopago_webhook_secret", SECRET)

    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant)
    order = await reserve_order(session_factory, consumer, offer, gateway=stub_gateway, initiate_payment=True)
    stub_gateway.set_status(order.payment_id, "approved")
    body = {"type": "payment", "data": {"id": order.payment_id}}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        unsigned = await client.post("/api/v1/webhooks/mercadopago", json=body)
        forged = await client.post(
            "/api/v1/webhooks/mercadopago",
            json=body,
            headers=_signed_headers(order.payment_id, secret="wrong"),
        )
        signed = await client.post(
            "/api/v1/webhooks/mercadopago",
            json=body,
            headers=_signed_headers(order.payment_id),
        )

    assert unsigned.status_code == 401
    assert forged.status_code == 401
    assert signed.status_code == 200
    assert signed.json()["outcome"] == "applied"


@pytest.mark.asyncio
async def test_simulated_webhook_drives_stub_gateway(app_with_db, stub_gateway) -> None:
    app, session_factory = app_with_db
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory)
    offer = await create_offer(session_factory, restaurant)
    order = await reserve_order(session_factory, consumer, offer, gateway=stub_gateway, initiate_payment=True)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/webhooks/mercadopago/test",
            json={"payment_id": order.payment_id, "status": "rejected"},
        )

    assert response.status_code == 200
    assert response.json()["outcome"] == "applied"
    async with session_factory() as session:
        stored = await session.get(Order, order.id)
    assert stored.status == OrderStatusEnum.CANCELLED


@pytest.mark.asyncio
async def test_simulated_webhook_is_hidden_in_production(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "operator_api_key", "ops-key")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/webhooks/mercadopago/test",
            json={"payment_id": "stub-1", "status": "approved"},
            headers={"X-API-Key": "ops-key"},
        )

    assert response.status_code == 404
