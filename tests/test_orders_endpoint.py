from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import actor_headers, create_consumer, create_offer, create_restaurant


async def _live_offer(session_factory, *, quantity: int = 5):
    restaurant = await create_restaurant(session_factory)
    start = datetime.now(timezone.utc) + timedelta(hours=4)
    offer = await create_offer(
        session_factory,
        restaurant,
        quantity=quantity,
        pickup_start_time=start,
        pickup_end_time=start + timedelta(hours=2),
    )
    return restaurant, offer


@pytest.mark.asyncio
async def test_consumer_reserves_and_lists_orders(app_with_db, stub_gateway) -> None:
    app, session_factory = app_with_db
    _, offer = await _live_offer(session_factory)
    consumer = await create_consumer(session_factory)
    headers = actor_headers(consumer, "consumer")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/orders",
            json={"offer_id": str(offer.id), "quantity": 2, "payment_method": "PIX"},
            headers=headers,
        )
        listing = await client.get("/api/v1/orders", headers=headers)
        pending = await client.get("/api/v1/orders", params={"status": "PENDING_PAYMENT"}, headers=headers)
        confirmed = await client.get("/api/v1/orders", params={"status": "CONFIRMED"}, headers=headers)
        detail = await client.get(f"/api/v1/orders/{response.json()['id']}", headers=headers)
        offer_after = await client.get(f"/api/v1/offers/{offer.id}")

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING_PAYMENT"
    assert body["payment_status"] == "PENDING"
    assert body["total_amount"] == "45.00"
    assert body["platform_fee"] == "6.75"
    assert body["restaurant_amount"] == "38.25"
    assert body["payment_id"].startswith("stub-")
    assert body["pix_qr_code"].startswith("00020126")
    assert body["qr_code_data_url"].startswith("data:image/png;base64,")
    assert await stub_gateway.get_payment(body["payment_id"])

    assert listing.json()["total"] == 1
    assert pending.json()["total"] == 1
    assert confirmed.json()["total"] == 0
    assert detail.json()["pickup_code"] == body["pickup_code"]
    assert offer_after.json()["offer"]["available_quantity"] == 3


@pytest.mark.asyncio
async def test_reservation_conflicts_are_reported(app_with_db) -> None:
    app, session_factory = app_with_db
    _, offer = await _live_offer(session_factory, quantity=2)
    consumer = await create_consumer(session_factory)
    blocked = await create_consumer(
        session_factory,
        failed_pickups=3,
        blocked_until=datetime.now(timezone.utc) + timedelta(days=10),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        too_many = await client.post(
            "/api/v1/orders",
            json={"offer_id": str(offer.id), "quantity": 3},
            headers=actor_headers(consumer, "consumer"),
        )
        refused = await client.post(
            "/api/v1/orders",
            json={"offer_id": str(offer.id), "quantity": 1},
            headers=actor_headers(blocked, "consumer"),
        )

    assert too_many.status_code == 409
    assert too_many.json()["error"] == "insufficient_quantity"
    assert too_many.json()["details"]["available"] == 2
    assert refused.status_code == 403
    assert refused.json()["error"] == "blocked_consumer"


@pytest.mark.asyncio
async def test_identity_headers_are_enforced(app_with_db) -> None:
    app, session_factory = app_with_db
    consumer = await create_consumer(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing = await client.get("/api/v1/orders")
        bad_id = await client.get("/api/v1/orders", headers={"X-Actor-Id": "nope", "X-Actor-Role": "consumer"})
        bad_role = await client.get(
            "/api/v1/orders",
            headers={"X-Actor-Id": str(consumer.id), "X-Actor-Role": "admin"},
        )
        wrong_role = await client.get("/api/v1/orders", headers=actor_headers(consumer, "restaurant"))

    assert missing.status_code == 401
    assert bad_id.status_code == 400
    assert bad_role.status_code == 400
    assert wrong_role.status_code == 403


@pytest.mark.asyncio
async def test_orders_of_other_consumers_are_forbidden(app_with_db) -> None:
    app, session_factory = app_with_db
    _, offer = await _live_offer(session_factory)
    owner = await create_consumer(session_factory)
    stranger = await create_consumer(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post(
            "/api/v1/orders",
            json={"offer_id": str(offer.id)},
            headers=actor_headers(owner, "consumer"),
        )
        peek = await client.get(f"/api/v1/orders/{created.json()['id']}", headers=actor_headers(stranger, "consumer"))
        cancel_pending = await client.post(
            f"/api/v1/orders/{created.json()['id']}/cancel",
            headers=actor_headers(owner, "consumer"),
        )

    assert peek.status_code == 403
    assert cancel_pending.status_code == 409
    assert cancel_pending.json()["error"] == "invalid_order_transition"
