from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import (
    actor_headers,
    confirm_order,
    create_consumer,
    create_offer,
    create_restaurant,
    reserve_order,
)


async def _confirmed_order_in_window(session_factory):
    now = datetime.now(timezone.utc)
    restaurant = await create_restaurant(session_factory)
    consumer = await create_consumer(session_factory, name="Bruno Lima")
    offer = await create_offer(
        session_factory,
        restaurant,
        pickup_start_time=now - timedelta(minutes=30),
        pickup_end_time=now + timedelta(minutes=90),
    )
    order = await reserve_order(session_factory, consumer, offer, quantity=2, now=now)
    order = await confirm_order(session_factory, order, now=now)
    return restaurant, consumer, order


@pytest.mark.asyncio
async def test_pickup_validate_and_redeem(app_with_db) -> None:
    app, session_factory = app_with_db
    restaurant, _, order = await _confirmed_order_in_window(session_factory)
    other = await create_restaurant(session_factory)
    headers = actor_headers(restaurant, "restaurant")
    typed_code = f"  {order.pickup_code.lower()} "

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        validated = await client.post("/api/v1/pickup/validate", json={"pickup_code": typed_code}, headers=headers)
        foreign = await client.post(
            "/api/v1/pickup/validate",
            json={"pickup_code": order.pickup_code},
            headers=actor_headers(other, "restaurant"),
        )
        redeemed = await client.post("/api/v1/pickup/redeem", json={"pickup_code": order.pickup_code}, headers=headers)
        repeated = await client.post("/api/v1/pickup/redeem", json={"pickup_code": order.pickup_code}, headers=headers)
        completed = await client.get("/api/v1/restaurants/me/orders", params={"status": "COMPLETED"}, headers=headers)
        summary = await client.get("/api/v1/restaurants/me/sales-summary", headers=headers)

    assert validated.status_code == 200
    assert validated.json()["package_type"] == "Pastry bag"
    assert validated.json()["consumer_name"] == "Bruno Lima"
    assert foreign.status_code == 404
    assert foreign.json()["error"] == "pickup_code_not_found"

    assert redeemed.status_code == 200
    assert redeemed.json()["already_redeemed"] is False
    assert redeemed.json()["order"]["status"] == "COMPLETED"
    assert repeated.json()["already_redeemed"] is True

    assert completed.json()["total"] == 1
    assert summary.json()["orders"] == 1
    assert summary.json()["units"] == 2
    assert summary.json()["gross_amount"] == "45.00"
    assert summary.json()["platform_fees"] == "6.75"
    assert summary.json()["net_amount"] == "38.25"


@pytest.mark.asyncio
async def test_review_after_pickup_updates_restaurant_reviews(app_with_db) -> None:
    app, session_factory = app_with_db
    restaurant, consumer, order = await _confirmed_order_in_window(session_factory)
    consumer_headers = actor_headers(consumer, "consumer")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        early = await client.post(
            "/api/v1/reviews",
            json={"order_id": str(order.id), "rating": 4},
            headers=consumer_headers,
        )
        await client.post(
            "/api/v1/pickup/redeem",
            json={"pickup_code": order.pickup_code},
            headers=actor_headers(restaurant, "restaurant"),
        )
        created = await client.post(
            "/api/v1/reviews",
            json={"order_id": str(order.id), "rating": 4, "comment": "Fresh and generous"},
            headers=consumer_headers,
        )
        duplicate = await client.post(
            "/api/v1/reviews",
            json={"order_id": str(order.id), "rating": 5},
            headers=consumer_headers,
        )
        listing = await client.get(f"/api/v1/restaurants/{restaurant.id}/reviews")

    assert early.status_code == 409
    assert early.json()["error"] == "not_ready_for_pickup"
    assert created.status_code == 201
    assert created.json()["restaurant_id"] == str(restaurant.id)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "duplicate_review"

    body = listing.json()
    assert body["total"] == 1
    assert body["average_rating"] == 4.0
    assert body["items"][0]["comment"] == "Fresh and generous"


@pytest.mark.asyncio
async def test_notification_feed_endpoints(app_with_db) -> None:
    app, session_factory = app_with_db
    restaurant, consumer, _ = await _confirmed_order_in_window(session_factory)
    consumer_headers = actor_headers(consumer, "consumer")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        consumer_feed = await client.get("/api/v1/notifications", headers=consumer_headers)
        restaurant_feed = await client.get("/api/v1/notifications", headers=actor_headers(restaurant, "restaurant"))
        notification_id = consumer_feed.json()["items"][0]["id"]

        foreign_read = await client.post(
            f"/api/v1/notifications/{notification_id}/read",
            headers=actor_headers(restaurant, "restaurant"),
        )
        read = await client.post(f"/api/v1/notifications/{notification_id}/read", headers=consumer_headers)
        read_all = await client.post("/api/v1/notifications/read-all", headers=actor_headers(restaurant, "restaurant"))
        deleted = await client.delete(f"/api/v1/notifications/{notification_id}", headers=consumer_headers)
        after = await client.get("/api/v1/notifications", headers=consumer_headers)

    assert consumer_feed.status_code == 200
    assert [item["type"] for item in consumer_feed.json()["items"]] == ["ORDER_CONFIRMED"]
    assert consumer_feed.json()["unread_count"] == 1
    assert [item["type"] for item in restaurant_feed.json()["items"]] == ["NEW_ORDER"]

    assert foreign_read.status_code == 404
    assert read.json()["is_read"] is True
    assert read_all.json() == {"updated": 1}
    assert deleted.status_code == 204
    assert after.json()["total"] == 0
