import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from surplus_api.api.dependencies.payments import get_payment_gateway  # noqa: E402
from surplus_api.app import create_app  # noqa: E402
from surplus_api.db.base import Base  # noqa: E402
from surplus_api.db.session import get_session  # noqa: E402
import surplus_api.models  # noqa: E402,F401
from surplus_api.models.consumer import Consumer  # noqa: E402
from surplus_api.models.offer import Offer, OfferStatusEnum  # noqa: E402
from surplus_api.models.order import Order, PaymentMethodEnum  # noqa: E402
from surplus_api.models.restaurant import Restaurant  # noqa: E402
from surplus_api.observability.payments import get_payment_store  # noqa: E402
from surplus_api.observability.scheduler import get_scheduler_store  # noqa: E402
from surplus_api.services.orders import OrderStateMachine, ReservationService  # noqa: E402
from surplus_api.services.payments import StubMercadoPagoClient  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_observability():
    get_payment_store().reset()
    get_scheduler_store().reset()
    yield
    get_payment_store().reset()
    get_scheduler_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def stub_gateway():
    return StubMercadoPagoClient()


@pytest_asyncio.fixture
async def app_with_db(session_factory, stub_gateway):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_payment_gateway] = lambda: stub_gateway

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


async def create_restaurant(session_factory, **overrides) -> Restaurant:
    values = {
        "tax_id": uuid4().hex[:14],
        "name": "Padaria Central",
        "email": f"{uuid4().hex[:8]}@padaria.example",
        "latitude": -23.5505,
        "longitude": -46.6333,
        "is_approved": True,
        "is_active": True,
    }
    values.update(overrides)
    async with session_factory() as session:
        restaurant = Restaurant(**values)
        session.add(restaurant)
        await session.commit()
        await session.refresh(restaurant)
        return restaurant


async def create_consumer(session_factory, **overrides) -> Consumer:
    values = {
        "name": "Ana Souza",
        "email": f"{uuid4().hex[:8]}@mail.example",
        "failed_pickups": 0,
        "credit_balance": Decimal("0.00"),
        "is_active": True,
    }
    values.update(overrides)
    async with session_factory() as session:
        consumer = Consumer(**values)
        session.add(consumer)
        await session.commit()
        await session.refresh(consumer)
        return consumer


async def create_offer(session_factory, restaurant: Restaurant, **overrides) -> Offer:
    """Insert an ACTIVE offer directly, bypassing publication rules."""

    quantity = overrides.pop("quantity", 10)
    values = {
        "restaurant_id": restaurant.id,
        "package_type": "Pastry bag",
        "quantity": quantity,
        "available_quantity": quantity,
        "original_price": Decimal("45.00"),
        "promotional_price": Decimal("22.50"),
        "discount_percent": Decimal("50.00"),
        "pickup_start_time": NOW + timedelta(hours=3),
        "pickup_end_time": NOW + timedelta(hours=5),
        "status": OfferStatusEnum.ACTIVE,
    }
    values.update(overrides)
    async with session_factory() as session:
        offer = Offer(**values)
        session.add(offer)
        await session.commit()
        await session.refresh(offer)
        return offer


def actor_headers(actor, role: str) -> dict[str, str]:
    return {"X-Actor-Id": str(actor.id), "X-Actor-Role": role}


async def reserve_order(
    session_factory,
    consumer: Consumer,
    offer: Offer,
    *,
    quantity: int = 1,
    now: datetime = NOW,
    gateway=None,
    initiate_payment: bool = False,
) -> Order:
    async with session_factory() as session:
        service = ReservationService(session, gateway=gateway)
        return await service.create_reservation(
            consumer.id,
            offer.id,
            quantity,
            PaymentMethodEnum.PIX,
            now=now,
            initiate_payment=initiate_payment,
        )


async def confirm_order(session_factory, order: Order, *, now: datetime = NOW, payment_id: str | None = None) -> Order:
    async with session_factory() as session:
        loaded = await session.get(Order, order.id)
        machine = OrderStateMachine(session, gateway=StubMercadoPagoClient())
        await machine.confirm_payment(loaded, payment_id=payment_id or f"pay-{order.id.hex[:12]}", now=now)
        await session.commit()
        return loaded
