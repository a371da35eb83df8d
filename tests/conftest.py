"""Shared test fixtures and helpers."""

import os

os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret"
os.environ["CALENDLY_WEBHOOK_SIGNING_KEY"] = "test-calendly-key"
os.environ["STRIPE_WEBHOOK_SECRET"] = "test-stripe-secret"
os.environ["ALLOWED_ORIGINS"] = "http://localhost:5173"

from datetime import datetime, timezone  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt as jose_jwt  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from valet.database import Base, get_db  # noqa: E402
from valet.domain.bookings.router import get_notifier  # noqa: E402
from valet.main import app  # noqa: E402
from valet.models import Booking, Customer, CustomerProfile, Item, Staff  # noqa: E402
from valet.rate_limiter import webhook_rate_limiter  # noqa: E402
from valet.services.notification_service import CompletionNotifier  # noqa: E402

FIXED_NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingNotifier(CompletionNotifier):
    """Collects completion notifications instead of sending email"""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_service_completed(self, *, to, service_type, first_name, item_count):
        self.sent.append(
            {
                "to": to,
                "service_type": service_type,
                "first_name": first_name,
                "item_count": item_count,
            }
        )
        if self.fail:
            raise RuntimeError("email provider down")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'valet-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(session_factory, notifier):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def no_rate_limit():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[webhook_rate_limiter] = no_rate_limit

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


async def make_customer(
    db,
    email: str = "alex@example.com",
    *,
    profile: bool = True,
    first_name: Optional[str] = None,
    staff: bool = False,
    delivery_address: Optional[dict] = None,
) -> Customer:
    customer = Customer(email=email)
    db.add(customer)
    await db.flush()
    if profile:
        db.add(
            CustomerProfile(
                user_id=customer.id,
                email=email,
                first_name=first_name,
                delivery_address=delivery_address,
            )
        )
    if staff:
        db.add(Staff(user_id=customer.id, role="operator"))
    await db.commit()
    return customer


async def make_item(db, owner: Customer, status: str = "home", label: str = "Box") -> Item:
    item = Item(user_id=owner.id, status=status, label=label, category="boxes")
    db.add(item)
    await db.commit()
    return item


async def make_booking(
    db,
    owner: Customer,
    status: str = "pending_items",
    *,
    service_type: str = "pickup",
    pickup: Optional[list[str]] = None,
    delivery: Optional[list[str]] = None,
    event_uri: Optional[str] = None,
    scheduled_start: Optional[datetime] = None,
) -> Booking:
    booking = Booking(
        user_id=owner.id,
        status=status,
        service_type=service_type,
        pickup_item_ids=pickup or [],
        delivery_item_ids=delivery or [],
        calendly_event_uri=event_uri,
        scheduled_start=scheduled_start,
    )
    db.add(booking)
    await db.commit()
    return booking


async def reload(session_factory, model, obj_id):
    """Read a row through a fresh session"""
    async with session_factory() as session:
        return await session.get(model, obj_id)


def auth_headers(customer_id: str) -> dict:
    token = jose_jwt.encode(
        {"sub": customer_id, "aud": "authenticated"}, "test-jwt-secret", algorithm="HS256"
    )
    return {"Authorization": f"Bearer {token}"}
