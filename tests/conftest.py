"""
tests/conftest.py
Shared fixtures: a fresh in-memory SQLite database per test, fakeredis in
place of Redis, an httpx client bound to the app, and one account per role.
"""

import os

os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_JSON"] = "false"

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Optional  # noqa: E402

import fakeredis  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from config.database import Base, enable_sqlite_savepoints, get_db  # noqa: E402
from config.redis_client import get_redis  # noqa: E402
from shared.models.models import (  # noqa: E402
    Booking,
    BookingStatus,
    Client,
    Event,
    EventStatus,
    Notification,
    Organizer,
    ProviderType,
    Service,
    Supplier,
    User,
    UserRole,
)
from shared.utils.security import create_access_token  # noqa: E402


# ── Helpers ────────────────────────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    token, _ = create_access_token(user.id, UserRole(user.role).value, user.email)
    return {"Authorization": f"Bearer {token}"}


async def make_user(db: AsyncSession, email: str, role: UserRole, first_name: str, last_name: str) -> User:
    user = User(email=email, role=role, first_name=first_name, last_name=last_name, is_active=True)
    db.add(user)
    await db.commit()
    return user


async def make_booking(
    db: AsyncSession,
    client_profile: Client,
    service: Service,
    event: Optional[Event] = None,
    status: BookingStatus = BookingStatus.PENDING,
    quote_amount: Optional[Decimal] = None,
    final_amount: Optional[Decimal] = None,
) -> Booking:
    """Insert a booking directly in a given state, bypassing the state machine."""
    booking = Booking(
        event_id=event.id if event else None,
        service_id=service.id,
        client_id=client_profile.id,
        provider_id=service.provider_id,
        provider_type=service.provider_type,
        event_date=event.event_date if event else datetime.now(timezone.utc),
        quote_amount=quote_amount if quote_amount is not None else service.price,
        final_amount=final_amount,
        status=status,
    )
    db.add(booking)
    await db.commit()
    return booking


async def notifications_for(db: AsyncSession, user: User, **filters) -> list:
    query = select(Notification).where(Notification.user_id == user.id)
    for key, value in filters.items():
        query = query.where(getattr(Notification, key) == value)
    result = await db.execute(query.order_by(Notification.id))
    return list(result.scalars())


# ── Infrastructure ─────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(test_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    Session = async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with Session() as session:
        yield session


@pytest_asyncio.fixture
async def redis():
    fake = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield fake
    await fake.flushall()
    await fake.aclose()


@pytest_asyncio.fixture
async def client(db, redis):
    from main import app

    async def _get_test_db():
        yield db

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_redis] = lambda: redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Accounts ───────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client_user(db) -> User:
    return await make_user(db, "casey@example.com", UserRole.CLIENT, "Casey", "Client")


@pytest_asyncio.fixture
async def client_profile(db, client_user) -> Client:
    profile = Client(user_id=client_user.id, preferred_contact_method="Email")
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def other_client_user(db) -> User:
    return await make_user(db, "olive@example.com", UserRole.CLIENT, "Olive", "Other")


@pytest_asyncio.fixture
async def other_client_profile(db, other_client_user) -> Client:
    profile = Client(user_id=other_client_user.id)
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def organizer_user(db) -> User:
    return await make_user(db, "oscar@example.com", UserRole.ORGANIZER, "Oscar", "Organizer")


@pytest_asyncio.fixture
async def organizer(db, organizer_user) -> Organizer:
    profile = Organizer(
        user_id=organizer_user.id,
        business_name="Aurora Events",
        years_of_experience=8,
        is_active=True,
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def supplier_user(db) -> User:
    return await make_user(db, "sara@example.com", UserRole.SUPPLIER, "Sara", "Supplier")


@pytest_asyncio.fixture
async def supplier(db, supplier_user) -> Supplier:
    profile = Supplier(
        user_id=supplier_user.id,
        business_name="Bloom Florals",
        service_category="Flowers",
        is_active=True,
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def admin_user(db) -> User:
    return await make_user(db, "admin@example.com", UserRole.ADMIN, "Ada", "Admin")


# ── Catalog & Events ───────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def organizer_service(db, organizer) -> Service:
    service = Service(
        provider_id=organizer.id,
        provider_type=ProviderType.ORGANIZER,
        name="Full Wedding Planning",
        category="Planning",
        price=Decimal("5000.00"),
        is_active=True,
        is_approved=True,
    )
    db.add(service)
    await db.commit()
    return service


@pytest_asyncio.fixture
async def supplier_service(db, supplier) -> Service:
    service = Service(
        provider_id=supplier.id,
        provider_type=ProviderType.SUPPLIER,
        name="Table Centerpieces",
        category="Flowers",
        price=Decimal("1500.00"),
        is_active=True,
        is_approved=True,
    )
    db.add(service)
    await db.commit()
    return service


@pytest_asyncio.fixture
async def event(db, client_profile) -> Event:
    evt = Event(
        client_id=client_profile.id,
        name="Summer Wedding",
        event_type="Wedding",
        event_date=datetime.now(timezone.utc) + timedelta(days=60),
        budget=Decimal("20000.00"),
        guest_count=120,
        location="Lakeside Hall",
        status=EventStatus.PLANNING,
    )
    db.add(evt)
    await db.commit()
    return evt
