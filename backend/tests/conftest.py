"""
Pytest fixtures for test database, client, seed data and authentication.

Every test gets its own SQLite file (aiosqlite), so tests are isolated and
the seat ledger runs through the same Database.transaction() path as in
production. Redis is disabled; the cache degrades to a no-op.
"""

import os

os.environ["REDIS_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

from datetime import datetime, timezone, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402

from busbooking.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from busbooking.main import app  # noqa: E402
from busbooking.db.base import Base  # noqa: E402
from busbooking.db.session import Database, get_database  # noqa: E402
from busbooking.core.security import create_access_token  # noqa: E402
from busbooking.models import Company, Trip, User  # noqa: E402


async def persist(database: Database, *objects):
    """Insert rows in one committed transaction; returns the objects with ids set."""
    async with database.transaction() as db:
        db.add_all(objects)
        await db.flush()
    return objects[0] if len(objects) == 1 else objects


async def fetch(database: Database, model, pk):
    """Fresh read in a new session."""
    async with database.session() as db:
        return await db.get(model, pk)


def bearer(user: User) -> dict:
    token = create_access_token(
        data={"sub": str(user.id), "role": user.role, "company_id": user.company_id}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """Fresh schema per test."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'busbooking.db'}").init()
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def client(database: Database) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the Database dependency with the test database."""
    app.dependency_overrides[get_database] = lambda: database

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def company(database: Database) -> Company:
    return await persist(database, Company(name="Selam Bus"))


@pytest_asyncio.fixture
async def other_company(database: Database) -> Company:
    return await persist(database, Company(name="Sky Bus"))


@pytest_asyncio.fixture
async def customer(database: Database) -> User:
    return await persist(database, User(name="Abebe Kebede", phone="0911000001", role="CUSTOMER"))


@pytest_asyncio.fixture
async def other_customer(database: Database) -> User:
    return await persist(database, User(name="Hana Girma", phone="0911000002", role="CUSTOMER"))


@pytest_asyncio.fixture
async def cashier(database: Database, company: Company) -> User:
    return await persist(
        database, User(name="Counter Cashier", phone="0911000003", role="CASHIER", company_id=company.id)
    )


@pytest_asyncio.fixture
async def admin(database: Database, company: Company) -> User:
    return await persist(
        database, User(name="Company Admin", phone="0911000004", role="COMPANY_ADMIN", company_id=company.id)
    )


@pytest_asyncio.fixture
async def foreign_cashier(database: Database, other_company: Company) -> User:
    return await persist(
        database, User(name="Other Cashier", phone="0911000005", role="CASHIER", company_id=other_company.id)
    )


@pytest_asyncio.fixture
async def customer_headers(customer: User) -> dict:
    return bearer(customer)


@pytest_asyncio.fixture
async def other_customer_headers(other_customer: User) -> dict:
    return bearer(other_customer)


@pytest_asyncio.fixture
async def cashier_headers(cashier: User) -> dict:
    return bearer(cashier)


@pytest_asyncio.fixture
async def admin_headers(admin: User) -> dict:
    return bearer(admin)


@pytest_asyncio.fixture
async def foreign_cashier_headers(foreign_cashier: User) -> dict:
    return bearer(foreign_cashier)


@pytest_asyncio.fixture
async def make_trip(database: Database, company: Company):
    """Factory for trips of the seeded company."""

    async def _make_trip(total_slots: int = 40, price: str = "500.00", **overrides) -> Trip:
        fields = dict(
            company_id=company.id,
            origin="Addis Ababa",
            destination="Hawassa",
            departure_time=datetime.now(timezone.utc) + timedelta(days=3),
            price=Decimal(price),
            total_slots=total_slots,
            available_slots=total_slots,
            status="SCHEDULED",
        )
        fields.update(overrides)
        return await persist(database, Trip(**fields))

    return _make_trip


@pytest_asyncio.fixture
async def trip(make_trip) -> Trip:
    """40 seats at 500.00, well above the auto-halt threshold."""
    return await make_trip()


@pytest_asyncio.fixture
async def book(client: AsyncClient):
    """POST /bookings with `count` passengers (or explicit seats); returns the response."""

    async def _book(headers: dict, trip_id: int, count: int = 1, seats=None):
        if seats is not None:
            passengers = [{"name": f"Passenger {i + 1}", "seat_number": seat} for i, seat in enumerate(seats)]
        else:
            passengers = [{"name": f"Passenger {i + 1}"} for i in range(count)]
        return await client.post(
            "/api/v1/bookings",
            json={"trip_id": trip_id, "passengers": passengers},
            headers=headers,
        )

    return _book


@pytest_asyncio.fixture
async def paid_booking(client: AsyncClient, book, customer_headers: dict, trip: Trip) -> dict:
    """Two-passenger booking on `trip`, paid through the demo flow."""
    response = await book(customer_headers, trip.id, count=2)
    assert response.status_code == 201
    booking_id = response.json()["id"]

    payment = await client.post(
        "/api/v1/payments",
        json={"booking_id": booking_id, "method": "DEMO"},
        headers=customer_headers,
    )
    assert payment.status_code == 200

    detail = await client.get(f"/api/v1/bookings/{booking_id}", headers=customer_headers)
    return detail.json()
