"""
Tests for trip endpoints: creation, lookup, seat map and status transitions.
"""

from datetime import datetime, timezone, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient

from busbooking.models import Booking, Trip, User

from conftest import bearer, fetch, persist


def trip_body(**overrides):
    body = {
        "origin": "Addis Ababa",
        "destination": "Bahir Dar",
        "departure_time": (datetime.now(timezone.utc) + timedelta(days=7)).isoformat(),
        "price": "750.00",
        "total_slots": 45,
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_admin_creates_trip(client: AsyncClient, admin_headers, company):
    response = await client.post("/api/v1/trips", json=trip_body(), headers=admin_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["company_id"] == company.id
    assert data["status"] == "SCHEDULED"
    assert data["total_slots"] == 45
    assert data["available_slots"] == 45
    assert Decimal(data["price"]) == Decimal("750.00")
    assert data["booking_halted"] is False


@pytest.mark.asyncio
async def test_super_admin_creates_trip_for_company(client: AsyncClient, database, other_company):
    super_admin = await persist(database, User(name="Platform", phone="0911999999", role="SUPER_ADMIN"))
    response = await client.post(
        "/api/v1/trips",
        json=trip_body(company_id=other_company.id),
        headers=bearer(super_admin),
    )
    assert response.status_code == 201
    assert response.json()["company_id"] == other_company.id


@pytest.mark.asyncio
async def test_cashier_cannot_create_trip(client: AsyncClient, cashier_headers):
    response = await client.post("/api/v1/trips", json=trip_body(), headers=cashier_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_customer_cannot_create_trip(client: AsyncClient, customer_headers):
    response = await client.post("/api/v1/trips", json=trip_body(), headers=customer_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_trip_invalid_slots(client: AsyncClient, admin_headers):
    response = await client.post("/api/v1/trips", json=trip_body(total_slots=0), headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_trip(client: AsyncClient, trip):
    response = await client.get(f"/api/v1/trips/{trip.id}")
    assert response.status_code == 200
    assert response.json()["id"] == trip.id
    assert response.json()["available_slots"] == 40


@pytest.mark.asyncio
async def test_get_trip_not_found(client: AsyncClient):
    response = await client.get("/api/v1/trips/9999")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_seat_map_lists_held_and_sold_seats(client: AsyncClient, book, customer_headers, cashier_headers, trip):
    await book(customer_headers, trip.id, seats=[4, 9])
    await client.post(
        f"/api/v1/trips/{trip.id}/counter-sales",
        json={"passenger_count": 1, "selected_seats": [1]},
        headers=cashier_headers,
    )

    response = await client.get(f"/api/v1/trips/{trip.id}/seats")
    assert response.status_code == 200
    data = response.json()
    assert data["occupied_seats"] == [1, 4, 9]
    assert data["available_slots"] == 37
    assert data["total_slots"] == 40
    assert data["cached"] is False


@pytest.mark.asyncio
async def test_status_transitions(client: AsyncClient, admin_headers, trip):
    for new_status in ("BOARDING", "DEPARTED", "COMPLETED"):
        response = await client.post(
            f"/api/v1/trips/{trip.id}/status", json={"status": new_status}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == new_status


@pytest.mark.asyncio
async def test_invalid_status_transition(client: AsyncClient, admin_headers, trip):
    response = await client.post(
        f"/api/v1/trips/{trip.id}/status", json={"status": "COMPLETED"}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_STATUS_TRANSITION"


@pytest.mark.asyncio
async def test_cancel_trip_cancels_pending_bookings(
    client: AsyncClient, database, book, customer_headers, cashier_headers, admin_headers, trip
):
    pending = await book(customer_headers, trip.id, count=3)
    sold = await client.post(
        f"/api/v1/trips/{trip.id}/counter-sales", json={"passenger_count": 2}, headers=cashier_headers
    )

    response = await client.post(
        f"/api/v1/trips/{trip.id}/status", json={"status": "CANCELLED"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    # Pending seats come back; paid counter seats stay sold
    assert response.json()["available_slots"] == 38

    cancelled = await fetch(database, Booking, pending.json()["id"])
    assert cancelled.status == "CANCELLED"
    paid = await fetch(database, Booking, sold.json()["booking_id"])
    assert paid.status == "PAID"

    again = await book(customer_headers, trip.id)
    assert again.status_code == 400
    assert again.json()["detail"]["code"] == "TRIP_NOT_BOOKABLE"


@pytest.mark.asyncio
async def test_status_change_other_company(client: AsyncClient, database, foreign_cashier_headers, trip):
    response = await client.post(
        f"/api/v1/trips/{trip.id}/status", json={"status": "BOARDING"}, headers=foreign_cashier_headers
    )
    assert response.status_code == 403
    stored = await fetch(database, Trip, trip.id)
    assert stored.status == "SCHEDULED"


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["cache"] == {"status": "disabled"}

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "booking_attempts" in metrics.text
