"""
Tests for counter (walk-in) sales by company staff.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from busbooking.models import Booking, Trip

from conftest import fetch


async def sell(client: AsyncClient, headers, trip_id, count=1, seats=None, passengers=None):
    body = {"passenger_count": count}
    if seats is not None:
        body["selected_seats"] = seats
    if passengers is not None:
        body["passengers"] = passengers
    return await client.post(f"/api/v1/trips/{trip_id}/counter-sales", json=body, headers=headers)


@pytest.mark.asyncio
async def test_counter_sale_is_paid_immediately(client: AsyncClient, database, cashier_headers, cashier, trip):
    response = await sell(client, cashier_headers, trip.id, count=2)
    assert response.status_code == 201
    data = response.json()
    assert data["seat_numbers"] == [1, 2]
    assert data["transaction_id"].startswith(f"CASH-{data['booking_id']}-")
    assert len(data["ticket_codes"]) == 2
    assert Decimal(data["commission"]) == Decimal("0")
    assert Decimal(data["commission_vat"]) == Decimal("0")
    assert Decimal(data["total_amount"]) == Decimal("1000.00")
    assert data["available_slots"] == 38

    booking = await fetch(database, Booking, data["booking_id"])
    assert booking.status == "PAID"
    assert booking.is_quick_ticket is True
    assert booking.user_id == cashier.id
    assert [p.name for p in booking.passengers] == ["Walk-in passenger 1", "Walk-in passenger 2"]
    assert booking.payments[0].method == "CASH"
    assert booking.payments[0].status == "SUCCESS"
    assert len(booking.tickets) == 2


@pytest.mark.asyncio
async def test_counter_sale_with_passenger_details_and_seats(client: AsyncClient, database, cashier_headers, trip):
    response = await sell(
        client,
        cashier_headers,
        trip.id,
        count=2,
        seats=[10, 11],
        passengers=[{"name": "Almaz", "phone": "0911223344"}, {"name": "Dawit"}],
    )
    assert response.status_code == 201
    assert response.json()["seat_numbers"] == [10, 11]

    booking = await fetch(database, Booking, response.json()["booking_id"])
    assert [(p.name, p.seat_number) for p in booking.passengers] == [("Almaz", 10), ("Dawit", 11)]


@pytest.mark.asyncio
async def test_counter_sale_respects_online_seats(client: AsyncClient, book, customer_headers, cashier_headers, trip):
    await book(customer_headers, trip.id, seats=[3])

    taken = await sell(client, cashier_headers, trip.id, seats=[3])
    assert taken.status_code == 400
    assert taken.json()["detail"]["code"] == "SEAT_ALREADY_TAKEN"

    auto = await sell(client, cashier_headers, trip.id, count=3)
    assert auto.json()["seat_numbers"] == [1, 2, 4]


@pytest.mark.asyncio
async def test_customer_cannot_sell(client: AsyncClient, customer_headers, trip):
    response = await sell(client, customer_headers, trip.id)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_other_company_cashier_cannot_sell(client: AsyncClient, database, foreign_cashier_headers, trip):
    response = await sell(client, foreign_cashier_headers, trip.id)
    assert response.status_code == 403

    stored = await fetch(database, Trip, trip.id)
    assert stored.available_slots == 40


@pytest.mark.asyncio
async def test_seat_count_mismatch(client: AsyncClient, cashier_headers, trip):
    response = await sell(client, cashier_headers, trip.id, count=2, seats=[1])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_counter_sale_not_blocked_by_halt(client: AsyncClient, cashier_headers, admin_headers, trip):
    halt = await client.post(
        f"/api/v1/trips/{trip.id}/booking-control", json={"action": "HALT"}, headers=admin_headers
    )
    assert halt.json()["booking_halted"] is True

    response = await sell(client, cashier_headers, trip.id)
    assert response.status_code == 201
    assert response.json()["booking_halted"] is True


@pytest.mark.asyncio
async def test_last_seat_marks_manifest_ready(client: AsyncClient, database, cashier_headers, make_trip):
    small = await make_trip(total_slots=3)
    first = await sell(client, cashier_headers, small.id, count=2)
    assert first.json()["manifest_ready"] is False

    last = await sell(client, cashier_headers, small.id, count=1)
    assert last.status_code == 201
    assert last.json()["available_slots"] == 0
    assert last.json()["manifest_ready"] is True

    sold_out = await sell(client, cashier_headers, small.id, count=1)
    assert sold_out.status_code == 400
    assert sold_out.json()["detail"]["code"] == "INSUFFICIENT_SEATS"

    stored = await fetch(database, Trip, small.id)
    assert stored.available_slots == 0
    assert stored.manifest_ready is True


@pytest.mark.asyncio
async def test_counter_sale_on_cancelled_trip(client: AsyncClient, cashier_headers, make_trip):
    cancelled = await make_trip(status="CANCELLED")
    response = await sell(client, cashier_headers, cancelled.id)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "TRIP_NOT_BOOKABLE"
