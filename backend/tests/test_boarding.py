"""
Tests for gate verification, no-show marking, replacement sales and the
boarding checklist.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from busbooking.models import AuditLog, Booking, Trip

from conftest import fetch


async def set_status(client: AsyncClient, headers, trip_id, *statuses):
    for new_status in statuses:
        response = await client.post(
            f"/api/v1/trips/{trip_id}/status", json={"status": new_status}, headers=headers
        )
        assert response.status_code == 200


async def verify(client: AsyncClient, headers, code):
    return await client.post("/api/v1/tickets/verify", json={"short_code": code}, headers=headers)


async def mark_no_shows(client: AsyncClient, headers, trip_id, passenger_ids):
    return await client.post(
        f"/api/v1/trips/{trip_id}/no-shows", json={"passenger_ids": passenger_ids}, headers=headers
    )


@pytest.mark.asyncio
async def test_verify_ticket_boards_passenger(client: AsyncClient, database, admin_headers, cashier_headers, paid_booking, trip):
    await set_status(client, admin_headers, trip.id, "BOARDING")
    ticket = paid_booking["tickets"][0]

    response = await verify(client, cashier_headers, ticket["short_code"].lower())
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["message"] == "Ticket verified. Passenger boarded."
    assert data["passenger_id"] == ticket["passenger_id"]
    assert data["seat_number"] == ticket["seat_number"]

    booking = await fetch(database, Booking, paid_booking["id"])
    boarded = next(p for p in booking.passengers if p.id == ticket["passenger_id"])
    assert boarded.boarding_status == "BOARDED"
    assert next(t for t in booking.tickets if t.id == ticket["id"]).is_used is True


@pytest.mark.asyncio
async def test_verify_ticket_twice(client: AsyncClient, admin_headers, cashier_headers, paid_booking, trip):
    await set_status(client, admin_headers, trip.id, "BOARDING")
    code = paid_booking["tickets"][0]["short_code"]

    await verify(client, cashier_headers, code)
    again = await verify(client, cashier_headers, code)
    assert again.status_code == 400
    assert again.json()["detail"]["code"] == "BOARDING_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_verify_before_boarding_opens(client: AsyncClient, cashier_headers, paid_booking):
    response = await verify(client, cashier_headers, paid_booking["tickets"][0]["short_code"])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "BOARDING_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_verify_unknown_code(client: AsyncClient, cashier_headers):
    response = await verify(client, cashier_headers, "ZZZZZZ")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_verify_other_company_ticket(client: AsyncClient, admin_headers, foreign_cashier_headers, paid_booking, trip):
    await set_status(client, admin_headers, trip.id, "BOARDING")
    response = await verify(client, foreign_cashier_headers, paid_booking["tickets"][0]["short_code"])
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_no_show_requires_departure(client: AsyncClient, admin_headers, cashier_headers, paid_booking, trip):
    await set_status(client, admin_headers, trip.id, "BOARDING")
    passenger_id = paid_booking["passengers"][0]["id"]

    response = await mark_no_shows(client, cashier_headers, trip.id, [passenger_id])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "BOARDING_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_mark_no_shows_skips_boarded(client: AsyncClient, database, admin_headers, cashier_headers, paid_booking, trip):
    boarded, missing = paid_booking["passengers"]
    boarded_ticket = next(t for t in paid_booking["tickets"] if t["passenger_id"] == boarded["id"])

    await set_status(client, admin_headers, trip.id, "BOARDING")
    await verify(client, cashier_headers, boarded_ticket["short_code"])
    await set_status(client, admin_headers, trip.id, "DEPARTED")

    response = await mark_no_shows(client, cashier_headers, trip.id, [boarded["id"], missing["id"]])
    assert response.status_code == 200
    data = response.json()
    assert data["marked"] == 1
    assert data["skipped"] == 1
    assert data["no_show_count"] == 1
    assert data["released_seats"] == 1
    outcomes = {o["passenger_id"]: o for o in data["outcomes"]}
    assert outcomes[boarded["id"]]["outcome"] == "SKIPPED"
    assert outcomes[boarded["id"]]["reason"] == "Passenger already boarded"
    assert outcomes[missing["id"]]["outcome"] == "MARKED"

    # Marking again is a no-op
    again = await mark_no_shows(client, cashier_headers, trip.id, [missing["id"]])
    assert again.json()["marked"] == 0
    assert again.json()["outcomes"][0]["reason"] == "Already marked as no-show"
    assert again.json()["released_seats"] == 1

    stored = await fetch(database, Trip, trip.id)
    assert stored.no_show_count == 1
    assert stored.released_seats == 1
    # The sold seat stays sold
    assert stored.available_slots == 38

    async with database.session() as db:
        audit = (await db.execute(select(AuditLog).where(AuditLog.action == "PASSENGER_NO_SHOW"))).scalars().all()
    assert len(audit) == 1


@pytest.mark.asyncio
async def test_no_show_ticket_cannot_board(client: AsyncClient, admin_headers, cashier_headers, paid_booking, trip):
    await set_status(client, admin_headers, trip.id, "BOARDING", "DEPARTED")
    passenger = paid_booking["passengers"][0]
    ticket = next(t for t in paid_booking["tickets"] if t["passenger_id"] == passenger["id"])

    await mark_no_shows(client, cashier_headers, trip.id, [passenger["id"]])
    response = await verify(client, cashier_headers, ticket["short_code"])
    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "Passenger was marked as no-show"


@pytest.mark.asyncio
async def test_no_show_unknown_passenger(client: AsyncClient, admin_headers, cashier_headers, paid_booking, trip):
    await set_status(client, admin_headers, trip.id, "BOARDING", "DEPARTED")
    response = await mark_no_shows(client, cashier_headers, trip.id, [999999])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_replacement_sale_reuses_no_show_seat(
    client: AsyncClient, database, admin_headers, cashier_headers, paid_booking, trip
):
    await set_status(client, admin_headers, trip.id, "BOARDING", "DEPARTED")
    no_show = paid_booking["passengers"][1]
    await mark_no_shows(client, cashier_headers, trip.id, [no_show["id"]])

    response = await client.post(
        f"/api/v1/trips/{trip.id}/replacement-sales",
        json={"passenger_count": 1, "passengers": [{"name": "Late Walk-in"}]},
        headers=cashier_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["seat_numbers"] == [no_show["seat_number"]]
    assert data["replaced_passenger_ids"] == [no_show["id"]]
    assert data["transaction_id"].startswith(f"REPL-{data['booking_id']}-")
    assert data["released_seats"] == 0
    assert data["replacements_sold"] == 1
    assert data["available_slots"] == 38
    assert len(data["ticket_codes"]) == 1

    booking = await fetch(database, Booking, data["booking_id"])
    assert booking.is_replacement is True
    assert booking.replaced_passenger_id == no_show["id"]
    assert booking.passengers[0].boarding_status == "BOARDED"
    assert booking.passengers[0].name == "Late Walk-in"

    exhausted = await client.post(
        f"/api/v1/trips/{trip.id}/replacement-sales",
        json={"passenger_count": 1},
        headers=cashier_headers,
    )
    assert exhausted.status_code == 400
    assert exhausted.json()["detail"]["code"] == "INSUFFICIENT_RELEASED_SEATS"


@pytest.mark.asyncio
async def test_replacement_sale_selected_seat_must_be_released(
    client: AsyncClient, admin_headers, cashier_headers, paid_booking, trip
):
    await set_status(client, admin_headers, trip.id, "BOARDING", "DEPARTED")
    no_show, present = paid_booking["passengers"][1], paid_booking["passengers"][0]
    await mark_no_shows(client, cashier_headers, trip.id, [no_show["id"]])

    response = await client.post(
        f"/api/v1/trips/{trip.id}/replacement-sales",
        json={"passenger_count": 1, "selected_seats": [present["seat_number"]]},
        headers=cashier_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "SEAT_ALREADY_TAKEN"


@pytest.mark.asyncio
async def test_replacement_sale_before_departure(client: AsyncClient, cashier_headers, trip):
    response = await client.post(
        f"/api/v1/trips/{trip.id}/replacement-sales",
        json={"passenger_count": 1},
        headers=cashier_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "BOARDING_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_boarding_checklist(client: AsyncClient, admin_headers, cashier_headers, paid_booking, trip):
    first, second = paid_booking["passengers"]
    first_ticket = next(t for t in paid_booking["tickets"] if t["passenger_id"] == first["id"])

    await set_status(client, admin_headers, trip.id, "BOARDING")
    await verify(client, cashier_headers, first_ticket["short_code"])
    await set_status(client, admin_headers, trip.id, "DEPARTED")
    await mark_no_shows(client, cashier_headers, trip.id, [second["id"]])
    await client.post(
        f"/api/v1/trips/{trip.id}/replacement-sales", json={"passenger_count": 1}, headers=cashier_headers
    )

    response = await client.get(f"/api/v1/trips/{trip.id}/boarding", headers=cashier_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "DEPARTED"
    assert data["total_passengers"] == 3
    assert data["boarded"] == 2
    assert data["no_show"] == 1
    assert data["pending"] == 0
    assert data["replacements_sold"] == 1
    assert data["released_seats"] == 0

    by_id = {p["passenger_id"]: p for p in data["passengers"]}
    assert by_id[first["id"]]["ticket_used"] is True
    assert by_id[second["id"]]["boarding_status"] == "NO_SHOW"
    replacement = [p for p in data["passengers"] if p["is_replacement"]]
    assert len(replacement) == 1
    assert replacement[0]["seat_number"] == second["seat_number"]


@pytest.mark.asyncio
async def test_customer_cannot_see_checklist(client: AsyncClient, customer_headers, trip):
    response = await client.get(f"/api/v1/trips/{trip.id}/boarding", headers=customer_headers)
    assert response.status_code == 403
