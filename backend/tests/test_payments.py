"""
Tests for payment settlement: demo payments, TeleBirr initiation and the
signed webhook, referral commissions and ticket issuance.
"""

import asyncio
from datetime import datetime, timezone, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select

from busbooking.core.config import get_settings
from busbooking.core.security import Actor
from busbooking.infrastructure.telebirr import TelebirrClient, sign_params
from busbooking.models import (
    AuditLog, Booking, Notification, Payment, SalesCommission, SalesPerson, SalesReferral, Trip,
)
from busbooking.schemas.audit import parse_audit_event
from busbooking.services.payment_service import initiate_provider_payment
from busbooking.services.ticket_service import SHORT_CODE_ALPHABET

from conftest import fetch, persist


def signed_callback(transaction_id, booking_id, amount, status="SUCCESS", timestamp=None):
    payload = {
        "transactionId": transaction_id,
        "outTradeNo": f"booking_{booking_id}",
        "status": status,
        "amount": amount,
        "currency": "ETB",
        "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
    }
    payload["signature"] = sign_params(payload, get_settings().TELEBIRR_APP_KEY)
    return payload


async def pay(client: AsyncClient, headers, booking_id, method="DEMO"):
    return await client.post(
        "/api/v1/payments",
        json={"booking_id": booking_id, "method": method},
        headers=headers,
    )


@pytest_asyncio.fixture
async def pending_booking(book, customer_headers, trip) -> dict:
    response = await book(customer_headers, trip.id, count=1)
    assert response.status_code == 201
    return response.json()


@pytest_asyncio.fixture
async def telebirr_payment(client: AsyncClient, customer_headers, pending_booking) -> dict:
    response = await pay(client, customer_headers, pending_booking["id"], method="TELEBIRR")
    assert response.status_code == 200
    return response.json()["payment"]


# ---------------------------------------------------------------------------
# Demo payments
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_demo_payment_issues_tickets(client: AsyncClient, database, customer_headers, customer, pending_booking):
    response = await pay(client, customer_headers, pending_booking["id"])
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Payment successful"
    assert data["booking_status"] == "PAID"
    assert data["payment"]["transaction_id"] == f"DEMO-{pending_booking['id']}"
    assert data["payment"]["status"] == "SUCCESS"
    assert Decimal(data["payment"]["amount"]) == Decimal("528.75")
    assert len(data["ticket_codes"]) == 1

    detail = await client.get(f"/api/v1/bookings/{pending_booking['id']}", headers=customer_headers)
    ticket = detail.json()["tickets"][0]
    assert ticket["short_code"] == data["ticket_codes"][0]
    assert len(ticket["short_code"]) == 6
    assert set(ticket["short_code"]) <= set(SHORT_CODE_ALPHABET)
    assert ticket["qr_code"].startswith("data:image/svg+xml;base64,")
    assert ticket["seat_number"] == pending_booking["passengers"][0]["seat_number"]
    assert ticket["is_used"] is False

    async with database.session() as db:
        notifications = (
            await db.execute(select(Notification).where(Notification.user_id == customer.id))
        ).scalars().all()
        audit = (
            await db.execute(select(AuditLog).where(AuditLog.action == "PAYMENT_SUCCESS"))
        ).scalars().all()
    assert len(notifications) == 1
    assert ticket["short_code"] in notifications[0].message
    assert len(audit) == 1
    event = parse_audit_event(audit[0].details)
    assert event.booking_id == pending_booking["id"]
    assert event.ticket_codes == [ticket["short_code"]]


@pytest.mark.asyncio
async def test_demo_payment_is_idempotent(client: AsyncClient, customer_headers, pending_booking):
    first = await pay(client, customer_headers, pending_booking["id"])
    second = await pay(client, customer_headers, pending_booking["id"])

    assert second.status_code == 200
    assert second.json()["message"] == "Already processed"
    assert second.json()["payment"]["id"] == first.json()["payment"]["id"]
    assert second.json()["ticket_codes"] == first.json()["ticket_codes"]


@pytest.mark.asyncio
async def test_pay_someone_elses_booking(client: AsyncClient, other_customer_headers, pending_booking):
    response = await pay(client, other_customer_headers, pending_booking["id"])
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_pay_cancelled_booking(client: AsyncClient, customer_headers, pending_booking):
    await client.delete(f"/api/v1/bookings/{pending_booking['id']}", headers=customer_headers)
    response = await pay(client, customer_headers, pending_booking["id"])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "BOOKING_NOT_PAYABLE"


@pytest.mark.asyncio
async def test_demo_payment_disabled(client: AsyncClient, monkeypatch, customer_headers, pending_booking):
    monkeypatch.setattr(get_settings(), "PAYMENT_DEMO_MODE", False)
    response = await pay(client, customer_headers, pending_booking["id"])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "BOOKING_NOT_PAYABLE"


@pytest.mark.asyncio
async def test_price_change_blocks_payment(client: AsyncClient, database, customer_headers, trip, pending_booking):
    """Stored amounts are re-verified against the current trip price."""
    async with database.transaction() as db:
        stored = await db.get(Trip, trip.id)
        stored.price = Decimal("600.00")

    response = await pay(client, customer_headers, pending_booking["id"])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "AMOUNT_MISMATCH"

    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "PENDING"
    assert booking.payments == []


@pytest.mark.asyncio
async def test_departed_trip_booking_not_payable(client: AsyncClient, database, customer_headers, trip, pending_booking):
    async with database.transaction() as db:
        stored = await db.get(Trip, trip.id)
        stored.status = "DEPARTED"

    response = await pay(client, customer_headers, pending_booking["id"])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "BOOKING_NOT_PAYABLE"


@pytest.mark.asyncio
async def test_referral_commissions_recorded_on_payment(
    client: AsyncClient, database, book, customer_headers, customer, trip
):
    recruiter = await persist(database, SalesPerson(name="Recruiter", referral_code="REC001"))
    agent = await persist(
        database, SalesPerson(name="Field Agent", referral_code="AGT001", recruiter_id=recruiter.id)
    )
    await persist(database, SalesReferral(user_id=customer.id, sales_person_id=agent.id))

    created = await book(customer_headers, trip.id, count=2)
    response = await pay(client, customer_headers, created.json()["id"])
    assert response.status_code == 200

    async with database.session() as db:
        rows = (await db.execute(select(SalesCommission).order_by(SalesCommission.id))).scalars().all()

    # commission 50.00 -> pool 2.50 -> 70/30
    assert [(r.sales_person_id, r.tier, r.amount) for r in rows] == [
        (agent.id, "DIRECT", Decimal("1.75")),
        (recruiter.id, "RECRUITER", Decimal("0.75")),
    ]
    assert all(r.ticket_amount == Decimal("1000.00") for r in rows)
    assert all(r.platform_commission == Decimal("50.00") for r in rows)


@pytest.mark.asyncio
async def test_suspended_recruiter_gets_nothing(client: AsyncClient, database, book, customer_headers, customer, trip):
    recruiter = await persist(
        database, SalesPerson(name="Recruiter", referral_code="REC002", status="SUSPENDED")
    )
    agent = await persist(
        database, SalesPerson(name="Field Agent", referral_code="AGT002", recruiter_id=recruiter.id)
    )
    await persist(database, SalesReferral(user_id=customer.id, sales_person_id=agent.id))

    created = await book(customer_headers, trip.id, count=2)
    await pay(client, customer_headers, created.json()["id"])

    async with database.session() as db:
        rows = (await db.execute(select(SalesCommission))).scalars().all()
    assert [(r.sales_person_id, r.tier, r.amount) for r in rows] == [(agent.id, "DIRECT", Decimal("2.50"))]


# ---------------------------------------------------------------------------
# TeleBirr
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_telebirr_initiation_records_pending_payment(client: AsyncClient, customer_headers, pending_booking):
    response = await pay(client, customer_headers, pending_booking["id"], method="TELEBIRR")
    assert response.status_code == 200
    data = response.json()
    assert data["booking_status"] == "PENDING"
    assert data["payment"]["status"] == "PENDING"
    assert data["payment"]["method"] == "TELEBIRR"
    assert data["ticket_codes"] == []

    again = await pay(client, customer_headers, pending_booking["id"], method="TELEBIRR")
    assert again.json()["payment"]["transaction_id"] == data["payment"]["transaction_id"]


@pytest.mark.asyncio
async def test_webhook_success_settles_booking(client: AsyncClient, database, pending_booking, telebirr_payment):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Payment processed"}

    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "PAID"
    assert len(booking.tickets) == 1
    assert booking.payments[0].status == "SUCCESS"


@pytest.mark.asyncio
async def test_webhook_replay_is_acknowledged(client: AsyncClient, database, trip, pending_booking, telebirr_payment):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")
    await client.post("/api/v1/payments/telebirr/callback", json=payload)
    replay = await client.post("/api/v1/payments/telebirr/callback", json=payload)

    assert replay.status_code == 200
    assert replay.json()["message"] == "Already processed"

    booking = await fetch(database, Booking, pending_booking["id"])
    assert len(booking.tickets) == 1
    assert [p.status for p in booking.payments] == ["SUCCESS"]
    stored_trip = await fetch(database, Trip, trip.id)
    assert stored_trip.available_slots == 39


@pytest.mark.asyncio
async def test_simultaneous_webhook_deliveries_settle_once(
    client: AsyncClient, database, trip, pending_booking, telebirr_payment
):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")
    responses = await asyncio.gather(
        client.post("/api/v1/payments/telebirr/callback", json=payload),
        client.post("/api/v1/payments/telebirr/callback", json=payload),
    )

    assert [r.status_code for r in responses] == [200, 200]
    assert sorted(r.json()["message"] for r in responses) == ["Already processed", "Payment processed"]

    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "PAID"
    assert len(booking.tickets) == 1
    assert [p.status for p in booking.payments] == ["SUCCESS"]
    stored_trip = await fetch(database, Trip, trip.id)
    assert stored_trip.available_slots == 39


class SlowTelebirrClient(TelebirrClient):
    """Provider call that takes long enough for two taps to overlap."""

    async def initiate_payment(self, **kwargs):
        await asyncio.sleep(0.2)
        return await super().initiate_payment(**kwargs)


@pytest.mark.asyncio
async def test_concurrent_telebirr_initiations_store_one_payment(database, customer, pending_booking):
    actor = Actor(user_id=customer.id, role=customer.role)
    provider = SlowTelebirrClient()

    first, second = await asyncio.gather(
        initiate_provider_payment(database, actor, pending_booking["id"], client=provider),
        initiate_provider_payment(database, actor, pending_booking["id"], client=provider),
    )
    assert first.payment.transaction_id == second.payment.transaction_id

    async with database.session() as db:
        pending = (
            await db.execute(
                select(Payment).where(
                    Payment.booking_id == pending_booking["id"],
                    Payment.method == "TELEBIRR",
                    Payment.status == "PENDING",
                )
            )
        ).scalars().all()
    assert [p.transaction_id for p in pending] == [first.payment.transaction_id]


@pytest.mark.asyncio
async def test_webhook_non_string_signature(client: AsyncClient, pending_booking, telebirr_payment):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")
    payload["signature"] = 123
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"


@pytest.mark.asyncio
async def test_webhook_source_ip_allowlist(
    client: AsyncClient, database, monkeypatch, pending_booking, telebirr_payment
):
    monkeypatch.setattr(get_settings(), "TELEBIRR_WEBHOOK_IPS", "196.188.1.10, 196.188.1.11")
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")

    blocked = await client.post(
        "/api/v1/payments/telebirr/callback", json=payload, headers={"X-Forwarded-For": "10.0.0.9"}
    )
    assert blocked.status_code == 403
    assert blocked.json()["detail"]["code"] == "ACCESS_DENIED"
    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "PENDING"

    allowed = await client.post(
        "/api/v1/payments/telebirr/callback",
        json=payload,
        headers={"X-Forwarded-For": "196.188.1.11, 10.0.0.1"},
    )
    assert allowed.status_code == 200
    assert allowed.json()["message"] == "Payment processed"


@pytest.mark.asyncio
async def test_webhook_failure_cancels_and_releases(client: AsyncClient, database, trip, pending_booking, telebirr_payment):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75", status="FAILED")
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)

    assert response.status_code == 200
    assert response.json()["message"] == "Payment failure recorded"

    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "CANCELLED"
    assert booking.payments[0].status == "FAILED"
    stored_trip = await fetch(database, Trip, trip.id)
    assert stored_trip.available_slots == 40


@pytest.mark.asyncio
async def test_webhook_bad_signature(client: AsyncClient, pending_booking, telebirr_payment):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")
    payload["amount"] = "1.00"  # tampered after signing
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"


@pytest.mark.asyncio
async def test_webhook_missing_signature(client: AsyncClient, pending_booking, telebirr_payment):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")
    del payload["signature"]
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_expired_timestamp(client: AsyncClient, database, pending_booking, telebirr_payment):
    stale = datetime.now(timezone.utc) - timedelta(minutes=10)
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75", timestamp=stale)
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "REQUEST_EXPIRED"
    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "PENDING"


@pytest.mark.asyncio
async def test_webhook_amount_mismatch(client: AsyncClient, database, pending_booking, telebirr_payment):
    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "100.00")
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "AMOUNT_MISMATCH"
    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "PENDING"
    assert booking.payments[0].status == "PENDING"


@pytest.mark.asyncio
async def test_webhook_unknown_transaction(client: AsyncClient, pending_booking):
    payload = signed_callback("UNKNOWN-TXN", pending_booking["id"], "528.75")
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_webhook_malformed_payload(client: AsyncClient, pending_booking):
    payload = {"outTradeNo": f"booking_{pending_booking['id']}", "status": "SUCCESS"}
    payload["signature"] = sign_params(payload, get_settings().TELEBIRR_APP_KEY)
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_webhook_for_booking_paid_another_way(
    client: AsyncClient, database, customer_headers, pending_booking, telebirr_payment
):
    """A late SUCCESS for a booking that is no longer pending fails that payment."""
    await pay(client, customer_headers, pending_booking["id"], method="DEMO")

    payload = signed_callback(telebirr_payment["transaction_id"], pending_booking["id"], "528.75")
    response = await client.post("/api/v1/payments/telebirr/callback", json=payload)
    assert response.status_code == 200
    assert response.json()["message"] == "Booking no longer pending"

    async with database.session() as db:
        payment = (
            await db.execute(select(Payment).where(Payment.transaction_id == telebirr_payment["transaction_id"]))
        ).scalar_one()
    assert payment.status == "FAILED"
    booking = await fetch(database, Booking, pending_booking["id"])
    assert booking.status == "PAID"
    assert len(booking.tickets) == 1
