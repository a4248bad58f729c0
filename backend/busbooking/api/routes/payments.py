"""
Payment endpoints and the TeleBirr webhook.
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request

from busbooking.core.security import Actor, get_current_actor
from busbooking.db.session import Database, get_database
from busbooking.schemas.payment import PaymentCreate, PaymentResult, WebhookAck
from busbooking.services.payment_service import handle_telebirr_callback, pay_booking

router = APIRouter(prefix="/payments", tags=["Payments"])


def client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


@router.post("", response_model=PaymentResult)
async def create_payment(
    payment_data: PaymentCreate,
    actor: Actor = Depends(get_current_actor),
    database: Database = Depends(get_database),
):
    """
    Pay a pending booking.

    DEMO settles immediately (demo mode only). TELEBIRR pushes a payment
    request to the customer's phone and settles when the provider calls back.
    Amounts are always recomputed from the trip price before charging.
    """
    return await pay_booking(
        database, actor, payment_data.booking_id, payment_data.method, phone=payment_data.phone
    )


@router.post("/telebirr/callback", response_model=WebhookAck)
async def telebirr_callback(
    request: Request,
    payload: dict[str, Any] = Body(...),
    database: Database = Depends(get_database),
):
    """
    Provider webhook. Signed and time-boxed; safe to deliver more than once.
    Replays of an already settled transaction return success without changes.
    """
    return await handle_telebirr_callback(database, payload, source_ip=client_ip(request))
