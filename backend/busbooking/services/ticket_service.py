"""
Ticket issuance: one ticket per passenger, created only inside the
transaction that settles the booking.

Short codes are drawn from an alphabet without look-alike characters
(no 0/O, 1/I) so they can be read out at the gate, and are unique across the
whole system. The QR code encodes the public verification URL for the code.
"""

import asyncio
import base64
import secrets
from io import BytesIO
from typing import Iterable, Optional

import qrcode
from qrcode.image.svg import SvgPathImage
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.config import get_settings
from busbooking.core.logging import get_logger
from busbooking.models.booking import Booking
from busbooking.models.ticket import Ticket

logger = get_logger(__name__)

SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MAX_CODE_ATTEMPTS = 10


def generate_short_code(length: Optional[int] = None) -> str:
    length = length or get_settings().SHORT_CODE_LENGTH
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def verification_url(short_code: str) -> str:
    return f"{get_settings().PUBLIC_BASE_URL.rstrip('/')}/verify/{short_code}"


def render_qr_code(data: str) -> str:
    """Render `data` as an SVG QR code data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    buffer = BytesIO()
    qr.make_image(image_factory=SvgPathImage).save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


async def generate_unique_short_code(db: AsyncSession, reserved: Iterable[str] = ()) -> str:
    reserved = set(reserved)
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_short_code()
        if code in reserved:
            continue
        exists = await db.execute(select(Ticket.id).where(Ticket.short_code == code))
        if exists.scalar_one_or_none() is None:
            return code
        logger.info("short_code_collision", code=code)
    raise RuntimeError("Could not generate a unique ticket code")


async def issue_tickets(db: AsyncSession, booking: Booking) -> list[Ticket]:
    """
    Issue one ticket for every passenger of `booking` that has none yet.

    QR rendering runs in a worker thread so the enclosing transaction's
    deadline can still cancel it.
    """
    await db.flush()

    ticketed = {ticket.passenger_id for ticket in booking.tickets}
    issued: list[Ticket] = []
    for passenger in booking.passengers:
        if passenger.id in ticketed:
            continue
        code = await generate_unique_short_code(db, reserved=(t.short_code for t in issued))
        qr_code = await asyncio.to_thread(render_qr_code, verification_url(code))
        ticket = Ticket(
            booking_id=booking.id,
            trip_id=booking.trip_id,
            passenger_id=passenger.id,
            passenger_name=passenger.name,
            seat_number=passenger.seat_number,
            short_code=code,
            qr_code=qr_code,
        )
        booking.tickets.append(ticket)
        issued.append(ticket)

    await db.flush()
    logger.info(
        "tickets_issued",
        booking_id=booking.id,
        trip_id=booking.trip_id,
        codes=[ticket.short_code for ticket in issued],
    )
    return issued
