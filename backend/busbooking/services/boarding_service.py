"""
Boarding and replacement workflow.

Passenger boarding state machine:

  PENDING --(gate scan)--> BOARDED   (trip BOARDING or DEPARTED)
  PENDING --(no-show)----> NO_SHOW   (trip DEPARTED only)

Both end states are terminal. A passenger whose ticket was already used can
never become a no-show.

Every NO_SHOW adds one seat to the trip's released pool (released_seats).
Replacement sales consume that pool and re-seat walk-ins on the no-show seats.
They never touch available_slots: the seat was already sold once and is
still counted as sold.
"""

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.exceptions import (
    BoardingNotAllowed,
    InsufficientReleasedSeats,
    NotFound,
    SeatAlreadyTaken,
    ValidationFailed,
)
from busbooking.core.logging import get_logger
from busbooking.core.metrics import counter_sales, record_settlement
from busbooking.core.security import Actor, require_company_access
from busbooking.db.base import utcnow
from busbooking.db.session import Database
from busbooking.models.booking import BoardingStatus, Booking, BookingStatus, Passenger
from busbooking.models.payment import Payment, PaymentMethod, PaymentStatus
from busbooking.models.ticket import Ticket
from busbooking.models.trip import Trip, TripStatus
from busbooking.schemas.audit import PassengersMarkedNoShow, ReplacementSale, TicketVerified
from busbooking.schemas.boarding import (
    BoardingChecklistResponse,
    BoardingPassenger,
    NoShowOutcome,
    NoShowResponse,
    ReplacementSaleResponse,
    TicketVerifyResponse,
    WalkInPassenger,
)
from busbooking.services.commission import calculate_booking_amounts
from busbooking.services.counter_sale_service import build_walk_in_passengers, validate_staff_sale
from busbooking.services.effects import SideEffects, dispatch_side_effects
from busbooking.services.seat_ledger import SeatLedger
from busbooking.services.ticket_service import issue_tickets

logger = get_logger(__name__)

PAID_STATUSES = (BookingStatus.PAID, BookingStatus.CONFIRMED)
GATE_OPEN_STATUSES = (TripStatus.BOARDING, TripStatus.DEPARTED)


async def _used_ticket_passenger_ids(db: AsyncSession, passenger_ids: Sequence[int]) -> set[int]:
    result = await db.execute(
        select(Ticket.passenger_id).where(Ticket.passenger_id.in_(passenger_ids), Ticket.is_used.is_(True))
    )
    return set(result.scalars().all())


async def mark_no_shows(
    database: Database,
    actor: Actor,
    trip_id: int,
    passenger_ids: Sequence[int],
) -> NoShowResponse:
    """
    Bulk NO_SHOW marking. Passengers already boarded (or holding a used
    ticket) and passengers already flagged are skipped, not errors.
    """
    ids = list(dict.fromkeys(passenger_ids))
    effects = SideEffects()

    async with database.transaction() as db:
        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(trip_id)
        require_company_access(actor, trip.company_id)
        if trip.status != TripStatus.DEPARTED:
            raise BoardingNotAllowed(
                f"No-shows can only be recorded after departure (trip is {trip.status.lower()})"
            )

        result = await db.execute(
            select(Passenger)
            .join(Booking, Passenger.booking_id == Booking.id)
            .where(
                Passenger.id.in_(ids),
                Booking.trip_id == trip.id,
                Booking.status.in_(PAID_STATUSES),
            )
        )
        passengers = {p.id: p for p in result.scalars().all()}
        unknown = [pid for pid in ids if pid not in passengers]
        if unknown:
            raise ValidationFailed(
                f"Passenger(s) {', '.join(map(str, unknown))} not found on a paid booking for this trip"
            )

        used = await _used_ticket_passenger_ids(db, ids)
        outcomes: list[NoShowOutcome] = []
        marked: list[Passenger] = []
        for pid in ids:
            passenger = passengers[pid]
            reason = None
            if passenger.boarding_status == BoardingStatus.NO_SHOW:
                reason = "Already marked as no-show"
            elif passenger.boarding_status == BoardingStatus.BOARDED or pid in used:
                reason = "Passenger already boarded"

            if reason is not None:
                outcomes.append(
                    NoShowOutcome(passenger_id=pid, seat_number=passenger.seat_number, outcome="SKIPPED", reason=reason)
                )
                continue

            passenger.boarding_status = BoardingStatus.NO_SHOW
            marked.append(passenger)
            outcomes.append(NoShowOutcome(passenger_id=pid, seat_number=passenger.seat_number, outcome="MARKED"))

        if marked:
            trip.no_show_count += len(marked)
            trip.released_seats += len(marked)
            trip.version += 1
            effects.touch_trip(trip.id)
            effects.audit(
                PassengersMarkedNoShow(
                    actor=str(actor.user_id),
                    trip_id=trip.id,
                    passenger_ids=[p.id for p in marked],
                    seat_numbers=[p.seat_number for p in marked],
                    released_seats=trip.released_seats,
                )
            )
        await db.flush()

        response = NoShowResponse(
            trip_id=trip.id,
            marked=len(marked),
            skipped=len(outcomes) - len(marked),
            outcomes=outcomes,
            no_show_count=trip.no_show_count,
            released_seats=trip.released_seats,
        )

    logger.info(
        "no_shows_marked",
        trip_id=trip_id,
        marked=response.marked,
        skipped=response.skipped,
        released_seats=response.released_seats,
    )
    await dispatch_side_effects(database, effects)
    return response


async def _replaceable_no_shows(db: AsyncSession, trip_id: int) -> list[Passenger]:
    """No-show passengers of original bookings whose seat has not been resold yet."""
    no_shows = (
        await db.execute(
            select(Passenger)
            .join(Booking, Passenger.booking_id == Booking.id)
            .where(
                Booking.trip_id == trip_id,
                Booking.status.in_(PAID_STATUSES),
                Booking.is_replacement.is_(False),
                Passenger.boarding_status == BoardingStatus.NO_SHOW,
                Passenger.seat_number.is_not(None),
            )
            .order_by(Passenger.seat_number)
        )
    ).scalars().all()

    resold = set(
        (
            await db.execute(
                select(Passenger.seat_number)
                .join(Booking, Passenger.booking_id == Booking.id)
                .where(
                    Booking.trip_id == trip_id,
                    Booking.status != BookingStatus.CANCELLED,
                    Booking.is_replacement.is_(True),
                )
            )
        ).scalars().all()
    )
    return [p for p in no_shows if p.seat_number not in resold]


async def sell_replacement_tickets(
    database: Database,
    actor: Actor,
    trip_id: int,
    passenger_count: int,
    selected_seats: Optional[Sequence[int]] = None,
    passengers: Sequence[WalkInPassenger] = (),
) -> ReplacementSaleResponse:
    """Resell no-show seats after departure from the released pool."""
    requested = validate_staff_sale(passenger_count, selected_seats, passengers)
    effects = SideEffects()

    async with database.transaction() as db:
        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(trip_id)
        require_company_access(actor, trip.company_id)
        if trip.status != TripStatus.DEPARTED:
            raise BoardingNotAllowed(
                f"Replacement tickets can only be sold after departure (trip is {trip.status.lower()})"
            )
        if trip.released_seats < passenger_count:
            raise InsufficientReleasedSeats(passenger_count, trip.released_seats)

        candidates = await _replaceable_no_shows(db, trip.id)
        if selected_seats:
            by_seat = {p.seat_number: p for p in candidates}
            if len(set(requested)) != len(requested):
                raise ValidationFailed("The same seat was selected more than once")
            not_released = sorted(seat for seat in requested if seat not in by_seat)
            if not_released:
                raise SeatAlreadyTaken(not_released)
            replaced = [by_seat[seat] for seat in requested]
        else:
            if len(candidates) < passenger_count:
                raise InsufficientReleasedSeats(passenger_count, len(candidates))
            replaced = candidates[:passenger_count]
        seats = [p.seat_number for p in replaced]

        amounts = calculate_booking_amounts(trip.price, passenger_count, counter_sale=True)
        booking = Booking(
            trip_id=trip.id,
            user_id=actor.user_id,
            status=BookingStatus.PAID,
            total_amount=amounts.total_amount,
            commission=amounts.commission.base_commission,
            commission_vat=amounts.commission.vat,
            is_quick_ticket=True,
            is_replacement=True,
            replaced_passenger_id=replaced[0].id,
            passengers=build_walk_in_passengers(
                passengers, seats, "Replacement passenger", boarding_status=BoardingStatus.BOARDED
            ),
            tickets=[],
            payments=[],
        )
        db.add(booking)
        await db.flush()

        transaction_id = f"REPL-{booking.id}-{uuid.uuid4().hex[:8].upper()}"
        booking.payments.append(
            Payment(
                booking_id=booking.id,
                amount=amounts.total_amount,
                method=PaymentMethod.CASH,
                transaction_id=transaction_id,
                status=PaymentStatus.SUCCESS,
            )
        )
        tickets = await issue_tickets(db, booking)

        trip.released_seats -= passenger_count
        trip.replacements_sold += passenger_count
        trip.version += 1
        effects.touch_trip(trip.id)
        effects.audit(
            ReplacementSale(
                actor=str(actor.user_id),
                trip_id=trip.id,
                booking_id=booking.id,
                seat_numbers=seats,
                replaced_passenger_ids=[p.id for p in replaced],
                amount=amounts.total_amount,
                released_seats_remaining=trip.released_seats,
            )
        )
        await db.flush()

        response = ReplacementSaleResponse(
            booking_id=booking.id,
            trip_id=trip.id,
            transaction_id=transaction_id,
            seat_numbers=seats,
            replaced_passenger_ids=[p.id for p in replaced],
            ticket_codes=[ticket.short_code for ticket in tickets],
            total_amount=amounts.total_amount,
            released_seats=trip.released_seats,
            replacements_sold=trip.replacements_sold,
            available_slots=trip.available_slots,
        )

    counter_sales.labels(kind="replacement").inc()
    record_settlement("cash", "success")
    logger.info(
        "replacement_sale_completed",
        booking_id=response.booking_id,
        trip_id=trip_id,
        seats=response.seat_numbers,
        released_seats=response.released_seats,
    )
    await dispatch_side_effects(database, effects)
    return response


async def verify_ticket(database: Database, actor: Actor, short_code: str) -> TicketVerifyResponse:
    """Gate scan: mark the ticket used and the passenger BOARDED."""
    code = short_code.strip().upper()
    effects = SideEffects()

    async with database.transaction() as db:
        ticket = (await db.execute(select(Ticket).where(Ticket.short_code == code))).scalar_one_or_none()
        if ticket is None:
            raise NotFound("Ticket not found")

        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(ticket.trip_id)
        require_company_access(actor, trip.company_id)
        await db.refresh(ticket)

        if trip.status not in GATE_OPEN_STATUSES:
            raise BoardingNotAllowed(f"Boarding is not open for this trip (trip is {trip.status.lower()})")

        booking = await db.get(Booking, ticket.booking_id)
        if booking.status not in PAID_STATUSES:
            raise BoardingNotAllowed("Booking is not paid")
        if ticket.is_used:
            raise BoardingNotAllowed(f"Ticket already used at {ticket.used_at:%Y-%m-%d %H:%M}")

        passenger = await db.get(Passenger, ticket.passenger_id)
        if passenger.boarding_status == BoardingStatus.NO_SHOW:
            raise BoardingNotAllowed("Passenger was marked as no-show")

        ticket.is_used = True
        ticket.used_at = utcnow()
        passenger.boarding_status = BoardingStatus.BOARDED
        effects.audit(
            TicketVerified(
                actor=str(actor.user_id),
                trip_id=trip.id,
                short_code=code,
                passenger_id=passenger.id,
                seat_number=passenger.seat_number,
            )
        )
        await db.flush()

        response = TicketVerifyResponse(
            message="Ticket verified. Passenger boarded.",
            short_code=code,
            trip_id=trip.id,
            booking_id=booking.id,
            passenger_id=passenger.id,
            passenger_name=ticket.passenger_name,
            seat_number=ticket.seat_number,
            used_at=ticket.used_at,
        )

    logger.info("ticket_verified", short_code=code, trip_id=response.trip_id, passenger_id=response.passenger_id)
    await dispatch_side_effects(database, effects)
    return response


async def get_boarding_checklist(db: AsyncSession, actor: Actor, trip_id: int) -> BoardingChecklistResponse:
    trip = await db.get(Trip, trip_id)
    if trip is None:
        raise NotFound(f"Trip {trip_id} not found")
    require_company_access(actor, trip.company_id)

    rows = (
        await db.execute(
            select(Passenger, Booking.is_replacement)
            .join(Booking, Passenger.booking_id == Booking.id)
            .where(Booking.trip_id == trip_id, Booking.status.in_(PAID_STATUSES))
            .order_by(Passenger.seat_number, Passenger.id)
        )
    ).all()
    tickets = {
        ticket.passenger_id: ticket
        for ticket in (await db.execute(select(Ticket).where(Ticket.trip_id == trip_id))).scalars().all()
    }

    passengers = []
    counts = {BoardingStatus.BOARDED: 0, BoardingStatus.PENDING: 0, BoardingStatus.NO_SHOW: 0}
    for passenger, is_replacement in rows:
        ticket = tickets.get(passenger.id)
        counts[passenger.boarding_status] += 1
        passengers.append(
            BoardingPassenger(
                passenger_id=passenger.id,
                booking_id=passenger.booking_id,
                name=passenger.name,
                phone=passenger.phone,
                seat_number=passenger.seat_number,
                boarding_status=passenger.boarding_status,
                is_replacement=is_replacement,
                ticket_code=ticket.short_code if ticket else None,
                ticket_used=bool(ticket and ticket.is_used),
            )
        )

    return BoardingChecklistResponse(
        trip_id=trip.id,
        status=trip.status,
        total_passengers=len(passengers),
        boarded=counts[BoardingStatus.BOARDED],
        pending=counts[BoardingStatus.PENDING],
        no_show=counts[BoardingStatus.NO_SHOW],
        no_show_count=trip.no_show_count,
        released_seats=trip.released_seats,
        replacements_sold=trip.replacements_sold,
        passengers=passengers,
    )
