"""
Booking engine: a customer's draft (PENDING) booking for a trip.

CONCURRENCY STRATEGY: lookup-and-write in one locked transaction
================================================================

Problem:
  A double-tapped "Book" button sends two requests for the same user and
  trip. Both look for a pending booking, both see none, both create one.
  Result: two pending bookings, twice the seats held.

Solution:
  1. Database.transaction() opens a scoped transaction with deadline
  2. SeatLedger.lock_trip() takes the trip row lock
  3. only then look up the user's PENDING booking for that trip
  4. update it in place, or reserve seats and create it
  5. commit; any error rolls back seats and booking together

  The second request blocks on the trip lock and, once it gets it, sees the
  first request's booking and updates it instead of creating another.

  The partial unique index uq_pending_booking_per_user_trip is the safety
  net: if a write ever slips past the lock, the INSERT fails with an
  IntegrityError and we retry the whole transaction (it will then take the
  "update" branch), up to MAX_RETRY_ATTEMPTS times.

A halted trip refuses new bookings and growth of an existing one; shrinking or
editing a pending booking stays possible. A paid booking does not block a new
pending booking for the same trip.
"""

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.config import get_settings
from busbooking.core.exceptions import (
    BookingError,
    BookingHalted,
    ConcurrentUpdate,
    InvalidStatusTransition,
    NotFound,
    TripNotBookable,
    ValidationFailed,
)
from busbooking.core.logging import get_logger
from busbooking.core.metrics import record_booking_attempt
from busbooking.core.security import Actor
from busbooking.db.session import Database
from busbooking.models.booking import Booking, BookingStatus, Passenger
from busbooking.models.payment import PaymentStatus
from busbooking.models.trip import Trip, TripStatus
from busbooking.schemas.audit import BookingCancelled
from busbooking.schemas.booking import PassengerIn
from busbooking.services.commission import calculate_booking_amounts
from busbooking.services.effects import SideEffects, dispatch_side_effects
from busbooking.services.seat_ledger import SeatLedger

logger = get_logger(__name__)

MAX_RETRY_ATTEMPTS = 3


async def load_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    """Fresh read of a booking with passengers, tickets and payments loaded."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def ensure_trip_sellable(trip: Trip) -> None:
    if trip.status not in TripStatus.SELLABLE:
        raise TripNotBookable(
            f"Trip {trip.id} is {trip.status.lower()} and no longer accepts bookings"
        )


def _build_passengers(passengers: Sequence[PassengerIn], seats: Sequence[int]) -> list[Passenger]:
    return [
        Passenger(
            name=data.name,
            national_id=data.national_id,
            phone=data.phone,
            special_needs=data.special_needs,
            seat_number=seat,
        )
        for data, seat in zip(passengers, seats)
    ]


async def _find_pending_booking(db: AsyncSession, user_id: int, trip_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(
            Booking.user_id == user_id,
            Booking.trip_id == trip_id,
            Booking.status == BookingStatus.PENDING,
        )
    )
    return result.scalar_one_or_none()


async def _apply_pending_booking(
    db: AsyncSession,
    effects: SideEffects,
    user_id: int,
    trip_id: int,
    passengers: Sequence[PassengerIn],
) -> tuple[Booking, str]:
    ledger = SeatLedger(db, effects)
    trip = await ledger.lock_trip(trip_id)
    ensure_trip_sellable(trip)

    requested = [p.seat_number for p in passengers]
    amounts = calculate_booking_amounts(trip.price, len(passengers))

    existing = await _find_pending_booking(db, user_id, trip_id)
    if existing is None:
        if trip.booking_halted:
            raise BookingHalted(trip.id)

        seats = await ledger.reserve(trip, requested, triggered_by="online_booking")
        booking = Booking(
            trip_id=trip.id,
            user_id=user_id,
            status=BookingStatus.PENDING,
            total_amount=amounts.total_amount,
            commission=amounts.commission.base_commission,
            commission_vat=amounts.commission.vat,
            passengers=_build_passengers(passengers, seats),
            tickets=[],
            payments=[],
        )
        db.add(booking)
        await db.flush()
        return booking, "created"

    delta = len(passengers) - existing.seat_count
    if delta > 0 and trip.booking_halted:
        raise BookingHalted(trip.id)

    previous_seats = [p.seat_number for p in existing.passengers if p.seat_number is not None]
    seats = await ledger.assign_seats(
        trip,
        requested,
        exclude_booking_id=existing.id,
        preferred=previous_seats,
    )
    existing.passengers = _build_passengers(passengers, seats)
    if delta > 0:
        await ledger.take(trip, delta, triggered_by="online_booking_update")
    elif delta < 0:
        await ledger.release(trip, -delta)

    existing.total_amount = amounts.total_amount
    existing.commission = amounts.commission.base_commission
    existing.commission_vat = amounts.commission.vat
    await db.flush()
    return existing, "updated"


async def create_or_update_pending_booking(
    database: Database,
    user_id: int,
    trip_id: int,
    passengers: Sequence[PassengerIn],
) -> Booking:
    """
    Create the user's pending booking for a trip, or update the one that
    already exists. Seats and booking commit together or not at all.
    """
    max_passengers = get_settings().MAX_PASSENGERS_PER_BOOKING
    if not passengers or len(passengers) > max_passengers:
        raise ValidationFailed(f"A booking must have between 1 and {max_passengers} passengers")

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        effects = SideEffects()
        try:
            async with database.transaction() as db:
                booking, outcome = await _apply_pending_booking(db, effects, user_id, trip_id, passengers)
                booking = await load_booking(db, booking.id)
        except IntegrityError as e:
            record_booking_attempt("retried")
            logger.info(
                "booking_retry",
                user_id=user_id,
                trip_id=trip_id,
                attempt=attempt,
                reason="pending_booking_conflict",
                error=str(e.orig),
            )
            if attempt == MAX_RETRY_ATTEMPTS:
                raise ConcurrentUpdate() from e
            continue
        except BookingError as e:
            record_booking_attempt("rejected")
            logger.warning(
                "booking_rejected",
                user_id=user_id,
                trip_id=trip_id,
                passengers=len(passengers),
                code=e.code,
                reason=e.message,
            )
            raise

        record_booking_attempt(outcome)
        logger.info(
            f"booking_{outcome}",
            booking_id=booking.id,
            user_id=user_id,
            trip_id=trip_id,
            seats=[p.seat_number for p in booking.passengers],
            total_amount=str(booking.total_amount),
            attempt=attempt,
        )
        await dispatch_side_effects(database, effects)
        return booking

    # Should not reach here, but just in case
    raise ConcurrentUpdate()


async def cancel_pending_booking(database: Database, user_id: int, booking_id: int) -> tuple[Booking, int]:
    """Customer cancels their own PENDING booking; seats go back in the same transaction."""
    effects = SideEffects()
    async with database.transaction() as db:
        booking = await db.get(Booking, booking_id)
        if booking is None or booking.user_id != user_id:
            raise NotFound(f"Booking {booking_id} not found")

        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(booking.trip_id)
        booking = await load_booking(db, booking_id)

        if booking.status != BookingStatus.PENDING:
            raise InvalidStatusTransition(
                f"Only pending bookings can be cancelled (booking is {booking.status.lower()})"
            )

        booking.status = BookingStatus.CANCELLED
        for payment in booking.payments:
            if payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.FAILED
        released = await ledger.release(trip, booking.seat_count)

        effects.audit(
            BookingCancelled(
                actor=str(user_id),
                trip_id=trip.id,
                booking_id=booking.id,
                seats_released=released,
            )
        )
        await db.flush()
        booking = await load_booking(db, booking_id)

    logger.info("booking_cancelled", booking_id=booking_id, user_id=user_id, seats_released=released)
    await dispatch_side_effects(database, effects)
    return booking, released


async def get_user_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    """Get all bookings for a user."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def get_booking_for_actor(db: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    """Owners see their bookings; staff see bookings on their company's trips."""
    booking = await load_booking(db, booking_id)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found")
    if booking.user_id == actor.user_id:
        return booking

    if actor.is_staff:
        trip = await db.get(Trip, booking.trip_id)
        if trip is not None and actor.can_manage_company(trip.company_id):
            return booking

    raise NotFound(f"Booking {booking_id} not found")
