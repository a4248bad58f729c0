"""
Seat ledger: the authoritative seat counters of a trip.

CONCURRENCY STRATEGY: Pessimistic row lock + guarded UPDATE
============================================================

Problem:
  Two requests read available_slots=1 (or "seat 7 is free", or "no pending
  booking yet") and both proceed to write. Result: overbooking, a shared
  seat, or a duplicate pending booking.

Solution:
  Every caller runs inside Database.transaction() and starts by locking the
  trip row:

    SELECT ... FROM trips WHERE id = :trip_id FOR UPDATE

  Everything read after the lock (occupied seats, the caller's pending
  booking, counters) stays valid until commit because every other writer on
  the same trip queues behind the same lock. SQLite has no row locks; there
  the BEGIN IMMEDIATE issued by Database serialises writers instead.

  The decrement itself is still a guarded UPDATE

    UPDATE trips SET available_slots = available_slots - :n, version = version + 1
    WHERE id = :trip_id AND available_slots >= :n

  so a caller that forgot the lock gets InsufficientSeats rather than a
  negative counter, and the CHECK constraints on the table are the last line.

Occupancy:
  A seat is occupied when a passenger holding it belongs to a non-cancelled
  booking and has not been marked NO_SHOW. No-show seats are sold again only
  through the released-seat pool (boarding_service), never through
  available_slots.
"""

from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.exceptions import InsufficientSeats, NotFound, SeatAlreadyTaken, ValidationFailed
from busbooking.core.logging import get_logger
from busbooking.core.metrics import record_ledger_operation
from busbooking.models.booking import BoardingStatus, Booking, BookingStatus, Passenger
from busbooking.models.trip import Trip
from busbooking.services.auto_halt import AutoHaltController
from busbooking.services.effects import SideEffects

logger = get_logger(__name__)


def allocate_seats(
    total_slots: int,
    occupied: Iterable[int],
    requested: Sequence[Optional[int]],
    preferred: Iterable[int] = (),
) -> list[int]:
    """
    Seat numbers for `len(requested)` passengers.

    Explicit entries are validated against the occupied set; None entries are
    filled first from `preferred` (seats the caller already held) and then
    with the lowest free seat numbers.
    """
    occupied = set(occupied)
    explicit = [seat for seat in requested if seat is not None]

    out_of_range = sorted({seat for seat in explicit if seat < 1 or seat > total_slots})
    if out_of_range:
        raise ValidationFailed(
            f"Seat(s) {', '.join(map(str, out_of_range))} out of range. Valid seats: 1-{total_slots}"
        )
    if len(set(explicit)) != len(explicit):
        raise ValidationFailed("The same seat was selected more than once")

    taken = sorted(seat for seat in explicit if seat in occupied)
    if taken:
        raise SeatAlreadyTaken(taken)

    blocked = occupied | set(explicit)
    missing = len(requested) - len(explicit)
    candidates = [seat for seat in preferred if 1 <= seat <= total_slots and seat not in blocked]
    candidates += [seat for seat in range(1, total_slots + 1) if seat not in blocked and seat not in candidates]
    if len(candidates) < missing:
        raise InsufficientSeats(len(requested), len(explicit) + len(candidates))

    fill = iter(candidates[:missing])
    return [seat if seat is not None else next(fill) for seat in requested]


async def load_occupied_seats(
    db: AsyncSession,
    trip_id: int,
    exclude_booking_id: Optional[int] = None,
) -> set[int]:
    stmt = (
        select(Passenger.seat_number)
        .join(Booking, Passenger.booking_id == Booking.id)
        .where(
            Booking.trip_id == trip_id,
            Booking.status != BookingStatus.CANCELLED,
            Passenger.boarding_status != BoardingStatus.NO_SHOW,
            Passenger.seat_number.is_not(None),
        )
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    result = await db.execute(stmt)
    return set(result.scalars().all())


class SeatLedger:
    """Ledger operations bound to one open transaction."""

    def __init__(
        self,
        db: AsyncSession,
        effects: SideEffects,
        auto_halt: Optional[AutoHaltController] = None,
    ):
        self.db = db
        self.effects = effects
        self.auto_halt = auto_halt or AutoHaltController(db, effects)

    async def lock_trip(self, trip_id: int) -> Trip:
        result = await self.db.execute(
            select(Trip)
            .where(Trip.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        trip = result.scalar_one_or_none()
        if trip is None:
            raise NotFound(f"Trip {trip_id} not found")
        return trip

    async def occupied_seats(self, trip_id: int, exclude_booking_id: Optional[int] = None) -> set[int]:
        return await load_occupied_seats(self.db, trip_id, exclude_booking_id)

    async def assign_seats(
        self,
        trip: Trip,
        requested: Sequence[Optional[int]],
        exclude_booking_id: Optional[int] = None,
        preferred: Iterable[int] = (),
    ) -> list[int]:
        occupied = await self.occupied_seats(trip.id, exclude_booking_id)
        return allocate_seats(trip.total_slots, occupied, requested, preferred)

    async def take(self, trip: Trip, count: int, triggered_by: str) -> None:
        """Decrement available_slots by `count`, then run the auto-halt rule."""
        if count <= 0:
            return
        if trip.available_slots < count:
            raise InsufficientSeats(count, trip.available_slots)

        result = await self.db.execute(
            update(Trip)
            .where(Trip.id == trip.id, Trip.available_slots >= count)
            .values(
                available_slots=Trip.available_slots - count,
                version=Trip.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.refresh(trip)
            raise InsufficientSeats(count, trip.available_slots)

        await self.db.refresh(trip)
        record_ledger_operation("take")
        self.effects.touch_trip(trip.id)
        logger.info(
            "seats_taken",
            trip_id=trip.id,
            count=count,
            available_slots=trip.available_slots,
            triggered_by=triggered_by,
        )

        await self.auto_halt.evaluate(trip, triggered_by)

    async def reserve(
        self,
        trip: Trip,
        requested: Sequence[Optional[int]],
        triggered_by: str,
    ) -> list[int]:
        """Assign seat numbers for a new sale and take them from the counter."""
        if trip.available_slots < len(requested):
            raise InsufficientSeats(len(requested), trip.available_slots)
        seats = await self.assign_seats(trip, requested)
        await self.take(trip, len(seats), triggered_by)
        return seats

    async def release(self, trip: Trip, count: int) -> int:
        """Give `count` seats back. Never exceeds total_slots; returns the number actually restored."""
        if count <= 0:
            return 0

        restored = count
        if trip.available_slots + count > trip.total_slots:
            restored = trip.total_slots - trip.available_slots
            record_ledger_operation("overflow")
            logger.error(
                "seat_release_overflow",
                trip_id=trip.id,
                requested=count,
                restored=restored,
                available_slots=trip.available_slots,
                total_slots=trip.total_slots,
            )

        trip.available_slots += restored
        trip.version += 1
        record_ledger_operation("release")
        self.effects.touch_trip(trip.id)
        logger.info("seats_released", trip_id=trip.id, count=restored, available_slots=trip.available_slots)

        self.auto_halt.on_release(trip)
        return restored
