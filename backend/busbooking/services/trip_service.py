"""
Trip management: creation, status transitions, seat map and the online
booking controls (manual HALT/RESUME, auto-halt bypass toggles).
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.exceptions import AccessDenied, InvalidStatusTransition, NotFound, ValidationFailed
from busbooking.core.logging import get_logger
from busbooking.core.security import COMPANY_ADMIN, SUPER_ADMIN, Actor, require_company_access
from busbooking.db.session import Database
from busbooking.models.booking import Booking, BookingStatus
from busbooking.models.company import Company
from busbooking.models.payment import PaymentStatus
from busbooking.models.trip import Trip, TripStatus
from busbooking.schemas.audit import AutoHaltSettingChanged, BookingCancelled
from busbooking.schemas.trip import SeatMapResponse, TripCreate
from busbooking.services.cache_service import get_cached_seat_map, set_cached_seat_map
from busbooking.services.effects import SideEffects, dispatch_side_effects
from busbooking.services.seat_ledger import SeatLedger, load_occupied_seats

logger = get_logger(__name__)

ADMIN_ROLES = (COMPANY_ADMIN, SUPER_ADMIN)


def _ensure_admin_for(actor: Actor, company_id: int) -> None:
    if actor.role not in ADMIN_ROLES or not actor.can_manage_company(company_id):
        raise AccessDenied("Only the company's admins can do this")


async def create_trip(database: Database, actor: Actor, data: TripCreate) -> Trip:
    company_id = data.company_id if actor.role == SUPER_ADMIN else actor.company_id
    if company_id is None:
        raise ValidationFailed("company_id is required")
    _ensure_admin_for(actor, company_id)

    async with database.transaction() as db:
        if await db.get(Company, company_id) is None:
            raise NotFound(f"Company {company_id} not found")
        trip = Trip(
            company_id=company_id,
            origin=data.origin,
            destination=data.destination,
            departure_time=data.departure_time,
            price=data.price,
            total_slots=data.total_slots,
            available_slots=data.total_slots,
            status=TripStatus.SCHEDULED,
        )
        db.add(trip)
        await db.flush()
        await db.refresh(trip)

    logger.info(
        "trip_created",
        trip_id=trip.id,
        company_id=company_id,
        route=f"{trip.origin}->{trip.destination}",
        total_slots=trip.total_slots,
    )
    return trip


async def get_trip(db: AsyncSession, trip_id: int) -> Trip:
    trip = await db.get(Trip, trip_id)
    if trip is None:
        raise NotFound(f"Trip {trip_id} not found")
    return trip


async def get_seat_map(db: AsyncSession, trip_id: int) -> SeatMapResponse:
    """Seat map for the booking page. Served from Redis when possible."""
    cached, generation = await get_cached_seat_map(trip_id)
    if cached is not None:
        return SeatMapResponse(**cached, cached=True)

    trip = await get_trip(db, trip_id)
    occupied = await load_occupied_seats(db, trip_id)
    seat_map = SeatMapResponse(
        trip_id=trip.id,
        total_slots=trip.total_slots,
        available_slots=trip.available_slots,
        occupied_seats=sorted(occupied),
        booking_halted=trip.booking_halted,
    )
    await set_cached_seat_map(trip_id, seat_map.model_dump(exclude={"cached"}), generation)
    return seat_map


async def update_trip_status(database: Database, actor: Actor, trip_id: int, new_status: str) -> Trip:
    """
    Move a trip along SCHEDULED -> BOARDING -> DEPARTED -> COMPLETED, or cancel it.
    Cancelling a trip cancels its pending bookings and gives their seats back.
    """
    effects = SideEffects()
    async with database.transaction() as db:
        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(trip_id)
        require_company_access(actor, trip.company_id)

        if new_status not in TripStatus.TRANSITIONS[trip.status]:
            raise InvalidStatusTransition(
                f"Cannot change trip status from {trip.status} to {new_status}"
            )
        previous = trip.status
        trip.status = new_status
        effects.touch_trip(trip.id)

        if new_status == TripStatus.CANCELLED:
            pending = (
                await db.execute(
                    select(Booking).where(Booking.trip_id == trip.id, Booking.status == BookingStatus.PENDING)
                )
            ).scalars().all()
            for booking in pending:
                booking.status = BookingStatus.CANCELLED
                for payment in booking.payments:
                    if payment.status == PaymentStatus.PENDING:
                        payment.status = PaymentStatus.FAILED
                released = await ledger.release(trip, booking.seat_count)
                effects.audit(
                    BookingCancelled(
                        actor=str(actor.user_id),
                        trip_id=trip.id,
                        booking_id=booking.id,
                        seats_released=released,
                    )
                )
                effects.notify(
                    booking.user_id,
                    f"Trip {trip.origin} -> {trip.destination} was cancelled. Your unpaid booking was cancelled.",
                )
        await db.flush()

    logger.info("trip_status_changed", trip_id=trip_id, from_status=previous, to_status=new_status)
    await dispatch_side_effects(database, effects)
    return trip


async def set_booking_control(database: Database, actor: Actor, trip_id: int, action: str) -> Trip:
    """Manual HALT / RESUME of online booking."""
    effects = SideEffects()
    async with database.transaction() as db:
        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(trip_id)
        require_company_access(actor, trip.company_id)

        if action == "HALT":
            ledger.auto_halt.halt(trip, actor=str(actor.user_id))
        else:
            ledger.auto_halt.resume(trip, actor=str(actor.user_id))
        effects.touch_trip(trip.id)
        await db.flush()

    await dispatch_side_effects(database, effects)
    return trip


async def set_trip_auto_halt_bypass(database: Database, actor: Actor, trip_id: int, enabled: bool) -> Trip:
    effects = SideEffects()
    async with database.transaction() as db:
        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(trip_id)
        require_company_access(actor, trip.company_id)

        trip.auto_resume_enabled = enabled
        effects.audit(
            AutoHaltSettingChanged(
                actor=str(actor.user_id),
                trip_id=trip.id,
                scope="TRIP",
                company_id=trip.company_id,
                bypass_enabled=enabled,
            )
        )
        await db.flush()

    logger.info("trip_auto_halt_bypass_changed", trip_id=trip_id, bypass_enabled=enabled)
    await dispatch_side_effects(database, effects)
    return trip


async def set_company_auto_halt_bypass(database: Database, actor: Actor, company_id: int, enabled: bool) -> Company:
    _ensure_admin_for(actor, company_id)
    effects = SideEffects()
    async with database.transaction() as db:
        company = await db.get(Company, company_id)
        if company is None:
            raise NotFound(f"Company {company_id} not found")

        company.disable_auto_halt_globally = enabled
        effects.audit(
            AutoHaltSettingChanged(
                actor=str(actor.user_id),
                scope="COMPANY",
                company_id=company.id,
                bypass_enabled=enabled,
            )
        )
        await db.flush()

    logger.info("company_auto_halt_bypass_changed", company_id=company_id, bypass_enabled=enabled)
    await dispatch_side_effects(database, effects)
    return company
