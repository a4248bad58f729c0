"""
Counter (walk-in) sales by company staff.

Differences from the online booking engine:
- no pending-booking dedup: every sale is its own booking
- seats may be chosen explicitly or auto-assigned
- no platform fee (commission = VAT = 0)
- paid immediately: booking PAID, CASH payment SUCCESS and tickets issued in
  the same transaction that takes the seats
- not blocked by auto-halt (auto-halt is still evaluated after the decrement)

When a sale takes the last seat the trip's manifest is flagged ready, once.
"""

import uuid
from typing import Optional, Sequence

from busbooking.core.exceptions import AccessDenied, ValidationFailed
from busbooking.core.logging import get_logger
from busbooking.core.metrics import counter_sales, record_settlement
from busbooking.core.security import Actor
from busbooking.db.session import Database
from busbooking.models.booking import Booking, BookingStatus, Passenger
from busbooking.models.payment import Payment, PaymentMethod, PaymentStatus
from busbooking.models.trip import Trip
from busbooking.schemas.audit import CounterSale, ManifestReady
from busbooking.schemas.boarding import CounterSaleResponse, WalkInPassenger
from busbooking.services.booking_service import ensure_trip_sellable
from busbooking.services.commission import calculate_booking_amounts
from busbooking.services.effects import SideEffects, dispatch_side_effects
from busbooking.services.seat_ledger import SeatLedger
from busbooking.services.ticket_service import issue_tickets

logger = get_logger(__name__)


def validate_staff_sale(
    passenger_count: int,
    selected_seats: Optional[Sequence[int]],
    passengers: Sequence[WalkInPassenger],
) -> list[Optional[int]]:
    """Shared request checks for counter and replacement sales; returns the seat request list."""
    if selected_seats and len(selected_seats) != passenger_count:
        raise ValidationFailed(
            f"Selected {len(selected_seats)} seat(s) for {passenger_count} passenger(s)"
        )
    if passengers and len(passengers) != passenger_count:
        raise ValidationFailed(
            f"Got {len(passengers)} passenger record(s) for {passenger_count} passenger(s)"
        )
    if selected_seats:
        return list(selected_seats)
    return [None] * passenger_count


def build_walk_in_passengers(
    passengers: Sequence[WalkInPassenger],
    seats: Sequence[int],
    label: str,
    boarding_status: Optional[str] = None,
) -> list[Passenger]:
    built = []
    for index, seat in enumerate(seats):
        data = passengers[index] if passengers else None
        passenger = Passenger(
            name=data.name if data else f"{label} {index + 1}",
            phone=data.phone if data else "",
            national_id=data.national_id if data else "",
            seat_number=seat,
        )
        if boarding_status is not None:
            passenger.boarding_status = boarding_status
        built.append(passenger)
    return built


def mark_manifest_ready_if_full(trip: Trip, effects: SideEffects) -> bool:
    if trip.available_slots != 0 or trip.manifest_ready:
        return False
    trip.manifest_ready = True
    effects.audit(ManifestReady(trip_id=trip.id, total_slots=trip.total_slots))
    logger.info("manifest_ready", trip_id=trip.id, total_slots=trip.total_slots)
    return True


async def sell_counter_tickets(
    database: Database,
    actor: Actor,
    trip_id: int,
    passenger_count: int,
    selected_seats: Optional[Sequence[int]] = None,
    passengers: Sequence[WalkInPassenger] = (),
) -> CounterSaleResponse:
    if not actor.is_staff:
        raise AccessDenied("Only company staff can sell counter tickets")
    requested = validate_staff_sale(passenger_count, selected_seats, passengers)

    effects = SideEffects()
    async with database.transaction() as db:
        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(trip_id)
        if not actor.can_manage_company(trip.company_id):
            raise AccessDenied("Trip belongs to another company")
        ensure_trip_sellable(trip)

        seats = await ledger.reserve(trip, requested, triggered_by="counter_sale")
        amounts = calculate_booking_amounts(trip.price, passenger_count, counter_sale=True)

        booking = Booking(
            trip_id=trip.id,
            user_id=actor.user_id,
            status=BookingStatus.PAID,
            total_amount=amounts.total_amount,
            commission=amounts.commission.base_commission,
            commission_vat=amounts.commission.vat,
            is_quick_ticket=True,
            passengers=build_walk_in_passengers(passengers, seats, "Walk-in passenger"),
            tickets=[],
            payments=[],
        )
        db.add(booking)
        await db.flush()

        transaction_id = f"CASH-{booking.id}-{uuid.uuid4().hex[:8].upper()}"
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
        mark_manifest_ready_if_full(trip, effects)

        effects.audit(
            CounterSale(
                actor=str(actor.user_id),
                trip_id=trip.id,
                booking_id=booking.id,
                seat_numbers=seats,
                amount=amounts.total_amount,
            )
        )
        await db.flush()

        result = CounterSaleResponse(
            booking_id=booking.id,
            trip_id=trip.id,
            transaction_id=transaction_id,
            seat_numbers=seats,
            ticket_codes=[ticket.short_code for ticket in tickets],
            ticket_total=amounts.ticket_total,
            commission=amounts.commission.base_commission,
            commission_vat=amounts.commission.vat,
            total_amount=amounts.total_amount,
            available_slots=trip.available_slots,
            booking_halted=trip.booking_halted,
            manifest_ready=trip.manifest_ready,
        )

    counter_sales.labels(kind="counter").inc()
    record_settlement("cash", "success")
    logger.info(
        "counter_sale_completed",
        booking_id=result.booking_id,
        trip_id=trip_id,
        seats=result.seat_numbers,
        available_slots=result.available_slots,
    )
    await dispatch_side_effects(database, effects)
    return result
