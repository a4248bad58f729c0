"""
Booking endpoints: the customer's pending booking for a trip.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.security import Actor, get_current_actor
from busbooking.db.session import Database, get_database, get_db
from busbooking.schemas.booking import BookingCancelResponse, BookingCreate, BookingResponse
from busbooking.services.booking_service import (
    cancel_pending_booking,
    create_or_update_pending_booking,
    get_booking_for_actor,
    get_user_bookings,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    database: Database = Depends(get_database),
):
    """
    Create or update your pending booking for a trip.

    At most one pending booking exists per user and trip: calling this again
    before paying replaces the passenger list of the existing booking and
    adjusts the held seats by the difference.
    """
    return await create_or_update_pending_booking(
        database, actor.user_id, booking_data.trip_id, booking_data.passengers
    )


@router.get("", response_model=list[BookingResponse])
async def list_user_bookings(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user."""
    return await get_user_bookings(db, actor.user_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await get_booking_for_actor(db, booking_id, actor)


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    database: Database = Depends(get_database),
):
    """Cancel your pending booking and release its seats."""
    booking, released = await cancel_pending_booking(database, actor.user_id, booking_id)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
        seats_released=released,
    )
