"""
Trip endpoints: creation, state, seat map and online booking controls.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.security import Actor, get_current_staff
from busbooking.db.session import Database, get_database, get_db
from busbooking.schemas.trip import (
    AutoHaltSettingUpdate,
    BookingControlRequest,
    SeatMapResponse,
    TripCreate,
    TripResponse,
    TripStatusUpdate,
)
from busbooking.services import trip_service

router = APIRouter(prefix="/trips", tags=["Trips"])


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip_endpoint(
    trip_data: TripCreate,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """Schedule a trip. All seats start available."""
    return await trip_service.create_trip(database, actor, trip_data)


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip_endpoint(trip_id: int, db: AsyncSession = Depends(get_db)):
    """Current trip state, read straight from the database."""
    return await trip_service.get_trip(db, trip_id)


@router.get("/{trip_id}/seats", response_model=SeatMapResponse)
async def get_seat_map_endpoint(trip_id: int, db: AsyncSession = Depends(get_db)):
    """
    Occupied seat numbers for the seat picker.
    Cached in Redis and invalidated whenever the trip's ledger changes.
    """
    return await trip_service.get_seat_map(db, trip_id)


@router.post("/{trip_id}/status", response_model=TripResponse)
async def update_trip_status_endpoint(
    trip_id: int,
    body: TripStatusUpdate,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    return await trip_service.update_trip_status(database, actor, trip_id, body.status)


@router.post("/{trip_id}/booking-control", response_model=TripResponse)
async def booking_control_endpoint(
    trip_id: int,
    body: BookingControlRequest,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """
    Manually HALT or RESUME online booking. Resuming at or below the
    auto-halt threshold keeps auto-halt quiet until seats free up again.
    """
    return await trip_service.set_booking_control(database, actor, trip_id, body.action)


@router.put("/{trip_id}/auto-halt-setting", response_model=TripResponse)
async def trip_auto_halt_setting_endpoint(
    trip_id: int,
    body: AutoHaltSettingUpdate,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """Per-trip auto-halt bypass."""
    return await trip_service.set_trip_auto_halt_bypass(database, actor, trip_id, body.bypass_enabled)
