"""
Boarding endpoints: gate verification, no-show marking and the checklist.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.security import Actor, get_current_staff
from busbooking.db.session import Database, get_database, get_db
from busbooking.schemas.boarding import (
    BoardingChecklistResponse,
    NoShowRequest,
    NoShowResponse,
    TicketVerifyRequest,
    TicketVerifyResponse,
)
from busbooking.services.boarding_service import get_boarding_checklist, mark_no_shows, verify_ticket

router = APIRouter(tags=["Boarding"])


@router.post("/trips/{trip_id}/no-shows", response_model=NoShowResponse)
async def no_show_endpoint(
    trip_id: int,
    body: NoShowRequest,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """
    Mark passengers as no-shows after departure. Boarded or already flagged
    passengers are skipped and reported per passenger.
    """
    return await mark_no_shows(database, actor, trip_id, body.passenger_ids)


@router.get("/trips/{trip_id}/boarding", response_model=BoardingChecklistResponse)
async def boarding_checklist_endpoint(
    trip_id: int,
    actor: Actor = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    return await get_boarding_checklist(db, actor, trip_id)


@router.post("/tickets/verify", response_model=TicketVerifyResponse)
async def verify_ticket_endpoint(
    body: TicketVerifyRequest,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """Scan a ticket at the gate: marks it used and the passenger boarded."""
    return await verify_ticket(database, actor, body.short_code)
