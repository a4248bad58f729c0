"""
Staff sales endpoints: counter (walk-in) sales and post-departure
replacement sales of no-show seats.
"""

from fastapi import APIRouter, Depends, status

from busbooking.core.security import Actor, get_current_staff
from busbooking.db.session import Database, get_database
from busbooking.schemas.boarding import (
    CounterSaleRequest,
    CounterSaleResponse,
    ReplacementSaleRequest,
    ReplacementSaleResponse,
)
from busbooking.services.boarding_service import sell_replacement_tickets
from busbooking.services.counter_sale_service import sell_counter_tickets

router = APIRouter(prefix="/trips", tags=["Staff sales"])


@router.post("/{trip_id}/counter-sales", response_model=CounterSaleResponse, status_code=status.HTTP_201_CREATED)
async def counter_sale_endpoint(
    trip_id: int,
    body: CounterSaleRequest,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """
    Sell seats at the counter. Paid on the spot, no platform fee, and not
    blocked when online booking is halted.
    """
    return await sell_counter_tickets(
        database,
        actor,
        trip_id,
        body.passenger_count,
        selected_seats=body.selected_seats,
        passengers=body.passengers,
    )


@router.post(
    "/{trip_id}/replacement-sales",
    response_model=ReplacementSaleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def replacement_sale_endpoint(
    trip_id: int,
    body: ReplacementSaleRequest,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """Resell seats released by no-shows. Departed trips only."""
    return await sell_replacement_tickets(
        database,
        actor,
        trip_id,
        body.passenger_count,
        selected_seats=body.selected_seats,
        passengers=body.passengers,
    )
