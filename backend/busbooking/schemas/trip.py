"""
Pydantic schemas for trip-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field


class TripCreate(BaseModel):
    company_id: Optional[int] = None  # required for super admins, implied for company staff
    origin: str = Field(..., min_length=1, max_length=120)
    destination: str = Field(..., min_length=1, max_length=120)
    departure_time: datetime
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    total_slots: int = Field(..., gt=0, le=100)


class TripResponse(BaseModel):
    id: int
    company_id: int
    origin: str
    destination: str
    departure_time: datetime
    price: Decimal
    total_slots: int
    available_slots: int
    status: str
    booking_halted: bool
    admin_resumed_from_auto_halt: bool
    auto_resume_enabled: bool
    manifest_ready: bool
    no_show_count: int
    released_seats: int
    replacements_sold: int

    model_config = {"from_attributes": True}


class SeatMapResponse(BaseModel):
    trip_id: int
    total_slots: int
    available_slots: int
    occupied_seats: list[int]
    booking_halted: bool
    cached: bool = False


class TripStatusUpdate(BaseModel):
    status: Literal["SCHEDULED", "BOARDING", "DEPARTED", "COMPLETED", "CANCELLED"]


class BookingControlRequest(BaseModel):
    action: Literal["HALT", "RESUME"]


class AutoHaltSettingUpdate(BaseModel):
    bypass_enabled: bool


class CompanyAutoHaltResponse(BaseModel):
    company_id: int
    disable_auto_halt_globally: bool
