"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from busbooking.schemas.payment import PaymentResponse


class PassengerIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    national_id: str = Field("", max_length=64)
    phone: str = Field("", max_length=32)
    special_needs: Optional[str] = Field(None, max_length=255)
    seat_number: Optional[int] = Field(None, gt=0)  # self-service seat selection


class BookingCreate(BaseModel):
    trip_id: int
    passengers: list[PassengerIn] = Field(..., min_length=1, max_length=10)


class PassengerResponse(BaseModel):
    id: int
    name: str
    national_id: str
    phone: str
    special_needs: Optional[str]
    seat_number: Optional[int]
    boarding_status: str

    model_config = {"from_attributes": True}


class TicketResponse(BaseModel):
    id: int
    passenger_id: int
    passenger_name: str
    seat_number: Optional[int]
    short_code: str
    qr_code: str
    is_used: bool
    used_at: Optional[datetime]

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    trip_id: int
    user_id: int
    status: str
    total_amount: Decimal
    commission: Decimal
    commission_vat: Decimal
    is_quick_ticket: bool
    is_replacement: bool
    replaced_passenger_id: Optional[int]
    passengers: list[PassengerResponse]
    tickets: list[TicketResponse] = []
    payments: list[PaymentResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: str
    seats_released: int
