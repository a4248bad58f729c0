"""
Pydantic schemas for staff operations: counter sales, replacement sales,
no-show marking, gate verification and the boarding checklist.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field


class WalkInPassenger(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field("", max_length=32)
    national_id: str = Field("", max_length=64)


class CounterSaleRequest(BaseModel):
    passenger_count: int = Field(1, ge=1, le=10)
    selected_seats: Optional[list[int]] = None
    passengers: list[WalkInPassenger] = []


class CounterSaleResponse(BaseModel):
    booking_id: int
    trip_id: int
    transaction_id: str
    seat_numbers: list[int]
    ticket_codes: list[str]
    ticket_total: Decimal
    commission: Decimal
    commission_vat: Decimal
    total_amount: Decimal
    available_slots: int
    booking_halted: bool
    manifest_ready: bool


class ReplacementSaleRequest(BaseModel):
    passenger_count: int = Field(1, ge=1, le=10)
    selected_seats: Optional[list[int]] = None
    passengers: list[WalkInPassenger] = []


class ReplacementSaleResponse(BaseModel):
    booking_id: int
    trip_id: int
    transaction_id: str
    seat_numbers: list[int]
    replaced_passenger_ids: list[int]
    ticket_codes: list[str]
    total_amount: Decimal
    released_seats: int
    replacements_sold: int
    available_slots: int


class NoShowRequest(BaseModel):
    passenger_ids: list[int] = Field(..., min_length=1, max_length=200)


class NoShowOutcome(BaseModel):
    passenger_id: int
    seat_number: Optional[int]
    outcome: Literal["MARKED", "SKIPPED"]
    reason: Optional[str] = None


class NoShowResponse(BaseModel):
    trip_id: int
    marked: int
    skipped: int
    outcomes: list[NoShowOutcome]
    no_show_count: int
    released_seats: int


class TicketVerifyRequest(BaseModel):
    short_code: str = Field(..., min_length=4, max_length=16)


class TicketVerifyResponse(BaseModel):
    valid: bool = True
    message: str
    short_code: str
    trip_id: int
    booking_id: int
    passenger_id: int
    passenger_name: str
    seat_number: Optional[int]
    used_at: datetime


class BoardingPassenger(BaseModel):
    passenger_id: int
    booking_id: int
    name: str
    phone: str
    seat_number: Optional[int]
    boarding_status: str
    is_replacement: bool
    ticket_code: Optional[str]
    ticket_used: bool


class BoardingChecklistResponse(BaseModel):
    trip_id: int
    status: str
    total_passengers: int
    boarded: int
    pending: int
    no_show: int
    no_show_count: int
    released_seats: int
    replacements_sold: int
    passengers: list[BoardingPassenger]
