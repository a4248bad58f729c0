"""
Audit event payloads.

Each audited action has its own model; `AuditEvent` is the tagged union
discriminated by `action`. Events are built as typed objects inside the
services and serialised to JSON only when written to the audit_logs table.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _AuditBase(BaseModel):
    actor: str = "SYSTEM"  # user id as string, or SYSTEM
    trip_id: Optional[int] = None
    occurred_at: datetime = Field(default_factory=_now)


class AutoHaltTriggered(_AuditBase):
    action: Literal["AUTO_HALT_LOW_SLOTS"] = "AUTO_HALT_LOW_SLOTS"
    available_slots: int
    total_slots: int
    threshold: int
    triggered_by: str


class BookingHaltToggled(_AuditBase):
    action: Literal["BOOKING_HALTED_MANUAL", "BOOKING_RESUMED_MANUAL"]
    available_slots: int
    total_slots: int
    suppress_auto_halt: bool = False


class AutoHaltSettingChanged(_AuditBase):
    action: Literal["AUTO_HALT_SETTING_CHANGED"] = "AUTO_HALT_SETTING_CHANGED"
    scope: Literal["TRIP", "COMPANY"]
    company_id: Optional[int] = None
    bypass_enabled: bool


class PaymentSucceeded(_AuditBase):
    action: Literal["PAYMENT_SUCCESS"] = "PAYMENT_SUCCESS"
    booking_id: int
    transaction_id: str
    method: str
    amount: Decimal
    ticket_codes: list[str]


class PaymentFailed(_AuditBase):
    action: Literal["PAYMENT_FAILED"] = "PAYMENT_FAILED"
    booking_id: int
    transaction_id: str
    seats_released: int
    reason: str


class CounterSale(_AuditBase):
    action: Literal["CASHIER_TICKET_SALE"] = "CASHIER_TICKET_SALE"
    booking_id: int
    seat_numbers: list[int]
    amount: Decimal


class ReplacementSale(_AuditBase):
    action: Literal["REPLACEMENT_TICKET_SALE"] = "REPLACEMENT_TICKET_SALE"
    booking_id: int
    seat_numbers: list[int]
    replaced_passenger_ids: list[int]
    amount: Decimal
    released_seats_remaining: int


class PassengersMarkedNoShow(_AuditBase):
    action: Literal["PASSENGER_NO_SHOW"] = "PASSENGER_NO_SHOW"
    passenger_ids: list[int]
    seat_numbers: list[Optional[int]]
    released_seats: int


class ManifestReady(_AuditBase):
    action: Literal["MANIFEST_READY"] = "MANIFEST_READY"
    total_slots: int


class TicketVerified(_AuditBase):
    action: Literal["TICKET_VERIFIED"] = "TICKET_VERIFIED"
    short_code: str
    passenger_id: int
    seat_number: Optional[int]


class BookingCancelled(_AuditBase):
    action: Literal["BOOKING_CANCELLED"] = "BOOKING_CANCELLED"
    booking_id: int
    seats_released: int


AuditEvent = Annotated[
    Union[
        AutoHaltTriggered,
        BookingHaltToggled,
        AutoHaltSettingChanged,
        PaymentSucceeded,
        PaymentFailed,
        CounterSale,
        ReplacementSale,
        PassengersMarkedNoShow,
        ManifestReady,
        TicketVerified,
        BookingCancelled,
    ],
    Field(discriminator="action"),
]

audit_event_adapter: TypeAdapter[AuditEvent] = TypeAdapter(AuditEvent)


def parse_audit_event(raw: str) -> AuditEvent:
    return audit_event_adapter.validate_json(raw)
