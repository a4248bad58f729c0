from busbooking.schemas.trip import (
    TripCreate, TripResponse, SeatMapResponse, TripStatusUpdate,
    BookingControlRequest, AutoHaltSettingUpdate, CompanyAutoHaltResponse,
)
from busbooking.schemas.booking import (
    PassengerIn, BookingCreate, BookingResponse, BookingCancelResponse,
    PassengerResponse, TicketResponse,
)
from busbooking.schemas.payment import (
    PaymentCreate, PaymentResponse, PaymentResult, TelebirrCallback, WebhookAck,
)
from busbooking.schemas.boarding import (
    WalkInPassenger, CounterSaleRequest, CounterSaleResponse,
    ReplacementSaleRequest, ReplacementSaleResponse,
    NoShowRequest, NoShowOutcome, NoShowResponse,
    TicketVerifyRequest, TicketVerifyResponse,
    BoardingPassenger, BoardingChecklistResponse,
)
from busbooking.schemas.audit import AuditEvent, parse_audit_event

__all__ = [
    "TripCreate", "TripResponse", "SeatMapResponse", "TripStatusUpdate",
    "BookingControlRequest", "AutoHaltSettingUpdate", "CompanyAutoHaltResponse",
    "PassengerIn", "BookingCreate", "BookingResponse", "BookingCancelResponse",
    "PassengerResponse", "TicketResponse",
    "PaymentCreate", "PaymentResponse", "PaymentResult", "TelebirrCallback", "WebhookAck",
    "WalkInPassenger", "CounterSaleRequest", "CounterSaleResponse",
    "ReplacementSaleRequest", "ReplacementSaleResponse",
    "NoShowRequest", "NoShowOutcome", "NoShowResponse",
    "TicketVerifyRequest", "TicketVerifyResponse",
    "BoardingPassenger", "BoardingChecklistResponse",
    "AuditEvent", "parse_audit_event",
]
