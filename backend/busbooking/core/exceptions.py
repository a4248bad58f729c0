"""
Domain errors raised by the booking and settlement services.

Every error is an HTTPException so services can raise them directly and the
route layer stays thin. The detail body is always {"code": ..., "message": ...}.

Taxonomy:
  Capacity   - a true race loser (InsufficientSeats, SeatAlreadyTaken,
               InsufficientReleasedSeats). Never retried automatically.
  Policy     - a business-rule refusal (BookingHalted, TripNotBookable,
               AmountMismatch, ...).
  Transient  - the whole transaction rolled back; the caller may retry.

Integrity cases (duplicate pending booking, replayed webhook) are not errors:
the services resolve them to the existing record.
"""

from typing import Optional

from fastapi import HTTPException, status


class BookingError(HTTPException):
    code = "BOOKING_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, headers: Optional[dict] = None):
        self.message = message
        super().__init__(
            status_code=type(self).status_code,
            detail={"code": self.code, "message": message},
            headers=headers,
        )


# Capacity

class InsufficientSeats(BookingError):
    code = "INSUFFICIENT_SEATS"

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        plural = "s" if available != 1 else ""
        super().__init__(
            f"Not enough seats available. Requested {requested}, only {available} seat{plural} left."
        )


class SeatAlreadyTaken(BookingError):
    code = "SEAT_ALREADY_TAKEN"

    def __init__(self, seats: list[int]):
        self.seats = seats
        joined = ", ".join(str(s) for s in seats)
        super().__init__(f"Seat(s) {joined} already taken. Please select another seat.")


class InsufficientReleasedSeats(BookingError):
    code = "INSUFFICIENT_RELEASED_SEATS"

    def __init__(self, requested: int, released: int):
        self.requested = requested
        self.released = released
        super().__init__(
            f"Not enough released seats. Available: {released}, requested: {requested}"
        )


# Policy

class BookingHalted(BookingError):
    code = "BOOKING_HALTED"

    def __init__(self, trip_id: int):
        super().__init__(f"Online booking is currently halted for trip {trip_id}")


class TripNotBookable(BookingError):
    code = "TRIP_NOT_BOOKABLE"


class AmountMismatch(BookingError):
    code = "AMOUNT_MISMATCH"


class BookingNotPayable(BookingError):
    code = "BOOKING_NOT_PAYABLE"


class BoardingNotAllowed(BookingError):
    code = "BOARDING_NOT_ALLOWED"


class InvalidStatusTransition(BookingError):
    code = "INVALID_STATUS_TRANSITION"


class ValidationFailed(BookingError):
    code = "VALIDATION_ERROR"


# Lookup / access

class NotFound(BookingError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class AccessDenied(BookingError):
    code = "ACCESS_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidSignature(BookingError):
    code = "INVALID_SIGNATURE"
    status_code = status.HTTP_401_UNAUTHORIZED


class WebhookExpired(BookingError):
    code = "REQUEST_EXPIRED"
    status_code = status.HTTP_401_UNAUTHORIZED


# Transient

class TransactionTimeout(BookingError):
    code = "TRANSACTION_TIMEOUT"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Operation did not complete within {timeout:g}s and was rolled back. Please retry.",
            headers={"Retry-After": "1"},
        )


class ProviderUnavailable(BookingError):
    code = "PROVIDER_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ConcurrentUpdate(BookingError):
    code = "CONCURRENT_UPDATE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Booking failed due to high demand. Please try again."):
        super().__init__(message, headers={"Retry-After": "1"})
