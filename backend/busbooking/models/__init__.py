from busbooking.models.company import Company
from busbooking.models.user import User
from busbooking.models.trip import Trip, TripStatus
from busbooking.models.booking import Booking, BookingStatus, Passenger, BoardingStatus
from busbooking.models.ticket import Ticket
from busbooking.models.payment import Payment, PaymentStatus, PaymentMethod
from busbooking.models.sales import (
    SalesPerson, SalesReferral, SalesCommission, SalesStatus, CommissionTier, PayoutStatus,
)
from busbooking.models.audit import AuditLog, Notification

__all__ = [
    "Company", "User", "Trip", "TripStatus",
    "Booking", "BookingStatus", "Passenger", "BoardingStatus",
    "Ticket", "Payment", "PaymentStatus", "PaymentMethod",
    "SalesPerson", "SalesReferral", "SalesCommission", "SalesStatus", "CommissionTier", "PayoutStatus",
    "AuditLog", "Notification",
]
