"""
Booking and Passenger models.

Key design decisions:
- Partial unique index on (user_id, trip_id) WHERE status = 'PENDING' backs the
  "one pending booking per user per trip" rule at the database level
- Bookings are never deleted (financial record); cancellation is a status change
- Passenger seat numbers are unique per trip among seat-holding passengers;
  that set spans bookings, so it is enforced under the trip row lock rather
  than by an index
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Numeric, ForeignKey, Index, CheckConstraint, text,
)
from sqlalchemy.orm import relationship

from busbooking.db.base import Base, TimestampMixin


class BookingStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class BoardingStatus:
    PENDING = "PENDING"
    BOARDED = "BOARDED"
    NO_SHOW = "NO_SHOW"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING)

    total_amount = Column(Numeric(12, 2), nullable=False)
    commission = Column(Numeric(12, 2), nullable=False, default=0)
    commission_vat = Column(Numeric(12, 2), nullable=False, default=0)

    is_quick_ticket = Column(Boolean, nullable=False, default=False)
    is_replacement = Column(Boolean, nullable=False, default=False)
    replaced_passenger_id = Column(Integer, nullable=True)  # no-show passenger whose seat was resold

    passengers = relationship(
        "Passenger",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="Passenger.id",
        lazy="selectin",
    )
    tickets = relationship("Ticket", back_populates="booking", order_by="Ticket.id", lazy="selectin")
    payments = relationship("Payment", back_populates="booking", order_by="Payment.id", lazy="selectin")

    __table_args__ = (
        Index(
            "uq_pending_booking_per_user_trip",
            "user_id",
            "trip_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        CheckConstraint(
            "status IN ('PENDING', 'PAID', 'CONFIRMED', 'CANCELLED')",
            name="check_booking_status",
        ),
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
    )

    @property
    def seat_count(self) -> int:
        return len(self.passengers)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, trip={self.trip_id}, status={self.status})>"


class Passenger(Base, TimestampMixin):
    __tablename__ = "passengers"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    national_id = Column(String(64), nullable=False, default="")
    phone = Column(String(32), nullable=False, default="")
    special_needs = Column(String(255), nullable=True)
    seat_number = Column(Integer, nullable=True)
    boarding_status = Column(String(20), nullable=False, default=BoardingStatus.PENDING)

    booking = relationship("Booking", back_populates="passengers")

    __table_args__ = (
        CheckConstraint("seat_number IS NULL OR seat_number > 0", name="check_passenger_seat_positive"),
        CheckConstraint(
            "boarding_status IN ('PENDING', 'BOARDED', 'NO_SHOW')",
            name="check_passenger_boarding_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Passenger(id={self.id}, seat={self.seat_number}, boarding={self.boarding_status})>"
