"""
Ticket: proof of purchase, one per passenger, issued only after payment.
Immutable once issued except for the boarding-gate fields (is_used, used_at).
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from busbooking.db.base import Base, TimestampMixin


class Ticket(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    passenger_id = Column(Integer, ForeignKey("passengers.id"), nullable=False, unique=True)
    passenger_name = Column(String(255), nullable=False)
    seat_number = Column(Integer, nullable=True)

    # Globally unique, not just per trip
    short_code = Column(String(16), nullable=False, unique=True, index=True)
    qr_code = Column(Text, nullable=False)

    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    booking = relationship("Booking", back_populates="tickets")

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, code={self.short_code}, seat={self.seat_number}, used={self.is_used})>"
