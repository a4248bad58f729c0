"""
Trip model: one scheduled departure and its seat ledger counters.

Key design decisions:
- `available_slots` is the authoritative sellable-seat counter; it is only
  changed through services/seat_ledger.py while the row is locked
- `released_seats` is a separate pool fed by no-shows and consumed only by
  replacement sales; it never flows back into `available_slots`
- `version` is bumped on every ledger mutation (guarded UPDATE safety net)
- CHECK constraints are the final line of defence against over/under-counting
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Numeric, ForeignKey, Index, CheckConstraint,
)

from busbooking.db.base import Base, TimestampMixin


class TripStatus:
    SCHEDULED = "SCHEDULED"
    BOARDING = "BOARDING"
    DEPARTED = "DEPARTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    ALL = (SCHEDULED, BOARDING, DEPARTED, COMPLETED, CANCELLED)

    # Statuses in which seats can still be sold before departure
    SELLABLE = (SCHEDULED, BOARDING)

    TRANSITIONS = {
        SCHEDULED: {BOARDING, CANCELLED},
        BOARDING: {DEPARTED, CANCELLED},
        DEPARTED: {COMPLETED},
        COMPLETED: set(),
        CANCELLED: set(),
    }


class Trip(Base, TimestampMixin):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    origin = Column(String(120), nullable=False)
    destination = Column(String(120), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)

    total_slots = Column(Integer, nullable=False)
    available_slots = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=TripStatus.SCHEDULED)

    # Auto-halt state
    booking_halted = Column(Boolean, nullable=False, default=False)
    low_slot_alert_sent = Column(Boolean, nullable=False, default=False)
    admin_resumed_from_auto_halt = Column(Boolean, nullable=False, default=False)
    auto_resume_enabled = Column(Boolean, nullable=False, default=False)  # per-trip bypass
    manifest_ready = Column(Boolean, nullable=False, default=False)

    # Post-departure counters
    no_show_count = Column(Integer, nullable=False, default=0)
    released_seats = Column(Integer, nullable=False, default=0)
    replacements_sold = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("total_slots > 0", name="check_trip_total_slots_positive"),
        CheckConstraint("available_slots >= 0", name="check_trip_available_non_negative"),
        CheckConstraint("available_slots <= total_slots", name="check_trip_available_lte_total"),
        CheckConstraint("released_seats >= 0", name="check_trip_released_non_negative"),
        CheckConstraint("price >= 0", name="check_trip_price_non_negative"),
        CheckConstraint(
            "status IN ('SCHEDULED', 'BOARDING', 'DEPARTED', 'COMPLETED', 'CANCELLED')",
            name="check_trip_status",
        ),
        Index("ix_trips_departure_time", "departure_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Trip(id={self.id}, {self.origin}->{self.destination}, "
            f"available={self.available_slots}/{self.total_slots}, status={self.status})>"
        )
