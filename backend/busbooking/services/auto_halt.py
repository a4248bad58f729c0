"""
Auto-halt controller for online booking.

RULE
====

Evaluated inside the same transaction, right after any operation that
decrements `available_slots`:

  available_slots <= AUTO_HALT_THRESHOLD
  AND trip not already halted
  AND admin has not resumed this trip from an auto-halt
  AND no per-trip bypass (trip.auto_resume_enabled)
  AND no company-wide bypass (company.disable_auto_halt_globally)
      -> booking_halted = True, audit AUTO_HALT_LOW_SLOTS, low-seat follow-up task

A halt only blocks the online Booking Engine. Counter and replacement sales
keep selling.

Manual RESUME while at or below the threshold sets
`admin_resumed_from_auto_halt`, which suppresses re-triggering until slots
climb back above the threshold (see on_release).
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.config import get_settings
from busbooking.core.logging import get_logger
from busbooking.core.metrics import auto_halt_triggers
from busbooking.infrastructure.task_sink import LowSlotAlert
from busbooking.models.company import Company
from busbooking.models.trip import Trip
from busbooking.schemas.audit import AutoHaltTriggered, BookingHaltToggled
from busbooking.services.effects import SideEffects

logger = get_logger(__name__)


class AutoHaltController:
    def __init__(self, db: AsyncSession, effects: SideEffects, threshold: Optional[int] = None):
        self.db = db
        self.effects = effects
        self.threshold = threshold if threshold is not None else get_settings().AUTO_HALT_THRESHOLD

    async def evaluate(self, trip: Trip, triggered_by: str) -> bool:
        """Halt online booking if the trip just crossed the threshold. Returns True when halted now."""
        if trip.available_slots > self.threshold:
            return False
        if trip.booking_halted or trip.admin_resumed_from_auto_halt or trip.auto_resume_enabled:
            return False

        company = await self.db.get(Company, trip.company_id)
        if company is not None and company.disable_auto_halt_globally:
            return False

        first_alert = not trip.low_slot_alert_sent
        trip.booking_halted = True
        trip.low_slot_alert_sent = True

        self.effects.audit(
            AutoHaltTriggered(
                trip_id=trip.id,
                available_slots=trip.available_slots,
                total_slots=trip.total_slots,
                threshold=self.threshold,
                triggered_by=triggered_by,
            )
        )
        if first_alert:
            self.effects.follow_up(
                LowSlotAlert(
                    trip_id=trip.id,
                    origin=trip.origin,
                    destination=trip.destination,
                    departure_time=trip.departure_time,
                    available_slots=trip.available_slots,
                    total_slots=trip.total_slots,
                    company_name=company.name if company is not None else "",
                    triggered_by=triggered_by,
                )
            )
        auto_halt_triggers.inc()

        logger.warning(
            "online_booking_auto_halted",
            trip_id=trip.id,
            available_slots=trip.available_slots,
            total_slots=trip.total_slots,
            triggered_by=triggered_by,
        )
        return True

    def on_release(self, trip: Trip) -> None:
        # Suppression ends once the trip is comfortably above the threshold again
        if trip.admin_resumed_from_auto_halt and trip.available_slots > self.threshold:
            trip.admin_resumed_from_auto_halt = False
            logger.info("auto_halt_suppression_cleared", trip_id=trip.id, available_slots=trip.available_slots)

    def halt(self, trip: Trip, actor: str) -> None:
        trip.booking_halted = True
        trip.admin_resumed_from_auto_halt = False
        self.effects.audit(
            BookingHaltToggled(
                action="BOOKING_HALTED_MANUAL",
                actor=actor,
                trip_id=trip.id,
                available_slots=trip.available_slots,
                total_slots=trip.total_slots,
            )
        )
        logger.info("online_booking_halted_manually", trip_id=trip.id, actor=actor)

    def resume(self, trip: Trip, actor: str) -> None:
        suppress = trip.available_slots <= self.threshold
        trip.booking_halted = False
        trip.admin_resumed_from_auto_halt = suppress
        self.effects.audit(
            BookingHaltToggled(
                action="BOOKING_RESUMED_MANUAL",
                actor=actor,
                trip_id=trip.id,
                available_slots=trip.available_slots,
                total_slots=trip.total_slots,
                suppress_auto_halt=suppress,
            )
        )
        logger.info("online_booking_resumed_manually", trip_id=trip.id, actor=actor, suppress_auto_halt=suppress)
