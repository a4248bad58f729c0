"""
Post-commit side effects.

Audit entries, user notifications, follow-up tasks and cache invalidations
raised while a seat-ledger transaction is open are collected in a SideEffects
buffer and dispatched only after the transaction commits. If the transaction
rolls back the buffer is simply dropped.

Dispatch is best-effort: each kind is delivered independently, failures are
logged and counted, and nothing here can fail or undo the business operation
that produced the effects.
"""

from dataclasses import dataclass, field
from typing import Optional

from busbooking.core.logging import get_logger
from busbooking.core.metrics import side_effect_failures
from busbooking.db.session import Database
from busbooking.infrastructure.task_sink import FollowUpTaskSink, LowSlotAlert, get_task_sink
from busbooking.models.audit import AuditLog, Notification
from busbooking.schemas.audit import AuditEvent
from busbooking.services.cache_service import invalidate_seat_maps

logger = get_logger(__name__)


@dataclass
class SideEffects:
    audit_events: list[AuditEvent] = field(default_factory=list)
    notifications: list[tuple[int, str]] = field(default_factory=list)
    follow_up_tasks: list[LowSlotAlert] = field(default_factory=list)
    touched_trips: set[int] = field(default_factory=set)

    def audit(self, event: AuditEvent) -> None:
        self.audit_events.append(event)

    def notify(self, user_id: int, message: str) -> None:
        self.notifications.append((user_id, message))

    def follow_up(self, alert: LowSlotAlert) -> None:
        self.follow_up_tasks.append(alert)

    def touch_trip(self, trip_id: int) -> None:
        self.touched_trips.add(trip_id)


async def dispatch_side_effects(
    database: Database,
    effects: SideEffects,
    task_sink: Optional[FollowUpTaskSink] = None,
) -> None:
    await invalidate_seat_maps(effects.touched_trips)

    if effects.audit_events:
        try:
            async with database.transaction() as db:
                for event in effects.audit_events:
                    db.add(
                        AuditLog(
                            actor=event.actor,
                            action=event.action,
                            trip_id=event.trip_id,
                            details=event.model_dump_json(),
                        )
                    )
        except Exception as e:
            side_effect_failures.labels(kind="audit").inc(len(effects.audit_events))
            logger.error(
                "audit_write_failed",
                actions=[event.action for event in effects.audit_events],
                error=str(e),
            )

    if effects.notifications:
        try:
            async with database.transaction() as db:
                for user_id, message in effects.notifications:
                    db.add(Notification(user_id=user_id, message=message))
        except Exception as e:
            side_effect_failures.labels(kind="notification").inc(len(effects.notifications))
            logger.error("notification_write_failed", count=len(effects.notifications), error=str(e))

    sink = task_sink or get_task_sink()
    for alert in effects.follow_up_tasks:
        try:
            await sink.create_low_slot_alert(alert)
        except Exception as e:
            side_effect_failures.labels(kind="task").inc()
            logger.error("follow_up_task_failed", trip_id=alert.trip_id, error=str(e))
