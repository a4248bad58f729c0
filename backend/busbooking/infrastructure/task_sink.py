"""
Follow-up task sink for operations staff (low-seat alerts).

Tasks are POSTed as JSON to FOLLOW_UP_WEBHOOK_URL (a task tracker's inbound
webhook). Without a URL the task is only logged. Callers treat every failure
as best-effort.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

import httpx

from busbooking.core.config import get_settings
from busbooking.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LowSlotAlert:
    trip_id: int
    origin: str
    destination: str
    departure_time: datetime
    available_slots: int
    total_slots: int
    company_name: str
    triggered_by: str


class FollowUpTaskSink:
    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0):
        self.webhook_url = webhook_url if webhook_url is not None else get_settings().FOLLOW_UP_WEBHOOK_URL
        self.timeout = timeout

    async def create_low_slot_alert(self, alert: LowSlotAlert) -> None:
        body = asdict(alert)
        body["departure_time"] = alert.departure_time.isoformat()
        body["title"] = (
            f"Low seats: {alert.origin} -> {alert.destination} "
            f"({alert.available_slots}/{alert.total_slots} left)"
        )

        if not self.webhook_url:
            logger.info("follow_up_task_logged", **body)
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.webhook_url, json=body)
            response.raise_for_status()
        logger.info("follow_up_task_created", trip_id=alert.trip_id)


def get_task_sink() -> FollowUpTaskSink:
    return FollowUpTaskSink()
