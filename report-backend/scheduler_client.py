"""
Remote schedule management (Trigger.dev REST API) and cron helpers.

We never run schedules ourselves: the scheduler calls back into
/api/jobs/daily-event-report at the configured time. Cron text is
"minute hour * * *" in UTC and is stored and forwarded verbatim.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import DEFAULT_REPORT_TIMEZONE, Settings
from errors import ConfigurationError, SchedulerError, ValidationError
from http_client import JSONHTTPClient, UpstreamHTTPError

logger = logging.getLogger(__name__)

SCHEDULE_DEDUPLICATION_KEY = "daily-event-report-schedule"

US_TIMEZONE_LABELS = {
    "America/New_York": "Eastern Time (ET)",
    "America/Chicago": "Central Time (CT)",
    "America/Denver": "Mountain Time (MT)",
    "America/Phoenix": "Arizona Time (MST)",
    "America/Los_Angeles": "Pacific Time (PT)",
    "America/Anchorage": "Alaska Time (AKT)",
    "Pacific/Honolulu": "Hawaii Time (HT)",
}


def build_daily_cron(
    hour: int,
    minute: int,
    tz_name: str = DEFAULT_REPORT_TIMEZONE,
    on_date: Optional[date] = None,
) -> Tuple[str, str]:
    """
    Convert a local wall-clock time to a UTC daily cron expression.

    The UTC offset is taken for on_date (today by default), so the stored
    expression follows whatever DST rule applies on the day it is saved.

    Returns:
        (cron_expression, schedule_description)
    """
    if not (0 <= int(hour) <= 23 and 0 <= int(minute) <= 59):
        raise ValidationError("Hour must be 0-23 and minute 0-59")
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {tz_name}") from e

    local = datetime.combine(on_date or date.today(), time(int(hour), int(minute)), tzinfo=tz)
    utc = local.astimezone(timezone.utc)

    cron = f"{utc.minute} {utc.hour} * * *"
    label = US_TIMEZONE_LABELS.get(tz_name, tz_name)
    description = f"Every day at {int(hour):02d}:{int(minute):02d} {label}"
    return cron, description


def parse_daily_cron(cron_expression: str) -> Tuple[int, int]:
    """(minute, hour) from "m h * * *"; (0, 9) for anything unreadable."""
    parts = (cron_expression or "").split()
    try:
        return int(parts[0]), int(parts[1])
    except (IndexError, ValueError):
        return 0, 9


class SchedulerClient(JSONHTTPClient):
    def __init__(self, secret_key: Optional[str], base_url: str, task_id: str, timeout_seconds: float = 30.0):
        super().__init__(base_url, timeout_seconds=timeout_seconds)
        self.secret_key = secret_key
        self.task_id = task_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerClient":
        return cls(
            secret_key=settings.trigger_secret_key,
            base_url=settings.trigger_api_url,
            task_id=settings.trigger_task_id,
        )

    def _headers(self) -> Dict[str, str]:
        if not self.secret_key:
            raise ConfigurationError("Scheduler API key not configured")
        return {"Authorization": f"Bearer {self.secret_key}", "Content-Type": "application/json"}

    async def create_schedule(
        self,
        cron: str,
        tz_name: str = DEFAULT_REPORT_TIMEZONE,
        deduplication_key: str = SCHEDULE_DEDUPLICATION_KEY,
    ) -> Dict[str, Any]:
        """Create or update (same deduplication key) the report schedule."""
        body = {
            "task": self.task_id,
            "cron": cron,
            "timezone": tz_name,
            "deduplicationKey": deduplication_key,
            "externalId": deduplication_key,
        }
        try:
            status, reason, payload = await self.request_json(
                "POST", "/api/v1/schedules", headers=self._headers(), json_body=body
            )
        except UpstreamHTTPError as e:
            raise SchedulerError("Failed to manage schedule", details=e.message) from e

        if status >= 400:
            raise SchedulerError("Failed to manage schedule", details=f"HTTP {status}: {reason}")

        logger.info(f"Schedule '{deduplication_key}' set to '{cron}' ({tz_name})")
        return payload or {}

    async def delete_schedule(self, schedule_id: str = SCHEDULE_DEDUPLICATION_KEY) -> None:
        try:
            status, reason, _ = await self.request_json(
                "DELETE", f"/api/v1/schedules/{schedule_id}", headers=self._headers()
            )
        except UpstreamHTTPError as e:
            raise SchedulerError("Failed to delete schedule", details=e.message) from e

        if status >= 400:
            raise SchedulerError("Failed to delete schedule", details=f"HTTP {status}: {reason}")
        logger.info(f"Schedule '{schedule_id}' deleted")
