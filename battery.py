import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set

import requests

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10


class ReportingError(Exception):
    """Raised when a battery report is rejected or cannot be delivered."""


@dataclass(frozen=True)
class BatteryReading:
    battery_level: Optional[int]
    is_charging: bool = False

    def to_json(self) -> str:
        return json.dumps({"batteryLevel": self.battery_level, "isCharging": self.is_charging})


class BatteryStore:
    """Last known battery state per page index, kept for the process lifetime."""

    def __init__(self) -> None:
        self._readings: Dict[int, BatteryReading] = {}

    def update(self, page_index: int, battery_level: Optional[int], is_charging: bool = False) -> None:
        self._readings[page_index] = BatteryReading(battery_level, is_charging)

    def get(self, page_index: int) -> Optional[BatteryReading]:
        return self._readings.get(page_index)

    def clear(self, page_index: int) -> None:
        self._readings.pop(page_index, None)


class BatteryReporter:
    """Posts battery readings to a Home Assistant webhook without blocking rendering."""

    def __init__(self, base_url: str, verify: bool = True, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.verify = verify
        self.session = session or requests.Session()
        self._pending: Set[asyncio.Task] = set()

    def webhook_url(self, webhook_id: str) -> str:
        return f"{self.base_url}/api/webhook/{webhook_id}"

    def report(self, page_index: int, reading: BatteryReading, webhook_id: str) -> asyncio.Task:
        """Schedule the POST on a worker thread and return immediately."""
        task = asyncio.create_task(asyncio.to_thread(self._post_logged, page_index, reading, webhook_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for reports that are still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _post_logged(self, page_index: int, reading: BatteryReading, webhook_id: str) -> None:
        try:
            self.post(page_index, reading, webhook_id)
        except ReportingError as e:
            logger.error(str(e))

    def post(self, page_index: int, reading: BatteryReading, webhook_id: str) -> None:
        url = self.webhook_url(webhook_id)
        try:
            response = self.session.post(
                url,
                data=reading.to_json(),
                headers={"Content-Type": "application/json"},
                verify=self.verify,
                timeout=WEBHOOK_TIMEOUT,
            )
        except requests.RequestException as e:
            raise ReportingError(f"Update {page_index} at {url} error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ReportingError(
                f"Update device {page_index} at {url} status {response.status_code}: {response.reason}"
            )
        logger.debug(f"Reported battery level {reading.battery_level} for page {page_index}")
