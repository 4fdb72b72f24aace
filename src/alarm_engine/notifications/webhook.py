"""Generic webhook notification delivery.

POSTs a structured JSON payload to a URL whenever a record of the owning
alarm class is created or changes. Configure per class with ``webhook_url``.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from datetime import datetime, timezone

import aiohttp

from ..models import AlarmRecord

logger = logging.getLogger("alarm-engine")


class WebhookNotifier:
    """POST structured JSON to a URL on every alarm update."""

    def __init__(self, url: str, class_name: str = ""):
        self.url = url
        self.class_name = class_name
        self._session: aiohttp.ClientSession | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[Future] = set()

    def bind(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """Deliver on ``loop``; updates arriving while unbound are skipped."""
        self._loop = loop

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=15)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def _build_payload(self, record: AlarmRecord) -> dict:
        """Build a structured JSON payload."""
        payload: dict = {
            "event": "alarm_updated",
            "alarm_class": self.class_name,
            "uuid": str(record.uuid),
            "source_path": record.source_path,
            "alarm_type": record.alarm_type.value,
            "state": record.state.value,
            "message": record.message,
            "created_time": record.created_time.isoformat(),
            "open": record.is_open,
            "ack_required": record.ack_required,
            "acknowledged": record.is_acknowledged,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if record.ack_time is not None:
            payload["ack_time"] = record.ack_time.isoformat()
            payload["ack_user"] = record.ack_user
        if record.normal_time is not None:
            payload["normal_time"] = record.normal_time.isoformat()

        return payload

    def update(self, record: AlarmRecord) -> None:
        """Stream subscriber hook; schedules delivery and returns immediately."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"Webhook not bound to a loop, skipped {record.uuid}")
            return
        future = asyncio.run_coroutine_threadsafe(self.notify(record), loop)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    async def notify(self, record: AlarmRecord) -> bool:
        """POST record JSON to the webhook URL.  Returns True on success."""
        if not self.url:
            return False

        session = self._get_session()
        payload = self._build_payload(record)

        try:
            async with session.post(self.url, json=payload) as resp:
                ok = resp.status < 400

            if ok:
                logger.info(f"Webhook alarm sent: {record.uuid} → {self.url}")
            else:
                logger.warning(f"Webhook failed: HTTP {resp.status} → {self.url}")
            return ok

        except Exception as e:
            logger.warning(f"Webhook error: {e}")
            return False

    async def close(self) -> None:
        """Close the aiohttp session."""
        self._loop = None
        if self._session:
            await self._session.close()
            self._session = None
