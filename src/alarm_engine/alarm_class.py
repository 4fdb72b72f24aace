"""AlarmClass — a named group of watches with its own retention and counts."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .config import AlarmClassConfig, AlgorithmConfig, WatchConfig
from .exceptions import AlarmValidationError
from .models import AlarmCounts, AlarmRecord, AlarmState, OpenFilter, SortField
from .notifications import WebhookNotifier
from .storage.base import AlarmCursor
from .streaming import AlarmStreamer, StreamRegistry
from .watch import AlarmWatch

if TYPE_CHECKING:
    from .service import AlarmService

logger = logging.getLogger("alarm-engine")


class AlarmClass:
    def __init__(self, service: AlarmService, config: AlarmClassConfig) -> None:
        self.service = service
        self.config = config
        self.handle: int | None = config.handle
        self.counts = AlarmCounts()
        self.streams = StreamRegistry()
        self.webhook: WebhookNotifier | None = None
        if config.webhook_url:
            self.webhook = WebhookNotifier(config.webhook_url, config.name)
            self.streams.register(self.webhook)
        self._watches: list[AlarmWatch] = []
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def provider(self):
        return self.service.provider

    def is_ack_required(self, state: AlarmState) -> bool:
        if state is AlarmState.ALERT:
            return self.config.alert_ack_required
        if state is AlarmState.FAULT:
            return self.config.fault_ack_required
        if state is AlarmState.ALARM:
            return self.config.alarm_ack_required
        return False

    # -- watches -----------------------------------------------------------

    def attach_watches(self) -> None:
        """Create watches for every configured entry."""
        for watch_config in self.config.watches:
            self._attach(watch_config)

    def _attach(self, watch_config: WatchConfig) -> AlarmWatch:
        watch = AlarmWatch(self, watch_config)
        watch.handle = self.service.register(watch, watch_config.handle)
        watch_config.handle = watch.handle
        with self._lock:
            self._watches.append(watch)
        return watch

    def add_watch(
        self,
        source_path: str,
        name: str = "",
        algorithm: AlgorithmConfig | None = None,
    ) -> AlarmWatch:
        if not source_path or not source_path.strip():
            raise AlarmValidationError("Missing source path")
        watch_config = WatchConfig(
            source_path=source_path.strip(),
            name=name,
            algorithm=algorithm or AlgorithmConfig(),
        )
        watch = self._attach(watch_config)
        self.config.watches.append(watch_config)
        logger.info(f"Watch added to {self.name}: {watch.name}")
        return watch

    def remove_watch(self, watch: AlarmWatch) -> None:
        """Remove a watch. Its records stay in the store."""
        with self._lock:
            if watch not in self._watches:
                raise AlarmValidationError(f"{watch.name} is not a watch of {self.name}")
            self._watches.remove(watch)
            if watch.config in self.config.watches:
                self.config.watches.remove(watch.config)
        if watch.handle is not None:
            self.service.unregister(watch)
        logger.info(f"Watch removed from {self.name}: {watch.name}")

    def get_watches(self) -> list[AlarmWatch]:
        with self._lock:
            return list(self._watches)

    # -- records -----------------------------------------------------------

    def notify_all_updates(self, record: AlarmRecord) -> None:
        """Fan a durable record out to class and service streams."""
        self.streams.notify(record)
        self.service.notify_open_alarm_streams(record)

    def update_counts(self, counts: AlarmCounts) -> None:
        self.counts = counts

    def acknowledge_all_open(self, user: str) -> int:
        return self.service.acknowledge_all_open(user, self)

    def get_alarms(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        **filters: Any,
    ) -> AlarmCursor:
        return self.provider.query_alarms(self.handle, start, end, **filters)

    def get_open_alarms(self, stream_updates: bool = True) -> AlarmStreamer:
        handle = self.handle
        return AlarmStreamer(
            self.provider.query_open_alarms(handle),
            self.streams if stream_updates else None,
            predicate=lambda r: r.alarm_class == handle,
        )

    # -- housekeeping ------------------------------------------------------

    def execute(self) -> None:
        """One housekeeping pass: re-evaluate watches, then enforce retention."""
        for watch in self.get_watches():
            try:
                watch.execute()
            except Exception:
                logger.exception(f"Watch {watch.name} evaluation failed")
        self.enforce_retention()

    def enforce_retention(self, now: datetime | None = None) -> int:
        """Delete closed records beyond the age and count limits.

        Open records are never purged.
        """
        deleted = 0
        if self.config.max_age_days > 0:
            cutoff = (now or datetime.now()) - timedelta(days=self.config.max_age_days)
            with self.provider.query_alarms(
                self.handle, end=cutoff, open_filter=OpenFilter.CLOSED
            ) as cursor:
                expired = [record.uuid for record in cursor]
            deleted += self._purge(expired)
        if self.config.max_records > 0:
            excess = self.provider.count_alarms(self.handle) - self.config.max_records
            if excess > 0:
                with self.provider.query_alarms(
                    self.handle,
                    open_filter=OpenFilter.CLOSED,
                    sort_by=SortField.CREATED_TIME,
                ) as cursor:
                    cursor.set_paging(0, excess)
                    oldest = [record.uuid for record in cursor]
                deleted += self._purge(oldest)
        if deleted:
            logger.info(f"Retention removed {deleted} records from {self.name}")
            self.service.mark_dirty()
        return deleted

    def _purge(self, uuids: list) -> int:
        count = 0
        for uuid in uuids:
            self.provider.delete_record(uuid)
            count += 1
        return count

    def close(self) -> None:
        self.streams.clear()

    def __repr__(self) -> str:
        return f"AlarmClass({self.name!r})"
