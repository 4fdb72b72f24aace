"""AlarmService — the root coordinator.

Owns the alarm classes, the handle registry and the storage provider. On
start it reconciles cached watch state against the store before accepting
new alarms, then runs a periodic housekeeping task (retention and count
refresh) until stopped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

from .actions import ActionRegistry, register_class_actions, register_service_actions
from .alarm_class import AlarmClass
from .config import AlarmClassConfig, AlarmServiceConfig, save_config
from .exceptions import (
    AlarmClassNotFoundError,
    AlarmValidationError,
    NotSteadyError,
    RecordNotFoundError,
)
from .handles import HandleRegistry
from .models import (
    AckFilter,
    AlarmCounts,
    AlarmRecord,
    AlarmState,
    Note,
    OpenFilter,
    parse_uuids,
)
from .storage import AlarmCursor, NoteCursor, StorageProvider, create_provider
from .streaming import AlarmStreamer, StreamRegistry
from .watch import AlarmWatch

logger = logging.getLogger("alarm-engine")

COUNT_YIELD_EVERY = 100


def _single_uuid(value: str | UUID) -> UUID:
    uuids = parse_uuids(value)
    if len(uuids) != 1:
        raise AlarmValidationError(f"Expected one alarm uuid, got {len(uuids)}")
    return uuids[0]


class AlarmService:
    def __init__(
        self,
        config: AlarmServiceConfig | None = None,
        provider: StorageProvider | None = None,
        config_path: str | Path | None = None,
    ) -> None:
        self.config = config or AlarmServiceConfig()
        self.config_path = config_path
        self.provider = provider or create_provider(self.config.storage)
        self.handles = HandleRegistry(self._initial_handle())
        self.actions = ActionRegistry()
        self.open_alarm_streams = StreamRegistry()
        self.counts = AlarmCounts()
        self._classes: dict[str, AlarmClass] = {}
        self._classes_lock = threading.RLock()
        self._steady = False
        self._dirty = threading.Event()
        self._executing = threading.Lock()
        self._updating = threading.Lock()
        self._task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _initial_handle(self) -> int:
        issued = [c.handle for c in self.config.alarm_classes if c.handle]
        for class_config in self.config.alarm_classes:
            issued.extend(w.handle for w in class_config.watches if w.handle)
        return max([self.config.next_handle, *(h + 1 for h in issued)])

    # -- lifecycle ---------------------------------------------------------

    @property
    def is_steady(self) -> bool:
        return self._steady

    @property
    def is_running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.set_log_level(self.config.log_level)
        register_service_actions(self)
        for class_config in self.config.alarm_classes:
            self._attach_class(class_config)
        self.provider.start(self)
        if self.config.external_db_access_enabled:
            self.provider.change_database_access_to(True)
        self.sync_watches_to_database()
        self._steady = True
        await self.update_counts(force=True)
        self._task = asyncio.create_task(self._housekeeping_loop())
        logger.info(
            f"Alarm service started: {len(self._classes)} classes, "
            f"provider={type(self.provider).__name__}"
        )

    async def stop(self) -> None:
        """Stop housekeeping and the store. An in-flight pass is not awaited."""
        self._steady = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self.open_alarm_streams.clear()
        for alarm_class in self.get_alarm_classes():
            alarm_class.close()
            if alarm_class.webhook is not None:
                await alarm_class.webhook.close()
        self.provider.stop()
        if self.config_path:
            self.save()
        self.handles.clear()
        with self._classes_lock:
            self._classes.clear()
        self.actions.clear()
        logger.info("Alarm service stopped")

    def save(self, path: str | Path | None = None) -> Path:
        """Persist config, including handles and the watch state cache."""
        self.config.next_handle = self.handles.next_handle
        return save_config(self.config, path or self.config_path)

    async def _housekeeping_loop(self) -> None:
        interval = max(0.01, self.config.housekeeping_interval_seconds)
        while True:
            await asyncio.sleep(interval)
            await self.execute()

    async def execute(self) -> bool:
        """One housekeeping pass. Returns False if another pass is running."""
        if not self._executing.acquire(blocking=False):
            return False
        try:
            for alarm_class in self.get_alarm_classes():
                try:
                    await asyncio.to_thread(alarm_class.execute)
                except Exception:
                    logger.exception(f"Housekeeping failed for {alarm_class.name}")
            await self.update_counts()
        finally:
            self._executing.release()
        return True

    # -- handles -----------------------------------------------------------

    def register(self, obj: Any, handle: int | None = None) -> int:
        return self.handles.register(obj, handle)

    def unregister(self, obj: Any) -> None:
        self.handles.unregister(obj.handle, obj)

    def get_by_handle(self, handle: int | None) -> Any:
        return self.handles.get(handle)

    # -- classes -----------------------------------------------------------

    def _attach_class(self, class_config: AlarmClassConfig) -> AlarmClass:
        alarm_class = AlarmClass(self, class_config)
        alarm_class.handle = self.register(alarm_class, class_config.handle)
        class_config.handle = alarm_class.handle
        alarm_class.attach_watches()
        if alarm_class.webhook is not None:
            alarm_class.webhook.bind(self._loop)
        with self._classes_lock:
            self._classes[alarm_class.name] = alarm_class
        register_class_actions(self, alarm_class)
        return alarm_class

    def add_alarm_class(self, name: str, **settings: Any) -> AlarmClass:
        name = (name or "").strip()
        if not name:
            raise AlarmValidationError("Missing alarm class name")
        if "/" in name:
            raise AlarmValidationError(f"Alarm class name cannot contain '/': {name}")
        with self._classes_lock:
            if name in self._classes:
                raise AlarmValidationError(f"Alarm class already exists: {name}")
            class_config = AlarmClassConfig(name=name, **settings)
            alarm_class = self._attach_class(class_config)
            self.config.alarm_classes.append(class_config)
        logger.info(f"Alarm class added: {name}")
        return alarm_class

    def remove_alarm_class(self, name: str) -> None:
        """Remove a class. Its records are left for reconciliation to orphan."""
        with self._classes_lock:
            alarm_class = self._classes.pop(name, None)
            if alarm_class is None:
                raise AlarmClassNotFoundError(f"No alarm class named {name!r}")
            if alarm_class.config in self.config.alarm_classes:
                self.config.alarm_classes.remove(alarm_class.config)
        for watch in alarm_class.get_watches():
            self.unregister(watch)
        self.unregister(alarm_class)
        alarm_class.close()
        self.actions.unregister_prefix(f"{name}/")
        if alarm_class.webhook is not None and self._loop is not None:
            asyncio.run_coroutine_threadsafe(alarm_class.webhook.close(), self._loop)
        self.mark_dirty()
        logger.info(f"Alarm class removed: {name}")

    def get_alarm_class(self, name: str) -> AlarmClass:
        with self._classes_lock:
            alarm_class = self._classes.get(name)
        if alarm_class is None:
            raise AlarmClassNotFoundError(f"No alarm class named {name!r}")
        return alarm_class

    def get_alarm_classes(self) -> list[AlarmClass]:
        with self._classes_lock:
            return list(self._classes.values())

    def get_watches(self) -> list[AlarmWatch]:
        watches: list[AlarmWatch] = []
        for alarm_class in self.get_alarm_classes():
            watches.extend(alarm_class.get_watches())
        return watches

    def _class_handle(self, alarm_class: AlarmClass | str | None) -> int | None:
        if alarm_class is None or alarm_class == "":
            return None
        if isinstance(alarm_class, str):
            alarm_class = self.get_alarm_class(alarm_class)
        return alarm_class.handle

    def _owner(self, record: AlarmRecord) -> AlarmClass | None:
        owner = self.get_by_handle(record.alarm_class)
        return owner if isinstance(owner, AlarmClass) else None

    def _watch_of(self, record: AlarmRecord) -> AlarmWatch | None:
        watch = self.get_by_handle(record.alarm_watch)
        return watch if isinstance(watch, AlarmWatch) else None

    def _notify(self, record: AlarmRecord) -> None:
        owner = self._owner(record)
        if owner is not None:
            owner.notify_all_updates(record)
        else:
            self.notify_open_alarm_streams(record)

    # -- records -----------------------------------------------------------

    def create_alarm(
        self,
        alarm_class: AlarmClass,
        watch: AlarmWatch | None = None,
        alarm_type: AlarmState | str = AlarmState.ALARM,
        message: str = "",
        source_path: str | None = None,
    ) -> AlarmRecord:
        """Persist a new open record. Callers notify streams once it returns."""
        if not self._steady:
            raise NotSteadyError("Alarms cannot be created before startup completes")
        state = AlarmState.parse(alarm_type)
        if state.is_normal:
            raise AlarmValidationError("Cannot create an alarm in the NORMAL state")
        if source_path is None:
            source_path = watch.source_path if watch is not None else ""
        record = (
            self.provider.new_record()
            .set_uuid(uuid4())
            .set_alarm_class(alarm_class.handle)
            .set_alarm_watch(watch.handle if watch is not None else None)
            .set_source_path(source_path)
            .set_alarm_type(state)
            .set_created_time(datetime.now())
            .set_message(message)
            .set_ack_required(alarm_class.is_ack_required(state))
            .build()
        )
        self.provider.add_record(record)
        self.mark_dirty()
        logger.info(f"{state.value} {record.uuid} in {alarm_class.name}: {message or source_path}")
        return record

    def acknowledge(
        self, uuids: str | UUID | Iterable[str | UUID], user: str
    ) -> list[AlarmRecord]:
        """Acknowledge one or more records. Unknown uuids fail before any change."""
        targets = parse_uuids(uuids)
        if not user:
            raise AlarmValidationError("Missing user")
        for uuid in targets:
            self.provider.get_record(uuid)
        records: list[AlarmRecord] = []
        for uuid in targets:
            changed = self.provider.acknowledge(uuid, user)
            record = self.provider.get_record(uuid)
            if changed:
                logger.info(f"Acknowledged {uuid} by {user}")
                self.mark_dirty()
                self._notify(record)
            records.append(record)
        return records

    def acknowledge_all_open(
        self, user: str, alarm_class: AlarmClass | str | None = None
    ) -> int:
        if not user:
            raise AlarmValidationError("Missing user")
        handle = self._class_handle(alarm_class)
        with self.provider.query_alarms(
            handle, ack_filter=AckFilter.UNACKED, open_filter=OpenFilter.OPEN
        ) as cursor:
            targets = [record.uuid for record in cursor]
        acked = 0
        for uuid in targets:
            try:
                changed = self.provider.acknowledge(uuid, user)
            except RecordNotFoundError:
                continue
            if changed:
                acked += 1
                self._notify(self.provider.get_record(uuid))
        if acked:
            self.mark_dirty()
            logger.info(f"Acknowledged {acked} open alarms by {user}")
        return acked

    def add_note(self, uuid: str | UUID, user: str, text: str) -> Note:
        target = _single_uuid(uuid)
        if not text or not text.strip():
            raise AlarmValidationError("Missing note text")
        note = self.provider.add_note(target, user or "", text)
        logger.debug(f"Note added to {target} by {user}")
        return note

    def return_to_normal(self, uuid: str | UUID) -> AlarmRecord:
        target = _single_uuid(uuid)
        changed = self.provider.return_to_normal(target)
        record = self.provider.get_record(target)
        if changed:
            watch = self._watch_of(record)
            if watch is not None:
                watch.clear_episode(target)
            self.mark_dirty()
            logger.info(f"Returned to normal: {target}")
            self._notify(record)
        return record

    def delete_record(self, uuid: str | UUID) -> None:
        target = _single_uuid(uuid)
        record = self.provider.get_record(target)
        self.provider.delete_record(target)
        watch = self._watch_of(record)
        if watch is not None and watch.clear_episode(target) and watch.algorithm:
            watch.algorithm.restore(AlarmState.NORMAL)
        self.mark_dirty()
        logger.info(f"Deleted alarm record {target}")

    def delete_all_records(self) -> None:
        self.provider.delete_all_records()
        for watch in self.get_watches():
            watch.reset()
        self.mark_dirty()
        logger.info("Deleted all alarm records")

    def get_alarm(self, uuid: str | UUID) -> AlarmRecord:
        target = _single_uuid(uuid)
        return self.provider.get_record(target)

    def get_alarms(
        self,
        alarm_class: AlarmClass | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        **filters: Any,
    ) -> AlarmCursor:
        return self.provider.query_alarms(
            self._class_handle(alarm_class), start, end, **filters
        )

    def get_alarm_page(
        self,
        alarm_class: AlarmClass | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 0,
        page_size: int = 500,
        **filters: Any,
    ) -> AlarmCursor:
        cursor = self.get_alarms(alarm_class, start, end, **filters)
        try:
            cursor.set_paging(page, page_size)
        except Exception:
            cursor.close()
            raise
        return cursor

    def get_alarm_page_count(
        self,
        alarm_class: AlarmClass | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page_size: int = 500,
        **filters: Any,
    ) -> int:
        if page_size <= 0:
            return 0
        count = self.provider.count_alarms(
            self._class_handle(alarm_class), start=start, end=end, **filters
        )
        return -(-count // page_size)

    def get_notes(self, uuid: str | UUID) -> NoteCursor:
        target = _single_uuid(uuid)
        return self.provider.get_notes(target)

    def get_open_alarms(
        self, alarm_class: AlarmClass | str | None = None, stream_updates: bool = True
    ) -> AlarmStreamer:
        if alarm_class:
            if isinstance(alarm_class, str):
                alarm_class = self.get_alarm_class(alarm_class)
            return alarm_class.get_open_alarms(stream_updates)
        return AlarmStreamer(
            self.provider.query_open_alarms(),
            self.open_alarm_streams if stream_updates else None,
        )

    def notify_open_alarm_streams(self, record: AlarmRecord) -> None:
        self.open_alarm_streams.notify(record)

    def update_source(self, source_path: str, value: Any) -> list[AlarmRecord]:
        """Feed a new input to every watch bound to ``source_path``."""
        changed: list[AlarmRecord] = []
        for watch in self.get_watches():
            if watch.source_path != source_path:
                continue
            record = watch.update(value)
            if record is not None:
                changed.append(record)
        return changed

    # -- settings ----------------------------------------------------------

    def set_log_level(self, level: str | int) -> None:
        if isinstance(level, str):
            name = level.strip().upper()
            if not isinstance(logging.getLevelName(name), int):
                raise AlarmValidationError(f"Invalid log level: {level!r}")
            level = name
        logging.getLogger("alarm-engine").setLevel(level)

    def set_external_database_access(self, enabled: bool) -> None:
        self.provider.change_database_access_to(enabled)
        self.config.external_db_access_enabled = bool(enabled)

    # -- counts ------------------------------------------------------------

    def mark_dirty(self) -> None:
        self._dirty.set()

    @property
    def is_dirty(self) -> bool:
        return self._dirty.is_set()

    async def update_counts(self, force: bool = False) -> bool:
        """Recompute counts from a full scan.

        Returns False without waiting when nothing is dirty (unless forced) or
        another recompute is already running.
        """
        if not force and not self._dirty.is_set():
            return False
        if not self._updating.acquire(blocking=False):
            return False
        try:
            # Mutations during the scan re-mark dirty for the next pass.
            self._dirty.clear()
            totals = AlarmCounts()
            by_class: dict[int, AlarmCounts] = {}
            scanned = 0
            with self.provider.query_alarms() as cursor:
                while cursor.next():
                    record = cursor.record
                    totals.tally(record)
                    by_class.setdefault(record.alarm_class, AlarmCounts()).tally(record)
                    scanned += 1
                    if scanned % COUNT_YIELD_EVERY == 0:
                        await asyncio.sleep(0)
            self.counts = totals
            for alarm_class in self.get_alarm_classes():
                alarm_class.update_counts(by_class.get(alarm_class.handle, AlarmCounts()))
            return True
        except Exception:
            logger.exception("Alarm count update failed")
            self._dirty.set()
            return False
        finally:
            self._updating.release()

    # -- reconciliation ----------------------------------------------------

    def sync_watches_to_database(self) -> bool:
        """Repair cached watch state against the open records in the store.

        Returns True when anything was deleted or reset.
        """
        changed = False
        try:
            pending = set(self.get_watches())
            stale: set[UUID] = set()
            with self.provider.query_open_alarms() as cursor:
                while cursor.next():
                    record = cursor.record
                    if record.uuid in stale:
                        continue
                    watch = self._watch_of(record)
                    if watch is None:
                        if self._owner(record) is None:
                            stale.add(record.uuid)
                        continue
                    if record.is_normal:
                        continue
                    if watch.last_alarm_uuid is None:
                        # The watch's last transition was never saved.
                        watch.adopt(record)
                    elif watch.last_alarm_uuid != record.uuid:
                        remembered = watch.get_last_alarm_record()
                        if remembered is not None and (
                            remembered.created_time > record.created_time
                        ):
                            stale.add(record.uuid)
                            if remembered.is_normal:
                                # Nothing open backs the watch; reset it below.
                                continue
                        else:
                            if remembered is not None and not remembered.is_normal:
                                stale.add(remembered.uuid)
                            watch.adopt(record)
                    pending.discard(watch)
            for uuid in stale:
                try:
                    self.provider.delete_record(uuid)
                    logger.info(f"Reconciliation deleted stale record {uuid}")
                    changed = True
                except Exception:
                    logger.exception(f"Reconciliation could not delete {uuid}")
            for watch in pending:
                if watch.alarm_state is not AlarmState.NORMAL or watch.last_alarm_uuid:
                    watch.reset()
                    changed = True
        except Exception:
            logger.exception("Watch reconciliation failed")
        if changed:
            self.mark_dirty()
        return changed
