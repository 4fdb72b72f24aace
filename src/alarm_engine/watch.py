"""AlarmWatch — binds one monitored source path to an algorithm.

A watch raises at most one open record per contiguous non-normal episode.
Its ``alarm_state`` and ``last_alarm_uuid`` live in the watch config so they
are persisted with it, and are repaired against the store at startup.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any
from uuid import UUID

from .algorithms import AlarmAlgorithm, create_algorithm
from .config import WatchConfig
from .exceptions import RecordNotFoundError
from .models import AlarmRecord, AlarmState

if TYPE_CHECKING:
    from .alarm_class import AlarmClass

logger = logging.getLogger("alarm-engine")

_UNSET = object()


class AlarmWatch:
    def __init__(self, alarm_class: AlarmClass, config: WatchConfig) -> None:
        self.alarm_class = alarm_class
        self.config = config
        self.handle: int | None = config.handle
        self.algorithm: AlarmAlgorithm | None = (
            create_algorithm(config.algorithm) if config.algorithm else None
        )
        if self.algorithm is not None:
            self.algorithm.restore(config.alarm_state)
        self._last_value: Any = _UNSET
        self._lock = threading.RLock()

    @property
    def service(self):
        return self.alarm_class.service

    @property
    def source_path(self) -> str:
        return self.config.source_path

    @property
    def name(self) -> str:
        return self.config.name or self.config.source_path

    @property
    def alarm_state(self) -> AlarmState:
        return self.config.alarm_state

    @alarm_state.setter
    def alarm_state(self, state: AlarmState) -> None:
        self.config.alarm_state = state

    @property
    def last_alarm_uuid(self) -> UUID | None:
        return self.config.last_alarm_uuid

    @last_alarm_uuid.setter
    def last_alarm_uuid(self, uuid: UUID | None) -> None:
        self.config.last_alarm_uuid = uuid

    @property
    def last_value(self) -> Any:
        return None if self._last_value is _UNSET else self._last_value

    def get_last_alarm_record(self) -> AlarmRecord | None:
        if self.last_alarm_uuid is None:
            return None
        try:
            return self.service.provider.get_record(self.last_alarm_uuid)
        except RecordNotFoundError:
            return None

    def adopt(self, record: AlarmRecord) -> None:
        """Make ``record`` this watch's current episode."""
        with self._lock:
            self.last_alarm_uuid = record.uuid
            self.alarm_state = record.alarm_type
            if self.algorithm is not None:
                self.algorithm.restore(record.alarm_type)

    def reset(self) -> None:
        """Forget the current episode without touching the store."""
        with self._lock:
            self.last_alarm_uuid = None
            self.alarm_state = AlarmState.NORMAL
            if self.algorithm is not None:
                self.algorithm.restore(AlarmState.NORMAL)

    def clear_episode(self, uuid: UUID) -> bool:
        """Drop the reference to ``uuid`` if it is the current episode."""
        with self._lock:
            if self.last_alarm_uuid != uuid:
                return False
            self.last_alarm_uuid = None
            self.alarm_state = AlarmState.NORMAL
            return True

    def update(self, value: Any) -> AlarmRecord | None:
        """Record the latest input and evaluate it once the service is steady."""
        with self._lock:
            self._last_value = value
            if not self.service.is_steady:
                logger.debug(f"Watch {self.name}: not steady, input deferred")
                return None
            return self._evaluate(value)

    def execute(self) -> AlarmRecord | None:
        """Re-evaluate the last input for algorithms that depend on time."""
        with self._lock:
            if self.algorithm is None or not self.algorithm.time_based:
                return None
            if self._last_value is _UNSET or not self.service.is_steady:
                return None
            return self._evaluate(self._last_value)

    def _evaluate(self, value: Any) -> AlarmRecord | None:
        if self.algorithm is None:
            return None
        target = self.algorithm.evaluate(value)
        return self.transition(target, self.algorithm.message_for(value))

    def transition(self, target: AlarmState, message: str = "") -> AlarmRecord | None:
        """Move the watch to ``target``.

        Returns the record that was created or returned to normal, or None
        when nothing changed.
        """
        with self._lock:
            last = self.last_alarm_uuid
            if target.is_normal:
                if last is None:
                    self.alarm_state = AlarmState.NORMAL
                    return None
                record = self._close(last)
                self.last_alarm_uuid = None
                self.alarm_state = AlarmState.NORMAL
                return record
            if last is not None and target == self.alarm_state:
                return None
            if last is not None:
                # A new severity starts a new episode.
                self._close(last)
                self.last_alarm_uuid = None
            record = self.service.create_alarm(
                self.alarm_class, self, target, message
            )
            self.last_alarm_uuid = record.uuid
            self.alarm_state = target
            self.alarm_class.notify_all_updates(record)
            return record

    def _close(self, uuid: UUID) -> AlarmRecord | None:
        try:
            return self.service.return_to_normal(uuid)
        except RecordNotFoundError:
            logger.warning(f"Watch {self.name}: record {uuid} no longer exists")
            return None

    def __repr__(self) -> str:
        return f"AlarmWatch({self.name!r}, state={self.alarm_state.value})"
