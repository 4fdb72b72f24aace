"""In-memory reference provider.

Records are immutable models; each mutation builds the replacement record
first and swaps it in under the lock, so a failure never leaves a
half-updated record behind. A cursor copies the matching records on its
first next(), which gives it a stable snapshot from then on.
"""

from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime
from uuid import UUID

from ..exceptions import AlarmValidationError, RecordNotFoundError
from ..models import AlarmRecord, Note
from .base import AlarmCursor, NoteCursor, QueryCriteria, StorageProvider

logger = logging.getLogger("alarm-engine")


class MemoryAlarmCursor(AlarmCursor):
    def __init__(self, provider: MemoryProvider, criteria: QueryCriteria) -> None:
        super().__init__(provider)
        self._criteria = criteria
        self._rows: list[AlarmRecord] = []
        self._index = 0

    def _execute(self, offset: int, limit: int | None) -> None:
        matched = self._provider.snapshot(self._criteria)
        end = None if limit is None else offset + limit
        self._rows = matched[offset:end]
        self._index = 0

    def _fetch(self) -> AlarmRecord | None:
        if self._index >= len(self._rows):
            return None
        record = self._rows[self._index]
        self._index += 1
        return record

    def _release(self) -> None:
        self._rows = []


class MemoryProvider(StorageProvider):
    """Keeps records and notes in process memory."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[UUID, AlarmRecord] = {}
        self._notes: dict[UUID, list[Note]] = {}
        self._order: dict[UUID, int] = {}
        self._seq = itertools.count()
        self._lock = threading.RLock()

    def _on_external_access(self, enabled: bool) -> None:
        if enabled:
            logger.warning("Memory store cannot be shared outside this process")

    def _get(self, uuid: UUID) -> AlarmRecord:
        record = self._records.get(uuid)
        if record is None:
            raise RecordNotFoundError(f"No alarm record {uuid}")
        return record

    def add_record(self, record: AlarmRecord) -> None:
        with self._lock:
            if record.uuid in self._records:
                raise AlarmValidationError(f"Duplicate alarm record {record.uuid}")
            self._records[record.uuid] = record
            self._order[record.uuid] = next(self._seq)

    def get_record(self, uuid: UUID) -> AlarmRecord:
        with self._lock:
            return self._get(uuid)

    def acknowledge(self, uuid: UUID, user: str) -> bool:
        with self._lock:
            record = self._get(uuid)
            if record.is_acknowledged:
                return False
            self._records[uuid] = record.model_copy(
                update={"ack_time": datetime.now(), "ack_user": user}
            )
            return True

    def add_note(self, uuid: UUID, user: str, text: str) -> Note:
        with self._lock:
            self._get(uuid)
            note = Note(timestamp=datetime.now(), user=user, text=text)
            self._notes.setdefault(uuid, []).append(note)
            return note

    def return_to_normal(self, uuid: UUID) -> bool:
        with self._lock:
            record = self._get(uuid)
            if record.is_normal:
                return False
            self._records[uuid] = record.model_copy(
                update={"normal_time": datetime.now()}
            )
            return True

    def delete_record(self, uuid: UUID) -> None:
        with self._lock:
            self._get(uuid)
            del self._records[uuid]
            self._order.pop(uuid, None)
            self._notes.pop(uuid, None)

    def delete_all_records(self) -> None:
        with self._lock:
            self._records.clear()
            self._order.clear()
            self._notes.clear()

    def get_notes(self, uuid: UUID) -> NoteCursor:
        with self._lock:
            self._get(uuid)
            return NoteCursor(self._notes.get(uuid, []))

    def snapshot(self, criteria: QueryCriteria) -> list[AlarmRecord]:
        """Matching records, sorted, as of now."""
        with self._lock:
            matched = [r for r in self._records.values() if criteria.matches(r)]
            order = dict(self._order)
        field = criteria.sort_by
        matched.sort(
            key=lambda r: (field.key(r), order.get(r.uuid, 0)),
            reverse=not criteria.ascending,
        )
        return matched

    def _query(self, criteria: QueryCriteria) -> AlarmCursor:
        return MemoryAlarmCursor(self, criteria)
