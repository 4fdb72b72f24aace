"""Storage abstraction layer — StorageProvider ABC and the cursor protocol.

A provider is the single source of truth for alarm records and notes.
Every mutation is atomic per record: it either applies completely before
the call returns or raises and leaves the record as it was.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from ..exceptions import AlarmEngineError, AlarmValidationError
from ..models import (
    AckFilter,
    AlarmFilter,
    AlarmRecord,
    AlarmRecordBuilder,
    AlarmState,
    Note,
    OpenFilter,
    SortField,
)


@dataclass(frozen=True)
class QueryCriteria:
    """Normalized query parameters shared by every provider.

    ``start`` is inclusive and ``end`` exclusive.
    """

    alarm_class: int | None = None
    start: datetime | None = None
    end: datetime | None = None
    ack_filter: AckFilter = AckFilter.ANY
    alarm_filter: AlarmFilter = AlarmFilter.ANY
    open_filter: OpenFilter = OpenFilter.ANY
    sort_by: SortField = SortField.CREATED_TIME
    ascending: bool = True

    def matches(self, record: AlarmRecord) -> bool:
        if self.alarm_class is not None and record.alarm_class != self.alarm_class:
            return False
        if self.start is not None and record.created_time < self.start:
            return False
        if self.end is not None and record.created_time >= self.end:
            return False
        return (
            self.ack_filter.matches(record)
            and self.alarm_filter.matches(record)
            and self.open_filter.matches(record)
        )


class AlarmCursor(ABC):
    """Forward-only, single-pass view over a query result.

    Call ``next()`` to advance; while it returns True the accessors describe
    the current record. Paging must be set before the first ``next()`` and is
    applied after filtering and sorting. Cursors hold storage resources until
    ``close()``; use them as context managers so every exit path releases.
    """

    def __init__(self, provider: StorageProvider) -> None:
        self._provider = provider
        self._record: AlarmRecord | None = None
        self._offset = 0
        self._limit: int | None = None
        self._started = False
        self._closed = False

    def set_paging(self, page: int, page_size: int) -> None:
        if self._started:
            raise AlarmEngineError("Paging must be set before the first next()")
        if page < 0 or page_size < 0:
            raise AlarmValidationError(
                f"Invalid paging: page={page}, page_size={page_size}"
            )
        if page_size == 0:
            self._offset, self._limit = 0, None
            return
        self._offset = page * page_size
        self._limit = page_size

    def next(self) -> bool:
        if self._closed:
            return False
        try:
            if not self._started:
                self._started = True
                self._execute(self._offset, self._limit)
            self._record = self._fetch()
        except BaseException:
            self.close()
            raise
        if self._record is None:
            self.close()
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._record = None
        self._release()

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def _execute(self, offset: int, limit: int | None) -> None:
        """Prepare results, skipping ``offset`` rows and returning at most ``limit``."""

    @abstractmethod
    def _fetch(self) -> AlarmRecord | None:
        """Return the next record, or None at exhaustion."""

    def _release(self) -> None:
        """Release storage handles. Called exactly once."""

    # -- accessors ---------------------------------------------------------

    @property
    def record(self) -> AlarmRecord:
        if self._record is None:
            raise AlarmEngineError("Cursor is not positioned on a record")
        return self._record

    @property
    def uuid(self) -> UUID:
        return self.record.uuid

    @property
    def created_time(self) -> datetime:
        return self.record.created_time

    @property
    def ack_time(self) -> datetime | None:
        return self.record.ack_time

    @property
    def ack_user(self) -> str | None:
        return self.record.ack_user

    @property
    def normal_time(self) -> datetime | None:
        return self.record.normal_time

    @property
    def alarm_type(self) -> AlarmState:
        return self.record.alarm_type

    @property
    def message(self) -> str:
        return self.record.message

    @property
    def source_path(self) -> str:
        return self.record.source_path

    @property
    def alarm_class_handle(self) -> int:
        return self.record.alarm_class

    @property
    def alarm_watch_handle(self) -> int | None:
        return self.record.alarm_watch

    @property
    def is_acknowledged(self) -> bool:
        return self.record.is_acknowledged

    @property
    def is_ack_required(self) -> bool:
        return self.record.ack_required

    @property
    def is_normal(self) -> bool:
        return self.record.is_normal

    @property
    def is_open(self) -> bool:
        return self.record.is_open

    def get_alarm_class(self) -> Any:
        """The live alarm class for the current record, or None if it was removed."""
        return self._provider.lookup(self.record.alarm_class)

    def get_alarm_watch(self) -> Any:
        """The live watch for the current record, or None if absent or removed."""
        return self._provider.lookup(self.record.alarm_watch)

    def __enter__(self) -> AlarmCursor:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __iter__(self) -> Iterator[AlarmRecord]:
        while self.next():
            yield self.record


class NoteCursor:
    """Forward-only sequence of the notes attached to one record."""

    def __init__(self, notes: Iterable[Note]) -> None:
        self._notes = iter(list(notes))
        self._note: Note | None = None
        self._closed = False

    def next(self) -> bool:
        if self._closed:
            return False
        self._note = next(self._notes, None)
        if self._note is None:
            self.close()
            return False
        return True

    @property
    def note(self) -> Note:
        if self._note is None:
            raise AlarmEngineError("Cursor is not positioned on a note")
        return self._note

    @property
    def timestamp(self) -> datetime:
        return self.note.timestamp

    @property
    def user(self) -> str:
        return self.note.user

    @property
    def text(self) -> str:
        return self.note.text

    def close(self) -> None:
        self._closed = True
        self._note = None

    def __enter__(self) -> NoteCursor:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __iter__(self) -> Iterator[Note]:
        while self.next():
            yield self.note


class StorageProvider(ABC):
    """Abstract interface for all alarm record stores."""

    def __init__(self) -> None:
        self._service: Any = None
        self._started = False
        self._external_access = False

    @property
    def service(self) -> Any:
        return self._service

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def external_access_enabled(self) -> bool:
        return self._external_access

    def start(self, service: Any = None) -> None:
        """Open the store. ``service`` resolves record handles for cursors."""
        self._service = service
        self._open()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._close()

    def lookup(self, handle: int | None) -> Any:
        if handle is None or self._service is None:
            return None
        return self._service.get_by_handle(handle)

    def new_record(self) -> AlarmRecordBuilder:
        return AlarmRecordBuilder()

    def change_database_access_to(self, enabled: bool) -> None:
        """Allow or deny access to the store from outside this process."""
        self._external_access = bool(enabled)
        self._on_external_access(self._external_access)

    def query_alarms(
        self,
        alarm_class: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        ack_filter: AckFilter | str | None = None,
        alarm_filter: AlarmFilter | str | None = None,
        open_filter: OpenFilter | str | None = None,
        sort_by: SortField | str | None = None,
        ascending: bool = True,
    ) -> AlarmCursor:
        """Query records created in ``[start, end)`` matching every filter."""
        return self._query(
            self.build_criteria(
                alarm_class, start, end, ack_filter, alarm_filter, open_filter,
                sort_by, ascending,
            )
        )

    def build_criteria(
        self,
        alarm_class: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        ack_filter: AckFilter | str | None = None,
        alarm_filter: AlarmFilter | str | None = None,
        open_filter: OpenFilter | str | None = None,
        sort_by: SortField | str | None = None,
        ascending: bool = True,
    ) -> QueryCriteria:
        if start is not None and end is not None and end < start:
            raise AlarmValidationError(f"Time range ends before it starts: {start} / {end}")
        return QueryCriteria(
            alarm_class=alarm_class,
            start=start,
            end=end,
            ack_filter=AckFilter.parse(ack_filter, AckFilter.ANY),
            alarm_filter=AlarmFilter.parse(alarm_filter, AlarmFilter.ANY),
            open_filter=OpenFilter.parse(open_filter, OpenFilter.ANY),
            sort_by=SortField.parse(sort_by, SortField.CREATED_TIME),
            ascending=bool(ascending),
        )

    def query_open_alarms(self, alarm_class: int | None = None) -> AlarmCursor:
        return self.query_alarms(alarm_class, open_filter=OpenFilter.OPEN)

    def count_alarms(self, alarm_class: int | None = None, **filters: Any) -> int:
        count = 0
        with self.query_alarms(alarm_class, **filters) as cursor:
            while cursor.next():
                count += 1
        return count

    # -- hooks -------------------------------------------------------------

    def _open(self) -> None:
        """Acquire storage resources."""

    def _close(self) -> None:
        """Release storage resources."""

    def _on_external_access(self, enabled: bool) -> None:
        """React to the external access toggle."""

    # -- contract ----------------------------------------------------------

    @abstractmethod
    def add_record(self, record: AlarmRecord) -> None: ...

    @abstractmethod
    def get_record(self, uuid: UUID) -> AlarmRecord:
        """Return the record or raise RecordNotFoundError."""
        ...

    @abstractmethod
    def acknowledge(self, uuid: UUID, user: str) -> bool:
        """Acknowledge once. Returns False if it was already acknowledged."""
        ...

    @abstractmethod
    def add_note(self, uuid: UUID, user: str, text: str) -> Note: ...

    @abstractmethod
    def return_to_normal(self, uuid: UUID) -> bool:
        """Close the record. Returns False if it was already normal."""
        ...

    @abstractmethod
    def delete_record(self, uuid: UUID) -> None: ...

    @abstractmethod
    def delete_all_records(self) -> None: ...

    @abstractmethod
    def get_notes(self, uuid: UUID) -> NoteCursor: ...

    @abstractmethod
    def _query(self, criteria: QueryCriteria) -> AlarmCursor: ...
