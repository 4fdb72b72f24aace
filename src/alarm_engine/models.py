"""Pydantic models for alarm records, notes, counts and query filters."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from .exceptions import AlarmValidationError


def _normalize(value: str) -> str:
    return value.strip().upper().replace(" ", "_").replace("-", "_")


class _Vocabulary(str, Enum):
    """String enum that parses its fixed vocabulary case-insensitively."""

    @classmethod
    def parse(cls, value: Any, default: Any = None):
        if value is None or (isinstance(value, str) and not value.strip()):
            if default is not None:
                return default
            raise AlarmValidationError(f"Missing {cls.__name__} value")
        if isinstance(value, cls):
            return value
        key = _normalize(str(value))
        for member in cls:
            if key in (member.name, _normalize(member.value)):
                return member
        choices = ", ".join(m.value for m in cls)
        raise AlarmValidationError(
            f"Invalid {cls.__name__}: {value!r}. Expected one of: {choices}"
        )

    @classmethod
    def choices(cls) -> list[str]:
        return [m.value for m in cls]


class AlarmState(_Vocabulary):
    NORMAL = "NORMAL"
    ALERT = "ALERT"
    ALARM = "ALARM"
    FAULT = "FAULT"

    @property
    def is_normal(self) -> bool:
        return self is AlarmState.NORMAL


class AckFilter(_Vocabulary):
    ANY = "ANY"
    ACKED = "ACKED"
    UNACKED = "UNACKED"

    def matches(self, record: AlarmRecord) -> bool:
        if self is AckFilter.ACKED:
            return record.is_acknowledged
        if self is AckFilter.UNACKED:
            return not record.is_acknowledged
        return True


class AlarmFilter(_Vocabulary):
    """ALARM matches every non-normal severity."""

    ANY = "ANY"
    NORMAL = "NORMAL"
    ALARM = "ALARM"

    def matches(self, record: AlarmRecord) -> bool:
        if self is AlarmFilter.NORMAL:
            return record.is_normal
        if self is AlarmFilter.ALARM:
            return not record.is_normal
        return True


class OpenFilter(_Vocabulary):
    ANY = "ANY"
    OPEN = "OPEN"
    CLOSED = "CLOSED"

    def matches(self, record: AlarmRecord) -> bool:
        if self is OpenFilter.OPEN:
            return record.is_open
        if self is OpenFilter.CLOSED:
            return not record.is_open
        return True


class SortField(_Vocabulary):
    CREATED_TIME = "CREATED_TIME"
    NORMAL_TIME = "NORMAL_TIME"
    ACK_TIME = "ACK_TIME"
    ALARM_CLASS = "ALARM_CLASS"
    ALARM_TYPE = "ALARM_TYPE"
    SOURCE_PATH = "SOURCE_PATH"

    @property
    def attribute(self) -> str:
        return self.value.lower()

    def key(self, record: AlarmRecord) -> tuple:
        """Sort key that places missing values first, like SQL NULLs."""
        value = getattr(record, self.attribute)
        if isinstance(value, Enum):
            value = value.value
        return (value is not None, value if value is not None else 0)


class AlarmRecord(BaseModel):
    """One alarm occurrence.

    Records are immutable; providers apply a mutation by swapping in a copy.
    ``alarm_class`` and ``alarm_watch`` hold registry handles rather than
    object references so a record outlives the objects that raised it.
    """

    model_config = ConfigDict(frozen=True)

    uuid: UUID
    alarm_class: int
    alarm_watch: int | None = None
    source_path: str = ""
    alarm_type: AlarmState = AlarmState.ALARM
    created_time: datetime
    message: str = ""
    ack_required: bool = True
    ack_time: datetime | None = None
    ack_user: str | None = None
    normal_time: datetime | None = None

    @property
    def is_normal(self) -> bool:
        return self.normal_time is not None

    @property
    def is_open(self) -> bool:
        # Stays open after returning to normal until a required ack arrives.
        return not self.is_normal or (self.ack_required and not self.is_acknowledged)

    @property
    def is_acknowledged(self) -> bool:
        return self.ack_time is not None

    @property
    def state(self) -> AlarmState:
        return AlarmState.NORMAL if self.is_normal else self.alarm_type


class Note(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    user: str
    text: str


class AlarmCounts(BaseModel):
    total: int = 0
    open: int = 0
    in_alarm: int = 0
    unacked: int = 0

    def tally(self, record: AlarmRecord) -> None:
        self.total += 1
        if record.is_open:
            self.open += 1
        if not record.is_normal:
            self.in_alarm += 1
        if record.ack_required and not record.is_acknowledged:
            self.unacked += 1


class AlarmRecordBuilder:
    """Fluent builder handed out by ``StorageProvider.new_record()``."""

    def __init__(self) -> None:
        self._fields: dict[str, Any] = {}

    def set_uuid(self, value: UUID) -> AlarmRecordBuilder:
        self._fields["uuid"] = value
        return self

    def set_alarm_class(self, handle: int) -> AlarmRecordBuilder:
        self._fields["alarm_class"] = handle
        return self

    def set_alarm_watch(self, handle: int | None) -> AlarmRecordBuilder:
        self._fields["alarm_watch"] = handle
        return self

    def set_alarm_type(self, state: AlarmState) -> AlarmRecordBuilder:
        self._fields["alarm_type"] = state
        return self

    def set_created_time(self, value: datetime) -> AlarmRecordBuilder:
        self._fields["created_time"] = value
        return self

    def set_message(self, value: str) -> AlarmRecordBuilder:
        self._fields["message"] = value
        return self

    def set_source_path(self, value: str) -> AlarmRecordBuilder:
        self._fields["source_path"] = value
        return self

    def set_ack_required(self, value: bool) -> AlarmRecordBuilder:
        self._fields["ack_required"] = value
        return self

    def build(self) -> AlarmRecord:
        try:
            return AlarmRecord(**self._fields)
        except ValueError as e:
            raise AlarmValidationError(f"Invalid alarm record: {e}") from e


def parse_uuids(value: str | UUID | Iterable[str | UUID]) -> list[UUID]:
    """Parse one uuid, a comma-separated string of them, or an iterable."""
    if isinstance(value, UUID):
        return [value]
    items = value.split(",") if isinstance(value, str) else list(value)
    uuids: list[UUID] = []
    for item in items:
        if isinstance(item, UUID):
            uuids.append(item)
            continue
        text = str(item).strip()
        if not text:
            continue
        try:
            uuids.append(UUID(text))
        except ValueError as e:
            raise AlarmValidationError(f"Invalid alarm uuid: {text!r}") from e
    if not uuids:
        raise AlarmValidationError("Missing alarm uuid")
    return uuids
