"""Declarative action registry — the invocable surface of the service.

Each action has a name, typed parameters and a result shape. Hosts (the CLI,
or anything embedding the service) list and invoke actions by name without
knowing the service API.

Result shapes:
    - none: the handler returns nothing
    - values: one row (a dict)
    - table: a list of rows
    - stream: an async iterator of rows that ends when closed
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from .config import AlgorithmConfig
from .exceptions import AlarmValidationError, NotFoundError
from .models import (
    AckFilter,
    AlarmFilter,
    AlarmRecord,
    AlarmState,
    OpenFilter,
    SortField,
    parse_uuids,
)

if TYPE_CHECKING:
    from .alarm_class import AlarmClass
    from .service import AlarmService
    from .storage.base import AlarmCursor
    from .streaming import AlarmStreamer

logger = logging.getLogger("alarm-engine")

DEFAULT_PAGE_SIZE = 500

ALARM_COLUMNS = (
    "uuid",
    "created_time",
    "alarm_class",
    "alarm_watch",
    "source_path",
    "alarm_type",
    "message",
    "ack_required",
    "ack_time",
    "ack_user",
    "normal_time",
    "is_open",
    "is_acknowledged",
    "is_normal",
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


class ParamType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    ENUM = "enum"


class ResultType(str, Enum):
    NONE = "none"
    VALUES = "values"
    TABLE = "table"
    STREAM = "stream"


def _key(name: str) -> str:
    return name.strip().lower().replace(" ", "_").replace("-", "_")


@dataclass(frozen=True)
class Parameter:
    name: str
    type: ParamType = ParamType.STRING
    default: Any = None
    required: bool = False
    choices: tuple[str, ...] = ()
    description: str = ""

    @property
    def key(self) -> str:
        """Keyword the handler receives this parameter as."""
        return _key(self.name)

    def coerce(self, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            if self.required:
                raise AlarmValidationError(f"Missing parameter: {self.name}")
            return self.default
        if self.type is ParamType.STRING:
            return str(value).strip()
        if self.type is ParamType.NUMBER:
            if isinstance(value, bool):
                raise AlarmValidationError(f"{self.name} must be a number")
            try:
                number = float(value)
            except (TypeError, ValueError) as e:
                raise AlarmValidationError(f"{self.name} must be a number: {value!r}") from e
            return int(number) if number.is_integer() else number
        if self.type is ParamType.BOOL:
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise AlarmValidationError(f"{self.name} must be true or false: {value!r}")
        text = str(value.value if isinstance(value, Enum) else value).strip()
        for choice in self.choices:
            if _key(choice) == _key(text):
                return choice
        raise AlarmValidationError(
            f"Invalid {self.name}: {value!r}. Expected one of: {', '.join(self.choices)}"
        )


@dataclass
class ActionSpec:
    name: str
    handler: Callable[..., Any]
    parameters: tuple[Parameter, ...] = ()
    result_type: ResultType = ResultType.NONE
    columns: tuple[str, ...] = ()
    description: str = ""
    read_only: bool = False  # Nothing to persist after it runs

    def bind(self, params: dict[str, Any] | None) -> dict[str, Any]:
        """Coerce raw parameters (by display name or keyword) into handler kwargs."""
        supplied = {_key(k): v for k, v in (params or {}).items()}
        known = {p.key for p in self.parameters}
        unknown = sorted(set(supplied) - known)
        if unknown:
            raise AlarmValidationError(
                f"Unknown parameter for {self.name}: {', '.join(unknown)}"
            )
        return {p.key: p.coerce(supplied.get(p.key)) for p in self.parameters}


class ActionRegistry:
    """Maps action names to their specs."""

    def __init__(self) -> None:
        self._actions: dict[str, ActionSpec] = {}

    def register(self, spec: ActionSpec) -> ActionSpec:
        self._actions[spec.name] = spec
        return spec

    def unregister(self, name: str) -> bool:
        return self._actions.pop(name, None) is not None

    def unregister_prefix(self, prefix: str) -> int:
        names = [n for n in self._actions if n.startswith(prefix)]
        for name in names:
            del self._actions[name]
        return len(names)

    def get(self, name: str) -> ActionSpec:
        spec = self._actions.get(name)
        if spec is None:
            raise NotFoundError(f"No action named {name!r}")
        return spec

    def names(self) -> list[str]:
        return sorted(self._actions)

    def clear(self) -> None:
        self._actions.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    async def invoke(self, name: str, params: dict[str, Any] | None = None) -> Any:
        spec = self.get(name)
        kwargs = spec.bind(params)
        logger.debug(f"Invoking action {name}")
        result = spec.handler(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


# -- encoding ----------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat(timespec="milliseconds")


def encode_alarm_row(service: AlarmService, record: AlarmRecord) -> dict[str, Any]:
    """One table row for a record, with handles resolved to names."""
    owner = service.get_by_handle(record.alarm_class)
    watch = service.get_by_handle(record.alarm_watch)
    return {
        "uuid": str(record.uuid),
        "created_time": _iso(record.created_time),
        "alarm_class": getattr(owner, "name", None),
        "alarm_watch": getattr(watch, "name", None),
        "source_path": record.source_path,
        "alarm_type": record.alarm_type.value,
        "message": record.message,
        "ack_required": record.ack_required,
        "ack_time": _iso(record.ack_time),
        "ack_user": record.ack_user,
        "normal_time": _iso(record.normal_time),
        "is_open": record.is_open,
        "is_acknowledged": record.is_acknowledged,
        "is_normal": record.is_normal,
    }


def _rows(service: AlarmService, cursor: AlarmCursor) -> list[dict[str, Any]]:
    with cursor:
        return [encode_alarm_row(service, record) for record in cursor]


async def _stream_rows(
    service: AlarmService, streamer: AlarmStreamer
) -> AsyncIterator[dict[str, Any]]:
    try:
        async for record in streamer:
            yield encode_alarm_row(service, record)
    finally:
        streamer.close()


# -- time ranges -------------------------------------------------------------


def _parse_time(text: str) -> datetime:
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(text)
    except ValueError as e:
        raise AlarmValidationError(f"Invalid timestamp: {text!r}") from e
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value


def parse_time_range(
    value: str | None, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """Parse ``"today"`` or ``"<start>/<end>"`` into ``[start, end)``.

    The end of an explicit range is inclusive, so one millisecond is added.
    """
    text = (value or "").strip()
    if not text or text.lower() == "today":
        midnight = (now or datetime.now()).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return midnight, midnight + timedelta(days=1)
    if text.lower() == "yesterday":
        midnight = (now or datetime.now()).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return midnight - timedelta(days=1), midnight
    parts = text.split("/")
    if len(parts) != 2:
        raise AlarmValidationError(f"Invalid time range: {value!r}")
    start = _parse_time(parts[0])
    end = _parse_time(parts[1]) + timedelta(milliseconds=1)
    if end <= start:
        raise AlarmValidationError(f"Time range ends before it starts: {value!r}")
    return start, end


# -- parameter sets ----------------------------------------------------------

_TIME_RANGE = Parameter("Time Range", default="today", description="today | <start>/<end>")
_ACK_FILTER = Parameter("Ack Filter", ParamType.ENUM, "ANY", choices=tuple(AckFilter.choices()))
_ALARM_FILTER = Parameter(
    "Alarm Filter", ParamType.ENUM, "ANY", choices=tuple(AlarmFilter.choices())
)
_OPEN_FILTER = Parameter("Open Filter", ParamType.ENUM, "ANY", choices=tuple(OpenFilter.choices()))
_SORT_BY = Parameter(
    "Sort By", ParamType.ENUM, "CREATED_TIME", choices=tuple(SortField.choices())
)
_ASCENDING = Parameter("Ascending", ParamType.BOOL, True)
_ALARM_CLASS = Parameter("Alarm Class", description="Class name; empty for all classes")
_PAGE = Parameter("Page", ParamType.NUMBER, 0)
_PAGE_SIZE = Parameter("Page Size", ParamType.NUMBER, DEFAULT_PAGE_SIZE)
_UUID = Parameter("UUID", required=True)
_USER = Parameter("User", required=True)
_STREAM_UPDATES = Parameter("Stream Updates", ParamType.BOOL, True)

_QUERY = (_TIME_RANGE, _ACK_FILTER, _ALARM_FILTER, _OPEN_FILTER, _SORT_BY, _ASCENDING)


def _query_kwargs(
    time_range: str,
    ack_filter: str,
    alarm_filter: str,
    open_filter: str,
    sort_by: str | None = None,
    ascending: bool = True,
) -> dict[str, Any]:
    start, end = parse_time_range(time_range)
    kwargs: dict[str, Any] = {
        "start": start,
        "end": end,
        "ack_filter": ack_filter,
        "alarm_filter": alarm_filter,
        "open_filter": open_filter,
    }
    if sort_by is not None:
        kwargs["sort_by"] = sort_by
        kwargs["ascending"] = ascending
    return kwargs


def register_service_actions(service: AlarmService) -> None:
    """Register the service-level actions."""
    actions = service.actions

    def acknowledge(uuids: str, user: str) -> None:
        service.acknowledge(uuids, user)

    def acknowledge_all(user: str) -> dict[str, Any]:
        return {"count": service.acknowledge_all_open(user)}

    def add_alarm_class(name: str) -> None:
        service.add_alarm_class(name)

    def remove_alarm_class(name: str) -> None:
        service.remove_alarm_class(name)

    def add_note(uuid: str, user: str, note: str) -> None:
        service.add_note(uuid, user, note)

    def delete_record(uuid: str) -> None:
        service.delete_record(uuid)

    def get_alarm(uuid: str) -> dict[str, Any]:
        return encode_alarm_row(service, service.get_alarm(uuid))

    def get_alarms(alarm_class: str | None, **query: Any) -> list[dict[str, Any]]:
        return _rows(service, service.get_alarms(alarm_class, **_query_kwargs(**query)))

    def get_open_alarms(
        alarm_class: str | None, stream_updates: bool
    ) -> AsyncIterator[dict[str, Any]]:
        return _stream_rows(service, service.get_open_alarms(alarm_class, stream_updates).open())

    def get_alarm_page(
        alarm_class: str | None, page: int, page_size: int, **query: Any
    ) -> list[dict[str, Any]]:
        cursor = service.get_alarm_page(
            alarm_class, page=int(page), page_size=int(page_size), **_query_kwargs(**query)
        )
        return _rows(service, cursor)

    def get_alarm_page_count(
        alarm_class: str | None, page_size: int, **query: Any
    ) -> dict[str, Any]:
        pages = service.get_alarm_page_count(
            alarm_class, page_size=int(page_size), **_query_kwargs(**query)
        )
        return {"pages": pages}

    def get_notes(uuid: str) -> list[dict[str, Any]]:
        with service.get_notes(uuid) as cursor:
            return [
                {"timestamp": _iso(n.timestamp), "user": n.user, "note": n.text}
                for n in cursor
            ]

    def return_to_normal(uuids: str) -> None:
        for uuid in parse_uuids(uuids):
            service.return_to_normal(uuid)

    async def update_counts() -> dict[str, Any]:
        await service.update_counts(force=True)
        return service.counts.model_dump()

    def update_source(source_path: str, value: str) -> list[dict[str, Any]]:
        return [encode_alarm_row(service, r) for r in service.update_source(source_path, value)]

    def set_log_level(level: str) -> None:
        service.set_log_level(level)

    def set_external_database_access(enabled: bool) -> None:
        service.set_external_database_access(enabled)

    filters_no_sort = (_TIME_RANGE, _ACK_FILTER, _ALARM_FILTER, _OPEN_FILTER)
    specs = [
        ActionSpec(
            "Acknowledge",
            acknowledge,
            (Parameter("UUIDs", required=True, description="Comma-separated"), _USER),
        ),
        ActionSpec(
            "Acknowledge All", acknowledge_all, (_USER,), ResultType.VALUES, ("count",)
        ),
        ActionSpec("Add Alarm Class", add_alarm_class, (Parameter("Name", required=True),)),
        ActionSpec(
            "Remove Alarm Class", remove_alarm_class, (Parameter("Name", required=True),)
        ),
        ActionSpec(
            "Add Note", add_note, (_UUID, _USER, Parameter("Note", required=True))
        ),
        ActionSpec("Delete All Records", service.delete_all_records),
        ActionSpec("Delete Record", delete_record, (_UUID,)),
        ActionSpec(
            "Get Alarm", get_alarm, (_UUID,), ResultType.VALUES, ALARM_COLUMNS, read_only=True
        ),
        ActionSpec(
            "Get Alarms",
            get_alarms,
            (_ALARM_CLASS, *_QUERY),
            ResultType.TABLE,
            ALARM_COLUMNS,
            read_only=True,
        ),
        ActionSpec(
            "Get Open Alarms",
            get_open_alarms,
            (_ALARM_CLASS, _STREAM_UPDATES),
            ResultType.STREAM,
            ALARM_COLUMNS,
            read_only=True,
        ),
        ActionSpec(
            "Get Alarm Page",
            get_alarm_page,
            (_ALARM_CLASS, *_QUERY, _PAGE, _PAGE_SIZE),
            ResultType.TABLE,
            ALARM_COLUMNS,
            read_only=True,
        ),
        ActionSpec(
            "Get Alarm Page Count",
            get_alarm_page_count,
            (_ALARM_CLASS, *filters_no_sort, _PAGE_SIZE),
            ResultType.VALUES,
            ("pages",),
            read_only=True,
        ),
        ActionSpec(
            "Get Notes",
            get_notes,
            (_UUID,),
            ResultType.TABLE,
            ("timestamp", "user", "note"),
            read_only=True,
        ),
        ActionSpec(
            "Return To Normal",
            return_to_normal,
            (Parameter("UUIDs", required=True, description="Comma-separated"),),
        ),
        ActionSpec(
            "Update Counts",
            update_counts,
            result_type=ResultType.VALUES,
            columns=("total", "open", "in_alarm", "unacked"),
            read_only=True,
        ),
        ActionSpec(
            "Update Source",
            update_source,
            (Parameter("Source Path", required=True), Parameter("Value", default="")),
            ResultType.TABLE,
            ALARM_COLUMNS,
        ),
        ActionSpec(
            "Set Log Level",
            set_log_level,
            (Parameter("Level", ParamType.ENUM, "INFO", choices=LOG_LEVELS),),
            read_only=True,
        ),
        ActionSpec(
            "Set External Database Access",
            set_external_database_access,
            (Parameter("Enabled", ParamType.BOOL, required=True),),
        ),
    ]
    for spec in specs:
        actions.register(spec)


def register_class_actions(service: AlarmService, alarm_class: AlarmClass) -> None:
    """Register the per-class actions under ``"<class>/"``."""
    prefix = f"{alarm_class.name}/"

    def add_watch(
        source_path: str,
        name: str,
        algorithm: str,
        alarm_type: str,
        alarm_value: bool,
        min_value: float | None,
        max_value: float | None,
        stale_seconds: float,
        message: str,
    ) -> dict[str, Any]:
        config = AlgorithmConfig(
            type=algorithm,
            alarm_type=AlarmState.parse(alarm_type),
            alarm_value=alarm_value,
            min_value=min_value,
            max_value=max_value,
            stale_seconds=stale_seconds,
            message=message or "",
        )
        watch = alarm_class.add_watch(source_path, name or "", config)
        return {"handle": watch.handle, "name": watch.name}

    def acknowledge_all(user: str) -> dict[str, Any]:
        return {"count": alarm_class.acknowledge_all_open(user)}

    def get_alarms(**query: Any) -> list[dict[str, Any]]:
        return _rows(service, alarm_class.get_alarms(**_query_kwargs(**query)))

    def get_open_alarms(stream_updates: bool) -> AsyncIterator[dict[str, Any]]:
        return _stream_rows(service, alarm_class.get_open_alarms(stream_updates).open())

    specs = [
        ActionSpec(
            prefix + "Add Watch",
            add_watch,
            (
                Parameter("Source Path", required=True),
                Parameter("Name", default=""),
                Parameter(
                    "Algorithm",
                    ParamType.ENUM,
                    "boolean",
                    choices=("boolean", "out_of_range", "stale"),
                ),
                Parameter(
                    "Alarm Type", ParamType.ENUM, "ALARM", choices=("ALERT", "ALARM", "FAULT")
                ),
                Parameter("Alarm Value", ParamType.BOOL, True),
                Parameter("Min Value", ParamType.NUMBER),
                Parameter("Max Value", ParamType.NUMBER),
                Parameter("Stale Seconds", ParamType.NUMBER, 60),
                Parameter("Message", default=""),
            ),
            ResultType.VALUES,
            ("handle", "name"),
        ),
        ActionSpec(
            prefix + "Acknowledge All", acknowledge_all, (_USER,), ResultType.VALUES, ("count",)
        ),
        ActionSpec(
            prefix + "Get Alarms",
            get_alarms,
            _QUERY,
            ResultType.TABLE,
            ALARM_COLUMNS,
            read_only=True,
        ),
        ActionSpec(
            prefix + "Get Open Alarms",
            get_open_alarms,
            (_STREAM_UPDATES,),
            ResultType.STREAM,
            ALARM_COLUMNS,
            read_only=True,
        ),
    ]
    for spec in specs:
        service.actions.register(spec)
