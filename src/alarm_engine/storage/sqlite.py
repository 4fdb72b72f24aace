"""SQLite provider — durable alarm history.

Tables:
    - alarm_records: one row per alarm occurrence
    - alarm_notes: free-text notes keyed by record uuid

Writes go through one connection guarded by a lock, each inside its own
``BEGIN IMMEDIATE`` transaction. Every cursor opens its own read
connection; with WAL journaling a cursor reads a consistent snapshot while
writers continue.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

from ..exceptions import AlarmEngineError, RecordNotFoundError, StorageError
from ..models import (
    AckFilter,
    AlarmFilter,
    AlarmRecord,
    AlarmState,
    Note,
    OpenFilter,
)
from .base import AlarmCursor, NoteCursor, QueryCriteria, StorageProvider

logger = logging.getLogger("alarm-engine")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS alarm_records (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL UNIQUE,
    alarm_class INTEGER NOT NULL,
    alarm_watch INTEGER,
    source_path TEXT NOT NULL DEFAULT '',
    alarm_type TEXT NOT NULL,
    created_time TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT '',
    ack_required INTEGER NOT NULL DEFAULT 1,
    ack_time TEXT,
    ack_user TEXT,
    normal_time TEXT
);

CREATE INDEX IF NOT EXISTS idx_alarm_records_class_created
ON alarm_records(alarm_class, created_time);

CREATE INDEX IF NOT EXISTS idx_alarm_records_normal
ON alarm_records(normal_time);

CREATE TABLE IF NOT EXISTS alarm_notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    alarm_uuid TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    user TEXT NOT NULL,
    text TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_alarm_notes_uuid
ON alarm_notes(alarm_uuid);
"""

_COLUMNS = (
    "uuid, alarm_class, alarm_watch, source_path, alarm_type, created_time, "
    "message, ack_required, ack_time, ack_user, normal_time"
)


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _row_to_record(row: sqlite3.Row) -> AlarmRecord:
    return AlarmRecord(
        uuid=UUID(row["uuid"]),
        alarm_class=row["alarm_class"],
        alarm_watch=row["alarm_watch"],
        source_path=row["source_path"],
        alarm_type=AlarmState(row["alarm_type"]),
        created_time=_from_db(row["created_time"]),
        message=row["message"],
        ack_required=bool(row["ack_required"]),
        ack_time=_from_db(row["ack_time"]),
        ack_user=row["ack_user"],
        normal_time=_from_db(row["normal_time"]),
    )


def _where(criteria: QueryCriteria) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if criteria.alarm_class is not None:
        clauses.append("alarm_class = ?")
        params.append(criteria.alarm_class)
    if criteria.start is not None:
        clauses.append("created_time >= ?")
        params.append(_to_db(criteria.start))
    if criteria.end is not None:
        clauses.append("created_time < ?")
        params.append(_to_db(criteria.end))
    if criteria.ack_filter is AckFilter.ACKED:
        clauses.append("ack_time IS NOT NULL")
    elif criteria.ack_filter is AckFilter.UNACKED:
        clauses.append("ack_time IS NULL")
    if criteria.alarm_filter is AlarmFilter.NORMAL:
        clauses.append("normal_time IS NOT NULL")
    elif criteria.alarm_filter is AlarmFilter.ALARM:
        clauses.append("normal_time IS NULL")
    if criteria.open_filter is OpenFilter.OPEN:
        clauses.append("(normal_time IS NULL OR (ack_required = 1 AND ack_time IS NULL))")
    elif criteria.open_filter is OpenFilter.CLOSED:
        clauses.append("normal_time IS NOT NULL AND (ack_required = 0 OR ack_time IS NOT NULL)")
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


class SqliteAlarmCursor(AlarmCursor):
    def __init__(
        self, provider: SqliteProvider, sql: str, params: list[Any]
    ) -> None:
        super().__init__(provider)
        self._db_path = provider.db_path
        self._sql = sql
        self._params = params
        self._conn: sqlite3.Connection | None = None
        self._rows: sqlite3.Cursor | None = None

    def _execute(self, offset: int, limit: int | None) -> None:
        sql = self._sql
        params = list(self._params)
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._rows = self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite query failed: {e}") from e

    def _fetch(self) -> AlarmRecord | None:
        if self._rows is None:
            return None
        try:
            row = self._rows.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"SQLite fetch failed: {e}") from e
        return None if row is None else _row_to_record(row)

    def _release(self) -> None:
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._rows = None


class SqliteProvider(StorageProvider):
    """Stores alarm history in a SQLite database file."""

    def __init__(self, db_path: str = "~/.alarm-engine/alarms.db") -> None:
        super().__init__()
        self.db_path = str(Path(db_path).expanduser())
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def _open(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                self.db_path, isolation_level=None, check_same_thread=False
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open {self.db_path}: {e}") from e
        self._conn = conn
        logger.info(f"SQLite alarm store opened: {self.db_path}")

    def _close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _on_external_access(self, enabled: bool) -> None:
        # Fold the WAL into the main file so outside readers see every row.
        if enabled and self._conn is not None:
            with self._lock:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        logger.info(f"External database access {'enabled' if enabled else 'disabled'}")

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise AlarmEngineError("SQLite provider is not started")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._require_conn()
        with self._lock:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"SQLite begin failed: {e}") from e
            try:
                yield conn
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(f"SQLite write failed: {e}") from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(f"SQLite commit failed: {e}") from e

    def _select(self, conn: sqlite3.Connection, uuid: UUID) -> sqlite3.Row:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM alarm_records WHERE uuid = ?", (str(uuid),)
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"No alarm record {uuid}")
        return row

    def add_record(self, record: AlarmRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO alarm_records ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(record.uuid),
                    record.alarm_class,
                    record.alarm_watch,
                    record.source_path,
                    record.alarm_type.value,
                    _to_db(record.created_time),
                    record.message,
                    int(record.ack_required),
                    _to_db(record.ack_time),
                    record.ack_user,
                    _to_db(record.normal_time),
                ),
            )

    def get_record(self, uuid: UUID) -> AlarmRecord:
        conn = self._require_conn()
        with self._lock:
            try:
                return _row_to_record(self._select(conn, uuid))
            except sqlite3.Error as e:
                raise StorageError(f"SQLite read failed: {e}") from e

    def acknowledge(self, uuid: UUID, user: str) -> bool:
        with self._transaction() as conn:
            if self._select(conn, uuid)["ack_time"] is not None:
                return False
            conn.execute(
                "UPDATE alarm_records SET ack_time = ?, ack_user = ? WHERE uuid = ?",
                (_to_db(datetime.now()), user, str(uuid)),
            )
        return True

    def add_note(self, uuid: UUID, user: str, text: str) -> Note:
        note = Note(timestamp=datetime.now(), user=user, text=text)
        with self._transaction() as conn:
            self._select(conn, uuid)
            conn.execute(
                "INSERT INTO alarm_notes (alarm_uuid, timestamp, user, text) "
                "VALUES (?, ?, ?, ?)",
                (str(uuid), _to_db(note.timestamp), user, text),
            )
        return note

    def return_to_normal(self, uuid: UUID) -> bool:
        with self._transaction() as conn:
            if self._select(conn, uuid)["normal_time"] is not None:
                return False
            conn.execute(
                "UPDATE alarm_records SET normal_time = ? WHERE uuid = ?",
                (_to_db(datetime.now()), str(uuid)),
            )
        return True

    def delete_record(self, uuid: UUID) -> None:
        with self._transaction() as conn:
            self._select(conn, uuid)
            conn.execute("DELETE FROM alarm_notes WHERE alarm_uuid = ?", (str(uuid),))
            conn.execute("DELETE FROM alarm_records WHERE uuid = ?", (str(uuid),))

    def delete_all_records(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM alarm_notes")
            conn.execute("DELETE FROM alarm_records")

    def get_notes(self, uuid: UUID) -> NoteCursor:
        conn = self._require_conn()
        with self._lock:
            try:
                self._select(conn, uuid)
                rows = conn.execute(
                    "SELECT timestamp, user, text FROM alarm_notes "
                    "WHERE alarm_uuid = ? ORDER BY id",
                    (str(uuid),),
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"SQLite read failed: {e}") from e
        return NoteCursor(
            Note(timestamp=_from_db(r["timestamp"]), user=r["user"], text=r["text"])
            for r in rows
        )

    def count_alarms(self, alarm_class: int | None = None, **filters: Any) -> int:
        where, params = _where(self.build_criteria(alarm_class, **filters))
        conn = self._require_conn()
        with self._lock:
            try:
                row = conn.execute(
                    f"SELECT COUNT(*) FROM alarm_records{where}", params
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"SQLite count failed: {e}") from e
        return int(row[0])

    def _query(self, criteria: QueryCriteria) -> AlarmCursor:
        self._require_conn()
        where, params = _where(criteria)
        direction = "ASC" if criteria.ascending else "DESC"
        column = criteria.sort_by.attribute
        sql = (
            f"SELECT {_COLUMNS} FROM alarm_records{where} "
            f"ORDER BY {column} {direction}, seq {direction}"
        )
        return SqliteAlarmCursor(self, sql, params)
