"""Tests for the SQLite provider beyond the shared contract."""

from datetime import datetime
from uuid import uuid4

import pytest

from alarm_engine.config import StorageConfig
from alarm_engine.exceptions import AlarmEngineError, ConfigError
from alarm_engine.models import AlarmRecord, AlarmState
from alarm_engine.storage import MemoryProvider, SqliteProvider, create_provider


def _record() -> AlarmRecord:
    return AlarmRecord(
        uuid=uuid4(),
        alarm_class=1,
        alarm_type=AlarmState.ALERT,
        created_time=datetime(2024, 1, 2, 3, 4, 5, 678901),
        message="tank low",
    )


class TestSqliteProvider:
    def test_records_survive_restart(self, tmp_path):
        path = tmp_path / "alarms.db"
        first = SqliteProvider(str(path))
        first.start()
        record = _record()
        first.add_record(record)
        first.add_note(record.uuid, "ops", "checked")
        first.acknowledge(record.uuid, "ops")
        first.stop()

        second = SqliteProvider(str(path))
        second.start()
        stored = second.get_record(record.uuid)
        assert stored.created_time == record.created_time
        assert stored.ack_user == "ops"
        with second.get_notes(record.uuid) as notes:
            assert [n.text for n in notes] == ["checked"]
        second.stop()

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "alarms.db"
        provider = SqliteProvider(str(path))
        provider.start()
        assert path.exists()
        provider.stop()

    def test_requires_start(self, tmp_path):
        provider = SqliteProvider(str(tmp_path / "alarms.db"))
        with pytest.raises(AlarmEngineError):
            provider.add_record(_record())

    def test_external_access_toggle(self, tmp_path):
        provider = SqliteProvider(str(tmp_path / "alarms.db"))
        provider.start()
        provider.add_record(_record())
        provider.change_database_access_to(True)
        assert provider.external_access_enabled
        provider.change_database_access_to(False)
        assert not provider.external_access_enabled
        assert provider.count_alarms() == 1
        provider.stop()

    def test_stop_is_idempotent(self, tmp_path):
        provider = SqliteProvider(str(tmp_path / "alarms.db"))
        provider.start()
        provider.stop()
        provider.stop()
        assert not provider.is_started


class TestCreateProvider:
    def test_memory(self):
        assert isinstance(create_provider(StorageConfig(provider="memory")), MemoryProvider)

    def test_sqlite(self, tmp_path):
        provider = create_provider(
            StorageConfig(provider="SQLite", database_path=str(tmp_path / "a.db"))
        )
        assert isinstance(provider, SqliteProvider)
        assert provider.db_path == str(tmp_path / "a.db")

    def test_unknown(self):
        with pytest.raises(ConfigError, match="Unknown storage provider"):
            create_provider(StorageConfig(provider="mongo"))
