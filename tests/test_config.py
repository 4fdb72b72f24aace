"""Tests for configuration loading, env fallback and round-trips."""

from uuid import uuid4

import pytest

from alarm_engine.config import (
    AlarmClassConfig,
    AlarmServiceConfig,
    WatchConfig,
    load_config,
    save_config,
)
from alarm_engine.exceptions import ConfigError
from alarm_engine.models import AlarmState


class TestDefaults:
    def test_defaults_when_file_missing(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ALARM_ENGINE_PROVIDER", raising=False)
        config = load_config(tmp_path / "missing.yaml")
        assert config.next_handle == 1
        assert config.housekeeping_interval_seconds == 10.0
        assert config.storage.provider == "memory"
        assert config.alarm_classes == []

    def test_class_defaults(self):
        cls = AlarmClassConfig(name="Plant")
        assert cls.max_records == 10000
        assert cls.max_age_days == 365.0
        assert cls.alarm_ack_required is True
        assert cls.webhook_url == ""

    def test_watch_defaults_to_boolean_algorithm(self):
        watch = WatchConfig(source_path="/pump")
        assert watch.algorithm.type == "boolean"
        assert watch.alarm_state is AlarmState.NORMAL
        assert watch.last_alarm_uuid is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == AlarmServiceConfig()


class TestEnvironment:
    def test_env_fallback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ALARM_ENGINE_PROVIDER", "sqlite")
        monkeypatch.setenv("ALARM_ENGINE_DATABASE", str(tmp_path / "a.db"))
        monkeypatch.setenv("ALARM_ENGINE_HOUSEKEEPING_SECONDS", "2.5")

        config = load_config(tmp_path / "missing.yaml")

        assert config.storage.provider == "sqlite"
        assert config.storage.database_path == str(tmp_path / "a.db")
        assert config.housekeeping_interval_seconds == 2.5

    def test_bad_interval(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ALARM_ENGINE_PROVIDER", "memory")
        monkeypatch.setenv("ALARM_ENGINE_HOUSEKEEPING_SECONDS", "soon")
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.yaml")

    def test_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PLANT_HOOK", "https://hooks.example.com/plant")
        path = tmp_path / "config.yaml"
        path.write_text(
            "alarm_classes:\n"
            "  - name: Plant\n"
            "    webhook_url: ${PLANT_HOOK}\n"
        )
        config = load_config(path)
        assert config.alarm_classes[0].webhook_url == "https://hooks.example.com/plant"

    def test_unset_variable_becomes_empty(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("log_level: INFO${NOT_SET_ANYWHERE}\n")
        assert load_config(path).log_level == "INFO"


class TestErrors:
    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("alarm_classes: [unclosed\n")
        with pytest.raises(ConfigError, match="Cannot parse"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("next_handle: lots\n")
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(path)


class TestRoundTrip:
    def test_save_and_load(self, tmp_path):
        last = uuid4()
        config = AlarmServiceConfig(
            next_handle=12,
            alarm_classes=[
                AlarmClassConfig(
                    name="Plant",
                    handle=3,
                    max_records=50,
                    watches=[
                        WatchConfig(
                            source_path="/pump",
                            handle=4,
                            alarm_state=AlarmState.FAULT,
                            last_alarm_uuid=last,
                        )
                    ],
                )
            ],
        )
        path = save_config(config, tmp_path / "nested" / "config.yaml")

        loaded = load_config(path)

        assert loaded == config
        watch = loaded.alarm_classes[0].watches[0]
        assert watch.last_alarm_uuid == last
        assert watch.alarm_state is AlarmState.FAULT
