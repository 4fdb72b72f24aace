"""Configuration loading and validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from uuid import UUID

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigError
from .models import AlarmState

DEFAULT_CONFIG_PATH = "~/.alarm-engine/config.yaml"


class AlgorithmConfig(BaseModel):
    type: str = "boolean"  # "boolean" | "out_of_range" | "stale"
    alarm_type: AlarmState = AlarmState.ALARM
    alarm_value: bool = True  # boolean: value that raises the alarm
    min_value: float | None = None  # out_of_range
    max_value: float | None = None  # out_of_range
    stale_seconds: float = 60.0  # stale
    message: str = ""  # Overrides the generated alarm message


class WatchConfig(BaseModel):
    source_path: str
    name: str = ""
    handle: int | None = None
    algorithm: AlgorithmConfig | None = Field(default_factory=AlgorithmConfig)
    # Cached watch state, reconciled against the store at startup.
    alarm_state: AlarmState = AlarmState.NORMAL
    last_alarm_uuid: UUID | None = None


class AlarmClassConfig(BaseModel):
    name: str
    handle: int | None = None
    max_records: int = 10000  # 0 = unlimited
    max_age_days: float = 365.0  # 0 = unlimited
    alert_ack_required: bool = True
    alarm_ack_required: bool = True
    fault_ack_required: bool = True
    webhook_url: str = ""
    watches: list[WatchConfig] = Field(default_factory=list)


class StorageConfig(BaseModel):
    provider: str = "memory"  # "memory" | "sqlite"
    database_path: str = "~/.alarm-engine/alarms.db"


class AlarmServiceConfig(BaseModel):
    next_handle: int = 1
    log_level: str = "INFO"
    housekeeping_interval_seconds: float = 10.0
    external_db_access_enabled: bool = False
    storage: StorageConfig = Field(default_factory=StorageConfig)
    alarm_classes: list[AlarmClassConfig] = Field(default_factory=list)


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} with environment variable values."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return re.sub(r"\$\{(\w+)\}", replacer, text)


def _config_from_env() -> AlarmServiceConfig:
    """Build config from environment variables (for container deployment)."""
    try:
        interval = float(os.environ.get("ALARM_ENGINE_HOUSEKEEPING_SECONDS", "10"))
    except ValueError as e:
        raise ConfigError(f"Invalid ALARM_ENGINE_HOUSEKEEPING_SECONDS: {e}") from e
    return AlarmServiceConfig(
        housekeeping_interval_seconds=interval,
        storage=StorageConfig(
            provider=os.environ.get("ALARM_ENGINE_PROVIDER", "memory"),
            database_path=os.environ.get(
                "ALARM_ENGINE_DATABASE", "~/.alarm-engine/alarms.db"
            ),
        ),
    )


def load_config(path: str | Path | None = None) -> AlarmServiceConfig:
    """Load config from YAML file, env vars, or defaults.

    Priority: config.yaml (with ${ENV} interpolation) > env vars > defaults.
    """
    path = Path(path or DEFAULT_CONFIG_PATH).expanduser()

    if not path.exists():
        if os.environ.get("ALARM_ENGINE_PROVIDER"):
            return _config_from_env()
        return AlarmServiceConfig()

    try:
        data = yaml.safe_load(_interpolate_env_vars(path.read_text()))
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e
    if data is None:
        return AlarmServiceConfig()
    try:
        return AlarmServiceConfig(**data)
    except (TypeError, ValidationError) as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e


def save_config(config: AlarmServiceConfig, path: str | Path | None = None) -> Path:
    """Save config to YAML file."""
    path = Path(path or DEFAULT_CONFIG_PATH).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return path
