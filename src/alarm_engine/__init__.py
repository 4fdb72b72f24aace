"""Alarm Engine — alarm lifecycle, history and live streaming."""

__version__ = "1.0.0"

from .exceptions import (
    AlarmClassNotFoundError,
    AlarmEngineError,
    AlarmValidationError,
    ConfigError,
    NotFoundError,
    NotSteadyError,
    PreconditionError,
    RecordNotFoundError,
    StorageError,
)

__all__ = [
    "__version__",
    "AlarmEngineError",
    "AlarmValidationError",
    "NotFoundError",
    "RecordNotFoundError",
    "AlarmClassNotFoundError",
    "StorageError",
    "PreconditionError",
    "NotSteadyError",
    "ConfigError",
]
