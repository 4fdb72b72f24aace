"""Custom exception hierarchy for alarm-engine.

All alarm-engine exceptions inherit from AlarmEngineError, allowing callers
to catch broad or specific errors:

    try:
        service.acknowledge("5f0c...", user="ops")
    except RecordNotFoundError as e:
        print(f"No such alarm: {e}")
    except AlarmEngineError as e:
        print(f"alarm-engine error: {e}")
"""

from __future__ import annotations


class AlarmEngineError(Exception):
    """Base exception for all alarm-engine errors."""


class AlarmValidationError(AlarmEngineError):
    """Raised when a required parameter is missing or malformed."""


class NotFoundError(AlarmEngineError):
    """Raised when an operation references an unknown identifier."""


class RecordNotFoundError(NotFoundError):
    """Raised when no alarm record exists for a uuid."""


class AlarmClassNotFoundError(NotFoundError):
    """Raised when no alarm class exists with a given name."""


class StorageError(AlarmEngineError):
    """Raised when a storage provider cannot complete a query or mutation."""


class PreconditionError(AlarmEngineError):
    """Raised when an operation is not allowed in the current service state."""


class NotSteadyError(PreconditionError):
    """Raised when alarms are created before startup reconciliation finished."""


class ConfigError(AlarmEngineError):
    """Raised when configuration is invalid or missing."""
