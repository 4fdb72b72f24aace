"""Alarm record storage providers."""

from .base import AlarmCursor, NoteCursor, QueryCriteria, StorageProvider
from .factory import create_provider
from .memory import MemoryProvider
from .sqlite import SqliteProvider

__all__ = [
    "AlarmCursor",
    "NoteCursor",
    "QueryCriteria",
    "StorageProvider",
    "MemoryProvider",
    "SqliteProvider",
    "create_provider",
]
