"""Storage provider creation from config.

Supported providers:
- memory: In-process reference store, lost on restart
- sqlite: Durable SQLite file at ``database_path``
"""

from __future__ import annotations

from ..config import StorageConfig
from ..exceptions import ConfigError
from .base import StorageProvider
from .memory import MemoryProvider
from .sqlite import SqliteProvider


def create_provider(config: StorageConfig) -> StorageProvider:
    """Create the configured storage provider."""
    provider = config.provider.strip().lower()
    if provider == "memory":
        return MemoryProvider()
    if provider == "sqlite":
        return SqliteProvider(db_path=config.database_path)
    raise ConfigError(
        f"Unknown storage provider: {config.provider!r}. Supported: memory, sqlite"
    )
