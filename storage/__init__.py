"""
Subscriber storage for the HN digest mailer.

SQLite is the only backend; get_storage keeps the selection point so the
configured type is validated in one place.
"""

from config import ConfigError

from .base import BaseStorage, StorageError, Subscriber
from .sqlite import SQLiteStorage

__all__ = [
    "BaseStorage",
    "StorageError",
    "Subscriber",
    "SQLiteStorage",
    "get_storage",
]


def get_storage(config) -> BaseStorage:
    """
    Get configured storage backend.

    Args:
        config: StorageConfig section

    Returns:
        Storage instance
    """
    if config.type != "sqlite":
        raise ConfigError(f"Unknown storage type: {config.type}")
    return SQLiteStorage(config)
