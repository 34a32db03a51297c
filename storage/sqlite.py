"""
SQLite storage backend implementation.
"""

import os
from typing import List

import aiosqlite
import structlog

from .base import BaseStorage, StorageError, Subscriber, clamp_count

logger = structlog.get_logger()


class SQLiteStorage(BaseStorage):
    """
    SQLite subscriber store.

    Uses the `users` table of existing newsletter databases, so a store
    created by earlier deployments is read as-is.
    """

    def __init__(self, config):
        super().__init__(config)
        self.db_path = config.path
        self._conn = None

    async def initialize(self):
        """Open the database and create the users table."""
        directory = os.path.dirname(self.db_path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._conn = await aiosqlite.connect(self.db_path)
            await self._conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    email TEXT PRIMARY KEY,
                    count INTEGER CHECK (count BETWEEN 0 AND 255)
                )
            """)
            await self._conn.commit()
        except (OSError, aiosqlite.Error) as e:
            await self.close()
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

        logger.debug("sqlite_initialized", path=self.db_path)

    async def close(self):
        """Close database connection."""
        if self._conn:
            try:
                await self._conn.close()
            except aiosqlite.Error as e:
                logger.warning("sqlite_close_failed", path=self.db_path, error=str(e))
            self._conn = None

    async def get_subscribers(self) -> List[Subscriber]:
        """Read all subscribers, repairing rows the pipeline cannot use."""
        if not self._conn:
            await self.initialize()

        try:
            cursor = await self._conn.execute("SELECT email, count FROM users ORDER BY rowid")
            rows = await cursor.fetchall()
            await cursor.close()
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot read subscribers: {e}") from e

        subscribers = []
        for email, count in rows:
            if not email:
                logger.warning("subscriber_without_email_skipped")
                continue

            try:
                clamped = clamp_count(count)
            except (TypeError, ValueError):
                logger.warning("subscriber_count_invalid", email=email, count=count)
                continue
            if count is not None and clamped != count:
                logger.warning(
                    "subscriber_count_clamped",
                    email=email,
                    stored=count,
                    used=clamped
                )

            subscribers.append(Subscriber(email=str(email), count=clamped))

        return subscribers

    async def save_subscriber(self, subscriber: Subscriber) -> None:
        """Insert or update a subscriber."""
        if not self._conn:
            await self.initialize()

        try:
            await self._conn.execute("""
                INSERT INTO users (email, count) VALUES (?, ?)
                ON CONFLICT(email) DO UPDATE SET count = excluded.count
            """, (subscriber.email, subscriber.count))
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot save subscriber {subscriber.email}: {e}") from e

    async def remove_subscriber(self, email: str) -> bool:
        """Delete a subscriber by email."""
        if not self._conn:
            await self.initialize()

        try:
            cursor = await self._conn.execute("DELETE FROM users WHERE email = ?", (email,))
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot remove subscriber {email}: {e}") from e

        return cursor.rowcount > 0
