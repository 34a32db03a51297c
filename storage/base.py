"""
Base storage interface and data models.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List


# Width of the stored count column
MAX_STORY_COUNT = 255
DEFAULT_STORY_COUNT = 10


class StorageError(Exception):
    """Raised when the subscriber store cannot be opened or read."""


@dataclass
class Subscriber:
    """A digest recipient and the number of stories they asked for."""
    email: str
    count: int = DEFAULT_STORY_COUNT

    def __post_init__(self):
        if not self.email:
            raise ValueError("Subscriber email must not be empty")
        if not 0 <= self.count <= MAX_STORY_COUNT:
            raise ValueError(
                f"Story count {self.count} for {self.email} outside 0..{MAX_STORY_COUNT}"
            )

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "count": self.count,
        }


def clamp_count(count) -> int:
    """Clamp a stored count into the valid range, defaulting NULLs."""
    if count is None:
        return DEFAULT_STORY_COUNT
    return max(0, min(int(count), MAX_STORY_COUNT))


class BaseStorage(ABC):
    """
    Abstract base class for subscriber store backends.

    The digest pipeline only reads; writes exist for subscription
    management tooling and tests.
    """

    def __init__(self, config):
        """
        Initialize storage with configuration.

        Args:
            config: StorageConfig section
        """
        self.config = config

    @abstractmethod
    async def initialize(self):
        """Open the store and create the subscriber table if missing."""
        pass

    @abstractmethod
    async def close(self):
        """Close storage connections."""
        pass

    @abstractmethod
    async def get_subscribers(self) -> List[Subscriber]:
        """
        Read every subscriber.

        Returns:
            List of Subscriber objects, in insertion order

        Raises:
            StorageError: if the store cannot be read
        """
        pass

    @abstractmethod
    async def save_subscriber(self, subscriber: Subscriber) -> None:
        """Insert or update a subscriber."""
        pass

    @abstractmethod
    async def remove_subscriber(self, email: str) -> bool:
        """
        Delete a subscriber.

        Returns:
            True if a row was removed
        """
        pass

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
