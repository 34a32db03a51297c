"""
Base connector interface and data models.

Story source connectors inherit from BaseConnector and return stories
in rank order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
import structlog

logger = structlog.get_logger()


class SourceError(Exception):
    """Base class for story source failures."""


class SourceUnavailable(SourceError):
    """The source could not be reached or answered with an error status."""


class SourceMalformed(SourceError):
    """The source answered with something that cannot be parsed."""


class SourceStatus(Enum):
    """Status of a story source connector."""
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Story:
    """A single ranked story, held in memory for one run."""

    id: int
    rank: int
    title: str
    url: str
    score: int = 0
    by: str = ""
    submitted_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rank": self.rank,
            "title": self.title,
            "url": self.url,
            "score": self.score,
            "by": self.by,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }


class BaseConnector(ABC):
    """
    Abstract base class for story source connectors.

    Each connector is responsible for:
    1. Fetching the current ranked identifier list
    2. Resolving identifiers to Story metadata
    3. Dropping stories whose lookup fails without failing the fetch
    """

    name: str = "base"

    def __init__(self, config):
        """
        Initialize the connector with configuration.

        Args:
            config: SourceConfig section
        """
        self.config = config
        self._status = SourceStatus.ACTIVE
        self._last_fetch: Optional[datetime] = None

        self.logger = structlog.get_logger().bind(connector=self.name)

    @property
    def status(self) -> SourceStatus:
        return self._status

    @abstractmethod
    async def fetch_top_stories(self, limit: int, session=None) -> list[Story]:
        """
        Fetch the top `limit` stories in rank order.

        Args:
            limit: Number of stories wanted
            session: Optional HTTP session to reuse

        Returns:
            Stories ordered by rank; may be shorter than `limit`

        Raises:
            SourceUnavailable: the ranked list could not be fetched
            SourceMalformed: the ranked list could not be parsed
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the connector is operational.

        Returns:
            True if the ranked list can be fetched
        """
        pass

    async def test_connection(self) -> dict:
        """
        Test the connection and return diagnostic info.

        Returns:
            Dictionary with connection status and details
        """
        healthy = await self.health_check()
        return {
            "connector": self.name,
            "healthy": healthy,
            "status": self.status.value,
            "last_fetch": self._last_fetch.isoformat() if self._last_fetch else None,
        }
