"""
Hacker News connector for the ranked top-stories list.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional
import aiohttp
import structlog

from .base import (
    BaseConnector,
    SourceError,
    SourceMalformed,
    SourceStatus,
    SourceUnavailable,
    Story,
)

logger = structlog.get_logger()


class HackerNewsConnector(BaseConnector):
    """
    Connector for the Hacker News Firebase API.

    Fetches the ranked id list once, then resolves item metadata
    concurrently through a bounded worker pool. Items that fail to
    resolve are dropped and lower-ranked ids are pulled in to back-fill.
    """

    name = "hacker_news"

    def __init__(self, config):
        super().__init__(config)
        self.topstories_url = config.topstories_url
        self.item_url = config.item_url
        self.item_page_url = config.item_page_url
        self.max_concurrency = config.max_concurrency
        self.timeout = config.timeout

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)

    async def fetch_top_stories(self, limit: int, session=None) -> list[Story]:
        """
        Fetch the top `limit` stories in rank order.

        Args:
            limit: Number of stories wanted (the largest subscriber count)
            session: Optional aiohttp session; one is created if omitted
        """
        if limit <= 0:
            return []

        if session is None:
            async with aiohttp.ClientSession(timeout=self._client_timeout()) as session:
                return await self._fetch_with_session(session, limit)
        return await self._fetch_with_session(session, limit)

    async def _fetch_with_session(self, session, limit: int) -> list[Story]:
        ids = await self.fetch_story_ids(session)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        stories: list[Story] = []
        dropped = 0
        cursor = 0

        # Each pass resolves just enough ids to cover what is still missing
        while len(stories) < limit and cursor < len(ids):
            wanted = limit - len(stories)
            batch = list(enumerate(ids[cursor:cursor + wanted], start=cursor + 1))
            cursor += len(batch)

            resolved = await asyncio.gather(*(
                self._resolve_story(session, semaphore, story_id, rank)
                for rank, story_id in batch
            ))

            for story in resolved:
                if story is None:
                    dropped += 1
                else:
                    stories.append(story)

        if ids and not stories:
            self._status = SourceStatus.UNAVAILABLE
            raise SourceUnavailable(f"All {dropped} story lookups failed")

        self._status = SourceStatus.ACTIVE
        self._last_fetch = datetime.now(timezone.utc)

        self.logger.info(
            "stories_fetched",
            requested=limit,
            fetched=len(stories),
            dropped=dropped,
            available_ids=len(ids)
        )

        return stories

    async def fetch_story_ids(self, session) -> list[int]:
        """Fetch the ranked list of story ids."""
        try:
            payload = await self._get_json(session, self.topstories_url)
        except SourceError:
            self._status = SourceStatus.UNAVAILABLE
            raise

        if not isinstance(payload, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in payload
        ):
            self._status = SourceStatus.UNAVAILABLE
            raise SourceMalformed(
                f"Expected a list of story ids from {self.topstories_url}"
            )

        return payload

    async def _resolve_story(
        self,
        session,
        semaphore: asyncio.Semaphore,
        story_id: int,
        rank: int
    ) -> Optional[Story]:
        """Resolve one id; failures are logged and yield None."""
        async with semaphore:
            try:
                payload = await self._get_json(session, self.item_url.format(id=story_id))
                return self._parse_story(payload, story_id, rank)
            except SourceError as e:
                self.logger.warning(
                    "story_lookup_failed",
                    story_id=story_id,
                    rank=rank,
                    error=str(e)
                )
                return None

    def _parse_story(self, payload, story_id: int, rank: int) -> Optional[Story]:
        """Convert an item payload into a Story."""
        if payload is None:
            self.logger.debug("story_missing", story_id=story_id)
            return None
        if not isinstance(payload, dict):
            raise SourceMalformed(f"Item {story_id} is not an object")
        if payload.get("deleted") or payload.get("dead"):
            self.logger.debug("story_removed", story_id=story_id)
            return None

        title = payload.get("title")
        if not title:
            raise SourceMalformed(f"Item {story_id} has no title")

        try:
            score = int(payload.get("score") or 0)
        except (TypeError, ValueError) as e:
            raise SourceMalformed(f"Item {story_id} has an invalid score") from e

        submitted_at = None
        if payload.get("time") is not None:
            try:
                submitted_at = datetime.fromtimestamp(payload["time"], tz=timezone.utc)
            except (TypeError, ValueError, OverflowError, OSError):
                self.logger.debug("story_time_invalid", story_id=story_id)

        # Text posts have no external link; point at the discussion page
        url = payload.get("url") or self.item_page_url.format(id=story_id)

        return Story(
            id=story_id,
            rank=rank,
            title=str(title),
            url=str(url),
            score=score,
            by=str(payload.get("by") or ""),
            submitted_at=submitted_at,
        )

    async def _get_json(self, session, url: str):
        """GET a URL and decode its JSON body."""
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise SourceUnavailable(f"GET {url} returned HTTP {response.status}")
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise SourceMalformed(f"GET {url} returned invalid JSON: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceUnavailable(f"GET {url} failed: {e}") from e

    async def health_check(self) -> bool:
        """Check if the top-stories endpoint is reachable."""
        try:
            async with aiohttp.ClientSession(timeout=self._client_timeout()) as session:
                await self.fetch_story_ids(session)
            return True
        except SourceError as e:
            self.logger.error("health_check_failed", error=str(e))
            return False
