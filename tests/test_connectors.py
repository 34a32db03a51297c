"""Tests for story source connectors."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from config import ConfigError, SourceConfig
from conftest import FakeSession
from connectors import get_connector
from connectors.base import SourceMalformed, SourceStatus, SourceUnavailable, Story
from connectors.hacker_news import HackerNewsConnector

TOP_URL = "https://hacker-news.firebaseio.com/v0/topstories.json"


def item_url(story_id):
    return f"https://hacker-news.firebaseio.com/v0/item/{story_id}.json"


def item(story_id, **kwargs):
    payload = {
        "id": story_id,
        "by": f"author{story_id}",
        "score": story_id * 10,
        "time": 1700000000 + story_id,
        "title": f"Title {story_id}",
        "type": "story",
        "url": f"https://example.com/{story_id}",
    }
    payload.update(kwargs)
    return payload


@pytest.fixture
def source_config():
    return SourceConfig(max_concurrency=4)


@pytest.fixture
def connector(source_config):
    return HackerNewsConnector(source_config)


def routes_for(ids, items):
    routes = {TOP_URL: (200, ids)}
    for story_id, response in items.items():
        routes[item_url(story_id)] = response
    return routes


class TestStory:
    """Tests for the Story data class."""

    def test_to_dict(self):
        story = Story(
            id=42,
            rank=1,
            title="Hello",
            url="https://example.com",
            score=7,
            by="pg",
            submitted_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        d = story.to_dict()

        assert d["id"] == 42
        assert d["rank"] == 1
        assert d["by"] == "pg"
        assert d["submitted_at"] == "2024-01-01T00:00:00+00:00"

    def test_to_dict_without_time(self):
        story = Story(id=1, rank=1, title="t", url="u")

        assert story.to_dict()["submitted_at"] is None


class TestHackerNewsConnector:
    """Tests for HackerNewsConnector."""

    def test_init(self, connector):
        assert connector.name == "hacker_news"
        assert connector.max_concurrency == 4
        assert connector.status == SourceStatus.ACTIVE

    def test_registry(self, source_config):
        assert isinstance(get_connector(source_config), HackerNewsConnector)

    def test_registry_unknown_type(self):
        with pytest.raises(ConfigError):
            get_connector(SourceConfig(type="lobsters"))

    @pytest.mark.asyncio
    async def test_fetch_in_rank_order(self, connector):
        session = FakeSession(routes_for(
            [11, 12, 13, 14],
            {i: (200, item(i)) for i in (11, 12, 13, 14)},
        ))

        stories = await connector.fetch_top_stories(3, session=session)

        assert [s.id for s in stories] == [11, 12, 13]
        assert [s.rank for s in stories] == [1, 2, 3]
        assert stories[0].title == "Title 11"
        assert stories[0].by == "author11"
        assert stories[0].score == 110
        assert stories[0].submitted_at == datetime.fromtimestamp(1700000011, tz=timezone.utc)
        assert item_url(14) not in session.requested

    @pytest.mark.asyncio
    async def test_order_independent_of_completion(self, connector):
        ids = [1, 2, 3, 4]
        # Lower ranks finish last
        delays = {item_url(i): 0.01 * (5 - i) for i in ids}
        session = FakeSession(routes_for(ids, {i: (200, item(i)) for i in ids}), delays)

        stories = await connector.fetch_top_stories(4, session=session)

        assert [s.id for s in stories] == ids

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        connector = HackerNewsConnector(SourceConfig(max_concurrency=2))
        ids = list(range(1, 9))
        delays = {item_url(i): 0.01 for i in ids}
        session = FakeSession(routes_for(ids, {i: (200, item(i)) for i in ids}), delays)

        stories = await connector.fetch_top_stories(8, session=session)

        assert len(stories) == 8
        assert session.peak <= 2

    @pytest.mark.asyncio
    async def test_failed_lookup_is_dropped_and_backfilled(self, connector):
        session = FakeSession(routes_for(
            [1, 2, 3, 4, 5],
            {
                1: (200, item(1)),
                2: (500, None),
                3: (200, item(3)),
                4: (200, item(4)),
                5: (200, item(5)),
            },
        ))

        stories = await connector.fetch_top_stories(3, session=session)

        assert [s.id for s in stories] == [1, 3, 4]
        assert [s.rank for s in stories] == [1, 3, 4]
        assert item_url(5) not in session.requested

    @pytest.mark.asyncio
    async def test_transport_error_on_item_is_dropped(self, connector):
        session = FakeSession(routes_for(
            [1, 2, 3],
            {
                1: aiohttp.ClientConnectionError("reset"),
                2: (200, item(2)),
                3: (200, item(3)),
            },
        ))

        stories = await connector.fetch_top_stories(3, session=session)

        assert [s.id for s in stories] == [2, 3]

    @pytest.mark.asyncio
    async def test_deleted_dead_and_null_items_are_dropped(self, connector):
        session = FakeSession(routes_for(
            [1, 2, 3, 4],
            {
                1: (200, None),
                2: (200, item(2, deleted=True)),
                3: (200, item(3, dead=True)),
                4: (200, item(4)),
            },
        ))

        stories = await connector.fetch_top_stories(4, session=session)

        assert [s.id for s in stories] == [4]

    @pytest.mark.asyncio
    async def test_malformed_item_is_dropped(self, connector):
        session = FakeSession(routes_for(
            [1, 2, 3, 4],
            {
                1: (200, ["not", "an", "object"]),
                2: (200, item(2, title=None)),
                3: (200, ValueError("bad json")),
                4: (200, item(4)),
            },
        ))

        stories = await connector.fetch_top_stories(3, session=session)

        assert [s.id for s in stories] == [4]

    @pytest.mark.asyncio
    async def test_no_story_resolved_is_an_error(self, connector):
        session = FakeSession(routes_for(
            [1, 2, 3],
            {i: (503, None) for i in (1, 2, 3)},
        ))

        with pytest.raises(SourceUnavailable, match="3 story lookups failed"):
            await connector.fetch_top_stories(3, session=session)

        assert connector.status == SourceStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_empty_id_list_is_not_an_error(self, connector):
        session = FakeSession({TOP_URL: (200, [])})

        assert await connector.fetch_top_stories(5, session=session) == []

    @pytest.mark.asyncio
    async def test_under_supply_returns_shorter_list(self, connector):
        session = FakeSession(routes_for([1, 2], {1: (200, item(1)), 2: (200, item(2))}))

        stories = await connector.fetch_top_stories(10, session=session)

        assert [s.id for s in stories] == [1, 2]

    @pytest.mark.asyncio
    async def test_text_post_links_to_discussion(self, connector):
        payload = item(7)
        del payload["url"]
        session = FakeSession(routes_for([7], {7: (200, payload)}))

        stories = await connector.fetch_top_stories(1, session=session)

        assert stories[0].url == "https://news.ycombinator.com/item?id=7"

    @pytest.mark.asyncio
    async def test_zero_limit_makes_no_requests(self, connector):
        session = FakeSession({})

        stories = await connector.fetch_top_stories(0, session=session)

        assert stories == []
        assert session.requested == []

    @pytest.mark.asyncio
    async def test_id_list_unreachable(self, connector):
        session = FakeSession({TOP_URL: aiohttp.ClientConnectionError("refused")})

        with pytest.raises(SourceUnavailable):
            await connector.fetch_top_stories(5, session=session)

        assert connector.status == SourceStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_id_list_timeout(self, connector):
        session = FakeSession({TOP_URL: asyncio.TimeoutError()})

        with pytest.raises(SourceUnavailable):
            await connector.fetch_top_stories(5, session=session)

    @pytest.mark.asyncio
    async def test_id_list_error_status(self, connector):
        session = FakeSession({TOP_URL: (503, None)})

        with pytest.raises(SourceUnavailable):
            await connector.fetch_top_stories(5, session=session)

    @pytest.mark.asyncio
    async def test_id_list_not_a_list(self, connector):
        session = FakeSession({TOP_URL: (200, {"ids": [1, 2]})})

        with pytest.raises(SourceMalformed):
            await connector.fetch_top_stories(5, session=session)

    @pytest.mark.asyncio
    async def test_id_list_invalid_json(self, connector):
        session = FakeSession({TOP_URL: (200, ValueError("Expecting value"))})

        with pytest.raises(SourceMalformed):
            await connector.fetch_top_stories(5, session=session)

    @pytest.mark.asyncio
    async def test_id_list_with_non_integer_ids(self, connector):
        session = FakeSession({TOP_URL: (200, [1, "two", 3])})

        with pytest.raises(SourceMalformed):
            await connector.fetch_top_stories(5, session=session)

    @pytest.mark.asyncio
    async def test_creates_session_when_none_given(self, connector):
        fake = FakeSession(routes_for([1], {1: (200, item(1))}))

        with patch("aiohttp.ClientSession") as mock_session:
            mock_session.return_value.__aenter__ = AsyncMock(return_value=fake)
            mock_session.return_value.__aexit__ = AsyncMock(return_value=None)

            stories = await connector.fetch_top_stories(1)

        assert [s.id for s in stories] == [1]
        mock_session.assert_called_once()

    @pytest.mark.asyncio
    async def test_health_check_mocked(self, connector):
        fake = FakeSession({TOP_URL: (200, [1, 2, 3])})

        with patch("aiohttp.ClientSession") as mock_session:
            mock_session.return_value.__aenter__ = AsyncMock(return_value=fake)
            mock_session.return_value.__aexit__ = AsyncMock(return_value=None)

            assert await connector.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self, connector):
        fake = FakeSession({TOP_URL: (503, None)})

        with patch("aiohttp.ClientSession") as mock_session:
            mock_session.return_value.__aenter__ = AsyncMock(return_value=fake)
            mock_session.return_value.__aexit__ = AsyncMock(return_value=None)

            status = await connector.test_connection()

        assert status == {
            "connector": "hacker_news",
            "healthy": False,
            "status": "unavailable",
            "last_fetch": None,
        }
