"""Shared fakes for the digest mailer tests."""

import asyncio
import io
import smtplib
from datetime import datetime, timezone
from email.generator import BytesGenerator

import pytest

from config import AppConfig, DigestConfig, EmailConfig, SourceConfig, StorageConfig
from connectors.base import BaseConnector, Story
from storage.base import BaseStorage, StorageError, Subscriber


class FakeSMTPServer:
    """
    Stands in for smtplib.SMTP as a session factory.

    Records every connection and accepted message; behaviour is tuned
    through its attributes.
    """

    def __init__(self):
        self.connections = []
        self.delivered = []
        self.calls = []
        self.failures = {}  # recipient -> exception raised on every send
        self.transient = {}  # recipient -> exception raised on the next send only
        self.drop_at = set()  # delivered counts at which the connection drops
        self.max_connections = None
        self.auth_fails = False
        self.starttls_supported = True

    def __call__(self, host, port, timeout=None):
        self.calls.append(("connect", host, port))
        if self.max_connections is not None and len(self.connections) >= self.max_connections:
            raise ConnectionRefusedError(111, "Connection refused")
        connection = FakeSMTPConnection(self)
        self.connections.append(connection)
        return connection

    def bodies_for(self, recipient):
        return [
            msg.get_payload()[0].get_payload(decode=True).decode("utf-8")
            for to, msg in self.delivered if to == recipient
        ]


class FakeSMTPConnection:
    def __init__(self, server):
        self.server = server
        self.tls = False
        self.quit_called = False
        self.closed = False

    def ehlo(self):
        self.server.calls.append(("ehlo",))

    def starttls(self, context=None):
        self.server.calls.append(("starttls",))
        if not self.server.starttls_supported:
            raise smtplib.SMTPNotSupportedError("STARTTLS extension not supported by server.")
        self.tls = True

    def login(self, user, password):
        self.server.calls.append(("login", user))
        if self.server.auth_fails:
            raise smtplib.SMTPAuthenticationError(535, b"5.7.8 Bad credentials")

    def send_message(self, msg, from_addr=None, to_addrs=None):
        recipient = to_addrs[0]
        self.server.calls.append(("send", recipient))
        # smtplib serializes the message before talking to the server
        BytesGenerator(io.BytesIO()).flatten(msg, linesep="\r\n")
        if len(self.server.delivered) in self.server.drop_at:
            self.server.drop_at.discard(len(self.server.delivered))
            raise smtplib.SMTPServerDisconnected("Connection unexpectedly closed")
        if recipient in self.server.transient:
            raise self.server.transient.pop(recipient)
        if recipient in self.server.failures:
            raise self.server.failures[recipient]
        self.server.delivered.append((recipient, msg))
        return {}

    def quit(self):
        self.quit_called = True
        self.closed = True

    def close(self):
        self.closed = True


class FakeStorage(BaseStorage):
    """In-memory subscriber store."""

    def __init__(self, subscribers=None, error=None):
        super().__init__(StorageConfig())
        self.subscribers = list(subscribers or [])
        self.error = error
        self.opened = 0
        self.closed = 0

    async def initialize(self):
        self.opened += 1

    async def close(self):
        self.closed += 1

    async def get_subscribers(self):
        if self.error:
            raise StorageError(self.error)
        return list(self.subscribers)

    async def save_subscriber(self, subscriber):
        self.subscribers.append(subscriber)

    async def remove_subscriber(self, email):
        before = len(self.subscribers)
        self.subscribers = [s for s in self.subscribers if s.email != email]
        return len(self.subscribers) < before


class FakeSource(BaseConnector):
    """Story source returning a fixed ranked list."""

    name = "fake"

    def __init__(self, stories=None, error=None):
        super().__init__(SourceConfig())
        self.stories = list(stories or [])
        self.error = error
        self.limits = []

    async def fetch_top_stories(self, limit, session=None):
        self.limits.append(limit)
        if self.error:
            raise self.error
        return self.stories[:limit]

    async def health_check(self):
        return self.error is None


class FakeResponse:
    def __init__(self, session, status, payload, delay):
        self.session = session
        self.status = status
        self.payload = payload
        self.delay = delay

    async def __aenter__(self):
        self.session.active += 1
        self.session.peak = max(self.session.peak, self.session.active)
        return self

    async def __aexit__(self, *exc):
        self.session.active -= 1
        return None

    async def json(self, content_type=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """Minimal aiohttp.ClientSession stand-in keyed by URL."""

    def __init__(self, routes, delays=None):
        self.routes = routes
        self.delays = delays or {}
        self.requested = []
        self.active = 0
        self.peak = 0

    def get(self, url):
        self.requested.append(url)
        route = self.routes.get(url, (404, None))
        if isinstance(route, Exception):
            raise route
        status, payload = route
        return FakeResponse(self, status, payload, self.delays.get(url, 0))


def make_story(rank, story_id=None, **kwargs):
    story_id = story_id or 1000 + rank
    defaults = {
        "title": f"Story {rank}",
        "url": f"https://example.com/{story_id}",
        "score": 100 - rank,
        "by": f"user{rank}",
        "submitted_at": datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
    }
    defaults.update(kwargs)
    return Story(id=story_id, rank=rank, **defaults)


@pytest.fixture
def smtp_server():
    return FakeSMTPServer()


@pytest.fixture
def email_config():
    return EmailConfig(
        domain="smtp.test",
        port=587,
        user="digest@example.com",
        password="secret",
    )


@pytest.fixture
def app_config(email_config):
    return AppConfig(
        email=email_config,
        digest=DigestConfig(unsubscribe_url="https://x/u?e=", subject="Top stories"),
    )


@pytest.fixture
def message_template():
    return (
        "<html><body><p>Hello {PLACE:RECIPIENT}</p><ul>\n{PLACE:ELEMENT}\n</ul>"
        '<a href="{PLACE:UNSUBSCRIBE_URL}">unsubscribe</a></body></html>'
    )


@pytest.fixture
def ranked_stories():
    return [make_story(1), make_story(2), make_story(3)]


@pytest.fixture
def two_subscribers():
    return [Subscriber("a@x.com", 2), Subscriber("b@x.com", 1)]
