"""
Story source connectors for the HN digest mailer.

Each connector implements the BaseConnector interface and returns
stories in rank order.
"""

from config import ConfigError

from .base import (
    BaseConnector,
    SourceError,
    SourceMalformed,
    SourceUnavailable,
    Story,
)
from .hacker_news import HackerNewsConnector

__all__ = [
    "BaseConnector",
    "SourceError",
    "SourceMalformed",
    "SourceUnavailable",
    "Story",
    "HackerNewsConnector",
    "get_connector",
]

# Registry of available connectors
CONNECTOR_REGISTRY = {
    "hacker_news": HackerNewsConnector,
}


def get_connector(config) -> BaseConnector:
    """Build the connector named by the source config."""
    if config.type not in CONNECTOR_REGISTRY:
        raise ConfigError(
            f"Unknown connector: {config.type}. Available: {list(CONNECTOR_REGISTRY.keys())}"
        )
    return CONNECTOR_REGISTRY[config.type](config)
