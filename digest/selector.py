"""
Per-subscriber story selection.
"""

from operator import attrgetter
from typing import Sequence

from connectors.base import Story


def select_digest(stories: Sequence[Story], count: int) -> list[Story]:
    """
    Pick a subscriber's slice of the ranked list.

    Returns the `count` best-ranked stories, or every story when fewer
    are available. Negative counts select nothing.
    """
    if count <= 0:
        return []
    return sorted(stories, key=attrgetter("rank"))[:count]
