"""
Email body rendering.

Templates use {PLACE:NAME} placeholders. The message template must carry
{PLACE:ELEMENT} (the story list) and {PLACE:UNSUBSCRIBE_URL}; it may also
carry {PLACE:RECIPIENT}. Each story is rendered through the story line
template, which understands URL, TITLE, BY, SCORE, RANK and TIME.
"""

import html
import re
from typing import Sequence
from urllib.parse import quote

from connectors.base import Story

PLACEHOLDER_PATTERN = re.compile(r"\{PLACE:([A-Z_]+)\}")
PLACEHOLDER_PREFIX = "{PLACE:"

DEFAULT_STORY_LINE = (
    '<li><a href="{PLACE:URL}">{PLACE:TITLE}</a>'
    "<br>&emsp;by {PLACE:BY} | {PLACE:SCORE} points</li>"
)

MESSAGE_PLACEHOLDERS = frozenset({"ELEMENT", "UNSUBSCRIBE_URL", "RECIPIENT"})
REQUIRED_MESSAGE_PLACEHOLDERS = frozenset({"ELEMENT", "UNSUBSCRIBE_URL"})
STORY_PLACEHOLDERS = frozenset({"URL", "TITLE", "BY", "SCORE", "RANK", "TIME"})

TIME_FORMAT = "%Y-%m-%d %H:%M UTC"


class TemplateError(Exception):
    """Raised for a malformed template or a missing required placeholder."""


def _check_template(template: str, allowed: frozenset, required: frozenset, label: str):
    """Validate placeholder usage in a template."""
    if not isinstance(template, str):
        raise TemplateError(f"{label} template must be text")

    names = PLACEHOLDER_PATTERN.findall(template)
    if template.count(PLACEHOLDER_PREFIX) != len(names):
        raise TemplateError(f"{label} template has an unterminated or invalid placeholder")

    unknown = set(names) - allowed
    if unknown:
        raise TemplateError(f"{label} template uses unknown placeholders: {sorted(unknown)}")

    missing = required - set(names)
    if missing:
        raise TemplateError(f"{label} template is missing placeholders: {sorted(missing)}")


def _substitute(template: str, values: dict) -> str:
    # Single pass, so substituted text is never scanned again
    return PLACEHOLDER_PATTERN.sub(lambda m: values[m.group(1)], template)


def unsubscribe_link(base_url: str, email: str) -> str:
    """Append the URL-encoded address to the unsubscribe base URL."""
    return base_url + quote(email, safe="")


class DigestRenderer:
    """
    Renders digests into email bodies.

    Templates are validated once at construction; render() is then pure
    and gives byte-identical output for identical input.
    """

    def __init__(
        self,
        template: str,
        unsubscribe_base_url: str,
        story_line: str = None
    ):
        self.story_line = story_line or DEFAULT_STORY_LINE
        _check_template(template, MESSAGE_PLACEHOLDERS, REQUIRED_MESSAGE_PLACEHOLDERS, "Message")
        _check_template(self.story_line, STORY_PLACEHOLDERS, frozenset(), "Story line")
        self.template = template
        self.unsubscribe_base_url = unsubscribe_base_url

    def render_story(self, story: Story) -> str:
        submitted = story.submitted_at.strftime(TIME_FORMAT) if story.submitted_at else ""
        return _substitute(self.story_line, {
            "URL": html.escape(story.url),
            "TITLE": html.escape(story.title),
            "BY": html.escape(story.by),
            "SCORE": str(story.score),
            "RANK": str(story.rank),
            "TIME": submitted,
        })

    def render(self, digest: Sequence[Story], recipient_email: str) -> str:
        """Render one subscriber's digest into a complete HTML body."""
        elements = "\n".join(self.render_story(story) for story in digest)
        return _substitute(self.template, {
            "ELEMENT": elements,
            "UNSUBSCRIBE_URL": unsubscribe_link(self.unsubscribe_base_url, recipient_email),
            "RECIPIENT": html.escape(recipient_email),
        })


def render(
    template: str,
    digest: Sequence[Story],
    unsubscribe_base_url: str,
    recipient_email: str,
    story_line: str = None
) -> str:
    """Validate `template` and render a single digest with it."""
    return DigestRenderer(template, unsubscribe_base_url, story_line).render(
        digest, recipient_email
    )
