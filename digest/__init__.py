"""
Digest selection and rendering for the HN digest mailer.

Picks each subscriber's slice of the ranked story list and renders it
into an HTML email body.
"""

from .renderer import DigestRenderer, TemplateError, render, unsubscribe_link
from .selector import select_digest

__all__ = [
    "DigestRenderer",
    "TemplateError",
    "render",
    "select_digest",
    "unsubscribe_link",
]
