"""
Digest pipeline for the HN digest mailer.

Pipeline stages:
1. Subscribers - Read every subscriber and their story count
2. Stories - Fetch the ranked story list once
3. Select + Render - Build each subscriber's digest email
4. Deliver - Send the batch over one mail session
"""

from .orchestrator import DigestPipeline, RunReport

__all__ = [
    "DigestPipeline",
    "RunReport",
]
